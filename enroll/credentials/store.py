"""Credential persistence for enroll.

Implements:
  - Credential               — name, secret token, creation time
  - CredentialStore          — async Protocol consumed by the enrollment server
  - SQLiteCredentialStore    — aiosqlite file store, chmod 0600 on every init
  - MemoryCredentialStore    — in-process store for tests and dry runs

Names are normalized (trim + lowercase) on every call. Records are keyed
``account:<name>``; rows without that prefix are ignored by ``list()``.

The plaintext token is never logged and never appears in ``repr()``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

import aiosqlite

from enroll.constants import CREDENTIAL_KEY_PREFIX, CREDENTIAL_ROTATION_THRESHOLD_DAYS
from enroll.errors import CredentialNotFound, StorageError
from enroll.utils.logger import get_logger

logger = get_logger(__name__)

_DEFAULT_DB_PATH: str = str(Path.home() / ".enroll" / "credentials.db")

# Accounts already warned about credential age in this process
_warned_accounts: set[str] = set()


@dataclass
class Credential:
    name: str
    token: str = field(repr=False)
    created_at: Optional[datetime] = None


def normalize_name(name: str) -> str:
    return name.strip().lower()


def credential_key(name: str) -> str:
    return f"{CREDENTIAL_KEY_PREFIX}{name}"


def parse_credential_key(key: str) -> Optional[str]:
    """Return the account name for an ``account:<name>`` key, else None."""
    if not key.startswith(CREDENTIAL_KEY_PREFIX):
        return None
    rest = key[len(CREDENTIAL_KEY_PREFIX):]
    if not rest.strip():
        return None
    return rest


def _require_name(name: str) -> str:
    normalized = normalize_name(name)
    if not normalized:
        raise StorageError("missing account name")
    return normalized


def _warn_if_stale(cred: Credential) -> None:
    if cred.created_at is None:
        return
    age = datetime.now(timezone.utc) - cred.created_at
    if age > timedelta(days=CREDENTIAL_ROTATION_THRESHOLD_DAYS) and cred.name not in _warned_accounts:
        _warned_accounts.add(cred.name)
        logger.warning(
            "credentials over 90 days old, consider rotating",
            account=cred.name,
            age_days=age.days,
        )


# ─── Protocol ─────────────────────────────────────────────────────────────────


@runtime_checkable
class CredentialStore(Protocol):
    """Durable key/value persistence for named credentials.

    Every method raises StorageError (or CredentialNotFound) on failure.
    """

    async def set(self, name: str, credential: Credential) -> None:
        ...

    async def get(self, name: str) -> Credential:
        ...

    async def delete(self, name: str) -> None:
        ...

    async def list(self) -> list[Credential]:
        ...

    async def keys(self) -> list[str]:
        ...


# ─── In-memory store ──────────────────────────────────────────────────────────


class MemoryCredentialStore:
    """Dict-backed store. Not persistent; one instance per test."""

    def __init__(self) -> None:
        self._items: dict[str, Credential] = {}

    async def set(self, name: str, credential: Credential) -> None:
        name = _require_name(name)
        if not credential.token:
            raise StorageError("missing token")
        created_at = credential.created_at or datetime.now(timezone.utc)
        self._items[credential_key(name)] = Credential(name, credential.token, created_at)

    async def get(self, name: str) -> Credential:
        name = _require_name(name)
        cred = self._items.get(credential_key(name))
        if cred is None:
            raise CredentialNotFound(f"no credentials stored for '{name}'")
        _warn_if_stale(cred)
        return cred

    async def delete(self, name: str) -> None:
        name = _require_name(name)
        if self._items.pop(credential_key(name), None) is None:
            raise CredentialNotFound(f"no credentials stored for '{name}'")

    async def list(self) -> list[Credential]:
        out = []
        for key in await self.keys():
            name = parse_credential_key(key)
            if name is not None:
                out.append(await self.get(name))
        return out

    async def keys(self) -> list[str]:
        return sorted(self._items)


# ─── SQLite store ─────────────────────────────────────────────────────────────

_CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS credentials (
    key         TEXT PRIMARY KEY,
    token       TEXT NOT NULL,
    created_at  TEXT NOT NULL
);
"""


class SQLiteCredentialStore:
    """aiosqlite-backed credential file.

    Args:
        db_path: File location. Falls back to ENROLL_CREDENTIALS_DB, then
                 ``~/.enroll/credentials.db``.
    """

    def __init__(self, db_path: Optional[Path | str] = None) -> None:
        self.path = self._resolve_db_path(db_path)
        self._initialized = False

    @staticmethod
    def _resolve_db_path(db_path: Optional[Path | str]) -> Path:
        if db_path is not None:
            return Path(os.path.expanduser(str(db_path)))
        env_path = os.environ.get("ENROLL_CREDENTIALS_DB")
        if env_path:
            return Path(os.path.expanduser(env_path))
        return Path(_DEFAULT_DB_PATH)

    async def init(self) -> Path:
        """Create the schema and restrict the file to its owner.

        Idempotent. ``os.chmod(path, 0o600)`` runs on every call so the file
        stays private whatever the umask was at creation time.

        Raises:
            StorageError: If the directory or database cannot be created.
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            async with aiosqlite.connect(str(self.path)) as db:
                await db.execute(_CREATE_TABLE_SQL)
                await db.execute("PRAGMA user_version = 1")
                await db.commit()
            os.chmod(self.path, 0o600)
        except (OSError, aiosqlite.Error) as exc:
            raise StorageError(f"could not initialize credential store: {exc}") from exc

        self._initialized = True
        logger.debug("Credential store initialized", path=str(self.path))
        return self.path

    async def _ensure_init(self) -> None:
        if not self._initialized:
            await self.init()

    async def set(self, name: str, credential: Credential) -> None:
        name = _require_name(name)
        if not credential.token:
            raise StorageError("missing token")
        created_at = credential.created_at or datetime.now(timezone.utc)

        await self._ensure_init()
        try:
            async with aiosqlite.connect(str(self.path)) as db:
                await db.execute(
                    "INSERT OR REPLACE INTO credentials (key, token, created_at) VALUES (?, ?, ?)",
                    (credential_key(name), credential.token, created_at.isoformat()),
                )
                await db.commit()
        except aiosqlite.Error as exc:
            raise StorageError(f"could not save credentials: {exc}") from exc

        logger.info("Credentials stored", account=name)

    async def get(self, name: str) -> Credential:
        name = _require_name(name)
        await self._ensure_init()
        try:
            async with aiosqlite.connect(str(self.path)) as db:
                async with db.execute(
                    "SELECT token, created_at FROM credentials WHERE key = ?",
                    (credential_key(name),),
                ) as cursor:
                    row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise StorageError(f"could not read credentials: {exc}") from exc

        if row is None:
            raise CredentialNotFound(f"no credentials stored for '{name}'")

        token, created_raw = row
        cred = Credential(name=name, token=token, created_at=_parse_timestamp(created_raw))
        _warn_if_stale(cred)
        return cred

    async def delete(self, name: str) -> None:
        name = _require_name(name)
        await self._ensure_init()
        try:
            async with aiosqlite.connect(str(self.path)) as db:
                cursor = await db.execute(
                    "DELETE FROM credentials WHERE key = ?",
                    (credential_key(name),),
                )
                await db.commit()
                deleted = cursor.rowcount
        except aiosqlite.Error as exc:
            raise StorageError(f"could not delete credentials: {exc}") from exc

        if deleted == 0:
            raise CredentialNotFound(f"no credentials stored for '{name}'")
        logger.info("Credentials removed", account=name)

    async def list(self) -> list[Credential]:
        await self._ensure_init()
        try:
            async with aiosqlite.connect(str(self.path)) as db:
                async with db.execute(
                    "SELECT key, token, created_at FROM credentials ORDER BY key"
                ) as cursor:
                    rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise StorageError(f"could not list credentials: {exc}") from exc

        out = []
        for key, token, created_raw in rows:
            name = parse_credential_key(key)
            if name is None:
                continue
            cred = Credential(name=name, token=token, created_at=_parse_timestamp(created_raw))
            _warn_if_stale(cred)
            out.append(cred)
        return out

    async def keys(self) -> list[str]:
        await self._ensure_init()
        try:
            async with aiosqlite.connect(str(self.path)) as db:
                async with db.execute("SELECT key FROM credentials ORDER BY key") as cursor:
                    rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise StorageError(f"could not list credentials: {exc}") from exc
        return [row[0] for row in rows]


def _parse_timestamp(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
