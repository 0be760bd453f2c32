"""Config loading for enroll.

Reads `.enroll/config.yaml` (or `~/.enroll/config.yaml`).
Raises SystemExit on parse errors or a missing `version` field.
If no config file is found, returns default values (safe to run without config).

Config search order:
  1. `config_path` argument (for testing or explicit override)
  2. ENROLL_CONFIG environment variable (if set)
  3. `.enroll/config.yaml` (working directory)
  4. `~/.enroll/config.yaml` (home directory)

Environment variable overrides (applied after the file):
  ENROLL_API_BASE_URL   — overrides api.base_url
  ENROLL_API_TIMEOUT    — overrides api.timeout_s (float)
  ENROLL_CREDENTIALS_DB — overrides store.path
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from typing import Optional

import yaml

from enroll.constants import (
    DEFAULT_API_BASE_URL,
    DEFAULT_API_TIMEOUT_S,
    LOOPBACK_HOST,
    RATE_LIMIT_MAX_ATTEMPTS,
    RATE_LIMIT_SWEEP_INTERVAL_S,
    RATE_LIMIT_WINDOW_S,
)
from enroll.utils.logger import get_logger

logger = get_logger(__name__)

SUPPORTED_CONFIG_VERSION = 1

SUPPORTED_VERSIONS: frozenset[int] = frozenset({1})

# The listener never binds anything but loopback
ALLOWED_HOSTS: frozenset[str] = frozenset({"127.0.0.1", "localhost"})

DEFAULT_STORE_PATH = "~/.enroll/credentials.db"

DEFAULT_CONFIG_PATHS = [
    ".enroll/config.yaml",
    os.path.expanduser("~/.enroll/config.yaml"),
]


# ─── Dataclasses ─────────────────────────────────────────────────────────────


@dataclass
class ApiConfig:
    """Remote API used to validate a candidate credential."""

    base_url: str = DEFAULT_API_BASE_URL
    timeout_s: float = DEFAULT_API_TIMEOUT_S


@dataclass
class RateLimitConfig:
    """Fixed-window limiter policy for the mutating endpoints."""

    window_s: float = RATE_LIMIT_WINDOW_S
    max_attempts: int = RATE_LIMIT_MAX_ATTEMPTS
    sweep_interval_s: float = RATE_LIMIT_SWEEP_INTERVAL_S


@dataclass
class ServerConfig:
    host: str = LOOPBACK_HOST


@dataclass
class StoreConfig:
    path: str = DEFAULT_STORE_PATH


@dataclass
class Config:
    """Root configuration object populated from .enroll/config.yaml.

    All fields have safe defaults; enroll runs without any config file.
    """

    version: int = SUPPORTED_CONFIG_VERSION
    api: ApiConfig = field(default_factory=ApiConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    path: Optional[str] = None

    @classmethod
    def defaults(cls) -> "Config":
        return cls()

    @classmethod
    def from_dict(cls, raw: dict, path: Optional[str] = None) -> "Config":
        """Construct Config from a parsed YAML dict.

        Merges user-supplied values onto defaults; unknown keys are ignored.

        Raises:
            SystemExit(1): On a section that is not a mapping, a non-numeric or
                           non-positive number, or a non-loopback server.host.
        """
        api_raw = _section(raw, "api", path)
        api = ApiConfig(
            base_url=str(api_raw.get("base_url", DEFAULT_API_BASE_URL)).rstrip("/"),
            timeout_s=_positive(api_raw, "api", "timeout_s", DEFAULT_API_TIMEOUT_S, float, path),
        )

        rl_raw = _section(raw, "rate_limit", path)
        rate_limit = RateLimitConfig(
            window_s=_positive(rl_raw, "rate_limit", "window_s", RATE_LIMIT_WINDOW_S, float, path),
            max_attempts=_positive(rl_raw, "rate_limit", "max_attempts", RATE_LIMIT_MAX_ATTEMPTS, int, path),
            sweep_interval_s=_positive(
                rl_raw, "rate_limit", "sweep_interval_s", RATE_LIMIT_SWEEP_INTERVAL_S, float, path
            ),
        )

        server_raw = _section(raw, "server", path)
        host = server_raw.get("host", LOOPBACK_HOST)
        if not isinstance(host, str) or host not in ALLOWED_HOSTS:
            msg = (
                f"CONFIG ERROR: server.host must be a loopback address, got '{host}'. "
                f"Supported values: {sorted(ALLOWED_HOSTS)}."
            )
            print(msg, file=sys.stderr)
            raise SystemExit(1)

        store_raw = _section(raw, "store", path)
        store_path = store_raw.get("path", DEFAULT_STORE_PATH)
        if not isinstance(store_path, str) or not store_path:
            msg = f"CONFIG ERROR: store.path in {path} must be a non-empty string, got '{store_path}'."
            print(msg, file=sys.stderr)
            raise SystemExit(1)
        store = StoreConfig(path=store_path)

        return cls(
            version=raw.get("version", SUPPORTED_CONFIG_VERSION),
            api=api,
            rate_limit=rate_limit,
            server=ServerConfig(host=host),
            store=store,
            path=path,
        )


def _section(raw: dict, name: str, path: Optional[str]) -> dict:
    """Return ``raw[name]`` as a mapping ({} when absent)."""
    section = raw.get(name)
    if section is None:
        return {}
    if not isinstance(section, dict):
        msg = f"CONFIG ERROR: '{name}' in {path} must be a mapping, got {type(section).__name__}."
        print(msg, file=sys.stderr)
        raise SystemExit(1)
    return section


def _positive(section: dict, name: str, key: str, default, cast, path: Optional[str]):
    """Read ``section[key]`` with *cast*; it must be a number greater than zero."""
    value = section.get(key, default)
    try:
        if isinstance(value, bool):
            raise ValueError(value)
        number = cast(value)
    except (TypeError, ValueError):
        number = None
    if number is None or number <= 0:
        msg = f"CONFIG ERROR: {name}.{key} in {path} must be a positive number, got '{value}'."
        print(msg, file=sys.stderr)
        raise SystemExit(1)
    return number


# ─── Config loading ───────────────────────────────────────────────────────────


def load_config(config_path: Optional[str] = None) -> Config:
    """Load and validate enroll configuration.

    If no file is found at any search path, returns default Config (not an error).
    If a file is found but invalid, writes the error to stderr and raises SystemExit(1).

    Raises:
        SystemExit(1): On YAML parse error, missing ``version`` field, unsupported
                       version, non-loopback host, or an invalid env override.
    """
    search_paths: list[str] = []
    if config_path:
        search_paths.append(config_path)
    env_config = os.environ.get("ENROLL_CONFIG")
    if env_config:
        search_paths.append(env_config)
    search_paths.extend(DEFAULT_CONFIG_PATHS)

    found_path: Optional[str] = None
    for candidate in search_paths:
        expanded = os.path.expanduser(candidate)
        if os.path.isfile(expanded):
            found_path = expanded
            break

    if found_path is None:
        logger.debug("No config file found, using defaults", searched=search_paths)
        config = Config.defaults()
        _apply_env_overrides(config)
        return config

    logger.debug("Loading config", path=found_path)

    try:
        with open(found_path) as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        msg = f"CONFIG ERROR: Failed to parse {found_path}: {exc}"
        print(msg, file=sys.stderr)
        raise SystemExit(1)
    except OSError as exc:
        msg = f"CONFIG ERROR: Could not read {found_path}: {exc}"
        print(msg, file=sys.stderr)
        raise SystemExit(1)

    if not isinstance(raw, dict):
        if raw is None:
            msg = (
                f"CONFIG ERROR: {found_path} is missing the required 'version' field.\n"
                "Add 'version: 1' to the top of your config file."
            )
        else:
            msg = (
                f"CONFIG ERROR: {found_path} is not a valid YAML mapping.\n"
                "The config file must be a YAML dictionary at the top level."
            )
        print(msg, file=sys.stderr)
        raise SystemExit(1)

    version = raw.get("version")
    if version is None:
        msg = (
            f"CONFIG ERROR: {found_path} is missing the required 'version' field.\n"
            "Add 'version: 1' to the top of your config file."
        )
        print(msg, file=sys.stderr)
        raise SystemExit(1)

    if not isinstance(version, int) or version not in SUPPORTED_VERSIONS:
        msg = (
            f"CONFIG ERROR: Unsupported config version: {version}. "
            f"Supported versions: {sorted(SUPPORTED_VERSIONS)}."
        )
        print(msg, file=sys.stderr)
        raise SystemExit(1)

    config = Config.from_dict(raw, path=found_path)
    _apply_env_overrides(config)

    logger.debug("Config loaded", path=found_path, api_base_url=config.api.base_url)
    return config


def _apply_env_overrides(config: Config) -> None:
    """Apply environment variable overrides to a Config object in-place.

    Raises:
        SystemExit(1): If ENROLL_API_TIMEOUT is set but not a positive number.
    """
    env_base_url = os.environ.get("ENROLL_API_BASE_URL")
    if env_base_url:
        config.api.base_url = env_base_url.rstrip("/")

    env_timeout = os.environ.get("ENROLL_API_TIMEOUT")
    if env_timeout is not None:
        try:
            timeout = float(env_timeout)
        except ValueError:
            timeout = -1.0
        if timeout <= 0:
            msg = (
                f"CONFIG ERROR: ENROLL_API_TIMEOUT environment variable is not a "
                f"positive number: '{env_timeout}'"
            )
            print(msg, file=sys.stderr)
            raise SystemExit(1)
        config.api.timeout_s = timeout

    env_db = os.environ.get("ENROLL_CREDENTIALS_DB")
    if env_db:
        config.store.path = env_db
