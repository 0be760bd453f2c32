"""Credential persistence and remote validation collaborators."""

from __future__ import annotations

from enroll.credentials.store import (
    Credential,
    CredentialStore,
    MemoryCredentialStore,
    SQLiteCredentialStore,
)
from enroll.credentials.validator import (
    ApiCredentialValidator,
    CredentialValidator,
    StaticValidator,
)

__all__ = [
    "ApiCredentialValidator",
    "Credential",
    "CredentialStore",
    "CredentialValidator",
    "MemoryCredentialStore",
    "SQLiteCredentialStore",
    "StaticValidator",
]
