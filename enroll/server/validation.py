"""Input normalization and format checks for submitted credentials."""

from __future__ import annotations

import re

from enroll.constants import ACCOUNT_NAME_MAX_LEN, TOKEN_MAX_LEN
from enroll.errors import ValidationError

_ACCOUNT_NAME_RE = re.compile(r"[a-zA-Z0-9_-]+")


def sanitize_token(raw: str) -> str:
    """Trim whitespace and drop ASCII control characters (including DEL).

    Pasted tokens frequently carry invisible characters that would make a
    correct token fail remote validation.
    """
    return "".join(ch for ch in raw.strip() if ord(ch) >= 32 and ord(ch) != 127)


def normalize_account_name(raw: str) -> str:
    return raw.strip()


def validate_account_name(name: str) -> None:
    """Raises ValidationError unless *name* is 1-64 chars of [A-Za-z0-9_-]."""
    if not name:
        raise ValidationError("account name cannot be empty")
    if len(name) > ACCOUNT_NAME_MAX_LEN:
        raise ValidationError(f"account name too long (max {ACCOUNT_NAME_MAX_LEN} characters)")
    if not _ACCOUNT_NAME_RE.fullmatch(name):
        raise ValidationError(
            "account name contains invalid characters "
            "(use only letters, numbers, dash, underscore)"
        )


def validate_token(token: str) -> None:
    if not token:
        raise ValidationError("token cannot be empty")
    if len(token) > TOKEN_MAX_LEN:
        raise ValidationError(f"token too long (max {TOKEN_MAX_LEN} characters)")
