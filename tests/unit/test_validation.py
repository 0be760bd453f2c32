"""Unit tests for credential input normalization and format checks."""

from __future__ import annotations

import pytest

from enroll.errors import ValidationError
from enroll.server.validation import (
    normalize_account_name,
    sanitize_token,
    validate_account_name,
    validate_token,
)


class TestSanitizeToken:
    def test_strips_surrounding_whitespace(self) -> None:
        assert sanitize_token("  tok-123 \n") == "tok-123"

    def test_drops_control_characters(self) -> None:
        assert sanitize_token("ab\x00c\x1fd\x7fe") == "abcde"

    def test_keeps_printable_characters(self) -> None:
        assert sanitize_token("abc.DEF_123-~") == "abc.DEF_123-~"

    def test_internal_tab_removed(self) -> None:
        assert sanitize_token("abc\tdef") == "abcdef"


class TestAccountName:
    @pytest.mark.parametrize("name", ["work", "Work_2", "a-b-c", "x" * 64])
    def test_valid_names(self, name: str) -> None:
        validate_account_name(name)

    def test_empty_rejected(self) -> None:
        with pytest.raises(ValidationError, match="cannot be empty"):
            validate_account_name("")

    def test_too_long_rejected(self) -> None:
        with pytest.raises(ValidationError, match=r"too long \(max 64 characters\)"):
            validate_account_name("x" * 65)

    @pytest.mark.parametrize("name", ["has space", "dots.not.ok", "semi;colon", "trailing\n", "ünïcode"])
    def test_invalid_characters_rejected(self, name: str) -> None:
        with pytest.raises(ValidationError, match="invalid characters"):
            validate_account_name(name)

    def test_normalize_trims_only(self) -> None:
        assert normalize_account_name("  Work  ") == "Work"


class TestToken:
    def test_valid_token(self) -> None:
        validate_token("x" * 4096)

    def test_empty_rejected(self) -> None:
        with pytest.raises(ValidationError, match="token cannot be empty"):
            validate_token("")

    def test_too_long_rejected(self) -> None:
        with pytest.raises(ValidationError, match=r"token too long \(max 4096 characters\)"):
            validate_token("x" * 4097)

    def test_whitespace_only_token_is_empty_after_sanitize(self) -> None:
        with pytest.raises(ValidationError, match="token cannot be empty"):
            validate_token(sanitize_token(" \t\r\n "))
