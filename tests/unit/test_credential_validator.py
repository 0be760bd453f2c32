"""Unit tests for ApiCredentialValidator — request shape and status mapping.

The remote API is replaced by ``httpx.MockTransport``; no network access.
"""

from __future__ import annotations

import httpx
import pytest

from enroll.credentials.validator import (
    ApiCredentialValidator,
    CredentialValidator,
    StaticValidator,
    extract_error_message,
)
from enroll.errors import RejectReason, RemoteRejected

BASE_URL = "https://api.example.test"


def _validator(handler) -> ApiCredentialValidator:
    return ApiCredentialValidator(BASE_URL, timeout_s=2.0, transport=httpx.MockTransport(handler))


def _responding(status: int, **kwargs):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, **kwargs)

    return handler


class TestRequestShape:
    async def test_sends_bearer_token_to_contracts_endpoint(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"data": []})

        await _validator(handler).validate("tok-123")

        assert len(seen) == 1
        request = seen[0]
        assert request.method == "GET"
        assert str(request.url) == f"{BASE_URL}/rest/v2/contracts?limit=1"
        assert request.headers["Authorization"] == "Bearer tok-123"

    async def test_trailing_slash_in_base_url(self) -> None:
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200)

        validator = ApiCredentialValidator(
            BASE_URL + "/", transport=httpx.MockTransport(handler)
        )
        await validator.validate("tok")

        assert seen == [f"{BASE_URL}/rest/v2/contracts?limit=1"]

    async def test_empty_token_rejected_without_request(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            pytest.fail("no request expected for an empty token")

        with pytest.raises(RemoteRejected) as exc_info:
            await _validator(handler).validate("")
        assert exc_info.value.message == "Token is required"

    async def test_redirect_is_not_followed(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(302, headers={"Location": "https://elsewhere.test/"})

        # Not followed, and not a rejection either
        await _validator(handler).validate("tok")


class TestStatusMapping:
    async def test_success(self) -> None:
        await _validator(_responding(200, json={"data": []})).validate("tok")

    @pytest.mark.parametrize(
        "status, reason, message",
        [
            (401, RejectReason.UNAUTHORIZED, "Invalid or expired token. Please check your Personal Access Token"),
            (403, RejectReason.FORBIDDEN, "Access denied. Your token may not have the required permissions"),
            (429, RejectReason.RATE_LIMITED, "Rate limited. Please wait a moment and try again"),
        ],
    )
    async def test_known_statuses(self, status: int, reason: RejectReason, message: str) -> None:
        with pytest.raises(RemoteRejected) as exc_info:
            await _validator(_responding(status, json={"error": "raw upstream text"})).validate("tok")

        assert exc_info.value.reason is reason
        assert exc_info.value.message == message
        assert exc_info.value.status_code == status

    async def test_server_error_is_generic(self) -> None:
        with pytest.raises(RemoteRejected) as exc_info:
            await _validator(_responding(503, text="stack trace here")).validate("tok")

        assert exc_info.value.reason is RejectReason.OTHER
        assert "server error (503)" in exc_info.value.message
        assert "stack trace" not in exc_info.value.message

    async def test_other_client_error_includes_body_message(self) -> None:
        handler = _responding(422, json={"errors": [{"message": "limit must be positive"}]})
        with pytest.raises(RemoteRejected) as exc_info:
            await _validator(handler).validate("tok")

        assert exc_info.value.reason is RejectReason.OTHER
        assert exc_info.value.message == "API error (422): limit must be positive"


class TestTransportErrors:
    async def test_connect_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused to 10.0.0.1", request=request)

        with pytest.raises(RemoteRejected) as exc_info:
            await _validator(handler).validate("tok")

        assert exc_info.value.reason is RejectReason.OTHER
        assert exc_info.value.message == "Connection failed. Check your network connection and try again"
        assert "10.0.0.1" not in exc_info.value.message

    async def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("read timed out", request=request)

        with pytest.raises(RemoteRejected) as exc_info:
            await _validator(handler).validate("tok")

        assert exc_info.value.message == "Connection timed out. Please try again"


class TestExtractErrorMessage:
    def test_error_field(self) -> None:
        assert extract_error_message(httpx.Response(400, json={"error": "bad"})) == "bad"

    def test_message_field(self) -> None:
        assert extract_error_message(httpx.Response(400, json={"message": "bad"})) == "bad"

    def test_multiple_errors(self) -> None:
        response = httpx.Response(400, json={"errors": [{"message": "a"}, {"message": "b"}]})
        assert extract_error_message(response) == "2 errors: a; b"

    def test_plain_text_body(self) -> None:
        assert extract_error_message(httpx.Response(400, text=" nope \n")) == "nope"


class TestStaticValidator:
    async def test_accepts_and_records(self) -> None:
        validator = StaticValidator()
        await validator.validate("tok")
        assert validator.calls == ["tok"]
        assert isinstance(validator, CredentialValidator)

    async def test_rejects_with_reason(self) -> None:
        validator = StaticValidator(reject=RejectReason.FORBIDDEN, message="no")
        with pytest.raises(RemoteRejected) as exc_info:
            await validator.validate("tok")
        assert exc_info.value.reason is RejectReason.FORBIDDEN
        assert exc_info.value.message == "no"
