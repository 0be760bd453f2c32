"""Remote credential validation.

``ApiCredentialValidator`` performs one lightweight authenticated GET against
the remote API and translates the outcome into ``RemoteRejected`` with a
``RejectReason`` and a message that is safe to show in the browser page.
Raw transport errors are logged, never returned to the page.

``StaticValidator`` is the test double: it accepts everything, or rejects
everything with a fixed reason.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol, runtime_checkable

import httpx

from enroll.constants import DEFAULT_API_BASE_URL, DEFAULT_API_TIMEOUT_S, VALIDATION_PATH
from enroll.errors import RejectReason, RemoteRejected
from enroll.utils.logger import get_logger

logger = get_logger(__name__)

_STATUS_MESSAGES: dict[int, tuple[RejectReason, str]] = {
    401: (
        RejectReason.UNAUTHORIZED,
        "Invalid or expired token. Please check your Personal Access Token",
    ),
    403: (
        RejectReason.FORBIDDEN,
        "Access denied. Your token may not have the required permissions",
    ),
    429: (
        RejectReason.RATE_LIMITED,
        "Rate limited. Please wait a moment and try again",
    ),
}


@runtime_checkable
class CredentialValidator(Protocol):
    async def validate(self, token: str, timeout_s: Optional[float] = None) -> None:
        """Return normally if the remote service accepts *token*.

        Raises:
            RemoteRejected: With a user-facing message.
        """
        ...


def extract_error_message(response: httpx.Response) -> str:
    """Best human-readable message from an error response body."""
    try:
        body: Any = response.json()
    except ValueError:
        return response.text.strip()

    if isinstance(body, dict):
        for field_name in ("error", "message"):
            value = body.get(field_name)
            if isinstance(value, str) and value:
                return value
        errors = body.get("errors")
        if isinstance(errors, list):
            messages = [
                e["message"] for e in errors
                if isinstance(e, dict) and isinstance(e.get("message"), str)
            ]
            if len(messages) == 1:
                return messages[0]
            if messages:
                return f"{len(messages)} errors: {'; '.join(messages)}"
    return response.text.strip()


def rejection_for_status(response: httpx.Response) -> RemoteRejected:
    status = response.status_code
    if status in _STATUS_MESSAGES:
        reason, message = _STATUS_MESSAGES[status]
        return RemoteRejected(reason, message, status_code=status)
    if status >= 500:
        return RemoteRejected(
            RejectReason.OTHER,
            f"The service returned a server error ({status}). Please try again later",
            status_code=status,
        )
    return RemoteRejected(
        RejectReason.OTHER,
        f"API error ({status}): {extract_error_message(response)}",
        status_code=status,
    )


class ApiCredentialValidator:
    """Validate a personal access token with ``GET /rest/v2/contracts?limit=1``.

    Args:
        base_url:  Remote API root.
        timeout_s: Default bound for one validation call.
        transport: Optional httpx transport (``httpx.MockTransport`` in tests).
    """

    def __init__(
        self,
        base_url: str = DEFAULT_API_BASE_URL,
        timeout_s: float = DEFAULT_API_TIMEOUT_S,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._transport = transport

    async def validate(self, token: str, timeout_s: Optional[float] = None) -> None:
        if not token:
            raise RemoteRejected(RejectReason.OTHER, "Token is required")

        timeout = timeout_s if timeout_s is not None else self.timeout_s
        url = f"{self.base_url}{VALIDATION_PATH}"

        try:
            async with httpx.AsyncClient(
                transport=self._transport,
                timeout=httpx.Timeout(timeout),
                follow_redirects=False,
            ) as client:
                response = await client.get(
                    url,
                    headers={
                        "Authorization": f"Bearer {token}",
                        "Accept": "application/json",
                    },
                )
        except httpx.TimeoutException as exc:
            logger.info("Remote validation timed out", url=url, error_type=type(exc).__name__)
            raise RemoteRejected(
                RejectReason.OTHER,
                "Connection timed out. Please try again",
            ) from exc
        except httpx.HTTPError as exc:
            logger.info("Remote validation transport error", url=url, error=str(exc))
            raise RemoteRejected(
                RejectReason.OTHER,
                "Connection failed. Check your network connection and try again",
            ) from exc

        if response.status_code >= 400:
            rejection = rejection_for_status(response)
            logger.info(
                "Remote validation rejected credential",
                status_code=response.status_code,
                reason=rejection.reason.value,
            )
            raise rejection

        logger.debug("Remote validation accepted credential", status_code=response.status_code)


class StaticValidator:
    """Validator with a fixed answer.

    ``StaticValidator()`` accepts every token; ``StaticValidator(reject=RejectReason.UNAUTHORIZED)``
    rejects every token with the canned message for that reason.
    """

    def __init__(self, reject: Optional[RejectReason] = None, message: str = "rejected") -> None:
        self.reject = reject
        self.message = message
        self.calls: list[str] = []

    async def validate(self, token: str, timeout_s: Optional[float] = None) -> None:
        self.calls.append(token)
        if self.reject is not None:
            raise RemoteRejected(self.reject, self.message)
