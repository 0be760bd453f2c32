"""Error taxonomy for the enrollment flow.

Fatal errors (``ServerBindError``) abort ``EnrollmentServer.start()``.
Per-request errors are caught in the route handlers and rendered as JSON;
they never terminate the listener. ``BrowserLaunchFailed`` is only ever logged.
"""

from __future__ import annotations

from enum import Enum

from enroll.constants import (
    MSG_INVALID_BODY,
    MSG_INVALID_CSRF,
    MSG_RATE_LIMITED,
)


class EnrollmentError(Exception):
    """Base class for every error raised by enroll."""

    code: str = "enrollment_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class ServerBindError(EnrollmentError):
    """The loopback listener could not bind a port. Fatal."""

    code = "server_bind_error"


class ListenerError(EnrollmentError):
    """The HTTP listener stopped before the session ended. Fatal."""

    code = "listener_error"


class CSRFMismatch(EnrollmentError):
    """Anti-forgery header missing or wrong.

    HTTP mapping: 403. Raised before any rate-limit accounting.
    """

    code = "csrf_mismatch"

    def __init__(self, message: str = MSG_INVALID_CSRF) -> None:
        super().__init__(message)


class RateLimited(EnrollmentError):
    """Too many attempts for this client and endpoint. HTTP mapping: 429."""

    code = "rate_limited"

    def __init__(self, message: str = MSG_RATE_LIMITED) -> None:
        super().__init__(message)


class MalformedRequest(EnrollmentError):
    """Request body could not be decoded. HTTP mapping: 400."""

    code = "malformed_request"

    def __init__(self, message: str = MSG_INVALID_BODY) -> None:
        super().__init__(message)


class ValidationError(EnrollmentError):
    """Account name or token has an invalid format."""

    code = "validation_error"


class RejectReason(str, Enum):
    """Why the remote service refused a credential."""

    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    RATE_LIMITED = "rate_limited"
    OTHER = "other"


class RemoteRejected(EnrollmentError):
    """The remote API did not accept the credential.

    ``message`` is always a human-readable explanation safe to show in the page.
    """

    code = "remote_rejected"

    def __init__(self, reason: RejectReason, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.reason = reason
        self.status_code = status_code


class StorageError(EnrollmentError):
    """The credential store failed to read or write."""

    code = "storage_error"


class CredentialNotFound(StorageError):
    """No credential is stored under the requested name."""

    code = "credential_not_found"


class SessionCancelled(EnrollmentError):
    """The session ended without a recorded result."""

    code = "session_cancelled"

    def __init__(self, message: str = "setup cancelled") -> None:
        super().__init__(message)


class EnrollmentTimeout(SessionCancelled):
    """The caller's deadline elapsed before the session completed."""

    code = "session_timeout"

    def __init__(self, message: str = "setup timed out") -> None:
        super().__init__(message)


class BrowserLaunchFailed(EnrollmentError):
    """The OS browser helper could not be started. Never fatal."""

    code = "browser_launch_failed"
