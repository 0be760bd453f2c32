"""Mutable state for one enrollment session.

One ``SessionState`` exists per ``EnrollmentServer.start()`` call and is
discarded with the listener. It holds:

  - the anti-forgery token (generated once, never mutated; lock-free reads)
  - the pending result recorded by ``/submit``
  - the completion state machine: PENDING → SENT | CLOSED
  - the single-slot result channel and the shutdown signal the waiting
    caller selects on

The pending result and the completion state share one ``threading.Lock``.
``complete()`` and ``cancel()`` check-and-set the completion state under that
lock, so the result channel receives at most one value and a second
``/complete`` is a no-op.
"""

from __future__ import annotations

import asyncio
import hmac
import secrets
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from enroll.constants import CSRF_TOKEN_BYTES
from enroll.errors import CSRFMismatch


class SessionMode(str, Enum):
    """What the browser flow is for; changes page content and CLI handling only."""

    SETUP = "setup"
    MANAGE = "manage"


class CompletionState(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    CLOSED = "closed"


@dataclass(frozen=True)
class SetupResult:
    """Outcome handed back to the command-line caller."""

    account_name: str


class SessionState:
    """Anti-forgery token, pending result and completion signalling.

    Args:
        mode:       Session purpose (setup or manage).
        csrf_token: Fixed token for tests; generated from ``secrets`` when omitted.
    """

    def __init__(self, mode: SessionMode = SessionMode.SETUP, csrf_token: Optional[str] = None) -> None:
        self.mode = mode
        self.csrf_token: str = csrf_token or secrets.token_hex(CSRF_TOKEN_BYTES)
        self.session_id: str = secrets.token_hex(4)
        # Monotonic deadline of the waiting caller, if any
        self.deadline: Optional[float] = None

        self._lock = threading.Lock()
        self._pending: Optional[SetupResult] = None
        self._completion = CompletionState.PENDING

        self._results: asyncio.Queue[SetupResult] = asyncio.Queue(maxsize=1)
        self._shutdown = asyncio.Event()

    # ── Anti-forgery ─────────────────────────────────────────────────────────

    def verify_csrf(self, supplied: Optional[str]) -> None:
        """Constant-time comparison of *supplied* against the session token.

        Raises:
            CSRFMismatch: Header missing, empty, or different.
        """
        if not supplied:
            raise CSRFMismatch()
        if not hmac.compare_digest(supplied.encode("utf-8"), self.csrf_token.encode("utf-8")):
            raise CSRFMismatch()

    # ── Pending result ───────────────────────────────────────────────────────

    def record_result(self, account_name: str) -> bool:
        """Publish the account just persisted by ``/submit``.

        A later successful submission replaces an earlier one while the session
        is still pending. Once completion has been signalled nothing is recorded.

        Returns:
            True if the result was recorded.
        """
        with self._lock:
            if self._completion is not CompletionState.PENDING:
                return False
            self._pending = SetupResult(account_name=account_name)
            return True

    def pending_result(self) -> Optional[SetupResult]:
        with self._lock:
            return self._pending

    @property
    def completion(self) -> CompletionState:
        with self._lock:
            return self._completion

    # ── Completion ───────────────────────────────────────────────────────────

    def complete(self) -> bool:
        """Hand the pending result to the caller and fire the shutdown signal.

        Idempotent: only the first call after construction acts. With a
        pending result the state becomes SENT and the result is placed on the
        channel; without one it becomes CLOSED.

        Returns:
            True if this call performed the transition, False for a no-op.
        """
        with self._lock:
            if self._completion is not CompletionState.PENDING:
                return False
            if self._pending is not None:
                self._results.put_nowait(self._pending)
                self._completion = CompletionState.SENT
            else:
                self._completion = CompletionState.CLOSED
        self._shutdown.set()
        return True

    def cancel(self) -> bool:
        """Close the session without a result (caller cancelled or timed out).

        After this, ``/complete`` and ``/submit`` no longer affect the outcome.
        """
        with self._lock:
            if self._completion is not CompletionState.PENDING:
                return False
            self._completion = CompletionState.CLOSED
        self._shutdown.set()
        return True

    # ── Caller side ──────────────────────────────────────────────────────────

    async def next_result(self) -> SetupResult:
        return await self._results.get()

    def take_result(self) -> Optional[SetupResult]:
        """Non-blocking read of the result channel."""
        try:
            return self._results.get_nowait()
        except asyncio.QueueEmpty:
            return None

    async def wait_shutdown(self) -> None:
        await self._shutdown.wait()

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown.is_set()

    # ── Deadline ─────────────────────────────────────────────────────────────

    def remote_timeout(self, default_s: float) -> float:
        """Bound for one outbound validation call.

        Never longer than *default_s*, and never longer than what is left of
        the caller's deadline.
        """
        if self.deadline is None:
            return default_s
        remaining = self.deadline - time.monotonic()
        return max(0.001, min(default_s, remaining))
