"""Unit tests for SessionState — anti-forgery token, pending result, completion."""

from __future__ import annotations

import asyncio
import threading
import time

import pytest

from enroll.errors import CSRFMismatch
from enroll.server.session import (
    CompletionState,
    SessionMode,
    SessionState,
    SetupResult,
)


class TestCsrfToken:
    def test_generated_token_is_64_hex_chars(self) -> None:
        session = SessionState()
        assert len(session.csrf_token) == 64
        int(session.csrf_token, 16)

    def test_tokens_differ_between_sessions(self) -> None:
        assert SessionState().csrf_token != SessionState().csrf_token

    def test_matching_token_accepted(self, session: SessionState) -> None:
        session.verify_csrf(session.csrf_token)

    @pytest.mark.parametrize("supplied", [None, "", "b" * 64, "a" * 63, "a" * 65])
    def test_wrong_or_missing_token_rejected(self, session: SessionState, supplied) -> None:
        with pytest.raises(CSRFMismatch) as exc_info:
            session.verify_csrf(supplied)
        assert exc_info.value.message == "Invalid CSRF token"

    def test_non_ascii_token_rejected(self, session: SessionState) -> None:
        with pytest.raises(CSRFMismatch):
            session.verify_csrf("é" * 32)


class TestPendingResult:
    def test_no_result_initially(self, session: SessionState) -> None:
        assert session.pending_result() is None
        assert session.completion is CompletionState.PENDING

    def test_later_submission_replaces_earlier(self, session: SessionState) -> None:
        assert session.record_result("first")
        assert session.record_result("second")
        assert session.pending_result() == SetupResult("second")

    def test_record_ignored_after_completion(self, session: SessionState) -> None:
        session.record_result("first")
        session.complete()
        assert not session.record_result("second")
        assert session.pending_result() == SetupResult("first")

    def test_record_ignored_after_cancel(self, session: SessionState) -> None:
        session.cancel()
        assert not session.record_result("late")
        assert session.pending_result() is None


class TestCompletion:
    def test_complete_with_result_sends_once(self, session: SessionState) -> None:
        session.record_result("work")

        assert session.complete() is True
        assert session.completion is CompletionState.SENT
        assert session.shutdown_requested
        assert session.take_result() == SetupResult("work")
        assert session.take_result() is None

    def test_second_complete_is_noop(self, session: SessionState) -> None:
        session.record_result("work")
        session.complete()

        assert session.complete() is False
        assert session.take_result() == SetupResult("work")
        assert session.take_result() is None

    def test_complete_without_result_closes(self, session: SessionState) -> None:
        assert session.complete() is True
        assert session.completion is CompletionState.CLOSED
        assert session.shutdown_requested
        assert session.take_result() is None

    def test_cancel_then_complete_sends_nothing(self, session: SessionState) -> None:
        session.record_result("work")
        assert session.cancel() is True
        assert session.complete() is False
        assert session.take_result() is None
        assert session.completion is CompletionState.CLOSED

    def test_cancel_after_complete_is_noop(self, session: SessionState) -> None:
        session.record_result("work")
        session.complete()
        assert session.cancel() is False
        assert session.completion is CompletionState.SENT

    def test_concurrent_completes_send_one_result(self, session: SessionState) -> None:
        session.record_result("work")
        outcomes: list[bool] = []
        barrier = threading.Barrier(8)

        def worker() -> None:
            barrier.wait()
            outcomes.append(session.complete())

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count(True) == 1
        assert session.take_result() == SetupResult("work")
        assert session.take_result() is None

    async def test_next_result_receives_completed_result(self, session: SessionState) -> None:
        session.record_result("work")
        waiter = asyncio.create_task(session.next_result())
        await asyncio.sleep(0)

        session.complete()

        assert await asyncio.wait_for(waiter, 1) == SetupResult("work")

    async def test_wait_shutdown_fires_on_cancel(self, session: SessionState) -> None:
        waiter = asyncio.create_task(session.wait_shutdown())
        await asyncio.sleep(0)

        session.cancel()

        await asyncio.wait_for(waiter, 1)


class TestRemoteTimeout:
    def test_default_without_deadline(self, session: SessionState) -> None:
        assert session.remote_timeout(10.0) == 10.0

    def test_capped_by_remaining_deadline(self, session: SessionState) -> None:
        session.deadline = time.monotonic() + 2.0
        assert session.remote_timeout(10.0) <= 2.0

    def test_default_when_deadline_is_far(self, session: SessionState) -> None:
        session.deadline = time.monotonic() + 3600
        assert session.remote_timeout(10.0) == 10.0

    def test_never_zero_after_deadline(self, session: SessionState) -> None:
        session.deadline = time.monotonic() - 5
        assert session.remote_timeout(10.0) > 0


def test_mode_is_kept() -> None:
    assert SessionState(SessionMode.MANAGE).mode is SessionMode.MANAGE
