"""EnrollmentServer — lifecycle of one browser-assisted enrollment session.

States:
  Created → Listening → (requests) → Completed → Terminated
  Cancelled is reachable from any non-terminal state.

``start()`` sequence:
  1. Bind an ephemeral TCP port on 127.0.0.1   (failure → ServerBindError)
  2. Serve the FastAPI app with uvicorn as a background task
  3. Launch the browser in a worker thread      (failure is logged only)
  4. Wait for the first of:
       result on the session channel   → return SetupResult
       listener task ends              → ListenerError
       shutdown signal without result  → SessionCancelled
       deadline elapsed                → EnrollmentTimeout
       caller cancels the task         → asyncio.CancelledError re-raised
  5. Shut the listener down gracefully (in-flight requests finish) in every case.

A server instance runs one session; ``start()`` may be called once.
"""

from __future__ import annotations

import asyncio
import contextlib
import socket
import time
from typing import Generator, Optional

import uvicorn

from enroll.config import Config
from enroll.constants import GRACEFUL_SHUTDOWN_TIMEOUT_S, LOOPBACK_HOST
from enroll.credentials.store import CredentialStore
from enroll.credentials.validator import CredentialValidator
from enroll.errors import (
    BrowserLaunchFailed,
    EnrollmentError,
    EnrollmentTimeout,
    ListenerError,
    ServerBindError,
    SessionCancelled,
)
from enroll.server.app import create_app
from enroll.server.browser import BrowserLauncher, Launcher
from enroll.server.limiter import RateLimiter
from enroll.server.session import SessionMode, SessionState, SetupResult
from enroll.utils.logger import clear_session_id, get_logger, set_session_id

logger = get_logger(__name__)


def bind_loopback(host: str = LOOPBACK_HOST, port: int = 0) -> socket.socket:
    """Bind and listen on *host*:*port* (0 = ephemeral).

    Raises:
        ServerBindError: The OS refused the bind.
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.bind((host, port))
        sock.listen(64)
        sock.setblocking(False)
    except OSError as exc:
        sock.close()
        raise ServerBindError(f"failed to start server: {exc}") from exc
    return sock


class _SessionServer(uvicorn.Server):
    """uvicorn server that leaves process signal handling to the CLI.

    Ctrl-C cancels the task running ``start()``, which then shuts the
    listener down itself.
    """

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self) -> Generator[None, None, None]:
        yield


class EnrollmentServer:
    """Owns the session, the rate limiter and the loopback listener.

    Args:
        store:     Where validated credentials are persisted.
        validator: Remote check for a candidate credential.
        mode:      SETUP (login) or MANAGE (account manager).
        config:    Policy values; defaults when omitted.
        launcher:  Browser capability; ``BrowserLauncher()`` when omitted.
        limiter:   Pre-built limiter (tests inject a tighter policy).
        session:   Pre-built session (tests inject a fixed token).
    """

    def __init__(
        self,
        store: CredentialStore,
        validator: CredentialValidator,
        *,
        mode: SessionMode = SessionMode.SETUP,
        config: Optional[Config] = None,
        launcher: Optional[Launcher] = None,
        limiter: Optional[RateLimiter] = None,
        session: Optional[SessionState] = None,
    ) -> None:
        self.config = config or Config.defaults()
        self.session = session or SessionState(mode)
        self.limiter = limiter or RateLimiter(
            max_attempts=self.config.rate_limit.max_attempts,
            window_s=self.config.rate_limit.window_s,
        )
        self.launcher: Launcher = launcher or BrowserLauncher()
        self.app = create_app(
            self.session,
            self.limiter,
            store,
            validator,
            remote_timeout_s=self.config.api.timeout_s,
            sweep_interval_s=self.config.rate_limit.sweep_interval_s,
        )

        self.port: Optional[int] = None
        self._listening = asyncio.Event()
        self._browser_task: Optional[asyncio.Task[None]] = None
        self._started = False

    @property
    def base_url(self) -> Optional[str]:
        if self.port is None:
            return None
        return f"http://{LOOPBACK_HOST}:{self.port}"

    @property
    def csrf_token(self) -> str:
        return self.session.csrf_token

    async def wait_until_listening(self) -> str:
        """Block until the port is bound; returns the base URL."""
        await self._listening.wait()
        assert self.base_url is not None
        return self.base_url

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def start(self, timeout: Optional[float] = None) -> SetupResult:
        """Run the session until it produces a result or ends.

        Args:
            timeout: Seconds before the session is abandoned (None = no deadline).

        Returns:
            SetupResult for the account saved and confirmed in the browser.

        Raises:
            ServerBindError:   No loopback port could be bound.
            ListenerError:     The HTTP listener stopped on its own.
            SessionCancelled:  Flow closed without saving an account.
            EnrollmentTimeout: *timeout* elapsed first.
            asyncio.CancelledError: The calling task was cancelled.
        """
        if self._started:
            raise EnrollmentError("an EnrollmentServer runs a single session")
        self._started = True

        set_session_id(self.session.session_id)
        if timeout is not None:
            self.session.deadline = time.monotonic() + timeout

        try:
            sock = bind_loopback(self.config.server.host)
        except ServerBindError as exc:
            logger.error("Enrollment server failed to bind", host=self.config.server.host, error=exc.message)
            clear_session_id()
            raise
        self.port = sock.getsockname()[1]

        server = _SessionServer(
            uvicorn.Config(
                self.app,
                lifespan="on",
                log_config=None,
                log_level="warning",
                access_log=False,
                timeout_graceful_shutdown=GRACEFUL_SHUTDOWN_TIMEOUT_S,
            )
        )
        serve_task = asyncio.create_task(server.serve(sockets=[sock]), name="enroll-listener")
        self._listening.set()
        logger.info("Enrollment server listening", url=self.base_url, mode=self.session.mode.value)

        self._browser_task = asyncio.create_task(self._open_browser(self.base_url))

        result_task = asyncio.create_task(self.session.next_result())
        shutdown_task = asyncio.create_task(self.session.wait_shutdown())
        waiters = {result_task, shutdown_task, serve_task}

        try:
            done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)

            if result_task in done:
                result = result_task.result()
                logger.info("Enrollment completed", account=result.account_name)
                return result

            if serve_task in done:
                exc = serve_task.exception()
                logger.error("Enrollment listener stopped unexpectedly", error=str(exc) if exc else None)
                raise ListenerError("server failed: listener stopped unexpectedly") from exc

            if shutdown_task in done:
                # The result may be queued without its getter having run yet
                result = self.session.take_result()
                if result is not None:
                    logger.info("Enrollment completed", account=result.account_name)
                    return result
                logger.info("Enrollment closed without a result")
                raise SessionCancelled()

            self.session.cancel()
            logger.info("Enrollment timed out", timeout_s=timeout)
            raise EnrollmentTimeout()

        except asyncio.CancelledError:
            self.session.cancel()
            logger.info("Enrollment cancelled by caller")
            raise

        finally:
            for task in (result_task, shutdown_task, self._browser_task):
                if task is not None and not task.done():
                    task.cancel()
            await self._shutdown_listener(server, serve_task)
            sock.close()
            clear_session_id()

    def run(self, timeout: Optional[float] = None) -> SetupResult:
        """Synchronous wrapper around ``start()`` for command-line use."""
        return asyncio.run(self.start(timeout=timeout))

    # ── Internals ────────────────────────────────────────────────────────────

    async def _open_browser(self, url: Optional[str]) -> None:
        if url is None:
            return
        try:
            await asyncio.to_thread(self.launcher.launch, url)
        except BrowserLaunchFailed as exc:
            logger.info(
                "Failed to open browser, user can navigate manually",
                url=url,
                error=exc.message,
            )

    async def _shutdown_listener(self, server: uvicorn.Server, serve_task: asyncio.Task[None]) -> None:
        # uvicorn returns without closing sockets or running lifespan shutdown
        # when should_exit is set before startup has finished
        while not server.started and not serve_task.done():
            await asyncio.sleep(0.01)
        server.should_exit = True
        if not serve_task.done():
            try:
                await serve_task
            except asyncio.CancelledError:
                pass
            except Exception as exc:  # noqa: BLE001
                logger.warning("Listener shutdown error (non-fatal)", error=str(exc))
        elif not serve_task.cancelled() and serve_task.exception() is not None:
            logger.debug("Listener had already failed", error=str(serve_task.exception()))
        logger.info("Enrollment server stopped", port=self.port)
