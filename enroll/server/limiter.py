"""Fixed-window attempt limiter for the enrollment endpoints.

Counting is delegated to the ``limits`` package (the engine behind slowapi):
a ``FixedWindowRateLimiter`` over ``MemoryStorage``, one item per policy and
identifiers ``(client, endpoint)``, so exhausting the budget on one endpoint
never blocks another. The call that pushes the count past the ceiling is
rejected and the counter keeps advancing, so retries inside the same window
keep failing.

Counting happens in a FastAPI dependency that runs after the anti-forgery
check, not in slowapi's route decorator, because the policy comes from the
per-server config rather than a module-level ``Limiter``.

The background sweep (``start_sweeper()`` / ``stop_sweeper()``) clears keys
whose window has elapsed; its lifetime is tied to the owning server.
"""

from __future__ import annotations

import asyncio
import threading
from typing import Optional

from limits import RateLimitItem, parse
from limits.storage import MemoryStorage
from limits.strategies import FixedWindowRateLimiter

from enroll.constants import (
    RATE_LIMIT_MAX_ATTEMPTS,
    RATE_LIMIT_SWEEP_INTERVAL_S,
    RATE_LIMIT_WINDOW_S,
)
from enroll.errors import RateLimited
from enroll.utils.logger import get_logger

logger = get_logger(__name__)


class RateLimiter:
    """Per-(client, endpoint) fixed-window counter.

    Args:
        max_attempts: Allowed calls per window.
        window_s:     Window length in seconds (whole seconds, minimum 1).
    """

    def __init__(
        self,
        max_attempts: int = RATE_LIMIT_MAX_ATTEMPTS,
        window_s: float = RATE_LIMIT_WINDOW_S,
    ) -> None:
        self.max_attempts = max_attempts
        self.window_s = max(1, int(window_s))
        self.item: RateLimitItem = parse(f"{max_attempts}/{self.window_s} seconds")
        self._storage = MemoryStorage()
        self._strategy = FixedWindowRateLimiter(self._storage)
        # (client, endpoint) pairs seen since the last sweep
        self._keys: set[tuple[str, str]] = set()
        self._lock = threading.Lock()
        self._sweeper: Optional[asyncio.Task[None]] = None

    def check(self, client: str, endpoint: str) -> None:
        """Record one attempt for *client* on *endpoint*.

        Raises:
            RateLimited: When this attempt exceeds ``max_attempts`` in the current window.
        """
        with self._lock:
            self._keys.add((client, endpoint))
        if not self._strategy.hit(self.item, client, endpoint):
            logger.warning("Rate limit exceeded", client=client, endpoint=endpoint)
            raise RateLimited()

    def attempts(self, client: str, endpoint: str) -> int:
        """Attempts counted in the current window, capped at ``max_attempts``."""
        stats = self._strategy.get_window_stats(self.item, client, endpoint)
        return self.max_attempts - stats.remaining

    def sweep(self) -> int:
        """Clear every key whose window has elapsed. Returns the number removed."""
        with self._lock:
            expired = [key for key in self._keys if self.attempts(*key) == 0]
            for key in expired:
                self._strategy.clear(self.item, *key)
                self._keys.discard(key)
        if expired:
            logger.debug("Rate limiter sweep", removed=len(expired))
        return len(expired)

    # ── Background sweep ──────────────────────────────────────────────────────

    def start_sweeper(self, interval_s: float = RATE_LIMIT_SWEEP_INTERVAL_S) -> asyncio.Task[None]:
        """Start the periodic sweep on the running event loop. Idempotent."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop(interval_s))
        return self._sweeper

    async def stop_sweeper(self) -> None:
        """Cancel the sweep task and wait for it to finish."""
        task, self._sweeper = self._sweeper, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    @property
    def sweeper_running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    async def _sweep_loop(self, interval_s: float) -> None:
        while True:
            await asyncio.sleep(interval_s)
            self.sweep()
