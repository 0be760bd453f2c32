"""enroll server package.

Public API:
  - EnrollmentServer   — binds, serves, waits for completion, shuts down
  - SessionState       — anti-forgery token, pending result, completion signal
  - SessionMode        — SETUP (login) or MANAGE (account manager)
  - SetupResult        — account name handed back to the caller
  - RateLimiter        — fixed-window attempt counter per client and endpoint
  - create_app()       — FastAPI application for one session
"""

from __future__ import annotations

from enroll.server.app import create_app
from enroll.server.enrollment import EnrollmentServer
from enroll.server.limiter import RateLimiter
from enroll.server.session import SessionMode, SessionState, SetupResult

__all__ = [
    "EnrollmentServer",
    "RateLimiter",
    "SessionMode",
    "SessionState",
    "SetupResult",
    "create_app",
]
