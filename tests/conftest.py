"""Root test configuration for enroll.

Keeps every test away from the real user environment: the config search
paths and ENROLL_* variables are cleared, and the credential database
defaults to a per-test temporary file.

Loggers are not cached so ``structlog.testing.capture_logs()`` sees events
from module-level loggers regardless of test order.
"""

from __future__ import annotations

from pathlib import Path

import pytest
import structlog

from enroll.credentials import store as store_module
from enroll.credentials.store import MemoryCredentialStore
from enroll.credentials.validator import StaticValidator
from enroll.server.app import create_app
from enroll.server.limiter import RateLimiter
from enroll.server.session import SessionMode, SessionState
from enroll.utils.logger import configure_logging

configure_logging(log_level="DEBUG")
structlog.configure(cache_logger_on_first_use=False)

CSRF_TOKEN = "a" * 64


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Strip ENROLL_* variables and point the default store at tmp_path."""
    for name in (
        "ENROLL_CONFIG",
        "ENROLL_API_BASE_URL",
        "ENROLL_API_TIMEOUT",
        "ENROLL_CREDENTIALS_DB",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr("enroll.config.DEFAULT_CONFIG_PATHS", [])
    monkeypatch.setattr(store_module, "_DEFAULT_DB_PATH", str(tmp_path / "default-credentials.db"))


@pytest.fixture(autouse=True)
def reset_rotation_warnings() -> None:
    """Stale-credential warnings fire once per process; forget them between tests."""
    store_module._warned_accounts.clear()


@pytest.fixture
def session() -> SessionState:
    return SessionState(SessionMode.SETUP, csrf_token=CSRF_TOKEN)


@pytest.fixture
def limiter() -> RateLimiter:
    return RateLimiter()


@pytest.fixture
def memory_store() -> MemoryCredentialStore:
    return MemoryCredentialStore()


@pytest.fixture
def accepting_validator() -> StaticValidator:
    return StaticValidator()


@pytest.fixture
def enroll_app(session, limiter, memory_store, accepting_validator):
    """App for one session with in-memory collaborators (no listener, no lifespan)."""
    return create_app(session, limiter, memory_store, accepting_validator)


@pytest.fixture
def csrf_headers() -> dict[str, str]:
    return {"X-CSRF-Token": CSRF_TOKEN}
