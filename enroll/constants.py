"""Shared constants for enroll.

Rate-limit policy, input limits, header names and the canned user-facing
messages live here. Other modules import from here instead of repeating
literals.
"""

# ─── Rate-limit policy ────────────────────────────────────────────────────────

# Fixed window per (client, endpoint) key.
RATE_LIMIT_WINDOW_S: float = 15 * 60  # 15 minutes

# Attempts allowed per window; attempt MAX+1 inside the same window is rejected.
RATE_LIMIT_MAX_ATTEMPTS: int = 10

# Background sweep interval
RATE_LIMIT_SWEEP_INTERVAL_S: float = 5 * 60  # 5 minutes

# ─── Input limits ─────────────────────────────────────────────────────────────

ACCOUNT_NAME_MAX_LEN: int = 64
TOKEN_MAX_LEN: int = 4096

# ─── Anti-forgery ─────────────────────────────────────────────────────────────

CSRF_HEADER: str = "X-CSRF-Token"

# Bytes of entropy in the session token (hex-encoded → 64 chars)
CSRF_TOKEN_BYTES: int = 32

# ─── Remote validation ────────────────────────────────────────────────────────

DEFAULT_API_BASE_URL: str = "https://api.letsdeel.com"

# Cheapest authenticated endpoint on the remote API
VALIDATION_PATH: str = "/rest/v2/contracts?limit=1"

DEFAULT_API_TIMEOUT_S: float = 10.0

# ─── Credential store ─────────────────────────────────────────────────────────

CREDENTIAL_KEY_PREFIX: str = "account:"

# Age after which a stored credential should be rotated
CREDENTIAL_ROTATION_THRESHOLD_DAYS: int = 90

# ─── Listener ─────────────────────────────────────────────────────────────────

LOOPBACK_HOST: str = "127.0.0.1"

# Seconds uvicorn waits for in-flight requests during graceful shutdown
GRACEFUL_SHUTDOWN_TIMEOUT_S: int = 5

# ─── HTML security headers ────────────────────────────────────────────────────

HTML_SECURITY_HEADERS: dict[str, str] = {
    "Content-Security-Policy": (
        "default-src 'self'; script-src 'self' 'unsafe-inline'; "
        "style-src 'self' 'unsafe-inline'"
    ),
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
}

# ─── User-facing messages ─────────────────────────────────────────────────────

MSG_METHOD_NOT_ALLOWED = "Method not allowed"
MSG_INVALID_CSRF = "Invalid CSRF token"
MSG_RATE_LIMITED = "too many attempts, please try again later"
MSG_INVALID_BODY = "Invalid request body"
MSG_CONNECTION_OK = "Connection successful!"
MSG_SAVE_FAILED = "Failed to save credentials to secure storage"
MSG_INTERNAL_ERROR = "Internal server error"
