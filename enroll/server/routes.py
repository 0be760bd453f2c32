"""HTTP surface of the enrollment session.

  GET  /                 — setup page with the embedded anti-forgery token
  POST /validate         — test a credential against the remote API, no persistence
  POST /submit           — validate, persist, record the pending result
  GET  /success          — success page rendered from the server-held result
  POST /complete         — hand the result to the waiting caller (idempotent)
  GET  /accounts         — list stored accounts
  POST /remove-account   — delete a stored account

Order of checks on mutating routes (each short-circuits the next):
  method (405) → anti-forgery header (403) → rate limit (429) → body (400)
  → format validation → remote validation → persistence.

The anti-forgery dependency runs before the rate-limit dependency, so a
request without the right token never consumes a client's attempt budget.
Business failures are reported as ``200 {"success": false, "error": ...}``.

Handlers read their collaborators from ``request.app.state``:
``session``, ``limiter``, ``store``, ``validator``, ``remote_timeout_s``.
"""

from __future__ import annotations

import asyncio
from datetime import timezone
from typing import Any, Callable, Coroutine, TypeVar

import pydantic
from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse
from pydantic import BaseModel

from enroll.constants import (
    CSRF_HEADER,
    HTML_SECURITY_HEADERS,
    MSG_CONNECTION_OK,
    MSG_SAVE_FAILED,
)
from enroll.credentials.store import Credential, CredentialStore, normalize_name
from enroll.credentials.validator import CredentialValidator
from enroll.errors import (
    CSRFMismatch,
    MalformedRequest,
    RejectReason,
    RemoteRejected,
    StorageError,
    ValidationError,
)
from enroll.server.limiter import RateLimiter
from enroll.server.pages import render_setup_page, render_success_page
from enroll.server.session import SessionState
from enroll.server.validation import (
    normalize_account_name,
    sanitize_token,
    validate_account_name,
    validate_token,
)
from enroll.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["enrollment"])

_Model = TypeVar("_Model", bound=BaseModel)


# ─── Request Models ───────────────────────────────────────────────────────────


class CredentialRequest(BaseModel):
    """Body of POST /validate and POST /submit."""

    account_name: str = ""
    token: str = ""


class RemoveAccountRequest(BaseModel):
    """Body of POST /remove-account."""

    name: str = ""


# ─── Dependencies ─────────────────────────────────────────────────────────────


def client_address(request: Request) -> str:
    return request.client.host if request.client else "unknown"


async def require_csrf(request: Request) -> SessionState:
    """Reject the request with 403 unless ``X-CSRF-Token`` matches the session token."""
    session: SessionState = request.app.state.session
    try:
        session.verify_csrf(request.headers.get(CSRF_HEADER))
    except CSRFMismatch:
        logger.warning(
            "Anti-forgery token mismatch",
            client=client_address(request),
            path=request.url.path,
        )
        raise
    return session


def rate_limited(endpoint: str) -> Callable[..., Coroutine[Any, Any, SessionState]]:
    """Dependency factory: token check first, then one attempt charged to *endpoint*."""

    async def dependency(
        request: Request,
        session: SessionState = Depends(require_csrf),
    ) -> SessionState:
        limiter: RateLimiter = request.app.state.limiter
        limiter.check(client_address(request), endpoint)
        return session

    return dependency


# ─── Helpers ──────────────────────────────────────────────────────────────────


async def _decode_body(request: Request, model: type[_Model]) -> _Model:
    try:
        raw = await request.json()
    except ValueError as exc:
        raise MalformedRequest() from exc
    try:
        return model.model_validate(raw)
    except pydantic.ValidationError as exc:
        raise MalformedRequest() from exc


def _failure(message: str) -> dict[str, Any]:
    return {"success": False, "error": message}


async def _checked_credentials(request: Request, body: CredentialRequest) -> tuple[str, str]:
    """Normalize, format-check and remotely validate a submitted credential.

    Returns:
        (account_name, token) after normalization.

    Raises:
        ValidationError: Bad account name or token format.
        RemoteRejected:  The remote API refused the token.
    """
    account_name = normalize_account_name(body.account_name)
    token = sanitize_token(body.token)

    validate_account_name(account_name)
    validate_token(token)

    session: SessionState = request.app.state.session
    validator: CredentialValidator = request.app.state.validator
    timeout_s = session.remote_timeout(request.app.state.remote_timeout_s)

    try:
        await asyncio.wait_for(validator.validate(token, timeout_s=timeout_s), timeout=timeout_s)
    except asyncio.TimeoutError as exc:
        raise RemoteRejected(RejectReason.OTHER, "Connection timed out. Please try again") from exc

    return account_name, token


def _html(content: str) -> HTMLResponse:
    return HTMLResponse(content, headers=HTML_SECURITY_HEADERS)


# ─── Endpoints ────────────────────────────────────────────────────────────────


@router.get("/")
async def setup_page(request: Request) -> HTMLResponse:
    session: SessionState = request.app.state.session
    return _html(render_setup_page(session.csrf_token, session.mode))


@router.post("/validate")
async def validate_credentials(
    request: Request,
    session: SessionState = Depends(rate_limited("/validate")),
) -> dict[str, Any]:
    """Test a credential without saving it."""
    body = await _decode_body(request, CredentialRequest)
    try:
        await _checked_credentials(request, body)
    except (ValidationError, RemoteRejected) as exc:
        logger.info("Credential validation failed", code=exc.code)
        return _failure(exc.message)

    return {"success": True, "message": MSG_CONNECTION_OK}


@router.post("/submit")
async def submit_credentials(
    request: Request,
    session: SessionState = Depends(rate_limited("/submit")),
) -> dict[str, Any]:
    """Validate, persist, then publish the pending result.

    The result is recorded only after the store write succeeded, so
    ``/success`` and ``/complete`` never observe an unsaved account.
    """
    body = await _decode_body(request, CredentialRequest)
    try:
        account_name, token = await _checked_credentials(request, body)
    except (ValidationError, RemoteRejected) as exc:
        logger.info("Credential submission rejected", code=exc.code)
        return _failure(exc.message)

    store: CredentialStore = request.app.state.store
    try:
        await store.set(account_name, Credential(name=account_name, token=token))
    except StorageError as exc:
        logger.error("Failed to persist credentials", account=account_name, error=exc.message)
        return _failure(MSG_SAVE_FAILED)

    if not session.record_result(account_name):
        logger.info("Session already completed, result not recorded", account=account_name)

    logger.info("Credentials saved", account=account_name)
    return {"success": True, "account_name": account_name}


@router.get("/success")
async def success_page(request: Request) -> HTMLResponse:
    """Rendered from the session's own result; query parameters are ignored."""
    session: SessionState = request.app.state.session
    pending = session.pending_result()
    return _html(
        render_success_page(session.csrf_token, pending.account_name if pending else None)
    )


@router.post("/complete")
async def complete(session: SessionState = Depends(require_csrf)) -> dict[str, Any]:
    if session.complete():
        logger.info("Session completed", completion=session.completion.value)
    else:
        logger.debug("Duplicate completion ignored")
    return {"success": True}


@router.get("/accounts")
async def list_accounts(request: Request) -> dict[str, Any]:
    store: CredentialStore = request.app.state.store
    try:
        credentials = await store.list()
    except StorageError as exc:
        logger.error("Failed to list accounts", error=exc.message)
        return {"accounts": []}

    accounts = []
    for cred in credentials:
        created = (
            cred.created_at.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
            if cred.created_at is not None
            else None
        )
        accounts.append({"name": cred.name, "createdAt": created})
    return {"accounts": accounts}


@router.post("/remove-account")
async def remove_account(
    request: Request,
    session: SessionState = Depends(rate_limited("/remove-account")),
) -> dict[str, Any]:
    body = await _decode_body(request, RemoveAccountRequest)
    name = normalize_name(body.name)

    store: CredentialStore = request.app.state.store
    try:
        await store.delete(name)
    except StorageError as exc:
        logger.info("Account removal failed", account=name, error=exc.message)
        return _failure(f"Failed to remove account: {exc.message}")

    logger.info("Account removed", account=name)
    return {"success": True}
