"""Session and credential gate.

The ``require_*`` and ``login_admin`` functions are plain decisions over a
session mapping and return :class:`AuthOutcome`; the decorators at the bottom
adapt them to Flask views.
"""

import logging
import threading
import time
from functools import wraps
from secrets import compare_digest
from typing import Callable, List, MutableMapping, Optional

from flask import current_app, g, jsonify, make_response, request, session

from .accounts import AccountManager, session_snapshot
from .errors import AuthOutcome
from .security import RateLimiter, hash_secret, is_hashed, verify_secret
from .storage import isoformat_utc, parse_timestamp
from .upload_tokens import UploadTokenManager

DEFAULT_SESSION_MAX_AGE = 24 * 60 * 60

security_logger = logging.getLogger("photoframe.security")


class AdminCredential:
    """The single server-configured admin password.

    A plaintext value from the environment is replaced by its hash in memory
    after the first successful login; nothing is written back.
    """

    def __init__(self, configured: str, hash_method: str) -> None:
        self._value = configured
        self._hash_method = hash_method
        self._lock = threading.Lock()

    @property
    def is_hashed(self) -> bool:
        return is_hashed(self._value)

    def verify(self, password: str) -> bool:
        current = self._value
        if is_hashed(current):
            return verify_secret(password, current)
        if not compare_digest(password.encode("utf-8"), current.encode("utf-8")):
            return False
        upgraded = hash_secret(password, self._hash_method)
        with self._lock:
            if self._value == current:
                self._value = upgraded
                security_logger.info("admin_credential_upgraded_in_memory")
        return True


def require_admin(
    session_data: MutableMapping,
    now: Optional[float] = None,
    max_age_seconds: int = DEFAULT_SESSION_MAX_AGE,
) -> AuthOutcome:
    if not session_data.get("authenticated"):
        return AuthOutcome.failure("AUTH_REQUIRED", "Authentication required")

    now = time.time() if now is None else now
    login_time = parse_timestamp(session_data.get("loginTime"))
    if login_time is None or (now - login_time) > max_age_seconds:
        session_data.clear()
        security_logger.info("admin_session_expired")
        return AuthOutcome.failure("SESSION_EXPIRED", "Session expired")
    return AuthOutcome.success()


def require_guest(session_data: MutableMapping) -> AuthOutcome:
    if session_data.get("authenticated"):
        return AuthOutcome.failure("ALREADY_AUTHENTICATED", "Already logged in as admin")
    return AuthOutcome.success()


def require_upload_capability(session_data: MutableMapping) -> AuthOutcome:
    if session_data.get("authenticated"):
        return AuthOutcome.success()
    account = session_data.get("accessAccount")
    if isinstance(account, dict) and account.get("uploadAccess"):
        return AuthOutcome.success(payload=account)
    return AuthOutcome.failure("UPLOAD_ACCESS_REQUIRED", "Upload access required")


def require_valid_upload_token(secret: Optional[str], tokens: UploadTokenManager) -> AuthOutcome:
    return tokens.validate(secret)


def login_admin(
    password: Optional[str],
    client_key: str,
    session_data: MutableMapping,
    credential: AdminCredential,
    rate_limiter: RateLimiter,
    now: Optional[float] = None,
) -> AuthOutcome:
    status = rate_limiter.check(client_key)
    if not status.allowed:
        security_logger.warning("admin_login_rate_limited retry_minutes=%s", status.retry_after_minutes)
        return AuthOutcome.failure(
            "RATE_LIMITED", status.message, retry_after_minutes=status.retry_after_minutes
        )

    if not password or not isinstance(password, str):
        return AuthOutcome.failure("VALIDATION_ERROR", "Password is required")

    if not credential.verify(password):
        rate_limiter.record_failure(client_key)
        after = rate_limiter.check(client_key)
        security_logger.warning("admin_login_failed attempts_remaining=%s", after.attempts_remaining or 0)
        return AuthOutcome.failure(
            "INVALID_PASSWORD", "Invalid password", attempts_remaining=after.attempts_remaining or 0
        )

    rate_limiter.record_success(client_key)
    session_data.clear()
    session_data["authenticated"] = True
    session_data["loginTime"] = isoformat_utc(time.time() if now is None else now)
    security_logger.info("admin_login_succeeded")
    return AuthOutcome.success(message="Login successful")


def logout_admin(session_data: MutableMapping) -> None:
    session_data.clear()


def granted_folders(session_data: MutableMapping) -> Optional[List[str]]:
    """Folders a requester is limited to, or None when unrestricted."""

    if session_data.get("authenticated"):
        return None
    account = session_data.get("accessAccount")
    if not isinstance(account, dict):
        return None
    folders = account.get("assignedFolders") or []
    return list(folders) or None


def client_key() -> str:
    return request.remote_addr or "unknown"


def outcome_response(outcome: AuthOutcome, **extra):
    payload = outcome.to_payload()
    payload.update(extra)
    if outcome.code == "SESSION_EXPIRED" or outcome.code == "AUTH_REQUIRED":
        payload.setdefault("redirect", "/login")
    response = make_response(jsonify(payload), outcome.status)
    if outcome.retry_after_minutes:
        response.headers["Retry-After"] = str(outcome.retry_after_minutes * 60)
    return response


def _services():
    return current_app.extensions["photoframe"]


def admin_required(view: Callable):
    @wraps(view)
    def wrapped(*args, **kwargs):
        services = _services()
        outcome = require_admin(session, max_age_seconds=services.session_max_age)
        if not outcome:
            return outcome_response(outcome)
        return view(*args, **kwargs)

    return wrapped


def guest_only(view: Callable):
    @wraps(view)
    def wrapped(*args, **kwargs):
        if session.get("authenticated"):
            # An expired admin session is cleared here and may log in again.
            require_admin(session, max_age_seconds=_services().session_max_age)
        outcome = require_guest(session)
        if not outcome:
            return outcome_response(outcome, redirect="/admin")
        return view(*args, **kwargs)

    return wrapped


def refresh_guest_session(session_data: MutableMapping, accounts: AccountManager) -> None:
    """Re-read the guest account behind the session from the store.

    A deleted account is dropped from the session; otherwise the snapshot is
    replaced so revoked upload access or changed folders apply immediately.
    """

    snapshot = session_data.get("accessAccount")
    if session_data.get("authenticated") or not isinstance(snapshot, dict):
        return
    current = accounts.find_account(snapshot.get("id"))
    if current is None:
        session_data.pop("accessAccount", None)
        security_logger.info("guest_session_dropped reason=account_removed")
        return
    refreshed = session_snapshot(current)
    if refreshed != snapshot:
        session_data["accessAccount"] = refreshed


def upload_access_required(view: Callable):
    @wraps(view)
    def wrapped(*args, **kwargs):
        services = _services()
        if session.get("authenticated"):
            outcome = require_admin(session, max_age_seconds=services.session_max_age)
            if not outcome:
                return outcome_response(outcome)
        refresh_guest_session(session, services.accounts)
        outcome = require_upload_capability(session)
        if not outcome:
            return outcome_response(outcome)
        return view(*args, **kwargs)

    return wrapped


def _extract_upload_token() -> Optional[str]:
    candidate = request.args.get("token") or request.form.get("token")
    if not candidate and request.is_json:
        payload = request.get_json(silent=True) or {}
        if isinstance(payload, dict) and isinstance(payload.get("token"), str):
            candidate = payload["token"]
    return (candidate or "").strip() or None


def upload_token_required(view: Callable):
    @wraps(view)
    def wrapped(*args, **kwargs):
        outcome = require_valid_upload_token(_extract_upload_token(), _services().tokens)
        if not outcome:
            return outcome_response(outcome)
        g.upload_token = outcome.payload
        return view(*args, **kwargs)

    return wrapped
