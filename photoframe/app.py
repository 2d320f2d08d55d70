import logging
import math
import os
import re
import time
import uuid
from datetime import timedelta
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

from flask import Flask, Response, g, has_request_context, jsonify, request, send_file, session
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_wtf.csrf import CSRFError, CSRFProtect, generate_csrf
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from .accounts import AccountManager, public_view, session_snapshot
from .auth import (
    AdminCredential,
    admin_required,
    client_key,
    granted_folders,
    guest_only,
    login_admin,
    logout_admin,
    outcome_response,
    refresh_guest_session,
    require_admin,
    upload_access_required,
    upload_token_required,
)
from .config import Settings
from .errors import Forbidden, NotFound, PhotoFrameError, StorageFailure, ValidationError
from .files import is_image_name, list_folder, store_images
from .folder_access import (
    filter_listing,
    is_file_permitted,
    is_folder_permitted,
    is_write_permitted,
    resolve_safe_path,
)
from .security import RateLimiter, RedisplayCipher
from .storage import JsonRecordStore, isoformat_utc
from .upload_metadata import UploadMetadataStore
from .upload_tokens import UploadTokenManager, remaining_uploads

LOG_FILE_MAX_BYTES = 5 * 1024 * 1024  # 5 MB max log file size
LOG_FILE_BACKUP_COUNT = 3
BYTES_PER_MB = 1024 * 1024

LOGIN_RATE_LIMIT = "5 per 15 minutes"
TOKEN_VALIDATION_RATE_LIMIT = "20 per 5 minutes"
TOKEN_UPLOAD_RATE_LIMIT = "10 per hour"
TOKEN_MANAGEMENT_RATE_LIMIT = "30 per 15 minutes"
API_RATE_LIMIT = "100 per 15 minutes"

TOKEN_PUBLIC_FIELDS = ("id", "name", "uploadCount", "uploadLimit", "expiresAt", "targetFolder")

settings = Settings()
settings.ensure_directories()

numeric_level = getattr(logging, settings.log_level, logging.INFO)
logging.basicConfig(
    level=numeric_level,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

_CONTROL_CHAR_PATTERN = re.compile(r"[\x00-\x1f\x7f-\x9f\n\r]")


def sanitize_log_value(value: Any) -> Any:
    """Remove control characters from log values to prevent log injection."""

    if isinstance(value, str):
        escaped = value.replace("\n", "\\n").replace("\r", "\\r")
        return _CONTROL_CHAR_PATTERN.sub(
            lambda match: f"\\x{ord(match.group()):02x}", escaped
        )
    return value


class RequestAwareLogger:
    """Logger wrapper that prefixes messages with the current request id."""

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    def _with_request(self, message: str) -> str:
        if has_request_context():
            request_id = getattr(g, "request_id", None)
            if request_id:
                return f"request_id={request_id} {message}"
        return message

    def debug(self, msg: str, *args, **kwargs) -> None:
        self._logger.debug(self._with_request(msg), *args, **kwargs)

    def info(self, msg: str, *args, **kwargs) -> None:
        self._logger.info(self._with_request(msg), *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs) -> None:
        self._logger.warning(self._with_request(msg), *args, **kwargs)

    def error(self, msg: str, *args, **kwargs) -> None:
        self._logger.error(self._with_request(msg), *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs) -> None:
        self._logger.exception(self._with_request(msg), *args, **kwargs)

    def __getattr__(self, name: str):  # pragma: no cover - passthrough
        return getattr(self._logger, name)


def _configure_file_logging(logs_dir: Path) -> Path:
    """Attach a rotating file handler for application and lifecycle logs."""

    logs_dir.mkdir(parents=True, exist_ok=True)
    log_path = logs_dir / "application.log"
    root_logger = logging.getLogger()
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")

    for handler in root_logger.handlers:
        if isinstance(handler, RotatingFileHandler) and getattr(handler, "baseFilename", "") == str(log_path):
            handler.setLevel(numeric_level)
            handler.setFormatter(formatter)
            return log_path

    file_handler = RotatingFileHandler(
        log_path,
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUP_COUNT,
        encoding="utf-8",
    )
    file_handler.setLevel(numeric_level)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)
    return log_path


APP_LOG_PATH = _configure_file_logging(settings.logs_dir)

_base_lifecycle_logger = logging.getLogger("photoframe.lifecycle")
_base_lifecycle_logger.setLevel(numeric_level)
lifecycle_logger = RequestAwareLogger(_base_lifecycle_logger)
security_logger = RequestAwareLogger(logging.getLogger("photoframe.security"))


class PhotoFrameServices:
    """Stores, managers and limiters shared by every request."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.accounts_store = JsonRecordStore(settings.accounts_path)
        self.tokens_store = JsonRecordStore(settings.tokens_path)
        self.upload_metadata_store = JsonRecordStore(settings.upload_metadata_path)

        lockout_seconds = settings.lockout_minutes * 60
        window_seconds = settings.attempt_window_minutes * 60
        self.pin_rate_limiter = RateLimiter(settings.max_auth_attempts, lockout_seconds, window_seconds)
        self.admin_rate_limiter = RateLimiter(settings.max_auth_attempts, lockout_seconds, window_seconds)

        self.accounts = AccountManager(self.accounts_store, self.pin_rate_limiter, settings.hash_method)
        self.tokens = UploadTokenManager(
            self.tokens_store,
            RedisplayCipher(settings.session_secret),
            settings.hash_method,
            default_expiry_days=settings.token_default_days,
            default_target_folder=settings.token_target_folder,
        )
        self.upload_metadata = UploadMetadataStore(self.upload_metadata_store)
        self.admin_credential = AdminCredential(settings.admin_password, settings.hash_method)
        self.session_max_age = settings.session_hours * 60 * 60

    def initialize(self) -> None:
        for store in (self.accounts_store, self.tokens_store, self.upload_metadata_store):
            store.ensure()
        for folder in self.settings.default_folders:
            target = resolve_safe_path(self.settings.uploads_dir, folder)
            if target is None:
                lifecycle_logger.warning("default_folder_rejected folder=%s", sanitize_log_value(folder))
                continue
            target.mkdir(parents=True, exist_ok=True)


app = Flask(__name__)
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1)

app.config["SECRET_KEY"] = settings.session_secret
app.config["MAX_CONTENT_LENGTH"] = settings.max_file_size_mb * BYTES_PER_MB
app.config["SESSION_COOKIE_HTTPONLY"] = True
app.config["SESSION_COOKIE_SAMESITE"] = "Lax"
app.config["SESSION_COOKIE_SECURE"] = settings.session_cookie_secure
app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=settings.session_hours)
app.config["RATELIMIT_ENABLED"] = settings.route_limits_enabled
app.config["RATELIMIT_HEADERS_ENABLED"] = True
app.logger.setLevel(numeric_level)

if not settings.session_cookie_secure:
    security_logger.warning(
        "SESSION_COOKIE_SECURE is disabled. Cookies will be sent over plain HTTP. "
        "Set SESSION_COOKIE_SECURE=true when serving over HTTPS."
    )

limiter = Limiter(
    app=app,
    key_func=get_remote_address,
    default_limits=[],
    storage_uri=settings.rate_limit_storage,
)
csrf = CSRFProtect(app)

services = PhotoFrameServices(settings)
services.initialize()
app.extensions["photoframe"] = services


def _failed_response(response: Response) -> bool:
    return response.status_code >= 400


def _json_body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def _upload_url(plain_token: str) -> str:
    return f"{request.host_url}upload?{urlencode({'token': plain_token})}"


def _resolve_upload_path(raw_path: Optional[str]) -> Tuple[str, Path]:
    """Map a client path onto the uploads tree as ``(relative, absolute)``."""

    target = resolve_safe_path(settings.uploads_dir, raw_path or "")
    if target is None:
        raise ValidationError("Invalid path", code="INVALID_PATH")
    relative = target.relative_to(settings.uploads_dir.resolve()).as_posix()
    return ("" if relative == "." else relative), target


def _guest_account() -> Optional[Dict[str, Any]]:
    if session.get("authenticated"):
        return None
    account = session.get("accessAccount")
    return account if isinstance(account, dict) else None


def _split_listing(entries: List[Dict[str, Any]]) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    folders = [entry for entry in entries if entry.get("type") == "folder"]
    files = [entry for entry in entries if entry.get("type") != "folder"]
    return folders, files


def _uploaded_files(request_files) -> List[Any]:
    return [storage for storage in request_files.getlist("files") if storage and storage.filename]


def _ensure_can_delete(relative: str) -> None:
    account = _guest_account()
    if account is None:
        return
    if not is_file_permitted(relative, granted_folders(session)):
        raise Forbidden("You do not have access to this folder")
    if not services.upload_metadata.is_owned_by(account.get("id"), relative):
        raise Forbidden("You can only delete your own photos", code="NOT_OWNER")


@app.before_request
def add_request_id() -> None:
    """Assign a request identifier for downstream logging."""

    g.request_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)


@app.after_request
def log_request_completion(response: Response):
    lifecycle_logger.info(
        "request_completed method=%s path=%s status=%d",
        request.method,
        sanitize_log_value(request.path),
        response.status_code,
    )
    return response


@app.after_request
def add_security_headers(response: Response):
    """Attach security-focused response headers."""

    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
    response.headers["Content-Security-Policy"] = (
        "default-src 'self'; "
        "script-src 'self'; "
        "style-src 'self' 'unsafe-inline'; "
        "img-src 'self' data: blob:; "
        "connect-src 'self';"
    )
    return response


@app.after_request
def add_request_id_header(response: Response):
    if hasattr(g, "request_id"):
        response.headers["X-Request-ID"] = g.request_id
    return response


def _server_error():
    return jsonify({"success": False, "error": "Server error", "code": "SERVER_ERROR"}), 500


@app.errorhandler(PhotoFrameError)
def handle_photoframe_error(error: PhotoFrameError):
    if isinstance(error, StorageFailure):
        lifecycle_logger.error(
            "storage_failure path=%s", sanitize_log_value(request.path), exc_info=error
        )
        return _server_error()
    lifecycle_logger.info(
        "request_rejected path=%s code=%s", sanitize_log_value(request.path), error.code
    )
    return jsonify(error.to_payload()), error.status


@app.errorhandler(CSRFError)
def handle_csrf_error(error):
    security_logger.warning("csrf_validation_failed path=%s", sanitize_log_value(request.path))
    description = getattr(error, "description", "Invalid CSRF token")
    return (
        jsonify({"success": False, "error": description, "code": "CSRF_VALIDATION_FAILED"}),
        403,
    )


@app.errorhandler(413)
def handle_file_too_large(error):
    limit = settings.max_file_size_mb
    return (
        jsonify(
            {
                "success": False,
                "error": f"File too large. Maximum upload size is {limit} MB.",
                "code": "FILE_TOO_LARGE",
            }
        ),
        413,
    )


@app.errorhandler(429)
def handle_rate_limit(error):
    retry_after = settings.lockout_minutes * 60
    current = limiter.current_limit
    if current is not None:
        retry_after = max(1, int(math.ceil(current.reset_at - time.time())))
    remaining_minutes = max(1, int(math.ceil(retry_after / 60)))

    security_logger.warning(
        "route_rate_limited path=%s limit=%s retry_after=%d",
        sanitize_log_value(request.path),
        getattr(error, "description", ""),
        retry_after,
    )
    response = jsonify(
        {
            "success": False,
            "error": f"Too many requests. Try again in {remaining_minutes} minutes.",
            "code": "RATE_LIMITED",
            "remainingTime": remaining_minutes,
        }
    )
    response.status_code = 429
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.errorhandler(404)
def handle_not_found(error):
    return jsonify({"success": False, "error": "Not found", "code": "NOT_FOUND"}), 404


@app.errorhandler(Exception)
def handle_unexpected_error(error: Exception):
    if isinstance(error, HTTPException):
        return error
    lifecycle_logger.error(
        "unhandled_exception path=%s", sanitize_log_value(request.path), exc_info=error
    )
    return _server_error()


@app.route("/api/health")
def health():
    checks = {
        "data": settings.data_dir.is_dir() and os.access(settings.data_dir, os.W_OK),
        "uploads": settings.uploads_dir.is_dir() and os.access(settings.uploads_dir, os.W_OK),
    }
    healthy = all(checks.values())
    body = {
        "status": "ok" if healthy else "degraded",
        "checks": checks,
        "timestamp": isoformat_utc(time.time()),
    }
    return jsonify(body), 200 if healthy else 503


@app.route("/api/auth/csrf")
def csrf_token():
    return jsonify({"csrfToken": generate_csrf()})


@app.route("/api/auth/login", methods=["POST"])
@limiter.limit(LOGIN_RATE_LIMIT, deduct_when=_failed_response)
@guest_only
def api_login():
    payload = _json_body()
    password = payload.get("password", request.form.get("password"))
    outcome = login_admin(
        password,
        client_key(),
        session,
        services.admin_credential,
        services.admin_rate_limiter,
    )
    if not outcome:
        return outcome_response(outcome)
    session.permanent = True
    return jsonify({"success": True, "message": outcome.message, "redirect": "/admin"})


@app.route("/api/auth/logout", methods=["POST"])
def api_logout():
    logout_admin(session)
    return jsonify({"success": True, "redirect": "/login"})


@app.route("/api/auth/status")
def api_auth_status():
    authenticated = False
    if session.get("authenticated"):
        authenticated = bool(require_admin(session, max_age_seconds=services.session_max_age))
    return jsonify(
        {
            "authenticated": authenticated,
            "loginTime": session.get("loginTime") if authenticated else None,
        }
    )


@app.route("/api/auth/pin", methods=["POST"])
@limiter.limit(LOGIN_RATE_LIMIT, deduct_when=_failed_response)
def api_pin_login():
    payload = _json_body()
    outcome = services.accounts.authenticate_by_pin(
        payload.get("pin", request.form.get("pin")), client_key()
    )
    if not outcome:
        return outcome_response(outcome)

    account = outcome.payload
    session.clear()
    session["accessAccount"] = session_snapshot(account)
    redirect_to = "/guest-upload" if account.get("uploadAccess") else "/slideshow"
    return jsonify({"success": True, "account": public_view(account), "redirect": redirect_to})


@app.route("/api/auth/session", methods=["GET"])
def api_session():
    return jsonify(
        {
            "success": True,
            "authenticated": bool(session.get("authenticated")),
            "account": _guest_account(),
        }
    )


@app.route("/api/auth/session", methods=["DELETE"])
def api_clear_session():
    session.pop("accessAccount", None)
    return jsonify({"success": True})


@app.route("/api/access-accounts", methods=["GET"])
@limiter.limit(API_RATE_LIMIT)
@admin_required
def list_access_accounts():
    return jsonify({"success": True, "accounts": services.accounts.list_accounts()})


@app.route("/api/access-accounts", methods=["POST"])
@limiter.limit(API_RATE_LIMIT)
@admin_required
def create_access_account():
    payload = _json_body()
    account = services.accounts.create_account(
        payload.get("name"),
        payload.get("pin"),
        payload.get("assignedFolders"),
        payload.get("uploadAccess", False),
    )
    return jsonify({"success": True, "account": account}), 201


@app.route("/api/access-accounts/<account_id>", methods=["PUT"])
@limiter.limit(API_RATE_LIMIT)
@admin_required
def update_access_account(account_id: str):
    payload = _json_body()
    account = services.accounts.update_account(
        account_id,
        payload.get("name"),
        payload.get("pin"),
        payload.get("assignedFolders"),
        payload.get("uploadAccess"),
    )
    return jsonify({"success": True, "account": account})


@app.route("/api/access-accounts/<account_id>", methods=["DELETE"])
@limiter.limit(API_RATE_LIMIT)
@admin_required
def delete_access_account(account_id: str):
    services.accounts.delete_account(account_id)
    return jsonify({"success": True, "message": "Account deleted"})


@app.route("/api/upload-tokens", methods=["GET"])
@limiter.limit(TOKEN_MANAGEMENT_RATE_LIMIT)
@admin_required
def list_upload_tokens():
    return jsonify({"success": True, "tokens": services.tokens.list_tokens()})


@app.route("/api/upload-tokens", methods=["POST"])
@limiter.limit(TOKEN_MANAGEMENT_RATE_LIMIT)
@admin_required
def create_upload_token():
    summary, plain_token = services.tokens.create_token(_json_body(), created_by="admin")
    return (
        jsonify(
            {
                "success": True,
                "token": summary,
                "plainToken": plain_token,
                "uploadUrl": _upload_url(plain_token),
            }
        ),
        201,
    )


@app.route("/api/upload-tokens/validate", methods=["GET"])
@limiter.limit(TOKEN_VALIDATION_RATE_LIMIT)
@upload_token_required
def validate_upload_token():
    token = g.upload_token
    return jsonify(
        {
            "success": True,
            "token": {field: token.get(field) for field in TOKEN_PUBLIC_FIELDS},
            "remainingUploads": remaining_uploads(token),
        }
    )


@app.route("/api/upload-tokens/<token_id>", methods=["GET"])
@limiter.limit(TOKEN_MANAGEMENT_RATE_LIMIT)
@admin_required
def get_upload_token(token_id: str):
    token = services.tokens.get_token(token_id)
    if token.get("plainToken"):
        token["uploadUrl"] = _upload_url(token["plainToken"])
    return jsonify({"success": True, "token": token})


@app.route("/api/upload-tokens/<token_id>", methods=["PUT", "PATCH"])
@limiter.limit(TOKEN_MANAGEMENT_RATE_LIMIT)
@admin_required
def update_upload_token(token_id: str):
    token = services.tokens.update_token(token_id, _json_body())
    return jsonify({"success": True, "token": token})


@app.route("/api/upload-tokens/<token_id>", methods=["DELETE"])
@limiter.limit(TOKEN_MANAGEMENT_RATE_LIMIT)
@admin_required
def delete_upload_token(token_id: str):
    services.tokens.delete_token(token_id)
    return jsonify({"success": True, "message": "Token deleted"})


@csrf.exempt
@app.route("/api/token-upload", methods=["POST"])
@limiter.limit(TOKEN_UPLOAD_RATE_LIMIT)
@upload_token_required
def token_upload():
    token = g.upload_token
    files = _uploaded_files(request.files)
    if not files:
        raise ValidationError("No files uploaded")

    relative, target = _resolve_upload_path(token.get("targetFolder"))
    reservation = services.tokens.reserve_uploads(token["id"], len(files))
    if not reservation:
        return outcome_response(reservation)
    granted, reserved_token = reservation.payload

    saved: List[Dict[str, Any]] = []
    try:
        saved, rejected = store_images(files, target, relative, limit=granted)
    finally:
        services.tokens.release_uploads(token["id"], granted - len(saved))

    lifecycle_logger.info(
        "token_upload_completed token=%s saved=%d rejected=%d",
        token["id"],
        len(saved),
        len(rejected),
    )
    if not saved:
        return (
            jsonify(
                {
                    "success": False,
                    "error": "No valid images uploaded",
                    "code": "VALIDATION_ERROR",
                    "rejected": rejected,
                }
            ),
            400,
        )

    remaining = remaining_uploads(reserved_token)
    if remaining is not None:
        remaining += granted - len(saved)
    return jsonify(
        {
            "success": True,
            "message": f"Uploaded {len(saved)} image(s)",
            "files": saved,
            "rejected": rejected,
            "remainingUploads": remaining,
        }
    )


@app.route("/api/folders")
def list_folders():
    if session.get("authenticated"):
        require_admin(session, max_age_seconds=services.session_max_age)
    refresh_guest_session(session, services.accounts)
    assigned = granted_folders(session)

    relative, target = _resolve_upload_path(request.args.get("path", ""))
    if not target.is_dir():
        raise NotFound("Folder not found", code="FOLDER_NOT_FOUND")
    if not is_folder_permitted(relative, assigned):
        raise Forbidden("You do not have access to this folder")

    folders, files = _split_listing(filter_listing(list_folder(settings.uploads_dir, target), assigned))
    return jsonify({"success": True, "currentPath": relative, "folders": folders, "files": files})


@app.route("/uploads/<path:filename>")
def serve_upload(filename: str):
    target = resolve_safe_path(settings.uploads_dir, filename)
    if target is None or not target.is_file() or not is_image_name(target.name):
        lifecycle_logger.info("upload_serve_missing path=%s", sanitize_log_value(filename))
        raise NotFound("Image not found", code="IMAGE_NOT_FOUND")
    try:
        return send_file(target)
    except FileNotFoundError:
        lifecycle_logger.warning("upload_serve_missing_race path=%s", sanitize_log_value(filename))
        raise NotFound("Image not found", code="IMAGE_NOT_FOUND")


@app.route("/api/guest/folders")
@upload_access_required
def guest_folders():
    assigned = granted_folders(session)
    relative, target = _resolve_upload_path(request.args.get("path", ""))
    if not target.is_dir():
        raise NotFound("Folder not found", code="FOLDER_NOT_FOUND")
    if not is_folder_permitted(relative, assigned):
        raise Forbidden("You do not have access to this folder")

    folders, files = _split_listing(filter_listing(list_folder(settings.uploads_dir, target), assigned))
    account = _guest_account()
    if account is not None:
        owned = {entry.get("filePath") for entry in services.upload_metadata.uploads_by_account(account.get("id"))}
        files = [dict(entry, ownedByUser=True) for entry in files if entry["path"] in owned]
    return jsonify({"success": True, "currentPath": relative, "folders": folders, "files": files})


@app.route("/api/guest/upload", methods=["POST"])
@upload_access_required
def guest_upload():
    relative, target = _resolve_upload_path(request.form.get("path", ""))
    if not is_write_permitted(relative, granted_folders(session)):
        raise Forbidden("You do not have access to this folder")
    if target.exists() and not target.is_dir():
        raise ValidationError("Invalid path", code="INVALID_PATH")

    files = _uploaded_files(request.files)
    if not files:
        raise ValidationError("No files uploaded")

    saved, rejected = store_images(files, target, relative)
    account = _guest_account()
    if account is not None and saved:
        services.upload_metadata.record_uploads(
            account.get("id"), account.get("name"), [entry["path"] for entry in saved]
        )

    lifecycle_logger.info(
        "guest_upload_completed account=%s folder=%s saved=%d rejected=%d",
        account.get("id") if account else "admin",
        sanitize_log_value(relative),
        len(saved),
        len(rejected),
    )
    if not saved:
        return (
            jsonify(
                {
                    "success": False,
                    "error": "No valid images uploaded",
                    "code": "VALIDATION_ERROR",
                    "rejected": rejected,
                }
            ),
            400,
        )
    return jsonify(
        {
            "success": True,
            "message": "Images uploaded successfully",
            "files": saved,
            "rejected": rejected,
        }
    )


@app.route("/api/guest/images", methods=["DELETE"])
@upload_access_required
def guest_delete_image():
    raw_path = request.args.get("path")
    if not raw_path:
        raise ValidationError("Invalid path", code="INVALID_PATH")
    relative, target = _resolve_upload_path(raw_path)
    _ensure_can_delete(relative)
    if not target.is_file():
        raise NotFound("Image not found", code="IMAGE_NOT_FOUND")

    target.unlink()
    services.upload_metadata.remove(relative)
    lifecycle_logger.info("guest_image_deleted path=%s", sanitize_log_value(relative))
    return jsonify({"success": True, "message": "Image deleted successfully"})


@app.route("/api/guest/images/batch", methods=["POST"])
@upload_access_required
def guest_batch_delete_images():
    paths = _json_body().get("paths")
    if not isinstance(paths, list) or not paths or not all(isinstance(path, str) for path in paths):
        raise ValidationError("Invalid paths provided")

    resolved = [_resolve_upload_path(path) for path in paths]
    for relative, _ in resolved:
        _ensure_can_delete(relative)

    deleted_count = 0
    errors: List[str] = []
    for relative, target in resolved:
        if not target.is_file():
            errors.append(f"Image not found: {relative}")
            continue
        try:
            target.unlink()
        except OSError as error:
            lifecycle_logger.warning(
                "guest_image_delete_failed path=%s error=%s",
                sanitize_log_value(relative),
                sanitize_log_value(str(error)),
            )
            errors.append(f"Failed to delete: {relative}")
            continue
        deleted_count += 1

    services.upload_metadata.remove_many([relative for relative, _ in resolved])

    body = {"deletedCount": deleted_count, "failedCount": len(errors), "errors": errors}
    if errors:
        body.update(
            success=False,
            message=f"Deleted {deleted_count} images, failed to delete {len(errors)}",
        )
        return jsonify(body), 207
    body.update(success=True, message=f"Successfully deleted {deleted_count} images")
    return jsonify(body)


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.environ.get("PORT", "3000")), debug=False, threaded=True)
