import logging
import os
from pathlib import Path
from typing import List, Optional


BASE_DIR = Path(__file__).resolve().parent

DEFAULT_ADMIN_PASSWORD = "admin123"
DEFAULT_HASH_METHOD = "pbkdf2:sha256:600000"
DEFAULT_FOLDERS = "family,vacation,holidays,misc"

config_logger = logging.getLogger("photoframe.config")


class ConfigurationError(RuntimeError):
    """Raised when the process cannot start with the supplied environment."""


def _resolve_env_path(env_key: str, default: Path) -> Path:
    """Resolve an environment-provided path or fall back to *default*."""

    value = os.environ.get(env_key)
    if value:
        return Path(value).expanduser().resolve()
    return default.resolve()


def _safe_int_env(key: str, default: int, min_value: int = 1) -> int:
    """Safely parse integer environment variable with error handling."""
    raw_value = os.environ.get(key)
    if raw_value is None or raw_value.strip() == "":
        return default
    try:
        return max(min_value, int(raw_value))
    except (TypeError, ValueError):
        config_logger.warning(
            "Invalid value for %s: %s. Using default: %d", key, raw_value, default
        )
        return default


def _get_optional_bool_env(env_key: str) -> Optional[bool]:
    raw_value = os.environ.get(env_key)
    if raw_value is None:
        return None
    normalized = raw_value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return None


def _split_folders(raw_value: str) -> List[str]:
    return [part.strip().strip("/") for part in raw_value.split(",") if part.strip().strip("/")]


class Settings:
    """Runtime settings read once from the environment."""

    def __init__(self) -> None:
        env = os.environ

        self.session_secret = (env.get("SESSION_SECRET") or "").strip()
        if not self.session_secret:
            raise ConfigurationError(
                "SESSION_SECRET environment variable not set. "
                "Refusing to start without a session/encryption secret."
            )

        admin_password = env.get("ADMIN_PASSWORD") or ""
        if not admin_password:
            config_logger.warning(
                "ADMIN_PASSWORD environment variable not set. Using default password %r. "
                "Set ADMIN_PASSWORD for any real deployment.",
                DEFAULT_ADMIN_PASSWORD,
            )
            admin_password = DEFAULT_ADMIN_PASSWORD
        self.admin_password = admin_password

        self.storage_root = _resolve_env_path("PHOTOFRAME_STORAGE_ROOT", BASE_DIR)
        self.data_dir = _resolve_env_path("PHOTOFRAME_DATA_DIR", self.storage_root / "data")
        self.uploads_dir = _resolve_env_path("PHOTOFRAME_UPLOADS_DIR", self.storage_root / "uploads")
        self.logs_dir = _resolve_env_path("PHOTOFRAME_LOGS_DIR", self.storage_root / "logs")

        self.hash_method = (env.get("PHOTOFRAME_HASH_METHOD") or DEFAULT_HASH_METHOD).strip()

        self.max_auth_attempts = _safe_int_env("PHOTOFRAME_MAX_AUTH_ATTEMPTS", 5)
        self.lockout_minutes = _safe_int_env("PHOTOFRAME_LOCKOUT_MINUTES", 15)
        self.attempt_window_minutes = _safe_int_env("PHOTOFRAME_ATTEMPT_WINDOW_MINUTES", 5)

        self.session_hours = _safe_int_env("PHOTOFRAME_SESSION_HOURS", 24)
        self.token_default_days = _safe_int_env("PHOTOFRAME_TOKEN_DEFAULT_DAYS", 30)
        self.token_target_folder = (env.get("PHOTOFRAME_TOKEN_TARGET_FOLDER") or "").strip().strip("/")
        self.default_folders = _split_folders(env.get("PHOTOFRAME_DEFAULT_FOLDERS", DEFAULT_FOLDERS))

        self.max_file_size_mb = _safe_int_env("MAX_FILE_SIZE_MB", 10)
        self.rate_limit_storage = env.get("PHOTOFRAME_RATE_LIMIT_STORAGE", "memory://")
        route_limits = _get_optional_bool_env("PHOTOFRAME_ROUTE_LIMITS_ENABLED")
        self.route_limits_enabled = True if route_limits is None else route_limits

        cookie_secure = _get_optional_bool_env("SESSION_COOKIE_SECURE")
        self.session_cookie_secure = bool(cookie_secure)

        self.log_level = (env.get("LOG_LEVEL") or "INFO").upper()

    @property
    def accounts_path(self) -> Path:
        return self.data_dir / "access-accounts.json"

    @property
    def tokens_path(self) -> Path:
        return self.data_dir / "upload-tokens.json"

    @property
    def upload_metadata_path(self) -> Path:
        return self.data_dir / "upload-metadata.json"

    def ensure_directories(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.uploads_dir.mkdir(parents=True, exist_ok=True)
        self.logs_dir.mkdir(parents=True, exist_ok=True)
