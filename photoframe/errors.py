from typing import Any, Dict, Optional


class PhotoFrameError(Exception):
    """Base class for expected, user-facing failures."""

    code = "ERROR"
    status = 400

    def __init__(self, message: str, code: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status is not None:
            self.status = status

    def to_payload(self) -> dict:
        return {"success": False, "error": self.message, "code": self.code}


class ValidationError(PhotoFrameError):
    """Raised when a required field is missing or malformed."""

    code = "VALIDATION_ERROR"
    status = 400


class NotFound(PhotoFrameError):
    """Raised when an account or token id does not exist."""

    code = "NOT_FOUND"
    status = 404


class Forbidden(PhotoFrameError):
    """Raised when the requester may not touch a folder or file."""

    code = "FOLDER_ACCESS_DENIED"
    status = 403


class StorageFailure(PhotoFrameError):
    """Raised when a record store could not be written.

    Never surfaced verbatim: the web layer answers with a generic server error.
    """

    code = "SERVER_ERROR"
    status = 500


class AuthOutcome:
    """Tagged result of an authentication or authorization decision."""

    __slots__ = ("ok", "code", "message", "status", "attempts_remaining", "retry_after_minutes", "payload")

    def __init__(
        self,
        ok: bool,
        code: Optional[str] = None,
        message: str = "",
        status: int = 200,
        *,
        attempts_remaining: Optional[int] = None,
        retry_after_minutes: Optional[int] = None,
        payload: Any = None,
    ) -> None:
        self.ok = ok
        self.code = code
        self.message = message
        self.status = status
        self.attempts_remaining = attempts_remaining
        self.retry_after_minutes = retry_after_minutes
        self.payload = payload

    def __bool__(self) -> bool:
        return self.ok

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return f"AuthOutcome(ok={self.ok!r}, code={self.code!r})"

    @classmethod
    def success(cls, payload: Any = None, message: str = "") -> "AuthOutcome":
        return cls(True, message=message, payload=payload)

    @classmethod
    def failure(cls, code: str, message: str, **hints: Any) -> "AuthOutcome":
        return cls(False, code, message, OUTCOME_STATUS.get(code, 400), **hints)

    def to_payload(self) -> Dict[str, Any]:
        if self.ok:
            return {"success": True}
        payload: Dict[str, Any] = {"success": False, "error": self.message, "code": self.code}
        if self.attempts_remaining is not None:
            payload["attemptsRemaining"] = self.attempts_remaining
        if self.retry_after_minutes is not None:
            payload["remainingTime"] = self.retry_after_minutes
        return payload


OUTCOME_STATUS = {
    "VALIDATION_ERROR": 400,
    "NOT_FOUND": 404,
    "AUTH_REQUIRED": 401,
    "SESSION_EXPIRED": 401,
    "INVALID_PIN": 401,
    "INVALID_PASSWORD": 401,
    "TOKEN_REQUIRED": 401,
    "UPLOAD_ACCESS_REQUIRED": 401,
    "INVALID_TOKEN": 403,
    "TOKEN_DISABLED": 403,
    "TOKEN_EXPIRED": 403,
    "TOKEN_LIMIT_REACHED": 403,
    "ALREADY_AUTHENTICATED": 403,
    "FOLDER_ACCESS_DENIED": 403,
    "RATE_LIMITED": 429,
    "SERVER_ERROR": 500,
}
