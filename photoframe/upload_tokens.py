import logging
import secrets
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from .errors import AuthOutcome, NotFound, StorageFailure, ValidationError
from .folder_access import normalize_folder
from .security import RedisplayCipher, hash_secret, verify_secret
from .storage import JsonRecordStore, isoformat_utc, parse_timestamp

logger = logging.getLogger("photoframe.tokens")

TOKEN_SECRET_BYTES = 32
DEFAULT_TOKEN_NAME = "Unnamed Token"
MUTABLE_FIELDS = ("name", "expiresAt", "uploadLimit", "enabled", "targetFolder")
PRIVATE_FIELDS = ("tokenHash", "encryptedToken", "secretFingerprint")


def _coerce_upload_limit(value: Any) -> Optional[int]:
    if value is None or value == "" or value == 0:
        return None
    if isinstance(value, bool):
        raise ValidationError("uploadLimit must be a positive integer or null")
    try:
        limit = int(value)
    except (TypeError, ValueError) as error:
        raise ValidationError("uploadLimit must be a positive integer or null") from error
    if limit < 0 or (isinstance(value, float) and value != limit):
        raise ValidationError("uploadLimit must be a positive integer or null")
    return limit or None


def _coerce_expiry(value: Any) -> Optional[str]:
    if value is None:
        return None
    timestamp = parse_timestamp(value)
    if timestamp is None:
        raise ValidationError("expiresAt must be an ISO-8601 timestamp, epoch milliseconds or null")
    return isoformat_utc(timestamp)


def token_summary(token: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in token.items() if key not in PRIVATE_FIELDS}


def remaining_uploads(token: Dict[str, Any]) -> Optional[int]:
    limit = token.get("uploadLimit")
    if not limit:
        return None
    return max(0, int(limit) - int(token.get("uploadCount") or 0))


class UploadTokenManager:
    """Shareable upload links: creation, administration and validation."""

    def __init__(
        self,
        store: JsonRecordStore,
        cipher: RedisplayCipher,
        hash_method: str,
        default_expiry_days: int = 30,
        default_target_folder: str = "",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.cipher = cipher
        self.hash_method = hash_method
        self.default_expiry_seconds = default_expiry_days * 24 * 60 * 60
        self.default_target_folder = normalize_folder(default_target_folder)
        self._clock = clock

    def _rejection(self, token: Dict[str, Any]) -> Optional[AuthOutcome]:
        """Return the first reason *token* cannot be used right now, if any."""

        if not token.get("enabled"):
            return AuthOutcome.failure("TOKEN_DISABLED", "This upload link has been disabled")
        expires_at = parse_timestamp(token.get("expiresAt"))
        if expires_at is not None and self._clock() > expires_at:
            return AuthOutcome.failure("TOKEN_EXPIRED", "This upload link has expired")
        if remaining_uploads(token) == 0:
            return AuthOutcome.failure("TOKEN_LIMIT_REACHED", "Upload limit reached for this link")
        return None

    def _status(self, token: Dict[str, Any]) -> str:
        rejection = self._rejection(token)
        if rejection is None:
            return "active"
        return rejection.code.replace("TOKEN_", "").lower()

    def _summarize(self, token: Dict[str, Any]) -> Dict[str, Any]:
        summary = token_summary(token)
        summary["status"] = self._status(token)
        return summary

    def create_token(
        self, fields: Optional[Dict[str, Any]] = None, created_by: Optional[str] = None
    ) -> Tuple[Dict[str, Any], str]:
        fields = fields or {}
        now = self._clock()

        if "expiresAt" in fields and fields["expiresAt"] is None:
            expires_at = None
        elif fields.get("expiresAt"):
            expires_at = _coerce_expiry(fields["expiresAt"])
        else:
            expires_at = isoformat_utc(now + self.default_expiry_seconds)

        name = fields.get("name")
        if name is not None and not isinstance(name, str):
            raise ValidationError("name must be a string")

        plain_token = secrets.token_urlsafe(TOKEN_SECRET_BYTES)
        token = {
            "id": secrets.token_hex(16),
            "tokenHash": hash_secret(plain_token, self.hash_method),
            "encryptedToken": self.cipher.encrypt(plain_token),
            "secretFingerprint": self.cipher.fingerprint,
            "name": (name or "").strip() or DEFAULT_TOKEN_NAME,
            "createdAt": isoformat_utc(now),
            "createdBy": created_by,
            "expiresAt": expires_at,
            "uploadLimit": _coerce_upload_limit(fields.get("uploadLimit")),
            "uploadCount": 0,
            "enabled": True,
            "targetFolder": normalize_folder(fields.get("targetFolder")) or self.default_target_folder,
        }
        with self.store.transaction() as tokens:
            tokens.append(token)

        logger.info(
            "upload_token_created id=%s expires=%s limit=%s",
            token["id"],
            token["expiresAt"] or "never",
            token["uploadLimit"] if token["uploadLimit"] is not None else "none",
        )
        return self._summarize(token), plain_token

    def list_tokens(self) -> List[Dict[str, Any]]:
        return [self._summarize(token) for token in self.store.load()]

    def get_token(self, token_id: str) -> Dict[str, Any]:
        token = next((entry for entry in self.store.load() if entry.get("id") == token_id), None)
        if token is None:
            raise NotFound("Token not found", code="TOKEN_NOT_FOUND")

        summary = self._summarize(token)
        summary["plainToken"] = None
        fingerprint = token.get("secretFingerprint")
        if fingerprint and fingerprint != self.cipher.fingerprint:
            logger.warning("upload_token_redisplay_skipped id=%s reason=secret_rotated", token_id)
        elif token.get("encryptedToken"):
            summary["plainToken"] = self.cipher.decrypt(token["encryptedToken"])
        return summary

    def update_token(self, token_id: str, fields: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        fields = fields or {}
        changes: Dict[str, Any] = {}
        for field in MUTABLE_FIELDS:
            if field not in fields:
                continue
            value = fields[field]
            if field == "name":
                if not isinstance(value, str) or not value.strip():
                    raise ValidationError("name must be a non-empty string")
                changes[field] = value.strip()
            elif field == "expiresAt":
                changes[field] = _coerce_expiry(value)
            elif field == "uploadLimit":
                changes[field] = _coerce_upload_limit(value)
            elif field == "enabled":
                changes[field] = bool(value)
            elif field == "targetFolder":
                changes[field] = normalize_folder(value if isinstance(value, str) else "") or self.default_target_folder

        with self.store.transaction() as tokens:
            token = next((entry for entry in tokens if entry.get("id") == token_id), None)
            if token is None:
                raise NotFound("Token not found", code="TOKEN_NOT_FOUND")
            token.update(changes)
            summary = self._summarize(token)

        logger.info("upload_token_updated id=%s fields=%s", token_id, ",".join(sorted(changes)) or "none")
        return summary

    def delete_token(self, token_id: str) -> None:
        with self.store.transaction() as tokens:
            remaining = [entry for entry in tokens if entry.get("id") != token_id]
            if len(remaining) == len(tokens):
                raise NotFound("Token not found", code="TOKEN_NOT_FOUND")
            tokens[:] = remaining
        logger.info("upload_token_deleted id=%s", token_id)

    def find_by_secret(self, plain_token: str) -> Optional[Dict[str, Any]]:
        for token in self.store.load():
            if verify_secret(plain_token, token.get("tokenHash")):
                return token
        return None

    def validate(self, plain_token: Optional[str]) -> AuthOutcome:
        if not plain_token or not isinstance(plain_token, str):
            return AuthOutcome.failure("TOKEN_REQUIRED", "Upload token is required")

        token = self.find_by_secret(plain_token.strip())
        if token is None:
            logger.info("upload_token_invalid")
            return AuthOutcome.failure("INVALID_TOKEN", "Invalid upload token")

        rejection = self._rejection(token)
        if rejection is not None:
            logger.info("upload_token_rejected id=%s reason=%s", token.get("id"), rejection.code)
            return rejection
        return AuthOutcome.success(payload=self._summarize(token))

    def increment_upload_count(self, token_id: str) -> bool:
        try:
            with self.store.lock:
                tokens = self.store.load()
                token = next((entry for entry in tokens if entry.get("id") == token_id), None)
                if token is None:
                    return False
                token["uploadCount"] = int(token.get("uploadCount") or 0) + 1
                self.store.save(tokens)
        except StorageFailure:
            logger.error("upload_token_increment_failed id=%s", token_id)
            return False
        return True

    def reserve_uploads(self, token_id: str, requested: int) -> AuthOutcome:
        """Claim up to *requested* upload slots on a token under the store lock.

        The rejection checks run again on the freshly loaded record, so two
        concurrent uploads can never push ``uploadCount`` past ``uploadLimit``.
        On success the payload is ``(granted, summary)`` and the count already
        includes the granted slots; hand unused ones back with
        :meth:`release_uploads`.
        """

        with self.store.lock:
            tokens = self.store.load()
            token = next((entry for entry in tokens if entry.get("id") == token_id), None)
            if token is None:
                return AuthOutcome.failure("INVALID_TOKEN", "Invalid upload token")
            rejection = self._rejection(token)
            if rejection is not None:
                logger.info("upload_token_rejected id=%s reason=%s", token_id, rejection.code)
                return rejection

            remaining = remaining_uploads(token)
            granted = requested if remaining is None else min(requested, remaining)
            token["uploadCount"] = int(token.get("uploadCount") or 0) + granted
            self.store.save(tokens)
            return AuthOutcome.success(payload=(granted, self._summarize(token)))

    def release_uploads(self, token_id: str, count: int) -> None:
        if count <= 0:
            return
        try:
            with self.store.lock:
                tokens = self.store.load()
                token = next((entry for entry in tokens if entry.get("id") == token_id), None)
                if token is None:
                    return
                token["uploadCount"] = max(0, int(token.get("uploadCount") or 0) - count)
                self.store.save(tokens)
        except StorageFailure:
            logger.error("upload_token_release_failed id=%s count=%d", token_id, count)
