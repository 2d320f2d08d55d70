import hashlib
import logging
import math
import os
import threading
import time
from typing import Callable, Dict, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from werkzeug.security import check_password_hash, generate_password_hash

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_LOCKOUT_SECONDS = 15 * 60
DEFAULT_ATTEMPT_WINDOW_SECONDS = 5 * 60

HASH_METHOD_PREFIXES = ("pbkdf2:", "scrypt:")
REDISPLAY_KEY_SALT = b"photoframe-redisplay-v1"
REDISPLAY_IV_BYTES = 12

security_logger = logging.getLogger("photoframe.security")


class RateLimitStatus:
    """Result of :meth:`RateLimiter.check`."""

    __slots__ = ("allowed", "attempts_remaining", "locked", "retry_after_minutes", "message")

    def __init__(
        self,
        allowed: bool,
        attempts_remaining: Optional[int] = None,
        locked: bool = False,
        retry_after_minutes: Optional[int] = None,
        message: str = "",
    ) -> None:
        self.allowed = allowed
        self.attempts_remaining = attempts_remaining
        self.locked = locked
        self.retry_after_minutes = retry_after_minutes
        self.message = message


class RateLimiter:
    """Per-key failure counter with a forgetful window and a timed lockout.

    State lives in memory only; restarting the process clears every record.
    """

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        lockout_seconds: float = DEFAULT_LOCKOUT_SECONDS,
        window_seconds: float = DEFAULT_ATTEMPT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_attempts = max(1, int(max_attempts))
        self.lockout_seconds = float(lockout_seconds)
        self.window_seconds = float(window_seconds)
        self._clock = clock
        self._records: Dict[str, dict] = {}
        self._lock = threading.Lock()

    def check(self, key: str) -> RateLimitStatus:
        with self._lock:
            now = self._clock()
            record = self._records.get(key)
            if record is None:
                return RateLimitStatus(True, attempts_remaining=self.max_attempts)

            lockout_until = record.get("lockoutUntil")
            if lockout_until and now < lockout_until:
                remaining = math.ceil((lockout_until - now) / 60)
                return RateLimitStatus(
                    False,
                    locked=True,
                    retry_after_minutes=remaining,
                    message=f"Too many failed attempts. Try again in {remaining} minutes.",
                )

            first_attempt = record.get("firstAttempt")
            if first_attempt and (now - first_attempt) > self.window_seconds:
                del self._records[key]
                return RateLimitStatus(True, attempts_remaining=self.max_attempts)

            if record["attempts"] >= self.max_attempts:
                record["lockoutUntil"] = now + self.lockout_seconds
                remaining = math.ceil(self.lockout_seconds / 60)
                return RateLimitStatus(
                    False,
                    locked=True,
                    retry_after_minutes=remaining,
                    message=f"Too many failed attempts. Account locked for {remaining} minutes.",
                )

            return RateLimitStatus(True, attempts_remaining=self.max_attempts - record["attempts"])

    def record_failure(self, key: str) -> None:
        with self._lock:
            now = self._clock()
            record = self._records.get(key)
            if record is None:
                self._records[key] = {"attempts": 1, "firstAttempt": now, "lockoutUntil": None}
                return
            record["attempts"] += 1
            if not record.get("firstAttempt"):
                record["firstAttempt"] = now

    def record_success(self, key: str) -> None:
        with self._lock:
            self._records.pop(key, None)

    def reset(self) -> None:
        with self._lock:
            self._records.clear()


def hash_secret(plain: str, method: str) -> str:
    return generate_password_hash(plain, method=method)


def is_hashed(value: Optional[str]) -> bool:
    """Recognize werkzeug's ``method$salt$hash`` format."""

    if not value or not isinstance(value, str):
        return False
    return value.startswith(HASH_METHOD_PREFIXES) and value.count("$") == 2


def verify_secret(plain: str, hashed: Optional[str]) -> bool:
    if not plain or not is_hashed(hashed):
        return False
    try:
        return check_password_hash(hashed, plain)
    except (TypeError, ValueError):
        security_logger.warning("hash_verify_malformed")
        return False


def secret_fingerprint(secret: str) -> str:
    """Derive a stable fingerprint of the active secret key."""

    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


class RedisplayCipher:
    """Reversible AES-GCM encryption used only to show a token link again."""

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("A server secret is required for redisplay encryption")
        kdf = Scrypt(salt=REDISPLAY_KEY_SALT, length=32, n=2 ** 14, r=8, p=1)
        self._aead = AESGCM(kdf.derive(secret.encode("utf-8")))
        self.fingerprint = secret_fingerprint(secret)

    def encrypt(self, plain: str) -> Dict[str, str]:
        iv = os.urandom(REDISPLAY_IV_BYTES)
        ciphertext = self._aead.encrypt(iv, plain.encode("utf-8"), None)
        return {"ciphertext": ciphertext.hex(), "iv": iv.hex()}

    def decrypt(self, payload: Optional[dict]) -> Optional[str]:
        if not isinstance(payload, dict):
            return None
        try:
            iv = bytes.fromhex(payload.get("iv") or "")
            ciphertext = bytes.fromhex(payload.get("ciphertext") or "")
            if len(iv) != REDISPLAY_IV_BYTES or not ciphertext:
                return None
            return self._aead.decrypt(iv, ciphertext, None).decode("utf-8")
        except (InvalidTag, ValueError, TypeError):
            security_logger.warning("redisplay_decrypt_failed")
            return None
