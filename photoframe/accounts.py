import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

from .errors import AuthOutcome, NotFound, ValidationError
from .folder_access import normalize_folder
from .security import RateLimiter, hash_secret, is_hashed, verify_secret
from .storage import JsonRecordStore, isoformat_utc

logger = logging.getLogger("photoframe.accounts")

PUBLIC_FIELDS = ("id", "name", "assignedFolders", "uploadAccess", "createdAt", "lastAccessed")


def _normalize_pin(pin: Any) -> str:
    if pin is None or isinstance(pin, bool):
        return ""
    return str(pin).strip()


def _normalize_folders(assigned_folders: Any) -> List[str]:
    if assigned_folders is None:
        return []
    if not isinstance(assigned_folders, (list, tuple)):
        raise ValidationError("assignedFolders must be a list of folder paths")
    folders: List[str] = []
    for entry in assigned_folders:
        if not isinstance(entry, str):
            raise ValidationError("assignedFolders must be a list of folder paths")
        folder = normalize_folder(entry)
        if folder not in folders:
            folders.append(folder)
    return folders


def _stored_pin(account: Dict[str, Any]) -> str:
    # Records written before hashing kept the PIN under "pin".
    return account.get("pinHash") or account.get("pin") or ""


def public_view(account: Dict[str, Any]) -> Dict[str, Any]:
    view = {field: account.get(field) for field in PUBLIC_FIELDS}
    view["assignedFolders"] = list(account.get("assignedFolders") or [])
    view["uploadAccess"] = bool(account.get("uploadAccess"))
    return view


def session_snapshot(account: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": account.get("id"),
        "name": account.get("name"),
        "assignedFolders": list(account.get("assignedFolders") or []),
        "uploadAccess": bool(account.get("uploadAccess")),
    }


class AccountManager:
    """CRUD and PIN authentication for guest accounts."""

    def __init__(
        self,
        store: JsonRecordStore,
        rate_limiter: RateLimiter,
        hash_method: str,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.rate_limiter = rate_limiter
        self.hash_method = hash_method
        self._clock = clock

    def _generate_id(self) -> str:
        return f"acc_{int(self._clock() * 1000)}_{uuid.uuid4().hex[:9]}"

    def list_accounts(self) -> List[Dict[str, Any]]:
        return [public_view(account) for account in self.store.load()]

    def find_account(self, account_id: Any) -> Optional[Dict[str, Any]]:
        if not account_id:
            return None
        return next((entry for entry in self.store.load() if entry.get("id") == account_id), None)

    def create_account(
        self,
        name: Any,
        pin: Any,
        assigned_folders: Any = None,
        upload_access: Any = False,
    ) -> Dict[str, Any]:
        name = (name or "").strip() if isinstance(name, str) else ""
        pin = _normalize_pin(pin)
        if not name or not pin:
            raise ValidationError("Name and PIN are required")
        folders = _normalize_folders(assigned_folders)

        account = {
            "id": self._generate_id(),
            "name": name,
            "pinHash": hash_secret(pin, self.hash_method),
            "assignedFolders": folders,
            "uploadAccess": bool(upload_access),
            "createdAt": isoformat_utc(self._clock()),
            "lastAccessed": None,
        }
        with self.store.transaction() as accounts:
            accounts.append(account)

        logger.info("account_created id=%s folders=%d upload=%s", account["id"], len(folders), account["uploadAccess"])
        return public_view(account)

    def update_account(
        self,
        account_id: str,
        name: Any,
        pin: Any,
        assigned_folders: Any = None,
        upload_access: Optional[Any] = None,
    ) -> Dict[str, Any]:
        name = (name or "").strip() if isinstance(name, str) else ""
        pin = _normalize_pin(pin)
        # The PIN is re-entered on every update, even when only folders change.
        if not name or not pin:
            raise ValidationError("Name and PIN are required")
        folders = _normalize_folders(assigned_folders)
        pin_hash = hash_secret(pin, self.hash_method)

        with self.store.transaction() as accounts:
            account = next((entry for entry in accounts if entry.get("id") == account_id), None)
            if account is None:
                raise NotFound("Account not found", code="ACCOUNT_NOT_FOUND")
            account["name"] = name
            account["pinHash"] = pin_hash
            account.pop("pin", None)
            account["assignedFolders"] = folders
            if upload_access is not None:
                account["uploadAccess"] = bool(upload_access)
            else:
                account["uploadAccess"] = bool(account.get("uploadAccess"))
            updated = public_view(account)

        logger.info("account_updated id=%s", account_id)
        return updated

    def delete_account(self, account_id: str) -> None:
        with self.store.transaction() as accounts:
            index = next((i for i, entry in enumerate(accounts) if entry.get("id") == account_id), None)
            if index is None:
                raise NotFound("Account not found", code="ACCOUNT_NOT_FOUND")
            del accounts[index]
        logger.info("account_deleted id=%s", account_id)

    def _find_match(self, pin: str, accounts: List[Dict[str, Any]]):
        """Return ``(account_id, upgraded_hash)`` for the first account whose PIN matches."""

        for account in accounts:
            stored = _stored_pin(account)
            if not stored:
                continue
            if is_hashed(stored):
                if verify_secret(pin, stored):
                    return account.get("id"), None
            elif stored == pin:
                return account.get("id"), hash_secret(pin, self.hash_method)
        return None, None

    def authenticate_by_pin(self, pin: Any, client_key: str) -> AuthOutcome:
        status = self.rate_limiter.check(client_key)
        if not status.allowed:
            logger.warning("pin_auth_rate_limited retry_minutes=%s", status.retry_after_minutes)
            return AuthOutcome.failure(
                "RATE_LIMITED", status.message, retry_after_minutes=status.retry_after_minutes
            )

        pin = _normalize_pin(pin)
        if not pin:
            return AuthOutcome.failure("VALIDATION_ERROR", "PIN is required")

        account_id, upgraded_hash = self._find_match(pin, self.store.load())

        matched: Optional[Dict[str, Any]] = None
        if account_id is not None:
            with self.store.transaction() as accounts:
                matched = next((entry for entry in accounts if entry.get("id") == account_id), None)
                if matched is not None:
                    if upgraded_hash is not None:
                        matched["pinHash"] = upgraded_hash
                        matched.pop("pin", None)
                        logger.info("account_pin_upgraded id=%s", account_id)
                    matched["lastAccessed"] = isoformat_utc(self._clock())
                    matched = dict(matched)

        if matched is None:
            self.rate_limiter.record_failure(client_key)
            after = self.rate_limiter.check(client_key)
            logger.info("pin_auth_failed attempts_remaining=%s", after.attempts_remaining or 0)
            return AuthOutcome.failure(
                "INVALID_PIN", "Invalid PIN", attempts_remaining=after.attempts_remaining or 0
            )

        self.rate_limiter.record_success(client_key)
        logger.info("pin_auth_succeeded id=%s", matched.get("id"))
        return AuthOutcome.success(payload=matched)
