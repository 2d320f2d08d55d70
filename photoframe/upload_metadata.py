import logging
import time
from typing import Any, Callable, Dict, Iterable, List

from .folder_access import normalize_folder
from .storage import JsonRecordStore, isoformat_utc

logger = logging.getLogger("photoframe.uploads")


class UploadMetadataStore:
    """Ledger of which guest account uploaded which file."""

    def __init__(self, store: JsonRecordStore, clock: Callable[[], float] = time.time) -> None:
        self.store = store
        self._clock = clock

    def record_uploads(self, account_id: str, account_name: str, file_paths: Iterable[str]) -> None:
        uploaded_at = isoformat_utc(self._clock())
        entries = [
            {
                "accountId": account_id,
                "accountName": account_name,
                "filePath": normalize_folder(path),
                "uploadedAt": uploaded_at,
            }
            for path in file_paths
        ]
        if not entries:
            return
        with self.store.transaction() as metadata:
            metadata.extend(entries)
        logger.info("guest_uploads_recorded account=%s count=%d", account_id, len(entries))

    def uploads_by_account(self, account_id: str) -> List[Dict[str, Any]]:
        return [entry for entry in self.store.load() if entry.get("accountId") == account_id]

    def is_owned_by(self, account_id: str, file_path: str) -> bool:
        target = normalize_folder(file_path)
        return any(
            entry.get("accountId") == account_id and entry.get("filePath") == target
            for entry in self.store.load()
        )

    def remove(self, file_path: str) -> None:
        self.remove_many([file_path])

    def remove_many(self, file_paths: Iterable[str]) -> None:
        targets = {normalize_folder(path) for path in file_paths}
        with self.store.transaction() as metadata:
            metadata[:] = [entry for entry in metadata if entry.get("filePath") not in targets]
