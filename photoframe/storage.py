import json
import logging
import os
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from .errors import StorageFailure

logger = logging.getLogger("photoframe.storage")


def isoformat_utc(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat().replace(
        "+00:00", "Z"
    )


def parse_timestamp(value: Any) -> Optional[float]:
    """Return epoch seconds for an ISO-8601 string or epoch-milliseconds number."""

    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) / 1000.0
    if isinstance(value, str):
        text = value.strip()
        try:
            return float(text) / 1000.0
        except ValueError:
            pass
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.timestamp()
    return None


class JsonRecordStore:
    """A list of mappings persisted as one pretty-printed JSON file.

    Reads never raise: a missing, unreadable or corrupt file is treated as an
    empty collection. Writes go through a temporary file and an atomic rename;
    any failure is raised as :class:`StorageFailure`.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.lock = threading.RLock()
        self._initialized = False

    def ensure(self) -> None:
        if self._initialized and self.path.exists():
            return
        with self.lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            if not self.path.exists():
                self.save([])
            self._initialized = True

    def load(self) -> List[Dict[str, Any]]:
        try:
            self.ensure()
            with self.path.open("r", encoding="utf-8") as handle:
                raw = json.load(handle)
        except (OSError, ValueError, StorageFailure) as error:
            logger.warning(
                "record_store_read_failed path=%s error=%s", self.path.name, type(error).__name__
            )
            return []
        if not isinstance(raw, list):
            logger.warning("record_store_not_a_list path=%s", self.path.name)
            return []
        return [entry for entry in raw if isinstance(entry, dict)]

    def save(self, records: List[Dict[str, Any]]) -> None:
        temp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with self.lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with temp_path.open("w", encoding="utf-8") as handle:
                    json.dump(list(records), handle, indent=2)
                    handle.flush()
                    os.fsync(handle.fileno())
                # Atomic rename on POSIX systems (overwrites destination)
                temp_path.replace(self.path)
            except (OSError, TypeError, ValueError) as error:
                if temp_path.exists():
                    try:
                        temp_path.unlink()
                    except OSError:
                        pass
                logger.error(
                    "record_store_write_failed path=%s error=%s", self.path.name, type(error).__name__
                )
                raise StorageFailure("Failed to persist records") from error

    @contextmanager
    def transaction(self) -> Iterator[List[Dict[str, Any]]]:
        """Hold the store lock across a load-modify-save cycle.

        The yielded list is saved on normal exit; callers that decide not to
        write should raise, which leaves the file untouched.
        """

        with self.lock:
            records = self.load()
            yield records
            self.save(records)
