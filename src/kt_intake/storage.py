"""
KT Intake Storage

A JSON key/value file standing in for browser local storage, and the
snapshot store that keeps the whole intake under one well-known key.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Union

from kt_intake.exceptions import StorageError
from kt_intake.migration import migrate_app_state
from kt_intake.schema import Snapshot

logger = logging.getLogger(__name__)

STORAGE_KEY = "kt-intake-full-v2"


def utc_timestamp(now: Optional[datetime] = None) -> str:
    """ISO-8601 UTC timestamp with milliseconds and a ``Z`` suffix."""
    moment = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


class LocalStorage:
    """String values keyed by name, persisted as one JSON document."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path).expanduser()

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError, IOError) as e:
            logger.warning("Ignoring unreadable store %s: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring store %s: not a JSON object", self.path)
            return {}
        return {key: value for key, value in data.items() if isinstance(value, str)}

    def _save(self, data: Dict[str, str]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        except OSError as e:
            raise StorageError("Could not write the intake store", path=self.path, details=str(e)) from e

    def get_item(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set_item(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def remove_item(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._save(data)

    def keys(self) -> List[str]:
        return list(self._load())


class SnapshotStorage:
    """Save and restore the intake snapshot under ``STORAGE_KEY``."""

    def __init__(self, storage: LocalStorage, key: str = STORAGE_KEY):
        self.storage = storage
        self.key = key

    def save(self, snapshot: Snapshot, now: Optional[datetime] = None) -> Snapshot:
        """Stamp ``meta.savedAt`` and persist. Returns the stamped copy.

        Raises:
            StorageError: If the store file cannot be written
        """
        stamped = snapshot.model_copy(deep=True)
        stamped.meta.saved_at = utc_timestamp(now)
        self.storage.set_item(self.key, json.dumps(stamped.to_dict()))
        logger.debug("Saved intake snapshot to %s", self.storage.path)
        return stamped

    def restore(self) -> Optional[Snapshot]:
        """Load and migrate the stored snapshot; None when missing or garbage."""
        raw = self.storage.get_item(self.key)
        if not raw:
            return None
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("Stored intake snapshot is not valid JSON: %s", e)
            return None
        snapshot = migrate_app_state(parsed)
        if snapshot is None:
            logger.warning("Stored intake snapshot is not an object; ignoring it")
        return snapshot

    def clear(self) -> None:
        self.storage.remove_item(self.key)
