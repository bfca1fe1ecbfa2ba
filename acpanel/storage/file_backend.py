"""Document-per-record file store.

Layout under the data directory::

    admins/<username>.json
    announcements/<id>.json
    compensations/<id>.json
    whitelist/<player uuid>.json
    logs/<id>.json
    users/<username>.json
    email_codes/<id>.json
    whitelist_enabled.json        bare boolean
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, List, Mapping, Sequence

from .. import codec
from ..errors import StoreError
from ..models import COLLECTIONS, SETTING_NAMES
from .base import StorageBackend

logger = logging.getLogger(__name__)


def _dump(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False, indent=2)


class FileBackend(StorageBackend):
    kind = "file"

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        # Bulk rewrites and single-record writes of one collection never interleave.
        self._locks = {name: threading.RLock() for name in COLLECTIONS}
        self._settings_lock = threading.Lock()

    def _directory(self, collection: str) -> Path:
        if collection not in self._locks:
            raise StoreError(f"unknown collection '{collection}'")
        return self.root / collection

    def _record_path(self, collection: str, key: Any) -> Path:
        name = str(key or "").strip()
        if not name or name.startswith(".") or "/" in name or "\\" in name or os.sep in name:
            raise StoreError(f"invalid record key {key!r} for {collection}")
        return self._directory(collection) / f"{name}.json"

    def _write(self, path: Path, payload: Any) -> None:
        tmp_path = path.with_name(path.name + ".tmp")
        tmp_path.write_text(_dump(payload), encoding="utf-8")
        os.replace(tmp_path, path)

    # Loading -----------------------------------------------------------

    def load_all(self) -> Dict[str, List[Any]]:
        return {name: self._load_collection(name) for name in COLLECTIONS}

    def _load_collection(self, collection: str) -> List[Any]:
        directory = self._directory(collection)
        if not directory.is_dir():
            return []
        records: List[Any] = []
        with self._locks[collection]:
            paths = sorted(directory.glob("*.json"))
            for path in paths:
                try:
                    payload = json.loads(path.read_text(encoding="utf-8"))
                    record = codec.from_document(collection, payload)
                except (OSError, ValueError) as exc:
                    logger.warning("Skipping unreadable %s file %s: %s", collection, path.name, exc)
                    continue
                records.append(record)
        return records

    def load_settings(self) -> Dict[str, Any]:
        settings: Dict[str, Any] = {}
        with self._settings_lock:
            for name in SETTING_NAMES:
                path = self.root / f"{name}.json"
                if not path.exists():
                    continue
                try:
                    settings[name] = json.loads(path.read_text(encoding="utf-8"))
                except (OSError, ValueError) as exc:
                    logger.warning("Ignoring unreadable setting file %s: %s", path.name, exc)
        return settings

    # Saving ------------------------------------------------------------

    def save_all(self, collections: Mapping[str, Sequence[Any]]) -> None:
        for collection, records in collections.items():
            directory = self._directory(collection)
            with self._locks[collection]:
                directory.mkdir(parents=True, exist_ok=True)
                for stale in directory.glob("*.json"):
                    stale.unlink()
                for record in records:
                    path = self._record_path(collection, record.key)
                    path.write_text(_dump(codec.to_document(collection, record)), encoding="utf-8")

    def save_record(self, collection: str, record: Any) -> None:
        path = self._record_path(collection, record.key)
        with self._locks[collection]:
            path.parent.mkdir(parents=True, exist_ok=True)
            self._write(path, codec.to_document(collection, record))

    def delete_record(self, collection: str, key: str) -> None:
        path = self._record_path(collection, key)
        with self._locks[collection]:
            path.unlink(missing_ok=True)

    def save_setting(self, name: str, value: Any) -> None:
        with self._settings_lock:
            self._write(self.root / f"{name}.json", value)
