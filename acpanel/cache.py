"""In-memory mirror of every persisted collection."""

from __future__ import annotations

import logging
import threading
import uuid
from contextlib import ExitStack, contextmanager
from typing import Any, Callable, Dict, Hashable, Iterator, List, Optional, Tuple

from .models import COLLECTIONS, EMAIL_CODES, now_ts
from .storage import StorageFacade

logger = logging.getLogger(__name__)

Clock = Callable[[], int]


class KeyedLocks:
    """One re-entrant lock per key, kept only while someone holds or waits on it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, List[Any]] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.RLock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


class EntityCache:
    """Serves every read and routes every write through the storage facade.

    Each collection is a list replaced wholesale on write, so ``all()`` can
    hand out tuple snapshots without copying under contention. Writes to one
    collection are serialised end to end, persistence included.
    """

    def __init__(self, storage: StorageFacade, clock: Clock = now_ts) -> None:
        self.storage = storage
        self.clock = clock
        self._lock = threading.RLock()
        self._write_locks = {name: threading.RLock() for name in COLLECTIONS}
        self._collections: Dict[str, List[Any]] = {name: [] for name in COLLECTIONS}
        self._settings: Dict[str, Any] = {}
        self._record_locks = KeyedLocks()

    def load(self) -> None:
        data = self.storage.load_all()
        settings = self.storage.load_settings()
        now = self.clock()
        with self._lock:
            for name in COLLECTIONS:
                records = list(data.get(name, []))
                if name == EMAIL_CODES:
                    records = [code for code in records if not code.is_expired(now)]
                self._collections[name] = records
            self._settings = dict(settings)
        logger.info(
            "Loaded %s",
            ", ".join(f"{len(self._collections[name])} {name}" for name in COLLECTIONS),
        )

    # Reads -------------------------------------------------------------

    def all(self, collection: str) -> Tuple[Any, ...]:
        with self._lock:
            return tuple(self._collections[collection])

    def get(self, collection: str, key: Any) -> Optional[Any]:
        if key is None:
            return None
        for record in self.all(collection):
            if record.key == key:
                return record
        return None

    def find(self, collection: str, predicate: Callable[[Any], bool]) -> Optional[Any]:
        for record in self.all(collection):
            if predicate(record):
                return record
        return None

    def filter(self, collection: str, predicate: Callable[[Any], bool]) -> List[Any]:
        return [record for record in self.all(collection) if predicate(record)]

    def count(self, collection: str) -> int:
        with self._lock:
            return len(self._collections[collection])

    def setting(self, name: str, default: Any = None) -> Any:
        with self._lock:
            return self._settings.get(name, default)

    # Writes ------------------------------------------------------------

    def locked(self, collection: str, key: Hashable):
        """Serialise read-modify-write sequences on one record (or record group)."""
        return self._record_locks.hold((collection, key))

    def upsert(self, collection: str, record: Any) -> bool:
        """Replace-or-append ``record`` and persist it; returns the save outcome."""
        with self._write_locks[collection]:
            if hasattr(record, "id") and not record.id:
                record.id = uuid.uuid4().hex
            if record.created_at is None:
                record.created_at = self.clock()
            key = record.key
            with self._lock:
                current = self._collections[collection]
                updated = [item for item in current if item.key != key]
                updated.append(record)
                self._collections[collection] = updated
            return self.storage.save_record(collection, record)

    def delete(self, collection: str, key: Any) -> Optional[Any]:
        """Remove the record with ``key``; returns it, or None when absent."""
        with self._write_locks[collection]:
            with self._lock:
                current = self._collections[collection]
                removed = next((item for item in current if item.key == key), None)
                if removed is None:
                    return None
                self._collections[collection] = [item for item in current if item.key != key]
            self.storage.delete_record(collection, key)
            return removed

    def delete_where(self, collection: str, predicate: Callable[[Any], bool]) -> List[Any]:
        with self._write_locks[collection]:
            with self._lock:
                current = self._collections[collection]
                removed = [item for item in current if predicate(item)]
                if not removed:
                    return []
                self._collections[collection] = [item for item in current if not predicate(item)]
            for item in removed:
                self.storage.delete_record(collection, item.key)
            return removed

    def set_setting(self, name: str, value: Any) -> bool:
        with self._lock:
            self._settings[name] = value
        return self.storage.save_setting(name, value)

    def flush(self) -> bool:
        """Rewrite every collection and setting from memory.

        Every collection's write lock is held from the snapshot until the
        backend has finished, so single-record writes wait for the rewrite.
        """
        with ExitStack() as stack:
            for name in COLLECTIONS:
                stack.enter_context(self._write_locks[name])
            with self._lock:
                snapshot = {name: list(records) for name, records in self._collections.items()}
                settings = dict(self._settings)
            ok = self.storage.save_all(snapshot)
        for name, value in settings.items():
            ok = self.storage.save_setting(name, value) and ok
        return ok
