"""Backend selection and the failure policy shared by every write path."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Sequence

from sqlalchemy.exc import SQLAlchemyError

from ..config import StorageSettings
from ..errors import BackendUnavailableError, StoreError
from .base import StorageBackend
from .file_backend import FileBackend
from .sql_backend import SqlBackend

logger = logging.getLogger(__name__)

_SAVE_ERRORS = (OSError, StoreError, SQLAlchemyError, TypeError, ValueError)


class StorageFacade:
    """Backend-agnostic load/save contract.

    Loads propagate errors so that a broken store never starts with an empty
    cache. Saves are logged and reported as ``False``; the caller's in-memory
    state is left as it is and nothing is retried.
    """

    def __init__(self, backend: StorageBackend) -> None:
        self._backend = backend

    @property
    def backend(self) -> StorageBackend:
        return self._backend

    @property
    def kind(self) -> str:
        return self._backend.kind

    def load_all(self) -> Dict[str, List[Any]]:
        return self._backend.load_all()

    def load_settings(self) -> Dict[str, Any]:
        return self._backend.load_settings()

    def save_all(self, collections: Mapping[str, Sequence[Any]]) -> bool:
        try:
            self._backend.save_all(collections)
        except _SAVE_ERRORS:
            logger.exception("Failed to save collections %s", ", ".join(collections))
            return False
        return True

    def save_record(self, collection: str, record: Any) -> bool:
        try:
            self._backend.save_record(collection, record)
        except _SAVE_ERRORS:
            logger.exception("Failed to save %s record %r", collection, getattr(record, "key", None))
            return False
        return True

    def delete_record(self, collection: str, key: str) -> bool:
        try:
            self._backend.delete_record(collection, key)
        except _SAVE_ERRORS:
            logger.exception("Failed to delete %s record %r", collection, key)
            return False
        return True

    def save_setting(self, name: str, value: Any) -> bool:
        try:
            self._backend.save_setting(name, value)
        except _SAVE_ERRORS:
            logger.exception("Failed to save setting %s", name)
            return False
        return True

    def is_available(self) -> bool:
        return self._backend.is_available()

    def close(self) -> None:
        self._backend.close()


def create_storage(settings: StorageSettings) -> StorageFacade:
    """Pick the configured backend, falling back to files if SQL cannot start."""
    kind = settings.kind
    if settings.wants_sql:
        try:
            backend: StorageBackend = SqlBackend.from_settings(settings.sql, settings.data_dir)
        except BackendUnavailableError as exc:
            logger.warning("Database storage unavailable, falling back to file storage: %s", exc)
        else:
            return StorageFacade(backend)
    elif kind not in ("file", "json"):
        logger.warning("Unknown storage kind %r, using file storage", kind)
    logger.info("Using file storage at %s", settings.data_dir)
    return StorageFacade(FileBackend(settings.data_dir))
