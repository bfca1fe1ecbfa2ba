"""Backend contract shared by the file and relational stores."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Sequence


class StorageBackend(ABC):
    """One concrete storage technology.

    Records are passed in and out as model instances; backends never keep
    references to them once a call returns.
    """

    kind = "abstract"

    @abstractmethod
    def load_all(self) -> Dict[str, List[Any]]:
        """Return every decodable record, grouped by collection name."""

    @abstractmethod
    def save_all(self, collections: Mapping[str, Sequence[Any]]) -> None:
        """Replace the stored contents of each given collection."""

    @abstractmethod
    def save_record(self, collection: str, record: Any) -> None:
        """Insert or replace a single record."""

    @abstractmethod
    def delete_record(self, collection: str, key: str) -> None:
        """Remove a single record; missing records are ignored."""

    @abstractmethod
    def load_settings(self) -> Dict[str, Any]:
        ...

    @abstractmethod
    def save_setting(self, name: str, value: Any) -> None:
        ...

    def is_available(self) -> bool:
        return True

    def close(self) -> None:
        pass
