from .base import StorageBackend
from .facade import StorageFacade, create_storage
from .file_backend import FileBackend
from .sql_backend import SqlBackend

__all__ = ["FileBackend", "SqlBackend", "StorageBackend", "StorageFacade", "create_storage"]
