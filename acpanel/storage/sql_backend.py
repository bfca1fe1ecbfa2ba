"""Relational store built on SQLAlchemy Core."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Mapping, Sequence, Union

from sqlalchemy import create_engine, event, select, text
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from .. import codec
from ..config import SqlSettings
from ..errors import BackendUnavailableError, MalformedRecordError, StoreError
from ..models import COLLECTIONS
from .base import StorageBackend
from .schema import COLLECTION_TABLES, metadata, settings_table

logger = logging.getLogger(__name__)

DRIVERS = {
    "mysql": ("mysql+pymysql", 3306),
    "postgresql": ("postgresql+psycopg2", 5432),
}


def build_url(sql: SqlSettings, data_dir: Path) -> Union[str, URL]:
    """Translate ``database.sql`` settings into a SQLAlchemy URL."""
    if sql.url:
        return sql.url
    kind = sql.type.lower()
    if kind == "sqlite":
        if sql.database in ("", ":memory:"):
            return "sqlite://"
        path = Path(sql.database)
        if not path.is_absolute():
            path = Path(data_dir) / (sql.database if path.suffix else f"{sql.database}.db")
        return f"sqlite:///{path}"
    if kind not in DRIVERS:
        raise BackendUnavailableError(f"unsupported database type '{sql.type}'")
    drivername, default_port = DRIVERS[kind]
    query = {"charset": "utf8mb4"} if kind == "mysql" else {}
    return URL.create(
        drivername,
        username=sql.username or None,
        password=sql.password or None,
        host=sql.host,
        port=sql.port or default_port,
        database=sql.database,
        query=query,
    )


def engine_options(url: Union[str, URL], sql: SqlSettings) -> Dict[str, Any]:
    """Pool options for the given URL; SQLite keeps SQLAlchemy's defaults."""
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite":
        options: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if parsed.database in (None, "", ":memory:"):
            options["poolclass"] = StaticPool
        return options
    return {
        "pool_size": max(1, sql.max_active),
        "max_overflow": 0,
        "pool_timeout": max(1, sql.max_wait // 1000),
        "pool_pre_ping": True,
    }


class SqlBackend(StorageBackend):
    kind = "sql"

    def __init__(self, url: Union[str, URL], **engine_kwargs: Any) -> None:
        try:
            self.engine = create_engine(url, **engine_kwargs)
        except (SQLAlchemyError, ImportError) as exc:
            raise BackendUnavailableError(f"cannot create database engine: {exc}") from exc
        if self.engine.dialect.name == "sqlite":
            self._configure_sqlite(self.engine)
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            metadata.create_all(self.engine)
        except (SQLAlchemyError, ImportError) as exc:
            self.engine.dispose()
            raise BackendUnavailableError(f"database unavailable: {exc}") from exc
        self._locks = {name: threading.RLock() for name in COLLECTIONS}
        self._settings_lock = threading.Lock()
        logger.info("Relational storage ready (%s)", self.engine.url.render_as_string(hide_password=True))

    @classmethod
    def from_settings(cls, sql: SqlSettings, data_dir: Path) -> "SqlBackend":
        url = build_url(sql, data_dir)
        parsed = make_url(url)
        if parsed.get_backend_name() == "sqlite" and parsed.database not in (None, "", ":memory:"):
            Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)
        return cls(url, **engine_options(url, sql))

    @staticmethod
    def _configure_sqlite(engine: Engine) -> None:
        if engine.url.database in (None, "", ":memory:"):
            return

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

    def _table(self, collection: str):
        try:
            return COLLECTION_TABLES[collection]
        except KeyError as exc:
            raise StoreError(f"unknown collection '{collection}'") from exc

    # Loading -----------------------------------------------------------

    def load_all(self) -> Dict[str, List[Any]]:
        result: Dict[str, List[Any]] = {}
        with self.engine.connect() as conn:
            for collection in COLLECTIONS:
                table, key_column = self._table(collection)
                records: List[Any] = []
                for row in conn.execute(select(table)).mappings():
                    try:
                        records.append(codec.from_row(collection, row))
                    except MalformedRecordError as exc:
                        logger.warning(
                            "Skipping unreadable %s row %r: %s", collection, row.get(key_column), exc
                        )
                result[collection] = records
        return result

    def load_settings(self) -> Dict[str, Any]:
        settings: Dict[str, Any] = {}
        with self.engine.connect() as conn:
            for row in conn.execute(select(settings_table)).mappings():
                try:
                    settings[row["setting_key"]] = json.loads(row["setting_value"])
                except (TypeError, ValueError) as exc:
                    logger.warning("Ignoring unreadable setting %s: %s", row["setting_key"], exc)
        return settings

    # Saving ------------------------------------------------------------

    def save_all(self, collections: Mapping[str, Sequence[Any]]) -> None:
        for collection, records in collections.items():
            table, _ = self._table(collection)
            rows = [codec.to_row(collection, record) for record in records]
            with self._locks[collection]:
                with self.engine.begin() as conn:
                    conn.execute(table.delete())
                    if rows:
                        conn.execute(table.insert(), rows)

    def save_record(self, collection: str, record: Any) -> None:
        table, key_column = self._table(collection)
        if record.key is None:
            raise StoreError(f"{collection} record has no identifier")
        row = codec.to_row(collection, record)
        with self._locks[collection]:
            with self.engine.begin() as conn:
                conn.execute(table.delete().where(table.c[key_column] == record.key))
                conn.execute(table.insert(), [row])

    def delete_record(self, collection: str, key: str) -> None:
        table, key_column = self._table(collection)
        with self._locks[collection]:
            with self.engine.begin() as conn:
                conn.execute(table.delete().where(table.c[key_column] == key))

    def save_setting(self, name: str, value: Any) -> None:
        with self._settings_lock:
            with self.engine.begin() as conn:
                conn.execute(settings_table.delete().where(settings_table.c.setting_key == name))
                conn.execute(
                    settings_table.insert(),
                    [{"setting_key": name, "setting_value": json.dumps(value, ensure_ascii=False)}],
                )

    def is_available(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            logger.warning("Database health check failed: %s", exc)
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()
