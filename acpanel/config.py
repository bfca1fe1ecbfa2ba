"""Application settings loaded from YAML and environment variables."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

DEFAULT_DATA_DIR = Path(__file__).resolve().parent.parent / "data"
DEFAULT_ADMIN_USERNAME = "admin"
DEFAULT_ADMIN_PASSWORD = "admin123"
DEFAULT_TOKEN_TTL = 24 * 60 * 60
DEFAULT_SWEEP_INTERVAL = 60

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FILE_KINDS = {"file", "json"}
_SQL_KINDS = {"sql", "relational", "database"}


@dataclass(frozen=True)
class SqlSettings:
    type: str = "sqlite"
    url: str = ""
    host: str = "localhost"
    port: int = 0
    database: str = "acpanel"
    username: str = "root"
    password: str = ""
    min_idle: int = 5
    max_active: int = 50
    max_wait: int = 60000


@dataclass(frozen=True)
class StorageSettings:
    kind: str = "file"
    data_dir: Path = DEFAULT_DATA_DIR
    sql: SqlSettings = field(default_factory=SqlSettings)

    @property
    def wants_sql(self) -> bool:
        return self.kind in _SQL_KINDS


@dataclass(frozen=True)
class BootstrapSettings:
    username: str = DEFAULT_ADMIN_USERNAME
    password: str = ""
    override: bool = False


@dataclass(frozen=True)
class WebSettings:
    secret_key: str = ""
    token_ttl: int = DEFAULT_TOKEN_TTL
    token_sliding: bool = False


@dataclass(frozen=True)
class SmtpSettings:
    enable: bool = False
    host: str = "localhost"
    port: int = 465
    username: str = ""
    password: str = ""
    sender: str = ""
    ssl: bool = True


@dataclass(frozen=True)
class Settings:
    storage: StorageSettings = field(default_factory=StorageSettings)
    bootstrap: BootstrapSettings = field(default_factory=BootstrapSettings)
    web: WebSettings = field(default_factory=WebSettings)
    smtp: SmtpSettings = field(default_factory=SmtpSettings)
    sweep_interval: int = DEFAULT_SWEEP_INTERVAL
    log_level: str = "INFO"


def _section(payload: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = payload.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"配置项 {name} 必须是一个映射")
    return value


def _as_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_VALUES


def _as_int(value: Any, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"配置值 {value!r} 不是整数") from exc


def _as_str(value: Any, default: str = "") -> str:
    if value is None:
        return default
    return str(value)


def settings_from_mapping(payload: Mapping[str, Any]) -> Settings:
    """Build settings from a parsed ``config.yml`` document."""
    database = _section(payload, "database")
    sql = _section(database, "sql")
    pool = _section(sql, "pool")
    web = _section(payload, "web")
    login = _section(web, "login")
    smtp = _section(payload, "smtp")
    maintenance = _section(payload, "maintenance")
    logging_section = _section(payload, "logging")

    defaults = SqlSettings()
    sql_settings = SqlSettings(
        type=_as_str(sql.get("type"), defaults.type).lower(),
        url=_as_str(sql.get("url")),
        host=_as_str(sql.get("host"), defaults.host),
        port=_as_int(sql.get("port"), defaults.port),
        database=_as_str(sql.get("database"), defaults.database),
        username=_as_str(sql.get("username"), defaults.username),
        password=_as_str(sql.get("password")),
        min_idle=_as_int(pool.get("min_idle"), defaults.min_idle),
        max_active=_as_int(pool.get("max_active"), defaults.max_active),
        max_wait=_as_int(pool.get("max_wait"), defaults.max_wait),
    )
    data_dir = payload.get("data_dir")
    storage = StorageSettings(
        kind=_as_str(database.get("storage"), "file").strip().lower(),
        data_dir=Path(data_dir) if data_dir else DEFAULT_DATA_DIR,
        sql=sql_settings,
    )
    bootstrap = BootstrapSettings(
        username=_as_str(login.get("username"), DEFAULT_ADMIN_USERNAME).strip() or DEFAULT_ADMIN_USERNAME,
        password=_as_str(login.get("password")),
        override=_as_bool(login.get("override")),
    )
    web_settings = WebSettings(
        secret_key=_as_str(web.get("secret_key")),
        token_ttl=_as_int(web.get("token_ttl"), DEFAULT_TOKEN_TTL),
        token_sliding=_as_bool(web.get("token_sliding")),
    )
    smtp_settings = SmtpSettings(
        enable=_as_bool(smtp.get("enable")),
        host=_as_str(smtp.get("host"), "localhost"),
        port=_as_int(smtp.get("port"), 465),
        username=_as_str(smtp.get("username")),
        password=_as_str(smtp.get("password")),
        sender=_as_str(smtp.get("from")) or _as_str(smtp.get("username")),
        ssl=_as_bool(smtp.get("ssl"), True),
    )
    return Settings(
        storage=storage,
        bootstrap=bootstrap,
        web=web_settings,
        smtp=smtp_settings,
        sweep_interval=_as_int(maintenance.get("sweep_interval"), DEFAULT_SWEEP_INTERVAL),
        log_level=_as_str(logging_section.get("level"), "INFO").upper(),
    )


def apply_environment(settings: Settings, environ: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if environ is None else environ
    storage = settings.storage
    if env.get("ACPANEL_DATA_DIR"):
        storage = replace(storage, data_dir=Path(env["ACPANEL_DATA_DIR"]))
    if env.get("ACPANEL_STORAGE"):
        storage = replace(storage, kind=env["ACPANEL_STORAGE"].strip().lower())
    if env.get("ACPANEL_DATABASE_URL"):
        storage = replace(storage, sql=replace(storage.sql, url=env["ACPANEL_DATABASE_URL"]))

    bootstrap = settings.bootstrap
    if env.get("ACPANEL_ADMIN_USERNAME"):
        bootstrap = replace(bootstrap, username=env["ACPANEL_ADMIN_USERNAME"].strip())
    if "ACPANEL_ADMIN_PASSWORD" in env:
        bootstrap = replace(bootstrap, password=env["ACPANEL_ADMIN_PASSWORD"])
    if "ACPANEL_ADMIN_OVERRIDE" in env:
        bootstrap = replace(bootstrap, override=_as_bool(env["ACPANEL_ADMIN_OVERRIDE"]))

    web = settings.web
    if env.get("ACPANEL_SECRET"):
        web = replace(web, secret_key=env["ACPANEL_SECRET"])

    log_level = settings.log_level
    if env.get("ACPANEL_LOG_LEVEL"):
        log_level = env["ACPANEL_LOG_LEVEL"].strip().upper()

    return replace(settings, storage=storage, bootstrap=bootstrap, web=web, log_level=log_level)


def load_settings(path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Read ``config.yml`` (if present) and apply ``ACPANEL_*`` overrides."""
    env = os.environ if environ is None else environ
    if path is None and env.get("ACPANEL_CONFIG"):
        path = Path(env["ACPANEL_CONFIG"])
    payload: Dict[str, Any] = {}
    if path is not None and Path(path).exists():
        with open(path, "r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle) or {}
        if not isinstance(payload, dict):
            raise ValueError(f"配置文件 {path} 顶层必须是一个映射")
    return apply_environment(settings_from_mapping(payload), env)


def insecure_defaults(settings: Settings) -> List[str]:
    """List default credentials that should be changed before going live."""
    warnings: List[str] = []
    bootstrap = settings.bootstrap
    if bootstrap.username == DEFAULT_ADMIN_USERNAME:
        warnings.append("后台管理员用户名仍为默认值 admin")
    if not bootstrap.password:
        warnings.append(f"未配置后台管理员密码，首次启动将使用默认密码 {DEFAULT_ADMIN_PASSWORD}")
    elif bootstrap.password == DEFAULT_ADMIN_PASSWORD:
        warnings.append("后台管理员密码仍为默认值")
    if not settings.web.secret_key:
        warnings.append("未配置 web.secret_key，每次启动将随机生成")
    storage = settings.storage
    if storage.wants_sql and storage.sql.type != "sqlite" and not storage.sql.url:
        if storage.sql.username == "root" and not storage.sql.password:
            warnings.append("数据库仍使用默认账户 root 且未设置密码")
    return warnings


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    resolved = logging.getLevelName(str(level).upper())
    if not isinstance(resolved, int):
        resolved = logging.INFO
    if not root.handlers:
        logging.basicConfig(
            level=resolved,
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )
    root.setLevel(resolved)
