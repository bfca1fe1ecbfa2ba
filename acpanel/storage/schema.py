"""SQLAlchemy table definitions for the relational backend.

Uses SQLAlchemy Core. Every table is keyed by the record's locally generated
string identifier (or its natural key for admins, users and whitelist
entries), so the relational backend never assigns identities of its own.
"""

from __future__ import annotations

from sqlalchemy import Boolean, Column, Integer, MetaData, String, Table, Text

from ..models import ADMINS, ANNOUNCEMENTS, CLAIM_LOGS, COMPENSATIONS, EMAIL_CODES, USERS, WHITELIST

metadata = MetaData()

admins_table = Table(
    "admins",
    metadata,
    Column("username", String(50), primary_key=True),
    Column("password_hash", String(255), nullable=False),
    Column("permissions", Text),
    Column("created_at", Integer),
)

announcements_table = Table(
    "announcements",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("title", String(255), nullable=False),
    Column("content", Text, nullable=False),
    Column("author", String(50), nullable=False, default=""),
    Column("send_time", Integer),
    Column("priority", Integer, nullable=False, default=0),
    Column("sent", Boolean, nullable=False, default=False),
    Column("read_status", Text),
    Column("created_at", Integer),
    Column("updated_at", Integer),
)

compensations_table = Table(
    "compensations",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("title", String(255), nullable=False),
    Column("description", Text),
    Column("items", Text),
    Column("author", String(50), nullable=False, default=""),
    Column("claim_status", Text),
    Column("created_at", Integer),
    Column("updated_at", Integer),
)

claim_logs_table = Table(
    "claim_logs",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("compensation_id", String(64), nullable=False, index=True),
    Column("player_name", String(50), nullable=False),
    Column("player_uuid", String(36), index=True),
    Column("claim_time", Integer),
)

whitelist_entries_table = Table(
    "whitelist_entries",
    metadata,
    Column("player_uuid", String(36), primary_key=True),
    Column("player_name", String(50), nullable=False, index=True),
    Column("added_by", String(50), nullable=False, default=""),
    Column("reason", Text),
    Column("created_at", Integer),
)

users_table = Table(
    "users",
    metadata,
    Column("username", String(50), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", String(255), nullable=False),
    Column("verification_key", String(32)),
    Column("is_verified", Boolean, nullable=False, default=False),
    Column("minecraft_uuid", String(36), index=True),
    Column("qq_number", String(64)),
    Column("qq_binding", Text),
    Column("permissions", Text),
    Column("created_at", Integer),
    Column("updated_at", Integer),
    Column("last_login_at", Integer),
)

email_verification_codes_table = Table(
    "email_verification_codes",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("email", String(255), nullable=False, index=True),
    Column("purpose", String(32), nullable=False),
    Column("code", String(10), nullable=False),
    Column("expires_at", Integer, nullable=False),
    Column("created_at", Integer),
)

settings_table = Table(
    "settings",
    metadata,
    Column("setting_key", String(50), primary_key=True),
    Column("setting_value", Text, nullable=False),
)

# collection name -> (table, key column)
COLLECTION_TABLES = {
    ADMINS: (admins_table, "username"),
    ANNOUNCEMENTS: (announcements_table, "id"),
    COMPENSATIONS: (compensations_table, "id"),
    CLAIM_LOGS: (claim_logs_table, "id"),
    WHITELIST: (whitelist_entries_table, "player_uuid"),
    USERS: (users_table, "username"),
    EMAIL_CODES: (email_verification_codes_table, "id"),
}
