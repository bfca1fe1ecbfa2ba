"""Record types persisted by the storage layer."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

ADMINS = "admins"
ANNOUNCEMENTS = "announcements"
COMPENSATIONS = "compensations"
WHITELIST = "whitelist"
CLAIM_LOGS = "logs"
USERS = "users"
EMAIL_CODES = "email_codes"

COLLECTIONS = (ADMINS, ANNOUNCEMENTS, COMPENSATIONS, WHITELIST, CLAIM_LOGS, USERS, EMAIL_CODES)

WHITELIST_ENABLED = "whitelist_enabled"
SETTING_NAMES = (WHITELIST_ENABLED,)

CODE_TTL_SECONDS = 5 * 60


def now_ts() -> int:
    return int(time.time())


class Capability(Enum):
    ANNOUNCEMENT = "ac.web.announcement"
    COMPENSATION = "ac.web.compensation"
    WHITELIST = "ac.web.whitelist"
    LOG = "ac.web.log"
    ADMIN = "ac.web.admin"
    ALL = "ac.web.*"


class CodePurpose(Enum):
    REGISTER = "register"
    RESET_PASSWORD = "reset_password"
    CHANGE_EMAIL = "change_email"

    @classmethod
    def parse(cls, value: str) -> Optional["CodePurpose"]:
        """Accept both ``register`` and the legacy ``REGISTER`` spelling."""
        if not value:
            return None
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


@dataclass
class Admin:
    username: str
    password_hash: str
    permissions: List[Capability] = field(default_factory=list)
    created_at: Optional[int] = None

    @property
    def key(self) -> str:
        return self.username

    def grants(self, capability: Capability) -> bool:
        return Capability.ALL in self.permissions or capability in self.permissions


@dataclass
class QQBinding:
    open_id: str
    union_id: str
    nickname: str = ""
    avatar_url: str = ""
    bound_at: Optional[int] = None


@dataclass
class User:
    username: str
    email: str
    password_hash: str
    verification_key: str = ""
    verified: bool = False
    game_uuid: Optional[str] = None
    qq_binding: Optional[QQBinding] = None
    permissions: List[str] = field(default_factory=list)
    created_at: Optional[int] = None
    updated_at: Optional[int] = None
    last_login_at: Optional[int] = None

    @property
    def key(self) -> str:
        return self.username

    @property
    def game_bound(self) -> bool:
        return self.game_uuid is not None


@dataclass
class Announcement:
    title: str
    content: str
    id: Optional[str] = None
    author: str = ""
    send_time: Optional[int] = None
    priority: int = 0
    sent: bool = False
    read_status: Dict[str, bool] = field(default_factory=dict)
    created_at: Optional[int] = None
    updated_at: Optional[int] = None

    @property
    def key(self) -> Optional[str]:
        return self.id

    def is_read_by(self, principal: str) -> bool:
        return bool(self.read_status.get(principal, False))

    def is_due(self, now: int) -> bool:
        return not self.sent and self.send_time is not None and self.send_time <= now


@dataclass
class RewardItem:
    material: str
    amount: int = 1
    custom_name: Optional[str] = None
    lore: List[str] = field(default_factory=list)


@dataclass
class Compensation:
    title: str
    description: str
    id: Optional[str] = None
    items: List[RewardItem] = field(default_factory=list)
    author: str = ""
    claim_status: Dict[str, bool] = field(default_factory=dict)
    created_at: Optional[int] = None
    updated_at: Optional[int] = None

    @property
    def key(self) -> Optional[str]:
        return self.id

    def is_claimed(self, principal: str) -> bool:
        return bool(self.claim_status.get(principal, False))


@dataclass
class WhitelistEntry:
    player_uuid: str
    player_name: str
    added_by: str = ""
    reason: Optional[str] = None
    created_at: Optional[int] = None

    @property
    def key(self) -> str:
        return self.player_uuid


@dataclass
class ClaimLog:
    player_name: str
    player_uuid: str
    compensation_id: str
    id: Optional[str] = None
    created_at: Optional[int] = None

    @property
    def key(self) -> Optional[str]:
        return self.id


@dataclass
class EmailVerificationCode:
    email: str
    purpose: CodePurpose
    code: str
    expires_at: int
    id: Optional[str] = None
    created_at: Optional[int] = None

    @property
    def key(self) -> Optional[str]:
        return self.id

    def is_expired(self, now: int) -> bool:
        return now > self.expires_at

    def matches(self, email: str, purpose: CodePurpose) -> bool:
        return self.email.lower() == email.lower() and self.purpose is purpose


@dataclass(frozen=True)
class Principal:
    """Identity bound to a session token."""

    kind: str
    username: str

    @property
    def is_admin(self) -> bool:
        return self.kind == "admin"
