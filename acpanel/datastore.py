"""Domain operations over the entity cache."""

from __future__ import annotations

import logging
import re
import secrets
from dataclasses import replace
from typing import Any, Iterable, List, Optional, Tuple

from .auth import hash_password, verify_password
from .cache import EntityCache
from .codec import item_from_doc
from .errors import MalformedRecordError, Rejection
from .mail import Mailer
from .models import (
    ADMINS,
    ANNOUNCEMENTS,
    CLAIM_LOGS,
    COMPENSATIONS,
    USERS,
    WHITELIST,
    WHITELIST_ENABLED,
    Admin,
    Announcement,
    Capability,
    ClaimLog,
    CodePurpose,
    Compensation,
    QQBinding,
    RewardItem,
    User,
    WhitelistEntry,
)
from .verification import VerificationCodeService

logger = logging.getLogger(__name__)

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_]{3,32}$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 6

# Account writes and the uniqueness checks before them share one lock.
_ALL_USERS = "*"


def _clean(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def _normalise_email(value: Any) -> str:
    return _clean(value).lower()


def parse_capabilities(values: Iterable[Any]) -> Optional[List[Capability]]:
    """Map permission strings to capabilities; ``None`` if any is unknown."""
    capabilities: List[Capability] = []
    for value in values or []:
        if isinstance(value, Capability):
            capability = value
        else:
            try:
                capability = Capability(_clean(value))
            except ValueError:
                return None
        if capability not in capabilities:
            capabilities.append(capability)
    return capabilities


def parse_items(values: Iterable[Any]) -> Optional[List[RewardItem]]:
    items: List[RewardItem] = []
    for value in values or []:
        if isinstance(value, RewardItem):
            item = value
        else:
            try:
                item = item_from_doc(value)
            except MalformedRecordError:
                return None
        if not item.material.strip() or item.amount <= 0:
            return None
        items.append(item)
    return items


class DataStore:
    def __init__(self, cache: EntityCache, codes: VerificationCodeService) -> None:
        self.cache = cache
        self.codes = codes

    def _now(self) -> int:
        return self.cache.clock()

    # Whitelist operations ----------------------------------------------

    def is_whitelist_enabled(self) -> bool:
        return bool(self.cache.setting(WHITELIST_ENABLED, False))

    def set_whitelist_enabled(self, enabled: bool) -> bool:
        self.cache.set_setting(WHITELIST_ENABLED, bool(enabled))
        logger.info("Whitelist %s", "enabled" if enabled else "disabled")
        return bool(enabled)

    def list_whitelist(self) -> List[WhitelistEntry]:
        return sorted(self.cache.all(WHITELIST), key=lambda entry: entry.created_at or 0)

    def is_whitelisted(self, player_uuid: str) -> bool:
        return self.cache.get(WHITELIST, _clean(player_uuid)) is not None

    def admits_player(self, player_uuid: str) -> bool:
        return not self.is_whitelist_enabled() or self.is_whitelisted(player_uuid)

    def add_to_whitelist(
        self, player_uuid: str, player_name: str, added_by: str, reason: Optional[str] = None
    ) -> Tuple[Optional[WhitelistEntry], Optional[Rejection]]:
        player_uuid = _clean(player_uuid)
        player_name = _clean(player_name)
        if not player_uuid or not player_name:
            return None, Rejection.INVALID_INPUT
        existing = self.cache.get(WHITELIST, player_uuid)
        entry = WhitelistEntry(
            player_uuid=player_uuid,
            player_name=player_name,
            added_by=added_by,
            reason=_clean(reason) or None,
            created_at=existing.created_at if existing else None,
        )
        self.cache.upsert(WHITELIST, entry)
        return entry, None

    def remove_from_whitelist(self, player_uuid: str) -> Optional[Rejection]:
        if self.cache.delete(WHITELIST, _clean(player_uuid)) is None:
            return Rejection.NOT_FOUND
        return None

    # Announcement operations -------------------------------------------

    def list_announcements(self) -> List[Announcement]:
        return sorted(
            self.cache.all(ANNOUNCEMENTS),
            key=lambda item: (-item.priority, -(item.created_at or 0)),
        )

    def get_announcement(self, announcement_id: str) -> Optional[Announcement]:
        return self.cache.get(ANNOUNCEMENTS, announcement_id)

    def save_announcement(
        self,
        title: str,
        content: str,
        author: str,
        *,
        announcement_id: Optional[str] = None,
        send_time: Optional[int] = None,
        priority: int = 0,
    ) -> Tuple[Optional[Announcement], Optional[Rejection]]:
        title = _clean(title)
        content = _clean(content)
        if not title or not content:
            return None, Rejection.INVALID_INPUT
        with self.cache.locked(ANNOUNCEMENTS, announcement_id):
            existing = None
            if announcement_id:
                existing = self.cache.get(ANNOUNCEMENTS, announcement_id)
                if existing is None:
                    return None, Rejection.NOT_FOUND
            if existing is not None and existing.send_time == send_time:
                sent = existing.sent
            else:
                sent = send_time is None
            announcement = Announcement(
                id=existing.id if existing else None,
                title=title,
                content=content,
                author=existing.author if existing else author,
                send_time=send_time,
                priority=int(priority or 0),
                sent=sent,
                read_status=dict(existing.read_status) if existing else {},
                created_at=existing.created_at if existing else None,
                updated_at=self._now(),
            )
            self.cache.upsert(ANNOUNCEMENTS, announcement)
        return announcement, None

    def delete_announcement(self, announcement_id: str) -> Optional[Rejection]:
        with self.cache.locked(ANNOUNCEMENTS, announcement_id):
            if self.cache.delete(ANNOUNCEMENTS, announcement_id) is None:
                return Rejection.NOT_FOUND
        return None

    def due_announcements(self, now: Optional[int] = None) -> List[Announcement]:
        moment = self._now() if now is None else now
        due = self.cache.filter(ANNOUNCEMENTS, lambda item: item.is_due(moment))
        due.sort(key=lambda item: (-item.priority, item.send_time or 0))
        return due

    def mark_announcement_sent(self, announcement_id: str) -> bool:
        with self.cache.locked(ANNOUNCEMENTS, announcement_id):
            announcement = self.cache.get(ANNOUNCEMENTS, announcement_id)
            if announcement is None or announcement.sent:
                return False
            self.cache.upsert(ANNOUNCEMENTS, replace(announcement, sent=True))
        return True

    def publish_due_announcements(self) -> int:
        """Mark every scheduled announcement whose time has come as sent."""
        published = 0
        for announcement in self.due_announcements():
            if self.mark_announcement_sent(announcement.id):
                logger.info("Announcement %s published", announcement.title)
                published += 1
        return published

    # Compensation operations -------------------------------------------

    def list_compensations(self) -> List[Compensation]:
        return sorted(self.cache.all(COMPENSATIONS), key=lambda item: -(item.created_at or 0))

    def get_compensation(self, compensation_id: str) -> Optional[Compensation]:
        return self.cache.get(COMPENSATIONS, compensation_id)

    def save_compensation(
        self,
        title: str,
        description: str,
        items: Iterable[Any],
        author: str,
        *,
        compensation_id: Optional[str] = None,
    ) -> Tuple[Optional[Compensation], Optional[Rejection]]:
        title = _clean(title)
        description = _clean(description)
        rewards = parse_items(items)
        if not title or not description or rewards is None:
            return None, Rejection.INVALID_INPUT
        with self.cache.locked(COMPENSATIONS, compensation_id):
            existing = None
            if compensation_id:
                existing = self.cache.get(COMPENSATIONS, compensation_id)
                if existing is None:
                    return None, Rejection.NOT_FOUND
            compensation = Compensation(
                id=existing.id if existing else None,
                title=title,
                description=description,
                items=rewards,
                author=existing.author if existing else author,
                claim_status=dict(existing.claim_status) if existing else {},
                created_at=existing.created_at if existing else None,
                updated_at=self._now(),
            )
            self.cache.upsert(COMPENSATIONS, compensation)
        return compensation, None

    def delete_compensation(self, compensation_id: str) -> Optional[Rejection]:
        with self.cache.locked(COMPENSATIONS, compensation_id):
            if self.cache.delete(COMPENSATIONS, compensation_id) is None:
                return Rejection.NOT_FOUND
        return None

    def list_claim_logs(self) -> List[ClaimLog]:
        return sorted(self.cache.all(CLAIM_LOGS), key=lambda log: -(log.created_at or 0))

    def claim_logs_for(self, compensation_id: str) -> List[ClaimLog]:
        logs = self.cache.filter(CLAIM_LOGS, lambda log: log.compensation_id == compensation_id)
        logs.sort(key=lambda log: log.created_at or 0)
        return logs

    # Administrator operations ------------------------------------------

    def list_admins(self) -> List[Admin]:
        return sorted(self.cache.all(ADMINS), key=lambda admin: admin.created_at or 0)

    def get_admin(self, username: str) -> Optional[Admin]:
        return self.cache.get(ADMINS, _clean(username))

    def authenticate_admin(self, username: str, password: str) -> Tuple[Optional[Admin], Optional[Rejection]]:
        admin = self.get_admin(username)
        if admin is None or not verify_password(admin.password_hash, password or ""):
            return None, Rejection.INVALID_CREDENTIALS
        return admin, None

    def create_admin(
        self, username: str, password: str, permissions: Iterable[Any]
    ) -> Tuple[Optional[Admin], Optional[Rejection]]:
        username = _clean(username)
        if not USERNAME_PATTERN.match(username):
            return None, Rejection.INVALID_USERNAME
        if len(password or "") < MIN_PASSWORD_LENGTH:
            return None, Rejection.WEAK_PASSWORD
        capabilities = parse_capabilities(permissions)
        if capabilities is None:
            return None, Rejection.INVALID_INPUT
        with self.cache.locked(ADMINS, username):
            if self.get_admin(username) is not None:
                return None, Rejection.ADMIN_EXISTS
            admin = Admin(username=username, password_hash=hash_password(password), permissions=capabilities)
            self.cache.upsert(ADMINS, admin)
        logger.info("Administrator %s created", username)
        return admin, None

    def set_admin_permissions(
        self, username: str, permissions: Iterable[Any]
    ) -> Tuple[Optional[Admin], Optional[Rejection]]:
        capabilities = parse_capabilities(permissions)
        if capabilities is None:
            return None, Rejection.INVALID_INPUT
        with self.cache.locked(ADMINS, _clean(username)):
            admin = self.get_admin(username)
            if admin is None:
                return None, Rejection.NOT_FOUND
            updated = replace(admin, permissions=capabilities)
            self.cache.upsert(ADMINS, updated)
        return updated, None

    def set_admin_password(self, username: str, password: str) -> Tuple[Optional[Admin], Optional[Rejection]]:
        if len(password or "") < MIN_PASSWORD_LENGTH:
            return None, Rejection.WEAK_PASSWORD
        with self.cache.locked(ADMINS, _clean(username)):
            admin = self.get_admin(username)
            if admin is None:
                return None, Rejection.NOT_FOUND
            updated = replace(admin, password_hash=hash_password(password))
            self.cache.upsert(ADMINS, updated)
        return updated, None

    def delete_admin(self, username: str) -> Optional[Rejection]:
        with self.cache.locked(ADMINS, "*"):
            if self.get_admin(username) is None:
                return Rejection.NOT_FOUND
            if self.cache.count(ADMINS) <= 1:
                return Rejection.LAST_ADMIN
            self.cache.delete(ADMINS, _clean(username))
        logger.info("Administrator %s deleted", username)
        return None

    # User operations ---------------------------------------------------

    def get_user(self, username: str) -> Optional[User]:
        wanted = _clean(username).lower()
        if not wanted:
            return None
        return self.cache.find(USERS, lambda user: user.username.lower() == wanted)

    def find_user_by_email(self, email: str) -> Optional[User]:
        wanted = _normalise_email(email)
        if not wanted:
            return None
        return self.cache.find(USERS, lambda user: user.email.lower() == wanted)

    def find_user_by_game_uuid(self, game_uuid: str) -> Optional[User]:
        wanted = _clean(game_uuid).lower()
        if not wanted:
            return None
        return self.cache.find(USERS, lambda user: (user.game_uuid or "").lower() == wanted)

    def find_user_by_qq(self, open_id: str, union_id: Optional[str] = None) -> Optional[User]:
        open_id = _clean(open_id)
        union_id = _clean(union_id)

        def matches(user: User) -> bool:
            binding = user.qq_binding
            if binding is None:
                return False
            return (bool(open_id) and binding.open_id == open_id) or (
                bool(union_id) and binding.union_id == union_id
            )

        return self.cache.find(USERS, matches)

    def _store_user(self, user: User) -> User:
        user.updated_at = self._now()
        self.cache.upsert(USERS, user)
        return user

    def register_user(self, username: str, password: str, email: str) -> Tuple[Optional[User], Optional[Rejection]]:
        username = _clean(username)
        email = _normalise_email(email)
        if not USERNAME_PATTERN.match(username):
            return None, Rejection.INVALID_USERNAME
        if len(password or "") < MIN_PASSWORD_LENGTH:
            return None, Rejection.WEAK_PASSWORD
        if not EMAIL_PATTERN.match(email):
            return None, Rejection.INVALID_EMAIL
        with self.cache.locked(USERS, _ALL_USERS):
            if self.get_user(username) is not None:
                return None, Rejection.USERNAME_TAKEN
            if self.find_user_by_email(email) is not None:
                return None, Rejection.EMAIL_TAKEN
            user = User(
                username=username,
                email=email,
                password_hash=hash_password(password),
                verification_key=secrets.token_hex(8),
            )
            self._store_user(user)
        logger.info("User %s registered", username)
        return user, None

    def authenticate_user(self, username: str, password: str) -> Tuple[Optional[User], Optional[Rejection]]:
        user = self.get_user(username)
        if user is None or not verify_password(user.password_hash, password or ""):
            return None, Rejection.INVALID_CREDENTIALS
        if not user.verified:
            return None, Rejection.NOT_VERIFIED
        with self.cache.locked(USERS, _ALL_USERS):
            current = self.get_user(user.username) or user
            updated = replace(current, last_login_at=self._now())
            self.cache.upsert(USERS, updated)
        return updated, None

    def authenticate_qq(self, open_id: str, union_id: str) -> Tuple[Optional[User], Optional[Rejection]]:
        """QQ login: both identifiers are required; either one may match the binding."""
        open_id = _clean(open_id)
        union_id = _clean(union_id)
        if not open_id or not union_id:
            return None, Rejection.INVALID_INPUT
        user = self.find_user_by_qq(open_id) or self.find_user_by_qq("", union_id)
        if user is None:
            return None, Rejection.QQ_UNBOUND
        if not user.verified:
            return None, Rejection.NOT_VERIFIED
        with self.cache.locked(USERS, _ALL_USERS):
            current = self.get_user(user.username) or user
            updated = replace(current, last_login_at=self._now())
            self.cache.upsert(USERS, updated)
        return updated, None

    def request_code(self, email: str, purpose: CodePurpose, mailer: Mailer) -> Optional[Rejection]:
        """Check the address suits ``purpose`` and mail it a fresh code."""
        email = _normalise_email(email)
        if not EMAIL_PATTERN.match(email):
            return Rejection.INVALID_EMAIL
        owner = self.find_user_by_email(email)
        if purpose is CodePurpose.REGISTER:
            if owner is None:
                return Rejection.EMAIL_UNKNOWN
            if owner.verified:
                return Rejection.EMAIL_TAKEN
        elif purpose is CodePurpose.RESET_PASSWORD:
            if owner is None:
                return Rejection.EMAIL_UNKNOWN
        elif owner is not None:
            return Rejection.EMAIL_TAKEN
        if not self.codes.send(mailer, email, purpose):
            return Rejection.MAIL_FAILED
        return None

    def verify_email(self, email: str, code: str) -> Tuple[Optional[User], Optional[Rejection]]:
        user = self.find_user_by_email(email)
        if user is None:
            return None, Rejection.EMAIL_UNKNOWN
        if not self.codes.consume(email, CodePurpose.REGISTER, code):
            return None, Rejection.CODE_INVALID
        with self.cache.locked(USERS, _ALL_USERS):
            user = self.get_user(user.username)
            if user is None:
                return None, Rejection.NOT_FOUND
            if not user.verified:
                user = self._store_user(replace(user, verified=True))
                logger.info("User %s verified %s", user.username, user.email)
        return user, None

    def bind_game_character(
        self, username: str, verification_key: str, game_uuid: str
    ) -> Tuple[Optional[User], Optional[Rejection]]:
        game_uuid = _clean(game_uuid).lower()
        if not game_uuid:
            return None, Rejection.INVALID_INPUT
        with self.cache.locked(USERS, _ALL_USERS):
            user = self.get_user(username)
            if user is None:
                return None, Rejection.NOT_FOUND
            if not user.verified:
                return None, Rejection.NOT_VERIFIED
            if not secrets.compare_digest(user.verification_key, _clean(verification_key)):
                return None, Rejection.KEY_MISMATCH
            if user.game_bound:
                return None, Rejection.ALREADY_BOUND
            if self.find_user_by_game_uuid(game_uuid) is not None:
                return None, Rejection.CHARACTER_TAKEN
            user = self._store_user(replace(user, game_uuid=game_uuid))
        logger.info("User %s bound game character %s", user.username, game_uuid)
        return user, None

    def bind_qq(
        self,
        username: str,
        open_id: str,
        union_id: str,
        nickname: str = "",
        avatar_url: str = "",
    ) -> Tuple[Optional[User], Optional[Rejection]]:
        open_id = _clean(open_id)
        union_id = _clean(union_id)
        if not open_id or not union_id:
            return None, Rejection.INVALID_INPUT
        with self.cache.locked(USERS, _ALL_USERS):
            user = self.get_user(username)
            if user is None:
                return None, Rejection.NOT_FOUND
            if not user.verified:
                return None, Rejection.NOT_VERIFIED
            holder = self.find_user_by_qq(open_id, union_id)
            if holder is not None and holder.username != user.username:
                return None, Rejection.QQ_TAKEN
            binding = QQBinding(
                open_id=open_id,
                union_id=union_id,
                nickname=_clean(nickname),
                avatar_url=_clean(avatar_url),
                bound_at=self._now(),
            )
            user = self._store_user(replace(user, qq_binding=binding))
        return user, None

    def reset_password(self, email: str, code: str, new_password: str) -> Tuple[Optional[User], Optional[Rejection]]:
        if len(new_password or "") < MIN_PASSWORD_LENGTH:
            return None, Rejection.WEAK_PASSWORD
        user = self.find_user_by_email(email)
        if user is None:
            return None, Rejection.EMAIL_UNKNOWN
        if not self.codes.consume(email, CodePurpose.RESET_PASSWORD, code):
            return None, Rejection.CODE_INVALID
        with self.cache.locked(USERS, _ALL_USERS):
            current = self.get_user(user.username) or user
            user = self._store_user(replace(current, password_hash=hash_password(new_password)))
        logger.info("User %s reset their password", user.username)
        return user, None

    def change_email(self, username: str, new_email: str, code: str) -> Tuple[Optional[User], Optional[Rejection]]:
        new_email = _normalise_email(new_email)
        if not EMAIL_PATTERN.match(new_email):
            return None, Rejection.INVALID_EMAIL
        with self.cache.locked(USERS, _ALL_USERS):
            user = self.get_user(username)
            if user is None:
                return None, Rejection.NOT_FOUND
            if self.find_user_by_email(new_email) is not None:
                return None, Rejection.EMAIL_TAKEN
            if not self.codes.consume(new_email, CodePurpose.CHANGE_EMAIL, code):
                return None, Rejection.CODE_INVALID
            user = self._store_user(replace(user, email=new_email))
        return user, None
