"""Authentication and authorisation helpers."""

from __future__ import annotations

import logging
import secrets
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from flask import jsonify, request
from werkzeug.security import check_password_hash, generate_password_hash

from .deps import get_datastore, get_tokens
from .errors import Rejection
from .models import Admin, Capability, Principal, User, now_ts

logger = logging.getLogger(__name__)

HASH_PREFIXES = ("scrypt:", "pbkdf2:")


def looks_hashed(value: str) -> bool:
    """True for werkzeug ``method$salt$hash`` strings."""
    return bool(value) and value.startswith(HASH_PREFIXES) and value.count("$") == 2


def hash_password(password: str) -> str:
    if looks_hashed(password):
        return password
    return generate_password_hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    if not password_hash or password is None:
        return False
    try:
        return check_password_hash(password_hash, password)
    except ValueError:
        logger.warning("Stored password hash has an unsupported format")
        return False


# Session tokens ------------------------------------------------------


@dataclass
class _Session:
    principal: Principal
    issued_at: int
    last_seen: int


class SessionTokenStore:
    """Opaque bearer tokens mapped to principals.

    ``ttl`` of 0 disables expiry. With ``sliding`` the window restarts on
    every successful lookup; otherwise it is counted from issue time.
    """

    def __init__(self, ttl: int = 0, sliding: bool = False, clock: Callable[[], int] = now_ts) -> None:
        self.ttl = ttl
        self.sliding = sliding
        self.clock = clock
        self._lock = threading.Lock()
        self._sessions: Dict[str, _Session] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _expired(self, session: _Session, now: int) -> bool:
        if self.ttl <= 0:
            return False
        started = session.last_seen if self.sliding else session.issued_at
        return now - started > self.ttl

    def issue(self, principal: Principal) -> str:
        token = secrets.token_hex(16)
        now = self.clock()
        with self._lock:
            self._sessions[token] = _Session(principal, now, now)
        return token

    def resolve(self, token: Optional[str]) -> Optional[Principal]:
        if not token:
            return None
        now = self.clock()
        with self._lock:
            session = self._sessions.get(token)
            if session is None:
                return None
            if self._expired(session, now):
                del self._sessions[token]
                return None
            if self.sliding:
                session.last_seen = now
            return session.principal

    def revoke(self, token: Optional[str]) -> bool:
        if not token:
            return False
        with self._lock:
            return self._sessions.pop(token, None) is not None

    def revoke_principal(self, principal: Principal) -> int:
        with self._lock:
            tokens = [token for token, session in self._sessions.items() if session.principal == principal]
            for token in tokens:
                del self._sessions[token]
        return len(tokens)

    def sweep(self) -> int:
        now = self.clock()
        with self._lock:
            expired = [token for token, session in self._sessions.items() if self._expired(session, now)]
            for token in expired:
                del self._sessions[token]
        if expired:
            logger.info("Removed %d expired session tokens", len(expired))
        return len(expired)


# Request guards ------------------------------------------------------


def json_error(message: str, status: int) -> Tuple[Any, int]:
    return jsonify({"success": False, "message": message}), status


def json_rejection(rejection: Rejection) -> Tuple[Any, int]:
    return json_error(rejection.message, rejection.status)


def json_ok(message: str = "操作成功", **payload: Any) -> Any:
    body = {"success": True, "message": message}
    body.update(payload)
    return jsonify(body)


def bearer_token() -> Optional[str]:
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        return None
    return header[len("Bearer "):].strip() or None


def admin_guard(capability: Optional[Capability] = None) -> Tuple[Optional[Admin], Optional[Tuple[Any, int]]]:
    tokens = get_tokens()
    datastore = get_datastore()
    token = bearer_token()
    principal = tokens.resolve(token)
    if principal is None or not principal.is_admin:
        return None, json_error("未登录或登录已过期", 401)
    admin = datastore.get_admin(principal.username)
    if admin is None:
        tokens.revoke(token)
        return None, json_error("未登录或登录已过期", 401)
    if capability is not None and not admin.grants(capability):
        return None, json_error("权限不足", 403)
    return admin, None


def user_guard() -> Tuple[Optional[User], Optional[Tuple[Any, int]]]:
    tokens = get_tokens()
    datastore = get_datastore()
    token = bearer_token()
    principal = tokens.resolve(token)
    if principal is None or principal.is_admin:
        return None, json_error("未登录或登录已过期", 401)
    user = datastore.get_user(principal.username)
    if user is None:
        tokens.revoke(token)
        return None, json_error("未登录或登录已过期", 401)
    return user, None
