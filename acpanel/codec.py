"""Conversion between records, JSON documents and relational rows.

Documents are the on-disk shape used by the file backend: plain JSON objects
with nested lists and maps kept as-is. Rows are the relational shape: the same
fields, with nested structures JSON-encoded into text columns and a few
columns renamed to match the table layout.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .errors import MalformedRecordError
from .models import (
    ADMINS,
    ANNOUNCEMENTS,
    CLAIM_LOGS,
    COMPENSATIONS,
    EMAIL_CODES,
    USERS,
    WHITELIST,
    Admin,
    Announcement,
    Capability,
    ClaimLog,
    CodePurpose,
    Compensation,
    EmailVerificationCode,
    QQBinding,
    RewardItem,
    User,
    WhitelistEntry,
)

logger = logging.getLogger(__name__)

# Fields stored as JSON text in relational rows.
JSON_COLUMNS: Dict[str, Tuple[str, ...]] = {
    ADMINS: ("permissions",),
    ANNOUNCEMENTS: ("read_status",),
    COMPENSATIONS: ("items", "claim_status"),
    USERS: ("permissions", "qq_binding"),
}

# document key -> column name
ROW_RENAMES: Dict[str, Dict[str, str]] = {
    USERS: {"game_uuid": "minecraft_uuid", "verified": "is_verified"},
}


def _require(payload: Mapping[str, Any], name: str) -> Any:
    value = payload.get(name)
    if value is None or value == "":
        raise MalformedRecordError(f"missing required field '{name}'")
    return value


def _opt_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise MalformedRecordError(f"not an integer: {value!r}") from exc


def _bool_map(value: Any) -> Dict[str, bool]:
    if not value:
        return {}
    if not isinstance(value, dict):
        raise MalformedRecordError("status map must be an object")
    return {str(key): bool(flag) for key, flag in value.items()}


def _str_list(value: Any) -> List[str]:
    if not value:
        return []
    if not isinstance(value, list):
        raise MalformedRecordError("expected a list of strings")
    return [str(item) for item in value]


def _capabilities(value: Any) -> List[Capability]:
    capabilities: List[Capability] = []
    for raw in _str_list(value):
        try:
            capability = Capability(raw)
        except ValueError:
            logger.warning("Dropping unknown permission %r", raw)
            continue
        if capability not in capabilities:
            capabilities.append(capability)
    return capabilities


# Admins --------------------------------------------------------------


def _admin_to_doc(admin: Admin) -> Dict[str, Any]:
    return {
        "username": admin.username,
        "password_hash": admin.password_hash,
        "permissions": [capability.value for capability in admin.permissions],
        "created_at": admin.created_at,
    }


def _admin_from_doc(payload: Mapping[str, Any]) -> Admin:
    return Admin(
        username=str(_require(payload, "username")),
        password_hash=str(_require(payload, "password_hash")),
        permissions=_capabilities(payload.get("permissions")),
        created_at=_opt_int(payload.get("created_at")),
    )


# Announcements -------------------------------------------------------


def _announcement_to_doc(item: Announcement) -> Dict[str, Any]:
    return {
        "id": item.id,
        "title": item.title,
        "content": item.content,
        "author": item.author,
        "send_time": item.send_time,
        "priority": item.priority,
        "sent": item.sent,
        "read_status": dict(item.read_status),
        "created_at": item.created_at,
        "updated_at": item.updated_at,
    }


def _announcement_from_doc(payload: Mapping[str, Any]) -> Announcement:
    return Announcement(
        id=str(_require(payload, "id")),
        title=str(payload.get("title") or payload.get("name") or ""),
        content=str(payload.get("content") or ""),
        author=str(payload.get("author") or ""),
        send_time=_opt_int(payload.get("send_time")),
        priority=_opt_int(payload.get("priority")) or 0,
        sent=bool(payload.get("sent", False)),
        read_status=_bool_map(payload.get("read_status")),
        created_at=_opt_int(payload.get("created_at")),
        updated_at=_opt_int(payload.get("updated_at")),
    )


# Compensations -------------------------------------------------------


def item_to_doc(item: RewardItem) -> Dict[str, Any]:
    return {
        "material": item.material,
        "amount": item.amount,
        "custom_name": item.custom_name,
        "lore": list(item.lore),
    }


def item_from_doc(payload: Any) -> RewardItem:
    if isinstance(payload, str):
        # Older exports stored bare material names.
        return RewardItem(material=payload)
    if not isinstance(payload, dict):
        raise MalformedRecordError("reward item must be an object")
    custom_name = payload.get("custom_name")
    amount = _opt_int(payload.get("amount"))
    return RewardItem(
        material=str(_require(payload, "material")),
        amount=1 if amount is None else amount,
        custom_name=None if custom_name is None else str(custom_name),
        lore=_str_list(payload.get("lore")),
    )


def _compensation_to_doc(item: Compensation) -> Dict[str, Any]:
    return {
        "id": item.id,
        "title": item.title,
        "description": item.description,
        "items": [item_to_doc(reward) for reward in item.items],
        "author": item.author,
        "claim_status": dict(item.claim_status),
        "created_at": item.created_at,
        "updated_at": item.updated_at,
    }


def _compensation_from_doc(payload: Mapping[str, Any]) -> Compensation:
    raw_items = payload.get("items") or []
    if not isinstance(raw_items, list):
        raise MalformedRecordError("items must be a list")
    return Compensation(
        id=str(_require(payload, "id")),
        title=str(payload.get("title") or ""),
        description=str(payload.get("description") or ""),
        items=[item_from_doc(raw) for raw in raw_items],
        author=str(payload.get("author") or ""),
        claim_status=_bool_map(payload.get("claim_status")),
        created_at=_opt_int(payload.get("created_at")),
        updated_at=_opt_int(payload.get("updated_at")),
    )


# Whitelist -----------------------------------------------------------


def _whitelist_to_doc(entry: WhitelistEntry) -> Dict[str, Any]:
    return {
        "player_uuid": entry.player_uuid,
        "player_name": entry.player_name,
        "added_by": entry.added_by,
        "reason": entry.reason,
        "created_at": entry.created_at,
    }


def _whitelist_from_doc(payload: Mapping[str, Any]) -> WhitelistEntry:
    reason = payload.get("reason")
    return WhitelistEntry(
        player_uuid=str(_require(payload, "player_uuid")),
        player_name=str(payload.get("player_name") or ""),
        added_by=str(payload.get("added_by") or ""),
        reason=str(reason) if reason is not None else None,
        created_at=_opt_int(payload.get("created_at")),
    )


# Claim logs ----------------------------------------------------------


def _log_to_doc(log: ClaimLog) -> Dict[str, Any]:
    return {
        "id": log.id,
        "compensation_id": log.compensation_id,
        "player_name": log.player_name,
        "player_uuid": log.player_uuid,
        "claim_time": log.created_at,
    }


def _log_from_doc(payload: Mapping[str, Any]) -> ClaimLog:
    return ClaimLog(
        id=str(_require(payload, "id")),
        compensation_id=str(_require(payload, "compensation_id")),
        player_name=str(payload.get("player_name") or ""),
        player_uuid=str(payload.get("player_uuid") or ""),
        created_at=_opt_int(payload.get("claim_time")),
    )


# Users ---------------------------------------------------------------


def _qq_to_doc(binding: Optional[QQBinding]) -> Optional[Dict[str, Any]]:
    if binding is None:
        return None
    return {
        "open_id": binding.open_id,
        "union_id": binding.union_id,
        "nickname": binding.nickname,
        "avatar_url": binding.avatar_url,
        "bound_at": binding.bound_at,
    }


def _qq_from_doc(payload: Any) -> Optional[QQBinding]:
    if not payload:
        return None
    if not isinstance(payload, dict):
        raise MalformedRecordError("qq_binding must be an object")
    return QQBinding(
        open_id=str(_require(payload, "open_id")),
        union_id=str(_require(payload, "union_id")),
        nickname=str(payload.get("nickname") or ""),
        avatar_url=str(payload.get("avatar_url") or ""),
        bound_at=_opt_int(payload.get("bound_at")),
    )


def _user_to_doc(user: User) -> Dict[str, Any]:
    return {
        "username": user.username,
        "email": user.email,
        "password_hash": user.password_hash,
        "verification_key": user.verification_key,
        "verified": user.verified,
        "game_uuid": user.game_uuid,
        "qq_binding": _qq_to_doc(user.qq_binding),
        "permissions": list(user.permissions),
        "created_at": user.created_at,
        "updated_at": user.updated_at,
        "last_login_at": user.last_login_at,
    }


def _user_from_doc(payload: Mapping[str, Any]) -> User:
    game_uuid = payload.get("game_uuid")
    return User(
        username=str(_require(payload, "username")),
        email=str(_require(payload, "email")),
        password_hash=str(_require(payload, "password_hash")),
        verification_key=str(payload.get("verification_key") or ""),
        verified=bool(payload.get("verified", False)),
        game_uuid=str(game_uuid) if game_uuid else None,
        qq_binding=_qq_from_doc(payload.get("qq_binding")),
        permissions=_str_list(payload.get("permissions")),
        created_at=_opt_int(payload.get("created_at")),
        updated_at=_opt_int(payload.get("updated_at")),
        last_login_at=_opt_int(payload.get("last_login_at")),
    )


# Verification codes --------------------------------------------------


def _code_to_doc(code: EmailVerificationCode) -> Dict[str, Any]:
    return {
        "id": code.id,
        "email": code.email,
        "purpose": code.purpose.value,
        "code": code.code,
        "expires_at": code.expires_at,
        "created_at": code.created_at,
    }


def _code_from_doc(payload: Mapping[str, Any]) -> EmailVerificationCode:
    purpose = CodePurpose.parse(str(_require(payload, "purpose")))
    if purpose is None:
        raise MalformedRecordError(f"unknown code purpose {payload.get('purpose')!r}")
    return EmailVerificationCode(
        id=str(_require(payload, "id")),
        email=str(_require(payload, "email")),
        purpose=purpose,
        code=str(_require(payload, "code")),
        expires_at=int(_opt_int(_require(payload, "expires_at")) or 0),
        created_at=_opt_int(payload.get("created_at")),
    )


_ENCODERS: Dict[str, Callable[[Any], Dict[str, Any]]] = {
    ADMINS: _admin_to_doc,
    ANNOUNCEMENTS: _announcement_to_doc,
    COMPENSATIONS: _compensation_to_doc,
    WHITELIST: _whitelist_to_doc,
    CLAIM_LOGS: _log_to_doc,
    USERS: _user_to_doc,
    EMAIL_CODES: _code_to_doc,
}

_DECODERS: Dict[str, Callable[[Mapping[str, Any]], Any]] = {
    ADMINS: _admin_from_doc,
    ANNOUNCEMENTS: _announcement_from_doc,
    COMPENSATIONS: _compensation_from_doc,
    WHITELIST: _whitelist_from_doc,
    CLAIM_LOGS: _log_from_doc,
    USERS: _user_from_doc,
    EMAIL_CODES: _code_from_doc,
}


def to_document(collection: str, record: Any) -> Dict[str, Any]:
    return _ENCODERS[collection](record)


def from_document(collection: str, payload: Any) -> Any:
    if not isinstance(payload, dict):
        raise MalformedRecordError("document must be a JSON object")
    return _DECODERS[collection](payload)


def to_row(collection: str, record: Any) -> Dict[str, Any]:
    row = to_document(collection, record)
    for name in JSON_COLUMNS.get(collection, ()):
        value = row.get(name)
        row[name] = json.dumps(value, ensure_ascii=False) if value is not None else None
    for doc_key, column in ROW_RENAMES.get(collection, {}).items():
        row[column] = row.pop(doc_key)
    if collection == USERS:
        binding = record.qq_binding
        row["qq_number"] = binding.open_id if binding else None
    return row


def from_row(collection: str, row: Mapping[str, Any]) -> Any:
    payload = dict(row)
    for doc_key, column in ROW_RENAMES.get(collection, {}).items():
        payload[doc_key] = payload.pop(column, None)
    payload.pop("qq_number", None)
    for name in JSON_COLUMNS.get(collection, ()):
        raw = payload.get(name)
        if raw is None or raw == "":
            payload[name] = None
            continue
        if isinstance(raw, str):
            try:
                payload[name] = json.loads(raw)
            except json.JSONDecodeError as exc:
                raise MalformedRecordError(f"column '{name}' is not valid JSON") from exc
    return from_document(collection, payload)
