"""Admin-facing route registration."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from flask import request

from .. import codec
from ..auth import SessionTokenStore, admin_guard, bearer_token, json_ok, json_rejection
from ..datastore import DataStore
from ..errors import Rejection
from ..models import ANNOUNCEMENTS, CLAIM_LOGS, COMPENSATIONS, WHITELIST, Admin, Capability, Principal

logger = logging.getLogger(__name__)


def request_payload() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def target_key(payload: Dict[str, Any], name: str) -> str:
    """Identifier from the query string, falling back to the JSON body."""
    value = request.args.get(name) or payload.get(name)
    return str(value).strip() if value is not None else ""


def optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError("boolean is not a number")
    return int(value)


_TRUE_WORDS = {"1", "true", "yes", "on"}
_FALSE_WORDS = {"0", "false", "no", "off"}


def optional_bool(value: Any) -> Optional[bool]:
    """JSON booleans, 0/1, or the usual on/off words; anything else is a ValueError."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return value
    word = str(value).strip().lower()
    if word in _TRUE_WORDS:
        return True
    if word in _FALSE_WORDS:
        return False
    raise ValueError(f"not a boolean: {value!r}")


def admin_view(admin: Admin) -> Dict[str, Any]:
    return {
        "username": admin.username,
        "permissions": [capability.value for capability in admin.permissions],
        "created_at": admin.created_at,
    }


def register_admin_routes(app) -> None:
    datastore: DataStore = app.config["DATASTORE"]
    tokens: SessionTokenStore = app.config["TOKENS"]

    # Session -----------------------------------------------------------

    @app.post("/api/login")
    def api_admin_login() -> Any:
        payload = request_payload()
        admin, rejection = datastore.authenticate_admin(payload.get("username", ""), payload.get("password", ""))
        if rejection:
            logger.info("Failed admin login for %r from %s", payload.get("username"), request.remote_addr)
            return json_rejection(rejection)
        token = tokens.issue(Principal("admin", admin.username))
        logger.info("Admin %s logged in", admin.username)
        return json_ok("登录成功", token=token, admin=admin_view(admin))

    @app.post("/api/logout")
    def api_admin_logout() -> Any:
        admin, error = admin_guard()
        if error:
            return error
        tokens.revoke(bearer_token())
        return json_ok("已退出登录")

    # Announcements -----------------------------------------------------

    @app.get("/api/announcements")
    def api_list_announcements() -> Any:
        admin, error = admin_guard(Capability.ANNOUNCEMENT)
        if error:
            return error
        result = []
        for item in datastore.list_announcements():
            doc = codec.to_document(ANNOUNCEMENTS, item)
            doc["read_count"] = sum(1 for flag in item.read_status.values() if flag)
            result.append(doc)
        return json_ok("", announcements=result)

    @app.post("/api/announcements")
    def api_save_announcement() -> Any:
        admin, error = admin_guard(Capability.ANNOUNCEMENT)
        if error:
            return error
        payload = request_payload()
        try:
            send_time = optional_int(payload.get("send_time"))
            priority = optional_int(payload.get("priority")) or 0
        except (TypeError, ValueError):
            return json_rejection(Rejection.INVALID_INPUT)
        announcement, rejection = datastore.save_announcement(
            payload.get("title", ""),
            payload.get("content", ""),
            admin.username,
            announcement_id=target_key(payload, "id") or None,
            send_time=send_time,
            priority=priority,
        )
        if rejection:
            return json_rejection(rejection)
        return json_ok("公告已保存", announcement=codec.to_document(ANNOUNCEMENTS, announcement))

    @app.delete("/api/announcements")
    def api_delete_announcement() -> Any:
        admin, error = admin_guard(Capability.ANNOUNCEMENT)
        if error:
            return error
        rejection = datastore.delete_announcement(target_key(request_payload(), "id"))
        if rejection:
            return json_rejection(rejection)
        return json_ok("公告已删除")

    # Compensations -----------------------------------------------------

    @app.get("/api/compensations")
    def api_list_compensations() -> Any:
        admin, error = admin_guard(Capability.COMPENSATION)
        if error:
            return error
        result = []
        for item in datastore.list_compensations():
            doc = codec.to_document(COMPENSATIONS, item)
            doc["claim_count"] = sum(1 for flag in item.claim_status.values() if flag)
            result.append(doc)
        return json_ok("", compensations=result)

    @app.post("/api/compensations")
    def api_save_compensation() -> Any:
        admin, error = admin_guard(Capability.COMPENSATION)
        if error:
            return error
        payload = request_payload()
        items = payload.get("items") or []
        if not isinstance(items, list):
            return json_rejection(Rejection.INVALID_INPUT)
        compensation, rejection = datastore.save_compensation(
            payload.get("title", ""),
            payload.get("description", ""),
            items,
            admin.username,
            compensation_id=target_key(payload, "id") or None,
        )
        if rejection:
            return json_rejection(rejection)
        return json_ok("补偿已保存", compensation=codec.to_document(COMPENSATIONS, compensation))

    @app.delete("/api/compensations")
    def api_delete_compensation() -> Any:
        admin, error = admin_guard(Capability.COMPENSATION)
        if error:
            return error
        rejection = datastore.delete_compensation(target_key(request_payload(), "id"))
        if rejection:
            return json_rejection(rejection)
        return json_ok("补偿已删除")

    # Whitelist ---------------------------------------------------------

    @app.get("/api/whitelist")
    def api_list_whitelist() -> Any:
        admin, error = admin_guard(Capability.WHITELIST)
        if error:
            return error
        entries = [codec.to_document(WHITELIST, entry) for entry in datastore.list_whitelist()]
        return json_ok("", enabled=datastore.is_whitelist_enabled(), entries=entries)

    @app.post("/api/whitelist")
    def api_update_whitelist() -> Any:
        admin, error = admin_guard(Capability.WHITELIST)
        if error:
            return error
        payload = request_payload()
        action = str(payload.get("action") or "add").lower()
        if action == "toggle":
            try:
                enabled = optional_bool(payload.get("enabled"))
            except ValueError:
                return json_rejection(Rejection.INVALID_INPUT)
            if enabled is None:
                enabled = not datastore.is_whitelist_enabled()
            enabled = datastore.set_whitelist_enabled(enabled)
            return json_ok("白名单已开启" if enabled else "白名单已关闭", enabled=enabled)
        if action != "add":
            return json_rejection(Rejection.INVALID_INPUT)
        entry, rejection = datastore.add_to_whitelist(
            payload.get("player_uuid", ""),
            payload.get("player_name", ""),
            admin.username,
            payload.get("reason"),
        )
        if rejection:
            return json_rejection(rejection)
        return json_ok("已加入白名单", entry=codec.to_document(WHITELIST, entry))

    @app.delete("/api/whitelist")
    def api_delete_whitelist() -> Any:
        admin, error = admin_guard(Capability.WHITELIST)
        if error:
            return error
        rejection = datastore.remove_from_whitelist(target_key(request_payload(), "player_uuid"))
        if rejection:
            return json_rejection(rejection)
        return json_ok("已移出白名单")

    # Claim logs --------------------------------------------------------

    @app.get("/api/logs")
    def api_claim_logs() -> Any:
        admin, error = admin_guard(Capability.LOG)
        if error:
            return error
        compensation_id = request.args.get("compensation_id")
        logs = datastore.claim_logs_for(compensation_id) if compensation_id else datastore.list_claim_logs()
        return json_ok("", logs=[codec.to_document(CLAIM_LOGS, log) for log in logs])

    # Administrators ----------------------------------------------------

    @app.get("/api/admins")
    def api_list_admins() -> Any:
        admin, error = admin_guard(Capability.ADMIN)
        if error:
            return error
        return json_ok("", admins=[admin_view(item) for item in datastore.list_admins()])

    @app.post("/api/admins")
    def api_update_admins() -> Any:
        admin, error = admin_guard(Capability.ADMIN)
        if error:
            return error
        payload = request_payload()
        action = str(payload.get("action") or "create").lower()
        permissions = payload.get("permissions") or []
        if not isinstance(permissions, list):
            return json_rejection(Rejection.INVALID_INPUT)
        if action == "create":
            target, rejection = datastore.create_admin(
                payload.get("username", ""), payload.get("password", ""), permissions
            )
        elif action == "permissions":
            target, rejection = datastore.set_admin_permissions(payload.get("username", ""), permissions)
        elif action == "password":
            target, rejection = datastore.set_admin_password(payload.get("username", ""), payload.get("password", ""))
            if target is not None and target.username != admin.username:
                tokens.revoke_principal(Principal("admin", target.username))
        else:
            return json_rejection(Rejection.INVALID_INPUT)
        if rejection:
            return json_rejection(rejection)
        return json_ok("管理员已保存", admin=admin_view(target))

    @app.delete("/api/admins")
    def api_delete_admin() -> Any:
        admin, error = admin_guard(Capability.ADMIN)
        if error:
            return error
        username = target_key(request_payload(), "username")
        if not username:
            return json_rejection(Rejection.INVALID_INPUT)
        rejection = datastore.delete_admin(username)
        if rejection:
            return json_rejection(rejection)
        tokens.revoke_principal(Principal("admin", username))
        return json_ok("管理员已删除")
