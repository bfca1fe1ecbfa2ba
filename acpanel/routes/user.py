"""End-user account routes."""

from __future__ import annotations

import logging
from typing import Any, Dict

from .. import codec
from ..auth import SessionTokenStore, bearer_token, json_ok, json_rejection, user_guard
from ..claims import ClaimService
from ..datastore import DataStore
from ..errors import Rejection
from ..mail import Mailer
from ..models import ANNOUNCEMENTS, COMPENSATIONS, CodePurpose, Principal, User
from .admin import request_payload

logger = logging.getLogger(__name__)


def field(payload: Dict[str, Any], *names: str) -> str:
    """First non-empty value among ``names``; accepts snake and camel case."""
    for name in names:
        value = payload.get(name)
        if value is not None and value != "":
            return str(value)
    return ""


def user_view(user: User) -> Dict[str, Any]:
    binding = user.qq_binding
    return {
        "username": user.username,
        "email": user.email,
        "verified": user.verified,
        "verification_key": user.verification_key,
        "game_uuid": user.game_uuid,
        "qq": {"nickname": binding.nickname, "avatar_url": binding.avatar_url} if binding else None,
        "created_at": user.created_at,
        "last_login_at": user.last_login_at,
    }


def register_user_routes(app) -> None:
    datastore: DataStore = app.config["DATASTORE"]
    tokens: SessionTokenStore = app.config["TOKENS"]
    claims: ClaimService = app.config["CLAIMS"]
    mailer: Mailer = app.config["MAILER"]

    def issue_token(user: User) -> str:
        return tokens.issue(Principal("user", user.username))

    # Accounts ----------------------------------------------------------

    @app.post("/api/user/register")
    def api_user_register() -> Any:
        payload = request_payload()
        user, rejection = datastore.register_user(
            field(payload, "username"), field(payload, "password"), field(payload, "email")
        )
        if rejection:
            return json_rejection(rejection)
        mail_rejection = datastore.request_code(user.email, CodePurpose.REGISTER, mailer)
        if mail_rejection:
            logger.warning("Registration code for %s was not sent: %s", user.username, mail_rejection.name)
            return json_ok("注册成功，但验证码发送失败，请稍后重新获取", mail_sent=False)
        return json_ok("注册成功，验证码已发送至邮箱", mail_sent=True)

    @app.post("/api/user/login")
    def api_user_login() -> Any:
        payload = request_payload()
        user, rejection = datastore.authenticate_user(field(payload, "username"), field(payload, "password"))
        if rejection:
            return json_rejection(rejection)
        return json_ok("登录成功", token=issue_token(user), user=user_view(user))

    @app.post("/api/user/logout")
    def api_user_logout() -> Any:
        user, error = user_guard()
        if error:
            return error
        tokens.revoke(bearer_token())
        return json_ok("已退出登录")

    @app.get("/api/user/validateToken")
    def api_user_validate_token() -> Any:
        user, error = user_guard()
        if error:
            return error
        return json_ok("令牌有效", user=user_view(user))

    # Verification ------------------------------------------------------

    @app.post("/api/user/sendVerificationCode")
    def api_user_send_code() -> Any:
        payload = request_payload()
        purpose = CodePurpose.parse(field(payload, "type", "purpose"))
        email = field(payload, "email")
        if purpose is None or not email:
            return json_rejection(Rejection.INVALID_INPUT)
        rejection = datastore.request_code(email, purpose, mailer)
        if rejection:
            return json_rejection(rejection)
        return json_ok("验证码发送成功，请检查邮箱")

    @app.post("/api/user/verifyEmail")
    def api_user_verify_email() -> Any:
        payload = request_payload()
        user, rejection = datastore.verify_email(field(payload, "email"), field(payload, "code"))
        if rejection:
            return json_rejection(rejection)
        return json_ok("邮箱验证成功", user=user_view(user))

    @app.post("/api/user/resetPassword")
    def api_user_reset_password() -> Any:
        payload = request_payload()
        user, rejection = datastore.reset_password(
            field(payload, "email"),
            field(payload, "code"),
            field(payload, "new_password", "newPassword", "password"),
        )
        if rejection:
            return json_rejection(rejection)
        tokens.revoke_principal(Principal("user", user.username))
        return json_ok("密码已重置，请重新登录")

    @app.post("/api/user/changeEmail")
    def api_user_change_email() -> Any:
        user, error = user_guard()
        if error:
            return error
        payload = request_payload()
        user, rejection = datastore.change_email(
            user.username, field(payload, "new_email", "newEmail", "email"), field(payload, "code")
        )
        if rejection:
            return json_rejection(rejection)
        return json_ok("邮箱已修改", user=user_view(user))

    # Bindings ----------------------------------------------------------

    @app.post("/api/user/bindGameRole")
    def api_user_bind_game_role() -> Any:
        payload = request_payload()
        user, rejection = datastore.bind_game_character(
            field(payload, "username"),
            field(payload, "verification_key", "verificationKey"),
            field(payload, "game_uuid", "minecraft_uuid", "minecraftUuid", "uuid"),
        )
        if rejection:
            return json_rejection(rejection)
        return json_ok("游戏角色绑定成功", user=user_view(user))

    @app.post("/api/user/bindQQ")
    def api_user_bind_qq() -> Any:
        user, error = user_guard()
        if error:
            return error
        payload = request_payload()
        user, rejection = datastore.bind_qq(
            user.username,
            field(payload, "open_id", "openId"),
            field(payload, "union_id", "unionId"),
            field(payload, "nickname"),
            field(payload, "avatar_url", "avatarUrl"),
        )
        if rejection:
            return json_rejection(rejection)
        return json_ok("QQ绑定成功", user=user_view(user))

    @app.post("/api/user/loginQQ")
    def api_user_login_qq() -> Any:
        payload = request_payload()
        user, rejection = datastore.authenticate_qq(
            field(payload, "open_id", "openId"), field(payload, "union_id", "unionId")
        )
        if rejection:
            return json_rejection(rejection)
        return json_ok("QQ登录成功", token=issue_token(user), user=user_view(user))

    # Player records ----------------------------------------------------

    @app.get("/api/user/announcements")
    def api_user_announcements() -> Any:
        user, error = user_guard()
        if error:
            return error
        if not user.game_bound:
            return json_rejection(Rejection.GAME_UNBOUND)
        result = []
        for item in claims.unread_announcements(user.game_uuid):
            doc = codec.to_document(ANNOUNCEMENTS, item)
            doc.pop("read_status", None)
            result.append(doc)
        return json_ok("", announcements=result)

    @app.post("/api/user/announcements/read")
    def api_user_mark_read() -> Any:
        user, error = user_guard()
        if error:
            return error
        if not user.game_bound:
            return json_rejection(Rejection.GAME_UNBOUND)
        changed, rejection = claims.mark_read(field(request_payload(), "id"), user.game_uuid)
        if rejection:
            return json_rejection(rejection)
        return json_ok("已标记为已读", changed=changed)

    @app.get("/api/user/compensations")
    def api_user_compensations() -> Any:
        user, error = user_guard()
        if error:
            return error
        if not user.game_bound:
            return json_rejection(Rejection.GAME_UNBOUND)
        result = []
        for item in claims.unclaimed_compensations(user.game_uuid):
            doc = codec.to_document(COMPENSATIONS, item)
            doc.pop("claim_status", None)
            result.append(doc)
        return json_ok("", compensations=result)
