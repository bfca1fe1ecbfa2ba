"""Error types and caller-facing rejections."""

from __future__ import annotations

from enum import Enum


class StoreError(Exception):
    """Base class for storage failures."""


class MalformedRecordError(StoreError, ValueError):
    """A stored document or row could not be decoded into a record."""


class BackendUnavailableError(StoreError):
    """The configured relational backend could not be initialised."""


class Rejection(Enum):
    """Validation outcomes returned to callers instead of raised.

    Each member carries ``(message, http_status)``.
    """

    NOT_FOUND = ("记录不存在", 404)
    INVALID_INPUT = ("请求参数不完整或格式不正确", 400)
    INVALID_USERNAME = ("用户名需为3-32位字母、数字或下划线", 400)
    WEAK_PASSWORD = ("密码长度至少6位", 400)
    INVALID_EMAIL = ("邮箱格式不正确", 400)
    USERNAME_TAKEN = ("用户名已存在", 409)
    EMAIL_TAKEN = ("邮箱已被注册", 409)
    EMAIL_UNKNOWN = ("邮箱未注册", 404)
    INVALID_CREDENTIALS = ("用户名或密码错误", 401)
    NOT_VERIFIED = ("邮箱尚未验证", 403)
    CODE_INVALID = ("验证码错误或已过期", 400)
    KEY_MISMATCH = ("验证密钥错误", 400)
    ALREADY_BOUND = ("账户已绑定游戏角色", 409)
    CHARACTER_TAKEN = ("该游戏角色已绑定其他账户", 409)
    QQ_TAKEN = ("该QQ已绑定其他账户", 409)
    QQ_UNBOUND = ("该QQ尚未绑定账户", 404)
    GAME_UNBOUND = ("账户尚未绑定游戏角色", 403)
    ALREADY_CLAIMED = ("补偿已领取", 409)
    LAST_ADMIN = ("不能删除最后一个管理员", 409)
    ADMIN_EXISTS = ("管理员已存在", 409)
    MAIL_FAILED = ("验证码发送失败，请稍后重试", 500)

    @property
    def message(self) -> str:
        return self.value[0]

    @property
    def status(self) -> int:
        return self.value[1]
