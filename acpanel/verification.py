"""Email verification codes: issue, validate, consume, sweep."""

from __future__ import annotations

import logging
import secrets
from typing import Dict

from .cache import EntityCache
from .mail import Mailer
from .models import CODE_TTL_SECONDS, EMAIL_CODES, CodePurpose, EmailVerificationCode

logger = logging.getLogger(__name__)

SUBJECTS: Dict[CodePurpose, str] = {
    CodePurpose.REGISTER: "注册验证",
    CodePurpose.RESET_PASSWORD: "重置密码验证",
    CodePurpose.CHANGE_EMAIL: "修改邮箱验证",
}

_LABELS: Dict[CodePurpose, str] = {
    CodePurpose.REGISTER: "注册",
    CodePurpose.RESET_PASSWORD: "重置密码",
    CodePurpose.CHANGE_EMAIL: "修改邮箱",
}


def _normalise(email: str) -> str:
    return (email or "").strip().lower()


class VerificationCodeService:
    def __init__(self, cache: EntityCache) -> None:
        self.cache = cache

    def _lock(self, email: str, purpose: CodePurpose):
        return self.cache.locked(EMAIL_CODES, (email, purpose))

    def _current(self, email: str, purpose: CodePurpose):
        return self.cache.find(EMAIL_CODES, lambda entry: entry.matches(email, purpose))

    def issue(self, email: str, purpose: CodePurpose) -> EmailVerificationCode:
        """Create a fresh code, replacing any earlier one for the same pair."""
        address = _normalise(email)
        with self._lock(address, purpose):
            self.cache.delete_where(EMAIL_CODES, lambda entry: entry.matches(address, purpose))
            now = self.cache.clock()
            code = EmailVerificationCode(
                email=address,
                purpose=purpose,
                code=f"{secrets.randbelow(10 ** 6):06d}",
                expires_at=now + CODE_TTL_SECONDS,
                created_at=now,
            )
            self.cache.upsert(EMAIL_CODES, code)
        return code

    def validate(self, email: str, purpose: CodePurpose, code: str) -> bool:
        entry = self._current(_normalise(email), purpose)
        if entry is None or not isinstance(code, str):
            return False
        if entry.is_expired(self.cache.clock()):
            return False
        return secrets.compare_digest(entry.code, code)

    def consume(self, email: str, purpose: CodePurpose, code: str) -> bool:
        """Validate and, on success, remove the code so it cannot be reused."""
        address = _normalise(email)
        with self._lock(address, purpose):
            if not self.validate(address, purpose, code):
                return False
            self.cache.delete_where(EMAIL_CODES, lambda entry: entry.matches(address, purpose))
        return True

    def sweep_expired(self) -> int:
        now = self.cache.clock()
        removed = self.cache.delete_where(EMAIL_CODES, lambda entry: entry.is_expired(now))
        if removed:
            logger.info("Removed %d expired verification codes", len(removed))
        return len(removed)

    def send(self, mailer: Mailer, email: str, purpose: CodePurpose) -> bool:
        code = self.issue(email, purpose)
        body = f"您的{_LABELS[purpose]}验证码是：{code.code}，有效期5分钟。"
        return mailer.send_mail(code.email, SUBJECTS[purpose], body)
