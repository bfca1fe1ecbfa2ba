from acpanel.mail import LoggingMailer
from acpanel.models import CODE_TTL_SECONDS, EMAIL_CODES, CodePurpose
from acpanel.verification import VerificationCodeService

from .helpers import FakeClock


class TestIssue:
    def test_code_is_six_digits_with_five_minute_expiry(self, codes: VerificationCodeService, clock: FakeClock) -> None:
        code = codes.issue("Alex@Example.com", CodePurpose.REGISTER)
        assert len(code.code) == 6 and code.code.isdigit()
        assert code.expires_at == clock.now + CODE_TTL_SECONDS
        assert code.email == "alex@example.com"

    def test_new_code_supersedes_the_old_one(self, codes: VerificationCodeService) -> None:
        first = codes.issue("a@b.cn", CodePurpose.REGISTER)
        second = codes.issue("a@b.cn", CodePurpose.REGISTER)
        matching = codes.cache.filter(EMAIL_CODES, lambda entry: entry.matches("a@b.cn", CodePurpose.REGISTER))
        assert [entry.id for entry in matching] == [second.id]
        if first.code != second.code:
            assert not codes.validate("a@b.cn", CodePurpose.REGISTER, first.code)

    def test_purposes_are_independent(self, codes: VerificationCodeService) -> None:
        register = codes.issue("a@b.cn", CodePurpose.REGISTER)
        codes.issue("a@b.cn", CodePurpose.RESET_PASSWORD)
        assert codes.validate("a@b.cn", CodePurpose.REGISTER, register.code)


class TestValidate:
    def test_issue_then_validate(self, codes: VerificationCodeService) -> None:
        code = codes.issue("a@b.cn", CodePurpose.REGISTER)
        assert codes.validate("a@b.cn", CodePurpose.REGISTER, code.code)

    def test_other_codes_are_rejected(self, codes: VerificationCodeService) -> None:
        code = codes.issue("a@b.cn", CodePurpose.REGISTER)
        wrong = f"{(int(code.code) + 1) % 10 ** 6:06d}"
        assert not codes.validate("a@b.cn", CodePurpose.REGISTER, wrong)
        assert not codes.validate("a@b.cn", CodePurpose.REGISTER, "")
        assert not codes.validate("a@b.cn", CodePurpose.CHANGE_EMAIL, code.code)

    def test_expiry_boundary(self, codes: VerificationCodeService, clock: FakeClock) -> None:
        code = codes.issue("a@b.cn", CodePurpose.REGISTER)
        clock.advance(CODE_TTL_SECONDS)
        assert codes.validate("a@b.cn", CodePurpose.REGISTER, code.code)
        clock.advance(1)
        assert not codes.validate("a@b.cn", CodePurpose.REGISTER, code.code)

    def test_consume_is_single_use(self, codes: VerificationCodeService) -> None:
        code = codes.issue("a@b.cn", CodePurpose.RESET_PASSWORD)
        assert codes.consume("a@b.cn", CodePurpose.RESET_PASSWORD, code.code)
        assert not codes.consume("a@b.cn", CodePurpose.RESET_PASSWORD, code.code)


class TestSweepAndSend:
    def test_sweep_removes_only_expired_codes(self, codes: VerificationCodeService, clock: FakeClock) -> None:
        codes.issue("old@b.cn", CodePurpose.REGISTER)
        clock.advance(CODE_TTL_SECONDS + 1)
        fresh = codes.issue("new@b.cn", CodePurpose.REGISTER)
        assert codes.sweep_expired() == 1
        assert [entry.id for entry in codes.cache.all(EMAIL_CODES)] == [fresh.id]

    def test_send_mails_the_code(self, codes: VerificationCodeService) -> None:
        mailer = LoggingMailer()
        assert codes.send(mailer, "a@b.cn", CodePurpose.CHANGE_EMAIL)
        address, subject, body = mailer.outbox[0]
        stored = codes.cache.all(EMAIL_CODES)[0]
        assert address == "a@b.cn"
        assert subject == "修改邮箱验证"
        assert stored.code in body
        assert "5分钟" in body
