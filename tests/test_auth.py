from werkzeug.security import generate_password_hash

from acpanel.auth import SessionTokenStore, hash_password, looks_hashed, verify_password
from acpanel.models import Principal

from .helpers import FakeClock

ADMIN = Principal("admin", "root")
USER = Principal("user", "alex")


class TestPasswords:
    def test_plain_passwords_are_hashed(self) -> None:
        hashed = hash_password("secret")
        assert hashed != "secret"
        assert looks_hashed(hashed)
        assert verify_password(hashed, "secret")
        assert not verify_password(hashed, "other")

    def test_existing_hashes_are_kept(self) -> None:
        hashed = generate_password_hash("secret", method="pbkdf2:sha256")
        assert hash_password(hashed) == hashed

    def test_garbage_hash_never_verifies(self) -> None:
        assert not looks_hashed("md5$abc")
        assert not verify_password("not-a-hash", "secret")


class TestSessionTokens:
    def test_issue_resolve_revoke(self) -> None:
        tokens = SessionTokenStore()
        token = tokens.issue(ADMIN)
        assert len(token) == 32
        assert tokens.resolve(token) == ADMIN
        assert tokens.revoke(token)
        assert tokens.resolve(token) is None
        assert not tokens.revoke(token)

    def test_unknown_and_empty_tokens(self) -> None:
        tokens = SessionTokenStore()
        assert tokens.resolve(None) is None
        assert tokens.resolve("deadbeef") is None

    def test_absolute_expiry(self) -> None:
        clock = FakeClock()
        tokens = SessionTokenStore(ttl=60, clock=clock)
        token = tokens.issue(USER)
        clock.advance(30)
        assert tokens.resolve(token) == USER
        clock.advance(31)
        assert tokens.resolve(token) is None

    def test_sliding_expiry(self) -> None:
        clock = FakeClock()
        tokens = SessionTokenStore(ttl=60, sliding=True, clock=clock)
        token = tokens.issue(USER)
        for _ in range(3):
            clock.advance(50)
            assert tokens.resolve(token) == USER
        clock.advance(61)
        assert tokens.resolve(token) is None

    def test_zero_ttl_never_expires(self) -> None:
        clock = FakeClock()
        tokens = SessionTokenStore(ttl=0, clock=clock)
        token = tokens.issue(USER)
        clock.advance(10 ** 8)
        assert tokens.resolve(token) == USER

    def test_sweep_and_revoke_principal(self) -> None:
        clock = FakeClock()
        tokens = SessionTokenStore(ttl=60, clock=clock)
        tokens.issue(USER)
        clock.advance(120)
        tokens.issue(USER)
        tokens.issue(ADMIN)
        assert tokens.sweep() == 1
        assert tokens.revoke_principal(USER) == 1
        assert len(tokens) == 1
