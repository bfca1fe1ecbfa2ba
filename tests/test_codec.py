import json

import pytest

from acpanel import codec
from acpanel.errors import MalformedRecordError
from acpanel.models import (
    ADMINS,
    CLAIM_LOGS,
    COMPENSATIONS,
    EMAIL_CODES,
    USERS,
    Admin,
    Capability,
    ClaimLog,
    CodePurpose,
    Compensation,
    EmailVerificationCode,
    QQBinding,
    RewardItem,
    User,
)


class TestDocuments:
    def test_unknown_permissions_are_dropped(self) -> None:
        admin = codec.from_document(
            ADMINS,
            {"username": "root", "password_hash": "x", "permissions": ["ac.web.*", "ac.web.fly", "ac.web.*"]},
        )
        assert admin.permissions == [Capability.ALL]

    def test_reward_items_keep_stored_values(self) -> None:
        stored = Compensation(
            title="t",
            description="d",
            id="c1",
            items=[RewardItem(material="DIRT", amount=0, custom_name=""), RewardItem(material="BREAD")],
        )
        for decoded in (
            codec.from_document(COMPENSATIONS, codec.to_document(COMPENSATIONS, stored)),
            codec.from_row(COMPENSATIONS, codec.to_row(COMPENSATIONS, stored)),
        ):
            assert decoded.items == stored.items

    def test_missing_amount_defaults_to_one(self) -> None:
        assert codec.item_from_doc({"material": "DIAMOND"}).amount == 1

    def test_missing_identifier_is_malformed(self) -> None:
        with pytest.raises(MalformedRecordError):
            codec.from_document(COMPENSATIONS, {"title": "no id"})

    def test_non_object_document_is_malformed(self) -> None:
        with pytest.raises(MalformedRecordError):
            codec.from_document(ADMINS, ["admin"])

    def test_bare_material_names_are_accepted(self) -> None:
        compensation = codec.from_document(
            COMPENSATIONS, {"id": "c1", "title": "t", "description": "d", "items": ["DIAMOND"]}
        )
        assert compensation.items == [RewardItem(material="DIAMOND", amount=1)]

    def test_claim_log_uses_claim_time_key(self) -> None:
        log = ClaimLog(player_name="Steve", player_uuid="u1", compensation_id="c1", id="l1", created_at=42)
        doc = codec.to_document(CLAIM_LOGS, log)
        assert doc["claim_time"] == 42
        assert "created_at" not in doc
        assert codec.from_document(CLAIM_LOGS, doc) == log

    def test_code_purpose_accepts_legacy_spelling(self) -> None:
        code = codec.from_document(
            EMAIL_CODES,
            {"id": "e1", "email": "a@b.cn", "purpose": "RESET_PASSWORD", "code": "012345", "expires_at": 10},
        )
        assert code.purpose is CodePurpose.RESET_PASSWORD
        assert code.code == "012345"


class TestRows:
    def test_user_row_renames_and_encodes(self) -> None:
        user = User(
            username="alex",
            email="alex@example.com",
            password_hash="h",
            verified=True,
            game_uuid="uuid-1",
            qq_binding=QQBinding(open_id="o1", union_id="n1", nickname="Alex"),
            created_at=1,
        )
        row = codec.to_row(USERS, user)
        assert row["minecraft_uuid"] == "uuid-1"
        assert row["is_verified"] is True
        assert row["qq_number"] == "o1"
        assert json.loads(row["qq_binding"])["union_id"] == "n1"
        assert "game_uuid" not in row

        assert codec.from_row(USERS, row) == user

    def test_nested_items_are_json_text(self) -> None:
        compensation = Compensation(
            title="Outage",
            description="Sorry",
            id="c1",
            items=[RewardItem(material="DIAMOND", amount=3, custom_name="Gem", lore=["line"])],
            claim_status={"u1": True},
        )
        row = codec.to_row(COMPENSATIONS, compensation)
        assert isinstance(row["items"], str)
        assert codec.from_row(COMPENSATIONS, row) == compensation

    def test_invalid_json_column_is_malformed(self) -> None:
        row = codec.to_row(ADMINS, Admin(username="root", password_hash="h"))
        row["permissions"] = "{not json"
        with pytest.raises(MalformedRecordError):
            codec.from_row(ADMINS, row)

    def test_code_round_trips_through_row(self) -> None:
        code = EmailVerificationCode(
            email="a@b.cn", purpose=CodePurpose.CHANGE_EMAIL, code="999999", expires_at=300, id="e1", created_at=0
        )
        assert codec.from_row(EMAIL_CODES, codec.to_row(EMAIL_CODES, code)) == code
