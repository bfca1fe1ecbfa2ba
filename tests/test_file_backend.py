import json
from pathlib import Path

import pytest

from acpanel.errors import StoreError
from acpanel.models import ADMINS, COMPENSATIONS, WHITELIST, WHITELIST_ENABLED, Admin, WhitelistEntry
from acpanel.storage import FileBackend


class TestLayout:
    def test_one_pretty_printed_file_per_record(self, tmp_path: Path) -> None:
        backend = FileBackend(tmp_path)
        backend.save_record(WHITELIST, WhitelistEntry(player_uuid="u-1", player_name="史蒂夫"))

        path = tmp_path / "whitelist" / "u-1.json"
        text = path.read_text(encoding="utf-8")
        assert "史蒂夫" in text
        assert text.startswith("{\n")
        assert not list((tmp_path / "whitelist").glob("*.tmp"))

    def test_admins_are_named_by_username(self, tmp_path: Path) -> None:
        backend = FileBackend(tmp_path)
        backend.save_all({ADMINS: [Admin(username="root", password_hash="h")]})
        assert (tmp_path / "admins" / "root.json").exists()

    def test_whitelist_flag_is_a_bare_boolean(self, tmp_path: Path) -> None:
        backend = FileBackend(tmp_path)
        backend.save_setting(WHITELIST_ENABLED, True)
        assert json.loads((tmp_path / "whitelist_enabled.json").read_text(encoding="utf-8")) is True

    def test_save_all_removes_stale_files(self, tmp_path: Path) -> None:
        backend = FileBackend(tmp_path)
        backend.save_all({WHITELIST: [WhitelistEntry("a", "A"), WhitelistEntry("b", "B")]})
        backend.save_all({WHITELIST: [WhitelistEntry("b", "B")]})
        assert sorted(path.name for path in (tmp_path / "whitelist").iterdir()) == ["b.json"]

    @pytest.mark.parametrize("key", ["", "../escape", "a/b", ".hidden"])
    def test_unsafe_keys_are_refused(self, tmp_path: Path, key: str) -> None:
        backend = FileBackend(tmp_path)
        with pytest.raises(StoreError):
            backend.save_record(WHITELIST, WhitelistEntry(player_uuid=key, player_name="x"))


class TestLoading:
    def test_missing_directories_load_empty(self, tmp_path: Path) -> None:
        loaded = FileBackend(tmp_path).load_all()
        assert all(records == [] for records in loaded.values())

    def test_unreadable_files_are_skipped(self, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
        backend = FileBackend(tmp_path)
        backend.save_record(WHITELIST, WhitelistEntry("good", "Good"))
        (tmp_path / "whitelist" / "broken.json").write_text("{not json", encoding="utf-8")
        (tmp_path / "whitelist" / "noid.json").write_text('{"player_name": "x"}', encoding="utf-8")
        (tmp_path / "compensations").mkdir()
        (tmp_path / "compensations" / "list.json").write_text("[1, 2]", encoding="utf-8")

        loaded = backend.load_all()

        assert [entry.player_uuid for entry in loaded[WHITELIST]] == ["good"]
        assert loaded[COMPENSATIONS] == []
        assert "broken.json" in caplog.text
        assert "noid.json" in caplog.text

    def test_unreadable_setting_is_ignored(self, tmp_path: Path) -> None:
        (tmp_path / "whitelist_enabled.json").write_text("yes please", encoding="utf-8")
        assert FileBackend(tmp_path).load_settings() == {}
