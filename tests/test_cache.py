import threading
import time
from pathlib import Path

from acpanel.cache import EntityCache, KeyedLocks
from acpanel.models import (
    ANNOUNCEMENTS,
    EMAIL_CODES,
    WHITELIST,
    WHITELIST_ENABLED,
    Announcement,
    CodePurpose,
    EmailVerificationCode,
    WhitelistEntry,
)
from acpanel.storage import FileBackend, StorageFacade

from .helpers import START, BrokenBackend, FakeClock


class TestUpsert:
    def test_assigns_id_and_creation_time(self, cache: EntityCache) -> None:
        announcement = Announcement(title="Hi", content="There")
        cache.upsert(ANNOUNCEMENTS, announcement)
        assert announcement.id and len(announcement.id) == 32
        assert announcement.created_at == START

    def test_keeps_existing_creation_time(self, cache: EntityCache) -> None:
        announcement = Announcement(title="Hi", content="There", id="a1", created_at=5)
        cache.upsert(ANNOUNCEMENTS, announcement)
        assert cache.get(ANNOUNCEMENTS, "a1").created_at == 5

    def test_replaces_whole_value_by_key(self, cache: EntityCache) -> None:
        cache.upsert(WHITELIST, WhitelistEntry("u1", "Steve", reason="old"))
        cache.upsert(WHITELIST, WhitelistEntry("u1", "Steve"))
        entries = cache.all(WHITELIST)
        assert len(entries) == 1
        assert entries[0].reason is None

    def test_write_goes_through_to_storage(self, cache: EntityCache, file_storage: StorageFacade) -> None:
        cache.upsert(WHITELIST, WhitelistEntry("u1", "Steve"))
        assert [entry.player_uuid for entry in file_storage.load_all()[WHITELIST]] == ["u1"]

    def test_failed_save_keeps_the_mutation(self, tmp_path: Path, clock: FakeClock) -> None:
        cache = EntityCache(StorageFacade(BrokenBackend(tmp_path)), clock)
        assert cache.upsert(WHITELIST, WhitelistEntry("u1", "Steve")) is False
        assert cache.get(WHITELIST, "u1") is not None


class TestReads:
    def test_all_returns_an_immutable_snapshot(self, cache: EntityCache) -> None:
        cache.upsert(WHITELIST, WhitelistEntry("u1", "Steve"))
        snapshot = cache.all(WHITELIST)
        cache.upsert(WHITELIST, WhitelistEntry("u2", "Alex"))
        assert isinstance(snapshot, tuple)
        assert len(snapshot) == 1
        assert len(cache.all(WHITELIST)) == 2

    def test_filter_and_find(self, cache: EntityCache) -> None:
        cache.upsert(WHITELIST, WhitelistEntry("u1", "Steve"))
        cache.upsert(WHITELIST, WhitelistEntry("u2", "Alex"))
        assert cache.find(WHITELIST, lambda entry: entry.player_name == "Alex").player_uuid == "u2"
        assert cache.filter(WHITELIST, lambda entry: entry.player_name.startswith("Z")) == []


class TestDelete:
    def test_delete_missing_returns_none(self, cache: EntityCache) -> None:
        cache.upsert(WHITELIST, WhitelistEntry("u1", "Steve"))
        assert cache.delete(WHITELIST, "nobody") is None
        assert len(cache.all(WHITELIST)) == 1

    def test_delete_where_removes_matches_from_storage(
        self, cache: EntityCache, file_storage: StorageFacade
    ) -> None:
        cache.upsert(WHITELIST, WhitelistEntry("u1", "Steve"))
        cache.upsert(WHITELIST, WhitelistEntry("u2", "Alex"))
        removed = cache.delete_where(WHITELIST, lambda entry: entry.player_uuid == "u1")
        assert [entry.player_uuid for entry in removed] == ["u1"]
        assert [entry.player_uuid for entry in file_storage.load_all()[WHITELIST]] == ["u2"]


class TestLoad:
    def test_expired_codes_are_not_loaded(self, tmp_path: Path, clock: FakeClock) -> None:
        storage = StorageFacade(FileBackend(tmp_path))
        storage.save_all(
            {
                EMAIL_CODES: [
                    EmailVerificationCode("a@b.cn", CodePurpose.REGISTER, "111111", expires_at=START - 1, id="old"),
                    EmailVerificationCode("a@b.cn", CodePurpose.CHANGE_EMAIL, "222222", expires_at=START + 60, id="new"),
                ]
            }
        )
        cache = EntityCache(storage, clock)
        cache.load()
        assert [code.id for code in cache.all(EMAIL_CODES)] == ["new"]

    def test_settings_survive_reload(self, file_storage: StorageFacade, clock: FakeClock) -> None:
        cache = EntityCache(file_storage, clock)
        cache.load()
        cache.set_setting(WHITELIST_ENABLED, True)

        reloaded = EntityCache(file_storage, clock)
        reloaded.load()
        assert reloaded.setting(WHITELIST_ENABLED) is True

    def test_flush_rewrites_everything(self, cache: EntityCache, file_storage: StorageFacade) -> None:
        cache.upsert(WHITELIST, WhitelistEntry("u1", "Steve"))
        cache.set_setting(WHITELIST_ENABLED, True)
        assert cache.flush()
        assert len(file_storage.load_all()[WHITELIST]) == 1
        assert file_storage.load_settings() == {WHITELIST_ENABLED: True}


class DelayedRewriteBackend(FileBackend):
    """Starts a concurrent single-record write just as the bulk rewrite begins."""

    cache: EntityCache

    def save_all(self, collections):
        writer = threading.Thread(target=self.cache.upsert, args=(WHITELIST, WhitelistEntry("late", "Alex")))
        writer.start()
        writer.join(0.2)
        self.writer = writer
        super().save_all(collections)


class TestFlushConcurrency:
    def test_single_write_during_flush_reaches_disk(self, tmp_path: Path, clock: FakeClock) -> None:
        backend = DelayedRewriteBackend(tmp_path)
        storage = StorageFacade(backend)
        cache = EntityCache(storage, clock)
        cache.load()
        backend.cache = cache
        cache.upsert(WHITELIST, WhitelistEntry("early", "Steve"))

        assert cache.flush()
        backend.writer.join(5)

        on_disk = sorted(entry.player_uuid for entry in storage.load_all()[WHITELIST])
        in_memory = sorted(entry.player_uuid for entry in cache.all(WHITELIST))
        assert in_memory == ["early", "late"]
        assert on_disk == in_memory


class TestRecordLocks:
    def test_released_keys_are_forgotten(self) -> None:
        locks = KeyedLocks()
        for index in range(1000):
            with locks.hold(("announcements", f"junk-{index}")):
                assert len(locks) == 1
        assert len(locks) == 0

    def test_nested_holds_keep_the_entry(self) -> None:
        locks = KeyedLocks()
        with locks.hold("k"):
            with locks.hold("k"):
                pass
            assert len(locks) == 1
        assert len(locks) == 0

    def test_waiters_share_one_lock(self) -> None:
        locks = KeyedLocks()
        inside = []
        overlap = []

        def work() -> None:
            with locks.hold("k"):
                inside.append(1)
                overlap.append(len(inside))
                time.sleep(0.01)
                inside.pop()

        threads = [threading.Thread(target=work) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert max(overlap) == 1
        assert len(locks) == 0
