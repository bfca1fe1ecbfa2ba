"""Test doubles shared across modules."""

from typing import List, Tuple

from acpanel.models import RewardItem
from acpanel.storage import FileBackend

START = 1_700_000_000


class FakeClock:
    def __init__(self, now: int = START) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


class RecordingGranter:
    """Reward collaborator that records grants and fails listed materials."""

    def __init__(self, failing: Tuple[str, ...] = ()) -> None:
        self.failing = failing
        self.granted: List[Tuple[str, str, int]] = []

    def grant_reward(self, principal: str, item: RewardItem) -> bool:
        if item.material in self.failing:
            return False
        self.granted.append((principal, item.material, item.amount))
        return True


class BrokenBackend(FileBackend):
    def save_record(self, collection, record):
        raise OSError("disk full")

    def save_all(self, collections):
        raise OSError("disk full")

    def load_all(self):
        raise OSError("unreadable")
