"""Background maintenance: expired codes and tokens, scheduled announcements."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional, Sequence

logger = logging.getLogger(__name__)


class Sweeper:
    def __init__(self, interval: float, tasks: Sequence[Callable[[], int]]) -> None:
        self.interval = interval
        self.tasks = list(tasks)
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> int:
        removed = 0
        for task in self.tasks:
            try:
                removed += task()
            except Exception:
                logger.exception("Sweep task %s failed", getattr(task, "__qualname__", task))
        return removed

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            self.run_once()

    def start(self) -> None:
        if self.running or self.interval <= 0:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name="acpanel-sweeper")
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
