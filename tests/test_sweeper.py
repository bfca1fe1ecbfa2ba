import threading

from acpanel.sweeper import Sweeper


class TestSweeper:
    def test_run_once_sums_removals(self) -> None:
        sweeper = Sweeper(0, [lambda: 2, lambda: 3])
        assert sweeper.run_once() == 5

    def test_failing_task_does_not_stop_the_others(self) -> None:
        def broken() -> int:
            raise RuntimeError("boom")

        sweeper = Sweeper(0, [broken, lambda: 1])
        assert sweeper.run_once() == 1

    def test_zero_interval_never_starts(self) -> None:
        sweeper = Sweeper(0, [lambda: 0])
        sweeper.start()
        assert not sweeper.running

    def test_background_thread_runs_tasks(self) -> None:
        ran = threading.Event()

        def task() -> int:
            ran.set()
            return 0

        sweeper = Sweeper(0.01, [task])
        sweeper.start()
        try:
            assert ran.wait(2)
            assert sweeper.running
        finally:
            sweeper.stop()
        assert not sweeper.running
