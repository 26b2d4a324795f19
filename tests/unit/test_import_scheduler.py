"""
Unit tests for the background import scheduler.

Run: pytest tests/unit/test_import_scheduler.py -v
"""

import threading
from unittest.mock import MagicMock

from services.import_scheduler import ImportScheduler


def make_processor() -> MagicMock:
    processor = MagicMock()
    processor.is_running = False
    return processor


class TestImportScheduler:

    def test_tick_runs_one_pass(self):
        processor = make_processor()
        scheduler = ImportScheduler(processor=processor, interval_seconds=60)

        scheduler.tick()

        processor.run_once.assert_called_once()
        assert scheduler.health()["tick_count"] == 1
        assert scheduler.health()["last_tick"] is not None

    def test_tick_survives_processor_error(self):
        processor = make_processor()
        processor.run_once.side_effect = RuntimeError("database unavailable")
        scheduler = ImportScheduler(processor=processor, interval_seconds=60)

        scheduler.tick()

        assert scheduler.health()["tick_count"] == 1

    def test_loop_ticks_until_stopped(self):
        processor = make_processor()
        ticked = threading.Event()
        processor.run_once.side_effect = lambda: ticked.set()
        scheduler = ImportScheduler(processor=processor, interval_seconds=0.01)

        scheduler.start()
        try:
            assert ticked.wait(timeout=5)
            assert scheduler.is_running is True
        finally:
            scheduler.stop()

        assert scheduler.is_running is False

    def test_start_twice_keeps_one_thread(self):
        scheduler = ImportScheduler(processor=make_processor(), interval_seconds=60)

        scheduler.start()
        first = scheduler._thread
        scheduler.start()
        try:
            assert scheduler._thread is first
        finally:
            scheduler.stop()

    def test_stop_without_start(self):
        scheduler = ImportScheduler(processor=make_processor(), interval_seconds=60)
        scheduler.stop()
        assert scheduler.health()["running"] is False
