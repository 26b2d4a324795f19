"""
Background scheduler for import processing.

Runs ImportProcessor.run_once on a fixed interval in a daemon thread.
A tick that finds a pass already running is skipped by the processor.
"""

import threading
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from config import settings
from services.import_processor import ImportProcessor, get_import_processor

logger = structlog.get_logger(__name__)


class ImportScheduler:
    """Interval loop around the import processor."""

    def __init__(
        self,
        processor: Optional[ImportProcessor] = None,
        interval_seconds: Optional[float] = None,
    ):
        self.processor = processor or get_import_processor()
        self.interval_seconds = interval_seconds or settings.import_poll_interval_seconds
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._tick_count = 0
        self._last_tick: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            logger.warning("import_scheduler_already_started")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name="import-scheduler")
        self._thread.start()
        logger.info("import_scheduler_started", interval_seconds=self.interval_seconds)

    def stop(self, timeout: float = 5.0) -> None:
        """Signal the loop to stop and wait for the current pass."""
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join(timeout=timeout)
        if self._thread.is_alive():
            logger.warning("import_scheduler_stop_timeout")
        self._thread = None
        logger.info("import_scheduler_stopped", ticks=self._tick_count)

    def tick(self) -> None:
        """Run one scheduled pass."""
        self._tick_count += 1
        self._last_tick = datetime.now(timezone.utc)
        try:
            self.processor.run_once()
        except Exception as e:
            logger.error("import_scheduler_tick_failed", error=str(e))

    def _loop(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            self.tick()

    def health(self) -> dict[str, Any]:
        return {
            "running": self.is_running,
            "processing": self.processor.is_running,
            "tick_count": self._tick_count,
            "last_tick": self._last_tick.isoformat() if self._last_tick else None,
            "interval_seconds": self.interval_seconds,
        }


# Singleton instance
_import_scheduler: Optional[ImportScheduler] = None


def get_import_scheduler() -> ImportScheduler:
    """Get or create ImportScheduler instance."""
    global _import_scheduler
    if _import_scheduler is None:
        _import_scheduler = ImportScheduler()
    return _import_scheduler
