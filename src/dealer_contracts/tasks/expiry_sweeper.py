"""Background runner that expires signing sessions past their deadline.

Expiry is also applied lazily whenever a session is used; the sweeper only
keeps statuses tidy for reporting. It goes through the same per-contract
write path as every other transition.
"""

import logging
import threading
from typing import Optional

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """Periodically calls ``SignatureRequestManager.expire_stale``."""

    def __init__(self, manager, interval_seconds: int = 300, batch_size: int = 500):
        self.manager = manager
        self.interval = interval_seconds
        self.batch_size = batch_size
        self.running = False
        self.thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    def start(self):
        self.running = True
        self._stop_event.clear()
        self.thread = threading.Thread(target=self._run_loop, name="expiry-sweeper", daemon=True)
        self.thread.start()
        logger.info(f"Expiry sweeper started (interval: {self.interval}s)")

    def stop(self):
        self.running = False
        self._stop_event.set()
        if self.thread:
            self.thread.join(timeout=5)
        logger.info("Expiry sweeper stopped")

    def run_once(self) -> int:
        """Expire everything currently past due. Returns the count."""
        total = 0
        while True:
            count = self.manager.expire_stale(limit=self.batch_size)
            total += count
            if count < self.batch_size:
                return total

    def _run_loop(self):
        while self.running:
            try:
                self.run_once()
            except Exception as e:
                logger.exception(f"Expiry sweeper error: {e}")
            self._stop_event.wait(self.interval)
