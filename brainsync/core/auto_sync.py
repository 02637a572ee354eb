"""
Recurring auto-sync timer
"""
import threading
from typing import Callable, Optional

from .errors import SyncInProgressError
from ..utils.logging import log, vlog, warn


class AutoSyncTimer:
    """Runs manager.sync_now() every `interval` seconds on a daemon thread.

    A fire that overlaps a running pass (manual or timer-driven) is skipped,
    never queued.
    """

    def __init__(self, manager, interval: float, on_result: Optional[Callable] = None):
        if interval <= 0:
            raise ValueError("auto-sync interval must be positive")
        self.manager = manager
        self.interval = interval
        self.on_result = on_result
        self.fired = 0
        self.skipped = 0
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        self.stop()
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="auto-sync", daemon=True)
        self._thread.start()
        log(f"[auto] syncing every {self.interval:g}s")

    def stop(self, timeout: Optional[float] = None):
        if self._thread is None:
            return
        self._stop.set()
        if self._thread is not threading.current_thread():
            self._thread.join(timeout)
        self._thread = None

    def _loop(self):
        while not self._stop.wait(self.interval):
            self.tick()

    def tick(self):
        """One timer fire."""
        if not self.manager.is_ready():
            vlog("[auto] not set up, skipping")
            self.skipped += 1
            return None
        if self.manager.is_syncing:
            vlog("[auto] pass already running, skipping")
            self.skipped += 1
            return None
        try:
            result = self.manager.sync_now()
        except SyncInProgressError:
            vlog("[auto] pass already running, skipping")
            self.skipped += 1
            return None
        self.fired += 1
        if result.pushed or result.pulled:
            log(f"[auto] sync complete: {len(result.pushed)} pushed, {len(result.pulled)} pulled")
        if result.errors:
            warn(f"[auto] sync finished with {len(result.errors)} error(s)")
        if self.on_result is not None:
            self.on_result(result)
        return result
