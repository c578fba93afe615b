"""
Background Prioritizer — full passes off the caller's thread.

One dedicated worker runs passes one at a time. A request made while a pass
is queued but not yet started joins that queued pass, so a burst of user
actions costs at most one extra pass. submit() returns a Future that callers
may ignore or wait on.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class BackgroundPrioritizer:
    def __init__(self, run_pass: Callable[[], object]):
        self._run_pass = run_pass
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="prioritizer")
        self._lock = threading.Lock()
        self._queued: Optional[Future] = None
        self.passes = 0

    def _run(self):
        with self._lock:
            self._queued = None
        self.passes += 1
        try:
            return self._run_pass()
        except Exception:
            logger.exception("Background prioritization pass failed")
            raise

    def submit(self) -> Future:
        with self._lock:
            if self._queued is not None:
                return self._queued
            future = self._executor.submit(self._run)
            # Cleared by _run, which cannot start before this lock is released
            self._queued = future
            return future

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
