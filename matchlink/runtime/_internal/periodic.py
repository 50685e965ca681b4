from __future__ import annotations

import logging
import threading
from typing import Callable


class PeriodicWorker(threading.Thread):
    """Thread that calls `fn` every `interval_s` seconds until stopped."""

    def __init__(self, fn: Callable[[], object], interval_s: float, *, logger: logging.Logger, name: str):
        super().__init__(daemon=True, name=name)
        self._fn = fn
        self.interval_s = float(interval_s)
        self._log = logger
        self._stop_event = threading.Event()

    def run(self) -> None:
        while not self._stop_event.wait(self.interval_s):
            try:
                self._fn()
            except Exception:
                self._log.exception("PERIODIC_TASK_ERROR task=%s", self.name)

    def stop(self) -> None:
        self._stop_event.set()
