# automation_server/services/loop.py
import logging
import threading
import time
from typing import Callable

logger = logging.getLogger(__name__)


class BackgroundLoop:
    """
    Daemon thread calling ``step`` every ``interval_s`` seconds until stopped.

    The sleep is split into one-second ticks so ``stop()`` returns quickly.
    A failing step is logged and the loop keeps going.
    """

    def __init__(self, name: str, step: Callable[[], None], interval_s: int):
        self.name = name
        self.step = step
        self.interval_s = interval_s
        self._thread: threading.Thread | None = None
        self._running = False
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._running

    def _run(self) -> None:
        logger.info("%s started (every %ds)", self.name, self.interval_s)
        while self._running:
            try:
                self.step()
            except Exception as e:
                logger.error("Error in %s: %s", self.name, e, exc_info=True)

            for _ in range(self.interval_s):
                if not self._running:
                    break
                time.sleep(1)
        logger.info("%s stopped", self.name)

    def start(self, interval_s: int | None = None) -> bool:
        with self._lock:
            if self._running:
                logger.warning("%s already running", self.name)
                return False
            if interval_s is not None:
                self.interval_s = interval_s
            self._running = True
            self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
            self._thread.start()
            return True

    def stop(self, timeout: float = 5.0) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False
            if self._thread:
                self._thread.join(timeout=timeout)
            self._thread = None
