"""Frame hand-off and worker primitives shared by the capture and analysis threads."""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Optional

import numpy as np

from nakamonrec.vision.frames import to_bgr


logger = logging.getLogger(__name__)


class FrameSlot:
    """Latest-frame buffer. Writers overwrite, readers get a private 3-channel BGR copy."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._frame: Optional[np.ndarray] = None
        self._seq = 0

    def put(self, frame: np.ndarray) -> int:
        copy = np.array(to_bgr(frame), copy=True)
        with self._lock:
            self._frame = copy
            self._seq += 1
            return self._seq

    def snapshot(self) -> Optional[np.ndarray]:
        with self._lock:
            if self._frame is None:
                return None
            return self._frame.copy()

    @property
    def seq(self) -> int:
        with self._lock:
            return self._seq

    def clear(self) -> None:
        with self._lock:
            self._frame = None


class RateLimiter:
    def __init__(self, interval_s: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.interval_s = interval_s
        self._clock = clock
        self._last: Optional[float] = None
        self._lock = threading.Lock()

    def ready(self) -> bool:
        """True (and the window restarts) when ``interval_s`` has passed since the last admit."""
        now = self._clock()
        with self._lock:
            if self._last is not None and now - self._last < self.interval_s:
                return False
            self._last = now
            return True

    def reset(self) -> None:
        with self._lock:
            self._last = None


class PassScheduler:
    """Single worker running delayed tasks strictly one after another.

    Delays are slept on the worker itself, so a task scheduled from inside a
    running task starts no earlier than ``delay_s`` after its parent finished.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=name)
        self._stop = threading.Event()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def schedule(self, delay_s: float, fn: Callable[..., Any], *args: Any) -> Optional[Future]:
        if self._stop.is_set():
            return None
        try:
            return self._executor.submit(self._run, delay_s, fn, args)
        except RuntimeError:
            # executor already shut down
            return None

    def _run(self, delay_s: float, fn: Callable[..., Any], args: tuple) -> None:
        if delay_s > 0 and self._stop.wait(delay_s):
            return
        if self._stop.is_set():
            return
        try:
            fn(*args)
        except Exception:
            logger.exception("%s task failed", self.name)

    def shutdown(self, wait: bool = True) -> None:
        self._stop.set()
        self._executor.shutdown(wait=wait, cancel_futures=True)
