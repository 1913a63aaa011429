"""debounced_saver.py — Best-effort debounced persistence of world state.

Coalesces frequent saves under bursty activity (one movement tick per second
would otherwise rewrite npcs.json every second). Runs a small daemon waiter
thread; safe to call from request threads and the simulation clock alike.

Design:
- debounce(): schedule a save soon; repeated calls within the window push the
  deadline back.
- flush(): perform an immediate save (used on shutdown and by the periodic
  flush).
- close(): flush one last time and ignore any later debounce().
"""

from __future__ import annotations

import atexit
import threading
import time
from typing import Callable, Optional

from safe_utils import safe_call


class DebouncedSaver:
    def __init__(self, save_fn: Callable[[], None], *, interval_ms: int = 300) -> None:
        self._save_fn = save_fn
        self._interval_s = max(0.0, float(interval_ms) / 1000.0)
        self._next_deadline: Optional[float] = None
        self._armed = False
        self._closed = False
        self._guard = threading.Lock()
        # Serializes save_fn so a periodic flush and a debounced flush never overlap
        self._save_lock = threading.Lock()
        atexit.register(self.flush)

    @property
    def pending(self) -> bool:
        return self._armed

    def debounce(self) -> None:
        with self._guard:
            if self._closed:
                return
            self._next_deadline = time.monotonic() + self._interval_s
            if self._armed:
                return
            self._armed = True
        t = threading.Thread(target=self._wait_and_flush, name='debounced-saver', daemon=True)
        t.start()

    def _wait_and_flush(self) -> None:
        # Poll in small chunks so a reset of _next_deadline is picked up quickly
        while True:
            with self._guard:
                nd = self._next_deadline
            if nd is None:
                break
            dt = nd - time.monotonic()
            if dt <= 0:
                break
            time.sleep(min(0.05, dt))
        self.flush()

    def flush(self) -> None:
        with self._guard:
            self._next_deadline = None
            self._armed = False
        with self._save_lock:
            safe_call(self._save_fn)

    def close(self) -> None:
        with self._guard:
            self._closed = True
        self.flush()
        safe_call(atexit.unregister, self.flush)
