"""
Small concurrency helpers for the threaded server.

Why this exists:
- Flask request threads, the Socket.IO background tasks and the simulation
  clock all touch the same World. Every logical operation (one paint, one
  spawn tick, one movement tick, one snapshot) must run under one lock.
- We hand out plain lock objects and a context manager so call sites read the
  same everywhere and never forget to release.

Usage:
    from concurrency_utils import new_lock, atomic

    lock = new_lock()
    with atomic(lock):
        grid.upsert(x, y, color)

Design notes:
- The lock is intentionally non-reentrant. World methods never call each other
  while holding it, so re-entry would be a bug and should deadlock loudly in
  tests instead of silently nesting.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator


def new_lock() -> threading.Lock:
    """Return a fresh exclusive lock for one World instance."""
    return threading.Lock()


@contextmanager
def atomic(lock: threading.Lock) -> Iterator[None]:
    """Hold ``lock`` for the duration of the block.

    Example:
        with atomic(world_lock):
            npcs.move_to(npc, x, y)
    """
    lock.acquire()
    try:
        yield
    finally:
        lock.release()
