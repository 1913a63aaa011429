"""Game loop and world tick functionality.

This module contains the simulation clock:
- Spawn ticker: every PAINT_SPAWN_SECONDS, one NPC appears on a random painted cell
- Movement ticker: every PAINT_MOVE_SECONDS, every NPC steps to a random painted neighbor
- Start/stop management for the two ticker threads

The tick bodies live on World (run_spawn_tick/run_movement_tick) so they run
under the world lock; this module only decides when they run and what happens
after a tick changed something (on_tick: broadcast, debounced save).
"""
from __future__ import annotations

import logging
import os
import random
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from constants import DEFAULT_MAX_NPCS, DEFAULT_MOVE_SECONDS, DEFAULT_SPAWN_SECONDS
from safe_utils import safe_call
from world import World

logger = logging.getLogger(__name__)


# --- Configuration from environment ---
def _env_int(name: str, default: int) -> int:
    try:
        val = os.getenv(name)
        if val is None:
            return default
        return int(str(val).strip())
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        val = os.getenv(name)
        if val is None:
            return default
        return float(str(val).strip())
    except ValueError:
        return default


SPAWN_SECONDS = _env_float('PAINT_SPAWN_SECONDS', DEFAULT_SPAWN_SECONDS)
MOVE_SECONDS = _env_float('PAINT_MOVE_SECONDS', DEFAULT_MOVE_SECONDS)
MAX_NPCS = _env_int('PAINT_MAX_NPCS', DEFAULT_MAX_NPCS)

SPAWN = 'spawn'
MOVE = 'move'

TickCallback = Callable[[str], None]
StartTask = Callable[..., Any]


def _start_thread(target: Callable[..., None], *args: Any) -> threading.Thread:
    t = threading.Thread(target=target, args=args, name=f'world-{args[0]}-ticker', daemon=True)
    t.start()
    return t


class GameLoop:
    """Owns the spawn and movement tickers for one World.

    Args:
        world: the World to drive.
        spawn_seconds / move_seconds: tick periods.
        rng: randomness source handed to every tick; inject a seeded
             random.Random in tests.
        on_tick: called with the tick kind after a tick that changed state.
        start_task: how to launch a ticker (e.g. socketio.start_background_task);
                    defaults to a daemon thread.

    Tests call tick_once() directly instead of start().
    """

    def __init__(
        self,
        world: World,
        *,
        spawn_seconds: float = SPAWN_SECONDS,
        move_seconds: float = MOVE_SECONDS,
        rng: Optional[random.Random] = None,
        on_tick: Optional[TickCallback] = None,
        start_task: Optional[StartTask] = None,
    ) -> None:
        if spawn_seconds <= 0 or move_seconds <= 0:
            raise ValueError("tick periods must be positive")
        self.world = world
        self.periods: Dict[str, float] = {SPAWN: float(spawn_seconds), MOVE: float(move_seconds)}
        self.rng = rng or random.Random()
        self.on_tick = on_tick
        self._start_task = start_task or _start_thread
        self._stop = threading.Event()
        self._tasks: List[Any] = []
        self.tick_counts: Dict[str, int] = {SPAWN: 0, MOVE: 0}

    @property
    def running(self) -> bool:
        return bool(self._tasks) and not self._stop.is_set()

    def tick_once(self, kind: str) -> bool:
        """Run one tick of ``kind`` now. Returns True if the world changed."""
        if kind == SPAWN:
            changed = self.world.run_spawn_tick(self.rng) is not None
        elif kind == MOVE:
            changed = self.world.run_movement_tick(self.rng) > 0
        else:
            raise ValueError(f"unknown tick kind: {kind!r}")
        self.tick_counts[kind] += 1
        if changed and self.on_tick is not None:
            # The callback runs outside the world lock and must not kill the ticker
            safe_call(self.on_tick, kind)
        return changed

    def _run_ticker(self, kind: str) -> None:
        period = self.periods[kind]
        next_at = time.monotonic() + period
        while not self._stop.wait(max(0.0, next_at - time.monotonic())):
            safe_call(self.tick_once, kind)
            next_at += period
            now = time.monotonic()
            if next_at < now:
                # Fell behind (slow tick or suspended process); skip the backlog
                next_at = now + period
        logger.debug(f"{kind} ticker stopped")

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._tasks = [self._start_task(self._run_ticker, kind) for kind in (SPAWN, MOVE)]
        logger.info(
            f"Simulation clock started: spawn every {self.periods[SPAWN]}s, "
            f"move every {self.periods[MOVE]}s"
        )

    def stop(self, timeout: float = 2.0) -> None:
        """Stop scheduling ticks. A tick already running finishes first."""
        self._stop.set()
        for task in self._tasks:
            join = getattr(task, 'join', None)
            if join is not None:
                safe_call(join, timeout)
        self._tasks = []
        logger.info("Simulation clock stopped")
