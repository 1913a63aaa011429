"""World model for the shared paint grid (small and in-memory).

Concepts:
- Cell: a grid coordinate with a color. At most one Cell per (x, y); painting
  again replaces the color. Cells are never deleted.
- Painted: a Cell whose color is not one of the reserved blank colors.
- NPC: an autonomous wanderer standing on a grid coordinate. NPCs spawn on a
  random painted cell and step to a random painted neighbor every movement
  tick. They are never removed.
- World: the single owner of the GridStore and the NpcRegistry. Everything
  outside this module goes through World methods, which serialize on one lock
  and only ever hand out copies.

The simulation clock (game_loop.py) calls run_spawn_tick/run_movement_tick;
the HTTP layer (server.py) calls snapshot_cells/snapshot_npcs/apply_cell_paint;
persistence (persistence_utils.py) calls take_dirty_snapshot.
"""

from __future__ import annotations

import logging
import random
import time
import uuid
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from concurrency_utils import atomic, new_lock
from constants import BLANK_COLORS, DEFAULT_MAX_NPCS, NEIGHBOR_OFFSETS

logger = logging.getLogger(__name__)

Coord = Tuple[int, int]


class ValidationError(ValueError):
    """Raised when a paint request carries bad coordinates or no color."""


@dataclass
class Cell:
    x: int
    y: int
    color: str

    def to_dict(self) -> Dict[str, Any]:
        return {"x": self.x, "y": self.y, "color": self.color}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Cell":
        x, y, color = validate_paint_payload(data.get("x"), data.get("y"), data.get("color"))
        return cls(x=x, y=y, color=color)


@dataclass
class NPC:
    id: str
    x: int
    y: int

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "x": self.x, "y": self.y}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NPC":
        npc_id = data.get("id")
        if not isinstance(npc_id, str) or not npc_id:
            raise ValidationError(f"NPC id must be a non-empty string, got {npc_id!r}")
        x, y = _require_int("x", data.get("x")), _require_int("y", data.get("y"))
        return cls(id=npc_id, x=x, y=y)


def _require_int(name: str, value: Any) -> int:
    # bool is an int subclass; True/False are not coordinates
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer, got {value!r}")
    return value


def validate_paint_payload(x: Any, y: Any, color: Any) -> Tuple[int, int, str]:
    """Return (x, y, color) or raise ValidationError.

    x and y must be integers; color must be a non-empty string. Blank colors
    such as '#fff' are valid paint, they just un-paint the cell.
    """
    xi = _require_int("x", x)
    yi = _require_int("y", y)
    if not isinstance(color, str) or not color.strip():
        raise ValidationError(f"color must be a non-empty string, got {color!r}")
    return xi, yi, color


def is_painted(color: Any) -> bool:
    """True unless the color is empty or, trimmed and lower-cased, a blank color."""
    if not isinstance(color, str):
        return False
    norm = color.strip().lower()
    return bool(norm) and norm not in BLANK_COLORS


def new_npc_id() -> str:
    """Monotonic clock plus a random suffix; unique for the process lifetime."""
    return f"npc-{time.monotonic_ns():x}-{uuid.uuid4().hex[:8]}"


class GridStore:
    """Cells keyed by (x, y)."""

    def __init__(self) -> None:
        self._cells: Dict[Coord, Cell] = {}
        self.dirty = False

    def __len__(self) -> int:
        return len(self._cells)

    def upsert(self, x: int, y: int, color: str) -> Cell:
        cell = self._cells.get((x, y))
        if cell is None:
            cell = Cell(x=x, y=y, color=color)
            self._cells[(x, y)] = cell
        else:
            cell.color = color
        self.dirty = True
        return cell

    def get(self, x: int, y: int) -> Optional[Cell]:
        return self._cells.get((x, y))

    is_painted = staticmethod(is_painted)

    def all(self) -> List[Cell]:
        return list(self._cells.values())

    def all_painted(self) -> List[Cell]:
        return [c for c in self._cells.values() if is_painted(c.color)]


def painted_neighbors(grid: GridStore, x: int, y: int) -> List[Coord]:
    """Return the 4-connected neighbors of (x, y) that hold a painted Cell.

    Checked in fixed order: east, west, north, south.
    """
    out: List[Coord] = []
    for dx, dy in NEIGHBOR_OFFSETS:
        cell = grid.get(x + dx, y + dy)
        if cell is not None and is_painted(cell.color):
            out.append((cell.x, cell.y))
    return out


class NpcRegistry:
    """Live NPCs keyed by id, kept in spawn order."""

    def __init__(self, id_factory: Callable[[], str] = new_npc_id) -> None:
        self._npcs: Dict[str, NPC] = {}
        self._id_factory = id_factory
        self.dirty = False

    def __len__(self) -> int:
        return len(self._npcs)

    def spawn_at(self, x: int, y: int) -> NPC:
        npc_id = self._id_factory()
        # Ids restored from disk came from an earlier process; never reuse one
        while npc_id in self._npcs:
            npc_id = self._id_factory()
        npc = NPC(id=npc_id, x=x, y=y)
        self._npcs[npc_id] = npc
        self.dirty = True
        return npc

    def add(self, npc: NPC) -> None:
        """Insert an already-identified NPC (used when restoring from disk)."""
        self._npcs[npc.id] = npc

    def get(self, npc_id: str) -> Optional[NPC]:
        return self._npcs.get(npc_id)

    def all(self) -> List[NPC]:
        return list(self._npcs.values())

    def move_to(self, npc: NPC, x: int, y: int) -> None:
        npc.x = x
        npc.y = y
        self.dirty = True


class World:
    """The authoritative world state and its only entry point.

    Every public method takes the world lock for exactly one logical
    operation and returns copies, never the live Cell/NPC objects.
    """

    def __init__(
        self,
        *,
        rng: Optional[random.Random] = None,
        max_npcs: int = DEFAULT_MAX_NPCS,
        id_factory: Callable[[], str] = new_npc_id,
    ) -> None:
        self._lock = new_lock()
        self._grid = GridStore()
        self._npcs = NpcRegistry(id_factory=id_factory)
        self._rng = rng or random.Random()
        self.max_npcs = max(0, int(max_npcs))
        self.closed = False

    @classmethod
    def from_records(cls, cells: Iterable[Cell], npcs: Iterable[NPC], **kwargs: Any) -> "World":
        """Build a World from loaded records. Later duplicates of a coordinate win."""
        w = cls(**kwargs)
        for c in cells:
            w._grid.upsert(c.x, c.y, c.color)
        for n in npcs:
            w._npcs.add(NPC(id=n.id, x=n.x, y=n.y))
        w._grid.dirty = False
        w._npcs.dirty = False
        return w

    # --- Client-facing operations ---
    def snapshot_cells(self) -> List[Cell]:
        with atomic(self._lock):
            return [replace(c) for c in self._grid.all()]

    def snapshot_npcs(self) -> List[NPC]:
        with atomic(self._lock):
            return [replace(n) for n in self._npcs.all()]

    def apply_cell_paint(self, x: Any, y: Any, color: Any) -> Cell:
        """Paint (x, y). Raises ValidationError without touching state."""
        xi, yi, c = validate_paint_payload(x, y, color)
        with atomic(self._lock):
            cell = self._grid.upsert(xi, yi, c)
            return replace(cell)

    # --- Simulation hooks (called by game_loop.GameLoop) ---
    def run_spawn_tick(self, rng: Optional[random.Random] = None) -> Optional[NPC]:
        """Spawn one NPC on a uniformly chosen painted cell.

        Returns a copy of the new NPC, or None when there is nothing painted,
        the world is closed, or the population cap is reached.
        """
        r = rng or self._rng
        with atomic(self._lock):
            if self.closed:
                return None
            if self.max_npcs and len(self._npcs) >= self.max_npcs:
                return None
            painted = self._grid.all_painted()
            if not painted:
                return None
            cell = r.choice(painted)
            npc = self._npcs.spawn_at(cell.x, cell.y)
            logger.debug(f"Spawned {npc.id} at ({npc.x}, {npc.y})")
            return replace(npc)

    def run_movement_tick(self, rng: Optional[random.Random] = None) -> int:
        """Step every NPC to a uniformly chosen painted neighbor.

        NPCs with no painted neighbor stay put. Returns how many moved.
        """
        r = rng or self._rng
        moved = 0
        with atomic(self._lock):
            if self.closed:
                return 0
            for npc in self._npcs.all():
                options = painted_neighbors(self._grid, npc.x, npc.y)
                if not options:
                    continue
                nx, ny = r.choice(options)
                self._npcs.move_to(npc, nx, ny)
                moved += 1
        return moved

    # --- Persistence hooks ---
    def take_dirty_snapshot(self, force: bool = False) -> Tuple[Optional[List[Cell]], Optional[List[NPC]]]:
        """Return point-in-time copies of the dirty collections and clear their flags.

        A collection that has not changed since the last call comes back as
        None, unless ``force`` is set.
        """
        with atomic(self._lock):
            cells = npcs = None
            if force or self._grid.dirty:
                cells = [replace(c) for c in self._grid.all()]
                self._grid.dirty = False
            if force or self._npcs.dirty:
                npcs = [replace(n) for n in self._npcs.all()]
                self._npcs.dirty = False
            return cells, npcs

    def mark_dirty(self, cells: bool = False, npcs: bool = False) -> None:
        """Re-flag collections whose save failed so the next save retries them."""
        with atomic(self._lock):
            if cells:
                self._grid.dirty = True
            if npcs:
                self._npcs.dirty = True

    def counts(self) -> Dict[str, int]:
        with atomic(self._lock):
            return {"cells": len(self._grid), "npcs": len(self._npcs)}

    def close(self) -> None:
        """Stop accepting ticks. Paints and snapshots keep working for the final flush."""
        with atomic(self._lock):
            self.closed = True
