from __future__ import annotations

"""
persistence_utils.py — Centralized persistence façade for world state.

KEY CONTRACT: This module is the ONLY place that reads or writes the record
files. Routes and the simulation clock call save_world(); nothing else opens
celdas.json or npcs.json.

Records (two independent JSON files, pretty-printed UTF-8):
- cells: [{"x": int, "y": int, "color": str}, ...]
- npcs:  [{"id": str, "x": int, "y": int}, ...]

Public API:
- load_cells(path) / load_npcs(path): read one record; missing or corrupt
  files yield an empty list and a warning, never an exception.
- load_world(paths, **world_kwargs): build a World from both records.
- save_cells(cells, path) / save_npcs(npcs, path): atomic write
  (temp file in the same folder, fsync, os.replace). Raises on failure.
- save_world(world, paths, debounced=True): the standard save entry point.
- flush_all_saves(): force every pending debounced save (shutdown, tests).
- get_save_stats(): counters for monitoring and tests.

Design:
- World snapshots are taken under the world lock (take_dirty_snapshot); the
  disk write happens after the lock is released.
- Only dirty records are written. When a write fails the record is flagged
  dirty again, so the next save retries it with the latest state.
- A failed write never replaces the previous file: the rename only happens
  after the temp file is fully written.
"""

import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Tuple, TypeVar

from concurrency_utils import atomic, new_lock
from constants import CELLS_FILE, DEFAULT_SAVE_DEBOUNCE_MS, NPCS_FILE
from debounced_saver import DebouncedSaver
from world import NPC, Cell, ValidationError, World

logger = logging.getLogger(__name__)

T = TypeVar('T')

# mkstemp creates 0600 files; saved records get the usual umask-derived mode
_UMASK = os.umask(0)
os.umask(_UMASK)
FILE_MODE = 0o666 & ~_UMASK


@dataclass(frozen=True)
class StatePaths:
    """Where the two records live."""
    cells: str
    npcs: str

    @classmethod
    def in_dir(cls, folder: str) -> "StatePaths":
        return cls(cells=os.path.join(folder, CELLS_FILE), npcs=os.path.join(folder, NPCS_FILE))


# Registry of debounced savers keyed by the cells path, each bound to one World
_savers: Dict[str, Tuple[World, DebouncedSaver]] = {}
_savers_guard = new_lock()

# One writer per record pair: snapshot and rename happen together, so an older
# snapshot can never be renamed over a newer one
_write_locks: Dict[str, Any] = {}
_write_locks_guard = new_lock()

_stats = {
    'debounced_calls': 0,
    'immediate_calls': 0,
    'cells_writes': 0,
    'npcs_writes': 0,
    'errors': 0,
    'last_save_time': None,
}


def _get_interval_ms() -> int:
    """Read debounce interval from environment, default 300ms."""
    try:
        return int((os.getenv('PAINT_SAVE_DEBOUNCE_MS') or str(DEFAULT_SAVE_DEBOUNCE_MS)).strip())
    except ValueError:
        return DEFAULT_SAVE_DEBOUNCE_MS


# --- Loading ---

def _read_records(path: str, factory: Callable[[Dict[str, Any]], T], label: str) -> List[T]:
    if not os.path.exists(path):
        logger.info(f"{path} does not exist. Starting with no {label}.")
        return []
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning(f"Error reading or parsing {path}, starting with no {label}: {e}")
        return []
    if not isinstance(data, list):
        logger.warning(f"{path} does not hold a list, starting with no {label}")
        return []
    out: List[T] = []
    skipped = 0
    for entry in data:
        if not isinstance(entry, dict):
            skipped += 1
            continue
        try:
            out.append(factory(entry))
        except ValidationError:
            skipped += 1
    if skipped:
        logger.warning(f"Skipped {skipped} malformed {label} entries in {path}")
    logger.info(f"Loaded {len(out)} {label} from {path}")
    return out


def load_cells(path: str) -> List[Cell]:
    return _read_records(path, Cell.from_dict, 'cells')


def load_npcs(path: str) -> List[NPC]:
    return _read_records(path, NPC.from_dict, 'npcs')


def load_world(paths: StatePaths, **world_kwargs: Any) -> World:
    """Restore a World from disk. Each record falls back to empty independently."""
    return World.from_records(load_cells(paths.cells), load_npcs(paths.npcs), **world_kwargs)


# --- Saving ---

def _atomic_write_json(path: str, payload: Any) -> None:
    folder = os.path.dirname(path) or "."
    os.makedirs(folder, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(prefix=f".{os.path.basename(path)}.", suffix=".tmp", dir=folder)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_path, FILE_MODE)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.remove(tmp_path)
        except OSError:
            pass
        raise


def save_cells(cells: List[Cell], path: str) -> None:
    _atomic_write_json(path, [c.to_dict() for c in cells])
    _stats['cells_writes'] += 1
    logger.debug(f"Saved {len(cells)} cells to {path}")


def save_npcs(npcs: List[NPC], path: str) -> None:
    _atomic_write_json(path, [n.to_dict() for n in npcs])
    _stats['npcs_writes'] += 1
    logger.debug(f"Saved {len(npcs)} npcs to {path}")


def save_world(world: World, paths: StatePaths, debounced: bool = True) -> None:
    """Persist whatever changed in ``world``.

    Args:
        world: The World instance to persist.
        paths: Where to write the two records.
        debounced: If True (default), coalesce rapid saves via DebouncedSaver.
                   If False, write before returning (after a client paint,
                   on shutdown).

    Errors are logged and counted, never raised; the in-memory world is the
    source of truth and the next save retries.
    """
    if debounced:
        _stats['debounced_calls'] += 1
        _saver_for(world, paths).debounce()
    else:
        _stats['immediate_calls'] += 1
        _save_world_immediate(world, paths)


def _saver_for(world: World, paths: StatePaths) -> DebouncedSaver:
    with atomic(_savers_guard):
        entry = _savers.get(paths.cells)
        if entry is not None and entry[0] is world:
            return entry[1]
        if entry is not None:
            # Path now belongs to a different World; write out the old one first
            entry[1].close()
        saver = DebouncedSaver(lambda: _save_world_immediate(world, paths), interval_ms=_get_interval_ms())
        _savers[paths.cells] = (world, saver)
        return saver


def _write_lock_for(paths: StatePaths) -> Any:
    with atomic(_write_locks_guard):
        lk = _write_locks.get(paths.cells)
        if lk is None:
            lk = _write_locks[paths.cells] = new_lock()
        return lk


def _save_world_immediate(world: World, paths: StatePaths) -> None:
    with atomic(_write_lock_for(paths)):
        _write_dirty(world, paths)


def _write_dirty(world: World, paths: StatePaths) -> None:
    cells, npcs = world.take_dirty_snapshot()
    wrote = False
    if cells is not None:
        try:
            save_cells(cells, paths.cells)
            wrote = True
        except Exception as e:
            _stats['errors'] += 1
            logger.error(f"Error writing to {paths.cells}: {e}")
            world.mark_dirty(cells=True)
    if npcs is not None:
        try:
            save_npcs(npcs, paths.npcs)
            wrote = True
        except Exception as e:
            _stats['errors'] += 1
            logger.error(f"Error writing to {paths.npcs}: {e}")
            world.mark_dirty(npcs=True)
    if wrote:
        _stats['last_save_time'] = time.time()


def flush_all_saves() -> None:
    """Force immediate flush of all pending debounced saves.

    Safe to call repeatedly; a saver with nothing dirty writes nothing.
    """
    for _world, saver in list(_savers.values()):
        saver.flush()


def close_all_savers() -> None:
    """Flush and drop every saver (shutdown and test isolation)."""
    with atomic(_savers_guard):
        entries = list(_savers.values())
        _savers.clear()
    for _world, saver in entries:
        saver.close()


def get_save_stats() -> Dict[str, Any]:
    """Return persistence statistics.

    Keys: debounced_calls, immediate_calls, cells_writes, npcs_writes, errors,
    last_save_time (unix timestamp or None), active_savers.
    """
    return {
        **_stats,
        'active_savers': len(_savers),
    }
