"""Tests for world.py - cells, NPCs and the World entry point.

This module tests:
- Painted/blank color classification
- GridStore upsert semantics (one cell per coordinate, last color wins)
- Painted neighbor lookup and its fixed east/west/north/south order
- NpcRegistry ids and moves
- World validation and copy-out snapshots
"""

import pytest

from world import (
    NPC,
    Cell,
    GridStore,
    NpcRegistry,
    ValidationError,
    World,
    is_painted,
    new_npc_id,
    painted_neighbors,
    validate_paint_payload,
)


# ============================================================================
# Painted classification
# ============================================================================

@pytest.mark.parametrize("color", ["#fff", "#FFFFFF", " white ", "WHITE", "#ffffff\n"])
def test_blank_colors_are_not_painted(color):
    assert not is_painted(color)


@pytest.mark.parametrize("color", ["red", "#000", "#fffe", "whitesmoke", "rgb(255,255,255)"])
def test_other_colors_are_painted(color):
    assert is_painted(color)


def test_empty_and_non_string_colors_are_not_painted():
    assert not is_painted("")
    assert not is_painted("   ")
    assert not is_painted(None)
    assert GridStore.is_painted("red")


# ============================================================================
# GridStore
# ============================================================================

def test_upsert_replaces_color_without_duplicating():
    g = GridStore()
    g.upsert(1, 2, "red")
    g.upsert(1, 2, "blue")
    g.upsert(3, 4, "green")
    assert len(g) == 2
    assert g.get(1, 2).color == "blue"
    assert g.get(9, 9) is None
    assert g.dirty


def test_all_painted_excludes_blank_but_keeps_record():
    g = GridStore()
    g.upsert(0, 0, "red")
    g.upsert(1, 0, "red")
    g.upsert(1, 0, "#FFF")
    assert {(c.x, c.y) for c in g.all_painted()} == {(0, 0)}
    assert {(c.x, c.y) for c in g.all()} == {(0, 0), (1, 0)}


# ============================================================================
# Adjacency
# ============================================================================

def test_painted_neighbors_fixed_order():
    g = GridStore()
    for x, y in [(0, -1), (0, 1), (-1, 0), (1, 0)]:
        g.upsert(x, y, "red")
    assert painted_neighbors(g, 0, 0) == [(1, 0), (-1, 0), (0, 1), (0, -1)]


def test_painted_neighbors_skips_blank_missing_and_diagonal():
    g = GridStore()
    g.upsert(1, 0, "white")
    g.upsert(1, 1, "red")
    g.upsert(0, 1, "red")
    assert painted_neighbors(g, 0, 0) == [(0, 1)]
    assert painted_neighbors(g, 50, 50) == []


# ============================================================================
# NpcRegistry
# ============================================================================

def test_new_npc_ids_are_unique():
    ids = {new_npc_id() for _ in range(2000)}
    assert len(ids) == 2000


def test_spawn_never_reuses_restored_id():
    ids = iter(["a", "a", "b"])
    reg = NpcRegistry(id_factory=lambda: next(ids))
    reg.add(NPC(id="a", x=0, y=0))
    npc = reg.spawn_at(3, 4)
    assert npc.id == "b"
    assert (npc.x, npc.y) == (3, 4)
    assert [n.id for n in reg.all()] == ["a", "b"]


def test_move_to_mutates_in_place():
    reg = NpcRegistry()
    npc = reg.spawn_at(0, 0)
    reg.dirty = False
    reg.move_to(npc, 1, 0)
    assert (reg.get(npc.id).x, reg.get(npc.id).y) == (1, 0)
    assert reg.dirty


# ============================================================================
# Validation and World
# ============================================================================

@pytest.mark.parametrize("x,y,color", [
    ("1", 2, "red"),
    (1, None, "red"),
    (1.5, 2, "red"),
    (True, 2, "red"),
    (1, 2, ""),
    (1, 2, "   "),
    (1, 2, None),
    (1, 2, 7),
])
def test_validate_paint_payload_rejects(x, y, color):
    with pytest.raises(ValidationError):
        validate_paint_payload(x, y, color)


def test_rejected_paint_leaves_world_unchanged(world):
    world.apply_cell_paint(0, 0, "red")
    with pytest.raises(ValidationError):
        world.apply_cell_paint(0, 0, "")
    assert [c.color for c in world.snapshot_cells()] == ["red"]


def test_last_paint_per_coordinate_wins(world):
    calls = [(0, 0, "red"), (1, 1, "blue"), (0, 0, "green"), (-5, 3, "#fff"), (1, 1, "black")]
    for x, y, c in calls:
        world.apply_cell_paint(x, y, c)
    cells = {(c.x, c.y): c.color for c in world.snapshot_cells()}
    assert cells == {(0, 0): "green", (1, 1): "black", (-5, 3): "#fff"}


def test_snapshots_are_copies(world):
    world.apply_cell_paint(0, 0, "red")
    world.run_spawn_tick()
    cells = world.snapshot_cells()
    npcs = world.snapshot_npcs()
    cells[0].color = "tampered"
    npcs[0].x = 99
    assert world.snapshot_cells()[0].color == "red"
    assert world.snapshot_npcs()[0].x == 0


def test_from_records_last_duplicate_wins_and_starts_clean():
    w = World.from_records(
        [Cell(0, 0, "red"), Cell(0, 0, "blue")],
        [NPC(id="n1", x=0, y=0)],
    )
    assert [c.color for c in w.snapshot_cells()] == ["blue"]
    assert w.take_dirty_snapshot() == (None, None)


def test_take_dirty_snapshot_clears_flags(world):
    world.apply_cell_paint(0, 0, "red")
    cells, npcs = world.take_dirty_snapshot()
    assert [c.to_dict() for c in cells] == [{"x": 0, "y": 0, "color": "red"}]
    assert npcs is None
    assert world.take_dirty_snapshot() == (None, None)
    world.mark_dirty(npcs=True)
    assert world.take_dirty_snapshot()[1] == []


def test_closed_world_ignores_ticks_but_accepts_paint(world):
    world.apply_cell_paint(0, 0, "red")
    world.close()
    assert world.run_spawn_tick() is None
    assert world.run_movement_tick() == 0
    world.apply_cell_paint(1, 0, "red")
    assert world.counts() == {"cells": 2, "npcs": 0}
