"""Tests for grid slot allocation and category moves."""

from __future__ import annotations

import logging
import random

import pytest

from linkshelf import grid
from linkshelf.errors import InvalidReference
from linkshelf.models import Category, Slot


def _cat(cat_id: str, column: int, position: int) -> Category:
    return Category(id=cat_id, name=cat_id.upper(), column=column, position=position)


def _slots(categories: list[Category]) -> dict[str, tuple[int, int]]:
    return {c.id: (c.column, c.position) for c in categories}


def test_first_slot_on_empty_grid() -> None:
    slot = grid.find_first_available_slot([], 5)
    if slot != Slot(0, 0):
        msg = f"Expected (0, 0) on an empty grid, got {slot}"
        raise AssertionError(msg)


def test_first_slot_fills_hole_before_next_column() -> None:
    categories = [_cat("a", 0, 0), _cat("b", 0, 2), _cat("c", 1, 0)]
    slot = grid.find_first_available_slot(categories, 3)
    if slot != Slot(0, 1):
        msg = f"Expected the hole at (0, 1), got {slot}"
        raise AssertionError(msg)


def test_first_slot_moves_to_next_column_when_limit_reached() -> None:
    categories = [_cat(f"c{i}", 0, i) for i in range(3)]
    slot = grid.find_first_available_slot(categories, 2, search_limit=3)
    if slot != Slot(1, 0):
        msg = f"Expected (1, 0) once column 0 is full, got {slot}"
        raise AssertionError(msg)


def test_first_slot_falls_back_and_warns(caplog: pytest.LogCaptureFixture) -> None:
    categories = [_cat(f"c{col}{pos}", col, pos) for col in range(2) for pos in range(2)]
    with caplog.at_level(logging.WARNING, logger="linkshelf.grid"):
        slot = grid.find_first_available_slot(categories, 2, search_limit=2)
    if slot != Slot(1, 0):
        msg = f"Expected fallback (1, 0), got {slot}"
        raise AssertionError(msg)
    if "falling back" not in caplog.text:
        msg = "Expected a warning about the slot fallback"
        raise AssertionError(msg)


def test_move_within_column_swaps_neighbours() -> None:
    a, b = _cat("a", 0, 0), _cat("b", 0, 1)
    result = grid.move_category([a, b], a, 0, 1)
    if result != Slot(0, 1) or _slots([a, b]) != {"a": (0, 1), "b": (0, 0)}:
        msg = f"Expected a swap, got {_slots([a, b])}"
        raise AssertionError(msg)


def test_move_within_column_upwards_shifts_down() -> None:
    cats = [_cat("a", 0, 0), _cat("b", 0, 1), _cat("c", 0, 2), _cat("d", 0, 3)]
    grid.move_category(cats, cats[3], 0, 1)
    expected = {"a": (0, 0), "d": (0, 1), "b": (0, 2), "c": (0, 3)}
    if _slots(cats) != expected:
        msg = f"Expected {expected}, got {_slots(cats)}"
        raise AssertionError(msg)


def test_move_to_current_slot_is_noop() -> None:
    cats = [_cat("a", 0, 0), _cat("b", 0, 1), _cat("c", 1, 0)]
    before = _slots(cats)
    grid.move_category(cats, cats[1], 0, 1)
    if _slots(cats) != before:
        msg = f"Expected no change, got {_slots(cats)}"
        raise AssertionError(msg)


def test_move_across_columns_opens_and_closes_gaps() -> None:
    cats = [_cat("a", 0, 0), _cat("b", 0, 1), _cat("c", 0, 2), _cat("x", 1, 0), _cat("y", 1, 1)]
    grid.move_category(cats, cats[0], 1, 1)
    expected = {"b": (0, 0), "c": (0, 1), "x": (1, 0), "a": (1, 1), "y": (1, 2)}
    if _slots(cats) != expected:
        msg = f"Expected {expected}, got {_slots(cats)}"
        raise AssertionError(msg)


def test_move_past_end_is_clamped() -> None:
    cats = [_cat("a", 0, 0), _cat("b", 0, 1), _cat("x", 1, 0)]
    grid.move_category(cats, cats[0], 1, 50)
    if cats[0].slot != Slot(1, 1):
        msg = f"Expected clamp to (1, 1) in the other column, got {cats[0].slot}"
        raise AssertionError(msg)
    grid.move_category(cats, cats[2], 1, 50)
    if cats[2].slot != Slot(1, 1) or cats[0].slot != Slot(1, 0):
        msg = f"Expected clamp to the last slot in the same column, got {_slots(cats)}"
        raise AssertionError(msg)


def test_move_into_empty_column() -> None:
    cats = [_cat("a", 0, 0), _cat("b", 0, 1)]
    grid.move_category(cats, cats[1], 3, 2, column_count=4)
    if cats[1].slot != Slot(3, 0):
        msg = f"Expected (3, 0), got {cats[1].slot}"
        raise AssertionError(msg)


def test_move_rejects_bad_targets() -> None:
    cats = [_cat("a", 0, 0)]
    with pytest.raises(InvalidReference):
        grid.move_category(cats, cats[0], 0, -1)
    with pytest.raises(InvalidReference):
        grid.move_category(cats, cats[0], 5, 0, column_count=5)
    with pytest.raises(InvalidReference):
        grid.move_category(cats, _cat("ghost", 0, 1), 0, 0)
    if cats[0].slot != Slot(0, 0):
        msg = "Rejected moves must not change slots"
        raise AssertionError(msg)


def test_random_moves_keep_columns_contiguous() -> None:
    rng = random.Random(7)
    column_count = 3
    cats = [_cat(f"c{col}_{pos}", col, pos) for col in range(column_count) for pos in range(4)]
    for _ in range(200):
        category = rng.choice(cats)
        grid.move_category(
            cats, category, rng.randrange(column_count), rng.randrange(8), column_count,
        )
        if grid.slot_collisions(cats):
            msg = f"Slots collided: {grid.slot_collisions(cats)}"
            raise AssertionError(msg)
        holes = grid.column_holes(cats)
        if holes:
            msg = f"Columns lost contiguity: {holes}"
            raise AssertionError(msg)


def test_relocate_orphans_keeps_visual_order() -> None:
    cats = [
        _cat("keep", 0, 0),
        _cat("last", 1, 0),
        _cat("far_b", 3, 1),
        _cat("far_a", 3, 0),
        _cat("mid", 2, 0),
    ]
    moved = grid.relocate_orphaned_categories(cats, 2)
    expected = {
        "keep": (0, 0),
        "last": (1, 0),
        "mid": (1, 1),
        "far_a": (1, 2),
        "far_b": (1, 3),
    }
    if moved != 3 or _slots(cats) != expected:
        msg = f"Expected 3 orphans moved to {expected}, got {moved} and {_slots(cats)}"
        raise AssertionError(msg)


def test_column_holes_reports_deleted_positions() -> None:
    cats = [_cat("a", 0, 0), _cat("c", 0, 2), _cat("x", 1, 0)]
    if grid.column_holes(cats) != {0: [1]}:
        msg = f"Expected a hole at column 0 position 1, got {grid.column_holes(cats)}"
        raise AssertionError(msg)
