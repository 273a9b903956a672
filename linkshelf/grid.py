"""Grid slot allocation for categories.

Every category occupies one ``(column, position)`` slot. Positions in a column
are kept contiguous from 0 by ``move_category``; deleting a category leaves a
hole on purpose (see ``ShelfModel.delete_category``).
"""

from __future__ import annotations

import collections
import logging
from typing import TYPE_CHECKING

from .config import SLOT_SEARCH_LIMIT
from .errors import InvalidReference
from .models import Slot

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Iterable, Sequence

    from .models import Category

LOGGER = logging.getLogger(__name__)


def find_first_available_slot(
    categories: Iterable[Category],
    column_count: int,
    search_limit: int = SLOT_SEARCH_LIMIT,
) -> Slot:
    """Return the first free slot scanning columns left to right.

    Within a column positions are scanned from 0 up to ``search_limit``. When
    every scanned slot is taken the fallback ``(column_count - 1, 0)`` is
    returned even though it is occupied; callers decide how to handle it.
    """
    occupied = {category.slot for category in categories}
    for column in range(column_count):
        for position in range(search_limit):
            if (column, position) not in occupied:
                return Slot(column, position)

    fallback = Slot(max(column_count - 1, 0), 0)
    LOGGER.warning(
        "No free slot within %d positions across %d columns; falling back to %s",
        search_limit,
        column_count,
        fallback,
    )
    return fallback


def column_positions(categories: Iterable[Category], column: int) -> list[int]:
    """Sorted positions occupied in ``column``."""
    return sorted(c.position for c in categories if c.column == column)


def move_category(
    categories: Sequence[Category],
    category: Category,
    target_column: int,
    target_position: int,
    column_count: int | None = None,
) -> Slot:
    """Move ``category`` to a new slot, shifting its neighbours.

    Categories below the target slot move down one position to open it, and
    categories below the old slot move up one to close the gap. The moved
    category is never adjusted by either pass. A target position past the end
    of the target column means "after the last one". Returns the slot the
    category ends up in. The list itself is never reordered.
    """
    if not any(c is category for c in categories):
        msg = f"Category {category.id} is not on this shelf"
        raise InvalidReference(msg)
    if target_position < 0:
        msg = f"Target position {target_position} is negative"
        raise InvalidReference(msg)
    if target_column < 0 or (column_count is not None and target_column >= column_count):
        msg = f"Target column {target_column} is outside the grid"
        raise InvalidReference(msg)

    old_column, old_position = category.column, category.position
    others = [c for c in categories if c is not category]
    target_position = _clamp_target(others, category, target_column, target_position)

    if (old_column, old_position) == (target_column, target_position):
        LOGGER.debug("Category %s already at %s; nothing to move", category.id, category.slot)
        return category.slot

    if old_column == target_column:
        _reorder_within_column(others, old_column, old_position, target_position)
    else:
        for other in others:
            if other.column == target_column and other.position >= target_position:
                other.position += 1
        for other in others:
            if other.column == old_column and other.position > old_position:
                other.position -= 1

    category.column = target_column
    category.position = target_position
    LOGGER.debug(
        "Moved category %s from (%d, %d) to (%d, %d)",
        category.id,
        old_column,
        old_position,
        target_column,
        target_position,
    )
    return category.slot


def _clamp_target(
    others: list[Category],
    category: Category,
    target_column: int,
    target_position: int,
) -> int:
    positions = column_positions(others, target_column)
    if target_column == category.column:
        # The category already counts as one of the column's occupants.
        limit = max([*positions, category.position])
    else:
        limit = positions[-1] + 1 if positions else 0
    return min(target_position, limit)


def _reorder_within_column(
    others: list[Category], column: int, old_position: int, new_position: int,
) -> None:
    if new_position > old_position:
        for other in others:
            if other.column == column and old_position < other.position <= new_position:
                other.position -= 1
    else:
        for other in others:
            if other.column == column and new_position <= other.position < old_position:
                other.position += 1


def relocate_orphaned_categories(categories: Sequence[Category], column_count: int) -> int:
    """Move categories beyond the last visible column to the end of that column.

    Orphans keep their visual order (by column, then position). Returns the
    number of categories moved.
    """
    target_column = column_count - 1
    orphans = sorted(
        (c for c in categories if c.column >= column_count),
        key=lambda c: (c.column, c.position),
    )
    if not orphans:
        return 0

    positions = column_positions(categories, target_column)
    next_position = positions[-1] + 1 if positions else 0
    for orphan in orphans:
        orphan.column = target_column
        orphan.position = next_position
        next_position += 1

    LOGGER.info("Moved %d categories to column %d", len(orphans), target_column)
    return len(orphans)


def slot_collisions(categories: Iterable[Category]) -> list[Slot]:
    """Slots held by more than one category."""
    counts = collections.Counter(c.slot for c in categories)
    return sorted(slot for slot, count in counts.items() if count > 1)


def column_holes(categories: Iterable[Category]) -> dict[int, list[int]]:
    """Missing positions per column, between 0 and the column's last position."""
    by_column: dict[int, set[int]] = collections.defaultdict(set)
    for category in categories:
        by_column[category.column].add(category.position)
    holes: dict[int, list[int]] = {}
    for column, positions in sorted(by_column.items()):
        missing = [p for p in range(max(positions) + 1) if p not in positions]
        if missing:
            holes[column] = missing
    return holes
