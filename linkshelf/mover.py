"""Generic reorder/move primitive for the shelf's ordered lists.

Every drag-and-drop on the shelf (except category moves, see ``grid``) comes
down to one operation: take the item at an index in one list and insert it at
an index in another (or the same) list. The lists are addressed with
``ContainerAddress``; moving between lists of different kinds converts the
item (inbox item to link, link to favourite, ...) with an explicit field
mapping.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Callable

from .config import APPEND_SENTINEL
from .errors import DuplicateEntry, InvalidReference, ValidationError
from .models import ContainerKind, Favourite, InboxItem, Link, Subcategory
from .urls import url_key

if TYPE_CHECKING:  # pragma: no cover
    from .models import Category, ContainerAddress, Library, LinkLike

LOGGER = logging.getLogger(__name__)

_LINK_KINDS = {ContainerKind.CATEGORY_LINKS, ContainerKind.SUBCATEGORY_LINKS}


def now_millis() -> int:
    return int(time.time() * 1000)


class OrderedCollectionMover:
    """Moves single items between addressed ordered lists of a library.

    Category, subcategory and favourite addresses resolve against the current
    shelf; the inbox address resolves to the library's shared inbox.
    """

    def __init__(self, library: Library, clock: Callable[[], int] = now_millis) -> None:
        """Bind the mover to ``library``.

        Args:
            library: Library whose lists are resolved and mutated.
            clock: Source of ``addedAt`` timestamps (milliseconds) for items
                entering the inbox.

        """
        self._shelf = library.current
        self._inbox = library.inbox
        self._clock = clock

    # --- Address resolution ------------------------------------------------------------

    def resolve(self, address: ContainerAddress) -> list:
        """Return the live list an address refers to."""
        kind = address.kind
        if kind is ContainerKind.FAVOURITES:
            return self._shelf.favourites
        if kind is ContainerKind.INBOX:
            return self._inbox

        category = self._category(address.category_id)
        if kind is ContainerKind.CATEGORY_LINKS:
            return category.links
        if kind is ContainerKind.SUBCATEGORY_LIST:
            return category.subcategories
        for subcategory in category.subcategories:
            if subcategory.id == address.subcategory_id:
                return subcategory.links
        msg = f"Subcategory {address.subcategory_id} not found in category {category.id}"
        raise InvalidReference(msg)

    def index_of(self, address: ContainerAddress, item_id: str) -> int:
        """Find the current index of ``item_id`` in the addressed list."""
        for index, item in enumerate(self.resolve(address)):
            if item.id == item_id:
                return index
        msg = f"Item {item_id} not found in {address.kind.value}"
        raise InvalidReference(msg)

    def _category(self, category_id: str | None) -> Category:
        category = self._shelf.get_category(category_id) if category_id else None
        if category is None:
            msg = f"Category {category_id} not found"
            raise InvalidReference(msg)
        return category

    # --- Move ------------------------------------------------------------------------

    def move(
        self,
        source: ContainerAddress,
        source_index: int,
        target: ContainerAddress,
        target_index: int,
        name: str | None = None,
    ) -> LinkLike | Subcategory:
        """Move the item at ``source_index`` into ``target`` at ``target_index``.

        ``target_index`` is the index the item should have in the target list
        once the move is done; ``APPEND_SENTINEL`` appends. For a move within
        one list, the gap just past the last item (``len(list)``) is also
        accepted and lands the item last. ``name`` is required when a
        favourite becomes a link or inbox item, since favourites have none.

        Every check runs before either list is touched, so a rejected move
        leaves the shelf unchanged. Returns the item as stored in the target.
        """
        source_list = self.resolve(source)
        target_list = self.resolve(target)
        _check_compatible(source.kind, target.kind)

        if not 0 <= source_index < len(source_list):
            msg = (
                f"Source index {source_index} out of range for {source.kind.value} "
                f"of length {len(source_list)}"
            )
            raise InvalidReference(msg)

        same_list = source_list is target_list
        insert_at = _resolve_target_index(
            source_index, target_index, len(target_list), same_list=same_list,
        )

        item = source_list[source_index]
        moved = self._convert(item, source.kind, target.kind, target_list, name)

        source_list.pop(source_index)
        target_list.insert(insert_at, moved)
        LOGGER.debug(
            "Moved %s from %s[%d] to %s[%d]",
            moved.id,
            source.kind.value,
            source_index,
            target.kind.value,
            insert_at,
        )
        return moved

    def _convert(
        self,
        item: LinkLike | Subcategory,
        source_kind: ContainerKind,
        target_kind: ContainerKind,
        target_list: list,
        name: str | None,
    ) -> LinkLike | Subcategory:
        if target_kind is ContainerKind.SUBCATEGORY_LIST:
            return item

        if target_kind is ContainerKind.INBOX and source_kind is not ContainerKind.INBOX:
            key = url_key(item.url)
            if any(url_key(existing.url) == key for existing in target_list):
                raise DuplicateEntry(item.url)

        if target_kind in _LINK_KINDS:
            return self._to_link(item, name)
        if target_kind is ContainerKind.FAVOURITES:
            return _to_favourite(item)
        return self._to_inbox_item(item, name)

    def _to_link(self, item: LinkLike, name: str | None) -> Link:
        if isinstance(item, Link):
            return item
        if isinstance(item, InboxItem):
            return Link(
                id=item.id,
                name=item.name,
                url=item.url,
                favicon_data=item.favicon_data,
                custom_favicon_url=item.custom_favicon_url,
            )
        return Link(
            id=item.id,
            name=_required_name(name),
            url=item.url,
            favicon_data=item.favicon_data,
            custom_favicon_url=item.custom_favicon_url,
        )

    def _to_inbox_item(self, item: LinkLike, name: str | None) -> InboxItem:
        if isinstance(item, InboxItem):
            return item
        item_name = item.name if isinstance(item, Link) else _required_name(name)
        return InboxItem(
            id=item.id,
            name=item_name,
            url=item.url,
            favicon_data=item.favicon_data,
            custom_favicon_url=item.custom_favicon_url,
            added_at=self._clock(),
        )


def _to_favourite(item: LinkLike) -> Favourite:
    if isinstance(item, Favourite):
        return item
    return Favourite(
        id=item.id,
        url=item.url,
        favicon_data=item.favicon_data,
        custom_favicon_url=item.custom_favicon_url,
    )


def _required_name(name: str | None) -> str:
    if name is None or not name.strip():
        msg = "A name is required when a favourite becomes a link or inbox item"
        raise ValidationError(msg)
    return name.strip()


def _check_compatible(source_kind: ContainerKind, target_kind: ContainerKind) -> None:
    if source_kind.holds_links != target_kind.holds_links:
        msg = f"Cannot move items from {source_kind.value} to {target_kind.value}"
        raise InvalidReference(msg)


def _resolve_target_index(
    source_index: int, target_index: int, target_length: int, *, same_list: bool,
) -> int:
    """Turn a requested target index into an insertion index after removal."""
    length_after_removal = target_length - 1 if same_list else target_length
    if target_index == APPEND_SENTINEL:
        return length_after_removal

    if same_list and source_index < target_index and target_index > length_after_removal:
        # Addressed against the list before removal: the slot past the end.
        target_index -= 1

    if not 0 <= target_index <= length_after_removal:
        msg = f"Target index {target_index} out of range for list of length {target_length}"
        raise InvalidReference(msg)
    return target_index
