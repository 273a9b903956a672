"""Shelf model: the aggregate root every caller mutates through.

The model owns a library of shelves, one of which is current, plus the inbox
all shelves share. Category, link and favourite operations act on the current
shelf. Each mutation runs against a deep copy of the committed library. The
copy is changed and checked against the model invariants; only then is it
swapped in and handed to the persistence saver. A rejected mutation therefore
leaves nothing behind, and no caller ever sees a half-applied change.
"""

from __future__ import annotations

import collections
import copy
import json
import logging
import threading
import uuid
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, TypeVar

from .config import (
    APPEND_SENTINEL,
    DEFAULT_SHELF_NAME,
    IMPORTED_SHELF_NAME,
    KEY_INBOX,
    LEGACY_SHELF_KEYS,
    LOAD_KEYS,
    MAX_COLUMN_COUNT,
    MIN_COLUMN_COUNT,
)
from .errors import DuplicateEntry, InvalidReference, ValidationError
from .exporter import inbox_to_wire, library_to_record
from .grid import (
    find_first_available_slot,
    move_category,
    relocate_orphaned_categories,
    slot_collisions,
)
from .importer import (
    library_from_record,
    parse_inbox,
    reissue_ids,
    shelf_entities,
    shelf_from_payload,
    validate_import_payload,
)
from .models import (
    Category,
    ContainerAddress,
    Favourite,
    InboxItem,
    Library,
    Link,
    Shelf,
    Subcategory,
)
from .mover import OrderedCollectionMover, now_millis
from .storage import ShelfSaver
from .urls import default_link_name, normalize_url, url_key

if TYPE_CHECKING:  # pragma: no cover
    from .models import DragSession, LinkLike
    from .storage import KeyValueStore

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class MutationPhase(str, Enum):
    """Where the model is in processing a mutation.

    ``VALIDATING`` covers the start checks and the snapshot of the committed
    library; ``APPLYING`` covers the change and the invariant check on that
    snapshot.
    """

    IDLE = "idle"
    VALIDATING = "validating"
    APPLYING = "applying"
    COMMITTED = "committed"
    REJECTED = "rejected"


class IdRegistry:
    """Issues library-wide unique ids and remembers every id ever seen."""

    def __init__(self, existing: Any = ()) -> None:
        self._seen: set[str] = set(existing)

    def observe(self, ids: Any) -> None:
        self._seen.update(ids)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._seen

    def new_id(self) -> str:
        while True:
            candidate = f"id_{uuid.uuid4().hex[:16]}"
            if candidate not in self._seen:
                self._seen.add(candidate)
                return candidate


def _required(value: str | None, field_name: str) -> str:
    if value is None or not value.strip():
        msg = f"{field_name} is required"
        raise ValidationError(msg)
    return value.strip()


def _fingerprint(wire_inbox: Any) -> str:
    return json.dumps(wire_inbox, sort_keys=True)


def _required_url(url: str | None) -> str:
    normalized = normalize_url(url)
    if not normalized:
        msg = "URL is required"
        raise ValidationError(msg)
    return normalized


class ShelfModel:
    """Validated CRUD and move operations over a library of shelves.

    Mutations return the committed current shelf (or the library, for
    operations on shelves themselves), or the created entity for
    ``create_*``/``add_*`` calls. Errors (``ValidationError``,
    ``InvalidReference``, ``DuplicateEntry``) leave the model unchanged.
    Save failures are logged and never undo a committed change.
    """

    def __init__(
        self,
        library: Library | None = None,
        store: KeyValueStore | None = None,
        *,
        write_behind: bool = False,
        clock: Callable[[], int] = now_millis,
    ) -> None:
        """Initialise the model.

        Args:
            library: Starting state; a single empty shelf when omitted.
            store: Persistence collaborator. Without one nothing is saved.
            write_behind: Save on a background worker instead of inline.
            clock: Millisecond timestamps for inbox items and new shelves.

        """
        self._ids = IdRegistry()
        if library is None:
            library = Library.single(
                Shelf(id=self._ids.new_id(), name=DEFAULT_SHELF_NAME, created_at=clock()),
            )
        self._library = library
        self._ids.observe(library.iter_ids())
        self._clock = clock
        self._phase = MutationPhase.IDLE
        self.last_outcome = MutationPhase.IDLE
        self._saver = ShelfSaver(store, write_behind=write_behind) if store is not None else None
        # Inbox payloads we saved ourselves; stores echo them back as change events.
        self._saved_inboxes: collections.deque[str] = collections.deque(maxlen=32)
        self._echo_lock = threading.Lock()
        if store is not None:
            store.subscribe(self.apply_external_change)

    @classmethod
    def load(
        cls,
        store: KeyValueStore,
        *,
        write_behind: bool = False,
        clock: Callable[[], int] = now_millis,
    ) -> ShelfModel:
        """Load the library held by ``store``, saving it back if it was migrated.

        Single-shelf keys left over from older versions are removed from the
        store once the migrated library has been written.
        """
        registry = IdRegistry()
        record = store.get(LOAD_KEYS)
        library, migrated = library_from_record(record, registry.new_id, now=clock())
        model = cls(library, store, write_behind=write_behind, clock=clock)
        if migrated:
            LOGGER.info("Stored library was migrated; saving the updated form")
            model._save(obsolete_keys=tuple(key for key in LEGACY_SHELF_KEYS if key in record))
        return model

    # --- State --------------------------------------------------------------------------

    @property
    def library(self) -> Library:
        """The committed library. Treat as read-only; mutate through the model."""
        return self._library

    @property
    def shelf(self) -> Shelf:
        """The committed current shelf."""
        return self._library.current

    @property
    def inbox(self) -> list[InboxItem]:
        """The committed inbox shared by every shelf."""
        return self._library.inbox

    @property
    def phase(self) -> MutationPhase:
        return self._phase

    @property
    def saver(self) -> ShelfSaver | None:
        return self._saver

    def new_id(self) -> str:
        """Issue an id unused anywhere in the library (for building import payloads)."""
        return self._ids.new_id()

    def flush(self) -> None:
        """Wait for queued saves (write-behind mode)."""
        if self._saver is not None:
            self._saver.flush()

    def close(self) -> None:
        if self._saver is not None:
            self._saver.close()

    # --- Mutation machinery ---------------------------------------------------------------

    def _commit(self, operation: str, apply: Callable[[Library], T], *, save: bool = True) -> T:
        if self._phase is not MutationPhase.IDLE:
            msg = f"Cannot start {operation!r} while another mutation is {self._phase.value}"
            raise RuntimeError(msg)

        self._phase = MutationPhase.VALIDATING
        LOGGER.debug("%s: validating", operation)
        try:
            working = copy.deepcopy(self._library)
            self._phase = MutationPhase.APPLYING
            result = apply(working)
            self._check_invariants(working)
        except (ValidationError, InvalidReference, DuplicateEntry) as exc:
            self._phase = MutationPhase.IDLE
            self.last_outcome = MutationPhase.REJECTED
            LOGGER.info("%s rejected: %s", operation, exc)
            raise
        except Exception:
            self._phase = MutationPhase.IDLE
            self.last_outcome = MutationPhase.REJECTED
            raise

        self._library = working
        self._ids.observe(working.iter_ids())
        self._phase = MutationPhase.IDLE
        self.last_outcome = MutationPhase.COMMITTED
        LOGGER.debug("%s: committed", operation)
        if save:
            self._save()
        return result

    @staticmethod
    def _check_invariants(library: Library) -> None:
        if not library.shelves:
            msg = "The library needs at least one shelf"
            raise ValidationError(msg)
        if library.get_shelf(library.current_shelf_id) is None:
            msg = f"Current shelf {library.current_shelf_id} does not exist"
            raise InvalidReference(msg)
        for shelf in library.shelves:
            collisions = slot_collisions(shelf.categories)
            if collisions:
                msg = f"Categories on shelf {shelf.name!r} would share grid slots {collisions}"
                raise ValidationError(msg)
        counts = collections.Counter(library.iter_ids())
        duplicates = sorted(item_id for item_id, count in counts.items() if count > 1)
        if duplicates:
            msg = f"Ids would no longer be unique: {duplicates}"
            raise ValidationError(msg)

    def _save(self, obsolete_keys: tuple[str, ...] = ()) -> None:
        if self._saver is None:
            return
        record = library_to_record(self._library)
        with self._echo_lock:
            self._saved_inboxes.append(_fingerprint(record[KEY_INBOX]))
        self._saver.save(record, obsolete_keys)

    # --- Lookups --------------------------------------------------------------------------

    @staticmethod
    def _shelf_by_id(library: Library, shelf_id: str) -> Shelf:
        shelf = library.get_shelf(shelf_id)
        if shelf is None:
            msg = f"Shelf {shelf_id} not found"
            raise InvalidReference(msg)
        return shelf

    @staticmethod
    def _category(shelf: Shelf, category_id: str) -> Category:
        category = shelf.get_category(category_id)
        if category is None:
            msg = f"Category {category_id} not found"
            raise InvalidReference(msg)
        return category

    @staticmethod
    def _subcategory(shelf: Shelf, subcategory_id: str) -> tuple[Category, Subcategory]:
        for category in shelf.categories:
            for sub in category.subcategories:
                if sub.id == subcategory_id:
                    return category, sub
        msg = f"Subcategory {subcategory_id} not found"
        raise InvalidReference(msg)

    @classmethod
    def _link_list(
        cls, shelf: Shelf, category_id: str, subcategory_id: str | None,
    ) -> list[Link]:
        category = cls._category(shelf, category_id)
        if subcategory_id is None:
            return category.links
        for sub in category.subcategories:
            if sub.id == subcategory_id:
                return sub.links
        msg = f"Subcategory {subcategory_id} not found in category {category_id}"
        raise InvalidReference(msg)

    @staticmethod
    def _by_id(items: list, item_id: str, label: str) -> Any:
        for item in items:
            if item.id == item_id:
                return item
        msg = f"{label} {item_id} not found"
        raise InvalidReference(msg)

    def get_shelf(self, shelf_id: str) -> Shelf:
        return self._shelf_by_id(self._library, shelf_id)

    def get_category(self, category_id: str) -> Category:
        return self._category(self.shelf, category_id)

    def find_link(self, link_id: str) -> tuple[ContainerAddress, Link] | None:
        """Locate a link anywhere in the current shelf's categories."""
        for category in self.shelf.categories:
            for link in category.links:
                if link.id == link_id:
                    return ContainerAddress.category_links(category.id), link
            for sub in category.subcategories:
                for link in sub.links:
                    if link.id == link_id:
                        return ContainerAddress.subcategory_links(category.id, sub.id), link
        return None

    def search(self, query: str) -> list[tuple[ContainerAddress, LinkLike]]:
        """Case-insensitive substring search over the current shelf and the inbox."""
        needle = query.strip().lower()
        if not needle:
            return []

        def _matches(item: LinkLike) -> bool:
            name = getattr(item, "name", "") or ""
            return needle in name.lower() or needle in item.url.lower()

        shelf = self.shelf
        hits: list[tuple[ContainerAddress, LinkLike]] = []
        for category in shelf.categories:
            address = ContainerAddress.category_links(category.id)
            hits.extend((address, link) for link in category.links if _matches(link))
            for sub in category.subcategories:
                address = ContainerAddress.subcategory_links(category.id, sub.id)
                hits.extend((address, link) for link in sub.links if _matches(link))
        favourites = ContainerAddress.favourites()
        hits.extend((favourites, f) for f in shelf.favourites if _matches(f))
        inbox = ContainerAddress.inbox()
        hits.extend((inbox, item) for item in self._library.inbox if _matches(item))
        return hits

    # --- Shelves --------------------------------------------------------------------------

    def create_shelf(self, name: str) -> Shelf:
        """Add an empty shelf with default settings and switch to it."""
        clean_name = _required(name, "Shelf name")

        def _apply(library: Library) -> Shelf:
            shelf = Shelf(id=self._ids.new_id(), name=clean_name, created_at=self._clock())
            library.shelves.append(shelf)
            library.current_shelf_id = shelf.id
            return shelf

        shelf = self._commit("create shelf", _apply)
        LOGGER.info("Created shelf %r", shelf.name)
        return self.shelf

    def rename_shelf(self, shelf_id: str, name: str) -> Library:
        clean_name = _required(name, "Shelf name")

        def _apply(library: Library) -> None:
            self._shelf_by_id(library, shelf_id).name = clean_name

        self._commit("rename shelf", _apply)
        return self._library

    def delete_shelf(self, shelf_id: str) -> Library:
        """Delete a shelf with its categories and favourites.

        The last shelf cannot be deleted. Deleting the current shelf switches
        to the first remaining one. The shared inbox is untouched.
        """

        def _apply(library: Library) -> Shelf:
            shelf = self._shelf_by_id(library, shelf_id)
            if len(library.shelves) == 1:
                msg = "Cannot delete the last shelf"
                raise ValidationError(msg)
            library.shelves.remove(shelf)
            if library.current_shelf_id == shelf.id:
                library.current_shelf_id = library.shelves[0].id
            return shelf

        removed = self._commit("delete shelf", _apply)
        LOGGER.info(
            "Deleted shelf %r with %d categories and %d favourites",
            removed.name,
            len(removed.categories),
            len(removed.favourites),
        )
        return self._library

    def switch_shelf(self, shelf_id: str) -> Shelf:
        """Make ``shelf_id`` the current shelf and return it."""
        if shelf_id == self._library.current_shelf_id:
            return self.shelf

        def _apply(library: Library) -> None:
            library.current_shelf_id = self._shelf_by_id(library, shelf_id).id

        self._commit("switch shelf", _apply)
        LOGGER.info("Switched to shelf %r", self.shelf.name)
        return self.shelf

    def move_category_to_shelf(self, category_id: str, target_shelf_id: str) -> Library:
        """Move a category of the current shelf onto another shelf.

        The category takes the first free slot of the target shelf's grid and
        leaves a hole in the current one, as a deletion would.
        """

        def _apply(library: Library) -> Category:
            source = library.current
            category = self._category(source, category_id)
            target = self._shelf_by_id(library, target_shelf_id)
            if target is source:
                msg = f"Category {category_id} is already on shelf {target.name!r}"
                raise ValidationError(msg)
            slot = find_first_available_slot(target.categories, target.column_count)
            if any(c.slot == slot for c in target.categories):
                msg = f"Shelf {target.name!r} has no free slot left for a category"
                raise ValidationError(msg)
            source.categories.remove(category)
            category.column, category.position = slot
            target.categories.append(category)
            return category

        moved = self._commit("move category to shelf", _apply)
        LOGGER.info(
            "Moved category %r to shelf %r at %s",
            moved.name,
            self.get_shelf(target_shelf_id).name,
            moved.slot,
        )
        return self._library

    # --- Categories -----------------------------------------------------------------------

    def create_category(self, name: str) -> Category:
        """Create an empty category in the first free grid slot."""
        clean_name = _required(name, "Category name")

        def _apply(library: Library) -> Category:
            shelf = library.current
            slot = find_first_available_slot(shelf.categories, shelf.column_count)
            if any(c.slot == slot for c in shelf.categories):
                msg = "The grid has no free slot left for a new category"
                raise ValidationError(msg)
            category = Category(
                id=self._ids.new_id(), name=clean_name, column=slot.column, position=slot.position,
            )
            shelf.categories.append(category)
            return category

        category = self._commit("create category", _apply)
        LOGGER.info("Created category %r at %s", category.name, category.slot)
        return self.get_category(category.id)

    def rename_category(self, category_id: str, name: str) -> Shelf:
        clean_name = _required(name, "Category name")

        def _apply(library: Library) -> None:
            self._category(library.current, category_id).name = clean_name

        self._commit("rename category", _apply)
        return self.shelf

    def delete_category(self, category_id: str) -> Shelf:
        """Delete a category with all its links and subcategories.

        Other categories keep their slots; the freed slot stays empty until a
        later move or ``create_category`` fills it.
        """

        def _apply(library: Library) -> Category:
            shelf = library.current
            category = self._category(shelf, category_id)
            shelf.categories.remove(category)
            return category

        removed = self._commit("delete category", _apply)
        LOGGER.info(
            "Deleted category %r with %d subcategories and %d links",
            removed.name,
            len(removed.subcategories),
            removed.link_count(),
        )
        return self.shelf

    def move_category(self, category_id: str, target_column: int, target_position: int) -> Shelf:
        """Move a category to another grid slot (see ``grid.move_category``)."""

        def _apply(library: Library) -> None:
            shelf = library.current
            category = self._category(shelf, category_id)
            move_category(
                shelf.categories, category, target_column, target_position, shelf.column_count,
            )

        self._commit("move category", _apply)
        return self.shelf

    # --- Subcategories --------------------------------------------------------------------

    def create_subcategory(self, category_id: str, name: str) -> Subcategory:
        """Add an expanded subcategory at the top of a category."""
        clean_name = _required(name, "Subcategory name")

        def _apply(library: Library) -> Subcategory:
            category = self._category(library.current, category_id)
            subcategory = Subcategory(id=self._ids.new_id(), name=clean_name)
            category.subcategories.insert(0, subcategory)
            return subcategory

        subcategory = self._commit("create subcategory", _apply)
        return self._subcategory(self.shelf, subcategory.id)[1]

    def rename_subcategory(self, subcategory_id: str, name: str) -> Shelf:
        clean_name = _required(name, "Subcategory name")

        def _apply(library: Library) -> None:
            self._subcategory(library.current, subcategory_id)[1].name = clean_name

        self._commit("rename subcategory", _apply)
        return self.shelf

    def delete_subcategory(self, subcategory_id: str) -> Shelf:
        def _apply(library: Library) -> None:
            category, sub = self._subcategory(library.current, subcategory_id)
            category.subcategories.remove(sub)

        self._commit("delete subcategory", _apply)
        return self.shelf

    def toggle_subcategory_collapsed(self, subcategory_id: str) -> bool:
        """Flip the collapsed flag; returns the new value."""

        def _apply(library: Library) -> bool:
            sub = self._subcategory(library.current, subcategory_id)[1]
            sub.collapsed = not sub.collapsed
            return sub.collapsed

        return self._commit("toggle subcategory", _apply)

    # --- Links ---------------------------------------------------------------------------

    def add_link(
        self,
        category_id: str,
        name: str,
        url: str,
        subcategory_id: str | None = None,
        favicon_data: str | None = None,
        custom_favicon_url: str | None = None,
    ) -> Link:
        """Append a link to a category or one of its subcategories."""
        clean_name = _required(name, "Link name")
        clean_url = _required_url(url)

        def _apply(library: Library) -> Link:
            links = self._link_list(library.current, category_id, subcategory_id)
            link = Link(
                id=self._ids.new_id(),
                name=clean_name,
                url=clean_url,
                favicon_data=favicon_data,
                custom_favicon_url=normalize_url(custom_favicon_url) or None,
            )
            links.append(link)
            return link

        link = self._commit("add link", _apply)
        return self._require_link(link.id)

    def update_link(
        self,
        link_id: str,
        *,
        name: str | None = None,
        url: str | None = None,
        favicon_data: str | None = None,
        custom_favicon_url: str | None = None,
    ) -> Link:
        """Edit a link in place. ``None`` leaves a field unchanged.

        An empty ``custom_favicon_url`` clears the custom icon.
        """
        clean_name = _required(name, "Link name") if name is not None else None
        clean_url = _required_url(url) if url is not None else None

        def _apply(library: Library) -> None:
            link = self._find_link(library.current, link_id)
            if clean_name is not None:
                link.name = clean_name
            if clean_url is not None:
                link.url = clean_url
            if favicon_data is not None:
                link.favicon_data = favicon_data
            if custom_favicon_url is not None:
                link.custom_favicon_url = normalize_url(custom_favicon_url) or None

        self._commit("update link", _apply)
        return self._require_link(link_id)

    def delete_link(
        self, category_id: str, link_id: str, subcategory_id: str | None = None,
    ) -> Shelf:
        """Remove a link from a category, or from the named subcategory."""

        def _apply(library: Library) -> None:
            links = self._link_list(library.current, category_id, subcategory_id)
            links.remove(self._by_id(links, link_id, "Link"))

        self._commit("delete link", _apply)
        return self.shelf

    def _find_link(self, shelf: Shelf, link_id: str) -> Link:
        for category in shelf.categories:
            for link in category.links:
                if link.id == link_id:
                    return link
            for sub in category.subcategories:
                for link in sub.links:
                    if link.id == link_id:
                        return link
        msg = f"Link {link_id} not found"
        raise InvalidReference(msg)

    def _require_link(self, link_id: str) -> Link:
        return self._find_link(self.shelf, link_id)

    # --- Favourites -----------------------------------------------------------------------

    def add_favourite(
        self,
        url: str,
        favicon_data: str | None = None,
        custom_favicon_url: str | None = None,
    ) -> Favourite:
        clean_url = _required_url(url)

        def _apply(library: Library) -> Favourite:
            favourite = Favourite(
                id=self._ids.new_id(),
                url=clean_url,
                favicon_data=favicon_data,
                custom_favicon_url=normalize_url(custom_favicon_url) or None,
            )
            library.current.favourites.append(favourite)
            return favourite

        favourite = self._commit("add favourite", _apply)
        return self._by_id(self.shelf.favourites, favourite.id, "Favourite")

    def update_favourite(
        self,
        favourite_id: str,
        *,
        url: str | None = None,
        favicon_data: str | None = None,
        custom_favicon_url: str | None = None,
    ) -> Favourite:
        clean_url = _required_url(url) if url is not None else None

        def _apply(library: Library) -> None:
            favourite = self._by_id(library.current.favourites, favourite_id, "Favourite")
            if clean_url is not None:
                favourite.url = clean_url
            if favicon_data is not None:
                favourite.favicon_data = favicon_data
            if custom_favicon_url is not None:
                favourite.custom_favicon_url = normalize_url(custom_favicon_url) or None

        self._commit("update favourite", _apply)
        return self._by_id(self.shelf.favourites, favourite_id, "Favourite")

    def delete_favourite(self, favourite_id: str) -> Shelf:
        def _apply(library: Library) -> None:
            favourites = library.current.favourites
            favourites.remove(self._by_id(favourites, favourite_id, "Favourite"))

        self._commit("delete favourite", _apply)
        return self.shelf

    # --- Inbox ---------------------------------------------------------------------------

    def add_to_inbox(
        self, url: str, name: str | None = None, favicon_data: str | None = None,
    ) -> InboxItem:
        """Put a URL at the top of the inbox. The name defaults to the host."""
        clean_url = _required_url(url)
        clean_name = name.strip() if name and name.strip() else default_link_name(clean_url)

        def _apply(library: Library) -> InboxItem:
            key = url_key(clean_url)
            if any(url_key(item.url) == key for item in library.inbox):
                raise DuplicateEntry(clean_url)
            item = InboxItem(
                id=self._ids.new_id(),
                name=clean_name,
                url=clean_url,
                favicon_data=favicon_data,
                added_at=self._clock(),
            )
            library.inbox.insert(0, item)
            return item

        item = self._commit("add to inbox", _apply)
        return self._by_id(self.inbox, item.id, "Inbox item")

    def update_inbox_item(
        self,
        item_id: str,
        *,
        name: str | None = None,
        url: str | None = None,
        custom_favicon_url: str | None = None,
    ) -> InboxItem:
        clean_name = _required(name, "Name") if name is not None else None
        clean_url = _required_url(url) if url is not None else None

        def _apply(library: Library) -> None:
            item = self._by_id(library.inbox, item_id, "Inbox item")
            if clean_url is not None and url_key(clean_url) != url_key(item.url):
                key = url_key(clean_url)
                if any(url_key(other.url) == key for other in library.inbox if other is not item):
                    raise DuplicateEntry(clean_url)
                item.url = clean_url
            if clean_name is not None:
                item.name = clean_name
            if custom_favicon_url is not None:
                item.custom_favicon_url = normalize_url(custom_favicon_url) or None

        self._commit("update inbox item", _apply)
        return self._by_id(self.inbox, item_id, "Inbox item")

    def delete_inbox_item(self, item_id: str) -> Shelf:
        def _apply(library: Library) -> None:
            library.inbox.remove(self._by_id(library.inbox, item_id, "Inbox item"))

        self._commit("delete inbox item", _apply)
        return self.shelf

    def file_inbox_item(
        self, item_id: str, category_id: str, subcategory_id: str | None = None,
    ) -> Link:
        """Move an inbox item to the end of a category's (or subcategory's) links."""
        session_source = ContainerAddress.inbox()
        target = ContainerAddress.for_links(category_id, subcategory_id)

        def _apply(library: Library) -> LinkLike:
            mover = OrderedCollectionMover(library, self._clock)
            index = mover.index_of(session_source, item_id)
            return mover.move(session_source, index, target, APPEND_SENTINEL)

        self._commit("file inbox item", _apply)
        return self._require_link(item_id)

    # --- Moves ---------------------------------------------------------------------------

    def move(
        self,
        source: ContainerAddress,
        source_index: int,
        target: ContainerAddress,
        target_index: int,
        name: str | None = None,
    ) -> LinkLike | Subcategory:
        """Index-addressed move (see ``OrderedCollectionMover.move``)."""

        def _apply(library: Library) -> LinkLike | Subcategory:
            mover = OrderedCollectionMover(library, self._clock)
            return mover.move(source, source_index, target, target_index, name)

        moved = self._commit("move", _apply)
        return self._stored(target, moved.id)

    def move_item(
        self,
        session: DragSession,
        target: ContainerAddress,
        target_index: int,
        name: str | None = None,
    ) -> LinkLike | Subcategory:
        """Drop the dragged item at ``target_index`` of ``target``.

        The item's current index is looked up by id when the drop is applied,
        so changes made since the drag started cannot redirect the move.
        """

        def _apply(library: Library) -> LinkLike | Subcategory:
            mover = OrderedCollectionMover(library, self._clock)
            source_index = mover.index_of(session.source, session.item_id)
            return mover.move(session.source, source_index, target, target_index, name)

        self._commit("move item", _apply)
        return self._stored(target, session.item_id)

    def _stored(self, address: ContainerAddress, item_id: str) -> LinkLike | Subcategory:
        mover = OrderedCollectionMover(self._library, self._clock)
        return mover.resolve(address)[mover.index_of(address, item_id)]

    # --- Settings ------------------------------------------------------------------------

    def set_column_count(self, column_count: int) -> Shelf:
        """Change the current shelf's grid width; categories in removed columns move left."""
        if not MIN_COLUMN_COUNT <= column_count <= MAX_COLUMN_COUNT:
            msg = f"Column count must be between {MIN_COLUMN_COUNT} and {MAX_COLUMN_COUNT}"
            raise ValidationError(msg)

        def _apply(library: Library) -> None:
            shelf = library.current
            if column_count < shelf.column_count:
                relocate_orphaned_categories(shelf.categories, column_count)
            shelf.column_count = column_count

        self._commit("set column count", _apply)
        return self.shelf

    def set_show_favourites(self, show: bool) -> Shelf:
        def _apply(library: Library) -> None:
            library.current.show_favourites = bool(show)

        self._commit("set show favourites", _apply)
        return self.shelf

    def set_open_links_in_new_tab(self, new_tab: bool) -> Shelf:
        def _apply(library: Library) -> None:
            library.current.open_links_in_new_tab = bool(new_tab)

        self._commit("set open links in new tab", _apply)
        return self.shelf

    # --- Import and external changes ----------------------------------------------------------

    def import_shelf(self, payload: dict[str, Any], name: str | None = None) -> Shelf:
        """Add a new shelf built from a validated payload and switch to it.

        Existing shelves are left alone. The shelf is called ``name``, else
        the payload's ``shelfName``, else "Imported Bookmarks". Payload ids
        already used in the library (or seen before) are reissued.
        """
        model = validate_import_payload(payload)
        if name is not None:
            shelf_name = _required(name, "Shelf name")
        else:
            shelf_name = (model.shelf_name or "").strip() or IMPORTED_SHELF_NAME

        def _apply(library: Library) -> Shelf:
            shelf = shelf_from_payload(
                model, self._ids.new_id(), shelf_name, created_at=self._clock(),
            )
            reissue_ids(list(shelf_entities(shelf)), self._ids.__contains__, self._ids.new_id)
            library.shelves.append(shelf)
            library.current_shelf_id = shelf.id
            return shelf

        shelf = self._commit("import shelf", _apply)
        LOGGER.info("Imported %d categories as shelf %r", len(shelf.categories), shelf.name)
        return self.shelf

    def apply_external_change(self, changes: dict[str, Any]) -> None:
        """Handle a store change notification.

        Only the inbox is taken over, and it replaces the local inbox as a
        whole. Local inbox edits that were not yet saved are lost.
        """
        if KEY_INBOX not in changes:
            return
        fingerprint = _fingerprint(changes[KEY_INBOX])
        with self._echo_lock:
            if fingerprint in self._saved_inboxes:
                self._saved_inboxes.remove(fingerprint)
                return
        if changes[KEY_INBOX] == inbox_to_wire(self._library.inbox):
            return
        if self._phase is not MutationPhase.IDLE:
            LOGGER.warning("Inbox change arrived during a mutation; ignoring it")
            return
        try:
            inbox = parse_inbox(changes[KEY_INBOX])
        except ValidationError as exc:
            LOGGER.warning("Ignoring malformed inbox change: %s", exc)
            return

        def _apply(library: Library) -> None:
            library.inbox = inbox

        try:
            self._commit("external inbox change", _apply, save=False)
        except ValidationError as exc:
            LOGGER.warning("Ignoring inbox change that conflicts with the shelf: %s", exc)
            return
        LOGGER.warning(
            "Inbox replaced by an external change (%d items); unsaved local inbox edits are lost",
            len(inbox),
        )
