"""Build shelves from stored records, import payloads and Netscape HTML files.

Two entry points with different strictness:

* ``library_from_record`` loads what the store holds. Records written by older
  versions are migrated (single-shelf keys folded into a shelf, ``bookmarks``
  renamed to ``links``, missing ids, flags and slots filled in).
* ``validate_import_payload`` / ``shelf_from_payload`` accept data from
  outside. Nothing is filled in except grid slots; anything malformed is a
  ``ValidationError``.
"""

from __future__ import annotations

import collections
import copy
import json
import logging
from typing import TYPE_CHECKING, Any, Callable, Iterator

from bs4 import BeautifulSoup, Tag
from pydantic import ValidationError as PydanticValidationError

from .config import (
    DEFAULT_COLUMN_COUNT,
    DEFAULT_SHELF_NAME,
    KEY_CATEGORIES,
    KEY_COLUMN_COUNT,
    KEY_CURRENT_SHELF_ID,
    KEY_FAVOURITES,
    KEY_INBOX,
    KEY_OPEN_LINKS_NEW_TAB,
    KEY_SHELVES,
    KEY_SHOW_FAVOURITES,
    LEGACY_SHELF_KEYS,
    MAX_COLUMN_COUNT,
    MIN_COLUMN_COUNT,
    UNSORTED_CATEGORY_NAME,
)
from .errors import PersistenceError, ValidationError
from .grid import find_first_available_slot, relocate_orphaned_categories, slot_collisions
from .models import (
    Category,
    CategoryModel,
    Favourite,
    FavouriteModel,
    InboxItem,
    InboxListModel,
    Library,
    Shelf,
    ShelfPayloadModel,
)

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Iterable, Mapping
    from pathlib import Path

LOGGER = logging.getLogger(__name__)

IdFactory = Callable[[], str]
# --- Stored records ----------------------------------------------------------------------


def library_from_record(
    record: Mapping[str, Any], new_id: IdFactory, now: int | None = None,
) -> tuple[Library, bool]:
    """Load the library from a storage record, migrating older layouts.

    A record from before shelves existed (flat ``linkshelf_categories`` and
    friends) becomes a single "My Bookmarks" shelf; a store holding no shelves
    at all gets an empty one. Legacy link data is migrated as well
    (``bookmarks`` renamed to ``links``, missing ids, flags and slots filled in).

    Returns the library and whether migration changed anything (the caller
    then saves the migrated form). Raises ``PersistenceError`` when the record
    cannot be understood at all.
    """
    raw_shelves = copy.deepcopy(record.get(KEY_SHELVES) or [])
    raw_inbox = copy.deepcopy(record.get(KEY_INBOX) or [])
    if not isinstance(raw_shelves, list) or not isinstance(raw_inbox, list):
        msg = "Stored library is malformed: shelves and inbox must be lists"
        raise PersistenceError(msg)

    migrated = any(key in record for key in LEGACY_SHELF_KEYS)
    if not raw_shelves and (KEY_CATEGORIES in record or KEY_FAVOURITES in record):
        LOGGER.info("Migrating single-shelf data into a %r shelf", DEFAULT_SHELF_NAME)
        raw_shelves = [_legacy_shelf(record, new_id, now)]

    shelves: list[Shelf] = []
    for raw in raw_shelves:
        if not isinstance(raw, dict):
            msg = f"Stored shelf is malformed: expected an object, got {type(raw).__name__}"
            raise PersistenceError(msg)
        shelf, changed = _shelf_from_raw(raw, new_id)
        shelves.append(shelf)
        migrated = changed or migrated
    if not shelves:
        shelves.append(Shelf(id=new_id(), name=DEFAULT_SHELF_NAME, created_at=now))

    for raw in raw_inbox:
        migrated = _migrate_link(raw, new_id) or migrated
    try:
        inbox = InboxListModel.model_validate(raw_inbox).to_items()
    except PydanticValidationError as exc:
        msg = f"Stored inbox is malformed: {exc}"
        raise PersistenceError(msg) from exc

    current_id = record.get(KEY_CURRENT_SHELF_ID)
    if not any(shelf.id == current_id for shelf in shelves):
        if current_id is not None:
            LOGGER.warning("Stored current shelf %r not found; using the first shelf", current_id)
        migrated = migrated or bool(raw_shelves)
        current_id = shelves[0].id

    library = Library(shelves=shelves, current_shelf_id=current_id, inbox=inbox)
    entities = [
        entity for shelf in shelves for entity in (shelf, *shelf_entities(shelf))
    ]
    reissued = reissue_ids([*entities, *inbox], lambda _item_id: False, new_id)
    LOGGER.info("Loaded %d shelves and %d inbox items", len(shelves), len(inbox))
    return library, migrated or reissued > 0


def _legacy_shelf(
    record: Mapping[str, Any], new_id: IdFactory, now: int | None,
) -> dict[str, Any]:
    return {
        "id": new_id(),
        "name": DEFAULT_SHELF_NAME,
        "categories": copy.deepcopy(record.get(KEY_CATEGORIES) or []),
        "favourites": copy.deepcopy(record.get(KEY_FAVOURITES) or []),
        "columnCount": record.get(KEY_COLUMN_COUNT, DEFAULT_COLUMN_COUNT),
        "showFavourites": record.get(KEY_SHOW_FAVOURITES, True) is not False,
        "openLinksInNewTab": record.get(KEY_OPEN_LINKS_NEW_TAB, True) is not False,
        "createdAt": now,
    }


def _shelf_from_raw(raw: dict[str, Any], new_id: IdFactory) -> tuple[Shelf, bool]:
    changed = False
    if not raw.get("id"):
        raw["id"] = new_id()
        changed = True
    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        raw["name"] = DEFAULT_SHELF_NAME
        changed = True

    column_count = raw.get("columnCount", DEFAULT_COLUMN_COUNT)
    if not isinstance(column_count, int) or not (
        MIN_COLUMN_COUNT <= column_count <= MAX_COLUMN_COUNT
    ):
        LOGGER.warning("Stored column count %r invalid; using default", column_count)
        column_count = DEFAULT_COLUMN_COUNT
        changed = True

    raw_categories = raw.get("categories") or []
    raw_favourites = raw.get("favourites") or []
    if not isinstance(raw_categories, list) or not isinstance(raw_favourites, list):
        msg = f"Stored shelf {raw['id']} is malformed: categories and favourites must be lists"
        raise PersistenceError(msg)

    for raw_category in raw_categories:
        changed = _migrate_category(raw_category, new_id) or changed
    for raw_favourite in raw_favourites:
        changed = _migrate_link(raw_favourite, new_id) or changed

    try:
        category_models = [CategoryModel.model_validate(c) for c in raw_categories]
        favourites = [
            Favourite.from_model(FavouriteModel.model_validate(f)) for f in raw_favourites
        ]
    except PydanticValidationError as exc:
        msg = f"Stored shelf {raw['id']} is malformed: {exc}"
        raise PersistenceError(msg) from exc

    missing_slots = sum(1 for m in category_models if m.column is None or m.position is None)
    categories = place_categories(category_models, column_count)
    repaired = _repair_collisions(categories, column_count)
    created_at = raw.get("createdAt")

    shelf = Shelf(
        id=raw["id"],
        name=raw["name"].strip(),
        categories=categories,
        favourites=favourites,
        column_count=column_count,
        show_favourites=raw.get("showFavourites", True) is not False,
        open_links_in_new_tab=raw.get("openLinksInNewTab", True) is not False,
        created_at=created_at if isinstance(created_at, int) else None,
    )
    LOGGER.debug(
        "Loaded shelf %r with %d categories and %d favourites",
        shelf.name,
        len(shelf.categories),
        len(shelf.favourites),
    )
    return shelf, changed or missing_slots > 0 or repaired > 0


def _repair_collisions(categories: list[Category], column_count: int) -> int:
    """Give every category after the first in a shared slot a free slot."""
    seen: set[tuple[int, int]] = set()
    repaired = 0
    for category in categories:
        if category.slot in seen:
            slot = find_first_available_slot(categories, column_count)
            LOGGER.warning(
                "Category %s shares slot %s; moving it to %s", category.id, category.slot, slot,
            )
            category.column, category.position = slot
            repaired += 1
        seen.add(category.slot)
    return repaired


def shelf_entities(shelf: Shelf) -> Iterator[Any]:
    """Yield every category, subcategory, link and favourite of ``shelf``."""
    for category in shelf.categories:
        yield category
        yield from category.links
        for sub in category.subcategories:
            yield sub
            yield from sub.links
    yield from shelf.favourites


def reissue_ids(
    entities: Iterable[Any], is_taken: Callable[[str], bool], new_id: IdFactory,
) -> int:
    """Give a fresh id to every entity whose id is taken or repeats an earlier one.

    Returns how many ids were reissued.
    """
    seen: set[str] = set()
    reissued = 0
    for entity in entities:
        if entity.id in seen or is_taken(entity.id):
            old_id = entity.id
            entity.id = new_id()
            LOGGER.warning("Id %s already in use; reissued as %s", old_id, entity.id)
            reissued += 1
        seen.add(entity.id)
    return reissued


def _migrate_category(raw: dict[str, Any], new_id: IdFactory) -> bool:
    if not isinstance(raw, dict):
        return False
    changed = False
    if not raw.get("id"):
        raw["id"] = new_id()
        changed = True
    if "links" not in raw:
        raw["links"] = raw.pop("bookmarks", None) or []
        changed = True
    elif "bookmarks" in raw:
        raw.pop("bookmarks")
        changed = True
    if "subcategories" not in raw or raw["subcategories"] is None:
        raw["subcategories"] = []
        changed = True
    for link in _as_list(raw["links"]):
        changed = _migrate_link(link, new_id) or changed
    for sub in _as_list(raw["subcategories"]):
        if not isinstance(sub, dict):
            continue
        if not sub.get("id"):
            sub["id"] = new_id()
            changed = True
        if "collapsed" not in sub:
            sub["collapsed"] = False
            changed = True
        if not isinstance(sub.get("links"), list):
            sub["links"] = []
            changed = True
        for link in sub["links"]:
            changed = _migrate_link(link, new_id) or changed
    return changed


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _migrate_link(raw: dict[str, Any], new_id: IdFactory) -> bool:
    if not isinstance(raw, dict):
        return False
    changed = False
    if not raw.get("id"):
        raw["id"] = new_id()
        changed = True
    if "customFaviconUrl" not in raw:
        raw["customFaviconUrl"] = None
        changed = True
    return changed


def parse_inbox(raw_items: Any) -> list[InboxItem]:
    """Validate an inbox list received from a change notification."""
    try:
        return InboxListModel.model_validate(raw_items or []).to_items()
    except PydanticValidationError as exc:
        msg = f"Inbox update is malformed: {exc}"
        raise ValidationError(msg) from exc


# --- Import payloads ---------------------------------------------------------------------


def validate_import_payload(payload: Any) -> ShelfPayloadModel:
    """Strictly validate an import payload.

    Every entity must carry a non-empty id, ids must be unique, and every
    category must have ``links`` and ``subcategories`` arrays.
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("categories"), list):
        msg = "Import payload must be an object with a 'categories' list"
        raise ValidationError(msg)
    try:
        model = ShelfPayloadModel.model_validate(payload)
    except PydanticValidationError as exc:
        msg = f"Import payload is malformed: {exc}"
        raise ValidationError(msg) from exc

    duplicates = _duplicate_ids(model)
    if duplicates:
        msg = f"Import payload reuses ids: {', '.join(sorted(duplicates))}"
        raise ValidationError(msg)
    return model


def _duplicate_ids(model: ShelfPayloadModel) -> set[str]:
    ids: list[str] = []
    for category in model.categories:
        ids.append(category.id)
        ids.extend(link.id for link in category.links)
        for sub in category.subcategories:
            ids.append(sub.id)
            ids.extend(link.id for link in sub.links)
    ids.extend(f.id for f in model.favourites)
    counts = collections.Counter(ids)
    return {item_id for item_id, count in counts.items() if count > 1}


def place_categories(models: Iterable[CategoryModel], column_count: int) -> list[Category]:
    """Turn category models into categories, allocating missing slots.

    Categories that carry a slot keep it; the rest get the first free slot in
    list order. Categories beyond the last column are moved into it.
    """
    model_list = list(models)
    placed: list[Category | None] = [None] * len(model_list)
    for index, model in enumerate(model_list):
        if model.column is not None and model.position is not None:
            placed[index] = Category.from_model(model)

    for index, model in enumerate(model_list):
        if placed[index] is None:
            slot = find_first_available_slot(
                [c for c in placed if c is not None], column_count,
            )
            placed[index] = Category.from_model(model, slot=slot)

    categories = [c for c in placed if c is not None]
    relocate_orphaned_categories(categories, column_count)
    return categories


def categories_from_payload(model: ShelfPayloadModel) -> list[Category]:
    """Place a validated payload's categories, rejecting colliding slots."""
    categories = place_categories(model.categories, model.column_count)
    collisions = slot_collisions(categories)
    if collisions:
        msg = f"Import payload places several categories in the same slot: {collisions}"
        raise ValidationError(msg)
    return categories


def shelf_from_payload(
    model: ShelfPayloadModel, shelf_id: str, name: str, created_at: int | None = None,
) -> Shelf:
    """Build a new shelf holding a validated payload's categories and settings."""
    return Shelf(
        id=shelf_id,
        name=name,
        categories=categories_from_payload(model),
        favourites=[Favourite.from_model(m) for m in model.favourites],
        column_count=model.column_count,
        show_favourites=model.show_favourites,
        open_links_in_new_tab=model.open_links_in_new_tab,
        created_at=created_at,
    )


# --- Import files ------------------------------------------------------------------------


def load_import_file(path: Path, new_id: IdFactory) -> dict[str, Any]:
    """Read an import file (Netscape HTML or a JSON export) into a payload.

    The payload's ``shelfName`` is the exported shelf's name for JSON exports
    that carry one, else "Imported from <file name without extension>".
    """
    LOGGER.debug("Reading import file %s", path)
    text = path.read_text(encoding="utf-8")
    fallback_name = f"Imported from {path.stem}"
    head = text.lstrip()[:9].lower()
    if head.startswith(("<!doctype", "<html")):
        payload = parse_netscape_html(text, new_id)
        payload["shelfName"] = fallback_name
        return payload
    try:
        data = json.loads(text)
    except ValueError as exc:
        msg = f"Import file {path} is neither bookmark HTML nor JSON: {exc}"
        raise ValidationError(msg) from exc
    if not isinstance(data, dict) or not isinstance(data.get("categories"), list):
        msg = "Invalid export file format"
        raise ValidationError(msg)
    shelf_name = data.get("shelfName")
    if not isinstance(shelf_name, str) or not shelf_name.strip():
        shelf_name = fallback_name
    return {
        "shelfName": shelf_name,
        "categories": data["categories"],
        "favourites": data.get("favourites") or [],
        "columnCount": data.get("columnCount") or DEFAULT_COLUMN_COUNT,
        "showFavourites": data.get("showFavourites") is not False,
        "openLinksInNewTab": data.get("openLinksInNewTab") is not False,
    }


def parse_netscape_html(html_text: str, new_id: IdFactory) -> dict[str, Any]:
    """Parse a Netscape bookmark file into an import payload.

    Top-level folders become categories and their folders subcategories.
    Links in deeper folders are flattened into the enclosing subcategory.
    Links outside any folder are collected in an "Unsorted Bookmarks" category.
    """
    soup = BeautifulSoup(html_text, "html.parser")
    root_dl = soup.find("dl")
    if not isinstance(root_dl, Tag):
        msg = "Bookmark export is missing <DL> root element"
        raise ValidationError(msg)

    categories: list[dict[str, Any]] = []
    loose_links: list[dict[str, Any]] = []
    for entry in _direct_entries(root_dl):
        if entry.name == "a":
            link = _link_from_anchor(entry, new_id)
            if link is not None:
                loose_links.append(link)
            continue
        folder_name = entry.get_text(strip=True)
        folder_dl = _folder_list(entry)
        if not folder_name or folder_dl is None:
            continue
        categories.append(_category_from_folder(folder_name, folder_dl, new_id))

    if loose_links:
        categories.append(
            {
                "id": new_id(),
                "name": UNSORTED_CATEGORY_NAME,
                "links": loose_links,
                "subcategories": [],
            },
        )

    link_total = sum(
        len(c["links"]) + sum(len(s["links"]) for s in c["subcategories"]) for c in categories
    )
    LOGGER.info("Parsed %d categories with %d links from HTML", len(categories), link_total)
    return {
        "categories": categories,
        "favourites": [],
        "columnCount": DEFAULT_COLUMN_COUNT,
        "showFavourites": False,
        "openLinksInNewTab": True,
    }


def _category_from_folder(name: str, folder_dl: Tag, new_id: IdFactory) -> dict[str, Any]:
    links: list[dict[str, Any]] = []
    subcategories: list[dict[str, Any]] = []
    for entry in _direct_entries(folder_dl):
        if entry.name == "a":
            link = _link_from_anchor(entry, new_id)
            if link is not None:
                links.append(link)
            continue
        sub_name = entry.get_text(strip=True)
        sub_dl = _folder_list(entry)
        if not sub_name or sub_dl is None:
            continue
        sub_links = [
            link
            for anchor in sub_dl.find_all("a")
            if (link := _link_from_anchor(anchor, new_id)) is not None
        ]
        subcategories.append(
            {"id": new_id(), "name": sub_name, "collapsed": False, "links": sub_links},
        )
    return {"id": new_id(), "name": name, "links": links, "subcategories": subcategories}


def _direct_entries(dl: Tag) -> list[Tag]:
    """Folder headers and links whose closest enclosing list is ``dl``.

    Netscape files leave ``<DT>`` unclosed, so the parsed tree nests siblings
    inside each other; the closest ``<DL>`` ancestor is what identifies the
    owning folder.
    """
    return [
        tag
        for tag in dl.find_all(["h3", "a"])
        if isinstance(tag, Tag) and tag.find_parent("dl") is dl
    ]


def _folder_list(header: Tag) -> Tag | None:
    sibling = header.find_next_sibling("dl")
    if isinstance(sibling, Tag):
        return sibling
    parent = header.parent
    if isinstance(parent, Tag) and parent.name == "dt":
        sibling = parent.find_next_sibling("dl")
        if isinstance(sibling, Tag):
            return sibling
    return None


def _link_from_anchor(anchor: Tag, new_id: IdFactory) -> dict[str, Any] | None:
    href_value = anchor.get("href")
    if not isinstance(href_value, str) or not href_value.strip():
        LOGGER.debug("Skipping anchor without href")
        return None
    name = anchor.get_text(strip=True)
    if not name:
        LOGGER.debug("Skipping anchor without text for %s", href_value)
        return None
    return {
        "id": new_id(),
        "name": name,
        "url": href_value.strip(),
        "faviconData": None,
        "customFaviconUrl": None,
    }
