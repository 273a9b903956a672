"""Global configuration constants for the link shelf."""

from __future__ import annotations

# Grid layout bounds. The column count is user configurable within this range.
DEFAULT_COLUMN_COUNT: int = 5
MIN_COLUMN_COUNT: int = 1
MAX_COLUMN_COUNT: int = 5

# Positions scanned per column when looking for a free category slot.
SLOT_SEARCH_LIMIT: int = 100

# Target index meaning "insert at the end of the target list".
APPEND_SENTINEL: int = -1

# Storage keys written by the library: every shelf, the current one and the shared inbox.
KEY_SHELVES = "linkshelf_shelves"
KEY_CURRENT_SHELF_ID = "linkshelf_current_shelf_id"
KEY_INBOX = "linkshelf_inbox"

STORAGE_KEYS: tuple[str, ...] = (KEY_SHELVES, KEY_CURRENT_SHELF_ID, KEY_INBOX)

# Single-shelf keys from before shelves existed. Read once, migrated, then removed.
KEY_CATEGORIES = "linkshelf_categories"
KEY_FAVOURITES = "linkshelf_favourites"
KEY_COLUMN_COUNT = "linkshelf_column_count"
KEY_SHOW_FAVOURITES = "linkshelf_show_favourites"
KEY_OPEN_LINKS_NEW_TAB = "linkshelf_open_links_new_tab"

LEGACY_SHELF_KEYS: tuple[str, ...] = (
    KEY_CATEGORIES,
    KEY_FAVOURITES,
    KEY_COLUMN_COUNT,
    KEY_SHOW_FAVOURITES,
    KEY_OPEN_LINKS_NEW_TAB,
)

LOAD_KEYS: tuple[str, ...] = STORAGE_KEYS + LEGACY_SHELF_KEYS

# Shelf created for a fresh store and for migrated single-shelf data.
DEFAULT_SHELF_NAME = "My Bookmarks"

# Name of an imported shelf when neither the caller nor the file supplies one.
IMPORTED_SHELF_NAME = "Imported Bookmarks"

# Name given to the category collecting loose top-level links on HTML import.
UNSORTED_CATEGORY_NAME = "Unsorted Bookmarks"

EXPORT_FORMAT_VERSION = "2.0"
