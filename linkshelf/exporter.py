"""Serialise shelves for storage, JSON export and Netscape HTML export."""

from __future__ import annotations

import html
import json
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from .config import EXPORT_FORMAT_VERSION, KEY_CURRENT_SHELF_ID, KEY_INBOX, KEY_SHELVES

if TYPE_CHECKING:  # pragma: no cover
    from pathlib import Path

    from .models import Category, InboxItem, Library, Link, Shelf

LOGGER = logging.getLogger(__name__)

HTML_HEADER = """<!DOCTYPE NETSCAPE-Bookmark-file-1>
<!-- This is an automatically generated file.
     It will be read and overwritten.
     DO NOT EDIT! -->
<META HTTP-EQUIV="Content-Type" CONTENT="text/html; charset=UTF-8">
<TITLE>LinkShelf Bookmarks</TITLE>
<H1>LinkShelf Bookmarks</H1>
"""


def _dump(model: Any) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True)


def categories_to_wire(categories: list[Category]) -> list[dict[str, Any]]:
    return [_dump(c.to_model()) for c in categories]


def inbox_to_wire(inbox: list[InboxItem]) -> list[dict[str, Any]]:
    return [_dump(item.to_model()) for item in inbox]


def shelf_to_wire(shelf: Shelf) -> dict[str, Any]:
    return _dump(shelf.to_model())


def library_to_record(library: Library) -> dict[str, Any]:
    """Full storage record for ``library``, one entry per storage key."""
    return {
        KEY_SHELVES: [shelf_to_wire(shelf) for shelf in library.shelves],
        KEY_CURRENT_SHELF_ID: library.current.id,
        KEY_INBOX: inbox_to_wire(library.inbox),
    }


def export_json(shelf: Shelf, exported_at: datetime | None = None) -> dict[str, Any]:
    """Build the JSON export document for one shelf (an import payload plus metadata)."""
    stamp = exported_at or datetime.now(tz=timezone.utc)
    return {
        "shelfName": shelf.name,
        "categories": categories_to_wire(shelf.categories),
        "favourites": [_dump(f.to_model()) for f in shelf.favourites],
        "columnCount": shelf.column_count,
        "showFavourites": shelf.show_favourites,
        "openLinksInNewTab": shelf.open_links_in_new_tab,
        "exportDate": stamp.isoformat(),
        "version": EXPORT_FORMAT_VERSION,
        "isShelfExport": True,
    }


def write_json_export(shelf: Shelf, output_path: Path) -> None:
    """Write the JSON export document to ``output_path``."""
    payload = export_json(shelf)
    output_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
    LOGGER.info("Exported %d categories to %s", len(shelf.categories), output_path)


def render_netscape_html(shelf: Shelf, exported_at: datetime | None = None) -> str:
    """Render the shelf as a Netscape bookmark file.

    Categories become folders in grid order (column, then position) and
    subcategories nested folders; links keep their display order. Empty
    categories and subcategories are skipped.
    """
    stamp = str(int((exported_at or datetime.now(tz=timezone.utc)).timestamp()))
    lines: list[str] = [HTML_HEADER.strip(), "<DL><p>"]
    for category in sorted(shelf.categories, key=lambda c: (c.column, c.position)):
        if not category.links and not category.subcategories:
            continue
        _render_folder(lines, category.name, stamp, 1)
        for link in category.links:
            _render_link(lines, link, stamp, 2)
        for sub in category.subcategories:
            if not sub.links:
                continue
            _render_folder(lines, sub.name, stamp, 2)
            for link in sub.links:
                _render_link(lines, link, stamp, 3)
            lines.append(f"{'    ' * 2}</DL><p>")
        lines.append("    </DL><p>")
    lines.append("</DL><p>")
    return "\n".join(lines)


def _render_folder(output: list[str], name: str, stamp: str, depth: int) -> None:
    indent = "    " * depth
    output.append(
        f'{indent}<DT><H3 ADD_DATE="{stamp}" LAST_MODIFIED="{stamp}">{html.escape(name)}</H3>',
    )
    output.append(f"{indent}<DL><p>")


def _render_link(output: list[str], link: Link, stamp: str, depth: int) -> None:
    indent = "    " * depth
    href = html.escape(link.url, quote=True)
    output.append(
        f'{indent}<DT><A HREF="{href}" ADD_DATE="{stamp}" LAST_MODIFIED="{stamp}">'
        f"{html.escape(link.name)}</A>",
    )


def write_netscape_html(shelf: Shelf, output_path: Path) -> None:
    """Write the shelf as a Netscape bookmark file."""
    output_path.write_text(render_netscape_html(shelf) + "\n", encoding="utf-8")
    LOGGER.info("Exported %d categories as HTML to %s", len(shelf.categories), output_path)
