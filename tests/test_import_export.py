"""Tests for Netscape HTML and JSON import/export."""

from __future__ import annotations

import itertools
import json
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import pytest

from linkshelf.config import EXPORT_FORMAT_VERSION, UNSORTED_CATEGORY_NAME
from linkshelf.errors import ValidationError
from linkshelf.exporter import export_json, render_netscape_html, write_json_export
from linkshelf.importer import load_import_file, parse_netscape_html
from linkshelf.models import Slot
from linkshelf.shelf import ShelfModel

if TYPE_CHECKING:
    from pathlib import Path

    from linkshelf.models import Shelf

EXPORTED_AT = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def _id_factory():
    counter = itertools.count(1)
    return lambda: f"gen_{next(counter)}"


def _outline(shelf: Shelf) -> list[tuple[str, list[str], list[tuple[str, list[str]]]]]:
    """Names and URLs of the shelf's categories in grid order."""
    return [
        (
            c.name,
            [link.url for link in c.links],
            [(s.name, [link.url for link in s.links]) for s in c.subcategories],
        )
        for c in sorted(shelf.categories, key=lambda c: (c.column, c.position))
    ]


def test_parse_netscape_nested_folders(sample_export_html: Path) -> None:
    payload = parse_netscape_html(sample_export_html.read_text(encoding="utf-8"), _id_factory())
    names = [c["name"] for c in payload["categories"]]
    if names != ["Reading", "Shopping", UNSORTED_CATEGORY_NAME]:
        msg = f"Unexpected categories {names}"
        raise AssertionError(msg)
    reading = payload["categories"][0]
    if [link["url"] for link in reading["links"]] != ["https://blog.example"]:
        msg = f"Unexpected Reading links {reading['links']}"
        raise AssertionError(msg)
    papers = reading["subcategories"][0]
    if papers["name"] != "Papers" or [link["name"] for link in papers["links"]] != [
        "Arxiv",
        "Old paper",
    ]:
        msg = f"Deeper folders should flatten into the subcategory, got {papers}"
        raise AssertionError(msg)
    unsorted = payload["categories"][2]
    if [link["url"] for link in unsorted["links"]] != ["https://loose.example"]:
        msg = f"Loose links should land in {UNSORTED_CATEGORY_NAME}"
        raise AssertionError(msg)


def test_import_html_file_allocates_slots(sample_export_html: Path) -> None:
    model = ShelfModel()
    shelf = model.import_shelf(load_import_file(sample_export_html, model.new_id))
    slots = {c.name: c.slot for c in shelf.categories}
    expected = {"Reading": Slot(0, 0), "Shopping": Slot(0, 1), UNSORTED_CATEGORY_NAME: Slot(0, 2)}
    if slots != expected:
        msg = f"Expected {expected}, got {slots}"
        raise AssertionError(msg)
    if shelf.show_favourites:
        msg = "HTML imports carry no favourites and hide the bar"
        raise AssertionError(msg)
    if shelf.name != "Imported from bookmarks" or len(model.library.shelves) != 2:
        msg = f"HTML imports become a new shelf named after the file, got {shelf.name!r}"
        raise AssertionError(msg)


def test_html_without_list_is_rejected() -> None:
    with pytest.raises(ValidationError):
        parse_netscape_html("<html><body><a href='https://x'>x</a></body></html>", _id_factory())


def test_export_json_document(sample_shelf: Shelf) -> None:
    document = export_json(sample_shelf, exported_at=EXPORTED_AT)
    expected_keys = {
        "categories",
        "favourites",
        "columnCount",
        "showFavourites",
        "openLinksInNewTab",
        "exportDate",
        "version",
        "shelfName",
        "isShelfExport",
    }
    if set(document) != expected_keys:
        msg = f"Unexpected export keys {sorted(document)}"
        raise AssertionError(msg)
    if document["shelfName"] != "Main" or not document["isShelfExport"]:
        msg = f"Export should name its shelf, got {document['shelfName']!r}"
        raise AssertionError(msg)
    if document["version"] != EXPORT_FORMAT_VERSION or document["columnCount"] != 2:
        msg = "Export metadata is wrong"
        raise AssertionError(msg)
    if document["exportDate"] != "2024-01-02T03:04:05+00:00":
        msg = f"Unexpected export date {document['exportDate']}"
        raise AssertionError(msg)
    first_link = document["categories"][1]["links"][0]
    if set(first_link) != {"id", "name", "url", "faviconData", "customFaviconUrl"}:
        msg = f"Links must use camelCase keys, got {sorted(first_link)}"
        raise AssertionError(msg)


def test_json_export_imports_back(sample_shelf: Shelf, tmp_path: Path) -> None:
    path = tmp_path / "export.json"
    write_json_export(sample_shelf, path)
    model = ShelfModel()
    shelf = model.import_shelf(load_import_file(path, model.new_id))
    if _outline(shelf) != _outline(sample_shelf):
        msg = "JSON export did not import back to the same shelf"
        raise AssertionError(msg)
    if shelf.name != sample_shelf.name or model.shelf is not shelf:
        msg = f"Expected the exported shelf name to be kept, got {shelf.name!r}"
        raise AssertionError(msg)
    if {c.id: c.slot for c in shelf.categories} != {c.id: c.slot for c in sample_shelf.categories}:
        msg = "Imported categories should keep their exported slots"
        raise AssertionError(msg)


def test_html_export_skips_empty_and_reimports(sample_shelf: Shelf, tmp_path: Path) -> None:
    html_text = render_netscape_html(sample_shelf, exported_at=EXPORTED_AT)
    if "News" in html_text or 'ADD_DATE="1704164645"' not in html_text:
        msg = "Empty categories are skipped and timestamps are stamped"
        raise AssertionError(msg)
    path = tmp_path / "export.html"
    path.write_text(html_text, encoding="utf-8")

    model = ShelfModel()
    shelf = model.import_shelf(load_import_file(path, model.new_id))
    expected = [entry for entry in _outline(sample_shelf) if entry[0] != "News"]
    if _outline(shelf) != expected:
        msg = f"HTML export did not re-import: {_outline(shelf)}"
        raise AssertionError(msg)


def test_html_export_escapes_names(sample_shelf: Shelf) -> None:
    sample_shelf.categories[1].name = "R&D <tools>"
    html_text = render_netscape_html(sample_shelf, exported_at=EXPORTED_AT)
    if "R&amp;D &lt;tools&gt;" not in html_text:
        msg = "Folder names must be HTML-escaped"
        raise AssertionError(msg)


def test_import_file_with_wrong_shape_is_rejected(tmp_path: Path) -> None:
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"links": []}), encoding="utf-8")
    with pytest.raises(ValidationError, match="Invalid export file format"):
        load_import_file(path, _id_factory())
    path.write_text("not json at all", encoding="utf-8")
    with pytest.raises(ValidationError):
        load_import_file(path, _id_factory())


def test_json_import_names_shelf_after_file_when_unnamed(tmp_path: Path) -> None:
    path = tmp_path / "work-links.json"
    path.write_text(json.dumps({"categories": [], "shelfName": "  "}), encoding="utf-8")
    payload = load_import_file(path, _id_factory())
    if payload["shelfName"] != "Imported from work-links":
        msg = f"Unexpected fallback shelf name {payload['shelfName']!r}"
        raise AssertionError(msg)

    path.write_text(json.dumps({"categories": [], "shelfName": "Work"}), encoding="utf-8")
    if load_import_file(path, _id_factory())["shelfName"] != "Work":
        msg = "A JSON export's shelf name should be used as-is"
        raise AssertionError(msg)
