"""Shared pytest fixtures for link shelf tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from linkshelf.models import Category, Favourite, InboxItem, Library, Link, Shelf, Subcategory
from linkshelf.shelf import ShelfModel
from linkshelf.storage import InMemoryStore

if TYPE_CHECKING:
    from pathlib import Path

FIXED_MILLIS = 1_700_000_000_000


def fixed_clock() -> int:
    return FIXED_MILLIS


@pytest.fixture
def sample_shelf() -> Shelf:
    """Two-column shelf with subcategories and a favourite."""
    work = Category(
        id="cat_work",
        name="Work",
        column=0,
        position=0,
        links=[],
        subcategories=[
            Subcategory(
                id="sub_docs",
                name="Docs",
                links=[
                    Link(id="l_wiki", name="Wiki", url="https://wiki.example"),
                    Link(id="l_jira", name="Jira", url="https://jira.example"),
                ],
            ),
            Subcategory(
                id="sub_tools",
                name="Tools",
                links=[Link(id="l_ci", name="CI", url="https://ci.example")],
            ),
        ],
    )
    dev = Category(
        id="cat_dev",
        name="Dev",
        column=0,
        position=1,
        links=[
            Link(id="l1", name="One", url="https://one.example"),
            Link(id="l2", name="Two", url="https://two.example"),
            Link(id="l3", name="Three", url="https://three.example"),
        ],
    )
    news = Category(id="cat_news", name="News", column=1, position=0)
    return Shelf(
        id="shelf_main",
        name="Main",
        categories=[work, dev, news],
        favourites=[Favourite(id="fav_mail", url="https://mail.example")],
        column_count=2,
    )


@pytest.fixture
def sample_library(sample_shelf: Shelf) -> Library:
    """``sample_shelf`` (current) plus an empty "Archive" shelf and one inbox item."""
    archive = Shelf(id="shelf_archive", name="Archive", column_count=2)
    inbox = [
        InboxItem(
            id="in_gh",
            name="GitHub",
            url="https://github.com",
            favicon_data="data:image/png;base64,AAAA",
            custom_favicon_url="https://icons.example/gh.png",
            added_at=1,
        ),
    ]
    return Library(shelves=[sample_shelf, archive], current_shelf_id="shelf_main", inbox=inbox)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def model(sample_library: Library, store: InMemoryStore) -> ShelfModel:
    """Shelf model over ``sample_library`` saving synchronously to ``store``."""
    return ShelfModel(sample_library, store, clock=fixed_clock)


@pytest.fixture
def sample_export_html(tmp_path: Path) -> Path:
    """Create a synthetic Netscape bookmark export with nested folders."""
    content = (
        "<!DOCTYPE NETSCAPE-Bookmark-file-1>\n"
        "<TITLE>Bookmarks</TITLE><H1>Bookmarks</H1>\n"
        "<DL><p>\n"
        '    <DT><A HREF="https://loose.example">Loose</A>\n'
        "    <DT><H3>Reading</H3>\n"
        "    <DL><p>\n"
        '        <DT><A HREF="https://blog.example">Blog</A>\n'
        "        <DT><H3>Papers</H3>\n"
        "        <DL><p>\n"
        '            <DT><A HREF="https://arxiv.example">Arxiv</A>\n'
        "            <DT><H3>Old</H3>\n"
        "            <DL><p>\n"
        '                <DT><A HREF="https://old.example">Old paper</A>\n'
        "            </DL><p>\n"
        "        </DL><p>\n"
        "    </DL><p>\n"
        "    <DT><H3>Shopping</H3>\n"
        "    <DL><p>\n"
        '        <DT><A HREF="https://shop.example">Shop</A>\n'
        "    </DL><p>\n"
        "</DL><p>\n"
    )
    p = tmp_path / "bookmarks.html"
    p.write_text(content, encoding="utf-8")
    return p
