"""Data models for the link shelf.

Entities are plain slotted dataclasses mutated by the shelf model. The wire
shape (camelCase keys, as stored and exported) is owned by the pydantic models
further down, and every entity converts to and from its model explicitly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, NamedTuple, Union

from attrs import define, field as attrs_field
from pydantic import BaseModel, ConfigDict, Field, RootModel, field_validator
from pydantic.alias_generators import to_camel

from .config import (
    DEFAULT_COLUMN_COUNT,
    DEFAULT_SHELF_NAME,
    MAX_COLUMN_COUNT,
    MIN_COLUMN_COUNT,
)
from .errors import InvalidReference


class Slot(NamedTuple):
    """A category's location in the grid."""

    column: int
    position: int


@dataclass(slots=True)
class Link:
    """Bookmark filed in a category or subcategory."""

    id: str
    name: str
    url: str
    favicon_data: str | None = None
    custom_favicon_url: str | None = None

    def to_model(self) -> LinkModel:
        """Convert the link into its serialisable model."""
        return LinkModel(
            id=self.id,
            name=self.name,
            url=self.url,
            favicon_data=self.favicon_data,
            custom_favicon_url=self.custom_favicon_url,
        )

    @classmethod
    def from_model(cls, model: LinkModel) -> Link:
        """Create a link from a validated model."""
        return cls(
            id=model.id,
            name=model.name,
            url=model.url,
            favicon_data=model.favicon_data,
            custom_favicon_url=model.custom_favicon_url,
        )


@dataclass(slots=True)
class Subcategory:
    """Collapsible group of links inside a category."""

    id: str
    name: str
    collapsed: bool = False
    links: list[Link] = field(default_factory=list)

    def to_model(self) -> SubcategoryModel:
        return SubcategoryModel(
            id=self.id,
            name=self.name,
            collapsed=self.collapsed,
            links=[link.to_model() for link in self.links],
        )

    @classmethod
    def from_model(cls, model: SubcategoryModel) -> Subcategory:
        return cls(
            id=model.id,
            name=model.name,
            collapsed=model.collapsed,
            links=[Link.from_model(m) for m in model.links],
        )


@dataclass(slots=True)
class Category:
    """Top-level grid card holding links and subcategories."""

    id: str
    name: str
    column: int
    position: int
    links: list[Link] = field(default_factory=list)
    subcategories: list[Subcategory] = field(default_factory=list)

    @property
    def slot(self) -> Slot:
        return Slot(self.column, self.position)

    def link_count(self) -> int:
        """Count links held directly and inside subcategories."""
        return len(self.links) + sum(len(sub.links) for sub in self.subcategories)

    def to_model(self) -> CategoryModel:
        return CategoryModel(
            id=self.id,
            name=self.name,
            column=self.column,
            position=self.position,
            links=[link.to_model() for link in self.links],
            subcategories=[sub.to_model() for sub in self.subcategories],
        )

    @classmethod
    def from_model(cls, model: CategoryModel, slot: Slot | None = None) -> Category:
        """Create a category from a validated model.

        ``slot`` supplies the grid location when the model carries none.
        """
        if slot is None:
            if model.column is None or model.position is None:
                msg = f"Category {model.id} has no grid slot"
                raise ValueError(msg)
            slot = Slot(model.column, model.position)
        return cls(
            id=model.id,
            name=model.name,
            column=slot.column,
            position=slot.position,
            links=[Link.from_model(m) for m in model.links],
            subcategories=[Subcategory.from_model(m) for m in model.subcategories],
        )


@dataclass(slots=True)
class Favourite:
    """Icon-only shortcut in the favourites bar. Favourites carry no name."""

    id: str
    url: str
    favicon_data: str | None = None
    custom_favicon_url: str | None = None

    def to_model(self) -> FavouriteModel:
        return FavouriteModel(
            id=self.id,
            url=self.url,
            favicon_data=self.favicon_data,
            custom_favicon_url=self.custom_favicon_url,
        )

    @classmethod
    def from_model(cls, model: FavouriteModel) -> Favourite:
        return cls(
            id=model.id,
            url=model.url,
            favicon_data=model.favicon_data,
            custom_favicon_url=model.custom_favicon_url,
        )


@dataclass(slots=True)
class InboxItem:
    """Unfiled link waiting in the inbox."""

    id: str
    name: str
    url: str
    favicon_data: str | None = None
    custom_favicon_url: str | None = None
    added_at: int | None = None

    def to_model(self) -> InboxItemModel:
        return InboxItemModel(
            id=self.id,
            name=self.name,
            url=self.url,
            favicon_data=self.favicon_data,
            custom_favicon_url=self.custom_favicon_url,
            added_at=self.added_at,
        )

    @classmethod
    def from_model(cls, model: InboxItemModel) -> InboxItem:
        return cls(
            id=model.id,
            name=model.name,
            url=model.url,
            favicon_data=model.favicon_data,
            custom_favicon_url=model.custom_favicon_url,
            added_at=model.added_at,
        )


# Anything that can sit in a link-like ordered list.
LinkLike = Union[Link, Favourite, InboxItem]


@dataclass(slots=True)
class Shelf:
    """One named board: categories, favourites and display settings."""

    id: str
    name: str = DEFAULT_SHELF_NAME
    categories: list[Category] = field(default_factory=list)
    favourites: list[Favourite] = field(default_factory=list)
    column_count: int = DEFAULT_COLUMN_COUNT
    show_favourites: bool = True
    open_links_in_new_tab: bool = True
    created_at: int | None = None

    def get_category(self, category_id: str) -> Category | None:
        for category in self.categories:
            if category.id == category_id:
                return category
        return None

    def iter_ids(self) -> Iterator[str]:
        """Yield the shelf's own id and every entity id it holds."""
        yield self.id
        for category in self.categories:
            yield category.id
            for link in category.links:
                yield link.id
            for sub in category.subcategories:
                yield sub.id
                for link in sub.links:
                    yield link.id
        for favourite in self.favourites:
            yield favourite.id

    def to_model(self) -> ShelfRecordModel:
        return ShelfRecordModel(
            id=self.id,
            name=self.name,
            categories=[c.to_model() for c in self.categories],
            favourites=[f.to_model() for f in self.favourites],
            column_count=self.column_count,
            show_favourites=self.show_favourites,
            open_links_in_new_tab=self.open_links_in_new_tab,
            created_at=self.created_at,
        )


@dataclass(slots=True)
class Library:
    """Every shelf, which one is current, and the inbox all shelves share."""

    shelves: list[Shelf]
    current_shelf_id: str
    inbox: list[InboxItem] = field(default_factory=list)

    @classmethod
    def single(cls, shelf: Shelf, inbox: list[InboxItem] | None = None) -> Library:
        """Library holding just ``shelf``, which is current."""
        return cls(shelves=[shelf], current_shelf_id=shelf.id, inbox=inbox or [])

    @property
    def current(self) -> Shelf:
        """The shelf being shown. Falls back to the first shelf for a stale id."""
        return self.get_shelf(self.current_shelf_id) or self.shelves[0]

    def get_shelf(self, shelf_id: str) -> Shelf | None:
        for shelf in self.shelves:
            if shelf.id == shelf_id:
                return shelf
        return None

    def iter_ids(self) -> Iterator[str]:
        """Yield every id in the library: shelves, their contents and the inbox."""
        for shelf in self.shelves:
            yield from shelf.iter_ids()
        for item in self.inbox:
            yield item.id


class ContainerKind(str, Enum):
    """Which ordered collection a container address refers to."""

    CATEGORY_LINKS = "category-links"
    SUBCATEGORY_LINKS = "subcategory-links"
    FAVOURITES = "favourites"
    SUBCATEGORY_LIST = "subcategory-list"
    INBOX = "inbox"

    @property
    def holds_links(self) -> bool:
        """True for every kind except the subcategory list."""
        return self is not ContainerKind.SUBCATEGORY_LIST


_NEEDS_CATEGORY = {
    ContainerKind.CATEGORY_LINKS,
    ContainerKind.SUBCATEGORY_LINKS,
    ContainerKind.SUBCATEGORY_LIST,
}


@define(frozen=True)
class ContainerAddress:
    """Address of one ordered list on the shelf."""

    kind: ContainerKind
    category_id: str | None = None
    subcategory_id: str | None = None

    def __attrs_post_init__(self) -> None:
        if self.kind in _NEEDS_CATEGORY and not self.category_id:
            msg = f"{self.kind.value} address requires a category id"
            raise InvalidReference(msg)
        if self.kind is ContainerKind.SUBCATEGORY_LINKS and not self.subcategory_id:
            msg = "subcategory-links address requires a subcategory id"
            raise InvalidReference(msg)
        if self.kind is not ContainerKind.SUBCATEGORY_LINKS and self.subcategory_id:
            msg = f"{self.kind.value} address does not take a subcategory id"
            raise InvalidReference(msg)
        if self.kind not in _NEEDS_CATEGORY and self.category_id:
            msg = f"{self.kind.value} address does not take a category id"
            raise InvalidReference(msg)

    @classmethod
    def category_links(cls, category_id: str) -> ContainerAddress:
        return cls(ContainerKind.CATEGORY_LINKS, category_id)

    @classmethod
    def subcategory_links(cls, category_id: str, subcategory_id: str) -> ContainerAddress:
        return cls(ContainerKind.SUBCATEGORY_LINKS, category_id, subcategory_id)

    @classmethod
    def subcategory_list(cls, category_id: str) -> ContainerAddress:
        return cls(ContainerKind.SUBCATEGORY_LIST, category_id)

    @classmethod
    def favourites(cls) -> ContainerAddress:
        return cls(ContainerKind.FAVOURITES)

    @classmethod
    def inbox(cls) -> ContainerAddress:
        return cls(ContainerKind.INBOX)

    @classmethod
    def for_links(cls, category_id: str, subcategory_id: str | None = None) -> ContainerAddress:
        """Address a category's own links, or one of its subcategories' links."""
        if subcategory_id is None:
            return cls.category_links(category_id)
        return cls.subcategory_links(category_id, subcategory_id)


@define(frozen=True)
class DragSession:
    """An item picked up by the user: where it came from and which one it is.

    The item is addressed by id; its index is looked up again when the drop
    is applied.
    """

    source: ContainerAddress
    item_id: str = attrs_field()

    @item_id.validator
    def _check_item_id(self, _attribute: object, value: str) -> None:
        if not value:
            msg = "drag session requires an item id"
            raise InvalidReference(msg)


# --- Wire models -------------------------------------------------------------------------


class _WireModel(BaseModel):
    """Base for camelCase wire models accepting snake_case names too."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @field_validator("id", mode="before", check_fields=False)
    @classmethod
    def _require_id(cls, value: object) -> object:
        if value is None or (isinstance(value, str) and not value.strip()):
            msg = "id must be a non-empty string"
            raise ValueError(msg)
        return value


class LinkModel(_WireModel):
    """Pydantic model for a category or subcategory link."""

    id: str
    name: str
    url: str
    favicon_data: str | None = None
    custom_favicon_url: str | None = None


class SubcategoryModel(_WireModel):
    """Pydantic model for a subcategory. ``links`` must be present."""

    id: str
    name: str
    collapsed: bool = False
    links: list[LinkModel]


class CategoryModel(_WireModel):
    """Pydantic model for a category.

    ``links`` and ``subcategories`` must be present. The slot is optional so
    that imported payloads without layout data can be placed by the allocator.
    """

    id: str
    name: str
    column: int | None = Field(default=None, ge=0)
    position: int | None = Field(default=None, ge=0)
    links: list[LinkModel]
    subcategories: list[SubcategoryModel]


class FavouriteModel(_WireModel):
    """Pydantic model for a favourite."""

    id: str
    url: str
    favicon_data: str | None = None
    custom_favicon_url: str | None = None


class InboxItemModel(_WireModel):
    """Pydantic model for an inbox item."""

    id: str
    name: str
    url: str
    favicon_data: str | None = None
    custom_favicon_url: str | None = None
    added_at: int | None = None


class InboxListModel(RootModel[list[InboxItemModel]]):
    """Root list model for the inbox (strict all-or-nothing validation)."""

    def to_items(self) -> list[InboxItem]:
        return [InboxItem.from_model(m) for m in self.root]


class ShelfPayloadModel(_WireModel):
    """Pydantic model for an import payload."""

    shelf_name: str | None = None
    categories: list[CategoryModel]
    favourites: list[FavouriteModel] = Field(default_factory=list)
    column_count: int = Field(
        default=DEFAULT_COLUMN_COUNT, ge=MIN_COLUMN_COUNT, le=MAX_COLUMN_COUNT,
    )
    show_favourites: bool = True
    open_links_in_new_tab: bool = True


class ShelfRecordModel(_WireModel):
    """Pydantic model for one entry of the stored shelves list."""

    id: str
    name: str
    categories: list[CategoryModel]
    favourites: list[FavouriteModel]
    column_count: int = Field(ge=MIN_COLUMN_COUNT, le=MAX_COLUMN_COUNT)
    show_favourites: bool
    open_links_in_new_tab: bool
    created_at: int | None = None
