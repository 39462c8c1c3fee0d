"""Core domain models for the sample-set catalog.

Every entity is a frozen dataclass so snapshots handed to observers can be
shared freely; mutations build new instances via `dataclasses.replace`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

COLLECTION_ITEMS = "items"
COLLECTION_SETS = "sets"
COLLECTION_CATEGORIES = "categories"
COLLECTION_TAGS = "tags"
COLLECTION_LINKS = "links"
COLLECTION_PRESETS = "presets"

ALL_COLLECTIONS: frozenset[str] = frozenset(
    {
        COLLECTION_ITEMS,
        COLLECTION_SETS,
        COLLECTION_CATEGORIES,
        COLLECTION_TAGS,
        COLLECTION_LINKS,
        COLLECTION_PRESETS,
    }
)


class FilterMode(str, Enum):
    """How a tag filter combines its tags."""

    OR = "or"
    AND = "and"


@dataclass(frozen=True)
class LibraryItem:
    """An imported photo.

    Attributes:
        id: Opaque unique id assigned at import.
        photo_key: Blob key of the full-resolution JPEG.
        thumb_key: Blob key of the thumbnail, None when generation failed.
        created_at: Import timestamp.
    """

    id: str
    photo_key: str
    thumb_key: str | None
    created_at: datetime


@dataclass(frozen=True)
class SampleSet:
    """An ordered, titled grouping of library items."""

    id: str
    title: str
    photo_ids: tuple[str, ...]
    main_photo_id: str | None
    cover_photo_id: str | None
    category_id: str | None
    sort_index: int
    created_at: datetime

    @property
    def display_photo_id(self) -> str | None:
        """Photo shown in list views: cover, then main, then first member."""
        if self.cover_photo_id:
            return self.cover_photo_id
        if self.main_photo_id:
            return self.main_photo_id
        return self.photo_ids[0] if self.photo_ids else None


@dataclass(frozen=True)
class DisplayCategory:
    """A named partition of sets with a dense global `sort_index`."""

    id: str
    name: str
    sort_index: int
    created_at: datetime


@dataclass(frozen=True)
class Tag:
    """A label attachable to any number of sets."""

    id: str
    name: str
    sort_index: int
    created_at: datetime


@dataclass(frozen=True, order=True)
class SetTagLink:
    """Join row between a set and a tag; identity is the pair itself."""

    set_id: str
    tag_id: str


@dataclass(frozen=True)
class FilterPreset:
    """A saved tag filter."""

    id: str
    name: str
    mode: FilterMode
    tag_ids: frozenset[str]
    is_pinned: bool
    created_at: datetime


@dataclass(frozen=True)
class CatalogSnapshot:
    """Point-in-time view of all six collections.

    Collections are tuples in persisted order; `links` is a frozenset since
    pairs carry no order.
    """

    items: tuple[LibraryItem, ...] = ()
    sets: tuple[SampleSet, ...] = ()
    categories: tuple[DisplayCategory, ...] = ()
    tags: tuple[Tag, ...] = ()
    links: frozenset[SetTagLink] = field(default_factory=frozenset)
    presets: tuple[FilterPreset, ...] = ()

    def item(self, item_id: str) -> LibraryItem | None:
        """Return the item with `item_id`, or None."""
        for it in self.items:
            if it.id == item_id:
                return it
        return None

    def sample_set(self, set_id: str) -> SampleSet | None:
        """Return the set with `set_id`, or None."""
        for s in self.sets:
            if s.id == set_id:
                return s
        return None

    def category(self, category_id: str) -> DisplayCategory | None:
        for c in self.categories:
            if c.id == category_id:
                return c
        return None

    def tag(self, tag_id: str) -> Tag | None:
        for t in self.tags:
            if t.id == tag_id:
                return t
        return None

    def preset(self, preset_id: str) -> FilterPreset | None:
        for p in self.presets:
            if p.id == preset_id:
                return p
        return None

    @property
    def item_ids(self) -> frozenset[str]:
        return frozenset(it.id for it in self.items)
