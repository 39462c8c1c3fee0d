"""JSON persistence for the six catalog collections.

Each collection lives in its own document (`catalog.json`, `sets.json`, ...)
inside a key-value store. Decoding is tolerant: unknown fields are ignored,
missing optional fields get defaults, and a bad row is skipped rather than
failing the whole document. A document that cannot be parsed at all loads
as an empty collection and is reported in `LoadResult.errors`.

Documents written before sets, categories and tags carried `sortIndex` are
upgraded on load: each category partition is numbered by `createdAt`, and
the upgraded collections are reported so the caller can write them back.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import replace
import json
import math
from typing import Any

from loguru import logger

from core.errors import CorruptDocumentError, PersistenceError
from core.models import (
    ALL_COLLECTIONS,
    COLLECTION_CATEGORIES,
    COLLECTION_ITEMS,
    COLLECTION_LINKS,
    COLLECTION_PRESETS,
    COLLECTION_SETS,
    COLLECTION_TAGS,
    CatalogSnapshot,
    DisplayCategory,
    FilterMode,
    FilterPreset,
    LibraryItem,
    SampleSet,
    SetTagLink,
    Tag,
)
from core.services.catalog_model import repair
from core.services.interfaces import KeyValueStore, LoadResult
from infrastructure.utils import (
    PHOTOS_DIR,
    REFERENCE_DATE,
    THUMBS_DIR,
    format_timestamp,
    normalize_blob_key,
    parse_timestamp,
    photo_key,
)

DOCUMENT_NAMES: dict[str, str] = {
    COLLECTION_ITEMS: "catalog.json",
    COLLECTION_SETS: "sets.json",
    COLLECTION_CATEGORIES: "categories.json",
    COLLECTION_TAGS: "tags.json",
    COLLECTION_LINKS: "set_tag_links.json",
    COLLECTION_PRESETS: "presets.json",
}

# Marks a row whose document predates `sortIndex`.
SORT_INDEX_MISSING = -1


def _pick(row: Mapping[str, Any], *names: str, default: Any = None) -> Any:
    for name in names:
        if name in row and row[name] is not None:
            return row[name]
    return default


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _sort_index(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return SORT_INDEX_MISSING
    if not math.isfinite(value) or value < 0:
        return SORT_INDEX_MISSING
    return int(value)


def _id_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, str) and v]


# ---------------------------------------------------------------------------
# Row codecs
# ---------------------------------------------------------------------------


def encode_item(item: LibraryItem) -> dict[str, Any]:
    return {
        "id": item.id,
        "photoPath": item.photo_key,
        "thumbPath": item.thumb_key or "",
        "createdAt": format_timestamp(item.created_at),
    }


def decode_item(row: Mapping[str, Any]) -> LibraryItem:
    item_id = _text(row.get("id"))
    if not item_id:
        raise ValueError("item without id")
    photo = normalize_blob_key(_text(_pick(row, "photoPath", "photoKey")), PHOTOS_DIR)
    thumb = normalize_blob_key(_text(_pick(row, "thumbPath", "thumbKey")), THUMBS_DIR)
    return LibraryItem(
        id=item_id,
        photo_key=photo or photo_key(item_id),
        thumb_key=thumb,
        created_at=parse_timestamp(row.get("createdAt")) or REFERENCE_DATE,
    )


def encode_set(s: SampleSet) -> dict[str, Any]:
    return {
        "id": s.id,
        "title": s.title,
        "photoIDsOrdered": list(s.photo_ids),
        "mainPhotoID": s.main_photo_id or "",
        "coverPhotoID": s.cover_photo_id,
        "categoryId": s.category_id,
        "sortIndex": s.sort_index,
        "createdAt": format_timestamp(s.created_at),
    }


def decode_set(row: Mapping[str, Any]) -> SampleSet:
    set_id = _text(row.get("id"))
    if not set_id:
        raise ValueError("set without id")
    return SampleSet(
        id=set_id,
        title=_text(row.get("title")),
        photo_ids=tuple(_id_list(_pick(row, "photoIDsOrdered", "photoIdsOrdered"))),
        main_photo_id=_text(_pick(row, "mainPhotoID", "mainPhotoId")) or None,
        cover_photo_id=_text(_pick(row, "coverPhotoID", "coverPhotoId")) or None,
        category_id=_text(_pick(row, "categoryId", "categoryID")) or None,
        sort_index=_sort_index(row.get("sortIndex")),
        created_at=parse_timestamp(row.get("createdAt")) or REFERENCE_DATE,
    )


def encode_named(entity: DisplayCategory | Tag) -> dict[str, Any]:
    return {
        "id": entity.id,
        "name": entity.name,
        "sortIndex": entity.sort_index,
        "createdAt": format_timestamp(entity.created_at),
    }


def _decode_named(row: Mapping[str, Any], cls: type) -> Any:
    entity_id = _text(row.get("id"))
    if not entity_id:
        raise ValueError(f"{cls.__name__} without id")
    return cls(
        id=entity_id,
        name=_text(row.get("name")),
        sort_index=_sort_index(row.get("sortIndex")),
        created_at=parse_timestamp(row.get("createdAt")) or REFERENCE_DATE,
    )


def decode_category(row: Mapping[str, Any]) -> DisplayCategory:
    return _decode_named(row, DisplayCategory)


def decode_tag(row: Mapping[str, Any]) -> Tag:
    return _decode_named(row, Tag)


def encode_link(link: SetTagLink) -> dict[str, Any]:
    return {"setId": link.set_id, "tagId": link.tag_id}


def decode_link(row: Mapping[str, Any]) -> SetTagLink:
    set_id = _text(_pick(row, "setId", "setID"))
    tag_id = _text(_pick(row, "tagId", "tagID"))
    if not set_id or not tag_id:
        raise ValueError("link without both ends")
    return SetTagLink(set_id=set_id, tag_id=tag_id)


def encode_preset(p: FilterPreset) -> dict[str, Any]:
    return {
        "id": p.id,
        "name": p.name,
        "mode": p.mode.value,
        "tagIds": sorted(p.tag_ids),
        "isPinned": p.is_pinned,
        "createdAt": format_timestamp(p.created_at),
    }


def decode_preset(row: Mapping[str, Any]) -> FilterPreset:
    preset_id = _text(row.get("id"))
    if not preset_id:
        raise ValueError("preset without id")
    raw_mode = _text(row.get("mode")).lower()
    return FilterPreset(
        id=preset_id,
        name=_text(row.get("name")),
        mode=FilterMode.AND if raw_mode == FilterMode.AND.value else FilterMode.OR,
        tag_ids=frozenset(_id_list(_pick(row, "tagIds", "tagIDs"))),
        is_pinned=row.get("isPinned") is True,
        created_at=parse_timestamp(row.get("createdAt")) or REFERENCE_DATE,
    )


_DECODERS: dict[str, Callable[[Mapping[str, Any]], Any]] = {
    COLLECTION_ITEMS: decode_item,
    COLLECTION_SETS: decode_set,
    COLLECTION_CATEGORIES: decode_category,
    COLLECTION_TAGS: decode_tag,
    COLLECTION_LINKS: decode_link,
    COLLECTION_PRESETS: decode_preset,
}


def encode_collection(snapshot: CatalogSnapshot, collection: str) -> list[dict[str, Any]]:
    """Return the JSON-ready rows of one collection."""
    if collection == COLLECTION_ITEMS:
        return [encode_item(it) for it in snapshot.items]
    if collection == COLLECTION_SETS:
        return [encode_set(s) for s in snapshot.sets]
    if collection == COLLECTION_CATEGORIES:
        return [encode_named(c) for c in sorted(snapshot.categories, key=lambda c: c.sort_index)]
    if collection == COLLECTION_TAGS:
        return [encode_named(t) for t in sorted(snapshot.tags, key=lambda t: t.sort_index)]
    if collection == COLLECTION_LINKS:
        return [encode_link(link) for link in sorted(snapshot.links)]
    if collection == COLLECTION_PRESETS:
        return [encode_preset(p) for p in snapshot.presets]
    raise ValueError(f"Unknown collection: {collection}")


def dump_document(rows: list[dict[str, Any]]) -> bytes:
    return json.dumps(rows, ensure_ascii=False, indent=2).encode("utf-8")


def encode_documents(
    snapshot: CatalogSnapshot, collections: Iterable[str] = ALL_COLLECTIONS
) -> dict[str, bytes]:
    """Serialize the requested collections keyed by document name."""
    return {
        DOCUMENT_NAMES[name]: dump_document(encode_collection(snapshot, name))
        for name in sorted(collections)
    }


def parse_document(name: str, raw: bytes) -> list[Any]:
    """Parse a document body into its row list.

    Raises:
        CorruptDocumentError: The bytes are not a JSON array.
    """
    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as ex:
        raise CorruptDocumentError(name, str(ex)) from ex
    if not isinstance(data, list):
        raise CorruptDocumentError(name, "expected a JSON array")
    return data


def _decode_rows(collection: str, rows: list[Any]) -> list[Any]:
    decoder = _DECODERS[collection]
    decoded = []
    for row in rows:
        try:
            if not isinstance(row, dict):
                raise TypeError("row is not an object")
            decoded.append(decoder(row))
        except (ValueError, TypeError, KeyError, OverflowError) as ex:
            logger.error("{} row error: {} | row={}", DOCUMENT_NAMES[collection], ex, row)
    return decoded


# ---------------------------------------------------------------------------
# sortIndex backfill
# ---------------------------------------------------------------------------


def _backfill_sets(sets: list[SampleSet]) -> tuple[list[SampleSet], bool]:
    if all(s.sort_index != SORT_INDEX_MISSING for s in sets):
        return sets, False
    position = {s.id: i for i, s in enumerate(sets)}
    partitions: dict[str | None, list[SampleSet]] = {}
    for s in sets:
        partitions.setdefault(s.category_id, []).append(s)
    new_index: dict[str, int] = {}
    for members in partitions.values():
        members.sort(key=lambda s: (s.created_at, position[s.id]))
        for i, s in enumerate(members):
            new_index[s.id] = i
    logger.info("Backfilled sortIndex for {} sets", len(sets))
    return [replace(s, sort_index=new_index[s.id]) for s in sets], True


def _backfill_named(entities: list[Any], label: str) -> tuple[list[Any], bool]:
    if all(e.sort_index != SORT_INDEX_MISSING for e in entities):
        return entities, False
    ordered = sorted(enumerate(entities), key=lambda pair: (pair[1].created_at, pair[0]))
    logger.info("Backfilled sortIndex for {} {}", len(entities), label)
    return [replace(e, sort_index=i) for i, (_, e) in enumerate(ordered)], True


def decode_documents(
    documents: Mapping[str, bytes | None],
    photo_exists: Callable[[str], bool] | None = None,
) -> LoadResult:
    """Decode documents keyed by file name into a repaired snapshot.

    Args:
        documents: Document name -> raw bytes (None or absent = empty).
        photo_exists: Predicate on a photo blob key; items failing it are
            dropped. None keeps every item.
    """
    errors: list[CorruptDocumentError] = []
    decoded: dict[str, list[Any]] = {}
    for collection, name in DOCUMENT_NAMES.items():
        raw = documents.get(name)
        if raw is None:
            decoded[collection] = []
            continue
        try:
            decoded[collection] = _decode_rows(collection, parse_document(name, raw))
        except CorruptDocumentError as ex:
            logger.warning("Loading {} as empty: {}", name, ex.reason)
            errors.append(ex)
            decoded[collection] = []

    items: list[LibraryItem] = decoded[COLLECTION_ITEMS]
    dropped: list[str] = []
    if photo_exists is not None:
        kept = []
        for it in items:
            if photo_exists(it.photo_key):
                kept.append(it)
            else:
                dropped.append(it.id)
        if dropped:
            logger.warning("Dropped {} item(s) with missing photo blobs", len(dropped))
        items = kept

    upgraded: set[str] = set()
    sets, changed = _backfill_sets(decoded[COLLECTION_SETS])
    if changed:
        upgraded.add(COLLECTION_SETS)
    categories, changed = _backfill_named(decoded[COLLECTION_CATEGORIES], "categories")
    if changed:
        upgraded.add(COLLECTION_CATEGORIES)
    tags, changed = _backfill_named(decoded[COLLECTION_TAGS], "tags")
    if changed:
        upgraded.add(COLLECTION_TAGS)

    snapshot = repair(
        CatalogSnapshot(
            items=tuple(items),
            sets=tuple(sets),
            categories=tuple(categories),
            tags=tuple(tags),
            links=frozenset(decoded[COLLECTION_LINKS]),
            presets=tuple(decoded[COLLECTION_PRESETS]),
        )
    )
    return LoadResult(
        snapshot=snapshot, upgraded=frozenset(upgraded), errors=errors, dropped_items=dropped
    )


class JsonCatalogRepository:
    """Load and save catalog collections as JSON documents in a key-value store."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    @property
    def store(self) -> KeyValueStore:
        return self._store

    def load(self) -> LoadResult:
        """Read every document; missing or corrupt documents load empty."""
        documents = {name: self._store.read(name) for name in DOCUMENT_NAMES.values()}
        result = decode_documents(documents, photo_exists=self._store.exists)
        logger.info(
            "Catalog loaded: {} items, {} sets, {} categories, {} tags",
            len(result.snapshot.items),
            len(result.snapshot.sets),
            len(result.snapshot.categories),
            len(result.snapshot.tags),
        )
        return result

    def decode(
        self,
        documents: Mapping[str, bytes | None],
        photo_exists: Callable[[str], bool] | None = None,
    ) -> LoadResult:
        return decode_documents(documents, photo_exists=photo_exists)

    def encode(self, snapshot: CatalogSnapshot) -> dict[str, bytes]:
        return encode_documents(snapshot)

    def save(self, snapshot: CatalogSnapshot, collections: Iterable[str]) -> None:
        """Write the named collections of `snapshot`.

        Raises:
            PersistenceError: A document could not be written; documents
                written before the failure stay written.
        """
        for name, payload in encode_documents(snapshot, collections).items():
            try:
                self._store.write(name, payload)
            except (OSError, ValueError) as ex:
                raise PersistenceError(name, str(ex)) from ex
