"""Pure mutation functions over a `CatalogSnapshot`.

Each function takes the current snapshot and returns an `Outcome` holding the
next snapshot, the names of the collections that changed, the created or
affected entity, and a typed error when the call was a no-op. Nothing here
raises for a missing id or an invalid argument; the snapshot is simply
returned unchanged together with the error.

All mutations finish through `repair`, the single place that restores the
cross-reference invariants (main/cover photo membership, dense category and
tag order, dangling links and category references).
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, TypeVar

from core.errors import CatalogError, CatalogValidationError, NotFoundError
from core.models import (
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
from core.ordering import move_elements

_Ordered = TypeVar("_Ordered", DisplayCategory, Tag)

DEFAULT_SET_TITLE_FORMAT = "Set %m%d %H:%M"


@dataclass(frozen=True)
class Outcome:
    """Result of a pure mutation."""

    snapshot: CatalogSnapshot
    changed: frozenset[str] = frozenset()
    value: Any = None
    error: CatalogError | None = None


def _noop(snapshot: CatalogSnapshot, error: CatalogError | None = None) -> Outcome:
    return Outcome(snapshot=snapshot, error=error)


def _changed(before: CatalogSnapshot, after: CatalogSnapshot) -> frozenset[str]:
    names = []
    if before.items != after.items:
        names.append(COLLECTION_ITEMS)
    if before.sets != after.sets:
        names.append(COLLECTION_SETS)
    if before.categories != after.categories:
        names.append(COLLECTION_CATEGORIES)
    if before.tags != after.tags:
        names.append(COLLECTION_TAGS)
    if before.links != after.links:
        names.append(COLLECTION_LINKS)
    if before.presets != after.presets:
        names.append(COLLECTION_PRESETS)
    return frozenset(names)


def _finish(before: CatalogSnapshot, candidate: CatalogSnapshot, value: Any = None) -> Outcome:
    after = repair(candidate)
    return Outcome(snapshot=after, changed=_changed(before, after), value=value)


def _clean_name(name: str) -> str | None:
    cleaned = (name or "").strip()
    return cleaned or None


# ---------------------------------------------------------------------------
# Invariant repair
# ---------------------------------------------------------------------------


def _renumber(entities: Iterable[_Ordered]) -> tuple[_Ordered, ...]:
    ordered = sorted(entities, key=lambda e: e.sort_index)
    return tuple(
        e if e.sort_index == i else replace(e, sort_index=i) for i, e in enumerate(ordered)
    )


def _repair_set(s: SampleSet, item_ids: frozenset[str], category_ids: frozenset[str]) -> SampleSet:
    seen: set[str] = set()
    photo_ids: list[str] = []
    for pid in s.photo_ids:
        if pid in item_ids and pid not in seen:
            seen.add(pid)
            photo_ids.append(pid)
    first = photo_ids[0] if photo_ids else None

    main = s.main_photo_id
    if main is not None and main not in seen:
        main = first
    cover = s.cover_photo_id
    if cover is not None and cover not in seen:
        cover = first
    category_id = s.category_id if s.category_id in category_ids else None

    fixed = (tuple(photo_ids), main, cover, category_id)
    if fixed == (s.photo_ids, s.main_photo_id, s.cover_photo_id, s.category_id):
        return s
    return replace(
        s, photo_ids=fixed[0], main_photo_id=main, cover_photo_id=cover, category_id=category_id
    )


def repair(snapshot: CatalogSnapshot) -> CatalogSnapshot:
    """Return `snapshot` with every cross-reference invariant restored.

    - items are unique by id (first occurrence wins)
    - set members exist and are unique; main/cover fall back to the first
      member, or None when the set is empty
    - sets pointing at a missing category become uncategorized
    - category and tag `sort_index` values are dense 0..N-1
    - links referencing missing sets or tags are dropped
    - preset tag ids are limited to existing tags

    Set `sort_index` values are left alone; they only need to be unique
    inside a category partition and are renumbered by the operations that
    reorder a partition.
    """
    items: list[LibraryItem] = []
    seen_items: set[str] = set()
    for it in snapshot.items:
        if it.id not in seen_items:
            seen_items.add(it.id)
            items.append(it)
    item_ids = frozenset(seen_items)

    categories = _renumber(snapshot.categories)
    category_ids = frozenset(c.id for c in categories)
    tags = _renumber(snapshot.tags)
    tag_ids = frozenset(t.id for t in tags)

    sets = tuple(_repair_set(s, item_ids, category_ids) for s in snapshot.sets)
    set_ids = frozenset(s.id for s in sets)

    links = frozenset(
        link for link in snapshot.links if link.set_id in set_ids and link.tag_id in tag_ids
    )
    presets = tuple(
        p if p.tag_ids <= tag_ids else replace(p, tag_ids=p.tag_ids & tag_ids)
        for p in snapshot.presets
    )
    return CatalogSnapshot(
        items=tuple(items),
        sets=sets,
        categories=categories,
        tags=tags,
        links=links,
        presets=presets,
    )


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------


def add_items(snapshot: CatalogSnapshot, new_items: Sequence[LibraryItem]) -> Outcome:
    """Append imported items; ids already present are skipped."""
    existing = snapshot.item_ids
    fresh = [it for it in new_items if it.id not in existing]
    if not fresh:
        return _noop(snapshot)
    candidate = replace(snapshot, items=snapshot.items + tuple(fresh))
    return _finish(snapshot, candidate, value=tuple(fresh))


def delete_item(snapshot: CatalogSnapshot, item_id: str) -> Outcome:
    """Remove an item; sets drop it and repair their main/cover photo."""
    item = snapshot.item(item_id)
    if item is None:
        return _noop(snapshot, NotFoundError("item", item_id))
    candidate = replace(snapshot, items=tuple(it for it in snapshot.items if it.id != item_id))
    return _finish(snapshot, candidate, value=item)


# ---------------------------------------------------------------------------
# Sets
# ---------------------------------------------------------------------------


def _partition(snapshot: CatalogSnapshot, category_id: str | None) -> list[SampleSet]:
    members = [s for s in snapshot.sets if s.category_id == category_id]
    return sorted(members, key=lambda s: (s.sort_index, s.created_at))


def _replace_set(snapshot: CatalogSnapshot, updated: SampleSet) -> CatalogSnapshot:
    return replace(
        snapshot, sets=tuple(updated if s.id == updated.id else s for s in snapshot.sets)
    )


def _with_set_indices(snapshot: CatalogSnapshot, ordered: Sequence[SampleSet]) -> CatalogSnapshot:
    new_index = {s.id: i for i, s in enumerate(ordered)}
    sets = tuple(
        replace(s, sort_index=new_index[s.id])
        if s.id in new_index and s.sort_index != new_index[s.id]
        else s
        for s in snapshot.sets
    )
    return replace(snapshot, sets=sets)


def default_set_title(now: datetime) -> str:
    """Title used when a set is created without one."""
    return now.strftime(DEFAULT_SET_TITLE_FORMAT)


def create_set(
    snapshot: CatalogSnapshot,
    title: str,
    item_ids: Sequence[str],
    *,
    new_id: str,
    now: datetime,
) -> Outcome:
    """Create an uncategorized set from the existing ids in `item_ids`.

    Unknown and repeated ids are dropped, keeping the first occurrence order.
    A selection with no usable id is rejected.
    """
    known = snapshot.item_ids
    photo_ids: list[str] = []
    for pid in item_ids:
        if pid in known and pid not in photo_ids:
            photo_ids.append(pid)
    if not photo_ids:
        return _noop(snapshot, CatalogValidationError("a set needs at least one existing photo"))

    created = SampleSet(
        id=new_id,
        title=_clean_name(title) or default_set_title(now),
        photo_ids=tuple(photo_ids),
        main_photo_id=photo_ids[0],
        cover_photo_id=photo_ids[0],
        category_id=None,
        sort_index=len(_partition(snapshot, None)),
        created_at=now,
    )
    outcome = _finish(snapshot, replace(snapshot, sets=snapshot.sets + (created,)))
    return replace(outcome, value=outcome.snapshot.sample_set(new_id))


def rename_set(snapshot: CatalogSnapshot, set_id: str, title: str) -> Outcome:
    target = snapshot.sample_set(set_id)
    if target is None:
        return _noop(snapshot, NotFoundError("set", set_id))
    cleaned = _clean_name(title)
    if cleaned is None:
        return _noop(snapshot, CatalogValidationError("set title must not be blank"))
    updated = replace(target, title=cleaned)
    return _finish(snapshot, _replace_set(snapshot, updated), value=updated)


def _set_photo_ref(
    snapshot: CatalogSnapshot, set_id: str, photo_id: str | None, field_name: str
) -> Outcome:
    target = snapshot.sample_set(set_id)
    if target is None:
        return _noop(snapshot, NotFoundError("set", set_id))
    if photo_id is not None and photo_id not in target.photo_ids:
        return _noop(
            snapshot, CatalogValidationError(f"photo {photo_id} is not a member of set {set_id}")
        )
    updated = replace(target, **{field_name: photo_id})
    return _finish(snapshot, _replace_set(snapshot, updated), value=updated)


def set_main_photo(snapshot: CatalogSnapshot, set_id: str, photo_id: str | None) -> Outcome:
    return _set_photo_ref(snapshot, set_id, photo_id, "main_photo_id")


def set_cover_photo(snapshot: CatalogSnapshot, set_id: str, photo_id: str | None) -> Outcome:
    return _set_photo_ref(snapshot, set_id, photo_id, "cover_photo_id")


def add_photos_to_set(snapshot: CatalogSnapshot, set_id: str, item_ids: Sequence[str]) -> Outcome:
    """Append existing, non-member ids; an empty or stale main photo moves to the first member."""
    target = snapshot.sample_set(set_id)
    if target is None:
        return _noop(snapshot, NotFoundError("set", set_id))
    known = snapshot.item_ids
    photo_ids = list(target.photo_ids)
    for pid in item_ids:
        if pid in known and pid not in photo_ids:
            photo_ids.append(pid)
    main = target.main_photo_id
    if photo_ids and (main is None or main not in photo_ids):
        main = photo_ids[0]
    updated = replace(target, photo_ids=tuple(photo_ids), main_photo_id=main)
    return _finish(snapshot, _replace_set(snapshot, updated), value=updated)


def remove_photo_from_set(snapshot: CatalogSnapshot, set_id: str, item_id: str) -> Outcome:
    target = snapshot.sample_set(set_id)
    if target is None:
        return _noop(snapshot, NotFoundError("set", set_id))
    if item_id not in target.photo_ids:
        return _noop(snapshot, NotFoundError("photo", item_id))
    updated = replace(target, photo_ids=tuple(p for p in target.photo_ids if p != item_id))
    outcome = _finish(snapshot, _replace_set(snapshot, updated))
    return replace(outcome, value=outcome.snapshot.sample_set(set_id))


def reorder_photos_in_set(
    snapshot: CatalogSnapshot, set_id: str, source_indices: Iterable[int], target: int
) -> Outcome:
    found = snapshot.sample_set(set_id)
    if found is None:
        return _noop(snapshot, NotFoundError("set", set_id))
    moved = move_elements(found.photo_ids, source_indices, target)
    updated = replace(found, photo_ids=tuple(moved))
    return _finish(snapshot, _replace_set(snapshot, updated), value=updated)


def reorder_sets(
    snapshot: CatalogSnapshot,
    category_id: str | None,
    source_indices: Iterable[int],
    target: int,
) -> Outcome:
    """Move sets inside one category partition and renumber that partition densely."""
    if category_id is not None and snapshot.category(category_id) is None:
        return _noop(snapshot, NotFoundError("category", category_id))
    ordered = move_elements(_partition(snapshot, category_id), source_indices, target)
    return _finish(snapshot, _with_set_indices(snapshot, ordered))


def delete_set(snapshot: CatalogSnapshot, set_id: str) -> Outcome:
    """Remove a set and its tag links; items are untouched."""
    target = snapshot.sample_set(set_id)
    if target is None:
        return _noop(snapshot, NotFoundError("set", set_id))
    candidate = replace(snapshot, sets=tuple(s for s in snapshot.sets if s.id != set_id))
    return _finish(snapshot, candidate, value=target)


def assign_set_to_category(
    snapshot: CatalogSnapshot, set_id: str, category_id: str | None
) -> Outcome:
    """Move a set to the end of another partition (None = uncategorized).

    The source partition is not renumbered; gaps there keep ordering intact.
    """
    target = snapshot.sample_set(set_id)
    if target is None:
        return _noop(snapshot, NotFoundError("set", set_id))
    if category_id is not None and snapshot.category(category_id) is None:
        return _noop(snapshot, NotFoundError("category", category_id))
    if target.category_id == category_id:
        return _noop(snapshot)
    updated = replace(
        target,
        category_id=category_id,
        sort_index=len(_partition(snapshot, category_id)),
    )
    return _finish(snapshot, _replace_set(snapshot, updated), value=updated)


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


def create_category(snapshot: CatalogSnapshot, name: str, *, new_id: str, now: datetime) -> Outcome:
    cleaned = _clean_name(name)
    if cleaned is None:
        return _noop(snapshot, CatalogValidationError("category name must not be blank"))
    created = DisplayCategory(
        id=new_id, name=cleaned, sort_index=len(snapshot.categories), created_at=now
    )
    candidate = replace(snapshot, categories=snapshot.categories + (created,))
    return _finish(snapshot, candidate, value=created)


def rename_category(snapshot: CatalogSnapshot, category_id: str, name: str) -> Outcome:
    target = snapshot.category(category_id)
    if target is None:
        return _noop(snapshot, NotFoundError("category", category_id))
    cleaned = _clean_name(name)
    if cleaned is None:
        return _noop(snapshot, CatalogValidationError("category name must not be blank"))
    updated = replace(target, name=cleaned)
    candidate = replace(
        snapshot,
        categories=tuple(updated if c.id == category_id else c for c in snapshot.categories),
    )
    return _finish(snapshot, candidate, value=updated)


def delete_category(snapshot: CatalogSnapshot, category_id: str) -> Outcome:
    """Remove a category; its sets join the end of the uncategorized partition.

    Orphaned sets keep their previous relative order and are numbered after
    the sets that were already uncategorized.
    """
    target = snapshot.category(category_id)
    if target is None:
        return _noop(snapshot, NotFoundError("category", category_id))

    base = len(_partition(snapshot, None))
    orphans = {s.id: base + i for i, s in enumerate(_partition(snapshot, category_id))}
    sets = tuple(
        replace(s, category_id=None, sort_index=orphans[s.id]) if s.id in orphans else s
        for s in snapshot.sets
    )
    candidate = replace(
        snapshot,
        sets=sets,
        categories=tuple(c for c in snapshot.categories if c.id != category_id),
    )
    return _finish(snapshot, candidate, value=target)


def _move_ordered(entities: Sequence[_Ordered], source_indices: Iterable[int], target: int):
    ordered = sorted(entities, key=lambda e: e.sort_index)
    moved = move_elements(ordered, source_indices, target)
    return tuple(replace(e, sort_index=i) for i, e in enumerate(moved))


def move_category(snapshot: CatalogSnapshot, source_indices: Iterable[int], target: int) -> Outcome:
    categories = _move_ordered(snapshot.categories, source_indices, target)
    return _finish(snapshot, replace(snapshot, categories=categories))


def move_category_step(snapshot: CatalogSnapshot, category_id: str, direction: int) -> Outcome:
    """Move a category one position up (-1) or down (+1); no-op at the edges."""
    ordered = sorted(snapshot.categories, key=lambda c: c.sort_index)
    index = next((i for i, c in enumerate(ordered) if c.id == category_id), None)
    if index is None:
        return _noop(snapshot, NotFoundError("category", category_id))
    step = 1 if direction > 0 else -1
    if not 0 <= index + step < len(ordered):
        return _noop(snapshot)
    offset = index + 2 if step > 0 else index - 1
    return move_category(snapshot, [index], offset)


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------


def create_tag(snapshot: CatalogSnapshot, name: str, *, new_id: str, now: datetime) -> Outcome:
    cleaned = _clean_name(name)
    if cleaned is None:
        return _noop(snapshot, CatalogValidationError("tag name must not be blank"))
    created = Tag(id=new_id, name=cleaned, sort_index=len(snapshot.tags), created_at=now)
    return _finish(snapshot, replace(snapshot, tags=snapshot.tags + (created,)), value=created)


def rename_tag(snapshot: CatalogSnapshot, tag_id: str, name: str) -> Outcome:
    target = snapshot.tag(tag_id)
    if target is None:
        return _noop(snapshot, NotFoundError("tag", tag_id))
    cleaned = _clean_name(name)
    if cleaned is None:
        return _noop(snapshot, CatalogValidationError("tag name must not be blank"))
    updated = replace(target, name=cleaned)
    candidate = replace(
        snapshot, tags=tuple(updated if t.id == tag_id else t for t in snapshot.tags)
    )
    return _finish(snapshot, candidate, value=updated)


def delete_tag(snapshot: CatalogSnapshot, tag_id: str) -> Outcome:
    """Remove a tag together with its links; remaining tags are renumbered."""
    target = snapshot.tag(tag_id)
    if target is None:
        return _noop(snapshot, NotFoundError("tag", tag_id))
    candidate = replace(snapshot, tags=tuple(t for t in snapshot.tags if t.id != tag_id))
    return _finish(snapshot, candidate, value=target)


def move_tag(snapshot: CatalogSnapshot, source_indices: Iterable[int], target: int) -> Outcome:
    tags = _move_ordered(snapshot.tags, source_indices, target)
    return _finish(snapshot, replace(snapshot, tags=tags))


def assign_tag_to_set(snapshot: CatalogSnapshot, set_id: str, tag_id: str) -> Outcome:
    if snapshot.sample_set(set_id) is None:
        return _noop(snapshot, NotFoundError("set", set_id))
    if snapshot.tag(tag_id) is None:
        return _noop(snapshot, NotFoundError("tag", tag_id))
    link = SetTagLink(set_id=set_id, tag_id=tag_id)
    if link in snapshot.links:
        return _noop(snapshot)
    return _finish(snapshot, replace(snapshot, links=snapshot.links | {link}), value=link)


def unassign_tag_from_set(snapshot: CatalogSnapshot, set_id: str, tag_id: str) -> Outcome:
    link = SetTagLink(set_id=set_id, tag_id=tag_id)
    if link not in snapshot.links:
        return _noop(snapshot)
    return _finish(snapshot, replace(snapshot, links=snapshot.links - {link}), value=link)


# ---------------------------------------------------------------------------
# Presets
# ---------------------------------------------------------------------------


def create_preset(
    snapshot: CatalogSnapshot,
    name: str,
    mode: FilterMode,
    tag_ids: Iterable[str],
    *,
    new_id: str,
    now: datetime,
    is_pinned: bool = False,
) -> Outcome:
    cleaned = _clean_name(name)
    if cleaned is None:
        return _noop(snapshot, CatalogValidationError("preset name must not be blank"))
    created = FilterPreset(
        id=new_id,
        name=cleaned,
        mode=FilterMode(mode),
        tag_ids=frozenset(tag_ids),
        is_pinned=is_pinned,
        created_at=now,
    )
    outcome = _finish(snapshot, replace(snapshot, presets=snapshot.presets + (created,)))
    return replace(outcome, value=outcome.snapshot.preset(new_id))


def _replace_preset(snapshot: CatalogSnapshot, preset_id: str, **changes: Any) -> Outcome:
    target = snapshot.preset(preset_id)
    if target is None:
        return _noop(snapshot, NotFoundError("preset", preset_id))
    updated = replace(target, **changes)
    candidate = replace(
        snapshot, presets=tuple(updated if p.id == preset_id else p for p in snapshot.presets)
    )
    return _finish(snapshot, candidate, value=updated)


def rename_preset(snapshot: CatalogSnapshot, preset_id: str, name: str) -> Outcome:
    cleaned = _clean_name(name)
    if cleaned is None:
        return _noop(snapshot, CatalogValidationError("preset name must not be blank"))
    return _replace_preset(snapshot, preset_id, name=cleaned)


def toggle_pin_preset(snapshot: CatalogSnapshot, preset_id: str) -> Outcome:
    target = snapshot.preset(preset_id)
    if target is None:
        return _noop(snapshot, NotFoundError("preset", preset_id))
    return _replace_preset(snapshot, preset_id, is_pinned=not target.is_pinned)


def delete_preset(snapshot: CatalogSnapshot, preset_id: str) -> Outcome:
    target = snapshot.preset(preset_id)
    if target is None:
        return _noop(snapshot, NotFoundError("preset", preset_id))
    candidate = replace(snapshot, presets=tuple(p for p in snapshot.presets if p.id != preset_id))
    return _finish(snapshot, candidate, value=target)
