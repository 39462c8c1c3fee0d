"""Ordering queries over a `CatalogSnapshot`.

The service returns sorted views (categories, tags, sets per partition,
grouped set lists) without mutating the snapshot it is given.
"""

from __future__ import annotations

from dataclasses import dataclass

from core.models import CatalogSnapshot, DisplayCategory, FilterPreset, SampleSet, Tag

UNCATEGORIZED_GROUP_ID = "uncategorized"


@dataclass(frozen=True)
class SetGroup:
    """A titled run of sets sharing one category partition."""

    id: str
    title: str
    category_id: str | None
    sets: tuple[SampleSet, ...]


class SortService:
    """Provides sorted views of catalog collections."""

    def categories_sorted(self, snapshot: CatalogSnapshot) -> list[DisplayCategory]:
        return sorted(snapshot.categories, key=lambda c: c.sort_index)

    def tags_sorted(self, snapshot: CatalogSnapshot) -> list[Tag]:
        return sorted(snapshot.tags, key=lambda t: t.sort_index)

    def sets_for_category(
        self, snapshot: CatalogSnapshot, category_id: str | None
    ) -> list[SampleSet]:
        """Sets in one partition ordered by `sort_index` (None = uncategorized)."""
        members = [s for s in snapshot.sets if s.category_id == category_id]
        return sorted(members, key=lambda s: (s.sort_index, s.created_at))

    def tags_for_set(self, snapshot: CatalogSnapshot, set_id: str) -> list[Tag]:
        """Tags linked to `set_id`, ordered by `sort_index`."""
        linked = {link.tag_id for link in snapshot.links if link.set_id == set_id}
        return [t for t in self.tags_sorted(snapshot) if t.id in linked]

    def sets_for_tag(self, snapshot: CatalogSnapshot, tag_id: str) -> list[SampleSet]:
        linked = {link.set_id for link in snapshot.links if link.tag_id == tag_id}
        return [s for s in snapshot.sets if s.id in linked]

    def presets_sorted(self, snapshot: CatalogSnapshot) -> list[FilterPreset]:
        """Pinned presets first, then everything by creation time."""
        return sorted(snapshot.presets, key=lambda p: (not p.is_pinned, p.created_at))

    def set_groups(
        self, snapshot: CatalogSnapshot, uncategorized_title: str = "Uncategorized"
    ) -> list[SetGroup]:
        """Group sets for list display.

        The uncategorized group comes first, then one group per category in
        category order. Empty groups are omitted.
        """
        groups: list[SetGroup] = []
        loose = self.sets_for_category(snapshot, None)
        if loose:
            groups.append(
                SetGroup(
                    id=UNCATEGORIZED_GROUP_ID,
                    title=uncategorized_title,
                    category_id=None,
                    sets=tuple(loose),
                )
            )
        for category in self.categories_sorted(snapshot):
            members = self.sets_for_category(snapshot, category.id)
            if members:
                groups.append(
                    SetGroup(
                        id=category.id,
                        title=category.name,
                        category_id=category.id,
                        sets=tuple(members),
                    )
                )
        return groups
