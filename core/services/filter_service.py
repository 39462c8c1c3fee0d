"""Tag-based set filtering decoupled from any UI toolkit.

A filter is a set of tag ids plus a match mode. OR keeps sets carrying any
of the tags; AND keeps sets carrying all of them. An empty tag selection
matches every set, which is how list screens show "no filter".
"""

from __future__ import annotations

from collections.abc import Iterable
import re

from core.models import CatalogSnapshot, FilterMode, FilterPreset, SampleSet


class TagFilterService:
    """Apply tag filters and saved presets to the sets of a snapshot."""

    def matches(self, set_tags: frozenset[str], tag_ids: frozenset[str], mode: FilterMode) -> bool:
        if not tag_ids:
            return True
        if mode is FilterMode.AND:
            return tag_ids <= set_tags
        return bool(tag_ids & set_tags)

    def apply(
        self,
        snapshot: CatalogSnapshot,
        tag_ids: Iterable[str],
        mode: FilterMode = FilterMode.OR,
        title_pattern: str | None = None,
    ) -> list[SampleSet]:
        """Return sets matching the tags, in snapshot order.

        Args:
            snapshot: Catalog state to read.
            tag_ids: Tags to filter by.
            mode: OR (any tag) or AND (every tag).
            title_pattern: Optional regular expression the set title must match.
        """
        wanted = frozenset(tag_ids)
        rx = re.compile(title_pattern, re.IGNORECASE) if title_pattern else None

        per_set: dict[str, set[str]] = {}
        for link in snapshot.links:
            per_set.setdefault(link.set_id, set()).add(link.tag_id)

        result: list[SampleSet] = []
        for s in snapshot.sets:
            if rx is not None and not rx.search(s.title):
                continue
            if self.matches(frozenset(per_set.get(s.id, ())), wanted, FilterMode(mode)):
                result.append(s)
        return result

    def apply_preset(self, snapshot: CatalogSnapshot, preset: FilterPreset) -> list[SampleSet]:
        return self.apply(snapshot, preset.tag_ids, preset.mode)
