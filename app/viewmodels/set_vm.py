"""Lightweight view model wrapper around `SampleSet`."""

from __future__ import annotations

from dataclasses import dataclass, field

from core.models import SampleSet, Tag


@dataclass
class SetVM:
    """Expose convenient properties for bindings/templates."""

    sample_set: SampleSet
    tags: list[Tag] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.sample_set.id

    @property
    def title(self) -> str:
        return self.sample_set.title

    @property
    def photo_count(self) -> int:
        """Number of member photos."""
        return len(self.sample_set.photo_ids)

    @property
    def display_photo_id(self) -> str | None:
        """Photo shown for the set in lists (cover, then main, then first)."""
        return self.sample_set.display_photo_id

    @property
    def tag_names(self) -> list[str]:
        return [t.name for t in self.tags]
