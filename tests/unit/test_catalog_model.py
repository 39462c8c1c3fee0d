"""Tests for the pure catalog mutations and invariant repair."""

from __future__ import annotations

from dataclasses import replace

from conftest import START, make_item
import pytest

from core.errors import CatalogValidationError, NotFoundError
from core.models import (
    COLLECTION_CATEGORIES,
    COLLECTION_LINKS,
    COLLECTION_SETS,
    CatalogSnapshot,
    FilterMode,
    SetTagLink,
)
from core.ordering import is_dense
from core.services import catalog_model as model


def _with_set(snapshot: CatalogSnapshot, set_id: str = "S1", members=("a", "b", "c")):
    outcome = model.create_set(snapshot, "Demo", list(members), new_id=set_id, now=START)
    assert outcome.error is None
    return outcome.snapshot


def _with_categories(snapshot: CatalogSnapshot, *ids: str) -> CatalogSnapshot:
    for n, cid in enumerate(ids):
        snapshot = model.create_category(snapshot, f"Cat {cid}", new_id=cid, now=START).snapshot
        assert snapshot.category(cid).sort_index == n
    return snapshot


def _with_tags(snapshot: CatalogSnapshot, *ids: str) -> CatalogSnapshot:
    for tid in ids:
        snapshot = model.create_tag(snapshot, tid.upper(), new_id=tid, now=START).snapshot
    return snapshot


# ---------------------------------------------------------------------------
# Sets
# ---------------------------------------------------------------------------


def test_create_set_then_remove_main_photo(library) -> None:
    snap = _with_set(library)
    s = snap.sample_set("S1")
    assert s.photo_ids == ("a", "b", "c")
    assert s.main_photo_id == "a"

    outcome = model.remove_photo_from_set(snap, "S1", "a")

    s = outcome.snapshot.sample_set("S1")
    assert s.photo_ids == ("b", "c")
    assert s.main_photo_id == "b"
    assert s.cover_photo_id == "b"
    assert outcome.changed == frozenset({COLLECTION_SETS})


def test_removing_last_member_clears_main_photo(library) -> None:
    snap = _with_set(library, members=("a",))
    s = model.remove_photo_from_set(snap, "S1", "a").snapshot.sample_set("S1")
    assert s.photo_ids == ()
    assert s.main_photo_id is None
    assert s.cover_photo_id is None


def test_remove_non_member_is_not_found(library) -> None:
    snap = _with_set(library, members=("a", "b"))
    outcome = model.remove_photo_from_set(snap, "S1", "d")
    assert isinstance(outcome.error, NotFoundError)
    assert outcome.snapshot is snap
    assert not outcome.changed


def test_create_set_drops_unknown_and_repeated_ids(library) -> None:
    snap = model.create_set(
        library, "Mixed", ["c", "x", "a", "c"], new_id="S1", now=START
    ).snapshot
    assert snap.sample_set("S1").photo_ids == ("c", "a")


def test_create_set_without_valid_photos_is_rejected(library) -> None:
    outcome = model.create_set(library, "Empty", ["x", "y"], new_id="S1", now=START)
    assert isinstance(outcome.error, CatalogValidationError)
    assert outcome.snapshot.sets == ()


def test_blank_title_gets_default(library) -> None:
    snap = model.create_set(library, "  ", ["a"], new_id="S1", now=START).snapshot
    assert snap.sample_set("S1").title == "Set 0501 12:00"


def test_new_sets_append_to_uncategorized_partition(library) -> None:
    snap = _with_set(library, "S1")
    snap = _with_set(snap, "S2")
    assert [s.sort_index for s in snap.sets] == [0, 1]


def test_set_main_photo_requires_membership(library) -> None:
    snap = _with_set(library, members=("a", "b"))
    outcome = model.set_main_photo(snap, "S1", "d")
    assert isinstance(outcome.error, CatalogValidationError)

    outcome = model.set_main_photo(snap, "S1", "b")
    assert outcome.snapshot.sample_set("S1").main_photo_id == "b"


def test_cover_photo_can_be_cleared(library) -> None:
    snap = _with_set(library)
    s = model.set_cover_photo(snap, "S1", None).snapshot.sample_set("S1")
    assert s.cover_photo_id is None
    assert s.display_photo_id == "a"


def test_add_photos_skips_members_and_unknown_ids(library) -> None:
    snap = _with_set(library, members=("a",))
    s = model.add_photos_to_set(snap, "S1", ["a", "d", "zz", "b"]).snapshot.sample_set("S1")
    assert s.photo_ids == ("a", "d", "b")


def test_reorder_photos_in_set(library) -> None:
    snap = _with_set(library, members=("a", "b", "c", "d"))
    s = model.reorder_photos_in_set(snap, "S1", [0], 3).snapshot.sample_set("S1")
    assert s.photo_ids == ("b", "c", "a", "d")
    assert s.main_photo_id == "a"


def test_rename_set_validates(library) -> None:
    snap = _with_set(library)
    assert isinstance(model.rename_set(snap, "S1", " ").error, CatalogValidationError)
    assert isinstance(model.rename_set(snap, "nope", "X").error, NotFoundError)
    assert model.rename_set(snap, "S1", " Kept ").snapshot.sample_set("S1").title == "Kept"


def test_delete_item_repairs_sets(library) -> None:
    snap = _with_set(library, members=("a", "b"))
    outcome = model.delete_item(snap, "a")
    assert outcome.value.id == "a"
    assert "a" not in outcome.snapshot.item_ids
    s = outcome.snapshot.sample_set("S1")
    assert s.photo_ids == ("b",)
    assert s.main_photo_id == "b"


def test_delete_set_drops_its_links(library) -> None:
    snap = _with_tags(_with_set(library), "t1")
    snap = model.assign_tag_to_set(snap, "S1", "t1").snapshot
    outcome = model.delete_set(snap, "S1")
    assert outcome.snapshot.sets == ()
    assert outcome.snapshot.links == frozenset()
    assert COLLECTION_LINKS in outcome.changed


def test_reorder_sets_renumbers_partition(library) -> None:
    snap = library
    for sid in ("S1", "S2", "S3"):
        snap = _with_set(snap, sid, members=("a",))
    snap = model.reorder_sets(snap, None, [2], 0).snapshot
    ordered = sorted(snap.sets, key=lambda s: s.sort_index)
    assert [s.id for s in ordered] == ["S3", "S1", "S2"]
    assert is_dense(s.sort_index for s in snap.sets)


def test_assign_set_to_category_appends_to_partition(library) -> None:
    snap = _with_categories(library, "C1")
    for sid in ("S1", "S2"):
        snap = _with_set(snap, sid, members=("a",))
    snap = model.assign_set_to_category(snap, "S1", "C1").snapshot
    snap = model.assign_set_to_category(snap, "S2", "C1").snapshot
    assert [(s.category_id, s.sort_index) for s in snap.sets] == [("C1", 0), ("C1", 1)]

    again = model.assign_set_to_category(snap, "S2", "C1")
    assert again.error is None
    assert not again.changed

    missing = model.assign_set_to_category(snap, "S2", "C9")
    assert isinstance(missing.error, NotFoundError)


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


def test_delete_category_renumbers_and_uncategorizes(library) -> None:
    snap = _with_categories(library, "C0", "C1")
    snap = _with_set(snap, "S0", members=("a",))
    snap = _with_set(snap, "S1", members=("b",))
    snap = model.assign_set_to_category(snap, "S1", "C0").snapshot

    outcome = model.delete_category(snap, "C0")

    snap = outcome.snapshot
    assert [(c.id, c.sort_index) for c in snap.categories] == [("C1", 0)]
    moved = snap.sample_set("S1")
    assert moved.category_id is None
    assert moved.sort_index == 1
    assert {COLLECTION_CATEGORIES, COLLECTION_SETS} <= outcome.changed


@pytest.mark.parametrize(
    "action",
    [
        lambda s: model.create_category(s, "New", new_id="CX", now=START),
        lambda s: model.delete_category(s, "C1"),
        lambda s: model.move_category(s, [0], 3),
        lambda s: model.move_category(s, [2, 0], 1),
        lambda s: model.move_category_step(s, "C0", 1),
        lambda s: model.move_category_step(s, "C2", -1),
    ],
)
def test_category_order_stays_dense(library, action) -> None:
    snap = _with_categories(library, "C0", "C1", "C2")
    result = action(snap).snapshot
    assert is_dense(c.sort_index for c in result.categories)


def test_move_category_step(library) -> None:
    snap = _with_categories(library, "C0", "C1", "C2")
    down = model.move_category_step(snap, "C0", 1).snapshot
    assert [c.id for c in sorted(down.categories, key=lambda c: c.sort_index)] == [
        "C1",
        "C0",
        "C2",
    ]
    up = model.move_category_step(snap, "C2", -1).snapshot
    assert [c.id for c in sorted(up.categories, key=lambda c: c.sort_index)] == [
        "C0",
        "C2",
        "C1",
    ]
    edge = model.move_category_step(snap, "C0", -1)
    assert edge.error is None
    assert not edge.changed


def test_blank_category_name_is_rejected(library) -> None:
    outcome = model.create_category(library, "   ", new_id="C0", now=START)
    assert isinstance(outcome.error, CatalogValidationError)


# ---------------------------------------------------------------------------
# Tags and links
# ---------------------------------------------------------------------------


def test_delete_tag_renumbers_and_drops_links(library) -> None:
    snap = _with_tags(_with_set(library), "t1", "t2")
    snap = model.assign_tag_to_set(snap, "S1", "t1").snapshot
    snap = model.assign_tag_to_set(snap, "S1", "t2").snapshot

    snap = model.delete_tag(snap, "t1").snapshot

    assert [(t.id, t.sort_index) for t in snap.tags] == [("t2", 0)]
    assert snap.links == frozenset({SetTagLink("S1", "t2")})


def test_assign_tag_twice_gives_one_link(library) -> None:
    snap = _with_tags(_with_set(library), "t1")
    first = model.assign_tag_to_set(snap, "S1", "t1")
    second = model.assign_tag_to_set(first.snapshot, "S1", "t1")
    assert len(second.snapshot.links) == 1
    assert not second.changed
    assert second.error is None


def test_unassign_tag_twice_is_stable(library) -> None:
    snap = _with_tags(_with_set(library), "t1")
    snap = model.assign_tag_to_set(snap, "S1", "t1").snapshot
    first = model.unassign_tag_from_set(snap, "S1", "t1")
    second = model.unassign_tag_from_set(first.snapshot, "S1", "t1")
    assert first.snapshot.links == frozenset()
    assert second.snapshot.links == first.snapshot.links
    assert not second.changed


def test_assign_unknown_tag_is_not_found(library) -> None:
    snap = _with_set(library)
    outcome = model.assign_tag_to_set(snap, "S1", "ghost")
    assert isinstance(outcome.error, NotFoundError)
    assert outcome.error.kind == "tag"


def test_move_tag(library) -> None:
    snap = _with_tags(library, "t1", "t2", "t3")
    snap = model.move_tag(snap, [0], 3).snapshot
    assert [t.id for t in sorted(snap.tags, key=lambda t: t.sort_index)] == ["t2", "t3", "t1"]


# ---------------------------------------------------------------------------
# Presets and repair
# ---------------------------------------------------------------------------


def test_presets_lose_deleted_tags(library) -> None:
    snap = _with_tags(library, "t1", "t2")
    snap = model.create_preset(
        snap, "Both", FilterMode.AND, ["t1", "t2", "gone"], new_id="P1", now=START
    ).snapshot
    assert snap.preset("P1").tag_ids == frozenset({"t1", "t2"})

    snap = model.delete_tag(snap, "t1").snapshot
    assert snap.preset("P1").tag_ids == frozenset({"t2"})


def test_toggle_pin_and_rename_preset(library) -> None:
    snap = model.create_preset(library, "P", FilterMode.OR, [], new_id="P1", now=START).snapshot
    snap = model.toggle_pin_preset(snap, "P1").snapshot
    assert snap.preset("P1").is_pinned
    snap = model.rename_preset(snap, "P1", "Pinned").snapshot
    assert snap.preset("P1").name == "Pinned"
    assert isinstance(model.delete_preset(snap, "nope").error, NotFoundError)
    assert model.delete_preset(snap, "P1").snapshot.presets == ()


def test_repair_fixes_dangling_references() -> None:
    broken = CatalogSnapshot(
        items=(make_item("a"), make_item("a"), make_item("b")),
        sets=(
            replace(
                model.create_set(
                    CatalogSnapshot(items=(make_item("a"), make_item("b"))),
                    "S",
                    ["a", "b"],
                    new_id="S1",
                    now=START,
                ).value,
                photo_ids=("x", "b", "b"),
                main_photo_id="x",
                category_id="missing",
            ),
        ),
        links=frozenset({SetTagLink("S1", "nope"), SetTagLink("S9", "t")}),
    )

    fixed = model.repair(broken)

    assert [it.id for it in fixed.items] == ["a", "b"]
    s = fixed.sample_set("S1")
    assert s.photo_ids == ("b",)
    assert s.main_photo_id == "b"
    assert s.category_id is None
    assert fixed.links == frozenset()
