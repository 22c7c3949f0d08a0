"""Unit tests for catalog/engine.py -- HierarchyEngine tree rules.

Covers:
- level derivation, and TreeCorruption for cycles, dangling parents and over-deep chains
- public reads: children-or-self listing, subcategories, available tree
- creation under any active parent, merchant roots, owned-parent variant, duplicates
- update/delete gate order: missing -> not owner -> not a leaf
- partial update semantics: untouched fields, no-op detection, null handling, moves
- delete: has_children refusal, hard delete of the leaf
- synthesized image URLs
"""

import pytest
from sqlalchemy import text

from catalog.engine import HierarchyEngine, category_image_url
from catalog.models import DEFAULT_COLOR, CategoryDraft, CategoryPatch
from core.errors import Conflict, Forbidden, InvalidArgument, InvalidState, NotFound, TreeCorruption

ACME = "S0000001"
BOLT = "S0000002"


@pytest.fixture
def acme_tree(hierarchy):
    """Acme owns Tailoring(1) > Alterations > Men's Suits, plus Stitching under Tailoring."""
    alterations = hierarchy.create_node(ACME, CategoryDraft(name="Alterations"), parent_id=1)
    suits = hierarchy.create_node(ACME, CategoryDraft(name="Men's Suits", color="#112233"), parent_id=alterations.id)
    stitching = hierarchy.create_node(ACME, CategoryDraft(name="Stitching"), parent_id=1)
    return {"alterations": alterations, "suits": suits, "stitching": stitching}


# ---------------------------------------------------------------------------
# Level
# ---------------------------------------------------------------------------


class TestLevel:
    def test_levels(self, hierarchy, acme_tree):
        assert hierarchy.level(1) == 0
        assert hierarchy.level(acme_tree["alterations"].id) == 1
        assert hierarchy.level(acme_tree["suits"].id) == 2

    def test_missing_node(self, hierarchy):
        with pytest.raises(NotFound):
            hierarchy.level(9999)

    def test_cycle_is_corruption(self, hierarchy, category_store, acme_tree):
        # Make Tailoring a child of Men's Suits: 1 -> alterations -> suits -> 1 ...
        with category_store.engine.connect() as conn:
            conn.execute(text("UPDATE categories SET parent_id = :p WHERE id = 1"), {"p": acme_tree["suits"].id})
            conn.commit()
        with pytest.raises(TreeCorruption):
            hierarchy.level(acme_tree["suits"].id)

    def test_dangling_parent_is_corruption(self, hierarchy, category_store, acme_tree):
        with category_store.engine.connect() as conn:
            conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
            conn.execute(
                text("UPDATE categories SET parent_id = 9999 WHERE id = :i"), {"i": acme_tree["alterations"].id}
            )
            conn.commit()
            conn.exec_driver_sql("PRAGMA foreign_keys=ON")
        with pytest.raises(TreeCorruption):
            hierarchy.level(acme_tree["suits"].id)

    def test_chain_deeper_than_cap_is_corruption(self, category_store):
        engine = HierarchyEngine(category_store, max_depth=10)
        parent_id = 1
        for i in range(11):
            parent_id = engine.create_node(ACME, CategoryDraft(name=f"n{i}"), parent_id=parent_id).id
        # parent_id is now 11 hops below root 1.
        with pytest.raises(TreeCorruption):
            engine.level(parent_id)

    def test_chain_at_cap_is_fine(self, category_store):
        engine = HierarchyEngine(category_store, max_depth=10)
        parent_id = 1
        for i in range(10):
            parent_id = engine.create_node(ACME, CategoryDraft(name=f"n{i}"), parent_id=parent_id).id
        assert engine.level(parent_id) == 10


# ---------------------------------------------------------------------------
# Public reads
# ---------------------------------------------------------------------------


class TestReads:
    def test_roots_have_children_flag(self, hierarchy, acme_tree):
        roots = {r.node.id: r.has_children for r in hierarchy.list_roots()}
        assert roots[1] is True
        assert roots[2] is False

    def test_children_listing(self, hierarchy, acme_tree):
        listing = hierarchy.list_children(1)
        assert listing.is_leaf is False
        assert {n.name for n in listing.nodes} == {"Alterations", "Stitching"}

    def test_childless_node_lists_itself(self, hierarchy, acme_tree):
        listing = hierarchy.list_children(acme_tree["suits"].id)
        assert listing.is_leaf is True
        assert [n.id for n in listing.nodes] == [acme_tree["suits"].id]

    def test_children_of_missing_node(self, hierarchy):
        with pytest.raises(NotFound):
            hierarchy.list_children(9999)

    @pytest.mark.parametrize("bad_id", [0, -3, True, "1"])
    def test_bad_ids(self, hierarchy, bad_id):
        with pytest.raises(InvalidArgument):
            hierarchy.list_children(bad_id)

    def test_subcategories_may_be_empty(self, hierarchy):
        assert hierarchy.list_subcategories(2) == []

    def test_available_tree(self, hierarchy, acme_tree):
        tree = {entry.root.id: entry for entry in hierarchy.available_tree()}
        assert set(tree) == {1, 2, 3, 4, 5}
        assert {n.name for n in tree[1].subcategories} == {"Alterations", "Stitching"}
        assert tree[2].subcategories == []


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


class TestCreate:
    def test_defaults(self, hierarchy):
        node = hierarchy.create_node(ACME, CategoryDraft(name="  Alterations  "), parent_id=1)
        assert node.id is not None
        assert node.name == "Alterations"
        assert node.color == DEFAULT_COLOR
        assert node.owner_id == ACME
        assert node.description == ""

    def test_merchant_root(self, hierarchy):
        node = hierarchy.create_node(ACME, CategoryDraft(name="Bakery"))
        assert node.parent_id is None
        assert hierarchy.level(node.id) == 0
        assert [r.node.name for r in hierarchy.list_merchant_roots(ACME)] == ["Bakery"]
        assert hierarchy.list_merchant_roots(BOLT) == []

    def test_missing_parent(self, hierarchy):
        with pytest.raises(NotFound) as exc_info:
            hierarchy.create_node(ACME, CategoryDraft(name="Orphan"), parent_id=9999)
        assert exc_info.value.code == "parent_not_found"

    def test_duplicate_name_same_owner_same_parent(self, hierarchy, acme_tree):
        with pytest.raises(Conflict) as exc_info:
            hierarchy.create_node(ACME, CategoryDraft(name="Alterations"), parent_id=1)
        assert exc_info.value.code == "duplicate_name"

    def test_same_name_allowed_for_other_merchant(self, hierarchy, acme_tree):
        node = hierarchy.create_node(BOLT, CategoryDraft(name="Alterations"), parent_id=1)
        assert node.owner_id == BOLT

    def test_same_name_allowed_under_other_parent(self, hierarchy, acme_tree):
        hierarchy.create_node(ACME, CategoryDraft(name="Alterations"), parent_id=2)

    @pytest.mark.parametrize(
        "draft, code",
        [
            (CategoryDraft(name="   "), "invalid_name"),
            (CategoryDraft(name="x" * 101), "invalid_name"),
            (CategoryDraft(name="Ok", color="blue"), "invalid_color"),
            (CategoryDraft(name="Ok", icon="i" * 51), "invalid_icon"),
            (CategoryDraft(name="Ok", image_url="http://x/" + "a" * 250), "invalid_image_url"),
        ],
    )
    def test_field_validation(self, hierarchy, draft, code):
        with pytest.raises(InvalidArgument) as exc_info:
            hierarchy.create_node(ACME, draft, parent_id=1)
        assert exc_info.value.code == code

    def test_owned_parent_required_for_nested_route(self, hierarchy, acme_tree):
        with pytest.raises(NotFound) as exc_info:
            hierarchy.create_node(ACME, CategoryDraft(name="X"), parent_id=1, require_owned_parent=True)
        assert exc_info.value.code == "parent_not_owned"
        node = hierarchy.create_node(
            ACME, CategoryDraft(name="Trousers"), parent_id=acme_tree["alterations"].id, require_owned_parent=True
        )
        assert node.parent_id == acme_tree["alterations"].id

    def test_merchant_children_of_owned_node(self, hierarchy, acme_tree):
        hierarchy.create_node(BOLT, CategoryDraft(name="Bolt's"), parent_id=acme_tree["alterations"].id)
        names = [n.name for n in hierarchy.list_merchant_children(ACME, acme_tree["alterations"].id)]
        assert names == ["Men's Suits"]
        with pytest.raises(NotFound):
            hierarchy.list_merchant_children(BOLT, acme_tree["alterations"].id)


# ---------------------------------------------------------------------------
# Update
# ---------------------------------------------------------------------------


class TestUpdate:
    def test_rename_leaf_keeps_other_fields(self, hierarchy, acme_tree):
        suits = acme_tree["suits"]
        updated = hierarchy.update_node(ACME, suits.id, CategoryPatch(name="Men's Suit Alterations"))
        assert updated.name == "Men's Suit Alterations"
        assert updated.color == "#112233"
        assert updated.parent_id == suits.parent_id

    def test_root_and_subcategory_are_not_editable(self, hierarchy, acme_tree):
        own_root = hierarchy.create_node(ACME, CategoryDraft(name="Bakery"))
        for node_id in (own_root.id, acme_tree["alterations"].id):
            with pytest.raises(InvalidState) as exc_info:
                hierarchy.update_node(ACME, node_id, CategoryPatch(name="Renamed"))
            assert exc_info.value.code == "not_a_leaf"

    def test_gate_order(self, hierarchy, acme_tree):
        with pytest.raises(NotFound):
            hierarchy.update_node(ACME, 9999, CategoryPatch(name="X"))
        # System root: not owned, so Forbidden wins over the level check.
        with pytest.raises(Forbidden) as exc_info:
            hierarchy.update_node(ACME, 1, CategoryPatch(name="X"))
        assert exc_info.value.code == "not_owner"
        with pytest.raises(Forbidden):
            hierarchy.update_node(BOLT, acme_tree["suits"].id, CategoryPatch(name="X"))

    def test_identical_values_are_no_changes(self, hierarchy, acme_tree):
        with pytest.raises(InvalidArgument) as exc_info:
            hierarchy.update_node(ACME, acme_tree["suits"].id, CategoryPatch(name="Men's Suits", color="#112233"))
        assert exc_info.value.code == "no_changes"

    def test_empty_patch_is_no_changes(self, hierarchy, acme_tree):
        with pytest.raises(InvalidArgument) as exc_info:
            hierarchy.update_node(ACME, acme_tree["suits"].id, CategoryPatch())
        assert exc_info.value.code == "no_changes"

    @pytest.mark.parametrize("field", ["name", "parent_id", "color", "icon", "sort_order"])
    def test_null_rejected(self, hierarchy, acme_tree, field):
        with pytest.raises(InvalidArgument) as exc_info:
            hierarchy.update_node(ACME, acme_tree["suits"].id, CategoryPatch(**{field: None}))
        assert exc_info.value.code == "null_field"

    def test_null_image_clears_it(self, hierarchy, acme_tree):
        suits = acme_tree["suits"]
        hierarchy.update_node(ACME, suits.id, CategoryPatch(image_url="https://cdn.example.com/s.jpg"))
        cleared = hierarchy.update_node(ACME, suits.id, CategoryPatch(image_url=None))
        assert cleared.image_url is None

    def test_null_description_becomes_empty(self, hierarchy, acme_tree):
        suits = acme_tree["suits"]
        hierarchy.update_node(ACME, suits.id, CategoryPatch(description="Two-piece and three-piece"))
        updated = hierarchy.update_node(ACME, suits.id, CategoryPatch(description=None))
        assert updated.description == ""

    def test_move_under_other_subcategory(self, hierarchy, acme_tree):
        moved = hierarchy.update_node(
            ACME, acme_tree["suits"].id, CategoryPatch(parent_id=acme_tree["stitching"].id)
        )
        assert moved.parent_id == acme_tree["stitching"].id
        assert hierarchy.level(moved.id) == 2

    def test_move_under_system_subcategory_of_other_merchant(self, hierarchy, acme_tree):
        bolt_sub = hierarchy.create_node(BOLT, CategoryDraft(name="Phones"), parent_id=2)
        moved = hierarchy.update_node(ACME, acme_tree["suits"].id, CategoryPatch(parent_id=bolt_sub.id))
        assert moved.parent_id == bolt_sub.id

    @pytest.mark.parametrize("target", ["root", "leaf", "missing"])
    def test_move_target_must_be_subcategory(self, hierarchy, acme_tree, target):
        other_leaf = hierarchy.create_node(ACME, CategoryDraft(name="Shirts"), parent_id=acme_tree["stitching"].id)
        parent_id = {"root": 2, "leaf": other_leaf.id, "missing": 9999}[target]
        with pytest.raises(InvalidArgument) as exc_info:
            hierarchy.update_node(ACME, acme_tree["suits"].id, CategoryPatch(parent_id=parent_id))
        assert exc_info.value.code == "invalid_parent"

    def test_rename_into_duplicate(self, hierarchy, acme_tree):
        hierarchy.create_node(ACME, CategoryDraft(name="Trousers"), parent_id=acme_tree["alterations"].id)
        with pytest.raises(Conflict):
            hierarchy.update_node(ACME, acme_tree["suits"].id, CategoryPatch(name="Trousers"))

    def test_move_into_duplicate(self, hierarchy, acme_tree):
        hierarchy.create_node(ACME, CategoryDraft(name="Men's Suits"), parent_id=acme_tree["stitching"].id)
        with pytest.raises(Conflict):
            hierarchy.update_node(ACME, acme_tree["suits"].id, CategoryPatch(parent_id=acme_tree["stitching"].id))

    def test_patch_from_mapping_keeps_supplied_nulls(self):
        patch = CategoryPatch.from_mapping({"image_url": None, "unknown": 1})
        assert patch.supplied() == {"image_url": None}


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------


class TestDelete:
    def test_delete_leaf(self, hierarchy, category_store, acme_tree):
        suits = acme_tree["suits"]
        deleted = hierarchy.delete_node(ACME, suits.id)
        assert deleted.id == suits.id
        assert deleted.name == "Men's Suits"
        assert deleted.parent_id == acme_tree["alterations"].id
        assert category_store.get_node(suits.id) is None

    def test_leaf_with_children_refused(self, hierarchy, acme_tree):
        hierarchy.create_node(ACME, CategoryDraft(name="Jackets"), parent_id=acme_tree["suits"].id)
        with pytest.raises(InvalidState) as exc_info:
            hierarchy.delete_node(ACME, acme_tree["suits"].id)
        assert exc_info.value.code == "has_children"

    def test_subcategory_not_deletable(self, hierarchy, acme_tree):
        with pytest.raises(InvalidState):
            hierarchy.delete_node(ACME, acme_tree["alterations"].id)

    def test_other_merchant_cannot_delete(self, hierarchy, acme_tree):
        with pytest.raises(Forbidden):
            hierarchy.delete_node(BOLT, acme_tree["suits"].id)


# ---------------------------------------------------------------------------
# End-to-end scenario
# ---------------------------------------------------------------------------


def test_acme_tailors_scenario(registry, hierarchy):
    """Merchant builds Tailoring > Alterations > leaf, renames the leaf, cannot rename the subcategory."""
    acme = registry.register_merchant("Acme Tailors", "12 High Street", "9000000001", "acmepass1").principal
    tailoring = hierarchy.store.get_node(1)
    assert tailoring.name == "Tailoring"
    assert hierarchy.level(tailoring.id) == 0

    alterations = hierarchy.create_node(acme.merchant_id, CategoryDraft(name="Alterations"), parent_id=tailoring.id)
    assert hierarchy.level(alterations.id) == 1
    leaf = hierarchy.create_node(acme.merchant_id, CategoryDraft(name="Men's Alterations"), parent_id=alterations.id)
    assert hierarchy.level(leaf.id) == 2

    renamed = hierarchy.update_node(acme.merchant_id, leaf.id, CategoryPatch(name="Men's Suit Alterations"))
    assert renamed.name == "Men's Suit Alterations"

    with pytest.raises(InvalidState):
        hierarchy.update_node(acme.merchant_id, alterations.id, CategoryPatch(name="Repairs"))


# ---------------------------------------------------------------------------
# Image URLs
# ---------------------------------------------------------------------------


class TestImageUrl:
    def test_stored_url_wins(self):
        assert category_image_url("http://h/", 1, "https://cdn/x.jpg") == "https://cdn/x.jpg"

    def test_seeded_root_slug(self):
        assert category_image_url("http://h/", 3, None) == "http://h/images/categories/home-services.jpg"

    def test_default_image(self):
        assert category_image_url("http://h", 42, None) == "http://h/images/default/category.jpg"
