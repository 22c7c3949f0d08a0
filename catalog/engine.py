"""
catalog/engine.py -- Hierarchy Engine: ownership and structure rules for the category tree.

The tree has three logical levels:
  0  roots ("main" categories). Seeded, system-owned, never mutable by merchants.
  1  subcategories, children of a root.
  2  leaves, children of a subcategory. The only level a merchant may edit or
     delete once created.

Creation has no level restriction: a merchant may hang a node under any
active parent (or create its own level-0 node). Editing and deleting are
restricted to level 2. The asymmetry is deliberate; only leaves carry
mutable merchandise data.

Level is derived, never stored: level() walks parent_id references up to
a null parent. More than max_depth hops, or a parent reference to a row
that does not exist, means the data is corrupted and raises TreeCorruption
rather than a silently truncated answer.

The multi-step checks in update_node / delete_node (exists, owner, level,
uniqueness, write) are not one transaction. A concurrent delete or rename
between the checks and the write is an accepted race; the final UPDATE and
DELETE still require owner_id in their WHERE clause.

Layer rule: no imports from api/, auth/, or client/. The caller passes the
merchant identifier it got from verified claims.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Optional

from catalog.models import (
    DEFAULT_COLOR,
    DEFAULT_ICON,
    AvailableRoot,
    CategoryDraft,
    CategoryNode,
    CategoryPatch,
    ChildListing,
    DeletedNode,
    RootSummary,
)
from catalog.store import CategoryStore
from core.config import get_settings
from core.errors import Conflict, Forbidden, InvalidArgument, InvalidState, NotFound, TreeCorruption

logger = logging.getLogger("townzy.catalog")

LEAF_LEVEL = 2
SUBCATEGORY_LEVEL = 1

NAME_MAX_LENGTH = 100
ICON_MAX_LENGTH = 50
IMAGE_URL_MAX_LENGTH = 255
_COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")

# Image slugs for the seeded system roots (ids 1..5).
_SEED_IMAGE_SLUGS: dict[int, str] = {
    1: "tailoring",
    2: "electronics",
    3: "home-services",
    4: "beauty-wellness",
    5: "automotive",
}


def category_image_url(base_url: str, node_id: Optional[int], image_url: Optional[str]) -> str:
    """Return the stored image URL, or a synthesized one under base_url.

    Seeded roots get their own picture; every other node gets the default.
    """
    if image_url:
        return image_url
    base = base_url.rstrip("/")
    slug = _SEED_IMAGE_SLUGS.get(node_id) if node_id is not None else None
    if slug:
        return f"{base}/images/categories/{slug}.jpg"
    return f"{base}/images/default/category.jpg"


# ---------------------------------------------------------------------------
# Field validation
# ---------------------------------------------------------------------------


def _check_id(node_id: Any, what: str = "Category") -> int:
    if isinstance(node_id, bool) or not isinstance(node_id, int) or node_id <= 0:
        raise InvalidArgument(f"{what} ID must be a positive integer.", code="invalid_id")
    return node_id


def _clean_name(name: Any) -> str:
    trimmed = name.strip() if isinstance(name, str) else ""
    if not 1 <= len(trimmed) <= NAME_MAX_LENGTH:
        raise InvalidArgument(
            f"Category name is required and must be 1-{NAME_MAX_LENGTH} characters.",
            code="invalid_name",
        )
    return trimmed


def _clean_color(color: Any) -> str:
    if not isinstance(color, str) or not _COLOR_RE.match(color):
        raise InvalidArgument("Color must be a hex value like #2196F3.", code="invalid_color")
    return color


def _clean_icon(icon: Any) -> str:
    if not isinstance(icon, str) or not 1 <= len(icon.strip()) <= ICON_MAX_LENGTH:
        raise InvalidArgument(f"Icon must be 1-{ICON_MAX_LENGTH} characters.", code="invalid_icon")
    return icon.strip()


def _clean_sort_order(sort_order: Any) -> int:
    if isinstance(sort_order, bool) or not isinstance(sort_order, int):
        raise InvalidArgument("Sort order must be an integer.", code="invalid_sort_order")
    return sort_order


def _clean_image_url(image_url: Any) -> Optional[str]:
    if image_url is None or image_url == "":
        return None
    if not isinstance(image_url, str) or len(image_url) > IMAGE_URL_MAX_LENGTH:
        raise InvalidArgument(
            f"Image URL must be at most {IMAGE_URL_MAX_LENGTH} characters.", code="invalid_image_url"
        )
    return image_url


def _clean_description(description: Any) -> str:
    if description is None:
        return ""
    if not isinstance(description, str):
        raise InvalidArgument("Description must be text.", code="invalid_description")
    return description


# Fields that may be omitted from a patch but, once supplied, may not be null.
_NON_NULLABLE = ("name", "parent_id", "color", "icon", "sort_order")


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class HierarchyEngine:
    """Tree queries and merchant-scoped mutations over a CategoryStore.

    Usage:
        engine = HierarchyEngine(CategoryStore())
        node = engine.create_node("S1234567", CategoryDraft(name="Alterations"), parent_id=1)
        engine.level(node.id)  # 1
    """

    def __init__(self, store: CategoryStore, max_depth: int | None = None) -> None:
        self.store = store
        self.max_depth = max_depth if max_depth is not None else get_settings().max_tree_depth

    # ------------------------------------------------------------------
    # Public reads
    # ------------------------------------------------------------------

    def list_roots(self) -> list[RootSummary]:
        return self.store.list_roots()

    def list_children(self, node_id: int) -> ChildListing:
        """Active children of a node, or the node itself as a single leaf when it has none."""
        _check_id(node_id)
        children = self.store.list_children(node_id)
        if children:
            return ChildListing(nodes=children, is_leaf=False)
        node = self.store.get_node(node_id)
        if node is None or not node.is_active:
            raise NotFound("Category not found.")
        return ChildListing(nodes=[node], is_leaf=True)

    def list_subcategories(self, node_id: int) -> list[CategoryNode]:
        _check_id(node_id)
        return self.store.list_children(node_id)

    def available_tree(self) -> list[AvailableRoot]:
        """Every active root with its active level-1 children (the re-parenting picker)."""
        roots = [summary.node for summary in self.store.list_roots()]
        grouped = self.store.list_children_of(root.id for root in roots)
        return [AvailableRoot(root=root, subcategories=grouped.get(root.id, [])) for root in roots]

    # ------------------------------------------------------------------
    # Merchant-scoped reads
    # ------------------------------------------------------------------

    def list_merchant_roots(self, merchant_id: str) -> list[RootSummary]:
        return self.store.list_roots(owner_id=merchant_id, owned_only=True)

    def list_merchant_children(self, merchant_id: str, node_id: int) -> list[CategoryNode]:
        _check_id(node_id)
        self._owned_parent(merchant_id, node_id)
        return self.store.list_children(node_id, owner_id=merchant_id, owned_only=True)

    def _owned_parent(self, merchant_id: str, parent_id: int) -> CategoryNode:
        parent = self.store.get_node(parent_id)
        if parent is None or not parent.is_active or parent.owner_id != merchant_id:
            raise NotFound("Parent category not found or not owned by merchant.", code="parent_not_owned")
        return parent

    # ------------------------------------------------------------------
    # Level
    # ------------------------------------------------------------------

    def level(self, node_id: int) -> int:
        """Return the number of parent hops from node_id to a root.

        Raises NotFound if node_id does not exist, TreeCorruption if the walk
        exceeds max_depth hops (a cycle, or a tree deeper than allowed) or
        reaches a parent that does not exist.
        """
        node = self.store.get_node(node_id)
        if node is None:
            raise NotFound("Category not found.")
        hops = 0
        current = node
        while current.parent_id is not None:
            hops += 1
            if hops > self.max_depth:
                logger.error("Parent walk from node %s exceeded %d hops", node_id, self.max_depth)
                raise TreeCorruption(f"Category {node_id} has a parent chain longer than {self.max_depth}.")
            parent = self.store.get_node(current.parent_id)
            if parent is None:
                logger.error("Node %s references missing parent %s", current.id, current.parent_id)
                raise TreeCorruption(f"Category {current.id} references a missing parent.")
            current = parent
        return hops

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_node(
        self,
        owner: str,
        draft: CategoryDraft,
        parent_id: Optional[int] = None,
        require_owned_parent: bool = False,
    ) -> CategoryNode:
        """Create a node owned by `owner` under parent_id (None makes a merchant-owned root).

        require_owned_parent=True additionally demands that the parent belongs
        to `owner` (the nested subcategory route).
        """
        name = _clean_name(draft.name)
        if parent_id is not None:
            _check_id(parent_id, "Parent")
            if require_owned_parent:
                self._owned_parent(owner, parent_id)
            else:
                parent = self.store.get_node(parent_id)
                if parent is None or not parent.is_active:
                    raise NotFound("Parent category not found.", code="parent_not_found")

        if self.store.find_sibling(name, parent_id, owner) is not None:
            raise Conflict("You already have a category with this name at this level.", code="duplicate_name")

        node = CategoryNode(
            name=name,
            description=_clean_description(draft.description),
            color=_clean_color(draft.color) if draft.color is not None else DEFAULT_COLOR,
            icon=_clean_icon(draft.icon) if draft.icon is not None else DEFAULT_ICON,
            sort_order=_clean_sort_order(draft.sort_order) if draft.sort_order is not None else 0,
            image_url=_clean_image_url(draft.image_url),
            owner_id=owner,
            parent_id=parent_id,
        )
        node_id = self.store.insert_node(node)
        logger.info("Category created by merchant %s: id=%s name=%r parent=%s", owner, node_id, name, parent_id)
        return self.store.get_node(node_id) or node

    def _editable_leaf(self, owner: str, node_id: int) -> CategoryNode:
        """Gate shared by update and delete: exists and active, owned, level 2."""
        _check_id(node_id)
        node = self.store.get_node(node_id)
        if node is None or not node.is_active:
            raise NotFound("Category not found.")
        if node.owner_id != owner:
            raise Forbidden("You can only modify your own categories.", code="not_owner")
        if self.level(node_id) != LEAF_LEVEL:
            raise InvalidState(
                "Only leaf categories (the deepest level) can be edited or deleted.",
                code="not_a_leaf",
            )
        return node

    def update_node(self, owner: str, node_id: int, patch: CategoryPatch) -> CategoryNode:
        """Apply a partial update to an owned leaf and return the stored result.

        Supplied values equal to the current ones are not changes. A patch
        that changes nothing raises InvalidArgument("no_changes").
        """
        node = self._editable_leaf(owner, node_id)
        supplied = patch.supplied()

        for field_name in _NON_NULLABLE:
            if field_name in supplied and supplied[field_name] is None:
                raise InvalidArgument(f"{field_name} may not be null.", code="null_field")

        changes: dict[str, Any] = {}

        if "parent_id" in supplied:
            new_parent_id = _check_id(supplied["parent_id"], "Parent")
            if new_parent_id != node.parent_id:
                new_parent = self.store.get_node(new_parent_id)
                if new_parent is None or not new_parent.is_active:
                    raise InvalidArgument("New parent category not found.", code="invalid_parent")
                if self.level(new_parent_id) != SUBCATEGORY_LEVEL:
                    raise InvalidArgument(
                        "Leaf categories can only be moved under subcategories.", code="invalid_parent"
                    )
                changes["parent_id"] = new_parent_id

        if "name" in supplied:
            name = _clean_name(supplied["name"])
            if name != node.name:
                changes["name"] = name

        if "name" in changes or "parent_id" in changes:
            target_name = changes.get("name", node.name)
            target_parent = changes.get("parent_id", node.parent_id)
            if self.store.find_sibling(target_name, target_parent, owner, exclude_id=node_id) is not None:
                raise Conflict(
                    "A category with this name already exists in the target location.", code="duplicate_name"
                )

        if "description" in supplied:
            description = _clean_description(supplied["description"])
            if description != node.description:
                changes["description"] = description
        if "color" in supplied:
            color = _clean_color(supplied["color"])
            if color != node.color:
                changes["color"] = color
        if "icon" in supplied:
            icon = _clean_icon(supplied["icon"])
            if icon != node.icon:
                changes["icon"] = icon
        if "sort_order" in supplied:
            sort_order = _clean_sort_order(supplied["sort_order"])
            if sort_order != node.sort_order:
                changes["sort_order"] = sort_order
        if "image_url" in supplied:
            image_url = _clean_image_url(supplied["image_url"])
            if image_url != node.image_url:
                changes["image_url"] = image_url

        if not changes:
            raise InvalidArgument("No valid fields to update.", code="no_changes")

        if not self.store.update_node(node_id, owner, **changes):
            # Deleted or re-owned between the checks and the write.
            raise NotFound("Category not found.")
        logger.info("Category %s updated by merchant %s: %s", node_id, owner, sorted(changes))
        updated = self.store.get_node(node_id)
        if updated is None:
            raise NotFound("Category not found.")
        return updated

    def delete_node(self, owner: str, node_id: int) -> DeletedNode:
        """Hard-delete an owned leaf. Rejects nodes that still have active children."""
        node = self._editable_leaf(owner, node_id)
        if self.store.count_active_children(node_id) > 0:
            raise InvalidState(
                "Cannot delete a category that has subcategories. Delete them first.",
                code="has_children",
            )
        if not self.store.delete_node(node_id, owner):
            raise NotFound("Category not found.")
        logger.info("Category %s deleted by merchant %s", node_id, owner)
        return DeletedNode(id=node.id, name=node.name, parent_id=node.parent_id, owner_id=node.owner_id)
