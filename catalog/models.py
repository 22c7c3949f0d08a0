"""
catalog/models.py -- Domain dataclasses for the category hierarchy.

These are pure data containers. All tree rules (levels, ownership,
uniqueness) live in catalog/engine.py; all SQL lives in catalog/store.py.

Level is never stored on a node. It is derived by walking parent_id
references (HierarchyEngine.level), so moving a node can never leave a
stale level behind.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

DEFAULT_COLOR = "#2196F3"
DEFAULT_ICON = "category"


class _Unset:
    """Marker for "field not supplied" in a CategoryPatch.

    Distinct from None, which is a supplied value (and for some fields an
    invalid one).
    """

    _instance: Optional["_Unset"] = None

    def __new__(cls) -> "_Unset":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


@dataclass
class CategoryNode:
    """A node in the three-level catalog tree.

    owner_id is None for system-owned nodes (every seeded root), otherwise
    the merchant identifier of the creator. parent_id is None for roots.

    id is None before the record is written to the database.
    """

    name: str
    description: str = ""
    color: str = DEFAULT_COLOR
    icon: str = DEFAULT_ICON
    sort_order: int = 0
    image_url: Optional[str] = None
    owner_id: Optional[str] = None
    parent_id: Optional[int] = None
    is_active: bool = True
    id: Optional[int] = None
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""

    @property
    def is_system(self) -> bool:
        return self.owner_id is None

    @property
    def owner_label(self) -> str:
        return "System" if self.owner_id is None else "Merchant"


@dataclass
class CategoryDraft:
    """Input for node creation. Absent optional fields take the column defaults."""

    name: str
    description: Optional[str] = None
    color: Optional[str] = None
    icon: Optional[str] = None
    sort_order: Optional[int] = None
    image_url: Optional[str] = None


@dataclass
class CategoryPatch:
    """Partial update for a leaf node.

    Every attribute defaults to UNSET. Only supplied attributes are
    considered by HierarchyEngine.update_node; an UNSET attribute is never
    written, and is never coerced to an empty value.
    """

    name: Any = UNSET
    description: Any = UNSET
    color: Any = UNSET
    icon: Any = UNSET
    sort_order: Any = UNSET
    image_url: Any = UNSET
    parent_id: Any = UNSET

    FIELDS = ("name", "description", "color", "icon", "sort_order", "image_url", "parent_id")

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> "CategoryPatch":
        """Build a patch from a dict, treating every present key as supplied (even when None)."""
        return cls(**{k: data[k] for k in cls.FIELDS if k in data})

    def supplied(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self.FIELDS if getattr(self, name) is not UNSET}


@dataclass
class ChildListing:
    """Result of HierarchyEngine.list_children.

    When the node has active children, nodes holds them and is_leaf is
    False. When it has none, nodes holds the node itself and is_leaf is True.
    """

    nodes: list[CategoryNode]
    is_leaf: bool = False


@dataclass
class RootSummary:
    """A root node plus the derived has_children flag used by root listings."""

    node: CategoryNode
    has_children: bool = False


@dataclass
class AvailableRoot:
    """A root with its active level-1 children: one entry of the re-parenting picker."""

    root: CategoryNode
    subcategories: list[CategoryNode] = field(default_factory=list)


@dataclass
class DeletedNode:
    """Summary of a hard-deleted node, captured before the DELETE ran."""

    id: int
    name: str
    parent_id: Optional[int]
    owner_id: Optional[str]
