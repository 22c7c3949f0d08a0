"""
catalog/store.py -- SQLAlchemy-backed persistence layer for the category tree.

Uses SQLAlchemy Core (not ORM) so the dataclasses in catalog/models.py
remain the authoritative domain representation. Swapping SQLite for
PostgreSQL is a connection string change, not a rewrite.

Pattern: Repository + Data Mapper. CategoryStore is the repository;
_row_to_node is the mapper. The engine never touches SQL directly.

The store knows nothing about levels or ownership rules. It answers
questions and applies writes; catalog/engine.py decides whether a write is
allowed. Writes that must respect ownership (update, delete) still carry
owner_id in their WHERE clause so a stale check can never mutate another
merchant's row.

Cascade: parent_id REFERENCES categories(id) ON DELETE CASCADE, and SQLite
connections enable PRAGMA foreign_keys so deleting a node removes every
descendant row (including inactive ones) at the storage layer.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = CategoryStore()                               # SQLite default
    store = CategoryStore("postgresql://user:pw@host/db") # PostgreSQL
    roots = store.list_roots()
    node_id = store.insert_node(CategoryNode(name="Alterations", parent_id=1, owner_id="S1234567"))
    store.close()
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
    text,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from catalog.models import DEFAULT_COLOR, DEFAULT_ICON, CategoryNode, RootSummary
from core.config import get_settings
from core.errors import Internal

logger = logging.getLogger("townzy.catalog.store")

# System roots inserted on first start. ids are fixed: image URLs and
# client bookmarks refer to them.
SEED_ROOTS: tuple[dict[str, Any], ...] = (
    {
        "id": 1,
        "name": "Tailoring",
        "description": "Professional tailoring services",
        "color": "#FF6B6B",
        "icon": "scissors",
    },
    {
        "id": 2,
        "name": "Electronics",
        "description": "Electronics repair services",
        "color": "#4ECDC4",
        "icon": "smartphone",
    },
    {
        "id": 3,
        "name": "Home Services",
        "description": "Home maintenance services",
        "color": "#45B7D1",
        "icon": "home",
    },
    {
        "id": 4,
        "name": "Beauty & Wellness",
        "description": "Beauty and personal care",
        "color": "#FFA07A",
        "icon": "heart",
    },
    {
        "id": 5,
        "name": "Automotive",
        "description": "Car repair services",
        "color": "#98D8C8",
        "icon": "car",
    },
)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_categories = Table(
    "categories",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("description", Text, nullable=False, server_default=""),
    Column("color", String(7), nullable=False, server_default=DEFAULT_COLOR),
    Column("icon", String(50), nullable=False, server_default=DEFAULT_ICON),
    Column("sort_order", Integer, nullable=False, server_default="0"),
    Column("image_url", String(255)),
    Column("owner_id", String(20), index=True),  # NULL = system-owned
    Column("parent_id", Integer, ForeignKey("categories.id", ondelete="CASCADE"), index=True),
    Column("is_active", Integer, nullable=False, server_default="1"),  # boolean stored as 0/1
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. foreign_keys is off by default in SQLite;
    without it ON DELETE CASCADE is silently ignored.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


def _parent_matches(parent_id: Optional[int]):
    # parent_id = NULL is never true in SQL; roots need IS NULL.
    if parent_id is None:
        return _categories.c.parent_id.is_(None)
    return _categories.c.parent_id == parent_id


def _owner_matches(owner_id: Optional[str]):
    if owner_id is None:
        return _categories.c.owner_id.is_(None)
    return _categories.c.owner_id == owner_id


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CategoryStore:
    def __init__(self, db_url: str | None = None, seed: bool | None = None) -> None:
        settings = get_settings()
        db_url = db_url or settings.catalog_db_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            # FastAPI runs sync handlers in a thread pool, so a pooled
            # connection may be used from a different thread than it was opened on.
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _sqlite_pragmas)
        metadata.create_all(self.engine)
        if settings.seed_categories if seed is None else seed:
            self.seed_system_roots()

    @contextmanager
    def _connect(self) -> Iterator[Connection]:
        """Yield a connection, translating storage failures into Internal."""
        try:
            with self.engine.connect() as conn:
                yield conn
        except SQLAlchemyError as exc:
            logger.error("Catalog storage failure: %s", exc)
            raise Internal("Category storage is unavailable.", code="storage_unavailable") from exc

    def ping(self) -> bool:
        """Return True if the database answers SELECT 1. Used by /health."""
        try:
            with self._connect() as conn:
                conn.execute(text("SELECT 1"))
        except Internal:
            return False
        return True

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    def seed_system_roots(self) -> int:
        """Insert the five system roots unless any system root already exists.

        Returns the number of rows inserted (0 or 5).
        """
        with self._connect() as conn:
            existing = conn.execute(
                select(func.count(_categories.c.id)).where(
                    _categories.c.parent_id.is_(None), _categories.c.owner_id.is_(None)
                )
            ).scalar()
            if existing:
                return 0
            now = _now_iso()
            for root in SEED_ROOTS:
                conn.execute(
                    _categories.insert().values(
                        **root,
                        sort_order=root["id"],
                        owner_id=None,
                        parent_id=None,
                        is_active=1,
                        created_at=now,
                        updated_at=now,
                    )
                )
            conn.commit()
        logger.info("Seeded %d system root categories", len(SEED_ROOTS))
        return len(SEED_ROOTS)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_node(self, node_id: int) -> Optional[CategoryNode]:
        """Fetch a node by ID whatever its active flag. Returns None if not found."""
        with self._connect() as conn:
            row = conn.execute(_categories.select().where(_categories.c.id == node_id)).fetchone()
        return _row_to_node(row) if row is not None else None

    def list_roots(self, owner_id: Optional[str] = None, owned_only: bool = False) -> list[RootSummary]:
        """Return active roots ordered by sort_order, each with has_children.

        owned_only=True restricts the listing to roots owned by owner_id
        (merchant-created level-0 nodes). has_children counts active children
        of any owner.
        """
        child = _categories.alias("child")
        active_children = (
            select(func.count(child.c.id))
            .where(child.c.parent_id == _categories.c.id, child.c.is_active == 1)
            .correlate(_categories)
            .scalar_subquery()
        )
        query = select(_categories, active_children.label("active_children")).where(
            _categories.c.parent_id.is_(None), _categories.c.is_active == 1
        )
        if owned_only:
            query = query.where(_owner_matches(owner_id))
        query = query.order_by(_categories.c.sort_order, _categories.c.id)
        with self._connect() as conn:
            rows = conn.execute(query).fetchall()
        return [RootSummary(node=_row_to_node(r), has_children=bool(r.active_children)) for r in rows]

    def list_children(
        self, parent_id: int, owner_id: Optional[str] = None, owned_only: bool = False
    ) -> list[CategoryNode]:
        """Return active children of parent_id ordered by sort_order."""
        query = _categories.select().where(_categories.c.parent_id == parent_id, _categories.c.is_active == 1)
        if owned_only:
            query = query.where(_owner_matches(owner_id))
        query = query.order_by(_categories.c.sort_order, _categories.c.id)
        with self._connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_node(r) for r in rows]

    def list_children_of(self, parent_ids: Iterable[int]) -> dict[int, list[CategoryNode]]:
        """Return active children grouped by parent, for several parents in one query."""
        ids = list(parent_ids)
        grouped: dict[int, list[CategoryNode]] = {pid: [] for pid in ids}
        if not ids:
            return grouped
        query = (
            _categories.select()
            .where(_categories.c.parent_id.in_(ids), _categories.c.is_active == 1)
            .order_by(_categories.c.parent_id, _categories.c.sort_order, _categories.c.id)
        )
        with self._connect() as conn:
            rows = conn.execute(query).fetchall()
        for r in rows:
            grouped[r.parent_id].append(_row_to_node(r))
        return grouped

    def count_active_children(self, node_id: int) -> int:
        with self._connect() as conn:
            result = conn.execute(
                select(func.count(_categories.c.id)).where(
                    _categories.c.parent_id == node_id, _categories.c.is_active == 1
                )
            ).scalar()
        return result or 0

    def find_sibling(
        self,
        name: str,
        parent_id: Optional[int],
        owner_id: Optional[str],
        exclude_id: Optional[int] = None,
    ) -> Optional[int]:
        """Return the id of an active node with the same (name, parent, owner), if any.

        exclude_id skips the node being renamed or moved.
        """
        query = select(_categories.c.id).where(
            _categories.c.name == name,
            _parent_matches(parent_id),
            _owner_matches(owner_id),
            _categories.c.is_active == 1,
        )
        if exclude_id is not None:
            query = query.where(_categories.c.id != exclude_id)
        with self._connect() as conn:
            row = conn.execute(query.limit(1)).fetchone()
        return row.id if row is not None else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert_node(self, node: CategoryNode) -> int:
        """Insert a node and return its assigned database ID."""
        now = _now_iso()
        with self._connect() as conn:
            result = conn.execute(
                _categories.insert().values(
                    name=node.name,
                    description=node.description,
                    color=node.color,
                    icon=node.icon,
                    sort_order=node.sort_order,
                    image_url=node.image_url,
                    owner_id=node.owner_id,
                    parent_id=node.parent_id,
                    is_active=1 if node.is_active else 0,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def update_node(self, node_id: int, owner_id: str, **fields) -> bool:
        """Apply the given column values and touch updated_at.

        Accepts any subset of: name, description, color, icon, sort_order,
        image_url, parent_id. The WHERE clause requires owner_id to match.

        Returns True if a row was updated, False if no owned row matched.
        """
        with self._connect() as conn:
            result = conn.execute(
                _categories.update()
                .where(_categories.c.id == node_id, _categories.c.owner_id == owner_id)
                .values(**fields, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def delete_node(self, node_id: int, owner_id: str) -> bool:
        """Hard-delete an owned node. Descendant rows go with it via the FK cascade."""
        with self._connect() as conn:
            result = conn.execute(
                _categories.delete().where(_categories.c.id == node_id, _categories.c.owner_id == owner_id)
            )
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_node(row) -> CategoryNode:
    return CategoryNode(
        id=row.id,
        name=row.name,
        description=row.description or "",
        color=row.color,
        icon=row.icon,
        sort_order=row.sort_order,
        image_url=row.image_url,
        owner_id=row.owner_id,
        parent_id=row.parent_id,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
