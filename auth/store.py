"""
auth/store.py -- SQLAlchemy Core persistence layer for principal records.

Pattern: Repository + Data Mapper (same as catalog/store.py).
PrincipalStore is the repository; _row_to_customer / _row_to_merchant are
the mappers. The registry and routes never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Uniqueness:
  customers.username, customers.email, merchants.merchant_id and
  merchants.mobile_number carry UNIQUE constraints. The registry checks
  first (for friendly errors) and still handles IntegrityError from the
  insert, because two concurrent registrations can both pass the check.
  SQLite treats NULL emails as distinct, so optional emails never collide.

Failure translation:
  IntegrityError is re-raised untouched (the registry turns it into
  Conflict). Every other SQLAlchemyError is logged and re-raised as
  core.errors.Internal so raw driver errors never reach a response.

DB path: auth/townzy_auth.db by default (Settings.auth_db_url).

Layer rule: no imports from api/, catalog/, or client/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, select, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.models import Customer, Merchant
from core.config import get_settings
from core.errors import Internal

logger = logging.getLogger("townzy.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_customers = Table(
    "customers",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(50), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("email", String(100), unique=True),  # NULL allowed, unique when set
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login", String(32)),
)

_merchants = Table(
    "merchants",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("merchant_id", String(20), nullable=False, unique=True),
    Column("business_name", String(100), nullable=False),
    Column("shop_address", Text, nullable=False),
    Column("mobile_number", String(15), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("email", String(100)),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login", String(32)),
)


# ---------------------------------------------------------------------------
# Engine setup
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class PrincipalStore:
    """Repository for Customer and Merchant entities.

    Usage:
        store = PrincipalStore()
        cid = store.create_customer(Customer(username="asha", hashed_password=hash_password("secret")))
        customer = store.get_customer_by_username("asha")
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().auth_db_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    @contextmanager
    def _connect(self) -> Iterator[Connection]:
        """Yield a connection, translating storage failures into Internal.

        IntegrityError passes through so callers can map it to Conflict.
        """
        try:
            with self.engine.connect() as conn:
                yield conn
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            logger.error("Auth storage failure: %s", exc)
            raise Internal("Authentication storage is unavailable.", code="storage_unavailable") from exc

    def ping(self) -> bool:
        """Return True if the database answers SELECT 1. Used by /health."""
        try:
            with self._connect() as conn:
                conn.execute(text("SELECT 1"))
        except Internal:
            return False
        return True

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    def create_customer(self, customer: Customer) -> int:
        """Insert a new customer and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the username or email already exists.
        """
        now = _now_iso()
        with self._connect() as conn:
            result = conn.execute(
                _customers.insert().values(
                    username=customer.username,
                    hashed_password=customer.hashed_password,
                    email=customer.email,
                    is_active=1 if customer.is_active else 0,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def customer_exists(self, username: str, email: str | None) -> bool:
        """Return True if the handle, or the (non-empty) email, is already taken."""
        condition = _customers.c.username == username
        if email:
            condition = condition | (_customers.c.email == email)
        with self._connect() as conn:
            row = conn.execute(select(_customers.c.id).where(condition).limit(1)).fetchone()
        return row is not None

    def get_customer_by_username(self, username: str) -> Customer | None:
        """Look up a customer by exact handle (case-sensitive). Returns None if not found."""
        with self._connect() as conn:
            row = conn.execute(_customers.select().where(_customers.c.username == username)).fetchone()
        return _row_to_customer(row) if row is not None else None

    def get_customer(self, customer_id: int) -> Customer | None:
        with self._connect() as conn:
            row = conn.execute(_customers.select().where(_customers.c.id == customer_id)).fetchone()
        return _row_to_customer(row) if row is not None else None

    def touch_customer_login(self, customer_id: int) -> None:
        """Stamp the current UTC timestamp as last_login."""
        with self._connect() as conn:
            conn.execute(_customers.update().where(_customers.c.id == customer_id).values(last_login=_now_iso()))
            conn.commit()

    def set_customer_active(self, customer_id: int, is_active: bool) -> bool:
        """Activate or deactivate a customer. Returns False if the id was not found."""
        with self._connect() as conn:
            result = conn.execute(
                _customers.update()
                .where(_customers.c.id == customer_id)
                .values(is_active=1 if is_active else 0, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Merchants
    # ------------------------------------------------------------------

    def create_merchant(self, merchant: Merchant) -> int:
        """Insert a new merchant and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError on a duplicate merchant_id or mobile_number.
        """
        now = _now_iso()
        with self._connect() as conn:
            result = conn.execute(
                _merchants.insert().values(
                    merchant_id=merchant.merchant_id,
                    business_name=merchant.business_name,
                    shop_address=merchant.shop_address,
                    mobile_number=merchant.mobile_number,
                    hashed_password=merchant.hashed_password,
                    email=merchant.email,
                    is_active=1 if merchant.is_active else 0,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def merchant_id_exists(self, merchant_id: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                select(_merchants.c.id).where(_merchants.c.merchant_id == merchant_id).limit(1)
            ).fetchone()
        return row is not None

    def mobile_exists(self, mobile_number: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                select(_merchants.c.id).where(_merchants.c.mobile_number == mobile_number).limit(1)
            ).fetchone()
        return row is not None

    def get_merchant_by_merchant_id(self, merchant_id: str) -> Merchant | None:
        with self._connect() as conn:
            row = conn.execute(_merchants.select().where(_merchants.c.merchant_id == merchant_id)).fetchone()
        return _row_to_merchant(row) if row is not None else None

    def get_merchant_by_mobile(self, mobile_number: str) -> Merchant | None:
        with self._connect() as conn:
            row = conn.execute(_merchants.select().where(_merchants.c.mobile_number == mobile_number)).fetchone()
        return _row_to_merchant(row) if row is not None else None

    def count_merchants(self) -> int:
        with self._connect() as conn:
            result = conn.execute(text("SELECT COUNT(*) FROM merchants")).scalar()
        return result or 0

    def touch_merchant_login(self, merchant_row_id: int) -> None:
        """Stamp the current UTC timestamp as last_login."""
        with self._connect() as conn:
            conn.execute(_merchants.update().where(_merchants.c.id == merchant_row_id).values(last_login=_now_iso()))
            conn.commit()

    def set_merchant_active(self, merchant_row_id: int, is_active: bool) -> bool:
        """Activate or deactivate a merchant. Returns False if the id was not found."""
        with self._connect() as conn:
            result = conn.execute(
                _merchants.update()
                .where(_merchants.c.id == merchant_row_id)
                .values(is_active=1 if is_active else 0, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_customer(row) -> Customer:
    return Customer(
        id=row.id,
        username=row.username,
        hashed_password=row.hashed_password,
        email=row.email,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        last_login=row.last_login,
    )


def _row_to_merchant(row) -> Merchant:
    return Merchant(
        id=row.id,
        merchant_id=row.merchant_id,
        business_name=row.business_name,
        shop_address=row.shop_address,
        mobile_number=row.mobile_number,
        hashed_password=row.hashed_password,
        email=row.email,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        last_login=row.last_login,
    )
