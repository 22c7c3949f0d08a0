"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic beyond read-only
helpers). Mirrors the approach in catalog/models.py -- dataclasses own the
domain shape; stores, the registry and routes do the work.

Layer rule: no imports from api/, catalog/, or client/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

ROLE_CUSTOMER = "customer"
ROLE_MERCHANT = "merchant"


@dataclass
class Customer:
    """An end-customer account.

    username is the unique login handle (3-50 chars, alphanumeric/underscore).
    email is optional but unique when present. Records are never deleted;
    the only mutation after registration is last_login on each login.
    """

    username: str
    hashed_password: str
    id: int | None = None
    email: str | None = None
    is_active: bool = True
    created_at: str | None = None
    last_login: str | None = None

    def public_view(self) -> dict[str, Any]:
        return {"id": self.id, "username": self.username, "email": self.email}


@dataclass
class Merchant:
    """A merchant account.

    merchant_id is the human-shareable identifier ("S" + 7 alphanumerics),
    generated at registration and never re-issued. mobile_number is the
    second unique login selector.
    """

    merchant_id: str
    business_name: str
    shop_address: str
    mobile_number: str
    hashed_password: str
    id: int | None = None
    email: str | None = None
    is_active: bool = True
    created_at: str | None = None
    last_login: str | None = None

    def public_view(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "merchant_id": self.merchant_id,
            "business_name": self.business_name,
            "shop_address": self.shop_address,
            "mobile_number": self.mobile_number,
            "email": self.email,
        }


@dataclass
class TokenClaims:
    """Verified contents of a credential.

    subject is the customer row id (as a string) or the merchant identifier.
    extra holds the display claims embedded at issue time (username,
    business_name, ...). Instances only exist for credentials whose
    signature and expiry were checked.
    """

    subject: str
    role: str
    expires_at: datetime | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def merchant_id(self) -> str | None:
        value = self.extra.get("merchant_id")
        return str(value) if value else None

    def as_dict(self) -> dict[str, Any]:
        return {
            "subject": self.subject,
            "role": self.role,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            **self.extra,
        }


@dataclass
class Issuance:
    """Result of a successful registration or login: a fresh credential plus its principal."""

    token: str
    principal: Customer | Merchant
    expires_in: int
