"""
auth/registry.py -- Identity Registry: registration and login for both principal domains.

Every successful call returns an Issuance: a fresh credential plus the
principal it was issued for. Failures raise core.errors types; the HTTP
layer renders them.

Validation order per call: input format, then uniqueness / lookup, then
password check, then persist and issue. Nothing is written before every
check has passed.

Login failures:
  Unknown identity, inactive account and wrong password all raise the same
  Unauthorized("Invalid credentials.") and all run bcrypt once, through
  auth.tokens.authenticate(), so neither the body nor the timing tells them
  apart.

Merchant identifiers:
  allocate_merchant_id() samples "S" + 7 alphanumerics and re-checks storage,
  at most Settings.merchant_id_attempts times. The insert itself is still
  guarded by the UNIQUE constraint, so a race between check and insert
  surfaces as Conflict rather than a duplicate identifier.

Layer rule: no imports from api/, catalog/, or client/.
"""

from __future__ import annotations

import logging
import re

from email_validator import EmailNotValidError, validate_email
from sqlalchemy.exc import IntegrityError

from auth.models import ROLE_CUSTOMER, ROLE_MERCHANT, Customer, Issuance, Merchant
from auth.store import PrincipalStore
from auth.tokens import authenticate, generate_merchant_id, hash_password, issue_token
from core.config import get_settings
from core.errors import Conflict, Internal, InvalidArgument, Unauthorized

logger = logging.getLogger("townzy.auth")

_USERNAME_RE = re.compile(r"^[A-Za-z0-9_]{3,50}$")
_MOBILE_RE = re.compile(r"^[0-9]{10,15}$")

PASSWORD_MIN_LENGTH = 6
PASSWORD_MAX_LENGTH = 128
BUSINESS_NAME_MAX_LENGTH = 100

_BAD_LOGIN = "Invalid credentials."


# ---------------------------------------------------------------------------
# Input validation helpers
# ---------------------------------------------------------------------------


def _check_password(password: str | None) -> str:
    if not password or not PASSWORD_MIN_LENGTH <= len(password) <= PASSWORD_MAX_LENGTH:
        raise InvalidArgument(
            f"Password must be {PASSWORD_MIN_LENGTH}-{PASSWORD_MAX_LENGTH} characters.",
            code="invalid_password",
        )
    return password


def _normalize_email(email: str | None) -> str | None:
    """Return the trimmed email, or None when absent/blank. Raises on a malformed address."""
    if email is None or not email.strip():
        return None
    candidate = email.strip()
    try:
        validate_email(candidate, check_deliverability=False)
    except EmailNotValidError as exc:
        raise InvalidArgument("Email address is not valid.", code="invalid_email") from exc
    return candidate


def _required_text(value: str | None, field: str, max_length: int | None = None) -> str:
    trimmed = (value or "").strip()
    if not trimmed:
        raise InvalidArgument(f"{field} is required.", code="missing_field")
    if max_length is not None and len(trimmed) > max_length:
        raise InvalidArgument(f"{field} must be at most {max_length} characters.", code="invalid_field")
    return trimmed


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class IdentityRegistry:
    """Creates principals and authenticates them into credentials.

    Usage:
        registry = IdentityRegistry(PrincipalStore())
        issuance = registry.register_customer("asha", "secret123")
        issuance.token  # Bearer credential for the customer domain
    """

    def __init__(self, store: PrincipalStore) -> None:
        self.store = store

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    def register_customer(self, username: str, password: str, email: str | None = None) -> Issuance:
        if not username or not _USERNAME_RE.match(username):
            raise InvalidArgument(
                "Username must be 3-50 characters: letters, digits and underscores only.",
                code="invalid_username",
            )
        _check_password(password)
        email = _normalize_email(email)

        if self.store.customer_exists(username, email):
            raise Conflict("Username or email already exists.", code="customer_exists")

        customer = Customer(username=username, hashed_password=hash_password(password), email=email)
        try:
            customer.id = self.store.create_customer(customer)
        except IntegrityError as exc:
            # Lost a race against a concurrent registration.
            raise Conflict("Username or email already exists.", code="customer_exists") from exc

        logger.info("Customer registered: id=%s username=%s", customer.id, customer.username)
        return self._issue_customer(customer)

    def login_customer(self, username: str, password: str) -> Issuance:
        if (
            not username
            or not _USERNAME_RE.match(username)
            or not password
            or not PASSWORD_MIN_LENGTH <= len(password) <= PASSWORD_MAX_LENGTH
        ):
            raise InvalidArgument("Invalid credentials format.", code="invalid_format")

        customer = self.store.get_customer_by_username(username)
        if customer is None or not customer.is_active:
            authenticate(None, password)
            raise Unauthorized(_BAD_LOGIN)
        if not authenticate(customer.hashed_password, password):
            raise Unauthorized(_BAD_LOGIN)

        self.store.touch_customer_login(customer.id)
        logger.info("Customer login: id=%s", customer.id)
        return self._issue_customer(customer)

    def _issue_customer(self, customer: Customer) -> Issuance:
        ttl = get_settings().token_expire_seconds
        token = issue_token(
            subject=str(customer.id),
            role=ROLE_CUSTOMER,
            claims={"user_id": customer.id, "username": customer.username},
            ttl_seconds=ttl,
        )
        return Issuance(token=token, principal=customer, expires_in=ttl)

    # ------------------------------------------------------------------
    # Merchants
    # ------------------------------------------------------------------

    def allocate_merchant_id(self) -> str:
        """Return an identifier no stored merchant holds.

        Raises Internal("merchant_id_exhausted") after the configured number
        of colliding samples. With 36^7 candidates this only happens when
        storage is lying or the generator is broken.
        """
        attempts = get_settings().merchant_id_attempts
        for _ in range(attempts):
            candidate = generate_merchant_id()
            if not self.store.merchant_id_exists(candidate):
                return candidate
        logger.error("Merchant identifier allocation failed after %d attempts", attempts)
        raise Internal("Could not allocate a merchant identifier.", code="merchant_id_exhausted")

    def register_merchant(
        self,
        business_name: str,
        shop_address: str,
        mobile_number: str,
        password: str,
        email: str | None = None,
    ) -> Issuance:
        business_name = _required_text(business_name, "Business name", BUSINESS_NAME_MAX_LENGTH)
        shop_address = _required_text(shop_address, "Shop address")
        mobile_number = _required_text(mobile_number, "Mobile number")
        if not _MOBILE_RE.match(mobile_number):
            raise InvalidArgument("Mobile number must be 10-15 digits.", code="invalid_mobile")
        _check_password(password)
        email = _normalize_email(email)

        if self.store.mobile_exists(mobile_number):
            raise Conflict("A merchant with this mobile number already exists.", code="mobile_exists")

        merchant = Merchant(
            merchant_id="",
            business_name=business_name,
            shop_address=shop_address,
            mobile_number=mobile_number,
            hashed_password=hash_password(password),
            email=email,
        )
        attempts = get_settings().merchant_id_attempts
        for _ in range(attempts):
            merchant.merchant_id = self.allocate_merchant_id()
            try:
                merchant.id = self.store.create_merchant(merchant)
                break
            except IntegrityError as exc:
                if self.store.mobile_exists(mobile_number):
                    raise Conflict(
                        "A merchant with this mobile number already exists.", code="mobile_exists"
                    ) from exc
                # Another registration took the identifier after allocation.
                logger.warning("Merchant identifier %s taken during insert; reallocating", merchant.merchant_id)
        else:
            logger.error("Merchant insert lost the identifier race %d times", attempts)
            raise Internal("Could not allocate a merchant identifier.", code="merchant_id_exhausted")

        logger.info("Merchant registered: merchant_id=%s", merchant.merchant_id)
        return self._issue_merchant(merchant)

    def login_merchant(
        self,
        password: str,
        merchant_id: str | None = None,
        mobile_number: str | None = None,
    ) -> Issuance:
        """Authenticate by merchant identifier OR mobile number (exactly one)."""
        merchant_id = (merchant_id or "").strip() or None
        mobile_number = (mobile_number or "").strip() or None
        if (merchant_id is None) == (mobile_number is None):
            raise InvalidArgument(
                "Provide exactly one of merchant_id or mobile_number.",
                code="missing_selector",
            )
        if not password:
            raise InvalidArgument("Password is required.", code="invalid_format")

        if merchant_id is not None:
            merchant = self.store.get_merchant_by_merchant_id(merchant_id)
        else:
            merchant = self.store.get_merchant_by_mobile(mobile_number)

        if merchant is None or not merchant.is_active:
            authenticate(None, password)
            raise Unauthorized(_BAD_LOGIN)
        if not authenticate(merchant.hashed_password, password):
            raise Unauthorized(_BAD_LOGIN)

        self.store.touch_merchant_login(merchant.id)
        logger.info("Merchant login: merchant_id=%s", merchant.merchant_id)
        return self._issue_merchant(merchant)

    def _issue_merchant(self, merchant: Merchant) -> Issuance:
        ttl = get_settings().token_expire_seconds
        token = issue_token(
            subject=merchant.merchant_id,
            role=ROLE_MERCHANT,
            claims={
                "id": merchant.id,
                "merchant_id": merchant.merchant_id,
                "business_name": merchant.business_name,
            },
            ttl_seconds=ttl,
        )
        return Issuance(token=token, principal=merchant, expires_in=ttl)
