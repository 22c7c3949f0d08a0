"""
auth/tokens.py -- Credential codec, password hashing, and merchant identifiers.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       the principal subject, a role tag ("customer" | "merchant"), display
       claims and an expiry. verify_token() returns None on any failure --
       the authorization gate turns that into a 403.

       There is no revocation list and no refresh path: validity is purely a
       function of signature and expiry.

  Inspection: peek_expiry() reads the exp claim WITHOUT checking the
       signature. Only the client-side session store uses it, to expire a
       cached credential proactively. Never use it for a trust decision.

  Passwords: bcrypt via the bcrypt package directly, with a configurable
       work factor (BCRYPT_ROUNDS). The dummy hash enables timing
       equalization in authenticate() so response time does not reveal
       whether a customer handle or merchant selector exists.

  Merchant IDs: "S" + 7 characters drawn with secrets.choice from A-Z0-9
       (36^7, about 7.8e10 values). Uniqueness is checked against storage by
       the registry, not here.

Settings are read through get_settings() at call time so importing this
module (the client half does, for peek_expiry) never requires SECRET_KEY.

Layer rule: no imports from api/, catalog/, or client/. Import from core/
is allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
import secrets
import string
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any

import bcrypt
from jose import JWTError, jwt

from auth.models import TokenClaims
from core.config import get_settings

logger = logging.getLogger("townzy.auth")

_ALGORITHM = "HS256"

# Claims the codec owns. Everything else in a payload is a display claim.
_RESERVED_CLAIMS = frozenset({"sub", "role", "exp"})

MERCHANT_ID_PREFIX = "S"
MERCHANT_ID_LENGTH = 7
_MERCHANT_ID_ALPHABET = string.ascii_uppercase + string.digits


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


BCRYPT_MAX_BYTES = 72


def _password_bytes(plain: str) -> bytes:
    # bcrypt 5 rejects input past 72 bytes instead of ignoring the tail.
    return plain.encode("utf-8")[:BCRYPT_MAX_BYTES]


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    Only the first 72 UTF-8 bytes take part in the hash, as with classic
    bcrypt. Passwords are capped at 128 characters at registration.
    """
    rounds = get_settings().bcrypt_rounds
    return bcrypt.hashpw(_password_bytes(plain), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(_password_bytes(plain), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash -- treat as a mismatch, never as a crash.
        return False


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    # Computed once, on first login attempt, at the configured work factor.
    return hash_password("townzy_timing_dummy")


def authenticate(hashed_password: str | None, plain: str) -> bool:
    """Check a password against a stored hash with timing equalization.

    Pass hashed_password=None when the lookup found no principal: bcrypt
    still runs (against the dummy hash) so "unknown identity" and "wrong
    password" take the same time.
    """
    if hashed_password is None:
        verify_password(plain, _dummy_hash())
        return False
    return verify_password(plain, hashed_password)


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def issue_token(
    subject: str,
    role: str,
    claims: dict[str, Any] | None = None,
    ttl_seconds: int = 0,
    now: datetime | None = None,
) -> str:
    """Encode a signed credential.

    Args:
        subject:     Principal identity ("sub").
        role:        "customer" or "merchant".
        claims:      Display claims embedded alongside (username, merchant_id, ...).
                     They may not override sub/role/exp.
        ttl_seconds: Lifetime. 0 (default) uses Settings.token_expire_seconds.
        now:         Issue instant. Defaults to the current UTC time; tests pin it
                     to exercise the expiry boundary.
    """
    settings = get_settings()
    duration = ttl_seconds if ttl_seconds > 0 else settings.token_expire_seconds
    issued_at = now or datetime.now(timezone.utc)
    payload: dict[str, Any] = {k: v for k, v in (claims or {}).items() if k not in _RESERVED_CLAIMS}
    payload.update(
        {
            "sub": str(subject),
            "role": role,
            "exp": issued_at + timedelta(seconds=duration),
        }
    )
    return jwt.encode(payload, settings.secret_key, algorithm=_ALGORITHM)


def verify_token(token: str) -> TokenClaims | None:
    """Verify signature and expiry. Returns the claims, or None on any failure.

    Returning None (rather than raising) keeps the gate simple: any invalid
    credential is treated the same way, whatever the reason.
    """
    try:
        payload = jwt.decode(token, get_settings().secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if not payload.get("sub") or not payload.get("role"):
        return None
    return TokenClaims(
        subject=str(payload["sub"]),
        role=str(payload["role"]),
        expires_at=_exp_to_datetime(payload.get("exp")),
        extra={k: v for k, v in payload.items() if k not in _RESERVED_CLAIMS},
    )


def peek_expiry(token: str) -> datetime | None:
    """Return the exp instant of a token WITHOUT verifying it.

    Returns None for malformed tokens and for tokens that carry no integer
    exp claim. Client-side proactive expiry only.
    """
    try:
        payload = jwt.get_unverified_claims(token)
    except JWTError:
        return None
    return _exp_to_datetime(payload.get("exp"))


def _exp_to_datetime(exp: Any) -> datetime | None:
    if isinstance(exp, bool) or not isinstance(exp, int):
        return None
    return datetime.fromtimestamp(exp, tz=timezone.utc)


# ---------------------------------------------------------------------------
# Merchant identifiers
# ---------------------------------------------------------------------------


def generate_merchant_id() -> str:
    """Sample one candidate merchant identifier, e.g. "S4K9Q2ZT"."""
    return MERCHANT_ID_PREFIX + "".join(secrets.choice(_MERCHANT_ID_ALPHABET) for _ in range(MERCHANT_ID_LENGTH))
