"""
auth/dependencies.py -- Authorization Gate as FastAPI Depends() helpers.

One credential source: the Authorization: Bearer <token> header. There are
no cookies and no API keys; both principal domains present the same kind of
credential and are told apart by its claims.

require_credential() accepts any verified credential (customer or merchant).
require_merchant() wraps it and additionally requires a merchant_id claim.

Outcomes:
  no header / blank token   -> Unauthenticated (401, "unauthenticated")
  bad signature / expired   -> Forbidden (403, "invalid_or_expired")
  no merchant_id claim      -> Forbidden (403, "not_a_merchant")

On success the verified claims are bound to request.state.claims for the
rest of the request. The gate never consults the registry or the catalog:
a credential is trusted on signature and expiry alone.

Layer rule: no imports from api/, catalog/, or client/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.models import TokenClaims
from auth.tokens import verify_token
from core.errors import Forbidden, Unauthenticated

_BEARER_PREFIX = "bearer "


def _extract_bearer(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.lower().startswith(_BEARER_PREFIX):
        return None
    token = auth_header[len(_BEARER_PREFIX) :].strip()
    return token or None


def require_credential(request: Request) -> TokenClaims:
    """Require a valid credential of any role.

    Use as a FastAPI dependency:
        @router.get("/auth/me")
        def me(claims: TokenClaims = Depends(require_credential)): ...
    """
    token = _extract_bearer(request)
    if token is None:
        raise Unauthenticated("Access token required.")

    claims = verify_token(token)
    if claims is None:
        raise Forbidden("Invalid or expired token.", code="invalid_or_expired")

    request.state.claims = claims
    return claims


def require_merchant(request: Request) -> TokenClaims:
    """Require a valid credential that carries a merchant identifier."""
    claims = require_credential(request)
    if not claims.merchant_id:
        raise Forbidden("Merchant access required.", code="not_a_merchant")
    return claims
