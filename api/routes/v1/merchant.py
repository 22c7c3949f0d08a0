"""
api/routes/v1/merchant.py -- Merchant registration, login and identity endpoints.

Routes:
  POST /api/v1/merchant/register  -- create a merchant; allocates its identifier (201)
  POST /api/v1/merchant/login     -- login by merchant_id OR mobile_number
  GET  /api/v1/merchant/me        -- verified claims of a merchant credential

Security:
  Register and login share the auth rate limit with the customer routes.
  Login accepts exactly one selector; sending both or neither is a 400
  (missing_selector) before any lookup happens.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import auth_limit, limiter
from api.models import ClaimsResponse, MerchantAuthResponse, MerchantLoginRequest, MerchantRegisterRequest, MerchantView
from auth.dependencies import require_merchant
from auth.models import Issuance, TokenClaims
from auth.registry import IdentityRegistry

router = APIRouter()


def _auth_response(message: str, issuance: Issuance) -> MerchantAuthResponse:
    return MerchantAuthResponse(
        message=message,
        token=issuance.token,
        token_type="bearer",  # noqa: S106 # nosec B106
        expires_in=issuance.expires_in,
        merchant=MerchantView.from_merchant(issuance.principal),
    )


@limiter.limit(auth_limit)
@router.post("/merchant/register", response_model=MerchantAuthResponse, status_code=201)
def register_merchant(request: Request, response: Response, body: MerchantRegisterRequest) -> MerchantAuthResponse:
    """Create a merchant account. The merchant identifier is generated server-side."""
    registry: IdentityRegistry = request.app.state.registry
    issuance = registry.register_merchant(
        business_name=body.business_name,
        shop_address=body.shop_address,
        mobile_number=body.mobile_number,
        password=body.password,
        email=body.email,
    )
    response.headers["Cache-Control"] = "no-store"
    return _auth_response("Merchant registered successfully", issuance)


@limiter.limit(auth_limit)
@router.post("/merchant/login", response_model=MerchantAuthResponse)
def login_merchant(request: Request, response: Response, body: MerchantLoginRequest) -> MerchantAuthResponse:
    registry: IdentityRegistry = request.app.state.registry
    issuance = registry.login_merchant(
        password=body.password,
        merchant_id=body.merchant_id,
        mobile_number=body.mobile_number,
    )
    response.headers["Cache-Control"] = "no-store"
    return _auth_response("Login successful", issuance)


@router.get("/merchant/me", response_model=ClaimsResponse)
def merchant_me(claims: TokenClaims = Depends(require_merchant)) -> ClaimsResponse:
    """Return the verified claims of the presented merchant credential."""
    return ClaimsResponse.from_claims(claims)
