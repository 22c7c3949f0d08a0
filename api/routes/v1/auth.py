"""
api/routes/v1/auth.py -- Customer registration, login and identity endpoints.

Routes:
  POST /api/v1/auth/register   -- create a customer; returns a fresh credential (201)
  POST /api/v1/auth/login      -- password login by handle; returns a fresh credential
  GET  /api/v1/auth/me         -- verified claims of the presented credential (any role)

Security:
  POST /register and /login are rate-limited per IP (Settings.auth_rate_limit).
  Login goes through IdentityRegistry.login_customer(), which provides timing
  equalization -- never inline a store lookup + verify_password here.
  Unknown handle and wrong password produce the same 401 body.
  Cache-Control: no-store on every response that carries a credential.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import auth_limit, limiter
from api.models import ClaimsResponse, CustomerAuthResponse, CustomerLoginRequest, CustomerRegisterRequest, CustomerView
from auth.dependencies import require_credential
from auth.models import Issuance, TokenClaims
from auth.registry import IdentityRegistry

# Auth policy:
# - POST /api/v1/auth/register: public -- account creation
# - POST /api/v1/auth/login:    public -- login endpoint must be unauthenticated
# - GET  /api/v1/auth/me:       requires any valid credential (require_credential)
router = APIRouter()


def _auth_response(message: str, issuance: Issuance) -> CustomerAuthResponse:
    return CustomerAuthResponse(
        message=message,
        token=issuance.token,
        token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
        expires_in=issuance.expires_in,
        user=CustomerView.from_customer(issuance.principal),
    )


@limiter.limit(auth_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/register", response_model=CustomerAuthResponse, status_code=201)
def register(request: Request, response: Response, body: CustomerRegisterRequest) -> CustomerAuthResponse:
    """Create a customer account and log it in.

    400 invalid_username / invalid_password / invalid_email on bad input,
    400 customer_exists when the handle or email is taken.
    """
    registry: IdentityRegistry = request.app.state.registry
    issuance = registry.register_customer(body.username, body.password, body.email)
    response.headers["Cache-Control"] = "no-store"
    return _auth_response("User registered successfully", issuance)


@limiter.limit(auth_limit)
@router.post("/auth/login", response_model=CustomerAuthResponse)
def login(request: Request, response: Response, body: CustomerLoginRequest) -> CustomerAuthResponse:
    """Authenticate with handle and password.

    Returns the same generic error for unknown handle and wrong password
    ("invalid_credentials") to avoid leaking handle existence.
    """
    registry: IdentityRegistry = request.app.state.registry
    issuance = registry.login_customer(body.username, body.password)
    response.headers["Cache-Control"] = "no-store"
    return _auth_response("Login successful", issuance)


@router.get("/auth/me", response_model=ClaimsResponse)
def me(claims: TokenClaims = Depends(require_credential)) -> ClaimsResponse:
    """Return the verified claims of the presented credential."""
    return ClaimsResponse.from_claims(claims)
