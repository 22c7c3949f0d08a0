"""
API request and response models for the Townzy REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
catalog/models.py, which own the internal domain representation. Route
handlers map between the two.

Request models only check shape and types. Format rules (handle pattern,
password length, mobile digits, category name length) belong to the
registry and the hierarchy engine, so the same rules apply to every caller
and fail with a specific error code.

Separation of concerns: domain dataclasses = domain truth; api/ models = API contract.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import Customer, Merchant, TokenClaims
from catalog.engine import category_image_url
from catalog.models import AvailableRoot, CategoryNode, CategoryPatch, DeletedNode, RootSummary

# ---------------------------------------------------------------------------
# Request models -- identity
# ---------------------------------------------------------------------------


class CustomerRegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    username: str = Field(max_length=255)
    password: str = Field(max_length=1024)
    email: Optional[str] = Field(default=None, max_length=255)


class CustomerLoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    username: str = Field(default="", max_length=255)
    password: str = Field(default="", max_length=1024)


class MerchantRegisterRequest(BaseModel):
    """Request body for POST /api/v1/merchant/register."""

    business_name: str = Field(max_length=255)
    shop_address: str = Field(max_length=1000)
    mobile_number: str = Field(max_length=32)
    password: str = Field(max_length=1024)
    email: Optional[str] = Field(default=None, max_length=255)


class MerchantLoginRequest(BaseModel):
    """Request body for POST /api/v1/merchant/login.

    Exactly one of merchant_id / mobile_number must be present; the
    registry enforces that so the error carries the missing_selector code.
    """

    merchant_id: Optional[str] = Field(default=None, max_length=32)
    mobile_number: Optional[str] = Field(default=None, max_length=32)
    password: str = Field(default="", max_length=1024)


# ---------------------------------------------------------------------------
# Request models -- catalog
# ---------------------------------------------------------------------------


class SubcategoryCreateRequest(BaseModel):
    """Request body for POST /api/v1/merchant/categories/{id}/subcategories."""

    name: str = Field(max_length=1000)
    description: Optional[str] = None
    color: Optional[str] = None
    icon: Optional[str] = None
    sort_order: Optional[int] = None
    image_url: Optional[str] = None


class CategoryCreateRequest(SubcategoryCreateRequest):
    """Request body for POST /api/v1/merchant/categories. parent_id=None creates a root."""

    parent_id: Optional[int] = None


class CategoryUpdateRequest(BaseModel):
    """Request body for PUT /api/v1/merchant/categories/{id}.

    Every field is optional. Omitted fields are left untouched; fields sent
    as null are passed through as supplied nulls (the engine rejects them
    where null is meaningless and clears image_url / description otherwise).
    """

    name: Optional[str] = None
    description: Optional[str] = None
    color: Optional[str] = None
    icon: Optional[str] = None
    sort_order: Optional[int] = None
    image_url: Optional[str] = None
    parent_id: Optional[int] = None

    def to_patch(self) -> CategoryPatch:
        """Build a CategoryPatch from only the fields present in the request body."""
        return CategoryPatch.from_mapping(self.model_dump(include=self.model_fields_set))


# ---------------------------------------------------------------------------
# Response models -- identity
# ---------------------------------------------------------------------------


class CustomerView(BaseModel):
    id: Optional[int]
    username: str
    email: Optional[str] = None

    @classmethod
    def from_customer(cls, customer: Customer) -> "CustomerView":
        return cls(**customer.public_view())


class MerchantView(BaseModel):
    id: Optional[int]
    merchant_id: str
    business_name: str
    shop_address: str
    mobile_number: str
    email: Optional[str] = None

    @classmethod
    def from_merchant(cls, merchant: Merchant) -> "MerchantView":
        return cls(**merchant.public_view())


class CustomerAuthResponse(BaseModel):
    """Response for customer register / login."""

    message: str
    token: str
    token_type: str = "bearer"
    expires_in: int
    user: CustomerView


class MerchantAuthResponse(BaseModel):
    """Response for merchant register / login."""

    message: str
    token: str
    token_type: str = "bearer"
    expires_in: int
    merchant: MerchantView


class ClaimsResponse(BaseModel):
    """Response for GET /auth/me and GET /merchant/me: the verified credential claims."""

    subject: str
    role: str
    expires_at: Optional[str] = None
    claims: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_claims(cls, claims: TokenClaims) -> "ClaimsResponse":
        return cls(
            subject=claims.subject,
            role=claims.role,
            expires_at=claims.expires_at.isoformat() if claims.expires_at else None,
            claims=claims.extra,
        )


# ---------------------------------------------------------------------------
# Response models -- catalog
# ---------------------------------------------------------------------------


class CategoryOut(BaseModel):
    """One category node as returned over HTTP.

    image_url is always populated: a stored URL wins, otherwise one is
    synthesized under the request's base URL.
    """

    id: int
    name: str
    description: str = ""
    color: str
    icon: str
    sort_order: int = 0
    image_url: str
    owner_id: Optional[str] = None
    owner_label: str
    parent_id: Optional[int] = None
    is_active: bool = True
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_node(cls, node: CategoryNode, base_url: str, **extra: Any) -> "CategoryOut":
        return cls(
            id=node.id,
            name=node.name,
            description=node.description,
            color=node.color,
            icon=node.icon,
            sort_order=node.sort_order,
            image_url=category_image_url(base_url, node.id, node.image_url),
            owner_id=node.owner_id,
            owner_label=node.owner_label,
            parent_id=node.parent_id,
            is_active=node.is_active,
            created_at=node.created_at,
            updated_at=node.updated_at,
            **extra,
        )


class RootCategoryOut(CategoryOut):
    has_children: bool = False

    @classmethod
    def from_summary(cls, summary: RootSummary, base_url: str) -> "RootCategoryOut":
        return cls.from_node(summary.node, base_url, has_children=summary.has_children)


class AvailableCategoryOut(CategoryOut):
    subcategories: list[CategoryOut] = Field(default_factory=list)

    @classmethod
    def from_available(cls, entry: AvailableRoot, base_url: str) -> "AvailableCategoryOut":
        return cls.from_node(
            entry.root,
            base_url,
            subcategories=[CategoryOut.from_node(sub, base_url) for sub in entry.subcategories],
        )


class RootListResponse(BaseModel):
    data: list[RootCategoryOut]
    total_count: int


class CategoryListResponse(BaseModel):
    data: list[CategoryOut]
    total_count: int


class ChildListResponse(BaseModel):
    """Response for GET /categories/{id}: children, or the node itself when it is a leaf."""

    data: list[CategoryOut]
    total_count: int
    is_leaf: bool = False


class AvailableResponse(BaseModel):
    message: str
    data: list[AvailableCategoryOut]


class CategoryMutationResponse(BaseModel):
    message: str
    category: CategoryOut


class DeletedCategoryOut(BaseModel):
    id: int
    name: str
    parent_id: Optional[int] = None
    owner_id: Optional[str] = None

    @classmethod
    def from_deleted(cls, deleted: DeletedNode) -> "DeletedCategoryOut":
        return cls(id=deleted.id, name=deleted.name, parent_id=deleted.parent_id, owner_id=deleted.owner_id)


class DeleteResponse(BaseModel):
    message: str
    deleted_category: DeletedCategoryOut


# ---------------------------------------------------------------------------
# Envelope and service models
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


class ServiceInfo(BaseModel):
    """Response for GET /."""

    name: str = "Townzy API"
    version: str
    docs: str = "/docs"
    health: str = "/api/v1/health"
