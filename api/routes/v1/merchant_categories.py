"""
api/routes/v1/merchant_categories.py -- Merchant-scoped category management.

Routes:
  GET    /api/v1/merchant/categories                       -- merchant's own active roots
  POST   /api/v1/merchant/categories                       -- create a node (any parent, or none)
  GET    /api/v1/merchant/categories/available             -- every root with its level-1 children
  PUT    /api/v1/merchant/categories/{id}                  -- partial update of an owned leaf
  DELETE /api/v1/merchant/categories/{id}                  -- hard delete of an owned leaf
  GET    /api/v1/merchant/categories/{id}/subcategories    -- merchant's children of an owned node
  POST   /api/v1/merchant/categories/{id}/subcategories    -- create under an owned node

Auth policy: every route requires a merchant credential (require_merchant).
The merchant identity always comes from the verified claims, never from
the request body, so one merchant cannot act as another.

/available is registered before /{id} routes so the literal path wins.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import (
    AvailableCategoryOut,
    AvailableResponse,
    CategoryCreateRequest,
    CategoryListResponse,
    CategoryMutationResponse,
    CategoryOut,
    CategoryUpdateRequest,
    DeletedCategoryOut,
    DeleteResponse,
    RootCategoryOut,
    RootListResponse,
    SubcategoryCreateRequest,
)
from auth.dependencies import require_merchant
from auth.models import TokenClaims
from catalog.engine import HierarchyEngine
from catalog.models import CategoryDraft

router = APIRouter()


def _draft(body: SubcategoryCreateRequest) -> CategoryDraft:
    return CategoryDraft(
        name=body.name,
        description=body.description,
        color=body.color,
        icon=body.icon,
        sort_order=body.sort_order,
        image_url=body.image_url,
    )


@router.get("/merchant/categories", response_model=RootListResponse)
def list_my_categories(request: Request, claims: TokenClaims = Depends(require_merchant)) -> RootListResponse:
    engine: HierarchyEngine = request.app.state.hierarchy
    base_url = str(request.base_url)
    roots = [RootCategoryOut.from_summary(s, base_url) for s in engine.list_merchant_roots(claims.merchant_id)]
    return RootListResponse(data=roots, total_count=len(roots))


@router.post("/merchant/categories", response_model=CategoryMutationResponse, status_code=201)
def create_category(
    request: Request,
    body: CategoryCreateRequest,
    claims: TokenClaims = Depends(require_merchant),
) -> CategoryMutationResponse:
    """Create a category owned by the calling merchant.

    parent_id may point at any active node; omitting it creates a
    merchant-owned root. 404 when the parent is missing, 400 on a
    duplicate (name, parent) for this merchant.
    """
    engine: HierarchyEngine = request.app.state.hierarchy
    node = engine.create_node(claims.merchant_id, _draft(body), parent_id=body.parent_id)
    return CategoryMutationResponse(
        message="Category created successfully",
        category=CategoryOut.from_node(node, str(request.base_url)),
    )


@router.get("/merchant/categories/available", response_model=AvailableResponse)
def available_categories(request: Request, claims: TokenClaims = Depends(require_merchant)) -> AvailableResponse:
    """Every active root with its active subcategories: the targets a leaf may be moved under."""
    engine: HierarchyEngine = request.app.state.hierarchy
    base_url = str(request.base_url)
    return AvailableResponse(
        message="Available categories retrieved successfully",
        data=[AvailableCategoryOut.from_available(entry, base_url) for entry in engine.available_tree()],
    )


@router.put("/merchant/categories/{category_id}", response_model=CategoryMutationResponse)
def update_category(
    request: Request,
    category_id: int,
    body: CategoryUpdateRequest,
    claims: TokenClaims = Depends(require_merchant),
) -> CategoryMutationResponse:
    """Partially update an owned leaf. Only fields present in the body are considered.

    404 missing, 403 not the owner, 400 not a leaf / bad parent / duplicate / no changes.
    """
    engine: HierarchyEngine = request.app.state.hierarchy
    node = engine.update_node(claims.merchant_id, category_id, body.to_patch())
    return CategoryMutationResponse(
        message="Category updated successfully",
        category=CategoryOut.from_node(node, str(request.base_url)),
    )


@router.delete("/merchant/categories/{category_id}", response_model=DeleteResponse)
def delete_category(
    request: Request,
    category_id: int,
    claims: TokenClaims = Depends(require_merchant),
) -> DeleteResponse:
    engine: HierarchyEngine = request.app.state.hierarchy
    deleted = engine.delete_node(claims.merchant_id, category_id)
    return DeleteResponse(
        message="Category and all linked data deleted successfully",
        deleted_category=DeletedCategoryOut.from_deleted(deleted),
    )


@router.get("/merchant/categories/{category_id}/subcategories", response_model=CategoryListResponse)
def list_my_subcategories(
    request: Request,
    category_id: int,
    claims: TokenClaims = Depends(require_merchant),
) -> CategoryListResponse:
    """The merchant's active children of a node the merchant owns (404 parent_not_owned otherwise)."""
    engine: HierarchyEngine = request.app.state.hierarchy
    base_url = str(request.base_url)
    nodes = [CategoryOut.from_node(n, base_url) for n in engine.list_merchant_children(claims.merchant_id, category_id)]
    return CategoryListResponse(data=nodes, total_count=len(nodes))


@router.post(
    "/merchant/categories/{category_id}/subcategories",
    response_model=CategoryMutationResponse,
    status_code=201,
)
def create_subcategory(
    request: Request,
    category_id: int,
    body: SubcategoryCreateRequest,
    claims: TokenClaims = Depends(require_merchant),
) -> CategoryMutationResponse:
    engine: HierarchyEngine = request.app.state.hierarchy
    node = engine.create_node(claims.merchant_id, _draft(body), parent_id=category_id, require_owned_parent=True)
    return CategoryMutationResponse(
        message="Subcategory created successfully",
        category=CategoryOut.from_node(node, str(request.base_url)),
    )
