"""
api/routes/v1/categories.py -- Public, read-only category tree endpoints.

Routes:
  GET /api/v1/categories                     -- active roots with has_children
  GET /api/v1/categories/{id}                -- active children, or the node itself as a leaf
  GET /api/v1/categories/{id}/subcategories  -- active children only (may be empty)

No authentication: browsing the catalog is open to anonymous clients.
Every node carries a non-empty image_url built against the request's base URL.
"""

from __future__ import annotations

from fastapi import APIRouter, Request

from api.models import CategoryListResponse, CategoryOut, ChildListResponse, RootCategoryOut, RootListResponse
from catalog.engine import HierarchyEngine

router = APIRouter()


@router.get("/categories", response_model=RootListResponse)
def list_categories(request: Request) -> RootListResponse:
    engine: HierarchyEngine = request.app.state.hierarchy
    base_url = str(request.base_url)
    roots = [RootCategoryOut.from_summary(s, base_url) for s in engine.list_roots()]
    return RootListResponse(data=roots, total_count=len(roots))


@router.get("/categories/{category_id}", response_model=ChildListResponse)
def get_category(request: Request, category_id: int) -> ChildListResponse:
    """Children of a node; a node without active children comes back as a single leaf.

    404 when the node does not exist or is inactive.
    """
    engine: HierarchyEngine = request.app.state.hierarchy
    listing = engine.list_children(category_id)
    base_url = str(request.base_url)
    nodes = [CategoryOut.from_node(n, base_url) for n in listing.nodes]
    return ChildListResponse(data=nodes, total_count=len(nodes), is_leaf=listing.is_leaf)


@router.get("/categories/{category_id}/subcategories", response_model=CategoryListResponse)
def list_subcategories(request: Request, category_id: int) -> CategoryListResponse:
    engine: HierarchyEngine = request.app.state.hierarchy
    base_url = str(request.base_url)
    nodes = [CategoryOut.from_node(n, base_url) for n in engine.list_subcategories(category_id)]
    return CategoryListResponse(data=nodes, total_count=len(nodes))
