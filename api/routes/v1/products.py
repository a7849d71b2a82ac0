"""
api/routes/v1/products.py -- Storefront browsing and reviews.

Routes (prefix /api/v1):
  GET  /public/products                 -- active, in-stock products; filters + sort + page
  GET  /public/products/featured        -- featured products (limit, default 10)
  GET  /public/products/{slug}          -- detail with the latest 10 reviews
  GET  /public/products/{slug}/related  -- same category, excluding itself (limit, default 4)
  POST /products/{product_id}/reviews   -- add a review (user or admin)

Inactive products are invisible here: detail and related answer 404 for them
exactly as for a slug that does not exist.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.models import (
    SORT_PATTERN,
    Envelope,
    PageEnvelope,
    PaginationMeta,
    ProductDetailOut,
    ProductOut,
    ReviewCreate,
    ReviewOut,
)
from auth.dependencies import require_user
from auth.models import Identity
from catalog.models import Product, ProductFilter, Review
from catalog.store import FEATURED_LIMIT, RELATED_LIMIT, CatalogStore
from core.errors import NotFound
from core.pagination import MAX_LIMIT, meta, normalize

# Auth policy:
# - GET  /public/...:                  public
# - POST /products/{id}/reviews:       requires user or admin (require_user)
router = APIRouter()


def _catalog(request: Request) -> CatalogStore:
    return request.app.state.catalog


def _visible_product(catalog: CatalogStore, slug: str) -> Product:
    product = catalog.get_product_by_slug(slug)
    if product is None or not product.is_active:
        raise NotFound("Product not found", code="product_not_found")
    return product


@router.get("/public/products", response_model=PageEnvelope[ProductOut])
def list_products(
    request: Request,
    page: Optional[str] = None,
    limit: Optional[str] = None,
    search: Optional[str] = None,
    category_id: Optional[int] = None,
    category_slug: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    is_featured: Optional[bool] = None,
    sort: str = Query(default="newest", pattern=SORT_PATTERN),
) -> PageEnvelope[ProductOut]:
    params = normalize(page, limit)
    filters = ProductFilter(
        search=search,
        category_id=category_id,
        category_slug=category_slug,
        min_price=min_price,
        max_price=max_price,
        # Only "show featured" narrows; is_featured=false lists everything.
        is_featured=True if is_featured else None,
        is_active=True,
        in_stock=True,
        sort=sort,
    )
    products, total = _catalog(request).list_products(filters, params)
    return PageEnvelope[ProductOut](
        message="Products retrieved successfully",
        data=[ProductOut.from_product(p) for p in products],
        pagination=PaginationMeta(**meta(params.page, params.limit, total)),
    )


@router.get("/public/products/featured", response_model=Envelope[list[ProductOut]])
def featured_products(
    request: Request,
    limit: int = Query(default=FEATURED_LIMIT, ge=1, le=MAX_LIMIT),
) -> Envelope[list[ProductOut]]:
    products = _catalog(request).featured_products(limit)
    return Envelope[list[ProductOut]](
        message="Featured products retrieved successfully",
        data=[ProductOut.from_product(p) for p in products],
    )


@router.get("/public/products/{slug}", response_model=Envelope[ProductDetailOut])
def product_detail(request: Request, slug: str) -> Envelope[ProductDetailOut]:
    catalog = _catalog(request)
    product = _visible_product(catalog, slug)
    reviews = catalog.latest_reviews(product.id)
    return Envelope[ProductDetailOut](
        message="Product retrieved successfully",
        data=ProductDetailOut.from_product_with_reviews(product, reviews),
    )


@router.get("/public/products/{slug}/related", response_model=Envelope[list[ProductOut]])
def related_products(
    request: Request,
    slug: str,
    limit: int = Query(default=RELATED_LIMIT, ge=1, le=MAX_LIMIT),
) -> Envelope[list[ProductOut]]:
    catalog = _catalog(request)
    product = _visible_product(catalog, slug)
    return Envelope[list[ProductOut]](
        message="Related products retrieved successfully",
        data=[ProductOut.from_product(p) for p in catalog.related_products(product, limit)],
    )


@router.post("/products/{product_id}/reviews", response_model=Envelope[ReviewOut], status_code=201)
def add_review(
    request: Request,
    product_id: int,
    body: ReviewCreate,
    identity: Identity = Depends(require_user),
) -> Envelope[ReviewOut]:
    review = _catalog(request).add_review(
        Review(product_id=product_id, profile_id=identity.id, rating=body.rating, comment=body.comment)
    )
    return Envelope[ReviewOut](message="Review added successfully", data=ReviewOut.from_review(review))
