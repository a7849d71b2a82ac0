"""
api/routes/v1/admin.py -- Catalog administration endpoints.

Routes (prefix /api/v1, every route requires the admin role):
  POST   /admin/categories                -- create; 201
  GET    /admin/categories                -- list (search, is_active, page, limit)
  GET    /admin/categories/{id}           -- detail with product count
  PUT    /admin/categories/{id}           -- partial update; name change re-slugs
  DELETE /admin/categories/{id}           -- refused while products reference it
  POST   /admin/products                  -- create; 201
  GET    /admin/products                  -- list (search incl. SKU, filters, page, limit)
  GET    /admin/products/{id}             -- detail (inactive products included)
  PUT    /admin/products/{id}             -- partial update; name change re-slugs
  DELETE /admin/products/{id}             -- delete with its reviews
  PATCH  /admin/products/{id}/stock       -- set stock
  PATCH  /admin/products/{id}/featured    -- flip is_featured

Pagination query values are taken as raw strings and normalized by
core.pagination, so "abc" or "0" never produce a validation error.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request

from api.models import (
    CategoryCreate,
    CategoryOut,
    CategoryUpdate,
    Envelope,
    FeaturedOut,
    PageEnvelope,
    PaginationMeta,
    ProductCreate,
    ProductOut,
    ProductUpdate,
    StockOut,
    StockUpdate,
)
from auth.dependencies import require_admin
from auth.models import Identity
from catalog.models import Category, Product, ProductFilter
from catalog.store import CatalogStore
from core.errors import NotFound
from core.pagination import meta, normalize

# Auth policy: every route here requires the admin role (require_admin).
router = APIRouter(dependencies=[Depends(require_admin)])


def _catalog(request: Request) -> CatalogStore:
    return request.app.state.catalog


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


@router.post("/admin/categories", response_model=Envelope[CategoryOut], status_code=201)
def create_category(request: Request, body: CategoryCreate) -> Envelope[CategoryOut]:
    category = _catalog(request).create_category(Category(**body.model_dump()))
    return Envelope[CategoryOut](message="Category created successfully", data=CategoryOut.from_category(category))


@router.get("/admin/categories", response_model=PageEnvelope[CategoryOut])
def list_categories(
    request: Request,
    page: Optional[str] = None,
    limit: Optional[str] = None,
    search: Optional[str] = None,
    is_active: Optional[bool] = None,
) -> PageEnvelope[CategoryOut]:
    params = normalize(page, limit)
    categories, total = _catalog(request).list_categories(params, search=search, is_active=is_active)
    return PageEnvelope[CategoryOut](
        message="Categories retrieved successfully",
        data=[CategoryOut.from_category(c) for c in categories],
        pagination=PaginationMeta(**meta(params.page, params.limit, total)),
    )


@router.get("/admin/categories/{category_id}", response_model=Envelope[CategoryOut])
def get_category(request: Request, category_id: int) -> Envelope[CategoryOut]:
    category = _catalog(request).get_category(category_id)
    if category is None:
        raise NotFound("Category not found", code="category_not_found")
    return Envelope[CategoryOut](message="Category retrieved successfully", data=CategoryOut.from_category(category))


@router.put("/admin/categories/{category_id}", response_model=Envelope[CategoryOut])
def update_category(request: Request, category_id: int, body: CategoryUpdate) -> Envelope[CategoryOut]:
    category = _catalog(request).update_category(category_id, **body.model_dump(exclude_unset=True))
    return Envelope[CategoryOut](message="Category updated successfully", data=CategoryOut.from_category(category))


@router.delete("/admin/categories/{category_id}", response_model=Envelope[None])
def delete_category(request: Request, category_id: int) -> Envelope[None]:
    _catalog(request).delete_category(category_id)
    return Envelope[None](message="Category deleted successfully")


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------


@router.post("/admin/products", response_model=Envelope[ProductOut], status_code=201)
def create_product(
    request: Request,
    body: ProductCreate,
    admin: Identity = Depends(require_admin),
) -> Envelope[ProductOut]:
    product = _catalog(request).create_product(Product(**body.model_dump(), created_by=admin.id))
    return Envelope[ProductOut](message="Product created successfully", data=ProductOut.from_product(product))


@router.get("/admin/products", response_model=PageEnvelope[ProductOut])
def list_products(
    request: Request,
    page: Optional[str] = None,
    limit: Optional[str] = None,
    search: Optional[str] = None,
    category_id: Optional[int] = None,
    is_featured: Optional[bool] = None,
    is_active: Optional[bool] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    in_stock: Optional[bool] = None,
) -> PageEnvelope[ProductOut]:
    params = normalize(page, limit)
    filters = ProductFilter(
        search=search,
        search_sku=True,
        category_id=category_id,
        is_featured=is_featured,
        is_active=is_active,
        min_price=min_price,
        max_price=max_price,
        in_stock=in_stock,
    )
    products, total = _catalog(request).list_products(filters, params)
    return PageEnvelope[ProductOut](
        message="Products retrieved successfully",
        data=[ProductOut.from_product(p) for p in products],
        pagination=PaginationMeta(**meta(params.page, params.limit, total)),
    )


@router.get("/admin/products/{product_id}", response_model=Envelope[ProductOut])
def get_product(request: Request, product_id: int) -> Envelope[ProductOut]:
    product = _catalog(request).get_product(product_id)
    if product is None:
        raise NotFound("Product not found", code="product_not_found")
    return Envelope[ProductOut](message="Product retrieved successfully", data=ProductOut.from_product(product))


@router.put("/admin/products/{product_id}", response_model=Envelope[ProductOut])
def update_product(request: Request, product_id: int, body: ProductUpdate) -> Envelope[ProductOut]:
    product = _catalog(request).update_product(product_id, **body.model_dump(exclude_unset=True))
    return Envelope[ProductOut](message="Product updated successfully", data=ProductOut.from_product(product))


@router.delete("/admin/products/{product_id}", response_model=Envelope[None])
def delete_product(request: Request, product_id: int) -> Envelope[None]:
    _catalog(request).delete_product(product_id)
    return Envelope[None](message="Product deleted successfully")


@router.patch("/admin/products/{product_id}/stock", response_model=Envelope[StockOut])
def update_stock(request: Request, product_id: int, body: StockUpdate) -> Envelope[StockOut]:
    product = _catalog(request).set_stock(product_id, body.stock)
    return Envelope[StockOut](
        message="Stock updated successfully",
        data=StockOut(id=product.id, name=product.name, stock=product.stock),
    )


@router.patch("/admin/products/{product_id}/featured", response_model=Envelope[FeaturedOut])
def toggle_featured(request: Request, product_id: int) -> Envelope[FeaturedOut]:
    product = _catalog(request).toggle_featured(product_id)
    state = "featured" if product.is_featured else "unfeatured"
    return Envelope[FeaturedOut](
        message=f"Product {state} successfully",
        data=FeaturedOut(id=product.id, name=product.name, is_featured=product.is_featured),
    )
