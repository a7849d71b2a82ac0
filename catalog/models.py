"""
catalog/models.py -- Domain dataclasses for the shop catalog.

Pure data containers. Slug generation, uniqueness checks and rating
aggregation live in catalog/store.py.

id is None before the record is written to the database.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class Category:
    name: str
    slug: str = ""
    description: Optional[str] = None
    image_url: Optional[str] = None
    is_active: bool = True
    id: Optional[int] = None
    product_count: int = 0  # derived, never written
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""


@dataclass
class Product:
    """A sellable item.

    price and discount_price are decimal amounts in the shop currency.
    images holds URLs only; uploading files is not this service's job.

    category_name / category_slug and the two rating fields are derived on
    read and ignored on write.
    """

    name: str
    price: float
    stock: int
    sku: str
    category_id: int
    description: Optional[str] = None
    slug: str = ""
    discount_price: Optional[float] = None
    images: list[str] = field(default_factory=list)
    sizes: list[str] = field(default_factory=list)
    colors: list[str] = field(default_factory=list)
    weight: Optional[float] = None
    is_featured: bool = False
    is_active: bool = True
    created_by: Optional[str] = None  # profile id
    id: Optional[int] = None
    category_name: Optional[str] = None
    category_slug: Optional[str] = None
    average_rating: float = 0.0
    review_count: int = 0
    created_at: str = ""
    updated_at: str = ""


@dataclass
class Review:
    product_id: int
    profile_id: str
    rating: int  # 1..5
    comment: Optional[str] = None
    id: Optional[int] = None
    created_at: str = ""


@dataclass
class ProductFilter:
    """Query options for CatalogStore.list_products().

    None means "do not filter on this". Public listings pass is_active=True
    and in_stock=True; the admin listing passes whatever the caller asked for.
    """

    search: Optional[str] = None
    search_sku: bool = False
    category_id: Optional[int] = None
    category_slug: Optional[str] = None
    is_featured: Optional[bool] = None
    is_active: Optional[bool] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    in_stock: Optional[bool] = None
    sort: str = "newest"  # newest | price_asc | price_desc | name_asc | name_desc
