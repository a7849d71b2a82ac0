"""
API request and response models for shopfront REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
catalog/models.py, which own the internal domain representation. The
from_* classmethods map domain objects onto the wire shape.

Every response is an envelope:
  success: {"success": true,  "message": ..., "data": ..., ["pagination": ...]}
  failure: {"success": false, "message": ..., "error": {code, message, detail, fields}}

Auth payloads use camelCase field names (fullName, refreshToken, newPassword);
catalog payloads use snake_case. Clients of both already depend on that.
"""

from typing import Annotated, Generic, Optional, TypeVar

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, StringConstraints, model_validator

from auth.models import Identity, Session
from auth.tokens import MAX_PASSWORD_BYTES
from catalog.models import Category, Product, Review

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"
SORT_PATTERN = r"^(newest|price_asc|price_desc|name_asc|name_desc)$"

# Emails and names are trimmed. Passwords never are: the bytes the user typed
# are the bytes that get hashed.
Email = Annotated[str, StringConstraints(strip_whitespace=True, pattern=EMAIL_PATTERN, max_length=255)]
FullName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]


def _within_bcrypt_window(value: str) -> str:
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
    return value


NewPassword = Annotated[
    str, Field(min_length=6, max_length=MAX_PASSWORD_BYTES), AfterValidator(_within_bcrypt_window)
]
Password = Annotated[
    str, Field(min_length=1, max_length=MAX_PASSWORD_BYTES), AfterValidator(_within_bcrypt_window)
]


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    fields: Optional[dict[str, str]] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    success: bool = False
    message: str
    error: ErrorDetail


class Envelope(BaseModel, Generic[T]):
    success: bool = True
    message: str
    data: Optional[T] = None


class PaginationMeta(BaseModel):
    page: int
    limit: int
    total: int
    totalPages: int
    hasNext: bool
    hasPrev: bool


class PageEnvelope(BaseModel, Generic[T]):
    success: bool = True
    message: str
    data: list[T]
    pagination: PaginationMeta


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str


# ---------------------------------------------------------------------------
# Auth -- requests
# ---------------------------------------------------------------------------


class SignUpRequest(BaseModel):
    email: Email
    password: NewPassword
    fullName: FullName


class SignInRequest(BaseModel):
    email: Email
    password: Password


class RefreshRequest(BaseModel):
    refreshToken: str = Field(min_length=1)


class ResetPasswordRequest(BaseModel):
    email: Email


class UpdatePasswordRequest(BaseModel):
    token: str = Field(min_length=1, max_length=2048)
    newPassword: NewPassword


class VerifyEmailRequest(BaseModel):
    token: str = Field(min_length=1, max_length=2048)


class ResendVerificationRequest(BaseModel):
    email: Email


# ---------------------------------------------------------------------------
# Auth -- responses
# ---------------------------------------------------------------------------


class IdentityOut(BaseModel):
    """Public profile fields. Never carries hashes or tokens."""

    id: Optional[str]
    email: str
    fullName: Optional[str] = None
    role: str
    emailVerified: bool
    createdAt: Optional[str] = None

    @classmethod
    def from_identity(cls, identity: Identity) -> "IdentityOut":
        return cls(**identity.public())


class TokensOut(BaseModel):
    accessToken: str
    refreshToken: str
    expiresIn: int
    tokenType: str = "bearer"


class SessionOut(BaseModel):
    user: IdentityOut
    session: TokensOut

    @classmethod
    def from_session(cls, session: Session) -> "SessionOut":
        return cls(
            user=IdentityOut.from_identity(session.identity),
            session=TokensOut(
                accessToken=session.tokens.access_token,
                refreshToken=session.tokens.refresh_token,
                expiresIn=session.tokens.expires_in,
            ),
        )


class VerifiedEmailOut(BaseModel):
    email: str
    emailVerified: bool


# ---------------------------------------------------------------------------
# Catalog -- requests
# ---------------------------------------------------------------------------


class CategoryCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=2, max_length=50)
    description: Optional[str] = Field(default=None, max_length=500)
    image_url: Optional[str] = Field(default=None, max_length=500)
    is_active: bool = True


class CategoryUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    description: Optional[str] = Field(default=None, max_length=500)
    image_url: Optional[str] = Field(default=None, max_length=500)
    is_active: Optional[bool] = None


def _check_discount(price: Optional[float], discount_price: Optional[float]) -> None:
    if price is not None and discount_price is not None and discount_price >= price:
        raise ValueError("Discount price must be less than regular price")


class ProductCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=3, max_length=200)
    description: str = Field(min_length=10)
    price: float = Field(gt=0)
    discount_price: Optional[float] = Field(default=None, ge=0)
    stock: int = Field(ge=0)
    sku: str = Field(min_length=3, max_length=50)
    category_id: int
    images: list[str] = Field(default_factory=list, max_length=10)
    sizes: list[str] = Field(default_factory=list)
    colors: list[str] = Field(default_factory=list)
    weight: Optional[float] = Field(default=None, gt=0)
    is_featured: bool = False
    is_active: bool = True

    @model_validator(mode="after")
    def discount_below_price(self) -> "ProductCreate":
        _check_discount(self.price, self.discount_price)
        return self


class ProductUpdate(BaseModel):
    """Partial update. Only fields present in the body are written."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=3, max_length=200)
    description: Optional[str] = Field(default=None, min_length=10)
    price: Optional[float] = Field(default=None, gt=0)
    discount_price: Optional[float] = Field(default=None, ge=0)
    stock: Optional[int] = Field(default=None, ge=0)
    sku: Optional[str] = Field(default=None, min_length=3, max_length=50)
    category_id: Optional[int] = None
    images: Optional[list[str]] = Field(default=None, max_length=10)
    sizes: Optional[list[str]] = None
    colors: Optional[list[str]] = None
    weight: Optional[float] = Field(default=None, gt=0)
    is_featured: Optional[bool] = None
    is_active: Optional[bool] = None

    @model_validator(mode="after")
    def discount_below_price(self) -> "ProductUpdate":
        _check_discount(self.price, self.discount_price)
        return self


class StockUpdate(BaseModel):
    stock: int = Field(ge=0)


class ReviewCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    rating: int = Field(ge=1, le=5)
    comment: Optional[str] = Field(default=None, max_length=1000)


# ---------------------------------------------------------------------------
# Catalog -- responses
# ---------------------------------------------------------------------------


class CategoryOut(BaseModel):
    id: int
    name: str
    slug: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    is_active: bool
    product_count: int = 0
    created_at: str
    updated_at: str

    @classmethod
    def from_category(cls, category: Category) -> "CategoryOut":
        return cls(
            id=category.id,
            name=category.name,
            slug=category.slug,
            description=category.description,
            image_url=category.image_url,
            is_active=category.is_active,
            product_count=category.product_count,
            created_at=category.created_at,
            updated_at=category.updated_at,
        )


class CategoryRef(BaseModel):
    id: int
    name: str
    slug: str


class ProductOut(BaseModel):
    id: int
    name: str
    slug: str
    description: Optional[str] = None
    price: float
    discount_price: Optional[float] = None
    stock: int
    sku: str
    category_id: int
    category: Optional[CategoryRef] = None
    images: list[str] = Field(default_factory=list)
    sizes: list[str] = Field(default_factory=list)
    colors: list[str] = Field(default_factory=list)
    weight: Optional[float] = None
    is_featured: bool
    is_active: bool
    average_rating: float = 0.0
    review_count: int = 0
    created_at: str
    updated_at: str

    @classmethod
    def fields_from(cls, product: Product) -> dict:
        category = None
        if product.category_name is not None:
            category = CategoryRef(id=product.category_id, name=product.category_name, slug=product.category_slug)
        return {
            "id": product.id,
            "name": product.name,
            "slug": product.slug,
            "description": product.description,
            "price": product.price,
            "discount_price": product.discount_price,
            "stock": product.stock,
            "sku": product.sku,
            "category_id": product.category_id,
            "category": category,
            "images": product.images,
            "sizes": product.sizes,
            "colors": product.colors,
            "weight": product.weight,
            "is_featured": product.is_featured,
            "is_active": product.is_active,
            "average_rating": product.average_rating,
            "review_count": product.review_count,
            "created_at": product.created_at,
            "updated_at": product.updated_at,
        }

    @classmethod
    def from_product(cls, product: Product) -> "ProductOut":
        return cls(**cls.fields_from(product))


class ReviewOut(BaseModel):
    id: int
    product_id: int
    profile_id: str
    rating: int
    comment: Optional[str] = None
    created_at: str

    @classmethod
    def from_review(cls, review: Review) -> "ReviewOut":
        return cls(
            id=review.id,
            product_id=review.product_id,
            profile_id=review.profile_id,
            rating=review.rating,
            comment=review.comment,
            created_at=review.created_at,
        )


class ProductDetailOut(ProductOut):
    """Product page payload: the product plus its latest reviews."""

    reviews: list[ReviewOut] = Field(default_factory=list)

    @classmethod
    def from_product_with_reviews(cls, product: Product, reviews: list[Review]) -> "ProductDetailOut":
        return cls(**cls.fields_from(product), reviews=[ReviewOut.from_review(r) for r in reviews])


class StockOut(BaseModel):
    id: int
    name: str
    stock: int


class FeaturedOut(BaseModel):
    id: int
    name: str
    is_featured: bool
