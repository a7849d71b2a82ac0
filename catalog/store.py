"""
catalog/store.py -- SQLAlchemy Core persistence layer for categories, products
and reviews.

Pattern: Repository + Data Mapper. CatalogStore is the repository; the
_row_to_* functions are the mappers. Route handlers never touch SQL directly.

Security: all queries use bound parameters. No f-strings in SQL. Search terms
are LIKE-escaped so "%" and "_" in user input match literally.

Slugs: categories.slug and products.slug carry UNIQUE indexes. Writes that set
a slug go through core.identifiers.create_with_unique_slug(): the existence
check picks a candidate, and if a concurrent writer takes it first the
constrained write fails, is reported as SlugCollision, and the next candidate
is tried. Name and SKU uniqueness work the same way: a pre-check gives a clean
Conflict, the UNIQUE index catches the race.

Ratings are never stored. average_rating (mean, one decimal, half-up) and
review_count are aggregated per read in one grouped query per page.

Layer rule: imports only core/ and third-party. Never api/ or auth/.

Usage:
    store = CatalogStore("sqlite:///shopfront.db")
    shoes = store.create_category(Category(name="Shoes"))
    product = store.create_product(Product(name="Runner", price=59.0, stock=3,
                                           sku="RUN-001", category_id=shoes.id))
    items, total = store.list_products(ProductFilter(search="run"), normalize(1, 10))
    store.close()
"""

import json
import logging
from collections.abc import Callable
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from sqlalchemy import (
    Column,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    and_,
    create_engine,
    event,
    func,
    or_,
    select,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from catalog.models import Category, Product, ProductFilter, Review
from core.clock import Clock, utc_now
from core.errors import BadRequest, Conflict, NotFound, ValidationFailed
from core.identifiers import SlugCollision, create_with_unique_slug, slugify
from core.pagination import PageParams

logger = logging.getLogger("shopfront.catalog")

FEATURED_LIMIT = 10
RELATED_LIMIT = 4
DETAIL_REVIEW_LIMIT = 10

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_categories = Table(
    "categories",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(50), nullable=False, unique=True),
    Column("slug", String(80), nullable=False, unique=True),
    Column("description", Text),
    Column("image_url", String(500)),
    Column("is_active", Integer, nullable=False, server_default="1"),  # boolean stored as 0/1
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_products = Table(
    "products",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(200), nullable=False),
    Column("slug", String(220), nullable=False, unique=True),
    Column("description", Text),
    Column("price", Float, nullable=False),
    Column("discount_price", Float),
    Column("stock", Integer, nullable=False, server_default="0"),
    Column("sku", String(50), nullable=False, unique=True),
    Column("category_id", Integer, ForeignKey("categories.id"), nullable=False, index=True),
    Column("images", Text),  # JSON array serialized as text
    Column("sizes", Text),  # JSON array
    Column("colors", Text),  # JSON array
    Column("weight", Float),
    Column("is_featured", Integer, nullable=False, server_default="0"),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_by", String(36)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_reviews = Table(
    "reviews",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("product_id", Integer, ForeignKey("products.id"), nullable=False, index=True),
    Column("profile_id", String(36), nullable=False),
    Column("rating", Integer, nullable=False),
    Column("comment", Text),
    Column("created_at", String(32), nullable=False),
)

_CATEGORY_FIELDS = {"name", "description", "image_url", "is_active"}
_PRODUCT_FIELDS = {
    "name",
    "description",
    "price",
    "discount_price",
    "stock",
    "sku",
    "category_id",
    "images",
    "sizes",
    "colors",
    "weight",
    "is_featured",
    "is_active",
}
# Columns a partial update may clear by sending null.
_CLEARABLE_CATEGORY_FIELDS = {"description", "image_url"}
_CLEARABLE_PRODUCT_FIELDS = {"description", "discount_price", "images", "sizes", "colors", "weight"}
_JSON_FIELDS = ("images", "sizes", "colors")

_SORTS = {
    "newest": (_products.c.created_at.desc(), _products.c.id.desc()),
    "price_asc": (_products.c.price.asc(), _products.c.id.asc()),
    "price_desc": (_products.c.price.desc(), _products.c.id.desc()),
    "name_asc": (_products.c.name.asc(), _products.c.id.asc()),
    "name_desc": (_products.c.name.desc(), _products.c.id.desc()),
}
SORT_OPTIONS = tuple(_SORTS)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked during writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def round_rating(value: float) -> float:
    """Round to one decimal, halves away from zero (3.25 -> 3.3)."""
    return float(Decimal(str(value)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def _contains(column, term: str):
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return column.ilike(f"%{escaped}%", escape="\\")


def _where(stmt, conditions: list):
    return stmt.where(and_(*conditions)) if conditions else stmt


def _require_sluggable(name: str) -> None:
    if not slugify(name):
        message = "Name must contain at least one letter or digit"
        raise ValidationFailed(message, fields={"name": message})


def _check_discount(price: float, discount_price: Optional[float]) -> None:
    if discount_price is not None and discount_price >= price:
        message = "Discount price must be less than regular price"
        raise ValidationFailed(message, fields={"discount_price": message})


def _encode_product_fields(fields: dict[str, Any]) -> dict[str, Any]:
    encoded = dict(fields)
    for key in _JSON_FIELDS:
        if key in encoded:
            encoded[key] = json.dumps(encoded[key] or [])
    for key in ("is_featured", "is_active"):
        if key in encoded:
            encoded[key] = 1 if encoded[key] else 0
    return encoded


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CatalogStore:
    def __init__(self, db_url: str, clock: Clock = utc_now) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)
        self._clock = clock

    def _now(self) -> str:
        return self._clock().isoformat(timespec="microseconds")

    # ------------------------------------------------------------------
    # Slug plumbing
    # ------------------------------------------------------------------

    def _slug_taken(self, table: Table, slug: str, exclude_id: Optional[int] = None) -> bool:
        stmt = select(table.c.id).where(table.c.slug == slug)
        if exclude_id is not None:
            stmt = stmt.where(table.c.id != exclude_id)
        with self.engine.connect() as conn:
            return conn.execute(stmt).first() is not None

    def _write_with_slug(
        self,
        table: Table,
        name: str,
        write: Callable[[Connection, str], Any],
        exclude_id: Optional[int] = None,
    ) -> Any:
        """Run write(conn, slug) under a fresh unique slug derived from name.

        IntegrityErrors not caused by the slug (name, SKU) propagate unchanged.
        """

        def attempt(slug: str) -> Any:
            try:
                with self.engine.connect() as conn:
                    result = write(conn, slug)
                    conn.commit()
                    return result
            except IntegrityError as exc:
                if self._slug_taken(table, slug, exclude_id):
                    raise SlugCollision(slug) from exc
                raise

        return create_with_unique_slug(name, lambda s: self._slug_taken(table, s, exclude_id), attempt)

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    def _category_select(self):
        counts = (
            select(_products.c.category_id, func.count().label("n")).group_by(_products.c.category_id).subquery()
        )
        return select(_categories, func.coalesce(counts.c.n, 0).label("product_count")).select_from(
            _categories.outerjoin(counts, counts.c.category_id == _categories.c.id)
        )

    def get_category(self, category_id: int) -> Optional[Category]:
        with self.engine.connect() as conn:
            row = conn.execute(self._category_select().where(_categories.c.id == category_id)).fetchone()
        return _row_to_category(row) if row is not None else None

    def _name_taken(self, name: str, exclude_id: Optional[int] = None) -> bool:
        stmt = select(_categories.c.id).where(func.lower(_categories.c.name) == name.strip().lower())
        if exclude_id is not None:
            stmt = stmt.where(_categories.c.id != exclude_id)
        with self.engine.connect() as conn:
            return conn.execute(stmt).first() is not None

    def create_category(self, category: Category) -> Category:
        """Insert a category under a unique slug. Raises Conflict on a duplicate name."""
        name = category.name.strip()
        _require_sluggable(name)
        if self._name_taken(name):
            raise Conflict("Category with this name already exists", code="category_exists")

        now = self._now()

        def insert(conn: Connection, slug: str) -> int:
            result = conn.execute(
                _categories.insert().values(
                    name=name,
                    slug=slug,
                    description=category.description,
                    image_url=category.image_url,
                    is_active=1 if category.is_active else 0,
                    created_at=now,
                    updated_at=now,
                )
            )
            return result.inserted_primary_key[0]

        try:
            category_id = self._write_with_slug(_categories, name, insert)
        except IntegrityError as exc:
            raise Conflict("Category with this name already exists", code="category_exists") from exc
        logger.info("Category %d created", category_id)
        return self.get_category(category_id)

    def list_categories(
        self, page: PageParams, search: Optional[str] = None, is_active: Optional[bool] = None
    ) -> tuple[list[Category], int]:
        """Return one page of categories, newest first, plus the filtered total."""
        conditions: list = []
        if search:
            conditions.append(or_(_contains(_categories.c.name, search), _contains(_categories.c.description, search)))
        if is_active is not None:
            conditions.append(_categories.c.is_active == (1 if is_active else 0))

        stmt = (
            _where(self._category_select(), conditions)
            .order_by(_categories.c.created_at.desc(), _categories.c.id.desc())
            .offset(page.offset)
            .limit(page.limit)
        )
        count_stmt = _where(select(func.count()).select_from(_categories), conditions)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
            total = conn.execute(count_stmt).scalar_one()
        return [_row_to_category(r) for r in rows], total

    def update_category(self, category_id: int, **fields) -> Category:
        """Update a category. A changed name gets a new slug unique among the others.

        Raises NotFound for an unknown id and Conflict for a duplicate name.
        """
        unknown = set(fields) - _CATEGORY_FIELDS
        if unknown:
            raise ValueError(f"Unknown category fields: {unknown!r}")
        fields = {k: v for k, v in fields.items() if v is not None or k in _CLEARABLE_CATEGORY_FIELDS}
        existing = self.get_category(category_id)
        if existing is None:
            raise NotFound("Category not found", code="category_not_found")

        values = dict(fields)
        if "is_active" in values:
            values["is_active"] = 1 if values["is_active"] else 0
        values["updated_at"] = self._now()

        new_name = values.get("name")
        if new_name is not None:
            new_name = values["name"] = new_name.strip()
        stmt = _categories.update().where(_categories.c.id == category_id)

        try:
            if new_name is not None and new_name != existing.name:
                _require_sluggable(new_name)
                if self._name_taken(new_name, exclude_id=category_id):
                    raise Conflict("Category with this name already exists", code="category_exists")
                self._write_with_slug(
                    _categories,
                    new_name,
                    lambda conn, slug: conn.execute(stmt.values(slug=slug, **values)),
                    exclude_id=category_id,
                )
            else:
                with self.engine.connect() as conn:
                    conn.execute(stmt.values(**values))
                    conn.commit()
        except IntegrityError as exc:
            raise Conflict("Category with this name already exists", code="category_exists") from exc
        return self.get_category(category_id)

    def delete_category(self, category_id: int) -> None:
        """Delete a category that no product references."""
        category = self.get_category(category_id)
        if category is None:
            raise NotFound("Category not found", code="category_not_found")
        if category.product_count > 0:
            raise BadRequest(
                f"Cannot delete category with {category.product_count} associated products",
                code="category_in_use",
            )
        with self.engine.connect() as conn:
            conn.execute(_categories.delete().where(_categories.c.id == category_id))
            conn.commit()
        logger.info("Category %d deleted", category_id)

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    def _product_select(self):
        return select(
            _products,
            _categories.c.name.label("category_name"),
            _categories.c.slug.label("category_slug"),
        ).select_from(_products.outerjoin(_categories, _products.c.category_id == _categories.c.id))

    def _fetch_products(self, conn: Connection, stmt) -> list[Product]:
        rows = conn.execute(stmt).fetchall()
        ratings = self._rating_summaries(conn, [r.id for r in rows])
        return [_row_to_product(r, *ratings.get(r.id, (0.0, 0))) for r in rows]

    def _rating_summaries(self, conn: Connection, product_ids: list[int]) -> dict[int, tuple[float, int]]:
        """Return {product_id: (average_rating, review_count)} in one grouped query."""
        if not product_ids:
            return {}
        stmt = (
            select(
                _reviews.c.product_id,
                func.avg(_reviews.c.rating).label("average"),
                func.count().label("n"),
            )
            .where(_reviews.c.product_id.in_(product_ids))
            .group_by(_reviews.c.product_id)
        )
        return {row.product_id: (round_rating(row.average), row.n) for row in conn.execute(stmt)}

    def get_product(self, product_id: int) -> Optional[Product]:
        with self.engine.connect() as conn:
            found = self._fetch_products(conn, self._product_select().where(_products.c.id == product_id))
        return found[0] if found else None

    def get_product_by_slug(self, slug: str) -> Optional[Product]:
        with self.engine.connect() as conn:
            found = self._fetch_products(conn, self._product_select().where(_products.c.slug == slug))
        return found[0] if found else None

    def _sku_taken(self, sku: str, exclude_id: Optional[int] = None) -> bool:
        stmt = select(_products.c.id).where(_products.c.sku == sku)
        if exclude_id is not None:
            stmt = stmt.where(_products.c.id != exclude_id)
        with self.engine.connect() as conn:
            return conn.execute(stmt).first() is not None

    def _require_category(self, category_id: int) -> None:
        with self.engine.connect() as conn:
            found = conn.execute(select(_categories.c.id).where(_categories.c.id == category_id)).first()
        if found is None:
            raise NotFound("Category not found", code="category_not_found")

    def create_product(self, product: Product) -> Product:
        """Insert a product under a unique slug.

        Raises NotFound for an unknown category and Conflict for a taken SKU.
        """
        name = product.name.strip()
        _require_sluggable(name)
        _check_discount(product.price, product.discount_price)
        self._require_category(product.category_id)
        if self._sku_taken(product.sku):
            raise Conflict("SKU already exists", code="sku_exists")

        now = self._now()
        values = _encode_product_fields(
            {
                "name": name,
                "description": product.description,
                "price": product.price,
                "discount_price": product.discount_price,
                "stock": product.stock,
                "sku": product.sku,
                "category_id": product.category_id,
                "images": product.images,
                "sizes": product.sizes,
                "colors": product.colors,
                "weight": product.weight,
                "is_featured": product.is_featured,
                "is_active": product.is_active,
                "created_by": product.created_by,
                "created_at": now,
                "updated_at": now,
            }
        )

        def insert(conn: Connection, slug: str) -> int:
            return conn.execute(_products.insert().values(slug=slug, **values)).inserted_primary_key[0]

        try:
            product_id = self._write_with_slug(_products, name, insert)
        except IntegrityError as exc:
            raise Conflict("SKU already exists", code="sku_exists") from exc
        logger.info("Product %d created", product_id)
        return self.get_product(product_id)

    def list_products(self, filters: ProductFilter, page: PageParams) -> tuple[list[Product], int]:
        """Return one page of products matching filters, plus the filtered total."""
        conditions: list = []
        if filters.search:
            columns = [_products.c.name, _products.c.description]
            if filters.search_sku:
                columns.append(_products.c.sku)
            conditions.append(or_(*(_contains(c, filters.search) for c in columns)))
        if filters.category_id is not None:
            conditions.append(_products.c.category_id == filters.category_id)
        if filters.category_slug:
            # An unknown slug matches nothing rather than dropping the filter.
            category_id = select(_categories.c.id).where(_categories.c.slug == filters.category_slug)
            conditions.append(_products.c.category_id == category_id.scalar_subquery())
        if filters.is_featured is not None:
            conditions.append(_products.c.is_featured == (1 if filters.is_featured else 0))
        if filters.is_active is not None:
            conditions.append(_products.c.is_active == (1 if filters.is_active else 0))
        if filters.min_price is not None:
            conditions.append(_products.c.price >= filters.min_price)
        if filters.max_price is not None:
            conditions.append(_products.c.price <= filters.max_price)
        if filters.in_stock:
            conditions.append(_products.c.stock > 0)

        order = _SORTS.get(filters.sort, _SORTS["newest"])
        stmt = _where(self._product_select(), conditions).order_by(*order).offset(page.offset).limit(page.limit)
        count_stmt = _where(select(func.count()).select_from(_products), conditions)
        with self.engine.connect() as conn:
            items = self._fetch_products(conn, stmt)
            total = conn.execute(count_stmt).scalar_one()
        return items, total

    def update_product(self, product_id: int, **fields) -> Product:
        """Update a product. A changed name gets a new slug unique among the others.

        Raises NotFound for an unknown product or category and Conflict for a
        SKU held by another product.
        """
        unknown = set(fields) - _PRODUCT_FIELDS
        if unknown:
            raise ValueError(f"Unknown product fields: {unknown!r}")
        fields = {k: v for k, v in fields.items() if v is not None or k in _CLEARABLE_PRODUCT_FIELDS}
        existing = self.get_product(product_id)
        if existing is None:
            raise NotFound("Product not found", code="product_not_found")

        if "category_id" in fields and fields["category_id"] != existing.category_id:
            self._require_category(fields["category_id"])
        if "sku" in fields and fields["sku"] != existing.sku and self._sku_taken(fields["sku"], product_id):
            raise Conflict("SKU already exists", code="sku_exists")
        _check_discount(
            fields.get("price", existing.price),
            fields["discount_price"] if "discount_price" in fields else existing.discount_price,
        )

        values = _encode_product_fields(fields)
        values["updated_at"] = self._now()
        new_name = values.get("name")
        if new_name is not None:
            new_name = values["name"] = new_name.strip()
        stmt = _products.update().where(_products.c.id == product_id)

        try:
            if new_name is not None and new_name != existing.name:
                _require_sluggable(new_name)
                self._write_with_slug(
                    _products,
                    new_name,
                    lambda conn, slug: conn.execute(stmt.values(slug=slug, **values)),
                    exclude_id=product_id,
                )
            else:
                with self.engine.connect() as conn:
                    conn.execute(stmt.values(**values))
                    conn.commit()
        except IntegrityError as exc:
            raise Conflict("SKU already exists", code="sku_exists") from exc
        return self.get_product(product_id)

    def set_stock(self, product_id: int, stock: int) -> Product:
        return self.update_product(product_id, stock=stock)

    def toggle_featured(self, product_id: int) -> Product:
        existing = self.get_product(product_id)
        if existing is None:
            raise NotFound("Product not found", code="product_not_found")
        return self.update_product(product_id, is_featured=not existing.is_featured)

    def delete_product(self, product_id: int) -> None:
        """Delete a product together with its reviews."""
        with self.engine.connect() as conn:
            conn.execute(_reviews.delete().where(_reviews.c.product_id == product_id))
            result = conn.execute(_products.delete().where(_products.c.id == product_id))
            if result.rowcount == 0:
                conn.rollback()
                raise NotFound("Product not found", code="product_not_found")
            conn.commit()
        logger.info("Product %d deleted", product_id)

    # ------------------------------------------------------------------
    # Public views
    # ------------------------------------------------------------------

    def _visible(self) -> list:
        return [_products.c.is_active == 1, _products.c.stock > 0]

    def featured_products(self, limit: int = FEATURED_LIMIT) -> list[Product]:
        stmt = (
            self._product_select()
            .where(and_(_products.c.is_featured == 1, *self._visible()))
            .order_by(*_SORTS["newest"])
            .limit(limit)
        )
        with self.engine.connect() as conn:
            return self._fetch_products(conn, stmt)

    def related_products(self, product: Product, limit: int = RELATED_LIMIT) -> list[Product]:
        """Other visible products from the same category, newest first."""
        stmt = (
            self._product_select()
            .where(
                and_(
                    _products.c.category_id == product.category_id,
                    _products.c.id != product.id,
                    *self._visible(),
                )
            )
            .order_by(*_SORTS["newest"])
            .limit(limit)
        )
        with self.engine.connect() as conn:
            return self._fetch_products(conn, stmt)

    # ------------------------------------------------------------------
    # Reviews
    # ------------------------------------------------------------------

    def add_review(self, review: Review) -> Review:
        """Record a review against an active product."""
        product = self.get_product(review.product_id)
        if product is None or not product.is_active:
            raise NotFound("Product not found", code="product_not_found")
        if not 1 <= review.rating <= 5:
            raise ValidationFailed("Rating must be between 1 and 5", fields={"rating": "Must be between 1 and 5"})
        created_at = self._now()
        with self.engine.connect() as conn:
            result = conn.execute(
                _reviews.insert().values(
                    product_id=review.product_id,
                    profile_id=review.profile_id,
                    rating=review.rating,
                    comment=review.comment,
                    created_at=created_at,
                )
            )
            conn.commit()
        review.id = result.inserted_primary_key[0]
        review.created_at = created_at
        return review

    def latest_reviews(self, product_id: int, limit: int = DETAIL_REVIEW_LIMIT) -> list[Review]:
        stmt = (
            _reviews.select()
            .where(_reviews.c.product_id == product_id)
            .order_by(_reviews.c.created_at.desc(), _reviews.c.id.desc())
            .limit(limit)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_review(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern -- DB row -> domain dataclass)
# ---------------------------------------------------------------------------


def _row_to_category(row) -> Category:
    return Category(
        id=row.id,
        name=row.name,
        slug=row.slug,
        description=row.description,
        image_url=row.image_url,
        is_active=bool(row.is_active),
        product_count=row.product_count,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_product(row, average_rating: float = 0.0, review_count: int = 0) -> Product:
    return Product(
        id=row.id,
        name=row.name,
        slug=row.slug,
        description=row.description,
        price=row.price,
        discount_price=row.discount_price,
        stock=row.stock,
        sku=row.sku,
        category_id=row.category_id,
        category_name=row.category_name,
        category_slug=row.category_slug,
        images=json.loads(row.images) if row.images else [],
        sizes=json.loads(row.sizes) if row.sizes else [],
        colors=json.loads(row.colors) if row.colors else [],
        weight=row.weight,
        is_featured=bool(row.is_featured),
        is_active=bool(row.is_active),
        created_by=row.created_by,
        average_rating=average_rating,
        review_count=review_count,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_review(row) -> Review:
    return Review(
        id=row.id,
        product_id=row.product_id,
        profile_id=row.profile_id,
        rating=row.rating,
        comment=row.comment,
        created_at=row.created_at,
    )
