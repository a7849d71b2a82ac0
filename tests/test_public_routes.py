"""
tests/test_public_routes.py -- Integration tests for storefront browsing and reviews.

Coverage:
  - GET /api/v1/public/products shows only active, in-stock products
  - filters (category slug, price range, featured), sort, bad sort 422
  - featured and related lists, detail with reviews, 404 for inactive
  - POST /api/v1/products/{id}/reviews: auth required, rating bounds, summary

The catalog is seeded once through the store for the whole module.
"""

from __future__ import annotations

import pytest

from catalog.models import Category, Product

BASE = "/api/v1"


@pytest.fixture(scope="module")
def seeded(api):
    catalog = api.catalog
    bags = catalog.create_category(Category(name="Bags"))
    hats = catalog.create_category(Category(name="Hats"))

    def add(name, sku, category, **fields):
        values = {"price": 40.0, "stock": 4, "description": "Seeded product for browsing"}
        values.update(fields)
        return catalog.create_product(Product(name=name, sku=sku, category_id=category.id, **values))

    return {
        "tote": add("Canvas Tote", "BAG-001", bags, price=25.0),
        "duffel": add("Weekend Duffel", "BAG-002", bags, price=90.0, is_featured=True),
        "backpack": add("Day Backpack", "BAG-003", bags, price=60.0),
        "sold_out": add("Sold Out Clutch", "BAG-004", bags, stock=0, is_featured=True),
        "hidden": add("Hidden Satchel", "BAG-005", bags, is_active=False),
        "beanie": add("Wool Beanie", "HAT-001", hats, price=15.0),
    }


def _names(resp):
    return sorted(p["name"] for p in resp.json()["data"])


class TestListing:
    def test_only_visible_products(self, api, seeded):
        resp = api.client.get(f"{BASE}/public/products")
        assert resp.status_code == 200
        assert _names(resp) == ["Canvas Tote", "Day Backpack", "Weekend Duffel", "Wool Beanie"]
        assert resp.json()["pagination"]["total"] == 4

    def test_category_slug_and_price(self, api, seeded):
        resp = api.client.get(f"{BASE}/public/products", params={"category_slug": "bags", "max_price": 70})
        assert _names(resp) == ["Canvas Tote", "Day Backpack"]

    def test_unknown_category_slug_matches_nothing(self, api, seeded):
        resp = api.client.get(f"{BASE}/public/products", params={"category_slug": "shoes"})
        assert resp.json()["data"] == []

    def test_featured_filter(self, api, seeded):
        assert _names(api.client.get(f"{BASE}/public/products", params={"is_featured": "true"})) == ["Weekend Duffel"]
        assert len(api.client.get(f"{BASE}/public/products", params={"is_featured": "false"}).json()["data"]) == 4

    def test_sort_by_price(self, api, seeded):
        resp = api.client.get(f"{BASE}/public/products", params={"sort": "price_desc"})
        assert [p["price"] for p in resp.json()["data"]] == [90.0, 60.0, 25.0, 15.0]

    def test_unknown_sort_is_422(self, api, seeded):
        resp = api.client.get(f"{BASE}/public/products", params={"sort": "random"})
        assert resp.status_code == 422
        assert "sort" in resp.json()["error"]["fields"]

    def test_search(self, api, seeded):
        assert _names(api.client.get(f"{BASE}/public/products", params={"search": "duff"})) == ["Weekend Duffel"]


class TestFeaturedAndRelated:
    def test_featured(self, api, seeded):
        resp = api.client.get(f"{BASE}/public/products/featured")
        assert _names(resp) == ["Weekend Duffel"]

    def test_related(self, api, seeded):
        resp = api.client.get(f"{BASE}/public/products/{seeded['tote'].slug}/related")
        assert _names(resp) == ["Day Backpack", "Weekend Duffel"]

    def test_related_limit(self, api, seeded):
        resp = api.client.get(f"{BASE}/public/products/{seeded['tote'].slug}/related", params={"limit": 1})
        assert len(resp.json()["data"]) == 1


class TestDetail:
    def test_detail(self, api, seeded):
        resp = api.client.get(f"{BASE}/public/products/{seeded['beanie'].slug}")
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["name"] == "Wool Beanie"
        assert data["category"]["slug"] == "hats"
        assert data["reviews"] == []

    def test_inactive_is_404(self, api, seeded):
        resp = api.client.get(f"{BASE}/public/products/{seeded['hidden'].slug}")
        assert resp.status_code == 404
        assert resp.json()["message"] == "Product not found"

    def test_unknown_slug_is_404(self, api, seeded):
        assert api.client.get(f"{BASE}/public/products/no-such-thing").status_code == 404


class TestReviews:
    def test_requires_auth(self, api, seeded):
        resp = api.client.post(f"{BASE}/products/{seeded['tote'].id}/reviews", json={"rating": 5})
        assert resp.status_code == 401

    def test_rating_bounds(self, api, seeded):
        resp = api.client.post(
            f"{BASE}/products/{seeded['tote'].id}/reviews", json={"rating": 0}, headers=api.user_headers
        )
        assert resp.status_code == 422

    def test_add_and_summarize(self, api, seeded):
        product_id = seeded["backpack"].id
        for rating, headers in ((5, api.user_headers), (4, api.admin_headers)):
            resp = api.client.post(
                f"{BASE}/products/{product_id}/reviews",
                json={"rating": rating, "comment": "Solid"},
                headers=headers,
            )
            assert resp.status_code == 201, resp.text
            assert resp.json()["message"] == "Review added successfully"

        detail = api.client.get(f"{BASE}/public/products/{seeded['backpack'].slug}").json()["data"]
        assert detail["review_count"] == 2
        assert detail["average_rating"] == 4.5
        assert {r["profile_id"] for r in detail["reviews"]} == {api.user.id, api.admin.id}

    def test_inactive_product_cannot_be_reviewed(self, api, seeded):
        resp = api.client.post(
            f"{BASE}/products/{seeded['hidden'].id}/reviews", json={"rating": 3}, headers=api.user_headers
        )
        assert resp.status_code == 404
