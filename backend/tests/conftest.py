"""
Pytest fixtures and test infrastructure for foodsync tests.
"""
import pytest
import os
import sys
from datetime import datetime, timezone

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from foodsync.errors import UpstreamUnavailable


FIXED_NOW = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def sqlite_conn():
    """In-memory SQLite database with the foodsync schema."""
    from foodsync.services.database import connect_sqlite, init_schema

    conn = connect_sqlite(':memory:')
    init_schema(conn)
    yield conn
    conn.close()


class FakeOffClient:
    """
    Stand-in for OffClient.

    search_pages maps (query, page) -> payload; a payload that is an
    Exception instance is raised instead of returned.
    """

    def __init__(self, search_pages=None, products=None, default_search=None):
        self.search_pages = search_pages or {}
        self.products = products or {}
        self.default_search = default_search
        self.search_calls = []
        self.product_calls = []

    def search(self, query, locale, page=1, page_size=12, country=None):
        self.search_calls.append((query, locale, page, page_size))
        payload = self.search_pages.get((query, page), self.default_search)
        if isinstance(payload, Exception):
            raise payload
        if payload is None:
            return {'products': [], 'page_count': 1}
        return payload

    def fetch_by_barcode(self, barcode, locale):
        self.product_calls.append((barcode, locale))
        payload = self.products.get(barcode)
        if isinstance(payload, Exception):
            raise payload
        if payload is None:
            raise UpstreamUnavailable('OFF product failed: 404', status_code=404)
        return payload


@pytest.fixture
def fake_client():
    return FakeOffClient()


@pytest.fixture
def api_client(sqlite_conn, fake_client):
    """FastAPI TestClient wired to the in-memory database and fake upstream."""
    from fastapi.testclient import TestClient
    from foodsync.main import app
    from foodsync.services.database import get_db
    from foodsync.services.off_client import get_off_client
    from foodsync.services.rate_limiter import RateLimiter, get_rate_limiter

    limiter = RateLimiter()

    def override_db():
        yield sqlite_conn
        sqlite_conn.commit()

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_off_client] = lambda: fake_client
    app.dependency_overrides[get_rate_limiter] = lambda: limiter

    client = TestClient(app)
    client.limiter = limiter
    yield client
    app.dependency_overrides.clear()


# Helper functions for tests
def make_off_product(code='5900000000001', name='Mleko 2%', **overrides):
    """Build one upstream product dict in the shape OFF returns."""
    product = {
        'code': code,
        'product_name': name,
        'brands': 'Mlekovita',
        'quantity': '1 l',
        'nutriscore_grade': 'b',
        'nova_group': 1,
        'image_front_small_url': f'https://images.example/{code}.jpg',
        'categories_tags': ['en:dairies', 'en:milks'],
        'allergens_tags': ['en:milk'],
        'nutriments': {
            'energy-kcal_100g': 50,
            'proteins_100g': 3.2,
            'fat_100g': 2.0,
            'carbohydrates_100g': 4.7,
            'sugars_100g': 4.7,
            'fiber_100g': 0,
            'salt_100g': 0.1,
        },
    }
    product.update(overrides)
    return product


def make_search_payload(products, page_count=1, count=None):
    return {
        'count': count if count is not None else len(products),
        'page_count': page_count,
        'products': products,
    }
