"""Shared test fixtures for the Square sync test suite."""

import os

# Settings are read at import time by database.py and main.py
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SYNC_ENABLED"] = "false"
os.environ["TOKEN_ENCRYPTION_SECRET"] = "test-token-secret"
os.environ["SQUARE_APP_ID"] = "sq0idp-test-app"
os.environ["SQUARE_APP_SECRET"] = "sq0csp-test-secret"
os.environ["APP_BASE_URL"] = "http://localhost:8000"
os.environ["HTTP_RETRY_BACKOFF_SECONDS"] = "0"
for _name in ("REDIS_URL", "SQUARE_WEBHOOK_SIGNATURE_KEY", "SQUARE_WEBHOOK_NOTIFICATION_URL",
              "SQUARE_REDIRECT_URI", "TOKEN_ENCRYPTION_PREVIOUS_SECRETS", "SENTRY_DSN"):
    os.environ.pop(_name, None)

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

import services.cache
from database import Base, SessionLocal
import db_models  # noqa: F401
from settings import get_settings

SAMPLE_MERCHANT_ID = "merchant_m1"
SAMPLE_SQUARE_MERCHANT_ID = "MLSQ123ABC"
SAMPLE_LOCATION_ID = "L8A2JH3K4"


# ============================================================================
# Mock Response Data
# ============================================================================

def make_location(location_id: str = SAMPLE_LOCATION_ID, status: str = "ACTIVE") -> Dict[str, Any]:
    return {
        "id": location_id,
        "name": f"Store {location_id}",
        "status": status,
        "timezone": "America/Denver",
        "currency": "USD",
        "type": "PHYSICAL",
        "address": {
            "address_line_1": "1600 Champa St",
            "locality": "Denver",
            "administrative_district_level_1": "CO",
            "postal_code": "80202",
            "country": "US",
        },
    }


def make_order(order_id: str, location_id: str = SAMPLE_LOCATION_ID, line_items: Optional[List[Dict]] = None,
               total: int = 1500, state: str = "COMPLETED") -> Dict[str, Any]:
    if line_items is None:
        line_items = [make_line_item("li-1", "Latte", "2", 500)]
    return {
        "id": order_id,
        "location_id": location_id,
        "state": state,
        "customer_id": "CUST1",
        "total_money": {"amount": total, "currency": "USD"},
        "total_tax_money": {"amount": 120, "currency": "USD"},
        "total_tip_money": {"amount": 200, "currency": "USD"},
        "line_items": line_items,
        "created_at": "2024-03-01T15:30:00Z",
        "updated_at": "2024-03-01T15:35:00Z",
        "closed_at": "2024-03-01T15:35:00Z",
        "source": {"name": "Square Point of Sale"},
    }


def make_line_item(uid: str, name: str, quantity: str, price: int) -> Dict[str, Any]:
    return {
        "uid": uid,
        "name": name,
        "quantity": quantity,
        "catalog_object_id": f"VAR_{uid}",
        "variation_name": "Regular",
        "base_price_money": {"amount": price, "currency": "USD"},
        "gross_sales_money": {"amount": price * int(quantity), "currency": "USD"},
        "total_money": {"amount": price * int(quantity), "currency": "USD"},
    }


def make_customer(customer_id: str, given_name: str = "Ada") -> Dict[str, Any]:
    return {
        "id": customer_id,
        "given_name": given_name,
        "family_name": "Lovelace",
        "email_address": f"{customer_id.lower()}@example.com",
        "creation_source": "THIRD_PARTY",
        "created_at": "2024-01-15T10:00:00Z",
        "updated_at": "2024-01-15T10:00:00Z",
    }


def make_booking(booking_id: str, location_id: str = SAMPLE_LOCATION_ID, status: str = "ACCEPTED",
                 start_at: str = "2024-04-02T17:00:00Z") -> Dict[str, Any]:
    return {
        "id": booking_id,
        "location_id": location_id,
        "customer_id": "CUST1",
        "status": status,
        "start_at": start_at,
        "created_at": "2024-03-20T09:00:00Z",
        "updated_at": "2024-03-20T09:00:00Z",
        "appointment_segments": [{
            "team_member_id": "TM1",
            "service_variation_id": "SV1",
            "service_variation_version": 1700000000000,
            "duration_minutes": 45,
        }],
    }


class FakeSquareClient:
    """
    Stand-in for SquareClient. Pages are lists of records; the cursor is the
    index of the next page.
    """

    def __init__(
        self,
        locations: Optional[List[Dict]] = None,
        catalog_pages: Optional[List[List[Dict]]] = None,
        customer_pages: Optional[List[List[Dict]]] = None,
        order_pages: Optional[Dict[str, List[List[Dict]]]] = None,
        booking_pages: Optional[Dict[str, List[List[Dict]]]] = None,
        orders_by_id: Optional[Dict[str, Dict]] = None,
        errors: Optional[Dict[str, Exception]] = None,
    ):
        self.locations = locations or []
        self.catalog_pages = catalog_pages or []
        self.customer_pages = customer_pages or []
        self.order_pages = order_pages or {}
        self.booking_pages = booking_pages or {}
        self.orders_by_id = orders_by_id or {}
        self.errors = errors or {}
        self.calls: List[tuple] = []
        self.access_token: Optional[str] = None

    def _maybe_fail(self, operation: str):
        error = self.errors.get(operation)
        if error is not None:
            raise error

    @staticmethod
    def _page(pages: List[List[Dict]], key: str, cursor: Optional[str]) -> Dict[str, Any]:
        index = int(cursor) if cursor else 0
        if index >= len(pages):
            return {}
        data: Dict[str, Any] = {key: pages[index]}
        if index + 1 < len(pages):
            data["cursor"] = str(index + 1)
        return data

    async def list_locations(self):
        self.calls.append(("list_locations",))
        self._maybe_fail("list_locations")
        return {"locations": self.locations}

    async def search_catalog(self, body):
        self.calls.append(("search_catalog", body))
        self._maybe_fail("search_catalog")
        return self._page(self.catalog_pages, "objects", body.get("cursor"))

    async def list_customers(self, cursor=None, limit=100):
        self.calls.append(("list_customers", cursor))
        self._maybe_fail("list_customers")
        return self._page(self.customer_pages, "customers", cursor)

    async def search_orders(self, body):
        location_id = body["location_ids"][0]
        self.calls.append(("search_orders", location_id, body))
        self._maybe_fail(f"search_orders:{location_id}")
        return self._page(self.order_pages.get(location_id, []), "orders", body.get("cursor"))

    async def retrieve_order(self, order_id):
        self.calls.append(("retrieve_order", order_id))
        self._maybe_fail("retrieve_order")
        order = self.orders_by_id.get(order_id)
        return {"order": order} if order else {}

    async def list_bookings(self, location_id, start_at_min=None, start_at_max=None, cursor=None, limit=100):
        self.calls.append(("list_bookings", location_id, cursor, start_at_min, start_at_max))
        self._maybe_fail("list_bookings")
        data = self._page(self.booking_pages.get(location_id, []), "bookings", cursor)
        if start_at_min and start_at_max and "bookings" in data:
            # Same-format RFC 3339 strings compare chronologically
            data["bookings"] = [
                b for b in data["bookings"] if start_at_min <= b["start_at"] < start_at_max
            ]
        return data

    def called(self, operation: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == operation]


def client_factory_for(fake: FakeSquareClient):
    """Factory that hands out `fake` and remembers the token it was built with"""
    def factory(access_token: str) -> FakeSquareClient:
        fake.access_token = access_token
        return fake
    return factory


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def reset_state():
    """Fresh settings and OAuth state store for every test"""
    get_settings.cache_clear()
    services.cache._store = None
    yield
    get_settings.cache_clear()
    services.cache._store = None


@pytest.fixture(autouse=True)
def test_engine():
    """In-memory SQLite shared by every session the code under test opens"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    SessionLocal.configure(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(test_engine):
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def connected_merchant(db_session):
    """A merchant with stored Square tokens"""
    from services.integrations.token_store import StoredTokens, save_tokens

    tokens = StoredTokens(
        merchant_id=SAMPLE_MERCHANT_ID,
        square_merchant_id=SAMPLE_SQUARE_MERCHANT_ID,
        access_token="EAAAl-access-token",
        refresh_token="EQAAl-refresh-token",
        expires_at=datetime.utcnow() + timedelta(days=30),
        scopes="ORDERS_READ CUSTOMERS_READ",
    )
    save_tokens(db_session, tokens, sync_status="pending")
    return tokens


@pytest.fixture
def api_client():
    """TestClient without startup events (no migrations or scheduler)"""
    from fastapi.testclient import TestClient
    from main import app

    return TestClient(app)
