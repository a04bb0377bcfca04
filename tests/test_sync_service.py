"""Tests for the initial sync orchestrator."""

from datetime import datetime, timedelta

import pytest

from conftest import (
    SAMPLE_MERCHANT_ID,
    SAMPLE_SQUARE_MERCHANT_ID,
    FakeSquareClient,
    client_factory_for,
    make_booking,
    make_customer,
    make_location,
    make_order,
)
from db_models import Appointment, Connection, Customer, Order
from services.integrations.square import SquareAPIError, SquareClient
from services.integrations.sync_service import SyncService, lookback_start
from services.integrations.token_store import StoredTokens, save_tokens


def _connection(db_session) -> Connection:
    db_session.expire_all()
    return db_session.query(Connection).filter_by(merchant_id=SAMPLE_MERCHANT_ID).one()


def test_lookback_start_format():
    start = datetime.strptime(lookback_start(365), "%Y-%m-%dT%H:%M:%SZ")

    assert abs((datetime.utcnow() - start) - timedelta(days=365)) < timedelta(minutes=1)


@pytest.mark.asyncio
async def test_zero_locations_still_syncs_catalog_and_customers(db_session, connected_merchant):
    fake = FakeSquareClient(customer_pages=[[make_customer("C1")]])

    status = await SyncService(client_factory_for(fake)).run_initial_sync(
        SAMPLE_MERCHANT_ID, SAMPLE_SQUARE_MERCHANT_ID, "EAAAl-token"
    )

    assert status == "success"
    assert fake.access_token == "EAAAl-token"
    assert fake.called("search_catalog")
    assert fake.called("list_customers")
    assert fake.called("search_orders") == []
    assert fake.called("list_bookings") == []
    assert db_session.query(Customer).count() == 1
    connection = _connection(db_session)
    assert connection.sync_status == "success"
    assert connection.sync_completed_at is not None
    assert connection.sync_error is None


@pytest.mark.asyncio
async def test_stages_run_in_order_with_per_location_fan_out(db_session, connected_merchant):
    fake = FakeSquareClient(
        locations=[make_location("L1"), make_location("L2"), make_location("L3", status="INACTIVE")],
        order_pages={"L1": [[make_order("O1", "L1")]], "L2": [[make_order("O2", "L2")]]},
        booking_pages={"L2": [[make_booking("B1", "L2", start_at=lookback_start(30))]]},
    )

    await SyncService(client_factory_for(fake)).run_initial_sync(
        SAMPLE_MERCHANT_ID, SAMPLE_SQUARE_MERCHANT_ID, "EAAAl-token"
    )

    operations = [call[0] for call in fake.calls]
    assert operations[:3] == ["list_locations", "search_catalog", "list_customers"]
    assert max(i for i, op in enumerate(operations) if op == "search_orders") < \
        min(i for i, op in enumerate(operations) if op == "list_bookings")
    assert sorted(call[1] for call in fake.called("search_orders")) == ["L1", "L2"]
    assert {call[1] for call in fake.called("list_bookings")} == {"L1", "L2"}
    assert sorted(row.square_order_id for row in db_session.query(Order).all()) == ["O1", "O2"]
    assert db_session.query(Appointment).count() == 1


@pytest.mark.asyncio
async def test_stage_failure_aborts_remaining_stages(db_session, connected_merchant):
    fake = FakeSquareClient(
        locations=[make_location("L1")],
        errors={"search_catalog": SquareAPIError("Square searchCatalogObjects error (500): boom", status_code=500)},
    )

    with pytest.raises(SquareAPIError):
        await SyncService(client_factory_for(fake)).run_initial_sync(
            SAMPLE_MERCHANT_ID, SAMPLE_SQUARE_MERCHANT_ID, "EAAAl-token"
        )

    assert fake.called("list_customers") == []
    assert fake.called("search_orders") == []
    connection = _connection(db_session)
    assert connection.sync_status == "error"
    assert "boom" in connection.sync_error


@pytest.mark.asyncio
async def test_failure_in_one_location_fails_the_sync(db_session, connected_merchant):
    fake = FakeSquareClient(
        locations=[make_location("L1"), make_location("L2")],
        order_pages={"L1": [[make_order("O1", "L1")]]},
        errors={"search_orders:L2": SquareAPIError("location failed")},
    )

    with pytest.raises(SquareAPIError):
        await SyncService(client_factory_for(fake)).run_initial_sync(
            SAMPLE_MERCHANT_ID, SAMPLE_SQUARE_MERCHANT_ID, "EAAAl-token"
        )

    assert fake.called("list_bookings") == []
    assert _connection(db_session).sync_status == "error"


@pytest.mark.asyncio
async def test_sync_merchant_refreshes_expired_token(db_session, monkeypatch):
    save_tokens(db_session, StoredTokens(
        merchant_id=SAMPLE_MERCHANT_ID,
        square_merchant_id=SAMPLE_SQUARE_MERCHANT_ID,
        access_token="EAAAl-stale",
        refresh_token="EQAAl-refresh",
        expires_at=datetime.utcnow() - timedelta(hours=1),
    ), sync_status="success")

    async def fake_refresh(refresh_token, transport=None):
        return {"access_token": "EAAAl-fresh", "refresh_token": None,
                "expires_at": "2030-01-01T00:00:00Z", "merchant_id": SAMPLE_SQUARE_MERCHANT_ID}

    monkeypatch.setattr(SquareClient, "refresh_access_token", fake_refresh)
    fake = FakeSquareClient()

    await SyncService(client_factory_for(fake)).sync_merchant(SAMPLE_MERCHANT_ID)

    assert fake.access_token == "EAAAl-fresh"
    assert _connection(db_session).sync_status == "success"


@pytest.mark.asyncio
async def test_sync_merchant_without_connection_raises(db_session):
    with pytest.raises(LookupError):
        await SyncService(client_factory_for(FakeSquareClient())).sync_merchant("nobody")
