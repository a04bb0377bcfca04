"""Tests for the scheduled maintenance jobs."""

from datetime import datetime, timedelta

import pytest

import services.integrations.sync_service as sync_service
from conftest import FakeSquareClient, client_factory_for
from db_models import Connection
from scheduler import purge_oauth_states, refresh_expiring_tokens, sync_all_merchants
from services.cache import get_store
from services.integrations.square import SquareClient
from services.integrations.token_store import StoredTokens, get_tokens, save_tokens


def _save(db_session, merchant_id: str, expires_in: timedelta, sync_status: str = "success"):
    save_tokens(db_session, StoredTokens(
        merchant_id=merchant_id,
        square_merchant_id=f"SQ_{merchant_id}",
        access_token=f"EAAAl-{merchant_id}",
        refresh_token=f"EQAAl-{merchant_id}",
        expires_at=datetime.utcnow() + expires_in,
    ), sync_status=sync_status)


@pytest.mark.asyncio
async def test_refresh_only_tokens_inside_window(db_session, monkeypatch):
    _save(db_session, "soon", timedelta(days=3))
    _save(db_session, "later", timedelta(days=25))
    refreshed = []

    async def fake_refresh(refresh_token, transport=None):
        refreshed.append(refresh_token)
        return {"access_token": "EAAAl-renewed", "refresh_token": refresh_token,
                "expires_at": "2030-01-01T00:00:00Z"}

    monkeypatch.setattr(SquareClient, "refresh_access_token", fake_refresh)

    assert await refresh_expiring_tokens() == 1

    assert refreshed == ["EQAAl-soon"]
    db_session.expire_all()
    assert get_tokens(db_session, "soon").access_token == "EAAAl-renewed"
    assert get_tokens(db_session, "later").access_token == "EAAAl-later"


@pytest.mark.asyncio
async def test_nightly_sync_skips_connections_already_syncing(db_session, monkeypatch):
    _save(db_session, "idle", timedelta(days=30), sync_status="success")
    _save(db_session, "busy", timedelta(days=30), sync_status="pending")
    fake = FakeSquareClient()
    monkeypatch.setattr(sync_service, "build_square_client", client_factory_for(fake))

    await sync_all_merchants()

    assert len(fake.called("list_locations")) == 1
    assert fake.access_token == "EAAAl-idle"


@pytest.mark.asyncio
async def test_nightly_sync_retries_stale_pending_connection(db_session, monkeypatch):
    _save(db_session, "stuck", timedelta(days=30), sync_status="pending")
    row = db_session.query(Connection).filter_by(merchant_id="stuck").one()
    row.sync_started_at = datetime.utcnow() - timedelta(days=3)
    db_session.commit()
    fake = FakeSquareClient()
    monkeypatch.setattr(sync_service, "build_square_client", client_factory_for(fake))

    await sync_all_merchants()

    assert len(fake.called("list_locations")) == 1
    assert fake.access_token == "EAAAl-stuck"
    db_session.expire_all()
    assert db_session.query(Connection).filter_by(merchant_id="stuck").one().sync_status == "success"


def test_purge_oauth_states_drops_expired_entries():
    store = get_store()
    store.set("oauth_state:old", {"merchant_id": "m"}, ttl_seconds=0)
    store.set("oauth_state:new", {"merchant_id": "m"}, ttl_seconds=600)

    purge_oauth_states()

    assert store.pop("oauth_state:new") == {"merchant_id": "m"}
    assert "oauth_state:old" not in store._cache
