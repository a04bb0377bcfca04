"""Tests for the encrypted credential store and token refresh."""

from datetime import datetime, timedelta

import pytest

from conftest import SAMPLE_MERCHANT_ID, SAMPLE_SQUARE_MERCHANT_ID
from db_models import Connection
from services.crypto import TokenDecryptionError
from services.integrations.oauth import MissingCredentialsError, refresh_access_token
from services.integrations.square import SquareClient
from services.integrations.token_store import (
    StoredTokens,
    delete_tokens,
    get_tokens,
    get_tokens_by_square_merchant,
    is_token_expired,
    save_tokens,
)


def test_tokens_are_encrypted_at_rest(db_session, connected_merchant):
    row = db_session.query(Connection).one()

    assert row.access_token_enc != connected_merchant.access_token
    assert connected_merchant.access_token not in row.access_token_enc
    assert get_tokens(db_session, SAMPLE_MERCHANT_ID).access_token == connected_merchant.access_token


def test_save_replaces_existing_row(db_session, connected_merchant):
    replacement = StoredTokens(
        merchant_id=SAMPLE_MERCHANT_ID,
        square_merchant_id=SAMPLE_SQUARE_MERCHANT_ID,
        access_token="EAAAl-new",
        refresh_token="EQAAl-new",
        expires_at=None,
    )
    save_tokens(db_session, replacement)

    assert db_session.query(Connection).count() == 1
    stored = get_tokens(db_session, SAMPLE_MERCHANT_ID)
    assert stored.access_token == "EAAAl-new"
    assert stored.refresh_token == "EQAAl-new"
    # Sync status untouched when not given
    assert db_session.query(Connection).one().sync_status == "pending"


def test_reauthorization_resets_connected_at(db_session, connected_merchant):
    row = db_session.query(Connection).one()
    row.connected_at = datetime.utcnow() - timedelta(days=90)
    db_session.commit()

    # Token refresh keeps the original connection time
    save_tokens(db_session, connected_merchant)
    db_session.expire_all()
    assert db_session.query(Connection).one().connected_at < datetime.utcnow() - timedelta(days=89)

    # A new OAuth exchange passes a sync status and counts as reconnecting
    save_tokens(db_session, connected_merchant, sync_status="pending")
    db_session.expire_all()
    assert db_session.query(Connection).one().connected_at > datetime.utcnow() - timedelta(minutes=1)


def test_reverse_lookup_by_square_merchant(db_session, connected_merchant):
    stored = get_tokens_by_square_merchant(db_session, SAMPLE_SQUARE_MERCHANT_ID)

    assert stored.merchant_id == SAMPLE_MERCHANT_ID
    assert get_tokens_by_square_merchant(db_session, "UNKNOWN") is None
    assert get_tokens_by_square_merchant(db_session, None) is None


def test_delete_removes_row(db_session, connected_merchant):
    assert delete_tokens(db_session, SAMPLE_MERCHANT_ID) is True
    assert get_tokens(db_session, SAMPLE_MERCHANT_ID) is None
    assert delete_tokens(db_session, SAMPLE_MERCHANT_ID) is False


def test_tampered_stored_token_raises(db_session, connected_merchant):
    row = db_session.query(Connection).one()
    key_id, body = row.access_token_enc.split(":", 1)
    flipped = "A" if body[5] != "A" else "B"
    row.access_token_enc = f"{key_id}:{body[:5]}{flipped}{body[6:]}"
    db_session.commit()

    with pytest.raises(TokenDecryptionError):
        get_tokens(db_session, SAMPLE_MERCHANT_ID)


def test_expiry_margin():
    now = datetime(2024, 6, 1, 12, 0, 0)

    assert is_token_expired(None, now) is False
    assert is_token_expired(now - timedelta(minutes=1), now) is True
    assert is_token_expired(now + timedelta(minutes=4), now) is True
    assert is_token_expired(now + timedelta(minutes=10), now) is False


@pytest.mark.asyncio
async def test_refresh_without_credentials_raises(db_session):
    with pytest.raises(MissingCredentialsError):
        await refresh_access_token(db_session, "merchant_without_connection")


@pytest.mark.asyncio
async def test_refresh_persists_new_pair_and_keeps_other_fields(db_session, connected_merchant, monkeypatch):
    seen = {}

    async def fake_refresh(refresh_token, transport=None):
        seen["refresh_token"] = refresh_token
        return {
            "access_token": "EAAAl-refreshed",
            "refresh_token": refresh_token,
            "expires_at": "2030-01-01T00:00:00Z",
            "merchant_id": SAMPLE_SQUARE_MERCHANT_ID,
            "token_type": "bearer",
        }

    monkeypatch.setattr(SquareClient, "refresh_access_token", fake_refresh)

    tokens = await refresh_access_token(db_session, SAMPLE_MERCHANT_ID)

    assert seen["refresh_token"] == "EQAAl-refresh-token"
    assert tokens.access_token == "EAAAl-refreshed"
    stored = get_tokens(db_session, SAMPLE_MERCHANT_ID)
    assert stored.access_token == "EAAAl-refreshed"
    assert stored.expires_at == datetime(2030, 1, 1)
    assert stored.square_merchant_id == SAMPLE_SQUARE_MERCHANT_ID
    assert stored.scopes == "ORDERS_READ CUSTOMERS_READ"
