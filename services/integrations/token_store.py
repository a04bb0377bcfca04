"""Encrypted storage of Square OAuth credentials, one row per merchant"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from database import safe_commit
from db_models import Connection
from services.crypto import encrypt_token, decrypt_token

logger = logging.getLogger(__name__)

# Treat tokens this close to expiry as already expired
EXPIRY_MARGIN = timedelta(minutes=5)


@dataclass
class StoredTokens:
    merchant_id: str
    square_merchant_id: Optional[str]
    access_token: str
    refresh_token: Optional[str]
    expires_at: Optional[datetime]
    token_type: str = "bearer"
    scopes: str = ""
    connected_at: Optional[datetime] = None


def _to_tokens(connection: Connection) -> StoredTokens:
    # TokenDecryptionError propagates: a bad ciphertext is never an empty token
    return StoredTokens(
        merchant_id=connection.merchant_id,
        square_merchant_id=connection.square_merchant_id,
        access_token=decrypt_token(connection.access_token_enc),
        refresh_token=decrypt_token(connection.refresh_token_enc) if connection.refresh_token_enc else None,
        expires_at=connection.expires_at,
        token_type=connection.token_type or "bearer",
        scopes=connection.scopes or "",
        connected_at=connection.connected_at,
    )


def save_tokens(db: Session, tokens: StoredTokens, sync_status: Optional[str] = None) -> Connection:
    """
    Insert or replace the connection row for tokens.merchant_id.

    Only credential fields are overwritten; sync status is touched only when
    sync_status is given. Passing sync_status marks a fresh authorization, so
    connected_at is reset too.
    """
    connection = db.query(Connection).filter(
        Connection.merchant_id == tokens.merchant_id
    ).first()

    if connection is None:
        connection = Connection(merchant_id=tokens.merchant_id)
        db.add(connection)

    connection.square_merchant_id = tokens.square_merchant_id
    connection.access_token_enc = encrypt_token(tokens.access_token)
    connection.refresh_token_enc = encrypt_token(tokens.refresh_token) if tokens.refresh_token else None
    connection.expires_at = tokens.expires_at
    connection.token_type = tokens.token_type
    connection.scopes = tokens.scopes

    if sync_status is not None:
        connection.sync_status = sync_status
        connection.sync_error = None
        connection.connected_at = datetime.utcnow()

    safe_commit(db)
    return connection


def get_connection(db: Session, merchant_id: str) -> Optional[Connection]:
    return db.query(Connection).filter(Connection.merchant_id == merchant_id).first()


def get_tokens(db: Session, merchant_id: str) -> Optional[StoredTokens]:
    connection = get_connection(db, merchant_id)
    if connection is None:
        return None
    return _to_tokens(connection)


def get_tokens_by_square_merchant(db: Session, square_merchant_id: str) -> Optional[StoredTokens]:
    """Reverse lookup used to route webhooks"""
    if not square_merchant_id:
        return None
    connection = db.query(Connection).filter(
        Connection.square_merchant_id == square_merchant_id
    ).order_by(Connection.updated_at.desc()).first()
    if connection is None:
        return None
    return _to_tokens(connection)


def delete_tokens(db: Session, merchant_id: str) -> bool:
    """Remove the connection row; the merchant must re-authorize afterwards"""
    deleted = db.query(Connection).filter(Connection.merchant_id == merchant_id).delete()
    safe_commit(db)
    return deleted > 0


def is_token_expired(expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    if expires_at is None:
        return False
    now = now or datetime.utcnow()
    return expires_at <= now + EXPIRY_MARGIN


def mark_sync_started(db: Session, merchant_id: str) -> None:
    connection = get_connection(db, merchant_id)
    if connection is None:
        return
    connection.sync_status = "pending"
    connection.sync_started_at = datetime.utcnow()
    connection.sync_error = None
    safe_commit(db)


def mark_sync_complete(db: Session, merchant_id: str, status: str, error_message: Optional[str] = None) -> None:
    connection = get_connection(db, merchant_id)
    if connection is None:
        logger.warning(f"Sync finished for merchant {merchant_id} with no connection row")
        return
    connection.sync_status = status
    connection.sync_completed_at = datetime.utcnow()
    connection.sync_error = error_message
    safe_commit(db)
