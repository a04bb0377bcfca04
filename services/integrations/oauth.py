"""OAuth state management and the Square authorization flow"""
import logging
import secrets
from typing import Optional

from sqlalchemy.orm import Session

from services.cache import get_store
from settings import get_settings
from .square import SquareClient
from .sync.common import parse_timestamp
from .token_store import StoredTokens, save_tokens, get_tokens

logger = logging.getLogger(__name__)

STATE_PREFIX = "oauth_state:"


class MissingCredentialsError(Exception):
    """No stored refresh token for the merchant"""


class OAuthStateManager:
    """Manage OAuth state tokens for CSRF protection"""

    @staticmethod
    def generate_state(merchant_id: str) -> str:
        """
        Generate and store an OAuth state token

        Args:
            merchant_id: Local merchant starting the connection

        Returns:
            State token string
        """
        state = secrets.token_hex(32)
        get_store().set(
            f"{STATE_PREFIX}{state}",
            {"merchant_id": merchant_id},
            ttl_seconds=get_settings().OAUTH_STATE_TTL_SECONDS,
        )
        return state

    @staticmethod
    def validate_state(state: Optional[str]) -> Optional[str]:
        """
        Validate and consume a state token

        Returns:
            The merchant id bound to the state, or None if it is unknown,
            expired or already used
        """
        if not state:
            return None
        data = get_store().pop(f"{STATE_PREFIX}{state}")
        if not data:
            return None
        return data.get("merchant_id")


def build_authorization_url(merchant_id: str) -> str:
    """Start a connection attempt for merchant_id"""
    state = OAuthStateManager.generate_state(merchant_id)
    logger.info(f"Redirecting merchant {merchant_id} to Square OAuth")
    return SquareClient.get_authorization_url(state)


async def complete_authorization(db: Session, merchant_id: str, code: str) -> StoredTokens:
    """Exchange an authorization code and persist the resulting tokens"""
    token_data = await SquareClient.exchange_code_for_tokens(code)
    logger.info(f"Square OAuth tokens received for merchant {merchant_id} ({token_data.get('merchant_id')})")

    tokens = StoredTokens(
        merchant_id=merchant_id,
        square_merchant_id=token_data.get("merchant_id"),
        access_token=token_data["access_token"],
        refresh_token=token_data.get("refresh_token"),
        expires_at=parse_timestamp(token_data.get("expires_at")),
        token_type=token_data.get("token_type") or "bearer",
        scopes=" ".join(SquareClient.get_required_scopes()),
    )
    save_tokens(db, tokens, sync_status="pending")
    return tokens


async def refresh_access_token(db: Session, merchant_id: str) -> StoredTokens:
    """
    Refresh a merchant's access token, keeping every other stored field.

    Raises:
        MissingCredentialsError: no refresh token is stored
    """
    stored = get_tokens(db, merchant_id)
    if stored is None or not stored.refresh_token:
        raise MissingCredentialsError(f"No refresh token found for merchant {merchant_id}")

    token_data = await SquareClient.refresh_access_token(stored.refresh_token)

    stored.access_token = token_data["access_token"]
    stored.refresh_token = token_data.get("refresh_token") or stored.refresh_token
    stored.expires_at = parse_timestamp(token_data.get("expires_at")) or stored.expires_at
    save_tokens(db, stored)

    logger.info(f"Square access token refreshed for merchant {merchant_id}")
    return stored
