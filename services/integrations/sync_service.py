"""Initial and repeat synchronization of a merchant's Square data"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Optional

from sqlalchemy.orm import Session

from database import SessionLocal, transaction
from settings import get_settings
from .oauth import refresh_access_token
from .square import build_square_client
from .sync import (
    sync_appointments,
    sync_catalog,
    sync_customers,
    sync_locations,
    sync_orders,
)
from .sync.common import format_timestamp
from .token_store import (
    StoredTokens,
    get_tokens,
    is_token_expired,
    mark_sync_complete,
    mark_sync_started,
)

logger = logging.getLogger(__name__)


async def get_valid_tokens(db: Session, merchant_id: str) -> Optional[StoredTokens]:
    """Load a merchant's tokens, refreshing the access token first if it is about to expire"""
    tokens = get_tokens(db, merchant_id)
    if tokens is None:
        return None
    if is_token_expired(tokens.expires_at) and tokens.refresh_token:
        logger.info(f"Access token for merchant {merchant_id} expired, refreshing")
        tokens = await refresh_access_token(db, merchant_id)
    return tokens


def lookback_start(days: Optional[int] = None) -> str:
    """RFC 3339 start timestamp for historical order and booking pulls"""
    if days is None:
        days = get_settings().INITIAL_SYNC_LOOKBACK_DAYS
    return format_timestamp(datetime.utcnow() - timedelta(days=days))


class SyncService:
    """Runs the entity syncs for one merchant in dependency order"""

    def __init__(self, client_factory: Optional[Callable] = None):
        self.client_factory = client_factory or build_square_client

    async def _fan_out(
        self,
        stage: Callable[..., Awaitable[int]],
        client,
        merchant_id: str,
        location_ids: List[str],
        start_at: str,
    ) -> int:
        """
        Run one stage for every location concurrently.

        The first failure cancels the sibling tasks and is re-raised.
        """
        if not location_ids:
            return 0

        tasks = [
            asyncio.ensure_future(stage(client, merchant_id, location_id, start_at))
            for location_id in location_ids
        ]
        try:
            results = await asyncio.gather(*tasks)
        except Exception:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        return sum(results)

    async def run_initial_sync(
        self,
        merchant_id: str,
        square_merchant_id: Optional[str],
        access_token: str,
    ) -> str:
        """
        Execute a full sync for a merchant

        Stages run in order: locations, catalog, customers, orders, appointments.
        Any stage failure aborts the rest and is recorded on the connection.

        Returns:
            Final sync status ("success")

        Raises:
            The first stage failure, after the connection is marked "error"
        """
        with transaction() as db:
            mark_sync_started(db, merchant_id)

        logger.info(f"Starting Square sync for merchant {merchant_id} ({square_merchant_id})")
        client = self.client_factory(access_token)
        start_at = lookback_start()

        try:
            location_ids = await sync_locations(client, merchant_id)
            catalog_count = await sync_catalog(client, merchant_id)
            customer_count = await sync_customers(client, merchant_id)
            order_count = await self._fan_out(sync_orders, client, merchant_id, location_ids, start_at)
            booking_count = await self._fan_out(sync_appointments, client, merchant_id, location_ids, start_at)
        except Exception as e:
            logger.error(f"Square sync failed for merchant {merchant_id}: {e}")
            with transaction() as db:
                mark_sync_complete(db, merchant_id, "error", str(e))
            raise

        with transaction() as db:
            mark_sync_complete(db, merchant_id, "success")

        logger.info(
            f"Square sync complete for merchant {merchant_id}: "
            f"{len(location_ids)} active location(s), {catalog_count} catalog objects, "
            f"{customer_count} customers, {order_count} orders, {booking_count} bookings"
        )
        return "success"

    async def sync_merchant(self, merchant_id: str) -> str:
        """Re-run the full sync from stored credentials"""
        db = SessionLocal()
        try:
            tokens = await get_valid_tokens(db, merchant_id)
        finally:
            db.close()

        if tokens is None:
            raise LookupError(f"No Square connection for merchant {merchant_id}")

        return await self.run_initial_sync(merchant_id, tokens.square_merchant_id, tokens.access_token)


async def run_initial_sync_task(merchant_id: str, square_merchant_id: Optional[str], access_token: str) -> None:
    """Background entry point after OAuth; failures are logged, never raised"""
    try:
        await SyncService().run_initial_sync(merchant_id, square_merchant_id, access_token)
    except Exception as e:
        logger.error(f"Background Square sync for merchant {merchant_id} failed: {e}", exc_info=True)


async def sync_merchant_task(merchant_id: str) -> None:
    """Background entry point for manual and scheduled re-syncs"""
    try:
        await SyncService().sync_merchant(merchant_id)
    except Exception as e:
        logger.error(f"Square re-sync for merchant {merchant_id} failed: {e}", exc_info=True)
