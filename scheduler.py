"""
Background job scheduler for Square sync maintenance.
Uses APScheduler to re-sync merchants nightly, refresh expiring tokens,
replay unprocessed webhooks and purge expired OAuth states.
"""
import logging
from datetime import datetime, timedelta
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import func, or_

from database import SessionLocal
from db_models import Connection
from settings import get_settings

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


async def sync_all_merchants():
    """
    Nightly job: full re-sync of every connection not already syncing.

    A connection left pending for longer than SYNC_STALE_PENDING_HOURS lost
    its background sync (e.g. a restart mid-run) and is picked up again.
    """
    logger.info(f"Starting scheduled Square sync at {datetime.utcnow()}")
    stale_before = datetime.utcnow() - timedelta(hours=get_settings().SYNC_STALE_PENDING_HOURS)

    db = SessionLocal()
    try:
        merchant_ids = [
            row.merchant_id for row in db.query(Connection.merchant_id).filter(
                or_(
                    Connection.sync_status != "pending",
                    Connection.sync_status.is_(None),
                    func.coalesce(Connection.sync_started_at, Connection.updated_at) < stale_before,
                )
            ).all()
        ]
    finally:
        db.close()

    logger.info(f"Found {len(merchant_ids)} connection(s) to sync")

    # Import here to avoid circular imports
    from services.integrations.sync_service import SyncService

    sync_service = SyncService()
    for merchant_id in merchant_ids:
        try:
            await sync_service.sync_merchant(merchant_id)
        except Exception as e:
            logger.error(f"Error syncing merchant {merchant_id}: {e}")

    logger.info(f"Scheduled Square sync completed at {datetime.utcnow()}")


async def refresh_expiring_tokens():
    """Refresh access tokens that expire within the refresh window."""
    from services.integrations.oauth import refresh_access_token

    settings = get_settings()
    cutoff = datetime.utcnow() + timedelta(days=settings.TOKEN_REFRESH_WINDOW_DAYS)

    db = SessionLocal()
    try:
        merchant_ids = [
            row.merchant_id for row in db.query(Connection.merchant_id).filter(
                Connection.expires_at.isnot(None),
                Connection.expires_at <= cutoff,
                Connection.refresh_token_enc.isnot(None),
            ).all()
        ]

        for merchant_id in merchant_ids:
            try:
                await refresh_access_token(db, merchant_id)
            except Exception as e:
                db.rollback()
                logger.error(f"Token refresh failed for merchant {merchant_id}: {e}")
    finally:
        db.close()

    return len(merchant_ids)


async def replay_webhooks():
    """Retry webhook events that were never processed or failed."""
    from services.integrations.webhooks import replay_pending_events

    try:
        await replay_pending_events()
    except Exception as e:
        logger.error(f"Webhook replay job failed: {e}")


def purge_oauth_states():
    from services.cache import get_store

    purged = get_store().purge_expired()
    if purged:
        logger.debug(f"Purged {purged} expired OAuth state(s)")


def start_scheduler():
    """Start the background scheduler."""
    settings = get_settings()

    if settings.SYNC_ENABLED:
        # Nightly sync at configured hour (default 2 AM UTC)
        scheduler.add_job(
            sync_all_merchants,
            trigger=CronTrigger(hour=settings.SYNC_SCHEDULE_HOUR, minute=0),
            id="daily_sync",
            name="Nightly Square Sync",
            replace_existing=True
        )
    else:
        logger.info("Scheduled sync is disabled (SYNC_ENABLED=false)")

    scheduler.add_job(
        refresh_expiring_tokens,
        trigger=CronTrigger(hour=(settings.SYNC_SCHEDULE_HOUR + 12) % 24, minute=0),
        id="token_refresh",
        name="Square Token Refresh",
        replace_existing=True
    )
    scheduler.add_job(
        replay_webhooks,
        trigger=IntervalTrigger(minutes=settings.WEBHOOK_RETRY_INTERVAL_MINUTES),
        id="webhook_replay",
        name="Square Webhook Replay",
        replace_existing=True
    )
    scheduler.add_job(
        purge_oauth_states,
        trigger=IntervalTrigger(minutes=10),
        id="oauth_state_purge",
        name="OAuth State Purge",
        replace_existing=True
    )

    scheduler.start()
    logger.info(f"Scheduler started - nightly sync at {settings.SYNC_SCHEDULE_HOUR}:00 UTC")


def shutdown_scheduler():
    """Gracefully shutdown the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler shutdown complete")
