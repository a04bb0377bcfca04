"""Square webhook verification, durable event log and event processing"""
import base64
import hashlib
import hmac
import json
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database import SessionLocal, safe_commit
from db_models import WebhookEvent
from settings import get_settings
from .square import build_square_client
from .sync import (
    soft_delete_customer,
    sync_catalog,
    sync_single_order,
    upsert_appointments,
    upsert_customers,
    upsert_inventory_counts,
    upsert_payments,
    upsert_team_members,
)
from .sync_service import get_valid_tokens
from .token_store import get_tokens_by_square_merchant

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-square-hmacsha256-signature"

# Event outcomes stored on webhook_events.status
RECEIVED = "received"
PROCESSED = "processed"
IGNORED = "ignored"
FAILED = "failed"


# ============ Verification ============

def compute_signature(body: bytes, notification_url: str, signing_key: str) -> str:
    digest = hmac.new(
        signing_key.encode("utf-8"),
        notification_url.encode("utf-8") + body,
        hashlib.sha256,
    ).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(
    body: bytes,
    signature: Optional[str],
    notification_url: Optional[str] = None,
    signing_key: Optional[str] = None,
) -> bool:
    """
    Check the HMAC-SHA256 signature Square sends with every webhook.

    body must be the raw request bytes exactly as received.
    """
    settings = get_settings()
    signing_key = signing_key if signing_key is not None else settings.SQUARE_WEBHOOK_SIGNATURE_KEY
    notification_url = notification_url or settings.webhook_notification_url

    if not signing_key:
        logger.warning("SQUARE_WEBHOOK_SIGNATURE_KEY not set, skipping webhook signature verification")
        return True

    if not signature:
        return False

    expected = compute_signature(body, notification_url, signing_key)
    return hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8"))


# ============ Event log ============

def _event_id(payload: Dict[str, Any], body: bytes) -> str:
    return payload.get("event_id") or hashlib.sha256(body).hexdigest()


def record_event(db: Session, payload: Dict[str, Any], body: bytes) -> Tuple[WebhookEvent, bool]:
    """
    Persist an incoming event before it is acknowledged

    Returns:
        (event row, whether it still needs processing). Redeliveries of an
        event that was already processed or ignored are not processed again.
    """
    event_id = _event_id(payload, body)
    existing = db.query(WebhookEvent).filter(WebhookEvent.event_id == event_id).first()
    if existing is not None:
        logger.info(f"Duplicate Square webhook {event_id} ({existing.status})")
        return existing, existing.status not in (PROCESSED, IGNORED)

    event = WebhookEvent(
        event_id=event_id,
        event_type=payload.get("type"),
        square_merchant_id=payload.get("merchant_id"),
        payload=body.decode("utf-8"),
        status=RECEIVED,
        attempts=0,
        received_at=datetime.utcnow(),
    )
    db.add(event)
    try:
        safe_commit(db)
    except IntegrityError:
        # Concurrent delivery of the same event won the insert
        existing = db.query(WebhookEvent).filter(WebhookEvent.event_id == event_id).first()
        return existing, False
    return event, True


# ============ Event handlers ============

def _order_id(data: Dict[str, Any]) -> Optional[str]:
    obj = data.get("object") or {}
    return (
        (obj.get("order_created") or {}).get("order_id")
        or (obj.get("order_updated") or {}).get("order_id")
        or (obj.get("order_fulfillment_updated") or {}).get("order_id")
        or data.get("id")
    )


async def _handle_order(client, merchant_id: str, data: Dict[str, Any]) -> None:
    order_id = _order_id(data)
    if order_id:
        await sync_single_order(client, merchant_id, order_id)


async def _handle_customer(client, merchant_id: str, data: Dict[str, Any]) -> None:
    customer = (data.get("object") or {}).get("customer")
    if customer:
        upsert_customers([customer], merchant_id)


async def _handle_customer_deleted(client, merchant_id: str, data: Dict[str, Any]) -> None:
    customer_id = ((data.get("object") or {}).get("customer") or {}).get("id") or data.get("id")
    if customer_id:
        soft_delete_customer(merchant_id, customer_id)


async def _handle_booking(client, merchant_id: str, data: Dict[str, Any]) -> None:
    booking = (data.get("object") or {}).get("booking")
    if booking:
        upsert_appointments([booking], merchant_id, booking.get("location_id"))


async def _handle_payment(client, merchant_id: str, data: Dict[str, Any]) -> None:
    payment = (data.get("object") or {}).get("payment")
    if payment:
        upsert_payments([payment], merchant_id)


async def _handle_inventory(client, merchant_id: str, data: Dict[str, Any]) -> None:
    counts = (data.get("object") or {}).get("inventory_counts") or []
    upsert_inventory_counts(counts, merchant_id)


async def _handle_team_member(client, merchant_id: str, data: Dict[str, Any]) -> None:
    member = (data.get("object") or {}).get("team_member")
    if member:
        upsert_team_members([member], merchant_id)


async def _handle_catalog(client, merchant_id: str, data: Dict[str, Any]) -> None:
    logger.info(f"Catalog updated, re-syncing catalog for merchant {merchant_id}")
    await sync_catalog(client, merchant_id)


EVENT_HANDLERS: Dict[str, Callable[[Any, str, Dict[str, Any]], Awaitable[None]]] = {
    "order.created": _handle_order,
    "order.updated": _handle_order,
    "order.fulfillment.updated": _handle_order,
    "customer.created": _handle_customer,
    "customer.updated": _handle_customer,
    "customer.deleted": _handle_customer_deleted,
    "booking.created": _handle_booking,
    "booking.updated": _handle_booking,
    "payment.created": _handle_payment,
    "payment.updated": _handle_payment,
    "inventory.count.updated": _handle_inventory,
    "team_member.created": _handle_team_member,
    "team_member.updated": _handle_team_member,
    "catalog.version.updated": _handle_catalog,
}


async def process_event(
    event: Dict[str, Any],
    client_factory: Optional[Callable] = None,
) -> Tuple[str, Optional[str]]:
    """
    Route one webhook payload to its handler

    Returns:
        (outcome, local merchant id); outcome is "processed" or "ignored"

    Raises:
        Whatever the handler raises; the caller records the failure
    """
    event_type = event.get("type")
    square_merchant_id = event.get("merchant_id")
    logger.info(f"Processing Square webhook {event_type} for {square_merchant_id}")

    handler = EVENT_HANDLERS.get(event_type)
    if handler is None:
        logger.info(f"Unhandled Square webhook event type {event_type}")
        return IGNORED, None

    db = SessionLocal()
    try:
        stored = get_tokens_by_square_merchant(db, square_merchant_id)
        if stored is None:
            logger.warning(f"Received webhook for unknown Square merchant {square_merchant_id}")
            return IGNORED, None
        tokens = await get_valid_tokens(db, stored.merchant_id)
    finally:
        db.close()

    client = (client_factory or build_square_client)(tokens.access_token)
    await handler(client, tokens.merchant_id, event.get("data") or {})
    return PROCESSED, tokens.merchant_id


async def handle_recorded_event(event_row_id: int, client_factory: Optional[Callable] = None) -> None:
    """Process a logged event and store the outcome; never raises"""
    try:
        db = SessionLocal()
        try:
            row = db.get(WebhookEvent, event_row_id)
            if row is None:
                return
            row.attempts = (row.attempts or 0) + 1
            event_id, event_type, payload = row.event_id, row.event_type, row.payload
            safe_commit(db)
        finally:
            db.close()

        values: Dict[str, Any] = {}
        try:
            outcome, merchant_id = await process_event(json.loads(payload), client_factory)
        except Exception as e:
            logger.error(f"Square webhook {event_id} ({event_type}) failed: {e}", exc_info=True)
            values = {"status": FAILED, "error": str(e)}
        else:
            values = {
                "status": outcome,
                "merchant_id": merchant_id,
                "error": None,
                "processed_at": datetime.utcnow(),
            }

        db = SessionLocal()
        try:
            db.query(WebhookEvent).filter(WebhookEvent.id == event_row_id).update(values, synchronize_session=False)
            safe_commit(db)
        finally:
            db.close()
    except Exception as e:
        logger.error(f"Could not record outcome for webhook event {event_row_id}: {e}", exc_info=True)


def pending_event_ids(db: Session, older_than: Optional[datetime] = None) -> List[int]:
    settings = get_settings()
    if older_than is None:
        older_than = datetime.utcnow() - timedelta(minutes=settings.WEBHOOK_RETRY_INTERVAL_MINUTES)
    rows = db.query(WebhookEvent.id).filter(
        WebhookEvent.status.in_([RECEIVED, FAILED]),
        WebhookEvent.attempts < settings.WEBHOOK_MAX_ATTEMPTS,
        WebhookEvent.received_at <= older_than,
    ).order_by(WebhookEvent.received_at).all()
    return [row.id for row in rows]


async def replay_pending_events(older_than: Optional[datetime] = None) -> int:
    """Retry events that were never processed or failed, oldest first"""
    db = SessionLocal()
    try:
        event_ids = pending_event_ids(db, older_than)
    finally:
        db.close()

    for event_row_id in event_ids:
        await handle_recorded_event(event_row_id)

    if event_ids:
        logger.info(f"Replayed {len(event_ids)} Square webhook event(s)")
    return len(event_ids)
