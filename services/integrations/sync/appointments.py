"""Appointments (Square Bookings) sync"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from database import transaction
from db_models import Appointment
from ..square import SquareAPIError
from .common import dump_raw, format_timestamp, paginate, parse_timestamp, upsert

logger = logging.getLogger(__name__)

# Widest start_at range ListBookings accepts
BOOKING_WINDOW = timedelta(days=31)

UPDATE_COLUMNS = (
    "square_location_id", "square_customer_id", "customer_note", "team_member_id",
    "service_variation_id", "service_variation_version", "duration_minutes",
    "status", "no_show", "start_at", "updated_at", "raw_data",
)


def upsert_appointments(bookings: List[Dict[str, Any]], merchant_id: str, location_id: Optional[str] = None) -> None:
    """Upsert one page of bookings in a single transaction"""
    with transaction() as db:
        for b in bookings:
            segments = b.get("appointment_segments") or [{}]
            seg = segments[0] or {}
            status = b.get("status")
            upsert(
                db,
                Appointment,
                {
                    "merchant_id": merchant_id,
                    "square_booking_id": b["id"],
                    "square_location_id": b.get("location_id") or location_id,
                    "square_customer_id": b.get("customer_id"),
                    "customer_note": b.get("customer_note"),
                    "team_member_id": seg.get("team_member_id"),
                    "service_variation_id": seg.get("service_variation_id"),
                    "service_variation_version": seg.get("service_variation_version"),
                    "duration_minutes": seg.get("duration_minutes"),
                    "status": status,
                    "no_show": status == "NO_SHOW",
                    "source": b.get("source") or "FIRST_PARTY_MERCHANT",
                    "start_at": parse_timestamp(b.get("start_at")),
                    "created_at": parse_timestamp(b.get("created_at")),
                    "updated_at": parse_timestamp(b.get("updated_at")),
                    "raw_data": dump_raw(b),
                },
                index_elements=("merchant_id", "square_booking_id"),
                update_columns=UPDATE_COLUMNS,
            )


def booking_windows(start_at: str, now: Optional[datetime] = None) -> List[Tuple[str, str]]:
    """
    Split [start_at, now] into consecutive (start_at_min, start_at_max) ranges
    Square accepts. The last range runs past now so upcoming bookings in the
    next month are included.
    """
    now = now or datetime.utcnow()
    windows = []
    window_start = parse_timestamp(start_at)
    while window_start < now:
        window_end = window_start + BOOKING_WINDOW
        windows.append((format_timestamp(window_start), format_timestamp(window_end)))
        window_start = window_end
    return windows


async def sync_appointments(client, merchant_id: str, location_id: str, start_at: str) -> int:
    """
    Pull bookings for one location, one 31 day window at a time.

    Merchants without Square Appointments get an error response here; that is
    treated as zero bookings rather than a failed sync.
    """
    total = 0
    try:
        for window_min, window_max in booking_windows(start_at):
            total += await paginate(
                lambda cursor: client.list_bookings(
                    location_id=location_id,
                    start_at_min=window_min,
                    start_at_max=window_max,
                    cursor=cursor,
                ),
                "bookings",
                lambda bookings: upsert_appointments(bookings, merchant_id, location_id),
            )
    except SquareAPIError as e:
        if e.is_feature_unavailable():
            logger.info(f"Square Appointments not enabled for merchant {merchant_id}")
            return 0
        raise

    logger.info(f"Appointments sync complete for merchant {merchant_id}: {total} bookings for location {location_id}")
    return total
