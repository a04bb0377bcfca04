"""Locations sync"""
import json
import logging
from datetime import datetime
from typing import Any, Dict, List

from database import transaction
from db_models import Location
from .common import dump_raw, upsert

logger = logging.getLogger(__name__)

UPDATE_COLUMNS = (
    "name", "status", "address", "city", "state", "postal_code", "country",
    "timezone", "business_type", "phone_number", "business_hours", "currency",
    "raw_data", "updated_at",
)


def upsert_locations(locations: List[Dict[str, Any]], merchant_id: str) -> None:
    """Upsert one page of locations in a single transaction"""
    now = datetime.utcnow()
    with transaction() as db:
        for loc in locations:
            address = loc.get("address") or {}
            upsert(
                db,
                Location,
                {
                    "merchant_id": merchant_id,
                    "square_location_id": loc["id"],
                    "name": loc.get("name"),
                    "status": loc.get("status"),
                    "address": address.get("address_line_1"),
                    "city": address.get("locality"),
                    "state": address.get("administrative_district_level_1"),
                    "postal_code": address.get("postal_code"),
                    "country": address.get("country") or loc.get("country"),
                    "timezone": loc.get("timezone"),
                    "business_type": loc.get("type"),
                    "phone_number": loc.get("phone_number"),
                    "business_hours": json.dumps(loc.get("business_hours") or {}),
                    "currency": loc.get("currency") or "USD",
                    "raw_data": dump_raw(loc),
                    "updated_at": now,
                },
                index_elements=("merchant_id", "square_location_id"),
                update_columns=UPDATE_COLUMNS,
            )


async def sync_locations(client, merchant_id: str) -> List[str]:
    """
    Upsert every location Square reports and return the ids of the
    ACTIVE ones, which scope the order and appointment syncs.
    """
    data = await client.list_locations()
    locations = data.get("locations") or []

    if locations:
        upsert_locations(locations, merchant_id)

    active_ids = [loc["id"] for loc in locations if loc.get("status") == "ACTIVE"]
    logger.info(
        f"Locations sync complete for merchant {merchant_id}: "
        f"{len(locations)} location(s), {len(active_ids)} active"
    )
    return active_ids
