"""Inventory counts upserted from inventory.count.updated webhooks"""
import logging
from typing import Any, Dict, List

from database import transaction
from db_models import InventoryCount
from .common import dump_raw, parse_timestamp, quantity, upsert

logger = logging.getLogger(__name__)

# Only sellable stock is tracked
TRACKED_STATE = "IN_STOCK"

UPDATE_COLUMNS = ("catalog_object_type", "state", "quantity", "calculated_at", "raw_data")


def upsert_inventory_counts(counts: List[Dict[str, Any]], merchant_id: str) -> int:
    """Upsert IN_STOCK counts and return how many were stored"""
    tracked = [
        c for c in counts
        if c.get("state") == TRACKED_STATE and c.get("catalog_object_id") and c.get("location_id")
    ]
    if not tracked:
        return 0

    with transaction() as db:
        for c in tracked:
            upsert(
                db,
                InventoryCount,
                {
                    "merchant_id": merchant_id,
                    "catalog_object_id": c["catalog_object_id"],
                    "square_location_id": c["location_id"],
                    "catalog_object_type": c.get("catalog_object_type"),
                    "state": c.get("state"),
                    "quantity": quantity(c.get("quantity"), default="0"),
                    "calculated_at": parse_timestamp(c.get("calculated_at")),
                    "raw_data": dump_raw(c),
                },
                index_elements=("merchant_id", "catalog_object_id", "square_location_id"),
                update_columns=UPDATE_COLUMNS,
            )
    return len(tracked)
