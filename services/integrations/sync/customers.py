"""Customers sync"""
import json
import logging
from typing import Any, Dict, List

from database import transaction
from db_models import Customer
from .common import dump_raw, paginate, parse_timestamp, upsert

logger = logging.getLogger(__name__)

# segment, ltv_cents and total_visit_count are computed locally and never overwritten
UPDATE_COLUMNS = (
    "given_name", "family_name", "email_address", "phone_number", "birthday",
    "address", "note", "reference_id", "updated_at", "raw_data",
)


def upsert_customers(customers: List[Dict[str, Any]], merchant_id: str) -> None:
    """Upsert one page of customers in a single transaction"""
    with transaction() as db:
        for c in customers:
            upsert(
                db,
                Customer,
                {
                    "merchant_id": merchant_id,
                    "square_customer_id": c["id"],
                    "given_name": c.get("given_name"),
                    "family_name": c.get("family_name"),
                    "email_address": c.get("email_address"),
                    "phone_number": c.get("phone_number"),
                    "birthday": c.get("birthday"),
                    "address": json.dumps(c["address"]) if c.get("address") else None,
                    "note": c.get("note"),
                    "reference_id": c.get("reference_id"),
                    "creation_source": c.get("creation_source"),
                    "created_at": parse_timestamp(c.get("created_at")),
                    "updated_at": parse_timestamp(c.get("updated_at")),
                    "is_deleted": False,
                    "raw_data": dump_raw(c),
                },
                index_elements=("merchant_id", "square_customer_id"),
                update_columns=UPDATE_COLUMNS,
            )


def soft_delete_customer(merchant_id: str, square_customer_id: str) -> int:
    with transaction() as db:
        return db.query(Customer).filter(
            Customer.merchant_id == merchant_id,
            Customer.square_customer_id == square_customer_id,
        ).update({"is_deleted": True}, synchronize_session=False)


async def sync_customers(client, merchant_id: str) -> int:
    total = await paginate(
        lambda cursor: client.list_customers(cursor=cursor),
        "customers",
        lambda customers: upsert_customers(customers, merchant_id),
    )
    logger.info(f"Customers sync complete for merchant {merchant_id}: {total} customers")
    return total
