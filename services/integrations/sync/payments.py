"""Payments upserted from payment.* webhooks"""
import logging
from typing import Any, Dict, List

from database import transaction
from db_models import Payment
from .common import dump_raw, money, parse_timestamp, upsert

logger = logging.getLogger(__name__)

UPDATE_COLUMNS = (
    "square_order_id", "square_location_id", "square_customer_id", "status",
    "amount", "tip_amount", "total_amount", "refunded_amount", "currency",
    "source_type", "card_brand", "updated_at", "raw_data",
)


def upsert_payments(payments: List[Dict[str, Any]], merchant_id: str) -> None:
    with transaction() as db:
        for p in payments:
            card = (p.get("card_details") or {}).get("card") or {}
            upsert(
                db,
                Payment,
                {
                    "merchant_id": merchant_id,
                    "square_payment_id": p["id"],
                    "square_order_id": p.get("order_id"),
                    "square_location_id": p.get("location_id"),
                    "square_customer_id": p.get("customer_id"),
                    "status": p.get("status"),
                    "amount": money(p, "amount_money"),
                    "tip_amount": money(p, "tip_money"),
                    "total_amount": money(p, "total_money"),
                    "refunded_amount": money(p, "refunded_money"),
                    "currency": (p.get("amount_money") or {}).get("currency") or "USD",
                    "source_type": p.get("source_type"),
                    "card_brand": card.get("card_brand"),
                    "created_at": parse_timestamp(p.get("created_at")),
                    "updated_at": parse_timestamp(p.get("updated_at")),
                    "raw_data": dump_raw(p),
                },
                index_elements=("merchant_id", "square_payment_id"),
                update_columns=UPDATE_COLUMNS,
            )
