"""Orders sync, one location at a time"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from database import transaction
from db_models import Order, OrderLineItem
from .common import dump_raw, money, paginate, parse_timestamp, quantity, upsert

logger = logging.getLogger(__name__)

# Open orders are left to webhooks
HISTORICAL_STATES = ["COMPLETED", "CANCELED"]
PAGE_LIMIT = 500

UPDATE_COLUMNS = (
    "square_location_id", "square_customer_id", "state", "total_amount",
    "total_tax", "total_discount", "total_tip", "currency", "updated_at",
    "closed_at", "raw_data", "synced_at",
)


def _line_item_row(item: Dict[str, Any], order_id: str, merchant_id: str) -> Dict[str, Any]:
    return {
        "merchant_id": merchant_id,
        "square_order_id": order_id,
        "uid": item.get("uid"),
        "catalog_object_id": item.get("catalog_object_id"),
        "name": item.get("name"),
        "variation_name": item.get("variation_name"),
        "quantity": quantity(item.get("quantity")),
        "base_price": money(item, "base_price_money"),
        "gross_amount": money(item, "gross_sales_money"),
        "total_amount": money(item, "total_money"),
        "note": item.get("note"),
        "raw_data": dump_raw(item),
    }


def upsert_orders(orders: List[Dict[str, Any]], merchant_id: str, location_id: Optional[str] = None) -> None:
    """
    Upsert one page of orders in a single transaction.

    Each order's line items are deleted and re-inserted, never merged.
    """
    now = datetime.utcnow()
    with transaction() as db:
        for order in orders:
            order_id = order["id"]
            upsert(
                db,
                Order,
                {
                    "merchant_id": merchant_id,
                    "square_order_id": order_id,
                    "square_location_id": order.get("location_id") or location_id,
                    "square_customer_id": order.get("customer_id"),
                    "state": order.get("state"),
                    "total_amount": money(order, "total_money"),
                    "total_tax": money(order, "total_tax_money"),
                    "total_discount": money(order, "total_discount_money"),
                    "total_tip": money(order, "total_tip_money"),
                    "currency": (order.get("total_money") or {}).get("currency") or "USD",
                    "source_name": (order.get("source") or {}).get("name") or "POS",
                    "created_at": parse_timestamp(order.get("created_at")),
                    "updated_at": parse_timestamp(order.get("updated_at")),
                    "closed_at": parse_timestamp(order.get("closed_at")),
                    "raw_data": dump_raw(order),
                    "synced_at": now,
                },
                index_elements=("merchant_id", "square_order_id"),
                update_columns=UPDATE_COLUMNS,
            )

            db.query(OrderLineItem).filter(
                OrderLineItem.merchant_id == merchant_id,
                OrderLineItem.square_order_id == order_id,
            ).delete(synchronize_session=False)

            for item in order.get("line_items") or []:
                db.add(OrderLineItem(**_line_item_row(item, order_id, merchant_id)))


def build_search_body(location_id: str, start_at: str, cursor: Optional[str] = None) -> Dict[str, Any]:
    body = {
        "location_ids": [location_id],
        "query": {
            "filter": {
                "date_time_filter": {"created_at": {"start_at": start_at}},
                "state_filter": {"states": HISTORICAL_STATES},
            },
            "sort": {"sort_field": "CREATED_AT", "sort_order": "ASC"},
        },
        "limit": PAGE_LIMIT,
        "return_entries": False,
    }
    if cursor:
        body["cursor"] = cursor
    return body


async def sync_orders(client, merchant_id: str, location_id: str, start_at: str) -> int:
    """Pull closed orders created since start_at for one location"""
    total = await paginate(
        lambda cursor: client.search_orders(build_search_body(location_id, start_at, cursor)),
        "orders",
        lambda orders: upsert_orders(orders, merchant_id, location_id),
    )
    logger.info(f"Orders sync complete for merchant {merchant_id}: {total} orders for location {location_id}")
    return total


async def sync_single_order(client, merchant_id: str, order_id: str) -> bool:
    """Re-fetch one order by id and upsert it"""
    data = await client.retrieve_order(order_id)
    order = data.get("order")
    if not order:
        logger.warning(f"Square returned no order for {order_id}")
        return False
    upsert_orders([order], merchant_id, order.get("location_id"))
    return True
