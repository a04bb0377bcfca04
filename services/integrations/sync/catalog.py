"""Catalog sync: items, categories and variations"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from database import transaction
from db_models import CatalogItem
from .common import dump_raw, paginate, upsert

logger = logging.getLogger(__name__)

CATALOG_TYPES = ("ITEM", "CATEGORY", "ITEM_VARIATION")
PAGE_LIMIT = 1000

UPDATE_COLUMNS = (
    "type", "name", "description", "base_price_cents", "category_id",
    "is_deleted", "raw_data", "updated_at",
)


def _catalog_fields(obj: Dict[str, Any]) -> Dict[str, Any]:
    name = description = base_price = category_id = None
    obj_type = obj.get("type")

    if obj_type == "ITEM":
        data = obj.get("item_data") or {}
        name = data.get("name")
        description = data.get("description")
        category_id = data.get("category_id")
        variations = data.get("variations") or []
        if variations:
            price_money = (variations[0].get("item_variation_data") or {}).get("price_money") or {}
            base_price = price_money.get("amount")
    elif obj_type == "CATEGORY":
        name = (obj.get("category_data") or {}).get("name")
    elif obj_type == "ITEM_VARIATION":
        data = obj.get("item_variation_data") or {}
        name = data.get("name")
        base_price = (data.get("price_money") or {}).get("amount")

    return {
        "name": name,
        "description": description,
        "base_price_cents": base_price,
        "category_id": category_id,
    }


def upsert_catalog_objects(objects: List[Dict[str, Any]], merchant_id: str) -> None:
    """Upsert one page of catalog objects; tombstones soft-delete the row"""
    now = datetime.utcnow()
    with transaction() as db:
        for obj in objects:
            if obj.get("is_deleted"):
                db.query(CatalogItem).filter(
                    CatalogItem.merchant_id == merchant_id,
                    CatalogItem.square_catalog_id == obj["id"],
                ).update({"is_deleted": True, "updated_at": now}, synchronize_session=False)
                continue

            upsert(
                db,
                CatalogItem,
                {
                    "merchant_id": merchant_id,
                    "square_catalog_id": obj["id"],
                    "type": obj.get("type"),
                    **_catalog_fields(obj),
                    "is_deleted": False,
                    "raw_data": dump_raw(obj),
                    "updated_at": now,
                },
                index_elements=("merchant_id", "square_catalog_id"),
                update_columns=UPDATE_COLUMNS,
            )


def build_search_body(cursor: Optional[str] = None) -> Dict[str, Any]:
    """SearchCatalogObjects request covering live objects and tombstones"""
    body: Dict[str, Any] = {
        "object_types": list(CATALOG_TYPES),
        "include_deleted_objects": True,
        "limit": PAGE_LIMIT,
    }
    if cursor:
        body["cursor"] = cursor
    return body


async def sync_catalog(client, merchant_id: str) -> int:
    """Pull the full catalog including deletions, committing page by page"""
    total = await paginate(
        lambda cursor: client.search_catalog(build_search_body(cursor)),
        "objects",
        lambda objects: upsert_catalog_objects(objects, merchant_id),
    )
    logger.info(f"Catalog sync complete for merchant {merchant_id}: {total} objects")
    return total
