"""Per-entity Square sync: fetch pages, upsert each page in its own transaction"""
from .appointments import sync_appointments, upsert_appointments
from .catalog import sync_catalog, upsert_catalog_objects
from .customers import soft_delete_customer, sync_customers, upsert_customers
from .inventory import upsert_inventory_counts
from .locations import sync_locations, upsert_locations
from .orders import sync_orders, sync_single_order, upsert_orders
from .payments import upsert_payments
from .team_members import upsert_team_members

__all__ = [
    "sync_locations",
    "upsert_locations",
    "sync_catalog",
    "upsert_catalog_objects",
    "sync_customers",
    "upsert_customers",
    "soft_delete_customer",
    "sync_orders",
    "upsert_orders",
    "sync_single_order",
    "sync_appointments",
    "upsert_appointments",
    "upsert_payments",
    "upsert_inventory_counts",
    "upsert_team_members",
]
