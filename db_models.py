# db_models.py
from sqlalchemy import (
    Column, Integer, BigInteger, String, Boolean, DateTime, Text, Numeric,
    UniqueConstraint, Index,
)
from sqlalchemy.sql import func
from database import Base


class Connection(Base):
    """Square OAuth connection, one per local merchant"""
    __tablename__ = "connections"

    id = Column(Integer, primary_key=True, index=True)
    merchant_id = Column(String, unique=True, nullable=False, index=True)
    square_merchant_id = Column(String, nullable=True, index=True)

    # OAuth tokens, encrypted at rest (services.crypto)
    access_token_enc = Column(Text, nullable=False)
    refresh_token_enc = Column(Text, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    token_type = Column(String, default="bearer")
    scopes = Column(Text, nullable=True)  # space separated

    # Initial / re-sync status
    sync_status = Column(String, default="pending")  # pending, success, error
    sync_started_at = Column(DateTime, nullable=True)
    sync_completed_at = Column(DateTime, nullable=True)
    sync_error = Column(Text, nullable=True)

    connected_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


class Location(Base):
    __tablename__ = "locations"
    __table_args__ = (
        UniqueConstraint("merchant_id", "square_location_id", name="uq_locations_merchant_location"),
    )

    id = Column(Integer, primary_key=True, index=True)
    merchant_id = Column(String, nullable=False, index=True)
    square_location_id = Column(String, nullable=False)

    name = Column(String, nullable=True)
    status = Column(String, nullable=True)  # ACTIVE, INACTIVE
    address = Column(String, nullable=True)
    city = Column(String, nullable=True)
    state = Column(String, nullable=True)
    postal_code = Column(String, nullable=True)
    country = Column(String, nullable=True)
    timezone = Column(String, nullable=True)
    business_type = Column(String, nullable=True)
    phone_number = Column(String, nullable=True)
    business_hours = Column(Text, nullable=True)  # JSON
    currency = Column(String, default="USD")

    raw_data = Column(Text, nullable=True)  # JSON of full provider response
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


class CatalogItem(Base):
    """Catalog item, category or variation"""
    __tablename__ = "catalog_items"
    __table_args__ = (
        UniqueConstraint("merchant_id", "square_catalog_id", name="uq_catalog_items_merchant_object"),
    )

    id = Column(Integer, primary_key=True, index=True)
    merchant_id = Column(String, nullable=False, index=True)
    square_catalog_id = Column(String, nullable=False)

    type = Column(String, nullable=False)  # ITEM, CATEGORY, ITEM_VARIATION
    name = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    base_price_cents = Column(BigInteger, nullable=True)
    category_id = Column(String, nullable=True)
    is_deleted = Column(Boolean, default=False)

    raw_data = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


class Customer(Base):
    __tablename__ = "customers"
    __table_args__ = (
        UniqueConstraint("merchant_id", "square_customer_id", name="uq_customers_merchant_customer"),
    )

    id = Column(Integer, primary_key=True, index=True)
    merchant_id = Column(String, nullable=False, index=True)
    square_customer_id = Column(String, nullable=False)

    given_name = Column(String, nullable=True)
    family_name = Column(String, nullable=True)
    email_address = Column(String, nullable=True)
    phone_number = Column(String, nullable=True)
    birthday = Column(String, nullable=True)
    address = Column(Text, nullable=True)  # JSON
    note = Column(Text, nullable=True)
    reference_id = Column(String, nullable=True)
    creation_source = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=True)
    is_deleted = Column(Boolean, default=False)

    # Computed locally, never written by a sync
    total_visit_count = Column(Integer, nullable=True)
    segment = Column(String, nullable=True)
    ltv_cents = Column(BigInteger, nullable=True)

    raw_data = Column(Text, nullable=True)


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("merchant_id", "square_order_id", name="uq_orders_merchant_order"),
        Index("ix_orders_merchant_location_created", "merchant_id", "square_location_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    merchant_id = Column(String, nullable=False, index=True)
    square_order_id = Column(String, nullable=False)
    square_location_id = Column(String, nullable=True)
    square_customer_id = Column(String, nullable=True)

    state = Column(String, nullable=True)  # OPEN, COMPLETED, CANCELED, DRAFT
    total_amount = Column(BigInteger, nullable=False, default=0)  # minor units
    total_tax = Column(BigInteger, nullable=False, default=0)
    total_discount = Column(BigInteger, nullable=False, default=0)
    total_tip = Column(BigInteger, nullable=False, default=0)
    currency = Column(String, default="USD")
    source_name = Column(String, nullable=True)

    created_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=True)
    closed_at = Column(DateTime, nullable=True)

    raw_data = Column(Text, nullable=True)
    synced_at = Column(DateTime, default=func.now(), onupdate=func.now())


class OrderLineItem(Base):
    """Replaced wholesale on every re-sync of the parent order"""
    __tablename__ = "order_line_items"

    id = Column(Integer, primary_key=True, index=True)
    merchant_id = Column(String, nullable=False)
    square_order_id = Column(String, nullable=False, index=True)

    uid = Column(String, nullable=True)
    catalog_object_id = Column(String, nullable=True)
    name = Column(String, nullable=True)
    variation_name = Column(String, nullable=True)
    quantity = Column(Numeric(18, 5), nullable=False, default=1)
    base_price = Column(BigInteger, nullable=False, default=0)
    gross_amount = Column(BigInteger, nullable=False, default=0)
    total_amount = Column(BigInteger, nullable=False, default=0)
    note = Column(Text, nullable=True)

    raw_data = Column(Text, nullable=True)


class Payment(Base):
    """Linked to an order by id only; the order may not be synced yet"""
    __tablename__ = "payments"
    __table_args__ = (
        UniqueConstraint("merchant_id", "square_payment_id", name="uq_payments_merchant_payment"),
    )

    id = Column(Integer, primary_key=True, index=True)
    merchant_id = Column(String, nullable=False, index=True)
    square_payment_id = Column(String, nullable=False)
    square_order_id = Column(String, nullable=True, index=True)
    square_location_id = Column(String, nullable=True)
    square_customer_id = Column(String, nullable=True)

    status = Column(String, nullable=True)
    amount = Column(BigInteger, nullable=False, default=0)
    tip_amount = Column(BigInteger, nullable=False, default=0)
    total_amount = Column(BigInteger, nullable=False, default=0)
    refunded_amount = Column(BigInteger, nullable=False, default=0)
    currency = Column(String, default="USD")
    source_type = Column(String, nullable=True)
    card_brand = Column(String, nullable=True)

    created_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=True)

    raw_data = Column(Text, nullable=True)


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        UniqueConstraint("merchant_id", "square_booking_id", name="uq_appointments_merchant_booking"),
    )

    id = Column(Integer, primary_key=True, index=True)
    merchant_id = Column(String, nullable=False, index=True)
    square_booking_id = Column(String, nullable=False)
    square_location_id = Column(String, nullable=True)
    square_customer_id = Column(String, nullable=True)

    customer_note = Column(Text, nullable=True)
    team_member_id = Column(String, nullable=True)
    service_variation_id = Column(String, nullable=True)
    service_variation_version = Column(BigInteger, nullable=True)
    duration_minutes = Column(Integer, nullable=True)
    status = Column(String, nullable=True)
    no_show = Column(Boolean, default=False)
    source = Column(String, nullable=True)

    start_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=True)

    raw_data = Column(Text, nullable=True)


class InventoryCount(Base):
    __tablename__ = "inventory"
    __table_args__ = (
        UniqueConstraint(
            "merchant_id", "catalog_object_id", "square_location_id",
            name="uq_inventory_merchant_object_location",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    merchant_id = Column(String, nullable=False, index=True)
    catalog_object_id = Column(String, nullable=False)
    square_location_id = Column(String, nullable=False)

    catalog_object_type = Column(String, nullable=True)
    state = Column(String, nullable=True)
    quantity = Column(Numeric(18, 5), nullable=False, default=0)
    calculated_at = Column(DateTime, nullable=True)

    raw_data = Column(Text, nullable=True)


class TeamMember(Base):
    __tablename__ = "team_members"
    __table_args__ = (
        UniqueConstraint("merchant_id", "square_team_member_id", name="uq_team_members_merchant_member"),
    )

    id = Column(Integer, primary_key=True, index=True)
    merchant_id = Column(String, nullable=False, index=True)
    square_team_member_id = Column(String, nullable=False)

    given_name = Column(String, nullable=True)
    family_name = Column(String, nullable=True)
    email_address = Column(String, nullable=True)
    phone_number = Column(String, nullable=True)
    status = Column(String, nullable=True)
    is_owner = Column(Boolean, default=False)

    created_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=True)

    raw_data = Column(Text, nullable=True)


class WebhookEvent(Base):
    """Durable record of every verified webhook delivery and its outcome"""
    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String, unique=True, nullable=False, index=True)
    event_type = Column(String, nullable=True)
    square_merchant_id = Column(String, nullable=True)
    merchant_id = Column(String, nullable=True)

    payload = Column(Text, nullable=False)  # raw request body
    status = Column(String, nullable=False, default="received")  # received, processed, ignored, failed
    error = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)

    received_at = Column(DateTime, default=func.now())
    processed_at = Column(DateTime, nullable=True)
