"""
Schema

Catalog tables (products, shipping_methods, coupons, shipping_addresses) are
owned by collaborators and only read or lightly written by the saga. The
aggregate tables (orders, payments, inventory_reservations) carry a
``version`` column used for optimistic concurrency on every update.
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
)

metadata = MetaData()

Money = Numeric(18, 2)


# ── Catalog (collaborator-owned) ─────────────────

products = Table(
    "products",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("title", String(200), nullable=False),
    Column("price", Money, nullable=False),
    Column("discount", Money, nullable=True),
    Column("qty", Integer, nullable=False, default=0),
)

shipping_methods = Table(
    "shipping_methods",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String(100), nullable=False, unique=True),
    Column("price", Money, nullable=False),
)

coupons = Table(
    "coupons",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String(50), nullable=False, unique=True),
    Column("discount_percentage", Integer, nullable=False),
)

shipping_addresses = Table(
    "shipping_addresses",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("user_id", String(450), nullable=False),
    Column("email", String(256), nullable=False),
    Column("full_name", String(200), nullable=False),
    Column("address", String(500), nullable=False),
    Column("city", String(100), nullable=False),
    Column("country", String(100), nullable=False),
    Column("postal_code", String(20), nullable=True),
    Column("phone", String(30), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
)


# ── Saga aggregates ──────────────────────────────

orders = Table(
    "orders",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("order_number", String(20), nullable=False, unique=True),
    Column("user_id", String(450), nullable=False),
    Column("shipping_address_id", Integer, ForeignKey("shipping_addresses.id"), nullable=True),
    Column("shipping_method_id", Integer, ForeignKey("shipping_methods.id"), nullable=True),
    Column("coupon_id", Integer, ForeignKey("coupons.id"), nullable=True),
    Column("sub_total", Money, nullable=False),
    Column("shipping", Money, nullable=False),
    Column("discount", Money, nullable=False),
    Column("total", Money, nullable=False),
    Column("currency", String(10), nullable=False),
    Column("is_paid", Boolean, nullable=False, default=False),
    Column("status", String(20), nullable=False),
    Column("version", Integer, nullable=False, default=1),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=True),
)

order_items = Table(
    "order_items",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("order_id", Integer, ForeignKey("orders.id"), nullable=False, index=True),
    Column("product_id", Integer, ForeignKey("products.id"), nullable=False),
    Column("product_name", String(200), nullable=False),
    Column("unit_price", Money, nullable=False),
    Column("quantity", Integer, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

payments = Table(
    "payments",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("order_id", Integer, ForeignKey("orders.id"), nullable=False, unique=True),
    Column("user_id", String(450), nullable=False),
    Column("amount", Money, nullable=False),
    Column("currency", String(10), nullable=False),
    Column("provider", String(30), nullable=False),
    Column("status", String(20), nullable=False),
    Column("is_fulfilled", Boolean, nullable=False, default=False),
    Column("provider_transaction_id", String(200), nullable=True),
    Column("version", Integer, nullable=False, default=1),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=True),
)

inventory_reservations = Table(
    "inventory_reservations",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("order_id", Integer, ForeignKey("orders.id"), nullable=False, unique=True),
    Column("status", String(20), nullable=False),
    Column("expires_at", DateTime(timezone=True), nullable=True),
    Column("version", Integer, nullable=False, default=1),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=True),
)
