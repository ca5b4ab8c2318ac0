"""
Order Service: read side

Catalog lookups used while creating an order (shipping methods, coupons,
products) and the order views served over HTTP and used by notifications.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..tables import (
    coupons,
    inventory_reservations,
    order_items,
    orders,
    payments,
    products,
    shipping_addresses,
    shipping_methods,
)


async def get_shipping_method_by_name(session: AsyncSession, name: str) -> dict | None:
    result = await session.execute(select(shipping_methods).where(shipping_methods.c.name == name))
    row = result.mappings().first()
    return dict(row) if row else None


async def get_coupon_by_name(session: AsyncSession, name: str) -> dict | None:
    result = await session.execute(select(coupons).where(coupons.c.name == name))
    row = result.mappings().first()
    return dict(row) if row else None


async def get_products_for_order(session: AsyncSession, product_ids: list[int]) -> list[dict]:
    result = await session.execute(
        select(products.c.id, products.c.title, products.c.price, products.c.discount).where(
            products.c.id.in_(product_ids)
        )
    )
    return [dict(row) for row in result.mappings()]


async def get_order_contact(session: AsyncSession, order_id: int) -> dict | None:
    """Order number plus the buyer's name and email from the shipping address."""
    result = await session.execute(
        select(
            orders.c.id,
            orders.c.order_number,
            orders.c.total,
            orders.c.currency,
            shipping_addresses.c.email,
            shipping_addresses.c.full_name,
        )
        .select_from(orders.outerjoin(shipping_addresses, orders.c.shipping_address_id == shipping_addresses.c.id))
        .where(orders.c.id == order_id)
    )
    row = result.mappings().first()
    return dict(row) if row else None


async def get_order(session: AsyncSession, order_id: int) -> dict | None:
    result = await session.execute(
        select(
            orders,
            payments.c.id.label("payment_id"),
            payments.c.status.label("payment_status"),
            inventory_reservations.c.status.label("reservation_status"),
            inventory_reservations.c.expires_at.label("reservation_expires_at"),
        )
        .select_from(
            orders.outerjoin(payments, payments.c.order_id == orders.c.id).outerjoin(
                inventory_reservations, inventory_reservations.c.order_id == orders.c.id
            )
        )
        .where(orders.c.id == order_id)
    )
    row = result.mappings().first()
    if not row:
        return None

    items = await session.execute(
        select(order_items).where(order_items.c.order_id == order_id).order_by(order_items.c.id)
    )
    return {
        "id": row["id"],
        "order_number": row["order_number"],
        "user_id": row["user_id"],
        "sub_total": str(row["sub_total"]),
        "shipping": str(row["shipping"]),
        "discount": str(row["discount"]),
        "total": str(row["total"]),
        "currency": row["currency"],
        "is_paid": row["is_paid"],
        "status": row["status"],
        "payment_id": row["payment_id"],
        "payment_status": row["payment_status"],
        "reservation_status": row["reservation_status"],
        "reservation_expires_at": (
            row["reservation_expires_at"].isoformat() if row["reservation_expires_at"] else None
        ),
        "created_at": row["created_at"].isoformat() if row["created_at"] else None,
        "items": [
            {
                "product_id": item["product_id"],
                "product_name": item["product_name"],
                "unit_price": str(item["unit_price"]),
                "quantity": item["quantity"],
            }
            for item in items.mappings()
        ],
    }
