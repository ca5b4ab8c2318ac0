"""
Order Service: Order Store

Persists the Order aggregate with its line items, and owns the two stock
operations tied to an order's lines: the guarded decrement taken when the
order is created and the release that gives the quantities back.
"""

from sqlalchemy import insert, select, text, update
from sqlalchemy.engine import RowMapping

from ..db import as_utc, utcnow
from ..store import Store
from ..tables import order_items, orders, products
from .aggregate import Order, OrderItem, OrderStatus


class StockReleaseError(Exception):
    """Nothing was restocked: the order has no lines."""


class OrderStore(Store):
    table = orders

    def _from_row(self, row: RowMapping) -> Order:
        return Order(
            id=row["id"],
            order_number=row["order_number"],
            user_id=row["user_id"],
            sub_total=row["sub_total"],
            shipping=row["shipping"],
            discount=row["discount"],
            total=row["total"],
            currency=row["currency"],
            is_paid=row["is_paid"],
            status=OrderStatus(row["status"]),
            shipping_address_id=row["shipping_address_id"],
            shipping_method_id=row["shipping_method_id"],
            coupon_id=row["coupon_id"],
            version=row["version"],
            created_at=as_utc(row["created_at"]),
            updated_at=as_utc(row["updated_at"]),
        )

    def _to_values(self, order: Order) -> dict:
        return {
            "order_number": order.order_number,
            "user_id": order.user_id,
            "shipping_address_id": order.shipping_address_id,
            "shipping_method_id": order.shipping_method_id,
            "coupon_id": order.coupon_id,
            "sub_total": order.sub_total,
            "shipping": order.shipping,
            "discount": order.discount,
            "total": order.total,
            "currency": order.currency,
            "is_paid": order.is_paid,
            "status": order.status.value,
            "created_at": order.created_at,
            "updated_at": order.updated_at,
        }

    async def _after_insert(self, order: Order) -> int:
        affected = 0
        for item in order.items:
            result = await self.session.execute(
                insert(order_items).values(
                    order_id=order.id,
                    product_id=item.product_id,
                    product_name=item.product_name,
                    unit_price=item.unit_price,
                    quantity=item.quantity,
                    created_at=utcnow(),
                )
            )
            item.id = result.inserted_primary_key[0]
            affected += result.rowcount
        return affected

    async def get_items(self, order_id: int) -> list[OrderItem]:
        result = await self.session.execute(
            select(order_items).where(order_items.c.order_id == order_id).order_by(order_items.c.id)
        )
        return [
            OrderItem(
                id=row["id"],
                product_id=row["product_id"],
                product_name=row["product_name"],
                unit_price=row["unit_price"],
                quantity=row["quantity"],
            )
            for row in result.mappings()
        ]

    # ── Stock ────────────────────────────────────

    async def decrease_product_stock(self, product_id: int, quantity: int) -> bool:
        """Take ``quantity`` units only if that many are on hand."""
        if product_id <= 0 or quantity <= 0:
            return False
        result = await self.session.execute(
            update(products)
            .where(products.c.id == product_id, products.c.qty >= quantity)
            .values(qty=products.c.qty - quantity)
        )
        return result.rowcount == 1

    async def release_reserved_stock(self, order_id: int) -> None:
        """
        Give every line's quantity back to its product.

        Not idempotent: a second call adds the quantities again. Callers
        guard it with the reservation status.
        """
        result = await self.session.execute(
            text("""
                UPDATE products
                SET qty = qty + (
                    SELECT SUM(oi.quantity) FROM order_items oi
                    WHERE oi.order_id = :order_id AND oi.product_id = products.id
                )
                WHERE id IN (
                    SELECT product_id FROM order_items WHERE order_id = :order_id
                )
            """),
            {"order_id": order_id},
        )
        if result.rowcount == 0:
            raise StockReleaseError(f"Order {order_id} has no lines")
