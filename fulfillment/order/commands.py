"""
Order Service: Order Workflow (write side)

Creates orders at checkout and moves them out of PROCESSING. None of these
methods commit: the calling saga owns the transaction, so a failure anywhere
in the step group rolls back the order together with its stock decrements.
"""

import logging
import random
import string
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import utcnow
from ..result import ErrorKind, Result
from ..tables import shipping_addresses
from . import queries
from .aggregate import Order, OrderItem, OrderStatus, to_money
from .store import OrderStore, StockReleaseError

logger = logging.getLogger(__name__)

ORDER_NUMBER_PREFIX = "Ord-"
ORDER_NUMBER_ALPHABET = string.ascii_uppercase + string.digits
ORDER_NUMBER_LENGTH = 6


@dataclass
class ShippingDetails:
    email: str
    full_name: str
    address: str
    city: str
    country: str
    postal_code: str | None = None
    phone: str | None = None


@dataclass
class CreateOrderRequest:
    user_id: str
    shipping_method: str
    payment_provider: str
    shipping_details: ShippingDetails
    products: dict[int, int] = field(default_factory=dict)
    coupon_code: str | None = None


class OrderWorkflow:
    def __init__(self, session: AsyncSession, currency: str = "USD") -> None:
        self.session = session
        self.store = OrderStore(session)
        self.currency = currency

    # ── Create ───────────────────────────────────

    async def create_order(self, request: CreateOrderRequest) -> Result:
        """
        Price and persist a new order in PROCESSING.

        Steps run in this order: coupon, shipping method, products, shipping
        address, stock decrement per line, then the order row and its items.
        Returns the saved ``Order`` as data.
        """
        logger.info("Creating order for user %s (%d lines)", request.user_id, len(request.products))

        if not request.products:
            return Result.failure("The order must contain at least one product.", ErrorKind.VALIDATION)

        coupon = None
        if request.coupon_code:
            coupon = await queries.get_coupon_by_name(self.session, request.coupon_code)
            if coupon is None:
                logger.warning("Unknown coupon code %r", request.coupon_code)
                return Result.failure("Invalid coupon code.", ErrorKind.VALIDATION)

        shipping_method = await queries.get_shipping_method_by_name(self.session, request.shipping_method)
        if shipping_method is None:
            logger.warning("Unknown shipping method %r", request.shipping_method)
            return Result.failure("Invalid shipping method.", ErrorKind.VALIDATION)

        catalog = {
            row["id"]: row
            for row in await queries.get_products_for_order(self.session, list(request.products))
        }
        if len(catalog) != len(request.products):
            missing = sorted(set(request.products) - set(catalog))
            logger.warning("Products not found: %s", missing)
            return Result.failure("One or more products not found.", ErrorKind.VALIDATION)

        address_id = await self._create_shipping_address(request.user_id, request.shipping_details)

        for product_id, quantity in request.products.items():
            if not await self.store.decrease_product_stock(product_id, quantity):
                logger.warning("Insufficient stock for product %s (wanted %d)", product_id, quantity)
                return Result.failure(
                    "Insufficient stock for one or more products.", ErrorKind.INSUFFICIENT_STOCK
                )

        items = [
            OrderItem(
                product_id=product_id,
                product_name=catalog[product_id]["title"],
                unit_price=_unit_price(catalog[product_id]),
                quantity=quantity,
            )
            for product_id, quantity in request.products.items()
        ]
        sub_total, discount, total = Order.price(
            sum((item.line_total for item in items), Decimal("0")),
            to_money(shipping_method["price"]),
            coupon["discount_percentage"] if coupon else 0,
        )

        order = Order(
            order_number=await self._generate_order_number(),
            user_id=request.user_id,
            sub_total=sub_total,
            shipping=to_money(shipping_method["price"]),
            discount=discount,
            total=total,
            currency=self.currency,
            shipping_address_id=address_id,
            shipping_method_id=shipping_method["id"],
            coupon_id=coupon["id"] if coupon else None,
            items=items,
        )
        self.store.add(order)
        if await self.store.save_changes() == 0:
            logger.error("Order %s was not saved", order.order_number)
            return Result.failure("Failed to create order.", ErrorKind.PERSISTENCE)

        logger.info("Order %s created (id=%s, total=%s %s)", order.order_number, order.id, order.total, order.currency)
        return Result.success(order)

    async def _create_shipping_address(self, user_id: str, details: ShippingDetails) -> int:
        result = await self.session.execute(
            insert(shipping_addresses).values(
                user_id=user_id,
                email=details.email,
                full_name=details.full_name,
                address=details.address,
                city=details.city,
                country=details.country,
                postal_code=details.postal_code,
                phone=details.phone,
                created_at=utcnow(),
            )
        )
        return result.inserted_primary_key[0]

    async def _generate_order_number(self) -> str:
        while True:
            candidate = ORDER_NUMBER_PREFIX + "".join(
                random.choices(ORDER_NUMBER_ALPHABET, k=ORDER_NUMBER_LENGTH)
            )
            if not await self.store.exists(order_number=candidate):
                return candidate

    # ── Status transitions ───────────────────────

    async def mark_paid(self, order_id: int) -> Result:
        order = await self.store.get_by_id(order_id)
        if order is None:
            logger.warning("mark_paid: order %s not found", order_id)
            return Result.failure("Order not found.", ErrorKind.NOT_FOUND)
        if order.is_paid:
            logger.warning("mark_paid: order %s is already paid", order_id)
            return Result.failure("Order is already paid.", ErrorKind.ALREADY_PAID)
        if order.status == OrderStatus.FAILED:
            return Result.failure("Cannot mark a failed order as paid.", ErrorKind.INVALID_TRANSITION)
        if order.status == OrderStatus.CANCELLED:
            return Result.failure("Cannot mark a cancelled order as paid.", ErrorKind.INVALID_TRANSITION)

        order.apply_paid()
        return await self._save(order, "Failed to update order payment status.")

    async def mark_failed(self, order_id: int) -> Result:
        order = await self.store.get_by_id(order_id)
        if order is None:
            logger.warning("mark_failed: order %s not found", order_id)
            return Result.failure("Order not found.", ErrorKind.NOT_FOUND)
        if order.status == OrderStatus.PAID:
            return Result.failure("Cannot mark a paid order as failed.", ErrorKind.INVALID_TRANSITION)
        if order.status == OrderStatus.CANCELLED:
            return Result.failure("Cannot mark a cancelled order as failed.", ErrorKind.INVALID_TRANSITION)
        if order.status == OrderStatus.FAILED:
            return Result.failure("Order is already marked as failed.", ErrorKind.ALREADY_FAILED)

        order.apply_failed()
        return await self._save(order, "Failed to update order status.")

    async def mark_cancelled(self, order_id: int) -> Result:
        order = await self.store.get_by_id(order_id)
        if order is None:
            logger.warning("mark_cancelled: order %s not found", order_id)
            return Result.failure("Order not found.", ErrorKind.NOT_FOUND)
        if order.status == OrderStatus.PAID:
            return Result.failure("Cannot cancel a paid order.", ErrorKind.INVALID_TRANSITION)
        if order.status == OrderStatus.CANCELLED:
            return Result.failure("Order is already cancelled.", ErrorKind.ALREADY_CANCELLED)
        if order.status == OrderStatus.FAILED:
            return Result.failure("Cannot cancel a failed order.", ErrorKind.INVALID_TRANSITION)

        order.apply_cancelled()
        return await self._save(order, "Failed to update order status.")

    async def _save(self, order: Order, message: str) -> Result:
        self.store.update(order)
        if await self.store.save_changes() == 0:
            logger.error("Order %s: status update to %s affected no rows", order.id, order.status.value)
            return Result.failure(message, ErrorKind.PERSISTENCE)
        logger.info("Order %s is now %s", order.id, order.status.value)
        return Result.success()

    # ── Compensation ─────────────────────────────

    async def release_reserved_stock(self, order_id: int) -> bool:
        """Put the order's quantities back on the shelf. Never raises."""
        try:
            await self.store.release_reserved_stock(order_id)
        except StockReleaseError as e:
            logger.warning("Stock release for order %s: %s", order_id, e)
            return False
        except Exception:
            logger.exception("Stock release for order %s failed", order_id)
            return False
        logger.info("Released reserved stock for order %s", order_id)
        return True


def _unit_price(product: dict) -> Decimal:
    price = to_money(product["price"])
    discount = product["discount"]
    if discount is not None and discount > 0:
        price = to_money(price - discount)
    return price
