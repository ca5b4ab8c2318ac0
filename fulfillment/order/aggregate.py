"""
Order Service: Order aggregate

State transitions (one-way out of PROCESSING, every other state is terminal):

    PROCESSING → PAID       (payment confirmed)
    PROCESSING → FAILED     (payment failed)
    PROCESSING → CANCELLED  (payment cancelled)

``is_paid`` is true exactly when ``status`` is PAID.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from ..db import utcnow

CENTS = Decimal("0.01")


def to_money(value: Decimal | int | float | str) -> Decimal:
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


class OrderStatus(str, Enum):
    PROCESSING = "Processing"
    PAID = "Paid"
    CANCELLED = "Cancelled"
    FAILED = "Failed"


@dataclass
class OrderItem:
    product_id: int
    product_name: str
    unit_price: Decimal
    quantity: int
    id: int | None = None

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass
class Order:
    order_number: str
    user_id: str
    sub_total: Decimal
    shipping: Decimal
    discount: Decimal
    total: Decimal
    currency: str = "USD"
    is_paid: bool = False
    status: OrderStatus = OrderStatus.PROCESSING
    shipping_address_id: int | None = None
    shipping_method_id: int | None = None
    coupon_id: int | None = None
    items: list[OrderItem] = field(default_factory=list)
    id: int | None = None
    version: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime | None = None

    @staticmethod
    def price(sub_total: Decimal, shipping: Decimal, discount_percentage: int) -> tuple[Decimal, Decimal, Decimal]:
        """Return (sub_total, discount, total) rounded to cents."""
        sub_total = to_money(sub_total)
        discount = to_money(sub_total * discount_percentage / 100) if discount_percentage > 0 else to_money(0)
        total = to_money(sub_total + shipping - discount)
        return sub_total, discount, total

    def apply_paid(self) -> None:
        self.is_paid = True
        self.status = OrderStatus.PAID
        self.updated_at = utcnow()

    def apply_failed(self) -> None:
        self.status = OrderStatus.FAILED
        self.updated_at = utcnow()

    def apply_cancelled(self) -> None:
        self.status = OrderStatus.CANCELLED
        self.updated_at = utcnow()
