"""
Payment Service: Payment aggregate

    PROCESSING → SUCCESSFUL  (sets is_fulfilled; the payment is frozen afterwards)
    PROCESSING → FAILED
    PROCESSING → CANCELED

``is_fulfilled`` is the marker duplicate provider callbacks are checked
against.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum

from ..db import utcnow


class PaymentType(str, Enum):
    STRIPE = "Stripe"
    CASH_ON_DELIVERY = "CashOnDelivery"

    @classmethod
    def parse(cls, name: str | None) -> "PaymentType | None":
        """Exact, case-sensitive match on the provider name."""
        for member in cls:
            if member.value == name:
                return member
        return None

    @property
    def is_deferred(self) -> bool:
        """Settled online after checkout, so the stock hold has to expire."""
        return self is not PaymentType.CASH_ON_DELIVERY


class PaymentStatus(str, Enum):
    PROCESSING = "Processing"
    FAILED = "Failed"
    CANCELED = "Canceled"
    SUCCESSFUL = "Successful"


@dataclass
class Payment:
    order_id: int
    user_id: str
    amount: Decimal
    currency: str
    provider: PaymentType
    status: PaymentStatus = PaymentStatus.PROCESSING
    is_fulfilled: bool = False
    provider_transaction_id: str | None = None
    id: int | None = None
    version: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime | None = None

    def apply_successful(self, provider_transaction_id: str) -> None:
        self.status = PaymentStatus.SUCCESSFUL
        self.is_fulfilled = True
        self.provider_transaction_id = provider_transaction_id
        self.updated_at = utcnow()

    def apply_failed(self, provider_transaction_id: str) -> None:
        self.status = PaymentStatus.FAILED
        self.provider_transaction_id = provider_transaction_id
        self.updated_at = utcnow()

    def apply_cancelled(self, provider_transaction_id: str) -> None:
        self.status = PaymentStatus.CANCELED
        self.provider_transaction_id = provider_transaction_id
        self.updated_at = utcnow()
