"""
Payment Service: Payment Store

Besides the shared repository operations, exposes the two narrow lookups the
confirm saga runs: the fulfilled flag (before any transaction) and the
payment's order id.
"""

from sqlalchemy import select
from sqlalchemy.engine import RowMapping

from ..db import as_utc
from ..store import Store
from ..tables import payments
from .aggregate import Payment, PaymentStatus, PaymentType


class PaymentStore(Store):
    table = payments

    def _from_row(self, row: RowMapping) -> Payment:
        return Payment(
            id=row["id"],
            order_id=row["order_id"],
            user_id=row["user_id"],
            amount=row["amount"],
            currency=row["currency"],
            provider=PaymentType(row["provider"]),
            status=PaymentStatus(row["status"]),
            is_fulfilled=row["is_fulfilled"],
            provider_transaction_id=row["provider_transaction_id"],
            version=row["version"],
            created_at=as_utc(row["created_at"]),
            updated_at=as_utc(row["updated_at"]),
        )

    def _to_values(self, payment: Payment) -> dict:
        return {
            "order_id": payment.order_id,
            "user_id": payment.user_id,
            "amount": payment.amount,
            "currency": payment.currency,
            "provider": payment.provider.value,
            "status": payment.status.value,
            "is_fulfilled": payment.is_fulfilled,
            "provider_transaction_id": payment.provider_transaction_id,
            "created_at": payment.created_at,
            "updated_at": payment.updated_at,
        }

    async def is_payment_fulfilled(self, payment_id: int) -> bool:
        result = await self.session.execute(
            select(payments.c.is_fulfilled).where(payments.c.id == payment_id)
        )
        return bool(result.scalar_one_or_none())

    async def get_order_id_by_payment_id(self, payment_id: int) -> int | None:
        result = await self.session.execute(
            select(payments.c.order_id).where(payments.c.id == payment_id)
        )
        return result.scalar_one_or_none()
