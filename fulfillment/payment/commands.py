"""
Payment Service: Payment Workflow (write side)

Creates the payment at checkout and records the provider's verdict on it.
Like the other workflows it never commits; the gateway saga wraps these calls
together with the order and reservation updates.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from ..result import ErrorKind, Result
from .aggregate import Payment, PaymentStatus, PaymentType
from .store import PaymentStore

logger = logging.getLogger(__name__)

MAX_CURRENCY_LENGTH = 10
MAX_PROVIDER_TRANSACTION_ID_LENGTH = 200


@dataclass
class CreatePaymentRequest:
    order_id: int
    user_id: str
    amount: Decimal
    currency: str
    provider: PaymentType
    provider_transaction_id: str | None = None

    def validate(self) -> list[str]:
        """Every violation, not just the first."""
        errors = []
        if self.amount is None or self.amount <= 0:
            errors.append("Payment amount must be greater than 0.")
        if not self.currency:
            errors.append("Currency is required.")
        elif len(self.currency) > MAX_CURRENCY_LENGTH:
            errors.append(f"Currency must not exceed {MAX_CURRENCY_LENGTH} characters.")
        if not self.user_id:
            errors.append("User ID is required.")
        if not self.order_id or self.order_id <= 0:
            errors.append("Order ID must be greater than 0.")
        if (
            self.provider_transaction_id is not None
            and len(self.provider_transaction_id) > MAX_PROVIDER_TRANSACTION_ID_LENGTH
        ):
            errors.append(
                f"Provider transaction ID must not exceed {MAX_PROVIDER_TRANSACTION_ID_LENGTH} characters."
            )
        return errors


class PaymentWorkflow:
    def __init__(self, session: AsyncSession) -> None:
        self.store = PaymentStore(session)

    async def create_payment(self, request: CreatePaymentRequest) -> Result:
        """Persist a PROCESSING payment and return it as data."""
        logger.info(
            "Creating payment for order %s, user %s, amount %s %s",
            request.order_id, request.user_id, request.amount, request.currency,
        )

        errors = request.validate()
        if errors:
            logger.warning("Payment validation failed for order %s: %s", request.order_id, ", ".join(errors))
            return Result.failure(errors, ErrorKind.VALIDATION)

        payment = Payment(
            order_id=request.order_id,
            user_id=request.user_id,
            amount=request.amount,
            currency=request.currency,
            provider=request.provider,
            provider_transaction_id=request.provider_transaction_id,
        )
        self.store.add(payment)
        if await self.store.save_changes() == 0:
            logger.error("Failed to save payment for order %s", request.order_id)
            return Result.failure("Failed to create payment.", ErrorKind.PERSISTENCE)

        logger.info("Payment %s created for order %s (%s)", payment.id, payment.order_id, payment.provider.value)
        return Result.success(payment)

    async def confirm_payment(self, payment_id: int, provider_transaction_id: str, amount: Decimal) -> Result:
        logger.info("Confirming payment %s (provider txn %s, amount %s)", payment_id, provider_transaction_id, amount)

        payment = await self.store.get_by_id(payment_id)
        if payment is None:
            logger.warning("Payment %s not found", payment_id)
            return Result.failure("Payment not found.", ErrorKind.NOT_FOUND)

        if payment.amount != amount:
            logger.warning(
                "Amount mismatch on payment %s: expected %s, received %s", payment_id, payment.amount, amount
            )
            return Result.failure("Payment amount does not match the order amount.", ErrorKind.AMOUNT_MISMATCH)

        payment.apply_successful(provider_transaction_id)
        self.store.update(payment)
        if await self.store.save_changes() == 0:
            logger.error("Failed to confirm payment %s", payment_id)
            return Result.failure("Failed to confirm payment.", ErrorKind.PERSISTENCE)

        logger.info("Payment %s confirmed for order %s", payment_id, payment.order_id)
        return Result.success()

    async def fail_payment(self, payment_id: int, provider_transaction_id: str) -> Result:
        """Mark the payment FAILED; the data is its order id."""
        logger.info("Failing payment %s (provider txn %s)", payment_id, provider_transaction_id)

        payment = await self.store.get_by_id(payment_id)
        if payment is None:
            logger.warning("Payment %s not found", payment_id)
            return Result.failure("Payment not found.", ErrorKind.NOT_FOUND)
        if payment.is_fulfilled:
            logger.warning("Payment %s is fulfilled and cannot fail", payment_id)
            return Result.failure("Cannot mark a fulfilled payment as failed.", ErrorKind.ALREADY_FULFILLED)
        if payment.status == PaymentStatus.SUCCESSFUL:
            logger.warning("Payment %s is successful and cannot fail", payment_id)
            return Result.failure("Cannot mark a successful payment as failed.", ErrorKind.ALREADY_SUCCESSFUL)

        payment.apply_failed(provider_transaction_id)
        return await self._save(payment)

    async def cancel_payment(self, payment_id: int, provider_transaction_id: str) -> Result:
        """Mark the payment CANCELED; the data is its order id."""
        logger.info("Cancelling payment %s (provider txn %s)", payment_id, provider_transaction_id)

        payment = await self.store.get_by_id(payment_id)
        if payment is None:
            logger.warning("Payment %s not found", payment_id)
            return Result.failure("Payment not found.", ErrorKind.NOT_FOUND)
        if payment.is_fulfilled:
            logger.warning("Payment %s is fulfilled and cannot be cancelled", payment_id)
            return Result.failure("Cannot cancel a fulfilled payment.", ErrorKind.ALREADY_FULFILLED)
        if payment.status == PaymentStatus.CANCELED:
            logger.warning("Payment %s is already cancelled", payment_id)
            return Result.failure("Payment is already cancelled.", ErrorKind.ALREADY_CANCELLED)

        payment.apply_cancelled(provider_transaction_id)
        return await self._save(payment)

    async def _save(self, payment: Payment) -> Result:
        self.store.update(payment)
        if await self.store.save_changes() == 0:
            logger.error("Failed to move payment %s to %s", payment.id, payment.status.value)
            return Result.failure("Failed to update payment status.", ErrorKind.PERSISTENCE)
        logger.info("Payment %s is now %s (order %s)", payment.id, payment.status.value, payment.order_id)
        return Result.success(payment.order_id)
