"""
Saga: Payment Gateway Orchestrator

Applies the payment provider's verdict to the payment, its order and the
order's reservation in one transaction.

Confirm (may be delivered more than once):

    fulfilled? ── yes ─▶ success, nothing else happens
        │ no
    begin → confirm payment → resolve order id → mark order paid
          → consume reservation → commit → enqueue confirmation email

Fail / cancel:

    begin → fail|cancel payment → mark order failed|cancelled → commit

Any failed step rolls the whole group back and returns that step's errors.
"""

import logging
from datetime import timedelta
from decimal import Decimal
from typing import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from ..db import UnitOfWork
from ..inventory.commands import InventoryReservationWorkflow
from ..jobs.scheduler import Scheduler
from ..notification.notifier import Notifier, order_confirmation_message
from ..order import queries
from ..order.commands import OrderWorkflow
from ..payment.commands import PaymentWorkflow
from ..payment.store import PaymentStore
from ..result import ErrorKind, Result

logger = logging.getLogger(__name__)

SEND_ORDER_CONFIRMATION_EMAIL = "notification.send_order_confirmation_email"

UNEXPECTED_PAYMENT_ERROR = "An unexpected error occurred during payment processing."


class PaymentGatewayOrchestrator:
    def __init__(
        self,
        session: AsyncSession | None,
        payment_workflow: PaymentWorkflow,
        payment_store: PaymentStore,
        order_workflow: OrderWorkflow,
        reservation_workflow: InventoryReservationWorkflow,
        uow: UnitOfWork,
        scheduler: Scheduler,
        notifier: Notifier,
    ) -> None:
        self.session = session
        self.payment_workflow = payment_workflow
        self.payment_store = payment_store
        self.order_workflow = order_workflow
        self.reservation_workflow = reservation_workflow
        self.uow = uow
        self.scheduler = scheduler
        self.notifier = notifier

    @classmethod
    def from_session(
        cls,
        session: AsyncSession,
        scheduler: Scheduler,
        notifier: Notifier,
        reservation_window: timedelta = timedelta(minutes=30),
    ) -> "PaymentGatewayOrchestrator":
        uow = UnitOfWork(session)
        payment_workflow = PaymentWorkflow(session)
        order_workflow = OrderWorkflow(session)
        return cls(
            session=session,
            payment_workflow=payment_workflow,
            payment_store=payment_workflow.store,
            order_workflow=order_workflow,
            reservation_workflow=InventoryReservationWorkflow(
                session, order_workflow, scheduler, uow, reservation_window
            ),
            uow=uow,
            scheduler=scheduler,
            notifier=notifier,
        )

    # ── Confirm ──────────────────────────────────

    async def confirm_payment(self, payment_id: int, provider_transaction_id: str, amount: Decimal) -> Result:
        logger.info("Payment confirmation for payment %s started", payment_id)

        try:
            if await self.payment_store.is_payment_fulfilled(payment_id):
                logger.info("Payment %s is already fulfilled; skipping duplicate confirmation", payment_id)
                return Result.success()

            await self.uow.begin()

            confirm_result = await self.payment_workflow.confirm_payment(payment_id, provider_transaction_id, amount)
            if not confirm_result.is_success:
                logger.warning("Confirmation of payment %s failed: %s", payment_id, ", ".join(confirm_result.errors))
                await self.uow.rollback()
                return Result.propagate(confirm_result)

            order_id = await self.payment_store.get_order_id_by_payment_id(payment_id)
            if order_id is None:
                logger.error("Payment %s confirmed but its order could not be resolved", payment_id)
                await self.uow.rollback()
                return Result.failure("Failed to retrieve order details.", ErrorKind.ORDER_RESOLUTION_FAILED)

            paid_result = await self.order_workflow.mark_paid(order_id)
            if not paid_result.is_success:
                logger.error(
                    "Order %s could not be marked paid for payment %s: %s",
                    order_id, payment_id, ", ".join(paid_result.errors),
                )
                await self.uow.rollback()
                return Result.propagate(paid_result)

            consumed_result = await self.reservation_workflow.mark_consumed(order_id)
            if not consumed_result.is_success:
                logger.error(
                    "Reservation for order %s could not be consumed: %s", order_id, ", ".join(consumed_result.errors)
                )
                await self.uow.rollback()
                return Result.propagate(consumed_result)

            await self.uow.commit()
        except Exception:
            logger.exception("Payment confirmation for payment %s failed unexpectedly", payment_id)
            await self.uow.rollback()
            return Result.failure(UNEXPECTED_PAYMENT_ERROR, ErrorKind.UNEXPECTED)

        logger.info("Payment %s confirmed; order %s paid and its reservation consumed", payment_id, order_id)
        await self._enqueue_confirmation_email(order_id)
        return Result.success()

    async def _enqueue_confirmation_email(self, order_id: int) -> None:
        try:
            await self.scheduler.enqueue(SEND_ORDER_CONFIRMATION_EMAIL, order_id=order_id)
        except Exception:
            logger.exception("Could not enqueue confirmation email for order %s", order_id)

    # ── Fail / cancel ────────────────────────────

    async def fail_payment(self, payment_id: int, provider_transaction_id: str) -> Result:
        return await self._settle(
            "fail", payment_id, provider_transaction_id,
            self.payment_workflow.fail_payment, self.order_workflow.mark_failed,
        )

    async def cancel_payment(self, payment_id: int, provider_transaction_id: str) -> Result:
        return await self._settle(
            "cancel", payment_id, provider_transaction_id,
            self.payment_workflow.cancel_payment, self.order_workflow.mark_cancelled,
        )

    async def _settle(
        self,
        action: str,
        payment_id: int,
        provider_transaction_id: str,
        update_payment: Callable[[int, str], Awaitable[Result]],
        update_order: Callable[[int], Awaitable[Result]],
    ) -> Result:
        logger.info("Payment %s: %s started", payment_id, action)
        try:
            await self.uow.begin()

            payment_result = await update_payment(payment_id, provider_transaction_id)
            if not payment_result.is_success:
                logger.warning("Payment %s: %s rejected: %s", payment_id, action, ", ".join(payment_result.errors))
                await self.uow.rollback()
                return Result.propagate(payment_result)

            order_id = payment_result.data
            order_result = await update_order(order_id)
            if not order_result.is_success:
                logger.warning(
                    "Payment %s: order %s not updated: %s", payment_id, order_id, ", ".join(order_result.errors)
                )
                await self.uow.rollback()
                return Result.propagate(order_result)

            await self.uow.commit()
        except Exception:
            logger.exception("Payment %s: %s failed unexpectedly", payment_id, action)
            await self.uow.rollback()
            return Result.failure(UNEXPECTED_PAYMENT_ERROR, ErrorKind.UNEXPECTED)

        logger.info("Payment %s: %s complete for order %s", payment_id, action, order_id)
        return Result.success()

    # ── Notification job ─────────────────────────

    async def send_order_confirmation_email(self, order_id: int) -> None:
        """Job body. Best effort: every failure is logged, nothing is raised."""
        try:
            contact = await queries.get_order_contact(self.session, order_id)
            if contact is None:
                logger.warning("Confirmation email skipped: order %s not found", order_id)
                return
            if not contact["email"]:
                logger.warning("Confirmation email skipped: order %s has no shipping email", order_id)
                return

            if not await self.notifier.send(order_confirmation_message(contact)):
                logger.warning("Confirmation email for order %s was not delivered", order_id)
        except Exception:
            logger.exception("Confirmation email for order %s failed", order_id)
