"""
Saga: Checkout Orchestrator (place-order saga)

    1. validate line items and payment type   (no transaction yet)
    2. begin
    3. create order        ──┐
    4. reserve stock         ├─ any failure → rollback, return its errors
    5. create payment      ──┘
    6. commit
    7. return order + payment id

The reservation is created before the payment so that every payment which is
later confirmed has a reservation to consume.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from ..db import UnitOfWork
from ..inventory.commands import InventoryReservationWorkflow
from ..jobs.scheduler import Scheduler
from ..order.aggregate import Order
from ..order.commands import CreateOrderRequest, OrderWorkflow
from ..payment.aggregate import PaymentType
from ..payment.commands import CreatePaymentRequest, PaymentWorkflow
from ..result import ErrorKind, Result

logger = logging.getLogger(__name__)

UNEXPECTED_CHECKOUT_ERROR = "An unexpected error occurred while processing your order. Please try again later."


@dataclass
class CheckoutResult:
    order: Order
    payment_id: int


class CheckoutOrchestrator:
    def __init__(
        self,
        order_workflow: OrderWorkflow,
        reservation_workflow: InventoryReservationWorkflow,
        payment_workflow: PaymentWorkflow,
        uow: UnitOfWork,
    ) -> None:
        self.order_workflow = order_workflow
        self.reservation_workflow = reservation_workflow
        self.payment_workflow = payment_workflow
        self.uow = uow

    @classmethod
    def from_session(
        cls,
        session: AsyncSession,
        scheduler: Scheduler,
        currency: str = "USD",
        reservation_window: timedelta = timedelta(minutes=30),
    ) -> "CheckoutOrchestrator":
        uow = UnitOfWork(session)
        order_workflow = OrderWorkflow(session, currency)
        return cls(
            order_workflow=order_workflow,
            reservation_workflow=InventoryReservationWorkflow(
                session, order_workflow, scheduler, uow, reservation_window
            ),
            payment_workflow=PaymentWorkflow(session),
            uow=uow,
        )

    async def submit_order(self, request: CreateOrderRequest) -> Result:
        """Run the place-order saga. Success data is a ``CheckoutResult``."""
        logger.info("Checkout started for user %s via %s", request.user_id, request.payment_provider)

        if not request.products:
            logger.warning("Checkout rejected for user %s: no products", request.user_id)
            return Result.failure("The order must contain at least one product.", ErrorKind.VALIDATION)

        payment_type = PaymentType.parse(request.payment_provider)
        if payment_type is None:
            logger.warning("Checkout rejected for user %s: payment type %r", request.user_id, request.payment_provider)
            return Result.failure("Invalid payment type.", ErrorKind.INVALID_PAYMENT_TYPE)

        try:
            await self.uow.begin()

            # ── Step 1: create the order ─────────────
            order_result = await self.order_workflow.create_order(request)
            if not order_result.is_success:
                logger.warning("Checkout: order creation failed: %s", ", ".join(order_result.errors))
                await self.uow.rollback()
                return Result.propagate(order_result)
            order = order_result.data

            # ── Step 2: reserve its stock ────────────
            reservation_result = await self.reservation_workflow.create_reservation(order.id, payment_type)
            if not reservation_result.is_success:
                logger.warning(
                    "Checkout: reservation for order %s failed: %s", order.id, ", ".join(reservation_result.errors)
                )
                await self.uow.rollback()
                return Result.propagate(reservation_result)

            # ── Step 3: open the payment ─────────────
            payment_result = await self.payment_workflow.create_payment(
                CreatePaymentRequest(
                    order_id=order.id,
                    user_id=request.user_id,
                    amount=order.total,
                    currency=order.currency,
                    provider=payment_type,
                )
            )
            if not payment_result.is_success:
                logger.warning(
                    "Checkout: payment for order %s failed: %s", order.id, ", ".join(payment_result.errors)
                )
                await self.uow.rollback()
                return Result.propagate(payment_result)

            await self.uow.commit()
        except Exception:
            logger.exception("Checkout for user %s failed unexpectedly", request.user_id)
            await self.uow.rollback()
            return Result.failure(UNEXPECTED_CHECKOUT_ERROR, ErrorKind.UNEXPECTED)

        logger.info("Checkout complete: order %s, payment %s", order.id, payment_result.data.id)
        return Result.success(CheckoutResult(order=order, payment_id=payment_result.data.id))
