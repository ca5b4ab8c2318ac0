"""
Inventory Service: Inventory Reservation Workflow

Holds an order's stock while its payment is outstanding.

    create_reservation          ACTIVE, plus a one-shot expiry job for online payments
    mark_consumed               ACTIVE → CONSUMED (called by the confirm saga)
    check_expired_reservation   ACTIVE → RELEASED, giving the stock back (expiry job body)

Confirm and expiry race on the same row. Both read the reservation, check it
is ACTIVE and write it back with a version check, so whichever commits first
wins and the other one affects no rows and rolls back.
"""

import logging
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from ..db import UnitOfWork, utcnow
from ..jobs.scheduler import Scheduler
from ..order.commands import OrderWorkflow
from ..payment.aggregate import PaymentType
from ..result import ErrorKind, Result
from .aggregate import InventoryReservation
from .store import ReservationStore

logger = logging.getLogger(__name__)

CHECK_EXPIRED_RESERVATION = "inventory.check_expired_reservation"


class InventoryReservationWorkflow:
    def __init__(
        self,
        session: AsyncSession,
        order_workflow: OrderWorkflow,
        scheduler: Scheduler,
        uow: UnitOfWork,
        reservation_window: timedelta = timedelta(minutes=30),
    ) -> None:
        self.store = ReservationStore(session)
        self.order_workflow = order_workflow
        self.scheduler = scheduler
        self.uow = uow
        self.reservation_window = reservation_window

    async def create_reservation(self, order_id: int, payment_type: PaymentType) -> Result:
        logger.info("Creating reservation for order %s (%s)", order_id, payment_type.value)

        if not await self.order_workflow.store.exists(id=order_id):
            logger.warning("Cannot reserve stock: order %s does not exist", order_id)
            return Result.failure("Order does not exist", ErrorKind.NOT_FOUND)

        reservation = InventoryReservation(order_id=order_id)
        if payment_type.is_deferred:
            reservation.expires_at = utcnow() + self.reservation_window

        self.store.add(reservation)
        if await self.store.save_changes() == 0:
            logger.error("Reservation for order %s was not saved", order_id)
            return Result.failure("Failed to create reservation", ErrorKind.PERSISTENCE)

        if reservation.expires_at is not None:
            await self.scheduler.schedule_once(
                CHECK_EXPIRED_RESERVATION, self.reservation_window, order_id=order_id
            )

        logger.info(
            "Reservation %s created for order %s (expires at %s)",
            reservation.id, order_id, reservation.expires_at,
        )
        return Result.success(reservation)

    async def mark_consumed(self, order_id: int) -> Result:
        reservation = await self.store.get_by_order_id(order_id)
        if reservation is None:
            logger.warning("No reservation for order %s", order_id)
            return Result.failure("Reservation not found.", ErrorKind.NOT_FOUND)
        if not reservation.is_active:
            logger.warning("Reservation for order %s is %s, not Active", order_id, reservation.status.value)
            return Result.failure(
                f"Reservation is not active (current status: {reservation.status.value}).",
                ErrorKind.NOT_ACTIVE,
            )

        reservation.apply_consumed()
        self.store.update(reservation)
        if await self.store.save_changes() == 0:
            logger.error("Reservation for order %s changed before it could be consumed", order_id)
            return Result.failure("Failed to update reservation status.", ErrorKind.PERSISTENCE)

        logger.info("Reservation for order %s consumed", order_id)
        return Result.success()

    async def check_expired_reservation(self, order_id: int) -> None:
        """
        Release the order's stock if its reservation is still ACTIVE and past
        its expiry. A check that arrives early reschedules itself for the
        time remaining.

        Runs unattended from the job worker, so it logs instead of raising.
        If the release or the status write fails the transaction is rolled
        back and the reservation stays ACTIVE.
        """
        logger.info("Checking reservation expiry for order %s", order_id)
        try:
            reservation = await self.store.get_by_order_id(order_id)
            if reservation is None:
                logger.info("No reservation for order %s; nothing to release", order_id)
                return
            if not reservation.is_active:
                logger.info("Reservation for order %s is %s; nothing to release", order_id, reservation.status.value)
                return
            if reservation.expires_at is None:
                logger.info("Reservation for order %s has no expiry; leaving it Active", order_id)
                return
            remaining = reservation.expires_at - utcnow()
            if remaining > timedelta(0):
                # Order ids can be reused after a rolled-back checkout, so a
                # job may reach a reservation it was not scheduled for.
                logger.info("Reservation for order %s is not due for %s; checking again then", order_id, remaining)
                await self.scheduler.schedule_once(CHECK_EXPIRED_RESERVATION, remaining, order_id=order_id)
                return

            await self.uow.begin()

            if not await self.order_workflow.release_reserved_stock(order_id):
                logger.warning("Could not release stock for order %s; reservation stays Active", order_id)
                await self.uow.rollback()
                return

            reservation.apply_released()
            self.store.update(reservation)
            if await self.store.save_changes() == 0:
                logger.warning("Reservation for order %s changed concurrently; rolling back release", order_id)
                await self.uow.rollback()
                return

            await self.uow.commit()
            logger.info("Reservation for order %s expired and its stock was released", order_id)
        except Exception:
            logger.exception("Expiry check for order %s failed", order_id)
            await self._rollback_quietly(order_id)

    async def _rollback_quietly(self, order_id: int) -> None:
        try:
            await self.uow.rollback()
        except Exception:
            logger.exception("Rollback after expiry check for order %s failed", order_id)
