from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import pytest

from fulfillment.inventory.aggregate import ReservationStatus
from fulfillment.inventory.store import ReservationStore
from fulfillment.notification.notifier import NotificationType
from fulfillment.order.aggregate import OrderStatus
from fulfillment.order.store import OrderStore
from fulfillment.payment.aggregate import PaymentStatus
from fulfillment.payment.store import PaymentStore
from fulfillment.result import ErrorKind, Result
from fulfillment.saga.gateway import (
    SEND_ORDER_CONFIRMATION_EMAIL,
    UNEXPECTED_PAYMENT_ERROR,
    PaymentGatewayOrchestrator,
)


def mocked_gateway(notifier):
    """Gateway whose collaborators are children of one parent mock."""
    parent = Mock()
    for name in ("begin", "commit", "rollback", "enqueue"):
        setattr(parent, name, AsyncMock())
    parent.is_payment_fulfilled = AsyncMock(return_value=False)
    parent.get_order_id_by_payment_id = AsyncMock(return_value=7)
    parent.confirm_payment = AsyncMock(return_value=Result.success())
    parent.fail_payment = AsyncMock(return_value=Result.success(7))
    parent.cancel_payment = AsyncMock(return_value=Result.success(7))
    for name in ("mark_paid", "mark_failed", "mark_cancelled", "mark_consumed"):
        setattr(parent, name, AsyncMock(return_value=Result.success()))

    gateway = PaymentGatewayOrchestrator(
        session=None,
        payment_workflow=SimpleNamespace(
            confirm_payment=parent.confirm_payment,
            fail_payment=parent.fail_payment,
            cancel_payment=parent.cancel_payment,
        ),
        payment_store=SimpleNamespace(
            is_payment_fulfilled=parent.is_payment_fulfilled,
            get_order_id_by_payment_id=parent.get_order_id_by_payment_id,
        ),
        order_workflow=SimpleNamespace(
            mark_paid=parent.mark_paid, mark_failed=parent.mark_failed, mark_cancelled=parent.mark_cancelled
        ),
        reservation_workflow=SimpleNamespace(mark_consumed=parent.mark_consumed),
        uow=SimpleNamespace(begin=parent.begin, commit=parent.commit, rollback=parent.rollback),
        scheduler=SimpleNamespace(enqueue=parent.enqueue),
        notifier=notifier,
    )
    return parent, gateway


def call_names(parent):
    return [name for name, _, _ in parent.mock_calls]


# ── Confirm ──────────────────────────────────────


async def test_confirm_runs_steps_in_order(notifier):
    parent, gateway = mocked_gateway(notifier)

    result = await gateway.confirm_payment(70, "pi_1", Decimal("55.00"))

    assert result.is_success
    assert call_names(parent) == [
        "is_payment_fulfilled",
        "begin",
        "confirm_payment",
        "get_order_id_by_payment_id",
        "mark_paid",
        "mark_consumed",
        "commit",
        "enqueue",
    ]
    parent.confirm_payment.assert_awaited_once_with(70, "pi_1", Decimal("55.00"))
    parent.mark_paid.assert_awaited_once_with(7)
    parent.mark_consumed.assert_awaited_once_with(7)
    parent.enqueue.assert_awaited_once_with(SEND_ORDER_CONFIRMATION_EMAIL, order_id=7)


async def test_confirm_of_fulfilled_payment_is_a_no_op(notifier):
    parent, gateway = mocked_gateway(notifier)
    parent.is_payment_fulfilled.return_value = True

    result = await gateway.confirm_payment(70, "pi_1", Decimal("55.00"))

    assert result.is_success
    assert call_names(parent) == ["is_payment_fulfilled"]


async def test_unresolvable_order_rolls_back(notifier):
    parent, gateway = mocked_gateway(notifier)
    parent.get_order_id_by_payment_id.return_value = None

    result = await gateway.confirm_payment(70, "pi_1", Decimal("55.00"))

    assert result.errors == ["Failed to retrieve order details."]
    assert result.kind == ErrorKind.ORDER_RESOLUTION_FAILED
    assert call_names(parent)[-1] == "rollback"
    parent.mark_paid.assert_not_awaited()


@pytest.mark.parametrize("step", ["confirm_payment", "mark_paid", "mark_consumed"])
async def test_confirm_step_failure_rolls_back_without_notification(notifier, step):
    parent, gateway = mocked_gateway(notifier)
    getattr(parent, step).return_value = Result.failure("nope", ErrorKind.INVALID_TRANSITION)

    result = await gateway.confirm_payment(70, "pi_1", Decimal("55.00"))

    assert result.errors == ["nope"]
    assert call_names(parent)[-2:] == [step, "rollback"]
    parent.commit.assert_not_awaited()
    parent.enqueue.assert_not_awaited()


async def test_confirm_exception_is_hidden(notifier):
    parent, gateway = mocked_gateway(notifier)
    parent.mark_consumed.side_effect = RuntimeError("could not serialize access")

    result = await gateway.confirm_payment(70, "pi_1", Decimal("55.00"))

    assert result.errors == [UNEXPECTED_PAYMENT_ERROR]
    assert result.kind == ErrorKind.UNEXPECTED
    parent.rollback.assert_awaited_once()
    parent.enqueue.assert_not_awaited()


async def test_notification_enqueue_failure_keeps_confirmation(notifier):
    parent, gateway = mocked_gateway(notifier)
    parent.enqueue.side_effect = ConnectionError("redis down")

    result = await gateway.confirm_payment(70, "pi_1", Decimal("55.00"))

    assert result.is_success
    parent.commit.assert_awaited_once()
    parent.rollback.assert_not_awaited()


# ── Fail / cancel ────────────────────────────────


async def test_fail_updates_payment_then_order(notifier):
    parent, gateway = mocked_gateway(notifier)

    result = await gateway.fail_payment(70, "pi_1")

    assert result.is_success
    assert call_names(parent) == ["begin", "fail_payment", "mark_failed", "commit"]
    parent.mark_failed.assert_awaited_once_with(7)


async def test_cancel_rolls_back_when_order_update_fails(notifier):
    parent, gateway = mocked_gateway(notifier)
    parent.mark_cancelled.return_value = Result.failure("Cannot cancel a paid order.", ErrorKind.INVALID_TRANSITION)

    result = await gateway.cancel_payment(70, "pi_1")

    assert result.errors == ["Cannot cancel a paid order."]
    assert call_names(parent) == ["begin", "cancel_payment", "mark_cancelled", "rollback"]


async def test_fail_rejected_payment_skips_order(notifier):
    parent, gateway = mocked_gateway(notifier)
    parent.fail_payment.return_value = Result.failure(
        "Cannot mark a fulfilled payment as failed.", ErrorKind.ALREADY_FULFILLED
    )

    result = await gateway.fail_payment(70, "pi_1")

    assert result.errors == ["Cannot mark a fulfilled payment as failed."]
    parent.mark_failed.assert_not_awaited()
    parent.rollback.assert_awaited_once()


async def test_cancel_exception_is_hidden(notifier):
    parent, gateway = mocked_gateway(notifier)
    parent.cancel_payment.side_effect = RuntimeError("boom")

    result = await gateway.cancel_payment(70, "pi_1")

    assert result.errors == [UNEXPECTED_PAYMENT_ERROR]
    parent.rollback.assert_awaited_once()


# ── Against the database ─────────────────────────


async def load(session_factory, placed_order):
    async with session_factory() as session:
        return (
            await PaymentStore(session).get_by_id(placed_order.payment_id),
            await OrderStore(session).get_by_id(placed_order.order.id),
            await ReservationStore(session).get_by_order_id(placed_order.order.id),
        )


async def test_duplicate_confirmation_is_applied_once(session, session_factory, scheduler, notifier, placed_order):
    gateway = PaymentGatewayOrchestrator.from_session(session, scheduler, notifier)
    gateway.payment_workflow.confirm_payment = AsyncMock(wraps=gateway.payment_workflow.confirm_payment)
    gateway.order_workflow.mark_paid = AsyncMock(wraps=gateway.order_workflow.mark_paid)
    total = placed_order.order.total

    first = await gateway.confirm_payment(placed_order.payment_id, "pi_1", total)
    second = await gateway.confirm_payment(placed_order.payment_id, "pi_1", total)

    assert first.is_success and second.is_success
    gateway.payment_workflow.confirm_payment.assert_awaited_once()
    gateway.order_workflow.mark_paid.assert_awaited_once()
    assert scheduler.enqueued == [(SEND_ORDER_CONFIRMATION_EMAIL, {"order_id": placed_order.order.id})]

    payment, order, reservation = await load(session_factory, placed_order)
    assert payment.is_fulfilled and payment.status == PaymentStatus.SUCCESSFUL
    assert order.is_paid and order.status == OrderStatus.PAID
    assert reservation.status == ReservationStatus.CONSUMED


async def test_tampered_amount_changes_nothing(session, session_factory, scheduler, notifier, placed_order):
    gateway = PaymentGatewayOrchestrator.from_session(session, scheduler, notifier)

    result = await gateway.confirm_payment(placed_order.payment_id, "pi_1", Decimal("0.01"))

    assert result.kind == ErrorKind.AMOUNT_MISMATCH
    payment, order, reservation = await load(session_factory, placed_order)
    assert payment.status == PaymentStatus.PROCESSING
    assert order.status == OrderStatus.PROCESSING
    assert reservation.status == ReservationStatus.ACTIVE
    assert scheduler.enqueued == []


async def test_failed_payment_fails_the_order(session, session_factory, scheduler, notifier, placed_order):
    gateway = PaymentGatewayOrchestrator.from_session(session, scheduler, notifier)

    result = await gateway.fail_payment(placed_order.payment_id, "pi_declined")

    assert result.is_success
    payment, order, reservation = await load(session_factory, placed_order)
    assert payment.status == PaymentStatus.FAILED
    assert payment.provider_transaction_id == "pi_declined"
    assert order.status == OrderStatus.FAILED
    # stock comes back when the scheduled expiry fires
    assert reservation.status == ReservationStatus.ACTIVE


async def test_cancel_after_confirmation_is_rejected(session, session_factory, scheduler, notifier, placed_order):
    gateway = PaymentGatewayOrchestrator.from_session(session, scheduler, notifier)
    await gateway.confirm_payment(placed_order.payment_id, "pi_1", placed_order.order.total)

    result = await gateway.cancel_payment(placed_order.payment_id, "pi_1")

    assert result.errors == ["Cannot cancel a fulfilled payment."]
    _, order, _ = await load(session_factory, placed_order)
    assert order.status == OrderStatus.PAID


# ── Confirmation email job ───────────────────────


async def test_confirmation_email_goes_to_shipping_address(session, scheduler, notifier, placed_order):
    gateway = PaymentGatewayOrchestrator.from_session(session, scheduler, notifier)

    await gateway.send_order_confirmation_email(placed_order.order.id)

    [message] = notifier.sent
    assert message.to == "ada@example.com"
    assert message.subject == f"Order Confirmation - {placed_order.order.order_number}"
    assert message.type == NotificationType.ORDER_CONFIRMATION
    assert "Ada Lovelace" in message.body


async def test_confirmation_email_for_unknown_order_is_skipped(session, scheduler, notifier):
    gateway = PaymentGatewayOrchestrator.from_session(session, scheduler, notifier)

    await gateway.send_order_confirmation_email(999)

    assert notifier.sent == []


async def test_confirmation_email_failures_are_swallowed(session, scheduler, notifier, placed_order):
    gateway = PaymentGatewayOrchestrator.from_session(session, scheduler, notifier)
    notifier.should_succeed = False
    await gateway.send_order_confirmation_email(placed_order.order.id)

    gateway.notifier = SimpleNamespace(send=AsyncMock(side_effect=RuntimeError("smtp down")))
    await gateway.send_order_confirmation_email(placed_order.order.id)
