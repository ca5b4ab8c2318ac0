"""
Fulfillment Service: FastAPI entry point

Exposes the checkout saga and the payment-provider callbacks over HTTP and
runs the job worker (reservation expiry, confirmation emails) in the
background.

┌────────────┐  POST /orders              ┌──────────────────────┐
│ Storefront │ ─────────────────────────▶ │ CheckoutOrchestrator │──┐
└────────────┘                            └──────────────────────┘  │ schedule_once
┌────────────┐  POST /payments/{id}/...   ┌──────────────────────┐  │
│  Provider  │ ─────────────────────────▶ │ PaymentGateway       │──┤ enqueue
└────────────┘                            └──────────────────────┘  ▼
                                                             ┌─────────────┐
                                          job worker ◀────── │    Redis    │
                                                             └─────────────┘
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from decimal import Decimal

import redis.asyncio as aioredis
from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from .config import (
    DATABASE_URL,
    EMAIL_SERVICE_URL,
    JOB_POLL_INTERVAL_SECONDS,
    LOG_LEVEL,
    REDIS_URL,
    RESERVATION_EXPIRATION_MINUTES,
    STORE_CURRENCY,
)
from .db import UnitOfWork, create_schema, make_engine, make_session_factory
from .inventory.commands import CHECK_EXPIRED_RESERVATION, InventoryReservationWorkflow
from .jobs.scheduler import RedisScheduler
from .jobs.worker import run_worker
from .notification.notifier import EmailNotifier, Notifier
from .order import queries
from .order.aggregate import Order
from .order.commands import CreateOrderRequest, OrderWorkflow, ShippingDetails
from .result import ErrorKind, Result
from .saga.checkout import CheckoutOrchestrator
from .saga.gateway import SEND_ORDER_CONFIRMATION_EMAIL, PaymentGatewayOrchestrator

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

RESERVATION_WINDOW = timedelta(minutes=RESERVATION_EXPIRATION_MINUTES)

engine = make_engine(DATABASE_URL)
async_session = make_session_factory(engine)
redis_pool: aioredis.Redis | None = None
scheduler: RedisScheduler | None = None
notifier: Notifier = EmailNotifier(EMAIL_SERVICE_URL)


# ── Job handlers ─────────────────────────────────
# Each job gets its own session; nothing is shared with a request.

async def handle_check_expired_reservation(order_id: int) -> None:
    async with async_session() as session:
        order_workflow = OrderWorkflow(session, STORE_CURRENCY)
        workflow = InventoryReservationWorkflow(
            session, order_workflow, scheduler, UnitOfWork(session), RESERVATION_WINDOW
        )
        await workflow.check_expired_reservation(order_id)


async def handle_send_order_confirmation_email(order_id: int) -> None:
    async with async_session() as session:
        gateway = PaymentGatewayOrchestrator.from_session(session, scheduler, notifier, RESERVATION_WINDOW)
        await gateway.send_order_confirmation_email(order_id)


JOB_HANDLERS = {
    CHECK_EXPIRED_RESERVATION: handle_check_expired_reservation,
    SEND_ORDER_CONFIRMATION_EMAIL: handle_send_order_confirmation_email,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open Redis, create the schema and run the job worker until shutdown."""
    global redis_pool, scheduler
    redis_pool = aioredis.from_url(REDIS_URL, decode_responses=True)
    scheduler = RedisScheduler(redis_pool)
    await create_schema(engine)

    shutdown_event = asyncio.Event()
    worker_task = asyncio.create_task(
        run_worker(redis_pool, JOB_HANDLERS, shutdown_event, JOB_POLL_INTERVAL_SECONDS)
    )
    yield
    shutdown_event.set()
    worker_task.cancel()
    try:
        await worker_task
    except asyncio.CancelledError:
        pass
    await redis_pool.aclose()
    await engine.dispose()


app = FastAPI(title="Fulfillment Service", lifespan=lifespan)


# ── Request Models ───────────────────────────────

class ShippingDetailsRequest(BaseModel):
    email: str = Field(min_length=3, max_length=256)
    full_name: str = Field(min_length=1, max_length=200)
    address: str = Field(min_length=1, max_length=500)
    city: str = Field(min_length=1, max_length=100)
    country: str = Field(min_length=1, max_length=100)
    postal_code: str | None = Field(default=None, max_length=20)
    phone: str | None = Field(default=None, max_length=30)


class SubmitOrderRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=450)
    shipping_method: str = Field(min_length=1, max_length=100)
    payment_provider: str
    coupon_code: str | None = Field(default=None, max_length=50)
    shipping_details: ShippingDetailsRequest
    products: dict[int, int]

    @field_validator("products")
    @classmethod
    def quantities_positive(cls, value: dict[int, int]) -> dict[int, int]:
        if any(quantity <= 0 for quantity in value.values()):
            raise ValueError("Quantities must be greater than 0.")
        return value


class ConfirmPaymentRequest(BaseModel):
    provider_transaction_id: str = Field(min_length=1, max_length=200)
    amount: Decimal


class SettlePaymentRequest(BaseModel):
    provider_transaction_id: str = Field(min_length=1, max_length=200)


# ── Result → HTTP ────────────────────────────────

STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.INVALID_PAYMENT_TYPE: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.PERSISTENCE: 500,
    ErrorKind.ORDER_RESOLUTION_FAILED: 500,
    ErrorKind.UNEXPECTED: 500,
}


def error_response(result: Result) -> JSONResponse:
    return JSONResponse(status_code=STATUS_BY_KIND.get(result.kind, 409), content={"errors": result.errors})


def order_payload(order: Order) -> dict:
    return {
        "id": order.id,
        "order_number": order.order_number,
        "user_id": order.user_id,
        "sub_total": str(order.sub_total),
        "shipping": str(order.shipping),
        "discount": str(order.discount),
        "total": str(order.total),
        "currency": order.currency,
        "is_paid": order.is_paid,
        "status": order.status.value,
        "items": [
            {
                "product_id": item.product_id,
                "product_name": item.product_name,
                "unit_price": str(item.unit_price),
                "quantity": item.quantity,
            }
            for item in order.items
        ],
    }


# ── Command Endpoints ────────────────────────────

@app.post("/orders", status_code=201)
async def submit_order(req: SubmitOrderRequest):
    """Place-order saga: order, stock reservation and payment in one transaction."""
    request = CreateOrderRequest(
        user_id=req.user_id,
        shipping_method=req.shipping_method,
        payment_provider=req.payment_provider,
        shipping_details=ShippingDetails(**req.shipping_details.model_dump()),
        products=req.products,
        coupon_code=req.coupon_code,
    )
    async with async_session() as session:
        orchestrator = CheckoutOrchestrator.from_session(session, scheduler, STORE_CURRENCY, RESERVATION_WINDOW)
        result = await orchestrator.submit_order(request)
    if not result.is_success:
        return error_response(result)
    return {"order": order_payload(result.data.order), "payment_id": result.data.payment_id}


@app.post("/payments/{payment_id}/confirm")
async def confirm_payment(payment_id: int, req: ConfirmPaymentRequest):
    """Provider callback: the payment succeeded. Safe to deliver more than once."""
    async with async_session() as session:
        gateway = PaymentGatewayOrchestrator.from_session(session, scheduler, notifier, RESERVATION_WINDOW)
        result = await gateway.confirm_payment(payment_id, req.provider_transaction_id, req.amount)
    if not result.is_success:
        return error_response(result)
    return {"payment_id": payment_id, "status": "confirmed"}


@app.post("/payments/{payment_id}/fail")
async def fail_payment(payment_id: int, req: SettlePaymentRequest):
    async with async_session() as session:
        gateway = PaymentGatewayOrchestrator.from_session(session, scheduler, notifier, RESERVATION_WINDOW)
        result = await gateway.fail_payment(payment_id, req.provider_transaction_id)
    if not result.is_success:
        return error_response(result)
    return {"payment_id": payment_id, "status": "failed"}


@app.post("/payments/{payment_id}/cancel")
async def cancel_payment(payment_id: int, req: SettlePaymentRequest):
    async with async_session() as session:
        gateway = PaymentGatewayOrchestrator.from_session(session, scheduler, notifier, RESERVATION_WINDOW)
        result = await gateway.cancel_payment(payment_id, req.provider_transaction_id)
    if not result.is_success:
        return error_response(result)
    return {"payment_id": payment_id, "status": "cancelled"}


# ── Query Endpoints ──────────────────────────────

@app.get("/orders/{order_id}")
async def get_order(order_id: int):
    async with async_session() as session:
        order = await queries.get_order(session, order_id)
        if not order:
            raise HTTPException(404, "Order not found.")
        return order


@app.get("/health")
async def health():
    return {"status": "ok", "service": "fulfillment-service"}
