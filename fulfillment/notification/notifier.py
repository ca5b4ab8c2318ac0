"""
Notification: outbound email

``Notifier`` is the port the sagas talk to. ``EmailNotifier`` hands messages
to the email relay over HTTP; delivery failures are reported as ``False``
rather than raised.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum

import httpx
from pydantic import BaseModel


logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    ORDER_CONFIRMATION = "OrderConfirmation"


class EmailMessage(BaseModel):
    to: str
    subject: str
    body: str
    type: NotificationType


def order_confirmation_message(contact: dict) -> EmailMessage:
    """Build the confirmation email from ``order.queries.get_order_contact``."""
    return EmailMessage(
        to=contact["email"],
        subject=f"Order Confirmation - {contact['order_number']}",
        body=(
            f"Hi {contact['full_name']},\n\n"
            f"Thank you for your order {contact['order_number']}. "
            f"We received your payment of {contact['total']} {contact['currency']} "
            "and your items are being prepared for shipping.\n"
        ),
        type=NotificationType.ORDER_CONFIRMATION,
    )


class Notifier(ABC):
    @abstractmethod
    async def send(self, message: EmailMessage) -> bool:
        ...


class EmailNotifier(Notifier):
    def __init__(
        self,
        service_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.service_url = service_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def send(self, message: EmailMessage) -> bool:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.post(f"{self.service_url}/send", json=message.model_dump(mode="json"))
                resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("Email %r to %s was not delivered: %s", message.subject, message.to, e)
            return False
        logger.info("Email %r sent to %s", message.subject, message.to)
        return True
