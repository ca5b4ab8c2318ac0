"""
Inventory Service: InventoryReservation aggregate

    ACTIVE → CONSUMED   (payment confirmed)
    ACTIVE → RELEASED   (window expired, stock given back)

Both targets are terminal. A reservation without ``expires_at`` never
expires on its own.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from ..db import utcnow


class ReservationStatus(str, Enum):
    ACTIVE = "Active"
    CONSUMED = "Consumed"
    RELEASED = "Released"


@dataclass
class InventoryReservation:
    order_id: int
    status: ReservationStatus = ReservationStatus.ACTIVE
    expires_at: datetime | None = None
    id: int | None = None
    version: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status == ReservationStatus.ACTIVE

    def apply_consumed(self) -> None:
        self.status = ReservationStatus.CONSUMED
        self.updated_at = utcnow()

    def apply_released(self) -> None:
        self.status = ReservationStatus.RELEASED
        self.updated_at = utcnow()
