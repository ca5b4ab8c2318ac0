"""
Inventory Service: Reservation Store
"""

from sqlalchemy.engine import RowMapping

from ..db import as_utc
from ..store import Store
from ..tables import inventory_reservations
from .aggregate import InventoryReservation, ReservationStatus


class ReservationStore(Store):
    table = inventory_reservations

    def _from_row(self, row: RowMapping) -> InventoryReservation:
        return InventoryReservation(
            id=row["id"],
            order_id=row["order_id"],
            status=ReservationStatus(row["status"]),
            expires_at=as_utc(row["expires_at"]),
            version=row["version"],
            created_at=as_utc(row["created_at"]),
            updated_at=as_utc(row["updated_at"]),
        )

    def _to_values(self, reservation: InventoryReservation) -> dict:
        return {
            "order_id": reservation.order_id,
            "status": reservation.status.value,
            "expires_at": reservation.expires_at,
            "created_at": reservation.created_at,
            "updated_at": reservation.updated_at,
        }

    async def get_by_order_id(self, order_id: int) -> InventoryReservation | None:
        return await self._get_one(self.table.c.order_id == order_id)
