from __future__ import annotations

from datetime import date, datetime
from typing import Any, Mapping, Protocol

from ..models import Program, Reservation, ReservationStatus, TimeSlot


class ReservationStore(Protocol):
    async def get(self, reservation_id: int) -> Reservation | None: ...

    async def get_for_update(self, reservation_id: int) -> Reservation | None: ...

    async def list_filtered(
        self,
        *,
        date: date | None = None,
        program: Program | None = None,
        slot: TimeSlot | None = None,
        room: str | None = None,
        status: ReservationStatus | None = None,
    ) -> list[Reservation]: ...

    async def find_active_in_window(
        self,
        *,
        program: Program,
        start_at: datetime,
        end_at: datetime,
        exclude_id: int | None = None,
    ) -> list[Reservation]: ...

    async def create(self, fields: Mapping[str, Any]) -> Reservation: ...

    async def update(self, reservation: Reservation, changes: Mapping[str, Any]) -> Reservation: ...

    async def delete(self, reservation: Reservation) -> None: ...
