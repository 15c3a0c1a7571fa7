from __future__ import annotations

from datetime import datetime

from ..models import ACTIVE_STATUSES, Program, Reservation, ReservationStatus
from .repositories import ReservationStore


def windows_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open intersection test: touching windows do not overlap."""
    return a_start < b_end and a_end > b_start


def is_active(status: ReservationStatus | str) -> bool:
    return ReservationStatus(status) in ACTIVE_STATUSES


def resolve_display_name(
    name: str | None,
    last_name: str | None,
    first_name: str | None,
    *,
    fallback: str,
) -> str:
    """
    Explicit name wins; otherwise last+first name joined as written on the form;
    otherwise the fallback placeholder.
    """
    if name and name.strip():
        return name.strip()
    joined = f"{(last_name or '').strip()}{(first_name or '').strip()}"
    if joined:
        return joined
    return fallback


class OverlapChecker:
    def __init__(self, store: ReservationStore) -> None:
        self.store = store

    async def conflicts(
        self,
        program: Program,
        start_at: datetime,
        end_at: datetime,
        exclude_id: int | None = None,
    ) -> list[Reservation]:
        rows = await self.store.find_active_in_window(
            program=program,
            start_at=start_at,
            end_at=end_at,
            exclude_id=exclude_id,
        )
        return [
            row
            for row in rows
            if row.program == program
            and row.id != exclude_id
            and is_active(row.status)
            and windows_overlap(row.start_at, row.end_at, start_at, end_at)
        ]

    async def has_conflict(
        self,
        program: Program,
        start_at: datetime,
        end_at: datetime,
        exclude_id: int | None = None,
    ) -> bool:
        return bool(await self.conflicts(program, start_at, end_at, exclude_id))
