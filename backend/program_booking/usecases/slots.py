from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Iterable, cast

from ..domain.repositories import ReservationStore
from ..domain.services import OverlapChecker
from ..domain.slots import SlotRange, SlotWindowResolver, parse_civil_date
from ..models import Program, TimeSlot


@dataclass(frozen=True)
class SlotWindow:
    program: Program
    slot: TimeSlot
    local_range: SlotRange
    start_at: datetime | None = None
    end_at: datetime | None = None
    available: bool | None = None


def list_slots(
    resolver: SlotWindowResolver,
    *,
    programs: Iterable[Program],
    day: date | str | None = None,
) -> list[SlotWindow]:
    civil = parse_civil_date(day) if day is not None else None
    items: list[SlotWindow] = []
    for program in programs:
        for slot, rng in resolver.ranges_for(program):
            if civil is None:
                items.append(SlotWindow(program=program, slot=slot, local_range=rng))
                continue
            start_at, end_at = resolver.resolve(civil, program, slot)
            items.append(SlotWindow(program=program, slot=slot, local_range=rng, start_at=start_at, end_at=end_at))
    return items


async def list_availability(
    store: ReservationStore,
    resolver: SlotWindowResolver,
    *,
    programs: Iterable[Program],
    day: date | str,
) -> list[SlotWindow]:
    checker = OverlapChecker(store)
    items: list[SlotWindow] = []
    for entry in list_slots(resolver, programs=programs, day=day):
        taken = await checker.has_conflict(entry.program, cast(datetime, entry.start_at), cast(datetime, entry.end_at))
        items.append(replace(entry, available=not taken))
    return items
