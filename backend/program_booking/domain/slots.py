from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, tzinfo
from types import MappingProxyType
from typing import Iterator, Mapping

from ..models import Program, TimeSlot
from ..utils.time import to_utc_naive
from .errors import InvalidSlotError


@dataclass(frozen=True)
class SlotRange:
    """Local wall-clock range of a slot, half-open."""

    start: time
    end: time


class SlotTable:
    """Immutable (program, slot) -> local time range lookup."""

    def __init__(self, entries: Mapping[tuple[Program, TimeSlot], SlotRange]) -> None:
        for key, rng in entries.items():
            if rng.start >= rng.end:
                raise ValueError(f"slot range for {key} must start before it ends")
        self._entries = MappingProxyType(dict(entries))

    def get(self, program: Program, slot: TimeSlot) -> SlotRange | None:
        return self._entries.get((program, slot))

    def ranges_for(self, program: Program) -> list[tuple[TimeSlot, SlotRange]]:
        return [(slot, rng) for (prog, slot), rng in self._entries.items() if prog == program]

    def __iter__(self) -> Iterator[tuple[tuple[Program, TimeSlot], SlotRange]]:
        return iter(self._entries.items())


DEFAULT_SLOT_TABLE = SlotTable(
    {
        (Program.TOUR, TimeSlot.AM): SlotRange(time(10, 30), time(12, 0)),
        (Program.TOUR, TimeSlot.PM): SlotRange(time(13, 0), time(15, 0)),
        (Program.EXPERIENCE, TimeSlot.AM): SlotRange(time(10, 0), time(12, 0)),
        (Program.EXPERIENCE, TimeSlot.PM): SlotRange(time(13, 0), time(15, 0)),
        (Program.EXPERIENCE, TimeSlot.FULL): SlotRange(time(10, 0), time(15, 0)),
    }
)


def parse_civil_date(value: date | str) -> date:
    if isinstance(value, datetime):
        raise InvalidSlotError("date must not carry a time component")
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError as exc:
        raise InvalidSlotError(f"invalid date: {value!r}") from exc


class SlotWindowResolver:
    """Maps (date, program, slot) to a naive UTC [start, end) window."""

    def __init__(self, table: SlotTable, tz: tzinfo) -> None:
        self.table = table
        self.tz = tz

    def resolve(
        self,
        day: date | str,
        program: Program | str,
        slot: TimeSlot | str,
    ) -> tuple[datetime, datetime]:
        civil = parse_civil_date(day)
        try:
            program = Program(program)
            slot = TimeSlot(slot)
        except ValueError as exc:
            raise InvalidSlotError(f"unknown program/slot: {program}/{slot}") from exc

        rng = self.table.get(program, slot)
        if rng is None:
            raise InvalidSlotError(f"slot '{slot}' is not available for program '{program}'")

        start = datetime.combine(civil, rng.start, tzinfo=self.tz)
        end = datetime.combine(civil, rng.end, tzinfo=self.tz)
        return to_utc_naive(start), to_utc_naive(end)

    def ranges_for(self, program: Program | str) -> list[tuple[TimeSlot, SlotRange]]:
        return self.table.ranges_for(Program(program))
