from datetime import datetime
from typing import Any, Mapping, Optional

import pytest
from program_booking.domain.errors import (
    ConflictViolationError,
    InvalidSlotError,
    ReservationNotFoundError,
    ReservationValidationError,
    ScheduleConflictError,
)
from program_booking.domain.services import windows_overlap
from program_booking.domain.slots import SlotWindowResolver
from program_booking.models import OVERLAP_CONSTRAINT, ACTIVE_STATUSES, Program, Reservation, ReservationStatus
from program_booking.usecases import reservations as uc


class FakeStore:
    def __init__(self) -> None:
        self.rows: dict[int, Reservation] = {}
        self.next_id = 1
        # Simulates a concurrent writer committing between the app check and the write.
        self.reject_next_write = False
        self.created = 0
        self.updated = 0

    async def get(self, reservation_id: int) -> Optional[Reservation]:
        return self.rows.get(reservation_id)

    async def get_for_update(self, reservation_id: int) -> Optional[Reservation]:
        return self.rows.get(reservation_id)

    async def list_filtered(self, **filters: Any) -> list[Reservation]:
        rows = [r for r in self.rows.values() if all(v is None or getattr(r, k) == v for k, v in filters.items())]
        return sorted(rows, key=lambda r: (r.date, r.start_at, r.id))

    async def find_active_in_window(
        self,
        *,
        program: Program,
        start_at: datetime,
        end_at: datetime,
        exclude_id: Optional[int] = None,
    ) -> list[Reservation]:
        return [
            r
            for r in self.rows.values()
            if r.program == program
            and r.status in ACTIVE_STATUSES
            and r.id != exclude_id
            and windows_overlap(r.start_at, r.end_at, start_at, end_at)
        ]

    async def create(self, fields: Mapping[str, Any]) -> Reservation:
        if self.reject_next_write:
            self.reject_next_write = False
            raise ConflictViolationError("overlap", constraint=OVERLAP_CONSTRAINT)
        reservation = Reservation(id=self.next_id, **fields)
        self.rows[reservation.id] = reservation
        self.next_id += 1
        self.created += 1
        return reservation

    async def update(self, reservation: Reservation, changes: Mapping[str, Any]) -> Reservation:
        if self.reject_next_write:
            self.reject_next_write = False
            raise ConflictViolationError("overlap", constraint=OVERLAP_CONSTRAINT)
        for key, value in changes.items():
            setattr(reservation, key, value)
        self.updated += 1
        return reservation

    async def delete(self, reservation: Reservation) -> None:
        self.rows.pop(reservation.id)


async def _create(store: FakeStore, resolver: SlotWindowResolver, day: str, program: str, slot: str, **guest: Any) -> Reservation:
    return await uc.create_reservation(store, resolver, date=day, program=program, slot=slot, guest=guest)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_create_defaults_status_name_and_certificate(resolver: SlotWindowResolver) -> None:
    store = FakeStore()
    res = await _create(store, resolver, "2025-09-11", "experience", "am")
    assert res.status == ReservationStatus.BOOKED
    assert res.name == "guest"
    assert res.has_certificate is False
    assert res.start_at == datetime(2025, 9, 11, 1, 0)
    assert res.end_at == datetime(2025, 9, 11, 3, 0)


@pytest.mark.asyncio
async def test_create_uses_name_parts(resolver: SlotWindowResolver) -> None:
    store = FakeStore()
    res = await _create(store, resolver, "2025-09-11", "tour", "pm", last_name="Yamada", first_name="Taro")
    assert res.name == "YamadaTaro"


@pytest.mark.asyncio
async def test_documented_scenario_full_conflicts_with_am_other_program_ok(resolver: SlotWindowResolver) -> None:
    store = FakeStore()
    await _create(store, resolver, "2025-09-11", "experience", "am")
    with pytest.raises(ScheduleConflictError):
        await _create(store, resolver, "2025-09-11", "experience", "full")
    tour = await _create(store, resolver, "2025-09-11", "tour", "am")
    assert tour.start_at == datetime(2025, 9, 11, 1, 30)
    assert store.created == 2


@pytest.mark.asyncio
async def test_tour_full_is_invalid_slot(resolver: SlotWindowResolver) -> None:
    store = FakeStore()
    with pytest.raises(InvalidSlotError):
        await _create(store, resolver, "2025-09-12", "tour", "full")
    assert store.created == 0


@pytest.mark.asyncio
async def test_missing_required_field_is_validation_error(resolver: SlotWindowResolver) -> None:
    with pytest.raises(ReservationValidationError):
        await uc.create_reservation(FakeStore(), resolver, date="2025-09-11", program=None, slot="am")  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_am_and_pm_of_same_program_both_succeed(resolver: SlotWindowResolver) -> None:
    store = FakeStore()
    first = await _create(store, resolver, "2025-09-11", "experience", "am")
    second = await _create(store, resolver, "2025-09-11", "experience", "pm")
    assert first.end_at <= second.start_at
    assert store.created == 2


@pytest.mark.asyncio
async def test_storage_rejection_maps_to_schedule_conflict(resolver: SlotWindowResolver) -> None:
    store = FakeStore()
    store.reject_next_write = True
    with pytest.raises(ScheduleConflictError):
        await _create(store, resolver, "2025-09-11", "experience", "am")
    assert store.rows == {}


@pytest.mark.asyncio
async def test_cancelled_reservation_frees_window(resolver: SlotWindowResolver) -> None:
    store = FakeStore()
    first = await _create(store, resolver, "2025-09-11", "experience", "am")
    await uc.cancel_reservation(store, resolver, reservation_id=first.id)
    second = await _create(store, resolver, "2025-09-11", "experience", "am")
    assert (second.start_at, second.end_at) == (first.start_at, first.end_at)


@pytest.mark.asyncio
async def test_status_only_update_keeps_window(resolver: SlotWindowResolver) -> None:
    store = FakeStore()
    res = await _create(store, resolver, "2025-09-11", "experience", "am")
    window = (res.start_at, res.end_at)
    updated = await uc.update_reservation(store, resolver, reservation_id=res.id, changes={"status": "cancelled"})
    assert updated.status == ReservationStatus.CANCELLED
    assert (updated.start_at, updated.end_at) == window


@pytest.mark.asyncio
async def test_widening_own_slot_excludes_itself(resolver: SlotWindowResolver) -> None:
    store = FakeStore()
    res = await _create(store, resolver, "2025-09-11", "experience", "am")
    updated = await uc.update_reservation(store, resolver, reservation_id=res.id, changes={"slot": "full"})
    assert updated.start_at == datetime(2025, 9, 11, 1, 0)
    assert updated.end_at == datetime(2025, 9, 11, 6, 0)


@pytest.mark.asyncio
async def test_moving_into_taken_window_conflicts(resolver: SlotWindowResolver) -> None:
    store = FakeStore()
    await _create(store, resolver, "2025-09-11", "experience", "am")
    other = await _create(store, resolver, "2025-09-12", "experience", "am")
    with pytest.raises(ScheduleConflictError):
        await uc.update_reservation(store, resolver, reservation_id=other.id, changes={"date": "2025-09-11"})
    assert other.date.isoformat() == "2025-09-12"
    assert store.updated == 0


@pytest.mark.asyncio
async def test_reopening_cancelled_into_taken_window_conflicts(resolver: SlotWindowResolver) -> None:
    store = FakeStore()
    first = await _create(store, resolver, "2025-09-11", "experience", "am")
    await uc.cancel_reservation(store, resolver, reservation_id=first.id)
    await _create(store, resolver, "2025-09-11", "experience", "full")
    with pytest.raises(ScheduleConflictError):
        await uc.update_reservation(store, resolver, reservation_id=first.id, changes={"status": "booked"})


@pytest.mark.asyncio
async def test_any_status_may_be_set(resolver: SlotWindowResolver) -> None:
    store = FakeStore()
    res = await _create(store, resolver, "2025-09-11", "tour", "pm")
    for status in ("done", "cancelled", "booked", "done"):
        updated = await uc.update_reservation(store, resolver, reservation_id=res.id, changes={"status": status})
        assert updated.status == ReservationStatus(status)


@pytest.mark.asyncio
async def test_update_switching_tour_to_full_is_invalid_slot(resolver: SlotWindowResolver) -> None:
    store = FakeStore()
    res = await _create(store, resolver, "2025-09-11", "experience", "full")
    with pytest.raises(InvalidSlotError):
        await uc.update_reservation(store, resolver, reservation_id=res.id, changes={"program": "tour"})


@pytest.mark.asyncio
async def test_update_storage_rejection_maps_to_conflict(resolver: SlotWindowResolver) -> None:
    store = FakeStore()
    res = await _create(store, resolver, "2025-09-11", "experience", "am")
    store.reject_next_write = True
    with pytest.raises(ScheduleConflictError):
        await uc.update_reservation(store, resolver, reservation_id=res.id, changes={"slot": "pm"})


@pytest.mark.asyncio
async def test_clearing_name_falls_back(resolver: SlotWindowResolver) -> None:
    store = FakeStore()
    res = await _create(store, resolver, "2025-09-11", "experience", "am", name="Taro", last_name="Yamada")
    updated = await uc.update_reservation(
        store, resolver, reservation_id=res.id, changes={"name": None}, guest_name="ゲスト"
    )
    assert updated.name == "Yamada"
    updated = await uc.update_reservation(
        store, resolver, reservation_id=res.id, changes={"name": None, "last_name": None}, guest_name="ゲスト"
    )
    assert updated.name == "ゲスト"


@pytest.mark.asyncio
async def test_update_rejects_null_required_field(resolver: SlotWindowResolver) -> None:
    store = FakeStore()
    res = await _create(store, resolver, "2025-09-11", "experience", "am")
    with pytest.raises(ReservationValidationError):
        await uc.update_reservation(store, resolver, reservation_id=res.id, changes={"slot": None})


@pytest.mark.asyncio
async def test_update_and_delete_missing_raise_not_found(resolver: SlotWindowResolver) -> None:
    store = FakeStore()
    with pytest.raises(ReservationNotFoundError):
        await uc.update_reservation(store, resolver, reservation_id=99, changes={"status": "done"})
    with pytest.raises(ReservationNotFoundError):
        await uc.delete_reservation(store, reservation_id=99)
    with pytest.raises(ReservationNotFoundError):
        await uc.get_reservation(store, reservation_id=99)


@pytest.mark.asyncio
async def test_delete_removes_row(resolver: SlotWindowResolver) -> None:
    store = FakeStore()
    res = await _create(store, resolver, "2025-09-11", "experience", "am")
    removed = await uc.delete_reservation(store, reservation_id=res.id)
    assert removed is res
    assert store.rows == {}
