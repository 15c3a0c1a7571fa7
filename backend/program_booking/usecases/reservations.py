from __future__ import annotations

from datetime import date
from typing import Any, Mapping

from ..domain.errors import (
    ConflictViolationError,
    InvalidSlotError,
    ReservationNotFoundError,
    ReservationValidationError,
    ScheduleConflictError,
)
from ..domain.repositories import ReservationStore
from ..domain.services import OverlapChecker, is_active, resolve_display_name
from ..domain.slots import SlotWindowResolver, parse_civil_date
from ..models import Program, Reservation, ReservationStatus, TimeSlot

GUEST_FIELDS = (
    "name",
    "last_name",
    "first_name",
    "email",
    "phone",
    "notebook_type",
    "has_certificate",
    "contact",
    "note",
    "room",
)
WINDOW_FIELDS = ("date", "program", "slot")
NAME_FIELDS = ("name", "last_name", "first_name")
UPDATABLE_FIELDS = frozenset((*WINDOW_FIELDS, *GUEST_FIELDS, "status"))


async def create_reservation(
    store: ReservationStore,
    resolver: SlotWindowResolver,
    *,
    date: date | str | None,
    program: Program | str | None,
    slot: TimeSlot | str | None,
    status: ReservationStatus | str | None = None,
    guest: Mapping[str, Any] | None = None,
    guest_name: str = "guest",
) -> Reservation:
    missing = [key for key, value in (("date", date), ("program", program), ("slot", slot)) if value in (None, "")]
    if missing:
        raise ReservationValidationError(f"missing required fields: {', '.join(missing)}")
    guest = dict(guest or {})
    unknown = set(guest) - set(GUEST_FIELDS)
    if unknown:
        raise ReservationValidationError(f"unknown fields: {sorted(unknown)}")

    day = parse_civil_date(date)
    program, slot = _coerce_program_slot(program, slot)
    start_at, end_at = resolver.resolve(day, program, slot)
    status = _coerce_status(status) if status is not None else ReservationStatus.BOOKED

    if is_active(status) and await OverlapChecker(store).has_conflict(program, start_at, end_at):
        raise ScheduleConflictError("the requested time window is already booked")

    fields: dict[str, Any] = {
        **guest,
        "date": day,
        "program": program,
        "slot": slot,
        "status": status,
        "start_at": start_at,
        "end_at": end_at,
        "has_certificate": bool(guest.get("has_certificate") or False),
        "name": resolve_display_name(
            guest.get("name"),
            guest.get("last_name"),
            guest.get("first_name"),
            fallback=guest_name,
        ),
    }
    try:
        return await store.create(fields)
    except ConflictViolationError as exc:
        raise ScheduleConflictError("the requested time window is already booked") from exc


async def update_reservation(
    store: ReservationStore,
    resolver: SlotWindowResolver,
    *,
    reservation_id: int,
    changes: Mapping[str, Any],
    guest_name: str = "guest",
) -> Reservation:
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise ReservationValidationError(f"unknown fields: {sorted(unknown)}")
    for key in (*WINDOW_FIELDS, "status"):
        if key in changes and changes[key] in (None, ""):
            raise ReservationValidationError(f"{key} cannot be empty")

    reservation = await store.get_for_update(reservation_id)
    if reservation is None:
        raise ReservationNotFoundError("reservation not found")

    patch: dict[str, Any] = {key: value for key, value in changes.items() if key not in (*WINDOW_FIELDS, "status")}
    was_active = reservation.is_active
    window_touched = any(key in changes for key in WINDOW_FIELDS)

    if window_touched:
        day = parse_civil_date(changes.get("date", reservation.date))
        program, slot = _coerce_program_slot(
            changes.get("program", reservation.program),
            changes.get("slot", reservation.slot),
        )
        start_at, end_at = resolver.resolve(day, program, slot)
        patch.update(date=day, program=program, slot=slot, start_at=start_at, end_at=end_at)

    if "status" in changes:
        patch["status"] = _coerce_status(changes["status"])
    status = patch.get("status", reservation.status)

    if "has_certificate" in patch:
        patch["has_certificate"] = bool(patch["has_certificate"])

    if any(key in changes for key in NAME_FIELDS):
        patch["name"] = resolve_display_name(
            patch["name"] if "name" in changes else reservation.name,
            patch.get("last_name", reservation.last_name),
            patch.get("first_name", reservation.first_name),
            fallback=guest_name,
        )

    # Re-check when the window is recomputed or a cancelled booking is reopened.
    if is_active(status) and (window_touched or not was_active):
        if await OverlapChecker(store).has_conflict(
            patch.get("program", reservation.program),
            patch.get("start_at", reservation.start_at),
            patch.get("end_at", reservation.end_at),
            exclude_id=reservation.id,
        ):
            raise ScheduleConflictError("the requested time window is already booked")

    try:
        return await store.update(reservation, patch)
    except ConflictViolationError as exc:
        raise ScheduleConflictError("the requested time window is already booked") from exc


async def cancel_reservation(
    store: ReservationStore,
    resolver: SlotWindowResolver,
    *,
    reservation_id: int,
) -> Reservation:
    return await update_reservation(
        store,
        resolver,
        reservation_id=reservation_id,
        changes={"status": ReservationStatus.CANCELLED},
    )


async def delete_reservation(store: ReservationStore, *, reservation_id: int) -> Reservation:
    reservation = await store.get_for_update(reservation_id)
    if reservation is None:
        raise ReservationNotFoundError("reservation not found")
    await store.delete(reservation)
    return reservation


async def get_reservation(store: ReservationStore, *, reservation_id: int) -> Reservation:
    reservation = await store.get(reservation_id)
    if reservation is None:
        raise ReservationNotFoundError("reservation not found")
    return reservation


async def list_reservations(
    store: ReservationStore,
    *,
    date: date | None = None,
    program: Program | None = None,
    slot: TimeSlot | None = None,
    room: str | None = None,
    status: ReservationStatus | None = None,
) -> list[Reservation]:
    return await store.list_filtered(date=date, program=program, slot=slot, room=room, status=status)


def _coerce_program_slot(program: Program | str, slot: TimeSlot | str) -> tuple[Program, TimeSlot]:
    try:
        return Program(program), TimeSlot(slot)
    except ValueError as exc:
        raise InvalidSlotError(f"unknown program/slot: {program}/{slot}") from exc


def _coerce_status(status: ReservationStatus | str) -> ReservationStatus:
    try:
        return ReservationStatus(status)
    except ValueError as exc:
        raise ReservationValidationError(f"unknown status: {status}") from exc
