import logging
from datetime import date as date_type
from typing import List, NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings, get_settings
from ..deps import get_session, get_slot_resolver, require_staff
from ..domain.errors import (
    InvalidSlotError,
    ReservationError,
    ReservationNotFoundError,
    ReservationValidationError,
    ScheduleConflictError,
    StorageFaultError,
)
from ..domain.slots import SlotWindowResolver
from ..infrastructure.repositories import SqlAlchemyReservationStore
from ..models import Program, ReservationStatus, TimeSlot
from ..schemas import ReservationCreate, ReservationRead, ReservationUpdate
from ..usecases import reservations as reservation_usecase
from ..utils.audit_log import emit_audit_log

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reservations", tags=["reservations"])

CONFLICT_MESSAGE = "the requested time slot is already booked"


def _raise_http(exc: ReservationError) -> NoReturn:
    if isinstance(exc, ReservationNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="reservation not found") from exc
    if isinstance(exc, ScheduleConflictError):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "schedule_conflict", "message": CONFLICT_MESSAGE},
        ) from exc
    if isinstance(exc, InvalidSlotError):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"code": "invalid_slot", "message": str(exc)},
        ) from exc
    if isinstance(exc, ReservationValidationError):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"code": "validation_error", "message": str(exc)},
        ) from exc
    if isinstance(exc, StorageFaultError):
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="storage error") from exc
    logger.error("unmapped reservation error: %r", exc)
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="internal error") from exc


def _audit(**kwargs: object) -> None:
    try:
        emit_audit_log(**kwargs)  # type: ignore[arg-type]
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="audit log failure") from exc


@router.get("", response_model=List[ReservationRead], dependencies=[Depends(require_staff)])
async def list_reservations(
    date: Optional[date_type] = Query(default=None),
    program: Optional[Program] = Query(default=None),
    slot: Optional[TimeSlot] = Query(default=None),
    room: Optional[str] = Query(default=None, max_length=255),
    status_filter: Optional[ReservationStatus] = Query(default=None, alias="status"),
    session: AsyncSession = Depends(get_session),
    resolver: SlotWindowResolver = Depends(get_slot_resolver),
) -> list[ReservationRead]:
    store = SqlAlchemyReservationStore(session)
    try:
        rows = await reservation_usecase.list_reservations(
            store,
            date=date,
            program=program,
            slot=slot,
            room=room,
            status=status_filter,
        )
    except ReservationError as exc:
        _raise_http(exc)
    return [ReservationRead.from_db(reservation=row, tz=resolver.tz) for row in rows]


@router.get("/{reservation_id}", response_model=ReservationRead, dependencies=[Depends(require_staff)])
async def get_reservation(
    reservation_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    resolver: SlotWindowResolver = Depends(get_slot_resolver),
) -> ReservationRead:
    store = SqlAlchemyReservationStore(session)
    try:
        reservation = await reservation_usecase.get_reservation(store, reservation_id=reservation_id)
    except ReservationError as exc:
        _raise_http(exc)
    return ReservationRead.from_db(reservation=reservation, tz=resolver.tz)


@router.post("", response_model=ReservationRead, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    payload: ReservationCreate,
    session: AsyncSession = Depends(get_session),
    resolver: SlotWindowResolver = Depends(get_slot_resolver),
    settings: Settings = Depends(get_settings),
) -> ReservationRead:
    store = SqlAlchemyReservationStore(session)
    async with session.begin():
        try:
            reservation = await reservation_usecase.create_reservation(
                store,
                resolver,
                date=payload.date,
                program=payload.program,
                slot=payload.slot,
                status=payload.status,
                guest=payload.guest_fields(),
                guest_name=settings.guest_name,
            )
        except ReservationError as exc:
            _raise_http(exc)

        _audit(
            action="reservation.created",
            initiator="guest",
            reservation_id=reservation.id,
            program=reservation.program,
            slot=reservation.slot,
            date=reservation.date,
            status_from=None,
            status_to=reservation.status,
        )

    return ReservationRead.from_db(reservation=reservation, tz=resolver.tz)


@router.patch("/{reservation_id}", response_model=ReservationRead)
async def update_reservation(
    payload: ReservationUpdate,
    reservation_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    resolver: SlotWindowResolver = Depends(get_slot_resolver),
    settings: Settings = Depends(get_settings),
    staff: str = Depends(require_staff),
) -> ReservationRead:
    store = SqlAlchemyReservationStore(session)
    changes = payload.changes()
    async with session.begin():
        try:
            before = await reservation_usecase.get_reservation(store, reservation_id=reservation_id)
            status_from = before.status
            if changes == {"status": ReservationStatus.CANCELLED}:
                reservation = await reservation_usecase.cancel_reservation(
                    store,
                    resolver,
                    reservation_id=reservation_id,
                )
            else:
                reservation = await reservation_usecase.update_reservation(
                    store,
                    resolver,
                    reservation_id=reservation_id,
                    changes=changes,
                    guest_name=settings.guest_name,
                )
        except ReservationError as exc:
            _raise_http(exc)

        cancelled = reservation.status == ReservationStatus.CANCELLED and status_from != ReservationStatus.CANCELLED
        _audit(
            action="reservation.cancelled" if cancelled else "reservation.updated",
            initiator="staff",
            actor=staff,
            reservation_id=reservation.id,
            program=reservation.program,
            slot=reservation.slot,
            date=reservation.date,
            status_from=status_from,
            status_to=reservation.status,
            extra={"fields": sorted(changes)},
        )

    return ReservationRead.from_db(reservation=reservation, tz=resolver.tz)


@router.delete("/{reservation_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
async def delete_reservation(
    reservation_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    staff: str = Depends(require_staff),
) -> Response:
    store = SqlAlchemyReservationStore(session)
    async with session.begin():
        try:
            removed = await reservation_usecase.delete_reservation(store, reservation_id=reservation_id)
        except ReservationError as exc:
            _raise_http(exc)

        _audit(
            action="reservation.deleted",
            initiator="staff",
            actor=staff,
            reservation_id=removed.id,
            program=removed.program,
            slot=removed.slot,
            date=removed.date,
            status_from=removed.status,
            status_to=None,
        )

    return Response(status_code=status.HTTP_204_NO_CONTENT)
