from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Mapping, Optional

from sqlalchemy import Select, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.errors import ConflictViolationError, StorageFaultError
from ..domain.repositories import ReservationStore
from ..models import (
    ACTIVE_STATUSES,
    OVERLAP_CONSTRAINT,
    Program,
    ProgramLock,
    Reservation,
    ReservationStatus,
    TimeSlot,
)
from ..utils.time import utc_now_naive

logger = logging.getLogger(__name__)

WRITABLE_FIELDS = frozenset(
    {
        "date",
        "program",
        "slot",
        "room",
        "name",
        "last_name",
        "first_name",
        "email",
        "phone",
        "notebook_type",
        "has_certificate",
        "contact",
        "note",
        "status",
        "start_at",
        "end_at",
    }
)


def constraint_name_of(exc: IntegrityError) -> Optional[str]:
    """
    Name of the violated constraint as reported by the driver.

    psycopg exposes it on ``diag.constraint_name``; asyncpg on ``constraint_name``
    of the original exception, which SQLAlchemy's adapter keeps as ``__cause__``.
    """
    candidates = [exc.orig, getattr(exc.orig, "__cause__", None)]
    for candidate in candidates:
        if candidate is None:
            continue
        diag = getattr(candidate, "diag", None)
        name = getattr(diag, "constraint_name", None) or getattr(candidate, "constraint_name", None)
        if isinstance(name, str) and name:
            return name
    return None


class SqlAlchemyReservationStore(ReservationStore):
    """
    Reservation persistence with a storage-side overlap guarantee.

    Every write that leaves a row active first locks the program's row in
    ``program_locks`` and re-runs the overlap query inside the same transaction,
    so concurrent writers for one program are serialized. On PostgreSQL the
    ``reservations_no_overlap`` exclusion constraint is enforced as well.
    Callers own the transaction (``async with session.begin()``).
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, reservation_id: int) -> Reservation | None:
        result = await self._scalar("get", select(Reservation).where(Reservation.id == reservation_id))
        return result if isinstance(result, Reservation) else None

    async def get_for_update(self, reservation_id: int) -> Reservation | None:
        stmt = select(Reservation).where(Reservation.id == reservation_id).with_for_update()
        result = await self._scalar("get_for_update", stmt)
        return result if isinstance(result, Reservation) else None

    async def list_filtered(
        self,
        *,
        date: date | None = None,
        program: Program | None = None,
        slot: TimeSlot | None = None,
        room: str | None = None,
        status: ReservationStatus | None = None,
    ) -> list[Reservation]:
        stmt: Select[tuple[Reservation]] = select(Reservation)
        if date is not None:
            stmt = stmt.where(Reservation.date == date)
        if program is not None:
            stmt = stmt.where(Reservation.program == program)
        if slot is not None:
            stmt = stmt.where(Reservation.slot == slot)
        if room is not None:
            stmt = stmt.where(Reservation.room == room)
        if status is not None:
            stmt = stmt.where(Reservation.status == status)
        stmt = stmt.order_by(Reservation.date, Reservation.start_at, Reservation.id)
        return await self._scalars("list", stmt)

    async def find_active_in_window(
        self,
        *,
        program: Program,
        start_at: datetime,
        end_at: datetime,
        exclude_id: int | None = None,
    ) -> list[Reservation]:
        stmt = _active_in_window(program, start_at, end_at, exclude_id)
        return await self._scalars("find_active_in_window", stmt)

    async def create(self, fields: Mapping[str, Any]) -> Reservation:
        _reject_unknown(fields)
        now = utc_now_naive()
        reservation = Reservation(**fields, created_at=now, updated_at=now)
        if reservation.status is None:
            reservation.status = ReservationStatus.BOOKED
        if reservation.is_active:
            await self._lock_and_recheck(reservation, exclude_id=None)
        self.session.add(reservation)
        await self._flush("create")
        return reservation

    async def update(self, reservation: Reservation, changes: Mapping[str, Any]) -> Reservation:
        _reject_unknown(changes)
        for key, value in changes.items():
            setattr(reservation, key, value)
        reservation.updated_at = utc_now_naive()
        if reservation.is_active:
            await self._lock_and_recheck(reservation, exclude_id=reservation.id)
        self.session.add(reservation)
        await self._flush("update")
        return reservation

    async def delete(self, reservation: Reservation) -> None:
        try:
            await self.session.delete(reservation)
        except SQLAlchemyError as exc:
            raise self._fault("delete", exc) from exc
        await self._flush("delete")

    async def ensure_program_locks(self) -> None:
        existing = set(await self._scalars("ensure_program_locks", select(ProgramLock.program)))
        for program in Program:
            if program not in existing:
                self.session.add(ProgramLock(program=program))
        await self._flush("ensure_program_locks")

    async def _lock_and_recheck(self, reservation: Reservation, *, exclude_id: int | None) -> None:
        program = Program(reservation.program)
        await self._acquire_program_lock(program)
        # Locking read: sees rows committed by writers that held the lock before us,
        # even under REPEATABLE READ snapshots.
        stmt = _active_in_window(program, reservation.start_at, reservation.end_at, exclude_id)
        clashing = await self._scalars("recheck", stmt.with_for_update())

        if clashing:
            logger.warning(
                "overlap rejected at storage level: program=%s window=%s..%s clashing_ids=%s",
                program,
                reservation.start_at.isoformat(),
                reservation.end_at.isoformat(),
                [row.id for row in clashing],
            )
            raise ConflictViolationError("reservation window overlaps", constraint=OVERLAP_CONSTRAINT)

    async def _acquire_program_lock(self, program: Program) -> None:
        stmt = select(ProgramLock).where(ProgramLock.program == program).with_for_update()
        if await self._scalar("lock", stmt) is not None:
            return
        try:
            async with self.session.begin_nested():
                self.session.add(ProgramLock(program=program))
            return
        except IntegrityError:
            # Another writer seeded the row first; wait on its lock instead.
            logger.info("program lock for %s created concurrently, re-selecting", program)
        except SQLAlchemyError as exc:
            raise self._fault("lock", exc) from exc
        if await self._scalar("lock", stmt) is None:
            raise StorageFaultError(f"program lock row for {program} is missing")

    async def _scalar(self, operation: str, stmt: Any) -> Any:
        try:
            return await self.session.scalar(stmt)
        except IntegrityError as exc:
            raise self._classify(exc, operation) from exc
        except SQLAlchemyError as exc:
            raise self._fault(operation, exc) from exc

    async def _scalars(self, operation: str, stmt: Any) -> list[Any]:
        try:
            rows = await self.session.scalars(stmt)
        except IntegrityError as exc:
            raise self._classify(exc, operation) from exc
        except SQLAlchemyError as exc:
            raise self._fault(operation, exc) from exc
        return list(rows.all())

    async def _flush(self, operation: str) -> None:
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise self._classify(exc, operation) from exc
        except SQLAlchemyError as exc:
            raise self._fault(operation, exc) from exc

    def _classify(self, exc: IntegrityError, operation: str) -> Exception:
        if constraint_name_of(exc) == OVERLAP_CONSTRAINT:
            logger.warning("overlap rejected by %s during %s", OVERLAP_CONSTRAINT, operation)
            return ConflictViolationError("reservation window overlaps", constraint=OVERLAP_CONSTRAINT)
        return self._fault(operation, exc)

    @staticmethod
    def _fault(operation: str, exc: Exception) -> StorageFaultError:
        logger.error("reservation store %s failed: %s", operation, exc, exc_info=exc)
        return StorageFaultError(f"storage failure during {operation}")


def _reject_unknown(fields: Mapping[str, Any]) -> None:
    unknown = set(fields) - WRITABLE_FIELDS
    if unknown:
        raise ValueError(f"unknown reservation fields: {sorted(unknown)}")


def _active_in_window(
    program: Program,
    start_at: datetime,
    end_at: datetime,
    exclude_id: int | None,
) -> Select[tuple[Reservation]]:
    stmt = select(Reservation).where(
        Reservation.program == program,
        Reservation.status.in_(ACTIVE_STATUSES),
        Reservation.start_at < end_at,
        Reservation.end_at > start_at,
    )
    if exclude_id is not None:
        stmt = stmt.where(Reservation.id != exclude_id)
    return stmt.order_by(Reservation.start_at)
