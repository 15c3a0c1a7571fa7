from __future__ import annotations

import datetime as dt
from enum import StrEnum
from typing import Optional

from sqlalchemy import DDL, CheckConstraint, Enum, Index, event
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql.sqltypes import BigInteger, Boolean, Date, DateTime, Integer, String, Text

OVERLAP_CONSTRAINT = "reservations_no_overlap"


class Base(DeclarativeBase):
    pass


class Program(StrEnum):
    TOUR = "tour"
    EXPERIENCE = "experience"


class TimeSlot(StrEnum):
    AM = "am"
    PM = "pm"
    FULL = "full"


class ReservationStatus(StrEnum):
    BOOKED = "booked"
    DONE = "done"
    CANCELLED = "cancelled"


ACTIVE_STATUSES = frozenset({ReservationStatus.BOOKED, ReservationStatus.DONE})


def _str_enum(enum_cls: type[StrEnum]) -> Enum:
    return Enum(
        enum_cls,
        values_callable=lambda cls: [e.value for e in cls],
        native_enum=False,
        length=16,
    )


class ProgramLock(Base):
    """One row per program; writers lock it before re-checking overlaps."""

    __tablename__ = "program_locks"

    program: Mapped[Program] = mapped_column(_str_enum(Program), primary_key=True)


class Reservation(Base):
    __tablename__ = "reservations"
    __table_args__ = (
        CheckConstraint("start_at < end_at", name="chk_res_window"),
        Index("idx_res_overlap", "program", "status", "start_at", "end_at"),
        Index("idx_res_date_program_slot", "date", "program", "slot"),
        Index("idx_res_guest_name", "last_name", "first_name"),
    )

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer(), "sqlite"), primary_key=True, autoincrement=True)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    program: Mapped[Program] = mapped_column(_str_enum(Program), nullable=False)
    slot: Mapped[TimeSlot] = mapped_column(_str_enum(TimeSlot), nullable=False)
    room: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    last_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    notebook_type: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    has_certificate: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    contact: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[ReservationStatus] = mapped_column(
        _str_enum(ReservationStatus),
        nullable=False,
        default=ReservationStatus.BOOKED,
    )
    # Naive UTC, half-open [start_at, end_at).
    start_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    end_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


# PostgreSQL can enforce the overlap rule natively. Other engines rely on the
# program lock + re-check done by the store.
event.listen(
    Reservation.__table__,
    "before_create",
    DDL("CREATE EXTENSION IF NOT EXISTS btree_gist").execute_if(dialect="postgresql"),
)
event.listen(
    Reservation.__table__,
    "after_create",
    DDL(
        f"ALTER TABLE reservations ADD CONSTRAINT {OVERLAP_CONSTRAINT} "
        "EXCLUDE USING gist (program WITH =, tsrange(start_at, end_at, '[)') WITH &&) "
        "WHERE (status IN ('booked', 'done'))"
    ).execute_if(dialect="postgresql"),
)
