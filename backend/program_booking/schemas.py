from datetime import date, datetime, tzinfo
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_serializer, field_validator

from .models import Program, Reservation, ReservationStatus, TimeSlot
from .usecases.slots import SlotWindow
from .utils.time import utc_naive_to_local


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


class _GuestFields(BaseModel):
    name: Optional[str] = Field(default=None, max_length=255)
    last_name: Optional[str] = Field(default=None, max_length=255)
    first_name: Optional[str] = Field(default=None, max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, max_length=32)
    notebook_type: Optional[str] = Field(default=None, max_length=32)
    contact: Optional[str] = Field(default=None, max_length=255)
    note: Optional[str] = Field(default=None, max_length=2000)
    room: Optional[str] = Field(default=None, max_length=255)

    @field_validator(
        "name",
        "last_name",
        "first_name",
        "email",
        "phone",
        "notebook_type",
        "contact",
        "note",
        "room",
        mode="before",
    )
    @classmethod
    def _strip_blank(cls, value: Any) -> Any:
        return _blank_to_none(value)


class ReservationCreate(_GuestFields):
    model_config = ConfigDict(extra="forbid")

    # Kept as a string: an impossible calendar date is an invalid slot, not a schema error.
    date: str = Field(min_length=1, max_length=32)
    program: Program
    slot: TimeSlot
    status: Optional[ReservationStatus] = None
    has_certificate: bool = False

    @field_validator("has_certificate", mode="before")
    @classmethod
    def _certificate_default(cls, value: Any) -> Any:
        return False if value is None or value == "" else value

    def guest_fields(self) -> dict[str, Any]:
        return self.model_dump(include=set(_GuestFields.model_fields) | {"has_certificate"})


class ReservationUpdate(_GuestFields):
    model_config = ConfigDict(extra="forbid")

    date: Optional[str] = Field(default=None, min_length=1, max_length=32)
    program: Optional[Program] = None
    slot: Optional[TimeSlot] = None
    status: Optional[ReservationStatus] = None
    has_certificate: Optional[bool] = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class ReservationRead(BaseModel):
    id: int
    date: date
    program: Program
    slot: TimeSlot
    status: ReservationStatus
    start_at: datetime
    end_at: datetime
    name: str
    last_name: Optional[str]
    first_name: Optional[str]
    email: Optional[str]
    phone: Optional[str]
    notebook_type: Optional[str]
    has_certificate: bool
    contact: Optional[str]
    note: Optional[str]
    room: Optional[str]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_serializer("start_at", "end_at", "created_at", "updated_at")
    def _ser_datetime(self, dt: Optional[datetime]) -> Optional[str]:
        return dt.isoformat() if dt is not None else None

    @classmethod
    def from_db(cls, *, reservation: Reservation, tz: tzinfo) -> "ReservationRead":
        return cls(
            id=reservation.id,
            date=reservation.date,
            program=reservation.program,
            slot=reservation.slot,
            status=reservation.status,
            start_at=utc_naive_to_local(reservation.start_at, tz),
            end_at=utc_naive_to_local(reservation.end_at, tz),
            name=reservation.name,
            last_name=reservation.last_name,
            first_name=reservation.first_name,
            email=reservation.email,
            phone=reservation.phone,
            notebook_type=reservation.notebook_type,
            has_certificate=bool(reservation.has_certificate),
            contact=reservation.contact,
            note=reservation.note,
            room=reservation.room,
            created_at=_local_or_none(reservation.created_at, tz),
            updated_at=_local_or_none(reservation.updated_at, tz),
        )


class SlotDefinition(BaseModel):
    program: Program
    slot: TimeSlot
    starts_at: str
    ends_at: str
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    available: Optional[bool] = None

    @field_serializer("window_start", "window_end")
    def _ser_window(self, dt: Optional[datetime]) -> Optional[str]:
        return dt.isoformat() if dt is not None else None

    @classmethod
    def from_window(cls, *, window: SlotWindow, tz: tzinfo) -> "SlotDefinition":
        return cls(
            program=window.program,
            slot=window.slot,
            starts_at=window.local_range.start.strftime("%H:%M"),
            ends_at=window.local_range.end.strftime("%H:%M"),
            window_start=_local_or_none(window.start_at, tz),
            window_end=_local_or_none(window.end_at, tz),
            available=window.available,
        )


def _local_or_none(dt: Optional[datetime], tz: tzinfo) -> Optional[datetime]:
    return utc_naive_to_local(dt, tz) if dt is not None else None
