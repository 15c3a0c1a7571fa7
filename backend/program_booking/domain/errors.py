class ReservationError(Exception):
    """Base class for reservation domain errors."""


class ReservationValidationError(ReservationError):
    pass


class InvalidSlotError(ReservationError):
    """Program/slot pair not bookable, or the date is not a real calendar date."""


class ReservationNotFoundError(ReservationError):
    pass


class ScheduleConflictError(ReservationError):
    """The requested window overlaps an active reservation in the same program."""


class ConflictViolationError(ReservationError):
    """Raised by the store when its overlap guarantee rejects a write."""

    def __init__(self, message: str, *, constraint: str) -> None:
        super().__init__(message)
        self.constraint = constraint


class StorageFaultError(ReservationError):
    pass
