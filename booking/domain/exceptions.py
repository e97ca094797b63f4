class BookingError(Exception):
    """Base exception for all appointment booking errors."""

    kind: str = "error"

    def __init__(self, reason: str, appointment_id: str | None = None) -> None:
        self.reason = reason
        self.appointment_id = appointment_id
        super().__init__(reason)


class ValidationError(BookingError):
    """Raised when input is malformed or missing required fields."""

    kind = "validation"


class NotFoundError(BookingError):
    """Raised when an appointment, staff member or customer id is unknown."""

    kind = "not_found"


class InvalidStateError(BookingError):
    """Raised when an operation is not legal for the appointment's current state."""

    kind = "invalid_state"


class ConflictError(BookingError):
    """Raised when a slot or version check fails between read and write."""

    kind = "conflict"


class UnauthorizedError(BookingError):
    """Raised when the caller's role or identity may not perform an operation."""

    kind = "unauthorized"


class NotificationError(BookingError):
    """Raised by notifier adapters when delivery fails."""

    kind = "notification"
