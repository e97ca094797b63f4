import datetime as dt
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from typing import Any, Protocol

from booking.domain.models import Appointment, Customer, Role, Staff

# Called inside the write with the stored appointments relevant to the new
# state; raises (ConflictError, InvalidStateError, ...) to abort the write.
WriteGuard = Callable[[Sequence[Appointment]], None]


class AppointmentRepository(ABC):
    """Persistence for appointments with atomic guarded writes."""

    @abstractmethod
    async def get(self, appointment_id: str) -> Appointment | None:
        """Load an appointment by id, or None if unknown."""

    @abstractmethod
    async def add(self, appointment: Appointment, guard: WriteGuard) -> Appointment:
        """Insert a new appointment.

        ``guard`` runs atomically with the insert and receives every stored
        appointment that is on the same office-local day as ``appointment``
        or belongs to the same customer.

        Returns:
            The stored appointment.

        Raises:
            Whatever ``guard`` raises; nothing is stored in that case.
        """

    @abstractmethod
    async def compare_and_set(
        self,
        updated: Appointment,
        expected_version: int,
        guard: WriteGuard | None = None,
    ) -> bool:
        """Replace the stored appointment if its version still matches.

        ``guard`` receives the other appointments on the same office-local day
        as ``updated`` and runs atomically with the write.

        Returns:
            True if the write happened, False if the stored version moved on.

        Raises:
            NotFoundError: If the appointment no longer exists.
            Whatever ``guard`` raises; nothing is stored in that case.
        """

    @abstractmethod
    async def list_by_date_range(self, start: dt.date, end: dt.date) -> list[Appointment]:
        """Appointments whose office-local date falls in ``[start, end]``."""

    @abstractmethod
    async def list_by_staff(self, staff_id: str) -> list[Appointment]:
        """Appointments currently assigned to ``staff_id``."""

    @abstractmethod
    async def list_by_customer(self, customer_id: str) -> list[Appointment]:
        """Appointments owned by ``customer_id``."""

    @abstractmethod
    async def list_all(self) -> list[Appointment]:
        """Every stored appointment."""


class StaffDirectoryProtocol(Protocol):
    """Lookup of staff members."""

    async def get_staff_by_id(self, staff_id: str) -> Staff | None:
        """Return the staff member, or None if unknown."""
        ...

    async def list_staff(self, role: Role) -> list[Staff]:
        """Return active staff with ``role``."""
        ...


class CustomerDirectoryProtocol(Protocol):
    """Lookup of customers, normalized at this boundary."""

    async def get_customer(self, customer_id: str) -> Customer | None:
        """Return the customer, or None if unknown."""
        ...


class NotifierProtocol(Protocol):
    """Delivery of customer- and dispatcher-facing notifications."""

    async def notify_customer(
        self, appointment_id: str, kind: str, payload: dict[str, Any]
    ) -> None:
        """Deliver a notification. May raise NotificationError."""
        ...

    async def close(self) -> None:
        """Release resources."""
        ...
