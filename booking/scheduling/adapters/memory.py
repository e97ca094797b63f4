import asyncio
import datetime as dt
from collections.abc import Iterable, Mapping
from typing import Any

from loguru import logger

from booking.domain.exceptions import ConflictError, NotFoundError
from booking.domain.models import Appointment, Customer, Role, Staff
from booking.scheduling.adapters.datetime_helpers import local_slot
from booking.scheduling.ports import AppointmentRepository, WriteGuard


class InMemoryAppointmentRepository(AppointmentRepository):
    """Process-local appointment store.

    A single ``asyncio.Lock`` serializes writes, so a guard and the write it
    protects are never interleaved with another write.
    """

    def __init__(self, tz: dt.tzinfo = dt.timezone.utc) -> None:
        self._tz = tz
        self._items: dict[str, Appointment] = {}
        self._lock = asyncio.Lock()

    def _local_date(self, appointment: Appointment) -> dt.date:
        return local_slot(appointment.scheduled_at, self._tz)[0]

    async def get(self, appointment_id: str) -> Appointment | None:
        return self._items.get(appointment_id)

    async def add(self, appointment: Appointment, guard: WriteGuard) -> Appointment:
        async with self._lock:
            if appointment.appointment_id in self._items:
                raise ConflictError(
                    "Appointment id already exists", appointment_id=appointment.appointment_id
                )
            day = self._local_date(appointment)
            related = [
                a
                for a in self._items.values()
                if a.customer_id == appointment.customer_id or self._local_date(a) == day
            ]
            guard(related)
            self._items[appointment.appointment_id] = appointment
        return appointment

    async def compare_and_set(
        self,
        updated: Appointment,
        expected_version: int,
        guard: WriteGuard | None = None,
    ) -> bool:
        async with self._lock:
            current = self._items.get(updated.appointment_id)
            if current is None:
                raise NotFoundError(
                    "Appointment not found", appointment_id=updated.appointment_id
                )
            if current.version != expected_version:
                logger.debug(
                    "Stale write rejected: id={}, expected v{}, stored v{}",
                    updated.appointment_id,
                    expected_version,
                    current.version,
                )
                return False
            if guard is not None:
                day = self._local_date(updated)
                guard(
                    [
                        a
                        for a in self._items.values()
                        if a.appointment_id != updated.appointment_id
                        and self._local_date(a) == day
                    ]
                )
            self._items[updated.appointment_id] = updated
        return True

    async def list_by_date_range(self, start: dt.date, end: dt.date) -> list[Appointment]:
        return [a for a in self._items.values() if start <= self._local_date(a) <= end]

    async def list_by_staff(self, staff_id: str) -> list[Appointment]:
        return [a for a in self._items.values() if a.assigned_staff_id == staff_id]

    async def list_by_customer(self, customer_id: str) -> list[Appointment]:
        return [a for a in self._items.values() if a.customer_id == customer_id]

    async def list_all(self) -> list[Appointment]:
        return list(self._items.values())


class InMemoryStaffDirectory:
    """Staff directory backed by a fixed roster."""

    def __init__(self, staff: Iterable[Staff] = ()) -> None:
        self._staff: dict[str, Staff] = {s.staff_id: s for s in staff}

    def add(self, staff: Staff) -> None:
        self._staff[staff.staff_id] = staff

    async def get_staff_by_id(self, staff_id: str) -> Staff | None:
        return self._staff.get(staff_id)

    async def list_staff(self, role: Role) -> list[Staff]:
        return [s for s in self._staff.values() if s.role == role and s.is_active]


class InMemoryCustomerDirectory:
    """Customer directory fed with raw user records, normalized on the way in."""

    def __init__(self, records: Iterable[Mapping[str, Any]] = ()) -> None:
        self._customers: dict[str, Customer] = {}
        for record in records:
            self.add_record(record)

    def add_record(self, record: Mapping[str, Any]) -> Customer:
        customer = Customer.from_record(record)
        self._customers[customer.customer_id] = customer
        return customer

    async def get_customer(self, customer_id: str) -> Customer | None:
        return self._customers.get(customer_id)
