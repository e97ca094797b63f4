import datetime as dt
from collections.abc import Iterable, Sequence

from loguru import logger

from booking.domain.exceptions import ConflictError
from booking.domain.models import (
    Appointment,
    AppointmentStatus,
    DayAvailability,
    Role,
    SlotAvailability,
)
from booking.scheduling.adapters.datetime_helpers import is_weekday, local_slot, time_to_12h
from booking.scheduling.ports import AppointmentRepository, StaffDirectoryProtocol


def _occupying_at(
    appointments: Iterable[Appointment], date: dt.date, time: dt.time, tz: dt.tzinfo
) -> list[Appointment]:
    return [
        a
        for a in appointments
        if a.status != AppointmentStatus.CANCELLED
        and local_slot(a.scheduled_at, tz) == (date, time)
    ]


def compute_availability(
    date: dt.date,
    slot_times: Sequence[dt.time],
    staff_ids: Sequence[str],
    appointments: Iterable[Appointment],
    tz: dt.tzinfo,
) -> DayAvailability:
    """Compute which staff are free in each configured slot of ``date``.

    A staff member is free in a slot when no non-cancelled appointment
    assigned to them sits in that slot. Non-cancelled appointments without
    staff are counted as ``held`` against the pool. Weekends have no slots.
    """
    if not is_weekday(date):
        return DayAvailability(date=date, is_business_day=False)

    booked = list(appointments)
    slots: list[SlotAvailability] = []
    for time in slot_times:
        occupying = _occupying_at(booked, date, time, tz)
        busy = {a.assigned_staff_id for a in occupying if a.assigned_staff_id}
        held = sum(1 for a in occupying if a.assigned_staff_id is None)
        slots.append(
            SlotAvailability(
                time=time,
                available_staff_ids=tuple(s for s in staff_ids if s not in busy),
                held=held,
            )
        )
    return DayAvailability(date=date, slots=tuple(slots))


def ensure_slot_open(
    appointments: Iterable[Appointment],
    date: dt.date,
    time: dt.time,
    staff_ids: Sequence[str],
    tz: dt.tzinfo,
) -> None:
    """Raise ConflictError unless the pool can take one more booking at ``time``."""
    day = compute_availability(date, [time], staff_ids, appointments, tz)
    slot = day.slot(time)
    if slot is None or not slot.is_available:
        raise ConflictError(
            f"The {time_to_12h(time)} slot on {date.isoformat()} is no longer available"
        )


def ensure_staff_free(
    appointments: Iterable[Appointment],
    staff_id: str,
    date: dt.date,
    time: dt.time,
    tz: dt.tzinfo,
) -> None:
    """Raise ConflictError if ``staff_id`` already holds a booking at ``time``."""
    if any(a.assigned_staff_id == staff_id for a in _occupying_at(appointments, date, time, tz)):
        raise ConflictError(
            f"Staff member is already booked at {time_to_12h(time)} on {date.isoformat()}"
        )


class SlotCalendar:
    """Per-date availability with event-driven cache invalidation.

    ``invalidate`` bumps a per-date generation and ``clear`` bumps a global
    epoch. A computed day is cached only if neither moved while it was being
    read, so a write committing mid-read never leaves a stale day behind.
    """

    def __init__(
        self,
        repository: AppointmentRepository,
        staff_directory: StaffDirectoryProtocol,
        slot_times: Sequence[dt.time],
        tz: dt.tzinfo,
    ) -> None:
        self._repository = repository
        self._staff = staff_directory
        self._slot_times = tuple(slot_times)
        self._tz = tz
        self._cache: dict[dt.date, DayAvailability] = {}
        self._generations: dict[dt.date, int] = {}
        self._epoch = 0

    @property
    def slot_times(self) -> tuple[dt.time, ...]:
        return self._slot_times

    async def staff_ids(self) -> list[str]:
        return [s.staff_id for s in await self._staff.list_staff(Role.SALES_STAFF)]

    async def availability(self, date: dt.date, staff_id: str | None = None) -> DayAvailability:
        """Return availability for ``date``, optionally narrowed to one staff member."""
        day = self._cache.get(date)
        if day is None:
            token = self._token(date)
            appointments = await self._repository.list_by_date_range(date, date)
            day = compute_availability(
                date, self._slot_times, await self.staff_ids(), appointments, self._tz
            )
            if self._token(date) == token:
                self._cache[date] = day
            else:
                logger.debug("Availability for {} changed mid-read; not cached", date)
            logger.debug(
                "Computed availability for {}: {} open slot(s)", date, len(day.available_times())
            )

        if staff_id is None:
            return day
        return day.model_copy(
            update={
                "slots": tuple(
                    SlotAvailability(
                        time=s.time,
                        available_staff_ids=(
                            (staff_id,) if staff_id in s.available_staff_ids else ()
                        ),
                    )
                    for s in day.slots
                )
            }
        )

    def _token(self, date: dt.date) -> tuple[int, int]:
        return self._epoch, self._generations.get(date, 0)

    def invalidate(self, date: dt.date) -> None:
        self._generations[date] = self._generations.get(date, 0) + 1
        if self._cache.pop(date, None) is not None:
            logger.debug("Availability cache invalidated for {}", date)

    def clear(self) -> None:
        """Drop every cached day, e.g. after the staff roster changes."""
        self._epoch += 1
        self._cache.clear()
