import datetime as dt
from collections.abc import Callable, Sequence
from decimal import Decimal

from loguru import logger

from booking.domain.exceptions import ValidationError
from booking.domain.models import (
    Actor,
    Appointment,
    AppointmentPage,
    AppointmentQuery,
    AppointmentRequest,
    AppointmentStatus,
    CancellationReason,
    DayAvailability,
)
from booking.scheduling.adapters.datetime_helpers import local_slot, weekdays_between
from booking.scheduling.assignment import AssignmentCoordinator
from booking.scheduling.calendar import SlotCalendar
from booking.scheduling.cancellation import CancellationWorkflow
from booking.scheduling.lifecycle import Clock, LifecycleEngine, matches_query, sort_for_display
from booking.scheduling.notifications import NotificationDispatcher
from booking.scheduling.ports import (
    AppointmentRepository,
    CustomerDirectoryProtocol,
    NotifierProtocol,
    StaffDirectoryProtocol,
)
from booking.scheduling.travel_fees import TravelFeeDesk


class AppointmentService:
    """Single entry point for booking, dispatch, staff and fee-desk operations.

    Every mutating method takes the calling ``Actor`` and returns the updated
    appointment, or raises a ``BookingError`` subclass before anything is
    written.
    """

    def __init__(
        self,
        repository: AppointmentRepository,
        staff_directory: StaffDirectoryProtocol,
        customers: CustomerDirectoryProtocol,
        notifier: NotifierProtocol,
        *,
        slot_times: Sequence[dt.time],
        tz: dt.tzinfo,
        clock: Clock | None = None,
        max_retries: int = 3,
        page_size: int = 10,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._repository = repository
        self._tz = tz
        self._page_size = page_size
        self._calendar = SlotCalendar(repository, staff_directory, slot_times, tz)
        self._notifications = NotificationDispatcher(notifier)
        self._engine = LifecycleEngine(
            repository,
            self._calendar,
            customers,
            self._notifications,
            clock=clock or (lambda: dt.datetime.now(tz)),
            tz=tz,
            max_retries=max_retries,
            id_factory=id_factory,
        )
        self._assignments = AssignmentCoordinator(self._engine, staff_directory)
        self._cancellations = CancellationWorkflow(self._engine)
        self._fees = TravelFeeDesk(self._engine)

    # Reads

    async def get(self, appointment_id: str) -> Appointment:
        return await self._engine.load(appointment_id)

    async def slots(self, date: dt.date, staff_id: str | None = None) -> DayAvailability:
        """Bookable slots on ``date`` with the staff free in each."""
        return await self._calendar.availability(date, staff_id)

    async def list_appointments(self, query: AppointmentQuery | None = None) -> AppointmentPage:
        query = query or AppointmentQuery()
        limit = query.limit or self._page_size
        if query.customer_id is not None:
            candidates = await self._repository.list_by_customer(query.customer_id)
        elif query.staff_id is not None:
            candidates = await self._repository.list_by_staff(query.staff_id)
        elif query.date is not None:
            candidates = await self._repository.list_by_date_range(query.date, query.date)
        else:
            candidates = await self._repository.list_all()

        ordered = sort_for_display(a for a in candidates if matches_query(a, query, self._tz))
        offset = (query.page - 1) * limit
        return AppointmentPage(
            items=tuple(ordered[offset : offset + limit]),
            total=len(ordered),
            page=query.page,
            limit=limit,
        )

    async def calendar(self, start: dt.date, end: dt.date) -> dict[dt.date, list[Appointment]]:
        """Non-cancelled appointments per weekday in ``[start, end]``."""
        if end < start:
            raise ValidationError("Calendar range end must not precede its start")
        by_day: dict[dt.date, list[Appointment]] = {
            day: [] for day in weekdays_between(start, end)
        }
        for appointment in await self._repository.list_by_date_range(start, end):
            if appointment.status == AppointmentStatus.CANCELLED:
                continue
            day = local_slot(appointment.scheduled_at, self._tz)[0]
            if day in by_day:
                by_day[day].append(appointment)
        for appointments in by_day.values():
            appointments.sort(key=lambda a: a.scheduled_at)
        return by_day

    def roster_changed(self) -> None:
        """Recompute availability after staff are added, removed or deactivated."""
        logger.info("Staff roster changed; dropping cached availability")
        self._calendar.clear()

    # Lifecycle

    async def create(self, request: AppointmentRequest, actor: Actor) -> Appointment:
        return await self._engine.create(request, actor)

    async def assign(
        self, appointment_id: str, staff_id: str, actor: Actor, note: str | None = None
    ) -> Appointment:
        return await self._assignments.assign(appointment_id, staff_id, actor, note)

    async def accept(self, appointment_id: str, actor: Actor) -> Appointment:
        return await self._assignments.accept(appointment_id, actor)

    async def request_reassignment(
        self, appointment_id: str, reason: str, actor: Actor
    ) -> Appointment:
        return await self._assignments.request_reassignment(appointment_id, reason, actor)

    async def cancel(
        self,
        appointment_id: str,
        actor: Actor,
        reason: CancellationReason = CancellationReason.CUSTOM,
        message: str | None = None,
    ) -> Appointment:
        return await self._cancellations.cancel(appointment_id, reason, message, actor)

    async def start(self, appointment_id: str, actor: Actor) -> Appointment:
        return await self._engine.start(appointment_id, actor)

    async def complete(
        self, appointment_id: str, actor: Actor, sales_notes: str | None = None
    ) -> Appointment:
        return await self._engine.complete(appointment_id, actor, sales_notes)

    async def mark_no_show(self, appointment_id: str, actor: Actor) -> Appointment:
        return await self._engine.mark_no_show(appointment_id, actor)

    # Travel fees

    async def set_travel_fee(
        self,
        appointment_id: str,
        actor: Actor,
        *,
        amount: Decimal | None = None,
        notes: str | None = None,
        is_required: bool = True,
    ) -> Appointment:
        return await self._fees.set_fee(
            appointment_id, actor, amount=amount, notes=notes, is_required=is_required
        )

    async def collect_travel_fee(
        self,
        appointment_id: str,
        actor: Actor,
        collected_amount: Decimal,
        notes: str | None = None,
    ) -> Appointment:
        return await self._fees.collect(appointment_id, actor, collected_amount, notes)

    async def verify_travel_fee(
        self, appointment_id: str, actor: Actor, notes: str | None = None
    ) -> Appointment:
        return await self._fees.verify(appointment_id, actor, notes)

    # Resources

    async def drain_notifications(self) -> None:
        """Wait until every dispatched notification has been attempted."""
        await self._notifications.drain()

    async def close(self) -> None:
        logger.info("Closing appointment service")
        await self._notifications.close()
