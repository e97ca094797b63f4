import datetime as dt
import uuid
from collections.abc import Callable, Collection, Iterable, Sequence

from loguru import logger

from booking.domain.exceptions import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from booking.domain.models import (
    Actor,
    Appointment,
    AppointmentNotes,
    AppointmentQuery,
    AppointmentRequest,
    AppointmentStatus,
    AppointmentType,
    DisplayStatus,
    ReassignmentRequested,
    Role,
)
from booking.scheduling.adapters.datetime_helpers import is_weekday, local_slot, time_to_12h
from booking.scheduling.calendar import SlotCalendar, ensure_slot_open
from booking.scheduling.notifications import NotificationDispatcher, NotificationKind
from booking.scheduling.ports import (
    AppointmentRepository,
    CustomerDirectoryProtocol,
    WriteGuard,
)

Clock = Callable[[], dt.datetime]
Mutation = Callable[[Appointment], Appointment]

TERMINAL_STATUSES: frozenset[AppointmentStatus] = frozenset(
    {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW}
)

# Statuses that block a customer from booking another future appointment.
ACTIVE_STATUSES: frozenset[AppointmentStatus] = frozenset(
    {
        AppointmentStatus.PENDING,
        AppointmentStatus.ASSIGNED,
        AppointmentStatus.SCHEDULED,
        AppointmentStatus.CONFIRMED,
    }
)

AGENT_ROLES: frozenset[Role] = frozenset({Role.APPOINTMENT_AGENT, Role.ADMIN})

# Actionable states first.
STATUS_PRIORITY: dict[AppointmentStatus, int] = {
    AppointmentStatus.PENDING: 0,
    AppointmentStatus.SCHEDULED: 1,
    AppointmentStatus.ASSIGNED: 2,
    AppointmentStatus.CONFIRMED: 3,
    AppointmentStatus.IN_PROGRESS: 4,
    AppointmentStatus.COMPLETED: 5,
    AppointmentStatus.CANCELLED: 6,
    AppointmentStatus.NO_SHOW: 7,
}

_ASSIGNED_ALIASES = frozenset({AppointmentStatus.ASSIGNED, AppointmentStatus.SCHEDULED})


def require_role(actor: Actor, roles: Collection[Role], action: str) -> None:
    if actor.role not in roles:
        raise UnauthorizedError(f"Role '{actor.role.value}' may not {action}")


def require_assigned_staff(actor: Actor, appointment: Appointment, action: str) -> None:
    if actor.role != Role.SALES_STAFF or actor.user_id != appointment.assigned_staff_id:
        raise UnauthorizedError(
            f"Only the assigned staff member may {action}",
            appointment_id=appointment.appointment_id,
        )


def ensure_status(
    appointment: Appointment, allowed: Collection[AppointmentStatus], action: str
) -> None:
    if appointment.status not in allowed:
        raise InvalidStateError(
            f"Cannot {action} an appointment that is {appointment.status.value}",
            appointment_id=appointment.appointment_id,
        )


def validate_request(
    request: AppointmentRequest,
    now: dt.datetime,
    slot_times: Sequence[dt.time],
    tz: dt.tzinfo,
) -> dt.datetime:
    """Check a booking request and return its office-local scheduled instant."""
    if not is_weekday(request.date):
        raise ValidationError("We are closed on weekends. Please select a weekday.")
    if request.time not in slot_times:
        raise ValidationError(f"{time_to_12h(request.time)} is not a bookable time slot")

    scheduled_at = dt.datetime.combine(request.date, request.time, tzinfo=tz)
    if scheduled_at <= now:
        raise ValidationError("Appointment time is in the past. Please pick a future slot.")

    if request.appointment_type == AppointmentType.OCULAR_VISIT:
        address = request.site_address
        if address is None or not address.street.strip() or not address.city.strip():
            raise ValidationError("Please provide your site address for the ocular visit")
    return scheduled_at


def ensure_no_active_booking(
    appointments: Iterable[Appointment], customer_id: str, now: dt.datetime
) -> None:
    for appointment in appointments:
        if (
            appointment.customer_id == customer_id
            and appointment.status in ACTIVE_STATUSES
            and appointment.scheduled_at > now
        ):
            raise InvalidStateError(
                "Customer already has an upcoming appointment",
                appointment_id=appointment.appointment_id,
            )


def start(appointment: Appointment) -> Appointment:
    ensure_status(appointment, {AppointmentStatus.CONFIRMED}, "start")
    return appointment.evolve(status=AppointmentStatus.IN_PROGRESS)


def complete(appointment: Appointment, sales_notes: str | None = None) -> Appointment:
    ensure_status(
        appointment, {AppointmentStatus.CONFIRMED, AppointmentStatus.IN_PROGRESS}, "complete"
    )
    notes = appointment.notes
    if sales_notes:
        notes = notes.model_copy(update={"sales_notes": sales_notes})
    return appointment.evolve(status=AppointmentStatus.COMPLETED, notes=notes)


def mark_no_show(appointment: Appointment) -> Appointment:
    ensure_status(appointment, {AppointmentStatus.CONFIRMED}, "mark as no-show")
    return appointment.evolve(status=AppointmentStatus.NO_SHOW)


def display_status(appointment: Appointment) -> DisplayStatus:
    """Status for list views; a reassignment request outranks plain awaiting acceptance."""
    if appointment.status in _ASSIGNED_ALIASES:
        if isinstance(appointment.assignment, ReassignmentRequested):
            return DisplayStatus.REASSIGNMENT_REQUESTED
        if appointment.status == AppointmentStatus.ASSIGNED:
            return DisplayStatus.AWAITING_ACCEPTANCE
    return DisplayStatus(appointment.status.value)


def sort_for_display(appointments: Iterable[Appointment]) -> list[Appointment]:
    """Order by status priority, then most recent ``scheduled_at`` first."""
    by_date = sorted(appointments, key=lambda a: a.scheduled_at, reverse=True)
    return sorted(by_date, key=lambda a: STATUS_PRIORITY[a.status])


def matches_query(appointment: Appointment, query: AppointmentQuery, tz: dt.tzinfo) -> bool:
    if query.status is not None:
        wanted = _ASSIGNED_ALIASES if query.status in _ASSIGNED_ALIASES else {query.status}
        if appointment.status not in wanted:
            return False
    if query.date is not None and local_slot(appointment.scheduled_at, tz)[0] != query.date:
        return False
    if query.staff_id is not None and appointment.assigned_staff_id != query.staff_id:
        return False
    if query.customer_id is not None and appointment.customer_id != query.customer_id:
        return False
    if query.search:
        needle = query.search.strip().lower()
        haystack = [
            appointment.appointment_id,
            appointment.description or "",
            appointment.interested_category or "",
            appointment.site_address.city if appointment.site_address else "",
        ]
        if not any(needle in field.lower() for field in haystack):
            return False
    return True


class LifecycleEngine:
    """Owns creation and every guarded state transition of an appointment.

    Transitions are applied as compare-and-set writes keyed on the
    appointment's version. On a stale version the appointment is reloaded and
    the mutation re-run, so its guards see the winning writer's state.
    """

    def __init__(
        self,
        repository: AppointmentRepository,
        calendar: SlotCalendar,
        customers: CustomerDirectoryProtocol,
        notifications: NotificationDispatcher,
        *,
        clock: Clock,
        tz: dt.tzinfo,
        max_retries: int = 3,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._repository = repository
        self._calendar = calendar
        self._customers = customers
        self._notifications = notifications
        self._clock = clock
        self._tz = tz
        self._max_retries = max_retries
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex)

    @property
    def tz(self) -> dt.tzinfo:
        return self._tz

    def now(self) -> dt.datetime:
        return self._clock()

    def notify(self, appointment: Appointment, kind: NotificationKind, **extra: object) -> None:
        self._notifications.dispatch(appointment, kind, **extra)

    async def load(self, appointment_id: str) -> Appointment:
        appointment = await self._repository.get(appointment_id)
        if appointment is None:
            raise NotFoundError("Appointment not found", appointment_id=appointment_id)
        return appointment

    async def create(self, request: AppointmentRequest, actor: Actor) -> Appointment:
        if actor.role == Role.CUSTOMER:
            if actor.user_id != request.customer_id:
                raise UnauthorizedError("Customers may only book for themselves")
        else:
            require_role(actor, AGENT_ROLES, "book appointments")

        now = self.now()
        scheduled_at = validate_request(request, now, self._calendar.slot_times, self._tz)
        if await self._customers.get_customer(request.customer_id) is None:
            raise NotFoundError(f"Customer '{request.customer_id}' not found")

        logger.info(
            "Creating appointment: type={}, date={}, time={}",
            request.appointment_type.value,
            request.date,
            request.time,
        )
        ocular = request.appointment_type == AppointmentType.OCULAR_VISIT
        appointment = Appointment(
            appointment_id=self._id_factory(),
            customer_id=request.customer_id,
            appointment_type=request.appointment_type,
            scheduled_at=scheduled_at,
            site_address=request.site_address if ocular else None,
            description=request.description,
            interested_category=request.interested_category,
            notes=AppointmentNotes(customer_notes=request.customer_notes),
            created_at=now,
        )
        staff_ids = await self._calendar.staff_ids()

        def guard(existing: Sequence[Appointment]) -> None:
            ensure_no_active_booking(existing, request.customer_id, now)
            ensure_slot_open(existing, request.date, request.time, staff_ids, self._tz)

        stored = await self._repository.add(appointment, guard)
        self._calendar.invalidate(request.date)
        logger.info("Appointment created: id={}", stored.appointment_id)
        self.notify(stored, NotificationKind.CREATED)
        return stored

    async def transition(
        self,
        appointment_id: str,
        mutate: Mutation,
        guard_for: Callable[[Appointment], WriteGuard] | None = None,
    ) -> Appointment:
        """Apply ``mutate`` atomically, retrying on concurrent writes."""
        for attempt in range(1, self._max_retries + 1):
            current = await self.load(appointment_id)
            updated = mutate(current)
            guard = guard_for(updated) if guard_for is not None else None
            if await self._repository.compare_and_set(updated, current.version, guard):
                self._calendar.invalidate(local_slot(updated.scheduled_at, self._tz)[0])
                return updated
            logger.warning(
                "Concurrent update on appointment {}; retrying ({}/{})",
                appointment_id,
                attempt,
                self._max_retries,
            )
        raise ConflictError(
            "Appointment was changed concurrently. Please refresh and try again.",
            appointment_id=appointment_id,
        )

    async def start(self, appointment_id: str, actor: Actor) -> Appointment:
        def mutate(current: Appointment) -> Appointment:
            require_assigned_staff(actor, current, "start this visit")
            return start(current)

        appointment = await self.transition(appointment_id, mutate)
        logger.info("Appointment started: id={}", appointment_id)
        return appointment

    async def complete(
        self, appointment_id: str, actor: Actor, sales_notes: str | None = None
    ) -> Appointment:
        def mutate(current: Appointment) -> Appointment:
            if actor.role not in AGENT_ROLES:
                require_assigned_staff(actor, current, "complete this appointment")
            return complete(current, sales_notes)

        appointment = await self.transition(appointment_id, mutate)
        logger.info("Appointment completed: id={}", appointment_id)
        self.notify(appointment, NotificationKind.COMPLETED)
        return appointment

    async def mark_no_show(self, appointment_id: str, actor: Actor) -> Appointment:
        require_role(actor, AGENT_ROLES, "mark appointments as no-show")
        appointment = await self.transition(appointment_id, mark_no_show)
        logger.info("Appointment marked no-show: id={}", appointment_id)
        self.notify(appointment, NotificationKind.NO_SHOW)
        return appointment
