import datetime as dt
from collections.abc import Sequence

from loguru import logger

from booking.domain.exceptions import InvalidStateError, NotFoundError, ValidationError
from booking.domain.models import (
    Accepted,
    Actor,
    Appointment,
    AppointmentStatus,
    AwaitingAcceptance,
    ReassignmentRequested,
    Role,
    Unassigned,
)
from booking.scheduling.adapters.datetime_helpers import local_slot
from booking.scheduling.calendar import ensure_staff_free
from booking.scheduling.lifecycle import (
    AGENT_ROLES,
    LifecycleEngine,
    require_assigned_staff,
    require_role,
)
from booking.scheduling.notifications import NotificationKind
from booking.scheduling.ports import StaffDirectoryProtocol, WriteGuard


def bind_staff(appointment: Appointment, staff_id: str, note: str | None = None) -> Appointment:
    """Assign ``staff_id``, replacing any assignment a reassignment request released.

    Legal from a pending, unassigned appointment, or from an assigned one
    whose staff asked to be reassigned, to someone other than that staff
    member. The acceptance sub-state restarts.
    """
    fresh = appointment.status == AppointmentStatus.PENDING and isinstance(
        appointment.assignment, Unassigned
    )
    released = appointment.status == AppointmentStatus.ASSIGNED and isinstance(
        appointment.assignment, ReassignmentRequested
    )
    if not (fresh or released):
        raise InvalidStateError(
            f"Cannot assign an appointment that is {appointment.status.value}"
            + (" and already has staff" if appointment.assigned_staff_id else ""),
            appointment_id=appointment.appointment_id,
        )
    if released and staff_id == appointment.assigned_staff_id:
        raise InvalidStateError(
            f"'{staff_id}' asked to be reassigned; choose another staff member",
            appointment_id=appointment.appointment_id,
        )
    notes = appointment.notes
    if note:
        notes = notes.model_copy(update={"agent_notes": note})
    return appointment.evolve(
        status=AppointmentStatus.ASSIGNED,
        assignment=AwaitingAcceptance(staff_id=staff_id),
        notes=notes,
    )


def _awaiting(appointment: Appointment, action: str) -> AwaitingAcceptance:
    if appointment.status != AppointmentStatus.ASSIGNED or not isinstance(
        appointment.assignment, AwaitingAcceptance
    ):
        state = (
            appointment.assignment.kind.replace("_", " ")
            if appointment.status == AppointmentStatus.ASSIGNED
            else appointment.status.value
        )
        raise InvalidStateError(
            f"Cannot {action} an appointment that is {state}",
            appointment_id=appointment.appointment_id,
        )
    return appointment.assignment


def accept_assignment(appointment: Appointment, at: dt.datetime) -> Appointment:
    awaiting = _awaiting(appointment, "accept")
    return appointment.evolve(
        status=AppointmentStatus.CONFIRMED,
        assignment=Accepted(staff_id=awaiting.staff_id, accepted_at=at),
    )


def flag_reassignment(appointment: Appointment, reason: str, at: dt.datetime) -> Appointment:
    reason = reason.strip()
    if not reason:
        raise ValidationError(
            "A reason is required to request reassignment",
            appointment_id=appointment.appointment_id,
        )
    awaiting = _awaiting(appointment, "request reassignment for")
    return appointment.evolve(
        assignment=ReassignmentRequested(
            staff_id=awaiting.staff_id, reason=reason, requested_at=at
        )
    )


class AssignmentCoordinator:
    """Hands appointments from the dispatcher to sales staff and back."""

    def __init__(self, engine: LifecycleEngine, staff_directory: StaffDirectoryProtocol) -> None:
        self._engine = engine
        self._staff = staff_directory

    async def assign(
        self, appointment_id: str, staff_id: str, actor: Actor, note: str | None = None
    ) -> Appointment:
        require_role(actor, AGENT_ROLES, "assign appointments")
        staff = await self._staff.get_staff_by_id(staff_id)
        if staff is None:
            raise NotFoundError(
                f"Staff member '{staff_id}' not found", appointment_id=appointment_id
            )
        if staff.role != Role.SALES_STAFF or not staff.is_active:
            raise ValidationError(
                f"'{staff_id}' is not an active sales staff member", appointment_id=appointment_id
            )

        tz = self._engine.tz

        def guard_for(updated: Appointment) -> WriteGuard:
            date, time = local_slot(updated.scheduled_at, tz)

            def guard(existing: Sequence[Appointment]) -> None:
                ensure_staff_free(existing, staff_id, date, time, tz)

            return guard

        appointment = await self._engine.transition(
            appointment_id, lambda current: bind_staff(current, staff_id, note), guard_for
        )
        logger.info("Appointment assigned: id={}, staff={}", appointment_id, staff_id)
        self._engine.notify(appointment, NotificationKind.ASSIGNED, staff_name=staff.full_name)
        return appointment

    async def accept(self, appointment_id: str, actor: Actor) -> Appointment:
        def mutate(current: Appointment) -> Appointment:
            require_assigned_staff(actor, current, "accept this appointment")
            return accept_assignment(current, self._engine.now())

        appointment = await self._engine.transition(appointment_id, mutate)
        logger.info("Appointment accepted: id={}, staff={}", appointment_id, actor.user_id)
        self._engine.notify(appointment, NotificationKind.CONFIRMED)
        return appointment

    async def request_reassignment(
        self, appointment_id: str, reason: str, actor: Actor
    ) -> Appointment:
        if not reason.strip():
            raise ValidationError(
                "A reason is required to request reassignment", appointment_id=appointment_id
            )

        def mutate(current: Appointment) -> Appointment:
            require_assigned_staff(actor, current, "request reassignment")
            return flag_reassignment(current, reason, self._engine.now())

        appointment = await self._engine.transition(appointment_id, mutate)
        logger.info("Reassignment requested: id={}, staff={}", appointment_id, actor.user_id)
        self._engine.notify(
            appointment, NotificationKind.REASSIGNMENT_REQUESTED, reason=reason.strip()
        )
        return appointment
