import datetime as dt
from typing import NamedTuple

from loguru import logger

from booking.domain.exceptions import InvalidStateError, ValidationError
from booking.domain.models import (
    Actor,
    Appointment,
    AppointmentStatus,
    Cancellation,
    CancellationReason,
)
from booking.scheduling.lifecycle import (
    AGENT_ROLES,
    TERMINAL_STATUSES,
    LifecycleEngine,
    require_role,
)
from booking.scheduling.notifications import NotificationKind


class CancellationTemplate(NamedTuple):
    reason: CancellationReason
    title: str
    message: str


CANCELLATION_TEMPLATES: dict[CancellationReason, CancellationTemplate] = {
    CancellationReason.SCHEDULE_CONFLICT: CancellationTemplate(
        CancellationReason.SCHEDULE_CONFLICT,
        "Scheduling conflict",
        "We need to cancel your appointment due to a scheduling conflict. "
        "Please choose a new time that works best for you.",
    ),
    CancellationReason.TEAM_UNAVAILABLE: CancellationTemplate(
        CancellationReason.TEAM_UNAVAILABLE,
        "Team unavailable",
        "Our team will not be available at the scheduled time. "
        "Please rebook and we will prioritize your next slot.",
    ),
    CancellationReason.SITE_CONSTRAINTS: CancellationTemplate(
        CancellationReason.SITE_CONSTRAINTS,
        "Site or weather constraints",
        "We need to cancel because of site or weather constraints. "
        "Kindly rebook when conditions improve.",
    ),
    CancellationReason.CUSTOM: CancellationTemplate(
        CancellationReason.CUSTOM, "Custom message", ""
    ),
}


def resolve_cancellation(
    reason: CancellationReason,
    message: str | None,
    cancelled_by: str,
    at: dt.datetime,
) -> Cancellation:
    """Build the customer-facing cancellation.

    ``None`` takes the template's default message; an explicit message
    replaces it. The custom template has no default.
    """
    template = CANCELLATION_TEMPLATES[reason]
    text = (template.message if message is None else message).strip()
    if not text:
        raise ValidationError("A cancellation message for the customer is required")
    return Cancellation(
        reason=reason,
        title=template.title,
        message=text,
        cancelled_by=cancelled_by,
        cancelled_at=at,
    )


def cancel(appointment: Appointment, cancellation: Cancellation) -> Appointment:
    if appointment.status in TERMINAL_STATUSES:
        raise InvalidStateError(
            f"Cannot cancel an appointment that is {appointment.status.value}",
            appointment_id=appointment.appointment_id,
        )
    return appointment.evolve(status=AppointmentStatus.CANCELLED, cancellation=cancellation)


class CancellationWorkflow:
    """Structured cancellation by the dispatcher, with customer notification."""

    def __init__(self, engine: LifecycleEngine) -> None:
        self._engine = engine

    async def cancel(
        self,
        appointment_id: str,
        reason: CancellationReason,
        message: str | None,
        actor: Actor,
    ) -> Appointment:
        require_role(actor, AGENT_ROLES, "cancel appointments")
        cancellation = resolve_cancellation(reason, message, actor.user_id, self._engine.now())

        logger.info("Cancelling appointment: id={}, reason={}", appointment_id, reason.value)
        appointment = await self._engine.transition(
            appointment_id, lambda current: cancel(current, cancellation)
        )
        logger.info("Appointment cancelled: id={}", appointment_id)
        self._engine.notify(
            appointment,
            NotificationKind.CANCELLED,
            reason=cancellation.title,
            message=cancellation.message,
        )
        return appointment
