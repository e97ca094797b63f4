import datetime as dt
from decimal import Decimal

from loguru import logger

from booking.domain.exceptions import InvalidStateError, ValidationError
from booking.domain.models import (
    Actor,
    Appointment,
    AppointmentStatus,
    AppointmentType,
    Role,
    TravelFee,
    TravelFeeStatus,
)
from booking.scheduling.lifecycle import (
    AGENT_ROLES,
    LifecycleEngine,
    require_assigned_staff,
    require_role,
)

FEE_DESK_ROLES = AGENT_ROLES | {Role.CASHIER}

_CLOSED = frozenset({AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW})


def _ensure_billable(appointment: Appointment) -> None:
    if appointment.appointment_type != AppointmentType.OCULAR_VISIT:
        raise InvalidStateError(
            "Travel fees only apply to ocular visits", appointment_id=appointment.appointment_id
        )
    if appointment.status in _CLOSED:
        raise InvalidStateError(
            f"Cannot change the travel fee of an appointment that is {appointment.status.value}",
            appointment_id=appointment.appointment_id,
        )


def set_fee(
    appointment: Appointment, amount: Decimal | None, notes: str | None, is_required: bool
) -> Appointment:
    _ensure_billable(appointment)
    fee = appointment.travel_fee
    if fee.status in {TravelFeeStatus.COLLECTED, TravelFeeStatus.VERIFIED}:
        raise InvalidStateError(
            "Travel fee was already collected", appointment_id=appointment.appointment_id
        )
    if is_required and (amount is None or amount <= 0):
        raise ValidationError(
            "Enter a valid travel fee amount", appointment_id=appointment.appointment_id
        )
    return appointment.evolve(
        travel_fee=TravelFee(
            status=TravelFeeStatus.PENDING if is_required else TravelFeeStatus.NOT_REQUIRED,
            is_required=is_required,
            amount=amount if is_required else None,
            notes=notes,
        )
    )


def collect_fee(
    appointment: Appointment,
    collected_amount: Decimal,
    collected_by: str,
    at: dt.datetime,
    notes: str | None = None,
) -> Appointment:
    _ensure_billable(appointment)
    fee = appointment.travel_fee
    if fee.status != TravelFeeStatus.PENDING:
        raise InvalidStateError(
            f"Cannot collect a travel fee that is {fee.status.value}",
            appointment_id=appointment.appointment_id,
        )
    if collected_amount <= 0:
        raise ValidationError(
            "Collected amount must be positive", appointment_id=appointment.appointment_id
        )
    return appointment.evolve(
        travel_fee=fee.model_copy(
            update={
                "status": TravelFeeStatus.COLLECTED,
                "collected_amount": collected_amount,
                "collected_by": collected_by,
                "collected_at": at,
                "notes": notes or fee.notes,
            }
        )
    )


def verify_fee(
    appointment: Appointment, verified_by: str, at: dt.datetime, notes: str | None = None
) -> Appointment:
    fee = appointment.travel_fee
    if fee.status != TravelFeeStatus.COLLECTED:
        raise InvalidStateError(
            f"Cannot verify a travel fee that is {fee.status.value}",
            appointment_id=appointment.appointment_id,
        )
    return appointment.evolve(
        travel_fee=fee.model_copy(
            update={
                "status": TravelFeeStatus.VERIFIED,
                "verified_by": verified_by,
                "verified_at": at,
                "notes": notes or fee.notes,
            }
        )
    )


class TravelFeeDesk:
    """Travel fee handling for ocular visits: set by the desk, collected on site, verified."""

    def __init__(self, engine: LifecycleEngine) -> None:
        self._engine = engine

    async def set_fee(
        self,
        appointment_id: str,
        actor: Actor,
        *,
        amount: Decimal | None = None,
        notes: str | None = None,
        is_required: bool = True,
    ) -> Appointment:
        require_role(actor, FEE_DESK_ROLES, "set travel fees")
        appointment = await self._engine.transition(
            appointment_id, lambda current: set_fee(current, amount, notes, is_required)
        )
        logger.info(
            "Travel fee set: id={}, status={}",
            appointment_id,
            appointment.travel_fee.status.value,
        )
        return appointment

    async def collect(
        self,
        appointment_id: str,
        actor: Actor,
        collected_amount: Decimal,
        notes: str | None = None,
    ) -> Appointment:
        def mutate(current: Appointment) -> Appointment:
            require_assigned_staff(actor, current, "collect the travel fee")
            return collect_fee(current, collected_amount, actor.user_id, self._engine.now(), notes)

        appointment = await self._engine.transition(appointment_id, mutate)
        logger.info("Travel fee collected: id={}", appointment_id)
        return appointment

    async def verify(
        self, appointment_id: str, actor: Actor, notes: str | None = None
    ) -> Appointment:
        require_role(actor, {Role.CASHIER, Role.ADMIN}, "verify travel fees")
        appointment = await self._engine.transition(
            appointment_id,
            lambda current: verify_fee(current, actor.user_id, self._engine.now(), notes),
        )
        logger.info("Travel fee verified: id={}", appointment_id)
        return appointment
