import asyncio
from enum import Enum
from typing import Any

from loguru import logger

from booking.domain.models import Appointment
from booking.scheduling.ports import NotifierProtocol


class NotificationKind(Enum):
    CREATED = "created"
    ASSIGNED = "assigned"
    CONFIRMED = "confirmed"
    REASSIGNMENT_REQUESTED = "reassignment_requested"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


# Kinds addressed to the dispatcher queue rather than the customer.
AGENT_KINDS: frozenset[NotificationKind] = frozenset({NotificationKind.REASSIGNMENT_REQUESTED})


class NotificationDispatcher:
    """Fire-and-forget delivery of notifications after a transition commits.

    Delivery runs in background tasks; failures are logged and never reach
    the caller of the transition. ``drain`` waits for in-flight deliveries.
    """

    def __init__(self, notifier: NotifierProtocol) -> None:
        self._notifier = notifier
        self._pending: set[asyncio.Task[None]] = set()

    def dispatch(
        self, appointment: Appointment, kind: NotificationKind, **extra: Any
    ) -> None:
        payload: dict[str, Any] = {
            "audience": "agent" if kind in AGENT_KINDS else "customer",
            "customer_id": appointment.customer_id,
            "status": appointment.status.value,
            "appointment_type": appointment.appointment_type.value,
            "scheduled_at": appointment.scheduled_at.isoformat(),
            "assigned_staff_id": appointment.assigned_staff_id,
            **extra,
        }
        task = asyncio.create_task(self._deliver(appointment.appointment_id, kind, payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(
        self, appointment_id: str, kind: NotificationKind, payload: dict[str, Any]
    ) -> None:
        try:
            await self._notifier.notify_customer(appointment_id, kind.value, payload)
        except Exception:
            logger.exception(
                "Notification '{}' failed for appointment {}", kind.value, appointment_id
            )
            return
        logger.debug("Notification '{}' sent for appointment {}", kind.value, appointment_id)

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending))

    async def close(self) -> None:
        await self.drain()
        await self._notifier.close()
