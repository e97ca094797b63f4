from collections.abc import Callable

import pytest

from booking.domain.models import Appointment
from booking.scheduling.adapters.fake import FakeNotifier
from booking.scheduling.notifications import NotificationDispatcher, NotificationKind


class TestNotificationDispatcher:
    @pytest.mark.asyncio
    async def test_payload_shape(
        self, make_appointment: Callable[..., Appointment]
    ) -> None:
        notifier = FakeNotifier()
        dispatcher = NotificationDispatcher(notifier)
        appointment = make_appointment(staff_id="s1")

        dispatcher.dispatch(appointment, NotificationKind.ASSIGNED, staff_name="Ana Reyes")
        await dispatcher.drain()

        appointment_id, kind, payload = notifier.sent[0]
        assert appointment_id == appointment.appointment_id
        assert kind == "assigned"
        assert payload == {
            "audience": "customer",
            "customer_id": "c9",
            "status": "assigned",
            "appointment_type": "office_consultation",
            "scheduled_at": appointment.scheduled_at.isoformat(),
            "assigned_staff_id": "s1",
            "staff_name": "Ana Reyes",
        }

    @pytest.mark.asyncio
    async def test_reassignment_requests_go_to_agents(
        self, make_appointment: Callable[..., Appointment]
    ) -> None:
        notifier = FakeNotifier()
        dispatcher = NotificationDispatcher(notifier)

        dispatcher.dispatch(make_appointment(), NotificationKind.REASSIGNMENT_REQUESTED)
        await dispatcher.drain()

        assert notifier.sent[0][2]["audience"] == "agent"

    @pytest.mark.asyncio
    async def test_failures_are_swallowed_and_drained(
        self, make_appointment: Callable[..., Appointment]
    ) -> None:
        notifier = FakeNotifier()
        notifier.error = RuntimeError("smtp down")
        dispatcher = NotificationDispatcher(notifier)

        dispatcher.dispatch(make_appointment(), NotificationKind.CREATED)
        assert dispatcher.pending == 1
        await dispatcher.drain()

        assert dispatcher.pending == 0
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_close_closes_notifier(self) -> None:
        notifier = FakeNotifier()

        await NotificationDispatcher(notifier).close()

        assert notifier.closed is True
