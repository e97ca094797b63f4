import datetime as dt
import itertools
from collections.abc import Callable
from typing import Any

import pytest

from booking.config import DEFAULT_SLOT_TIMES
from booking.domain.models import (
    Accepted,
    Appointment,
    AppointmentRequest,
    AppointmentStatus,
    AppointmentType,
    AwaitingAcceptance,
    Role,
    Staff,
    Unassigned,
)
from booking.scheduling.adapters.fake import FakeNotifier
from booking.scheduling.adapters.memory import (
    InMemoryAppointmentRepository,
    InMemoryCustomerDirectory,
    InMemoryStaffDirectory,
)
from booking.scheduling.service import AppointmentService
from factories import NEXT_MONDAY, NOW, TZ, at


@pytest.fixture
def roster() -> list[Staff]:
    return [
        Staff(staff_id="s1", first_name="Ana", last_name="Reyes", email="ana@example.test"),
        Staff(staff_id="s2", first_name="Ben", last_name="Cruz", email="ben@example.test"),
        Staff(
            staff_id="agent-1", first_name="Dee", last_name="Santos", role=Role.APPOINTMENT_AGENT
        ),
    ]


@pytest.fixture
def repository() -> InMemoryAppointmentRepository:
    return InMemoryAppointmentRepository(TZ)


@pytest.fixture
def staff_directory(roster: list[Staff]) -> InMemoryStaffDirectory:
    return InMemoryStaffDirectory(roster)


@pytest.fixture
def customers() -> InMemoryCustomerDirectory:
    return InMemoryCustomerDirectory(
        [
            {"_id": "c1", "firstName": "Carla", "lastName": "Lim", "email": "carla@example.test"},
            {"_id": "c2", "email": "dan@example.test", "profile": {"firstName": "Dan"}},
            {"_id": "c3", "firstName": "Eve", "lastName": "Tan"},
        ]
    )


@pytest.fixture
def fake_notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def service(
    repository: InMemoryAppointmentRepository,
    staff_directory: InMemoryStaffDirectory,
    customers: InMemoryCustomerDirectory,
    fake_notifier: FakeNotifier,
) -> AppointmentService:
    ids = itertools.count(1)
    return AppointmentService(
        repository,
        staff_directory,
        customers,
        fake_notifier,
        slot_times=DEFAULT_SLOT_TIMES,
        tz=TZ,
        clock=lambda: NOW,
        id_factory=lambda: f"appt-{next(ids)}",
    )


@pytest.fixture
def office_request() -> Callable[..., AppointmentRequest]:
    """Build an office consultation request for next Monday, overridable per test."""

    def build(**overrides: Any) -> AppointmentRequest:
        fields: dict[str, Any] = {
            "customer_id": "c1",
            "appointment_type": AppointmentType.OFFICE_CONSULTATION,
            "date": NEXT_MONDAY,
            "time": dt.time(10, 0),
        }
        fields.update(overrides)
        return AppointmentRequest(**fields)

    return build


@pytest.fixture
def make_appointment() -> Callable[..., Appointment]:
    """Build a stored-shape appointment directly, bypassing the lifecycle."""
    ids = itertools.count(1)

    def build(
        *,
        staff_id: str | None = None,
        status: AppointmentStatus | None = None,
        when: dt.datetime | None = None,
        customer_id: str = "c9",
        **overrides: Any,
    ) -> Appointment:
        if status is None:
            status = AppointmentStatus.ASSIGNED if staff_id else AppointmentStatus.PENDING
        if staff_id is None:
            assignment: Any = Unassigned()
        elif status in {AppointmentStatus.ASSIGNED, AppointmentStatus.SCHEDULED}:
            assignment = AwaitingAcceptance(staff_id=staff_id)
        else:
            assignment = Accepted(staff_id=staff_id, accepted_at=NOW)
        fields: dict[str, Any] = {
            "appointment_id": f"seed-{next(ids)}",
            "customer_id": customer_id,
            "appointment_type": AppointmentType.OFFICE_CONSULTATION,
            "scheduled_at": when or at(NEXT_MONDAY, 10),
            "status": status,
            "assignment": assignment,
            "created_at": NOW,
        }
        fields.update(overrides)
        return Appointment(**fields)

    return build
