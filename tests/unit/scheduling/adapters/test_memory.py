import datetime as dt
from collections.abc import Callable, Sequence

import pytest

from booking.domain.exceptions import ConflictError, NotFoundError
from booking.domain.models import Appointment, Role, Staff
from booking.scheduling.adapters.memory import (
    InMemoryAppointmentRepository,
    InMemoryCustomerDirectory,
    InMemoryStaffDirectory,
)
from factories import NEXT_MONDAY, at


def _allow(_: Sequence[Appointment]) -> None:
    return None


class TestAppointmentRepository:
    @pytest.mark.asyncio
    async def test_add_and_get(
        self,
        repository: InMemoryAppointmentRepository,
        make_appointment: Callable[..., Appointment],
    ) -> None:
        appointment = make_appointment()

        await repository.add(appointment, _allow)

        assert await repository.get(appointment.appointment_id) == appointment
        assert await repository.get("missing") is None

    @pytest.mark.asyncio
    async def test_duplicate_id_conflicts(
        self,
        repository: InMemoryAppointmentRepository,
        make_appointment: Callable[..., Appointment],
    ) -> None:
        appointment = make_appointment()
        await repository.add(appointment, _allow)

        with pytest.raises(ConflictError, match="already exists"):
            await repository.add(appointment, _allow)

    @pytest.mark.asyncio
    async def test_add_guard_sees_same_customer_and_same_day(
        self,
        repository: InMemoryAppointmentRepository,
        make_appointment: Callable[..., Appointment],
    ) -> None:
        same_day = make_appointment(customer_id="c2")
        same_customer = make_appointment(customer_id="c1", when=at(dt.date(2025, 3, 12), 9))
        unrelated = make_appointment(customer_id="c3", when=at(dt.date(2025, 3, 12), 9))
        for existing in (same_day, same_customer, unrelated):
            await repository.add(existing, _allow)
        seen: list[str] = []

        await repository.add(
            make_appointment(customer_id="c1"),
            lambda related: seen.extend(a.appointment_id for a in related),
        )

        assert sorted(seen) == sorted([same_day.appointment_id, same_customer.appointment_id])

    @pytest.mark.asyncio
    async def test_failing_guard_writes_nothing(
        self,
        repository: InMemoryAppointmentRepository,
        make_appointment: Callable[..., Appointment],
    ) -> None:
        def refuse(_: Sequence[Appointment]) -> None:
            raise ConflictError("slot taken")

        appointment = make_appointment()
        with pytest.raises(ConflictError):
            await repository.add(appointment, refuse)

        assert await repository.list_all() == []

    @pytest.mark.asyncio
    async def test_compare_and_set(
        self,
        repository: InMemoryAppointmentRepository,
        make_appointment: Callable[..., Appointment],
    ) -> None:
        original = make_appointment()
        await repository.add(original, _allow)
        updated = original.evolve(description="Roof leak")

        assert await repository.compare_and_set(updated, original.version + 5) is False
        assert await repository.compare_and_set(updated, original.version) is True
        assert await repository.compare_and_set(updated, original.version) is False
        stored = await repository.get(original.appointment_id)
        assert stored is not None
        assert stored.description == "Roof leak"

    @pytest.mark.asyncio
    async def test_compare_and_set_missing(
        self,
        repository: InMemoryAppointmentRepository,
        make_appointment: Callable[..., Appointment],
    ) -> None:
        with pytest.raises(NotFoundError):
            await repository.compare_and_set(make_appointment(), 0)

    @pytest.mark.asyncio
    async def test_compare_and_set_guard_excludes_self(
        self,
        repository: InMemoryAppointmentRepository,
        make_appointment: Callable[..., Appointment],
    ) -> None:
        original = make_appointment()
        neighbour = make_appointment(customer_id="c2")
        await repository.add(original, _allow)
        await repository.add(neighbour, _allow)
        seen: list[str] = []

        await repository.compare_and_set(
            original.evolve(description="x"),
            original.version,
            lambda others: seen.extend(a.appointment_id for a in others),
        )

        assert seen == [neighbour.appointment_id]

    @pytest.mark.asyncio
    async def test_listings(
        self,
        repository: InMemoryAppointmentRepository,
        make_appointment: Callable[..., Appointment],
    ) -> None:
        monday = make_appointment(staff_id="s1", customer_id="c1")
        wednesday = make_appointment(customer_id="c2", when=at(dt.date(2025, 3, 12), 9))
        for appointment in (monday, wednesday):
            await repository.add(appointment, _allow)

        in_range = await repository.list_by_date_range(NEXT_MONDAY, dt.date(2025, 3, 11))

        assert in_range == [monday]
        assert await repository.list_by_staff("s1") == [monday]
        assert await repository.list_by_customer("c2") == [wednesday]
        assert len(await repository.list_all()) == 2


class TestStaffDirectory:
    @pytest.mark.asyncio
    async def test_lists_active_staff_by_role(
        self, staff_directory: InMemoryStaffDirectory
    ) -> None:
        staff_directory.add(
            Staff(staff_id="s3", first_name="Cy", last_name="Go", is_active=False)
        )

        sales = await staff_directory.list_staff(Role.SALES_STAFF)
        agents = await staff_directory.list_staff(Role.APPOINTMENT_AGENT)

        assert [s.staff_id for s in sales] == ["s1", "s2"]
        assert [s.staff_id for s in agents] == ["agent-1"]
        assert (await staff_directory.get_staff_by_id("s3")) is not None


class TestCustomerDirectory:
    @pytest.mark.asyncio
    async def test_normalizes_records(self, customers: InMemoryCustomerDirectory) -> None:
        carla = await customers.get_customer("c1")
        dan = await customers.get_customer("c2")

        assert carla is not None and carla.full_name == "Carla Lim"
        assert dan is not None and dan.full_name == "Dan"
        assert await customers.get_customer("c404") is None

    @pytest.mark.asyncio
    async def test_add_record(self) -> None:
        directory = InMemoryCustomerDirectory()

        added = directory.add_record({"customer_id": "c7", "firstName": "Gia", "lastName": "Ong"})

        assert await directory.get_customer("c7") == added
