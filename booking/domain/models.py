import datetime as dt
import math
from collections.abc import Mapping
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class AppointmentType(str, Enum):
    """Kinds of consultation a customer can book."""

    OFFICE_CONSULTATION = "office_consultation"
    OCULAR_VISIT = "ocular_visit"


class AppointmentStatus(str, Enum):
    """Possible states of an appointment.

    ``SCHEDULED`` is a legacy alias of ``ASSIGNED``: it is read and filtered
    like ``ASSIGNED`` but no transition enters it.
    """

    PENDING = "pending"
    ASSIGNED = "assigned"
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class DisplayStatus(str, Enum):
    """Status as shown in list views, with the assignment sub-state folded in."""

    PENDING = "pending"
    AWAITING_ACCEPTANCE = "awaiting_acceptance"
    REASSIGNMENT_REQUESTED = "reassignment_requested"
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class Role(str, Enum):
    CUSTOMER = "customer"
    APPOINTMENT_AGENT = "appointment_agent"
    SALES_STAFF = "sales_staff"
    CASHIER = "cashier"
    ADMIN = "admin"


class CancellationReason(str, Enum):
    SCHEDULE_CONFLICT = "schedule_conflict"
    TEAM_UNAVAILABLE = "team_unavailable"
    SITE_CONSTRAINTS = "site_constraints"
    CUSTOM = "custom"


class TravelFeeStatus(str, Enum):
    NOT_REQUIRED = "not_required"
    PENDING = "pending"
    COLLECTED = "collected"
    VERIFIED = "verified"


class Actor(BaseModel):
    """The user performing a lifecycle operation."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    role: Role


class Coordinates(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float
    lng: float


class SiteAddress(BaseModel):
    """Physical address of an ocular visit. Coordinates are stored, never computed."""

    model_config = ConfigDict(frozen=True)

    street: str = ""
    barangay: str = ""
    city: str = ""
    province: str = ""
    zip_code: str = ""
    landmark: str = ""
    coordinates: Coordinates | None = None


class Unassigned(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["unassigned"] = "unassigned"


class AwaitingAcceptance(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["awaiting_acceptance"] = "awaiting_acceptance"
    staff_id: str


class ReassignmentRequested(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["reassignment_requested"] = "reassignment_requested"
    staff_id: str
    reason: str
    requested_at: dt.datetime


class Accepted(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["accepted"] = "accepted"
    staff_id: str
    accepted_at: dt.datetime


Assignment = Annotated[
    Unassigned | AwaitingAcceptance | ReassignmentRequested | Accepted,
    Field(discriminator="kind"),
]


class SalesAcceptance(BaseModel):
    """Flat view of the assignment sub-state, as exposed to API callers."""

    model_config = ConfigDict(frozen=True)

    accepted: bool = False
    accepted_at: dt.datetime | None = None
    reschedule_requested: bool = False
    reschedule_reason: str | None = None


class Cancellation(BaseModel):
    model_config = ConfigDict(frozen=True)

    reason: CancellationReason
    title: str
    message: str
    cancelled_by: str
    cancelled_at: dt.datetime


class AppointmentNotes(BaseModel):
    model_config = ConfigDict(frozen=True)

    customer_notes: str | None = None
    agent_notes: str | None = None
    sales_notes: str | None = None


class TravelFee(BaseModel):
    """Fee collected on site for ocular visits."""

    model_config = ConfigDict(frozen=True)

    status: TravelFeeStatus = TravelFeeStatus.NOT_REQUIRED
    is_required: bool = False
    amount: Decimal | None = None
    notes: str | None = None
    collected_by: str | None = None
    collected_at: dt.datetime | None = None
    collected_amount: Decimal | None = None
    verified_by: str | None = None
    verified_at: dt.datetime | None = None


_STAFFED_STATUSES = frozenset(
    {
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.IN_PROGRESS,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.NO_SHOW,
    }
)


class Appointment(BaseModel):
    """A booked consultation and its lifecycle state."""

    model_config = ConfigDict(frozen=True)

    appointment_id: str
    customer_id: str
    appointment_type: AppointmentType
    scheduled_at: dt.datetime
    status: AppointmentStatus = AppointmentStatus.PENDING
    assignment: Assignment = Field(default_factory=Unassigned)
    site_address: SiteAddress | None = None
    cancellation: Cancellation | None = None
    description: str | None = None
    interested_category: str | None = None
    notes: AppointmentNotes = Field(default_factory=AppointmentNotes)
    travel_fee: TravelFee = Field(default_factory=TravelFee)
    created_at: dt.datetime
    version: int = 0

    @model_validator(mode="after")
    def _check_consistency(self) -> "Appointment":
        if (self.cancellation is None) == (self.status == AppointmentStatus.CANCELLED):
            raise ValueError("cancellation must be present exactly when status is cancelled")
        if self.status == AppointmentStatus.PENDING and not isinstance(
            self.assignment, Unassigned
        ):
            raise ValueError("pending appointments cannot have assigned staff")
        if self.status == AppointmentStatus.ASSIGNED and not isinstance(
            self.assignment, (AwaitingAcceptance, ReassignmentRequested)
        ):
            raise ValueError("assigned appointments must be awaiting acceptance")
        if self.status in _STAFFED_STATUSES and not isinstance(self.assignment, Accepted):
            raise ValueError(f"{self.status.value} appointments must have accepted staff")
        return self

    @property
    def assigned_staff_id(self) -> str | None:
        return getattr(self.assignment, "staff_id", None)

    @property
    def sales_acceptance(self) -> SalesAcceptance:
        match self.assignment:
            case Accepted(accepted_at=accepted_at):
                return SalesAcceptance(accepted=True, accepted_at=accepted_at)
            case ReassignmentRequested(reason=reason):
                return SalesAcceptance(reschedule_requested=True, reschedule_reason=reason)
            case _:
                return SalesAcceptance()

    def evolve(self, **changes: Any) -> "Appointment":
        """Return a re-validated copy with ``changes`` applied and the version bumped."""
        data = dict(self)
        data.update(changes)
        data["version"] = self.version + 1
        return type(self).model_validate(data)


class Staff(BaseModel):
    """A member of the staffing pool."""

    model_config = ConfigDict(frozen=True)

    staff_id: str
    first_name: str
    last_name: str
    email: str = ""
    role: Role = Role.SALES_STAFF
    is_active: bool = True

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Customer(BaseModel):
    """Normalized customer read model."""

    model_config = ConfigDict(frozen=True)

    customer_id: str
    first_name: str
    last_name: str
    email: str = ""
    phone: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @classmethod
    def from_record(cls, raw: Mapping[str, Any]) -> "Customer":
        """Build from a user record whose name may live at the top level or under ``profile``."""
        profile: Mapping[str, Any] = raw.get("profile") or {}
        customer_id = raw.get("customer_id") or raw.get("_id") or raw.get("id")
        if not customer_id:
            raise ValueError("customer record has no id")
        return cls(
            customer_id=str(customer_id),
            first_name=raw.get("firstName") or profile.get("firstName") or "",
            last_name=raw.get("lastName") or profile.get("lastName") or "",
            email=raw.get("email") or "",
            phone=raw.get("phone") or profile.get("phone"),
        )


class AppointmentRequest(BaseModel):
    """A customer's request to book an appointment."""

    model_config = ConfigDict(frozen=True)

    customer_id: str
    appointment_type: AppointmentType
    date: dt.date
    time: dt.time
    site_address: SiteAddress | None = None
    description: str | None = None
    customer_notes: str | None = None
    interested_category: str | None = None


class SlotAvailability(BaseModel):
    """One time slot of a day.

    ``held`` counts active appointments at this time that have no staff yet;
    each of them will need one of the free staff members.
    """

    model_config = ConfigDict(frozen=True)

    time: dt.time
    available_staff_ids: tuple[str, ...] = ()
    held: int = 0

    @property
    def is_available(self) -> bool:
        return len(self.available_staff_ids) > self.held


class DayAvailability(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: dt.date
    is_business_day: bool = True
    slots: tuple[SlotAvailability, ...] = ()

    def available_times(self) -> list[dt.time]:
        return [s.time for s in self.slots if s.is_available]

    def staff_by_time(self) -> dict[dt.time, list[str]]:
        return {s.time: list(s.available_staff_ids) for s in self.slots if s.is_available}

    def slot(self, time: dt.time) -> SlotAvailability | None:
        return next((s for s in self.slots if s.time == time), None)


class AppointmentQuery(BaseModel):
    """Filters and paging for list views.

    ``limit`` left as None takes the service's configured page size.
    """

    model_config = ConfigDict(frozen=True)

    status: AppointmentStatus | None = None
    date: dt.date | None = None
    staff_id: str | None = None
    customer_id: str | None = None
    search: str | None = None
    page: int = Field(default=1, ge=1)
    limit: int | None = Field(default=None, ge=1, le=100)


class AppointmentPage(BaseModel):
    model_config = ConfigDict(frozen=True)

    items: tuple[Appointment, ...]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return max(1, math.ceil(self.total / self.limit))
