from __future__ import annotations

from datetime import date, datetime, time
from enum import Enum
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Weekday(str, Enum):
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @classmethod
    def for_date(cls, value: date) -> "Weekday":
        return list(cls)[value.weekday()]


class AppointmentStatus(str, Enum):
    """Lifecycle of an appointment.

    A patient's request starts as ``requested``. The clinic either books it
    directly (``booked``) or proposes another time (``to_confirm``), which the
    patient then accepts. Booked visits move through ``arrived`` and
    ``ongoing`` to ``completed``.
    """

    REQUESTED = "requested"
    TO_CONFIRM = "to_confirm"
    BOOKED = "booked"
    ARRIVED = "arrived"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


# Statuses whose booked interval occupies the doctor's time.
BLOCKING_STATUSES = frozenset(
    {AppointmentStatus.BOOKED, AppointmentStatus.ARRIVED, AppointmentStatus.ONGOING, AppointmentStatus.COMPLETED}
)

TERMINAL_STATUSES = frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.REJECTED, AppointmentStatus.CANCELLED})

DEFAULT_WINDOW_START = time(9, 0)
DEFAULT_WINDOW_END = time(17, 0)


class Appointment(BaseModel):
    """Row of the ``appointments`` table.

    ``patient_id`` and ``doctor_id`` are ``users.user_id`` values. Booked
    times are stored in UTC and are only set once the clinic has scheduled
    the visit.
    """

    appointment_id: UUID
    patient_id: UUID
    doctor_id: UUID
    requested_start_time: datetime
    booked_start_time: Optional[datetime] = None
    booked_end_time: Optional[datetime] = None
    status: AppointmentStatus = AppointmentStatus.REQUESTED
    concern: Optional[str] = None
    status_note: Optional[str] = None
    is_active: bool = True
    created_at: datetime
    updated_at: datetime

    def overlaps(self, start: datetime, end: datetime) -> bool:
        if self.booked_start_time is None or self.booked_end_time is None:
            return False
        return start < self.booked_end_time and end > self.booked_start_time


class AvailabilityWindow(BaseModel):
    """One weekday of a doctor's weekly schedule (``doc_availability``)."""

    availability_id: Optional[UUID] = None
    doctor_id: UUID
    day: Weekday
    start_time: time = DEFAULT_WINDOW_START
    end_time: time = DEFAULT_WINDOW_END
    is_enabled: bool = False
    updated_at: Optional[datetime] = None

    def contains(self, start: time, end: time) -> bool:
        return self.is_enabled and self.start_time <= start and end <= self.end_time


class DoctorSchedule(BaseModel):
    doctor_id: UUID
    first_name: str
    last_name: str
    specialization: Optional[str] = None
    room_number: Optional[str] = None
    availability: List[AvailabilityWindow]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AppointmentRequestCreate(_CamelModel):
    """A patient asking for a visit at ``start_time`` on ``appointment_date``."""

    doctor_id: UUID
    appointment_date: date = Field(alias="date")
    start_time: time
    concern: Optional[str] = None


class WalkInAppointmentCreate(_CamelModel):
    """A visit booked directly by the clinic.

    ``doctor_id`` may be omitted by a dentist booking into their own
    schedule.
    """

    patient_id: UUID
    doctor_id: Optional[UUID] = None
    appointment_date: date = Field(alias="date")
    start_time: time
    end_time: time
    concern: Optional[str] = None


class AppointmentAccept(_CamelModel):
    end_time: time


class AppointmentReschedule(_CamelModel):
    appointment_date: date = Field(alias="date")
    start_time: time
    end_time: time
    note: Optional[str] = None


class AppointmentStatusNote(_CamelModel):
    note: Optional[str] = None


class AvailabilityDayUpdate(_CamelModel):
    day: Weekday
    start_time: time = DEFAULT_WINDOW_START
    end_time: time = DEFAULT_WINDOW_END
    is_enabled: bool = True


class AvailabilityUpdate(_CamelModel):
    days: List[AvailabilityDayUpdate]
