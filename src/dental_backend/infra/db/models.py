from __future__ import annotations

from datetime import datetime, time, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Text, Time, UniqueConstraint, Uuid
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from src.dental_backend.domain.models.appointment import Appointment, AppointmentStatus, AvailabilityWindow, Weekday
from src.dental_backend.domain.models.user import (
    DoctorDetails,
    Gender,
    PatientDetails,
    StaffDetails,
    UserProfile,
    UserRole,
    UserStatus,
)


class Base(DeclarativeBase):
    pass


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything is written in UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class UserORM(Base):
    __tablename__ = "users"

    user_id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    auth_id: Mapped[UUID] = mapped_column(Uuid, unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String, nullable=False)
    first_name: Mapped[str] = mapped_column(String, nullable=False)
    middle_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    last_name: Mapped[str] = mapped_column(String, nullable=False)
    phone_number: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    gender: Mapped[str] = mapped_column(String, nullable=False, default=Gender.UNSPECIFIED.value)
    role: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default=UserStatus.ACTIVE.value)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def to_domain(self) -> UserProfile:
        return UserProfile(
            user_id=self.user_id,
            auth_id=self.auth_id,
            email=self.email,
            first_name=self.first_name,
            middle_name=self.middle_name,
            last_name=self.last_name,
            phone_number=self.phone_number,
            gender=Gender(self.gender),
            role=UserRole(self.role),
            status=UserStatus(self.status),
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class DoctorORM(Base):
    __tablename__ = "doctors"

    user_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("users.user_id"), primary_key=True)
    specialization: Mapped[str] = mapped_column(String, nullable=False)
    license_number: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    room_number: Mapped[str] = mapped_column(String, nullable=False)
    schedule_availability: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    def to_domain(self) -> DoctorDetails:
        return DoctorDetails(
            user_id=self.user_id,
            specialization=self.specialization,
            license_number=self.license_number,
            room_number=self.room_number,
            schedule_availability=self.schedule_availability,
        )


class StaffORM(Base):
    __tablename__ = "staff"

    user_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("users.user_id"), primary_key=True)
    position_title: Mapped[str] = mapped_column(String, nullable=False)
    doctor_id: Mapped[Optional[UUID]] = mapped_column(Uuid, ForeignKey("doctors.user_id"), nullable=True)

    def to_domain(self) -> StaffDetails:
        return StaffDetails(user_id=self.user_id, position_title=self.position_title, doctor_id=self.doctor_id)


class PatientORM(Base):
    __tablename__ = "patient"

    user_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("users.user_id"), primary_key=True)
    address: Mapped[str] = mapped_column(String, nullable=False)
    emergency_contact_name: Mapped[str] = mapped_column(String, nullable=False)
    emergency_contact_no: Mapped[str] = mapped_column(String, nullable=False)

    def to_domain(self) -> PatientDetails:
        return PatientDetails(
            user_id=self.user_id,
            address=self.address,
            emergency_contact_name=self.emergency_contact_name,
            emergency_contact_no=self.emergency_contact_no,
        )


class AppointmentORM(Base):
    __tablename__ = "appointments"

    appointment_id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    patient_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("users.user_id"), nullable=False, index=True)
    doctor_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("users.user_id"), nullable=False, index=True)
    requested_start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    booked_start_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    booked_end_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default=AppointmentStatus.REQUESTED.value)
    concern: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def to_domain(self) -> Appointment:
        return Appointment(
            appointment_id=self.appointment_id,
            patient_id=self.patient_id,
            doctor_id=self.doctor_id,
            requested_start_time=_utc(self.requested_start_time),
            booked_start_time=_utc(self.booked_start_time),
            booked_end_time=_utc(self.booked_end_time),
            status=AppointmentStatus(self.status),
            concern=self.concern,
            status_note=self.status_note,
            is_active=self.is_active,
            created_at=_utc(self.created_at),
            updated_at=_utc(self.updated_at),
        )


class AvailabilityORM(Base):
    __tablename__ = "doc_availability"
    __table_args__ = (UniqueConstraint("doctor_id", "day"),)

    availability_id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    doctor_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("users.user_id"), nullable=False)
    day: Mapped[str] = mapped_column(String, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def to_domain(self) -> AvailabilityWindow:
        return AvailabilityWindow(
            availability_id=self.availability_id,
            doctor_id=self.doctor_id,
            day=Weekday(self.day),
            start_time=self.start_time,
            end_time=self.end_time,
            is_enabled=self.is_enabled,
            updated_at=_utc(self.updated_at),
        )


ROLE_DETAIL_MODELS = {
    UserRole.DENTIST: DoctorORM,
    UserRole.DENTAL_STAFF: StaffORM,
    UserRole.PATIENT: PatientORM,
}
