from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr


class UserRole(str, Enum):
    ADMIN = "admin"
    PATIENT = "patient"
    DENTIST = "dentist"
    DENTAL_STAFF = "dental_staff"


ALL_ROLES = frozenset(UserRole)


class UserStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"
    UNSPECIFIED = "unspecified"


class IdentityRecord(BaseModel):
    """An account in the identity store.

    The password never leaves the identity store; callers only see the
    generated id, the email and the confirmation timestamp.
    """

    id: UUID
    email: EmailStr
    email_confirmed_at: Optional[datetime] = None


class UserProfile(BaseModel):
    """Row of the ``users`` table, keyed to an identity by ``auth_id``.

    ``email`` is kept as stored; it was validated when the account was
    provisioned and rows written by other tools must still load.
    """

    user_id: UUID
    auth_id: UUID
    email: str
    first_name: str
    middle_name: Optional[str] = None
    last_name: str
    phone_number: Optional[str] = None
    gender: Gender = Gender.UNSPECIFIED
    role: UserRole
    status: UserStatus = UserStatus.ACTIVE
    created_at: datetime
    updated_at: datetime


class DoctorDetails(BaseModel):
    user_id: UUID
    specialization: str
    license_number: str
    room_number: str
    schedule_availability: Optional[str] = None


class StaffDetails(BaseModel):
    user_id: UUID
    position_title: str
    # Supervising dentist (a users.user_id), when one is assigned.
    doctor_id: Optional[UUID] = None


class PatientDetails(BaseModel):
    user_id: UUID
    address: str
    emergency_contact_name: str
    emergency_contact_no: str
