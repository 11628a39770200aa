from __future__ import annotations

import secrets
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Collection, Dict, List, Mapping, Optional, Tuple
from uuid import UUID, uuid4

from src.dental_backend.domain.models.account_request import ProfileCreateParams, ProfileCreateResult
from src.dental_backend.domain.models.appointment import Appointment, AppointmentStatus, AvailabilityWindow
from src.dental_backend.domain.models.user import (
    DoctorDetails,
    IdentityRecord,
    PatientDetails,
    StaffDetails,
    UserProfile,
    UserRole,
    UserStatus,
)
from src.dental_backend.infra.db.repositories import (
    AppointmentStore,
    IdentityStore,
    IdentityStoreError,
    ProfileStore,
    RoleDetails,
)


class InMemoryIdentityStore(IdentityStore):
    """Process-local identity store for development and tests.

    Emails are unique case-insensitively, mirroring hosted identity
    providers. Access tokens are opaque random strings handed out by
    :meth:`issue_access_token`.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._users: Dict[UUID, Tuple[IdentityRecord, str]] = {}
        self._tokens: Dict[str, UUID] = {}

    def create_user(
        self,
        *,
        email: str,
        password: str,
        user_metadata: Optional[Mapping[str, Any]] = None,
    ) -> IdentityRecord:
        with self._lock:
            normalized = email.strip().lower()
            if any(record.email.lower() == normalized for record, _ in self._users.values()):
                raise IdentityStoreError("A user with this email address has already been registered")
            record = IdentityRecord(
                id=uuid4(),
                email=normalized,
                email_confirmed_at=datetime.now(timezone.utc),
            )
            self._users[record.id] = (record, password)
            return record

    def delete_user(self, identity_id: UUID) -> None:
        with self._lock:
            if self._users.pop(identity_id, None) is None:
                raise IdentityStoreError("User not found")
            self._tokens = {token: owner for token, owner in self._tokens.items() if owner != identity_id}

    def get_user_for_token(self, access_token: str) -> Optional[IdentityRecord]:
        with self._lock:
            identity_id = self._tokens.get(access_token)
            if identity_id is None or identity_id not in self._users:
                return None
            return self._users[identity_id][0]

    def get(self, identity_id: UUID) -> Optional[IdentityRecord]:
        with self._lock:
            entry = self._users.get(identity_id)
            return entry[0] if entry else None

    def issue_access_token(self, identity_id: UUID) -> str:
        with self._lock:
            if identity_id not in self._users:
                raise IdentityStoreError("User not found")
            token = secrets.token_urlsafe(32)
            self._tokens[token] = identity_id
            return token

    def count(self) -> int:
        return len(self._users)


class InMemoryProfileStore(ProfileStore):
    """Process-local profile store with the same integrity rules as the database.

    ``create_admin_user`` reports duplicate accounts, duplicate dentist
    license numbers and unknown supervising dentists as logical failures,
    the way the database function does.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._users: Dict[UUID, UserProfile] = {}
        self._doctors: Dict[UUID, DoctorDetails] = {}
        self._staff: Dict[UUID, StaffDetails] = {}
        self._patients: Dict[UUID, PatientDetails] = {}

    def _details_table(self, role: UserRole) -> Optional[Dict[UUID, Any]]:
        return {
            UserRole.DENTIST: self._doctors,
            UserRole.DENTAL_STAFF: self._staff,
            UserRole.PATIENT: self._patients,
        }.get(role)

    def get(self, user_id: UUID) -> Optional[UserProfile]:
        with self._lock:
            return self._users.get(user_id)

    def get_by_auth_id(self, auth_id: UUID) -> Optional[UserProfile]:
        with self._lock:
            for profile in self._users.values():
                if profile.auth_id == auth_id:
                    return profile
            return None

    def create_admin_user(self, params: ProfileCreateParams) -> ProfileCreateResult:
        with self._lock:
            if any(profile.auth_id == params.auth_id for profile in self._users.values()):
                return ProfileCreateResult(success=False, error="A profile already exists for this account")
            if params.role == UserRole.DENTIST and any(
                doctor.license_number == params.license_number for doctor in self._doctors.values()
            ):
                return ProfileCreateResult(success=False, error="License number is already registered")
            if params.assigned_doctor_id is not None and params.assigned_doctor_id not in self._doctors:
                return ProfileCreateResult(success=False, error="Assigned doctor does not exist")

            now = datetime.now(timezone.utc)
            user_id = uuid4()
            self._users[user_id] = UserProfile(
                user_id=user_id,
                auth_id=params.auth_id,
                email=params.email,
                first_name=params.first_name,
                middle_name=params.middle_name,
                last_name=params.last_name,
                phone_number=params.phone_number,
                gender=params.gender,
                role=params.role,
                status=params.status,
                created_at=now,
                updated_at=now,
            )
            if params.role == UserRole.DENTIST:
                self._doctors[user_id] = DoctorDetails(
                    user_id=user_id,
                    specialization=params.specialization,
                    license_number=params.license_number,
                    room_number=params.room_number,
                )
            elif params.role == UserRole.DENTAL_STAFF:
                self._staff[user_id] = StaffDetails(
                    user_id=user_id,
                    position_title=params.position_title,
                    doctor_id=params.assigned_doctor_id,
                )
            elif params.role == UserRole.PATIENT:
                self._patients[user_id] = PatientDetails(
                    user_id=user_id,
                    address=params.address,
                    emergency_contact_name=params.emergency_contact_name,
                    emergency_contact_no=params.emergency_contact_no,
                )
            return ProfileCreateResult(success=True, user_id=user_id)

    def list_users(
        self,
        *,
        role: Optional[UserRole] = None,
        status: Optional[UserStatus] = None,
        search: Optional[str] = None,
    ) -> List[UserProfile]:
        needle = search.lower() if search else None
        with self._lock:
            results = []
            for profile in self._users.values():
                if role is not None and profile.role != role:
                    continue
                if status is not None and profile.status != status:
                    continue
                if needle is not None and not any(
                    needle in value.lower() for value in (profile.first_name, profile.last_name, profile.email)
                ):
                    continue
                results.append(profile)
        return sorted(results, key=lambda p: p.created_at, reverse=True)

    def get_role_details(self, user_id: UUID, role: UserRole) -> Optional[RoleDetails]:
        table = self._details_table(role)
        if table is None:
            return None
        with self._lock:
            return table.get(user_id)

    def update_user(self, user_id: UUID, changes: Dict[str, Any]) -> None:
        with self._lock:
            profile = self._users.get(user_id)
            if profile is None:
                return
            self._users[user_id] = profile.model_copy(
                update={**changes, "updated_at": datetime.now(timezone.utc)}
            )

    def update_role_details(self, user_id: UUID, role: UserRole, changes: Dict[str, Any]) -> None:
        table = self._details_table(role)
        if table is None or not changes:
            return
        with self._lock:
            details = table.get(user_id)
            if details is not None:
                table[user_id] = details.model_copy(update=changes)

    def delete_role_details(self, user_id: UUID, role: UserRole) -> None:
        table = self._details_table(role)
        if table is None:
            return
        with self._lock:
            table.pop(user_id, None)

    def delete_user(self, user_id: UUID) -> None:
        with self._lock:
            self._users.pop(user_id, None)

    def count(self) -> int:
        return len(self._users)


class InMemoryAppointmentStore(AppointmentStore):
    def __init__(self) -> None:
        self._lock = Lock()
        self._appointments: Dict[UUID, Appointment] = {}
        self._availability: Dict[Tuple[UUID, str], AvailabilityWindow] = {}

    def get_appointment(self, appointment_id: UUID) -> Optional[Appointment]:
        with self._lock:
            return self._appointments.get(appointment_id)

    def list_appointments(
        self,
        *,
        doctor_id: Optional[UUID] = None,
        patient_id: Optional[UUID] = None,
        statuses: Optional[Collection[AppointmentStatus]] = None,
        booked_after: Optional[datetime] = None,
        booked_before: Optional[datetime] = None,
    ) -> List[Appointment]:
        with self._lock:
            results = []
            for appointment in self._appointments.values():
                if doctor_id is not None and appointment.doctor_id != doctor_id:
                    continue
                if patient_id is not None and appointment.patient_id != patient_id:
                    continue
                if statuses is not None and appointment.status not in statuses:
                    continue
                if booked_after is not None or booked_before is not None:
                    if appointment.booked_start_time is None or appointment.booked_end_time is None:
                        continue
                    if booked_after is not None and appointment.booked_end_time <= booked_after:
                        continue
                    if booked_before is not None and appointment.booked_start_time >= booked_before:
                        continue
                results.append(appointment)
        return sorted(results, key=lambda a: a.requested_start_time)

    def create_appointment(self, appointment: Appointment) -> None:
        with self._lock:
            self._appointments[appointment.appointment_id] = appointment

    def update_appointment(self, appointment_id: UUID, changes: Dict[str, Any]) -> None:
        with self._lock:
            appointment = self._appointments.get(appointment_id)
            if appointment is not None:
                self._appointments[appointment_id] = appointment.model_copy(update=changes)

    def list_availability(
        self,
        *,
        doctor_id: Optional[UUID] = None,
        enabled_only: bool = False,
    ) -> List[AvailabilityWindow]:
        with self._lock:
            return [
                window
                for window in self._availability.values()
                if (doctor_id is None or window.doctor_id == doctor_id) and (window.is_enabled or not enabled_only)
            ]

    def upsert_availability(self, windows: List[AvailabilityWindow]) -> None:
        now = datetime.now(timezone.utc)
        with self._lock:
            for window in windows:
                key = (window.doctor_id, window.day.value)
                existing = self._availability.get(key)
                availability_id = existing.availability_id if existing else window.availability_id or uuid4()
                self._availability[key] = window.model_copy(
                    update={"availability_id": availability_id, "updated_at": now}
                )
