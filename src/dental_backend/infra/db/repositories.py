from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Collection, Dict, List, Mapping, Optional, Union
from uuid import UUID

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

RoleDetails = Union[DoctorDetails, StaffDetails, PatientDetails]


class IdentityStoreError(Exception):
    """The identity store rejected a call or could not be reached."""


class ProfileStoreError(Exception):
    """The profile store rejected a call or could not be reached."""


class AppointmentStoreError(Exception):
    """The appointment store rejected a call or could not be reached."""


class IdentityStore(ABC):
    @abstractmethod
    def create_user(
        self,
        *,
        email: str,
        password: str,
        user_metadata: Optional[Mapping[str, Any]] = None,
    ) -> IdentityRecord:
        """Create an auto-confirmed identity. Raises IdentityStoreError."""
        raise NotImplementedError

    @abstractmethod
    def delete_user(self, identity_id: UUID) -> None:
        raise NotImplementedError

    @abstractmethod
    def get_user_for_token(self, access_token: str) -> Optional[IdentityRecord]:
        """Return the identity owning ``access_token``, or None if it is invalid."""
        raise NotImplementedError


class ProfileStore(ABC):
    @abstractmethod
    def get(self, user_id: UUID) -> Optional[UserProfile]:
        raise NotImplementedError

    @abstractmethod
    def get_by_auth_id(self, auth_id: UUID) -> Optional[UserProfile]:
        raise NotImplementedError

    @abstractmethod
    def create_admin_user(self, params: ProfileCreateParams) -> ProfileCreateResult:
        """Create the profile row and its role detail row atomically.

        Transport or database errors raise ProfileStoreError. Data the store
        refuses internally is reported as ``success=False`` instead.
        """
        raise NotImplementedError

    @abstractmethod
    def list_users(
        self,
        *,
        role: Optional[UserRole] = None,
        status: Optional[UserStatus] = None,
        search: Optional[str] = None,
    ) -> List[UserProfile]:
        """Return matching profiles, newest first."""
        raise NotImplementedError

    @abstractmethod
    def get_role_details(self, user_id: UUID, role: UserRole) -> Optional[RoleDetails]:
        raise NotImplementedError

    @abstractmethod
    def update_user(self, user_id: UUID, changes: Dict[str, Any]) -> None:
        raise NotImplementedError

    @abstractmethod
    def update_role_details(self, user_id: UUID, role: UserRole, changes: Dict[str, Any]) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete_role_details(self, user_id: UUID, role: UserRole) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete_user(self, user_id: UUID) -> None:
        raise NotImplementedError


class AppointmentStore(ABC):
    """Appointments and the weekly doctor availability they are booked into."""

    @abstractmethod
    def get_appointment(self, appointment_id: UUID) -> Optional[Appointment]:
        raise NotImplementedError

    @abstractmethod
    def list_appointments(
        self,
        *,
        doctor_id: Optional[UUID] = None,
        patient_id: Optional[UUID] = None,
        statuses: Optional[Collection[AppointmentStatus]] = None,
        booked_after: Optional[datetime] = None,
        booked_before: Optional[datetime] = None,
    ) -> List[Appointment]:
        """Return matching appointments ordered by requested start time.

        ``booked_after`` and ``booked_before`` keep only appointments whose
        booked interval overlaps that range; unbooked rows never match them.
        """
        raise NotImplementedError

    @abstractmethod
    def create_appointment(self, appointment: Appointment) -> None:
        raise NotImplementedError

    @abstractmethod
    def update_appointment(self, appointment_id: UUID, changes: Dict[str, Any]) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_availability(
        self,
        *,
        doctor_id: Optional[UUID] = None,
        enabled_only: bool = False,
    ) -> List[AvailabilityWindow]:
        raise NotImplementedError

    @abstractmethod
    def upsert_availability(self, windows: List[AvailabilityWindow]) -> None:
        """Insert or replace windows, keyed by doctor and weekday."""
        raise NotImplementedError
