from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, List, Optional
from uuid import UUID

from src.dental_backend.domain.errors import Forbidden, InternalError, InvalidRequest, NotFound
from src.dental_backend.domain.models.appointment import AvailabilityUpdate, AvailabilityWindow, DoctorSchedule, Weekday
from src.dental_backend.domain.models.user import DoctorDetails, IdentityRecord, UserProfile, UserRole, UserStatus
from src.dental_backend.infra.db.repositories import (
    AppointmentStore,
    AppointmentStoreError,
    ProfileStore,
    ProfileStoreError,
)
from src.dental_backend.services.audit.service import AuditService, audit_service
from src.dental_backend.services.authorization.service import AdminAuthorizer

logger = logging.getLogger("availability")

_EDIT_DENIED = "Forbidden - Cannot edit this schedule"
_WEEK = list(Weekday)


class AvailabilityService:
    """Weekly working hours per dentist.

    A schedule always has seven days, Monday first. Days never saved are
    reported as disabled with the default 09:00 to 17:00 window.
    """

    def __init__(
        self,
        appointment_store: AppointmentStore,
        profile_store: ProfileStore,
        authorizer: Optional[AdminAuthorizer] = None,
        audit: AuditService = audit_service,
    ) -> None:
        self._store = appointment_store
        self._profile_store = profile_store
        self._authorizer = authorizer or AdminAuthorizer(profile_store)
        self._audit = audit

    def get_schedule(self, principal: Optional[IdentityRecord], doctor_id: UUID) -> List[AvailabilityWindow]:
        self._authorizer.require_profile(principal)
        self._load_doctor(doctor_id)
        return self._weekly(doctor_id)

    def update_schedule(
        self,
        principal: Optional[IdentityRecord],
        doctor_id: UUID,
        payload: AvailabilityUpdate,
    ) -> List[AvailabilityWindow]:
        """Save the given days; admins and staff edit any dentist, a dentist only their own."""

        profile = self._authorizer.require_role(
            principal, {UserRole.ADMIN, UserRole.DENTAL_STAFF, UserRole.DENTIST}, _EDIT_DENIED
        )
        if profile.role == UserRole.DENTIST and profile.user_id != doctor_id:
            raise Forbidden(_EDIT_DENIED)
        self._load_doctor(doctor_id)

        if not payload.days:
            raise InvalidRequest("At least one day is required")
        seen = set()
        for entry in payload.days:
            if entry.day in seen:
                raise InvalidRequest(f"{entry.day.value.capitalize()} is listed more than once")
            seen.add(entry.day)
            if entry.is_enabled and entry.end_time <= entry.start_time:
                raise InvalidRequest(f"End time must be later than start time for {entry.day.value.capitalize()}")

        windows = [
            AvailabilityWindow(
                doctor_id=doctor_id,
                day=entry.day,
                start_time=entry.start_time,
                end_time=entry.end_time,
                is_enabled=entry.is_enabled,
            )
            for entry in payload.days
        ]
        try:
            self._store.upsert_availability(windows)
        except AppointmentStoreError:
            logger.exception("Saving availability for doctor %s failed", doctor_id)
            raise InternalError("Failed to save availability")

        self._audit.log_event(
            action="update_availability",
            resource_type="doctor",
            resource_id=str(doctor_id),
            extra={
                "role": profile.role.value,
                "enabled_days": [w.day.value for w in windows if w.is_enabled],
            },
        )
        return self._weekly(doctor_id)

    def list_doctor_schedules(self, principal: Optional[IdentityRecord]) -> List[DoctorSchedule]:
        """Active dentists with at least one enabled day, ordered by name."""

        self._authorizer.require_profile(principal)
        by_doctor: Dict[UUID, List[AvailabilityWindow]] = defaultdict(list)
        for window in self._load_windows(doctor_id=None, enabled_only=True):
            by_doctor[window.doctor_id].append(window)

        schedules = []
        try:
            for doctor_id, windows in by_doctor.items():
                doctor = self._profile_store.get(doctor_id)
                if doctor is None or doctor.role != UserRole.DENTIST or doctor.status != UserStatus.ACTIVE:
                    continue
                details = self._profile_store.get_role_details(doctor_id, UserRole.DENTIST)
                schedules.append(
                    DoctorSchedule(
                        doctor_id=doctor_id,
                        first_name=doctor.first_name,
                        last_name=doctor.last_name,
                        specialization=details.specialization if isinstance(details, DoctorDetails) else None,
                        room_number=details.room_number if isinstance(details, DoctorDetails) else None,
                        availability=sorted(windows, key=lambda w: _WEEK.index(w.day)),
                    )
                )
        except ProfileStoreError:
            logger.exception("Loading doctors for the schedule list failed")
            raise InternalError("Failed to load doctors")
        return sorted(schedules, key=lambda s: (s.first_name.lower(), s.last_name.lower()))

    def _weekly(self, doctor_id: UUID) -> List[AvailabilityWindow]:
        saved = {window.day: window for window in self._load_windows(doctor_id=doctor_id, enabled_only=False)}
        return [saved.get(day) or AvailabilityWindow(doctor_id=doctor_id, day=day) for day in _WEEK]

    def _load_windows(self, *, doctor_id: Optional[UUID], enabled_only: bool) -> List[AvailabilityWindow]:
        try:
            return self._store.list_availability(doctor_id=doctor_id, enabled_only=enabled_only)
        except AppointmentStoreError:
            logger.exception("Loading availability failed")
            raise InternalError("Failed to load availability")

    def _load_doctor(self, doctor_id: UUID) -> UserProfile:
        try:
            doctor = self._profile_store.get(doctor_id)
        except ProfileStoreError:
            logger.exception("Loading doctor %s failed", doctor_id)
            raise InternalError("Failed to load doctor")
        if doctor is None or doctor.role != UserRole.DENTIST:
            raise NotFound("Doctor not found")
        return doctor
