from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from threading import Lock
from typing import Any, Callable, Collection, Dict, List, Optional
from uuid import UUID, uuid4

from src.dental_backend.config import settings
from src.dental_backend.domain.errors import Conflict, Forbidden, InternalError, InvalidRequest, NotFound
from src.dental_backend.domain.models.appointment import (
    BLOCKING_STATUSES,
    TERMINAL_STATUSES,
    Appointment,
    AppointmentAccept,
    AppointmentRequestCreate,
    AppointmentReschedule,
    AppointmentStatus,
    AvailabilityWindow,
    WalkInAppointmentCreate,
    Weekday,
)
from src.dental_backend.domain.models.user import IdentityRecord, UserProfile, UserRole, UserStatus
from src.dental_backend.infra.db.repositories import (
    AppointmentStore,
    AppointmentStoreError,
    ProfileStore,
    ProfileStoreError,
)
from src.dental_backend.services.audit.service import AuditService, audit_service
from src.dental_backend.services.authorization.service import AdminAuthorizer

logger = logging.getLogger("appointments")

CLINIC_ROLES = frozenset({UserRole.ADMIN, UserRole.DENTIST, UserRole.DENTAL_STAFF})

REQUEST_SLOT = timedelta(minutes=30)
WALK_IN_MINIMUM = timedelta(minutes=30)
SCHEDULED_MINIMUM = timedelta(hours=1)

_OPEN_STATUSES = frozenset(AppointmentStatus) - TERMINAL_STATUSES
_PATIENT_CANCELLABLE = frozenset({AppointmentStatus.REQUESTED, AppointmentStatus.TO_CONFIRM})

# Held from the conflict check until the write, so two bookings in this
# process cannot claim the same slot.
_booking_lock = Lock()


def clinic_timezone() -> timezone:
    return timezone(timedelta(minutes=settings.clinic_utc_offset_minutes))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _hhmm(value: time) -> str:
    return value.strftime("%H:%M")


def _duration_label(duration: timedelta) -> str:
    minutes = int(duration.total_seconds() // 60)
    if minutes % 60:
        return f"{minutes} minutes"
    hours = minutes // 60
    return "1 hour" if hours == 1 else f"{hours} hours"


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _require_note(note: Optional[str]) -> str:
    note = _clean(note)
    if note is None:
        raise InvalidRequest("A note is required")
    return note


class AppointmentService:
    """Booking rules and the status flow of clinic appointments.

    Times in requests are clinic wall-clock times; everything stored is UTC.
    A booked interval must fall inside the doctor's enabled window for that
    weekday, must not be in the past or beyond the booking horizon, and may
    not overlap another booked, arrived, ongoing or completed appointment of
    the same doctor.
    """

    def __init__(
        self,
        appointment_store: AppointmentStore,
        profile_store: ProfileStore,
        authorizer: Optional[AdminAuthorizer] = None,
        audit: AuditService = audit_service,
        clock: Callable[[], datetime] = _utcnow,
        tz: Optional[tzinfo] = None,
    ) -> None:
        self._store = appointment_store
        self._profile_store = profile_store
        self._authorizer = authorizer or AdminAuthorizer(profile_store)
        self._audit = audit
        self._clock = clock
        self._tz = tz or clinic_timezone()
        self._horizon_weeks = settings.booking_horizon_weeks

    # Queries

    def list_appointments(
        self,
        principal: Optional[IdentityRecord],
        *,
        status: Optional[str] = None,
        doctor_id: Optional[UUID] = None,
        patient_id: Optional[UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> List[Appointment]:
        """Appointments the caller may see.

        Patients only see their own and dentists only their own schedule;
        staff and admins see everything. ``date_from``/``date_to`` keep booked
        appointments overlapping those clinic days.
        """

        profile = self._authorizer.require_profile(principal)
        if profile.role == UserRole.PATIENT:
            patient_id = profile.user_id
        elif profile.role == UserRole.DENTIST:
            doctor_id = profile.user_id

        statuses: Optional[Collection[AppointmentStatus]] = None
        if status and status != "all":
            try:
                statuses = {AppointmentStatus(status)}
            except ValueError:
                return []

        return self._store_call(
            "list appointments",
            self._store.list_appointments,
            doctor_id=doctor_id,
            patient_id=patient_id,
            statuses=statuses,
            booked_after=self._local(date_from, time.min) if date_from else None,
            booked_before=self._local(date_to + timedelta(days=1), time.min) if date_to else None,
        )

    def get_appointment(self, principal: Optional[IdentityRecord], appointment_id: UUID) -> Appointment:
        profile = self._authorizer.require_profile(principal)
        return self._load_visible(profile, appointment_id)

    # Creation

    def request_appointment(
        self,
        principal: Optional[IdentityRecord],
        payload: AppointmentRequestCreate,
    ) -> Appointment:
        profile = self._authorizer.require_role(
            principal, {UserRole.PATIENT}, "Forbidden - Only patients can request appointments"
        )
        doctor = self._load_bookable_doctor(payload.doctor_id)
        start = self._local(payload.appointment_date, payload.start_time)
        self._check_slot(doctor.user_id, start, start + REQUEST_SLOT, minimum=REQUEST_SLOT, check_conflicts=False)

        now = self._clock()
        appointment = Appointment(
            appointment_id=uuid4(),
            patient_id=profile.user_id,
            doctor_id=doctor.user_id,
            requested_start_time=start.astimezone(timezone.utc),
            status=AppointmentStatus.REQUESTED,
            concern=_clean(payload.concern),
            created_at=now,
            updated_at=now,
        )
        self._store_call("create appointment", self._store.create_appointment, appointment)
        self._audit_change(profile, appointment, "request_appointment", None)
        return appointment

    def create_walk_in(
        self,
        principal: Optional[IdentityRecord],
        payload: WalkInAppointmentCreate,
    ) -> Appointment:
        """Book a visit directly, skipping the request step.

        A dentist books into their own schedule only and may omit
        ``doctor_id``.
        """

        profile = self._authorizer.require_role(principal, CLINIC_ROLES, "Forbidden - Clinic access required")
        doctor_id = payload.doctor_id
        if profile.role == UserRole.DENTIST:
            doctor_id = doctor_id or profile.user_id
            if doctor_id != profile.user_id:
                raise Forbidden("Forbidden - Dentists can only book their own schedule")
        concern = _clean(payload.concern)
        if doctor_id is None or concern is None:
            raise InvalidRequest("Please fill in all required fields")

        doctor = self._load_bookable_doctor(doctor_id)
        patient = self._load_patient(payload.patient_id)
        start = self._local(payload.appointment_date, payload.start_time)
        end = self._local(payload.appointment_date, payload.end_time)

        with _booking_lock:
            self._check_slot(doctor.user_id, start, end, minimum=WALK_IN_MINIMUM)
            now = self._clock()
            appointment = Appointment(
                appointment_id=uuid4(),
                patient_id=patient.user_id,
                doctor_id=doctor.user_id,
                requested_start_time=start.astimezone(timezone.utc),
                booked_start_time=start.astimezone(timezone.utc),
                booked_end_time=end.astimezone(timezone.utc),
                status=AppointmentStatus.BOOKED,
                concern=concern,
                created_at=now,
                updated_at=now,
            )
            self._store_call("create appointment", self._store.create_appointment, appointment)

        self._audit_change(profile, appointment, "create_appointment", None)
        return appointment

    # Status flow

    def accept(
        self,
        principal: Optional[IdentityRecord],
        appointment_id: UUID,
        payload: AppointmentAccept,
    ) -> Appointment:
        """Book a request at its requested start, ending at ``payload.end_time``."""

        profile = self._authorizer.require_role(principal, CLINIC_ROLES, "Forbidden - Clinic access required")
        appointment = self._load_visible(profile, appointment_id)
        self._ensure_status(appointment, "accept", {AppointmentStatus.REQUESTED})

        start = appointment.requested_start_time
        end = self._local(start.astimezone(self._tz).date(), payload.end_time)
        with _booking_lock:
            self._check_slot(appointment.doctor_id, start, end, minimum=SCHEDULED_MINIMUM, exclude=appointment_id)
            return self._apply(
                profile,
                appointment,
                "accept_appointment",
                {
                    "status": AppointmentStatus.BOOKED,
                    "booked_start_time": start.astimezone(timezone.utc),
                    "booked_end_time": end.astimezone(timezone.utc),
                },
            )

    def reschedule(
        self,
        principal: Optional[IdentityRecord],
        appointment_id: UUID,
        payload: AppointmentReschedule,
    ) -> Appointment:
        """Propose a new time; the patient has to confirm it before it is booked."""

        profile = self._authorizer.require_role(principal, CLINIC_ROLES, "Forbidden - Clinic access required")
        appointment = self._load_visible(profile, appointment_id)
        self._ensure_status(
            appointment,
            "reschedule",
            {AppointmentStatus.REQUESTED, AppointmentStatus.TO_CONFIRM, AppointmentStatus.BOOKED},
        )

        start = self._local(payload.appointment_date, payload.start_time)
        end = self._local(payload.appointment_date, payload.end_time)
        with _booking_lock:
            self._check_slot(appointment.doctor_id, start, end, minimum=SCHEDULED_MINIMUM, exclude=appointment_id)
            return self._apply(
                profile,
                appointment,
                "reschedule_appointment",
                {
                    "status": AppointmentStatus.TO_CONFIRM,
                    "booked_start_time": start.astimezone(timezone.utc),
                    "booked_end_time": end.astimezone(timezone.utc),
                    "status_note": _clean(payload.note),
                },
            )

    def confirm(self, principal: Optional[IdentityRecord], appointment_id: UUID) -> Appointment:
        """The patient accepts the time the clinic proposed."""

        profile = self._authorizer.require_role(
            principal, {UserRole.PATIENT}, "Forbidden - Only the patient can confirm a proposed time"
        )
        appointment = self._load_visible(profile, appointment_id)
        self._ensure_status(appointment, "confirm", {AppointmentStatus.TO_CONFIRM})

        start, end = appointment.booked_start_time, appointment.booked_end_time
        if start is None or end is None:
            raise Conflict("The proposed time is missing")
        with _booking_lock:
            self._check_slot(appointment.doctor_id, start, end, minimum=SCHEDULED_MINIMUM, exclude=appointment_id)
            return self._apply(profile, appointment, "confirm_appointment", {"status": AppointmentStatus.BOOKED})

    def reject(
        self,
        principal: Optional[IdentityRecord],
        appointment_id: UUID,
        note: Optional[str],
    ) -> Appointment:
        profile = self._authorizer.require_admin(principal)
        appointment = self._load_visible(profile, appointment_id)
        self._ensure_status(appointment, "reject", {AppointmentStatus.REQUESTED})
        return self._apply(
            profile,
            appointment,
            "reject_appointment",
            {"status": AppointmentStatus.REJECTED, "status_note": _require_note(note), "is_active": False},
        )

    def cancel(
        self,
        principal: Optional[IdentityRecord],
        appointment_id: UUID,
        note: Optional[str],
    ) -> Appointment:
        """Cancel an open appointment.

        The clinic may cancel at any point before completion. A patient may
        withdraw a request or decline a proposed time.
        """

        profile = self._authorizer.require_profile(principal)
        appointment = self._load_visible(profile, appointment_id)
        allowed = _PATIENT_CANCELLABLE if profile.role == UserRole.PATIENT else _OPEN_STATUSES
        self._ensure_status(appointment, "cancel", allowed)
        return self._apply(
            profile,
            appointment,
            "cancel_appointment",
            {"status": AppointmentStatus.CANCELLED, "status_note": _require_note(note), "is_active": False},
        )

    def check_in(self, principal: Optional[IdentityRecord], appointment_id: UUID) -> Appointment:
        return self._advance(principal, appointment_id, "check in", AppointmentStatus.BOOKED, AppointmentStatus.ARRIVED)

    def start(self, principal: Optional[IdentityRecord], appointment_id: UUID) -> Appointment:
        return self._advance(principal, appointment_id, "start", AppointmentStatus.ARRIVED, AppointmentStatus.ONGOING)

    def complete(self, principal: Optional[IdentityRecord], appointment_id: UUID) -> Appointment:
        return self._advance(
            principal, appointment_id, "complete", AppointmentStatus.ONGOING, AppointmentStatus.COMPLETED
        )

    # Helpers

    def _advance(
        self,
        principal: Optional[IdentityRecord],
        appointment_id: UUID,
        verb: str,
        current: AppointmentStatus,
        target: AppointmentStatus,
    ) -> Appointment:
        profile = self._authorizer.require_role(principal, CLINIC_ROLES, "Forbidden - Clinic access required")
        appointment = self._load_visible(profile, appointment_id)
        self._ensure_status(appointment, verb, {current})
        action = verb.replace(" ", "_") + "_appointment"
        return self._apply(profile, appointment, action, {"status": target})

    def _local(self, day: date, at: time) -> datetime:
        return datetime.combine(day, at, tzinfo=self._tz)

    def _horizon_end(self) -> date:
        today = self._clock().astimezone(self._tz).date()
        # Booking weeks start on Sunday.
        week_start = today - timedelta(days=(today.weekday() + 1) % 7)
        return week_start + timedelta(weeks=self._horizon_weeks)

    def _check_slot(
        self,
        doctor_id: UUID,
        start: datetime,
        end: datetime,
        *,
        minimum: timedelta,
        exclude: Optional[UUID] = None,
        check_conflicts: bool = True,
    ) -> None:
        local_start = start.astimezone(self._tz)
        local_end = end.astimezone(self._tz)

        window = self._window_for(doctor_id, Weekday.for_date(local_start.date()))
        if window is None:
            raise InvalidRequest("No availability for this day")
        if end <= start:
            raise InvalidRequest("End time must be after start time")
        if end - start < minimum:
            raise InvalidRequest(f"Appointment duration must be at least {_duration_label(minimum)}")
        if local_end.date() != local_start.date() or not window.contains(local_start.time(), local_end.time()):
            raise InvalidRequest(
                f"Time must be within doctor's availability ({_hhmm(window.start_time)} - {_hhmm(window.end_time)})"
            )
        if start < self._clock():
            raise InvalidRequest("Cannot schedule an appointment in the past")
        if local_start.date() >= self._horizon_end():
            raise InvalidRequest(f"Appointments can only be booked up to {self._horizon_weeks} weeks ahead")
        if not check_conflicts:
            return

        booked = self._store_call(
            "check the schedule",
            self._store.list_appointments,
            doctor_id=doctor_id,
            statuses=BLOCKING_STATUSES,
            booked_after=start,
            booked_before=end,
        )
        if any(other.appointment_id != exclude and other.overlaps(start, end) for other in booked):
            raise Conflict("Time conflicts with another appointment")

    def _window_for(self, doctor_id: UUID, day: Weekday) -> Optional[AvailabilityWindow]:
        windows = self._store_call(
            "load availability", self._store.list_availability, doctor_id=doctor_id, enabled_only=True
        )
        for window in windows:
            if window.day == day:
                return window
        return None

    @staticmethod
    def _ensure_status(appointment: Appointment, verb: str, allowed: Collection[AppointmentStatus]) -> None:
        if appointment.status not in allowed:
            raise Conflict(f"Cannot {verb} an appointment that is {appointment.status.value}")

    def _apply(
        self,
        profile: UserProfile,
        appointment: Appointment,
        action: str,
        changes: Dict[str, Any],
    ) -> Appointment:
        changes = {**changes, "updated_at": self._clock()}
        self._store_call("update appointment", self._store.update_appointment, appointment.appointment_id, changes)
        updated = appointment.model_copy(update=changes)
        self._audit_change(profile, updated, action, appointment.status)
        return updated

    def _audit_change(
        self,
        profile: UserProfile,
        appointment: Appointment,
        action: str,
        previous: Optional[AppointmentStatus],
    ) -> None:
        extra: Dict[str, Any] = {"role": profile.role.value, "status": appointment.status.value}
        if previous is not None:
            extra["previous_status"] = previous.value
        self._audit.log_event(
            action=action,
            resource_type="appointment",
            resource_id=str(appointment.appointment_id),
            extra=extra,
        )

    def _load_visible(self, profile: UserProfile, appointment_id: UUID) -> Appointment:
        appointment = self._store_call("load appointment", self._store.get_appointment, appointment_id)
        if appointment is None or not self._can_see(profile, appointment):
            raise NotFound("Appointment not found")
        return appointment

    @staticmethod
    def _can_see(profile: UserProfile, appointment: Appointment) -> bool:
        if profile.role == UserRole.PATIENT:
            return appointment.patient_id == profile.user_id
        if profile.role == UserRole.DENTIST:
            return appointment.doctor_id == profile.user_id
        return profile.role in (UserRole.ADMIN, UserRole.DENTAL_STAFF)

    def _load_profile(self, user_id: UUID) -> Optional[UserProfile]:
        try:
            return self._profile_store.get(user_id)
        except ProfileStoreError:
            logger.exception("Loading user %s failed", user_id)
            raise InternalError("Failed to load user")

    def _load_bookable_doctor(self, doctor_id: UUID) -> UserProfile:
        doctor = self._load_profile(doctor_id)
        if doctor is None or doctor.role != UserRole.DENTIST:
            raise NotFound("Doctor not found")
        if doctor.status != UserStatus.ACTIVE:
            raise InvalidRequest("Doctor is not accepting appointments")
        return doctor

    def _load_patient(self, patient_id: UUID) -> UserProfile:
        patient = self._load_profile(patient_id)
        if patient is None or patient.role != UserRole.PATIENT:
            raise NotFound("Patient not found")
        return patient

    @staticmethod
    def _store_call(description: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except AppointmentStoreError:
            logger.exception("Appointment store failed to %s", description)
            raise InternalError(f"Failed to {description}")
