from datetime import date, datetime, time, timedelta, timezone
from uuid import uuid4

import pytest
from fastapi import status

from src.dental_backend.domain.errors import Conflict, Forbidden, InternalError, InvalidRequest, NotFound
from src.dental_backend.domain.models.appointment import (
    AppointmentAccept,
    AppointmentRequestCreate,
    AppointmentReschedule,
    AppointmentStatus,
    AvailabilityWindow,
    WalkInAppointmentCreate,
    Weekday,
)
from src.dental_backend.domain.models.user import UserRole, UserStatus
from src.dental_backend.services.appointments.service import AppointmentService

CLINIC_TZ = timezone(timedelta(hours=8))
# Monday 19 October 2026, 08:00 at the clinic.
NOW = datetime(2026, 10, 19, 0, 0, tzinfo=timezone.utc)
TUESDAY = date(2026, 10, 20)


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> Clock:
    return Clock(NOW)


@pytest.fixture
def service(appointment_store, profile_store, audit, clock) -> AppointmentService:
    return AppointmentService(appointment_store, profile_store, audit=audit, clock=clock, tz=CLINIC_TZ)


@pytest.fixture
def admin(seed_user):
    return seed_user(UserRole.ADMIN)


@pytest.fixture
def dentist(seed_user, appointment_store):
    seeded = seed_user(UserRole.DENTIST, first_name="Ines", last_name="Duarte")
    appointment_store.upsert_availability(
        [
            AvailabilityWindow(
                doctor_id=seeded.profile.user_id,
                day=Weekday.TUESDAY,
                start_time=time(9, 0),
                end_time=time(17, 0),
                is_enabled=True,
            )
        ]
    )
    return seeded


@pytest.fixture
def patient(seed_user):
    return seed_user(UserRole.PATIENT, first_name="Tomas", last_name="Berg")


def _walk_in(dentist, patient, start: time, end: time, day: date = TUESDAY, **overrides) -> WalkInAppointmentCreate:
    fields = dict(
        patient_id=patient.profile.user_id,
        doctor_id=dentist.profile.user_id,
        appointment_date=day,
        start_time=start,
        end_time=end,
        concern="Chipped molar",
    )
    fields.update(overrides)
    return WalkInAppointmentCreate(**fields)


def _request(dentist, start: time, day: date = TUESDAY) -> AppointmentRequestCreate:
    return AppointmentRequestCreate(
        doctor_id=dentist.profile.user_id, appointment_date=day, start_time=start, concern="Cleaning"
    )


def test_walk_in_is_booked_immediately_in_utc(service, admin, dentist, patient, audit):
    appointment = service.create_walk_in(admin.identity, _walk_in(dentist, patient, time(10, 0), time(10, 30)))

    assert appointment.status == AppointmentStatus.BOOKED
    assert appointment.booked_start_time == datetime(2026, 10, 20, 2, 0, tzinfo=timezone.utc)
    assert appointment.booked_end_time == datetime(2026, 10, 20, 2, 30, tzinfo=timezone.utc)
    assert appointment.requested_start_time == appointment.booked_start_time
    assert audit.actions() == ["create_appointment"]


@pytest.mark.parametrize(
    "day, start, end, message",
    [
        (date(2026, 10, 19), time(10, 0), time(11, 0), "No availability for this day"),
        (TUESDAY, time(11, 0), time(10, 0), "End time must be after start time"),
        (TUESDAY, time(10, 0), time(10, 15), "Appointment duration must be at least 30 minutes"),
        (TUESDAY, time(16, 45), time(17, 30), "Time must be within doctor's availability (09:00 - 17:00)"),
        (TUESDAY, time(8, 0), time(9, 0), "Time must be within doctor's availability (09:00 - 17:00)"),
    ],
)
def test_walk_in_slot_rules(service, admin, dentist, patient, appointment_store, day, start, end, message):
    with pytest.raises(InvalidRequest) as excinfo:
        service.create_walk_in(admin.identity, _walk_in(dentist, patient, start, end, day=day))

    assert excinfo.value.message == message
    assert appointment_store.list_appointments() == []


def test_walk_in_requires_concern_and_known_people(service, admin, dentist, patient, seed_user):
    with pytest.raises(InvalidRequest, match="Please fill in all required fields"):
        service.create_walk_in(admin.identity, _walk_in(dentist, patient, time(10, 0), time(11, 0), concern="  "))
    with pytest.raises(NotFound, match="Patient not found"):
        service.create_walk_in(
            admin.identity, _walk_in(dentist, patient, time(10, 0), time(11, 0), patient_id=dentist.profile.user_id)
        )
    with pytest.raises(NotFound, match="Doctor not found"):
        service.create_walk_in(admin.identity, _walk_in(dentist, patient, time(10, 0), time(11, 0), doctor_id=uuid4()))

    away = seed_user(UserRole.DENTIST, status=UserStatus.INACTIVE)
    with pytest.raises(InvalidRequest, match="not accepting appointments"):
        service.create_walk_in(
            admin.identity, _walk_in(dentist, patient, time(10, 0), time(11, 0), doctor_id=away.profile.user_id)
        )


def test_overlapping_booking_conflicts_but_adjacent_is_allowed(service, admin, dentist, patient):
    service.create_walk_in(admin.identity, _walk_in(dentist, patient, time(10, 0), time(11, 0)))

    with pytest.raises(Conflict, match="Time conflicts with another appointment"):
        service.create_walk_in(admin.identity, _walk_in(dentist, patient, time(10, 30), time(11, 30)))

    adjacent = service.create_walk_in(admin.identity, _walk_in(dentist, patient, time(11, 0), time(11, 30)))
    assert adjacent.status == AppointmentStatus.BOOKED


def test_cancelled_booking_frees_its_slot(service, admin, dentist, patient):
    first = service.create_walk_in(admin.identity, _walk_in(dentist, patient, time(10, 0), time(11, 0)))
    service.cancel(admin.identity, first.appointment_id, "Patient called in sick")

    again = service.create_walk_in(admin.identity, _walk_in(dentist, patient, time(10, 0), time(11, 0)))
    assert again.status == AppointmentStatus.BOOKED


def test_past_and_beyond_horizon_are_rejected(service, admin, dentist, patient, clock):
    clock.now = datetime(2026, 10, 20, 3, 0, tzinfo=timezone.utc)
    with pytest.raises(InvalidRequest, match="in the past"):
        service.create_walk_in(admin.identity, _walk_in(dentist, patient, time(10, 0), time(11, 0)))

    clock.now = NOW
    last_tuesday = date(2027, 1, 5)
    assert service.create_walk_in(admin.identity, _walk_in(dentist, patient, time(10, 0), time(11, 0), day=last_tuesday))
    with pytest.raises(InvalidRequest, match="up to 12 weeks ahead"):
        service.create_walk_in(admin.identity, _walk_in(dentist, patient, time(10, 0), time(11, 0), day=date(2027, 1, 12)))


def test_dentist_books_into_own_schedule_only(service, dentist, patient, seed_user):
    appointment = service.create_walk_in(
        dentist.identity, _walk_in(dentist, patient, time(13, 0), time(14, 0), doctor_id=None)
    )
    assert appointment.doctor_id == dentist.profile.user_id

    colleague = seed_user(UserRole.DENTIST)
    with pytest.raises(Forbidden):
        service.create_walk_in(
            dentist.identity, _walk_in(dentist, patient, time(13, 0), time(14, 0), doctor_id=colleague.profile.user_id)
        )
    with pytest.raises(Forbidden):
        service.create_walk_in(patient.identity, _walk_in(dentist, patient, time(13, 0), time(14, 0)))


def test_request_then_accept_then_visit(service, admin, dentist, patient, audit):
    requested = service.request_appointment(patient.identity, _request(dentist, time(14, 0)))
    assert requested.status == AppointmentStatus.REQUESTED
    assert requested.booked_start_time is None
    assert requested.patient_id == patient.profile.user_id

    with pytest.raises(InvalidRequest, match="at least 1 hour"):
        service.accept(admin.identity, requested.appointment_id, AppointmentAccept(end_time=time(14, 30)))

    booked = service.accept(admin.identity, requested.appointment_id, AppointmentAccept(end_time=time(15, 0)))
    assert booked.status == AppointmentStatus.BOOKED
    assert booked.booked_start_time == requested.requested_start_time
    assert booked.booked_end_time == datetime(2026, 10, 20, 7, 0, tzinfo=timezone.utc)

    service.check_in(dentist.identity, requested.appointment_id)
    service.start(dentist.identity, requested.appointment_id)
    done = service.complete(dentist.identity, requested.appointment_id)
    assert done.status == AppointmentStatus.COMPLETED

    with pytest.raises(Conflict, match="Cannot complete an appointment that is completed"):
        service.complete(dentist.identity, requested.appointment_id)
    assert audit.actions() == [
        "request_appointment",
        "accept_appointment",
        "check_in_appointment",
        "start_appointment",
        "complete_appointment",
    ]


def test_request_rules(service, admin, dentist, patient):
    with pytest.raises(Forbidden, match="Only patients"):
        service.request_appointment(admin.identity, _request(dentist, time(10, 0)))
    with pytest.raises(InvalidRequest, match="No availability"):
        service.request_appointment(patient.identity, _request(dentist, time(10, 0), day=date(2026, 10, 21)))
    with pytest.raises(InvalidRequest, match="within doctor's availability"):
        service.request_appointment(patient.identity, _request(dentist, time(16, 45)))


def test_requests_do_not_block_the_slot(service, admin, dentist, patient):
    service.request_appointment(patient.identity, _request(dentist, time(10, 0)))

    booked = service.create_walk_in(admin.identity, _walk_in(dentist, patient, time(10, 0), time(11, 0)))
    assert booked.status == AppointmentStatus.BOOKED


def test_reschedule_needs_patient_confirmation_and_rechecks_conflicts(service, admin, dentist, patient, seed_user):
    requested = service.request_appointment(patient.identity, _request(dentist, time(9, 0)))
    proposal = AppointmentReschedule(appointment_date=TUESDAY, start_time=time(15, 0), end_time=time(16, 0))

    proposed = service.reschedule(admin.identity, requested.appointment_id, proposal)
    assert proposed.status == AppointmentStatus.TO_CONFIRM
    assert proposed.booked_start_time == datetime(2026, 10, 20, 7, 0, tzinfo=timezone.utc)

    other = seed_user(UserRole.PATIENT)
    service.create_walk_in(admin.identity, _walk_in(dentist, other, time(15, 30), time(16, 0)))

    with pytest.raises(Conflict, match="Time conflicts"):
        service.confirm(patient.identity, requested.appointment_id)

    moved = service.reschedule(
        admin.identity,
        requested.appointment_id,
        AppointmentReschedule(appointment_date=TUESDAY, start_time=time(12, 0), end_time=time(13, 0), note="Moved"),
    )
    assert moved.status_note == "Moved"
    assert service.confirm(patient.identity, requested.appointment_id).status == AppointmentStatus.BOOKED


def test_rescheduling_a_booking_ignores_its_own_slot(service, admin, dentist, patient):
    booked = service.create_walk_in(admin.identity, _walk_in(dentist, patient, time(10, 0), time(11, 0)))

    proposed = service.reschedule(
        admin.identity,
        booked.appointment_id,
        AppointmentReschedule(appointment_date=TUESDAY, start_time=time(10, 30), end_time=time(11, 30)),
    )

    assert proposed.status == AppointmentStatus.TO_CONFIRM


def test_only_admin_rejects_requests_with_a_note(service, admin, dentist, patient, seed_user):
    requested = service.request_appointment(patient.identity, _request(dentist, time(10, 0)))
    staff = seed_user(UserRole.DENTAL_STAFF)

    with pytest.raises(Forbidden):
        service.reject(staff.identity, requested.appointment_id, "Fully booked")
    with pytest.raises(InvalidRequest, match="A note is required"):
        service.reject(admin.identity, requested.appointment_id, " ")

    rejected = service.reject(admin.identity, requested.appointment_id, "Fully booked")
    assert rejected.status == AppointmentStatus.REJECTED
    assert rejected.is_active is False
    assert rejected.status_note == "Fully booked"

    with pytest.raises(Conflict):
        service.reject(admin.identity, requested.appointment_id, "Again")


def test_patient_can_withdraw_requests_but_not_cancel_bookings(service, admin, dentist, patient):
    requested = service.request_appointment(patient.identity, _request(dentist, time(9, 0)))
    withdrawn = service.cancel(patient.identity, requested.appointment_id, "No longer needed")
    assert withdrawn.status == AppointmentStatus.CANCELLED

    booked = service.create_walk_in(admin.identity, _walk_in(dentist, patient, time(10, 0), time(11, 0)))
    with pytest.raises(Conflict, match="Cannot cancel an appointment that is booked"):
        service.cancel(patient.identity, booked.appointment_id, "Busy")
    assert service.cancel(dentist.identity, booked.appointment_id, "Dentist away").status == AppointmentStatus.CANCELLED


def test_visibility_follows_role(service, admin, dentist, patient, seed_user):
    booked = service.create_walk_in(admin.identity, _walk_in(dentist, patient, time(10, 0), time(11, 0)))
    stranger = seed_user(UserRole.PATIENT)
    colleague = seed_user(UserRole.DENTIST)
    staff = seed_user(UserRole.DENTAL_STAFF)

    for outsider in (stranger, colleague):
        with pytest.raises(NotFound, match="Appointment not found"):
            service.get_appointment(outsider.identity, booked.appointment_id)
    assert service.get_appointment(staff.identity, booked.appointment_id) == booked
    assert service.get_appointment(patient.identity, booked.appointment_id) == booked

    assert service.list_appointments(stranger.identity) == []
    assert service.list_appointments(colleague.identity, doctor_id=dentist.profile.user_id) == []
    assert [a.appointment_id for a in service.list_appointments(patient.identity)] == [booked.appointment_id]
    with pytest.raises(NotFound):
        service.get_appointment(admin.identity, uuid4())


def test_list_filters_by_status_and_day(service, admin, dentist, patient):
    booked = service.create_walk_in(admin.identity, _walk_in(dentist, patient, time(10, 0), time(11, 0)))
    service.request_appointment(patient.identity, _request(dentist, time(14, 0)))

    assert [a.appointment_id for a in service.list_appointments(admin.identity, status="booked")] == [
        booked.appointment_id
    ]
    assert len(service.list_appointments(admin.identity, status="all")) == 2
    assert service.list_appointments(admin.identity, status="postponed") == []
    assert [a.appointment_id for a in service.list_appointments(admin.identity, date_from=TUESDAY, date_to=TUESDAY)] == [
        booked.appointment_id
    ]
    assert service.list_appointments(admin.identity, date_from=date(2026, 10, 21)) == []


def test_store_failure_is_internal_error(service, admin, dentist, patient, appointment_store):
    appointment_store.fail_on.add("create_appointment")

    with pytest.raises(InternalError, match="Failed to create appointment"):
        service.create_walk_in(admin.identity, _walk_in(dentist, patient, time(10, 0), time(11, 0)))


def _next_clinic_date(days_ahead: int = 7) -> date:
    return (datetime.now(CLINIC_TZ) + timedelta(days=days_ahead)).date()


async def _open_every_day(client, admin, dentist):
    days = [{"day": day.value, "startTime": "09:00", "endTime": "17:00", "isEnabled": True} for day in Weekday]
    response = await client.put(
        f"/api/v1/doctors/{dentist.profile.user_id}/availability", json={"days": days}, headers=admin.headers
    )
    assert response.status_code == status.HTTP_200_OK


async def test_walk_in_endpoint_and_conflict(client, admin, dentist, patient):
    await _open_every_day(client, admin, dentist)
    body = {
        "patientId": str(patient.profile.user_id),
        "doctorId": str(dentist.profile.user_id),
        "date": _next_clinic_date().isoformat(),
        "startTime": "10:00",
        "endTime": "11:00",
        "concern": "Crown check",
    }

    created = await client.post("/api/v1/appointments", json=body, headers=admin.headers)
    assert created.status_code == status.HTTP_201_CREATED
    assert created.json()["status"] == "booked"

    clash = await client.post("/api/v1/appointments", json={**body, "startTime": "10:30", "endTime": "11:30"}, headers=admin.headers)
    assert clash.status_code == status.HTTP_409_CONFLICT
    assert clash.json() == {"error": "Time conflicts with another appointment"}

    listed = await client.get("/api/v1/appointments", params={"status": "booked"}, headers=patient.headers)
    assert [a["appointment_id"] for a in listed.json()["appointments"]] == [created.json()["appointment_id"]]


async def test_request_and_cancel_over_http(client, admin, dentist, patient):
    await _open_every_day(client, admin, dentist)
    body = {"doctorId": str(dentist.profile.user_id), "date": _next_clinic_date().isoformat(), "startTime": "09:30"}

    created = await client.post("/api/v1/appointments/requests", json=body, headers=patient.headers)
    assert created.status_code == status.HTTP_201_CREATED
    appointment_id = created.json()["appointment_id"]

    missing_note = await client.post(f"/api/v1/appointments/{appointment_id}/cancel", json={}, headers=patient.headers)
    assert missing_note.status_code == status.HTTP_400_BAD_REQUEST

    cancelled = await client.post(
        f"/api/v1/appointments/{appointment_id}/cancel", json={"note": "Found another clinic"}, headers=patient.headers
    )
    assert cancelled.status_code == status.HTTP_200_OK
    assert cancelled.json()["status"] == "cancelled"


async def test_appointment_endpoints_need_a_session(client):
    assert (await client.get("/api/v1/appointments")).status_code == status.HTTP_401_UNAUTHORIZED
    response = await client.post(f"/api/v1/appointments/{uuid4()}/arrive")
    assert response.status_code == status.HTTP_401_UNAUTHORIZED


async def test_malformed_times_are_400(client, admin, dentist, patient):
    body = {
        "patientId": str(patient.profile.user_id),
        "date": "2026-10-20",
        "startTime": "25:00",
        "endTime": "26:00",
        "concern": "x",
    }

    response = await client.post("/api/v1/appointments", json=body, headers=admin.headers)

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json() == {"error": "Invalid request payload"}
