from datetime import datetime, time, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import text

from src.dental_backend.domain.models.appointment import Appointment, AppointmentStatus, AvailabilityWindow, Weekday
from src.dental_backend.infra.db.models import Base
from src.dental_backend.infra.db.repositories import AppointmentStoreError
from src.dental_backend.infra.db.session import create_sqlalchemy_engine, create_sqlalchemy_session_factory
from src.dental_backend.infra.db.sql_appointments import SqlAppointmentStore

CLINIC_TZ = timezone(timedelta(hours=8))
DOCTOR = uuid4()
PATIENT = uuid4()


@pytest.fixture
def engine():
    engine = create_sqlalchemy_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine) -> SqlAppointmentStore:
    return SqlAppointmentStore(create_sqlalchemy_session_factory(engine))


def _booked(start: datetime, minutes: int = 60, **fields) -> Appointment:
    now = datetime(2026, 10, 1, tzinfo=timezone.utc)
    base = dict(
        appointment_id=uuid4(),
        patient_id=PATIENT,
        doctor_id=DOCTOR,
        requested_start_time=start,
        booked_start_time=start,
        booked_end_time=start + timedelta(minutes=minutes),
        status=AppointmentStatus.BOOKED,
        concern="Filling",
        created_at=now,
        updated_at=now,
    )
    base.update(fields)
    return Appointment(**base)


def test_create_and_get_keep_instants_in_utc(store):
    start = datetime(2026, 10, 20, 10, 0, tzinfo=CLINIC_TZ)
    appointment = _booked(start)

    store.create_appointment(appointment)
    loaded = store.get_appointment(appointment.appointment_id)

    assert loaded.booked_start_time == start
    assert loaded.booked_start_time.tzinfo is not None
    assert loaded.status == AppointmentStatus.BOOKED
    assert store.get_appointment(uuid4()) is None


def test_overlap_and_status_filters(store):
    day = datetime(2026, 10, 20, 1, 0, tzinfo=timezone.utc)
    early = _booked(day)
    late = _booked(day + timedelta(hours=3))
    requested = _booked(
        day + timedelta(hours=5), status=AppointmentStatus.REQUESTED, booked_start_time=None, booked_end_time=None
    )
    for appointment in (late, requested, early):
        store.create_appointment(appointment)

    assert [a.appointment_id for a in store.list_appointments(doctor_id=DOCTOR)] == [
        early.appointment_id,
        late.appointment_id,
        requested.appointment_id,
    ]
    overlapping = store.list_appointments(
        booked_after=day + timedelta(minutes=30), booked_before=day + timedelta(hours=3, minutes=1)
    )
    assert {a.appointment_id for a in overlapping} == {early.appointment_id, late.appointment_id}
    # Touching intervals do not overlap.
    assert store.list_appointments(booked_after=day + timedelta(hours=1), booked_before=day + timedelta(hours=3)) == []
    assert [a.appointment_id for a in store.list_appointments(statuses={AppointmentStatus.REQUESTED})] == [
        requested.appointment_id
    ]
    assert store.list_appointments(patient_id=uuid4()) == []


def test_update_appointment(store):
    appointment = _booked(datetime(2026, 10, 20, 1, 0, tzinfo=timezone.utc))
    store.create_appointment(appointment)

    store.update_appointment(
        appointment.appointment_id,
        {"status": AppointmentStatus.CANCELLED, "status_note": "Clinic closed", "is_active": False},
    )

    loaded = store.get_appointment(appointment.appointment_id)
    assert loaded.status == AppointmentStatus.CANCELLED
    assert loaded.status_note == "Clinic closed"
    assert loaded.is_active is False


def test_upsert_availability_keeps_one_row_per_day(store, engine):
    monday = AvailabilityWindow(doctor_id=DOCTOR, day=Weekday.MONDAY, start_time=time(9), end_time=time(12), is_enabled=True)
    store.upsert_availability([monday, monday.model_copy(update={"day": Weekday.TUESDAY, "is_enabled": False})])
    store.upsert_availability([monday.model_copy(update={"end_time": time(15)})])

    with engine.connect() as conn:
        assert conn.execute(text("SELECT COUNT(*) FROM doc_availability")).scalar_one() == 2
    enabled = store.list_availability(doctor_id=DOCTOR, enabled_only=True)
    assert [(w.day, w.end_time) for w in enabled] == [(Weekday.MONDAY, time(15))]
    assert enabled[0].availability_id is not None
    assert store.list_availability(doctor_id=uuid4()) == []


def test_database_errors_raise_store_error(store, engine):
    Base.metadata.drop_all(engine)

    with pytest.raises(AppointmentStoreError):
        store.list_appointments()
    with pytest.raises(AppointmentStoreError):
        store.create_appointment(_booked(datetime(2026, 10, 20, 1, 0, tzinfo=timezone.utc)))
    with pytest.raises(AppointmentStoreError):
        store.upsert_availability([AvailabilityWindow(doctor_id=DOCTOR, day=Weekday.MONDAY)])
