from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Collection, Dict, List, Optional
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from src.dental_backend.domain.models.appointment import Appointment, AppointmentStatus, AvailabilityWindow
from src.dental_backend.infra.db.models import AppointmentORM, AvailabilityORM
from src.dental_backend.infra.db.repositories import AppointmentStore, AppointmentStoreError
from src.dental_backend.infra.db.session import SessionFactory

logger = logging.getLogger("appointments.sql")


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    return value.astimezone(timezone.utc) if value is not None else None


def _column_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return _as_utc(value)
    return value


class SqlAppointmentStore(AppointmentStore):
    """SQL-backed AppointmentStore; datetimes are written in UTC."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def get_appointment(self, appointment_id: UUID) -> Optional[Appointment]:
        session = self._session_factory()
        try:
            orm = session.get(AppointmentORM, appointment_id)
            return orm.to_domain() if orm is not None else None
        except SQLAlchemyError as exc:
            raise AppointmentStoreError("Failed to load appointment") from exc
        finally:
            session.close()

    def list_appointments(
        self,
        *,
        doctor_id: Optional[UUID] = None,
        patient_id: Optional[UUID] = None,
        statuses: Optional[Collection[AppointmentStatus]] = None,
        booked_after: Optional[datetime] = None,
        booked_before: Optional[datetime] = None,
    ) -> List[Appointment]:
        session = self._session_factory()
        try:
            query = select(AppointmentORM)
            if doctor_id is not None:
                query = query.where(AppointmentORM.doctor_id == doctor_id)
            if patient_id is not None:
                query = query.where(AppointmentORM.patient_id == patient_id)
            if statuses is not None:
                query = query.where(AppointmentORM.status.in_([s.value for s in statuses]))
            if booked_after is not None:
                query = query.where(AppointmentORM.booked_end_time > _as_utc(booked_after))
            if booked_before is not None:
                query = query.where(AppointmentORM.booked_start_time < _as_utc(booked_before))
            query = query.order_by(AppointmentORM.requested_start_time.asc())
            return [orm.to_domain() for orm in session.scalars(query).all()]
        except SQLAlchemyError as exc:
            raise AppointmentStoreError("Failed to list appointments") from exc
        finally:
            session.close()

    def create_appointment(self, appointment: Appointment) -> None:
        values = {key: _column_value(value) for key, value in appointment.model_dump().items()}
        session = self._session_factory()
        try:
            session.add(AppointmentORM(**values))
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            logger.warning("Could not insert appointment %s", appointment.appointment_id, exc_info=True)
            raise AppointmentStoreError("Failed to create appointment") from exc
        finally:
            session.close()

    def update_appointment(self, appointment_id: UUID, changes: Dict[str, Any]) -> None:
        values = {key: _column_value(value) for key, value in changes.items()}
        session = self._session_factory()
        try:
            session.execute(
                update(AppointmentORM).where(AppointmentORM.appointment_id == appointment_id).values(**values)
            )
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise AppointmentStoreError("Failed to update appointment") from exc
        finally:
            session.close()

    def list_availability(
        self,
        *,
        doctor_id: Optional[UUID] = None,
        enabled_only: bool = False,
    ) -> List[AvailabilityWindow]:
        session = self._session_factory()
        try:
            query = select(AvailabilityORM)
            if doctor_id is not None:
                query = query.where(AvailabilityORM.doctor_id == doctor_id)
            if enabled_only:
                query = query.where(AvailabilityORM.is_enabled.is_(True))
            return [orm.to_domain() for orm in session.scalars(query).all()]
        except SQLAlchemyError as exc:
            raise AppointmentStoreError("Failed to load availability") from exc
        finally:
            session.close()

    def upsert_availability(self, windows: List[AvailabilityWindow]) -> None:
        now = datetime.now(timezone.utc)
        session = self._session_factory()
        try:
            for window in windows:
                existing = session.scalars(
                    select(AvailabilityORM).where(
                        AvailabilityORM.doctor_id == window.doctor_id,
                        AvailabilityORM.day == window.day.value,
                    )
                ).first()
                if existing is None:
                    session.add(
                        AvailabilityORM(
                            availability_id=window.availability_id or uuid4(),
                            doctor_id=window.doctor_id,
                            day=window.day.value,
                            start_time=window.start_time,
                            end_time=window.end_time,
                            is_enabled=window.is_enabled,
                            updated_at=now,
                        )
                    )
                else:
                    existing.start_time = window.start_time
                    existing.end_time = window.end_time
                    existing.is_enabled = window.is_enabled
                    existing.updated_at = now
            # All seven days are saved together or not at all.
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise AppointmentStoreError("Failed to save availability") from exc
        finally:
            session.close()
