from __future__ import annotations

from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel

from src.dental_backend.domain.models.appointment import (
    Appointment,
    AppointmentAccept,
    AppointmentRequestCreate,
    AppointmentReschedule,
    AppointmentStatusNote,
    WalkInAppointmentCreate,
)
from src.dental_backend.domain.models.user import IdentityRecord
from src.dental_backend.infra.db.bootstrap import get_appointment_store, get_profile_store
from src.dental_backend.security import get_authorizer, get_current_principal
from src.dental_backend.services.appointments.service import AppointmentService
from src.dental_backend.services.authorization.service import AdminAuthorizer


router = APIRouter(prefix="/appointments", tags=["appointments"])


def get_appointment_service(
    authorizer: AdminAuthorizer = Depends(get_authorizer),
) -> AppointmentService:
    return AppointmentService(get_appointment_store(), get_profile_store(), authorizer=authorizer)


class AppointmentListResponse(BaseModel):
    appointments: List[Appointment]


@router.get("", response_model=AppointmentListResponse)
async def list_appointments(
    status_filter: Optional[str] = Query(None, alias="status"),
    doctor_id: Optional[UUID] = Query(None, alias="doctorId"),
    patient_id: Optional[UUID] = Query(None, alias="patientId"),
    date_from: Optional[date] = Query(None, alias="from"),
    date_to: Optional[date] = Query(None, alias="to"),
    principal: Optional[IdentityRecord] = Depends(get_current_principal),
    service: AppointmentService = Depends(get_appointment_service),
) -> AppointmentListResponse:
    appointments = await run_in_threadpool(
        lambda: service.list_appointments(
            principal,
            status=status_filter,
            doctor_id=doctor_id,
            patient_id=patient_id,
            date_from=date_from,
            date_to=date_to,
        )
    )
    return AppointmentListResponse(appointments=appointments)


@router.post("/requests", response_model=Appointment, status_code=status.HTTP_201_CREATED)
async def request_appointment(
    payload: AppointmentRequestCreate,
    principal: Optional[IdentityRecord] = Depends(get_current_principal),
    service: AppointmentService = Depends(get_appointment_service),
) -> Appointment:
    return await run_in_threadpool(service.request_appointment, principal, payload)


@router.post("", response_model=Appointment, status_code=status.HTTP_201_CREATED)
async def create_walk_in(
    payload: WalkInAppointmentCreate,
    principal: Optional[IdentityRecord] = Depends(get_current_principal),
    service: AppointmentService = Depends(get_appointment_service),
) -> Appointment:
    return await run_in_threadpool(service.create_walk_in, principal, payload)


@router.get("/{appointment_id}", response_model=Appointment)
async def get_appointment(
    appointment_id: UUID,
    principal: Optional[IdentityRecord] = Depends(get_current_principal),
    service: AppointmentService = Depends(get_appointment_service),
) -> Appointment:
    return await run_in_threadpool(service.get_appointment, principal, appointment_id)


@router.post("/{appointment_id}/accept", response_model=Appointment)
async def accept_appointment(
    appointment_id: UUID,
    payload: AppointmentAccept,
    principal: Optional[IdentityRecord] = Depends(get_current_principal),
    service: AppointmentService = Depends(get_appointment_service),
) -> Appointment:
    return await run_in_threadpool(service.accept, principal, appointment_id, payload)


@router.post("/{appointment_id}/reschedule", response_model=Appointment)
async def reschedule_appointment(
    appointment_id: UUID,
    payload: AppointmentReschedule,
    principal: Optional[IdentityRecord] = Depends(get_current_principal),
    service: AppointmentService = Depends(get_appointment_service),
) -> Appointment:
    return await run_in_threadpool(service.reschedule, principal, appointment_id, payload)


@router.post("/{appointment_id}/confirm", response_model=Appointment)
async def confirm_appointment(
    appointment_id: UUID,
    principal: Optional[IdentityRecord] = Depends(get_current_principal),
    service: AppointmentService = Depends(get_appointment_service),
) -> Appointment:
    return await run_in_threadpool(service.confirm, principal, appointment_id)


@router.post("/{appointment_id}/reject", response_model=Appointment)
async def reject_appointment(
    appointment_id: UUID,
    payload: AppointmentStatusNote,
    principal: Optional[IdentityRecord] = Depends(get_current_principal),
    service: AppointmentService = Depends(get_appointment_service),
) -> Appointment:
    return await run_in_threadpool(service.reject, principal, appointment_id, payload.note)


@router.post("/{appointment_id}/cancel", response_model=Appointment)
async def cancel_appointment(
    appointment_id: UUID,
    payload: AppointmentStatusNote,
    principal: Optional[IdentityRecord] = Depends(get_current_principal),
    service: AppointmentService = Depends(get_appointment_service),
) -> Appointment:
    return await run_in_threadpool(service.cancel, principal, appointment_id, payload.note)


@router.post("/{appointment_id}/arrive", response_model=Appointment)
async def check_in_appointment(
    appointment_id: UUID,
    principal: Optional[IdentityRecord] = Depends(get_current_principal),
    service: AppointmentService = Depends(get_appointment_service),
) -> Appointment:
    return await run_in_threadpool(service.check_in, principal, appointment_id)


@router.post("/{appointment_id}/start", response_model=Appointment)
async def start_appointment(
    appointment_id: UUID,
    principal: Optional[IdentityRecord] = Depends(get_current_principal),
    service: AppointmentService = Depends(get_appointment_service),
) -> Appointment:
    return await run_in_threadpool(service.start, principal, appointment_id)


@router.post("/{appointment_id}/complete", response_model=Appointment)
async def complete_appointment(
    appointment_id: UUID,
    principal: Optional[IdentityRecord] = Depends(get_current_principal),
    service: AppointmentService = Depends(get_appointment_service),
) -> Appointment:
    return await run_in_threadpool(service.complete, principal, appointment_id)
