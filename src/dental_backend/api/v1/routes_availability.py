from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel

from src.dental_backend.domain.models.appointment import AvailabilityUpdate, AvailabilityWindow, DoctorSchedule
from src.dental_backend.domain.models.user import IdentityRecord
from src.dental_backend.infra.db.bootstrap import get_appointment_store, get_profile_store
from src.dental_backend.security import get_authorizer, get_current_principal
from src.dental_backend.services.authorization.service import AdminAuthorizer
from src.dental_backend.services.availability.service import AvailabilityService


router = APIRouter(prefix="/doctors", tags=["availability"])


def get_availability_service(
    authorizer: AdminAuthorizer = Depends(get_authorizer),
) -> AvailabilityService:
    return AvailabilityService(get_appointment_store(), get_profile_store(), authorizer=authorizer)


class AvailabilityResponse(BaseModel):
    doctor_id: UUID
    availability: List[AvailabilityWindow]


class DoctorScheduleListResponse(BaseModel):
    doctors: List[DoctorSchedule]


@router.get("/schedules", response_model=DoctorScheduleListResponse)
async def list_doctor_schedules(
    principal: Optional[IdentityRecord] = Depends(get_current_principal),
    service: AvailabilityService = Depends(get_availability_service),
) -> DoctorScheduleListResponse:
    doctors = await run_in_threadpool(service.list_doctor_schedules, principal)
    return DoctorScheduleListResponse(doctors=doctors)


@router.get("/{doctor_id}/availability", response_model=AvailabilityResponse)
async def get_availability(
    doctor_id: UUID,
    principal: Optional[IdentityRecord] = Depends(get_current_principal),
    service: AvailabilityService = Depends(get_availability_service),
) -> AvailabilityResponse:
    windows = await run_in_threadpool(service.get_schedule, principal, doctor_id)
    return AvailabilityResponse(doctor_id=doctor_id, availability=windows)


@router.put("/{doctor_id}/availability", response_model=AvailabilityResponse)
async def update_availability(
    doctor_id: UUID,
    payload: AvailabilityUpdate,
    principal: Optional[IdentityRecord] = Depends(get_current_principal),
    service: AvailabilityService = Depends(get_availability_service),
) -> AvailabilityResponse:
    windows = await run_in_threadpool(service.update_schedule, principal, doctor_id, payload)
    return AvailabilityResponse(doctor_id=doctor_id, availability=windows)
