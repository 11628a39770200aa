from __future__ import annotations

from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel

from src.dental_backend.domain.models.account_request import AccountRequest, UserUpdateRequest
from src.dental_backend.domain.models.user import IdentityRecord, UserProfile, UserRole
from src.dental_backend.infra.db.bootstrap import get_identity_store, get_profile_store
from src.dental_backend.security import get_authorizer, get_current_principal
from src.dental_backend.services.authorization.service import AdminAuthorizer
from src.dental_backend.services.provisioning.service import ProvisioningCoordinator
from src.dental_backend.services.users.service import AdminUserService


router = APIRouter(prefix="/admin", tags=["admin"])


def get_provisioning_coordinator(
    authorizer: AdminAuthorizer = Depends(get_authorizer),
) -> ProvisioningCoordinator:
    return ProvisioningCoordinator(get_identity_store(), get_profile_store(), authorizer=authorizer)


def get_admin_user_service(
    authorizer: AdminAuthorizer = Depends(get_authorizer),
) -> AdminUserService:
    return AdminUserService(get_identity_store(), get_profile_store(), authorizer=authorizer)


class CreatedUser(BaseModel):
    id: UUID
    email: str
    role: UserRole


class CreateUserResponse(BaseModel):
    success: bool
    message: str
    user: CreatedUser


class UserListResponse(BaseModel):
    users: List[UserProfile]


@router.post("/create-user", response_model=CreateUserResponse)
async def create_user(
    payload: AccountRequest,
    principal: Optional[IdentityRecord] = Depends(get_current_principal),
    coordinator: ProvisioningCoordinator = Depends(get_provisioning_coordinator),
) -> CreateUserResponse:
    # Provisioning runs to completion on a worker thread even if the client
    # goes away, so an identity is never left without its profile attempt.
    account = await run_in_threadpool(coordinator.provision, principal, payload)
    return CreateUserResponse(
        success=True,
        message=f"{account.role.value} account created successfully",
        user=CreatedUser(id=account.id, email=account.email, role=account.role),
    )


@router.get("/users", response_model=UserListResponse)
async def list_users(
    role: Optional[str] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    principal: Optional[IdentityRecord] = Depends(get_current_principal),
    service: AdminUserService = Depends(get_admin_user_service),
) -> UserListResponse:
    users = await run_in_threadpool(
        lambda: service.list_users(principal, role=role, status=status, search=search)
    )
    return UserListResponse(users=users)


@router.delete("/users")
async def delete_user(
    user_id: Optional[str] = Query(None, alias="userId"),
    principal: Optional[IdentityRecord] = Depends(get_current_principal),
    service: AdminUserService = Depends(get_admin_user_service),
) -> Dict[str, Any]:
    deleted = await run_in_threadpool(service.delete_user, principal, user_id)
    return {"message": "User deleted successfully", "deletedUserId": str(deleted)}


@router.get("/users/{user_id}")
async def get_user(
    user_id: UUID,
    principal: Optional[IdentityRecord] = Depends(get_current_principal),
    service: AdminUserService = Depends(get_admin_user_service),
) -> Dict[str, Any]:
    user = await run_in_threadpool(service.get_user, principal, user_id)
    return {"user": user}


@router.patch("/users/{user_id}")
async def update_user(
    user_id: UUID,
    payload: UserUpdateRequest,
    principal: Optional[IdentityRecord] = Depends(get_current_principal),
    service: AdminUserService = Depends(get_admin_user_service),
) -> Dict[str, Any]:
    await run_in_threadpool(service.update_user, principal, user_id, payload)
    return {"message": "User updated successfully", "userId": str(user_id)}


@router.get("/debug")
async def debug_session(
    principal: Optional[IdentityRecord] = Depends(get_current_principal),
    service: AdminUserService = Depends(get_admin_user_service),
) -> Dict[str, Any]:
    """Caller's identity and profile side by side. Not a stable contract."""

    return await run_in_threadpool(service.debug_snapshot, principal)
