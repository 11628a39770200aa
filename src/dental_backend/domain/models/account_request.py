from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from src.dental_backend.domain.models.user import Gender, UserRole, UserStatus


class AccountRequest(BaseModel):
    """Payload of ``POST /admin/create-user``.

    Every field is optional at the schema level; required-ness depends on the
    declared role and is checked by the provisioning coordinator so that a
    missing field is reported as a 400 with a readable message rather than a
    schema error.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    email: Optional[str] = None
    temp_password: Optional[str] = None
    first_name: Optional[str] = None
    middle_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: Optional[str] = None
    gender: Optional[str] = None
    role: Optional[str] = None
    status: Optional[str] = None

    # Dentist
    specialization: Optional[str] = None
    license_number: Optional[str] = None
    clinic_assignment: Optional[str] = None

    # Dental staff
    designation: Optional[str] = None
    assigned_doctor: Optional[str] = None

    # Patient
    address: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_no: Optional[str] = None


class UserUpdateRequest(BaseModel):
    """Payload of ``PATCH /admin/users/{user_id}``.

    Only fields present in the body are written. Role-specific fields apply
    to the detail row of the user's stored role; the role itself cannot be
    changed here.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    first_name: Optional[str] = None
    middle_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: Optional[str] = None
    gender: Optional[Gender] = None
    status: Optional[UserStatus] = None

    specialization: Optional[str] = None
    license_number: Optional[str] = None
    clinic_assignment: Optional[str] = None
    schedule_availability: Optional[str] = None

    designation: Optional[str] = None
    assigned_doctor: Optional[UUID] = None

    address: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_no: Optional[str] = None

    def profile_changes(self) -> Dict[str, Any]:
        fields = ("first_name", "middle_name", "last_name", "phone_number", "gender", "status")
        return {name: getattr(self, name) for name in fields if name in self.model_fields_set}

    def role_changes(self, role: UserRole) -> Dict[str, Any]:
        """Return detail-row column updates for ``role``, keyed by column name."""

        if role == UserRole.DENTIST:
            mapping = {
                "specialization": "specialization",
                "license_number": "license_number",
                "clinic_assignment": "room_number",
                "schedule_availability": "schedule_availability",
            }
        elif role == UserRole.DENTAL_STAFF:
            mapping = {"designation": "position_title", "assigned_doctor": "doctor_id"}
        elif role == UserRole.PATIENT:
            mapping = {
                "address": "address",
                "emergency_contact_name": "emergency_contact_name",
                "emergency_contact_no": "emergency_contact_no",
            }
        else:
            return {}
        return {column: getattr(self, field) for field, column in mapping.items() if field in self.model_fields_set}


_NOT_RPC_ARGUMENTS = frozenset({"email"})


@dataclass(frozen=True)
class ProfileCreateParams:
    """Arguments of the atomic ``create_admin_user`` profile operation.

    Fields that do not apply to ``role`` are always ``None`` so the operation
    has one uniform signature across roles.
    """

    auth_id: UUID
    email: str
    first_name: str
    last_name: str
    role: UserRole
    middle_name: Optional[str] = None
    phone_number: Optional[str] = None
    gender: Gender = Gender.UNSPECIFIED
    status: UserStatus = UserStatus.ACTIVE
    specialization: Optional[str] = None
    license_number: Optional[str] = None
    room_number: Optional[str] = None
    position_title: Optional[str] = None
    assigned_doctor_id: Optional[UUID] = None
    address: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_no: Optional[str] = None

    def to_rpc_payload(self) -> Dict[str, Any]:
        """Render as ``p_``-prefixed JSON arguments for the database function.

        The function reads the email from the identity row, so ``email`` is
        not one of its arguments. PostgREST resolves functions by argument
        names, so an extra key would not match it.
        """

        payload: Dict[str, Any] = {}
        for key, value in asdict(self).items():
            if key in _NOT_RPC_ARGUMENTS:
                continue
            if isinstance(value, (UserRole, Gender, UserStatus)):
                value = value.value
            elif isinstance(value, UUID):
                value = str(value)
            payload[f"p_{key}"] = value
        return payload


@dataclass(frozen=True)
class ProfileCreateResult:
    """Outcome reported by ``create_admin_user`` when the call itself succeeded.

    ``success`` is false when the store rejected the data internally (for
    example a uniqueness constraint); ``error`` then carries its reason.
    """

    success: bool
    user_id: Optional[UUID] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class ProvisionedAccount:
    id: UUID
    email: str
    role: UserRole
