from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Optional
from uuid import UUID

from pydantic import EmailStr, TypeAdapter, ValidationError

from src.dental_backend.domain.errors import IdentityCreationFailed, InvalidRequest, ProfileCreationFailed
from src.dental_backend.domain.models.account_request import (
    AccountRequest,
    ProfileCreateParams,
    ProvisionedAccount,
)
from src.dental_backend.domain.models.user import Gender, IdentityRecord, UserRole, UserStatus
from src.dental_backend.infra.db.repositories import (
    IdentityStore,
    IdentityStoreError,
    ProfileStore,
    ProfileStoreError,
)
from src.dental_backend.services.audit.service import AuditService, audit_service
from src.dental_backend.services.authorization.service import AdminAuthorizer

logger = logging.getLogger("provisioning")

_email_adapter = TypeAdapter(EmailStr)

_ROLE_REQUIREMENTS = {
    UserRole.DENTIST: (
        ("specialization", "license_number", "clinic_assignment"),
        "Dentist role requires specialization, license number, and room assignment",
    ),
    UserRole.DENTAL_STAFF: (
        ("designation",),
        "Dental staff role requires position/designation",
    ),
    UserRole.PATIENT: (
        ("address", "emergency_contact_name", "emergency_contact_no"),
        "Patient role requires address, emergency contact name, and emergency contact number",
    ),
}


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass(frozen=True)
class ValidatedAccount:
    """An AccountRequest that passed validation, with values normalized."""

    email: str
    password: str
    first_name: str
    last_name: str
    role: UserRole
    middle_name: Optional[str]
    phone_number: Optional[str]
    gender: Gender
    status: UserStatus
    specialization: Optional[str] = None
    license_number: Optional[str] = None
    room_number: Optional[str] = None
    position_title: Optional[str] = None
    assigned_doctor_id: Optional[UUID] = None
    address: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_no: Optional[str] = None

    def profile_params(self, auth_id: UUID) -> ProfileCreateParams:
        return ProfileCreateParams(
            auth_id=auth_id,
            email=self.email,
            first_name=self.first_name,
            last_name=self.last_name,
            role=self.role,
            middle_name=self.middle_name,
            phone_number=self.phone_number,
            gender=self.gender,
            status=self.status,
            specialization=self.specialization,
            license_number=self.license_number,
            room_number=self.room_number,
            position_title=self.position_title,
            assigned_doctor_id=self.assigned_doctor_id,
            address=self.address,
            emergency_contact_name=self.emergency_contact_name,
            emergency_contact_no=self.emergency_contact_no,
        )


def validate_account_request(request: AccountRequest) -> ValidatedAccount:
    """Check universal and role-specific required fields.

    Raises InvalidRequest on the first problem. Fields that do not belong to
    the declared role are dropped here so they never reach the profile store.
    """

    email = _clean(request.email)
    password = request.temp_password or None
    first_name = _clean(request.first_name)
    last_name = _clean(request.last_name)
    role_value = _clean(request.role)
    if not (email and password and first_name and last_name and role_value):
        raise InvalidRequest("Missing required fields")

    try:
        role = UserRole(role_value)
    except ValueError:
        raise InvalidRequest(f"Invalid role: {role_value}")

    try:
        _email_adapter.validate_python(email)
    except ValidationError:
        raise InvalidRequest("Invalid email address")

    try:
        gender = Gender(_clean(request.gender) or Gender.UNSPECIFIED.value)
        status = UserStatus(_clean(request.status) or UserStatus.ACTIVE.value)
    except ValueError:
        raise InvalidRequest("Invalid gender or status")

    if role in _ROLE_REQUIREMENTS:
        fields, message = _ROLE_REQUIREMENTS[role]
        if not all(_clean(getattr(request, name)) for name in fields):
            raise InvalidRequest(message)

    account = ValidatedAccount(
        email=email,
        password=password,
        first_name=first_name,
        last_name=last_name,
        role=role,
        middle_name=_clean(request.middle_name),
        phone_number=_clean(request.phone_number),
        gender=gender,
        status=status,
    )

    if role == UserRole.DENTIST:
        return replace(
            account,
            specialization=_clean(request.specialization),
            license_number=_clean(request.license_number),
            room_number=_clean(request.clinic_assignment),
        )
    if role == UserRole.DENTAL_STAFF:
        assigned = _clean(request.assigned_doctor)
        try:
            assigned_doctor_id = UUID(assigned) if assigned else None
        except ValueError:
            raise InvalidRequest("Invalid assigned doctor reference")
        return replace(
            account,
            position_title=_clean(request.designation),
            assigned_doctor_id=assigned_doctor_id,
        )
    if role == UserRole.PATIENT:
        return replace(
            account,
            address=_clean(request.address),
            emergency_contact_name=_clean(request.emergency_contact_name),
            emergency_contact_no=_clean(request.emergency_contact_no),
        )
    return account


@dataclass(frozen=True)
class IdentityPhaseOutcome:
    identity: Optional[IdentityRecord] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class ProfilePhaseOutcome:
    succeeded: bool
    user_id: Optional[UUID] = None
    error: Optional[str] = None
    # True when the store reported a logical failure rather than raising.
    rejected_by_store: bool = False


@dataclass(frozen=True)
class CompensationOutcome:
    succeeded: bool
    error: Optional[str] = None


class ProvisioningCoordinator:
    """Creates an account across the identity and profile stores.

    The two stores share no transaction, so provisioning runs as a two-phase
    saga: create the identity, then the profile. If the profile phase fails
    in any way the identity is deleted again before the error is returned.
    A failed deletion is not reported to the caller; it is logged and
    audited as ``orphaned_identity`` for manual cleanup.
    """

    def __init__(
        self,
        identity_store: IdentityStore,
        profile_store: ProfileStore,
        authorizer: Optional[AdminAuthorizer] = None,
        audit: AuditService = audit_service,
    ) -> None:
        self._identity_store = identity_store
        self._profile_store = profile_store
        self._authorizer = authorizer or AdminAuthorizer(profile_store)
        self._audit = audit

    def provision(self, principal: Optional[IdentityRecord], request: AccountRequest) -> ProvisionedAccount:
        self._authorizer.require_admin(principal)
        account = validate_account_request(request)

        identity_outcome = self._create_identity(account)
        identity = identity_outcome.identity
        if identity is None:
            self._audit.log_event(
                action="create_user",
                resource_type="identity",
                outcome="failure",
                extra={"role": account.role.value, "phase": "identity"},
            )
            raise IdentityCreationFailed(identity_outcome.error)

        profile_outcome = self._create_profile(account.profile_params(identity.id))
        if not profile_outcome.succeeded:
            self._compensate(identity, reason=profile_outcome.error)
            self._audit.log_event(
                action="create_user",
                resource_type="user",
                resource_id=str(identity.id),
                outcome="failure",
                extra={
                    "role": account.role.value,
                    "phase": "profile",
                    "rejected_by_store": profile_outcome.rejected_by_store,
                },
            )
            raise ProfileCreationFailed(profile_outcome.error)

        self._audit.log_event(
            action="create_user",
            resource_type="user",
            resource_id=str(identity.id),
            extra={"role": account.role.value},
        )
        logger.info("Provisioned %s account %s", account.role.value, identity.id)
        return ProvisionedAccount(id=identity.id, email=identity.email, role=account.role)

    def _create_identity(self, account: ValidatedAccount) -> IdentityPhaseOutcome:
        try:
            identity = self._identity_store.create_user(
                email=account.email,
                password=account.password,
                user_metadata={
                    "first_name": account.first_name,
                    "last_name": account.last_name,
                    "role": account.role.value,
                },
            )
        except IdentityStoreError as exc:
            logger.warning("Identity creation failed: %s", exc)
            return IdentityPhaseOutcome(error=str(exc) or None)
        return IdentityPhaseOutcome(identity=identity)

    def _create_profile(self, params: ProfileCreateParams) -> ProfilePhaseOutcome:
        try:
            result = self._profile_store.create_admin_user(params)
        except ProfileStoreError as exc:
            logger.error("Profile creation failed for identity %s: %s", params.auth_id, exc)
            return ProfilePhaseOutcome(succeeded=False, error=str(exc) or None)
        except Exception:
            # Any failure after the identity exists must still be compensated.
            logger.exception("Unexpected error creating profile for identity %s", params.auth_id)
            return ProfilePhaseOutcome(succeeded=False)

        if not result.success:
            logger.error("Profile store rejected identity %s: %s", params.auth_id, result.error)
            return ProfilePhaseOutcome(succeeded=False, error=result.error, rejected_by_store=True)
        return ProfilePhaseOutcome(succeeded=True, user_id=result.user_id)

    def _compensate(self, identity: IdentityRecord, reason: Optional[str]) -> CompensationOutcome:
        try:
            self._identity_store.delete_user(identity.id)
        except Exception as exc:
            logger.error(
                "Compensation failed: identity %s has no profile and must be removed manually (%s)",
                identity.id,
                exc,
            )
            self._audit.log_event(
                action="orphaned_identity",
                resource_type="identity",
                resource_id=str(identity.id),
                outcome="orphaned",
                extra={"profile_error": reason},
            )
            return CompensationOutcome(succeeded=False, error=str(exc))

        logger.info("Rolled back identity %s after profile creation failed", identity.id)
        return CompensationOutcome(succeeded=True)
