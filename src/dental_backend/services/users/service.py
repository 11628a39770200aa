from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from src.dental_backend.domain.errors import Forbidden, InternalError, InvalidRequest
from src.dental_backend.domain.models.account_request import UserUpdateRequest
from src.dental_backend.domain.models.user import (
    DoctorDetails,
    IdentityRecord,
    StaffDetails,
    UserProfile,
    UserRole,
    UserStatus,
)
from src.dental_backend.infra.db.repositories import (
    IdentityStore,
    IdentityStoreError,
    ProfileStore,
    ProfileStoreError,
)
from src.dental_backend.services.audit.service import AuditService, audit_service
from src.dental_backend.services.authorization.service import AdminAuthorizer

logger = logging.getLogger("admin_users")

_USER_NOT_VISIBLE = "Forbidden - Admin access required or user not found"

# Columns that may not be cleared through an update.
_NON_NULLABLE = frozenset(
    {
        "first_name",
        "last_name",
        "gender",
        "status",
        "specialization",
        "license_number",
        "room_number",
        "position_title",
        "address",
        "emergency_contact_name",
        "emergency_contact_no",
    }
)


def _parse_filter(enum_cls: type, value: Optional[str]) -> Any:
    """Map a query-string filter onto an enum member.

    ``None``, empty and ``"all"`` mean no filter. Unknown values raise
    ValueError.
    """

    if not value or value == "all":
        return None
    return enum_cls(value)


def _parse_user_id(raw: Optional[str]) -> UUID:
    if not raw:
        raise InvalidRequest("User ID is required")
    try:
        return UUID(raw)
    except ValueError:
        raise InvalidRequest("Invalid user ID")


class AdminUserService:
    """Admin-only listing, inspection, update and deletion of accounts."""

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

    def list_users(
        self,
        principal: Optional[IdentityRecord],
        *,
        role: Optional[str] = None,
        status: Optional[str] = None,
        search: Optional[str] = None,
    ) -> List[UserProfile]:
        self._authorizer.require_admin(principal)

        try:
            role_filter = _parse_filter(UserRole, role)
            status_filter = _parse_filter(UserStatus, status)
        except ValueError:
            # An unknown role or status matches no rows.
            return []

        try:
            users = self._profile_store.list_users(
                role=role_filter,
                status=status_filter,
                search=search.strip() if search and search.strip() else None,
            )
        except ProfileStoreError:
            logger.exception("Listing users failed")
            raise Forbidden()

        self._audit.log_event(
            action="list_users",
            resource_type="user",
            extra={"count": len(users)},
        )
        return users

    def get_user(self, principal: Optional[IdentityRecord], user_id: UUID) -> Dict[str, Any]:
        """Return the profile plus its role detail row as ``roleData``.

        Detail column names are also exposed under the names the create
        form uses (``clinic_assignment``, ``designation``, ``assigned_doctor``).
        """

        self._authorizer.require_admin(principal)
        profile = self._load_visible(user_id)

        try:
            details = self._profile_store.get_role_details(user_id, profile.role)
        except ProfileStoreError:
            logger.exception("Loading role details failed for user %s", user_id)
            details = None

        role_data: Optional[Dict[str, Any]] = None
        if details is not None:
            role_data = details.model_dump(mode="json")
            if isinstance(details, DoctorDetails):
                role_data["clinic_assignment"] = details.room_number
            elif isinstance(details, StaffDetails):
                role_data["designation"] = details.position_title
                role_data["assigned_doctor"] = str(details.doctor_id) if details.doctor_id else None

        self._audit.log_event(action="get_user", resource_type="user", resource_id=str(user_id))
        return {**profile.model_dump(mode="json"), "roleData": role_data}

    def update_user(
        self,
        principal: Optional[IdentityRecord],
        user_id: UUID,
        payload: UserUpdateRequest,
    ) -> None:
        self._authorizer.require_admin(principal)
        profile = self._load_visible(user_id)

        profile_changes = payload.profile_changes()
        role_changes = payload.role_changes(profile.role)
        cleared = sorted(
            key for key, value in {**profile_changes, **role_changes}.items() if value is None and key in _NON_NULLABLE
        )
        if cleared:
            raise InvalidRequest(f"Fields cannot be empty: {', '.join(cleared)}")

        try:
            self._profile_store.update_user(user_id, profile_changes)
        except ProfileStoreError:
            logger.exception("Updating user %s failed", user_id)
            raise Forbidden("Forbidden - Admin access required or update failed")

        if role_changes:
            try:
                self._profile_store.update_role_details(user_id, profile.role, role_changes)
            except ProfileStoreError:
                logger.exception("Updating role details for user %s failed", user_id)
                raise InternalError("Failed to update role details")

        self._audit.log_event(
            action="update_user",
            resource_type="user",
            resource_id=str(user_id),
            extra={"fields": sorted({**profile_changes, **role_changes})},
        )

    def delete_user(self, principal: Optional[IdentityRecord], raw_user_id: Optional[str]) -> UUID:
        """Delete detail row, profile row and identity, in that order.

        A failure before the identity step leaves the identity untouched. A
        failure at the identity step leaves an orphaned identity, which is
        audited and reported as an error.
        """

        self._authorizer.require_authenticated(principal)
        user_id = _parse_user_id(raw_user_id)
        self._authorizer.require_admin(principal)
        profile = self._load_visible(user_id)

        try:
            self._profile_store.delete_role_details(user_id, profile.role)
            self._profile_store.delete_user(user_id)
        except ProfileStoreError:
            logger.exception("Deleting profile rows for user %s failed", user_id)
            self._audit.log_event(
                action="delete_user",
                resource_type="user",
                resource_id=str(user_id),
                outcome="failure",
            )
            raise InternalError("Failed to delete user")

        try:
            self._identity_store.delete_user(profile.auth_id)
        except IdentityStoreError as exc:
            logger.error("Profile %s deleted but identity %s was not: %s", user_id, profile.auth_id, exc)
            self._audit.log_event(
                action="orphaned_identity",
                resource_type="identity",
                resource_id=str(profile.auth_id),
                outcome="orphaned",
                extra={"user_id": str(user_id)},
            )
            raise InternalError("Failed to delete authentication user")

        self._audit.log_event(
            action="delete_user",
            resource_type="user",
            resource_id=str(user_id),
            extra={"role": profile.role.value},
        )
        return user_id

    def debug_snapshot(self, principal: Optional[IdentityRecord]) -> Dict[str, Any]:
        """The caller's identity and profile side by side, for manual checks."""

        principal = self._authorizer.require_authenticated(principal)
        profile: Optional[UserProfile] = None
        db_error: Optional[str] = None
        try:
            profile = self._profile_store.get_by_auth_id(principal.id)
        except ProfileStoreError as exc:
            db_error = str(exc)

        return {
            "auth": {
                "id": str(principal.id),
                "email": principal.email,
                "emailConfirmed": principal.email_confirmed_at.isoformat() if principal.email_confirmed_at else None,
            },
            "database": profile.model_dump(mode="json") if profile else None,
            "dbError": db_error,
            "match": profile is not None and profile.auth_id == principal.id,
            "isAdmin": profile is not None and profile.role == UserRole.ADMIN,
        }

    def _load_visible(self, user_id: UUID) -> UserProfile:
        try:
            profile = self._profile_store.get(user_id)
        except ProfileStoreError:
            logger.exception("Loading user %s failed", user_id)
            raise Forbidden(_USER_NOT_VISIBLE)
        if profile is None:
            raise Forbidden(_USER_NOT_VISIBLE)
        return profile
