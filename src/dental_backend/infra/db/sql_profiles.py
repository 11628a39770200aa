from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from src.dental_backend.domain.models.account_request import ProfileCreateParams, ProfileCreateResult
from src.dental_backend.domain.models.user import UserProfile, UserRole, UserStatus
from src.dental_backend.infra.db.models import (
    ROLE_DETAIL_MODELS,
    DoctorORM,
    PatientORM,
    StaffORM,
    UserORM,
)
from src.dental_backend.infra.db.repositories import ProfileStore, ProfileStoreError, RoleDetails
from src.dental_backend.infra.db.session import SessionFactory

logger = logging.getLogger("profiles.sql")


def _escape_like(text: str) -> str:
    """Escape LIKE wildcards so ``text`` matches literally."""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _column_values(changes: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value.value if isinstance(value, Enum) else value for key, value in changes.items()}


class SqlProfileStore(ProfileStore):
    """SQL-backed ProfileStore.

    ``create_admin_user`` writes the ``users`` row and the role detail row in
    a single transaction. Integrity violations come back as a logical failure
    (``success=False``); any other database error raises ProfileStoreError.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def get(self, user_id: UUID) -> Optional[UserProfile]:
        session = self._session_factory()
        try:
            orm = session.get(UserORM, user_id)
            return orm.to_domain() if orm is not None else None
        except SQLAlchemyError as exc:
            raise ProfileStoreError("Failed to load user profile") from exc
        finally:
            session.close()

    def get_by_auth_id(self, auth_id: UUID) -> Optional[UserProfile]:
        session = self._session_factory()
        try:
            orm = session.scalars(select(UserORM).where(UserORM.auth_id == auth_id)).first()
            return orm.to_domain() if orm is not None else None
        except SQLAlchemyError as exc:
            raise ProfileStoreError("Failed to load user profile") from exc
        finally:
            session.close()

    def create_admin_user(self, params: ProfileCreateParams) -> ProfileCreateResult:
        session = self._session_factory()
        try:
            existing = session.scalars(select(UserORM).where(UserORM.auth_id == params.auth_id)).first()
            if existing is not None:
                return ProfileCreateResult(success=False, error="A profile already exists for this account")
            if params.role == UserRole.DENTIST:
                duplicate = session.scalars(
                    select(DoctorORM).where(DoctorORM.license_number == params.license_number)
                ).first()
                if duplicate is not None:
                    return ProfileCreateResult(success=False, error="License number is already registered")
            if params.assigned_doctor_id is not None and session.get(DoctorORM, params.assigned_doctor_id) is None:
                return ProfileCreateResult(success=False, error="Assigned doctor does not exist")

            now = datetime.now(timezone.utc)
            user_id = uuid4()
            session.add(
                UserORM(
                    user_id=user_id,
                    auth_id=params.auth_id,
                    email=params.email,
                    first_name=params.first_name,
                    middle_name=params.middle_name,
                    last_name=params.last_name,
                    phone_number=params.phone_number,
                    gender=params.gender.value,
                    role=params.role.value,
                    status=params.status.value,
                    created_at=now,
                    updated_at=now,
                )
            )
            # The detail row references users.user_id.
            session.flush()
            if params.role == UserRole.DENTIST:
                session.add(
                    DoctorORM(
                        user_id=user_id,
                        specialization=params.specialization,
                        license_number=params.license_number,
                        room_number=params.room_number,
                    )
                )
            elif params.role == UserRole.DENTAL_STAFF:
                session.add(
                    StaffORM(
                        user_id=user_id,
                        position_title=params.position_title,
                        doctor_id=params.assigned_doctor_id,
                    )
                )
            elif params.role == UserRole.PATIENT:
                session.add(
                    PatientORM(
                        user_id=user_id,
                        address=params.address,
                        emergency_contact_name=params.emergency_contact_name,
                        emergency_contact_no=params.emergency_contact_no,
                    )
                )
            session.commit()
            return ProfileCreateResult(success=True, user_id=user_id)
        except IntegrityError:
            session.rollback()
            logger.warning("create_admin_user violated a constraint for auth_id=%s", params.auth_id, exc_info=True)
            return ProfileCreateResult(success=False, error="User profile violates a database constraint")
        except SQLAlchemyError as exc:
            session.rollback()
            raise ProfileStoreError("Database error while creating user profile") from exc
        finally:
            session.close()

    def list_users(
        self,
        *,
        role: Optional[UserRole] = None,
        status: Optional[UserStatus] = None,
        search: Optional[str] = None,
    ) -> List[UserProfile]:
        session = self._session_factory()
        try:
            query = select(UserORM)
            if role is not None:
                query = query.where(UserORM.role == role.value)
            if status is not None:
                query = query.where(UserORM.status == status.value)
            if search:
                pattern = f"%{_escape_like(search)}%"
                query = query.where(
                    or_(
                        UserORM.first_name.ilike(pattern, escape="\\"),
                        UserORM.last_name.ilike(pattern, escape="\\"),
                        UserORM.email.ilike(pattern, escape="\\"),
                    )
                )
            query = query.order_by(UserORM.created_at.desc())
            return [orm.to_domain() for orm in session.scalars(query).all()]
        except SQLAlchemyError as exc:
            raise ProfileStoreError("Failed to list users") from exc
        finally:
            session.close()

    def get_role_details(self, user_id: UUID, role: UserRole) -> Optional[RoleDetails]:
        model = ROLE_DETAIL_MODELS.get(role)
        if model is None:
            return None
        session = self._session_factory()
        try:
            orm = session.get(model, user_id)
            return orm.to_domain() if orm is not None else None
        except SQLAlchemyError as exc:
            raise ProfileStoreError("Failed to load role details") from exc
        finally:
            session.close()

    def update_user(self, user_id: UUID, changes: Dict[str, Any]) -> None:
        values = _column_values(changes)
        values["updated_at"] = datetime.now(timezone.utc)
        self._execute(update(UserORM).where(UserORM.user_id == user_id).values(**values), "update user")

    def update_role_details(self, user_id: UUID, role: UserRole, changes: Dict[str, Any]) -> None:
        model = ROLE_DETAIL_MODELS.get(role)
        if model is None or not changes:
            return
        self._execute(
            update(model).where(model.user_id == user_id).values(**_column_values(changes)),
            "update role details",
        )

    def delete_role_details(self, user_id: UUID, role: UserRole) -> None:
        model = ROLE_DETAIL_MODELS.get(role)
        if model is None:
            return
        self._execute(delete(model).where(model.user_id == user_id), "delete role details")

    def delete_user(self, user_id: UUID) -> None:
        self._execute(delete(UserORM).where(UserORM.user_id == user_id), "delete user")

    def _execute(self, statement: Any, description: str) -> None:
        session = self._session_factory()
        try:
            session.execute(statement)
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise ProfileStoreError(f"Failed to {description}") from exc
        finally:
            session.close()
