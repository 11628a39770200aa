from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Any, Collection, Dict, List, Mapping, Optional, Type, TypeVar
from uuid import UUID

import httpx
from pydantic import BaseModel, ValidationError

from src.dental_backend.config import settings
from src.dental_backend.domain.models.account_request import ProfileCreateParams, ProfileCreateResult
from src.dental_backend.domain.models.appointment import Appointment, AppointmentStatus, AvailabilityWindow
from src.dental_backend.domain.models.user import (
    DoctorDetails,
    IdentityRecord,
    PatientDetails,
    StaffDetails,
    UserProfile,
    UserRole,
    UserStatus,
)
from src.dental_backend.infra.db.repositories import (
    AppointmentStore,
    AppointmentStoreError,
    IdentityStore,
    IdentityStoreError,
    ProfileStore,
    ProfileStoreError,
    RoleDetails,
)


logger = logging.getLogger("supabase")

_RowModel = TypeVar("_RowModel", bound=BaseModel)

_ROLE_TABLES: Dict[UserRole, tuple[str, Type[BaseModel]]] = {
    UserRole.DENTIST: ("doctors", DoctorDetails),
    UserRole.DENTAL_STAFF: ("staff", StaffDetails),
    UserRole.PATIENT: ("patient", PatientDetails),
}


@dataclass
class SupabaseConfig:
    """Connection settings for a Supabase project.

    The service role key bypasses row-level security and must only be used
    server-side. The anon key is what caller access tokens are checked
    against; it falls back to the service role key when unset.
    """

    url: str
    service_role_key: str
    anon_key: Optional[str]
    timeout_seconds: float

    @classmethod
    def from_settings(cls) -> Optional["SupabaseConfig"]:
        if not settings.supabase_url or not settings.supabase_service_role_key:
            return None
        return cls(
            url=settings.supabase_url.rstrip("/"),
            service_role_key=settings.supabase_service_role_key,
            anon_key=settings.supabase_anon_key,
            timeout_seconds=settings.supabase_timeout_seconds,
        )

    def service_headers(self) -> Dict[str, str]:
        return {"apikey": self.service_role_key, "Authorization": f"Bearer {self.service_role_key}"}


def _error_message(response: httpx.Response, fallback: str) -> str:
    # GoTrue and PostgREST disagree on the key holding the message.
    try:
        body = response.json()
    except ValueError:
        return fallback
    if isinstance(body, dict):
        for key in ("msg", "message", "error_description", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return fallback


def _json_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (date, time)):
        return value.isoformat()
    return value


class _SupabaseHttp:
    error_class: Type[Exception] = Exception

    def __init__(self, config: SupabaseConfig, client: Optional[httpx.Client] = None) -> None:
        self._config = config
        self._client = client or httpx.Client(timeout=config.timeout_seconds)

    def _request(self, method: str, path: str, *, headers: Optional[Dict[str, str]] = None, **kwargs: Any) -> httpx.Response:
        url = f"{self._config.url}{path}"
        try:
            return self._client.request(method, url, headers=headers or self._config.service_headers(), **kwargs)
        except httpx.HTTPError as exc:
            logger.exception("Error calling Supabase %s %s", method, path)
            raise self.error_class("Could not reach the backend service") from exc

    def _select(self, table: str, params: Dict[str, str]) -> List[Dict[str, Any]]:
        response = self._request("GET", f"/rest/v1/{table}", params={"select": "*", **params})
        if response.status_code >= 400:
            raise self.error_class(_error_message(response, f"Failed to query {table}"))
        try:
            rows = response.json()
        except ValueError as exc:
            raise self.error_class(f"Unexpected response while querying {table}") from exc
        return rows if isinstance(rows, list) else []

    def _write(
        self,
        method: str,
        table: str,
        params: Dict[str, str],
        body: Any = None,
        prefer: str = "return=minimal",
    ) -> None:
        headers = {**self._config.service_headers(), "Prefer": prefer}
        response = self._request(method, f"/rest/v1/{table}", headers=headers, params=params, json=body)
        if response.status_code >= 400:
            raise self.error_class(_error_message(response, f"Failed to write {table}"))

    def _parse_row(self, model: Type[_RowModel], row: Any) -> _RowModel:
        try:
            return model.model_validate(row)
        except ValidationError as exc:
            logger.error("Unreadable %s row from Supabase: %s", model.__name__, exc)
            raise self.error_class(f"Unexpected {model.__name__} data from the database") from exc

    def close(self) -> None:
        self._client.close()


class SupabaseIdentityStore(_SupabaseHttp, IdentityStore):
    """IdentityStore backed by the Supabase Auth (GoTrue) admin API."""

    error_class = IdentityStoreError

    def create_user(
        self,
        *,
        email: str,
        password: str,
        user_metadata: Optional[Mapping[str, Any]] = None,
    ) -> IdentityRecord:
        response = self._request(
            "POST",
            "/auth/v1/admin/users",
            json={
                "email": email,
                "password": password,
                "email_confirm": True,
                "user_metadata": dict(user_metadata or {}),
            },
        )
        if response.status_code >= 400:
            raise IdentityStoreError(_error_message(response, "Failed to create authentication user"))
        return self._parse_user(response)

    def delete_user(self, identity_id: UUID) -> None:
        response = self._request("DELETE", f"/auth/v1/admin/users/{identity_id}")
        if response.status_code >= 400:
            raise IdentityStoreError(_error_message(response, "Failed to delete authentication user"))

    def get_user_for_token(self, access_token: str) -> Optional[IdentityRecord]:
        api_key = self._config.anon_key or self._config.service_role_key
        response = self._request(
            "GET",
            "/auth/v1/user",
            headers={"apikey": api_key, "Authorization": f"Bearer {access_token}"},
        )
        if response.status_code in (401, 403):
            return None
        if response.status_code >= 400:
            raise IdentityStoreError(_error_message(response, "Failed to verify session"))
        return self._parse_user(response)

    @staticmethod
    def _parse_user(response: httpx.Response) -> IdentityRecord:
        try:
            body = response.json()
            # Older GoTrue versions wrap the user object.
            if isinstance(body, dict) and isinstance(body.get("user"), dict):
                body = body["user"]
            return IdentityRecord.model_validate(body)
        except (ValueError, ValidationError) as exc:
            raise IdentityStoreError("Unexpected response from the identity service") from exc


class SupabaseProfileStore(_SupabaseHttp, ProfileStore):
    """ProfileStore backed by PostgREST tables and the create_admin_user RPC.

    Calls use the service role key; the admin check happens in the
    application before any of these are reached, with row-level security in
    the database as a second line of defence.
    """

    error_class = ProfileStoreError

    def _first_profile(self, params: Dict[str, str]) -> Optional[UserProfile]:
        rows = self._select("users", {**params, "limit": "1"})
        return self._parse_row(UserProfile, rows[0]) if rows else None

    def get(self, user_id: UUID) -> Optional[UserProfile]:
        return self._first_profile({"user_id": f"eq.{user_id}"})

    def get_by_auth_id(self, auth_id: UUID) -> Optional[UserProfile]:
        return self._first_profile({"auth_id": f"eq.{auth_id}"})

    def create_admin_user(self, params: ProfileCreateParams) -> ProfileCreateResult:
        response = self._request("POST", "/rest/v1/rpc/create_admin_user", json=params.to_rpc_payload())
        if response.status_code >= 400:
            raise ProfileStoreError(_error_message(response, "Failed to create user profile"))
        try:
            result = response.json()
        except ValueError:
            result = None
        if not isinstance(result, dict) or "success" not in result:
            return ProfileCreateResult(success=True)
        if not result["success"]:
            return ProfileCreateResult(success=False, error=result.get("error") or "Failed to create user profile")
        user_id = result.get("user_id")
        return ProfileCreateResult(success=True, user_id=UUID(str(user_id)) if user_id else None)

    def list_users(
        self,
        *,
        role: Optional[UserRole] = None,
        status: Optional[UserStatus] = None,
        search: Optional[str] = None,
    ) -> List[UserProfile]:
        params: Dict[str, str] = {"order": "created_at.desc"}
        if role is not None:
            params["role"] = f"eq.{role.value}"
        if status is not None:
            params["status"] = f"eq.{status.value}"
        if search:
            # ilike would turn "*" into a wildcard, so match an escaped
            # case-insensitive regex instead.
            pattern = re.escape(search)
            quoted = pattern.replace("\\", "\\\\").replace('"', '\\"')
            params["or"] = "({})".format(
                ",".join(f'{column}.imatch."{quoted}"' for column in ("first_name", "last_name", "email"))
            )
        return [self._parse_row(UserProfile, row) for row in self._select("users", params)]

    def get_role_details(self, user_id: UUID, role: UserRole) -> Optional[RoleDetails]:
        if role not in _ROLE_TABLES:
            return None
        table, model = _ROLE_TABLES[role]
        rows = self._select(table, {"user_id": f"eq.{user_id}", "limit": "1"})
        return self._parse_row(model, rows[0]) if rows else None  # type: ignore[return-value]

    def update_user(self, user_id: UUID, changes: Dict[str, Any]) -> None:
        body = {key: _json_value(value) for key, value in changes.items()}
        body["updated_at"] = datetime.now(timezone.utc).isoformat()
        self._write("PATCH", "users", {"user_id": f"eq.{user_id}"}, body)

    def update_role_details(self, user_id: UUID, role: UserRole, changes: Dict[str, Any]) -> None:
        if role not in _ROLE_TABLES or not changes:
            return
        table, _ = _ROLE_TABLES[role]
        body = {key: _json_value(value) for key, value in changes.items()}
        self._write("PATCH", table, {"user_id": f"eq.{user_id}"}, body)

    def delete_role_details(self, user_id: UUID, role: UserRole) -> None:
        if role not in _ROLE_TABLES:
            return
        table, _ = _ROLE_TABLES[role]
        self._write("DELETE", table, {"user_id": f"eq.{user_id}"})

    def delete_user(self, user_id: UUID) -> None:
        self._write("DELETE", "users", {"user_id": f"eq.{user_id}"})


class SupabaseAppointmentStore(_SupabaseHttp, AppointmentStore):
    """AppointmentStore backed by the ``appointments`` and ``doc_availability`` tables."""

    error_class = AppointmentStoreError

    def get_appointment(self, appointment_id: UUID) -> Optional[Appointment]:
        rows = self._select("appointments", {"appointment_id": f"eq.{appointment_id}", "limit": "1"})
        return self._parse_row(Appointment, rows[0]) if rows else None

    def list_appointments(
        self,
        *,
        doctor_id: Optional[UUID] = None,
        patient_id: Optional[UUID] = None,
        statuses: Optional[Collection[AppointmentStatus]] = None,
        booked_after: Optional[datetime] = None,
        booked_before: Optional[datetime] = None,
    ) -> List[Appointment]:
        params: Dict[str, str] = {"order": "requested_start_time.asc"}
        if doctor_id is not None:
            params["doctor_id"] = f"eq.{doctor_id}"
        if patient_id is not None:
            params["patient_id"] = f"eq.{patient_id}"
        if statuses is not None:
            params["status"] = "in.({})".format(",".join(sorted(s.value for s in statuses)))
        if booked_after is not None:
            params["booked_end_time"] = f"gt.{booked_after.isoformat()}"
        if booked_before is not None:
            params["booked_start_time"] = f"lt.{booked_before.isoformat()}"
        return [self._parse_row(Appointment, row) for row in self._select("appointments", params)]

    def create_appointment(self, appointment: Appointment) -> None:
        self._write("POST", "appointments", {}, appointment.model_dump(mode="json"))

    def update_appointment(self, appointment_id: UUID, changes: Dict[str, Any]) -> None:
        body = {key: _json_value(value) for key, value in changes.items()}
        self._write("PATCH", "appointments", {"appointment_id": f"eq.{appointment_id}"}, body)

    def list_availability(
        self,
        *,
        doctor_id: Optional[UUID] = None,
        enabled_only: bool = False,
    ) -> List[AvailabilityWindow]:
        params: Dict[str, str] = {}
        if doctor_id is not None:
            params["doctor_id"] = f"eq.{doctor_id}"
        if enabled_only:
            params["is_enabled"] = "eq.true"
        return [self._parse_row(AvailabilityWindow, row) for row in self._select("doc_availability", params)]

    def upsert_availability(self, windows: List[AvailabilityWindow]) -> None:
        now = datetime.now(timezone.utc).isoformat()
        body = []
        for window in windows:
            row = window.model_dump(mode="json", exclude={"availability_id"})
            row["updated_at"] = now
            body.append(row)
        self._write(
            "POST",
            "doc_availability",
            {"on_conflict": "doctor_id,day"},
            body,
            prefer="resolution=merge-duplicates,return=minimal",
        )
