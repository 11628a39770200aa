from dataclasses import dataclass
from typing import Any, Dict, List
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient

from src.dental_backend.domain.models.account_request import ProfileCreateParams, ProfileCreateResult
from src.dental_backend.domain.models.user import IdentityRecord, UserProfile, UserRole
from src.dental_backend.infra.db.bootstrap import configure_stores
from src.dental_backend.infra.db.inmemory import InMemoryAppointmentStore, InMemoryIdentityStore, InMemoryProfileStore
from src.dental_backend.infra.db.repositories import AppointmentStoreError, IdentityStoreError, ProfileStoreError
from src.dental_backend.main import app
from src.dental_backend.services.audit.service import AuditEvent, AuditService


class FaultyIdentityStore(InMemoryIdentityStore):
    """In-memory identity store whose create/delete can be made to fail."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_create = False
        self.fail_delete = False
        self.deleted: List[Any] = []
        self.created_emails: List[str] = []

    def create_user(self, *, email, password, user_metadata=None):
        self.created_emails.append(email)
        if self.fail_create:
            raise IdentityStoreError("Identity service unavailable")
        return super().create_user(email=email, password=password, user_metadata=user_metadata)

    def delete_user(self, identity_id):
        if self.fail_delete:
            raise IdentityStoreError("Identity service unavailable")
        super().delete_user(identity_id)
        self.deleted.append(identity_id)


class FaultyProfileStore(InMemoryProfileStore):
    """In-memory profile store with switchable failure modes.

    ``create_mode`` is "ok", "raise" (transport error) or "reject"
    (logical failure); ``fail_on`` names other methods that should raise.
    """

    def __init__(self) -> None:
        super().__init__()
        self.create_mode = "ok"
        self.fail_on: set = set()
        self.create_calls: List[ProfileCreateParams] = []
        self.calls: List[str] = []

    def create_admin_user(self, params):
        self.create_calls.append(params)
        if self.create_mode == "raise":
            raise ProfileStoreError("connection reset by peer")
        if self.create_mode == "reject":
            return ProfileCreateResult(success=False, error="License number is already registered")
        return super().create_admin_user(params)

    def _maybe_fail(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail_on:
            raise ProfileStoreError(f"{name} failed")

    def delete_role_details(self, user_id, role):
        self._maybe_fail("delete_role_details")
        super().delete_role_details(user_id, role)

    def delete_user(self, user_id):
        self._maybe_fail("delete_user")
        super().delete_user(user_id)

    def list_users(self, **kwargs):
        self._maybe_fail("list_users")
        return super().list_users(**kwargs)


class FaultyAppointmentStore(InMemoryAppointmentStore):
    """In-memory appointment store whose writes fail for methods named in ``fail_on``."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_on: set = set()

    def _maybe_fail(self, name: str) -> None:
        if name in self.fail_on:
            raise AppointmentStoreError(f"{name} failed")

    def create_appointment(self, appointment):
        self._maybe_fail("create_appointment")
        super().create_appointment(appointment)

    def upsert_availability(self, windows):
        self._maybe_fail("upsert_availability")
        super().upsert_availability(windows)


class RecordingAuditService(AuditService):
    def __init__(self) -> None:
        self.events: List[AuditEvent] = []

    def log_event(self, **kwargs: Any) -> AuditEvent:
        event = super().log_event(**kwargs)
        self.events.append(event)
        return event

    def actions(self) -> List[str]:
        return [event.action for event in self.events]


@dataclass
class SeededUser:
    identity: IdentityRecord
    profile: UserProfile
    token: str

    @property
    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


_ROLE_DEFAULTS: Dict[UserRole, Dict[str, Any]] = {
    UserRole.DENTIST: {"specialization": "Orthodontics", "room_number": "Room 2"},
    UserRole.DENTAL_STAFF: {"position_title": "Dental Hygienist"},
    UserRole.PATIENT: {
        "address": "12 Harbour Street",
        "emergency_contact_name": "Sam Reyes",
        "emergency_contact_no": "+61 400 000 000",
    },
}


@pytest.fixture
def identity_store() -> FaultyIdentityStore:
    return FaultyIdentityStore()


@pytest.fixture
def profile_store() -> FaultyProfileStore:
    return FaultyProfileStore()


@pytest.fixture
def appointment_store() -> FaultyAppointmentStore:
    return FaultyAppointmentStore()


@pytest.fixture(autouse=True)
def active_stores(identity_store, profile_store, appointment_store):
    configure_stores(
        identity_store=identity_store,
        profile_store=profile_store,
        appointment_store=appointment_store,
    )
    yield


@pytest.fixture
def audit() -> RecordingAuditService:
    return RecordingAuditService()


@pytest.fixture
def seed_user(identity_store, profile_store):
    """Factory creating an identity, its profile and an access token directly in the stores."""

    def _seed(
        role: UserRole = UserRole.ADMIN,
        *,
        email: str | None = None,
        first_name: str = "Alex",
        last_name: str = "Morgan",
        **details: Any,
    ) -> SeededUser:
        email = email or f"{role.value}-{uuid4().hex[:8]}@example.com"
        identity = InMemoryIdentityStore.create_user(identity_store, email=email, password="Temp#12345")
        fields = dict(_ROLE_DEFAULTS.get(role, {}))
        if role == UserRole.DENTIST:
            fields["license_number"] = f"LIC-{uuid4().hex[:6]}"
        fields.update(details)
        params = ProfileCreateParams(
            auth_id=identity.id,
            email=identity.email,
            first_name=first_name,
            last_name=last_name,
            role=role,
            **fields,
        )
        result = InMemoryProfileStore.create_admin_user(profile_store, params)
        assert result.success, result.error
        profile = profile_store.get(result.user_id)
        token = identity_store.issue_access_token(identity.id)
        return SeededUser(identity=identity, profile=profile, token=token)

    return _seed


@pytest.fixture
async def client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
