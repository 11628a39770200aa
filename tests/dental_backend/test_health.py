from fastapi import status

from src.dental_backend.config import settings
from src.dental_backend.infra.db import bootstrap
from src.dental_backend.infra.db.sql_appointments import SqlAppointmentStore
from src.dental_backend.infra.db.sql_profiles import SqlProfileStore
from src.dental_backend.infra.db.supabase import SupabaseAppointmentStore, SupabaseIdentityStore


async def test_root_health_check(client):
    response = await client.get("/health")
    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"status": "ok"}


async def test_v1_health_check(client):
    response = await client.get("/api/v1/health")
    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"status": "ok", "version": "v1"}


def test_memory_backends_keep_current_stores(monkeypatch):
    monkeypatch.setattr(settings, "identity_backend", "memory")
    monkeypatch.setattr(settings, "profile_backend", "memory")

    assert bootstrap._build_identity_store() is None
    assert bootstrap._build_profile_store() is None
    assert bootstrap._build_appointment_store() is None


def test_sql_profile_backend(monkeypatch):
    monkeypatch.setattr(settings, "profile_backend", "sql")
    monkeypatch.setattr(settings, "database_url", "sqlite://")

    assert isinstance(bootstrap._build_profile_store(), SqlProfileStore)
    assert isinstance(bootstrap._build_appointment_store(), SqlAppointmentStore)


def test_misconfigured_backends_fall_back(monkeypatch):
    monkeypatch.setattr(settings, "identity_backend", "supabase")
    monkeypatch.setattr(settings, "supabase_url", None)
    monkeypatch.setattr(settings, "profile_backend", "sql")
    monkeypatch.setattr(settings, "database_url", None)

    assert bootstrap._build_identity_store() is None
    assert bootstrap._build_profile_store() is None
    assert bootstrap._build_appointment_store() is None

    monkeypatch.setattr(settings, "profile_backend", "cassandra")
    assert bootstrap._build_profile_store() is None


def test_supabase_identity_backend(monkeypatch):
    monkeypatch.setattr(settings, "identity_backend", "supabase")
    monkeypatch.setattr(settings, "supabase_url", "https://clinic.supabase.co/")
    monkeypatch.setattr(settings, "supabase_service_role_key", "service-key")

    store = bootstrap._build_identity_store()
    assert isinstance(store, SupabaseIdentityStore)
    store.close()


def test_supabase_profile_backend_also_serves_appointments(monkeypatch):
    monkeypatch.setattr(settings, "profile_backend", "supabase")
    monkeypatch.setattr(settings, "supabase_url", "https://clinic.supabase.co")
    monkeypatch.setattr(settings, "supabase_service_role_key", "service-key")

    store = bootstrap._build_appointment_store()
    assert isinstance(store, SupabaseAppointmentStore)
    store.close()
