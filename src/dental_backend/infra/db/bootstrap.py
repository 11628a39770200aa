from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

from src.dental_backend.config import settings
from src.dental_backend.infra.db.inmemory import (
    InMemoryAppointmentStore,
    InMemoryIdentityStore,
    InMemoryProfileStore,
)
from src.dental_backend.infra.db.models import Base
from src.dental_backend.infra.db.repositories import AppointmentStore, IdentityStore, ProfileStore
from src.dental_backend.infra.db.session import (
    SessionFactory,
    create_sqlalchemy_engine,
    create_sqlalchemy_session_factory,
)
from src.dental_backend.infra.db.sql_appointments import SqlAppointmentStore
from src.dental_backend.infra.db.sql_profiles import SqlProfileStore
from src.dental_backend.infra.db.supabase import (
    SupabaseAppointmentStore,
    SupabaseConfig,
    SupabaseIdentityStore,
    SupabaseProfileStore,
)

logger = logging.getLogger("bootstrap")

# Active store singletons. They start in-memory so tests and local
# development work without any external service.
_identity_store: IdentityStore = InMemoryIdentityStore()
_profile_store: ProfileStore = InMemoryProfileStore()
_appointment_store: AppointmentStore = InMemoryAppointmentStore()


def get_identity_store() -> IdentityStore:
    return _identity_store


def get_profile_store() -> ProfileStore:
    return _profile_store


def get_appointment_store() -> AppointmentStore:
    return _appointment_store


def configure_stores(
    identity_store: Optional[IdentityStore] = None,
    profile_store: Optional[ProfileStore] = None,
    appointment_store: Optional[AppointmentStore] = None,
) -> None:
    """Replace the active stores; omitted stores are left as they are."""

    global _identity_store, _profile_store, _appointment_store
    if identity_store is not None:
        _identity_store = identity_store
    if profile_store is not None:
        _profile_store = profile_store
    if appointment_store is not None:
        _appointment_store = appointment_store


def _build_identity_store() -> Optional[IdentityStore]:
    backend = settings.identity_backend.lower()
    if backend == "memory":
        return None
    if backend == "supabase":
        config = SupabaseConfig.from_settings()
        if config is None:
            logger.error("IDENTITY_BACKEND=supabase but SUPABASE_URL/SUPABASE_SERVICE_ROLE_KEY are missing")
            return None
        return SupabaseIdentityStore(config)
    logger.error("Unknown IDENTITY_BACKEND %r; keeping the in-memory identity store", backend)
    return None


@lru_cache(maxsize=None)
def _sql_session_factory(database_url: str) -> SessionFactory:
    # One engine per URL, so profiles and appointments share a database.
    engine = create_sqlalchemy_engine(database_url)
    # Convenience for fresh databases; real deployments run migrations.
    Base.metadata.create_all(engine)
    return create_sqlalchemy_session_factory(engine)


def _build_profile_store() -> Optional[ProfileStore]:
    backend = settings.profile_backend.lower()
    if backend == "memory":
        return None
    if backend == "sql":
        if not settings.database_url:
            logger.error("PROFILE_BACKEND=sql but DATABASE_URL is not set")
            return None
        return SqlProfileStore(_sql_session_factory(settings.database_url))
    if backend == "supabase":
        config = SupabaseConfig.from_settings()
        if config is None:
            logger.error("PROFILE_BACKEND=supabase but SUPABASE_URL/SUPABASE_SERVICE_ROLE_KEY are missing")
            return None
        return SupabaseProfileStore(config)
    logger.error("Unknown PROFILE_BACKEND %r; keeping the in-memory profile store", backend)
    return None


def _build_appointment_store() -> Optional[AppointmentStore]:
    """Appointments live next to the profiles, so PROFILE_BACKEND selects both."""

    backend = settings.profile_backend.lower()
    if backend == "sql" and settings.database_url:
        return SqlAppointmentStore(_sql_session_factory(settings.database_url))
    if backend == "supabase":
        config = SupabaseConfig.from_settings()
        if config is not None:
            return SupabaseAppointmentStore(config)
    return None


def init_stores() -> None:  # pragma: no cover - side-effectful wiring
    """Switch the in-memory stores to the configured backends.

    A backend that is misconfigured is logged and left in-memory rather than
    failing startup.
    """

    configure_stores(
        identity_store=_build_identity_store(),
        profile_store=_build_profile_store(),
        appointment_store=_build_appointment_store(),
    )
    logger.info(
        "Stores initialised: identity=%s profile=%s appointments=%s",
        type(_identity_store).__name__,
        type(_profile_store).__name__,
        type(_appointment_store).__name__,
    )
