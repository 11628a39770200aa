from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class Settings:
    """Centralized application settings.

    This keeps environment-variable handling in one place so other modules can
    depend on strongly-typed attributes instead of calling os.getenv
    directly.
    """

    # Identity store selection: "memory" (default) or "supabase".
    identity_backend: str = os.getenv("IDENTITY_BACKEND", "memory")

    # Profile store selection: "memory" (default), "sql" or "supabase".
    profile_backend: str = os.getenv("PROFILE_BACKEND", "memory")

    # Supabase project configuration. The service role key is used for admin
    # calls (user creation/deletion, the create_admin_user RPC); the anon key
    # is used to validate caller access tokens.
    supabase_url: Optional[str] = os.getenv("SUPABASE_URL")
    supabase_service_role_key: Optional[str] = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
    supabase_anon_key: Optional[str] = os.getenv("SUPABASE_ANON_KEY")
    supabase_timeout_seconds: float = float(os.getenv("SUPABASE_TIMEOUT_SECONDS", "10"))

    # Database configuration for the SQL-backed profile store.
    database_url: Optional[str] = os.getenv("DATABASE_URL")

    # CORS configuration: comma-separated origins (e.g. "https://app.example.com,https://admin.example.com").
    # Default is "*" (allow all) which is acceptable for local development but
    # should be tightened in production.
    cors_allow_origins: str = os.getenv("CORS_ALLOW_ORIGINS", "*")

    # Clinic wall-clock time as a fixed offset from UTC, in minutes. Doctor
    # availability and appointment request times are read in this zone.
    clinic_utc_offset_minutes: int = int(os.getenv("CLINIC_UTC_OFFSET_MINUTES", "480"))

    # How far ahead appointments may be booked, counted in weeks from the
    # Sunday that starts the current week.
    booking_horizon_weeks: int = int(os.getenv("BOOKING_HORIZON_WEEKS", "12"))

    log_level: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
