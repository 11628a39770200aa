from __future__ import annotations

from typing import FrozenSet, Tuple

from pydantic import BaseModel, ConfigDict

from src.dental_backend.domain.models.user import ALL_ROLES, UserRole


class RouteDefinition(BaseModel):
    """A dashboard page and the roles allowed to see it.

    ``exact`` routes match only their own path; non-exact (prefix) routes
    also match any path nested below them.
    """

    model_config = ConfigDict(frozen=True)

    label: str
    path: str
    icon: str
    allowed_roles: FrozenSet[UserRole]
    show_in_navigation: bool = True
    exact: bool = True


# Declaration order is match precedence: the first matching entry wins.
ROUTE_DEFINITIONS: Tuple[RouteDefinition, ...] = (
    RouteDefinition(
        label="Overview",
        path="/dashboard",
        icon="home",
        allowed_roles=ALL_ROLES,
    ),
    RouteDefinition(
        label="Appointments",
        path="/appointments/patient",
        icon="calendar",
        allowed_roles=frozenset({UserRole.PATIENT}),
    ),
    RouteDefinition(
        label="Admin Appointments",
        path="/appointments/admin",
        icon="calendar",
        allowed_roles=frozenset({UserRole.DENTIST, UserRole.DENTAL_STAFF}),
    ),
    RouteDefinition(
        label="Patients",
        path="/patients",
        icon="users",
        allowed_roles=frozenset({UserRole.DENTIST, UserRole.DENTAL_STAFF}),
    ),
    RouteDefinition(
        label="Records",
        path="/records",
        icon="file-text",
        allowed_roles=frozenset({UserRole.PATIENT}),
    ),
    RouteDefinition(
        label="Settings",
        path="/settings",
        icon="settings",
        allowed_roles=ALL_ROLES,
        exact=False,
    ),
)
