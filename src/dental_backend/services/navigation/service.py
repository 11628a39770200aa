from __future__ import annotations

from typing import List, Optional, Sequence

from src.dental_backend.domain.models.route_definition import ROUTE_DEFINITIONS, RouteDefinition
from src.dental_backend.domain.models.user import UserRole


def normalize_path(path: str) -> str:
    """Strip a single trailing slash; the root path stays ``/``."""

    if not path or path == "/":
        return "/"
    return path[:-1] if path.endswith("/") else path


class RouteTable:
    """Ordered, immutable lookup of dashboard routes.

    Lookups are pure functions of the path and the table given at
    construction; nothing here is mutated after ``__init__``.
    """

    def __init__(self, routes: Sequence[RouteDefinition]) -> None:
        self._routes = tuple(routes)

    @property
    def routes(self) -> tuple[RouteDefinition, ...]:
        return self._routes

    @staticmethod
    def _matches(route: RouteDefinition, normalized_path: str) -> bool:
        route_path = normalize_path(route.path)
        if route.exact:
            return normalized_path == route_path
        if route_path == "/":
            return True
        return normalized_path == route_path or normalized_path.startswith(f"{route_path}/")

    def resolve(self, path: str) -> Optional[RouteDefinition]:
        """Return the first route matching ``path``, or ``None`` if unmapped."""

        normalized = normalize_path(path)
        for route in self._routes:
            if self._matches(route, normalized):
                return route
        return None

    def authorize(self, path: str, role: UserRole) -> bool:
        # Unmapped paths are denied.
        route = self.resolve(path)
        if route is None:
            return False
        return role in route.allowed_roles

    def visible_routes(self, role: UserRole) -> List[RouteDefinition]:
        return [route for route in self._routes if route.show_in_navigation and role in route.allowed_roles]


route_table = RouteTable(ROUTE_DEFINITIONS)
