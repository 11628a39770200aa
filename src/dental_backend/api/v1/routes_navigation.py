from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from src.dental_backend.domain.errors import NotFound
from src.dental_backend.domain.models.route_definition import RouteDefinition
from src.dental_backend.domain.models.user import UserProfile, UserRole
from src.dental_backend.security import get_current_profile
from src.dental_backend.services.navigation.service import normalize_path, route_table


router = APIRouter(prefix="/navigation", tags=["navigation"])


class NavigationResponse(BaseModel):
    role: UserRole
    routes: List[RouteDefinition]


class AuthorizationResponse(BaseModel):
    path: str
    allowed: bool
    route: Optional[RouteDefinition] = None


@router.get("", response_model=NavigationResponse)
async def get_navigation(profile: UserProfile = Depends(get_current_profile)) -> NavigationResponse:
    """Sidebar entries for the caller's role, in table order."""

    return NavigationResponse(role=profile.role, routes=route_table.visible_routes(profile.role))


@router.get("/resolve", response_model=RouteDefinition)
async def resolve_route(path: str = Query(...)) -> RouteDefinition:
    route = route_table.resolve(path)
    if route is None:
        raise NotFound(f"No route matches {normalize_path(path)}")
    return route


@router.get("/authorize", response_model=AuthorizationResponse)
async def authorize_route(
    path: str = Query(...),
    profile: UserProfile = Depends(get_current_profile),
) -> AuthorizationResponse:
    """Guard check for a page: unmapped paths are denied."""

    return AuthorizationResponse(
        path=normalize_path(path),
        allowed=route_table.authorize(path, profile.role),
        route=route_table.resolve(path),
    )
