from __future__ import annotations

import logging
from typing import Collection, Optional

from src.dental_backend.domain.errors import Forbidden, Unauthorized
from src.dental_backend.domain.models.user import IdentityRecord, UserProfile, UserRole
from src.dental_backend.infra.db.repositories import ProfileStore, ProfileStoreError

logger = logging.getLogger("authorization")


class AdminAuthorizer:
    """The one place that decides who may call admin operations.

    The profile store may enforce row-level security on top of this, but
    services only ever branch on what the authorizer says.
    """

    def __init__(self, profile_store: ProfileStore) -> None:
        self._profile_store = profile_store

    @staticmethod
    def require_authenticated(principal: Optional[IdentityRecord]) -> IdentityRecord:
        if principal is None:
            raise Unauthorized()
        return principal

    def require_profile(self, principal: Optional[IdentityRecord]) -> UserProfile:
        """Return the caller's profile, raising Forbidden if it cannot be read."""

        principal = self.require_authenticated(principal)
        try:
            profile = self._profile_store.get_by_auth_id(principal.id)
        except ProfileStoreError:
            logger.exception("Could not load profile for identity %s", principal.id)
            raise Forbidden("Forbidden - Unable to verify user role")
        if profile is None:
            raise Forbidden("Forbidden - No profile found for this account")
        return profile

    def require_role(
        self,
        principal: Optional[IdentityRecord],
        roles: Collection[UserRole],
        message: str = "Forbidden - Insufficient role",
    ) -> UserProfile:
        profile = self.require_profile(principal)
        if profile.role not in roles:
            raise Forbidden(message)
        return profile

    def require_admin(self, principal: Optional[IdentityRecord]) -> UserProfile:
        profile = self.require_profile(principal)
        if profile.role != UserRole.ADMIN:
            raise Forbidden()
        return profile
