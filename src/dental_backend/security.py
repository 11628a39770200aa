from __future__ import annotations

import hashlib
from contextvars import ContextVar
from typing import Optional

from fastapi import Depends, Security
from fastapi.concurrency import run_in_threadpool
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from src.dental_backend.domain.errors import InternalError
from src.dental_backend.domain.models.user import IdentityRecord, UserProfile
from src.dental_backend.infra.db.bootstrap import get_identity_store, get_profile_store
from src.dental_backend.infra.db.repositories import IdentityStoreError
from src.dental_backend.services.authorization.service import AdminAuthorizer

# The caller's access token is expected as "Authorization: Bearer <token>".
_bearer_scheme = HTTPBearer(auto_error=False)

# Context variable storing a stable, non-raw identifier for the current caller
# (a hash of the identity id). The audit logger attaches it to events
# without writing the identity id itself into every log line.
_current_subject: ContextVar[Optional[str]] = ContextVar("current_subject", default=None)


def get_current_subject() -> Optional[str]:
    """Return the current subject identifier, if any.

    This is set by ``get_current_principal`` once a session token has been
    resolved to an identity.
    """

    return _current_subject.get()


def subject_for(identity_id: object) -> str:
    return "user:" + hashlib.sha256(str(identity_id).encode("utf-8")).hexdigest()[:16]


async def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(_bearer_scheme),
) -> Optional[IdentityRecord]:
    """Resolve the bearer token to an identity, or None when there is no valid session.

    Rejecting anonymous callers is left to the services, which raise
    Unauthorized through the authorizer.
    """

    _current_subject.set(None)
    if credentials is None or not credentials.credentials:
        return None

    identity_store = get_identity_store()
    try:
        identity = await run_in_threadpool(identity_store.get_user_for_token, credentials.credentials)
    except IdentityStoreError:
        raise InternalError("Failed to verify session")

    if identity is not None:
        _current_subject.set(subject_for(identity.id))
    return identity


def get_authorizer() -> AdminAuthorizer:
    return AdminAuthorizer(get_profile_store())


async def get_current_profile(
    principal: Optional[IdentityRecord] = Depends(get_current_principal),
    authorizer: AdminAuthorizer = Depends(get_authorizer),
) -> UserProfile:
    """Profile of the signed-in caller; 401 without a session, 403 without a profile."""

    return await run_in_threadpool(authorizer.require_profile, principal)
