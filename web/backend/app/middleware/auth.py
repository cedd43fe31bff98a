"""Auth middleware -- FastAPI dependencies for settings, stores and the current user.

Authentication uses ``Authorization: Bearer <session_token>`` issued by
``POST /api/auth/login``.

Stores are shared per data directory so that every request for the same
directory goes through the same lock.  Tests point the whole app at a
temporary directory by overriding :func:`get_settings_dep`.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header

from agora.auth.models import Role, User
from agora.auth.permissions import require_role
from agora.auth.store import UserStore
from agora.auth.trust import ContextTrustEngine
from agora.communities.moderation import CommunityModerator
from agora.communities.store import CommunityStore
from agora.config import Settings, get_settings
from agora.errors import AuthenticationError
from agora.security.audit_log import AuditLogger

# Shared instances, keyed by directory
_user_stores: dict[str, UserStore] = {}
_community_stores: dict[str, CommunityStore] = {}
_audit_loggers: dict[str, AuditLogger] = {}


def get_settings_dep() -> Settings:
    """Return the process-wide settings."""
    return get_settings()


def get_store(settings: Settings = Depends(get_settings_dep)) -> UserStore:
    """Return the shared UserStore for the configured data directory."""
    key = str(settings.auth_dir)
    if key not in _user_stores:
        _user_stores[key] = UserStore(key, lock_timeout=settings.store_timeout_seconds)
    return _user_stores[key]


def get_community_store(settings: Settings = Depends(get_settings_dep)) -> CommunityStore:
    """Return the shared CommunityStore for the configured data directory."""
    key = str(settings.communities_dir)
    if key not in _community_stores:
        _community_stores[key] = CommunityStore(key, lock_timeout=settings.store_timeout_seconds)
    return _community_stores[key]


def get_audit(settings: Settings = Depends(get_settings_dep)) -> AuditLogger:
    key = str(settings.audit_dir)
    if key not in _audit_loggers:
        _audit_loggers[key] = AuditLogger(settings.audit_dir)
    return _audit_loggers[key]


def get_engine(
    store: UserStore = Depends(get_store),
    settings: Settings = Depends(get_settings_dep),
    audit: AuditLogger = Depends(get_audit),
) -> ContextTrustEngine:
    return ContextTrustEngine(store, settings, audit)


def get_moderator(
    communities: CommunityStore = Depends(get_community_store),
    users: UserStore = Depends(get_store),
    audit: AuditLogger = Depends(get_audit),
) -> CommunityModerator:
    return CommunityModerator(communities, users, audit)


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer`` header value."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token:
        return token.strip()
    return None


async def get_current_user(
    authorization: Optional[str] = Header(None),
    store: UserStore = Depends(get_store),
) -> User:
    """FastAPI dependency that extracts and validates the current user.

    Raises ``AuthenticationError`` (401) if no valid session is presented.
    """
    token = bearer_token(authorization)
    if token:
        user = store.validate_session(token)
        if user is not None:
            return user
    raise AuthenticationError("Not authenticated")


async def get_admin_user(user: User = Depends(get_current_user)) -> User:
    """Same as ``get_current_user`` but also requires the admin role (403)."""
    require_role(user, Role.admin)
    return user
