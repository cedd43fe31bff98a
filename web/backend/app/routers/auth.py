"""Auth router -- registration, login, sessions, login contexts and preferences."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, status

from agora.auth.context import context_from_request
from agora.auth.models import ContextData, User, UserContext
from agora.auth.store import UserStore
from agora.auth.trust import ContextTrustEngine
from web.backend.app.middleware.auth import bearer_token, get_current_user, get_engine, get_store
from web.backend.app.models.api import (
    ContextDataResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    PreferenceRequest,
    PreferenceResponse,
    RegisterRequest,
    TrackedContextResponse,
    UserContextResponse,
    UserResponse,
)

router = APIRouter(prefix="/api/auth", tags=["auth"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _user_response(u: User) -> UserResponse:
    """Convert a domain User to a Pydantic UserResponse."""
    return UserResponse(id=u.id, name=u.name, email=u.email, role=u.role.value, created_at=u.created_at)


def _request_context(request: Request, body_context: Optional[dict]) -> ContextData:
    """Client-supplied fields win; the rest are derived from the request."""
    derived = context_from_request(request.headers, request.client.host if request.client else None)
    if body_context:
        return ContextData.from_mapping(body_context).filled_from(derived)
    return derived


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else ""


# ---------------------------------------------------------------------------
# Accounts and sessions
# ---------------------------------------------------------------------------


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register(
    body: RegisterRequest,
    request: Request,
    engine: ContextTrustEngine = Depends(get_engine),
):
    """Create an account; the registration context becomes the first trusted context."""
    user = engine.register(body.name, body.email, body.password, _request_context(request, body.context))
    return _user_response(user)


@router.post("/login", response_model=LoginResponse)
async def login(
    body: LoginRequest,
    request: Request,
    engine: ContextTrustEngine = Depends(get_engine),
):
    """Log in with email and password.

    Returns 401 with ``Invalid credentials``, ``Suspicious login attempt
    detected`` or a blocked-device message when the attempt is refused.
    """
    result = engine.login(
        body.email,
        body.password,
        _request_context(request, body.context),
        ip_address=_client_ip(request),
    )
    return LoginResponse(
        token=result.session.token,
        expires_at=result.session.expires_at,
        trusted_path=result.trusted_path,
        user=_user_response(result.user),
    )


@router.post("/logout", response_model=MessageResponse)
async def logout(
    authorization: Optional[str] = Header(None),
    user: User = Depends(get_current_user),
    store: UserStore = Depends(get_store),
):
    """Invalidate the current session token."""
    store.delete_session(bearer_token(authorization) or "")
    return MessageResponse(message="Logged out")


@router.get("/me", response_model=UserResponse)
async def get_me(user: User = Depends(get_current_user)):
    """Return the currently authenticated user."""
    return _user_response(user)


# ---------------------------------------------------------------------------
# Login contexts
# ---------------------------------------------------------------------------


@router.get("/context/current", response_model=ContextDataResponse)
async def current_context(request: Request, user: User = Depends(get_current_user)):
    """Return the fingerprint the server derives for this request."""
    return ContextDataResponse(**_request_context(request, None).to_dict())


@router.get("/context", response_model=UserContextResponse)
async def get_auth_context(
    user: User = Depends(get_current_user),
    engine: ContextTrustEngine = Depends(get_engine),
):
    """Return the user's first trusted context."""
    ctx: UserContext = engine.get_auth_context_data(user.id)
    return UserContextResponse(id=ctx.id, email=ctx.email, is_trusted=ctx.is_trusted,
                               first_added=ctx.first_added, **ctx.context.to_dict())


@router.get("/context/trusted", response_model=list[TrackedContextResponse])
async def get_trusted_contexts(
    user: User = Depends(get_current_user),
    engine: ContextTrustEngine = Depends(get_engine),
):
    return [TrackedContextResponse(**view) for view in engine.get_trusted_auth_context_data(user.id)]


@router.get("/context/blocked", response_model=list[TrackedContextResponse])
async def get_blocked_contexts(
    user: User = Depends(get_current_user),
    engine: ContextTrustEngine = Depends(get_engine),
):
    return [TrackedContextResponse(**view) for view in engine.get_blocked_auth_context_data(user.id)]


@router.patch("/context/{record_id}/block", response_model=MessageResponse)
async def block_context(
    record_id: str,
    user: User = Depends(get_current_user),
    engine: ContextTrustEngine = Depends(get_engine),
):
    engine.block_context(user.id, record_id)
    return MessageResponse(message="Blocked successfully")


@router.patch("/context/{record_id}/unblock", response_model=MessageResponse)
async def unblock_context(
    record_id: str,
    user: User = Depends(get_current_user),
    engine: ContextTrustEngine = Depends(get_engine),
):
    engine.unblock_context(user.id, record_id)
    return MessageResponse(message="Unblocked successfully")


@router.delete("/context/{record_id}", response_model=MessageResponse)
async def delete_context(
    record_id: str,
    user: User = Depends(get_current_user),
    engine: ContextTrustEngine = Depends(get_engine),
):
    engine.delete_context(user.id, record_id)
    return MessageResponse(message="Data deleted successfully")


# ---------------------------------------------------------------------------
# Preferences
# ---------------------------------------------------------------------------


@router.get("/preferences", response_model=PreferenceResponse)
async def get_preferences(
    user: User = Depends(get_current_user),
    engine: ContextTrustEngine = Depends(get_engine),
):
    pref = engine.get_user_preferences(user.id)
    return PreferenceResponse(user_id=pref.user_id, enable_context_based_auth=pref.enable_context_based_auth,
                              updated_at=pref.updated_at)


@router.put("/preferences", response_model=PreferenceResponse)
async def set_preferences(
    body: PreferenceRequest,
    user: User = Depends(get_current_user),
    engine: ContextTrustEngine = Depends(get_engine),
):
    """Turn context-based authentication on or off for the current user."""
    pref = engine.set_user_preferences(user.id, body.enable_context_based_auth)
    return PreferenceResponse(user_id=pref.user_id, enable_context_based_auth=pref.enable_context_based_auth,
                              updated_at=pref.updated_at)
