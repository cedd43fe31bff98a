"""Pydantic models for API request/response serialization.

These models mirror the agora dataclasses and provide proper JSON
serialization for the FastAPI endpoints.
"""

from __future__ import annotations

from typing import Any, Optional, Union

from pydantic import BaseModel, Field


class MessageResponse(BaseModel):
    """Plain acknowledgement."""

    message: str


# ---------------------------------------------------------------------------
# Auth models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Mirrors agora.auth.models.User (without the password hash)."""

    id: str
    name: str
    email: str
    role: str
    created_at: str = ""


class RegisterRequest(BaseModel):
    """Body for POST /api/auth/register.

    ``context`` is optional; when absent it is derived from the request.
    Keys may be snake_case or use the ``deviceType`` wire name.
    """

    name: str
    email: str
    password: str
    context: Optional[dict[str, Any]] = None


class LoginRequest(BaseModel):
    """Body for POST /api/auth/login."""

    email: str
    password: str
    context: Optional[dict[str, Any]] = None


class LoginResponse(BaseModel):
    """Session issued by a successful login."""

    token: str
    expires_at: str
    trusted_path: str
    user: UserResponse


class ContextDataResponse(BaseModel):
    """Mirrors agora.auth.models.ContextData."""

    ip: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    browser: Optional[str] = None
    platform: Optional[str] = None
    os: Optional[str] = None
    device: Optional[str] = None
    device_type: Optional[str] = None


class UserContextResponse(ContextDataResponse):
    """Mirrors agora.auth.models.UserContext."""

    id: str
    email: str
    is_trusted: bool = True
    first_added: str = ""


class TrackedContextResponse(ContextDataResponse):
    """A suspicious-login record as listed to its owner."""

    id: str
    time: str
    unverified_attempts: int = 0
    is_trusted: bool = False
    is_blocked: bool = False


class PreferenceRequest(BaseModel):
    enable_context_based_auth: bool


class PreferenceResponse(BaseModel):
    """Mirrors agora.auth.models.UserPreference."""

    user_id: str
    enable_context_based_auth: bool
    updated_at: str = ""


# ---------------------------------------------------------------------------
# Community models
# ---------------------------------------------------------------------------


class CommunityResponse(BaseModel):
    """Mirrors agora.communities.models.Community."""

    id: str
    name: str
    description: str = ""
    members: list[str] = Field(default_factory=list)
    moderators: list[str] = Field(default_factory=list)
    banned_users: list[str] = Field(default_factory=list)
    rules: list[str] = Field(default_factory=list)
    created_at: str = ""


class CommunityCreateItem(BaseModel):
    name: str
    description: str = ""


# A single community or a batch.
CommunityCreateRequest = Union[CommunityCreateItem, list[CommunityCreateItem]]


class RuleCreateItem(BaseModel):
    title: str
    description: str = ""


RuleCreateRequest = Union[RuleCreateItem, list[RuleCreateItem]]


class RuleResponse(BaseModel):
    """Mirrors agora.communities.models.Rule."""

    id: str
    title: str
    description: str = ""


class MemberResponse(BaseModel):
    """Public summary of a community member or moderator."""

    id: str
    name: str
    email: str
    role: str


class ModeratorSummaryResponse(MemberResponse):
    """A moderator with the names of the communities they moderate."""

    communities: list[str] = Field(default_factory=list)


class ModeratorRequest(BaseModel):
    """Body for the admin moderator endpoints."""

    community_id: str
    user_id: str


class AddModeratorRequest(BaseModel):
    """Body for POST /api/communities/{name}/moderators."""

    user_id: str


class PostCreateRequest(BaseModel):
    title: str
    content: str


class PostResponse(BaseModel):
    """Mirrors agora.communities.models.Post."""

    id: str
    community_id: str
    user_id: str
    title: str = ""
    content: str = ""
    created_at: str = ""


class ReportRequest(BaseModel):
    """Body for POST /api/communities/{name}/report."""

    post_id: str
    reason: str = ""


class ReportReasonResponse(BaseModel):
    user_id: str
    reason: str
    created_at: str = ""


class ReportResponse(BaseModel):
    """Mirrors agora.communities.models.Report."""

    id: str
    post_id: str
    community_id: str
    reported_by: list[str] = Field(default_factory=list)
    reasons: list[ReportReasonResponse] = Field(default_factory=list)
    created_at: str = ""


class ReportCreateResponse(BaseModel):
    message: str
    report: ReportResponse


class ReportedPostResponse(BaseModel):
    """A reported post with every report filed against it."""

    post: PostResponse
    reports: list[ReportResponse] = Field(default_factory=list)
    reported_by: list[str] = Field(default_factory=list)
    reasons: list[ReportReasonResponse] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Audit models
# ---------------------------------------------------------------------------


class AuditEntryResponse(BaseModel):
    """A single audit log entry."""

    id: str
    timestamp: str
    actor: str
    action: str
    resource_type: str
    resource_id: str
    details: dict = Field(default_factory=dict)
    ip_address: str = ""
    success: bool = True


class AuditExportResponse(BaseModel):
    """Exported audit log content."""

    format: str
    content: str
    record_count: int = 0


class ReconcileResponse(BaseModel):
    changed: list[str] = Field(default_factory=list)
