"""Admin router -- communities, rules, moderator assignment and the audit log.

Every endpoint requires the ``admin`` role.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from agora.auth.models import User
from agora.communities.moderation import CommunityModerator
from agora.security.audit_log import AuditEntry, AuditLogger
from web.backend.app.middleware.auth import get_admin_user, get_audit, get_moderator
from web.backend.app.models.api import (
    AuditEntryResponse,
    AuditExportResponse,
    CommunityCreateRequest,
    CommunityResponse,
    MessageResponse,
    ModeratorRequest,
    ModeratorSummaryResponse,
    ReconcileResponse,
    RuleCreateRequest,
    RuleResponse,
)
from web.backend.app.routers.communities import community_response

router = APIRouter(prefix="/api/admin", tags=["admin"])


def _audit_entry_to_response(e: AuditEntry) -> AuditEntryResponse:
    return AuditEntryResponse(
        id=e.id,
        timestamp=e.timestamp,
        actor=e.actor,
        action=e.action,
        resource_type=e.resource_type,
        resource_id=e.resource_id,
        details=e.details,
        ip_address=e.ip_address,
        success=e.success,
    )


def _dump(body) -> list[dict]:
    items = body if isinstance(body, list) else [body]
    return [item.model_dump() for item in items]


# ---------------------------------------------------------------------------
# Communities and rules
# ---------------------------------------------------------------------------


@router.post("/communities", response_model=list[CommunityResponse], status_code=status.HTTP_201_CREATED)
async def create_communities(
    body: CommunityCreateRequest,
    admin: User = Depends(get_admin_user),
    moderator: CommunityModerator = Depends(get_moderator),
):
    """Create one community or a batch; a duplicate name rejects the whole batch."""
    return [community_response(c) for c in moderator.create_communities(_dump(body), admin.id)]


@router.post("/rules", response_model=list[RuleResponse], status_code=status.HTTP_201_CREATED)
async def create_rules(
    body: RuleCreateRequest,
    admin: User = Depends(get_admin_user),
    moderator: CommunityModerator = Depends(get_moderator),
):
    return [RuleResponse(id=r.id, title=r.title, description=r.description) for r in moderator.add_rules(_dump(body))]


@router.post("/communities/{name}/rules", response_model=CommunityResponse)
async def add_rules_to_community(
    name: str,
    admin: User = Depends(get_admin_user),
    moderator: CommunityModerator = Depends(get_moderator),
):
    """Attach every global rule to the community."""
    return community_response(moderator.add_rules_to_community(name))


# ---------------------------------------------------------------------------
# Moderators
# ---------------------------------------------------------------------------


@router.get("/moderators", response_model=list[ModeratorSummaryResponse])
async def list_moderators(
    admin: User = Depends(get_admin_user),
    moderator: CommunityModerator = Depends(get_moderator),
):
    return [ModeratorSummaryResponse(**m) for m in moderator.get_moderators()]


@router.post("/moderators", response_model=MessageResponse)
async def add_moderator(
    body: ModeratorRequest,
    admin: User = Depends(get_admin_user),
    moderator: CommunityModerator = Depends(get_moderator),
):
    moderator.add_moderator(body.community_id, body.user_id, admin.id)
    return MessageResponse(message="Moderator added successfully")


@router.delete("/moderators", response_model=MessageResponse)
async def remove_moderator(
    body: ModeratorRequest,
    admin: User = Depends(get_admin_user),
    moderator: CommunityModerator = Depends(get_moderator),
):
    moderator.remove_moderator(body.community_id, body.user_id, admin.id)
    return MessageResponse(message="Moderator removed successfully")


@router.post("/roles/reconcile", response_model=ReconcileResponse)
async def reconcile_roles(
    admin: User = Depends(get_admin_user),
    moderator: CommunityModerator = Depends(get_moderator),
):
    """Recompute moderator roles from the community moderator lists."""
    return ReconcileResponse(changed=moderator.reconcile_roles(admin.id))


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------


@router.get("/audit", response_model=list[AuditEntryResponse])
async def list_audit_events(
    actor: Optional[str] = None,
    action: Optional[str] = None,
    resource_type: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    limit: int = Query(200, ge=1, le=10000),
    admin: User = Depends(get_admin_user),
    audit: AuditLogger = Depends(get_audit),
):
    """List audit events with optional filters, newest first."""
    events = audit.get_events(
        actor=actor,
        action=action,
        resource_type=resource_type,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
    )
    return [_audit_entry_to_response(e) for e in events]


@router.get("/audit/export", response_model=AuditExportResponse)
async def export_audit_log(
    fmt: str = Query("json", alias="format", pattern="^(json|csv)$"),
    actor: Optional[str] = None,
    action: Optional[str] = None,
    admin: User = Depends(get_admin_user),
    audit: AuditLogger = Depends(get_audit),
):
    """Export the audit log in JSON or CSV format."""
    content = audit.export_events(fmt, actor=actor, action=action)
    count = len(audit.get_events(actor=actor, action=action, limit=10000))
    return AuditExportResponse(format=fmt, content=content, record_count=count)


@router.get("/audit/{resource_type}/{resource_id}", response_model=list[AuditEntryResponse])
async def resource_audit_events(
    resource_type: str,
    resource_id: str,
    admin: User = Depends(get_admin_user),
    audit: AuditLogger = Depends(get_audit),
):
    """Get audit events for a specific resource."""
    return [_audit_entry_to_response(e) for e in audit.get_events_for_resource(resource_type, resource_id)]
