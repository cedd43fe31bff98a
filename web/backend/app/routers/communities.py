"""Communities router -- membership, posts, bans, moderators and reports."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status

from agora.auth.models import User
from agora.communities.models import Community, Post, Report
from agora.communities.moderation import CommunityModerator
from web.backend.app.middleware.auth import get_current_user, get_moderator
from web.backend.app.models.api import (
    AddModeratorRequest,
    CommunityResponse,
    MemberResponse,
    MessageResponse,
    PostCreateRequest,
    PostResponse,
    ReportCreateResponse,
    ReportedPostResponse,
    ReportReasonResponse,
    ReportRequest,
    ReportResponse,
)

router = APIRouter(prefix="/api/communities", tags=["communities"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def community_response(c: Community) -> CommunityResponse:
    """Convert a domain Community to the Pydantic response model."""
    return CommunityResponse(
        id=c.id,
        name=c.name,
        description=c.description,
        members=c.members,
        moderators=c.moderators,
        banned_users=c.banned_users,
        rules=c.rules,
        created_at=c.created_at,
    )


def _post_response(p: Post) -> PostResponse:
    return PostResponse(
        id=p.id,
        community_id=p.community_id,
        user_id=p.user_id,
        title=p.title,
        content=p.content,
        created_at=p.created_at,
    )


def _report_response(r: Report) -> ReportResponse:
    return ReportResponse(
        id=r.id,
        post_id=r.post_id,
        community_id=r.community_id,
        reported_by=r.reported_by,
        reasons=[ReportReasonResponse(user_id=x.user_id, reason=x.reason, created_at=x.created_at) for x in r.reasons],
        created_at=r.created_at,
    )


# ---------------------------------------------------------------------------
# Browsing and membership
# ---------------------------------------------------------------------------


@router.get("", response_model=list[CommunityResponse])
async def list_communities(
    user: User = Depends(get_current_user),
    moderator: CommunityModerator = Depends(get_moderator),
):
    """List all communities (404 when there are none)."""
    return [community_response(c) for c in moderator.get_communities()]


@router.get("/member", response_model=list[CommunityResponse])
async def member_communities(
    user: User = Depends(get_current_user),
    moderator: CommunityModerator = Depends(get_moderator),
):
    """Communities the current user belongs to."""
    return [community_response(c) for c in moderator.get_member_communities(user.id)]


@router.get("/notmember", response_model=list[CommunityResponse])
async def not_member_communities(
    user: User = Depends(get_current_user),
    moderator: CommunityModerator = Depends(get_moderator),
):
    """Communities the current user does not belong to."""
    return [community_response(c) for c in moderator.get_not_member_communities(user.id)]


@router.get("/{name}", response_model=CommunityResponse)
async def get_community(
    name: str,
    user: User = Depends(get_current_user),
    moderator: CommunityModerator = Depends(get_moderator),
):
    return community_response(moderator.get_community(name))


@router.post("/{name}/join", response_model=CommunityResponse)
async def join_community(
    name: str,
    user: User = Depends(get_current_user),
    moderator: CommunityModerator = Depends(get_moderator),
):
    return community_response(moderator.join_community(name, user.id))


@router.post("/{name}/leave", response_model=CommunityResponse)
async def leave_community(
    name: str,
    user: User = Depends(get_current_user),
    moderator: CommunityModerator = Depends(get_moderator),
):
    return community_response(moderator.leave_community(name, user.id))


@router.get("/{name}/members", response_model=list[MemberResponse])
async def community_members(
    name: str,
    user: User = Depends(get_current_user),
    moderator: CommunityModerator = Depends(get_moderator),
):
    return [MemberResponse(**m) for m in moderator.get_community_members(name)]


@router.get("/{name}/moderators", response_model=list[MemberResponse])
async def community_moderators(
    name: str,
    user: User = Depends(get_current_user),
    moderator: CommunityModerator = Depends(get_moderator),
):
    return [MemberResponse(**m) for m in moderator.get_community_mods(name)]


@router.post("/{name}/posts", response_model=PostResponse, status_code=status.HTTP_201_CREATED)
async def create_post(
    name: str,
    body: PostCreateRequest,
    user: User = Depends(get_current_user),
    moderator: CommunityModerator = Depends(get_moderator),
):
    """Create a post; only members may post."""
    return _post_response(moderator.create_post(name, user.id, body.title, body.content))


# ---------------------------------------------------------------------------
# Moderator actions
# ---------------------------------------------------------------------------


@router.post("/{name}/moderators", response_model=MessageResponse)
async def add_moderator(
    name: str,
    body: AddModeratorRequest,
    user: User = Depends(get_current_user),
    moderator: CommunityModerator = Depends(get_moderator),
):
    """Make another user a moderator; the caller must moderate this community."""
    moderator.add_mod_to_community(name, body.user_id, user.id)
    return MessageResponse(message="Moderator added successfully")


@router.post("/{name}/ban/{user_id}", response_model=CommunityResponse)
async def ban_user(
    name: str,
    user_id: str,
    user: User = Depends(get_current_user),
    moderator: CommunityModerator = Depends(get_moderator),
):
    return community_response(moderator.ban_user(name, user_id, user.id))


@router.post("/{name}/unban/{user_id}", response_model=CommunityResponse)
async def unban_user(
    name: str,
    user_id: str,
    user: User = Depends(get_current_user),
    moderator: CommunityModerator = Depends(get_moderator),
):
    return community_response(moderator.unban_user(name, user_id, user.id))


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


@router.post("/{name}/report", response_model=ReportCreateResponse, status_code=status.HTTP_201_CREATED)
async def report_post(
    name: str,
    body: ReportRequest,
    response: Response,
    user: User = Depends(get_current_user),
    moderator: CommunityModerator = Depends(get_moderator),
):
    """Report a post.  201 for the first report of a post, 200 afterwards."""
    report, created = moderator.report_post(name, body.post_id, body.reason, user.id)
    if not created:
        response.status_code = status.HTTP_200_OK
    return ReportCreateResponse(message="Post reported successfully", report=_report_response(report))


@router.get("/{name}/reported-posts", response_model=list[ReportedPostResponse])
async def reported_posts(
    name: str,
    user: User = Depends(get_current_user),
    moderator: CommunityModerator = Depends(get_moderator),
):
    return [
        ReportedPostResponse(
            post=_post_response(entry["post"]),
            reports=[_report_response(r) for r in entry["reports"]],
            reported_by=entry["reported_by"],
            reasons=[
                ReportReasonResponse(user_id=x.user_id, reason=x.reason, created_at=x.created_at)
                for x in entry["reasons"]
            ],
        )
        for entry in moderator.get_reported_posts(name, user.id)
    ]


@router.delete("/{name}/reported-posts/{post_id}", response_model=MessageResponse)
async def remove_reported_post(
    name: str,
    post_id: str,
    user: User = Depends(get_current_user),
    moderator: CommunityModerator = Depends(get_moderator),
):
    moderator.remove_reported_post(name, post_id, user.id)
    return MessageResponse(message="Post and its reports removed successfully")


@router.delete("/{name}/reports/{report_id}", response_model=MessageResponse)
async def dismiss_report(
    name: str,
    report_id: str,
    user: User = Depends(get_current_user),
    moderator: CommunityModerator = Depends(get_moderator),
):
    moderator.dismiss_report(name, report_id, user.id)
    return MessageResponse(message="Report removed successfully")
