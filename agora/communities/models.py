"""Community domain models: communities, posts, reports and rules."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone


@dataclass
class Community:
    """A community with its membership, moderators and bans.

    ``members``, ``moderators``, ``banned_users`` and ``rules`` are ordered
    sets of ids.  Moderators are always members; banned users never are.
    """

    id: str
    name: str
    description: str = ""
    members: list[str] = field(default_factory=list)
    moderators: list[str] = field(default_factory=list)
    banned_users: list[str] = field(default_factory=list)
    rules: list[str] = field(default_factory=list)
    created_at: str = ""

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = datetime.now(timezone.utc).isoformat()

    def is_member(self, user_id: str) -> bool:
        return user_id in self.members

    def is_moderator(self, user_id: str) -> bool:
        return user_id in self.moderators

    def is_banned(self, user_id: str) -> bool:
        return user_id in self.banned_users


@dataclass
class Post:
    """A post made by a member inside one community."""

    id: str
    community_id: str
    user_id: str
    title: str = ""
    content: str = ""
    created_at: str = ""

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = datetime.now(timezone.utc).isoformat()


@dataclass
class ReportReason:
    """One reporter's reason for flagging a post."""

    user_id: str
    reason: str
    created_at: str = ""

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = datetime.now(timezone.utc).isoformat()


@dataclass
class Report:
    """Aggregated reports against a single post.

    ``reported_by`` holds each reporter once; ``reasons`` is parallel to it.
    """

    id: str
    post_id: str
    community_id: str
    reported_by: list[str] = field(default_factory=list)
    reasons: list[ReportReason] = field(default_factory=list)
    created_at: str = ""

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = datetime.now(timezone.utc).isoformat()
        self.reasons = [r if isinstance(r, ReportReason) else ReportReason(**r) for r in self.reasons]


@dataclass
class Rule:
    """A global community rule that can be attached to communities."""

    id: str
    title: str
    description: str = ""
