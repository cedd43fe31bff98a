"""Community membership, moderator and report lifecycle.

Every operation checks, in order: the community exists, the acting user is
allowed to act on it, the secondary entity exists, and the requested change
does not conflict with the current state.  Only then is anything written.

Moderator rights are per community and are read from the stored community
document on every call.  A user's global ``role`` is derived from those
documents: ``moderator`` while they moderate at least one community,
``general`` otherwise (admins are never demoted).  Changes that touch both a
community and a user are two sequential single-document writes;
:meth:`CommunityModerator.reconcile_roles` repairs any drift.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from typing import Any, Iterable, Iterator, Mapping, Optional, Union

from agora.auth.models import Role, User
from agora.auth.store import UserStore
from agora.communities.models import Community, Post, Report, Rule
from agora.communities.store import CommunityStore, add_to_set, remove_from_set
from agora.errors import (
    AuthorizationError,
    ConflictError,
    DependencyError,
    NotFoundError,
    ValidationError,
)
from agora.security.audit_log import AuditLogger

logger = logging.getLogger(__name__)

NOT_A_MODERATOR = "User is not a moderator of this community"
COMMUNITY_NOT_FOUND = "Community not found"


@contextmanager
def _store_errors(message: str) -> Iterator[None]:
    """Re-raise store failures with an operation-specific message."""
    try:
        yield
    except DependencyError as exc:
        logger.error("%s: %s", message, exc.message)
        raise DependencyError(message) from exc


def _user_summary(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": user.role.value,
    }


def _as_items(items: Union[Mapping[str, Any], Iterable[Mapping[str, Any]], None]) -> list[Mapping[str, Any]]:
    if items is None:
        return []
    if isinstance(items, Mapping):
        return [items]
    return list(items)


class CommunityModerator:
    """Moderation service over a :class:`CommunityStore` and a :class:`UserStore`."""

    def __init__(
        self,
        communities: CommunityStore,
        users: UserStore,
        audit: Optional[AuditLogger] = None,
    ) -> None:
        self._communities = communities
        self._users = users
        self._audit = audit

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _log(self, actor: str, action: str, resource_type: str, resource_id: str, **kwargs: Any) -> None:
        if self._audit is None:
            return
        try:
            self._audit.log_event(actor, action, resource_type, resource_id, **kwargs)
        except DependencyError:
            logger.exception("Audit write failed for %s on %s", action, resource_id)

    def _community_by_id(self, community_id: str) -> Community:
        community = self._communities.get_community(community_id)
        if community is None:
            raise NotFoundError(COMMUNITY_NOT_FOUND)
        return community

    def _community_by_name(self, name: str) -> Community:
        community = self._communities.get_community_by_name(name)
        if community is None:
            raise NotFoundError(COMMUNITY_NOT_FOUND)
        return community

    def _user(self, user_id: str, message: str = "User not found") -> User:
        user = self._users.get_user(user_id)
        if user is None:
            raise NotFoundError(message)
        return user

    @staticmethod
    def _require_moderator(community: Community, acting_user_id: str) -> None:
        if not community.is_moderator(acting_user_id):
            raise AuthorizationError(NOT_A_MODERATOR)

    def _derived_role(self, user: User, communities: Optional[list[Community]] = None) -> Role:
        if user.role == Role.admin:
            return Role.admin
        if communities is None:
            communities = self._communities.list_communities()
        if any(c.is_moderator(user.id) for c in communities):
            return Role.moderator
        return Role.general

    def _sync_role(self, user_id: str) -> None:
        user = self._users.get_user(user_id)
        if user is None:
            return
        role = self._derived_role(user)
        if role != user.role:
            self._users.update_user_role(user_id, role)

    def _grant_moderator(self, community: Community, user: User, acting_user_id: str, error_message: str) -> Community:
        was_member = community.is_member(user.id)

        def promote(c: Community) -> None:
            if c.is_moderator(user.id):
                raise ConflictError("User is already a moderator")
            if c.is_banned(user.id):
                raise ConflictError("User is banned from this community")
            add_to_set(c.members, user.id)
            add_to_set(c.moderators, user.id)

        with _store_errors(error_message):
            updated = self._communities.modify_community(community.id, promote)
        if updated is None:
            raise NotFoundError(COMMUNITY_NOT_FOUND)

        if user.role == Role.general:
            try:
                self._users.update_user_role(user.id, Role.moderator)
            except DependencyError as exc:
                self._undo_grant(community.id, user.id, was_member)
                raise DependencyError(error_message) from exc

        self._log(acting_user_id, "community.moderator.add", "community", community.id,
                  details={"user_id": user.id})
        return updated

    def _undo_grant(self, community_id: str, user_id: str, was_member: bool) -> None:
        def demote(c: Community) -> None:
            remove_from_set(c.moderators, user_id)
            if not was_member:
                remove_from_set(c.members, user_id)

        try:
            self._communities.modify_community(community_id, demote)
        except DependencyError:
            logger.exception("Could not roll back moderator %s in community %s", user_id, community_id)

    # ------------------------------------------------------------------
    # Admin operations
    # ------------------------------------------------------------------

    def add_moderator(self, community_id: str, user_id: str, acting_user_id: str = "") -> Community:
        """Make ``user_id`` a moderator (and member) of the community."""
        community = self._community_by_id(community_id)
        user = self._user(user_id)
        if community.is_moderator(user_id):
            raise ConflictError("User is already a moderator")
        return self._grant_moderator(community, user, acting_user_id, "Error adding moderator")

    def remove_moderator(self, community_id: str, user_id: str, acting_user_id: str = "") -> Community:
        """Remove ``user_id`` from the community's moderators.

        The user keeps the ``moderator`` role while they moderate any other
        community.
        """
        community = self._community_by_id(community_id)
        self._user(user_id)
        if not community.is_moderator(user_id):
            raise ConflictError(NOT_A_MODERATOR)

        def demote(c: Community) -> None:
            if not remove_from_set(c.moderators, user_id):
                raise ConflictError(NOT_A_MODERATOR)

        with _store_errors("Error removing moderator"):
            updated = self._communities.modify_community(community.id, demote)
            if updated is None:
                raise NotFoundError(COMMUNITY_NOT_FOUND)
            self._sync_role(user_id)

        self._log(acting_user_id, "community.moderator.remove", "community", community.id,
                  details={"user_id": user_id})
        return updated

    def get_moderators(self) -> list[dict[str, Any]]:
        """Users holding the moderator role, with the communities they moderate."""
        communities = self._communities.list_communities()
        result = []
        for user in self._users.list_users():
            if user.role != Role.moderator:
                continue
            entry = _user_summary(user)
            entry["communities"] = [c.name for c in communities if c.is_moderator(user.id)]
            result.append(entry)
        return result

    def reconcile_roles(self, acting_user_id: str = "") -> list[str]:
        """Recompute every non-admin role from community documents.

        Returns the ids of users whose role changed.
        """
        communities = self._communities.list_communities()
        changed = []
        with _store_errors("Error reconciling roles"):
            for user in self._users.list_users():
                role = self._derived_role(user, communities)
                if role != user.role:
                    self._users.update_user_role(user.id, role)
                    changed.append(user.id)
        if changed:
            logger.warning("Reconciled roles for %d users", len(changed))
        self._log(acting_user_id, "roles.reconcile", "user", "*", details={"changed": changed})
        return changed

    def create_communities(
        self, items: Union[Mapping[str, Any], Iterable[Mapping[str, Any]]], acting_user_id: str = ""
    ) -> list[Community]:
        """Create one or more communities from ``{name, description}`` items."""
        entries = _as_items(items)
        if not entries:
            raise ValidationError("At least one community is required")
        communities = []
        for entry in entries:
            name = (entry.get("name") or "").strip()
            if not name:
                raise ValidationError("Community name is required")
            communities.append(
                Community(id=str(uuid.uuid4()), name=name, description=entry.get("description") or "")
            )
        with _store_errors("Error creating community"):
            created = self._communities.create_communities(communities)
        for c in created:
            self._log(acting_user_id, "community.create", "community", c.id, details={"name": c.name})
        return created

    def add_rules(self, items: Union[Mapping[str, Any], Iterable[Mapping[str, Any]]]) -> list[Rule]:
        entries = _as_items(items)
        if not entries:
            raise ValidationError("At least one rule is required")
        rules = []
        for entry in entries:
            title = (entry.get("title") or "").strip()
            if not title:
                raise ValidationError("Rule title is required")
            rules.append(Rule(id=str(uuid.uuid4()), title=title, description=entry.get("description") or ""))
        with _store_errors("Error creating rules"):
            return self._communities.create_rules(rules)

    def add_rules_to_community(self, name: str) -> Community:
        """Attach every global rule to the community."""
        community = self._community_by_name(name)
        rule_ids = [r.id for r in self._communities.list_rules()]

        def attach(c: Community) -> None:
            for rule_id in rule_ids:
                add_to_set(c.rules, rule_id)

        with _store_errors("Error adding rules to community"):
            updated = self._communities.modify_community(community.id, attach)
        if updated is None:
            raise NotFoundError(COMMUNITY_NOT_FOUND)
        return updated

    # ------------------------------------------------------------------
    # Member operations
    # ------------------------------------------------------------------

    def get_communities(self) -> list[Community]:
        communities = self._communities.list_communities()
        if not communities:
            raise NotFoundError("No communities found")
        return communities

    def get_community(self, name: str) -> Community:
        return self._community_by_name(name)

    def join_community(self, name: str, user_id: str) -> Community:
        community = self._community_by_name(name)
        self._user(user_id)

        def join(c: Community) -> None:
            if c.is_banned(user_id):
                raise AuthorizationError("User is banned from this community")
            add_to_set(c.members, user_id)

        with _store_errors("Error joining community"):
            updated = self._communities.modify_community(community.id, join)
        if updated is None:
            raise NotFoundError(COMMUNITY_NOT_FOUND)
        return updated

    def leave_community(self, name: str, user_id: str) -> Community:
        """Leave a community; leaving one you are not in is a no-op."""
        community = self._community_by_name(name)
        was_moderator = community.is_moderator(user_id)

        def leave(c: Community) -> None:
            remove_from_set(c.members, user_id)
            remove_from_set(c.moderators, user_id)

        with _store_errors("Error leaving community"):
            updated = self._communities.modify_community(community.id, leave)
            if updated is None:
                raise NotFoundError(COMMUNITY_NOT_FOUND)
            if was_moderator:
                self._sync_role(user_id)
        return updated

    def get_member_communities(self, user_id: str) -> list[Community]:
        return [c for c in self._communities.list_communities() if c.is_member(user_id)]

    def get_not_member_communities(self, user_id: str) -> list[Community]:
        return [c for c in self._communities.list_communities() if not c.is_member(user_id)]

    def get_community_members(self, name: str) -> list[dict[str, Any]]:
        community = self._community_by_name(name)
        return [_user_summary(u) for u in map(self._users.get_user, community.members) if u is not None]

    def get_community_mods(self, name: str) -> list[dict[str, Any]]:
        community = self._community_by_name(name)
        return [_user_summary(u) for u in map(self._users.get_user, community.moderators) if u is not None]

    def create_post(self, name: str, user_id: str, title: str, content: str) -> Post:
        community = self._community_by_name(name)
        if community.is_banned(user_id):
            raise AuthorizationError("User is banned from this community")
        if not community.is_member(user_id):
            raise AuthorizationError("User is not a member of this community")
        if not title or not content:
            raise ValidationError("Title and content are required")
        post = Post(
            id=str(uuid.uuid4()),
            community_id=community.id,
            user_id=user_id,
            title=title,
            content=content,
        )
        with _store_errors("Error creating post"):
            return self._communities.create_post(post)

    # ------------------------------------------------------------------
    # Moderator operations
    # ------------------------------------------------------------------

    def add_mod_to_community(self, name: str, target_user_id: str, acting_user_id: str) -> Community:
        community = self._community_by_name(name)
        self._require_moderator(community, acting_user_id)
        user = self._user(target_user_id, "User to be made moderator not found")
        if community.is_moderator(target_user_id):
            raise ConflictError("User is already a moderator")
        return self._grant_moderator(community, user, acting_user_id, "Error adding moderator")

    def ban_user(self, name: str, target_user_id: str, acting_user_id: str) -> Community:
        """Ban a user: added to ``banned_users``, removed from members and moderators."""
        community = self._community_by_name(name)
        self._require_moderator(community, acting_user_id)
        self._user(target_user_id, "User to ban not found")
        if community.is_banned(target_user_id):
            raise ConflictError("User is already banned from this community")
        was_moderator = community.is_moderator(target_user_id)

        def ban(c: Community) -> None:
            if not add_to_set(c.banned_users, target_user_id):
                raise ConflictError("User is already banned from this community")
            remove_from_set(c.members, target_user_id)
            remove_from_set(c.moderators, target_user_id)

        with _store_errors("Error banning user"):
            updated = self._communities.modify_community(community.id, ban)
            if updated is None:
                raise NotFoundError(COMMUNITY_NOT_FOUND)
            if was_moderator:
                self._sync_role(target_user_id)

        logger.info("User %s banned from %s by %s", target_user_id, name, acting_user_id)
        self._log(acting_user_id, "community.ban", "community", community.id,
                  details={"user_id": target_user_id})
        return updated

    def unban_user(self, name: str, target_user_id: str, acting_user_id: str) -> Community:
        """Lift a ban.  Membership is not restored; the user may rejoin."""
        community = self._community_by_name(name)
        self._require_moderator(community, acting_user_id)
        self._user(target_user_id, "User to unban not found")
        if not community.is_banned(target_user_id):
            raise ConflictError("User is not banned from this community")

        def unban(c: Community) -> None:
            if not remove_from_set(c.banned_users, target_user_id):
                raise ConflictError("User is not banned from this community")

        with _store_errors("Error unbanning user"):
            updated = self._communities.modify_community(community.id, unban)
        if updated is None:
            raise NotFoundError(COMMUNITY_NOT_FOUND)

        self._log(acting_user_id, "community.unban", "community", community.id,
                  details={"user_id": target_user_id})
        return updated

    def report_post(self, name: str, post_id: str, reason: str, reporter_id: str) -> tuple[Report, bool]:
        """Report a post.  Returns ``(report, created)``."""
        community = self._community_by_name(name)
        post = self._communities.get_post(post_id)
        if post is None or post.community_id != community.id:
            raise NotFoundError("Post not found")
        if not reason or not reason.strip():
            raise ValidationError("Reason is required")

        with _store_errors("Error reporting post"):
            report, created = self._communities.add_report(post.id, community.id, reporter_id, reason.strip())

        self._log(reporter_id, "post.report", "post", post.id, details={"report_id": report.id})
        return report, created

    def get_reported_posts(self, name: str, acting_user_id: str) -> list[dict[str, Any]]:
        """One entry per reported post, carrying every report against it."""
        community = self._community_by_name(name)
        self._require_moderator(community, acting_user_id)

        grouped: dict[str, list[Report]] = {}
        for report in self._communities.list_reports(community_id=community.id):
            grouped.setdefault(report.post_id, []).append(report)

        result = []
        for post_id, reports in grouped.items():
            post = self._communities.get_post(post_id)
            if post is None:
                logger.debug("Skipping reports for missing post %s", post_id)
                continue
            reported_by: list[str] = []
            for report in reports:
                for user_id in report.reported_by:
                    add_to_set(reported_by, user_id)
            result.append(
                {
                    "post": post,
                    "reports": reports,
                    "reported_by": reported_by,
                    "reasons": [reason for report in reports for reason in report.reasons],
                }
            )
        return result

    def remove_reported_post(self, name: str, post_id: str, acting_user_id: str) -> int:
        """Delete a post and all reports against it.  Returns the reports removed."""
        community = self._community_by_name(name)
        self._require_moderator(community, acting_user_id)
        post = self._communities.get_post(post_id)
        if post is None or post.community_id != community.id:
            raise NotFoundError("Post not found")

        with _store_errors("Error removing reported post"):
            self._communities.delete_post(post.id)
            removed = self._communities.delete_reports_for_post(post.id)

        self._log(acting_user_id, "post.remove", "post", post.id, details={"reports_removed": removed})
        return removed

    def dismiss_report(self, name: str, report_id: str, acting_user_id: str) -> None:
        """Delete a report and leave the post in place."""
        community = self._community_by_name(name)
        self._require_moderator(community, acting_user_id)
        report = self._communities.get_report(report_id)
        if report is None or report.community_id != community.id:
            raise NotFoundError("Report not found")

        with _store_errors("Error removing report"):
            self._communities.delete_report(report.id)

        self._log(acting_user_id, "report.dismiss", "report", report.id, details={"post_id": report.post_id})
