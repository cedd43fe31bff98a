"""File-based JSON storage for community data.

Provides a DB-ready interface backed by simple JSON files under
~/.agora/communities/.
"""

from __future__ import annotations

import json
import os
import threading
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, Optional

from agora.communities.models import Community, Post, Report, ReportReason, Rule
from agora.errors import ConflictError, DependencyError, DuplicateError


def add_to_set(values: list[str], item: str) -> bool:
    """Append ``item`` unless present. Returns True if the list changed."""
    if item in values:
        return False
    values.append(item)
    return True


def remove_from_set(values: list[str], item: str) -> bool:
    """Remove every occurrence of ``item``. Returns True if the list changed."""
    before = len(values)
    values[:] = [v for v in values if v != item]
    return len(values) < before


class CommunityStore:
    """File-based storage for communities, posts, reports and rules.

    Storage path: ``~/.agora/communities/`` with:
    - ``communities.json`` -- list of community dicts
    - ``posts.json`` -- list of post dicts
    - ``reports.json`` -- list of report dicts, one per reported post
    - ``rules.json`` -- list of global rule dicts
    """

    def __init__(self, base_dir: Optional[str] = None, lock_timeout: float = 5.0) -> None:
        if base_dir is None:
            self._base = Path.home() / ".agora" / "communities"
        else:
            self._base = Path(base_dir)
        self._base.mkdir(parents=True, exist_ok=True)
        self._communities_path = self._base / "communities.json"
        self._posts_path = self._base / "posts.json"
        self._reports_path = self._base / "reports.json"
        self._rules_path = self._base / "rules.json"
        self._lock = threading.RLock()
        self._lock_timeout = lock_timeout

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _locked(self) -> Iterator[None]:
        if not self._lock.acquire(timeout=self._lock_timeout):
            raise DependencyError("Timed out waiting for the community store")
        try:
            yield
        finally:
            self._lock.release()

    def _read_json(self, path: Path) -> list[dict]:
        """Load one collection; a missing file is empty, an unreadable one is an error."""
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text())
        except (json.JSONDecodeError, OSError) as exc:
            raise DependencyError(f"Could not read {path.name}") from exc
        if not isinstance(data, list):
            raise DependencyError(f"Could not read {path.name}")
        return data

    def _write_json(self, path: Path, data: list[dict]) -> None:
        tmp = path.with_suffix(".json.tmp")
        try:
            tmp.write_text(json.dumps(data, indent=2, default=str))
            os.replace(tmp, path)
        except OSError as exc:
            raise DependencyError(f"Could not write {path.name}") from exc

    @staticmethod
    def _community_from_dict(d: dict) -> Community:
        return Community(
            id=d["id"],
            name=d["name"],
            description=d.get("description", ""),
            members=list(d.get("members", [])),
            moderators=list(d.get("moderators", [])),
            banned_users=list(d.get("banned_users", [])),
            rules=list(d.get("rules", [])),
            created_at=d.get("created_at", ""),
        )

    @staticmethod
    def _community_to_dict(c: Community) -> dict:
        return {
            "id": c.id,
            "name": c.name,
            "description": c.description,
            "members": c.members,
            "moderators": c.moderators,
            "banned_users": c.banned_users,
            "rules": c.rules,
            "created_at": c.created_at,
        }

    @staticmethod
    def _post_from_dict(d: dict) -> Post:
        return Post(
            id=d["id"],
            community_id=d["community_id"],
            user_id=d.get("user_id", ""),
            title=d.get("title", ""),
            content=d.get("content", ""),
            created_at=d.get("created_at", ""),
        )

    @staticmethod
    def _post_to_dict(p: Post) -> dict:
        return {
            "id": p.id,
            "community_id": p.community_id,
            "user_id": p.user_id,
            "title": p.title,
            "content": p.content,
            "created_at": p.created_at,
        }

    @staticmethod
    def _report_from_dict(d: dict) -> Report:
        return Report(
            id=d["id"],
            post_id=d["post_id"],
            community_id=d.get("community_id", ""),
            reported_by=list(d.get("reported_by", [])),
            reasons=[ReportReason(**r) for r in d.get("reasons", [])],
            created_at=d.get("created_at", ""),
        )

    @staticmethod
    def _report_to_dict(r: Report) -> dict:
        return {
            "id": r.id,
            "post_id": r.post_id,
            "community_id": r.community_id,
            "reported_by": r.reported_by,
            "reasons": [
                {"user_id": x.user_id, "reason": x.reason, "created_at": x.created_at}
                for x in r.reasons
            ],
            "created_at": r.created_at,
        }

    # ------------------------------------------------------------------
    # Communities
    # ------------------------------------------------------------------

    def create_communities(self, communities: list[Community]) -> list[Community]:
        """Persist several communities in one write.

        Raises DuplicateError, writing nothing, if any name is already taken
        or repeated within the batch.
        """
        with self._locked():
            stored = self._read_json(self._communities_path)
            taken = {d["name"].lower() for d in stored}
            for c in communities:
                key = c.name.lower()
                if key in taken:
                    raise DuplicateError(f"Community '{c.name}' already exists")
                taken.add(key)
            stored.extend(self._community_to_dict(c) for c in communities)
            self._write_json(self._communities_path, stored)
        return communities

    def get_community(self, community_id: str) -> Optional[Community]:
        for d in self._read_json(self._communities_path):
            if d["id"] == community_id:
                return self._community_from_dict(d)
        return None

    def get_community_by_name(self, name: str) -> Optional[Community]:
        for d in self._read_json(self._communities_path):
            if d["name"] == name:
                return self._community_from_dict(d)
        return None

    def list_communities(self) -> list[Community]:
        return [self._community_from_dict(d) for d in self._read_json(self._communities_path)]

    def modify_community(
        self, community_id: str, change: Callable[[Community], None]
    ) -> Optional[Community]:
        """Apply ``change`` to one community as a single locked write.

        ``change`` runs against the freshly read document; if it raises,
        nothing is written.  Returns None if the community does not exist.
        """
        with self._locked():
            communities = self._read_json(self._communities_path)
            for i, d in enumerate(communities):
                if d["id"] == community_id:
                    community = self._community_from_dict(d)
                    change(community)
                    communities[i] = self._community_to_dict(community)
                    self._write_json(self._communities_path, communities)
                    return community
        return None

    # ------------------------------------------------------------------
    # Posts
    # ------------------------------------------------------------------

    def create_post(self, post: Post) -> Post:
        with self._locked():
            posts = self._read_json(self._posts_path)
            posts.append(self._post_to_dict(post))
            self._write_json(self._posts_path, posts)
        return post

    def get_post(self, post_id: str) -> Optional[Post]:
        for d in self._read_json(self._posts_path):
            if d["id"] == post_id:
                return self._post_from_dict(d)
        return None

    def list_posts(self, community_id: str) -> list[Post]:
        return [
            self._post_from_dict(d)
            for d in self._read_json(self._posts_path)
            if d["community_id"] == community_id
        ]

    def delete_post(self, post_id: str) -> bool:
        with self._locked():
            posts = self._read_json(self._posts_path)
            original_len = len(posts)
            posts = [d for d in posts if d["id"] != post_id]
            if len(posts) < original_len:
                self._write_json(self._posts_path, posts)
                return True
        return False

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def add_report(self, post_id: str, community_id: str, user_id: str, reason: str) -> tuple[Report, bool]:
        """Record ``user_id``'s report of a post.

        Creates the post's report document on first use, otherwise appends the
        reason and adds the reporter.  Returns ``(report, created)``.  Raises
        ConflictError if the user already reported the post.
        """
        with self._locked():
            reports = self._read_json(self._reports_path)
            for i, d in enumerate(reports):
                if d["post_id"] == post_id:
                    report = self._report_from_dict(d)
                    if user_id in report.reported_by:
                        raise ConflictError("User has already reported this post")
                    add_to_set(report.reported_by, user_id)
                    report.reasons.append(ReportReason(user_id=user_id, reason=reason))
                    reports[i] = self._report_to_dict(report)
                    self._write_json(self._reports_path, reports)
                    return report, False

            report = Report(
                id=str(uuid.uuid4()),
                post_id=post_id,
                community_id=community_id,
                reported_by=[user_id],
                reasons=[ReportReason(user_id=user_id, reason=reason)],
            )
            reports.append(self._report_to_dict(report))
            self._write_json(self._reports_path, reports)
        return report, True

    def get_report(self, report_id: str) -> Optional[Report]:
        for d in self._read_json(self._reports_path):
            if d["id"] == report_id:
                return self._report_from_dict(d)
        return None

    def list_reports(self, community_id: Optional[str] = None, post_id: Optional[str] = None) -> list[Report]:
        """Return matching reports, oldest first."""
        result = [
            self._report_from_dict(d)
            for d in self._read_json(self._reports_path)
            if (community_id is None or d.get("community_id") == community_id)
            and (post_id is None or d["post_id"] == post_id)
        ]
        result.sort(key=lambda r: r.created_at)
        return result

    def delete_report(self, report_id: str) -> bool:
        with self._locked():
            reports = self._read_json(self._reports_path)
            original_len = len(reports)
            reports = [d for d in reports if d["id"] != report_id]
            if len(reports) < original_len:
                self._write_json(self._reports_path, reports)
                return True
        return False

    def delete_reports_for_post(self, post_id: str) -> int:
        """Delete every report against ``post_id``. Returns the number removed."""
        with self._locked():
            reports = self._read_json(self._reports_path)
            kept = [d for d in reports if d["post_id"] != post_id]
            removed = len(reports) - len(kept)
            if removed:
                self._write_json(self._reports_path, kept)
        return removed

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def create_rules(self, rules: list[Rule]) -> list[Rule]:
        """Persist global rules in one write. Raises DuplicateError on a taken title."""
        with self._locked():
            stored = self._read_json(self._rules_path)
            taken = {d["title"].lower() for d in stored}
            for r in rules:
                key = r.title.lower()
                if key in taken:
                    raise DuplicateError(f"Rule '{r.title}' already exists")
                taken.add(key)
            stored.extend({"id": r.id, "title": r.title, "description": r.description} for r in rules)
            self._write_json(self._rules_path, stored)
        return rules

    def list_rules(self) -> list[Rule]:
        return [
            Rule(id=d["id"], title=d["title"], description=d.get("description", ""))
            for d in self._read_json(self._rules_path)
        ]
