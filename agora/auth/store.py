"""File-based JSON storage for auth data.

Provides a DB-ready interface backed by simple JSON files under ~/.agora/auth/.
"""

from __future__ import annotations

import json
import os
import secrets
import threading
import uuid
from contextlib import contextmanager
from dataclasses import asdict, fields
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Iterator, Optional

from agora.auth.models import Role, Session, SuspiciousLogin, User, UserContext, UserPreference
from agora.errors import DependencyError, DuplicateError


def _known(cls: type, d: dict) -> dict:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in d.items() if k in names}


class UserStore:
    """File-based storage for users, sessions, preferences and login contexts.

    Storage path: ``~/.agora/auth/`` with:
    - ``users.json`` -- list of user dicts
    - ``sessions.json`` -- list of session dicts
    - ``preferences.json`` -- list of preference dicts, one per user
    - ``contexts.json`` -- trusted baseline contexts
    - ``suspicious_logins.json`` -- tracked fingerprints
    """

    def __init__(self, base_dir: Optional[str] = None, lock_timeout: float = 5.0) -> None:
        if base_dir is None:
            self._base = Path.home() / ".agora" / "auth"
        else:
            self._base = Path(base_dir)
        self._base.mkdir(parents=True, exist_ok=True)
        self._users_path = self._base / "users.json"
        self._sessions_path = self._base / "sessions.json"
        self._prefs_path = self._base / "preferences.json"
        self._contexts_path = self._base / "contexts.json"
        self._suspicious_path = self._base / "suspicious_logins.json"
        self._lock = threading.RLock()
        self._lock_timeout = lock_timeout

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _locked(self) -> Iterator[None]:
        if not self._lock.acquire(timeout=self._lock_timeout):
            raise DependencyError("Timed out waiting for the auth store")
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
    def _user_from_dict(d: dict) -> User:
        role_val = d.get("role", "general")
        if isinstance(role_val, str):
            try:
                role_val = Role(role_val)
            except ValueError:
                role_val = Role.general
        return User(
            id=d["id"],
            name=d.get("name", ""),
            email=d["email"],
            password_hash=d.get("password_hash", ""),
            role=role_val,
            created_at=d.get("created_at", ""),
        )

    @staticmethod
    def _user_to_dict(u: User) -> dict:
        return {
            "id": u.id,
            "name": u.name,
            "email": u.email,
            "password_hash": u.password_hash,
            "role": u.role.value if isinstance(u.role, Role) else u.role,
            "created_at": u.created_at,
        }

    # ------------------------------------------------------------------
    # User CRUD
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> User:
        """Persist a new user. Raises DuplicateError if the email is taken."""
        with self._locked():
            users = self._read_json(self._users_path)
            if any(d.get("email", "").lower() == user.email.lower() for d in users):
                raise DuplicateError("Email is already registered")
            users.append(self._user_to_dict(user))
            self._write_json(self._users_path, users)
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        for d in self._read_json(self._users_path):
            if d["id"] == user_id:
                return self._user_from_dict(d)
        return None

    def get_user_by_email(self, email: str) -> Optional[User]:
        for d in self._read_json(self._users_path):
            if d.get("email", "").lower() == email.lower():
                return self._user_from_dict(d)
        return None

    def list_users(self) -> list[User]:
        return [self._user_from_dict(d) for d in self._read_json(self._users_path)]

    def update_user_role(self, user_id: str, role: Role) -> Optional[User]:
        """Update a user's role. Returns the updated user or None."""
        with self._locked():
            users = self._read_json(self._users_path)
            for d in users:
                if d["id"] == user_id:
                    d["role"] = role.value if isinstance(role, Role) else role
                    self._write_json(self._users_path, users)
                    return self._user_from_dict(d)
        return None

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, user_id: str, expires_in_hours: int = 24) -> Session:
        """Create a new session for a user, dropping any that have expired."""
        now = datetime.now(timezone.utc)
        session = Session(
            id=str(uuid.uuid4()),
            user_id=user_id,
            token=secrets.token_urlsafe(48),
            created_at=now.isoformat(),
            expires_at=(now + timedelta(hours=expires_in_hours)).isoformat(),
        )
        with self._locked():
            sessions = [
                d for d in self._read_json(self._sessions_path)
                if not d.get("expires_at") or d["expires_at"] >= session.created_at
            ]
            sessions.append(asdict(session))
            self._write_json(self._sessions_path, sessions)
        return session

    def validate_session(self, token: str) -> Optional[User]:
        """Validate a session token and return the associated user, or None."""
        now = datetime.now(timezone.utc).isoformat()
        for d in self._read_json(self._sessions_path):
            if d["token"] == token:
                if d.get("expires_at") and d["expires_at"] < now:
                    # Expired -- clean it up
                    self.delete_session(token)
                    return None
                return self.get_user(d["user_id"])
        return None

    def delete_session(self, token: str) -> bool:
        with self._locked():
            sessions = self._read_json(self._sessions_path)
            original_len = len(sessions)
            sessions = [d for d in sessions if d["token"] != token]
            if len(sessions) < original_len:
                self._write_json(self._sessions_path, sessions)
                return True
        return False

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    def get_preference(self, user_id: str) -> Optional[UserPreference]:
        for d in self._read_json(self._prefs_path):
            if d["user_id"] == user_id:
                return UserPreference(**_known(UserPreference, d))
        return None

    def save_preference(self, pref: UserPreference) -> UserPreference:
        """Insert or replace the preference row for ``pref.user_id``."""
        pref.updated_at = datetime.now(timezone.utc).isoformat()
        with self._locked():
            prefs = self._read_json(self._prefs_path)
            prefs = [d for d in prefs if d["user_id"] != pref.user_id]
            prefs.append(asdict(pref))
            self._write_json(self._prefs_path, prefs)
        return pref

    # ------------------------------------------------------------------
    # Trusted baseline contexts
    # ------------------------------------------------------------------

    def add_context(self, ctx: UserContext) -> UserContext:
        with self._locked():
            contexts = self._read_json(self._contexts_path)
            contexts.append(asdict(ctx))
            self._write_json(self._contexts_path, contexts)
        return ctx

    def list_contexts(self, user_id: str, trusted_only: bool = False) -> list[UserContext]:
        """Return a user's baseline contexts, oldest first."""
        result = [
            UserContext(**_known(UserContext, d))
            for d in self._read_json(self._contexts_path)
            if d["user_id"] == user_id and (d.get("is_trusted", True) or not trusted_only)
        ]
        result.sort(key=lambda c: c.first_added)
        return result

    # ------------------------------------------------------------------
    # Suspicious logins
    # ------------------------------------------------------------------

    def create_suspicious_login(self, record: SuspiciousLogin) -> SuspiciousLogin:
        with self._locked():
            records = self._read_json(self._suspicious_path)
            records.append(asdict(record))
            self._write_json(self._suspicious_path, records)
        return record

    def get_suspicious_login(self, record_id: str) -> Optional[SuspiciousLogin]:
        for d in self._read_json(self._suspicious_path):
            if d["id"] == record_id:
                return SuspiciousLogin(**_known(SuspiciousLogin, d))
        return None

    def list_suspicious_logins(
        self,
        user_id: Optional[str] = None,
        *,
        is_trusted: Optional[bool] = None,
        is_blocked: Optional[bool] = None,
    ) -> list[SuspiciousLogin]:
        """Return matching records, oldest first."""
        result = []
        for d in self._read_json(self._suspicious_path):
            if user_id is not None and d["user_id"] != user_id:
                continue
            if is_trusted is not None and bool(d.get("is_trusted")) != is_trusted:
                continue
            if is_blocked is not None and bool(d.get("is_blocked")) != is_blocked:
                continue
            result.append(SuspiciousLogin(**_known(SuspiciousLogin, d)))
        result.sort(key=lambda r: r.created_at)
        return result

    def get_or_create_suspicious_login(self, record: SuspiciousLogin) -> tuple[SuspiciousLogin, bool]:
        """Return the user's record with the same fingerprint, or store ``record``.

        Lookup and insert happen under one lock.  Returns ``(record, created)``.
        """
        with self._locked():
            records = self._read_json(self._suspicious_path)
            for d in records:
                if d["user_id"] != record.user_id:
                    continue
                existing = SuspiciousLogin(**_known(SuspiciousLogin, d))
                if existing.context == record.context:
                    return existing, False
            records.append(asdict(record))
            self._write_json(self._suspicious_path, records)
        return record, True

    def modify_suspicious_login(
        self, record_id: str, change: Callable[[SuspiciousLogin], None]
    ) -> Optional[SuspiciousLogin]:
        """Apply ``change`` to one record as a single locked write.

        Returns the updated record, or None if it does not exist.
        """
        with self._locked():
            records = self._read_json(self._suspicious_path)
            for i, d in enumerate(records):
                if d["id"] == record_id:
                    record = SuspiciousLogin(**_known(SuspiciousLogin, d))
                    change(record)
                    records[i] = asdict(record)
                    self._write_json(self._suspicious_path, records)
                    return record
        return None

    def delete_suspicious_login(self, record_id: str) -> bool:
        with self._locked():
            records = self._read_json(self._suspicious_path)
            original_len = len(records)
            records = [d for d in records if d["id"] != record_id]
            if len(records) < original_len:
                self._write_json(self._suspicious_path, records)
                return True
        return False

    def prune_suspicious_logins(self, created_before: str) -> int:
        """Delete untrusted, unblocked records created before the given ISO time."""
        with self._locked():
            records = self._read_json(self._suspicious_path)
            kept = [
                d for d in records
                if d.get("is_trusted") or d.get("is_blocked") or d.get("created_at", "") >= created_before
            ]
            removed = len(records) - len(kept)
            if removed:
                self._write_json(self._suspicious_path, kept)
        return removed
