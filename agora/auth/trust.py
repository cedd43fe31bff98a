"""Context-based login trust engine.

Decides whether a login attempt's context fingerprint is trusted, tracked as
suspicious, or blocked, and manages the user's trusted / blocked contexts.

Decision order for :meth:`ContextTrustEngine.login`:

1. credentials (same message whether the email or the password is wrong)
2. the user's ``enable_context_based_auth`` preference
3. the trusted set (baselines plus unblocked trusted suspicious records);
   an empty set admits and records the first context when
   ``trust_first_login`` is on
4. exact match against any trusted context
5. the suspicious record for this exact fingerprint, created at zero attempts
   or escalated until it is blocked
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

from agora.auth.context import (
    ContextLike,
    as_context,
    is_old_data_matched,
    is_trusted_device,
)
from agora.auth.models import (
    ContextData,
    LoginResult,
    Role,
    SuspiciousLogin,
    User,
    UserContext,
    UserPreference,
)
from agora.auth.passwords import hash_password, verify_password
from agora.auth.store import UserStore
from agora.config import Settings
from agora.errors import (
    AuthenticationError,
    DependencyError,
    NotFoundError,
    ValidationError,
)
from agora.security.audit_log import AuditLogger

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid credentials"
SUSPICIOUS_LOGIN = "Suspicious login attempt detected"
BLOCKED_LOGIN = "This device has been blocked due to repeated unverified login attempts"


def _snapshot_email(user_snapshot: Any) -> Optional[str]:
    if user_snapshot is None:
        return None
    if isinstance(user_snapshot, Mapping):
        return user_snapshot.get("email")
    return getattr(user_snapshot, "email", None)


def _record_view(record: SuspiciousLogin) -> dict[str, Any]:
    """Listing shape for trusted / blocked contexts: fingerprint plus id and time."""
    view: dict[str, Any] = {"id": record.id, "time": record.created_at}
    view.update(record.context.to_dict())
    view["unverified_attempts"] = record.unverified_attempts
    view["is_trusted"] = record.is_trusted
    view["is_blocked"] = record.is_blocked
    return view


class ContextTrustEngine:
    """Login decisions and context management on top of a :class:`UserStore`."""

    def __init__(
        self,
        store: UserStore,
        settings: Optional[Settings] = None,
        audit: Optional[AuditLogger] = None,
    ) -> None:
        self._store = store
        self._settings = settings or Settings()
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
            # Audit failures never change the outcome of the operation.
            logger.exception("Audit write failed for %s on %s", action, resource_id)

    def _issue_session(self, user: User, path: str, context: ContextData, ip_address: str) -> LoginResult:
        session = self._store.create_session(user.id, expires_in_hours=self._settings.session_hours)
        self._log(user.id, "login.success", "user", user.id, details={"path": path}, ip_address=ip_address)
        logger.info("Login admitted for user %s via %s", user.id, path)
        return LoginResult(user=user, session=session, trusted_path=path, context=context)

    def _owned_record(self, user_id: str, record_id: str) -> SuspiciousLogin:
        record = self._store.get_suspicious_login(record_id)
        if record is None or record.user_id != user_id:
            raise NotFoundError("Not found")
        return record

    def _context_auth_enabled(self, user_id: str) -> bool:
        pref = self._store.get_preference(user_id)
        if pref is None:
            return self._settings.context_auth_default
        return pref.enable_context_based_auth

    def trusted_contexts(self, user_id: str) -> list[ContextData]:
        """Fingerprints the login decision treats as trusted for ``user_id``."""
        trusted = [c.context for c in self._store.list_contexts(user_id, trusted_only=True)]
        trusted.extend(
            r.context
            for r in self._store.list_suspicious_logins(user_id, is_trusted=True, is_blocked=False)
        )
        return trusted

    # ------------------------------------------------------------------
    # Suspicious login records
    # ------------------------------------------------------------------

    def _new_record(self, user_id: str, user_snapshot: Any, context: ContextLike) -> SuspiciousLogin:
        """Validate the input and build an unsaved record at zero attempts."""
        if not user_id:
            raise ValidationError("User id is required")
        email = _snapshot_email(user_snapshot)
        if not email:
            raise ValidationError("User email is required")
        ctx = as_context(context)
        missing = ctx.missing_fields()
        if missing:
            raise ValidationError(f"Missing required context fields: {', '.join(missing)}")
        if self._store.get_user(user_id) is None:
            raise NotFoundError("User not found")

        return SuspiciousLogin(
            id=str(uuid.uuid4()),
            user_id=user_id,
            email=email,
            unverified_attempts=0,
            is_trusted=False,
            is_blocked=False,
            **ctx.to_dict(),
        )

    def add_new_suspicious_login(
        self, user_id: str, user_snapshot: Any, context: ContextLike
    ) -> SuspiciousLogin:
        """Persist a fresh record for a fingerprint never seen for this user.

        All input is validated before the store is touched, so a rejected call
        leaves nothing behind.
        """
        return self._store.create_suspicious_login(self._new_record(user_id, user_snapshot, context))

    def get_old_suspicious_context_data(
        self, user_id: str, context: ContextLike
    ) -> Optional[SuspiciousLogin]:
        """Return the user's record whose fingerprint exactly matches, else None."""
        for record in self._store.list_suspicious_logins(user_id):
            if is_old_data_matched(record, context):
                return record
        return None

    # ------------------------------------------------------------------
    # Login decision
    # ------------------------------------------------------------------

    def login(self, email: str, password: str, context: ContextLike, ip_address: str = "") -> LoginResult:
        """Authenticate ``email`` and classify the attempt's context.

        An incomplete context is rejected before the credentials are checked,
        so the answer is the same whether or not the password is right.
        """
        ctx = as_context(context)
        missing = ctx.missing_fields()
        if missing:
            raise ValidationError(f"Missing required context fields: {', '.join(missing)}")

        user = self._store.get_user_by_email(email or "")
        if user is None or not verify_password(password or "", user.password_hash):
            self._log(email or "", "login.failed", "user", user.id if user else "", ip_address=ip_address, success=False)
            raise AuthenticationError(INVALID_CREDENTIALS)

        if not self._context_auth_enabled(user.id):
            return self._issue_session(user, "context_auth_disabled", ctx, ip_address)

        trusted = self.trusted_contexts(user.id)
        if not trusted and self._settings.trust_first_login:
            self._store.add_context(
                UserContext(id=str(uuid.uuid4()), user_id=user.id, email=user.email, **ctx.to_dict())
            )
            return self._issue_session(user, "first_login", ctx, ip_address)

        if any(is_trusted_device(ctx, baseline) for baseline in trusted):
            return self._issue_session(user, "trusted", ctx, ip_address)

        raise AuthenticationError(self._track_untrusted(user, ctx, ip_address))

    def _track_untrusted(self, user: User, ctx: ContextData, ip_address: str) -> str:
        """Record or escalate the sighting and return the rejection message."""
        existing, created = self._store.get_or_create_suspicious_login(self._new_record(user.id, user, ctx))

        if created:
            logger.info("New suspicious context %s for user %s", existing.id, user.id)
            self._log(user.id, "login.suspicious", "context", existing.id,
                      details={"attempts": 0}, ip_address=ip_address, success=False)
            return SUSPICIOUS_LOGIN

        if existing.is_blocked:
            self._log(user.id, "login.blocked", "context", existing.id, ip_address=ip_address, success=False)
            return BLOCKED_LOGIN

        threshold = self._settings.max_unverified_attempts

        def escalate(record: SuspiciousLogin) -> None:
            if record.is_blocked:
                return
            record.unverified_attempts += 1
            record.last_seen = datetime.now(timezone.utc).isoformat()
            if record.unverified_attempts > threshold:
                record.is_blocked = True
                record.is_trusted = False

        updated = self._store.modify_suspicious_login(existing.id, escalate)
        if updated is None:
            # Deleted between the lookup and the update.
            return SUSPICIOUS_LOGIN

        if updated.is_blocked:
            logger.warning("Context %s for user %s blocked after %d attempts",
                           updated.id, user.id, updated.unverified_attempts)
            self._log(user.id, "login.blocked", "context", updated.id,
                      details={"attempts": updated.unverified_attempts}, ip_address=ip_address, success=False)
            return BLOCKED_LOGIN

        self._log(user.id, "login.suspicious", "context", updated.id,
                  details={"attempts": updated.unverified_attempts}, ip_address=ip_address, success=False)
        return SUSPICIOUS_LOGIN

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def register(
        self,
        name: str,
        email: str,
        password: str,
        context: Optional[ContextLike] = None,
        role: Role = Role.general,
    ) -> User:
        """Create a user; the registration context becomes the first baseline."""
        if not name or not email or not password:
            raise ValidationError("Name, email and password are required")
        user = User(
            id=str(uuid.uuid4()),
            name=name,
            email=email.strip(),
            password_hash=hash_password(password, rounds=self._settings.bcrypt_rounds),
            role=role,
        )
        self._store.create_user(user)
        if context is not None:
            ctx = as_context(context)
            self._store.add_context(
                UserContext(id=str(uuid.uuid4()), user_id=user.id, email=user.email, **ctx.to_dict())
            )
        self._log(user.id, "user.register", "user", user.id, details={"role": user.role.value})
        return user

    # ------------------------------------------------------------------
    # Context management
    # ------------------------------------------------------------------

    def get_auth_context_data(self, user_id: str) -> UserContext:
        """Return the user's earliest trusted baseline."""
        contexts = self._store.list_contexts(user_id)
        if not contexts:
            raise NotFoundError("Not found")
        return contexts[0]

    def get_trusted_auth_context_data(self, user_id: str) -> list[dict[str, Any]]:
        return [_record_view(r) for r in self._store.list_suspicious_logins(user_id, is_trusted=True)]

    def get_blocked_auth_context_data(self, user_id: str) -> list[dict[str, Any]]:
        return [_record_view(r) for r in self._store.list_suspicious_logins(user_id, is_blocked=True)]

    def block_context(self, user_id: str, record_id: str) -> SuspiciousLogin:
        self._owned_record(user_id, record_id)

        def block(record: SuspiciousLogin) -> None:
            record.is_blocked = True
            record.is_trusted = False

        updated = self._store.modify_suspicious_login(record_id, block)
        if updated is None:
            raise NotFoundError("Not found")
        self._log(user_id, "context.block", "context", record_id)
        return updated

    def unblock_context(self, user_id: str, record_id: str) -> SuspiciousLogin:
        """Clear the block and trust the fingerprint; attempts restart at zero."""
        self._owned_record(user_id, record_id)

        def unblock(record: SuspiciousLogin) -> None:
            record.is_blocked = False
            record.is_trusted = True
            record.unverified_attempts = 0

        updated = self._store.modify_suspicious_login(record_id, unblock)
        if updated is None:
            raise NotFoundError("Not found")
        self._log(user_id, "context.unblock", "context", record_id)
        return updated

    def delete_context(self, user_id: str, record_id: str) -> None:
        self._owned_record(user_id, record_id)
        if not self._store.delete_suspicious_login(record_id):
            raise NotFoundError("Not found")
        self._log(user_id, "context.delete", "context", record_id)

    def prune_stale_contexts(self, older_than_days: int) -> int:
        """Delete untrusted, unblocked records older than ``older_than_days``."""
        if older_than_days < 0:
            raise ValidationError("older_than_days must be >= 0")
        cutoff = (datetime.now(timezone.utc) - timedelta(days=older_than_days)).isoformat()
        removed = self._store.prune_suspicious_logins(cutoff)
        logger.info("Pruned %d stale suspicious login records", removed)
        return removed

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    def get_user_preferences(self, user_id: str) -> UserPreference:
        pref = self._store.get_preference(user_id)
        if pref is None:
            raise NotFoundError("Not found")
        return pref

    def set_user_preferences(self, user_id: str, enable_context_based_auth: bool) -> UserPreference:
        return self._store.save_preference(
            UserPreference(user_id=user_id, enable_context_based_auth=bool(enable_context_based_auth))
        )
