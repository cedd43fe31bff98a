"""Auth domain models for users, sessions, preferences and login contexts."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional

# Order matters: it is the comparison order of the context fingerprint.
CONTEXT_FIELDS: tuple[str, ...] = (
    "ip",
    "country",
    "city",
    "browser",
    "platform",
    "os",
    "device",
    "device_type",
)

# Wire names used by browser clients.
_WIRE_ALIASES = {"deviceType": "device_type"}


class Role(str, Enum):
    """Role hierarchy: admin > moderator > general."""

    admin = "admin"
    moderator = "moderator"
    general = "general"

    @property
    def level(self) -> int:
        """Return numeric level for comparison (higher = more privileges)."""
        return {
            Role.admin: 30,
            Role.moderator: 20,
            Role.general: 10,
        }[self]


@dataclass
class User:
    """Represents a registered user."""

    id: str
    name: str
    email: str
    password_hash: str = ""
    role: Role = Role.general
    created_at: str = ""

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = datetime.now(timezone.utc).isoformat()
        if isinstance(self.role, str):
            self.role = Role(self.role)


@dataclass
class Session:
    """Represents an active user session."""

    id: str
    user_id: str
    token: str
    created_at: str = ""
    expires_at: str = ""

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = datetime.now(timezone.utc).isoformat()


@dataclass
class UserPreference:
    """Per-user switches; one row per user, created lazily."""

    user_id: str
    enable_context_based_auth: bool = True
    updated_at: str = ""

    def __post_init__(self) -> None:
        if not self.updated_at:
            self.updated_at = datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class ContextData:
    """The fingerprint of a login attempt's origin.

    Equality is field-wise over the eight tracked fields.  A field that was
    absent on input is ``None``.
    """

    ip: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    browser: Optional[str] = None
    platform: Optional[str] = None
    os: Optional[str] = None
    device: Optional[str] = None
    device_type: Optional[str] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ContextData":
        """Build from a dict using snake_case or wire (``deviceType``) keys."""
        values: dict[str, Any] = {}
        for key, value in data.items():
            key = _WIRE_ALIASES.get(key, key)
            if key in CONTEXT_FIELDS:
                values[key] = value
        return cls(**values)

    def missing_fields(self) -> list[str]:
        return [name for name in CONTEXT_FIELDS if getattr(self, name) in (None, "")]

    def filled_from(self, fallback: "ContextData") -> "ContextData":
        """Return a copy whose missing fields are taken from ``fallback``."""
        return ContextData(**{
            name: getattr(fallback, name) if name in self.missing_fields() else getattr(self, name)
            for name in CONTEXT_FIELDS
        })

    def to_dict(self) -> dict[str, Optional[str]]:
        return {name: getattr(self, name) for name in CONTEXT_FIELDS}


@dataclass
class UserContext:
    """A trusted baseline context for a user."""

    id: str
    user_id: str
    email: str
    ip: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    browser: Optional[str] = None
    platform: Optional[str] = None
    os: Optional[str] = None
    device: Optional[str] = None
    device_type: Optional[str] = None
    is_trusted: bool = True
    first_added: str = ""

    def __post_init__(self) -> None:
        if not self.first_added:
            self.first_added = datetime.now(timezone.utc).isoformat()

    @property
    def context(self) -> ContextData:
        return ContextData(**{name: getattr(self, name) for name in CONTEXT_FIELDS})


@dataclass
class SuspiciousLogin:
    """A tracked, not-yet-trusted fingerprint for one user.

    ``unverified_attempts`` stays 0 while ``is_trusted`` is set.
    """

    id: str
    user_id: str
    email: str
    ip: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    browser: Optional[str] = None
    platform: Optional[str] = None
    os: Optional[str] = None
    device: Optional[str] = None
    device_type: Optional[str] = None
    unverified_attempts: int = 0
    is_trusted: bool = False
    is_blocked: bool = False
    created_at: str = ""
    last_seen: str = ""

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = datetime.now(timezone.utc).isoformat()
        if not self.last_seen:
            self.last_seen = self.created_at

    @property
    def context(self) -> ContextData:
        return ContextData(**{name: getattr(self, name) for name in CONTEXT_FIELDS})

    @property
    def state(self) -> str:
        """One of ``new``, ``tracked``, ``trusted`` or ``blocked``."""
        if self.is_blocked:
            return "blocked"
        if self.is_trusted:
            return "trusted"
        return "tracked" if self.unverified_attempts > 0 else "new"


@dataclass
class LoginResult:
    """Outcome of a successful login decision."""

    user: User
    session: Session
    trusted_path: str  # "trusted" | "context_auth_disabled" | "first_login"
    context: Optional[ContextData] = field(default=None)
