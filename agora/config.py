"""Runtime configuration.

Values come from (lowest to highest precedence) the dataclass defaults, an
optional ``<home>/config.yaml`` and ``AGORA_*`` environment variables.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Optional

import yaml

from agora.errors import ValidationError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Environment configuration
# ---------------------------------------------------------------------------

_ENV_VARS = {
    "max_unverified_attempts": "AGORA_MAX_UNVERIFIED_ATTEMPTS",
    "context_auth_default": "AGORA_CONTEXT_AUTH_DEFAULT",
    "trust_first_login": "AGORA_TRUST_FIRST_LOGIN",
    "session_hours": "AGORA_SESSION_HOURS",
    "bcrypt_rounds": "AGORA_BCRYPT_ROUNDS",
    "store_timeout_seconds": "AGORA_STORE_TIMEOUT",
    "log_level": "AGORA_LOG_LEVEL",
}

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass
class Settings:
    """Tunables for the trust engine, the stores and the web app."""

    home: str = ""
    max_unverified_attempts: int = 3
    context_auth_default: bool = True
    trust_first_login: bool = True
    session_hours: int = 24
    bcrypt_rounds: int = 12
    store_timeout_seconds: float = 5.0
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not self.home:
            self.home = str(Path.home() / ".agora")
        if self.max_unverified_attempts < 0:
            raise ValidationError("max_unverified_attempts must be >= 0")
        if self.session_hours <= 0:
            raise ValidationError("session_hours must be positive")
        if self.store_timeout_seconds <= 0:
            raise ValidationError("store_timeout_seconds must be positive")

    @property
    def auth_dir(self) -> Path:
        return Path(self.home) / "auth"

    @property
    def communities_dir(self) -> Path:
        return Path(self.home) / "communities"

    @property
    def audit_dir(self) -> Path:
        return Path(self.home) / "audit_logs"


def _coerce(name: str, raw: Any, target: type) -> Any:
    if target is bool:
        if isinstance(raw, bool):
            return raw
        text = str(raw).strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
        raise ValidationError(f"Invalid boolean for {name}: {raw!r}")
    try:
        return target(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid value for {name}: {raw!r}")


def _field_types() -> dict[str, type]:
    types = {"str": str, "int": int, "float": float, "bool": bool}
    return {f.name: types[f.type] if isinstance(f.type, str) else f.type for f in fields(Settings)}


def load_settings(home: Optional[str] = None) -> Settings:
    """Build settings from defaults, ``config.yaml`` and the environment."""
    home = home or os.environ.get("AGORA_HOME", "") or str(Path.home() / ".agora")
    types = _field_types()
    values: dict[str, Any] = {}

    config_path = Path(home) / "config.yaml"
    if config_path.exists():
        try:
            data = yaml.safe_load(config_path.read_text()) or {}
        except (yaml.YAMLError, OSError) as exc:
            raise ValidationError(f"Unreadable config file {config_path}") from exc
        if not isinstance(data, dict):
            raise ValidationError(f"Config file {config_path} must contain a mapping")
        for key, raw in data.items():
            if key not in types or key == "home":
                logger.warning("Ignoring unknown config key %r in %s", key, config_path)
                continue
            values[key] = _coerce(key, raw, types[key])

    for key, env_name in _ENV_VARS.items():
        raw = os.environ.get(env_name)
        if raw is not None and raw != "":
            values[key] = _coerce(key, raw, types[key])

    return Settings(home=home, **values)


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the process-wide settings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Attach a basic handler to the ``agora`` logger if none is configured."""
    settings = settings or get_settings()
    root = logging.getLogger("agora")
    root.setLevel(settings.log_level.upper())
    if not logging.getLogger().handlers:
        logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(name)s %(levelname)s %(message)s")
