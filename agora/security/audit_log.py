"""Audit logging for login decisions and moderation actions.

Provides file-based JSON audit logging with filtering and export. Events are
stored as newline-delimited JSON, one file per UTC day, in
``~/.agora/audit_logs/``.
"""

from __future__ import annotations

import csv
import io
import json
import logging
import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from agora.errors import DependencyError

logger = logging.getLogger(__name__)

_CSV_COLUMNS = ["id", "timestamp", "actor", "action", "resource_type", "resource_id", "success", "ip_address"]


@dataclass
class AuditEntry:
    """A single audit log entry."""

    id: str
    timestamp: str
    actor: str
    action: str
    resource_type: str
    resource_id: str
    details: dict[str, Any] = field(default_factory=dict)
    ip_address: str = ""
    success: bool = True


class AuditLogger:
    """File-based JSON audit logger."""

    def __init__(self, base_dir: Optional[Path] = None) -> None:
        self._base_dir = Path(base_dir) if base_dir else Path.home() / ".agora" / "audit_logs"
        self._base_dir.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _log_file_for_date(self, dt: datetime) -> Path:
        """Return the log file path for a given date."""
        return self._base_dir / f"{dt.strftime('%Y-%m-%d')}.jsonl"

    def _current_log_file(self) -> Path:
        return self._log_file_for_date(datetime.now(timezone.utc))

    def _read_all_entries(self) -> list[AuditEntry]:
        """Read every entry from all log files; unreadable lines are skipped."""
        names = {f.name for f in fields(AuditEntry)}
        entries: list[AuditEntry] = []
        for path in sorted(self._base_dir.glob("*.jsonl")):
            try:
                text = path.read_text(encoding="utf-8")
            except OSError:
                logger.warning("Skipping unreadable audit file %s", path)
                continue
            for line in text.strip().splitlines():
                if not line.strip():
                    continue
                try:
                    data = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("Skipping corrupt audit line in %s", path)
                    continue
                entries.append(AuditEntry(**{k: v for k, v in data.items() if k in names}))
        return entries

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def log_event(
        self,
        actor: str,
        action: str,
        resource_type: str,
        resource_id: str,
        details: Optional[dict[str, Any]] = None,
        ip_address: str = "",
        success: bool = True,
    ) -> AuditEntry:
        """Record an audit event and return the created entry."""
        entry = AuditEntry(
            id=uuid.uuid4().hex[:16],
            timestamp=datetime.now(timezone.utc).isoformat(),
            actor=actor,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details=details or {},
            ip_address=ip_address,
            success=success,
        )
        try:
            with self._current_log_file().open("a", encoding="utf-8") as fh:
                fh.write(json.dumps(asdict(entry), default=str) + "\n")
        except OSError as exc:
            raise DependencyError("Could not write audit log") from exc
        return entry

    def get_events(
        self,
        *,
        actor: Optional[str] = None,
        action: Optional[str] = None,
        resource_type: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        limit: int = 200,
    ) -> list[AuditEntry]:
        """Return filtered audit events, newest first."""
        entries = self._read_all_entries()

        if actor:
            entries = [e for e in entries if e.actor == actor]
        if action:
            entries = [e for e in entries if e.action == action]
        if resource_type:
            entries = [e for e in entries if e.resource_type == resource_type]
        if start_date:
            entries = [e for e in entries if e.timestamp >= start_date]
        if end_date:
            entries = [e for e in entries if e.timestamp <= end_date]

        # Newest first
        entries.sort(key=lambda e: e.timestamp, reverse=True)
        return entries[:limit]

    def get_events_for_resource(self, resource_type: str, resource_id: str) -> list[AuditEntry]:
        """Return all events for a specific resource, newest first."""
        result = [
            e
            for e in self._read_all_entries()
            if e.resource_type == resource_type and e.resource_id == resource_id
        ]
        result.sort(key=lambda e: e.timestamp, reverse=True)
        return result

    def export_events(self, fmt: str = "json", **filters: Any) -> str:
        """Export audit events in the specified format (``json`` or ``csv``)."""
        filters.setdefault("limit", 10000)
        entries = self.get_events(**filters)

        if fmt == "csv":
            buf = io.StringIO()
            writer = csv.writer(buf, lineterminator="\n")
            writer.writerow(_CSV_COLUMNS)
            for e in entries:
                writer.writerow([getattr(e, col) for col in _CSV_COLUMNS])
            return buf.getvalue().rstrip("\n")

        # Default to JSON
        return json.dumps([asdict(e) for e in entries], indent=2, default=str)
