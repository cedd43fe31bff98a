"""Tests for the audit logger."""

import json
import tempfile
from pathlib import Path

from agora.security.audit_log import AuditLogger


def _seed(logger: AuditLogger) -> None:
    logger.log_event("u1", "login.success", "user", "u1", ip_address="10.0.0.1")
    logger.log_event("u1", "login.suspicious", "context", "r1", details={"attempts": 1}, success=False)
    logger.log_event("mod", "community.ban", "community", "c1", details={"user_id": "u2"})


def test_log_and_filter_events():
    with tempfile.TemporaryDirectory() as tmpdir:
        logger = AuditLogger(Path(tmpdir))
        _seed(logger)

        assert len(logger.get_events()) == 3
        assert {e.action for e in logger.get_events(actor="u1")} == {"login.success", "login.suspicious"}
        (ban,) = logger.get_events(resource_type="community")
        assert ban.details == {"user_id": "u2"}
        assert logger.get_events(action="login.suspicious")[0].success is False
        assert len(logger.get_events(limit=1)) == 1


def test_events_for_resource():
    with tempfile.TemporaryDirectory() as tmpdir:
        logger = AuditLogger(Path(tmpdir))
        _seed(logger)

        (event,) = logger.get_events_for_resource("context", "r1")
        assert event.details == {"attempts": 1}
        assert logger.get_events_for_resource("context", "nope") == []


def test_export_json_and_csv():
    with tempfile.TemporaryDirectory() as tmpdir:
        logger = AuditLogger(Path(tmpdir))
        _seed(logger)

        exported = json.loads(logger.export_events("json", actor="mod"))
        assert [e["action"] for e in exported] == ["community.ban"]

        lines = logger.export_events("csv").splitlines()
        assert lines[0].startswith("id,timestamp,actor,action")
        assert len(lines) == 4


def test_corrupt_lines_are_skipped():
    with tempfile.TemporaryDirectory() as tmpdir:
        logger = AuditLogger(Path(tmpdir))
        _seed(logger)
        (Path(tmpdir) / "2000-01-01.jsonl").write_text("not json\n")

        assert len(logger.get_events()) == 3
