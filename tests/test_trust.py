"""Tests for the context trust engine and the login decision."""

import tempfile
from datetime import datetime, timedelta, timezone

import pytest

from agora.auth.models import CONTEXT_FIELDS, SuspiciousLogin
from agora.auth.store import UserStore
from agora.auth.trust import BLOCKED_LOGIN, INVALID_CREDENTIALS, SUSPICIOUS_LOGIN, ContextTrustEngine
from agora.config import Settings
from agora.errors import AuthenticationError, DuplicateError, NotFoundError, ValidationError
from agora.security.audit_log import AuditLogger

HOME = {
    "ip": "192.168.1.1",
    "country": "Vietnam",
    "city": "Ho Chi Minh",
    "browser": "Chrome",
    "platform": "Win32",
    "os": "Windows",
    "device": "Unknown",
    "deviceType": "Desktop",
}
CAFE = dict(HOME, ip="10.0.0.1", browser="Firefox 100")


def _engine(tmpdir: str, **overrides):
    settings = Settings(home=tmpdir, bcrypt_rounds=4, **overrides)
    store = UserStore(str(settings.auth_dir))
    audit = AuditLogger(settings.audit_dir)
    return ContextTrustEngine(store, settings, audit), store, audit


def _register(engine, email="nam@example.com", context=HOME):
    return engine.register("nam", email, "123456", context)


# ---------------------------------------------------------------------------
# add_new_suspicious_login
# ---------------------------------------------------------------------------


def test_new_suspicious_login_has_fresh_defaults():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, store, _ = _engine(tmpdir)
        user = _register(engine)

        record = engine.add_new_suspicious_login(user.id, user, CAFE)

        assert record.id
        assert record.created_at
        assert record.unverified_attempts == 0
        assert record.is_trusted is False
        assert record.is_blocked is False
        assert record.email == user.email
        assert record.ip == "10.0.0.1"
        assert record.device_type == "Desktop"
        assert [r.id for r in store.list_suspicious_logins(user.id)] == [record.id]


@pytest.mark.parametrize("name", CONTEXT_FIELDS)
def test_new_suspicious_login_rejects_missing_field_without_writing(name):
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, store, _ = _engine(tmpdir)
        user = _register(engine)
        context = {k: v for k, v in CAFE.items() if k != name and not (name == "device_type" and k == "deviceType")}

        with pytest.raises(ValidationError):
            engine.add_new_suspicious_login(user.id, user, context)

        assert store.list_suspicious_logins(user.id) == []


def test_new_suspicious_login_requires_email_and_user_id():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, store, _ = _engine(tmpdir)
        user = _register(engine)

        with pytest.raises(ValidationError):
            engine.add_new_suspicious_login(user.id, {"name": "nam"}, CAFE)
        with pytest.raises(ValidationError):
            engine.add_new_suspicious_login("", user, CAFE)

        assert store.list_suspicious_logins() == []


def test_old_suspicious_context_requires_exact_match():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, _, _ = _engine(tmpdir)
        user = _register(engine)
        record = engine.add_new_suspicious_login(user.id, user, CAFE)

        assert engine.get_old_suspicious_context_data(user.id, CAFE).id == record.id
        assert engine.get_old_suspicious_context_data(user.id, dict(CAFE, city="Hanoi")) is None


# ---------------------------------------------------------------------------
# Login decision
# ---------------------------------------------------------------------------


def test_bad_credentials_share_one_message():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, _, _ = _engine(tmpdir)
        _register(engine)

        with pytest.raises(AuthenticationError) as wrong_password:
            engine.login("nam@example.com", "nope", HOME)
        with pytest.raises(AuthenticationError) as unknown_email:
            engine.login("ghost@example.com", "123456", HOME)

        assert wrong_password.value.message == INVALID_CREDENTIALS
        assert unknown_email.value.message == INVALID_CREDENTIALS


def test_partial_context_fails_the_same_for_any_password():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, store, _ = _engine(tmpdir)
        user = _register(engine)

        with pytest.raises(ValidationError) as right_password:
            engine.login("nam@example.com", "123456", {"ip": "9.9.9.9"})
        with pytest.raises(ValidationError) as wrong_password:
            engine.login("nam@example.com", "nope", {"ip": "9.9.9.9"})

        assert right_password.value.message == wrong_password.value.message
        assert store.list_suspicious_logins(user.id) == []


def test_partial_context_never_becomes_a_baseline():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, store, _ = _engine(tmpdir)
        user = engine.register("nam", "nam@example.com", "123456")

        with pytest.raises(ValidationError):
            engine.login("nam@example.com", "123456", dict(HOME, city=None))

        assert store.list_contexts(user.id) == []


def test_registration_context_is_trusted():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, store, _ = _engine(tmpdir)
        user = _register(engine)

        result = engine.login("nam@example.com", "123456", HOME)

        assert result.trusted_path == "trusted"
        assert store.validate_session(result.session.token).id == user.id


def test_first_login_without_baseline_is_trusted_on_first_use():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, store, _ = _engine(tmpdir)
        user = _register(engine, context=None)

        first = engine.login("nam@example.com", "123456", CAFE)
        assert first.trusted_path == "first_login"
        assert len(store.list_contexts(user.id)) == 1

        with pytest.raises(AuthenticationError) as exc:
            engine.login("nam@example.com", "123456", HOME)
        assert exc.value.message == SUSPICIOUS_LOGIN


def test_first_login_rejected_when_trust_on_first_use_is_off():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, store, _ = _engine(tmpdir, trust_first_login=False)
        user = _register(engine, context=None)

        with pytest.raises(AuthenticationError):
            engine.login("nam@example.com", "123456", CAFE)
        assert store.list_contexts(user.id) == []


def test_unseen_context_creates_record_and_is_rejected():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, store, _ = _engine(tmpdir)
        user = _register(engine)

        with pytest.raises(AuthenticationError) as exc:
            engine.login("nam@example.com", "123456", CAFE)

        assert exc.value.message == SUSPICIOUS_LOGIN
        records = store.list_suspicious_logins(user.id)
        assert len(records) == 1
        assert records[0].unverified_attempts == 0
        assert records[0].state == "new"


def test_repeat_sightings_escalate_until_blocked():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, store, _ = _engine(tmpdir, max_unverified_attempts=2)
        user = _register(engine)

        messages = []
        for _ in range(5):
            with pytest.raises(AuthenticationError) as exc:
                engine.login("nam@example.com", "123456", CAFE)
            messages.append(exc.value.message)

        # first sighting, then repeats 1 and 2 are suspicious, repeat 3 blocks
        assert messages == [SUSPICIOUS_LOGIN, SUSPICIOUS_LOGIN, SUSPICIOUS_LOGIN, BLOCKED_LOGIN, BLOCKED_LOGIN]
        (record,) = store.list_suspicious_logins(user.id)
        assert record.is_blocked is True
        assert record.is_trusted is False
        assert record.unverified_attempts == 3

        # The trusted context is unaffected.
        assert engine.login("nam@example.com", "123456", HOME).trusted_path == "trusted"


def test_preference_off_admits_any_context():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, store, _ = _engine(tmpdir)
        user = _register(engine)
        engine.set_user_preferences(user.id, False)

        result = engine.login("nam@example.com", "123456", CAFE)

        assert result.trusted_path == "context_auth_disabled"
        assert store.list_suspicious_logins(user.id) == []


def test_missing_preference_uses_configured_default():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, _, _ = _engine(tmpdir, context_auth_default=False)
        _register(engine)

        assert engine.login("nam@example.com", "123456", CAFE).trusted_path == "context_auth_disabled"


def test_unblock_resets_attempts_and_trusts_fingerprint():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, _, _ = _engine(tmpdir, max_unverified_attempts=0)
        user = _register(engine)
        for _ in range(2):
            with pytest.raises(AuthenticationError):
                engine.login("nam@example.com", "123456", CAFE)
        (blocked,) = engine.get_blocked_auth_context_data(user.id)

        record = engine.unblock_context(user.id, blocked["id"])

        assert record.is_blocked is False
        assert record.is_trusted is True
        assert record.unverified_attempts == 0
        assert engine.login("nam@example.com", "123456", CAFE).trusted_path == "trusted"


def test_blocking_a_trusted_context_stops_it_matching():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, _, _ = _engine(tmpdir)
        user = _register(engine)
        record = engine.add_new_suspicious_login(user.id, user, CAFE)
        engine.unblock_context(user.id, record.id)
        assert engine.login("nam@example.com", "123456", CAFE).trusted_path == "trusted"

        engine.block_context(user.id, record.id)

        with pytest.raises(AuthenticationError) as exc:
            engine.login("nam@example.com", "123456", CAFE)
        assert exc.value.message == BLOCKED_LOGIN


# ---------------------------------------------------------------------------
# Account and context management
# ---------------------------------------------------------------------------


def test_register_rejects_duplicate_email_case_insensitively():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, _, _ = _engine(tmpdir)
        _register(engine)

        with pytest.raises(DuplicateError):
            _register(engine, email="NAM@example.com")


def test_auth_context_data_returns_first_baseline():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, _, _ = _engine(tmpdir)
        user = _register(engine)
        bare = _register(engine, email="bare@example.com", context=None)

        ctx = engine.get_auth_context_data(user.id)

        assert ctx.ip == HOME["ip"]
        assert ctx.first_added
        with pytest.raises(NotFoundError):
            engine.get_auth_context_data(bare.id)


def test_trusted_and_blocked_lists_carry_id_and_time():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, _, _ = _engine(tmpdir)
        user = _register(engine)
        trusted = engine.add_new_suspicious_login(user.id, user, CAFE)
        blocked = engine.add_new_suspicious_login(user.id, user, dict(CAFE, ip="10.9.9.9"))
        engine.unblock_context(user.id, trusted.id)
        engine.block_context(user.id, blocked.id)

        (t,) = engine.get_trusted_auth_context_data(user.id)
        (b,) = engine.get_blocked_auth_context_data(user.id)

        assert t["id"] == trusted.id and t["time"] == trusted.created_at
        assert b["id"] == blocked.id and b["ip"] == "10.9.9.9"


def test_context_records_are_owner_scoped():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, store, _ = _engine(tmpdir)
        owner = _register(engine)
        other = _register(engine, email="other@example.com")
        record = engine.add_new_suspicious_login(owner.id, owner, CAFE)

        for action in (engine.block_context, engine.unblock_context, engine.delete_context):
            with pytest.raises(NotFoundError):
                action(other.id, record.id)

        engine.delete_context(owner.id, record.id)
        assert store.get_suspicious_login(record.id) is None


def test_preferences_not_found_until_set():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, _, _ = _engine(tmpdir)
        user = _register(engine)

        with pytest.raises(NotFoundError):
            engine.get_user_preferences(user.id)

        engine.set_user_preferences(user.id, False)
        engine.set_user_preferences(user.id, True)
        assert engine.get_user_preferences(user.id).enable_context_based_auth is True


def test_prune_keeps_trusted_and_blocked_records():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, store, _ = _engine(tmpdir)
        user = _register(engine)
        old = (datetime.now(timezone.utc) - timedelta(days=40)).isoformat()
        fields = {k: v for k, v in CAFE.items() if k != "deviceType"}
        for suffix, blocked in (("1", False), ("2", True)):
            store.create_suspicious_login(
                SuspiciousLogin(id=f"old-{suffix}", user_id=user.id, email=user.email,
                                device_type="Desktop", is_blocked=blocked, created_at=old, **fields)
            )
        engine.add_new_suspicious_login(user.id, user, dict(CAFE, ip="10.1.1.1"))

        assert engine.prune_stale_contexts(30) == 1
        assert {r.id for r in store.list_suspicious_logins(user.id)} >= {"old-2"}
        assert store.get_suspicious_login("old-1") is None


def test_login_outcomes_are_audited():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, _, audit = _engine(tmpdir)
        user = _register(engine)
        engine.login("nam@example.com", "123456", HOME)
        with pytest.raises(AuthenticationError):
            engine.login("nam@example.com", "123456", CAFE)
        with pytest.raises(AuthenticationError):
            engine.login("nam@example.com", "wrong", HOME)

        actions = {e.action for e in audit.get_events(actor=user.id)}
        assert {"user.register", "login.success", "login.suspicious"} <= actions
        assert audit.get_events(action="login.failed")[0].success is False
