"""Tests for the FastAPI web layer."""

import pytest
from fastapi.testclient import TestClient

from agora.auth.models import Role
from agora.config import Settings
from web.backend.app.main import app
from web.backend.app.middleware.auth import get_settings_dep, get_store

HOME = {
    "ip": "10.0.0.1",
    "country": "VN",
    "city": "Hanoi",
    "browser": "Chrome 120.0",
    "platform": "Windows",
    "os": "Windows 10",
    "device": "unknown",
    "deviceType": "Desktop",
}
CAFE = {**HOME, "ip": "203.0.113.9", "city": "Da Nang"}


@pytest.fixture
def settings(tmp_path):
    return Settings(home=str(tmp_path), bcrypt_rounds=4)


@pytest.fixture
def client(settings):
    app.dependency_overrides[get_settings_dep] = lambda: settings
    yield TestClient(app)
    app.dependency_overrides.clear()


def _signup(client, email: str, name: str = "User") -> dict:
    """Register from HOME, log in from HOME and return auth headers plus the user id."""
    registered = client.post(
        "/api/auth/register",
        json={"name": name, "email": email, "password": "pw-123", "context": HOME},
    )
    assert registered.status_code == 201, registered.text
    token = _login(client, email, HOME).json()["token"]
    return {"id": registered.json()["id"], "headers": {"Authorization": f"Bearer {token}"}}


def _login(client, email: str, context: dict):
    return client.post("/api/auth/login", json={"email": email, "password": "pw-123", "context": context})


def _admin(client, settings) -> dict:
    account = _signup(client, "admin@example.com", "Admin")
    get_store(settings).update_user_role(account["id"], Role.admin)
    return account


def _community_with_moderator(client, settings):
    """Create ``python`` with a moderator and a member; return (community id, mod, member)."""
    admin = _admin(client, settings)
    created = client.post("/api/admin/communities", json={"name": "python"}, headers=admin["headers"])
    assert created.status_code == 201, created.text
    community_id = created.json()[0]["id"]

    mod = _signup(client, "mod@example.com", "Mod")
    member = _signup(client, "member@example.com", "Member")
    promoted = client.post(
        "/api/admin/moderators",
        json={"community_id": community_id, "user_id": mod["id"]},
        headers=admin["headers"],
    )
    assert promoted.status_code == 200, promoted.text
    assert client.post("/api/communities/python/join", headers=member["headers"]).status_code == 200
    return community_id, mod, member


def _post(client, account: dict) -> str:
    response = client.post(
        "/api/communities/python/posts",
        json={"title": "Hello", "content": "First post"},
        headers=account["headers"],
    )
    assert response.status_code == 201, response.text
    return response.json()["id"]


# ---------------------------------------------------------------------------
# Meta
# ---------------------------------------------------------------------------


def test_health_and_root(client):
    assert client.get("/health").json() == {"status": "healthy"}
    assert client.get("/").json()["name"] == "Agora API"


def test_request_id_is_echoed(client):
    response = client.get("/health", headers={"x-request-id": "abc-123"})
    assert response.headers["x-request-id"] == "abc-123"
    assert client.get("/health").headers["x-request-id"]


# ---------------------------------------------------------------------------
# Accounts and login
# ---------------------------------------------------------------------------


def test_register_and_duplicate(client):
    first = client.post(
        "/api/auth/register",
        json={"name": "Lan", "email": "lan@example.com", "password": "pw-123", "context": HOME},
    )
    assert first.status_code == 201
    assert first.json()["role"] == "general"

    again = client.post(
        "/api/auth/register",
        json={"name": "Lan", "email": "lan@example.com", "password": "pw-123"},
    )
    assert again.status_code == 409
    assert again.json()["detail"] == "Email is already registered"


def test_login_trusted_and_suspicious(client):
    account = _signup(client, "lan@example.com")

    trusted = _login(client, "lan@example.com", HOME)
    assert trusted.status_code == 200
    assert trusted.json()["trusted_path"] == "trusted"

    suspicious = _login(client, "lan@example.com", CAFE)
    assert suspicious.status_code == 401
    assert suspicious.json()["detail"] == "Suspicious login attempt detected"
    assert suspicious.headers["www-authenticate"] == "Bearer"

    me = client.get("/api/auth/me", headers=account["headers"])
    assert me.json()["email"] == "lan@example.com"


def test_wrong_password_and_missing_token(client):
    _signup(client, "lan@example.com")

    wrong = client.post("/api/auth/login", json={"email": "lan@example.com", "password": "nope", "context": HOME})
    assert wrong.status_code == 401
    assert wrong.json()["detail"] == "Invalid credentials"

    assert client.get("/api/auth/me").status_code == 401
    assert client.get("/api/auth/me", headers={"Authorization": "Bearer bogus"}).status_code == 401


def test_partial_body_context_is_completed_from_request(client):
    _signup(client, "lan@example.com")

    right = _login(client, "lan@example.com", {"ip": "9.9.9.9"})
    wrong = client.post(
        "/api/auth/login", json={"email": "lan@example.com", "password": "nope", "context": {"ip": "9.9.9.9"}}
    )

    assert right.status_code == wrong.status_code == 401
    assert right.json()["detail"] == "Suspicious login attempt detected"


def test_logout_invalidates_token(client):
    account = _signup(client, "lan@example.com")

    assert client.post("/api/auth/logout", headers=account["headers"]).status_code == 200
    assert client.get("/api/auth/me", headers=account["headers"]).status_code == 401


# ---------------------------------------------------------------------------
# Login contexts and preferences
# ---------------------------------------------------------------------------


def test_block_then_unblock_context(client, settings):
    settings.max_unverified_attempts = 0
    account = _signup(client, "lan@example.com")

    assert _login(client, "lan@example.com", CAFE).json()["detail"] == "Suspicious login attempt detected"
    blocked_login = _login(client, "lan@example.com", CAFE)
    assert blocked_login.status_code == 401
    assert "blocked" in blocked_login.json()["detail"]

    (record,) = client.get("/api/auth/context/blocked", headers=account["headers"]).json()
    assert record["city"] == "Da Nang"
    assert record["is_blocked"] is True

    unblocked = client.patch(f"/api/auth/context/{record['id']}/unblock", headers=account["headers"])
    assert unblocked.json()["message"] == "Unblocked successfully"
    assert client.get("/api/auth/context/blocked", headers=account["headers"]).json() == []
    assert _login(client, "lan@example.com", CAFE).status_code == 200

    assert client.patch(f"/api/auth/context/{record['id']}/block", headers=account["headers"]).status_code == 200
    assert _login(client, "lan@example.com", CAFE).status_code == 401

    deleted = client.delete(f"/api/auth/context/{record['id']}", headers=account["headers"])
    assert deleted.json()["message"] == "Data deleted successfully"
    assert client.delete(f"/api/auth/context/{record['id']}", headers=account["headers"]).status_code == 404


def test_context_records_are_scoped_to_owner(client, settings):
    settings.max_unverified_attempts = 0
    owner = _signup(client, "lan@example.com")
    other = _signup(client, "minh@example.com")
    _login(client, "lan@example.com", CAFE)
    _login(client, "lan@example.com", CAFE)
    (record,) = client.get("/api/auth/context/blocked", headers=owner["headers"]).json()

    response = client.patch(f"/api/auth/context/{record['id']}/unblock", headers=other["headers"])

    assert response.status_code == 404


def test_first_trusted_context(client):
    account = _signup(client, "lan@example.com")

    context = client.get("/api/auth/context", headers=account["headers"]).json()

    assert context["ip"] == "10.0.0.1"
    assert context["device_type"] == "Desktop"


def test_preferences_disable_context_checks(client):
    account = _signup(client, "lan@example.com")

    assert client.get("/api/auth/preferences", headers=account["headers"]).status_code == 404
    saved = client.put(
        "/api/auth/preferences", json={"enable_context_based_auth": False}, headers=account["headers"]
    )
    assert saved.status_code == 200
    assert client.get("/api/auth/preferences", headers=account["headers"]).json()["enable_context_based_auth"] is False

    login = _login(client, "lan@example.com", CAFE)
    assert login.status_code == 200
    assert login.json()["trusted_path"] == "context_auth_disabled"


# ---------------------------------------------------------------------------
# Communities
# ---------------------------------------------------------------------------


def test_admin_routes_require_admin(client):
    account = _signup(client, "lan@example.com")

    response = client.post("/api/admin/communities", json={"name": "python"}, headers=account["headers"])

    assert response.status_code == 403


def test_admin_moderator_management(client, settings):
    community_id, mod, _ = _community_with_moderator(client, settings)
    token = _login(client, "admin@example.com", HOME).json()["token"]
    headers = {"Authorization": f"Bearer {token}"}

    (summary,) = client.get("/api/admin/moderators", headers=headers).json()
    assert summary["id"] == mod["id"]
    assert summary["role"] == "moderator"

    removed = client.request(
        "DELETE",
        "/api/admin/moderators",
        json={"community_id": community_id, "user_id": mod["id"]},
        headers=headers,
    )
    assert removed.status_code == 200
    assert client.get("/api/admin/moderators", headers=headers).json() == []
    assert client.get("/api/auth/me", headers=mod["headers"]).json()["role"] == "general"


def test_report_twice_is_rejected(client, settings):
    _, mod, member = _community_with_moderator(client, settings)
    post_id = _post(client, member)

    first = client.post(
        "/api/communities/python/report", json={"post_id": post_id, "reason": "spam"}, headers=mod["headers"]
    )
    assert first.status_code == 201
    assert first.json()["message"] == "Post reported successfully"

    second = client.post(
        "/api/communities/python/report", json={"post_id": post_id, "reason": "spam"}, headers=mod["headers"]
    )
    assert second.status_code == 400
    assert second.json()["detail"] == "User has already reported this post"

    (entry,) = client.get("/api/communities/python/reported-posts", headers=mod["headers"]).json()
    assert entry["reported_by"] == [mod["id"]]


def test_second_reporter_appends(client, settings):
    _, mod, member = _community_with_moderator(client, settings)
    post_id = _post(client, member)

    client.post("/api/communities/python/report", json={"post_id": post_id, "reason": "spam"}, headers=mod["headers"])
    appended = client.post(
        "/api/communities/python/report", json={"post_id": post_id, "reason": "rude"}, headers=member["headers"]
    )

    assert appended.status_code == 200
    assert set(appended.json()["report"]["reported_by"]) == {mod["id"], member["id"]}


def test_only_moderators_can_ban(client, settings):
    _, mod, member = _community_with_moderator(client, settings)
    outsider = _signup(client, "outsider@example.com")

    denied = client.post(f"/api/communities/python/ban/{member['id']}", headers=outsider["headers"])
    assert denied.status_code == 403
    community = client.get("/api/communities/python", headers=member["headers"]).json()
    assert community["banned_users"] == []
    assert member["id"] in community["members"]

    banned = client.post(f"/api/communities/python/ban/{member['id']}", headers=mod["headers"])
    assert banned.status_code == 200
    assert member["id"] in banned.json()["banned_users"]
    assert member["id"] not in banned.json()["members"]

    rejoin = client.post("/api/communities/python/join", headers=member["headers"])
    assert rejoin.status_code == 403


def test_remove_post_without_reports(client, settings):
    _, mod, member = _community_with_moderator(client, settings)
    post_id = _post(client, member)

    removed = client.delete(f"/api/communities/python/reported-posts/{post_id}", headers=mod["headers"])

    assert removed.status_code == 200
    assert removed.json()["message"] == "Post and its reports removed successfully"
    again = client.delete(f"/api/communities/python/reported-posts/{post_id}", headers=mod["headers"])
    assert again.status_code == 404


def test_non_member_cannot_post(client, settings):
    _community_with_moderator(client, settings)
    outsider = _signup(client, "outsider@example.com")

    response = client.post(
        "/api/communities/python/posts", json={"title": "Hi", "content": "x"}, headers=outsider["headers"]
    )

    assert response.status_code == 403
    assert response.json()["detail"] == "User is not a member of this community"


def test_admin_audit_log(client, settings):
    _community_with_moderator(client, settings)
    token = _login(client, "admin@example.com", HOME).json()["token"]
    headers = {"Authorization": f"Bearer {token}"}

    events = client.get("/api/admin/audit", params={"action": "community.create"}, headers=headers).json()

    assert len(events) == 1
    assert events[0]["resource_type"] == "community"
