"""
HTTP tests: login initiation, callback, protected area gate, logout.
Covers the login/replay/forged-state/expired-session/logout scenarios end to end.
"""
from dataclasses import replace
from unittest.mock import patch
from urllib.parse import parse_qs, urlparse

from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from social_login.errors import StorageError
from social_login.main import create_app
from social_login.models import LoginSession


def _start(client, provider="google") -> str:
    r = client.get(f"/login/{provider}", follow_redirects=False)
    assert r.status_code == 303
    return parse_qs(urlparse(r.headers["location"]).query)["state"][0]


def _callback(client, provider="google", **params):
    return client.get(f"/api/auth/{provider}_callback", params=params, follow_redirects=False)


def _session_count(session_factory) -> int:
    with session_factory() as db:
        return db.execute(select(func.count()).select_from(LoginSession)).scalar_one()


def _login(client, provider="google") -> str:
    state = _start(client, provider)
    r = _callback(client, provider, state=state, code="good-code")
    assert r.status_code == 303
    return client.cookies.get("sid")


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "healthy", "service": "social_login", "database": "connected"}


def test_health_reports_disconnected_database(client):
    down = OperationalError("SELECT 1", {}, Exception("db down"))
    with patch("sqlalchemy.orm.Session.execute", side_effect=down):
        r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "unhealthy"
    assert r.json()["database"] == "disconnected"


def test_home_and_login_pages_list_providers(client):
    for path in ("/", "/login"):
        r = client.get(path)
        assert r.status_code == 200
        assert "/login/google" in r.text
        assert "/login/twitter" in r.text


def test_login_page_notice_is_generic(client):
    r = client.get("/login", params={"error": "anything<script>"})
    assert "Login failed. Please try again." in r.text
    assert "<script>" not in r.text


def test_login_redirects_to_provider(client):
    r = client.get("/login/twitter", follow_redirects=False)
    assert r.status_code == 303
    location = r.headers["location"]
    assert location.startswith("https://twitter.com/i/oauth2/authorize?")
    assert "code_challenge_method=S256" in location
    assert "state=" in location


def test_legacy_login_alias(client):
    r = client.get("/api/auth/twitter_login", follow_redirects=False)
    assert r.status_code == 303
    assert r.headers["location"].startswith("https://twitter.com/i/oauth2/authorize?")


def test_login_unknown_provider_404(client):
    r = client.get("/login/geocities", follow_redirects=False)
    assert r.status_code == 404


def test_login_then_protected(client):
    """Initiate google login, complete the callback, reach /protected."""
    state = _start(client)
    r = _callback(client, state=state, code="good-code")
    assert r.status_code == 303
    assert r.headers["location"] == "/protected"
    set_cookie = r.headers["set-cookie"]
    assert set_cookie.startswith("sid=")
    assert "httponly" in set_cookie.lower()
    assert "samesite=lax" in set_cookie.lower()
    assert "Path=/" in set_cookie
    assert "Max-Age=3600" in set_cookie

    page = client.get("/protected", follow_redirects=False)
    assert page.status_code == 200
    assert "Ada Lovelace" in page.text
    profile = client.get("/protected/profile", follow_redirects=False)
    assert profile.status_code == 200
    assert "g-123" in profile.text
    assert "ada@example.com" in profile.text


def test_cookie_holds_only_opaque_session_id(client, session_factory):
    sid = _login(client)
    assert "g-123" not in sid
    with session_factory() as db:
        row = db.get(LoginSession, sid)
        assert row is not None


def test_replayed_callback_redirects_to_login(client, session_factory):
    """Replaying a consumed state: no new session, the original stays valid."""
    state = _start(client)
    assert _callback(client, state=state, code="good-code").status_code == 303
    original = client.cookies.get("sid")

    r = _callback(client, state=state, code="good-code")
    assert r.status_code == 303
    assert r.headers["location"].startswith("/login")
    assert "set-cookie" not in r.headers
    assert _session_count(session_factory) == 1
    assert client.get("/protected", follow_redirects=False).status_code == 200
    assert client.cookies.get("sid") == original


def test_unknown_state_redirects_to_login(client, session_factory):
    r = _callback(client, state="Z", code="whatever")
    assert r.status_code == 303
    assert r.headers["location"] == "/login?error=login_failed"
    assert "set-cookie" not in r.headers
    assert _session_count(session_factory) == 0


def test_provider_denied_redirects_with_notice(client, session_factory):
    state = _start(client)
    r = _callback(client, state=state, error="access_denied", error_description="User denied")
    assert r.status_code == 303
    assert r.headers["location"] == "/login?error=denied"
    assert _session_count(session_factory) == 0


def test_provider_failure_redirects_to_login(client, fake_provider, session_factory):
    fake_provider.token_status = 500
    state = _start(client)
    r = _callback(client, state=state, code="c")
    assert r.status_code == 303
    assert r.headers["location"] == "/login?error=login_failed"
    assert _session_count(session_factory) == 0


def test_callback_unknown_provider(client):
    r = _callback(client, provider="myspace", state="s", code="c")
    assert r.status_code == 303
    assert r.headers["location"].startswith("/login")


def test_protected_without_cookie_redirects(client):
    r = client.get("/protected", follow_redirects=False)
    assert r.status_code == 303
    assert r.headers["location"] == "/login"
    assert "set-cookie" not in r.headers


def test_expired_session_is_rejected_and_cookie_cleared(client, clock, session_factory):
    """A session past expires_at is unauthenticated and its stale cookie is cleared."""
    sid = _login(client)
    clock.advance(seconds=3601)
    r = client.get("/protected", follow_redirects=False)
    assert r.status_code == 303
    assert r.headers["location"] == "/login"
    assert r.headers["set-cookie"].startswith('sid=""') or "Max-Age=0" in r.headers["set-cookie"]
    with session_factory() as db:
        assert db.get(LoginSession, sid) is None


def test_forged_cookie_is_rejected(client):
    client.cookies.set("sid", "made-up-session-id")
    r = client.get("/protected", follow_redirects=False)
    assert r.status_code == 303
    assert "set-cookie" in r.headers


def test_gate_does_not_extend_session(client, session_factory):
    sid = _login(client)
    with session_factory() as db:
        before = db.get(LoginSession, sid).expires_at
    client.get("/protected")
    with session_factory() as db:
        assert db.get(LoginSession, sid).expires_at == before
    assert _session_count(session_factory) == 1


def test_logout_removes_session(client, session_factory):
    """Logout deletes the session; the old cookie value no longer authenticates."""
    sid = _login(client)
    r = client.get("/api/auth/logout", follow_redirects=False)
    assert r.status_code == 303
    assert r.headers["location"] == "/login"
    assert "sid=" in r.headers["set-cookie"]
    assert _session_count(session_factory) == 0

    client.cookies.set("sid", sid)
    r = client.get("/protected", follow_redirects=False)
    assert r.status_code == 303
    assert r.headers["location"] == "/login"


def test_logout_without_session_still_redirects(client):
    r = client.get("/api/auth/logout", follow_redirects=False)
    assert r.status_code == 303
    assert r.headers["location"] == "/login"
    assert "set-cookie" in r.headers


def test_logout_with_unknown_cookie_looks_the_same(client):
    client.cookies.set("sid", "not-a-session")
    r = client.get("/api/auth/logout", follow_redirects=False)
    assert r.status_code == 303
    assert r.headers["location"] == "/login"


def test_storage_failure_is_503_not_login_redirect(client, app):
    client.cookies.set("sid", "some-session")
    with patch.object(app.state.sessions, "resolve", side_effect=StorageError("db down")):
        r = client.get("/protected", follow_redirects=False)
    assert r.status_code == 503
    assert "location" not in r.headers


def test_storage_failure_during_callback_is_503(client, app):
    with patch.object(app.state.flow_store, "consume", side_effect=StorageError("db down")):
        r = _callback(client, state="s", code="c")
    assert r.status_code == 503


def test_logout_during_storage_failure_still_clears_cookie(client, app):
    client.cookies.set("sid", "some-session")
    with patch.object(app.state.sessions, "invalidate", side_effect=StorageError("db down")):
        r = client.get("/api/auth/logout", follow_redirects=False)
    assert r.status_code == 503
    assert "sid=" in r.headers["set-cookie"]
    assert "location" not in r.headers


def test_create_app_applies_configured_log_level(settings, registry, session_factory, http_client):
    with patch("social_login.main.configure_logging") as configure:
        create_app(
            replace(settings, log_level="DEBUG"),
            registry=registry,
            session_factory=session_factory,
            http_client=http_client,
        )
    configure.assert_called_once_with("DEBUG")
