"""
Pytest fixtures for social_login. In-memory SQLite per test, a controllable clock, and a fake
identity provider served through httpx.MockTransport (no network).
"""
import json
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs

import httpx
import pytest
from fastapi.testclient import TestClient

from social_login.config import Settings
from social_login.database import init_db, make_engine, make_session_factory
from social_login.main import create_app
from social_login.providers import ProviderRegistry, builtin_provider

BASE_URL = "http://testserver"


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current = self.current + timedelta(**kwargs)


class FakeProvider:
    """
    Token and user-info endpoints for google and twitter. Tests change token_status / userinfo
    bodies or set raise_on to simulate failures; every request is recorded.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.token_status = 200
        self.token_body: dict | str = {"access_token": "provider-at", "token_type": "Bearer", "expires_in": 3600}
        self.userinfo_status = 200
        self.userinfo = {
            "google": {
                "sub": "g-123",
                "name": "Ada Lovelace",
                "email": "ada@example.com",
                "email_verified": True,
            },
            "twitter": {"data": {"id": "t-456", "name": "Grace", "username": "grace"}},
        }
        self.raise_on: str | None = None  # "token" | "userinfo"

    def token_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == "POST"]

    def token_form(self, index: int = -1) -> dict[str, str]:
        body = self.token_requests()[index].content.decode()
        return {k: v[0] for k, v in parse_qs(body).items()}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host
        provider = "twitter" if "twitter" in host else "google"
        if request.method == "POST":
            if self.raise_on == "token":
                raise httpx.ConnectTimeout("timed out", request=request)
            if isinstance(self.token_body, str):
                return httpx.Response(self.token_status, text=self.token_body)
            return httpx.Response(self.token_status, json=self.token_body)
        if self.raise_on == "userinfo":
            raise httpx.ReadTimeout("timed out", request=request)
        body = self.userinfo[provider]
        return httpx.Response(self.userinfo_status, content=json.dumps(body), headers={"content-type": "application/json"})


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(
        base_url=BASE_URL,
        database_url="sqlite:///:memory:",
        session_lifetime_seconds=3600,
        flow_ttl_seconds=600,
        cookie_name="sid",
        cookie_secure=False,
        http_timeout_seconds=5.0,
    )


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite:///:memory:")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def registry(settings):
    return ProviderRegistry(
        [
            builtin_provider(settings, "google", "google-client", "google-secret"),
            builtin_provider(settings, "twitter", "twitter-client", "twitter-secret"),
        ]
    )


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def http_client(fake_provider):
    client = httpx.Client(transport=httpx.MockTransport(fake_provider.handler))
    yield client
    client.close()


@pytest.fixture
def app(settings, registry, session_factory, http_client, clock):
    return create_app(
        settings,
        registry=registry,
        session_factory=session_factory,
        http_client=http_client,
        now=clock.now,
    )


@pytest.fixture
def client(app):
    return TestClient(app, base_url=BASE_URL)
