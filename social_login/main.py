"""
Social login web app.
GET /, /login, /login/{provider}, /api/auth/{provider}_callback, /api/auth/logout, /protected, /protected/profile.
Components are built once in create_app; the session gate reads them from app.state.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable
from urllib.parse import urlencode

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from sqlalchemy import text
from sqlalchemy.orm import Session, sessionmaker

from social_login.audit import EVENT_LOGOUT, get_client_ip, get_user_agent, log_audit
from social_login.config import Settings, load_settings
from social_login.database import init_db, make_engine, make_session_factory, storage_guard
from social_login.errors import StorageError, UnknownProviderError
from social_login.flow_engine import OAuthFlowEngine
from social_login.flow_store import FlowStateStore
from social_login.middleware import LOGIN_PATH, AuthContext, LoginRequired, RequireSession, login_redirect
from social_login.models import utc_now
from social_login.pages import error_page, home_page, login_page, profile_page, protected_page
from social_login.providers import ProviderRegistry, load_registry
from social_login.sessions import SessionManager, clear_session_cookie_kwargs, session_cookie_kwargs
from social_login.users import UserStore

logger = logging.getLogger(__name__)

PROTECTED_PATH = "/protected"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _login_failed_redirect(notice: str | None) -> RedirectResponse:
    url = LOGIN_PATH
    if notice:
        url = f"{LOGIN_PATH}?{urlencode({'error': notice})}"
    return RedirectResponse(url=url, status_code=303)


def _unavailable_response() -> HTMLResponse:
    return HTMLResponse(
        error_page("Service unavailable", "The service is temporarily unavailable. Please try again later."),
        status_code=503,
    )


def create_app(
    settings: Settings | None = None,
    *,
    registry: ProviderRegistry | None = None,
    session_factory: sessionmaker[Session] | None = None,
    http_client: httpx.Client | None = None,
    now: Callable[[], datetime] = utc_now,
) -> FastAPI:
    """
    Build the app. Missing pieces are created from settings/env; a misconfigured
    provider raises ConfigurationError here so the process never starts.
    """
    settings = settings or load_settings()
    configure_logging(settings.log_level)
    registry = registry or load_registry(settings)
    if session_factory is None:
        engine = make_engine(settings.database_url)
        init_db(engine)
        session_factory = make_session_factory(engine)
    owns_http_client = http_client is None
    if http_client is None:
        http_client = httpx.Client(timeout=settings.http_timeout_seconds, follow_redirects=False)

    flow_store = FlowStateStore(registry, session_factory, ttl_seconds=settings.flow_ttl_seconds, now=now)
    users = UserStore(session_factory, now=now)
    sessions = SessionManager(session_factory, lifetime_seconds=settings.session_lifetime_seconds, now=now)
    flow_engine = OAuthFlowEngine(
        registry,
        flow_store,
        users,
        sessions,
        http_client,
        session_factory,
        timeout_seconds=settings.http_timeout_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Reclaim stale flows/sessions left from a previous run; close the provider HTTP client on shutdown."""
        try:
            flow_store.sweep_expired()
            sessions.sweep_expired()
        except StorageError:
            logger.warning("Startup sweep skipped; storage unavailable")
        yield
        if owns_http_client:
            http_client.close()

    app = FastAPI(title="Social Login", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.registry = registry
    app.state.session_factory = session_factory
    app.state.flow_store = flow_store
    app.state.users = users
    app.state.sessions = sessions
    app.state.flow_engine = flow_engine

    app.add_exception_handler(LoginRequired, login_redirect)

    @app.exception_handler(StorageError)
    def storage_unavailable(request: Request, exc: StorageError):
        return _unavailable_response()

    @app.get("/health")
    def health():
        """Health check endpoint; reports whether the database answers."""
        try:
            with storage_guard("health check"), session_factory() as db:
                db.execute(text("SELECT 1"))
        except StorageError:
            return {"status": "unhealthy", "service": "social_login", "database": "disconnected"}
        return {"status": "healthy", "service": "social_login", "database": "connected"}

    @app.get("/", response_class=HTMLResponse)
    def home():
        return HTMLResponse(home_page(registry))

    @app.get(LOGIN_PATH, response_class=HTMLResponse)
    def login(error: str | None = None):
        """Login page with provider links; `error` selects a generic notice."""
        return HTMLResponse(login_page(registry, notice=error))

    def start_login(provider: str):
        try:
            url = flow_engine.initiate(provider)
        except UnknownProviderError:
            return HTMLResponse(error_page("Not found", "Unknown login provider."), status_code=404)
        return RedirectResponse(url=url, status_code=303)

    @app.get("/login/{provider}")
    def login_with_provider(provider: str):
        """Create a pending flow and redirect to the provider's authorization URL."""
        return start_login(provider)

    @app.get("/api/auth/logout")
    def logout(request: Request):
        """
        Invalidate the session (if any) and clear the cookie. Redirects to /login whether
        or not the session existed; a storage outage is a 503 that still clears the cookie.
        """
        session_id = request.cookies.get(settings.cookie_name)
        response = RedirectResponse(url=LOGIN_PATH, status_code=303)
        if session_id:
            try:
                session = sessions.resolve(session_id)
                sessions.invalidate(session_id)
                log_audit(
                    session_factory,
                    EVENT_LOGOUT,
                    user_id=session.user_id if session else None,
                    ip=get_client_ip(request),
                )
            except StorageError:
                logger.warning("Logout could not reach storage; clearing cookie anyway")
                response = _unavailable_response()
        response.delete_cookie(**clear_session_cookie_kwargs(settings))
        return response

    @app.get("/api/auth/{provider}_login")
    def provider_login(provider: str):
        return start_login(provider)

    @app.get("/api/auth/{provider}_callback")
    def callback(
        request: Request,
        provider: str,
        code: str | None = None,
        state: str | None = None,
        error: str | None = None,
        error_description: str | None = None,
    ):
        """
        Provider redirect target. Success: 303 to /protected with the session cookie.
        Any flow failure: 303 to /login with a generic notice and no session.
        """
        if provider not in registry:
            logger.warning("Callback for unknown provider %r", provider)
            return _login_failed_redirect("login_failed")

        outcome = flow_engine.handle_callback(
            provider,
            state=state,
            code=code,
            error=error,
            error_description=error_description,
            ip=get_client_ip(request),
            user_agent=get_user_agent(request),
        )
        if not outcome.ok:
            return _login_failed_redirect(outcome.notice)

        response = RedirectResponse(url=PROTECTED_PATH, status_code=303)
        response.set_cookie(
            **session_cookie_kwargs(settings, outcome.session.session_id, sessions.cookie_max_age(outcome.session))
        )
        return response

    @app.get(PROTECTED_PATH, response_class=HTMLResponse)
    def protected(ctx: AuthContext = RequireSession):
        return HTMLResponse(protected_page(ctx, registry))

    @app.get(f"{PROTECTED_PATH}/profile", response_class=HTMLResponse)
    def profile(ctx: AuthContext = RequireSession):
        return HTMLResponse(profile_page(ctx))

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "social_login.main:create_app",
        factory=True,
        host="127.0.0.1",
        port=8000,
        reload=True,
    )
