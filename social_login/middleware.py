"""
Session gate for protected routes. Resolves the session cookie and hands the handler an explicit
AuthContext; otherwise raises LoginRequired, which the app turns into a 303 to /login.
Never creates or extends a session.
"""
import logging
from dataclasses import dataclass
from datetime import datetime

from fastapi import Depends, Request
from fastapi.responses import RedirectResponse

from social_login.audit import EVENT_SESSION_REJECTED, OUTCOME_FAIL, get_client_ip, log_audit
from social_login.sessions import clear_session_cookie_kwargs, short_id

logger = logging.getLogger(__name__)

LOGIN_PATH = "/login"


@dataclass(frozen=True)
class AuthContext:
    session_id: str
    user_id: int
    provider_id: str
    provider_user_id: str
    display_name: str
    email: str | None
    expires_at: datetime


class LoginRequired(Exception):
    """Request needs a login. clear_cookie is set when the browser sent a stale session cookie."""

    def __init__(self, clear_cookie: bool = False):
        super().__init__("login required")
        self.clear_cookie = clear_cookie


def require_session(request: Request) -> AuthContext:
    """Dependency: valid session cookie -> AuthContext. Storage failures propagate as StorageError."""
    state = request.app.state
    settings = state.settings
    session_id = request.cookies.get(settings.cookie_name)
    if not session_id:
        raise LoginRequired(clear_cookie=False)

    session = state.sessions.resolve(session_id)
    user = state.users.get_user(session.user_id) if session is not None else None
    if session is None or user is None:
        logger.info("Rejected session cookie %s", short_id(session_id))
        log_audit(state.session_factory, EVENT_SESSION_REJECTED, ip=get_client_ip(request), outcome=OUTCOME_FAIL)
        raise LoginRequired(clear_cookie=True)

    return AuthContext(
        session_id=session.session_id,
        user_id=user.id,
        provider_id=user.provider_id,
        provider_user_id=user.provider_user_id,
        display_name=user.display_name,
        email=user.email,
        expires_at=session.expires_at,
    )


RequireSession = Depends(require_session)


def login_redirect(request: Request, exc: LoginRequired) -> RedirectResponse:
    """Exception handler for LoginRequired."""
    response = RedirectResponse(url=LOGIN_PATH, status_code=303)
    if exc.clear_cookie:
        response.delete_cookie(**clear_session_cookie_kwargs(request.app.state.settings))
    return response
