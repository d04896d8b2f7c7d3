"""
Server-side login sessions keyed by an opaque random id. The cookie carries only that id.
Expiry is enforced when a session is resolved; sweeps only reclaim storage.
"""
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from social_login.config import Settings
from social_login.database import storage_guard
from social_login.errors import StorageError
from social_login.models import LoginSession, as_utc, utc_now

logger = logging.getLogger(__name__)


def short_id(session_id: str) -> str:
    """Log-safe prefix of a session id."""
    return f"{session_id[:8]}..." if session_id else "-"


@dataclass(frozen=True)
class SessionInfo:
    session_id: str
    user_id: int
    created_at: datetime
    expires_at: datetime
    ip: str | None = None
    user_agent: str | None = None

    @classmethod
    def from_row(cls, row: LoginSession) -> "SessionInfo":
        return cls(
            session_id=row.session_id,
            user_id=row.user_id,
            created_at=as_utc(row.created_at),
            expires_at=as_utc(row.expires_at),
            ip=row.ip,
            user_agent=row.user_agent,
        )


class SessionManager:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        lifetime_seconds: int,
        now: Callable[[], datetime] = utc_now,
    ):
        self._session_factory = session_factory
        self._lifetime = timedelta(seconds=int(lifetime_seconds))
        self._now = now

    def create(self, user_id: int, *, ip: str | None = None, user_agent: str | None = None) -> SessionInfo:
        """Persist a new session for user_id. expires_at is truncated to the second (never later than the lifetime)."""
        now = self._now()
        expires_at = (now + self._lifetime).replace(microsecond=0)
        session_id = secrets.token_urlsafe(32)
        try:
            with storage_guard("session create"), self._session_factory() as db, db.begin():
                db.add(
                    LoginSession(
                        session_id=session_id,
                        user_id=user_id,
                        created_at=now,
                        expires_at=expires_at,
                        ip=ip,
                        user_agent=user_agent[:512] if user_agent else None,
                    )
                )
        except StorageError as e:
            if isinstance(e.__cause__, IntegrityError):
                # 256 random bits colliding means the RNG or the store is broken; do not retry
                logger.critical("Session id collision or integrity failure for user id=%s", user_id)
            raise
        logger.info("Created session %s for user id=%s", short_id(session_id), user_id)
        return SessionInfo(
            session_id=session_id,
            user_id=user_id,
            created_at=now,
            expires_at=expires_at,
            ip=ip,
            user_agent=user_agent,
        )

    def is_valid(self, session: SessionInfo) -> bool:
        return self._now() < session.expires_at

    def resolve(self, session_id: str | None) -> SessionInfo | None:
        """Return the session if it exists and has not expired; expired rows are deleted on sight."""
        if not session_id:
            return None
        with storage_guard("session resolve"), self._session_factory() as db, db.begin():
            row = db.execute(
                select(LoginSession).where(LoginSession.session_id == session_id)
            ).scalar_one_or_none()
            if row is None:
                return None
            info = SessionInfo.from_row(row)
            if not self.is_valid(info):
                db.execute(
                    delete(LoginSession)
                    .where(LoginSession.session_id == session_id)
                    .execution_options(synchronize_session=False)
                )
                logger.info("Session %s expired at %s", short_id(session_id), info.expires_at.isoformat())
                return None
            return info

    def invalidate(self, session_id: str | None) -> None:
        """Delete the session. Unknown or empty ids are not an error."""
        if not session_id:
            return
        with storage_guard("session invalidate"), self._session_factory() as db, db.begin():
            result = db.execute(
                delete(LoginSession)
                .where(LoginSession.session_id == session_id)
                .execution_options(synchronize_session=False)
            )
        if result.rowcount:
            logger.info("Invalidated session %s", short_id(session_id))

    def sweep_expired(self) -> int:
        with storage_guard("session sweep"), self._session_factory() as db, db.begin():
            result = db.execute(
                delete(LoginSession)
                .where(LoginSession.expires_at <= self._now())
                .execution_options(synchronize_session=False)
            )
        if result.rowcount:
            logger.debug("Swept %d expired sessions", result.rowcount)
        return result.rowcount or 0

    def cookie_max_age(self, session: SessionInfo) -> int:
        """Whole seconds left on the session, never above the configured lifetime."""
        remaining = int((session.expires_at - self._now()).total_seconds())
        return max(0, min(remaining, int(self._lifetime.total_seconds())))


def session_cookie_kwargs(settings: Settings, session_id: str, max_age: int) -> dict:
    return {
        "key": settings.cookie_name,
        "value": session_id,
        "max_age": max_age,
        "httponly": True,
        "secure": settings.cookie_secure,
        "samesite": "lax",
        "path": "/",
    }


def clear_session_cookie_kwargs(settings: Settings) -> dict:
    return {
        "key": settings.cookie_name,
        "httponly": True,
        "secure": settings.cookie_secure,
        "samesite": "lax",
        "path": "/",
    }
