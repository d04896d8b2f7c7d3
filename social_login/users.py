"""
User storage keyed by (provider_id, provider_user_id). Upsert is safe under concurrent logins of the same user.
"""
import logging
from datetime import datetime
from typing import Callable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from social_login.database import storage_guard
from social_login.models import User, utc_now

logger = logging.getLogger(__name__)


class UserStore:
    def __init__(self, session_factory: sessionmaker[Session], *, now: Callable[[], datetime] = utc_now):
        self._session_factory = session_factory
        self._now = now

    def _update_existing(self, provider_id: str, provider_user_id: str, display_name: str, email: str | None) -> int | None:
        with self._session_factory() as db, db.begin():
            user = db.execute(
                select(User).where(User.provider_id == provider_id, User.provider_user_id == provider_user_id)
            ).scalar_one_or_none()
            if user is None:
                return None
            user.display_name = display_name
            user.email = email
            user.updated_at = self._now()
            return user.id

    def upsert_user(self, provider_id: str, provider_user_id: str, display_name: str, email: str | None) -> int:
        """Insert or update the user for this provider identity; returns the local user id."""
        with storage_guard("user upsert"):
            user_id = self._update_existing(provider_id, provider_user_id, display_name, email)
            if user_id is not None:
                return user_id
            try:
                with self._session_factory() as db, db.begin():
                    now = self._now()
                    user = User(
                        provider_id=provider_id,
                        provider_user_id=provider_user_id,
                        display_name=display_name,
                        email=email,
                        created_at=now,
                        updated_at=now,
                    )
                    db.add(user)
                    db.flush()
                    logger.info("Created user id=%s for %s", user.id, provider_id)
                    return user.id
            except IntegrityError:
                # Lost an insert race for the same identity; the row exists now
                user_id = self._update_existing(provider_id, provider_user_id, display_name, email)
                if user_id is None:
                    raise
                return user_id

    def get_user(self, user_id: int) -> User | None:
        with storage_guard("user lookup"), self._session_factory() as db:
            return db.get(User, user_id)
