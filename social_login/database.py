"""
Database engine and session factory. Any SQLAlchemy URL; SQLite by default.
Stores receive the session factory explicitly and open one transaction per operation.
"""
import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import Engine, create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from social_login.errors import StorageError
from social_login.models import Base

logger = logging.getLogger(__name__)


def make_engine(database_url: str) -> Engine:
    # SQLite: in-memory needs StaticPool so all connections share the same DB (for tests)
    # File-based SQLite needs check_same_thread=False for FastAPI's threadpool
    if database_url.startswith("sqlite:///:memory:") or database_url == "sqlite://":
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    return create_engine(database_url, connect_args=connect_args, pool_pre_ping=True)


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create all tables."""
    with storage_guard("init_db"):
        Base.metadata.create_all(bind=engine)


@contextmanager
def storage_guard(operation: str) -> Iterator[None]:
    """Translate driver/ORM failures into StorageError so callers never mistake them for auth answers."""
    try:
        yield
    except SQLAlchemyError as e:
        logger.exception("Storage failure during %s", operation)
        raise StorageError(f"storage unavailable during {operation}") from e
