"""
Audit logging. Security-relevant events only; no tokens, codes, or session ids.
"""
import logging

from fastapi import Request
from sqlalchemy.orm import Session, sessionmaker

from social_login.database import storage_guard
from social_login.models import AuditLog

logger = logging.getLogger(__name__)

EVENT_LOGIN_OK = "login_ok"
EVENT_LOGIN_FAIL = "login_fail"
EVENT_LOGOUT = "logout"
EVENT_SESSION_REJECTED = "session_rejected"

OUTCOME_SUCCESS = "success"
OUTCOME_FAIL = "fail"


def get_client_ip(request: Request | None) -> str | None:
    """Client IP if available (e.g. request.client.host). Forwarding headers are not trusted."""
    if request is None or request.client is None:
        return None
    return getattr(request.client, "host", None)


def get_user_agent(request: Request | None) -> str | None:
    if request is None:
        return None
    return request.headers.get("user-agent")


def log_audit(
    session_factory: sessionmaker[Session],
    event_type: str,
    *,
    provider_id: str | None = None,
    user_id: int | None = None,
    ip: str | None = None,
    outcome: str = OUTCOME_SUCCESS,
) -> None:
    """Append one audit record in its own transaction."""
    with storage_guard("audit"), session_factory() as db, db.begin():
        db.add(
            AuditLog(
                event_type=event_type,
                provider_id=provider_id,
                user_id=user_id,
                ip=ip,
                outcome=outcome,
            )
        )
