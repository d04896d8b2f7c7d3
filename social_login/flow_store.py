"""
Persistent store for pending authorization flows (state -> provider, PKCE verifier).
Used between /login/{provider} and the provider callback. Each state is single-use:
consume() reads and deletes in one transaction, and only the caller whose delete
removed the row gets the flow back.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from social_login.database import storage_guard
from social_login.models import PendingFlow, as_utc, utc_now
from social_login.pkce import build_authorize_url, generate_pkce, generate_state
from social_login.providers import ProviderRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConsumedFlow:
    state: str
    provider_id: str
    code_verifier: str | None
    created_at: datetime


class FlowStateStore:
    def __init__(
        self,
        registry: ProviderRegistry,
        session_factory: sessionmaker[Session],
        *,
        ttl_seconds: int,
        now: Callable[[], datetime] = utc_now,
    ):
        self._registry = registry
        self._session_factory = session_factory
        self._ttl = timedelta(seconds=ttl_seconds)
        self._now = now

    def expired(self, created_at: datetime) -> bool:
        return (self._now() - as_utc(created_at)) > self._ttl

    def begin(self, provider_id: str) -> tuple[str, str]:
        """
        Record a new pending flow and return (state, authorization_url).
        Generates a PKCE pair when the provider requires it; the verifier never leaves the server.
        """
        config = self._registry.config_for(provider_id)
        state = generate_state()
        code_verifier = code_challenge = None
        if config.pkce_required:
            code_verifier, code_challenge = generate_pkce()

        self.sweep_expired()
        with storage_guard("flow begin"), self._session_factory() as db, db.begin():
            db.add(
                PendingFlow(
                    state=state,
                    provider_id=provider_id,
                    code_verifier=code_verifier,
                    created_at=self._now(),
                )
            )

        url = build_authorize_url(
            authorization_endpoint=config.authorization_endpoint,
            client_id=config.client_id,
            redirect_uri=config.redirect_uri,
            scopes=config.scopes,
            state=state,
            code_challenge=code_challenge,
        )
        logger.debug("Started %s login flow (pkce=%s)", provider_id, config.pkce_required)
        return state, url

    def consume(self, state: str, expected_provider: str | None = None) -> ConsumedFlow | None:
        """
        Atomically remove and return the pending flow for state.
        None when unknown, already consumed, expired, or bound to another provider.
        The row is deleted in every case where it existed.
        """
        if not state:
            return None
        with storage_guard("flow consume"), self._session_factory() as db, db.begin():
            row = db.execute(select(PendingFlow).where(PendingFlow.state == state)).scalar_one_or_none()
            if row is None:
                return None
            flow = ConsumedFlow(
                state=row.state,
                provider_id=row.provider_id,
                code_verifier=row.code_verifier,
                created_at=as_utc(row.created_at),
            )
            # Compare-and-delete: a concurrent consumer that read the same row loses here
            result = db.execute(
                delete(PendingFlow).where(PendingFlow.state == state).execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                logger.info("State already consumed by a concurrent callback")
                return None

        if self.expired(flow.created_at):
            logger.info("Rejected expired %s login state", flow.provider_id)
            return None
        if expected_provider is not None and flow.provider_id != expected_provider:
            logger.warning("State issued for %s presented to %s callback", flow.provider_id, expected_provider)
            return None
        return flow

    def sweep_expired(self) -> int:
        """Best-effort cleanup; consume() re-checks age so correctness does not depend on this."""
        cutoff = self._now() - self._ttl
        with storage_guard("flow sweep"), self._session_factory() as db, db.begin():
            result = db.execute(
                delete(PendingFlow)
                .where(PendingFlow.created_at < cutoff)
                .execution_options(synchronize_session=False)
            )
        if result.rowcount:
            logger.debug("Swept %d expired login flows", result.rowcount)
        return result.rowcount or 0
