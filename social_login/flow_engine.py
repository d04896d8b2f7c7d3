"""
OAuth2 Authorization Code flow: initiate (state + PKCE, authorization URL) and callback
(state validation, code exchange, profile fetch and normalization, user upsert, session creation).

Per flow: INITIATED -> CALLBACK_RECEIVED -> EXCHANGED -> PROFILE_FETCHED -> COMPLETE, or FAILED.
A session is only created once a normalized profile and a user row exist, so a failure at any
earlier step leaves nothing behind. Provider calls are made once with a bounded timeout; the code
is single-use, so a retry could never succeed.
"""
import enum
import logging
from dataclasses import dataclass

import httpx
from sqlalchemy.orm import Session, sessionmaker

from social_login.audit import EVENT_LOGIN_FAIL, EVENT_LOGIN_OK, OUTCOME_FAIL, log_audit
from social_login.errors import (
    FlowError,
    FlowValidationError,
    ProviderDeniedError,
    ProviderError,
)
from social_login.flow_store import FlowStateStore
from social_login.providers import TOKEN_AUTH_BASIC, ProviderConfig, ProviderRegistry, UserProfile
from social_login.sessions import SessionInfo, SessionManager
from social_login.users import UserStore

logger = logging.getLogger(__name__)


class FlowStage(str, enum.Enum):
    INITIATED = "initiated"
    CALLBACK_RECEIVED = "callback_received"
    EXCHANGED = "exchanged"
    PROFILE_FETCHED = "profile_fetched"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class FlowOutcome:
    stage: FlowStage
    provider_id: str
    session: SessionInfo | None = None
    profile: UserProfile | None = None
    user_id: int | None = None
    error: FlowError | None = None

    @property
    def ok(self) -> bool:
        return self.stage is FlowStage.COMPLETE

    @property
    def notice(self) -> str | None:
        """Generic, user-facing reason; never says which check failed."""
        return self.error.notice if self.error is not None else None


def _json_body(r: httpx.Response, what: str) -> dict:
    try:
        body = r.json()
    except ValueError:
        raise ProviderError(f"{what}: response is not JSON")
    if not isinstance(body, dict):
        raise ProviderError(f"{what}: response is not a JSON object")
    return body


class OAuthFlowEngine:
    def __init__(
        self,
        registry: ProviderRegistry,
        flow_store: FlowStateStore,
        users: UserStore,
        sessions: SessionManager,
        http_client: httpx.Client,
        session_factory: sessionmaker[Session],
        *,
        timeout_seconds: float = 10.0,
    ):
        self._registry = registry
        self._flows = flow_store
        self._users = users
        self._sessions = sessions
        self._http = http_client
        self._session_factory = session_factory
        self._timeout = timeout_seconds

    def initiate(self, provider_id: str) -> str:
        """Return the provider authorization URL for a fresh flow. No network call."""
        _, url = self._flows.begin(provider_id)
        return url

    def handle_callback(
        self,
        provider_id: str,
        *,
        state: str | None,
        code: str | None,
        error: str | None = None,
        error_description: str | None = None,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> FlowOutcome:
        """
        Drive one callback to COMPLETE or FAILED. Flow errors are returned as a FAILED outcome;
        StorageError propagates to the HTTP layer.
        """
        config = self._registry.config_for(provider_id)
        stage = FlowStage.CALLBACK_RECEIVED
        profile: UserProfile | None = None
        try:
            if error:
                # Burn the state so the same redirect cannot be replayed with a code later
                if state:
                    self._flows.consume(state)
                raise ProviderDeniedError(f"{provider_id} returned error={error!r} ({error_description or ''})")
            if not state:
                raise FlowValidationError("callback without state")
            flow = self._flows.consume(state, expected_provider=provider_id)
            if flow is None:
                raise FlowValidationError("state unknown, expired, reused or issued for another provider")
            if not code:
                raise FlowValidationError("callback without code")

            access_token = self._exchange_code(config, code, flow.code_verifier)
            stage = FlowStage.EXCHANGED

            claims = self._fetch_userinfo(config, access_token)
            profile = self._registry.normalizer_for(provider_id)(provider_id, claims)
            stage = FlowStage.PROFILE_FETCHED
        except FlowError as e:
            logger.warning("%s login failed at %s: %s", provider_id, stage.value, e)
            log_audit(self._session_factory, EVENT_LOGIN_FAIL, provider_id=provider_id, ip=ip, outcome=OUTCOME_FAIL)
            return FlowOutcome(stage=FlowStage.FAILED, provider_id=provider_id, error=e)

        user_id = self._users.upsert_user(
            provider_id, profile.provider_user_id, profile.display_name, profile.email
        )
        session = self._sessions.create(user_id, ip=ip, user_agent=user_agent)
        log_audit(self._session_factory, EVENT_LOGIN_OK, provider_id=provider_id, user_id=user_id, ip=ip)
        logger.info("%s login complete for user id=%s", provider_id, user_id)
        return FlowOutcome(
            stage=FlowStage.COMPLETE,
            provider_id=provider_id,
            session=session,
            profile=profile,
            user_id=user_id,
        )

    def _exchange_code(self, config: ProviderConfig, code: str, code_verifier: str | None) -> str:
        """POST to the token endpoint once; return the access token or raise ProviderError."""
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": config.redirect_uri,
            "client_id": config.client_id,
        }
        kwargs = {}
        if config.token_auth == TOKEN_AUTH_BASIC:
            kwargs["auth"] = (config.client_id, config.client_secret)
        else:
            data["client_secret"] = config.client_secret
        if code_verifier:
            data["code_verifier"] = code_verifier

        try:
            r = self._http.post(
                config.token_endpoint,
                data=data,
                headers={"Accept": "application/json"},
                timeout=self._timeout,
                **kwargs,
            )
        except httpx.HTTPError as e:
            raise ProviderError(f"token request to {config.provider_id} failed: {type(e).__name__}: {e}") from e

        if not r.is_success:
            raise ProviderError(f"token endpoint returned {r.status_code}: {r.text[:200]}")
        body = _json_body(r, "token endpoint")
        access_token = body.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise ProviderError("token endpoint response has no access_token")
        return access_token

    def _fetch_userinfo(self, config: ProviderConfig, access_token: str) -> dict:
        try:
            r = self._http.get(
                config.userinfo_endpoint,
                params=dict(config.userinfo_params) or None,
                headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
                timeout=self._timeout,
            )
        except httpx.HTTPError as e:
            raise ProviderError(f"userinfo request to {config.provider_id} failed: {type(e).__name__}: {e}") from e
        if not r.is_success:
            raise ProviderError(f"userinfo endpoint returned {r.status_code}: {r.text[:200]}")
        return _json_body(r, "userinfo endpoint")
