"""
Provider registry: static per-provider OAuth2 configuration plus one profile normalizer per provider.
Built once at startup and injected; validation failures stop the app from starting.
"""
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Callable
from urllib.parse import urlparse

from social_login.config import Settings
from social_login.errors import ConfigurationError, ProfileIncompleteError, UnknownProviderError

logger = logging.getLogger(__name__)

TOKEN_AUTH_POST = "client_secret_post"
TOKEN_AUTH_BASIC = "client_secret_basic"


@dataclass(frozen=True)
class ProviderConfig:
    provider_id: str
    display_name: str
    client_id: str
    client_secret: str = field(repr=False)
    authorization_endpoint: str
    token_endpoint: str
    userinfo_endpoint: str
    redirect_uri: str
    scopes: tuple[str, ...] = ()
    pkce_required: bool = False
    token_auth: str = TOKEN_AUTH_POST
    userinfo_params: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True)
class UserProfile:
    """Normalized identity from a provider. Lives only for the duration of a callback."""

    provider_id: str
    provider_user_id: str
    display_name: str
    email: str | None = None
    raw: dict = field(default_factory=dict, repr=False, compare=False)


Normalizer = Callable[[str, dict], UserProfile]


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def normalize_google(provider_id: str, claims: dict) -> UserProfile:
    """OIDC userinfo claims: sub, name, email, email_verified."""
    if not isinstance(claims, dict):
        raise ProfileIncompleteError("userinfo body is not an object")
    sub = _clean(claims.get("sub"))
    if not sub:
        raise ProfileIncompleteError("google userinfo has no sub")
    email = _clean(claims.get("email"))
    if email and claims.get("email_verified") is False:
        email = None
    display_name = _clean(claims.get("name")) or email or sub
    return UserProfile(
        provider_id=provider_id,
        provider_user_id=sub,
        display_name=display_name,
        email=email,
        raw=claims,
    )


def normalize_twitter(provider_id: str, claims: dict) -> UserProfile:
    """Twitter v2 /users/me: {"data": {"id", "name", "username"}}. No email on this API."""
    data = claims.get("data") if isinstance(claims, dict) else None
    if not isinstance(data, dict):
        raise ProfileIncompleteError("twitter response has no data object")
    user_id = _clean(data.get("id"))
    if not user_id:
        raise ProfileIncompleteError("twitter user has no id")
    username = _clean(data.get("username"))
    display_name = _clean(data.get("name")) or (f"@{username}" if username else user_id)
    return UserProfile(
        provider_id=provider_id,
        provider_user_id=user_id,
        display_name=display_name,
        email=None,
        raw=data,
    )


NORMALIZERS: dict[str, Normalizer] = {
    "google": normalize_google,
    "twitter": normalize_twitter,
}

# Endpoint/scopes defaults for the built-in providers; credentials come from env
BUILTIN_PROVIDERS: dict[str, dict] = {
    "google": {
        "display_name": "Google",
        "authorization_endpoint": "https://accounts.google.com/o/oauth2/v2/auth",
        "token_endpoint": "https://www.googleapis.com/oauth2/v3/token",
        "userinfo_endpoint": "https://openidconnect.googleapis.com/v1/userinfo",
        "scopes": ("openid", "profile", "email"),
        "pkce_required": False,
        "token_auth": TOKEN_AUTH_POST,
    },
    "twitter": {
        "display_name": "Twitter",
        "authorization_endpoint": "https://twitter.com/i/oauth2/authorize",
        "token_endpoint": "https://api.twitter.com/2/oauth2/token",
        "userinfo_endpoint": "https://api.twitter.com/2/users/me",
        "scopes": ("tweet.read", "users.read"),
        "pkce_required": True,
        "token_auth": TOKEN_AUTH_BASIC,
        "userinfo_params": (("user.fields", "id,name,username"),),
    },
}


def _valid_url(url: str) -> bool:
    parsed = urlparse(url or "")
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def validate_provider(config: ProviderConfig) -> None:
    """Raise ConfigurationError if credentials are empty or any endpoint is not an absolute http(s) URL."""
    pid = config.provider_id
    if not config.client_id or not config.client_id.strip():
        raise ConfigurationError(f"{pid}: client_id is empty")
    if not config.client_secret or not config.client_secret.strip():
        raise ConfigurationError(f"{pid}: client_secret is empty")
    for name in ("authorization_endpoint", "token_endpoint", "userinfo_endpoint", "redirect_uri"):
        if not _valid_url(getattr(config, name)):
            raise ConfigurationError(f"{pid}: {name} is not a valid URL: {getattr(config, name)!r}")
    if config.token_auth not in (TOKEN_AUTH_POST, TOKEN_AUTH_BASIC):
        raise ConfigurationError(f"{pid}: unsupported token_auth {config.token_auth!r}")


class ProviderRegistry:
    """Read-only lookup of ProviderConfig and normalizer by provider id."""

    def __init__(self, configs: list[ProviderConfig], normalizers: dict[str, Normalizer] | None = None):
        normalizers = NORMALIZERS if normalizers is None else normalizers
        if not configs:
            raise ConfigurationError("No identity providers configured")
        self._configs: dict[str, ProviderConfig] = {}
        self._normalizers: dict[str, Normalizer] = {}
        for config in configs:
            validate_provider(config)
            if config.provider_id in self._configs:
                raise ConfigurationError(f"Duplicate provider: {config.provider_id}")
            normalizer = normalizers.get(config.provider_id)
            if normalizer is None:
                raise ConfigurationError(f"{config.provider_id}: no profile normalizer registered")
            self._configs[config.provider_id] = config
            self._normalizers[config.provider_id] = normalizer

    def config_for(self, provider_id: str) -> ProviderConfig:
        config = self._configs.get(provider_id)
        if config is None:
            raise UnknownProviderError(provider_id)
        return config

    def normalizer_for(self, provider_id: str) -> Normalizer:
        self.config_for(provider_id)
        return self._normalizers[provider_id]

    def provider_ids(self) -> list[str]:
        return list(self._configs)

    def __contains__(self, provider_id: str) -> bool:
        return provider_id in self._configs


def builtin_provider(settings: Settings, provider_id: str, client_id: str, client_secret: str) -> ProviderConfig:
    defaults = BUILTIN_PROVIDERS.get(provider_id)
    if defaults is None:
        raise UnknownProviderError(provider_id)
    return ProviderConfig(
        provider_id=provider_id,
        client_id=client_id,
        client_secret=client_secret,
        redirect_uri=settings.callback_url(provider_id),
        **defaults,
    )


def load_registry(settings: Settings) -> ProviderRegistry:
    """
    Build the registry for settings.enabled_providers from env:
    {PROVIDER}_OAUTH_CLIENT_ID and {PROVIDER}_OAUTH_CLIENT_SECRET (e.g. GOOGLE_OAUTH_CLIENT_ID).
    """
    configs = []
    for provider_id in settings.enabled_providers:
        prefix = provider_id.upper()
        client_id = os.environ.get(f"{prefix}_OAUTH_CLIENT_ID", "").strip()
        client_secret = os.environ.get(f"{prefix}_OAUTH_CLIENT_SECRET", "").strip()
        if not client_id or not client_secret:
            raise ConfigurationError(f"{prefix}_OAUTH_CLIENT_ID and {prefix}_OAUTH_CLIENT_SECRET must be set")
        configs.append(builtin_provider(settings, provider_id, client_id, client_secret))
    registry = ProviderRegistry(configs)
    logger.info("Loaded identity providers: %s", ", ".join(registry.provider_ids()))
    return registry
