"""
Social login configuration. All values come from the environment; no secrets in this file.
Provider credentials are read by providers.load_registry, not here.
"""
import os
from dataclasses import dataclass

from social_login.errors import ConfigurationError

DEFAULT_SESSION_LIFETIME = 24 * 60 * 60
# Pending login flows: long enough for a user to finish consent at the provider
DEFAULT_FLOW_TTL = 600


@dataclass(frozen=True)
class Settings:
    base_url: str = "http://localhost:8000"
    database_url: str = "sqlite:///./social_login.db"
    session_lifetime_seconds: int = DEFAULT_SESSION_LIFETIME
    flow_ttl_seconds: int = DEFAULT_FLOW_TTL
    cookie_name: str = "sid"
    cookie_secure: bool = False
    http_timeout_seconds: float = 10.0
    enabled_providers: tuple[str, ...] = ("google", "twitter")
    log_level: str = "INFO"

    def callback_url(self, provider_id: str) -> str:
        return f"{self.base_url}/api/auth/{provider_id}_callback"


def _positive_int(name: str, raw: str) -> int:
    try:
        value = int(raw.strip())
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer number of seconds, got {raw!r}")
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value}")
    return value


def _parse_bool(raw: str) -> bool | None:
    v = raw.strip().lower()
    if v in ("1", "true", "yes", "on"):
        return True
    if v in ("0", "false", "no", "off"):
        return False
    return None


def load_settings() -> Settings:
    """
    Build Settings from environment variables.
    APP_BASE_URL, DATABASE_URL, SESSION_LIFETIME_SECONDS, FLOW_TTL_SECONDS, SESSION_COOKIE_NAME,
    SESSION_COOKIE_SECURE, PROVIDER_HTTP_TIMEOUT, ENABLED_PROVIDERS, LOG_LEVEL.
    """
    base_url = os.environ.get("APP_BASE_URL", "http://localhost:8000").strip().rstrip("/")

    # Secure cookies by default when served over https; explicit env wins
    cookie_secure = _parse_bool(os.environ.get("SESSION_COOKIE_SECURE", ""))
    if cookie_secure is None:
        cookie_secure = base_url.startswith("https://")

    timeout_raw = os.environ.get("PROVIDER_HTTP_TIMEOUT", "10")
    try:
        timeout = float(timeout_raw)
    except ValueError:
        raise ConfigurationError(f"PROVIDER_HTTP_TIMEOUT must be a number, got {timeout_raw!r}")
    if timeout <= 0:
        raise ConfigurationError("PROVIDER_HTTP_TIMEOUT must be positive")

    providers = tuple(
        p.strip().lower() for p in os.environ.get("ENABLED_PROVIDERS", "google,twitter").split(",") if p.strip()
    )

    return Settings(
        base_url=base_url,
        database_url=os.environ.get("DATABASE_URL", "sqlite:///./social_login.db"),
        session_lifetime_seconds=_positive_int(
            "SESSION_LIFETIME_SECONDS", os.environ.get("SESSION_LIFETIME_SECONDS", str(DEFAULT_SESSION_LIFETIME))
        ),
        flow_ttl_seconds=_positive_int("FLOW_TTL_SECONDS", os.environ.get("FLOW_TTL_SECONDS", str(DEFAULT_FLOW_TTL))),
        cookie_name=os.environ.get("SESSION_COOKIE_NAME", "sid").strip() or "sid",
        cookie_secure=cookie_secure,
        http_timeout_seconds=timeout,
        enabled_providers=providers,
        log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    )
