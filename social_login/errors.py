"""
Error types for the login core.
Flow errors are recovered into a redirect to /login; StorageError surfaces as 503.
Not-found sessions are not errors: SessionManager.resolve returns None.
"""


class SocialLoginError(Exception):
    pass


class ConfigurationError(SocialLoginError):
    """Missing credentials, malformed endpoint URL, bad TTL. Raised at startup only."""


class UnknownProviderError(ConfigurationError):
    def __init__(self, provider_id: str):
        super().__init__(f"Unknown provider: {provider_id}")
        self.provider_id = provider_id


class FlowError(SocialLoginError):
    """Base for failures that abandon a login flow. Messages stay server-side."""

    notice = "login_failed"


class FlowValidationError(FlowError):
    """State unknown, expired, already used, or callback missing code."""


class ProviderDeniedError(FlowError):
    """Provider redirected back with ?error= (e.g. user denied consent)."""

    notice = "denied"


class ProviderError(FlowError):
    """Non-2xx, malformed body or timeout from the provider's token or user-info endpoint."""


class ProfileIncompleteError(ProviderError):
    """Provider returned no stable user identifier."""


class StorageError(SocialLoginError):
    """Persistence unavailable. Never to be read as "not authenticated"."""
