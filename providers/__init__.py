# Only the core types are exported here; import providers.platform explicitly
# (it depends on config and the API packages).
from providers.base import (
    AuthorizationError,
    AuthorizationState,
    CallbackResult,
    CallbackServerError,
    ConfigurationError,
    CredentialStoreError,
    ErrorKind,
    ImaginalError,
    Platform,
    ProviderError,
    SessionCredentials,
    Song,
)

__all__ = [
    "AuthorizationError",
    "AuthorizationState",
    "CallbackResult",
    "CallbackServerError",
    "ConfigurationError",
    "CredentialStoreError",
    "ErrorKind",
    "ImaginalError",
    "Platform",
    "ProviderError",
    "SessionCredentials",
    "Song",
]
