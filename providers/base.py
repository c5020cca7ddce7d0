import secrets
import string
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Optional


class Platform(Enum):
    """Supported music platforms. The set is closed."""

    SPOTIFY = "spotify"
    LASTFM = "lastfm"

    @classmethod
    def from_name(cls, name: str) -> "Platform":
        key = str(name or "").strip().lower()
        for platform in cls:
            if platform.value == key:
                return platform
        raise ConfigurationError(
            f"Unknown platform '{name}'. Expected one of: {', '.join(p.value for p in cls)}"
        )

    @property
    def display_name(self) -> str:
        return {Platform.SPOTIFY: "Spotify", Platform.LASTFM: "LastFM"}[self]


class ErrorKind(Enum):
    EXPIRED_TOKEN = "expired_token"
    RATE_LIMITED = "rate_limited"
    TRANSPORT_FAILURE = "transport_failure"
    SERVER_FAILURE = "server_failure"
    AUTHORIZATION_FAILURE = "authorization_failure"
    LISTENER_FAILURE = "listener_failure"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


class ImaginalError(Exception):
    """Base class for all errors raised by this project."""


class ProviderError(ImaginalError):
    """A classified failure coming from a provider or the login machinery."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        platform: Optional[Platform] = None,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.platform = platform
        self.status_code = status_code
        self.retry_after = retry_after

    def __str__(self) -> str:
        parts = []
        if self.platform is not None:
            parts.append(self.platform.display_name)
        parts.append(self.kind.value)
        if self.status_code is not None:
            parts.append(f"HTTP {self.status_code}")
        return f"[{' / '.join(parts)}] {self.message}"


class AuthorizationError(ProviderError):
    def __init__(self, message: str, *, platform: Optional[Platform] = None, status_code: Optional[int] = None):
        super().__init__(
            ErrorKind.AUTHORIZATION_FAILURE,
            message,
            platform=platform,
            status_code=status_code,
        )


class CallbackServerError(ProviderError):
    def __init__(self, message: str):
        super().__init__(ErrorKind.LISTENER_FAILURE, message)


class ConfigurationError(ImaginalError):
    """Unrecoverable configuration problem. The process must exit."""

    kind = ErrorKind.CONFIGURATION


class CredentialStoreError(ImaginalError):
    pass


CSRF_STATE_LENGTH = 16
_ALPHANUMERIC = string.ascii_letters + string.digits


def generate_csrf_state(length: int = CSRF_STATE_LENGTH) -> str:
    """Random alphanumeric token echoed through the OAuth redirect."""

    return "".join(secrets.choice(_ALPHANUMERIC) for _ in range(int(length)))


@dataclass(frozen=True)
class SessionCredentials:
    """Credential bundle used to authenticate polling requests."""

    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    expires_at: Optional[float] = None
    scope: Optional[str] = None

    @staticmethod
    def from_token_response(payload: Dict[str, Any], *, now: Optional[float] = None) -> "SessionCredentials":
        """Convert a token endpoint JSON response into SessionCredentials.

        The token endpoint returns:
        - access_token
        - token_type
        - expires_in (seconds, optional)
        - refresh_token (optional on refresh)
        - scope (space-delimited string)
        """

        expires_at = None
        if payload.get("expires_in") is not None:
            now_ts = float(time.time() if now is None else now)
            expires_at = now_ts + float(payload["expires_in"])

        return SessionCredentials(
            access_token=str(payload.get("access_token") or ""),
            refresh_token=payload.get("refresh_token") or None,
            token_type=str(payload.get("token_type") or "Bearer"),
            expires_at=expires_at,
            scope=payload.get("scope"),
        )

    def with_refreshed(self, refreshed: "SessionCredentials") -> "SessionCredentials":
        """Merge a refresh response, keeping our refresh token unless replaced."""

        return replace(refreshed, refresh_token=refreshed.refresh_token or self.refresh_token)

    @property
    def authorization_header(self) -> str:
        return f"{self.token_type or 'Bearer'} {self.access_token}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_type": self.token_type,
            "expires_at": self.expires_at,
            "scope": self.scope,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "SessionCredentials":
        expires_at = data.get("expires_at")
        return SessionCredentials(
            access_token=str(data.get("access_token") or ""),
            refresh_token=data.get("refresh_token"),
            token_type=str(data.get("token_type") or "Bearer"),
            expires_at=None if expires_at is None else float(expires_at),
            scope=data.get("scope"),
        )


@dataclass(frozen=True)
class AuthorizationState:
    """Transient state of a single login attempt.

    The authorization code is not held here: it arrives in
    ``CallbackResult.code`` and is only accepted by
    ``SpotifyAuth.validate_callback`` once ``csrf_state`` matches.
    """

    csrf_state: str
    redirect_uri: str
    authorize_url: str


@dataclass(frozen=True)
class CallbackResult:
    code: Optional[str] = None
    state: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class Song:
    is_playing: bool
    title: str
    artist: str
    album: str

    def describe(self) -> str:
        status = "Playing" if self.is_playing else "Paused"
        text = f"{self.title} by {self.artist}"
        if self.album:
            text = f"{text} ({self.album})"
        return f"{status}: {text}"
