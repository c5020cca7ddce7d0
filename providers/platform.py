import logging
import webbrowser
from typing import Optional

import httpx

from config import AppConfig
from lastfm_api.client import LastFMClient
from managers.credential_store import CredentialStore
from providers.base import ConfigurationError, ErrorKind, Platform, ProviderError, SessionCredentials, Song
from spotify_api.auth import BrowserOpener, SpotifyAuth
from spotify_api.client import SpotifyClient

logger = logging.getLogger(__name__)

# Minimum seconds between two now-playing requests.
MIN_POLL_INTERVALS = {
    Platform.SPOTIFY: 2.0,
    Platform.LASTFM: 3.0,
}

# Detection order when no priority platform is configured.
DETECTION_ORDER = (Platform.SPOTIFY, Platform.LASTFM)


def detect_platform(config: AppConfig) -> Platform:
    """Pick the platform to use: the configured priority one, else the first fully configured."""

    if config.priority_platform:
        platform = Platform.from_name(config.priority_platform)
        logger.debug("Using priority platform %s", platform.display_name)
        return platform

    for platform in DETECTION_ORDER:
        if config.has_settings(platform):
            logger.debug("Found platform %s", platform.display_name)
            return platform

    raise ConfigurationError(
        "No platforms detected. Set SPOTIFY_CLIENT_ID/SPOTIFY_CLIENT_SECRET "
        "or LASTFM_API_KEY/LASTFM_SHARED_SECRET/LASTFM_USERNAME."
    )


class Provider:
    """Per-platform capabilities: verify, connect/login, refresh, poll, rate limit."""

    def __init__(
        self,
        platform: Platform,
        config: AppConfig,
        *,
        store: Optional[CredentialStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        open_browser: Optional[BrowserOpener] = webbrowser.open,
    ):
        self.platform = platform
        self.config = config
        self.store = store or CredentialStore(config.credentials_dir)

        self.spotify_auth: Optional[SpotifyAuth] = None
        self.spotify_client: Optional[SpotifyClient] = None
        self.lastfm_client: Optional[LastFMClient] = None

        if platform is Platform.SPOTIFY:
            self.spotify_auth = SpotifyAuth(config, store=self.store, transport=transport, open_browser=open_browser)
            self.spotify_client = SpotifyClient(transport=transport)
        elif platform is Platform.LASTFM:
            self.lastfm_client = LastFMClient(
                api_key=config.lastfm_api_key, username=config.lastfm_username, transport=transport
            )
        else:
            raise ConfigurationError(f"Unsupported platform: {platform}")

    @property
    def name(self) -> str:
        return self.platform.display_name

    @property
    def requires_login(self) -> bool:
        return self.platform is Platform.SPOTIFY

    @property
    def min_interval(self) -> float:
        return MIN_POLL_INTERVALS[self.platform]

    def verify(self) -> None:
        """Raise ConfigurationError when a required setting is missing."""
        self.config.require(self.platform)

    def set_browser_opener(self, open_browser: Optional[BrowserOpener]) -> None:
        if self.spotify_auth is not None:
            self.spotify_auth.open_browser = open_browser

    def load_credentials(self) -> Optional[SessionCredentials]:
        if not self.requires_login:
            return None
        return self.store.load(self.platform)

    async def login(self, *, timeout: Optional[float] = None) -> Optional[SessionCredentials]:
        """Run the platform's login flow. Returns None when no login is needed."""
        if self.spotify_auth is not None:
            return await self.spotify_auth.login(timeout=timeout)
        logger.info("Connection to %s not needed", self.name)
        return None

    async def connect(self) -> Optional[SessionCredentials]:
        """Stored credentials if present, otherwise a fresh login."""
        if not self.requires_login:
            return None
        credentials = self.load_credentials()
        if credentials is not None:
            return credentials
        logger.info("No stored %s credentials, starting login", self.name)
        return await self.login()

    async def refresh(self, credentials: Optional[SessionCredentials]) -> SessionCredentials:
        if self.spotify_auth is not None and credentials is not None:
            return await self.spotify_auth.refresh_access_token(credentials)
        raise ProviderError(
            ErrorKind.AUTHORIZATION_FAILURE,
            "No parameters provided" if credentials is None else f"{self.name} tokens cannot be refreshed",
            platform=self.platform,
        )

    async def currently_playing(self, credentials: Optional[SessionCredentials]) -> Optional[Song]:
        if self.spotify_client is not None:
            if credentials is None:
                raise ProviderError(
                    ErrorKind.EXPIRED_TOKEN, "No Spotify session parameters", platform=self.platform
                )
            return await self.spotify_client.currently_playing(credentials)

        if self.lastfm_client is None:
            raise ConfigurationError(f"No client configured for {self.name}")
        return await self.lastfm_client.currently_playing()
