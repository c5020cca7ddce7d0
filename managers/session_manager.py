import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional

from providers.base import (
    AuthorizationError,
    ErrorKind,
    ImaginalError,
    ProviderError,
    SessionCredentials,
    Song,
)
from providers.platform import Provider
from utils.display import SongDisplay

logger = logging.getLogger(__name__)

# Cooldown after a rate-limit answer, in seconds.
RATE_LIMIT_COOLDOWN = 60.0

Sleeper = Callable[[float], Awaitable[None]]


class SessionState(Enum):
    UNAUTHENTICATED = "unauthenticated"
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"


class PollingSession:
    """Drives one provider session: connect, poll, recover, wait.

    States: UNAUTHENTICATED -> CONNECTING -> AUTHENTICATED <-> REFRESHING.
    A failed refresh leaves the session in REFRESHING; the next tick retries
    the refresh instead of polling. An authorization failure during refresh
    (no refresh token, no credentials) is raised to the caller.
    """

    def __init__(
        self,
        provider: Provider,
        *,
        poll_interval: Optional[float] = None,
        sleep: Sleeper = asyncio.sleep,
        display: Optional[SongDisplay] = None,
    ):
        self.provider = provider
        self.credentials: Optional[SessionCredentials] = None
        self.state = SessionState.UNAUTHENTICATED
        self.display = display or SongDisplay()
        self.refresh_attempts = 0
        self._sleep = sleep

        interval = provider.config.poll_interval if poll_interval is None else poll_interval
        self.poll_interval = max(float(interval), provider.min_interval)

    async def connect(self) -> None:
        """Load or obtain credentials. Any failure here is fatal for the caller."""
        self.state = SessionState.CONNECTING

        if not self.provider.requires_login:
            logger.info("%s: no login required", self.provider.name)
            self.state = SessionState.AUTHENTICATED
            return

        try:
            credentials = await self.provider.connect()
        except BaseException:
            self.state = SessionState.UNAUTHENTICATED
            raise

        if credentials is None or not credentials.access_token:
            self.state = SessionState.UNAUTHENTICATED
            raise AuthorizationError(
                f"Couldn't obtain {self.provider.name} credentials", platform=self.provider.platform
            )

        self.credentials = credentials
        self.state = SessionState.AUTHENTICATED
        logger.info("Connected to %s", self.provider.name)

    async def poll_once(self) -> Optional[Song]:
        """Ask the provider what is playing. Raises a classified ProviderError on failure."""
        if self.state is SessionState.UNAUTHENTICATED or self.state is SessionState.CONNECTING:
            raise ImaginalError("Session is not connected; call connect() first")
        return await self.provider.currently_playing(self.credentials)

    async def refresh(self) -> bool:
        """One refresh attempt. Returns True when the session is usable again.

        Raises ProviderError when the failure is AUTHORIZATION_FAILURE.
        """
        self.state = SessionState.REFRESHING
        self.refresh_attempts += 1

        try:
            credentials = await self.provider.refresh(self.credentials)
        except ProviderError as e:
            if e.kind is ErrorKind.AUTHORIZATION_FAILURE:
                # Retrying cannot help; a new login is required.
                self.state = SessionState.UNAUTHENTICATED
                raise
            logger.error("Refresh failed, skipping poll: %s", e)
            return False

        self.credentials = credentials
        self.state = SessionState.AUTHENTICATED
        logger.info("%s token refreshed", self.provider.name)
        return True

    async def react(self, error: ProviderError) -> None:
        """Recover from a classified polling error."""
        if error.kind is ErrorKind.EXPIRED_TOKEN:
            logger.info("%s token expired, refreshing", self.provider.name)
            await self.refresh()
        elif error.kind is ErrorKind.RATE_LIMITED:
            logger.warning(
                "%s rate limit hit (retry-after: %s), cooling down for %ss",
                self.provider.name,
                error.retry_after,
                int(RATE_LIMIT_COOLDOWN),
            )
            await self._sleep(RATE_LIMIT_COOLDOWN)
        else:
            logger.error("Error while polling %s: %s", self.provider.name, error)

    async def wait(self) -> None:
        await self._sleep(self.poll_interval)

    async def tick(self) -> Optional[Song]:
        """Poll once and react to the outcome. Returns the song, if any."""
        if self.state is SessionState.REFRESHING:
            if not await self.refresh():
                return None

        try:
            song = await self.poll_once()
        except ProviderError as e:
            await self.react(e)
            return None

        if self.display.show(song):
            logger.debug("Now playing changed: %s", SongDisplay.render(song))
        return song

    async def run(self, *, max_polls: Optional[int] = None) -> None:
        """Connect if needed, then poll forever (or ``max_polls`` times)."""
        if self.state is SessionState.UNAUTHENTICATED:
            await self.connect()

        polls = 0
        while max_polls is None or polls < max_polls:
            await self.tick()
            polls += 1
            await self.wait()
