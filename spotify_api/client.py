import json
import logging
from typing import Any, Dict, Optional

import httpx

from providers.base import ErrorKind, Platform, ProviderError, SessionCredentials, Song

logger = logging.getLogger(__name__)

SPOTIFY_API_BASE_URL = "https://api.spotify.com/v1"
CURRENTLY_PLAYING_URL = f"{SPOTIFY_API_BASE_URL}/me/player/currently-playing"

REQUEST_TIMEOUT = 30.0


def _retry_after(resp: httpx.Response) -> Optional[float]:
    value = resp.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class SpotifyClient:
    """Thin async client for the Spotify "currently playing" endpoint.

    Every non-success answer is turned into a classified ProviderError;
    recovery (refresh, backoff) is left to the polling session.
    """

    def __init__(self, *, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.transport = transport

    async def currently_playing(self, credentials: SessionCredentials) -> Optional[Song]:
        """Return the current Song, or None when nothing is playing."""

        if not credentials.access_token:
            raise ProviderError(
                ErrorKind.EXPIRED_TOKEN, "No access token available", platform=Platform.SPOTIFY
            )

        try:
            async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT, transport=self.transport) as client:
                resp = await client.get(
                    CURRENTLY_PLAYING_URL,
                    headers={
                        "Authorization": credentials.authorization_header,
                        "Accept": "application/json",
                    },
                )
        except httpx.HTTPError as e:
            raise ProviderError(
                ErrorKind.TRANSPORT_FAILURE, f"Spotify API request failed: {e}", platform=Platform.SPOTIFY
            ) from e

        status = resp.status_code
        if status == 204:
            return None
        if status == 401:
            raise ProviderError(
                ErrorKind.EXPIRED_TOKEN, "Current token is expired", platform=Platform.SPOTIFY, status_code=status
            )
        if status == 429:
            raise ProviderError(
                ErrorKind.RATE_LIMITED,
                "Too many requests",
                platform=Platform.SPOTIFY,
                status_code=status,
                retry_after=_retry_after(resp),
            )
        if status >= 500:
            raise ProviderError(
                ErrorKind.SERVER_FAILURE,
                f"Spotify API error: {resp.text}",
                platform=Platform.SPOTIFY,
                status_code=status,
            )
        if status != 200:
            raise ProviderError(
                ErrorKind.UNKNOWN, f"Spotify API error: {resp.text}", platform=Platform.SPOTIFY, status_code=status
            )

        try:
            payload = resp.json()
        except json.JSONDecodeError as e:
            raise ProviderError(
                ErrorKind.SERVER_FAILURE,
                f"Spotify API response was not JSON: {resp.text}",
                platform=Platform.SPOTIFY,
                status_code=status,
            ) from e

        return self.parse_currently_playing(payload)

    @staticmethod
    def parse_currently_playing(payload: Any) -> Optional[Song]:
        """Build a Song from a currently-playing response body.

        Endpoint shape: {is_playing, item: {name, artists: [{name}], album: {name}}}.
        ``item`` is null for ads and private sessions.
        """

        if not isinstance(payload, dict):
            raise ProviderError(
                ErrorKind.SERVER_FAILURE, f"Unexpected Spotify response: {payload}", platform=Platform.SPOTIFY
            )

        item = payload.get("item")
        if item is None:
            logger.debug("Spotify reported no item (type: %s)", payload.get("currently_playing_type"))
            return None

        try:
            artists = item.get("artists") or []
            album: Dict[str, Any] = item["album"]
            return Song(
                is_playing=bool(payload["is_playing"]),
                title=str(item["name"]),
                artist=str(artists[0]["name"]) if artists else "",
                album=str(album["name"]),
            )
        except (AttributeError, KeyError, IndexError, TypeError) as e:
            raise ProviderError(
                ErrorKind.SERVER_FAILURE,
                f"Malformed Spotify currently-playing response: {e!r}",
                platform=Platform.SPOTIFY,
            ) from e
