import json
import logging
from typing import Any, Dict, Optional

import httpx

from providers.base import ConfigurationError, ErrorKind, Platform, ProviderError, Song

logger = logging.getLogger(__name__)

API_URL = "http://ws.audioscrobbler.com/2.0/"

REQUEST_TIMEOUT = 30.0

# https://www.last.fm/api/errorcodes
ERROR_INVALID_API_KEY = 10
ERROR_UNKNOWN_USER = 6
ERROR_RATE_LIMIT = 29


class LastFMClient:
    """Reads the most recent scrobble of a user; no login lifecycle."""

    def __init__(self, *, api_key: str, username: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key
        self.username = username
        self.transport = transport

    def _params(self) -> Dict[str, str]:
        return {
            "method": "user.getrecenttracks",
            "user": self.username,
            "api_key": self.api_key,
            "format": "json",
            "limit": "1",
        }

    async def currently_playing(self) -> Optional[Song]:
        try:
            async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT, transport=self.transport) as client:
                resp = await client.get(API_URL, params=self._params())
        except httpx.HTTPError as e:
            raise ProviderError(
                ErrorKind.TRANSPORT_FAILURE, f"LastFM request failed: {e}", platform=Platform.LASTFM
            ) from e

        try:
            payload = resp.json()
        except json.JSONDecodeError as e:
            if resp.status_code == 429:
                raise ProviderError(
                    ErrorKind.RATE_LIMITED, "Too many requests", platform=Platform.LASTFM, status_code=429
                ) from e
            kind = ErrorKind.SERVER_FAILURE if resp.status_code == 200 or resp.status_code >= 500 else ErrorKind.UNKNOWN
            raise ProviderError(
                kind,
                f"LastFM response was not JSON: {resp.text}",
                platform=Platform.LASTFM,
                status_code=resp.status_code,
            ) from e

        if resp.status_code != 200 or (isinstance(payload, dict) and "error" in payload):
            self._raise_for_error(resp.status_code, payload)

        return self.parse_recent_tracks(payload)

    @staticmethod
    def _raise_for_error(status_code: int, payload: Any) -> None:
        code = payload.get("error") if isinstance(payload, dict) else None
        message = payload.get("message") if isinstance(payload, dict) else None

        if code == ERROR_UNKNOWN_USER:
            raise ConfigurationError(f"LastFM: unknown user ({message or 'User not found'})")
        if code == ERROR_INVALID_API_KEY:
            raise ConfigurationError(f"LastFM: incorrect API key ({message or 'Invalid API key'})")
        if code == ERROR_RATE_LIMIT or status_code == 429:
            raise ProviderError(
                ErrorKind.RATE_LIMITED, "Too many requests", platform=Platform.LASTFM, status_code=status_code
            )

        kind = ErrorKind.SERVER_FAILURE if status_code >= 500 else ErrorKind.UNKNOWN
        raise ProviderError(
            kind,
            f"Unhandled request error coming from LastFM (code {code}): {message or payload}",
            platform=Platform.LASTFM,
            status_code=status_code,
        )

    @staticmethod
    def parse_recent_tracks(payload: Any) -> Optional[Song]:
        """Build a Song from the first entry of a user.getrecenttracks response."""

        try:
            tracks = payload["recenttracks"]["track"]
        except (KeyError, TypeError) as e:
            raise ProviderError(
                ErrorKind.SERVER_FAILURE, f"Malformed LastFM response: {e!r}", platform=Platform.LASTFM
            ) from e

        # A single track comes back as an object instead of a list.
        if isinstance(tracks, dict):
            tracks = [tracks]
        if not isinstance(tracks, list):
            raise ProviderError(
                ErrorKind.SERVER_FAILURE, f"Malformed LastFM track list: {tracks!r}", platform=Platform.LASTFM
            )
        if not tracks:
            logger.debug("No tracks detected at all")
            return None

        track: Dict[str, Any] = tracks[0]
        try:
            attr = track.get("@attr") or {}
            return Song(
                is_playing=str(attr.get("nowplaying", "")).lower() == "true",
                title=str(track["name"]),
                artist=str(track["artist"]["#text"]),
                album=str(track["album"]["#text"]),
            )
        except (AttributeError, KeyError, TypeError) as e:
            raise ProviderError(
                ErrorKind.SERVER_FAILURE, f"Malformed LastFM track: {e!r}", platform=Platform.LASTFM
            ) from e
