import base64
import hmac
import json
import logging
import urllib.parse
import webbrowser
from typing import Any, Callable, Dict, Optional

import httpx

from config import AppConfig
from managers.credential_store import CredentialStore
from providers.base import (
    AuthorizationError,
    AuthorizationState,
    CallbackResult,
    CredentialStoreError,
    ErrorKind,
    Platform,
    ProviderError,
    SessionCredentials,
    generate_csrf_state,
)

from .callback_server import CallbackServer

logger = logging.getLogger(__name__)

SPOTIFY_ACCOUNTS_BASE_URL = "https://accounts.spotify.com"
AUTHORIZE_URL = f"{SPOTIFY_ACCOUNTS_BASE_URL}/authorize"
TOKEN_URL = f"{SPOTIFY_ACCOUNTS_BASE_URL}/api/token"

# Only the currently-playing endpoint is used.
SPOTIFY_SCOPE = "user-read-currently-playing"

TOKEN_REQUEST_TIMEOUT = 30.0

BrowserOpener = Callable[[str], Any]


def basic_auth_header(client_id: str, client_secret: str) -> str:
    raw = f"{client_id}:{client_secret}".encode("utf-8")
    return "Basic " + base64.b64encode(raw).decode("ascii")


def get_authorize_url(*, client_id: str, redirect_uri: str, state: str, scope: str = SPOTIFY_SCOPE) -> str:
    params = {
        "response_type": "code",
        "client_id": client_id,
        "scope": scope,
        "redirect_uri": redirect_uri,
        "state": state,
    }
    return f"{AUTHORIZE_URL}?{urllib.parse.urlencode(params)}"


def spotify_app_setup_instructions(*, redirect_uri: str = "http://127.0.0.1:9761/callback") -> str:
    """Return user-facing setup instructions for creating a Spotify Developer app."""

    return (
        "Spotify app setup:\n"
        "1) Go to https://developer.spotify.com/dashboard\n"
        "2) Create an app (or select an existing app)\n"
        f"3) Add this Redirect URI in the app settings: {redirect_uri}\n"
        "4) Export SPOTIFY_CLIENT_ID and SPOTIFY_CLIENT_SECRET (or put them in .env)\n\n"
        "Notes:\n"
        "- Redirect URI must match *exactly* what you configure in the Spotify dashboard.\n"
        "- Change LOGIN_SERVER_IP / LOGIN_SERVER_PORT if the default port is taken.\n"
    )


class SpotifyAuth:
    """Spotify OAuth (Authorization Code with client secret) helper.

    Covers the full login flow (local callback server, CSRF check, code
    exchange) and refreshing an expired access token.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        store: Optional[CredentialStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        open_browser: Optional[BrowserOpener] = webbrowser.open,
    ):
        self.config = config
        self.store = store or CredentialStore(config.credentials_dir)
        self.transport = transport
        self.open_browser = open_browser

    @staticmethod
    def generate_state() -> str:
        return generate_csrf_state()

    def begin_authorization(self, redirect_uri: str) -> AuthorizationState:
        state = self.generate_state()
        url = get_authorize_url(client_id=self.config.spotify_client_id, redirect_uri=redirect_uri, state=state)
        return AuthorizationState(csrf_state=state, redirect_uri=redirect_uri, authorize_url=url)

    # -----------------
    # Login flow
    # -----------------

    async def login(self, *, timeout: Optional[float] = None) -> SessionCredentials:
        """Run one authorization-code exchange and persist the resulting credentials.

        The callback server is bound before the browser is pointed at the
        authorization URL; a bind failure aborts before anything is opened.
        """

        server = CallbackServer(self.config.login_server_ip, self.config.login_server_port)
        server.start()

        try:
            # Requested port may be 0; build the redirect from the bound one.
            authorization = self.begin_authorization(server.callback_url)
            server.authorize_url = authorization.authorize_url
            self._direct_user(server, authorization)
        except BaseException:
            server.close()
            raise

        result = await server.wait(timeout)
        code = self.validate_callback(result, authorization)

        credentials = await self.exchange_code_for_token(code=code, redirect_uri=authorization.redirect_uri)
        self.store.save(Platform.SPOTIFY, credentials)
        logger.info("Spotify credentials saved to %s", self.store.path_for(Platform.SPOTIFY))
        return credentials

    def _direct_user(self, server: CallbackServer, authorization: AuthorizationState) -> None:
        logger.warning("Go to %s on your browser", server.login_url)
        logger.debug("Authorization URL: %s", authorization.authorize_url)

        if self.open_browser is None:
            return
        try:
            opened = self.open_browser(authorization.authorize_url)
        except webbrowser.Error as e:
            logger.warning("Couldn't open a browser (%s); use the login URL above.", e)
            return
        if opened is False:
            logger.warning("Couldn't open a browser; use the login URL above.")

    @staticmethod
    def validate_callback(result: CallbackResult, authorization: AuthorizationState) -> str:
        """Return the authorization code, or raise if the redirect can't be trusted."""

        if not hmac.compare_digest(
            (result.state or "").encode("utf-8"), authorization.csrf_state.encode("utf-8")
        ):
            raise AuthorizationError(
                "Different state between authorization URL and callback", platform=Platform.SPOTIFY
            )
        if result.error:
            raise AuthorizationError(f"Spotify returned an error: {result.error}", platform=Platform.SPOTIFY)
        if not result.code:
            raise AuthorizationError("Callback did not include an authorization code", platform=Platform.SPOTIFY)
        return result.code

    # -----------------
    # Token endpoint
    # -----------------

    async def exchange_code_for_token(self, *, code: str, redirect_uri: str) -> SessionCredentials:
        logger.debug("Obtaining access token")
        resp = await self._post_form(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
            }
        )
        if resp.status_code != 200:
            logger.error("Found status code %s instead of 200", resp.status_code)
            raise AuthorizationError(resp.text, platform=Platform.SPOTIFY, status_code=resp.status_code)

        credentials = SessionCredentials.from_token_response(self._json_object(resp))
        if not credentials.access_token:
            raise ProviderError(
                ErrorKind.SERVER_FAILURE,
                f"Spotify token response had no access_token: {resp.text}",
                platform=Platform.SPOTIFY,
                status_code=resp.status_code,
            )
        return credentials

    async def refresh_access_token(self, credentials: SessionCredentials) -> SessionCredentials:
        """Exchange the stored refresh token for a new access token and persist it."""

        if not credentials.refresh_token:
            raise ProviderError(
                ErrorKind.AUTHORIZATION_FAILURE,
                "No refresh token available; run `imaginal connect` again.",
                platform=Platform.SPOTIFY,
            )

        logger.debug("Refreshing token")
        resp = await self._post_form(
            {
                "grant_type": "refresh_token",
                "refresh_token": credentials.refresh_token,
            }
        )
        if resp.status_code != 200:
            logger.error("Couldn't refresh Spotify token (HTTP %s)", resp.status_code)
            raise ProviderError(
                ErrorKind.SERVER_FAILURE,
                f"Couldn't refresh Spotify token: {resp.text}",
                platform=Platform.SPOTIFY,
                status_code=resp.status_code,
            )

        refreshed = SessionCredentials.from_token_response(self._json_object(resp))
        if not refreshed.access_token:
            raise ProviderError(
                ErrorKind.SERVER_FAILURE,
                f"Spotify refresh response had no access_token: {resp.text}",
                platform=Platform.SPOTIFY,
                status_code=resp.status_code,
            )

        # Spotify may omit refresh_token on refresh; keep existing.
        merged = credentials.with_refreshed(refreshed)
        try:
            self.store.save(Platform.SPOTIFY, merged)
        except CredentialStoreError as e:
            # The new token is still usable for this process.
            logger.error("%s", e)
        return merged

    async def _post_form(self, form: Dict[str, Any]) -> httpx.Response:
        data = {k: str(v) for k, v in (form or {}).items() if v is not None}
        headers = {
            "Authorization": basic_auth_header(self.config.spotify_client_id, self.config.spotify_client_secret),
            "Content-Type": "application/x-www-form-urlencoded",
        }

        try:
            async with httpx.AsyncClient(
                timeout=TOKEN_REQUEST_TIMEOUT, follow_redirects=False, transport=self.transport
            ) as client:
                return await client.post(TOKEN_URL, data=data, headers=headers)
        except httpx.HTTPError as e:
            raise ProviderError(
                ErrorKind.TRANSPORT_FAILURE,
                f"Spotify token request failed: {e}",
                platform=Platform.SPOTIFY,
            ) from e

    @staticmethod
    def _json_object(resp: httpx.Response) -> Dict[str, Any]:
        try:
            payload = resp.json()
        except json.JSONDecodeError as e:
            raise ProviderError(
                ErrorKind.SERVER_FAILURE,
                f"Spotify token response was not JSON: {resp.text}",
                platform=Platform.SPOTIFY,
                status_code=resp.status_code,
            ) from e

        if not isinstance(payload, dict):
            raise ProviderError(
                ErrorKind.SERVER_FAILURE,
                f"Spotify token response was not an object: {payload}",
                platform=Platform.SPOTIFY,
                status_code=resp.status_code,
            )
        return payload
