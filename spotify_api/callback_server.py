"""One-shot local HTTP server that captures the OAuth redirect.

The server runs ``serve_forever`` on a single background thread. The request
handler writes the redirect parameters into a ``CallbackSlot`` and then
triggers the server's own shutdown; the awaiting side only reads the slot once
the serving thread has exited.

Endpoints:
- ``GET /callback?code=...&state=...``  -> 204, stores the result, shuts down
- ``GET /login``                         -> 302 to the authorization URL
- anything else                          -> 404
"""

import asyncio
import logging
import threading
import urllib.parse
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Awaitable, Callable, Optional, Union

from providers.base import CallbackResult, CallbackServerError

logger = logging.getLogger(__name__)

CALLBACK_PATH = "/callback"
LOGIN_PATH = "/login"


class CallbackSlot:
    """Single-producer / single-consumer handoff for the redirect result.

    The first ``put`` wins; later ones are ignored.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._filled = False
        self._value: Optional[CallbackResult] = None

    def put(self, value: CallbackResult) -> bool:
        with self._lock:
            if self._filled:
                return False
            self._value = value
            self._filled = True
            return True

    def get(self) -> Optional[CallbackResult]:
        with self._lock:
            return self._value

    @property
    def filled(self) -> bool:
        with self._lock:
            return self._filled


def parse_callback_query(path: str) -> CallbackResult:
    """Extract code / state / error from a redirect path or URL."""

    parsed = urllib.parse.urlparse(str(path or ""))
    qs = urllib.parse.parse_qs(parsed.query)
    return CallbackResult(
        code=qs["code"][0] if qs.get("code") else None,
        state=qs["state"][0] if qs.get("state") else None,
        error=qs["error"][0] if qs.get("error") else None,
    )


class CallbackRequestHandler(BaseHTTPRequestHandler):
    server: "_CallbackHTTPServer"

    def do_GET(self):
        route = urllib.parse.urlparse(self.path).path

        if route == CALLBACK_PATH:
            stored = self.server.slot.put(parse_callback_query(self.path))
            self.send_response(204)
            self.end_headers()
            if stored:
                logger.debug("Response received, stopping callback server")
                self.server.request_shutdown()
            return

        if route == LOGIN_PATH and self.server.authorize_url:
            self.send_response(302)
            self.send_header("Location", self.server.authorize_url)
            self.end_headers()
            return

        self.send_response(404)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.end_headers()
        self.wfile.write(b"Not found")

    def log_message(self, format, *args):
        logger.debug("%s - %s", self.address_string(), format % args)


class _CallbackHTTPServer(HTTPServer):
    allow_reuse_address = True

    def __init__(self, server_address, slot: CallbackSlot, authorize_url: Optional[str] = None):
        self.slot = slot
        self.authorize_url = authorize_url
        self._shutdown_requested = threading.Event()
        super().__init__(server_address, CallbackRequestHandler)

    def request_shutdown(self) -> None:
        # shutdown() blocks until serve_forever returns, so it cannot run on
        # the serving thread itself.
        if self._shutdown_requested.is_set():
            return
        self._shutdown_requested.set()
        threading.Thread(target=self.shutdown, name="callback-server-stop", daemon=True).start()


ReadyCallback = Callable[["CallbackServer"], Union[None, Awaitable[Any]]]


class CallbackServer:
    """Local redirect listener bound to ``host:port`` for one login attempt."""

    def __init__(self, host: str, port: int, *, authorize_url: Optional[str] = None):
        self.host = host
        self.requested_port = int(port)
        self._authorize_url = authorize_url
        self._slot = CallbackSlot()
        self._httpd: Optional[_CallbackHTTPServer] = None
        self._thread: Optional[threading.Thread] = None
        self._closed = False

    @property
    def port(self) -> int:
        if self._httpd is None:
            return self.requested_port
        return int(self._httpd.server_address[1])

    @property
    def callback_url(self) -> str:
        return f"http://{self.host}:{self.port}{CALLBACK_PATH}"

    @property
    def login_url(self) -> str:
        return f"http://{self.host}:{self.port}{LOGIN_PATH}"

    @property
    def authorize_url(self) -> Optional[str]:
        return self._authorize_url

    @authorize_url.setter
    def authorize_url(self, value: Optional[str]) -> None:
        self._authorize_url = value
        if self._httpd is not None:
            self._httpd.authorize_url = value

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Bind the socket and start serving. Bind failures are raised immediately."""
        if self._httpd is not None:
            raise CallbackServerError("Callback server already started")

        try:
            self._httpd = _CallbackHTTPServer((self.host, self.requested_port), self._slot, self._authorize_url)
        except OSError as e:
            raise CallbackServerError(f"Couldn't bind login server on {self.host}:{self.requested_port}: {e}") from e

        self._thread = threading.Thread(target=self._httpd.serve_forever, name="callback-server", daemon=True)
        self._thread.start()
        logger.debug("Callback server listening on %s:%s", self.host, self.port)

    def close(self) -> None:
        """Stop serving and release the port. Safe to call more than once."""
        if self._httpd is None or self._closed:
            return
        self._closed = True
        self._httpd.shutdown()
        self._httpd.server_close()
        if self._thread is not None:
            self._thread.join()
        logger.debug("Callback server on port %s closed", self.port)

    async def wait(self, timeout: Optional[float] = None) -> CallbackResult:
        """Wait for the listener to shut itself down, then return the redirect result."""
        if self._httpd is None or self._thread is None:
            raise CallbackServerError("Callback server was not started")

        try:
            await asyncio.to_thread(self._thread.join, timeout)
        finally:
            self.close()

        if not self._slot.filled:
            raise CallbackServerError("Timed out waiting for the authorization callback")
        return self._slot.get()

    async def run(self, on_ready: Optional[ReadyCallback] = None, *, timeout: Optional[float] = None) -> CallbackResult:
        """Bind, notify ``on_ready`` (e.g. open a browser), then wait for the callback."""
        self.start()
        try:
            if on_ready is not None:
                maybe = on_ready(self)
                if asyncio.iscoroutine(maybe):
                    await maybe
        except BaseException:
            self.close()
            raise
        return await self.wait(timeout)


async def run_callback_server(
    host: str,
    port: int,
    *,
    authorize_url: Optional[str] = None,
    on_ready: Optional[ReadyCallback] = None,
    timeout: Optional[float] = None,
) -> CallbackResult:
    server = CallbackServer(host, port, authorize_url=authorize_url)
    return await server.run(on_ready, timeout=timeout)
