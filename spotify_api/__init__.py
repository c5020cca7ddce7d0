"""Spotify Web API integration (OAuth authorization code + currently playing).

- auth.py: login flow through the local callback server, token refresh
- callback_server.py: one-shot redirect listener
- client.py: currently-playing poll
"""

from .auth import SpotifyAuth
from .callback_server import CallbackServer, run_callback_server
from .client import SpotifyClient

__all__ = [
    "SpotifyAuth",
    "CallbackServer",
    "SpotifyClient",
    "run_callback_server",
]
