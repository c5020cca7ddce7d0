"""LastFM integration (API key, recent tracks)."""

from .client import LastFMClient

__all__ = ["LastFMClient"]
