import sys
from typing import Optional, TextIO

from providers.base import Song

NOTHING_PLAYING = "Nothing playing"


class SongDisplay:
    """CLI output target for the now-playing song.

    Prints one line whenever what is playing changes, so a steady song does
    not repeat on every poll.
    """

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream or sys.stdout
        self._last: Optional[str] = None

    @staticmethod
    def render(song: Optional[Song]) -> str:
        return NOTHING_PLAYING if song is None else song.describe()

    def show(self, song: Optional[Song]) -> bool:
        message = self.render(song)
        if message == self._last:
            return False
        self._last = message
        print(message, file=self.stream, flush=True)
        return True
