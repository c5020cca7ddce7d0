import json
import logging
import os
import tempfile
from typing import Optional

from providers.base import CredentialStoreError, Platform, SessionCredentials

logger = logging.getLogger(__name__)

DIR_MODE = 0o700
FILE_MODE = 0o600


class CredentialStore:
    """Persists one SessionCredentials record per platform as JSON.

    Layout: ``<data_dir>/<platform>.json``. Records are readable by the
    owning user only.
    """

    def __init__(self, data_dir: str):
        self.data_dir = os.path.abspath(os.path.expanduser(data_dir))

    def path_for(self, platform: Platform) -> str:
        return os.path.join(self.data_dir, f"{platform.value}.json")

    def ensure_dir(self) -> None:
        os.makedirs(self.data_dir, mode=DIR_MODE, exist_ok=True)
        try:
            os.chmod(self.data_dir, DIR_MODE)
        except OSError:
            logger.debug("Could not restrict permissions of %s", self.data_dir)

    def load(self, platform: Platform) -> Optional[SessionCredentials]:
        """Load stored credentials, or None when missing or unreadable."""
        path = self.path_for(platform)
        if not os.path.exists(path):
            logger.debug("No stored %s credentials at %s", platform.display_name, path)
            return None

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable %s credentials at %s: %s", platform.display_name, path, e)
            return None

        if not isinstance(data, dict):
            logger.warning("Ignoring malformed %s credentials at %s", platform.display_name, path)
            return None

        try:
            credentials = SessionCredentials.from_dict(data)
        except (TypeError, ValueError) as e:
            logger.warning("Ignoring malformed %s credentials at %s: %s", platform.display_name, path, e)
            return None

        if not credentials.access_token:
            logger.warning("Stored %s credentials have no access token", platform.display_name)
            return None

        return credentials

    def save(self, platform: Platform, credentials: SessionCredentials) -> None:
        """Atomically persist credentials for ``platform``."""
        path = self.path_for(platform)
        try:
            self.ensure_dir()
            fd, tmp_path = tempfile.mkstemp(dir=self.data_dir, prefix=f".{platform.value}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(credentials.to_dict(), f, indent=2)
                os.chmod(tmp_path, FILE_MODE)
                os.replace(tmp_path, path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise
        except OSError as e:
            raise CredentialStoreError(f"Failed to save {platform.display_name} credentials to {path}: {e}") from e

        logger.debug("Saved %s credentials to %s", platform.display_name, path)

    def clear(self, platform: Platform) -> bool:
        path = self.path_for(platform)
        try:
            if os.path.exists(path):
                os.remove(path)
            return True
        except OSError as e:
            logger.warning("Could not remove %s: %s", path, e)
            return False
