import os
import stat
import sys
import tempfile
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from managers.credential_store import CredentialStore
from providers.base import Platform, SessionCredentials


class TestCredentialStore(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.data_dir = os.path.join(self._tmp.name, "imaginal")
        self.store = CredentialStore(self.data_dir)

    def tearDown(self):
        self._tmp.cleanup()

    def test_missing_record_loads_none(self):
        self.assertIsNone(self.store.load(Platform.SPOTIFY))

    def test_saving_twice_then_loading_returns_saved_value(self):
        creds = SessionCredentials(
            access_token="AT1",
            refresh_token="RT1",
            token_type="Bearer",
            expires_at=1700000000.123456,
            scope="user-read-currently-playing",
        )
        self.store.save(Platform.SPOTIFY, creds)
        self.store.save(Platform.SPOTIFY, creds)

        self.assertEqual(self.store.load(Platform.SPOTIFY), creds)

    def test_optional_fields_survive_as_none(self):
        creds = SessionCredentials(access_token="AT1")
        self.store.save(Platform.SPOTIFY, creds)
        loaded = self.store.load(Platform.SPOTIFY)
        self.assertEqual(loaded, creds)
        assert loaded is not None
        self.assertIsNone(loaded.refresh_token)
        self.assertIsNone(loaded.expires_at)

    def test_records_are_kept_per_platform(self):
        self.store.save(Platform.SPOTIFY, SessionCredentials(access_token="spotify"))
        self.assertIsNone(self.store.load(Platform.LASTFM))
        self.assertTrue(self.store.path_for(Platform.SPOTIFY).endswith("spotify.json"))

    def test_corrupt_record_loads_none(self):
        os.makedirs(self.data_dir)
        with open(self.store.path_for(Platform.SPOTIFY), "w", encoding="utf-8") as f:
            f.write("{not json")

        with self.assertLogs("managers.credential_store", level="WARNING"):
            self.assertIsNone(self.store.load(Platform.SPOTIFY))

    def test_record_without_access_token_loads_none(self):
        os.makedirs(self.data_dir)
        with open(self.store.path_for(Platform.SPOTIFY), "w", encoding="utf-8") as f:
            f.write('{"refresh_token": "RT1"}')

        with self.assertLogs("managers.credential_store", level="WARNING"):
            self.assertIsNone(self.store.load(Platform.SPOTIFY))

    @unittest.skipIf(os.name == "nt", "POSIX permissions only")
    def test_record_is_private_to_owner(self):
        self.store.save(Platform.SPOTIFY, SessionCredentials(access_token="AT1"))
        mode = stat.S_IMODE(os.stat(self.store.path_for(Platform.SPOTIFY)).st_mode)
        self.assertEqual(mode, 0o600)
        dir_mode = stat.S_IMODE(os.stat(self.data_dir).st_mode)
        self.assertEqual(dir_mode, 0o700)

    def test_no_temp_files_left_behind(self):
        self.store.save(Platform.SPOTIFY, SessionCredentials(access_token="AT1"))
        self.assertEqual(os.listdir(self.data_dir), ["spotify.json"])

    def test_clear_removes_record(self):
        self.store.save(Platform.SPOTIFY, SessionCredentials(access_token="AT1"))
        self.assertTrue(self.store.clear(Platform.SPOTIFY))
        self.assertIsNone(self.store.load(Platform.SPOTIFY))
        self.assertTrue(self.store.clear(Platform.SPOTIFY))


if __name__ == "__main__":
    unittest.main(verbosity=2)
