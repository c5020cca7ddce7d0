import os
import sys
import tempfile
import unittest
from pathlib import Path
from unittest import mock

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import main
from config import DEFAULT_CONFIG, AppConfig, config_from_env, load_config, validate_config
from managers.credential_store import CredentialStore
from providers.base import ConfigurationError, ErrorKind, Platform, ProviderError, SessionCredentials
from providers.platform import Provider, detect_platform

SPOTIFY_ENV = {"SPOTIFY_CLIENT_ID": "cid", "SPOTIFY_CLIENT_SECRET": "secret"}
LASTFM_ENV = {"LASTFM_API_KEY": "key", "LASTFM_SHARED_SECRET": "shared", "LASTFM_USERNAME": "someone"}


class TestConfig(unittest.TestCase):
    def test_defaults(self):
        config = load_config({})
        self.assertEqual(config.login_server_ip, "127.0.0.1")
        self.assertEqual(config.login_server_port, 9761)
        self.assertEqual(config.redirect_uri, "http://127.0.0.1:9761/callback")
        self.assertEqual(config.poll_interval, 2.0)
        self.assertEqual(config.log_level, "INFO")

    def test_environment_values_are_coerced(self):
        config = load_config(
            dict(SPOTIFY_ENV, LOGIN_SERVER_IP="0.0.0.0", LOGIN_SERVER_PORT="8888", POLL_INTERVAL="5", LOG_LEVEL="debug")
        )
        self.assertEqual(config.spotify_client_id, "cid")
        self.assertEqual(config.login_server_ip, "0.0.0.0")
        self.assertEqual(config.login_server_port, 8888)
        self.assertEqual(config.poll_interval, 5.0)
        self.assertEqual(config.log_level, "DEBUG")

    def test_invalid_values_raise(self):
        with self.assertRaises(ConfigurationError):
            load_config({"LOGIN_SERVER_PORT": "not-a-port"})
        with self.assertRaises(ConfigurationError):
            load_config({"LOGIN_SERVER_PORT": "70000"})
        with self.assertRaises(ConfigurationError):
            load_config({"PRIORITY_PLATFORM": "tidal"})

    def test_validate_config_reports_every_error(self):
        config = dict(DEFAULT_CONFIG, login_server_port=-1, poll_interval="fast", log_level="LOUD")
        ok, errors = validate_config(config)
        self.assertFalse(ok)
        self.assertEqual(len(errors), 3)

    def test_validate_rejects_bool_for_numbers(self):
        ok, errors = validate_config(dict(DEFAULT_CONFIG, login_server_port=True))
        self.assertFalse(ok)
        self.assertIn("login_server_port", errors[0])

    def test_require_names_missing_variable(self):
        config = AppConfig(spotify_client_id="cid")
        with self.assertRaises(ConfigurationError) as ctx:
            config.require(Platform.SPOTIFY)
        self.assertIn("SPOTIFY_CLIENT_SECRET", str(ctx.exception))

        config_from = config_from_env(LASTFM_ENV)
        AppConfig(**config_from).require(Platform.LASTFM)

    def test_credentials_dir_expands_user(self):
        config = AppConfig(data_dir="~/somewhere")
        self.assertTrue(os.path.isabs(config.credentials_dir))
        self.assertNotIn("~", config.credentials_dir)


class TestDetectPlatform(unittest.TestCase):
    def test_spotify_is_checked_first(self):
        self.assertIs(detect_platform(load_config(dict(SPOTIFY_ENV, **LASTFM_ENV))), Platform.SPOTIFY)

    def test_lastfm_when_only_lastfm_configured(self):
        self.assertIs(detect_platform(load_config(LASTFM_ENV)), Platform.LASTFM)

    def test_priority_platform_skips_probing(self):
        config = load_config(dict(SPOTIFY_ENV, **LASTFM_ENV, PRIORITY_PLATFORM="LastFM"))
        self.assertIs(detect_platform(config), Platform.LASTFM)

    def test_nothing_configured(self):
        with self.assertRaises(ConfigurationError):
            detect_platform(load_config({}))


class TestMain(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()

    def tearDown(self):
        self._tmp.cleanup()

    def _run(self, env, argv):
        with mock.patch.dict(os.environ, env, clear=True), mock.patch("config.load_dotenv"):
            return main.main(argv)

    def test_missing_configuration_exits_non_zero(self):
        self.assertEqual(self._run({}, []), main.EXIT_FAILURE)

    def test_missing_spotify_secret_exits_non_zero(self):
        env = {"SPOTIFY_CLIENT_ID": "cid", "PRIORITY_PLATFORM": "spotify", "IMAGINAL_DATA_DIR": self._tmp.name}
        self.assertEqual(self._run(env, ["connect", "--no-browser"]), main.EXIT_FAILURE)

    def test_connect_is_not_needed_for_lastfm(self):
        env = dict(LASTFM_ENV, IMAGINAL_DATA_DIR=self._tmp.name)
        self.assertEqual(self._run(env, ["connect", "--no-browser"]), main.EXIT_OK)

    def test_connect_keeps_existing_credentials(self):
        CredentialStore(self._tmp.name).save(Platform.SPOTIFY, SessionCredentials(access_token="AT1", refresh_token="RT1"))
        env = dict(SPOTIFY_ENV, IMAGINAL_DATA_DIR=self._tmp.name)
        self.assertEqual(self._run(env, ["connect", "--no-browser"]), main.EXIT_OK)

    def test_connect_for_lastfm_never_asks_about_the_browser(self):
        env = dict(LASTFM_ENV, IMAGINAL_DATA_DIR=self._tmp.name)
        with mock.patch("main.questionary.confirm") as confirm, mock.patch("main.sys.stdin") as stdin:
            stdin.isatty.return_value = True
            self.assertEqual(self._run(env, ["connect"]), main.EXIT_OK)
        confirm.assert_not_called()

    def test_connect_with_stored_credentials_never_asks_about_the_browser(self):
        CredentialStore(self._tmp.name).save(Platform.SPOTIFY, SessionCredentials(access_token="AT1", refresh_token="RT1"))
        env = dict(SPOTIFY_ENV, IMAGINAL_DATA_DIR=self._tmp.name)
        with mock.patch("main.questionary.confirm") as confirm, mock.patch("main.sys.stdin") as stdin:
            stdin.isatty.return_value = True
            self.assertEqual(self._run(env, ["connect"]), main.EXIT_OK)
        confirm.assert_not_called()

    def test_parser(self):
        args = main.build_parser().parse_args(["connect", "--force"])
        self.assertEqual(args.command, "connect")
        self.assertTrue(args.force)
        self.assertIsNone(main.build_parser().parse_args([]).command)


class TestProvider(unittest.IsolatedAsyncioTestCase):
    async def test_lastfm_login_is_a_no_op(self):
        provider = Provider(Platform.LASTFM, load_config(LASTFM_ENV))
        self.assertIsNone(await provider.login())
        self.assertIsNone(await provider.connect())

    async def test_lastfm_refresh_is_an_authorization_failure(self):
        provider = Provider(Platform.LASTFM, load_config(LASTFM_ENV))
        with self.assertRaises(ProviderError) as ctx:
            await provider.refresh(SessionCredentials(access_token="AT1"))
        self.assertIs(ctx.exception.kind, ErrorKind.AUTHORIZATION_FAILURE)

    async def test_spotify_poll_without_credentials_is_an_expired_token(self):
        provider = Provider(Platform.SPOTIFY, load_config(SPOTIFY_ENV), open_browser=None)
        with self.assertRaises(ProviderError) as ctx:
            await provider.currently_playing(None)
        self.assertIs(ctx.exception.kind, ErrorKind.EXPIRED_TOKEN)

    def test_browser_opener_is_set_on_the_spotify_flow(self):
        provider = Provider(Platform.SPOTIFY, load_config(SPOTIFY_ENV), open_browser=None)
        opener = mock.Mock()
        provider.set_browser_opener(opener)
        self.assertIs(provider.spotify_auth.open_browser, opener)


if __name__ == "__main__":
    unittest.main(verbosity=2)
