import argparse
import asyncio
import sys
import webbrowser
from typing import List, Optional

import questionary

from config import AppConfig, load_config
from managers.credential_store import CredentialStore
from managers.session_manager import PollingSession
from providers.base import ConfigurationError, ImaginalError, Platform
from providers.platform import Provider, detect_platform
from spotify_api.auth import spotify_app_setup_instructions
from utils.logger import log_debug, log_error, log_info, log_warning, setup_logging

EXIT_OK = 0
EXIT_FAILURE = 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="imaginal",
        description="Show what you are listening to on Spotify or LastFM.",
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL (DEBUG, INFO, ...)")

    sub = parser.add_subparsers(dest="command")
    connect = sub.add_parser("connect", help="Connect to OAuth provider platforms")
    connect.add_argument("--force", action="store_true", help="Discard stored credentials and log in again")
    connect.add_argument("--no-browser", action="store_true", help="Only print the login URL")
    return parser


def _choose_browser_opener(no_browser: bool):
    """Ask before launching a browser when attached to a terminal."""
    if no_browser:
        return None
    if not sys.stdin.isatty():
        return webbrowser.open
    if questionary.confirm("Open the authorization URL in your default browser?", default=True).ask():
        return webbrowser.open
    return None


async def connect_command(config: AppConfig, platform: Platform, *, force: bool = False, no_browser: bool = False) -> int:
    store = CredentialStore(config.credentials_dir)
    provider = Provider(platform, config, store=store, open_browser=None)
    provider.verify()

    if not provider.requires_login:
        log_info(f"Connection to {provider.name} not needed")
        return EXIT_OK

    if force:
        store.clear(platform)
    elif provider.load_credentials() is not None:
        log_info(f"{provider.name} credentials already stored at {store.path_for(platform)} (use --force to replace)")
        return EXIT_OK

    provider.set_browser_opener(_choose_browser_opener(no_browser))
    log_info(spotify_app_setup_instructions(redirect_uri=config.redirect_uri))
    await provider.login()
    log_info("Done! You can now use `imaginal`.")
    return EXIT_OK


async def poll_command(config: AppConfig, platform: Platform) -> int:
    provider = Provider(platform, config)
    provider.verify()

    session = PollingSession(provider)
    await session.run()
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config()
    except ConfigurationError as e:
        setup_logging(args.log_level)
        log_error(str(e))
        return EXIT_FAILURE

    setup_logging(args.log_level or config.log_level)

    try:
        platform = detect_platform(config)
        log_debug(f"Found platform {platform.display_name}")

        if args.command == "connect":
            return asyncio.run(
                connect_command(config, platform, force=args.force, no_browser=args.no_browser)
            )
        return asyncio.run(poll_command(config, platform))
    except ConfigurationError as e:
        log_error(str(e))
        return EXIT_FAILURE
    except ImaginalError as e:
        log_error(f"Error occurred: {e}")
        return EXIT_FAILURE
    except KeyboardInterrupt:
        log_warning("Interrupted, exiting.")
        return EXIT_OK


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
