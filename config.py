import os
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv

from providers.base import ConfigurationError, Platform

# Environment variable names, keyed by config field.
ENV_VARS = {
    "spotify_client_id": "SPOTIFY_CLIENT_ID",
    "spotify_client_secret": "SPOTIFY_CLIENT_SECRET",
    "lastfm_api_key": "LASTFM_API_KEY",
    "lastfm_shared_secret": "LASTFM_SHARED_SECRET",
    "lastfm_username": "LASTFM_USERNAME",
    "login_server_ip": "LOGIN_SERVER_IP",
    "login_server_port": "LOGIN_SERVER_PORT",
    "priority_platform": "PRIORITY_PLATFORM",
    "data_dir": "IMAGINAL_DATA_DIR",
    "poll_interval": "POLL_INTERVAL",
    "log_level": "LOG_LEVEL",
}

# Default configuration values
DEFAULT_CONFIG = {
    "spotify_client_id": "",
    "spotify_client_secret": "",
    "lastfm_api_key": "",
    "lastfm_shared_secret": "",
    "lastfm_username": "",

    # Local login server (OAuth redirect target)
    "login_server_ip": "127.0.0.1",
    "login_server_port": 9761,

    "priority_platform": "",
    "data_dir": os.path.join("~", ".local", "share", "imaginal"),
    "poll_interval": 2.0,
    "log_level": "INFO",
}

# Validation rules for config fields
CONFIG_SCHEMA = {
    "spotify_client_id": {"type": str, "required": False},
    "spotify_client_secret": {"type": str, "required": False},
    "lastfm_api_key": {"type": str, "required": False},
    "lastfm_shared_secret": {"type": str, "required": False},
    "lastfm_username": {"type": str, "required": False},
    "login_server_ip": {"type": str, "required": True},
    "login_server_port": {"type": int, "required": True, "min": 0, "max": 65535},
    "priority_platform": {"type": str, "required": False, "choices": ["", "spotify", "lastfm"]},
    "data_dir": {"type": str, "required": True},
    "poll_interval": {"type": (int, float), "required": True, "min": 0, "max": 3600},
    "log_level": {
        "type": str,
        "required": False,
        "choices": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
    },
}

# Settings each platform cannot work without.
REQUIRED_SETTINGS = {
    Platform.SPOTIFY: ("spotify_client_id", "spotify_client_secret"),
    Platform.LASTFM: ("lastfm_api_key", "lastfm_shared_secret", "lastfm_username"),
}


@dataclass(frozen=True)
class AppConfig:
    """Process configuration, resolved once at start and passed down."""

    spotify_client_id: str = ""
    spotify_client_secret: str = ""
    lastfm_api_key: str = ""
    lastfm_shared_secret: str = ""
    lastfm_username: str = ""
    login_server_ip: str = "127.0.0.1"
    login_server_port: int = 9761
    priority_platform: str = ""
    data_dir: str = DEFAULT_CONFIG["data_dir"]
    poll_interval: float = 2.0
    log_level: str = "INFO"

    @property
    def credentials_dir(self) -> str:
        return os.path.abspath(os.path.expanduser(self.data_dir))

    @property
    def redirect_uri(self) -> str:
        return f"http://{self.login_server_ip}:{self.login_server_port}/callback"

    def has_settings(self, platform: Platform) -> bool:
        return all(str(getattr(self, key) or "").strip() for key in REQUIRED_SETTINGS[platform])

    def require(self, platform: Platform) -> None:
        """Raise ConfigurationError naming the first missing variable for ``platform``."""
        for key in REQUIRED_SETTINGS[platform]:
            if not str(getattr(self, key) or "").strip():
                raise ConfigurationError(f"Couldn't find {ENV_VARS[key]} environment variable.")


def _coerce(key: str, raw: str) -> Any:
    default = DEFAULT_CONFIG[key]
    if isinstance(default, int):
        try:
            return int(raw)
        except ValueError:
            raise ConfigurationError(f"{ENV_VARS[key]} must be an integer, got '{raw}'")
    if isinstance(default, float):
        try:
            return float(raw)
        except ValueError:
            raise ConfigurationError(f"{ENV_VARS[key]} must be a number, got '{raw}'")
    return raw.strip()


def config_from_env(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Read configuration fields from ``environ``, applying defaults for missing fields."""
    environ = os.environ if environ is None else environ

    config = dict(DEFAULT_CONFIG)
    for key, env_name in ENV_VARS.items():
        raw = environ.get(env_name)
        if raw is None or raw == "":
            continue
        config[key] = _coerce(key, raw)

    config["priority_platform"] = str(config["priority_platform"]).lower()
    config["log_level"] = str(config["log_level"]).upper()
    return config


def validate_config(config: Dict[str, Any]) -> tuple[bool, list[str]]:
    """
    Validate configuration against schema.
    Returns (is_valid, list_of_errors).
    """
    errors = []

    for key, rules in CONFIG_SCHEMA.items():
        # Check required fields
        if rules.get("required", False) and key not in config:
            errors.append(f"Missing required field: {key}")
            continue

        if key not in config:
            continue

        value = config[key]

        # bool is an int subclass; never accept it for numeric fields
        expected_type = rules.get("type")
        if expected_type and (not isinstance(value, expected_type) or isinstance(value, bool)):
            type_names = expected_type.__name__ if not isinstance(expected_type, tuple) else "/".join(t.__name__ for t in expected_type)
            errors.append(f"Field '{key}' must be {type_names}, got {type(value).__name__}")
            continue

        # Choices check
        if "choices" in rules and value not in rules["choices"]:
            errors.append(f"Field '{key}' must be one of {rules['choices']}, got '{value}'")

        # Range check for numeric values
        if isinstance(value, (int, float)):
            if "min" in rules and value < rules["min"]:
                errors.append(f"Field '{key}' must be >= {rules['min']}, got {value}")
            if "max" in rules and value > rules["max"]:
                errors.append(f"Field '{key}' must be <= {rules['max']}, got {value}")

    return len(errors) == 0, errors


def load_config(environ: Optional[Mapping[str, str]] = None, *, dotenv: bool = True) -> AppConfig:
    """Resolve the process configuration.

    A ``.env`` file in the working directory is loaded first (existing
    environment variables win). Raises ConfigurationError when validation
    fails.
    """
    if dotenv and environ is None:
        load_dotenv(override=False)

    config = config_from_env(environ)
    is_valid, errors = validate_config(config)
    if not is_valid:
        raise ConfigurationError("Invalid configuration: " + "; ".join(errors))

    return AppConfig(**{key: config[key] for key in DEFAULT_CONFIG})
