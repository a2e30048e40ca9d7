from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

APP_NAME = "telegram-remotecontrol-bot"
CONFIG_FILENAME = "config.toml"
DB_FILENAME = "db.sqlite"

# Environment variable names for secrets
ENV_BOT_TOKEN = "TELEGRAM_REMOTECONTROL_BOT_TOKEN"

DEFAULT_CLI_PORT = 59992
DEFAULT_TRANSMISSION_RPC_PORT = 9091
DEFAULT_MONITOR_INTERVAL_S = 3


class ConfigError(RuntimeError):
    pass


@dataclass(frozen=True, slots=True)
class BotConfig:
    api_token: str
    available_ids: tuple[str, ...]
    controllable_services: tuple[str, ...] = ()
    mount_points: tuple[str, ...] = ()
    monitor_interval: int = DEFAULT_MONITOR_INTERVAL_S
    transmission_rpc_port: int = DEFAULT_TRANSMISSION_RPC_PORT
    transmission_rpc_username: str = ""
    transmission_rpc_passwd: str = ""
    cli_port: int = DEFAULT_CLI_PORT
    cli_token: str = ""
    is_verbose: bool = False
    db_path: Path | None = None

    def is_available_id(self, user_id: str) -> bool:
        return user_id in self.available_ids

    def is_controllable_service(self, service: str) -> bool:
        return service in self.controllable_services


def config_dir() -> Path:
    # https://specifications.freedesktop.org/basedir-spec/latest/
    xdg = os.environ.get("XDG_CONFIG_HOME", "")
    if xdg and Path(xdg).is_absolute():
        return Path(xdg) / APP_NAME
    return Path.home() / ".config" / APP_NAME


def default_config_path() -> Path:
    return config_dir() / CONFIG_FILENAME


def _read_config(cfg_path: Path) -> dict:
    try:
        raw = cfg_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigError(f"Missing config file {cfg_path}.") from None
    except OSError as e:
        raise ConfigError(f"Failed to read config file {cfg_path}: {e}") from e
    try:
        return tomllib.loads(raw)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Malformed TOML in {cfg_path}: {e}") from None


def load_raw_config(path: str | Path | None = None) -> tuple[dict, Path]:
    cfg_path = Path(path).expanduser() if path else default_config_path()
    return _read_config(cfg_path), cfg_path


def get_api_token(config: dict, config_path: Path) -> str:
    """Get the bot token from the environment or the config file.

    Environment variable TELEGRAM_REMOTECONTROL_BOT_TOKEN takes precedence.
    """
    env_token = os.environ.get(ENV_BOT_TOKEN)
    if env_token and env_token.strip():
        return env_token.strip()

    try:
        token = config["api_token"]
    except KeyError:
        raise ConfigError(
            f"Missing bot token. Set {ENV_BOT_TOKEN} environment variable "
            f"or add `api_token` to {config_path}."
        ) from None

    if not isinstance(token, str) or not token.strip():
        raise ConfigError(
            f"Invalid `api_token` in {config_path}; expected a non-empty string."
        )
    return token.strip()


def _string_list(config: dict, key: str, config_path: Path) -> tuple[str, ...]:
    value = config.get(key)
    if value is None:
        return ()
    if not isinstance(value, list) or not all(
        isinstance(item, str) and item.strip() for item in value
    ):
        raise ConfigError(
            f"Invalid `{key}` in {config_path}; expected a list of non-empty strings."
        )
    return tuple(item.strip() for item in value)


def _positive_int(config: dict, key: str, default: int, config_path: Path) -> int:
    value = config.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"Invalid `{key}` in {config_path}; expected an integer.")
    return value if value > 0 else default


def _string(config: dict, key: str, config_path: Path) -> str:
    value = config.get(key, "")
    if not isinstance(value, str):
        raise ConfigError(f"Invalid `{key}` in {config_path}; expected a string.")
    return value


def _bool(config: dict, key: str, config_path: Path) -> bool:
    value = config.get(key, False)
    if not isinstance(value, bool):
        raise ConfigError(f"Invalid `{key}` in {config_path}; expected a boolean.")
    return value


def parse_config(config: dict[str, Any], config_path: Path) -> BotConfig:
    available_ids = _string_list(config, "available_ids", config_path)
    if not available_ids:
        raise ConfigError(
            f"Missing `available_ids` in {config_path}; "
            "expected at least one telegram username."
        )
    return BotConfig(
        api_token=get_api_token(config, config_path),
        available_ids=available_ids,
        controllable_services=_string_list(
            config, "controllable_services", config_path
        ),
        mount_points=_string_list(config, "mount_points", config_path),
        monitor_interval=_positive_int(
            config, "monitor_interval", DEFAULT_MONITOR_INTERVAL_S, config_path
        ),
        transmission_rpc_port=_positive_int(
            config, "transmission_rpc_port", DEFAULT_TRANSMISSION_RPC_PORT, config_path
        ),
        transmission_rpc_username=_string(
            config, "transmission_rpc_username", config_path
        ),
        transmission_rpc_passwd=_string(config, "transmission_rpc_passwd", config_path),
        cli_port=_positive_int(config, "cli_port", DEFAULT_CLI_PORT, config_path),
        cli_token=_string(config, "cli_token", config_path),
        is_verbose=_bool(config, "is_verbose", config_path),
        db_path=config_path.parent / DB_FILENAME,
    )


def parse_cli_endpoint(config: dict[str, Any], config_path: Path) -> tuple[int, str]:
    """Port and token of the local broadcast endpoint; needs no bot token."""
    return (
        _positive_int(config, "cli_port", DEFAULT_CLI_PORT, config_path),
        _string(config, "cli_token", config_path),
    )


def load_config(path: str | Path | None = None) -> BotConfig:
    raw, cfg_path = load_raw_config(path)
    return parse_config(raw, cfg_path)
