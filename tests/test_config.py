from pathlib import Path

import pytest

from remotecontrol.config import (
    APP_NAME,
    DEFAULT_CLI_PORT,
    DEFAULT_MONITOR_INTERVAL_S,
    DEFAULT_TRANSMISSION_RPC_PORT,
    ENV_BOT_TOKEN,
    ConfigError,
    config_dir,
    get_api_token,
    load_config,
    load_raw_config,
    parse_cli_endpoint,
    parse_config,
)

MINIMAL = """
api_token = "123:file_token"
available_ids = ["alice", "bob"]
"""


@pytest.fixture(autouse=True)
def _no_env_token(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(ENV_BOT_TOKEN, raising=False)


class TestLoadRawConfig:
    def test_load_from_explicit_path(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.toml"
        config_file.write_text('api_token = "test123"')

        config, path = load_raw_config(config_file)

        assert config["api_token"] == "test123"
        assert path == config_file

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="Missing config file"):
            load_raw_config(tmp_path / "nonexistent.toml")

    def test_malformed_toml_raises(self, tmp_path: Path) -> None:
        bad_file = tmp_path / "bad.toml"
        bad_file.write_text("invalid = [unclosed")

        with pytest.raises(ConfigError, match="Malformed TOML"):
            load_raw_config(bad_file)

    def test_path_is_directory(self, tmp_path: Path) -> None:
        dir_path = tmp_path / "config_dir"
        dir_path.mkdir()

        with pytest.raises(ConfigError, match="Failed to read config file"):
            load_raw_config(dir_path)


class TestConfigDir:
    def test_xdg_config_home(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
        assert config_dir() == tmp_path / APP_NAME

    def test_relative_xdg_is_ignored(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("XDG_CONFIG_HOME", "relative/dir")
        monkeypatch.setenv("HOME", str(tmp_path))
        assert config_dir() == tmp_path / ".config" / APP_NAME


class TestParseConfig:
    def test_defaults(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.toml"
        config_file.write_text(MINIMAL)

        config = load_config(config_file)

        assert config.api_token == "123:file_token"
        assert config.available_ids == ("alice", "bob")
        assert config.controllable_services == ()
        assert config.mount_points == ()
        assert config.monitor_interval == DEFAULT_MONITOR_INTERVAL_S
        assert config.transmission_rpc_port == DEFAULT_TRANSMISSION_RPC_PORT
        assert config.cli_port == DEFAULT_CLI_PORT
        assert config.cli_token == ""
        assert config.is_verbose is False
        assert config.db_path == tmp_path / "db.sqlite"

    def test_all_fields(self, tmp_path: Path) -> None:
        config = parse_config(
            {
                "api_token": " 123:tok ",
                "available_ids": ["alice"],
                "controllable_services": ["nginx", "sshd"],
                "mount_points": ["/mnt/data"],
                "monitor_interval": 10,
                "transmission_rpc_port": 9999,
                "transmission_rpc_username": "user",
                "transmission_rpc_passwd": "pass",
                "cli_port": 50000,
                "cli_token": "secret",
                "is_verbose": True,
            },
            tmp_path / "config.toml",
        )

        assert config.api_token == "123:tok"
        assert config.is_controllable_service("sshd")
        assert not config.is_controllable_service("postgres")
        assert config.is_available_id("alice")
        assert not config.is_available_id("bob")
        assert config.monitor_interval == 10
        assert config.transmission_rpc_port == 9999
        assert config.transmission_rpc_username == "user"
        assert config.transmission_rpc_passwd == "pass"
        assert config.cli_port == 50000
        assert config.cli_token == "secret"
        assert config.is_verbose is True

    @pytest.mark.parametrize("value", [0, -5])
    def test_non_positive_numbers_use_defaults(self, tmp_path: Path, value: int) -> None:
        config = parse_config(
            {
                "api_token": "123:tok",
                "available_ids": ["alice"],
                "monitor_interval": value,
                "transmission_rpc_port": value,
                "cli_port": value,
            },
            tmp_path / "config.toml",
        )

        assert config.monitor_interval == DEFAULT_MONITOR_INTERVAL_S
        assert config.transmission_rpc_port == DEFAULT_TRANSMISSION_RPC_PORT
        assert config.cli_port == DEFAULT_CLI_PORT

    @pytest.mark.parametrize("ids", [None, []])
    def test_missing_available_ids(self, tmp_path: Path, ids: list | None) -> None:
        raw: dict = {"api_token": "123:tok"}
        if ids is not None:
            raw["available_ids"] = ids

        with pytest.raises(ConfigError, match="available_ids"):
            parse_config(raw, tmp_path / "config.toml")

    @pytest.mark.parametrize(
        ("key", "value"),
        [
            ("available_ids", "alice"),
            ("controllable_services", [1, 2]),
            ("cli_port", "59992"),
            ("monitor_interval", True),
            ("cli_token", 12),
            ("is_verbose", "yes"),
        ],
    )
    def test_invalid_types(self, tmp_path: Path, key: str, value: object) -> None:
        raw: dict = {"api_token": "123:tok", "available_ids": ["alice"]}
        raw[key] = value

        with pytest.raises(ConfigError, match=key):
            parse_config(raw, tmp_path / "config.toml")


class TestApiToken:
    def test_env_takes_precedence(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv(ENV_BOT_TOKEN, "  999:env_token ")
        token = get_api_token({"api_token": "123:file"}, tmp_path / "config.toml")
        assert token == "999:env_token"

    def test_blank_env_falls_back_to_file(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv(ENV_BOT_TOKEN, "   ")
        token = get_api_token({"api_token": "123:file"}, tmp_path / "config.toml")
        assert token == "123:file"

    def test_missing_token(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="Missing bot token"):
            get_api_token({}, tmp_path / "config.toml")

    def test_empty_token(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="Invalid `api_token`"):
            get_api_token({"api_token": "  "}, tmp_path / "config.toml")


def test_cli_endpoint_needs_no_token(tmp_path: Path) -> None:
    port, token = parse_cli_endpoint(
        {"cli_port": 40000, "cli_token": "t"}, tmp_path / "config.toml"
    )
    assert (port, token) == (40000, "t")
    assert parse_cli_endpoint({}, tmp_path / "config.toml") == (DEFAULT_CLI_PORT, "")
