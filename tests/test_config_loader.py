"""
Configuration loading and runtime wiring tests
"""
import pytest

from mole.adapters.cli import runtime as runtime_module
from mole.adapters.cli.runtime import Runtime
from mole.adapters.config import ConfigLoader
from mole.core.exceptions import ConfigError
from mole.core.settings import Settings
from mole.domain.tunnel import RestartPolicy

CONFIG = """
[tunnel]
remote_host = "gw.example"
remote_user = "ubuntu"
remote_bind_port = 2222

[paths]
key_dir = "~/mole-keys"

[supervisor]
probe_timeout = 20
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text(CONFIG)
    return path


class TestConfigLoader:
    def test_toml(self, config_file):
        cfg = ConfigLoader(environ={}).load(toml_path=config_file)

        assert cfg["tunnel"]["remote_bind_port"] == 2222
        assert cfg["supervisor"]["probe_timeout"] == 20

    def test_env_overrides_toml(self, config_file):
        loader = ConfigLoader(environ={"MOLE_TUNNEL_PORT": "3333", "MOLE_PLATFORM": "linux"})

        cfg = loader.load(toml_path=config_file)

        assert cfg["tunnel"]["remote_bind_port"] == 3333
        assert cfg["tunnel"]["remote_host"] == "gw.example"
        assert cfg["supervisor"] == {"probe_timeout": 20, "platform": "linux"}

    def test_cli_overrides_env(self, config_file):
        loader = ConfigLoader(environ={"MOLE_TUNNEL_PORT": "3333"})

        cfg = loader.load(toml_path=config_file, cli_overrides={"tunnel": {"remote_bind_port": 4444, "remote_user": None}})

        assert cfg["tunnel"]["remote_bind_port"] == 4444
        assert cfg["tunnel"]["remote_user"] == "ubuntu"

    def test_env_can_be_disabled(self, config_file):
        loader = ConfigLoader(environ={"MOLE_TUNNEL_PORT": "3333"})

        assert loader.load(toml_path=config_file, use_env=False)["tunnel"]["remote_bind_port"] == 2222

    @pytest.mark.parametrize("raw", ["10", "yes", "false", "gw.example"])
    def test_string_settings_are_not_coerced(self, raw):
        loader = ConfigLoader(environ={"MOLE_REMOTE_HOST": raw, "MOLE_REMOTE_USER": raw})

        assert loader.load_env() == {"tunnel": {"remote_host": raw, "remote_user": raw}}

    @pytest.mark.parametrize("env_key, raw, expected", [
        ("MOLE_TUNNEL_PORT", "2223", ("tunnel", "remote_bind_port", 2223)),
        ("MOLE_KEEPALIVE_RETRIES", "5", ("tunnel", "keepalive_retries", 5)),
        ("MOLE_PROBE_TIMEOUT", "2.5", ("supervisor", "probe_timeout", 2.5)),
    ])
    def test_numeric_settings_are_parsed(self, env_key, raw, expected):
        section, key, value = expected

        assert ConfigLoader(environ={env_key: raw}).load_env() == {section: {key: value}}

    def test_non_numeric_port_is_a_config_error(self):
        with pytest.raises(ConfigError, match="MOLE_TUNNEL_PORT must be a number"):
            ConfigLoader(environ={"MOLE_TUNNEL_PORT": "ssh"}).load_env()

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            ConfigLoader(environ={}).load(toml_path=tmp_path / "missing.toml")

    def test_invalid_toml(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text("[tunnel\nremote_host = ")

        with pytest.raises(ConfigError, match="Failed to parse"):
            ConfigLoader(environ={}).load(toml_path=path)


class TestSettings:
    def test_from_config(self, config_file, tmp_path, monkeypatch):
        monkeypatch.setenv("HOME", str(tmp_path))
        cfg = ConfigLoader(environ={}).load(toml_path=config_file)

        settings = Settings.from_config(cfg)

        assert settings.key_dir == tmp_path / "mole-keys"
        assert settings.probe_timeout == 20

    def test_unknown_key(self):
        with pytest.raises(ConfigError, match="supervisor.retries"):
            Settings.from_config({"supervisor": {"retries": 3}})

    def test_unsupported_platform(self):
        with pytest.raises(ConfigError):
            Settings(platform="windows")

    def test_negative_timing(self):
        with pytest.raises(ConfigError, match="probe_timeout"):
            Settings(probe_timeout=-1)

    def test_platform_override_picks_its_wrapper(self):
        settings = Settings(platform="darwin").with_overrides(platform="linux")

        assert settings.sleep_wrapper[0] == "systemd-inhibit"


class TestRuntimeEndpoint:
    def test_from_tunnel_section(self, config_file):
        runtime = Runtime.load(config_file, loader=ConfigLoader(environ={}))

        endpoint = runtime.endpoint("laptop")

        assert endpoint.name == "laptop"
        assert endpoint.destination == "ubuntu@gw.example"
        assert endpoint.remote_bind_port == 2222

    def test_overrides_win(self, config_file):
        runtime = Runtime.load(config_file, loader=ConfigLoader(environ={}))

        endpoint = runtime.endpoint("laptop", {"remote_bind_port": 4000, "restart_policy": "on-failure"})

        assert endpoint.remote_bind_port == 4000
        assert endpoint.restart_policy == RestartPolicy.ON_FAILURE

    def test_host_and_user_required(self):
        with pytest.raises(ConfigError, match="host and user are required"):
            Runtime().endpoint("laptop", {"remote_user": "ubuntu"})

    def test_unknown_tunnel_key(self):
        runtime = Runtime(config={"tunnel": {"remote_host": "gw", "remote_user": "u", "bind": 1}})

        with pytest.raises(ConfigError, match="bind"):
            runtime.endpoint("laptop")

    def test_invalid_restart_policy(self):
        with pytest.raises(ConfigError, match="restart_policy"):
            Runtime().endpoint("laptop", {"remote_host": "gw", "remote_user": "u", "restart_policy": "never"})

    def test_invalid_port(self):
        with pytest.raises(ConfigError):
            Runtime().endpoint("laptop", {"remote_host": "gw", "remote_user": "u", "remote_bind_port": 99999})

    @pytest.mark.parametrize("override, field_name", [
        ({"remote_user": 10}, "remote_user"),
        ({"keepalive_retries": "3"}, "keepalive_retries"),
        ({"throttle_interval": True}, "throttle_interval"),
    ])
    def test_wrong_types_are_config_errors(self, override, field_name):
        settings = {"remote_host": "gw", "remote_user": "u", **override}

        with pytest.raises(ConfigError, match=field_name):
            Runtime().endpoint("laptop", settings)

    def test_host_alias_from_ssh_config(self, monkeypatch):
        monkeypatch.setattr(runtime_module, "load_ssh_config", lambda host: {
            "host": "203.0.113.7", "user": "admin", "port": 2200, "key_file": "~/.ssh/gw",
        })

        endpoint = Runtime().endpoint("laptop", {"remote_host": "gateway"})

        assert endpoint.remote_host == "203.0.113.7"
        assert endpoint.remote_user == "admin"
        assert endpoint.remote_ssh_port == 2200
        assert endpoint.identity_file == "~/.ssh/gw"
