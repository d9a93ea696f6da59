"""
Configuration loader with priority: CLI > env > TOML > defaults
"""
import os
import tomllib
from pathlib import Path
from typing import Any, Dict, List, Optional

from ...core.constants import DEFAULT_CONFIG_PATH
from ...core.exceptions import ConfigError

# Only these keys are coerced; hosts, users and paths stay strings
NUMERIC_KEYS = frozenset({
    "tunnel.remote_ssh_port",
    "tunnel.remote_bind_port",
    "tunnel.local_target_port",
    "tunnel.keepalive_interval",
    "tunnel.keepalive_retries",
    "supervisor.probe_timeout",
})


class ConfigLoader:
    """
    Configuration loader with priority support.

    Sections:
    - [tunnel]: endpoint fields (remote_host, remote_user, remote_bind_port, ...)
    - [paths]: key_dir, authorized_keys, state_dir, log_dir, ...
    - [supervisor]: startup_wait, probe_timeout, probe_interval, stop_grace,
      platform, autossh_path
    """

    ENV_MAPPINGS = {
        "MOLE_REMOTE_HOST": "tunnel.remote_host",
        "MOLE_REMOTE_USER": "tunnel.remote_user",
        "MOLE_REMOTE_SSH_PORT": "tunnel.remote_ssh_port",
        "MOLE_IDENTITY_FILE": "tunnel.identity_file",
        "MOLE_TUNNEL_PORT": "tunnel.remote_bind_port",
        "MOLE_LOCAL_PORT": "tunnel.local_target_port",
        "MOLE_KEEPALIVE_INTERVAL": "tunnel.keepalive_interval",
        "MOLE_KEEPALIVE_RETRIES": "tunnel.keepalive_retries",
        "MOLE_KEY_DIR": "paths.key_dir",
        "MOLE_AUTHORIZED_KEYS": "paths.authorized_keys",
        "MOLE_STATE_DIR": "paths.state_dir",
        "MOLE_LOG_DIR": "paths.log_dir",
        "MOLE_PLATFORM": "supervisor.platform",
        "MOLE_AUTOSSH": "supervisor.autossh_path",
        "MOLE_PROBE_TIMEOUT": "supervisor.probe_timeout",
    }

    def __init__(self, environ: Optional[Dict[str, str]] = None):
        self._environ = os.environ if environ is None else environ

    def load_toml(self, path: Path) -> Dict[str, Any]:
        """Load TOML configuration file"""
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        try:
            return tomllib.loads(path.read_text(encoding='utf-8'))
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Failed to parse TOML configuration {path}: {e}") from e

    def load_env(self) -> Dict[str, Any]:
        """Load configuration from environment variables"""
        config: Dict[str, Any] = {}

        for env_key, config_key in self.ENV_MAPPINGS.items():
            value = self._environ.get(env_key)
            if value:
                section, key = config_key.split(".")
                if config_key in NUMERIC_KEYS:
                    value = self._convert_value(env_key, value)
                config.setdefault(section, {})[key] = value

        return config

    def _convert_value(self, env_key: str, value: str) -> Any:
        """Parse a numeric environment value as int, falling back to float"""
        for cast in (int, float):
            try:
                return cast(value)
            except ValueError:
                continue
        raise ConfigError(f"{env_key} must be a number, got {value!r}")

    def merge_configs(self, *configs: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge multiple configurations with priority.
        Later configs override earlier ones.
        """
        result: Dict[str, Any] = {}

        for config in configs:
            result = self._deep_merge(result, config)

        return result

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries, skipping None overrides"""
        result = base.copy()

        for key, value in override.items():
            if value is None:
                continue
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def load(
        self,
        toml_path: Optional[Path] = None,
        cli_overrides: Optional[Dict[str, Any]] = None,
        use_env: bool = True,
    ) -> Dict[str, Any]:
        """
        Load configuration with priority: CLI > env > TOML > defaults

        Args:
            toml_path: Path to TOML configuration file; the default
                ~/.mole/config.toml is used when present
            cli_overrides: CLI parameter overrides
            use_env: Whether to load from environment variables

        Returns:
            Merged configuration dictionary
        """
        layers: List[Dict[str, Any]] = []

        # An explicit path must exist, the default one is optional
        if toml_path:
            layers.append(self.load_toml(Path(toml_path).expanduser()))
        elif Path(DEFAULT_CONFIG_PATH).expanduser().exists():
            layers.append(self.load_toml(Path(DEFAULT_CONFIG_PATH).expanduser()))

        if use_env:
            layers.append(self.load_env())
        layers.append(cli_overrides or {})

        return self.merge_configs(*layers)
