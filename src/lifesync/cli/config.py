"""
Settings file for the LifeSync terminal client.

Values live in ~/.lifesync/config.yaml, readable by the owner only because
the selected role is kept there too. Store and geolocation endpoints can be
overridden per shell through the environment without touching the file.
"""

import os
import yaml
from pathlib import Path
from typing import Optional, Dict, Any

from ..config import DEFAULT_STORE_URL


class ConfigError(Exception):
    """Raised when the settings file cannot be read, written or updated."""

    pass


class Config:
    """Client settings persisted in a YAML file, overridable from the environment."""

    DEFAULT_CONFIG_DIR = Path.home() / ".lifesync"
    DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"

    ENV_VARS = {
        "store_url": "LIFESYNC_STORE_URL",
        "geolocation_url": "GEOLOCATION_URL",
    }
    URL_KEYS = frozenset(ENV_VARS)
    KNOWN_KEYS = URL_KEYS | {"role"}

    def __init__(self, config_file: Optional[Path] = None):
        """
        Args:
            config_file: Settings file (defaults to ~/.lifesync/config.yaml)

        Raises:
            ConfigError: If the file exists but is not a readable YAML mapping
        """
        self.config_file = config_file or self.DEFAULT_CONFIG_FILE
        self._values: Dict[str, Any] = self._read()

    def _read(self) -> Dict[str, Any]:
        if not self.config_file.exists():
            return {}
        try:
            with open(self.config_file, "r") as f:
                values = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to load config from {self.config_file}: {e}")
        if values is None:
            return {}
        if not isinstance(values, dict):
            raise ConfigError(f"Config file {self.config_file} is not a mapping")
        return values

    def _write(self):
        """Replace the settings file in one step so a crash never leaves it half written."""
        staging = self.config_file.with_name(self.config_file.name + ".tmp")
        try:
            self.config_file.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(staging, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w") as f:
                yaml.safe_dump(self._values, f, default_flow_style=False)
            # Owner read/write only, whatever the umask
            os.chmod(staging, 0o600)
            os.replace(staging, self.config_file)
        except OSError as e:
            staging.unlink(missing_ok=True)
            raise ConfigError(f"Failed to save config to {self.config_file}: {e}")

    def get(self, key: str) -> Optional[str]:
        """
        Get a setting: the environment override first, then the file.

        Returns:
            The value, or None when neither source sets it
        """
        env_var = self.ENV_VARS.get(key)
        if env_var and os.environ.get(env_var):
            return os.environ[env_var]
        return self._values.get(key)

    def set(self, key: str, value: str):
        """
        Store a setting in the file.

        Raises:
            ConfigError: For an unknown key, or an endpoint that is not an
                http(s) URL
        """
        if key not in self.KNOWN_KEYS:
            raise ConfigError(
                f"Unknown configuration key '{key}'. "
                f"Known keys: {', '.join(sorted(self.KNOWN_KEYS))}"
            )
        if key in self.URL_KEYS and not value.startswith(("http://", "https://")):
            raise ConfigError(f"{key} must be an http:// or https:// URL, got '{value}'")
        self._values[key] = value
        self._write()

    def delete(self, key: str):
        if key in self._values:
            del self._values[key]
            self._write()

    def get_all(self) -> Dict[str, Any]:
        """Every value set in the file or the environment, environment winning."""
        result = dict(self._values)
        for key, env_var in self.ENV_VARS.items():
            if os.environ.get(env_var):
                result[key] = os.environ[env_var]
        return result

    def store_url(self) -> str:
        return self.get("store_url") or DEFAULT_STORE_URL

    def geolocation_url(self) -> Optional[str]:
        return self.get("geolocation_url")
