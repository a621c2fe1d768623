"""
Configuration loader for picamera-live.

Loads optional YAML configuration with environment variable substitution.
Every setting has a default, so the server runs without a config file.
"""

import os
import re
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from .exceptions import ConfigurationError


# Load .env file if present
load_dotenv()


DEFAULT_BASE_DIR = '~/.picamera-live'


class Config:
    """
    Configuration manager with environment variable substitution.

    Usage:
        config = Config.load('config.yaml')
        duration = config.get('capture.segment_duration', 5)
        segments_dir = config.get_segments_dir()
    """

    _instance: Optional['Config'] = None
    _env_pattern = re.compile(r'\$\{([^}]+)\}')

    def __init__(self, config_data: Optional[dict] = None):
        self._data = config_data or {}

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> 'Config':
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to YAML configuration file (None = defaults only)

        Returns:
            Config instance

        Raises:
            ConfigurationError: If file not found, invalid YAML or invalid values
        """
        if config_path is None:
            instance = cls({})
            instance._validate()
            cls._instance = instance
            return instance

        path = Path(config_path)

        if not path.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            with open(path, 'r') as f:
                raw_content = f.read()

            content = cls._substitute_env_vars(raw_content)
            data = yaml.safe_load(content)

            # An empty file means "all defaults"
            if data is None:
                data = {}

            if not isinstance(data, dict):
                raise ConfigurationError("Configuration must be a YAML dictionary")

            instance = cls(data)
            instance._validate()

            cls._instance = instance

            return instance

        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in configuration: {e}")

    @classmethod
    def get_instance(cls) -> 'Config':
        """Get the singleton Config instance."""
        if cls._instance is None:
            raise ConfigurationError("Configuration not loaded. Call Config.load() first.")
        return cls._instance

    @classmethod
    def _substitute_env_vars(cls, content: str) -> str:
        """Substitute ${VAR} patterns with environment variable values."""
        def replace(match):
            value = os.environ.get(match.group(1))
            if value is None:
                # Keep original if not found (might be optional)
                return match.group(0)
            return value

        return cls._env_pattern.sub(replace, content)

    def _validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ConfigurationError: If a value has the wrong type or range
        """
        segment_duration = self.get('capture.segment_duration', 5)
        if isinstance(segment_duration, bool) or not isinstance(segment_duration, (int, float)) \
                or segment_duration <= 0:
            raise ConfigurationError("capture.segment_duration must be a positive number")

        for field in ('capture.width', 'capture.height', 'capture.bit_rate', 'server.port'):
            value = self.get(field)
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ConfigurationError(f"{field} must be a positive integer")

        max_size_mb = self.get('storage.max_size_mb', 1024)
        if isinstance(max_size_mb, bool) or not isinstance(max_size_mb, int) or max_size_mb < 0:
            raise ConfigurationError("storage.max_size_mb must be a non-negative integer")

        drain_interval = self.get('capture.drain_interval', 1.0)
        if isinstance(drain_interval, bool) or not isinstance(drain_interval, (int, float)) \
                or drain_interval <= 0:
            raise ConfigurationError("capture.drain_interval must be a positive number")

        for field in ('capture.startup_grace', 'server.playlist_window'):
            value = self.get(field)
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
                raise ConfigurationError(f"{field} must be a non-negative number")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-separated key.

        Args:
            key: Dot-separated key (e.g., 'capture.width')
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        value = self._data

        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value: Any) -> None:
        """Set a configuration value by dot-separated key (used for CLI overrides)."""
        keys = key.split('.')
        section = self._data
        for k in keys[:-1]:
            section = section.setdefault(k, {})
        section[keys[-1]] = value

    def get_capture_config(self) -> dict:
        """Get capture configuration section."""
        return self._data.get('capture', {})

    def get_storage_config(self) -> dict:
        """Get storage configuration section."""
        return self._data.get('storage', {})

    def get_server_config(self) -> dict:
        """Get server configuration section."""
        return self._data.get('server', {})

    def get_logging_config(self) -> dict:
        """Get logging configuration section."""
        return self._data.get('logging', {})

    def get_base_dir(self) -> Path:
        """Get the base directory holding segments, chunks and keys."""
        return Path(self.get('paths.base_dir', DEFAULT_BASE_DIR)).expanduser()

    def config_dir(self, *components: str) -> Path:
        """
        Resolve a directory under the base directory, creating it if needed.

        Args:
            *components: Path components below the base directory

        Returns:
            Path to the existing directory

        Raises:
            ConfigurationError: If the directory cannot be created
        """
        path = self.get_base_dir().joinpath(*components)
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigurationError(f"Cannot create directory {path}: {e}")
        return path

    def _dir_setting(self, key: str, component: str) -> Path:
        value = self.get(key)
        if value:
            path = Path(value).expanduser()
            try:
                path.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise ConfigurationError(f"Cannot create directory {path}: {e}")
            return path
        return self.config_dir(component)

    def get_segments_dir(self) -> Path:
        """Get segments directory as Path object."""
        return self._dir_setting('storage.segments_dir', 'segments')

    def get_work_dir(self) -> Path:
        """Get the capture working directory for raw chunks."""
        return self._dir_setting('capture.work_dir', 'recorder')

    def get_keys_dir(self) -> Path:
        """Get the directory holding the TLS key and certificate."""
        return self._dir_setting('server.keys_dir', 'keys')

    def get_segment_duration(self) -> float:
        """Get the nominal chunk duration in seconds."""
        return self.get('capture.segment_duration', 5)

    def to_dict(self) -> dict:
        """Return configuration as dictionary."""
        return self._data.copy()


def load_config(config_path: Optional[str] = None) -> Config:
    """
    Convenience function to load configuration.

    Args:
        config_path: Path to YAML configuration file, or None for defaults

    Returns:
        Config instance
    """
    return Config.load(config_path)


def get_config() -> Config:
    """
    Get the current configuration instance.

    Raises:
        ConfigurationError: If configuration not loaded
    """
    return Config.get_instance()
