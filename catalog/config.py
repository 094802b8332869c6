"""
load the config from config.yaml and environment variables
"""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, List


class Config:
    """Configuration loader that reads from config.yaml and environment variables."""

    def __init__(self, config_path: str = None, data: Dict[str, Any] = None):
        """Initialize configuration loader.

        Args:
            config_path: Path to config.yaml file. If None, looks for config.yaml
                        in the current working directory.
            data: Preloaded configuration; skips reading the YAML file.
        """
        if config_path is None:
            config_path = Path.cwd() / "config.yaml"

        self.config_path = Path(config_path)
        self._config = self._apply_env_overrides(data) if data is not None else self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file and override with environment variables."""
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                config = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file: {e}")

        return self._apply_env_overrides(config)

    def _apply_env_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration."""
        env_mappings = {
            'SERVER_HOST': ('server', 'host'),
            'SERVER_PORT': ('server', 'port'),
            'UPSTREAM_BASE_URL': ('upstream', 'base_url'),
            'FETCHER_USER_AGENT': ('fetcher', 'user_agent'),
            'RESOLVER_ATTEMPT_TIMEOUT': ('resolver', 'attempt_timeout'),
            'RESOLVER_QUERY_TIMEOUT': ('resolver', 'query_timeout'),
            'STORAGE_BACKEND': ('storage', 'backend'),
            'MONGODB_URI': ('mongodb', 'uri'),
            'MONGODB_DATABASE': ('mongodb', 'database'),
            'MONGODB_COLLECTION': ('mongodb', 'collection'),
            'CACHE_LISTING_MAX_AGE': ('cache', 'listing_max_age'),
            'CACHE_TAGS_MAX_AGE': ('cache', 'tags_max_age'),
            'CACHE_PROXY_MAX_AGE': ('cache', 'proxy_max_age'),
            'LOG_LEVEL': ('logging', 'level'),
        }

        for env_var, config_path in env_mappings.items():
            env_value = os.getenv(env_var)
            if env_value is not None:
                current = config
                for key in config_path[:-1]:
                    if not isinstance(current.get(key), dict):
                        current[key] = {}
                    current = current[key]

                current[config_path[-1]] = self._convert_env_value(env_value)

        return config

    def _convert_env_value(self, value: str):
        """Convert environment variable string to appropriate Python type."""
        if value.lower() in ('true', 'false'):
            return value.lower() == 'true'

        try:
            return int(value)
        except ValueError:
            pass

        try:
            return float(value)
        except ValueError:
            pass

        return value

    def get(self, *keys, default=None):
        """Get configuration value by nested keys.

        Args:
            *keys: Configuration keys (e.g., 'resolver', 'attempt_timeout')
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        current = self._config
        for key in keys:
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return default
        return current

    def as_dict(self) -> Dict[str, Any]:
        return self._config

    @property
    def server(self) -> Dict[str, Any]:
        return self.get('server', default={})

    @property
    def upstream(self) -> Dict[str, Any]:
        return self.get('upstream', default={})

    @property
    def fetcher(self) -> Dict[str, Any]:
        return self.get('fetcher', default={})

    @property
    def resolver(self) -> Dict[str, Any]:
        return self.get('resolver', default={})

    @property
    def strategies(self) -> Dict[str, List[str]]:
        """Strategy chains by name: listing, scrape, relay."""
        return self.get('strategies', default={})

    @property
    def cache(self) -> Dict[str, Any]:
        return self.get('cache', default={})

    @property
    def logging(self) -> Dict[str, Any]:
        return self.get('logging', default={})
