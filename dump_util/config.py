"""
Configuration loading for the dumper command line.
"""

import os
import re
from typing import Any

import yaml


class ConfigLoader:
    """Loads configuration from a YAML file, resolving ${ENV_VAR} references.

    Expected layout::

        database:
          type: postgres
          connection: ${DATABASE_URL}
        output:
          path: ./backup.sql
          compress: true
        options:
          batch_size: 5000
          workers: 5
          exclude: [audit_log, sessions]
        logging:
          level: INFO
          file: ./dumps/dump.log
    """

    ENV_VAR_PATTERN = re.compile(r'\$\{([^}]+)\}')

    def __init__(self, config_path: str):
        self.config_path = config_path
        self.config = self._load_config()

    def _load_config(self) -> dict[str, Any]:
        """Load configuration from YAML file."""
        with open(self.config_path, 'r') as f:
            config = yaml.safe_load(f)

        if config is None:
            return {}
        if not isinstance(config, dict):
            raise ValueError(f"Configuration file '{self.config_path}' must contain a mapping")
        return self._resolve_env_vars(config)

    def _resolve_env_vars(self, obj: Any) -> Any:
        """Recursively resolve environment variables in config."""
        if isinstance(obj, str):
            matches = self.ENV_VAR_PATTERN.findall(obj)
            for match in matches:
                env_value = os.environ.get(match, '')
                obj = obj.replace(f'${{{match}}}', env_value)
            return obj
        elif isinstance(obj, dict):
            return {k: self._resolve_env_vars(v) for k, v in obj.items()}
        elif isinstance(obj, list):
            return [self._resolve_env_vars(item) for item in obj]
        return obj

    def get_database_settings(self) -> dict[str, Any]:
        """Get source database type and connection string."""
        return self.config.get('database') or {}

    def get_output_settings(self) -> dict[str, Any]:
        """Get output settings."""
        return self.config.get('output') or {}

    def get_options(self) -> dict[str, Any]:
        """Get batching, worker and exclusion options."""
        return self.config.get('options') or {}

    def get_logging_settings(self) -> dict[str, Any]:
        """Get logging settings."""
        return self.config.get('logging') or {}
