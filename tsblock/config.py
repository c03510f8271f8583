"""
tsblock Configuration Management

Provides centralized configuration management for tsblock.
Loads settings from JSON files and environment variables.
"""

import json
import os
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass

from .errors import InvalidArgumentError
from .models import TIME_SERIES_INDEX_SET_SUFFIX


DEFAULT_CONFIG_PATH = Path(__file__).parent / "tsblock_config.json"


@dataclass
class StoreConfig:
    """Backing store configuration."""
    backend: str
    host: str
    port: int
    db: int
    password: Optional[str]
    namespace: str
    collection: str


@dataclass
class BlockConfig:
    """Block sizing and archival configuration."""
    max_entries_per_block: int
    archival_retry_count: int

    def validate(self):
        if not isinstance(self.max_entries_per_block, int) or self.max_entries_per_block <= 0:
            raise InvalidArgumentError(
                f"max_entries_per_block must be a positive integer, got {self.max_entries_per_block!r}")
        if not isinstance(self.archival_retry_count, int) or self.archival_retry_count < 0:
            raise InvalidArgumentError(
                f"archival_retry_count must be a non-negative integer, got {self.archival_retry_count!r}")


@dataclass
class SchemaConfig:
    """Column names used when ingesting Arrow record batches."""
    time_column: str
    value_column: str


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str
    log_dir: Optional[str]
    console_output: bool


@dataclass
class DebugConfig:
    """Debug configuration."""
    enabled: bool


class TSBlockConfig:
    """Main tsblock configuration manager."""

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration.

        Args:
            config_path: Path to JSON config file. If None, uses default config.
        """
        self.config_path = config_path
        self._config_data = {}
        self._load_config()
        self._create_config_objects()

    def _load_config(self):
        """Load configuration from JSON file and environment variables."""
        if DEFAULT_CONFIG_PATH.exists():
            with open(DEFAULT_CONFIG_PATH, 'r') as f:
                self._config_data = json.load(f)
        else:
            raise FileNotFoundError(f"Default config file not found: {DEFAULT_CONFIG_PATH}")

        # Override with custom config if provided
        if self.config_path:
            config_path = Path(self.config_path)
            if config_path.exists():
                with open(config_path, 'r') as f:
                    custom_config = json.load(f)
                    self._merge_configs(self._config_data, custom_config)
            else:
                raise FileNotFoundError(f"Config file not found: {config_path}")

        self._load_env_overrides()

    def _merge_configs(self, default: dict, custom: dict):
        """Recursively merge custom config into default config."""
        for key, value in custom.items():
            if key in default and isinstance(default[key], dict) and isinstance(value, dict):
                self._merge_configs(default[key], value)
            else:
                default[key] = value

    def _load_env_overrides(self):
        """Load configuration overrides from environment variables."""
        env_mappings = {
            'TSBLOCK_STORE_BACKEND': ('store', 'backend'),
            'TSBLOCK_STORE_HOST': ('store', 'host'),
            'TSBLOCK_STORE_PORT': ('store', 'port'),
            'TSBLOCK_STORE_DB': ('store', 'db'),
            'TSBLOCK_NAMESPACE': ('store', 'namespace'),
            'TSBLOCK_COLLECTION': ('store', 'collection'),
            'TSBLOCK_MAX_ENTRIES_PER_BLOCK': ('blocks', 'max_entries_per_block'),
            'TSBLOCK_ARCHIVAL_RETRY_COUNT': ('blocks', 'archival_retry_count'),
            'TSBLOCK_LOG_LEVEL': ('logging', 'level'),
            'TSBLOCK_LOG_DIR': ('logging', 'log_dir'),
            'TSBLOCK_DEBUG': ('debug', 'enabled'),
        }

        for env_var, (section, key) in env_mappings.items():
            value = os.getenv(env_var)
            if value is not None:
                # Convert string values to appropriate types
                if key in ['port', 'db', 'max_entries_per_block', 'archival_retry_count']:
                    try:
                        value = int(value)
                    except ValueError:
                        raise InvalidArgumentError(f"{env_var} must be an integer, got {value!r}")
                elif key in ['enabled', 'console_output']:
                    value = value.lower() in ('true', '1', 'yes', 'on')

                if section not in self._config_data:
                    self._config_data[section] = {}
                self._config_data[section][key] = value

    def _create_config_objects(self):
        """Create typed configuration objects from loaded data."""
        self.store = StoreConfig(**self._config_data['store'])
        self.blocks = BlockConfig(**self._config_data['blocks'])
        self.schema = SchemaConfig(**self._config_data['schema'])
        self.logging = LoggingConfig(**self._config_data['logging'])
        self.debug = DebugConfig(**self._config_data['debug'])
        self.blocks.validate()

    def index_collection(self, collection: Optional[str] = None) -> str:
        """Collection holding the per-series block indexes of `collection` (default: the configured one)."""
        return f"{collection or self.store.collection}{TIME_SERIES_INDEX_SET_SUFFIX}"

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary."""
        return json.loads(json.dumps(self._config_data))

    def save_to_file(self, path: str):
        """Save current configuration to JSON file."""
        with open(path, 'w') as f:
            json.dump(self._config_data, f, indent=2)

    def __repr__(self) -> str:
        return f"TSBlockConfig(config_path={self.config_path})"


# Global configuration instance
_global_config: Optional[TSBlockConfig] = None


def get_config(config_path: Optional[str] = None) -> TSBlockConfig:
    """
    Get the global tsblock configuration instance.

    Args:
        config_path: Path to config file. Only used on first call.

    Returns:
        TSBlockConfig instance
    """
    global _global_config
    if _global_config is None:
        _global_config = TSBlockConfig(config_path)
    return _global_config


def reset_config():
    """Reset the global configuration (mainly for testing)."""
    global _global_config
    _global_config = None
