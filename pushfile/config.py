"""
Configuration Management

Handles loading configuration from environment variables and config files.
"""

import os
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional
import json

from dotenv import load_dotenv

from .transfer.flight import BusyPolicy
from .transfer.protocol import DEFAULT_BUFFER_SIZE, MAX_NAME_LENGTH


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_timeout(name: str, default: Optional[float]) -> Optional[float]:
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip().lower()
    if value in ('', 'none', 'off'):
        return None
    return float(value)


def _is_int(value) -> bool:
    # JSON true/false load as bool, which is an int subclass
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value) -> bool:
    return _is_int(value) or isinstance(value, float)


@dataclass
class Config:
    """
    Transfer configuration.

    Configuration priority (highest to lowest):
    1. Environment variables (PUSHFILE_*)
    2. Config file (config.json)
    3. Default values
    """
    # Network
    host: str = '127.0.0.1'
    port: int = 8080

    # Transfer
    buffer_size: int = DEFAULT_BUFFER_SIZE
    checksum: bool = False
    digest_field: bool = True
    busy_policy: str = BusyPolicy.BLOCK.value
    max_name_length: int = MAX_NAME_LENGTH

    # Storage
    destination: Path = field(default_factory=lambda: Path('.'))

    # Timeouts (seconds, None = wait forever)
    accept_timeout: Optional[float] = None
    io_timeout: Optional[float] = None

    # Logging
    log_level: str = 'INFO'

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables."""
        load_dotenv()

        config = cls()

        # Network
        config.host = os.getenv('PUSHFILE_HOST', config.host)
        config.port = int(os.getenv('PUSHFILE_PORT', config.port))

        # Transfer
        config.buffer_size = int(os.getenv('PUSHFILE_BUFFER_SIZE', config.buffer_size))
        config.checksum = _env_bool('PUSHFILE_CHECKSUM', config.checksum)
        config.digest_field = _env_bool('PUSHFILE_DIGEST_FIELD', config.digest_field)
        config.busy_policy = os.getenv('PUSHFILE_BUSY_POLICY', config.busy_policy).lower()

        # Storage
        destination = os.getenv('PUSHFILE_DESTINATION')
        if destination:
            config.destination = Path(destination)

        # Timeouts
        config.accept_timeout = _env_timeout('PUSHFILE_ACCEPT_TIMEOUT', config.accept_timeout)
        config.io_timeout = _env_timeout('PUSHFILE_IO_TIMEOUT', config.io_timeout)

        # Logging
        config.log_level = os.getenv('PUSHFILE_LOG_LEVEL', config.log_level)

        return config

    @classmethod
    def from_file(cls, path: Path) -> 'Config':
        """Load configuration from a JSON file."""
        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)

        config = cls()

        # Network
        config.host = data.get('host', config.host)
        config.port = data.get('port', config.port)

        # Transfer
        config.buffer_size = data.get('buffer_size', config.buffer_size)
        config.checksum = data.get('checksum', config.checksum)
        config.digest_field = data.get('digest_field', config.digest_field)
        config.busy_policy = data.get('busy_policy', config.busy_policy)
        config.max_name_length = data.get('max_name_length', config.max_name_length)

        # Storage
        if 'destination' in data:
            config.destination = Path(data['destination'])

        # Timeouts
        config.accept_timeout = data.get('accept_timeout', config.accept_timeout)
        config.io_timeout = data.get('io_timeout', config.io_timeout)

        # Logging
        config.log_level = data.get('log_level', config.log_level)

        return config

    def validate(self) -> 'Config':
        """
        Check values that would otherwise fail deep inside a transfer.

        Raises:
            ValueError: on the first invalid setting
        """
        if not _is_int(self.buffer_size) or self.buffer_size <= 0:
            raise ValueError(f"buffer_size must be a positive integer, got {self.buffer_size!r}")
        if not _is_int(self.port) or not 0 <= self.port <= 65535:
            raise ValueError(f"port must be an integer in 0..65535, got {self.port!r}")
        if not _is_int(self.max_name_length) or self.max_name_length <= 0:
            raise ValueError(
                f"max_name_length must be a positive integer, got {self.max_name_length!r}"
            )
        for name in ('checksum', 'digest_field'):
            if not isinstance(getattr(self, name), bool):
                raise ValueError(f"{name} must be true or false, got {getattr(self, name)!r}")
        if not isinstance(self.host, str) or not self.host:
            raise ValueError(f"host must be a non-empty string, got {self.host!r}")
        BusyPolicy(self.busy_policy)
        for name in ('accept_timeout', 'io_timeout'):
            value = getattr(self, name)
            if value is None:
                continue
            if not _is_number(value) or value <= 0:
                raise ValueError(f"{name} must be a positive number or null, got {value!r}")
        return self

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'host': self.host,
            'port': self.port,
            'buffer_size': self.buffer_size,
            'checksum': self.checksum,
            'digest_field': self.digest_field,
            'busy_policy': self.busy_policy,
            'max_name_length': self.max_name_length,
            'destination': str(self.destination),
            'accept_timeout': self.accept_timeout,
            'io_timeout': self.io_timeout,
            'log_level': self.log_level,
        }

    def save(self, path: Path):
        """Save configuration to a JSON file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration from file and environment.

    Environment variables override file settings.
    """
    # Start with defaults
    config = Config()

    # Load from file if provided
    if config_path and config_path.exists():
        config = Config.from_file(config_path)

    # Override with environment variables
    env_config = Config.from_env()

    # Merge (env takes precedence for non-default values)
    defaults = Config()
    for key in ['host', 'port', 'buffer_size', 'checksum', 'digest_field',
                'busy_policy', 'destination', 'accept_timeout', 'io_timeout',
                'log_level']:
        env_val = getattr(env_config, key)
        if env_val != getattr(defaults, key):
            setattr(config, key, env_val)

    return config


# Example config file template
EXAMPLE_CONFIG = """
{
  "host": "127.0.0.1",
  "port": 8080,
  "buffer_size": 8192,
  "checksum": false,
  "digest_field": true,
  "busy_policy": "block",
  "destination": "./received",
  "accept_timeout": null,
  "io_timeout": 30.0,
  "log_level": "INFO"
}
"""
