"""
Configuration Management

Handles loading configuration from environment variables and config files.
"""

import os
import json
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional, Tuple

from dotenv import find_dotenv, load_dotenv

from .transfer.protocol import (
    CHUNK_SIZE, DEFAULT_CONNECT_TIMEOUT, DEFAULT_PORT, DEFAULT_SOCKET_TIMEOUT
)

ENV_PREFIX = 'FT_'


def _optional_int(value) -> Optional[int]:
    if value is None or value == '' or str(value).lower() == 'none':
        return None
    return int(value)


@dataclass
class Config:
    """
    File transfer configuration, shared by client and server.

    Configuration priority (highest to lowest):
    1. Environment variables (FT_*)
    2. Config file (config.json)
    3. Default values
    """
    # Network
    host: str = '0.0.0.0'            # server listen address
    port: int = DEFAULT_PORT
    server_host: str = '127.0.0.1'   # client target

    # Storage
    root_dir: Path = field(default_factory=lambda: Path('.'))

    # Transfer
    chunk_size: int = CHUNK_SIZE

    # Timeouts (seconds)
    socket_timeout: float = DEFAULT_SOCKET_TIMEOUT
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT

    # Retry (max_attempts None = retry forever)
    max_attempts: Optional[int] = None
    retry_delay: float = 0.0
    backoff_multiplier: float = 1.0
    max_retry_delay: float = 60.0

    # Logging
    log_level: str = 'INFO'

    @property
    def server_address(self) -> Tuple[str, int]:
        return (self.server_host, self.port)

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables."""
        load_dotenv(find_dotenv(usecwd=True))

        config = cls()

        def env(name, default):
            return os.getenv(ENV_PREFIX + name, default)

        # Network
        config.host = env('HOST', config.host)
        config.port = int(env('PORT', config.port))
        config.server_host = env('SERVER_HOST', config.server_host)

        # Storage
        root_dir = env('ROOT_DIR', None)
        if root_dir:
            config.root_dir = Path(root_dir)

        # Transfer
        config.chunk_size = int(env('CHUNK_SIZE', config.chunk_size))

        # Timeouts
        config.socket_timeout = float(env('SOCKET_TIMEOUT', config.socket_timeout))
        config.connect_timeout = float(env('CONNECT_TIMEOUT', config.connect_timeout))

        # Retry
        config.max_attempts = _optional_int(env('MAX_ATTEMPTS', config.max_attempts))
        config.retry_delay = float(env('RETRY_DELAY', config.retry_delay))
        config.backoff_multiplier = float(env('BACKOFF_MULTIPLIER', config.backoff_multiplier))
        config.max_retry_delay = float(env('MAX_RETRY_DELAY', config.max_retry_delay))

        # Logging
        config.log_level = env('LOG_LEVEL', config.log_level)

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
        config.server_host = data.get('server_host', config.server_host)

        # Storage
        if 'root_dir' in data:
            config.root_dir = Path(data['root_dir'])

        # Transfer
        config.chunk_size = data.get('chunk_size', config.chunk_size)

        # Timeouts
        config.socket_timeout = data.get('socket_timeout', config.socket_timeout)
        config.connect_timeout = data.get('connect_timeout', config.connect_timeout)

        # Retry
        config.max_attempts = _optional_int(data.get('max_attempts', config.max_attempts))
        config.retry_delay = data.get('retry_delay', config.retry_delay)
        config.backoff_multiplier = data.get('backoff_multiplier', config.backoff_multiplier)
        config.max_retry_delay = data.get('max_retry_delay', config.max_retry_delay)

        # Logging
        config.log_level = data.get('log_level', config.log_level)

        return config

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'host': self.host,
            'port': self.port,
            'server_host': self.server_host,
            'root_dir': str(self.root_dir),
            'chunk_size': self.chunk_size,
            'socket_timeout': self.socket_timeout,
            'connect_timeout': self.connect_timeout,
            'max_attempts': self.max_attempts,
            'retry_delay': self.retry_delay,
            'backoff_multiplier': self.backoff_multiplier,
            'max_retry_delay': self.max_retry_delay,
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
    for key in config.to_dict():
        env_val = getattr(env_config, key)
        if env_val != getattr(defaults, key):
            setattr(config, key, env_val)

    return config


# Example config file template
EXAMPLE_CONFIG = """
{
  "host": "0.0.0.0",
  "port": 8469,
  "server_host": "192.168.1.100",
  "root_dir": ".",
  "chunk_size": 8192,
  "socket_timeout": 30.0,
  "connect_timeout": 10.0,
  "max_attempts": null,
  "retry_delay": 0.0,
  "backoff_multiplier": 1.0,
  "max_retry_delay": 60.0,
  "log_level": "INFO"
}
"""
