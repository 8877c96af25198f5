"""
Configuration Management

Handles loading upload settings from environment variables and config files.
"""

import os
import json
from enum import IntEnum
from pathlib import Path
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

DEFAULT_API_BASE_URL = 'https://open-api.123pan.com'

# Used until the server hands out the authoritative slice size
DEFAULT_CHUNK_SIZE = 4 * 1024 * 1024

# Settings that are secrets and never written back to disk
CREDENTIAL_KEYS = ('client_id', 'client_secret', 'access_token')


class DuplicatePolicy(IntEnum):
    """What the server does when the target name already exists."""
    KEEP_BOTH = 1
    OVERWRITE = 2


@dataclass
class UploadConfig:
    """
    Uploader configuration.

    Configuration priority (highest to lowest):
    1. Environment variables (PAN_*)
    2. Config file (config.json)
    3. Default values

    Durations are in seconds.
    """
    # API
    api_base_url: str = DEFAULT_API_BASE_URL
    api_timeout: float = 10.0
    transfer_timeout: float = 300.0

    # Upload policy
    concurrency: int = 3
    retry_times: int = 3
    retry_delay: float = 3.0
    limit_rate: int = 0  # accepted, not enforced
    duplicate: int = DuplicatePolicy.KEEP_BOTH

    # Merge polling (~1 minute by default)
    poll_interval: float = 2.0
    poll_max_times: int = 30

    # I/O
    read_burst_size: int = 64 * 1024

    # Credentials
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    access_token: Optional[str] = None

    # Logging
    log_level: str = 'INFO'

    def validate(self) -> 'UploadConfig':
        """Reject settings the engine cannot run with."""
        if self.concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {self.concurrency}")
        if self.retry_times < 0:
            raise ValueError(f"retry_times must be >= 0, got {self.retry_times}")
        if self.retry_delay < 0 or self.poll_interval < 0:
            raise ValueError("retry_delay and poll_interval must not be negative")
        if self.poll_max_times < 1:
            raise ValueError(f"poll_max_times must be >= 1, got {self.poll_max_times}")
        if self.read_burst_size < 1:
            raise ValueError(f"read_burst_size must be >= 1, got {self.read_burst_size}")
        if self.duplicate not in tuple(DuplicatePolicy):
            raise ValueError(f"Unknown duplicate policy: {self.duplicate}")
        return self

    @classmethod
    def from_env(cls) -> 'UploadConfig':
        """Load configuration from environment variables."""
        load_dotenv()

        config = cls()

        # API
        config.api_base_url = os.getenv('PAN_API_BASE_URL', config.api_base_url)
        config.api_timeout = float(os.getenv('PAN_API_TIMEOUT', config.api_timeout))
        config.transfer_timeout = float(
            os.getenv('PAN_TRANSFER_TIMEOUT', config.transfer_timeout)
        )

        # Upload policy
        config.concurrency = int(os.getenv('PAN_CONCURRENCY', config.concurrency))
        config.retry_times = int(os.getenv('PAN_RETRY_TIMES', config.retry_times))
        config.retry_delay = float(os.getenv('PAN_RETRY_DELAY', config.retry_delay))
        config.limit_rate = int(os.getenv('PAN_LIMIT_RATE', config.limit_rate))
        config.duplicate = int(os.getenv('PAN_DUPLICATE', config.duplicate))

        # Polling
        config.poll_interval = float(os.getenv('PAN_POLL_INTERVAL', config.poll_interval))
        config.poll_max_times = int(os.getenv('PAN_POLL_MAX_TIMES', config.poll_max_times))

        # Credentials
        config.client_id = os.getenv('PAN_CLIENT_ID', config.client_id)
        config.client_secret = os.getenv('PAN_CLIENT_SECRET', config.client_secret)
        config.access_token = os.getenv('PAN_ACCESS_TOKEN', config.access_token)

        # Logging
        config.log_level = os.getenv('PAN_LOG_LEVEL', config.log_level)

        return config

    @classmethod
    def from_file(cls, path: Path) -> 'UploadConfig':
        """Load configuration from a JSON file."""
        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)

        config = cls()
        for key, value in data.items():
            if key in config.to_dict(include_credentials=True):
                setattr(config, key, value)

        return config

    def to_dict(self, include_credentials: bool = False) -> dict:
        """Convert to dictionary."""
        data = {
            'api_base_url': self.api_base_url,
            'api_timeout': self.api_timeout,
            'transfer_timeout': self.transfer_timeout,
            'concurrency': self.concurrency,
            'retry_times': self.retry_times,
            'retry_delay': self.retry_delay,
            'limit_rate': self.limit_rate,
            'duplicate': int(self.duplicate),
            'poll_interval': self.poll_interval,
            'poll_max_times': self.poll_max_times,
            'read_burst_size': self.read_burst_size,
            'log_level': self.log_level,
        }
        if include_credentials:
            for key in CREDENTIAL_KEYS:
                data[key] = getattr(self, key)
        return data

    def save(self, path: Path):
        """Save configuration to a JSON file (credentials are left out)."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)


def load_config(config_path: Optional[Path] = None) -> UploadConfig:
    """
    Load configuration from file and environment.

    Environment variables override file settings.
    """
    # Start with defaults
    config = UploadConfig()

    # Load from file if provided
    if config_path and config_path.exists():
        config = UploadConfig.from_file(config_path)

    # Override with environment variables
    env_config = UploadConfig.from_env()
    defaults = UploadConfig()

    # Merge (env takes precedence for non-default values)
    for key in env_config.to_dict(include_credentials=True):
        env_val = getattr(env_config, key)
        if env_val != getattr(defaults, key):
            setattr(config, key, env_val)

    return config


# Example config file template
EXAMPLE_CONFIG = """
{
  "api_base_url": "https://open-api.123pan.com",
  "concurrency": 3,
  "retry_times": 3,
  "retry_delay": 3.0,
  "duplicate": 1,
  "poll_interval": 2.0,
  "poll_max_times": 30,
  "log_level": "INFO"
}
"""
