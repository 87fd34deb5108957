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

from .exceptions import ConfigError
from .transfer.scheduler import FailurePolicy

DEFAULT_PORT = 4159


def _optional_path(value: Optional[str]) -> Optional[Path]:
    return Path(value).expanduser() if value else None


@dataclass
class Config:
    """
    Propagation client configuration.

    Configuration priority (highest to lowest):
    1. Environment variables (PROPAGATION_*)
    2. Config file (config.json)
    3. Default values
    """
    # Peer
    port: int = DEFAULT_PORT

    # Local stores
    store_root: Path = field(default_factory=lambda: Path('~/.dig/stores').expanduser())

    # TLS client identity
    cert_path: Optional[Path] = None
    key_path: Optional[Path] = None

    # Ownership signing key
    key_file: Path = field(default_factory=lambda: Path('~/.dig/propagation.key').expanduser())

    # Performance
    upload_concurrency: int = 3
    download_concurrency: int = 5
    chunk_size: int = 64 * 1024  # 64KB
    failure_policy: FailurePolicy = FailurePolicy.DRAIN

    # Timeouts (seconds, 0 disables)
    transfer_timeout: float = 30.0

    # Logging
    log_level: str = 'INFO'

    def __post_init__(self):
        self.validate()

    def validate(self):
        """Reject values the transfer engine cannot work with."""
        if not isinstance(self.failure_policy, FailurePolicy):
            try:
                self.failure_policy = FailurePolicy(self.failure_policy)
            except ValueError:
                raise ConfigError(f"Unknown failure policy: {self.failure_policy!r}")
        for name in ('upload_concurrency', 'download_concurrency', 'chunk_size'):
            if int(getattr(self, name)) < 1:
                raise ConfigError(f"{name} must be >= 1, got {getattr(self, name)}")
        if not 0 < int(self.port) < 65536:
            raise ConfigError(f"Invalid port: {self.port}")
        if self.transfer_timeout < 0:
            raise ConfigError(f"transfer_timeout must be >= 0, got {self.transfer_timeout}")

    @property
    def timeout(self) -> Optional[float]:
        """Per-request timeout handed to httpx (None means wait forever)."""
        return self.transfer_timeout or None

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables."""
        load_dotenv()

        config = cls()

        config.port = int(os.getenv('PROPAGATION_PORT', config.port))

        store_root = os.getenv('PROPAGATION_STORE_ROOT')
        if store_root:
            config.store_root = Path(store_root).expanduser()

        config.cert_path = _optional_path(os.getenv('PROPAGATION_CERT')) or config.cert_path
        config.key_path = _optional_path(os.getenv('PROPAGATION_KEY')) or config.key_path

        key_file = os.getenv('PROPAGATION_KEY_FILE')
        if key_file:
            config.key_file = Path(key_file).expanduser()

        # Performance
        config.upload_concurrency = int(
            os.getenv('PROPAGATION_UPLOAD_CONCURRENCY', config.upload_concurrency)
        )
        config.download_concurrency = int(
            os.getenv('PROPAGATION_DOWNLOAD_CONCURRENCY', config.download_concurrency)
        )
        config.failure_policy = os.getenv('PROPAGATION_FAILURE_POLICY', config.failure_policy.value)
        config.transfer_timeout = float(
            os.getenv('PROPAGATION_TIMEOUT', config.transfer_timeout)
        )

        # Logging
        config.log_level = os.getenv('PROPAGATION_LOG_LEVEL', config.log_level)

        config.validate()
        return config

    @classmethod
    def from_file(cls, path: Path) -> 'Config':
        """Load configuration from a JSON file."""
        if not path.exists():
            return cls()

        with open(path) as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigError(f"Invalid config file {path}: {e}") from e

        config = cls()

        config.port = data.get('port', config.port)

        if 'store_root' in data:
            config.store_root = Path(data['store_root']).expanduser()
        config.cert_path = _optional_path(data.get('cert_path')) or config.cert_path
        config.key_path = _optional_path(data.get('key_path')) or config.key_path
        if 'key_file' in data:
            config.key_file = Path(data['key_file']).expanduser()

        # Performance
        config.upload_concurrency = data.get('upload_concurrency', config.upload_concurrency)
        config.download_concurrency = data.get(
            'download_concurrency', config.download_concurrency
        )
        config.chunk_size = data.get('chunk_size', config.chunk_size)
        config.failure_policy = data.get('failure_policy', config.failure_policy.value)

        # Timeouts
        config.transfer_timeout = data.get('transfer_timeout', config.transfer_timeout)

        # Logging
        config.log_level = data.get('log_level', config.log_level)

        config.validate()
        return config

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'port': self.port,
            'store_root': str(self.store_root),
            'cert_path': str(self.cert_path) if self.cert_path else None,
            'key_path': str(self.key_path) if self.key_path else None,
            'key_file': str(self.key_file),
            'upload_concurrency': self.upload_concurrency,
            'download_concurrency': self.download_concurrency,
            'chunk_size': self.chunk_size,
            'failure_policy': self.failure_policy.value,
            'transfer_timeout': self.transfer_timeout,
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
    for key in ['port', 'store_root', 'cert_path', 'key_path', 'key_file',
                'upload_concurrency', 'download_concurrency', 'failure_policy',
                'transfer_timeout', 'log_level']:
        env_val = getattr(env_config, key)
        if env_val != getattr(defaults, key):
            setattr(config, key, env_val)

    config.validate()
    return config


# Example config file template
EXAMPLE_CONFIG = """
{
  "port": 4159,
  "store_root": "~/.dig/stores",
  "cert_path": "~/.dig/ssl/client.crt",
  "key_path": "~/.dig/ssl/client.key",
  "key_file": "~/.dig/propagation.key",
  "upload_concurrency": 3,
  "download_concurrency": 5,
  "failure_policy": "drain",
  "transfer_timeout": 30.0,
  "log_level": "INFO"
}
"""
