"""Configuration management for Duplex Sync."""

import json
import logging
import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional

from platformdirs import user_config_dir, user_data_dir, user_log_dir

__all__ = [
    "Config",
    "SyncSettings",
    "DiscoverySettings",
    "ParserSettings",
    "AuthSettings",
    "setup_logging",
    "fallback_access_token",
    "DEFAULT_API_URL",
    "DEFAULT_WORKOS_API_URL",
]

logger = logging.getLogger(__name__)

APP_NAME = "duplex"
APP_AUTHOR = "Duplex"

# API endpoints
DEFAULT_API_URL = "http://localhost:8787"
DEFAULT_WORKOS_API_URL = "https://api.workos.com"

# Environment overrides
ENV_API_URL = "DUPLEX_API_URL"
ENV_ACCESS_TOKEN = "DUPLEX_ACCESS_TOKEN"
ENV_CLIENT_ID = "WORKOS_CLIENT_ID"

# Sync settings
DEFAULT_DEBOUNCE_SECONDS = 5
DEFAULT_POLL_INTERVAL_SECONDS = 0.1
DEFAULT_WORKSPACE_ID = "default"

# Token lifecycle
DEFAULT_TOKEN_CHECK_INTERVAL = 30  # seconds
DEFAULT_REFRESH_BUFFER = 60  # seconds
DEFAULT_BROWSER_TIMEOUT = 300  # 5 minutes


@dataclass
class SyncSettings:
    """Sync configuration."""

    debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    workspace_id: str = DEFAULT_WORKSPACE_ID


@dataclass
class DiscoverySettings:
    """Which directories to watch."""

    auto_discover: bool = True
    additional_paths: list[str] = field(default_factory=list)


@dataclass
class ParserSettings:
    """Which conversation parsers are active."""

    enabled: list[str] = field(default_factory=lambda: ["claude-code"])


@dataclass
class AuthSettings:
    """WorkOS authentication settings."""

    workos_api_url: str = DEFAULT_WORKOS_API_URL
    client_id: Optional[str] = None
    check_interval_seconds: float = DEFAULT_TOKEN_CHECK_INTERVAL
    refresh_buffer_seconds: float = DEFAULT_REFRESH_BUFFER
    browser_timeout_seconds: float = DEFAULT_BROWSER_TIMEOUT

    def resolve_client_id(self) -> Optional[str]:
        """Environment variable wins over the config file value."""
        env_value = os.getenv(ENV_CLIENT_ID)
        if env_value:
            return env_value
        return self.client_id or None


@dataclass
class Config:
    """Main configuration object."""

    api_url: str = DEFAULT_API_URL
    sync: SyncSettings = field(default_factory=SyncSettings)
    discovery: DiscoverySettings = field(default_factory=DiscoverySettings)
    parsers: ParserSettings = field(default_factory=ParserSettings)
    auth: AuthSettings = field(default_factory=AuthSettings)
    debug_mode: bool = False

    @classmethod
    def get_config_dir(cls) -> Path:
        """Get the configuration directory path."""
        return Path(user_config_dir(APP_NAME, APP_AUTHOR))

    @classmethod
    def get_data_dir(cls) -> Path:
        """Get the data directory path (for the SQLite sync state)."""
        return Path(user_data_dir(APP_NAME, APP_AUTHOR))

    @classmethod
    def get_log_dir(cls) -> Path:
        """Get the log directory path."""
        return Path(user_log_dir(APP_NAME, APP_AUTHOR))

    @classmethod
    def get_config_file(cls) -> Path:
        """Get the config file path."""
        return cls.get_config_dir() / "config.json"

    @classmethod
    def get_database_path(cls) -> Path:
        """Get the sync state database path."""
        return cls.get_data_dir() / "sync.db"

    @classmethod
    def load(cls, config_file: Optional[Path] = None) -> "Config":
        """Load config from file, or return defaults."""
        config_file = config_file or cls.get_config_file()
        config = cls()
        if config_file.exists():
            try:
                with open(config_file, "r") as f:
                    data = json.load(f)
                config = cls._from_dict(data)
            except Exception as e:
                logger.warning(f"Failed to load config: {e}, using defaults")

        env_api_url = os.getenv(ENV_API_URL)
        if env_api_url:
            config.api_url = env_api_url
        return config

    @classmethod
    def _from_dict(cls, data: dict) -> "Config":
        """Create Config from dictionary."""
        sync_data = data.pop("sync", {})
        discovery_data = data.pop("discovery", {})
        parser_data = data.pop("parsers", {})
        auth_data = data.pop("auth", {})

        return cls(
            sync=SyncSettings(**sync_data) if sync_data else SyncSettings(),
            discovery=DiscoverySettings(**discovery_data) if discovery_data else DiscoverySettings(),
            parsers=ParserSettings(**parser_data) if parser_data else ParserSettings(),
            auth=AuthSettings(**auth_data) if auth_data else AuthSettings(),
            **{k: v for k, v in data.items() if k in cls.__dataclass_fields__},
        )

    def save(self, config_file: Optional[Path] = None) -> None:
        """Save config to file."""
        config_file = config_file or self.get_config_file()
        config_file.parent.mkdir(parents=True, exist_ok=True)

        data = asdict(self)
        with open(config_file, "w") as f:
            json.dump(data, f, indent=2)
        logger.info(f"Config saved to {config_file}")


def fallback_access_token() -> Optional[str]:
    """Operator-supplied static token for non-interactive deployments."""
    return os.getenv(ENV_ACCESS_TOKEN) or None


def setup_logging(debug: bool = False) -> None:
    """Configure logging."""
    log_dir = Config.get_log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "duplex-sync.log"

    level = logging.DEBUG if debug else logging.INFO
    format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler(),
        ],
        force=True,
    )

    # Reduce noise from libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("watchdog").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.ERROR)
