"""
Configuration management for meshroute.

Handles:
- Node identity
- Router thresholds
- Cost publisher cadence
- API server settings
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)

# Default paths
DEFAULT_DATA_DIR = Path.home() / ".meshroute"

DEFAULT_API_PORT = 11460


@dataclass
class RouterConfig:
    """Thresholds for the semantic router."""
    min_score: float = 0.1  # permissive: prefer a best-effort route over none
    alternative_threshold: float = 0.3
    max_alternatives: int = 10
    default_latency_ceiling_ms: float = 2000.0

    def to_dict(self) -> dict:
        return {
            "min_score": self.min_score,
            "alternative_threshold": self.alternative_threshold,
            "max_alternatives": self.max_alternatives,
            "default_latency_ceiling_ms": self.default_latency_ceiling_ms,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RouterConfig":
        # Filter to only known fields to handle config evolution
        known_fields = {"min_score", "alternative_threshold", "max_alternatives", "default_latency_ceiling_ms"}
        filtered = {k: v for k, v in data.items() if k in known_fields}
        return cls(**filtered)


@dataclass
class PublisherConfig:
    """Cadence and destination of cost updates."""
    collect_interval: float = 10.0
    publish_interval: float = 30.0
    sink_url: Optional[str] = None  # e.g. http://directory.local:11460/api/cost

    def to_dict(self) -> dict:
        return {
            "collect_interval": self.collect_interval,
            "publish_interval": self.publish_interval,
            "sink_url": self.sink_url,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PublisherConfig":
        known_fields = {"collect_interval", "publish_interval", "sink_url"}
        filtered = {k: v for k, v in data.items() if k in known_fields}
        return cls(**filtered)


@dataclass
class ServerConfig:
    """Configuration for the API server."""
    host: str = "0.0.0.0"
    port: int = DEFAULT_API_PORT
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    debug: bool = False

    def to_dict(self) -> dict:
        return {
            "host": self.host,
            "port": self.port,
            "cors_origins": self.cors_origins,
            "debug": self.debug,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ServerConfig":
        known_fields = {"host", "port", "cors_origins", "debug"}
        return cls(**{k: v for k, v in data.items() if k in known_fields})


@dataclass
class Config:
    """
    Main meshroute configuration.

    Stored at ~/.meshroute/config.json
    """
    node_id: Optional[str] = None
    node_name: Optional[str] = None

    data_dir: Path = field(default_factory=lambda: DEFAULT_DATA_DIR)

    router: RouterConfig = field(default_factory=RouterConfig)
    publisher: PublisherConfig = field(default_factory=PublisherConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    # Capability snapshot served by `meshroute serve`
    capabilities_file: Optional[str] = None

    @property
    def config_path(self) -> Path:
        return self.data_dir / "config.json"

    def ensure_data_dir(self) -> None:
        """Create data directory if it doesn't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def to_dict(self) -> dict:
        return {
            "node_id": self.node_id,
            "node_name": self.node_name,
            "router": self.router.to_dict(),
            "publisher": self.publisher.to_dict(),
            "server": self.server.to_dict(),
            "capabilities_file": self.capabilities_file,
        }

    def save(self) -> None:
        """Save configuration to disk."""
        self.ensure_data_dir()

        with open(self.config_path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

        logger.debug(f"Configuration saved to {self.config_path}")

    @classmethod
    def from_dict(cls, data: dict, data_dir: Optional[Path] = None) -> "Config":
        config = cls(
            data_dir=data_dir or DEFAULT_DATA_DIR,
            node_id=data.get("node_id"),
            node_name=data.get("node_name"),
            capabilities_file=data.get("capabilities_file"),
        )
        if "router" in data:
            config.router = RouterConfig.from_dict(data["router"])
        if "publisher" in data:
            config.publisher = PublisherConfig.from_dict(data["publisher"])
        if "server" in data:
            config.server = ServerConfig.from_dict(data["server"])
        return config

    @classmethod
    def load(cls, data_dir: Optional[Path] = None) -> "Config":
        """Load configuration from disk (defaults if absent)."""
        data_dir = data_dir or DEFAULT_DATA_DIR
        config_path = data_dir / "config.json"

        if not config_path.exists():
            return cls(data_dir=data_dir)

        with open(config_path, "r") as f:
            data = json.load(f)

        return cls.from_dict(data, data_dir=data_dir)

    @classmethod
    def exists(cls, data_dir: Optional[Path] = None) -> bool:
        """Check if configuration exists."""
        data_dir = data_dir or DEFAULT_DATA_DIR
        return (data_dir / "config.json").exists()


# Global config instance
_config: Optional[Config] = None


def get_config(data_dir: Optional[Path] = None) -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load(data_dir)
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration instance."""
    global _config
    _config = None
