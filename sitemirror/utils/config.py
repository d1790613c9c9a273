"""
Configuration management for the site mirror.
"""

import yaml
import logging
from pathlib import Path
from typing import Any, Dict, Optional
from dataclasses import dataclass, field


@dataclass
class CrawlerConfig:
    """Configuration for crawler behavior."""
    max_concurrent_requests: int = 20
    max_retries: int = 3
    request_timeout: int = 30
    user_agent: str = "sitemirror/1.0"
    output_root: Optional[str] = None
    max_url_length: int = 1000
    resolve_symlinks: bool = False


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"
    file: str = "logs/sitemirror.log"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    json: bool = False


@dataclass
class MonitoringConfig:
    """Configuration for monitoring."""
    metrics_enabled: bool = False
    prometheus_port: int = 8000


@dataclass
class Config:
    """Main configuration class."""
    crawler: CrawlerConfig = field(default_factory=CrawlerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'Config':
        """Build a configuration from parsed YAML, filling in defaults."""
        data = data or {}
        if not isinstance(data, dict):
            raise ValueError("Configuration must be a mapping of sections")
        return cls(
            crawler=CrawlerConfig(**(data.get('crawler') or {})),
            logging=LoggingConfig(**(data.get('logging') or {})),
            monitoring=MonitoringConfig(**(data.get('monitoring') or {})),
        )


class ConfigManager:
    """Manages configuration loading and validation."""

    def __init__(self, config_path: str = "config.yaml"):
        self.config_path = Path(config_path)
        self._config: Optional[Config] = None

    def load_config(self) -> Config:
        """Load configuration from YAML file."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        with open(self.config_path, 'r') as file:
            try:
                config_data = yaml.safe_load(file)
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in {self.config_path}: {e}") from e

        self._config = Config.from_dict(config_data)
        validate_config(self._config)
        return self._config

    @property
    def config(self) -> Config:
        """Get the loaded configuration."""
        if not self._config:
            raise ValueError("Configuration not loaded. Call load_config() first.")
        return self._config


def validate_config(config: Config):
    """Validate configuration values."""
    if config.crawler.max_concurrent_requests < 1:
        raise ValueError("max_concurrent_requests must be at least 1")

    if config.crawler.max_retries < 0:
        raise ValueError("max_retries must be non-negative")

    if config.crawler.max_url_length < 1:
        raise ValueError("max_url_length must be at least 1")

    if config.crawler.request_timeout <= 0:
        raise ValueError("request_timeout must be positive")

    if not isinstance(logging.getLevelName(config.logging.level.upper()), int):
        raise ValueError(f"Unknown log level: {config.logging.level}")

    logging.getLogger(__name__).debug("Configuration validation passed")


def load_config(config_path: str = "config.yaml") -> Config:
    """Load configuration from file."""
    return ConfigManager(config_path).load_config()
