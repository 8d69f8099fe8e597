"""
Configuration management for the site crawler.
"""

import yaml
import logging
from pathlib import Path
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, field, fields


DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; SiteCrawlBot/1.0)"
BROWSER_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
WAIT_UNTIL_STATES = ('load', 'domcontentloaded', 'networkidle', 'commit')
QUIET_LOGGERS = ('aiohttp.access', 'urllib3', 'asyncio', 'playwright', 'redis')
LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')
MAX_CONTENT_LENGTH = 50000


@dataclass
class CrawlerConfig:
    """Configuration for crawl jobs."""
    max_pages: int = 10
    crawl_subpages: bool = True
    full_page_content: bool = False
    use_cache: bool = True
    domain_delay: float = 1.0
    request_timeout: int = 30
    max_concurrent_requests: int = 10
    min_content_length: int = 500
    max_content_length: int = MAX_CONTENT_LENGTH
    user_agent: str = DEFAULT_USER_AGENT


@dataclass
class BrowserPoolConfig:
    """Configuration for the shared headless browser pool."""
    enabled: bool = True
    max_browsers: int = 3
    max_contexts_per_browser: int = 5
    browser_timeout: float = 300.0
    sweep_interval: float = 30.0
    render_timeout: float = 30.0
    wait_until: str = 'networkidle'
    block_resources: bool = True
    user_agent: str = BROWSER_USER_AGENT


@dataclass
class CacheConfig:
    """Configuration for the render cache."""
    backend: str = 'memory'
    max_memory_entries: int = 100
    default_ttl: int = 3600
    sweep_interval: float = 60.0


@dataclass
class RedisConfig:
    """Configuration for Redis."""
    host: str = 'localhost'
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    key_prefix: str = 'sitecrawl:render_cache:'


@dataclass
class StorageConfig:
    """Configuration for progressive chunk persistence."""
    enabled: bool = False
    data_directory: str = 'data'
    chunk_size: int = 16000
    chunk_overlap: int = 1600


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = 'INFO'
    file: str = 'logs/sitecrawl.log'
    format: str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    json: bool = False
    max_bytes: int = 50 * 1024 * 1024
    backup_count: int = 5
    quiet_loggers: List[str] = field(default_factory=lambda: list(QUIET_LOGGERS))


@dataclass
class MonitoringConfig:
    """Configuration for monitoring."""
    prometheus_port: int = 8000
    metrics_enabled: bool = False


@dataclass
class Config:
    """Main configuration class."""
    crawler: CrawlerConfig = field(default_factory=CrawlerConfig)
    browser_pool: BrowserPoolConfig = field(default_factory=BrowserPoolConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)


def _build_section(section_cls, data: Optional[Dict[str, Any]]):
    """Build a config section, rejecting keys the section does not know."""
    data = data or {}
    known = {f.name for f in fields(section_cls)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown keys in {section_cls.__name__}: {sorted(unknown)}")
    return section_cls(**data)


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
            config_data = yaml.safe_load(file) or {}

        self._config = config_from_dict(config_data)
        self._validate_config()
        return self._config

    def _validate_config(self):
        """Validate configuration values."""
        if not self._config:
            raise ValueError("Configuration not loaded")
        validate_config(self._config)
        logging.info("Configuration validation passed")

    @property
    def config(self) -> Config:
        """Get the loaded configuration."""
        if not self._config:
            raise ValueError("Configuration not loaded. Call load_config() first.")
        return self._config


def config_from_dict(config_data: Dict[str, Any]) -> Config:
    """Parse a raw mapping into a Config, filling defaults for missing sections."""
    return Config(
        crawler=_build_section(CrawlerConfig, config_data.get('crawler')),
        browser_pool=_build_section(BrowserPoolConfig, config_data.get('browser_pool')),
        cache=_build_section(CacheConfig, config_data.get('cache')),
        redis=_build_section(RedisConfig, config_data.get('redis')),
        storage=_build_section(StorageConfig, config_data.get('storage')),
        logging=_build_section(LoggingConfig, config_data.get('logging')),
        monitoring=_build_section(MonitoringConfig, config_data.get('monitoring')),
    )


def validate_config(config: Config):
    """Raise ValueError for values the crawler cannot run with."""
    if config.crawler.max_pages < 1:
        raise ValueError("max_pages must be at least 1")

    if config.crawler.domain_delay < 0:
        raise ValueError("domain_delay must be non-negative")

    if config.crawler.max_concurrent_requests < 1:
        raise ValueError("max_concurrent_requests must be at least 1")

    if not 1 <= config.crawler.max_content_length <= MAX_CONTENT_LENGTH:
        raise ValueError(f"max_content_length must be between 1 and {MAX_CONTENT_LENGTH}")

    if config.browser_pool.max_browsers < 1:
        raise ValueError("max_browsers must be at least 1")

    if config.browser_pool.max_contexts_per_browser < 1:
        raise ValueError("max_contexts_per_browser must be at least 1")

    if config.browser_pool.wait_until not in WAIT_UNTIL_STATES:
        raise ValueError(f"wait_until must be one of {', '.join(WAIT_UNTIL_STATES)}")

    if config.cache.backend not in ['memory', 'redis']:
        raise ValueError("Cache backend must be 'memory' or 'redis'")

    if config.logging.level.upper() not in LOG_LEVELS:
        raise ValueError(f"logging level must be one of {', '.join(LOG_LEVELS)}")

    if config.cache.max_memory_entries < 1:
        raise ValueError("max_memory_entries must be at least 1")

    if config.storage.chunk_overlap >= config.storage.chunk_size:
        raise ValueError("chunk_overlap must be smaller than chunk_size")


# Global config manager instance
config_manager = ConfigManager()


def get_config() -> Config:
    """Get the global configuration instance."""
    return config_manager.config


def load_config(config_path: str = "config.yaml") -> Config:
    """Load configuration from file."""
    global config_manager
    config_manager = ConfigManager(config_path)
    return config_manager.load_config()
