"""
Utility modules for the site crawler.
"""

from .config import Config, ConfigManager, load_config, get_config
from .logger import setup_logging, get_crawler_logger
from .monitoring import MetricsCollector, CrawlerMonitor

__all__ = [
    'Config', 'ConfigManager', 'load_config', 'get_config',
    'setup_logging', 'get_crawler_logger',
    'MetricsCollector', 'CrawlerMonitor',
]
