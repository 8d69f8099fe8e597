"""
Logging utilities for the site crawler.

Records from crawl jobs carry their job context (job id, start URL) in an
``extra_fields`` mapping, which the JSON formatter merges into each line.
"""

import logging
import logging.handlers
import json
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, Optional
from datetime import datetime, timezone

from .config import LoggingConfig


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        extra_fields = getattr(record, 'extra_fields', None)
        if extra_fields:
            log_entry.update(extra_fields)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class CrawlerLogAdapter(logging.LoggerAdapter):
    """Logger adapter that tags every record with crawl job context."""

    def __init__(self, logger: logging.Logger, extra: Optional[Dict[str, Any]] = None):
        super().__init__(logger, extra or {})

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        """Merge adapter context under any per-call ``extra_fields``."""
        extra = kwargs.setdefault('extra', {})
        merged = dict(self.extra)
        merged.update(extra.pop('extra_fields', {}))
        extra['extra_fields'] = merged
        return msg, kwargs

    def page_event(self, level: int, url: str, message: str, **fields):
        """Log an event about a single page, keeping the URL as a field."""
        self.log(level, message, extra={'extra_fields': {'page_url': url, **fields}})


class QuietLoggerFilter(logging.Filter):
    """Drops records from chatty third-party loggers on a handler."""

    def __init__(self, quiet_loggers: Iterable[str]):
        super().__init__()
        self.quiet_loggers = tuple(quiet_loggers)

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.WARNING:
            return True
        return not any(
            record.name == name or record.name.startswith(name + '.')
            for name in self.quiet_loggers
        )


def setup_logging(config: LoggingConfig, enable_json: Optional[bool] = None) -> logging.Logger:
    """
    Configure the root logger for a crawler process.

    Installs a stdout handler, a rotating log file and an errors-only
    rotating file next to it.

    Args:
        config: Logging section of the crawler configuration
        enable_json: Overrides ``config.json`` when given

    Returns:
        Configured root logger
    """
    use_json = config.json if enable_json is None else enable_json

    log_file = Path(config.file)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.level.upper()))
    root_logger.handlers.clear()

    formatter = JSONFormatter() if use_json else logging.Formatter(config.format)
    quiet = QuietLoggerFilter(config.quiet_loggers)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)

    file_handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=config.max_bytes,
        backupCount=config.backup_count,
        encoding='utf-8'
    )
    file_handler.setLevel(logging.DEBUG)

    error_handler = logging.handlers.RotatingFileHandler(
        log_file.with_name('errors.log'),
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=3,
        encoding='utf-8'
    )
    error_handler.setLevel(logging.ERROR)

    for handler in (console_handler, file_handler, error_handler):
        handler.setFormatter(formatter)
        handler.addFilter(quiet)
        root_logger.addHandler(handler)

    for name in config.quiet_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)

    root_logger.info(f"Logging to {log_file} at {config.level.upper()} (json={use_json})")
    return root_logger


def get_crawler_logger(name: str, **context) -> CrawlerLogAdapter:
    """Logger for ``name`` whose records carry ``context`` as extra fields."""
    return CrawlerLogAdapter(logging.getLogger(name), context)


def log_system_info():
    """Log platform, CPU and memory details."""
    import platform
    import psutil

    logger = logging.getLogger(__name__)
    memory = psutil.virtual_memory()

    logger.info(f"Platform: {platform.platform()}")
    logger.info(f"Python version: {sys.version.split()[0]}")
    logger.info(f"CPU cores: {psutil.cpu_count()} "
                f"(load {', '.join(f'{x:.2f}' for x in psutil.getloadavg())})")
    logger.info(f"Memory: {memory.available / 1024**3:.1f} GB free of {memory.total / 1024**3:.1f} GB")
