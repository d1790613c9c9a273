"""
Logging utilities for the site mirror.
"""

import logging
import logging.handlers
import json
import sys
from pathlib import Path
from typing import Dict, Any, Optional
from datetime import datetime, timezone

from .config import LoggingConfig

PACKAGE_LOGGER = 'sitemirror'


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
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

        for key in ('url', 'event_type'):
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)

        return json.dumps(log_entry, ensure_ascii=False)


class CrawlerLogAdapter(logging.LoggerAdapter):
    """Logger adapter that adds crawler-specific context."""

    def __init__(self, logger: logging.Logger, extra: Optional[Dict[str, Any]] = None):
        super().__init__(logger, extra or {})

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        """Add extra context to log messages."""
        if 'extra' not in kwargs:
            kwargs['extra'] = {}

        kwargs['extra'].update(self.extra)

        return msg, kwargs

    def log_url_event(self, level: int, url: str, message: str, **kwargs):
        """Log URL-specific events."""
        extra = kwargs.get('extra', {})
        extra['url'] = url
        extra['event_type'] = 'url_event'
        kwargs['extra'] = extra
        self.log(level, f"{message}: {url}", **kwargs)


class PerformanceFilter(logging.Filter):
    """Filter to suppress noisy third-party logs."""

    def __init__(self, suppress_modules: Optional[list] = None):
        super().__init__()
        self.suppress_modules = suppress_modules or [
            'aiohttp.access',
            'aiohttp.client',
            'urllib3.connectionpool',
        ]

    def filter(self, record: logging.LogRecord) -> bool:
        """Filter out noisy log records."""
        if any(record.name.startswith(module) for module in self.suppress_modules):
            return False

        if record.levelno == logging.DEBUG:
            if 'connection pool' in record.getMessage().lower():
                return False

        return True


def _make_formatter(config: LoggingConfig) -> logging.Formatter:
    if config.json:
        return JSONFormatter()
    return logging.Formatter(config.format)


def setup_logging(config: LoggingConfig,
                  enable_performance_filtering: bool = True) -> logging.Logger:
    """
    Setup logging for the CLI.

    Args:
        config: Logging configuration
        enable_performance_filtering: Enable filtering of noisy logs

    Returns:
        Configured root logger
    """
    log_file = Path(config.file)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.level.upper()))
    root_logger.handlers.clear()

    formatter = _make_formatter(config)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.WARNING)
    console_handler.setFormatter(formatter)
    if enable_performance_filtering:
        console_handler.addFilter(PerformanceFilter())
    root_logger.addHandler(console_handler)

    # File handler with rotation
    file_handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=50 * 1024 * 1024,  # 50MB
        backupCount=5,
        encoding='utf-8'
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    if enable_performance_filtering:
        file_handler.addFilter(PerformanceFilter())
    root_logger.addHandler(file_handler)

    error_log_file = log_file.parent / 'errors.log'
    error_handler = logging.handlers.RotatingFileHandler(
        error_log_file,
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=3,
        encoding='utf-8'
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)
    root_logger.addHandler(error_handler)

    third_party_loggers = {
        'aiohttp': logging.WARNING,
        'urllib3': logging.WARNING,
        'asyncio': logging.WARNING,
    }
    for logger_name, level in third_party_loggers.items():
        logging.getLogger(logger_name).setLevel(level)

    root_logger.info("Logging system initialized")
    root_logger.info(f"Log file: {log_file}")
    root_logger.info(f"Log level: {config.level}")

    return root_logger


def open_run_log(path: Path, config: Optional[LoggingConfig] = None) -> logging.Handler:
    """
    Attach a per-run log file to the package logger.

    The file is truncated, so it only ever holds the latest run. Raises
    OSError when the file cannot be opened.
    """
    handler = logging.FileHandler(path, mode='w', encoding='utf-8')
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(_make_formatter(config or LoggingConfig()))

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.addHandler(handler)
    if package_logger.getEffectiveLevel() > logging.INFO:
        package_logger.setLevel(logging.INFO)
    return handler


def close_run_log(handler: Optional[logging.Handler]):
    """Detach and close a handler returned by open_run_log()."""
    if handler is None:
        return
    logging.getLogger(PACKAGE_LOGGER).removeHandler(handler)
    handler.close()


def get_crawler_logger(name: str, **extra_context) -> CrawlerLogAdapter:
    """
    Get a crawler-specific logger with additional context.

    Args:
        name: Logger name
        **extra_context: Additional context fields to include in all log messages

    Returns:
        CrawlerLogAdapter instance
    """
    logger = logging.getLogger(name)
    return CrawlerLogAdapter(logger, extra_context)


def log_system_info():
    """Log system and environment information."""
    import platform
    import psutil

    logger = logging.getLogger(__name__)

    logger.info("=== SYSTEM INFORMATION ===")
    logger.info(f"Platform: {platform.platform()}")
    logger.info(f"Python version: {sys.version}")
    logger.info(f"CPU cores: {psutil.cpu_count()}")
    logger.info(f"Memory: {psutil.virtual_memory().total / 1024**3:.1f} GB")
