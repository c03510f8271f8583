"""
Centralized logging configuration for tsblock.
Provides structured logging with optional file output and configurable levels.
"""

import logging
import sys
from pathlib import Path
from datetime import datetime
from typing import Optional


LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL
}

ROOT_LOGGER_NAME = "tsblock"


class TSBlockLogger:
    """Centralized logger for tsblock components."""

    _loggers = {}
    _initialized = False
    _log_dir = None
    _log_file = None
    _log_level = logging.INFO

    @classmethod
    def setup(cls, log_dir: Optional[str] = None, log_level: str = "INFO", console_output: bool = False):
        """Setup logging for all tsblock components. Later calls are ignored."""
        if cls._initialized:
            return

        cls._log_level = LEVEL_MAP.get(log_level.upper(), logging.INFO)

        detailed_formatter = logging.Formatter(
            '%(asctime)s | %(name)s | %(levelname)s | %(funcName)s:%(lineno)d | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        simple_formatter = logging.Formatter(
            '%(asctime)s | %(levelname)s | %(message)s',
            datefmt='%H:%M:%S'
        )

        package_logger = logging.getLogger(ROOT_LOGGER_NAME)
        package_logger.setLevel(cls._log_level)
        package_logger.handlers.clear()

        if log_dir:
            cls._log_dir = Path(log_dir)
            cls._log_dir.mkdir(parents=True, exist_ok=True)
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            cls._log_file = cls._log_dir / f"tsblock_{timestamp}.log"
            file_handler = logging.FileHandler(cls._log_file)
            file_handler.setLevel(cls._log_level)
            file_handler.setFormatter(detailed_formatter)
            package_logger.addHandler(file_handler)

        if console_output:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(logging.WARNING)  # Only warnings/errors to console
            console_handler.setFormatter(simple_formatter)
            package_logger.addHandler(console_handler)

        if not package_logger.handlers:
            package_logger.addHandler(logging.NullHandler())

        cls._initialized = True

        init_logger = cls.get_logger("TSBlockLogger")
        init_logger.info(f"Logging initialized - Level: {log_level}, File: {cls._log_file}")

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """Get a logger for a specific component."""
        if not cls._initialized:
            cls.setup()

        if name not in cls._loggers:
            cls._loggers[name] = logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")

        return cls._loggers[name]

    @classmethod
    def set_level(cls, level: str):
        """Change logging level for all tsblock loggers."""
        new_level = LEVEL_MAP.get(level.upper(), logging.INFO)
        package_logger = logging.getLogger(ROOT_LOGGER_NAME)
        package_logger.setLevel(new_level)

        # Console stays at WARNING+
        for handler in package_logger.handlers:
            if isinstance(handler, logging.FileHandler):
                handler.setLevel(new_level)

        cls._log_level = new_level

    @classmethod
    def get_log_file(cls) -> Optional[Path]:
        """Get the current log file path, if file logging is enabled."""
        return cls._log_file

    @classmethod
    def reset(cls):
        """Drop handlers and allow setup() to run again (mainly for testing)."""
        package_logger = logging.getLogger(ROOT_LOGGER_NAME)
        for handler in list(package_logger.handlers):
            handler.close()
        package_logger.handlers.clear()
        package_logger.setLevel(logging.NOTSET)
        cls._loggers = {}
        cls._initialized = False
        cls._log_dir = None
        cls._log_file = None
        cls._log_level = logging.INFO


def get_logger(name: str) -> logging.Logger:
    """Convenience function to get a logger."""
    return TSBlockLogger.get_logger(name)
