import logging
import os
import sys
from datetime import datetime
from typing import Dict

# Defaults, overridden by the [logging] section of config.toml during setup
GLOBAL_LOG_LEVEL = logging.INFO
GLOBAL_LOG_DIR = "./logs"
GLOBAL_MODULE_LEVELS = {
    # tracker related
    "core": logging.INFO,
    "leetcode": logging.INFO,
    "database": logging.INFO,
    "scheduler": logging.INFO,
    "sync": logging.INFO,
    "config": logging.INFO,
    # third party packages related
    "aiohttp": logging.WARNING,
    "apscheduler": logging.WARNING,
    "tenacity": logging.WARNING,
}


def _resolve_log_level(value: object, default: int) -> int:
    if isinstance(value, int):
        return value
    if value is None:
        return default
    return getattr(logging, str(value).upper(), default)


class ColoredFormatter(logging.Formatter):
    """Console formatter that colors the level name and adds ``file:line``."""

    COLORS = {
        "DEBUG": "\033[32m",
        "INFO": "\033[36m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[31;47m",
        "RESET": "\033[0m",
    }

    def format(self, record):
        record.fileloc = f"{record.filename}:{record.lineno}"

        levelname = record.levelname
        if levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{self.COLORS['RESET']}"

        result = super().format(record)

        # Other handlers must see the plain level name
        record.levelname = levelname

        return result


class PlainFormatter(logging.Formatter):
    def format(self, record):
        record.fileloc = f"{record.filename}:{record.lineno}"
        return super().format(record)


class Logger:
    """Creates named loggers and initializes the logging system on first use."""

    _loggers: Dict[str, logging.Logger] = {}
    _initialized = False

    @staticmethod
    def setup_logger(name: str) -> logging.Logger:
        """
        Create or return an existing logger with global configuration.

        Args:
            name (str): Logger name

        Returns:
            logging.Logger: The configured logger instance
        """
        if name in Logger._loggers:
            return Logger._loggers[name]

        if not Logger._initialized:
            Logger._setup_logging_system()

        logger = logging.getLogger(name)
        Logger._loggers[name] = logger

        return logger

    @staticmethod
    def _setup_logging_system():
        """
        Configure the root logger from the [logging] config section.

        A missing or unreadable config falls back to the module defaults so
        that library code and tests can log without a config.toml.
        """
        global GLOBAL_LOG_LEVEL, GLOBAL_LOG_DIR, GLOBAL_MODULE_LEVELS
        try:
            # Imported here to avoid a circular import at module load
            from utils.config import get_config

            config = get_config()
            logger_config = config.get_section("logging")
            GLOBAL_LOG_LEVEL = _resolve_log_level(config.log_level, logging.INFO)
            GLOBAL_LOG_DIR = logger_config.get("directory", "./logs")
            GLOBAL_MODULE_LEVELS.update(
                {
                    module: _resolve_log_level(level, logging.INFO)
                    for module, level in logger_config.get("modules", {}).items()
                }
            )
        except (FileNotFoundError, ValueError, OSError) as exc:
            sys.stderr.write(f"Warning: Failed to load logging config from config.toml, using defaults. Error: {exc}\n")

        os.makedirs(GLOBAL_LOG_DIR, exist_ok=True)

        stream_formatter = ColoredFormatter(
            fmt="%(asctime)s | %(levelname)-17s | %(fileloc)-28s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        file_formatter = PlainFormatter(
            fmt="%(asctime)s | %(levelname)-8s | %(fileloc)-28s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(stream_formatter)

        # One file per day
        current_date = datetime.now().strftime("%Y-%m-%d")
        file_handler = logging.FileHandler(filename=f"{GLOBAL_LOG_DIR}/{current_date}.log", encoding="utf-8")
        file_handler.setFormatter(file_formatter)

        root_logger = logging.getLogger()
        root_logger.setLevel(GLOBAL_LOG_LEVEL)
        if root_logger.hasHandlers():
            root_logger.handlers.clear()
        root_logger.addHandler(stream_handler)
        root_logger.addHandler(file_handler)

        for module_name, module_level in GLOBAL_MODULE_LEVELS.items():
            logging.getLogger(module_name).setLevel(module_level)

        Logger._initialized = True
        logging.info("Logging system initialized")


def get_core_logger() -> logging.Logger:
    """Get the core logger - for the CLI entry points."""
    return Logger.setup_logger("core")


def get_leetcode_logger() -> logging.Logger:
    """Get the LeetCode API logger - for leetcode.py."""
    return Logger.setup_logger("leetcode")


def get_database_logger() -> logging.Logger:
    """Get the database operations logger - for database.py and tracker/storage.py."""
    return Logger.setup_logger("database")


def get_scheduler_logger() -> logging.Logger:
    """Get the scheduler logger - for tracker/scheduler.py."""
    return Logger.setup_logger("scheduler")


def get_sync_logger() -> logging.Logger:
    """Get the sync pipeline logger - for the solution viewer, syncer and tracking."""
    return Logger.setup_logger("sync")
