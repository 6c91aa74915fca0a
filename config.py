#!/usr/bin/env python3
"""
Configuration management for feedhose.

Sets up the process-wide logger and loads every tunable (paths, concurrency
bounds, scraping mode, HTTP behaviour) from the environment, a .env file and
an optional YAML overrides file.
"""

from os import environ, path, access, R_OK
from typing import Dict, Any
from logging import getLogger, basicConfig, StreamHandler, INFO, DEBUG, WARNING, ERROR
import sys
import yaml
from dotenv import load_dotenv

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/133.0.0.0 Safari/537.36"
)
SECRETS_FILE_SIZE_LIMIT = 2 * 1024 * 1024


def _setup_global_logger():
    """Setup a single global logger for the entire application.

    Environment Variables:
        LOG_LEVEL: Set log level (DEBUG, INFO, WARNING, ERROR) - defaults to INFO
        LOG_TIMESTAMPS: Enable/disable timestamps in logs (true/false) - defaults to true

    The logger outputs to stdout with line buffering so long unattended runs
    can be tailed in real time. All modules should use get_logger() to create
    module-specific loggers that inherit this configuration.
    """
    environ.setdefault("PYTHONUNBUFFERED", "1")

    level_str = environ.get("LOG_LEVEL", "INFO").upper()
    level_map = {
        "DEBUG": DEBUG,
        "INFO": INFO,
        "WARNING": WARNING,
        "ERROR": ERROR
    }
    level = level_map.get(level_str, INFO)

    show_timestamps = environ.get("LOG_TIMESTAMPS", "true").lower() != "false"
    if show_timestamps:
        log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    else:
        log_format = '%(name)s - %(levelname)s - %(message)s'

    basicConfig(
        level=level,
        format=log_format,
        handlers=[StreamHandler(sys.stdout)],
        force=True  # Force reconfiguration if already configured
    )

    try:
        sys.stdout.reconfigure(line_buffering=True)
        sys.stderr.reconfigure(line_buffering=True)
    except AttributeError:
        # Captured streams (e.g. under pytest) may not support reconfigure
        pass

    # Keep chatty client libraries at WARNING unless explicitly overridden
    noisy_level = level_map.get(environ.get("LIBRARY_LOG_LEVEL", "WARNING").upper(), WARNING)
    for name in ("aiohttp", "readability", "readability.readability", "azure", "azure.core"):
        getLogger(name).setLevel(noisy_level)

    return getLogger("FeedHose")


def get_logger(name: str):
    """Get a module-specific logger with the unified configuration.

    Args:
        name: The logger name (e.g., "fetcher", "pipeline", "metrics")

    Returns:
        A logger named "FeedHose.{name}"

    Example:
        logger = get_logger("mymodule")
        logger.info("This will appear as 'FeedHose.mymodule - INFO - ...'")
    """
    return getLogger(f"FeedHose.{name}")


# Create single global logger instance
logger = _setup_global_logger()


class Config:
    """Configuration manager for feedhose.

    Values are loaded from, in increasing order of precedence:
    1. Environment variables
    2. .env file next to this module (if present)
    3. YAML secrets/overrides file (if SECRETS_FILE environment variable is set)

    Example overrides file:
    ```yaml
    DATABASE_PATH: "/srv/feedhose/feedhose.db"
    FEEDS_LIST_PATH: "/srv/feedhose/feeds.txt"
    FEED_CONCURRENCY: 50
    ```
    """

    def __init__(self):
        """Initialize configuration with environment variables and validation."""
        self._load_environment()
        self._validate_and_set_config()

    def _load_environment(self):
        """Load environment variables from .env file and secrets file if present."""
        dotenv_path = path.join(path.dirname(path.abspath(__file__)), '.env')
        if path.exists(dotenv_path):
            load_dotenv(dotenv_path)
            logger.info(f"Loaded environment variables from {dotenv_path}")

        self._load_secrets_file()

    def _validate_positive_int(self, env_var: str, default: int, min_val: int = 1) -> int:
        """Validate and parse a positive integer environment variable."""
        try:
            value = int(environ.get(env_var, str(default)))
            if value < min_val:
                logger.warning(f"{env_var} must be at least {min_val}, using default {default}")
                return default
            return value
        except (ValueError, TypeError):
            logger.warning(f"Invalid {env_var} value, using default {default}")
            return default

    def _validate_positive_float(self, env_var: str, default: float, min_val: float = 0.1) -> float:
        """Validate and parse a positive float environment variable."""
        try:
            value = float(environ.get(env_var, str(default)))
            if value < min_val:
                logger.warning(f"{env_var} must be at least {min_val}, using default {default}")
                return default
            return value
        except (ValueError, TypeError):
            logger.warning(f"Invalid {env_var} value, using default {default}")
            return default

    def _validate_bool(self, env_var: str, default: bool) -> bool:
        """Parse a true/false environment variable."""
        raw = environ.get(env_var)
        if raw is None:
            return default
        value = raw.strip().lower()
        if value in ("1", "true", "yes", "on"):
            return True
        if value in ("0", "false", "no", "off"):
            return False
        logger.warning(f"Invalid {env_var} value {raw!r}, using default {default}")
        return default

    def _validate_and_set_config(self):
        """Validate and set all configuration values."""
        base_dir = path.dirname(path.abspath(__file__))

        # Storage and inputs
        self.DATABASE_PATH = environ.get("DATABASE_PATH", "feedhose.db")
        self.FEEDS_LIST_PATH = environ.get("FEEDS_LIST_PATH", "feeds.txt")
        self.SCHEMA_FILE_PATH = path.join(base_dir, "schema.sql")
        self.SCHEMA_FILE_SIZE_LIMIT_MB = self._validate_positive_int("SCHEMA_FILE_SIZE_LIMIT_MB", 10, 1)

        # Resume a long feed list past an offset
        self.SKIP_FEEDS = self._validate_positive_int("SKIP_FEEDS", 0, 0)

        # Concurrency bounds: feeds in flight, and scrapes in flight per feed
        self.FEED_CONCURRENCY = self._validate_positive_int("FEED_CONCURRENCY", 50, 1)
        self.ARTICLE_CONCURRENCY = self._validate_positive_int("ARTICLE_CONCURRENCY", 10, 1)

        # Scraping mode stores full articles instead of bare URLs
        self.SCRAPE_ARTICLES = self._validate_bool("SCRAPE_ARTICLES", False)
        self.MAX_ARTICLE_LENGTH = self._validate_positive_int("MAX_ARTICLE_LENGTH", 8000, 100)
        self.WRAP_WIDTH = self._validate_positive_int("WRAP_WIDTH", 80, 20)

        # Metrics reporter
        self.REPORT_INTERVAL_SECONDS = self._validate_positive_float("REPORT_INTERVAL_SECONDS", 5.0, 0.1)

        # HTTP request configuration
        self.USER_AGENT = environ.get("USER_AGENT", DEFAULT_USER_AGENT)
        self.HTTP_TIMEOUT = self._validate_positive_int("HTTP_TIMEOUT", 30, 1)
        self.MAX_RETRIES = self._validate_positive_int("MAX_RETRIES", 2, 0)
        self.RETRY_DELAY_BASE = self._validate_positive_float("RETRY_DELAY_BASE", 1.0, 0.0)
        self.MAX_REDIRECTS = self._validate_positive_int("MAX_REDIRECTS", 5, 0)

    def _load_secrets_file(self):
        """Copy overrides from the YAML file named by SECRETS_FILE into the environment.

        The file holds a mapping of variable names to values, either at the top
        level or under an `environment` key. A missing, oversized or malformed
        file is logged and ignored.
        """
        secrets_file_path = environ.get("SECRETS_FILE")
        if not secrets_file_path:
            logger.debug("SECRETS_FILE not set; relying on environment/.env")
            return

        overrides = self._read_overrides(secrets_file_path)
        if not overrides:
            return

        applied = 0
        for key, value in overrides.items():
            if not isinstance(key, str) or value is None:
                logger.warning(f"Ignoring override {key!r} in {secrets_file_path}")
                continue
            environ[key] = str(value)
            applied += 1

        logger.info(f"Applied {applied} overrides from {secrets_file_path}")

    def _read_overrides(self, file_path: str) -> Dict[str, Any]:
        if not path.isfile(file_path) or not access(file_path, R_OK):
            logger.warning(f"Secrets file {file_path} is missing or unreadable")
            return {}
        if path.getsize(file_path) > SECRETS_FILE_SIZE_LIMIT:
            logger.error(f"Secrets file {file_path} exceeds {SECRETS_FILE_SIZE_LIMIT} bytes, ignoring it")
            return {}

        try:
            with open(file_path, 'r') as f:
                data = yaml.safe_load(f)
        except (yaml.YAMLError, OSError) as e:
            logger.error(f"Could not load secrets file {file_path}: {e}")
            return {}

        if isinstance(data, dict) and isinstance(data.get('environment'), dict):
            data = data['environment']
        if not isinstance(data, dict):
            logger.warning(f"Secrets file {file_path} must contain a YAML mapping")
            return {}
        return data

    def get_config_summary(self) -> Dict[str, Any]:
        """Get a summary of current configuration for logging/debugging."""
        return {
            "database_path": self.DATABASE_PATH,
            "feeds_list_path": self.FEEDS_LIST_PATH,
            "skip_feeds": self.SKIP_FEEDS,
            "feed_concurrency": self.FEED_CONCURRENCY,
            "article_concurrency": self.ARTICLE_CONCURRENCY,
            "scrape_articles": self.SCRAPE_ARTICLES,
            "max_article_length": self.MAX_ARTICLE_LENGTH,
            "report_interval_seconds": self.REPORT_INTERVAL_SECONDS,
            "http_timeout": self.HTTP_TIMEOUT,
            "max_retries": self.MAX_RETRIES,
            "secrets_file_configured": bool(environ.get("SECRETS_FILE")),
        }


# Global configuration instance
config = Config()
