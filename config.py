#!/usr/bin/env python3
"""
Configuration management for the Feed Reader.

This module centralizes all configuration loading, validation, and management.
It handles environment variables, validation, and provides a clean interface
for accessing configuration values throughout the application.
"""

from os import environ, path, access, R_OK
from typing import Dict, Any, List
from logging import getLogger, basicConfig, StreamHandler, INFO, DEBUG, WARNING, ERROR
import sys
import yaml
from dotenv import load_dotenv

DEFAULT_FEED_COLOR = "#3b82f6"


def _setup_global_logger():
    """Setup a single global logger for the entire application.

    This function configures the logging system for the feed reader. It sets up
    a unified logging configuration that can be controlled via environment variables:

    Environment Variables:
        LOG_LEVEL: Set log level (DEBUG, INFO, WARNING, ERROR) - defaults to INFO
        LOG_TIMESTAMPS: Enable/disable timestamps in logs (true/false) - defaults to true

    The logger outputs to stdout with line buffering for real-time logging.
    All modules should use get_logger() to create module-specific loggers that inherit this configuration.
    """
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

    # Keep feedparser/aiohttp chatter out of INFO output
    for name in ("aiohttp.access", "aiohttp.client", "readability.readability"):
        getLogger(name).setLevel(WARNING)

    return getLogger("FeedReader")


def get_logger(name: str):
    """Get a module-specific logger with the unified configuration.

    Args:
        name: The logger name (e.g., "fetcher", "reconciler", "models")

    Returns:
        A logger instance named "FeedReader.{name}"

    Example:
        logger = get_logger("mymodule")
        logger.info("This will appear as 'FeedReader.mymodule - INFO - ...'")
    """
    return getLogger(f"FeedReader.{name}")


# Create single global logger instance
logger = _setup_global_logger()


class Config:
    """Configuration manager for the Feed Reader.

    Values are loaded from, in increasing order of precedence:
    1. Environment variables
    2. .env file (if present)
    3. YAML secrets file (if SECRETS_FILE environment variable is set)

    Subscriptions, folders and filter keywords to seed are read from feeds.yaml:
    ```yaml
    folders:
      - Tech
    feeds:
      lwn:
        title: "LWN.net"
        url: "https://lwn.net/headlines/rss"
        folder: Tech
        fetch_content: true
    filter_keywords:
      - sponsored
    ```
    """

    def __init__(self):
        """Initialize configuration with environment variables and validation."""
        self._load_environment()
        self._validate_and_set_config()
        self._load_feed_sources()

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

    def _validate_and_set_config(self):
        """Validate and set all configuration values."""
        base_dir = path.dirname(path.abspath(__file__))

        # Basic configuration
        self.DATABASE_PATH = environ.get("DATABASE_PATH", path.join(base_dir, "feeds.db"))
        self.USER_AGENT = environ.get("USER_AGENT", "Mozilla/5.0 (compatible; FeedReader/1.0)")
        self.DEFAULT_FEED_COLOR = environ.get("DEFAULT_FEED_COLOR", DEFAULT_FEED_COLOR)

        # HTTP request configuration
        self.MAX_RETRIES = self._validate_positive_int("MAX_RETRIES", 3, 0)
        self.RETRY_DELAY_BASE = self._validate_positive_float("RETRY_DELAY_BASE", 1.0, 0.1)
        self.HTTP_TIMEOUT = self._validate_positive_int("HTTP_TIMEOUT", 30, 5)
        self.MAX_REDIRECTS = self._validate_positive_int("MAX_REDIRECTS", 5, 0)

        # Full-text extraction
        self.CONTENT_FETCH_TIMEOUT = self._validate_positive_int("CONTENT_FETCH_TIMEOUT", 15, 1)
        self.CONTENT_FETCH_DELAY_MS = self._validate_positive_int("CONTENT_FETCH_DELAY_MS", 500, 0)

        # Retention window, shared by ingestion and the periodic purge
        self.MAX_ARTICLE_AGE_DAYS = self._validate_positive_int("MAX_ARTICLE_AGE_DAYS", 3, 1)

        # Scheduler configuration
        self.REFRESH_INTERVAL_MINUTES = self._validate_positive_int("REFRESH_INTERVAL_MINUTES", 30, 1)
        self.SCHEDULER_RUN_IMMEDIATELY = environ.get("SCHEDULER_RUN_IMMEDIATELY", "false").lower() == "true"

        # File paths
        self.SCHEMA_FILE_PATH = path.join(base_dir, "schema.sql")
        self.SCHEMA_FILE_SIZE_LIMIT_MB = self._validate_positive_int("SCHEMA_FILE_SIZE_LIMIT_MB", 10, 1)
        self.FEEDS_CONFIG_PATH = environ.get("FEEDS_CONFIG_PATH", path.join(base_dir, "feeds.yaml"))

    def _load_secrets_file(self):
        """Load environment variable overrides from a YAML secrets file.

        Expected YAML formats (both supported):
        ```yaml
        # Preferred: top-level mapping
        USER_AGENT: "MyReader/2.0"

        # Nested under `environment`
        environment:
          USER_AGENT: "MyReader/2.0"
        ```
        """
        secrets_file_path = environ.get("SECRETS_FILE")
        if not secrets_file_path:
            logger.debug("SECRETS_FILE not set; relying on environment/.env")
            return

        secrets_config = self._safe_read_yaml(secrets_file_path, 2 * 1024 * 1024, 'secrets')
        if not secrets_config:
            return
        if not isinstance(secrets_config, dict):
            logger.warning(f"Secrets file {secrets_file_path} must be a YAML mapping at the top level")
            return

        env_vars = secrets_config
        if isinstance(secrets_config.get('environment'), dict):
            env_vars = secrets_config['environment']

        secrets_loaded = 0
        for key, value in env_vars.items():
            if isinstance(key, str) and value is not None:
                environ[key] = str(value)
                secrets_loaded += 1
            else:
                logger.warning(f"Skipping invalid environment variable in secrets file: {key}={value}")

        logger.info(f"Loaded {secrets_loaded} environment variables from secrets file {secrets_file_path}")

    def _safe_read_yaml(self, file_path: str, max_size: int, kind: str) -> Any | None:
        """Safely read a YAML file with consistent validation.

        Args:
            file_path: Path to the YAML file
            max_size: Maximum allowed file size in bytes
            kind: Short label for logging context (e.g. 'secrets', 'feeds')

        Returns:
            Parsed YAML (mapping/list/primitive) or None on failure.
        """
        try:
            if not path.isfile(file_path):
                logger.debug(f"{kind.capitalize()} file not found at {file_path}")
                return None
            if not access(file_path, R_OK):
                logger.error(f"No read permission for {kind} file at {file_path}")
                return None
            size = path.getsize(file_path)
            if size > max_size:
                logger.error(f"{kind.capitalize()} file too large: {size} bytes (limit: {max_size} bytes)")
                return None
            with open(file_path, 'r') as f:
                data = yaml.safe_load(f)
            if not data:
                logger.warning(f"Empty or invalid YAML in {kind} file {file_path}")
                return None
            return data
        except yaml.YAMLError as e:
            logger.error(f"Error parsing YAML in {kind} file {file_path}: {e}")
        except OSError as e:
            logger.error(f"Error loading {kind} file {file_path}: {e}")
        return None

    def _load_feed_sources(self) -> None:
        """Populate FEED_SUBSCRIPTIONS, FEED_FOLDERS and FILTER_KEYWORDS from feeds.yaml.

        Any failure results in empty values; a broken feeds.yaml never stops startup.
        """
        self.FEED_SUBSCRIPTIONS: Dict[str, Dict[str, Any]] = {}
        self.FEED_FOLDERS: List[str] = []
        self.FILTER_KEYWORDS: List[str] = []

        feeds_path = self.FEEDS_CONFIG_PATH
        config_data = self._safe_read_yaml(feeds_path, 5 * 1024 * 1024, 'feeds')
        if not isinstance(config_data, dict):
            return

        folders_section = config_data.get('folders') or []
        if isinstance(folders_section, list):
            self.FEED_FOLDERS = [str(f).strip() for f in folders_section if str(f).strip()]
        else:
            logger.warning(f"'folders' in {feeds_path} must be a list; ignoring")

        feeds_section = config_data.get('feeds') or {}
        if isinstance(feeds_section, dict):
            for feed_slug, feed_cfg in feeds_section.items():
                if isinstance(feed_cfg, dict) and feed_cfg.get('url'):
                    self.FEED_SUBSCRIPTIONS[str(feed_slug)] = {
                        'title': str(feed_cfg.get('title') or feed_slug),
                        'url': str(feed_cfg['url']).strip(),
                        'color': feed_cfg.get('color'),
                        'fetch_content': bool(feed_cfg.get('fetch_content', False)),
                        'folder': feed_cfg.get('folder'),
                    }
                    logger.debug(f"Loaded feed {feed_slug}: {feed_cfg['url']}")
                else:
                    logger.warning(f"Skipping invalid feed configuration for '{feed_slug}': {feed_cfg}")
        else:
            logger.warning(f"'feeds' in {feeds_path} must be a mapping; ignoring")

        keywords_section = config_data.get('filter_keywords') or []
        if isinstance(keywords_section, list):
            self.FILTER_KEYWORDS = [str(k).strip().lower() for k in keywords_section if str(k).strip()]
        else:
            logger.warning(f"'filter_keywords' in {feeds_path} must be a list; ignoring")

        logger.info(
            "Loaded %d feeds, %d folders, %d filter keywords from %s",
            len(self.FEED_SUBSCRIPTIONS),
            len(self.FEED_FOLDERS),
            len(self.FILTER_KEYWORDS),
            feeds_path,
        )

    def get_config_summary(self) -> Dict[str, Any]:
        """Get a summary of current configuration for logging/debugging."""
        return {
            "database_path": self.DATABASE_PATH,
            "max_article_age_days": self.MAX_ARTICLE_AGE_DAYS,
            "refresh_interval_minutes": self.REFRESH_INTERVAL_MINUTES,
            "http_timeout": self.HTTP_TIMEOUT,
            "max_retries": self.MAX_RETRIES,
            "content_fetch_timeout": self.CONTENT_FETCH_TIMEOUT,
            "content_fetch_delay_ms": self.CONTENT_FETCH_DELAY_MS,
            "configured_feeds": len(self.FEED_SUBSCRIPTIONS),
            "secrets_file_configured": bool(environ.get("SECRETS_FILE")),
        }


# Global configuration instance
config = Config()
