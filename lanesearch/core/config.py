"""Configuration management system for lanesearch.

This module provides centralized configuration loading from multiple sources:
- YAML/TOML configuration files
- Environment variables (.env)
- Default values

Includes validation to ensure configuration values are correct.
"""

from __future__ import annotations

import copy
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

try:
    import tomllib  # Python 3.11+
except ImportError:
    import tomli as tomllib  # type: ignore

import yaml
from dotenv import load_dotenv

SOURCE_IDS = ("youtube", "twitter", "heye", "kgirls", "kgirls-issue", "selca", "tiktok")

DEFAULTS: Dict[str, Any] = {
    "logging": {
        "level": "INFO",
        "file": "logs/lanesearch.log",
        "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        "json": False,
    },
    "search": {
        "page_size": 6,
        "fetch_count": 20,
        "timeout_seconds": 10,
        "language": "ko",
    },
    "cache": {"backend": "sqlite", "path": "lanesearch.db", "ttl_hours": 24},
    "api_keys": {
        "youtube_api_key": "",
        "scrapebadger_api_key": "",
        "rapidapi_key": "",
    },
    "sources": {
        "youtube": {
            "enabled": True,
            "timeout_seconds": 10,
            "base_url": "https://www.googleapis.com/youtube/v3/search",
            "options": {"order": "relevance", "period": "month", "query_suffix": ""},
        },
        "twitter": {
            "enabled": True,
            "timeout_seconds": 15,
            "base_url": "https://scrapebadger.com/v1/twitter/tweets/advanced_search",
            "options": {"search_type": "top"},
        },
        "heye": {"enabled": True, "timeout_seconds": 10, "base_url": "", "options": {}},
        "kgirls": {"enabled": True, "timeout_seconds": 10, "base_url": "", "options": {}},
        "kgirls-issue": {"enabled": True, "timeout_seconds": 10, "base_url": "", "options": {}},
        "selca": {"enabled": True, "timeout_seconds": 15, "base_url": "", "options": {}},
        "tiktok": {
            "enabled": True,
            "timeout_seconds": 15,
            "base_url": "https://tiktok-scraper7.p.rapidapi.com/feed/search",
            "options": {"region": "kr"},
        },
    },
    "aliases": {},
}

# source_id -> api_keys entry it needs
SOURCE_API_KEYS = {
    "youtube": "youtube_api_key",
    "twitter": "scrapebadger_api_key",
    "tiktok": "rapidapi_key",
}


@dataclass
class ValidationResult:
    """Result of configuration validation."""

    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    missing_api_keys: List[str] = field(default_factory=list)

    def add_error(self, message: str) -> None:
        """Add an error message."""
        self.errors.append(message)
        self.is_valid = False

    def add_warning(self, message: str) -> None:
        """Add a warning message."""
        self.warnings.append(message)

    def __str__(self) -> str:
        """Format validation result as string."""
        lines = []
        if self.errors:
            lines.append("Errors:")
            lines.extend(f"  - {e}" for e in self.errors)
        if self.warnings:
            lines.append("Warnings:")
            lines.extend(f"  - {w}" for w in self.warnings)
        if self.missing_api_keys:
            lines.append("Missing API keys (sources will report 'not configured'):")
            lines.extend(f"  - {k}" for k in self.missing_api_keys)
        if not lines:
            return "Configuration is valid."
        return "\n".join(lines)


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _env_name(key: str) -> str:
    return key.upper().replace(".", "_").replace("-", "_")


def _coerce(raw: str, like: Any) -> Any:
    """Convert an environment string to the type of the configured value."""
    if isinstance(like, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(like, int):
        try:
            return int(raw)
        except ValueError:
            return raw
    if isinstance(like, float):
        try:
            return float(raw)
        except ValueError:
            return raw
    return raw


class Config:
    """Configuration manager for lanesearch."""

    def __init__(self, config_file: Optional[str] = None, load_env: bool = True):
        """
        Initialize configuration.

        Args:
            config_file: Path to YAML or TOML config file (optional)
            load_env: Whether to read a ``.env`` file from the working directory
        """
        self.logger = logging.getLogger(self.__class__.__name__)
        self._config: Dict[str, Any] = {}
        self._config_file = config_file

        # Load .env file if it exists
        env_path = Path(".env")
        if load_env and env_path.exists():
            load_dotenv(env_path)
            self.logger.info("Loaded environment variables from .env")

        if config_file:
            self._load_config_file(config_file)
        else:
            self._auto_load_config()

        self._load_defaults()

    def _load_config_file(self, config_file: str) -> None:
        """Load configuration from YAML or TOML file."""
        config_path = Path(config_file)

        if not config_path.exists():
            self.logger.warning("Config file not found: %s", config_file)
            return

        try:
            with open(config_path, "rb") as f:
                if config_file.endswith((".yaml", ".yml")):
                    self._config = yaml.safe_load(f) or {}
                    self.logger.info("Loaded YAML config from %s", config_file)
                elif config_file.endswith(".toml"):
                    self._config = tomllib.load(f)
                    self.logger.info("Loaded TOML config from %s", config_file)
                else:
                    self.logger.error("Unsupported config format: %s", config_file)
        except (OSError, yaml.YAMLError, tomllib.TOMLDecodeError) as e:
            self.logger.error("Failed to load config file %s: %s", config_file, e)

    def _auto_load_config(self) -> None:
        """Automatically find and load config file."""
        config_dir = Path("config")

        candidates = [
            config_dir / "lanesearch.yaml",
            config_dir / "lanesearch.yml",
            config_dir / "lanesearch.toml",
            Path("lanesearch.yaml"),
            Path("lanesearch.yml"),
            Path("lanesearch.toml"),
        ]

        for candidate in candidates:
            if candidate.exists():
                self._load_config_file(str(candidate))
                return

        self.logger.debug("No config file found, using defaults and environment variables")

    def _load_defaults(self) -> None:
        """Merge default values under the loaded config (loaded values win)."""
        self._config = _deep_merge(DEFAULTS, self._config)

    def _lookup(self, key: str) -> Any:
        value: Any = self._config
        for k in key.split("."):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return None
        return value

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value.

        Supports dot notation for nested keys: "logging.level".  An
        environment variable named after the key ("LOGGING_LEVEL",
        "SOURCES_KGIRLS_ISSUE_ENABLED") takes precedence and is converted to
        the type of the configured value.

        Args:
            key: Configuration key (supports dot notation)
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        configured = self._lookup(key)

        env_value = os.getenv(_env_name(key))
        if env_value is not None:
            return _coerce(env_value, configured if configured is not None else default)

        return default if configured is None else configured

    def set(self, key: str, value: Any) -> None:
        """
        Set configuration value at runtime.

        Args:
            key: Configuration key (supports dot notation)
            value: Value to set
        """
        keys = key.split(".")
        config = self._config

        for k in keys[:-1]:
            if k not in config or not isinstance(config[k], dict):
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value
        self.logger.debug("Set config %s = %r", key, value)

    def get_section(self, section: str) -> Dict[str, Any]:
        """
        Get entire configuration section.

        Args:
            section: Section name (e.g., "logging", "api_keys")

        Returns:
            Dictionary with section configuration
        """
        return self._config.get(section, {})

    def get_api_key(self, name: str) -> str:
        """
        Get an API key.

        Args:
            name: Key name as in the ``api_keys`` section ("youtube_api_key",
                "rapidapi_key") or a bare service name ("youtube")

        Returns:
            API key or empty string if not configured
        """
        names = [name] if name.endswith(("_key", "_token")) else [f"{name}_api_key", f"{name}_key"]
        for candidate in names:
            env_value = os.getenv(candidate.upper())
            if env_value:
                return env_value
            configured = self._lookup(f"api_keys.{candidate}")
            if configured:
                return str(configured)
        return ""

    def is_source_enabled(self, source_id: str) -> bool:
        """
        Check if a source is enabled for searching.

        Args:
            source_id: Source identifier (e.g., "youtube", "kgirls-issue")

        Returns:
            True if source is enabled
        """
        return bool(self.get(f"sources.{source_id}.enabled", False))

    def get_source_config(self, source_id: str) -> Dict[str, Any]:
        """
        Get configuration for a specific source, environment overrides applied.

        Args:
            source_id: Source identifier

        Returns:
            Source configuration dictionary
        """
        section = copy.deepcopy(self.get_section("sources").get(source_id, {}))
        for key in ("enabled", "timeout_seconds", "base_url"):
            if key in section:
                section[key] = self.get(f"sources.{source_id}.{key}")
        return section

    @property
    def enabled_sources(self) -> List[str]:
        return [s for s in self.get_section("sources") if self.is_source_enabled(s)]

    def to_dict(self) -> Dict[str, Any]:
        """
        Get all configuration as dictionary.

        Returns:
            Complete configuration dictionary
        """
        return copy.deepcopy(self._config)

    def reload(self, config_file: Optional[str] = None) -> None:
        """
        Reload configuration from file.

        Args:
            config_file: Path to config file (optional, uses original if not provided)
        """
        self._config = {}
        config_file = config_file or self._config_file
        if config_file:
            self._config_file = config_file
            self._load_config_file(config_file)
        else:
            self._auto_load_config()
        self._load_defaults()
        self.logger.info("Configuration reloaded")

    def validate(self) -> ValidationResult:
        """
        Validate the configuration.

        Checks:
        - Value types and ranges are correct
        - Paths are valid
        - Enabled sources have their credentials and endpoints

        Returns:
            ValidationResult with errors and warnings
        """
        result = ValidationResult(is_valid=True)

        log_level = str(self.get("logging.level", "INFO"))
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if log_level.upper() not in valid_levels:
            result.add_error(
                f"Invalid logging level '{log_level}'. Must be one of: {', '.join(valid_levels)}"
            )

        log_file = self.get("logging.file", "")
        if log_file:
            log_dir = Path(log_file).parent
            if not log_dir.exists():
                result.add_warning(f"Log directory does not exist: {log_dir}")

        page_size = self.get("search.page_size", 6)
        if not isinstance(page_size, int) or isinstance(page_size, bool) or page_size < 1:
            result.add_error("search.page_size must be a positive integer")

        fetch_count = self.get("search.fetch_count", 20)
        if not isinstance(fetch_count, int) or isinstance(fetch_count, bool) or fetch_count < 1:
            result.add_error("search.fetch_count must be a positive integer")
        elif isinstance(page_size, int) and fetch_count < page_size:
            result.add_warning(
                f"search.fetch_count={fetch_count} is below search.page_size={page_size}, "
                "every load more will hit the network"
            )

        timeout = self.get("search.timeout_seconds", 10)
        if not isinstance(timeout, (int, float)) or timeout <= 0:
            result.add_error("search.timeout_seconds must be a positive number")

        backend = self.get("cache.backend", "sqlite")
        if backend not in ("sqlite", "memory"):
            result.add_error(f"cache.backend must be 'sqlite' or 'memory', got '{backend}'")

        ttl_hours = self.get("cache.ttl_hours", 24)
        if not isinstance(ttl_hours, (int, float)) or ttl_hours <= 0:
            result.add_error("cache.ttl_hours must be a positive number")

        db_path = self.get("cache.path", "lanesearch.db")
        if backend == "sqlite" and db_path:
            db_dir = Path(db_path).parent
            if str(db_dir) != "." and not db_dir.exists():
                result.add_warning(f"Cache directory does not exist: {db_dir}")

        for source_id in self.get_section("sources"):
            if source_id not in SOURCE_IDS:
                result.add_warning(f"Unknown source '{source_id}' in sources section")
                continue
            source = self.get_source_config(source_id)
            source_timeout = source.get("timeout_seconds", timeout)
            if not isinstance(source_timeout, (int, float)) or source_timeout <= 0:
                result.add_error(f"sources.{source_id}.timeout_seconds must be a positive number")
            if not source.get("enabled"):
                continue
            key_name = SOURCE_API_KEYS.get(source_id)
            if key_name and not self.get_api_key(key_name):
                result.missing_api_keys.append(f"{key_name}: required by {source_id}")
            if not source.get("base_url"):
                result.add_warning(f"sources.{source_id}.base_url is not set, {source_id} is disabled")

        if not result.is_valid:
            for error in result.errors:
                self.logger.error("Config validation error: %s", error)
        for warning in result.warnings:
            self.logger.warning("Config validation warning: %s", warning)

        return result

    def validate_and_raise(self) -> None:
        """
        Validate configuration and raise exception if invalid.

        Raises:
            ValueError: If configuration is invalid
        """
        result = self.validate()
        if not result.is_valid:
            raise ValueError(f"Invalid configuration:\n{result}")


# Global configuration instance
_global_config: Optional[Config] = None


def get_config(config_file: Optional[str] = None) -> Config:
    """
    Get global configuration instance.

    Args:
        config_file: Path to config file (only used on first call)

    Returns:
        Config instance
    """
    global _global_config

    if _global_config is None:
        _global_config = Config(config_file)

    return _global_config


def reload_config(config_file: Optional[str] = None) -> None:
    """
    Reload global configuration.

    Args:
        config_file: Path to config file (optional)
    """
    global _global_config

    if _global_config is not None:
        _global_config.reload(config_file)
    else:
        _global_config = Config(config_file)
