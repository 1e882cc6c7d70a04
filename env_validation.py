"""Environment variable validation and management."""

import logging
import os
from typing import Dict

logger = logging.getLogger(__name__)

_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


class ConfigurationError(Exception):
    """Raised when required environment variables are missing or invalid."""
    pass


def validate_environment() -> Dict[str, str]:
    """Apply defaults and validate the service configuration.

    Returns the effective settings. Raises ConfigurationError if validation fails.
    """
    defaults = {
        "DB_PATH": "data.db",
        "DB_MAX_CONNECTIONS": "10",
        "LOG_LEVEL": "INFO",
    }

    # Apply defaults before validation so dependent modules see consistent values.
    for var, value in defaults.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    max_connections = get_env_int("DB_MAX_CONNECTIONS", 10)
    if max_connections < 1:
        raise ConfigurationError(f"DB_MAX_CONNECTIONS must be a positive integer, got {max_connections}")

    log_level = os.environ["LOG_LEVEL"].upper()
    if log_level not in _LOG_LEVELS:
        raise ConfigurationError(
            f"Invalid LOG_LEVEL '{os.environ['LOG_LEVEL']}'. Must be one of: {', '.join(sorted(_LOG_LEVELS))}"
        )

    db_dir = os.path.dirname(os.path.abspath(os.environ["DB_PATH"]))
    if not os.path.isdir(db_dir):
        raise ConfigurationError(f"Directory for DB_PATH does not exist: {db_dir}")

    return {
        "DB_PATH": os.environ["DB_PATH"],
        "DB_MAX_CONNECTIONS": str(max_connections),
        "LOG_LEVEL": log_level,
    }


def get_env_int(name: str, default: int) -> int:
    """Get integer value from environment variable."""
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got '{value}'") from None
