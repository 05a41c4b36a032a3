"""Environment variable validation and management."""

import os
import logging
from typing import Dict

logger = logging.getLogger(__name__)

class EnvironmentError(Exception):
    """Raised when required environment variables are missing or invalid."""
    pass

def validate_environment() -> None:
    """Validate configuration environment variables.

    Raises EnvironmentError if validation fails.
    """
    required_vars: Dict[str, str] = {}

    defaults = {
        "DB_PATH": "data.db",
        "COMPETENCY_MISTAKE_THRESHOLD": "4",
        "ATTEMPTS_PAGE_SIZE": "5",
    }

    # Apply defaults before validation so dependent modules see consistent values.
    for var, value in defaults.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    optional_vars = {
        "LRS_URL": "Learning Record Store URL",
        "LRS_AUTH": "Learning Record Store authentication",
    }

    missing = []
    for var, description in required_vars.items():
        if not os.getenv(var):
            missing.append(f"{var} ({description})")

    if missing:
        raise EnvironmentError(
            f"Missing required environment variables: {', '.join(missing)}"
        )

    for var, minimum in {"COMPETENCY_MISTAKE_THRESHOLD": 0, "ATTEMPTS_PAGE_SIZE": 1}.items():
        value = get_env_int(var, int(defaults[var]))
        if value < minimum:
            raise EnvironmentError(f"{var} must be at least {minimum}, got {value}")

    for var in ("LRS_URL", "APP_BASE_URL"):
        value = os.getenv(var)
        if value and not (value.startswith("http://") or value.startswith("https://")):
            raise EnvironmentError(f"Invalid URL format for {var}: {value}")

    for var, description in optional_vars.items():
        if not os.getenv(var):
            logger.debug("Optional environment variable not set: %s (%s)", var, description)

def get_env_int(name: str, default: int) -> int:
    """Get integer value from environment variable."""
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError:
        raise EnvironmentError(f"{name} must be an integer, got {value!r}") from None
