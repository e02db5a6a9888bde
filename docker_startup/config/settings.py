"""
Constants and settings for Docker Startup.
"""

import re

# =============================================================================
# Constants
# =============================================================================

DEFAULT_DOCKER_HOST = "unix:///var/run/docker.sock"
DOCKER_CLIENT_TIMEOUT = 60

MIN_PORT = 1
MAX_PORT = 65535

MANAGED_LABEL = "docker-startup.managed"
IDENTITY_LABEL = "docker-startup.identity"

# Characters the engine accepts in container names
CONTAINER_NAME_PATTERN = re.compile(r"[^A-Za-z0-9_.-]")
MAX_CONTAINER_NAME_LENGTH = 128

# Identity parts used verbatim; anything else gets a digest suffix after a "."
PLAIN_IDENTITY_PART = re.compile(r"[A-Za-z0-9-]+")
IDENTITY_DIGEST_LENGTH = 12


def get_env(key: str, default: str | None = None, required: bool = False) -> str | None:
    """
    Retrieve a configuration value with Vault support.

    Args:
        key: Configuration key
        default: Default value
        required: Whether the value is required

    Returns:
        Configuration value

    Raises:
        ConfigurationError: If required value is missing
    """
    # Import here to avoid circular imports
    from docker_startup.config.secrets import secrets_provider
    from docker_startup.domain.errors import ConfigurationError

    value = secrets_provider.get(key, default)
    if required and not value:
        raise ConfigurationError(f"Required configuration missing: {key}")
    return value
