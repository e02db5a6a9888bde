"""Configuration module for Docker Startup."""

from docker_startup.config.settings import (
    DEFAULT_DOCKER_HOST,
    DOCKER_CLIENT_TIMEOUT,
    MANAGED_LABEL,
    IDENTITY_LABEL,
    get_env,
)
from docker_startup.config.secrets import secrets_provider, SecretsProvider
from docker_startup.config.loader import StartupConfig, CONFIG_PATH, STARTUP_CONFIG_FILE
from docker_startup.config.models import StartupSettings

__all__ = [
    "DEFAULT_DOCKER_HOST",
    "DOCKER_CLIENT_TIMEOUT",
    "MANAGED_LABEL",
    "IDENTITY_LABEL",
    "get_env",
    "secrets_provider",
    "SecretsProvider",
    "StartupConfig",
    "StartupSettings",
    "CONFIG_PATH",
    "STARTUP_CONFIG_FILE",
]
