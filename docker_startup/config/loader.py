"""
Configuration loader for docker-startup.yml.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from pathlib import Path

import yaml

from docker_startup.config.models import StartupSettings
from docker_startup.config.settings import DEFAULT_DOCKER_HOST, DOCKER_CLIENT_TIMEOUT, get_env

logger = logging.getLogger("docker-startup")

# Configuration paths
CONFIG_PATH = Path(os.environ.get("CONFIG_PATH", "/etc/guacamole"))
STARTUP_CONFIG_FILE = CONFIG_PATH / "docker-startup.yml"

# Environment variables understood by the Docker CLI, applied over the file
ENV_OVERRIDES = {
    "DOCKER_HOST": ("engine", "host"),
    "DOCKER_TLS_VERIFY": ("engine", "verify_tls"),
    "DOCKER_CERT_PATH": ("engine", "cert_path"),
    "DOCKER_CONFIG": ("engine", "config_path"),
    "DOCKER_API_VERSION": ("engine", "api_version"),
}


def _defaults() -> dict:
    return {
        "engine": {
            "host": DEFAULT_DOCKER_HOST,
            "verify_tls": False,
            "cert_path": "",
            "config_path": "",
            "api_version": "auto",
            "timeout": DOCKER_CLIENT_TIMEOUT,
            "public_host": "",
            "publish_all_ports": False,
            "registry": {"url": "", "username": "", "password": "", "email": ""},
        },
        "orchestrator": {
            "endpoint_retries": 5,
            "endpoint_backoff": 0.2,
            "endpoint_backoff_max": 2.0,
            "lock_timeout": 120.0,
            "stop_timeout": 10,
            "remove_on_teardown": True,
            "reap_orphans_on_start": False,
        },
        "connections": {"connection_name": "Docker Desktop"},
        "circuit_breaker": {"failure_threshold": 5, "recovery_timeout": 30.0},
        "logging": {"level": "INFO", "json_format": True},
    }


class StartupConfig:
    """Manages Docker Startup configuration from YAML file and environment."""

    _lock = threading.Lock()
    _config: dict = {}
    _typed_config: StartupSettings | None = None
    _last_load: float = 0
    _cache_duration: int = 60

    @classmethod
    def load(cls) -> dict:
        """Load configuration, re-reading the file at most once a minute."""
        now = time.time()
        if cls._config and (now - cls._last_load) < cls._cache_duration:
            return cls._config

        with cls._lock:
            # Double-check after acquiring the lock
            now = time.time()
            if cls._config and (now - cls._last_load) < cls._cache_duration:
                return cls._config
            return cls._load_locked(now)

    @classmethod
    def _load_locked(cls, now: float) -> dict:
        """Load config while holding ``_lock``. Called from :meth:`load`."""
        config = _defaults()

        if STARTUP_CONFIG_FILE.exists():
            try:
                with open(STARTUP_CONFIG_FILE, "r") as f:
                    file_config = yaml.safe_load(f) or {}
                config = cls._deep_merge(config, file_config)
                logger.info(f"Loaded startup config from {STARTUP_CONFIG_FILE}")
            except (OSError, yaml.YAMLError) as e:
                logger.error(f"Error loading startup config: {e}")
        else:
            logger.info(f"Startup config not found, using defaults: {STARTUP_CONFIG_FILE}")

        config = cls._apply_environment(config)

        cls._typed_config = StartupSettings.model_validate(config)
        cls._config = config
        cls._last_load = now
        return cls._config

    @classmethod
    def _apply_environment(cls, config: dict) -> dict:
        """Overlay DOCKER_* environment variables and registry secrets."""
        for env_key, (section, key) in ENV_OVERRIDES.items():
            value = os.environ.get(env_key)
            if value:
                config[section][key] = value

        registry = config["engine"]["registry"]
        password = get_env("docker_registry_password")
        if password:
            registry["password"] = password
        return config

    @classmethod
    def _deep_merge(cls, base: dict, override: dict) -> dict:
        """Deep merge two dictionaries."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = cls._deep_merge(result[key], value)
            else:
                result[key] = value
        return result

    @classmethod
    def get(cls, *keys: str, default: object = None) -> object:
        """Get a nested config value by successive keys."""
        config = cls.load()
        for key in keys:
            if isinstance(config, dict) and key in config:
                config = config[key]
            else:
                return default
        return config

    @classmethod
    def settings(cls) -> StartupSettings:
        """Get typed configuration as a StartupSettings instance."""
        cls.load()
        assert cls._typed_config is not None
        return cls._typed_config

    @classmethod
    def reload(cls) -> None:
        """Force reload configuration."""
        with cls._lock:
            cls._last_load = 0
            cls._config = {}
        cls.load()
