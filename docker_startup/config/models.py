"""
Pydantic models for Docker Startup configuration.

Mirrors the defaults dict in loader.py, providing typed access
to all docker-startup.yml settings via StartupConfig.settings().
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from docker_startup.config.settings import DEFAULT_DOCKER_HOST, DOCKER_CLIENT_TIMEOUT


class RegistryConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    url: str = ""
    username: str = ""
    password: str = ""
    email: str = ""


class EngineConfig(BaseModel):
    """Connection parameters handed to the container engine client."""

    model_config = ConfigDict(extra="ignore")

    host: str = DEFAULT_DOCKER_HOST
    verify_tls: bool = False
    cert_path: str = ""
    config_path: str = ""
    api_version: str = "auto"
    timeout: int = DOCKER_CLIENT_TIMEOUT
    # Hostname handed to guacd; derived from ``host`` when empty
    public_host: str = ""
    publish_all_ports: bool = False
    registry: RegistryConfig = RegistryConfig()


class OrchestratorConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    endpoint_retries: int = Field(default=5, ge=1)
    endpoint_backoff: float = 0.2
    endpoint_backoff_max: float = 2.0
    lock_timeout: float = 120.0
    stop_timeout: int = 10
    remove_on_teardown: bool = True
    reap_orphans_on_start: bool = False


class ConnectionsConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    connection_name: str = "Docker Desktop"


class CircuitBreakerConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    failure_threshold: int = 5
    recovery_timeout: float = 30.0


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    level: str = "INFO"
    json_format: bool = True


class StartupSettings(BaseModel):
    """Root settings model mirroring docker-startup.yml structure."""

    model_config = ConfigDict(extra="ignore")

    engine: EngineConfig = EngineConfig()
    orchestrator: OrchestratorConfig = OrchestratorConfig()
    connections: ConnectionsConfig = ConnectionsConfig()
    circuit_breaker: CircuitBreakerConfig = CircuitBreakerConfig()
    logging: LoggingConfig = LoggingConfig()
