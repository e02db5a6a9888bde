"""
Lightweight DI container for the docker-startup services.

Owns the engine client for its whole lifetime: the client is created on
first use and closed by ``shutdown()`` (or on leaving a ``with`` block),
never by garbage collection.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any, Iterable

if TYPE_CHECKING:
    from docker_startup.config.models import StartupSettings
    from docker_startup.domain.directory import Directory
    from docker_startup.domain.engine import ContainerEngineClient
    from docker_startup.domain.locks import LockRegistry
    from docker_startup.domain.orchestrator import LifecycleOrchestrator
    from docker_startup.resilience import CircuitBreaker
    from docker_startup.services.user_context import PermissionCheck, StartupUserContext

logger = logging.getLogger("docker-startup")


class ServiceContainer:
    """Lightweight service container holding shared service instances."""

    def __init__(self, settings: StartupSettings | None = None) -> None:
        self._settings = settings
        self._lock = threading.RLock()
        self._circuit_breaker: CircuitBreaker | None = None
        self._engine: ContainerEngineClient | None = None
        self._locks: LockRegistry | None = None
        self._orchestrator: LifecycleOrchestrator | None = None
        self._closed = False

    @property
    def settings(self) -> StartupSettings:
        if self._settings is None:
            from docker_startup.config.loader import StartupConfig

            self._settings = StartupConfig.settings()
        return self._settings

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        if self._circuit_breaker is None:
            import docker.errors

            from docker_startup.resilience import CircuitBreaker

            cb = self.settings.circuit_breaker
            self._circuit_breaker = CircuitBreaker(
                name="docker",
                failure_threshold=cb.failure_threshold,
                recovery_timeout=cb.recovery_timeout,
                ignored=(docker.errors.APIError,),
            )
        return self._circuit_breaker

    @property
    def engine(self) -> ContainerEngineClient:
        with self._lock:
            if self._closed:
                raise RuntimeError("ServiceContainer has been shut down")
            if self._engine is None:
                from docker_startup.domain.engine import ContainerEngineClient

                self._engine = ContainerEngineClient.from_settings(
                    self.settings.engine,
                    circuit_breaker=self.circuit_breaker,
                    stop_timeout=self.settings.orchestrator.stop_timeout,
                )
                logger.info(f"Connected to docker engine at {self.settings.engine.host}")
            return self._engine

    @property
    def locks(self) -> LockRegistry:
        with self._lock:
            if self._locks is None:
                from docker_startup.domain.locks import LockRegistry

                self._locks = LockRegistry()
            return self._locks

    @property
    def orchestrator(self) -> LifecycleOrchestrator:
        with self._lock:
            if self._orchestrator is None:
                from docker_startup.domain.orchestrator import LifecycleOrchestrator

                self._orchestrator = LifecycleOrchestrator.from_settings(
                    self.engine,
                    self.settings.orchestrator,
                    locks=self.locks,
                )
                if self.settings.orchestrator.reap_orphans_on_start:
                    self._orchestrator.reap_orphans()
            return self._orchestrator

    def open_session(
        self,
        username: str,
        users: Directory[Any],
        groups: Directory[Any],
        connections: Directory[Any],
        can_update: PermissionCheck,
        group_memberships: Iterable[str] = (),
    ) -> StartupUserContext:
        """
        Build the decorated directories for one authenticated session.

        The caller closes the returned context (or uses it as a context
        manager) when the session ends.
        """
        from docker_startup.services.user_context import StartupUserContext

        return StartupUserContext(
            username,
            users,
            groups,
            connections,
            can_update,
            self.orchestrator,
            group_memberships=group_memberships,
            connection_name=self.settings.connections.connection_name,
        )

    def shutdown(self) -> None:
        """Close the engine client. Containers of open sessions are left alone."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            engine, self._engine = self._engine, None
            self._orchestrator = None
        if engine is not None:
            engine.close()

    def __enter__(self) -> ServiceContainer:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.shutdown()


# Set once at startup by init_services()
_global_container: ServiceContainer | None = None


def init_services(settings: StartupSettings | None = None) -> ServiceContainer:
    """Configure logging and create the process-wide service container."""
    from docker_startup.observability import setup_logging

    global _global_container
    container = ServiceContainer(settings)
    setup_logging(container.settings.logging.level, json_format=container.settings.logging.json_format)
    _global_container = container
    return _global_container


def get_services() -> ServiceContainer:
    """Return the process-wide service container."""
    if _global_container is not None:
        return _global_container
    raise RuntimeError("ServiceContainer not initialized")
