"""
Docker implementation of the container engine client.

A thin synchronous facade over the Docker API: every call is a blocking
round trip, wrapped in a circuit breaker and translated into the
``EngineError`` hierarchy. The client never caches container state.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Callable, TypeVar

import docker
import docker.errors
import docker.tls
import requests

from docker_startup.config.models import EngineConfig
from docker_startup.config.settings import IDENTITY_LABEL, MANAGED_LABEL
from docker_startup.domain.endpoint import EndpointResolver
from docker_startup.domain.errors import (
    AlreadyExists,
    ConfigurationError,
    EngineError,
    EngineTimeout,
    EngineUnavailable,
    NotFound,
    NotRunning,
    UnusableContainer,
)
from docker_startup.domain.types import ContainerRuntimeState, ContainerSpec, ResolvedEndpoint
from docker_startup.observability import ENGINE_CALLS
from docker_startup.resilience import CircuitBreaker, CircuitOpenError

logger = logging.getLogger("docker-startup")

T = TypeVar("T")

RUNNING_STATUSES = {"running", "restarting"}
STARTABLE_STATUSES = {"created", "exited", "paused"}
# Removed on inspection so the identity can be recreated
DEAD_STATUSES = {"dead"}


def build_docker_client(config: EngineConfig) -> docker.DockerClient:
    """
    Build a DockerClient from the ``engine`` settings.

    TLS material is read from ``cert_path`` (``ca.pem``, ``cert.pem``,
    ``key.pem``, the Docker CLI layout) when TLS verification is enabled
    or a certificate directory is configured.
    """
    tls = None
    if config.verify_tls or config.cert_path:
        cert_path = config.cert_path or os.path.expanduser("~/.docker")
        tls = docker.tls.TLSConfig(
            client_cert=(os.path.join(cert_path, "cert.pem"), os.path.join(cert_path, "key.pem")),
            ca_cert=os.path.join(cert_path, "ca.pem") if config.verify_tls else None,
            verify=config.verify_tls,
        )
    return docker.DockerClient(
        base_url=config.host,
        version=config.api_version or "auto",
        timeout=config.timeout,
        tls=tls,
    )


class ContainerEngineClient:
    """Docker-backed engine client addressed by container name (identity)."""

    def __init__(
        self,
        client: docker.DockerClient,
        resolver: EndpointResolver,
        circuit_breaker: CircuitBreaker | None = None,
        publish_all_ports: bool = False,
        stop_timeout: int = 10,
    ) -> None:
        """
        Initialize the engine client.

        Args:
            client: Docker SDK client
            resolver: Resolver for published endpoints on the engine host
            circuit_breaker: Optional pre-built CircuitBreaker (defaults to a new one)
            publish_all_ports: Publish every exposed port instead of only the declared one
            stop_timeout: Seconds the engine waits before killing a stopping container
        """
        self._client = client
        self.resolver = resolver
        self.publish_all_ports = publish_all_ports
        self.stop_timeout = stop_timeout
        # API errors are answers from a reachable engine; only transport failures trip the circuit
        self._circuit = circuit_breaker or CircuitBreaker(
            name="docker", ignored=(docker.errors.APIError,)
        )
        if publish_all_ports:
            logger.warning("publish_all_ports is enabled: every exposed container port will be published")

    @classmethod
    def from_settings(cls, config: EngineConfig, circuit_breaker: CircuitBreaker | None = None, stop_timeout: int = 10) -> ContainerEngineClient:
        """Build a client, resolver and registry login from the ``engine`` settings."""
        resolver = EndpointResolver.for_engine(config.host, config.public_host or None)
        engine = cls(
            build_docker_client(config),
            resolver,
            circuit_breaker=circuit_breaker,
            publish_all_ports=config.publish_all_ports,
            stop_timeout=stop_timeout,
        )
        if config.registry.username:
            engine.login(config)
        return engine

    @property
    def client(self) -> docker.DockerClient:
        """Get the Docker client."""
        return self._client

    # ------------------------------------------------------------------
    # Call plumbing
    # ------------------------------------------------------------------

    def _call(self, operation: str, identity: str, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run an engine call through the circuit breaker, translating errors."""
        try:
            result = self._circuit.call(func, *args, **kwargs)
        except CircuitOpenError as e:
            ENGINE_CALLS.labels(operation=operation, outcome="circuit_open").inc()
            raise EngineUnavailable(str(e), identity=identity, cause=e) from e
        except docker.errors.NotFound as e:
            ENGINE_CALLS.labels(operation=operation, outcome="not_found").inc()
            raise NotFound(f"Container {identity} does not exist", identity=identity, cause=e) from e
        except requests.exceptions.Timeout as e:
            ENGINE_CALLS.labels(operation=operation, outcome="timeout").inc()
            raise EngineTimeout(f"Docker {operation} timed out for {identity}", identity=identity, cause=e) from e
        except requests.exceptions.ConnectionError as e:
            ENGINE_CALLS.labels(operation=operation, outcome="unavailable").inc()
            raise EngineUnavailable(f"Docker engine unreachable during {operation}: {e}", identity=identity, cause=e) from e
        except docker.errors.DockerException as e:
            ENGINE_CALLS.labels(operation=operation, outcome="error").inc()
            raise EngineError(f"Docker {operation} failed for {identity}: {e}", identity=identity, cause=e) from e
        ENGINE_CALLS.labels(operation=operation, outcome="ok").inc()
        return result

    def _get(self, identity: str, operation: str = "inspect") -> Any:
        return self._call(operation, identity, self._client.containers.get, identity)

    # ------------------------------------------------------------------
    # Engine operations
    # ------------------------------------------------------------------

    def login(self, config: EngineConfig) -> None:
        """Authenticate against the configured image registry."""
        registry = config.registry
        self._call(
            "login",
            registry.url or "registry",
            self._client.login,
            username=registry.username,
            password=registry.password or None,
            email=registry.email or None,
            registry=registry.url or None,
            dockercfg_path=config.config_path or None,
        )
        logger.info(f"Logged in to registry {registry.url or 'docker.io'} as {registry.username}")

    def exists(self, identity: str) -> bool:
        """Check whether the engine knows a container named *identity*."""
        logger.debug(f"Checking if container {identity} exists")
        try:
            container = self._get(identity)
        except NotFound:
            logger.debug(f"Container {identity} not found")
            return False
        return container.id is not None

    def create(self, identity: str, spec: ContainerSpec) -> str:
        """
        Create (but do not start) a container for *spec* named *identity*.

        Only ``spec.internal_port`` is published, on an ephemeral host port,
        unless ``publish_all_ports`` is enabled.

        Returns:
            Container ID

        Raises:
            AlreadyExists: If a container with this name exists
            ConfigurationError: If the image cannot be found
        """
        spec.validate()
        logger.debug(f"Creating container {identity} from image {spec.image}")

        if self.exists(identity):
            raise AlreadyExists(f"Container {identity} already exists", identity=identity)

        kwargs: dict[str, Any] = {
            "name": identity,
            "command": spec.command_args(),
            "environment": spec.environment_list() or None,
            "ports": {f"{spec.internal_port}/tcp": None},
            "publish_all_ports": self.publish_all_ports,
            "labels": {MANAGED_LABEL: "true", IDENTITY_LABEL: identity},
        }
        try:
            container = self._create(identity, spec.image, kwargs)
        except NotFound as e:
            if not isinstance(e.cause, docker.errors.ImageNotFound):
                raise
            self._pull(identity, spec.image)
            container = self._create(identity, spec.image, kwargs)

        logger.info(f"Container {identity} created from {spec.image} ({container.id[:12]})")
        return container.id

    def _create(self, identity: str, image: str, kwargs: dict[str, Any]) -> Any:
        try:
            return self._call("create", identity, self._client.containers.create, image, **kwargs)
        except EngineError as e:
            cause = e.cause
            if isinstance(cause, docker.errors.APIError) and cause.status_code == 409:
                raise AlreadyExists(f"Container {identity} already exists", identity=identity, cause=cause) from e
            raise

    def _pull(self, identity: str, image: str) -> None:
        """
        Pull *image* for the container *identity*.

        Raises:
            ConfigurationError: If the registry does not know the image
        """
        logger.info(f"Image {image} not present on engine, pulling")
        try:
            self._call("pull", identity, self._client.images.pull, image)
        except NotFound as e:
            raise ConfigurationError(f"Image {image} not found for container {identity}: {e.cause}") from e
        except (EngineUnavailable, EngineTimeout):
            raise
        except EngineError as e:
            raise EngineError(f"Pulling image {image} failed for container {identity}: {e.cause}", identity=identity, cause=e.cause) from e

    def start(self, container_id: str) -> None:
        """
        Start a created or stopped container (unpausing a paused one).

        Raises:
            NotFound: If the container does not exist
        """
        logger.debug(f"Starting container {container_id}")
        container = self._get(container_id, "start")
        if container.status == "paused":
            self._call("start", container_id, container.unpause)
        else:
            self._call("start", container_id, container.start)
        logger.info(f"Container {container_id} started")

    def inspect_state(self, identity: str) -> ContainerRuntimeState:
        """
        Read the container state from the engine.

        A dead container is removed and reported as ABSENT. UNKNOWN means
        the engine could not be reached.

        Raises:
            UnusableContainer: If the container is being removed or in a
                status it cannot be started from
        """
        try:
            container = self._get(identity)
        except NotFound:
            return ContainerRuntimeState.ABSENT
        except EngineUnavailable as e:
            logger.warning(f"Docker engine unavailable inspecting {identity}: {e}")
            return ContainerRuntimeState.UNKNOWN

        status = container.status
        logger.debug(f"Container {identity} in state {status}")
        if status in RUNNING_STATUSES:
            return ContainerRuntimeState.RUNNING
        if status in STARTABLE_STATUSES:
            return ContainerRuntimeState.CREATED
        if status in DEAD_STATUSES:
            logger.warning(f"Container {identity} is dead, removing it")
            try:
                self._call("remove", identity, container.remove, force=True)
            except NotFound:
                pass
            return ContainerRuntimeState.ABSENT
        raise UnusableContainer(identity, status)

    def inspect_endpoint(self, identity: str, internal_port: int) -> ResolvedEndpoint:
        """
        Read the published host/port for *internal_port*.

        Raises:
            NotFound: If the container does not exist
            NotRunning: If the container is not running
            NoPublishedPort: If no host port is bound (yet)
        """
        logger.debug(f"Retrieving parameters for container {identity}")
        container = self._get(identity)
        if container.status not in RUNNING_STATUSES:
            raise NotRunning(f"Container {identity} is {container.status}", identity=identity)
        ports = container.attrs.get("NetworkSettings", {}).get("Ports")
        return self.resolver.resolve(ports, internal_port, identity)

    def stop(self, identity: str) -> None:
        """
        Stop a container. Stopping an already-stopped container is a no-op.

        Raises:
            NotFound: If the container does not exist
        """
        logger.debug(f"Stopping container {identity}")
        container = self._get(identity, "stop")
        self._call("stop", identity, container.stop, timeout=self.stop_timeout)
        logger.info(f"Container {identity} stopped")

    def remove(self, identity: str) -> None:
        """
        Remove a container.

        Raises:
            NotFound: If the container does not exist
        """
        container = self._get(identity, "remove")
        self._call("remove", identity, container.remove, force=True)
        logger.info(f"Container {identity} removed")

    def list_managed(self) -> list[str]:
        """Names of all containers created by this subsystem, running or not."""
        containers = self._call(
            "list",
            "*",
            self._client.containers.list,
            all=True,
            filters={"label": f"{MANAGED_LABEL}=true"},
        )
        return [c.name for c in containers]

    def close(self) -> None:
        """Close the underlying Docker client."""
        self._client.close()
        logger.debug("Docker client closed")
