"""
Connection catalog overlaying container-backed connections on a directory.

The catalog presents the union of the connections in the external store
and the connections synthesized for a session. Synthesized connections
live only in the overlay and are never written back. Their containers are
provisioned on the first connect, not when the catalog is listed, and torn
down when the connection is released.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Iterable

from docker_startup.domain.attributes import CONNECTION_EXTENSION, Attributes
from docker_startup.domain.directory import ConnectionConfiguration, Directory
from docker_startup.domain.errors import ConfigurationError, ConnectionReleased
from docker_startup.domain.orchestrator import LifecycleOrchestrator
from docker_startup.domain.types import ConnectionState, ContainerSpec, ResolvedEndpoint

logger = logging.getLogger("docker-startup")

HOST_TOKEN = "DOCKER_HOST"
PORT_TOKEN = "DOCKER_PORT"


class ContainerConnection:
    """
    A connection whose endpoint is a container started on demand.

    ``connect()`` makes sure the container runs (creating it on first use)
    and returns the connection configuration pointed at the container's
    published port. ``release()`` tears the container down if this object
    ever asked for it. A released connection cannot be reused.
    """

    def __init__(
        self,
        identifier: str,
        name: str,
        spec: ContainerSpec,
        container_id: str,
        orchestrator: LifecycleOrchestrator,
        base_configuration: ConnectionConfiguration | None = None,
        delegate: Any = None,
        can_update: bool = False,
    ) -> None:
        """
        Args:
            identifier: Directory identifier of the connection
            name: Display name
            spec: Container to run
            container_id: Container identity
            orchestrator: Lifecycle orchestrator shared by all sessions
            base_configuration: Protocol and parameters to extend with the
                container endpoint; defaults to the container's protocol
            delegate: Stored connection this object decorates, if any
            can_update: Whether the caller may see and edit container attributes
        """
        if base_configuration is None:
            if spec.protocol is None:
                raise ConfigurationError(f"No protocol defined for connection {identifier}")
            base_configuration = ConnectionConfiguration(spec.protocol.name)

        self.identifier = identifier
        self.name = name
        self.spec = spec
        self.container_id = container_id
        self.configuration = base_configuration
        self.can_update = can_update
        self._orchestrator = orchestrator
        self._delegate = delegate
        self._attributes: dict[str, str | None] = {}

        self._lock = threading.Lock()
        self._state = ConnectionState.UNPROVISIONED
        self._requested = False
        self._cancel = threading.Event()

    @property
    def state(self) -> ConnectionState:
        with self._lock:
            return self._state

    # ------------------------------------------------------------------
    # Attributes
    # ------------------------------------------------------------------

    def get_attributes(self) -> dict[str, str | None]:
        if self._delegate is None:
            return dict(self._attributes)
        return CONNECTION_EXTENSION.filter_for_visibility(self._delegate.get_attributes(), self.can_update)

    def set_attributes(self, attributes: Attributes) -> None:
        if self._delegate is None:
            self._attributes.update(CONNECTION_EXTENSION.filter_for_write(attributes, False))
            return
        self._delegate.set_attributes(CONNECTION_EXTENSION.filter_for_write(attributes, self.can_update))

    def undecorated(self) -> Any:
        return self if self._delegate is None else self._delegate

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self, tokens: dict[str, str] | None = None) -> tuple[ConnectionConfiguration, dict[str, str]]:
        """
        Provision the container if needed and return what to connect with.

        Args:
            tokens: Parameter tokens of the session, extended with
                ``DOCKER_HOST`` and ``DOCKER_PORT``

        Returns:
            (configuration, tokens): protocol parameters with ``hostname``,
            ``port`` and any container credentials merged in

        Raises:
            ConnectionReleased: If the connection was released
            ConfigurationError: If the container spec is incomplete
            EngineError: If the container could not be brought up
        """
        with self._lock:
            if self._state is ConnectionState.TORN_DOWN:
                raise ConnectionReleased(f"Connection {self.identifier} has been released")
            if self._state is ConnectionState.UNPROVISIONED:
                self._state = ConnectionState.PROVISIONING
            self._requested = True

        try:
            endpoint = self._orchestrator.ensure_running(self.container_id, self.spec, cancel=self._cancel)
        except Exception:
            with self._lock:
                if self._state is ConnectionState.PROVISIONING:
                    self._state = ConnectionState.UNPROVISIONED
            raise

        with self._lock:
            if self._state is ConnectionState.TORN_DOWN:
                raise ConnectionReleased(f"Connection {self.identifier} was released while connecting")
            self._state = ConnectionState.READY

        return self._configuration_for(endpoint), self._tokens_for(endpoint, tokens)

    def _configuration_for(self, endpoint: ResolvedEndpoint) -> ConnectionConfiguration:
        configuration = self.configuration.copy()
        configuration.parameters.update(endpoint.to_parameters())
        configuration.parameters.update(self.spec.credentials.to_parameters())
        return configuration

    @staticmethod
    def _tokens_for(endpoint: ResolvedEndpoint, tokens: dict[str, str] | None) -> dict[str, str]:
        merged = dict(tokens or {})
        merged[HOST_TOKEN] = endpoint.hostname
        merged[PORT_TOKEN] = endpoint.port
        return merged

    def release(self) -> None:
        """
        Release the connection, tearing its container down if it was requested.

        Safe to call more than once. A connect still in flight is allowed to
        finish its engine calls; the teardown waits for it.

        Raises:
            EngineError: If the container could not be torn down
        """
        with self._lock:
            if self._state is ConnectionState.TORN_DOWN:
                return
            self._state = ConnectionState.TORN_DOWN
            requested = self._requested
        self._cancel.set()

        if requested:
            self._orchestrator.teardown(self.container_id)
        else:
            logger.debug(f"Connection {self.identifier} released without a container")

    def __enter__(self) -> ContainerConnection:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.release()

    def __repr__(self) -> str:
        return f"ContainerConnection({self.identifier!r}, container={self.container_id!r}, state={self.state.value})"


class OverlayConnectionCatalog:
    """
    Union of an external connection directory and an in-memory overlay.

    Args:
        directory: External connection store (never written by ``add``)
        decorate: Applied once to each connection read from *directory*;
            the result is cached so a catalog hands out a single wrapper
            per stored connection
    """

    def __init__(self, directory: Directory[Any], decorate: Callable[[Any], Any] | None = None) -> None:
        self._directory = directory
        self._decorate = decorate
        self._lock = threading.RLock()
        self._internal: dict[str, Any] = {}
        self._decorated: dict[str, Any] = {}

    def _external(self, identifier: str) -> Any:
        obj = self._directory.get(identifier)
        if obj is None or self._decorate is None:
            return obj
        with self._lock:
            cached = self._decorated.get(identifier)
            if cached is None:
                cached = self._decorated[identifier] = self._decorate(obj)
            return cached

    def get(self, identifier: str) -> Any:
        """Connection *identifier*, from the overlay if present there."""
        with self._lock:
            internal = self._internal.get(identifier)
        if internal is not None:
            return internal
        return self._external(identifier)

    def get_all(self, identifiers: Iterable[str]) -> list[Any]:
        """Connections for *identifiers*, in the order requested; unknown ones are skipped."""
        found = []
        for identifier in identifiers:
            obj = self.get(identifier)
            if obj is not None:
                found.append(obj)
        return found

    list = get_all

    def get_identifiers(self) -> set[str]:
        with self._lock:
            internal = set(self._internal)
        return self._directory.get_identifiers() | internal

    identifiers = get_identifiers

    def overlay_identifiers(self) -> set[str]:
        """Identifiers of the synthesized connections only."""
        with self._lock:
            return set(self._internal)

    def add(self, connection: Any) -> None:
        """
        Add a synthesized connection to the overlay.

        Raises:
            ValueError: If the overlay already holds that identifier
        """
        with self._lock:
            if connection.identifier in self._internal:
                raise ValueError(f"Connection {connection.identifier} is already in the catalog")
            self._internal[connection.identifier] = connection
        logger.debug(f"Added connection {connection.identifier} to the overlay")

    def update(self, connection: Any) -> None:
        with self._lock:
            if connection.identifier in self._internal:
                self._internal[connection.identifier] = connection
                return
            self._decorated.pop(connection.identifier, None)
        undecorated = getattr(connection, "undecorated", None)
        self._directory.update(undecorated() if callable(undecorated) else connection)

    def remove(self, identifier: str) -> None:
        """
        Remove a connection. A synthesized one is released and dropped from
        the overlay; anything else is removed from the external store.
        """
        with self._lock:
            internal = self._internal.pop(identifier, None)
            decorated = self._decorated.pop(identifier, None) if internal is None else None
        if internal is not None:
            _release(internal)
            return
        if decorated is not None:
            _release(decorated)
        self._directory.remove(identifier)

    def release_all(self) -> dict[str, Exception]:
        """
        Release every connection handed out by this catalog.

        Every release is attempted even if some fail.

        Returns:
            Failures keyed by connection identifier
        """
        with self._lock:
            connections = list(self._internal.values()) + list(self._decorated.values())
            self._internal.clear()
            self._decorated.clear()

        failures: dict[str, Exception] = {}
        for connection in connections:
            try:
                _release(connection)
            except Exception as e:
                logger.error(f"Error releasing connection {connection.identifier}: {e}")
                failures[connection.identifier] = e
        return failures

    def __len__(self) -> int:
        return len(self.get_identifiers())


def _release(connection: Any) -> None:
    release = getattr(connection, "release", None)
    if callable(release):
        release()
