"""
Per-session decoration of the user, group and connection directories.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable

from docker_startup.domain.attributes import (
    CONNECTION_EXTENSION,
    GROUP_EXTENSION,
    USER_EXTENSION,
    AttributeExtension,
    GatedEntity,
)
from docker_startup.domain.catalog import ContainerConnection, OverlayConnectionCatalog
from docker_startup.domain.directory import ConnectionConfiguration, DecoratingDirectory, Directory
from docker_startup.domain.errors import TeardownError
from docker_startup.domain.orchestrator import LifecycleOrchestrator
from docker_startup.domain.types import container_identity

logger = logging.getLogger("docker-startup")

# can_update(kind, identifier) where kind is "user", "group" or "connection"
PermissionCheck = Callable[[str, str], bool]

DEFAULT_CONNECTION_NAME = "Docker Desktop"


class StartupUserContext:
    """
    Directories of one authenticated session, with container support.

    Users and groups are wrapped so their container attributes are only
    visible to, and writable by, callers allowed to update them. Stored
    connections carrying container attributes become container-backed.
    ``synthesize_connections()`` adds the containers configured on the user
    and on its groups. Closing the context releases every connection and
    stops their containers.
    """

    def __init__(
        self,
        username: str,
        users: Directory[Any],
        groups: Directory[Any],
        connections: Directory[Any],
        can_update: PermissionCheck,
        orchestrator: LifecycleOrchestrator,
        group_memberships: Iterable[str] = (),
        connection_name: str = DEFAULT_CONNECTION_NAME,
    ) -> None:
        self.username = username
        self.orchestrator = orchestrator
        self.group_memberships = list(group_memberships)
        self.connection_name = connection_name
        self._can_update = can_update
        self._raw_users = users
        self._raw_groups = groups

        self.users = DecoratingDirectory(users, self._gate("user", USER_EXTENSION))
        self.groups = DecoratingDirectory(groups, self._gate("group", GROUP_EXTENSION))
        self.connections = OverlayConnectionCatalog(connections, decorate=self._decorate_connection)
        self._closed = False

    def _gate(self, kind: str, extension: AttributeExtension) -> Callable[[Any], GatedEntity]:
        def decorate(entity: Any) -> GatedEntity:
            return GatedEntity(entity, extension, self._can_update(kind, entity.identifier))
        return decorate

    def _decorate_connection(self, connection: Any) -> Any:
        can_update = self._can_update("connection", connection.identifier)
        spec = CONNECTION_EXTENSION.extract(connection.get_attributes(), connection.configuration.protocol)
        if spec is None:
            return GatedEntity(connection, CONNECTION_EXTENSION, can_update)
        return ContainerConnection(
            identifier=connection.identifier,
            name=connection.name,
            spec=spec,
            container_id=container_identity(connection.name or connection.identifier, self.username),
            orchestrator=self.orchestrator,
            base_configuration=connection.configuration,
            delegate=connection,
            can_update=can_update,
        )

    def synthesize_connections(self) -> list[str]:
        """
        Add the container-backed connections configured on the user and the
        groups it belongs to. No container is started here.

        Returns:
            Identifiers of the connections added

        Raises:
            ConfigurationError: If a container attribute is malformed
        """
        added = []
        existing = self.connections.overlay_identifiers()

        user = self._raw_users.get(self.username)
        if user is not None:
            spec = USER_EXTENSION.extract(user.get_attributes())
            identity = container_identity(self.connection_name, self.username)
            if spec is not None and identity not in existing:
                self.connections.add(ContainerConnection(
                    identifier=identity,
                    name=self.connection_name,
                    spec=spec,
                    container_id=identity,
                    orchestrator=self.orchestrator,
                    base_configuration=ConnectionConfiguration(spec.protocol.name),
                ))
                added.append(identity)
                existing.add(identity)

        for group_id in self.group_memberships:
            group = self._raw_groups.get(group_id)
            if group is None:
                logger.debug(f"Group {group_id} of {self.username} not found")
                continue
            spec = GROUP_EXTENSION.extract(group.get_attributes())
            if spec is None:
                continue
            identity = container_identity(group_id, self.username)
            if identity in existing:
                logger.debug(f"Container connection {identity} already present, skipping group {group_id}")
                continue
            self.connections.add(ContainerConnection(
                identifier=identity,
                name=group_id,
                spec=spec,
                container_id=identity,
                orchestrator=self.orchestrator,
                base_configuration=ConnectionConfiguration(spec.protocol.name),
            ))
            added.append(identity)
            existing.add(identity)

        if added:
            logger.info(f"Container connections for {self.username}: {', '.join(added)}")
        return added

    def close(self) -> None:
        """
        Release every connection of the session.

        Raises:
            TeardownError: After all releases were attempted, if any failed
        """
        if self._closed:
            return
        self._closed = True
        failures = self.connections.release_all()
        if failures:
            raise TeardownError(failures)
        logger.debug(f"Session of {self.username} closed")

    def __enter__(self) -> StartupUserContext:
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        try:
            self.close()
        except TeardownError as e:
            # Do not mask the exception that ended the session
            if exc is None:
                raise
            logger.error(f"{e} while closing session of {self.username}")
