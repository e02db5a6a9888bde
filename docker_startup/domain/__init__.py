"""Domain module containing the container lifecycle logic."""

from docker_startup.domain.errors import (
    StartupError,
    ConfigurationError,
    HostUnresolvable,
    EngineError,
    NotFound,
    AlreadyExists,
    NotRunning,
    NoPublishedPort,
    EngineUnavailable,
    EngineTimeout,
    EndpointUnavailable,
    LockDisciplineError,
    OperationCancelled,
    ConnectionReleased,
    TeardownError,
)
from docker_startup.domain.types import (
    Protocol,
    ContainerRuntimeState,
    ConnectionState,
    Credentials,
    ContainerSpec,
    ResolvedEndpoint,
    container_identity,
)
from docker_startup.domain.endpoint import EndpointResolver
from docker_startup.domain.engine import ContainerEngineClient
from docker_startup.domain.locks import LockRegistry
from docker_startup.domain.orchestrator import LifecycleOrchestrator
from docker_startup.domain.attributes import (
    AttributeExtension,
    GatedEntity,
    USER_EXTENSION,
    GROUP_EXTENSION,
    CONNECTION_EXTENSION,
)
from docker_startup.domain.directory import (
    ConnectionConfiguration,
    Connection,
    User,
    UserGroup,
    InMemoryDirectory,
    DecoratingDirectory,
)
from docker_startup.domain.catalog import ContainerConnection, OverlayConnectionCatalog

__all__ = [
    "StartupError",
    "ConfigurationError",
    "HostUnresolvable",
    "EngineError",
    "NotFound",
    "AlreadyExists",
    "NotRunning",
    "NoPublishedPort",
    "EngineUnavailable",
    "EngineTimeout",
    "EndpointUnavailable",
    "LockDisciplineError",
    "OperationCancelled",
    "ConnectionReleased",
    "TeardownError",
    "Protocol",
    "ContainerRuntimeState",
    "ConnectionState",
    "Credentials",
    "ContainerSpec",
    "ResolvedEndpoint",
    "container_identity",
    "EndpointResolver",
    "ContainerEngineClient",
    "LockRegistry",
    "LifecycleOrchestrator",
    "AttributeExtension",
    "GatedEntity",
    "USER_EXTENSION",
    "GROUP_EXTENSION",
    "CONNECTION_EXTENSION",
    "ConnectionConfiguration",
    "Connection",
    "User",
    "UserGroup",
    "InMemoryDirectory",
    "DecoratingDirectory",
    "ContainerConnection",
    "OverlayConnectionCatalog",
]
