"""
Exceptions raised by the container lifecycle components.

``ConfigurationError`` is fatal and never retried. ``EngineError`` wraps a
failure talking to the container engine; the original transport/API error
is kept on ``cause`` (and chained with ``raise ... from``).
"""

from __future__ import annotations


class StartupError(Exception):
    """Base class for all Docker Startup errors."""


# =============================================================================
# Configuration
# =============================================================================

class ConfigurationError(StartupError):
    """A required setting or container attribute is missing or malformed."""


class HostUnresolvable(ConfigurationError):
    """The configured engine host cannot be resolved to an address."""

    def __init__(self, host: str, cause: Exception | None = None) -> None:
        self.host = host
        self.cause = cause
        super().__init__(f"Cannot resolve docker host '{host}'")


# =============================================================================
# Engine
# =============================================================================

class EngineError(StartupError):
    """Transport or protocol failure reported by the container engine."""

    def __init__(self, message: str, identity: str | None = None, cause: Exception | None = None) -> None:
        self.identity = identity
        self.cause = cause
        super().__init__(message)


class NotFound(EngineError):
    """The engine has no container with the given name."""


class AlreadyExists(EngineError):
    """A container with the given name already exists."""


class NotRunning(EngineError):
    """The container exists but is not running."""


class NoPublishedPort(EngineError):
    """The engine has not (yet) published a host port for the internal port."""

    def __init__(
        self,
        identity: str,
        internal_port: int,
        cause: Exception | None = None,
        message: str | None = None,
    ) -> None:
        self.internal_port = internal_port
        super().__init__(
            message or f"No host port published for {internal_port}/tcp on container {identity}",
            identity=identity,
            cause=cause,
        )


class UnusableContainer(EngineError):
    """The container is in a state it cannot be started from (e.g. being removed)."""

    def __init__(self, identity: str, status: str) -> None:
        self.status = status
        super().__init__(f"Container {identity} is {status}", identity=identity)


class EngineUnavailable(EngineError):
    """The engine could not be reached."""


class EngineTimeout(EngineError):
    """An engine call (or the wait for the identity lock) timed out."""


class EndpointUnavailable(NoPublishedPort):
    """No published port appeared before the retry budget ran out."""

    def __init__(self, identity: str, internal_port: int, attempts: int, cause: Exception | None = None) -> None:
        self.attempts = attempts
        super().__init__(
            identity,
            internal_port,
            cause=cause,
            message=f"Container {identity} published no port for {internal_port}/tcp after {attempts} attempts",
        )


class LockDisciplineError(EngineError):
    """``AlreadyExists`` was reported although the identity lock was held."""


# =============================================================================
# Lifecycle
# =============================================================================

class OperationCancelled(StartupError):
    """The caller abandoned the request before or after an engine call."""


class ConnectionReleased(StartupError):
    """A container-backed connection was used after being released."""


class TeardownError(StartupError):
    """One or more containers could not be torn down when a session closed."""

    def __init__(self, failures: dict[str, Exception]) -> None:
        self.failures = failures
        names = ", ".join(sorted(failures))
        super().__init__(f"Teardown failed for {len(failures)} container(s): {names}")
