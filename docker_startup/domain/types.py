"""
Typed data structures for the container lifecycle domain.
"""

from __future__ import annotations

import enum
import hashlib
import json
import shlex
from dataclasses import dataclass, field

from docker_startup.config.settings import (
    CONTAINER_NAME_PATTERN,
    IDENTITY_DIGEST_LENGTH,
    MAX_CONTAINER_NAME_LENGTH,
    MAX_PORT,
    MIN_PORT,
    PLAIN_IDENTITY_PART,
)
from docker_startup.domain.errors import ConfigurationError


class Protocol(enum.Enum):
    """Protocols supported by Guacamole, with their default ports."""

    rdp = 3389
    ssh = 22
    telnet = 23
    vnc = 5901

    @property
    def default_port(self) -> int:
        """Default TCP port; a form hint only, never enforced."""
        return self.value

    @classmethod
    def parse(cls, name: str) -> Protocol:
        try:
            return cls[name.strip().lower()]
        except KeyError:
            raise ConfigurationError(f"Unsupported protocol: {name!r}") from None


class ContainerRuntimeState(enum.Enum):
    """Container state as observed on the engine. Never cached."""

    ABSENT = "absent"
    CREATED = "created"
    RUNNING = "running"
    UNKNOWN = "unknown"


class ConnectionState(enum.Enum):
    """Lifecycle of the container behind a synthesized connection."""

    UNPROVISIONED = "unprovisioned"
    PROVISIONING = "provisioning"
    READY = "ready"
    TORN_DOWN = "torn_down"


@dataclass(frozen=True)
class Credentials:
    username: str | None = None
    password: str | None = None
    domain: str | None = None

    def to_parameters(self) -> dict[str, str]:
        params = {
            "username": self.username,
            "password": self.password,
            "domain": self.domain,
        }
        return {k: v for k, v in params.items() if v}


def parse_port(value: str | int | None) -> int:
    """
    Parse and range-check a container port.

    Raises:
        ConfigurationError: If the port is missing, not a number or out of range
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ConfigurationError("Port is not defined")
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid number specified for port: {value!r}") from None
    if port < MIN_PORT or port > MAX_PORT:
        raise ConfigurationError(f"Port value out of range: {port}")
    return port


@dataclass(frozen=True)
class ContainerSpec:
    """What to run for a container-backed connection.

    Built per request from attribute data and never persisted.
    ``environment`` is either a string of shell-quoted ``KEY=VALUE`` pairs
    or a list of ``KEY=VALUE`` strings.
    """

    image: str
    internal_port: int | None
    protocol: Protocol | None = None
    command: str | None = None
    environment: str | list[str] | None = None
    credentials: Credentials = field(default_factory=Credentials)

    def validate(self) -> ContainerSpec:
        if not self.image:
            raise ConfigurationError("Container image is not defined")
        parse_port(self.internal_port)
        self.environment_list()
        return self

    def command_args(self) -> list[str] | None:
        if not self.command or not self.command.strip():
            return None
        return shlex.split(self.command)

    def environment_list(self) -> list[str]:
        if not self.environment:
            return []
        if isinstance(self.environment, str):
            entries = shlex.split(self.environment)
        else:
            entries = list(self.environment)
        for entry in entries:
            if "=" not in entry or entry.startswith("="):
                raise ConfigurationError(f"Invalid environment entry (expected KEY=VALUE): {entry!r}")
        return entries


@dataclass(frozen=True)
class ResolvedEndpoint:
    """Published host/port of a running container. Stale once it stops."""

    hostname: str
    port: str

    def to_parameters(self) -> dict[str, str]:
        return {"hostname": self.hostname, "port": self.port}


def container_identity(*parts: str) -> str:
    """
    Derive the container name for a logical entity.

    ``container_identity("Desktop", "alice")`` -> ``"Desktop_alice"``. Parts
    made only of letters, digits and ``-`` are joined as they are. Otherwise
    the name is sanitized, shortened if needed and suffixed with ``.`` and a
    digest of the raw parts: ``("Docker Desktop", "alice")`` ->
    ``"Docker-Desktop_alice.<digest>"``. Plain names never contain ``.``, so
    distinct parts never share a container.
    """
    if not parts or not all(parts):
        raise ConfigurationError("Container identity needs non-empty parts")
    joined = "_".join(parts)
    if (
        all(PLAIN_IDENTITY_PART.fullmatch(part) for part in parts)
        and joined[0].isalnum()
        and len(joined) <= MAX_CONTAINER_NAME_LENGTH
    ):
        return joined

    digest = hashlib.sha256(json.dumps(parts).encode()).hexdigest()[:IDENTITY_DIGEST_LENGTH]
    name = CONTAINER_NAME_PATTERN.sub("-", joined)
    if not name[0].isalnum():
        name = "c" + name
    return f"{name[:MAX_CONTAINER_NAME_LENGTH - len(digest) - 1]}.{digest}"
