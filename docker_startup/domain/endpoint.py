"""
Resolution of a container's externally reachable host and port.
"""

from __future__ import annotations

import logging
import socket
from typing import Any
from urllib.parse import urlparse

from docker_startup.domain.errors import HostUnresolvable, NoPublishedPort
from docker_startup.domain.types import ResolvedEndpoint

logger = logging.getLogger("docker-startup")

LOCAL_SCHEMES = ("unix", "npipe", "")


def engine_hostname(base_url: str) -> str:
    """
    Extract the host part of an engine URL.

    ``tcp://docker.example.com:2376`` -> ``docker.example.com``; local
    sockets (``unix://``, ``npipe://``) publish ports on ``localhost``.
    """
    parsed = urlparse(base_url if "://" in base_url else f"tcp://{base_url}")
    if parsed.scheme in LOCAL_SCHEMES:
        return "localhost"
    if not parsed.hostname:
        raise HostUnresolvable(base_url)
    return parsed.hostname


def resolve_engine_host(base_url: str, public_host: str | None = None) -> str:
    """
    Determine the hostname guacd should connect to, checking once that it
    resolves.

    Args:
        base_url: Engine URL from configuration
        public_host: Explicit hostname overriding the one in ``base_url``

    Returns:
        The hostname (not the address), as handed to connection parameters

    Raises:
        HostUnresolvable: If the name does not resolve
    """
    host = public_host or engine_hostname(base_url)
    try:
        socket.getaddrinfo(host, None)
    except (socket.gaierror, UnicodeError) as e:
        raise HostUnresolvable(host, cause=e) from e
    logger.debug(f"Container host: {host}")
    return host


def select_host_port(ports: dict[str, Any] | None, internal_port: int, identity: str = "") -> str:
    """
    Pick the published host port for *internal_port*.

    Args:
        ports: Raw ``NetworkSettings.Ports`` mapping, e.g.
            ``{"5901/tcp": [{"HostIp": "0.0.0.0", "HostPort": "34921"}]}``
        internal_port: Port the container listens on
        identity: Container name, for error messages

    Returns:
        Host port of the first non-empty binding

    Raises:
        NoPublishedPort: If the port has no binding (yet)
    """
    bindings = (ports or {}).get(f"{internal_port}/tcp") or []
    for binding in bindings:
        if binding and binding.get("HostPort"):
            return str(binding["HostPort"])
    raise NoPublishedPort(identity, internal_port)


class EndpointResolver:
    """Turns published-port mappings into endpoints on a fixed host."""

    def __init__(self, hostname: str) -> None:
        self.hostname = hostname

    @classmethod
    def for_engine(cls, base_url: str, public_host: str | None = None) -> EndpointResolver:
        return cls(resolve_engine_host(base_url, public_host))

    def resolve(self, ports: dict[str, Any] | None, internal_port: int, identity: str = "") -> ResolvedEndpoint:
        port = select_host_port(ports, internal_port, identity)
        logger.debug(f"Container {identity} published {internal_port}/tcp on {self.hostname}:{port}")
        return ResolvedEndpoint(hostname=self.hostname, port=port)
