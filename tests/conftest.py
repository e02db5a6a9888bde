"""
Shared pytest fixtures for the docker-startup test suite.
"""

import os
import threading
import time
from collections import Counter
from unittest.mock import MagicMock

import pytest

# ---------------------------------------------------------------------------
# Environment stubs: must be set BEFORE any docker_startup module is
# imported so that the module-level SecretsProvider and CONFIG_PATH don't
# pick up the host's settings.
# ---------------------------------------------------------------------------

os.environ.setdefault("CONFIG_PATH", "/tmp/docker-startup-tests/config")
os.environ.pop("VAULT_ADDR", None)

# Import docker_startup modules AFTER env vars are set
from docker_startup.config.models import OrchestratorConfig, StartupSettings  # noqa: E402
from docker_startup.domain.errors import AlreadyExists, NoPublishedPort, NotFound, NotRunning  # noqa: E402
from docker_startup.domain.locks import LockRegistry  # noqa: E402
from docker_startup.domain.orchestrator import LifecycleOrchestrator  # noqa: E402
from docker_startup.domain.types import (  # noqa: E402
    ContainerRuntimeState,
    ContainerSpec,
    Protocol,
    ResolvedEndpoint,
)


# ---------------------------------------------------------------------------
# Fake container engine
# ---------------------------------------------------------------------------

class FakeEngine:
    """In-memory stand-in for ContainerEngineClient.

    Containers get host ports 34921, 34922, ... in start order. Engine
    calls are counted in ``calls``; ``create_delay`` widens the window in
    which concurrent callers could race; ``unpublished_reads`` makes the
    first N endpoint reads report no published port.
    """

    def __init__(self, hostname="docker.example.com", create_delay=0.0, unpublished_reads=0):
        self.hostname = hostname
        self.create_delay = create_delay
        self.unpublished_reads = unpublished_reads
        self.containers = {}
        self.calls = Counter()
        self.state_override = None
        self._next_port = 34921
        self._lock = threading.Lock()

    def _count(self, operation):
        with self._lock:
            self.calls[operation] += 1

    def exists(self, identity):
        self._count("exists")
        return identity in self.containers

    def create(self, identity, spec):
        self._count("create")
        spec.validate()
        if self.create_delay:
            time.sleep(self.create_delay)
        with self._lock:
            if identity in self.containers:
                raise AlreadyExists(f"Container {identity} already exists", identity=identity)
            self.containers[identity] = {"status": "created", "port": None, "spec": spec}
        return identity

    def start(self, container_id):
        self._count("start")
        with self._lock:
            container = self.containers.get(container_id)
            if container is None:
                raise NotFound(f"Container {container_id} does not exist", identity=container_id)
            container["status"] = "running"
            container["port"] = str(self._next_port)
            self._next_port += 1

    def inspect_state(self, identity):
        self._count("inspect_state")
        if self.state_override is not None:
            return self.state_override
        container = self.containers.get(identity)
        if container is None:
            return ContainerRuntimeState.ABSENT
        if container["status"] == "running":
            return ContainerRuntimeState.RUNNING
        return ContainerRuntimeState.CREATED

    def inspect_endpoint(self, identity, internal_port):
        self._count("inspect_endpoint")
        container = self.containers.get(identity)
        if container is None:
            raise NotFound(f"Container {identity} does not exist", identity=identity)
        if container["status"] != "running":
            raise NotRunning(f"Container {identity} is {container['status']}", identity=identity)
        with self._lock:
            if self.unpublished_reads > 0:
                self.unpublished_reads -= 1
                raise NoPublishedPort(identity, internal_port)
        return ResolvedEndpoint(hostname=self.hostname, port=container["port"])

    def stop(self, identity):
        self._count("stop")
        container = self.containers.get(identity)
        if container is None:
            raise NotFound(f"Container {identity} does not exist", identity=identity)
        container["status"] = "exited"
        container["port"] = None

    def remove(self, identity):
        self._count("remove")
        with self._lock:
            if self.containers.pop(identity, None) is None:
                raise NotFound(f"Container {identity} does not exist", identity=identity)

    def list_managed(self):
        self._count("list")
        return sorted(self.containers)

    def close(self):
        self._count("close")


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def orchestrator(fake_engine):
    """LifecycleOrchestrator over the fake engine, without real sleeps."""
    return LifecycleOrchestrator(fake_engine, locks=LockRegistry(), sleep=lambda _: None)


@pytest.fixture
def vnc_spec():
    return ContainerSpec(image="vnc-box", internal_port=5901, protocol=Protocol.vnc)


# ---------------------------------------------------------------------------
# Docker SDK mock
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_docker_client():
    """MagicMock docker.DockerClient with a running container publishing 5901."""
    container = MagicMock()
    container.id = "3f1c2a9b8d7e6f5a4b3c2d1e"
    container.name = "desktop_alice"
    container.status = "running"
    container.attrs = {
        "NetworkSettings": {
            "Ports": {"5901/tcp": [{"HostIp": "0.0.0.0", "HostPort": "34921"}]},
        },
    }

    client = MagicMock()
    client.containers.get.return_value = container
    client.containers.create.return_value = container
    client.containers.list.return_value = [container]
    return client


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

@pytest.fixture
def startup_settings():
    """Typed settings for a TCP engine, without touching the config file."""
    return StartupSettings(
        engine={"host": "tcp://docker.example.com:2376", "public_host": "docker.example.com"},
        orchestrator=OrchestratorConfig(endpoint_backoff=0.0, lock_timeout=5.0),
    )
