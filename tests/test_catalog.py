"""
Tests for docker_startup.domain.catalog (overlay catalog and container-backed connections).
"""

import threading
import time
from unittest.mock import MagicMock

import pytest

from docker_startup.domain.catalog import ContainerConnection, OverlayConnectionCatalog
from docker_startup.domain.directory import Connection, ConnectionConfiguration, InMemoryDirectory
from docker_startup.domain.errors import (
    ConfigurationError,
    ConnectionReleased,
    EndpointUnavailable,
    EngineUnavailable,
    OperationCancelled,
)
from docker_startup.domain.types import ConnectionState, ContainerSpec, Credentials, Protocol


@pytest.fixture
def stored():
    return InMemoryDirectory([
        Connection("1", "Jump host", ConnectionConfiguration("ssh", {"hostname": "jump.example.com"})),
        Connection("2", "Build server", ConnectionConfiguration("rdp", {"hostname": "build.example.com"})),
    ])


def _container_connection(orchestrator, identifier="desktop_alice", spec=None, **kwargs):
    spec = spec or ContainerSpec(image="vnc-box", internal_port=5901, protocol=Protocol.vnc)
    return ContainerConnection(
        identifier=identifier,
        name="Docker Desktop",
        spec=spec,
        container_id=identifier,
        orchestrator=orchestrator,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# ContainerConnection
# ---------------------------------------------------------------------------

class TestContainerConnection:

    def test_created_without_touching_engine(self, orchestrator, fake_engine):
        conn = _container_connection(orchestrator)

        assert conn.state is ConnectionState.UNPROVISIONED
        assert sum(fake_engine.calls.values()) == 0

    def test_connect_provisions_and_merges_endpoint(self, orchestrator, fake_engine):
        conn = _container_connection(orchestrator)

        configuration, tokens = conn.connect({"GUAC_USERNAME": "alice"})

        assert conn.state is ConnectionState.READY
        assert configuration.protocol == "vnc"
        assert configuration.parameters == {"hostname": "docker.example.com", "port": "34921"}
        assert tokens == {"GUAC_USERNAME": "alice", "DOCKER_HOST": "docker.example.com", "DOCKER_PORT": "34921"}
        assert fake_engine.calls["create"] == 1

    def test_credentials_merged(self, orchestrator):
        spec = ContainerSpec(
            image="rdp-box", internal_port=3389, protocol=Protocol.rdp,
            credentials=Credentials(username="alice", password="s3cret", domain="CORP"),
        )
        conn = _container_connection(orchestrator, spec=spec)

        configuration, _ = conn.connect()

        assert configuration.protocol == "rdp"
        assert configuration.parameters["username"] == "alice"
        assert configuration.parameters["password"] == "s3cret"
        assert configuration.parameters["domain"] == "CORP"

    def test_base_configuration_kept(self, orchestrator):
        base = ConnectionConfiguration("vnc", {"color-depth": "24", "hostname": "placeholder"})
        conn = _container_connection(orchestrator, base_configuration=base)

        configuration, _ = conn.connect()

        assert configuration.parameters == {"color-depth": "24", "hostname": "docker.example.com", "port": "34921"}
        assert base.parameters["hostname"] == "placeholder"

    def test_reconnect_reuses_container(self, orchestrator, fake_engine):
        conn = _container_connection(orchestrator)
        conn.connect()
        conn.connect()
        assert fake_engine.calls["create"] == 1

    def test_failed_provisioning_returns_to_unprovisioned(self):
        orch = MagicMock()
        orch.ensure_running.side_effect = EndpointUnavailable("desktop_alice", 5901, attempts=5)
        conn = _container_connection(orch)

        with pytest.raises(EndpointUnavailable):
            conn.connect()

        assert conn.state is ConnectionState.UNPROVISIONED

    def test_release_tears_down_what_it_provisioned(self, orchestrator, fake_engine):
        conn = _container_connection(orchestrator)
        conn.connect()

        conn.release()

        assert conn.state is ConnectionState.TORN_DOWN
        assert "desktop_alice" not in fake_engine.containers

    def test_release_without_connect_leaves_engine_alone(self, orchestrator, fake_engine):
        conn = _container_connection(orchestrator)
        conn.release()

        assert conn.state is ConnectionState.TORN_DOWN
        assert fake_engine.calls["stop"] == 0

    def test_release_twice(self, orchestrator, fake_engine):
        conn = _container_connection(orchestrator)
        conn.connect()
        conn.release()
        conn.release()
        assert fake_engine.calls["stop"] == 1

    def test_connect_after_release(self, orchestrator):
        conn = _container_connection(orchestrator)
        conn.release()
        with pytest.raises(ConnectionReleased):
            conn.connect()

    def test_context_manager_releases_on_error(self, orchestrator, fake_engine):
        with pytest.raises(RuntimeError):
            with _container_connection(orchestrator) as conn:
                conn.connect()
                raise RuntimeError("session crashed")

        assert conn.state is ConnectionState.TORN_DOWN
        assert fake_engine.containers == {}

    def test_release_during_connect(self, fake_engine):
        """Release while provisioning: engine work finishes, then the container is torn down."""
        from docker_startup.domain.orchestrator import LifecycleOrchestrator

        in_start = threading.Event()
        proceed = threading.Event()
        original_start = fake_engine.start

        def slow_start(container_id):
            in_start.set()
            proceed.wait(2)
            original_start(container_id)

        fake_engine.start = slow_start
        orch = LifecycleOrchestrator(fake_engine, sleep=lambda _: None)
        conn = _container_connection(orch)
        errors = []

        def connect():
            try:
                conn.connect()
            except Exception as e:
                errors.append(e)

        t = threading.Thread(target=connect)
        t.start()
        in_start.wait(2)
        releaser = threading.Thread(target=conn.release)
        releaser.start()
        deadline = time.monotonic() + 2
        while conn.state is not ConnectionState.TORN_DOWN and time.monotonic() < deadline:
            time.sleep(0.005)
        proceed.set()
        t.join()
        releaser.join()

        assert len(errors) == 1
        assert isinstance(errors[0], (OperationCancelled, ConnectionReleased))
        assert conn.state is ConnectionState.TORN_DOWN
        assert fake_engine.containers == {}

    def test_missing_protocol(self, orchestrator):
        spec = ContainerSpec(image="vnc-box", internal_port=5901)
        with pytest.raises(ConfigurationError):
            _container_connection(orchestrator, spec=spec)

    def test_delegate_attributes_gated(self, orchestrator):
        stored = Connection("7", "Lab", attributes={"docker-image-name": "lab-box", "docker-image-port": "22",
                                                    "max-connections": "2"})
        conn = _container_connection(orchestrator, delegate=stored, can_update=False)

        assert conn.get_attributes() == {"max-connections": "2"}
        conn.set_attributes({"docker-image-name": "evil-box", "max-connections": "5"})
        assert stored.attributes["docker-image-name"] == "lab-box"
        assert stored.attributes["max-connections"] == "5"
        assert conn.undecorated() is stored


# ---------------------------------------------------------------------------
# OverlayConnectionCatalog
# ---------------------------------------------------------------------------

class TestOverlayCatalog:

    def test_passes_through_stored(self, stored):
        catalog = OverlayConnectionCatalog(stored)
        assert catalog.get("1").name == "Jump host"
        assert catalog.get("missing") is None

    def test_overlay_precedence(self, stored, orchestrator):
        """A synthesized connection shadows a stored one with the same identifier."""
        catalog = OverlayConnectionCatalog(stored)
        synthesized = _container_connection(orchestrator, identifier="1")

        catalog.add(synthesized)

        assert catalog.get("1") is synthesized
        assert sorted(catalog.get_identifiers()) == ["1", "2"]

    def test_add_never_touches_store(self, stored, orchestrator):
        catalog = OverlayConnectionCatalog(stored)
        catalog.add(_container_connection(orchestrator))

        assert stored.get_identifiers() == {"1", "2"}
        assert catalog.identifiers() == {"1", "2", "desktop_alice"}

    def test_add_duplicate_rejected(self, stored, orchestrator):
        catalog = OverlayConnectionCatalog(stored)
        catalog.add(_container_connection(orchestrator))
        with pytest.raises(ValueError):
            catalog.add(_container_connection(orchestrator))

    def test_list_preserves_requested_order(self, stored, orchestrator):
        catalog = OverlayConnectionCatalog(stored)
        catalog.add(_container_connection(orchestrator))

        listed = catalog.list(["desktop_alice", "2", "missing", "1"])

        assert [c.identifier for c in listed] == ["desktop_alice", "2", "1"]

    def test_listing_never_starts_containers(self, stored, orchestrator, fake_engine):
        catalog = OverlayConnectionCatalog(stored)
        catalog.add(_container_connection(orchestrator))

        catalog.get_all(catalog.get_identifiers())

        assert sum(fake_engine.calls.values()) == 0

    def test_decorated_once(self, stored):
        decorate = MagicMock(side_effect=lambda c: ("wrapped", c.identifier))
        catalog = OverlayConnectionCatalog(stored, decorate=decorate)

        first = catalog.get("1")
        second = catalog.get("1")

        assert first is second
        decorate.assert_called_once()

    def test_update_overlay_only(self, stored, orchestrator):
        catalog = OverlayConnectionCatalog(stored)
        catalog.add(_container_connection(orchestrator))
        replacement = _container_connection(orchestrator)

        catalog.update(replacement)

        assert catalog.get("desktop_alice") is replacement
        assert "desktop_alice" not in stored.get_identifiers()

    def test_update_stored(self, stored):
        catalog = OverlayConnectionCatalog(stored)
        changed = Connection("2", "Build server (new)")

        catalog.update(changed)

        assert stored.get("2").name == "Build server (new)"

    def test_remove_overlay_releases(self, stored, orchestrator, fake_engine):
        catalog = OverlayConnectionCatalog(stored)
        conn = _container_connection(orchestrator)
        catalog.add(conn)
        conn.connect()

        catalog.remove("desktop_alice")

        assert conn.state is ConnectionState.TORN_DOWN
        assert catalog.get("desktop_alice") is None
        assert stored.get_identifiers() == {"1", "2"}

    def test_remove_stored(self, stored):
        catalog = OverlayConnectionCatalog(stored)
        catalog.remove("1")
        assert stored.get_identifiers() == {"2"}

    def test_release_all_attempts_everything(self, stored, orchestrator):
        catalog = OverlayConnectionCatalog(stored)
        good = _container_connection(orchestrator, identifier="desktop_alice")
        bad = MagicMock(identifier="devs_alice")
        bad.release.side_effect = EngineUnavailable("engine down", identity="devs_alice")
        catalog.add(bad)
        catalog.add(good)

        failures = catalog.release_all()

        assert list(failures) == ["devs_alice"]
        assert good.state is ConnectionState.TORN_DOWN
        assert catalog.overlay_identifiers() == set()

    def test_concurrent_add_and_list(self, stored, orchestrator):
        catalog = OverlayConnectionCatalog(stored)
        errors = []

        def adder(n):
            try:
                catalog.add(_container_connection(orchestrator, identifier=f"c{n}"))
            except Exception as e:
                errors.append(e)

        def lister():
            try:
                for _ in range(50):
                    catalog.get_all(catalog.get_identifiers())
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=adder, args=(n,)) for n in range(20)]
        threads += [threading.Thread(target=lister) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(catalog.overlay_identifiers()) == 20
