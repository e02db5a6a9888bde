"""
Container lifecycle orchestration.

``LifecycleOrchestrator`` owns the create -> start -> resolve -> stop
sequence for each container identity. Every operation on an identity runs
under that identity's lock, and the engine is re-inspected on every call:
containers can be stopped, killed or removed behind our back.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from docker_startup.config.models import OrchestratorConfig
from docker_startup.domain.engine import ContainerEngineClient
from docker_startup.domain.errors import (
    AlreadyExists,
    EndpointUnavailable,
    EngineError,
    EngineUnavailable,
    LockDisciplineError,
    NoPublishedPort,
    NotFound,
    OperationCancelled,
    StartupError,
)
from docker_startup.domain.locks import LockRegistry
from docker_startup.domain.types import ContainerRuntimeState, ContainerSpec, ResolvedEndpoint
from docker_startup.observability import (
    CONTAINERS_CREATED,
    CONTAINERS_TORN_DOWN,
    ENSURE_RUNNING_DURATION,
    ERRORS_TOTAL,
)
from docker_startup.resilience import retry

logger = logging.getLogger("docker-startup")


def _check_cancelled(cancel: threading.Event | None, identity: str, when: str) -> None:
    if cancel is not None and cancel.is_set():
        raise OperationCancelled(f"Request for container {identity} cancelled {when}")


class LifecycleOrchestrator:
    """Idempotent, per-identity serialized container lifecycle."""

    def __init__(
        self,
        engine: ContainerEngineClient,
        locks: LockRegistry | None = None,
        endpoint_retries: int = 5,
        endpoint_backoff: float = 0.2,
        endpoint_backoff_max: float = 2.0,
        lock_timeout: float | None = 120.0,
        remove_on_teardown: bool = True,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            engine: Container engine client
            locks: Lock registry shared by everything touching these identities
            endpoint_retries: Attempts at reading the published port after start
            endpoint_backoff: First delay between those attempts, doubled each time
            endpoint_backoff_max: Upper bound for one delay
            lock_timeout: Seconds to wait for an identity lock (None waits forever)
            remove_on_teardown: Remove containers after stopping them
            sleep: Sleep function (injectable for tests)
        """
        self.engine = engine
        self.locks = locks if locks is not None else LockRegistry()
        self.endpoint_retries = endpoint_retries
        self.endpoint_backoff = endpoint_backoff
        self.endpoint_backoff_max = endpoint_backoff_max
        self.lock_timeout = lock_timeout
        self.remove_on_teardown = remove_on_teardown
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        engine: ContainerEngineClient,
        config: OrchestratorConfig,
        locks: LockRegistry | None = None,
    ) -> LifecycleOrchestrator:
        return cls(
            engine,
            locks=locks,
            endpoint_retries=config.endpoint_retries,
            endpoint_backoff=config.endpoint_backoff,
            endpoint_backoff_max=config.endpoint_backoff_max,
            lock_timeout=config.lock_timeout,
            remove_on_teardown=config.remove_on_teardown,
        )

    def ensure_running(
        self,
        identity: str,
        spec: ContainerSpec,
        cancel: threading.Event | None = None,
    ) -> ResolvedEndpoint:
        """
        Make sure a container named *identity* runs and return its endpoint.

        Creates the container if absent, starts it if created or stopped,
        then reads back the published port. Repeated and concurrent calls
        for the same identity create the container only once.

        Args:
            identity: Container identity
            spec: Container to run
            cancel: Set by the caller to abandon the request; checked before
                the lock is taken and after the engine calls have finished

        Returns:
            ResolvedEndpoint of the running container

        Raises:
            ConfigurationError: If the container spec lacks an image or internal port
            EngineUnavailable: If the engine cannot be reached
            LockDisciplineError: If the container appeared while the lock was held
            EndpointUnavailable: If no port was published within the retry budget
            OperationCancelled: If *cancel* was set
        """
        spec.validate()
        _check_cancelled(cancel, identity, "before provisioning")

        started = time.monotonic()
        try:
            with self.locks.hold(identity, self.lock_timeout):
                self._bring_up(identity, spec)
                endpoint = self._resolve_endpoint(identity, spec.internal_port)
        except StartupError as e:
            ERRORS_TOTAL.labels(operation="ensure_running", error=type(e).__name__).inc()
            raise
        ENSURE_RUNNING_DURATION.observe(time.monotonic() - started)

        _check_cancelled(cancel, identity, "after provisioning")
        logger.info(f"Container {identity} reachable at {endpoint.hostname}:{endpoint.port}")
        return endpoint

    def _bring_up(self, identity: str, spec: ContainerSpec) -> None:
        """Create and/or start the container. Caller holds the identity lock."""
        state = self.engine.inspect_state(identity)

        if state is ContainerRuntimeState.UNKNOWN:
            # Creating now could duplicate the container once the engine recovers
            raise EngineUnavailable(
                f"Cannot determine state of container {identity}", identity=identity
            )

        if state is ContainerRuntimeState.ABSENT:
            try:
                container_id = self.engine.create(identity, spec)
            except AlreadyExists as e:
                raise LockDisciplineError(
                    f"Container {identity} was created by someone else while its lock was held",
                    identity=identity,
                    cause=e,
                ) from e
            CONTAINERS_CREATED.inc()
            self.engine.start(container_id)
        elif state is ContainerRuntimeState.CREATED:
            self.engine.start(identity)
        else:
            logger.debug(f"Container {identity} already running")

    def _resolve_endpoint(self, identity: str, internal_port: int) -> ResolvedEndpoint:
        """Read the published port, retrying while the engine has not bound it yet."""
        try:
            return retry(
                lambda: self.engine.inspect_endpoint(identity, internal_port),
                retry_on=(NoPublishedPort,),
                attempts=self.endpoint_retries,
                backoff=self.endpoint_backoff,
                max_backoff=self.endpoint_backoff_max,
                sleep=self._sleep,
            )
        except NoPublishedPort as e:
            raise EndpointUnavailable(identity, internal_port, self.endpoint_retries, cause=e) from e

    def teardown(self, identity: str) -> None:
        """
        Stop (and by default remove) the container named *identity*.

        An absent container is already torn down and is not an error.

        Raises:
            EngineError: If the engine fails to stop or remove the container
        """
        try:
            with self.locks.hold(identity, self.lock_timeout):
                try:
                    self.engine.stop(identity)
                except NotFound:
                    logger.debug(f"Container {identity} already gone")
                    return
                if self.remove_on_teardown:
                    try:
                        self.engine.remove(identity)
                    except NotFound:
                        pass
        except StartupError as e:
            ERRORS_TOTAL.labels(operation="teardown", error=type(e).__name__).inc()
            logger.error(f"Error tearing down container {identity}: {e}")
            raise
        CONTAINERS_TORN_DOWN.inc()
        logger.info(f"Container {identity} torn down")

    def reap_orphans(self) -> list[str]:
        """
        Tear down every managed container left over from a previous run.

        Returns:
            Identities that were torn down
        """
        reaped = []
        for identity in self.engine.list_managed():
            logger.info(f"Cleaning up orphaned container: {identity}")
            try:
                self.teardown(identity)
                reaped.append(identity)
            except EngineError as e:
                logger.warning(f"Could not clean up orphaned container {identity}: {e}")
        return reaped
