"""
Container attributes attached to users, groups and connections.

Administrators configure a container on an entity through a fixed set of
``docker-image-*`` attributes. An ``AttributeExtension`` knows which of
those keys a kind of entity carries, turns them into a ``ContainerSpec``,
and hides them from callers without update rights on the entity.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from docker_startup.domain.types import ContainerSpec, Credentials, Protocol, parse_port

logger = logging.getLogger("docker-startup")

Attributes = Mapping[str, Optional[str]]

DOCKER_IMAGE_NAME = "docker-image-name"
DOCKER_IMAGE_PROTOCOL = "docker-image-protocol"
DOCKER_IMAGE_PORT = "docker-image-port"
DOCKER_IMAGE_CMD = "docker-image-cmd"
DOCKER_IMAGE_ENV = "docker-image-env"
DOCKER_IMAGE_USER = "docker-image-user"
DOCKER_IMAGE_PASSWORD = "docker-image-password"
DOCKER_IMAGE_DOMAIN = "docker-image-domain"


def _present(bag: Attributes, key: str) -> bool:
    value = bag.get(key)
    return value is not None and value.strip() != ""


def _value(bag: Attributes, key: str) -> str | None:
    return bag.get(key) if _present(bag, key) else None


@dataclass(frozen=True)
class AttributeExtension:
    """Container attributes recognized on one kind of entity.

    ``required`` lists the keys that must all be present for the entity to
    have a container; an entity missing any of them simply has none.
    """

    name: str
    keys: tuple[str, ...]
    required: tuple[str, ...]

    def has_container(self, bag: Attributes) -> bool:
        return all(_present(bag, key) for key in self.required)

    def extract(self, bag: Attributes, protocol: Protocol | str | None = None) -> ContainerSpec | None:
        """
        Build a ContainerSpec from an attribute bag.

        Args:
            bag: Raw (unfiltered) attributes of the entity
            protocol: Protocol supplied by the entity itself, for extensions
                that do not carry ``docker-image-protocol``

        Returns:
            ContainerSpec, or None if the entity has no container association

        Raises:
            ConfigurationError: If a present value is malformed
        """
        if not self.has_container(bag):
            return None

        raw_protocol = _value(bag, DOCKER_IMAGE_PROTOCOL) if DOCKER_IMAGE_PROTOCOL in self.keys else None
        if raw_protocol is not None:
            protocol = Protocol.parse(raw_protocol)
        elif isinstance(protocol, str):
            protocol = Protocol.parse(protocol)

        def get(key: str) -> str | None:
            return _value(bag, key) if key in self.keys else None

        spec = ContainerSpec(
            image=bag[DOCKER_IMAGE_NAME].strip(),
            internal_port=parse_port(bag[DOCKER_IMAGE_PORT]),
            protocol=protocol,
            command=get(DOCKER_IMAGE_CMD),
            environment=get(DOCKER_IMAGE_ENV),
            credentials=Credentials(
                username=get(DOCKER_IMAGE_USER),
                password=get(DOCKER_IMAGE_PASSWORD),
                domain=get(DOCKER_IMAGE_DOMAIN),
            ),
        )
        return spec.validate()

    def filter_for_visibility(self, bag: Attributes, can_update: bool) -> dict[str, str | None]:
        """
        Attributes as seen by the caller.

        Editors see every recognized key (``None`` when unset, so the field
        shows up empty); everyone else sees none of them.
        """
        visible = dict(bag)
        for key in self.keys:
            if can_update:
                visible.setdefault(key, None)
            else:
                visible.pop(key, None)
        return visible

    def filter_for_write(self, bag: Attributes, can_update: bool) -> dict[str, str | None]:
        """Drop recognized keys from a write by a caller without update rights."""
        if can_update:
            return dict(bag)
        dropped = [key for key in self.keys if key in bag]
        if dropped:
            logger.debug(f"Ignoring write to {', '.join(dropped)} without update permission")
        return {k: v for k, v in bag.items() if k not in self.keys}


USER_EXTENSION = AttributeExtension(
    name="user",
    keys=(
        DOCKER_IMAGE_NAME,
        DOCKER_IMAGE_PROTOCOL,
        DOCKER_IMAGE_PORT,
        DOCKER_IMAGE_CMD,
        DOCKER_IMAGE_ENV,
        DOCKER_IMAGE_USER,
        DOCKER_IMAGE_PASSWORD,
        DOCKER_IMAGE_DOMAIN,
    ),
    required=(DOCKER_IMAGE_NAME, DOCKER_IMAGE_PORT, DOCKER_IMAGE_PROTOCOL),
)

GROUP_EXTENSION = AttributeExtension(
    name="group",
    keys=(
        DOCKER_IMAGE_NAME,
        DOCKER_IMAGE_PROTOCOL,
        DOCKER_IMAGE_PORT,
        DOCKER_IMAGE_CMD,
        DOCKER_IMAGE_ENV,
    ),
    required=(DOCKER_IMAGE_NAME, DOCKER_IMAGE_PORT, DOCKER_IMAGE_PROTOCOL),
)

# The protocol of a connection is part of its own configuration
CONNECTION_EXTENSION = AttributeExtension(
    name="connection",
    keys=(
        DOCKER_IMAGE_NAME,
        DOCKER_IMAGE_CMD,
        DOCKER_IMAGE_ENV,
        DOCKER_IMAGE_PORT,
    ),
    required=(DOCKER_IMAGE_NAME, DOCKER_IMAGE_PORT),
)


class GatedEntity:
    """
    A directory entity whose container attributes are gated by update rights.

    Wraps anything with ``identifier``, ``get_attributes()`` and
    ``set_attributes()``; every other attribute is read from the wrapped
    entity.
    """

    def __init__(self, entity: Any, extension: AttributeExtension, can_update: bool) -> None:
        self._entity = entity
        self.extension = extension
        self.can_update = can_update

    @property
    def identifier(self) -> str:
        return self._entity.identifier

    def get_attributes(self) -> dict[str, str | None]:
        return self.extension.filter_for_visibility(self._entity.get_attributes(), self.can_update)

    def set_attributes(self, attributes: Attributes) -> None:
        self._entity.set_attributes(self.extension.filter_for_write(attributes, self.can_update))

    def container_spec(self, protocol: Protocol | str | None = None) -> ContainerSpec | None:
        """Container configured on the entity, regardless of the caller's rights."""
        return self.extension.extract(self._entity.get_attributes(), protocol)

    def undecorated(self) -> Any:
        return self._entity

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        return getattr(self._entity, name)

    def __repr__(self) -> str:
        return f"GatedEntity({self._entity!r}, extension={self.extension.name}, can_update={self.can_update})"
