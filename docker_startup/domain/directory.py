"""
Directory entities and the directory interface they are stored behind.

The authentication layer owns the real user, group and connection stores;
this module only describes the shape the lifecycle code relies on, plus an
in-memory store used for externally supplied fixtures.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Iterable, Optional, Protocol, TypeVar

T = TypeVar("T")


@dataclass
class ConnectionConfiguration:
    """Protocol name and its parameters, as handed to guacd."""

    protocol: str
    parameters: dict[str, str] = field(default_factory=dict)

    def copy(self) -> ConnectionConfiguration:
        return ConnectionConfiguration(self.protocol, dict(self.parameters))


class _AttributeHolder:
    attributes: dict[str, Optional[str]]

    def get_attributes(self) -> dict[str, Optional[str]]:
        return dict(self.attributes)

    def set_attributes(self, attributes: dict[str, Optional[str]]) -> None:
        self.attributes.update(attributes)


@dataclass
class User(_AttributeHolder):
    identifier: str
    attributes: dict[str, Optional[str]] = field(default_factory=dict)


@dataclass
class UserGroup(_AttributeHolder):
    identifier: str
    attributes: dict[str, Optional[str]] = field(default_factory=dict)


@dataclass
class Connection(_AttributeHolder):
    identifier: str
    name: str = ""
    configuration: ConnectionConfiguration = field(
        default_factory=lambda: ConnectionConfiguration("vnc")
    )
    attributes: dict[str, Optional[str]] = field(default_factory=dict)

    def connect(self, tokens: dict[str, str] | None = None) -> tuple[ConnectionConfiguration, dict[str, str]]:
        """Configuration and parameter tokens to open this connection with."""
        return self.configuration.copy(), dict(tokens or {})


class Directory(Protocol[T]):
    """Store of entities keyed by identifier."""

    def get(self, identifier: str) -> T | None: ...

    def get_all(self, identifiers: Iterable[str]) -> list[T]: ...

    def get_identifiers(self) -> set[str]: ...

    def add(self, obj: T) -> None: ...

    def update(self, obj: T) -> None: ...

    def remove(self, identifier: str) -> None: ...


class InMemoryDirectory(Generic[T]):
    """Thread-safe dict-backed directory."""

    def __init__(self, objects: Iterable[T] = ()) -> None:
        self._lock = threading.Lock()
        self._objects: dict[str, T] = {obj.identifier: obj for obj in objects}

    def get(self, identifier: str) -> T | None:
        with self._lock:
            return self._objects.get(identifier)

    def get_all(self, identifiers: Iterable[str]) -> list[T]:
        with self._lock:
            return [self._objects[i] for i in identifiers if i in self._objects]

    def get_identifiers(self) -> set[str]:
        with self._lock:
            return set(self._objects)

    def add(self, obj: T) -> None:
        with self._lock:
            if obj.identifier in self._objects:
                raise ValueError(f"Duplicate identifier: {obj.identifier}")
            self._objects[obj.identifier] = obj

    def update(self, obj: T) -> None:
        with self._lock:
            if obj.identifier not in self._objects:
                raise KeyError(obj.identifier)
            self._objects[obj.identifier] = obj

    def remove(self, identifier: str) -> None:
        with self._lock:
            self._objects.pop(identifier, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._objects)


def _undecorate(obj: Any) -> Any:
    undecorated = getattr(obj, "undecorated", None)
    return undecorated() if callable(undecorated) else obj


class DecoratingDirectory(Generic[T]):
    """
    Directory view that wraps entities on the way out and unwraps them on
    the way in.

    Args:
        directory: Underlying directory
        decorate: Called on every entity read from *directory*
        undecorate: Called on every entity written back; defaults to the
            entity's own ``undecorated()`` if it has one
    """

    def __init__(
        self,
        directory: Directory[T],
        decorate: Callable[[T], Any],
        undecorate: Callable[[Any], T] | None = None,
    ) -> None:
        self._directory = directory
        self._decorate = decorate
        self._undecorate = undecorate or _undecorate

    def get(self, identifier: str) -> Any:
        obj = self._directory.get(identifier)
        return None if obj is None else self._decorate(obj)

    def get_all(self, identifiers: Iterable[str]) -> list[Any]:
        return [self._decorate(obj) for obj in self._directory.get_all(identifiers)]

    def get_identifiers(self) -> set[str]:
        return self._directory.get_identifiers()

    def add(self, obj: Any) -> None:
        self._directory.add(self._undecorate(obj))

    def update(self, obj: Any) -> None:
        self._directory.update(self._undecorate(obj))

    def remove(self, identifier: str) -> None:
        self._directory.remove(identifier)

