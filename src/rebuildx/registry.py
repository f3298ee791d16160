"""Instance registries: one factory, a singleton and seeded instances.

An InstanceRegistry owns a value factory and every container built from it:
the singleton (seed None) and any number of derived containers keyed by seed.
The same seed always yields the same container.

For plain values the factory runs once, lazily, and every container starts
from that one shared object. Future and stream registries run the factory
per container and track what it returns.

The join policy decides how derived containers feed the singleton:

- NONE                              never (unless set_state(join_singleton=True))
- WITH_NEW_REACTIVE_INSTANCE        the singleton copies whichever derived
                                    container committed last
- WITH_COMBINED_REACTIVE_INSTANCES  the singleton reduces all derived
                                    statuses: any error, else any waiting,
                                    else all data, else idle
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from enum import Enum
from types import MappingProxyType
from typing import Any, AsyncIterable, Awaitable, Callable, Collection, Generic, Mapping, TypeVar

from rebuildx.container import HandlerOrder, ReactiveContainer
from rebuildx.errors import ConfigurationError, InvalidOperation
from rebuildx.producer import ProducerKind
from rebuildx.snapshot import Snapshot

logger = logging.getLogger("rebuildx.registry")

T = TypeVar("T")

_UNSET = object()


class JoinPolicy(Enum):
    NONE = "none"
    WITH_NEW_REACTIVE_INSTANCE = "with_new_reactive_instance"
    WITH_COMBINED_REACTIVE_INSTANCES = "with_combined_reactive_instances"


class InstanceRegistry(Generic[T]):
    """Singleton and seeded containers sharing one factory."""

    def __init__(
        self,
        factory: Callable[[], Any],
        *,
        join: JoinPolicy = JoinPolicy.NONE,
        kind: ProducerKind = ProducerKind.VALUE,
        initial_value: T | None = None,
        watch: Callable[[T], Any] | None = None,
        filter_tags: Collection | None = None,
        handler_order: HandlerOrder = HandlerOrder.GLOBAL_FIRST,
    ) -> None:
        if factory is None:
            raise ConfigurationError("InstanceRegistry needs a factory")
        self._factory = factory
        self.join = join
        self.kind = kind
        self.initial_value = initial_value
        self.watch = watch
        self.filter_tags = frozenset(filter_tags) if filter_tags else None
        self.handler_order = handler_order
        self._value = _UNSET
        self._singleton: ReactiveContainer[T] | None = None
        self._instances: dict[str, ReactiveContainer[T]] = {}
        self._last_resolved: ReactiveContainer[T] | None = None
        self._disposed = False

    @classmethod
    def future(cls, factory: Callable[[], Awaitable[T]], **options) -> InstanceRegistry[T]:
        """Registry whose containers each await factory()."""
        return cls(factory, kind=ProducerKind.FUTURE, **options)

    @classmethod
    def stream(cls, factory: Callable[[], AsyncIterable[T]], **options) -> InstanceRegistry[T]:
        """Registry whose containers each listen to factory()."""
        return cls(factory, kind=ProducerKind.STREAM, **options)

    @property
    def value(self) -> T:
        """The shared value, produced on first use (value registries only)."""
        if self._value is _UNSET:
            self._value = self._factory()
        return self._value

    def initial_data(self) -> T | None:
        if self.kind is ProducerKind.VALUE:
            return self.value
        return self.initial_value

    @property
    def singleton(self) -> ReactiveContainer[T]:
        return self.get_or_create()

    @property
    def instances(self) -> Mapping[str, ReactiveContainer[T]]:
        """Derived containers by seed, in creation order."""
        return MappingProxyType(self._instances)

    def get_or_create(self, seed: str | None = None) -> ReactiveContainer[T]:
        """The singleton for seed None, else the container bound to seed."""
        if self._disposed:
            raise InvalidOperation("registry is disposed")
        if seed is None:
            if self._singleton is None:
                self._build(None)
            return self._singleton
        container = self._instances.get(seed)
        if container is None:
            container = self._build(seed)
        return container

    def siblings(self, container: ReactiveContainer[T]) -> list[ReactiveContainer[T]]:
        """Every other container of this registry, singleton first."""
        members = [self._singleton] if self._singleton is not None else []
        members.extend(self._instances.values())
        return [member for member in members if member is not container]

    def dispose(self) -> None:
        """Dispose every container. The registry cannot be used afterwards."""
        if self._disposed:
            return
        self._disposed = True
        for container in self.siblings(None):
            container.dispose()
        self._instances.clear()
        self._singleton = None
        self._last_resolved = None

    def _build(self, seed: str | None) -> ReactiveContainer[T]:
        container = ReactiveContainer(self, seed)
        # registered before bootstrapping: its first commit may join the singleton
        if seed is None:
            self._singleton = container
        else:
            self._instances[seed] = container
        logger.debug("created %r", container)
        if self.kind is not ProducerKind.VALUE:
            container._bootstrap(self._factory)
        return container

    def _join(self, source: ReactiveContainer[T], call) -> ReactiveContainer[T] | None:
        """Feed a derived container's commit to the singleton. Returns it if touched."""
        if source.has_data:
            self._last_resolved = source
        explicit = call.join_singleton
        if not explicit and self.join is JoinPolicy.NONE:
            return None
        singleton = self.get_or_create()
        notify = not call.silent
        if explicit or self.join is JoinPolicy.WITH_NEW_REACTIVE_INSTANCE:
            snapshot = source.snapshot
            if call.join_singleton_to_new_data is not None:
                snapshot = replace(snapshot, data=call.join_singleton_to_new_data())
            singleton._adopt(snapshot, notify=notify)
        else:
            singleton._adopt(self._combined(singleton.snapshot), notify=notify)
        return singleton

    def _combined(self, current: Snapshot[T]) -> Snapshot[T]:
        derived = list(self._instances.values())
        for container in derived:
            if container.has_error:
                return current.with_error(container.error)
        if any(container.is_waiting for container in derived):
            return current.waiting()
        if derived and all(container.has_data for container in derived):
            source = self._last_resolved
            return current.with_data(source.data if source is not None else current.data)
        return current.idle()

    def __repr__(self) -> str:
        return (
            f"InstanceRegistry({self.kind.value}, join={self.join.value}, "
            f"{len(self._instances)} instances)"
        )


def create(value: T, **options) -> ReactiveContainer[T]:
    """Singleton container of a registry wrapping value."""
    return InstanceRegistry(lambda: value, **options).singleton


def future(
    awaitable: Awaitable[T], *, initial_value: T | None = None, **options
) -> ReactiveContainer[T]:
    """Singleton container tracking awaitable. Needs a running event loop.

    The awaitable is wrapped once, so derived containers (as_new) share its
    result instead of awaiting a coroutine twice.
    """
    shared = asyncio.ensure_future(awaitable)
    registry = InstanceRegistry.future(lambda: shared, initial_value=initial_value, **options)
    return registry.singleton


def stream(
    iterable: AsyncIterable[T], *, initial_value: T | None = None, **options
) -> ReactiveContainer[T]:
    """Singleton container listening to iterable. Needs a running event loop."""
    registry = InstanceRegistry.stream(lambda: iterable, initial_value=initial_value, **options)
    return registry.singleton
