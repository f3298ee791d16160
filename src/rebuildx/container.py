"""Reactive containers: a value, its connection status, and its observers.

set_state() is the only way a container's value changes. What the mutation
returns decides the path (see rebuildx.producer):

- plain value / None   commit DONE at once
- awaitable            commit WAITING, then DONE with the result or the error
- async iterable       commit WAITING, then ACTIVE per emission

Every commit runs, in order: the data/error handlers, on_set_state, observer
notification (subject to silent, watch and filter_tags), on_rebuild_state,
then the fan-out to sibling containers of the owning InstanceRegistry.

Single event loop, no locks. A new set_state supersedes the in-flight one:
streams are cancelled, awaitables are left to finish and their result is
dropped (generation check). A mutation that raises without being caught
supersedes nothing.

Observers are called synchronously, in subscription order, from inside the
commit.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Collection, Generic, TypeVar

from rebuildx.errors import ConfigurationError, InvalidOperation
from rebuildx.observers import Observer, ObserverRegistry, Subscription
from rebuildx.producer import Async, ProducerKind, Sync, classify
from rebuildx.snapshot import Snapshot
from rebuildx.status import ConnectionStatus

if TYPE_CHECKING:
    from rebuildx.registry import InstanceRegistry

logger = logging.getLogger("rebuildx.container")

T = TypeVar("T")

DEFAULT_SEED = "defaultReactiveSeed"

_UNCHANGED = object()


class HandlerOrder(Enum):
    """How a call-level on_data/on_error relates to the container-level one.

    GLOBAL_FIRST           both run, container-level handler first
    CALL_OVERRIDES_GLOBAL  the call-level handler replaces the container-level
                           one for that call
    """

    GLOBAL_FIRST = "global_first"
    CALL_OVERRIDES_GLOBAL = "call_overrides_global"


class _Call:
    """Options of one set_state call, plus its watch bookkeeping."""

    __slots__ = (
        "catch_error",
        "silent",
        "watch",
        "filter_tags",
        "seeds",
        "join_singleton",
        "join_singleton_to_new_data",
        "notify_all_reactive_instances",
        "on_set_state",
        "on_rebuild_state",
        "on_data",
        "on_error",
        "watch_key",
        "lifecycle_fired",
    )

    def __init__(
        self,
        *,
        catch_error: bool = False,
        silent: bool = False,
        watch: Callable[[Any], Any] | None = None,
        filter_tags: Collection | None = None,
        seeds: Collection[str] | None = None,
        join_singleton: bool = False,
        join_singleton_to_new_data: Callable[[], Any] | None = None,
        notify_all_reactive_instances: bool = False,
        on_set_state: Callable[[Any], None] | None = None,
        on_rebuild_state: Callable[[Any], None] | None = None,
        on_data: Callable[[Any, Any], None] | None = None,
        on_error: Callable[[Any, BaseException], None] | None = None,
    ) -> None:
        self.catch_error = catch_error
        self.silent = silent
        self.watch = watch
        self.filter_tags = frozenset(filter_tags) if filter_tags else None
        self.seeds = tuple(seeds) if seeds else ()
        self.join_singleton = join_singleton
        self.join_singleton_to_new_data = join_singleton_to_new_data
        self.notify_all_reactive_instances = notify_all_reactive_instances
        self.on_set_state = on_set_state
        self.on_rebuild_state = on_rebuild_state
        self.on_data = on_data
        self.on_error = on_error
        self.watch_key = None
        self.lifecycle_fired = False


class ReactiveContainer(Generic[T]):
    """A value with a status machine and a list of observers.

    Containers are built by an InstanceRegistry (or the create/future/stream
    shortcuts), never on their own: the registry owns the value factory and
    the siblings a container fans out to.
    """

    def __init__(self, registry: InstanceRegistry[T], seed: str | None = None) -> None:
        if registry is None:
            raise ConfigurationError("a container needs the InstanceRegistry that owns its factory")
        self._registry = registry
        self._seed = seed
        self._observers = ObserverRegistry()
        self._snapshot: Snapshot[T] = Snapshot(ConnectionStatus.NONE, registry.initial_data())
        self._global_handlers: dict[str, Callable] = {}
        self._in_flight: asyncio.Task | None = None
        self._streaming = False
        self._stream_done = False
        self._generation = 0
        self._next_commit: asyncio.Future | None = None
        self._disposed = False

    # --- Readback ---

    @property
    def state(self) -> T:
        return self._snapshot.data

    @state.setter
    def state(self, value: T) -> None:
        self.set_state(lambda _: value)

    @property
    def data(self) -> T | None:
        return self._snapshot.data

    @property
    def snapshot(self) -> Snapshot[T]:
        return self._snapshot

    @property
    def status(self) -> ConnectionStatus:
        return self._snapshot.status

    @property
    def error(self) -> BaseException | None:
        return self._snapshot.error

    @property
    def has_data(self) -> bool:
        return self._snapshot.has_data

    @property
    def has_error(self) -> bool:
        return self._snapshot.has_error

    @property
    def is_waiting(self) -> bool:
        return self._snapshot.is_waiting

    @property
    def is_idle(self) -> bool:
        return self._snapshot.is_idle

    @property
    def is_active(self) -> bool:
        return self._snapshot.is_active

    @property
    def is_stream_done(self) -> bool:
        return self._stream_done

    @property
    def subscription(self) -> asyncio.Task | None:
        """The running stream consumer, if a stream is being listened to."""
        if self._streaming and self._in_flight is not None and not self._in_flight.done():
            return self._in_flight
        return None

    @property
    def seed(self) -> str | None:
        return self._seed

    @property
    def registry(self) -> InstanceRegistry[T]:
        return self._registry

    @property
    def context(self):
        """Opaque UI token of the latest observer that supplied one."""
        return self._observers.context

    @property
    def disposed(self) -> bool:
        return self._disposed

    async def state_async(self) -> T:
        """Value once the in-flight operation settles. Raises its error."""
        if self._snapshot.is_waiting and self._next_commit is not None:
            await asyncio.shield(self._next_commit)
        if self._snapshot.has_error:
            raise self._snapshot.error
        return self._snapshot.data

    def when_connection_state(
        self,
        *,
        on_idle: Callable[[], Any],
        on_waiting: Callable[[], Any],
        on_data: Callable[[T], Any],
        on_error: Callable[[BaseException], Any],
    ):
        """Dispatch on the current status and return the branch's result."""
        if self.is_idle:
            return on_idle()
        if self.is_waiting:
            return on_waiting()
        if self.has_error:
            return on_error(self.error)
        return on_data(self.data)

    # --- Observers ---

    def subscribe(self, observer: Observer, *, tag=None, context=None) -> Subscription:
        """Register observer(container), called on every notification it matches."""
        return self._observers.subscribe(observer, tag, context)

    def unsubscribe(self, subscription: Subscription) -> None:
        self._observers.unsubscribe(subscription)

    def listen(self, observer: Observer) -> Callable[[], None]:
        """Subscribe and return a function that removes the subscription."""
        return self._observers.subscribe(observer).dispose

    def observers(self) -> list[Subscription]:
        return list(self._observers)

    def rebuild_states(self, filter_tags: Collection | None = None) -> None:
        """Notify observers without touching the snapshot."""
        self._notify(frozenset(filter_tags) if filter_tags else None)

    # --- Container-level handlers ---

    def on_error(self, handler: Callable[[Any, BaseException], None]) -> ReactiveContainer[T]:
        """Set the container-level error handler, called as handler(context, error)."""
        self._global_handlers["error"] = handler
        return self

    def on_data(self, handler: Callable[[Any, T], None]) -> ReactiveContainer[T]:
        """Set the container-level data handler, called as handler(context, data)."""
        self._global_handlers["data"] = handler
        return self

    # --- Mutation ---

    def set_state(
        self,
        mutation: Callable[[T], Any] | None = None,
        *,
        catch_error: bool = False,
        silent: bool = False,
        watch: Callable[[T], Any] | None = None,
        filter_tags: Collection | None = None,
        seeds: Collection[str] | None = None,
        join_singleton: bool = False,
        join_singleton_to_new_data: Callable[[], Any] | None = None,
        notify_all_reactive_instances: bool = False,
        on_set_state: Callable[[Any], None] | None = None,
        on_rebuild_state: Callable[[Any], None] | None = None,
        on_data: Callable[[Any, T], None] | None = None,
        on_error: Callable[[Any, BaseException], None] | None = None,
        should_await: bool = False,
    ) -> asyncio.Task | None:
        """Run mutation(current value) and commit what it produces.

        Returns None when the mutation completed synchronously, otherwise the
        asyncio.Task that settles it. An error is caught (stored, not raised)
        when catch_error is set or an on_error handler exists at call or
        container level; otherwise a sync error propagates here and an async
        one is raised from the returned task.

        With should_await, a mutation issued while an operation is in flight
        runs after that operation settles, against its resolved value.
        """
        if self._disposed:
            raise InvalidOperation(f"{self!r} is disposed")
        if mutation is None and self._registry.kind is not ProducerKind.VALUE:
            raise InvalidOperation(
                f"{self._registry.kind.value}-backed containers have no value of their own; "
                "set_state needs a mutation"
            )
        call = _Call(
            catch_error=catch_error,
            silent=silent,
            watch=watch,
            filter_tags=filter_tags,
            seeds=seeds,
            join_singleton=join_singleton,
            join_singleton_to_new_data=join_singleton_to_new_data,
            notify_all_reactive_instances=notify_all_reactive_instances,
            on_set_state=on_set_state,
            on_rebuild_state=on_rebuild_state,
            on_data=on_data,
            on_error=on_error,
        )
        pending = self._in_flight
        if should_await and pending is not None and not pending.done():
            return asyncio.get_running_loop().create_task(self._after(pending, mutation, call))
        return self._apply(mutation, call)

    def reset_to_idle(self) -> None:
        """Drop status and error; data is kept. Observers are not notified."""
        self._set_snapshot(self._snapshot.idle())

    def reset_to_has_data(self, data: Any = _UNCHANGED) -> None:
        """Mark the container DONE with data (current data by default)."""
        value = self._snapshot.data if data is _UNCHANGED else data
        self._set_snapshot(self._snapshot.with_data(value))

    def as_new(self, seed: str | None = DEFAULT_SEED) -> ReactiveContainer[T]:
        """The registry's container for seed, created on first request."""
        return self._registry.get_or_create(seed)

    def dispose(self) -> None:
        """Cancel the stream subscription and drop every observer."""
        if self._disposed:
            return
        self._disposed = True
        self._generation += 1
        self._cancel_subscription()
        self._resolve_waiters()
        self._observers.clear()

    # --- Internals ---

    def _bootstrap(self, factory: Callable[[], Any]) -> None:
        """Start tracking the awaitable or stream a future/stream factory returns."""
        registry = self._registry
        call = _Call(catch_error=True, watch=registry.watch, filter_tags=registry.filter_tags)
        self._apply(lambda _: factory(), call)

    async def _after(self, pending: asyncio.Task, mutation, call: _Call) -> None:
        await asyncio.wait({pending})
        task = self._apply(mutation, call)
        if task is not None:
            await task

    def _apply(self, mutation, call: _Call) -> asyncio.Task | None:
        current = self._snapshot.data
        if call.watch is not None:
            call.watch_key = call.watch(current)

        if mutation is None:
            self._supersede()
            self._commit(self._snapshot.with_data(current), call)
            return None

        try:
            result = mutation(current)
        except Exception as error:
            if not self._catches(call):
                # the in-flight operation stays current
                raise
            self._supersede()
            self._commit(self._snapshot.with_error(error), call)
            return None

        self._supersede()
        outcome = classify(result)
        if isinstance(outcome, Sync):
            data = current if outcome.value is None else outcome.value
            self._commit(self._snapshot.with_data(data), call)
            return None
        if isinstance(outcome, Async):
            return self._track(self._settle(outcome.awaitable, self._generation, call), call, streaming=False)
        return self._track(self._listen(outcome.iterator, self._generation, call), call, streaming=True)

    def _supersede(self) -> None:
        self._cancel_subscription()
        self._generation += 1

    def _track(self, coro, call: _Call, *, streaming: bool) -> asyncio.Task:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            raise InvalidOperation("async and stream mutations need a running event loop") from None
        self._commit(self._snapshot.waiting(), call)
        task = loop.create_task(coro)
        self._in_flight = task
        self._streaming = streaming
        self._stream_done = False
        return task

    async def _settle(self, awaitable, generation: int, call: _Call) -> None:
        try:
            value = await awaitable
        except Exception as error:
            if generation != self._generation:
                logger.debug("%r: dropping failure of a superseded operation", self)
                return
            self._in_flight = None
            self._commit(self._snapshot.with_error(error), call)
            if not self._catches(call):
                raise
            return
        if generation != self._generation:
            logger.debug("%r: dropping result of a superseded operation", self)
            return
        self._in_flight = None
        data = self._snapshot.data if value is None else value
        self._commit(self._snapshot.with_data(data), call)

    async def _listen(self, iterable, generation: int, call: _Call) -> None:
        """Commit every emission of iterable until it is exhausted.

        An error raised by the iterator is committed ACTIVE-with-error and
        listening goes on: iterators that can recover keep emitting, while
        an async generator that raised reports StopAsyncIteration next.
        An uncaught error stops listening and fails the task.
        """
        iterator = iterable.__aiter__()
        while True:
            try:
                value = await iterator.__anext__()
            except StopAsyncIteration:
                break
            except Exception as error:
                if generation != self._generation:
                    return
                if not self._catches(call):
                    self._in_flight = None
                    self._stream_done = True
                    self._commit(self._snapshot.with_error(error, ConnectionStatus.ACTIVE), call)
                    raise
                self._commit(self._snapshot.with_error(error, ConnectionStatus.ACTIVE), call)
                continue
            if generation != self._generation:
                return
            data = self._snapshot.data if value is None else value
            self._commit(self._snapshot.with_data(data, ConnectionStatus.ACTIVE), call)
        if generation != self._generation:
            return
        self._in_flight = None
        self._stream_done = True
        if self._snapshot.is_waiting:
            # closed without emitting
            self._commit(self._snapshot.with_data(self._snapshot.data), call)
        else:
            self._set_snapshot(self._snapshot.with_status(ConnectionStatus.DONE))

    def _cancel_subscription(self) -> None:
        task = self._in_flight
        self._in_flight = None
        if task is None or task.done():
            return
        if self._streaming:
            logger.debug("%r: cancelling stream subscription", self)
            task.cancel()

    def _catches(self, call: _Call) -> bool:
        return call.catch_error or call.on_error is not None or "error" in self._global_handlers

    def _set_snapshot(self, snapshot: Snapshot[T]) -> None:
        self._snapshot = snapshot
        if snapshot.is_waiting:
            if self._next_commit is None or self._next_commit.done():
                self._next_commit = asyncio.get_running_loop().create_future()
        else:
            self._resolve_waiters()

    def _resolve_waiters(self) -> None:
        if self._next_commit is not None and not self._next_commit.done():
            self._next_commit.set_result(None)

    def _commit(self, snapshot: Snapshot[T], call: _Call) -> None:
        self._set_snapshot(snapshot)
        logger.debug("%r committed", self)
        context = self._observers.context
        settled = not snapshot.is_waiting
        fire_lifecycle = settled and not call.lifecycle_fired
        if settled:
            self._run_handlers(call, snapshot, context)
        if fire_lifecycle and call.on_set_state is not None:
            call.on_set_state(context)
        if self._should_notify(call, snapshot):
            self._notify(call.filter_tags)
        if fire_lifecycle:
            call.lifecycle_fired = True
            if call.on_rebuild_state is not None:
                call.on_rebuild_state(context)
        self._fan_out(call)

    def _run_handlers(self, call: _Call, snapshot: Snapshot[T], context) -> None:
        if snapshot.has_error:
            for handler in self._handlers("error", call.on_error):
                handler(context, snapshot.error)
        else:
            for handler in self._handlers("data", call.on_data):
                handler(context, snapshot.data)

    def _handlers(self, kind: str, call_handler: Callable | None) -> list[Callable]:
        """Handlers to run for kind, container-level first."""
        ordered = []
        global_handler = self._global_handlers.get(kind)
        overridden = (
            call_handler is not None
            and self._registry.handler_order is HandlerOrder.CALL_OVERRIDES_GLOBAL
        )
        if global_handler is not None and not overridden:
            ordered.append(global_handler)
        if call_handler is not None:
            ordered.append(call_handler)
        return ordered

    def _should_notify(self, call: _Call, snapshot: Snapshot[T]) -> bool:
        if call.silent:
            return False
        if call.watch is None or snapshot.has_error:
            return True
        key = call.watch(snapshot.data)
        if key == call.watch_key:
            return False
        call.watch_key = key
        return True

    def _notify(self, tags: Collection | None = None) -> None:
        self._observers.notify(self, tags)

    def _adopt(self, snapshot: Snapshot[T], *, notify: bool = True) -> None:
        """Take a sibling's snapshot (seeds and join policies)."""
        self._set_snapshot(snapshot)
        if notify:
            self._notify()

    def _fan_out(self, call: _Call) -> None:
        registry = self._registry
        notify = not call.silent
        touched = {self}
        if self._seed is not None:
            joined = registry._join(self, call)
            if joined is not None:
                touched.add(joined)
        for seed in call.seeds:
            sibling = registry.instances.get(seed)
            if sibling is not None and sibling not in touched:
                sibling._adopt(self._snapshot, notify=notify)
                touched.add(sibling)
        if call.notify_all_reactive_instances and notify:
            for sibling in registry.siblings(self):
                if sibling not in touched:
                    sibling._notify()

    def _describe_status(self) -> str:
        if self.is_idle:
            return "isIdle"
        if self.is_waiting:
            return "isWaiting"
        if self.has_error:
            error = self.error
            return f"hasError : ({type(error).__name__}: {error})"
        return f"hasData : ({self.data!r})"

    def __repr__(self) -> str:
        prefix = {ProducerKind.FUTURE: "Future of ", ProducerKind.STREAM: "Stream of "}.get(
            self._registry.kind, ""
        )
        seed = f' (new seed: "{self._seed}")' if self._seed is not None else ""
        type_name = type(self._snapshot.data).__name__
        return f"{prefix}<{type_name}> RM{seed} | {self._describe_status()}"
