"""Mutation outcomes: what a set_state callback handed back.

classify() inspects the return value once, at call time:

- Sync(value)          plain value, or None for an in-place mutation
- Async(awaitable)     coroutine, asyncio.Future, Task, anything awaitable
- Streaming(iterator)  any async iterable (async generators included)

Async iterables are checked first: an object that is both is consumed as a
stream.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterable, Awaitable, Generic, TypeVar, Union

T = TypeVar("T")


class ProducerKind(Enum):
    """What a registry's factory produces."""

    VALUE = "value"
    FUTURE = "future"
    STREAM = "stream"


@dataclass(frozen=True, slots=True)
class Sync(Generic[T]):
    value: T | None


@dataclass(frozen=True, slots=True)
class Async(Generic[T]):
    awaitable: Awaitable[T]


@dataclass(frozen=True, slots=True)
class Streaming(Generic[T]):
    iterator: AsyncIterable[T]


Outcome = Union[Sync, Async, Streaming]


def classify(result: Any) -> Outcome:
    if hasattr(result, "__aiter__"):
        return Streaming(result)
    if inspect.isawaitable(result):
        return Async(result)
    return Sync(result)
