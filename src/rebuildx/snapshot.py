"""Snapshots: immutable {status, data, error} records.

A container replaces its snapshot wholesale on every commit. Nothing ever
mutates a Snapshot in place; the helpers below return new ones.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Generic, TypeVar

from rebuildx.status import ConnectionStatus

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Snapshot(Generic[T]):
    status: ConnectionStatus = ConnectionStatus.NONE
    data: T | None = None
    error: BaseException | None = None

    @property
    def has_error(self) -> bool:
        return self.error is not None

    @property
    def has_data(self) -> bool:
        return (
            self.status in (ConnectionStatus.ACTIVE, ConnectionStatus.DONE)
            and self.error is None
        )

    @property
    def is_idle(self) -> bool:
        return self.status is ConnectionStatus.NONE and self.error is None

    @property
    def is_waiting(self) -> bool:
        return self.status is ConnectionStatus.WAITING

    @property
    def is_active(self) -> bool:
        return self.status is ConnectionStatus.ACTIVE

    def with_data(self, data: T | None, status: ConnectionStatus = ConnectionStatus.DONE) -> Snapshot[T]:
        return Snapshot(status, data, None)

    def with_error(self, error: BaseException, status: ConnectionStatus = ConnectionStatus.DONE) -> Snapshot[T]:
        """Error snapshot that keeps the last good data."""
        return Snapshot(status, self.data, error)

    def waiting(self) -> Snapshot[T]:
        return Snapshot(ConnectionStatus.WAITING, self.data, None)

    def idle(self) -> Snapshot[T]:
        return Snapshot(ConnectionStatus.NONE, self.data, None)

    def with_status(self, status: ConnectionStatus) -> Snapshot[T]:
        return replace(self, status=status)
