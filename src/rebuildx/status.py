"""Connection status: where the latest operation of a container stands."""

from enum import Enum


class ConnectionStatus(Enum):
    """Lifecycle phase of a container's most recent mutation.

    NONE     never mutated (idle)
    WAITING  an awaitable or async iterator is in flight
    ACTIVE   an async iterator emitted and is still open
    DONE     terminal value (or error) available
    """

    NONE = "none"
    WAITING = "waiting"
    ACTIVE = "active"
    DONE = "done"
