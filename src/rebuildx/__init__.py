"""rebuildx: reactive state containers with selective observer rebuilds."""

from importlib.metadata import version as _version

__version__ = _version("rebuildx")

from rebuildx.status import ConnectionStatus
from rebuildx.snapshot import Snapshot
from rebuildx.errors import (
    RebuildxError,
    MutationError,
    InvalidOperation,
    ConfigurationError,
)
from rebuildx.observers import ObserverRegistry, Subscription
from rebuildx.producer import ProducerKind, Sync, Async, Streaming, classify
from rebuildx.container import ReactiveContainer, HandlerOrder, DEFAULT_SEED
from rebuildx.registry import InstanceRegistry, JoinPolicy, create, future, stream
# textual NOT auto-imported, opt-in only

__all__ = [
    "ConnectionStatus",
    "Snapshot",
    "RebuildxError",
    "MutationError",
    "InvalidOperation",
    "ConfigurationError",
    "ObserverRegistry",
    "Subscription",
    "ProducerKind",
    "Sync",
    "Async",
    "Streaming",
    "classify",
    "ReactiveContainer",
    "HandlerOrder",
    "DEFAULT_SEED",
    "InstanceRegistry",
    "JoinPolicy",
    "create",
    "future",
    "stream",
]
