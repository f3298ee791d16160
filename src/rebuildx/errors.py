"""Exceptions raised by rebuildx."""


class RebuildxError(Exception):
    """Base class for every error rebuildx raises on its own behalf."""


class MutationError(RebuildxError):
    """A mutation failed.

    Mutations may raise any exception; this one exists so application code
    has a conventional type to raise from inside set_state callbacks. Its
    message is what str(container.error) reads back.
    """


class InvalidOperation(RebuildxError):
    """The container does not support the requested operation."""


class ConfigurationError(RebuildxError):
    """A registry or container was built without what it needs to run."""
