from __future__ import annotations


class VakitError(Exception):
    """Base class for errors raised by vakit collaborators."""


class NotificationError(VakitError):
    """A notification backend could not register or cancel an alert."""


class StorageError(VakitError):
    """The key-value store could not persist a value."""


class ProviderError(VakitError):
    """The prayer-time provider could not deliver data."""
