from __future__ import annotations


class SavedLinksError(Exception):
    """Base class for errors raised inside savedlinks."""


class StorageError(SavedLinksError):
    """A blob could not be read from or written to the local store."""


class RemoteStoreError(SavedLinksError):
    """The remote store answered with something we cannot use."""
