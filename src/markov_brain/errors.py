from __future__ import annotations

__all__ = ["MarkovBrainError", "StoreOpenError", "StorageError"]


class MarkovBrainError(Exception):
    """Base class for every error raised by the markov_brain package."""


class StoreOpenError(MarkovBrainError):
    """The index store could not be opened, created or validated."""


class StorageError(MarkovBrainError):
    """A query or mutation failed against the backing SQLite engine."""
