"""
Markov chain text generation backed by a persisted SQLite n-gram index.

The package is layered leaves first:
    * db.IndexStore: tokens, order-sized states and weighted forward/backward transitions.
    * sampling: Efraimidis-Spirakis weighted picks, evaluated inside SQLite.
    * chain.ChainEngine: learning walks and bidirectional reply walks.

See pipeline.MarkovBrain for a high-level façade that tokenizes text and wires the layers together.
"""

from .db import IndexStore
from .errors import MarkovBrainError, StorageError, StoreOpenError
from .pipeline import MarkovBrain

__all__ = ["IndexStore", "MarkovBrain", "MarkovBrainError", "StorageError", "StoreOpenError"]
