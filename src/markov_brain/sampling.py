"""
Weighted random sampling [Efraimidis & Spirakis 2006].

Every candidate with weight ``w`` receives the key ``u ** (1 / w)`` where ``u``
is uniform in (0, 1). Picking the candidate with the largest key selects it
with probability ``w / sum(w)``. Because the key is a pure per-row function,
SQLite can evaluate it inside ``ORDER BY ... DESC LIMIT 1`` and the engine
never materialises the follower list.
"""

from __future__ import annotations

import random
import sqlite3
from typing import Iterable, Tuple, TypeVar

T = TypeVar("T")

SQL_FUNCTION_NAME = "random_weighted"

__all__ = ["SQL_FUNCTION_NAME", "choose_weighted", "register", "weighted_key"]


def _validate_weight(weight: object) -> int:
    if isinstance(weight, bool) or not isinstance(weight, int):
        raise ValueError(f"sampling weight must be an integer (got {weight!r})")
    if weight < 1:
        raise ValueError(f"sampling weight must be >= 1 (got {weight})")
    return weight


def weighted_key(weight: int, rng: random.Random | None = None) -> float:
    """Return the Efraimidis-Spirakis key for a single candidate."""
    weight = _validate_weight(weight)
    source = rng or random
    u = source.random()
    # random() may return exactly 0.0; keys must come from the open interval.
    while u <= 0.0:
        u = source.random()
    return u ** (1.0 / weight)


def choose_weighted(
    items: Iterable[Tuple[T, int]], rng: random.Random | None = None
) -> T | None:
    """Pick one item proportionally to its weight in a single pass."""
    best_item: T | None = None
    best_key = -1.0
    for item, weight in items:
        key = weighted_key(weight, rng)
        if key > best_key:
            best_key = key
            best_item = item
    return best_item


def register(conn: sqlite3.Connection, rng: random.Random | None = None) -> None:
    """Install ``random_weighted(count)`` as a scalar function on ``conn``."""

    def _random_weighted(weight):
        return weighted_key(int(weight), rng)

    conn.create_function(SQL_FUNCTION_NAME, 1, _random_weighted)
