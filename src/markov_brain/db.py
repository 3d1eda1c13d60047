from __future__ import annotations

import contextlib
import random
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Generator, List, Mapping, Sequence, Tuple

from . import sampling
from .errors import StorageError, StoreOpenError

MEMORY_LOCATION = ":memory:"
DEFAULT_ORDER = 2

FORWARD_TABLE = "next_token"
BACKWARD_TABLE = "prev_token"

_SCHEMA_TEMPLATE = """
CREATE TABLE markov_config (
    key TEXT NOT NULL PRIMARY KEY,
    val TEXT
);
CREATE TABLE token (
    id      INTEGER PRIMARY KEY,
    kind    TEXT NOT NULL,
    text    TEXT NOT NULL,
    spacing INTEGER NOT NULL DEFAULT 0,
    count   INTEGER NOT NULL DEFAULT 1 CHECK (count > 0),
    UNIQUE (kind, text)
);
CREATE TABLE state (
    id INTEGER PRIMARY KEY,
    {state_columns},
    UNIQUE ({state_names})
);
{state_indexes}
CREATE TABLE {forward} (
    id       INTEGER PRIMARY KEY,
    state_id INTEGER NOT NULL REFERENCES state(id),
    token_id INTEGER NOT NULL REFERENCES token(id),
    count    INTEGER NOT NULL DEFAULT 1 CHECK (count > 0),
    UNIQUE (state_id, token_id)
);
CREATE TABLE {backward} (
    id       INTEGER PRIMARY KEY,
    state_id INTEGER NOT NULL REFERENCES state(id),
    token_id INTEGER NOT NULL REFERENCES token(id),
    count    INTEGER NOT NULL DEFAULT 1 CHECK (count > 0),
    UNIQUE (state_id, token_id)
);
"""


@dataclass(frozen=True)
class TokenRecord:
    id: int
    kind: str
    text: str
    spacing: int
    count: int


@dataclass(frozen=True)
class StoreStats:
    tokens: int
    states: int
    transitions: int

    def as_dict(self) -> dict[str, int]:
        return {"tokens": self.tokens, "states": self.states, "transitions": self.transitions}


@dataclass(frozen=True)
class StateQueries:
    """SQL touching the ``state`` table, generated once for a given order."""

    order: int
    columns: Tuple[str, ...]
    get_state: str
    find_state: str
    new_state: str
    random_state_with: str
    token_list: str

    @classmethod
    def build(cls, order: int) -> "StateQueries":
        if order < 1:
            raise ValueError(f"chain order must be >= 1 (got {order})")
        columns = tuple(f"token{slot}_id" for slot in range(1, order + 1))
        names = ", ".join(columns)
        placeholders = ", ".join("?" for _ in columns)
        return cls(
            order=order,
            columns=columns,
            get_state=f"SELECT {names} FROM state WHERE id = ?",
            find_state="SELECT id FROM state WHERE " + " AND ".join(f"{name} = ?" for name in columns),
            new_state=f"INSERT INTO state ({names}) VALUES ({placeholders})",
            random_state_with=(
                "SELECT id FROM state WHERE "
                + " OR ".join(f"{name} = :token_id" for name in columns)
                + " ORDER BY random() LIMIT 1"
            ),
            token_list=f"SELECT id, kind, text, spacing, count FROM token WHERE id IN ({placeholders})",
        )

    def schema(self) -> str:
        state_columns = ",\n    ".join(
            f"{name} INTEGER NOT NULL REFERENCES token(id)" for name in self.columns
        )
        # token1_id is covered by the leading column of the UNIQUE index.
        state_indexes = "\n".join(
            f"CREATE INDEX idx_state_{name} ON state({name});" for name in self.columns[1:]
        )
        return _SCHEMA_TEMPLATE.format(
            state_columns=state_columns,
            state_names=", ".join(self.columns),
            state_indexes=state_indexes,
            forward=FORWARD_TABLE,
            backward=BACKWARD_TABLE,
        )


class IndexStore:
    """SQLite-backed n-gram index: tokens, order-sized states and weighted transitions."""

    def __init__(
        self,
        path: str | Path = MEMORY_LOCATION,
        order: int | None = None,
        *,
        rng: random.Random | None = None,
    ) -> None:
        self.path = self._resolve_location(path)
        self.rng = rng
        self._batch_depth = 0
        try:
            self._conn = sqlite3.connect(self.path, isolation_level=None, check_same_thread=False)
        except sqlite3.Error as exc:
            raise StoreOpenError(f"cannot open index store at {self.path}: {exc}") from exc
        try:
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL;")
            self._conn.execute("PRAGMA synchronous=NORMAL;")
            self._conn.execute("PRAGMA foreign_keys = ON;")
            sampling.register(self._conn, rng)
            self.order = self._bootstrap_schema(order)
        except StoreOpenError:
            self._conn.close()
            raise
        except sqlite3.Error as exc:
            self._conn.close()
            raise StoreOpenError(f"cannot initialise index store at {self.path}: {exc}") from exc
        self.queries = StateQueries.build(self.order)

    @classmethod
    def open_or_create(
        cls,
        location: str | Path = MEMORY_LOCATION,
        requested_order: int | None = None,
        *,
        rng: random.Random | None = None,
    ) -> Tuple["IndexStore", int]:
        """Open ``location`` and return the store plus its effective order."""
        store = cls(location, requested_order, rng=rng)
        return store, store.order

    @staticmethod
    def _resolve_location(path: str | Path) -> str:
        raw = str(path)
        if raw == MEMORY_LOCATION:
            return raw
        resolved = Path(raw).expanduser()
        try:
            resolved.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreOpenError(f"cannot create directory for {resolved}: {exc}") from exc
        return str(resolved)

    # ------------------------------------------------------------------ #
    # Schema management
    # ------------------------------------------------------------------ #
    def _bootstrap_schema(self, requested_order: int | None) -> int:
        if self._table_exists("markov_config"):
            return self._stored_order()
        order = DEFAULT_ORDER if requested_order is None else requested_order
        if isinstance(order, bool) or not isinstance(order, int) or order < 1:
            raise StoreOpenError(f"chain order must be a positive integer (got {order!r})")
        script = StateQueries.build(order).schema()
        self._conn.executescript(
            "BEGIN IMMEDIATE;\n"
            + script
            + f"INSERT INTO markov_config (key, val) VALUES ('order', '{order}');\n"
            + "COMMIT;"
        )
        return order

    def _table_exists(self, name: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (name,)
        ).fetchone()
        return row is not None

    def _stored_order(self) -> int:
        row = self._conn.execute("SELECT val FROM markov_config WHERE key = 'order'").fetchone()
        raw = row["val"] if row is not None else None
        try:
            order = int(raw)
        except (TypeError, ValueError) as exc:
            raise StoreOpenError(f"invalid config: stored order {raw!r} in {self.path}") from exc
        if order < 1:
            raise StoreOpenError(f"invalid config: stored order {order} in {self.path}")
        return order

    # ------------------------------------------------------------------ #
    # Basic query helpers
    # ------------------------------------------------------------------ #
    def close(self) -> None:
        """Flush any in-flight batch and release the connection."""
        try:
            if self._batch_depth > 0 and self._conn.in_transaction:
                self._conn.execute("COMMIT")
        except sqlite3.Error as exc:
            raise StorageError(f"failed to flush pending batch: {exc}") from exc
        finally:
            self._batch_depth = 0
            self._conn.close()

    def __enter__(self) -> "IndexStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self.abort_batch()
        self.close()

    def _fail(self, exc: sqlite3.Error) -> StorageError:
        # A failed statement poisons the whole batch: nothing of it may commit.
        if self._conn.in_transaction:
            try:
                self._conn.execute("ROLLBACK")
            except sqlite3.Error:
                pass
        self._batch_depth = 0
        return StorageError(str(exc))

    def execute(self, sql: str, params: Sequence | Mapping | None = None) -> int:
        """Run a mutating statement and return ``lastrowid``."""
        try:
            cur = self._conn.execute(sql, params or ())
        except sqlite3.Error as exc:
            raise self._fail(exc) from exc
        rowid = cur.lastrowid
        cur.close()
        return rowid

    def query(self, sql: str, params: Sequence | Mapping | None = None) -> List[sqlite3.Row]:
        try:
            cur = self._conn.execute(sql, params or ())
            rows = cur.fetchall()
        except sqlite3.Error as exc:
            raise self._fail(exc) from exc
        cur.close()
        return rows

    def query_one(self, sql: str, params: Sequence | Mapping | None = None) -> sqlite3.Row | None:
        try:
            cur = self._conn.execute(sql, params or ())
            row = cur.fetchone()
        except sqlite3.Error as exc:
            raise self._fail(exc) from exc
        cur.close()
        return row

    def scalar(self, sql: str, params: Sequence | Mapping | None = None, default: Any = None) -> Any:
        row = self.query_one(sql, params)
        if row is None or row[0] is None:
            return default
        return row[0]

    # ------------------------------------------------------------------ #
    # Batches
    # ------------------------------------------------------------------ #
    @property
    def in_batch(self) -> bool:
        return self._batch_depth > 0

    @property
    def batch_depth(self) -> int:
        return self._batch_depth

    def begin_batch(self) -> None:
        if self._batch_depth == 0:
            self.execute("BEGIN IMMEDIATE")
        self._batch_depth += 1

    def end_batch(self) -> None:
        if self._batch_depth == 0:
            raise StorageError("end_batch() called without a matching begin_batch()")
        self._batch_depth -= 1
        if self._batch_depth == 0:
            self.execute("COMMIT")

    def abort_batch(self) -> None:
        """Roll back the outermost transaction regardless of nesting depth."""
        self._batch_depth = 0
        if self._conn.in_transaction:
            try:
                self._conn.execute("ROLLBACK")
            except sqlite3.Error as exc:
                raise StorageError(f"rollback failed: {exc}") from exc

    @contextlib.contextmanager
    def batch(self) -> Generator["IndexStore", None, None]:
        self.begin_batch()
        try:
            yield self
        except BaseException:
            self.abort_batch()
            raise
        self.end_batch()

    # ------------------------------------------------------------------ #
    # Config
    # ------------------------------------------------------------------ #
    def get_config(self, key: str) -> str | None:
        return self.scalar("SELECT val FROM markov_config WHERE key = ?", (key,))

    def set_config(self, key: str, value: str) -> None:
        if key == "order":
            raise ValueError("the chain order is fixed when the store is created")
        self.execute("INSERT OR REPLACE INTO markov_config (key, val) VALUES (?, ?)", (key, value))

    def stats(self) -> StoreStats:
        row = self.query_one(
            f"""
            SELECT (SELECT count(*) FROM token) AS tokens,
                   (SELECT count(*) FROM state) AS states,
                   (SELECT count(*) FROM {FORWARD_TABLE}) AS transitions
            """
        )
        assert row is not None
        return StoreStats(tokens=row["tokens"], states=row["states"], transitions=row["transitions"])

    # ------------------------------------------------------------------ #
    # Tokens
    # ------------------------------------------------------------------ #
    @staticmethod
    def _row_to_token(row: sqlite3.Row) -> TokenRecord:
        return TokenRecord(
            id=row["id"],
            kind=row["kind"],
            text=row["text"],
            spacing=row["spacing"],
            count=row["count"],
        )

    def find_token(self, kind: str, text: str) -> TokenRecord | None:
        row = self.query_one(
            "SELECT id, kind, text, spacing, count FROM token WHERE kind = ? AND text = ?",
            (kind, text),
        )
        return self._row_to_token(row) if row is not None else None

    def get_token(self, token_id: int) -> TokenRecord | None:
        row = self.query_one(
            "SELECT id, kind, text, spacing, count FROM token WHERE id = ?", (token_id,)
        )
        return self._row_to_token(row) if row is not None else None

    def find_or_create_token(self, kind: str, text: str, spacing: int = 0) -> int:
        token_id = self.scalar("SELECT id FROM token WHERE kind = ? AND text = ?", (kind, text))
        if token_id is not None:
            self.execute("UPDATE token SET count = count + 1 WHERE id = ?", (token_id,))
            return token_id
        return self.execute(
            "INSERT INTO token (kind, text, spacing) VALUES (?, ?, ?)", (kind, text, spacing)
        )

    def get_tokens_in_order(self, token_ids: Sequence[int]) -> List[TokenRecord]:
        """Materialise a state's token ids, keeping the caller's order and repeats."""
        ids = self._check_arity(token_ids)
        rows = self.query(self.queries.token_list, ids)
        by_id = {row["id"]: self._row_to_token(row) for row in rows}
        missing = [token_id for token_id in ids if token_id not in by_id]
        if missing:
            raise StorageError(f"unknown token id(s): {missing}")
        return [by_id[token_id] for token_id in ids]

    # ------------------------------------------------------------------ #
    # States
    # ------------------------------------------------------------------ #
    def _check_arity(self, token_ids: Sequence[int]) -> Tuple[int, ...]:
        ids = tuple(token_ids)
        if len(ids) != self.order:
            raise ValueError(f"expected {self.order} token id(s), got {len(ids)}")
        return ids

    def find_state(self, token_ids: Sequence[int]) -> int | None:
        return self.scalar(self.queries.find_state, self._check_arity(token_ids))

    def find_or_create_state(self, token_ids: Sequence[int]) -> int:
        ids = self._check_arity(token_ids)
        state_id = self.scalar(self.queries.find_state, ids)
        if state_id is not None:
            return state_id
        return self.execute(self.queries.new_state, ids)

    def get_state_tokens(self, state_id: int) -> Tuple[int, ...] | None:
        row = self.query_one(self.queries.get_state, (state_id,))
        if row is None:
            return None
        return tuple(row[name] for name in self.queries.columns)

    def random_state_containing(self, token_id: int) -> int | None:
        return self.scalar(self.queries.random_state_with, {"token_id": token_id})

    def max_state_id(self) -> int:
        return int(self.scalar("SELECT max(id) FROM state", default=0))

    # ------------------------------------------------------------------ #
    # Transitions
    # ------------------------------------------------------------------ #
    def _record_transition(self, table: str, state_id: int, token_id: int) -> None:
        edge_id = self.scalar(
            f"SELECT id FROM {table} WHERE state_id = ? AND token_id = ?", (state_id, token_id)
        )
        if edge_id is not None:
            self.execute(f"UPDATE {table} SET count = count + 1 WHERE id = ?", (edge_id,))
        else:
            self.execute(
                f"INSERT INTO {table} (state_id, token_id) VALUES (?, ?)", (state_id, token_id)
            )

    def _sample_transition(self, table: str, state_id: int) -> int | None:
        return self.scalar(
            f"""
            SELECT token_id
            FROM {table}
            WHERE state_id = ?
            ORDER BY {sampling.SQL_FUNCTION_NAME}(count) DESC
            LIMIT 1
            """,
            (state_id,),
        )

    def record_forward(self, state_id: int, token_id: int) -> None:
        self._record_transition(FORWARD_TABLE, state_id, token_id)

    def record_backward(self, state_id: int, token_id: int) -> None:
        self._record_transition(BACKWARD_TABLE, state_id, token_id)

    def sample_forward(self, state_id: int) -> int | None:
        return self._sample_transition(FORWARD_TABLE, state_id)

    def sample_backward(self, state_id: int) -> int | None:
        return self._sample_transition(BACKWARD_TABLE, state_id)

    def transition_count(self, table: str, state_id: int, token_id: int) -> int:
        """Return the stored weight of an edge (0 when absent)."""
        if table not in (FORWARD_TABLE, BACKWARD_TABLE):
            raise ValueError(f"unknown transition table {table!r}")
        return int(
            self.scalar(
                f"SELECT count FROM {table} WHERE state_id = ? AND token_id = ?",
                (state_id, token_id),
                default=0,
            )
        )


__all__ = [
    "BACKWARD_TABLE",
    "DEFAULT_ORDER",
    "FORWARD_TABLE",
    "IndexStore",
    "MEMORY_LOCATION",
    "StateQueries",
    "StoreStats",
    "TokenRecord",
]
