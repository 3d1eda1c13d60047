from __future__ import annotations

import random
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, Dict, Iterable, List, Sequence, Tuple

from .db import IndexStore, TokenRecord
from .errors import StorageError
from .tokenizer import Token


class WalkStop(str, Enum):
    """Why a walk ended. None of these are errors."""

    NO_TRANSITION = "no_transition"
    NO_STATE = "no_state"
    MAX_ITERATIONS = "max_iterations"


@dataclass(frozen=True)
class Walk:
    token_ids: Tuple[int, ...]
    stop: WalkStop

    @property
    def steps(self) -> int:
        return len(self.token_ids)


@dataclass(frozen=True)
class LearnResult:
    tokens: int
    windows: int

    def __add__(self, other: "LearnResult") -> "LearnResult":
        return LearnResult(self.tokens + other.tokens, self.windows + other.windows)


@dataclass(frozen=True)
class Reply:
    pivot: int | None
    head: Tuple[TokenRecord, ...] = ()
    seed: Tuple[TokenRecord, ...] = ()
    tail: Tuple[TokenRecord, ...] = ()
    backward_stop: WalkStop | None = None
    forward_stop: WalkStop | None = None

    @property
    def tokens(self) -> List[TokenRecord]:
        """Backward part, pivot tokens and forward part in reading order."""
        return [*self.head, *self.seed, *self.tail]

    @property
    def empty(self) -> bool:
        return self.pivot is None


class ChainEngine:
    """Learning and random-walk generation over an :class:`IndexStore`."""

    def __init__(self, store: IndexStore, *, rng: random.Random | None = None) -> None:
        self.store = store
        self.order = store.order
        self.rng = rng or random

    # ------------------------------------------------------------------ #
    # Learning
    # ------------------------------------------------------------------ #
    def learn(self, tokens: Sequence[Token]) -> LearnResult:
        window: Deque[int] = deque()
        prev_state_id: int | None = None
        prev_oldest_id: int | None = None
        windows = 0
        with self.store.batch():
            for token in tokens:
                token_id = self.store.find_or_create_token(token.kind, token.text, token.spacing)
                window.append(token_id)
                if len(window) < self.order:
                    continue
                state_id = self.store.find_or_create_state(window)
                if prev_state_id is not None:
                    self.store.record_forward(prev_state_id, token_id)
                    assert prev_oldest_id is not None
                    self.store.record_backward(state_id, prev_oldest_id)
                prev_state_id = state_id
                prev_oldest_id = window.popleft()
                windows += 1
        return LearnResult(tokens=len(tokens), windows=windows)

    # ------------------------------------------------------------------ #
    # Generation
    # ------------------------------------------------------------------ #
    def choose_pivot(self, input_tokens: Iterable[Token] | None = None) -> int | None:
        """
        Pick the state a reply grows from.

        Known input tokens are tried rarest first; a token seen only once is
        skipped. Without a usable input token the pivot is uniform over all
        states. Returns None when the index holds no state at all.
        """
        known: List[TokenRecord] = []
        for token in input_tokens or ():
            record = self.store.find_token(token.kind, token.text)
            if record is not None:
                known.append(record)
        known.sort(key=lambda record: record.count)
        for record in known:
            if record.count <= 1:
                continue
            pivot = self.store.random_state_containing(record.id)
            if pivot is not None:
                return pivot
        max_id = self.store.max_state_id()
        if max_id < 1:
            return None
        return self.rng.randint(1, max_id)

    def _state_window(self, state_id: int) -> Deque[int]:
        token_ids = self.store.get_state_tokens(state_id)
        if token_ids is None:
            raise StorageError(f"unknown state id {state_id}")
        return deque(token_ids)

    def walk_forward(self, state_id: int, max_iterations: int) -> Walk:
        window = self._state_window(state_id)
        produced: List[int] = []
        for _ in range(max_iterations):
            next_id = self.store.sample_forward(state_id)
            if next_id is None:
                return Walk(tuple(produced), WalkStop.NO_TRANSITION)
            produced.append(next_id)
            window.popleft()
            window.append(next_id)
            found = self.store.find_state(window)
            if found is None:
                return Walk(tuple(produced), WalkStop.NO_STATE)
            state_id = found
        return Walk(tuple(produced), WalkStop.MAX_ITERATIONS)

    def walk_backward(self, state_id: int, max_iterations: int) -> Walk:
        window = self._state_window(state_id)
        produced: Deque[int] = deque()
        for _ in range(max_iterations):
            prev_id = self.store.sample_backward(state_id)
            if prev_id is None:
                return Walk(tuple(produced), WalkStop.NO_TRANSITION)
            produced.appendleft(prev_id)
            window.pop()
            window.appendleft(prev_id)
            found = self.store.find_state(window)
            if found is None:
                return Walk(tuple(produced), WalkStop.NO_STATE)
            state_id = found
        return Walk(tuple(produced), WalkStop.MAX_ITERATIONS)

    def reply(self, input_tokens: Iterable[Token] | None = None, max_iterations: int = 20) -> Reply:
        if max_iterations < 0:
            raise ValueError(f"max_iterations must be >= 0 (got {max_iterations})")
        pivot = self.choose_pivot(input_tokens)
        if pivot is None:
            return Reply(pivot=None)
        seed = self.store.get_tokens_in_order(self._state_window(pivot))
        backward = self.walk_backward(pivot, max_iterations)
        forward = self.walk_forward(pivot, max_iterations)
        cache: Dict[int, TokenRecord] = {record.id: record for record in seed}
        return Reply(
            pivot=pivot,
            head=self._materialize(backward.token_ids, cache),
            seed=tuple(seed),
            tail=self._materialize(forward.token_ids, cache),
            backward_stop=backward.stop,
            forward_stop=forward.stop,
        )

    def _materialize(self, token_ids: Sequence[int], cache: Dict[int, TokenRecord]) -> Tuple[TokenRecord, ...]:
        records: List[TokenRecord] = []
        for token_id in token_ids:
            record = cache.get(token_id)
            if record is None:
                record = self.store.get_token(token_id)
                if record is None:
                    raise StorageError(f"unknown token id {token_id}")
                cache[token_id] = record
            records.append(record)
        return tuple(records)


__all__ = ["ChainEngine", "LearnResult", "Reply", "Walk", "WalkStop"]
