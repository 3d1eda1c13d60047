from __future__ import annotations

import random
from pathlib import Path
from typing import Iterable

from log_helpers import log_verbose

from .chain import ChainEngine, LearnResult, Reply
from .db import MEMORY_LOCATION, IndexStore, StoreStats
from .settings import BrainSettings, load_settings
from .text_limits import shorten
from .tokenizer import Tokenizer, filter_tokens, parse_filter


class MarkovBrain:
    """Facilitates learning + replying on top of a persisted order-N chain."""

    def __init__(
        self,
        db_path: str | Path = MEMORY_LOCATION,
        order: int | None = None,
        *,
        settings: BrainSettings | None = None,
        tokenizer: Tokenizer | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.settings = settings or load_settings()
        requested = order if order is not None else self.settings.order
        self.store, effective = IndexStore.open_or_create(db_path, requested, rng=rng)
        if order is not None and effective != order:
            log_verbose(
                1,
                f"[brain] Requested order={order} ignored; {self.store.path} was created with order={effective}.",
            )
        self.tokenizer = tokenizer or Tokenizer()
        self.engine = ChainEngine(self.store, rng=rng)
        self.filter = parse_filter(self.settings.token_filter)
        self.max_iterations = self.settings.max_iterations
        log_verbose(3, f"[brain:v3] Opened {self.store.path} (order={effective}).")

    @property
    def order(self) -> int:
        return self.store.order

    def set_filter(self, spec: str | None) -> None:
        """Drop tokens of the given kinds (e.g. ``"up"`` = urls + punctuation) while learning."""
        self.filter = parse_filter(spec)

    # ------------------------------------------------------------------ #
    # Training utilities
    # ------------------------------------------------------------------ #
    def learn(self, *texts: str) -> LearnResult:
        total = LearnResult(tokens=0, windows=0)
        with self.store.batch():
            for text in texts:
                tokens = filter_tokens(self.tokenizer.parse(text), self.filter)
                total += self.engine.learn(tokens)
        log_verbose(3, f"[brain:v3] Learned {len(texts)} text(s): {total.tokens} tokens, {total.windows} windows.")
        return total

    def learn_lines(self, lines: Iterable[str]) -> LearnResult:
        """Learn every non-blank line as its own text, inside a single batch."""
        total = LearnResult(tokens=0, windows=0)
        with self.store.batch():
            for line in lines:
                stripped = line.strip()
                if stripped:
                    total += self.learn(stripped)
        return total

    # ------------------------------------------------------------------ #
    # Replies
    # ------------------------------------------------------------------ #
    def generate(self, text: str | None = None, max_iterations: int | None = None) -> Reply:
        iterations = self.max_iterations if max_iterations is None else max_iterations
        tokens = self.tokenizer.parse(text) if text else None
        return self.engine.reply(tokens, iterations)

    def reply(
        self,
        text: str | None = None,
        max_length: int | None = None,
        max_iterations: int | None = None,
    ) -> str:
        result = self.generate(text, max_iterations)
        if result.empty:
            log_verbose(3, "[brain:v3] Index holds no state yet; replying with an empty string.")
            return ""
        log_verbose(
            3,
            f"[brain:v3] Pivot state {result.pivot}: {len(result.head)} backward / {len(result.tail)} forward "
            f"token(s) (stops: {result.backward_stop.value}, {result.forward_stop.value}).",
        )
        composed = self.tokenizer.compose(result.tokens)
        limit = max_length if max_length is not None else self.settings.max_reply_length
        if limit is not None:
            return shorten(composed, limit)
        return composed

    # ------------------------------------------------------------------ #
    # Session helpers
    # ------------------------------------------------------------------ #
    def begin_batch(self) -> None:
        self.store.begin_batch()

    def end_batch(self) -> None:
        self.store.end_batch()

    def batch(self):
        return self.store.batch()

    def stats(self) -> StoreStats:
        return self.store.stats()

    def close(self) -> None:
        self.store.close()

    def __enter__(self) -> "MarkovBrain":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self.store.abort_batch()
        self.close()
