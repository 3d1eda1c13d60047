#!/usr/bin/env python3
from __future__ import annotations

import argparse
import random
import sys
from pathlib import Path

SCRIPT_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = SCRIPT_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from markov_brain import MarkovBrain
from markov_brain.settings import load_settings
from log_helpers import log


DEFAULT_CORPUS: tuple[str, ...] = (
    "The quick brown fox jumps over the lazy dog.",
    "A lazy dog sleeps in the warm sun all day.",
    "The fox runs into the forest when the dog wakes up.",
    "Every morning the quick fox looks for food near the river.",
    "The dog barks at the fox, but the fox is already gone!",
    "Check https://example.org for more stories about the #fox and the @dog.",
)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Learn a small corpus into an in-memory index and print a few replies."
    )
    parser.add_argument("prompt", nargs="*", help="Optional seed text for the replies.")
    parser.add_argument(
        "--corpus",
        help="Plain-text file to learn line by line (default: a built-in sample).",
    )
    parser.add_argument("--order", type=int, default=1, help="Chain order (default: %(default)s).")
    parser.add_argument("--replies", type=int, default=3, help="Replies to print (default: %(default)s).")
    parser.add_argument(
        "--max-length",
        type=int,
        default=140,
        help="Character limit per reply (default: %(default)s).",
    )
    parser.add_argument("--seed", type=int, help="RNG seed for reproducible replies.")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    if args.corpus:
        lines = Path(args.corpus).read_text(encoding="utf-8").splitlines()
    else:
        lines = list(DEFAULT_CORPUS)
    rng = random.Random(args.seed) if args.seed is not None else None
    with MarkovBrain(":memory:", order=args.order, settings=load_settings(), rng=rng) as brain:
        learned = brain.learn_lines(lines)
        stats = brain.stats()
        log(
            f"[smoke-train] Learned {learned.tokens} tokens -> {stats.tokens} distinct tokens, "
            f"{stats.states} states, {stats.transitions} transitions."
        )
        prompt = " ".join(args.prompt) or None
        for idx in range(1, max(1, args.replies) + 1):
            log(f"[smoke-train] reply #{idx}: {brain.reply(prompt, max_length=args.max_length)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
