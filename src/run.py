from __future__ import annotations

import argparse
import random
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from markov_brain import MarkovBrain, StoreOpenError
from markov_brain.settings import load_settings

from log_helpers import log, log_verbose


def build_parser(default_db_path: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate replies from a trained markov-brain index."
    )
    parser.add_argument(
        "--db",
        default=default_db_path,
        help="Path to the SQLite index produced by train.py (default: %(default)s).",
    )
    parser.add_argument(
        "--prompt",
        help="Seed text for a single reply in non-interactive mode. If omitted an interactive shell starts.",
    )
    parser.add_argument(
        "--max-length",
        type=int,
        default=None,
        help="Truncate replies to this many characters without splitting words (default: unlimited).",
    )
    parser.add_argument(
        "--max-iterations",
        type=int,
        default=None,
        help="Walk budget in each direction from the pivot (default: MARKOV_BRAIN_MAX_ITERATIONS or 20).",
    )
    parser.add_argument(
        "--count",
        type=int,
        default=1,
        help="Number of replies to print per prompt (default: %(default)s).",
    )
    parser.add_argument(
        "--seed",
        type=int,
        help="Seed the RNG behind fallback pivots and weighted transition picks (default: system entropy).",
    )
    parser.add_argument(
        "--stats",
        action="store_true",
        help="Log token/state/transition counts before replying.",
    )
    parser.add_argument(
        "--max-turns",
        type=int,
        default=None,
        help="Optional limit for turns in interactive mode (default: unlimited).",
    )
    return parser


def resolve_db_path(raw: str) -> str:
    if raw == ":memory:":
        raise ValueError("run.py requires a persistent index path (not :memory:)")
    path = Path(raw).expanduser()
    if not path.exists():
        raise ValueError(f"No index found at {path}; run train.py first")
    return str(path)


@dataclass(frozen=True)
class ReplyOptions:
    max_length: int | None
    max_iterations: int | None
    count: int


def format_stats(brain: MarkovBrain) -> str:
    stats = brain.stats()
    return (
        f"[run] Index order={brain.order}: {stats.tokens} tokens, "
        f"{stats.states} states, {stats.transitions} transitions"
    )


def respond_once(brain: MarkovBrain, prompt: str | None, options: ReplyOptions) -> list[str]:
    replies: list[str] = []
    for _ in range(options.count):
        reply = brain.reply(prompt, max_length=options.max_length, max_iterations=options.max_iterations)
        replies.append(reply)
        log(f"brain> {reply or '(index is empty)'}")
    return replies


def interactive_loop(brain: MarkovBrain, max_turns: int | None, options: ReplyOptions) -> None:
    log("[run] Type ':exit' or press Ctrl+D to leave, ':stats' to show index counts.")
    turns = 0
    while max_turns is None or turns < max_turns:
        try:
            user_input = input("you> ").strip()
        except EOFError:
            print()
            break
        except KeyboardInterrupt:
            log("[run] Interrupted. Exiting.")
            print()
            break
        if user_input in {":exit", ":quit"}:
            break
        if user_input == ":stats":
            log(format_stats(brain))
            continue
        respond_once(brain, user_input or None, options)
        turns += 1
    log(f"[run] Session closed after {turns} turn(s).")


def main(argv: Sequence[str] | None = None) -> None:
    settings = load_settings()
    if settings.env_file is not None:
        log_verbose(3, f"[run:v3] Loaded settings from {settings.env_file}")
    parser = build_parser(settings.sqlite_dsn())
    args = parser.parse_args(argv)
    log_verbose(3, f"[run:v3] Parsed CLI arguments: {vars(args)}")
    if args.count < 1:
        parser.error("--count must be >= 1")
    if args.max_iterations is not None and args.max_iterations < 0:
        parser.error("--max-iterations must be >= 0")

    rng = random.Random(args.seed) if args.seed is not None else None
    if args.seed is not None:
        log(f"[seed] Reply RNG initialized with seed={args.seed}")
    options = ReplyOptions(
        max_length=args.max_length,
        max_iterations=args.max_iterations,
        count=args.count,
    )
    brain: MarkovBrain | None = None
    try:
        db_path = resolve_db_path(args.db)
        brain = MarkovBrain(db_path, settings=settings, rng=rng)
        if args.stats:
            log(format_stats(brain))
        if args.prompt is not None:
            respond_once(brain, args.prompt, options)
        else:
            interactive_loop(brain, args.max_turns, options)
    except (ValueError, StoreOpenError) as exc:
        parser.error(str(exc))
    finally:
        if brain is not None:
            brain.close()


if __name__ == "__main__":
    main()
