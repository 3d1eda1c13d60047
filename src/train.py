from __future__ import annotations

import argparse
import itertools
import json
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Iterator, List, Sequence, Tuple

from markov_brain import MarkovBrain, StoreOpenError
from markov_brain.chain import LearnResult
from markov_brain.settings import load_settings

from helpers.resource_monitor import ResourceMonitor, ResourceSample
from log_helpers import log, log_error, log_verbose


def build_parser(default_db_path: str, default_order: int = 2) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Teach a markov-brain SQLite index from plain-text or NDJSON corpora."
    )
    parser.add_argument(
        "inputs",
        nargs="*",
        help="Text/NDJSON files or directories to ingest. Every non-blank line is learned as one text.",
    )
    parser.add_argument(
        "--db",
        default=default_db_path,
        help="Path to the SQLite index file (default: %(default)s).",
    )
    parser.add_argument(
        "--order",
        type=int,
        default=default_order,
        help=(
            "Chain order used when the index is created (default: %(default)s). "
            "Ignored for an existing index, which keeps the order it was created with."
        ),
    )
    parser.add_argument(
        "--encoding",
        default="utf-8",
        help="File encoding used while reading corpora (default: %(default)s).",
    )
    parser.add_argument(
        "--stdin",
        action="store_true",
        help="Read an additional corpus from STDIN.",
    )
    parser.add_argument(
        "--recursive",
        action="store_true",
        help="When a directory is provided, recursively ingest *.txt files.",
    )
    parser.add_argument(
        "--reset",
        action="store_true",
        help="Delete the target index (if it exists) before training.",
    )
    parser.add_argument(
        "--filter",
        default=None,
        help=(
            "Token kinds to drop while learning: w=words, p=punctuation, u=urls, "
            "#=hashtags, @=mentions, _=unknown (e.g. 'u@'). Defaults to MARKOV_BRAIN_TOKEN_FILTER."
        ),
    )
    parser.add_argument(
        "--json-field",
        default="text",
        help="Field read from each *.json/*.ndjson line (default: %(default)s).",
    )
    parser.add_argument(
        "--profile-ingest",
        action="store_true",
        help="Measure ingest latency + RSS per corpus.",
    )
    return parser


def resolve_db_path(raw: str, reset: bool) -> Tuple[str, Path | None]:
    if raw == ":memory:":
        if reset:
            raise ValueError("--reset cannot be combined with the in-memory index")
        return raw, None
    path = Path(raw).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    if reset:
        for candidate in (path, Path(f"{path}-wal"), Path(f"{path}-shm")):
            if candidate.exists():
                candidate.unlink()
    return str(path), path


def collect_files(entries: Sequence[str], recursive: bool) -> List[Path]:
    files: list[Path] = []
    for entry in entries:
        path = Path(entry).expanduser()
        if path.is_file():
            files.append(path)
            log_verbose(3, f"[train:v3] Queued input file {path}")
            continue
        if path.is_dir():
            pattern = "**/*.txt" if recursive else "*.txt"
            for candidate in sorted(path.glob(pattern)):
                if candidate.is_file():
                    files.append(candidate)
                    log_verbose(3, f"[train:v3] Discovered input file {candidate}")
            continue
        raise FileNotFoundError(f"No such file or directory: {path}")
    return files


@dataclass
class Corpus:
    label: str
    lines: List[str]


def iter_json_lines(path: Path, encoding: str, field: str) -> Iterator[str]:
    with path.open(encoding=encoding) as handle:
        for line_no, raw in enumerate(handle, start=1):
            raw = raw.strip()
            if not raw:
                continue
            try:
                payload = json.loads(raw)
            except json.JSONDecodeError as exc:
                log_error(f"[train] JSON ingest warning ({path} line {line_no}): {exc}")
                continue
            value = payload.get(field) if isinstance(payload, dict) else None
            if isinstance(value, str) and value.strip():
                yield value


def iter_corpora(paths: Iterable[Path], encoding: str, json_field: str) -> Iterator[Corpus]:
    for path in paths:
        if path.suffix.lower() in {".json", ".ndjson", ".jsonl"}:
            yield Corpus(str(path), list(iter_json_lines(path, encoding, json_field)))
            continue
        text = path.read_text(encoding=encoding)
        yield Corpus(str(path), [line for line in text.splitlines() if line.strip()])


class TrainingProgressPrinter:
    """Provides throttle-controlled training progress logs."""

    def __init__(self, label: str, total_lines: int, interval: float = 0.75) -> None:
        self.label = label
        self.total_lines = max(1, total_lines)
        self.interval = interval
        self._last_emit = 0.0

    def __call__(self, completed: int) -> None:
        now = time.perf_counter()
        if completed != self.total_lines and (now - self._last_emit) < self.interval:
            return
        self._last_emit = now
        pct = (completed / self.total_lines) * 100.0
        log(f"[train] {self.label}: {pct:5.1f}% ({completed}/{self.total_lines} lines)")


def learn_corpus(
    brain: MarkovBrain,
    corpus: Corpus,
    progress: Callable[[int], None] | None = None,
) -> LearnResult:
    total = LearnResult(tokens=0, windows=0)
    for idx, line in enumerate(corpus.lines, start=1):
        total += brain.learn(line)
        if progress:
            progress(idx)
    return total


class IngestProfiler:
    """Optional profiler that logs ingest latency together with resource telemetry."""

    def __init__(self, enabled: bool) -> None:
        self.enabled = enabled
        self.monitor = ResourceMonitor() if enabled else None

    def measure(self, label: str, fn: Callable[[], LearnResult]) -> LearnResult:
        if not self.monitor:
            return fn()
        before: ResourceSample = self.monitor.snapshot()
        start = time.perf_counter()
        result = fn()
        duration = time.perf_counter() - start
        delta = self.monitor.delta(before, self.monitor.snapshot())
        log(f"[profile] {label}: {result.tokens} tokens in {duration:.2f}s {self.monitor.describe(delta)}")
        return result


def main(argv: Sequence[str] | None = None) -> None:
    settings = load_settings()
    if settings.env_file is not None:
        log_verbose(3, f"[train:v3] Loaded settings from {settings.env_file}")
    parser = build_parser(settings.sqlite_dsn(), settings.order)
    args = parser.parse_args(argv)
    log_verbose(3, f"[train:v3] Parsed CLI arguments: {vars(args)}")

    if not args.inputs and not args.stdin:
        parser.error("Provide at least one input path or enable --stdin")
    if args.order < 1:
        parser.error(f"--order must be >= 1 (got {args.order})")

    try:
        db_path_str, _db_path = resolve_db_path(args.db, args.reset)
        file_inputs = collect_files(args.inputs, args.recursive)
    except (ValueError, FileNotFoundError) as exc:
        parser.error(str(exc))
    log_verbose(3, f"[train:v3] Prepared {len(file_inputs)} file input(s) for ingestion.")

    corpora: Iterable[Corpus] = iter_corpora(file_inputs, args.encoding, args.json_field)
    if args.stdin:
        stdin_lines = [line for line in sys.stdin.read().splitlines() if line.strip()]
        if stdin_lines:
            corpora = itertools.chain(corpora, [Corpus("<stdin>", stdin_lines)])
            log_verbose(3, f"[train:v3] STDIN payload appended ({len(stdin_lines)} lines).")

    try:
        brain = MarkovBrain(db_path_str, order=args.order, settings=settings)
    except StoreOpenError as exc:
        parser.error(str(exc))
    if args.filter is not None:
        brain.set_filter(args.filter)

    profiler = IngestProfiler(args.profile_ingest)
    totals = LearnResult(tokens=0, windows=0)
    processed = 0
    try:
        log(f"[train] Starting ingest into {db_path_str} with order={brain.order}.")
        with brain.batch():
            for corpus in corpora:
                processed += 1
                log(f"[train] Processing {corpus.label} ({len(corpus.lines)} lines)...")
                reporter = TrainingProgressPrinter(corpus.label, len(corpus.lines))
                result = profiler.measure(
                    corpus.label,
                    lambda item=corpus, rep=reporter: learn_corpus(brain, item, rep),
                )
                totals += result
                log(f"[train] Ingested {corpus.label}: {result.tokens} tokens -> {result.windows} windows")
        if processed == 0:
            parser.error("No readable corpora found in the provided inputs")
        stats = brain.stats()
        log(
            f"[train] Completed ingest: {totals.tokens} tokens / {totals.windows} windows. "
            f"Index holds {stats.tokens} tokens, {stats.states} states, {stats.transitions} transitions."
        )
    finally:
        brain.close()


if __name__ == "__main__":
    main()
