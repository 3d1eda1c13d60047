from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
from typing import Dict


def _parse_env_file(path: Path) -> Dict[str, str]:
    """Minimal .env parser (no external dependency required)."""
    data: dict[str, str] = {}
    if not path.exists():
        return data
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        data[key.strip()] = value.strip().strip('"').strip("'")
    return data


@dataclass(frozen=True)
class BrainSettings:
    sqlite_path: str
    order: int
    max_iterations: int
    max_reply_length: int | None
    token_filter: str
    env_file: Path | None

    def sqlite_dsn(self) -> str:
        """Return the SQLite location used by the CLI utilities."""
        return self.sqlite_path


def load_settings(env_path: str | Path = ".env") -> BrainSettings:
    """Load markov-brain settings from .env (if present) + real environment."""
    env_file = Path(env_path)
    file_values = _parse_env_file(env_file)

    def read(key: str, default: str) -> str:
        return os.environ.get(key, file_values.get(key, default))

    sqlite_path = read("MARKOV_BRAIN_SQLITE_PATH", "var/markov_brain.sqlite3")
    order = max(1, int(read("MARKOV_BRAIN_ORDER", "2")))
    max_iterations = max(0, int(read("MARKOV_BRAIN_MAX_ITERATIONS", "20")))
    max_length_raw = read("MARKOV_BRAIN_MAX_REPLY_LENGTH", "").strip()
    max_reply_length = int(max_length_raw) if max_length_raw else None
    if max_reply_length is not None and max_reply_length <= 0:
        max_reply_length = None
    token_filter = read("MARKOV_BRAIN_TOKEN_FILTER", "").strip()

    env_file_used = env_file if env_file.exists() else None
    return BrainSettings(
        sqlite_path=sqlite_path,
        order=order,
        max_iterations=max_iterations,
        max_reply_length=max_reply_length,
        token_filter=token_filter,
        env_file=env_file_used,
    )
