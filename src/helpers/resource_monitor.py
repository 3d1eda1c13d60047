from __future__ import annotations

import os
import time
from dataclasses import dataclass
from typing import Tuple

import psutil

LoadAverage = Tuple[float, float, float]


@dataclass(frozen=True)
class ResourceSample:
    """Captures the absolute process/system metrics at a point in time."""

    taken_at: float
    rss_mb: float
    memory_percent: float
    cpu_total: float
    thread_count: int
    load_avg: LoadAverage | None


@dataclass(frozen=True)
class ResourceDelta:
    """Summarizes how the metrics changed between two samples."""

    duration_sec: float
    cpu_percent: float | None
    rss_after_mb: float
    rss_delta_mb: float
    memory_percent: float
    thread_count: int
    load_avg: LoadAverage | None


class ResourceMonitor:
    """Lightweight process telemetry collector used to profile ingest runs."""

    _MB = 1024 * 1024

    def __init__(self, pid: int | None = None) -> None:
        self._cpu_count = psutil.cpu_count(logical=True) or 1
        self._process = psutil.Process(pid or os.getpid())

    def snapshot(self) -> ResourceSample:
        with self._process.oneshot():
            mem_info = self._process.memory_info()
            cpu_times = self._process.cpu_times()
            return ResourceSample(
                taken_at=time.perf_counter(),
                rss_mb=mem_info.rss / self._MB,
                memory_percent=float(self._process.memory_percent()),
                cpu_total=float(cpu_times.user + cpu_times.system),
                thread_count=int(self._process.num_threads()),
                load_avg=self._load_average(),
            )

    def delta(self, before: ResourceSample, after: ResourceSample) -> ResourceDelta:
        duration = max(0.0, after.taken_at - before.taken_at)
        cpu_percent: float | None = None
        if duration > 0:
            cpu_delta = after.cpu_total - before.cpu_total
            cpu_percent = max(0.0, (cpu_delta / duration) * 100.0 / float(self._cpu_count))
        return ResourceDelta(
            duration_sec=duration,
            cpu_percent=cpu_percent,
            rss_after_mb=after.rss_mb,
            rss_delta_mb=after.rss_mb - before.rss_mb,
            memory_percent=after.memory_percent,
            thread_count=after.thread_count,
            load_avg=after.load_avg,
        )

    def describe(self, delta: ResourceDelta) -> str:
        """Return a short, human-friendly summary string."""
        parts: list[str] = []
        if delta.cpu_percent is not None:
            parts.append(f"cpu={delta.cpu_percent:.1f}%/{self._cpu_count}c")
        parts.append(f"rss={delta.rss_after_mb:.1f}MB({delta.rss_delta_mb:+.1f})")
        parts.append(f"mem%={delta.memory_percent:.1f}")
        parts.append(f"threads={delta.thread_count}")
        if delta.load_avg is not None:
            parts.append("load=" + ",".join(f"{value:.2f}" for value in delta.load_avg))
        return " ".join(parts)

    @staticmethod
    def _load_average() -> LoadAverage | None:
        try:
            load = psutil.getloadavg()
        except (AttributeError, OSError):
            return None
        return float(load[0]), float(load[1]), float(load[2])
