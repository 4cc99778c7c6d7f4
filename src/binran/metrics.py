"""
Request metrics for the handbook API.

Keeps per-handbook request counters plus process memory, and appends one JSON
line per request to <METRICS_DIR>/metrics.jsonl.
"""
from __future__ import annotations

import json
import os
import threading
import time
from dataclasses import dataclass
from pathlib import Path

import psutil

from .config import METRICS_DIR


@dataclass
class _KeyCounters:
    requests: int = 0
    failures: int = 0
    characters: int = 0
    total_latency_ms: float = 0.0
    max_latency_ms: float = 0.0

    def to_dict(self) -> dict:
        avg = self.total_latency_ms / self.requests if self.requests else 0.0
        return {
            "requests": self.requests,
            "failures": self.failures,
            "characters_served": self.characters,
            "avg_latency_ms": round(avg, 2),
            "max_latency_ms": round(self.max_latency_ms, 2),
        }


class MetricsCollector:
    def __init__(self, log_dir: str | Path = METRICS_DIR):
        self._lock = threading.Lock()
        self._started = time.time()
        self._totals = _KeyCounters()
        self._by_key: dict[str, _KeyCounters] = {}

        self._log_path = Path(log_dir) / "metrics.jsonl"
        self._log_path.parent.mkdir(parents=True, exist_ok=True)
        self._process = psutil.Process(os.getpid())

    def record_request(self, latency_ms: float, success: bool, key: str = "", characters: int = 0) -> None:
        with self._lock:
            targets = [self._totals]
            if key:
                targets.append(self._by_key.setdefault(key, _KeyCounters()))
            for counters in targets:
                counters.requests += 1
                counters.failures += 0 if success else 1
                counters.characters += int(characters)
                counters.total_latency_ms += latency_ms
                counters.max_latency_ms = max(counters.max_latency_ms, latency_ms)

        line = json.dumps(
            {
                "timestamp": time.strftime("%Y-%m-%dT%H:%M:%S%z"),
                "key": key,
                "success": success,
                "latency_ms": round(latency_ms, 2),
                "characters": characters,
            },
            ensure_ascii=False,
        )
        try:
            with open(self._log_path, "a", encoding="utf-8") as fh:
                fh.write(line + "\n")
        except OSError:
            pass

    def get_summary(self) -> dict:
        with self._lock:
            totals = self._totals.to_dict()
            by_key = {key: counters.to_dict() for key, counters in sorted(self._by_key.items())}
        return {
            "uptime_seconds": round(time.time() - self._started, 1),
            "requests": totals,
            "handbooks": by_key,
            "memory_rss_mb": round(self._process.memory_info().rss / (1024 * 1024), 1),
        }


# Module-level singleton used by the API server.
metrics_collector = MetricsCollector()
