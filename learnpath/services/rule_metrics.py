from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from typing import Protocol

DEFAULT_FLUSH_EVERY = 50


class MetricsWriter(Protocol):
    def increment_metrics(self, rule_id: str, *, executions: int, matches: int, total_ms: float) -> None: ...


@dataclass
class _Pending:
    executions: int = 0
    matches: int = 0
    total_ms: float = 0.0


def _flush_every_from_env() -> int:
    try:
        return max(1, int(str(os.environ.get("RULES_METRICS_FLUSH_EVERY", "")).strip() or DEFAULT_FLUSH_EVERY))
    except ValueError:
        return DEFAULT_FLUSH_EVERY


class BufferedMetricsSink:
    """
    Per-rule execution counters, buffered in memory and written in batches.

    Counts are eventually consistent: a failed flush is logged and its batch
    dropped; evaluation never waits on or fails because of it.
    """

    def __init__(self, writer: MetricsWriter, flush_every: int | None = None) -> None:
        self._writer = writer
        self.flush_every = max(1, int(flush_every)) if flush_every is not None else _flush_every_from_env()
        self._pending: dict[str, _Pending] = {}
        self._count = 0
        self._lock = threading.Lock()
        self._logger = logging.getLogger("rule_metrics")

    def record(self, rule_id: str, matched: bool, elapsed_ms: float) -> None:
        with self._lock:
            p = self._pending.setdefault(rule_id, _Pending())
            p.executions += 1
            p.matches += 1 if matched else 0
            p.total_ms += float(elapsed_ms)
            self._count += 1
            due = self._count >= self.flush_every
        if due:
            self.flush()

    def pending(self) -> int:
        with self._lock:
            return self._count

    def flush(self) -> int:
        with self._lock:
            batch, self._pending, self._count = self._pending, {}, 0
        written = 0
        for rule_id, p in batch.items():
            try:
                self._writer.increment_metrics(
                    rule_id, executions=p.executions, matches=p.matches, total_ms=p.total_ms
                )
                written += 1
            except Exception as e:
                self._logger.error(
                    "rule metrics flush failed rule_id=%s executions=%s error=%s", rule_id, p.executions, e
                )
        return written
