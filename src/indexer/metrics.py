"""Indexer runtime counters: cycles, throughput and error rates.

Accumulated by the poll loop and dispatcher, read by ``status()`` and the
periodic stats log line.
"""

import time
from dataclasses import dataclass
from threading import Lock


@dataclass(frozen=True)
class MetricsSnapshot:
    uptime_sec: float
    cycles: int
    failed_cycles: int
    transactions_scanned: int
    relevant_transactions: int
    events_applied: int
    events_skipped: int
    events_malformed: int
    graduations: int
    last_cycle_ms: float
    max_cycle_ms: float

    @property
    def error_rate_pct(self) -> float:
        if self.cycles == 0:
            return 0.0
        return self.failed_cycles / self.cycles * 100


class IndexerMetrics:
    """Process-wide counters; the lock guards reads from other threads."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._start_time = time.monotonic()
        self._cycles = 0
        self._failed_cycles = 0
        self._scanned = 0
        self._relevant = 0
        self._applied = 0
        self._skipped = 0
        self._malformed = 0
        self._graduations = 0
        self._last_cycle_ms = 0.0
        self._max_cycle_ms = 0.0

    def record_cycle(self, latency_ms: float, *, scanned: int, relevant: int) -> None:
        with self._lock:
            self._cycles += 1
            self._scanned += scanned
            self._relevant += relevant
            self._last_cycle_ms = latency_ms
            self._max_cycle_ms = max(self._max_cycle_ms, latency_ms)

    def record_failure(self) -> None:
        with self._lock:
            self._cycles += 1
            self._failed_cycles += 1

    def record_dispatch(self, applied: int, skipped: int, malformed: int) -> None:
        with self._lock:
            self._applied += applied
            self._skipped += skipped
            self._malformed += malformed

    def record_graduations(self, count: int) -> None:
        if count:
            with self._lock:
                self._graduations += count

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            return MetricsSnapshot(
                uptime_sec=time.monotonic() - self._start_time,
                cycles=self._cycles,
                failed_cycles=self._failed_cycles,
                transactions_scanned=self._scanned,
                relevant_transactions=self._relevant,
                events_applied=self._applied,
                events_skipped=self._skipped,
                events_malformed=self._malformed,
                graduations=self._graduations,
                last_cycle_ms=self._last_cycle_ms,
                max_cycle_ms=self._max_cycle_ms,
            )

    def format_summary(self) -> str:
        s = self.snapshot()
        return (
            f"cycles={s.cycles} failed={s.failed_cycles} ({s.error_rate_pct:.1f}%) "
            f"scanned={s.transactions_scanned} relevant={s.relevant_transactions} "
            f"applied={s.events_applied} dup/noop={s.events_skipped} "
            f"malformed={s.events_malformed} graduated={s.graduations} "
            f"last={s.last_cycle_ms:.0f}ms max={s.max_cycle_ms:.0f}ms"
        )
