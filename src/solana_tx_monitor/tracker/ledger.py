"""Bounded history of transaction events and sliding-window metrics."""

from __future__ import annotations

import logging
import math
import threading
from collections import OrderedDict
from collections.abc import Sequence
from datetime import datetime

from solana_tx_monitor.config import LedgerConfig
from solana_tx_monitor.tracker.models import (
    TransactionEvent,
    TransactionMetrics,
    TransactionStatus,
)

logger = logging.getLogger(__name__)


def nearest_rank(sorted_values: Sequence[int], q: float) -> int:
    """Truncating nearest-rank percentile without interpolation (0 if empty)."""
    if not sorted_values:
        return 0
    index = min(len(sorted_values) - 1, math.floor(len(sorted_values) * q))
    return sorted_values[index]


def window_slice(
    events: Sequence[TransactionEvent], *, now: datetime, config: LedgerConfig
) -> list[TransactionEvent]:
    cutoff = now - config.metrics_window
    return [e for e in events if e.timestamp > cutoff]


def compute_metrics(window: Sequence[TransactionEvent], *, config: LedgerConfig) -> TransactionMetrics:
    """Compute metrics for an already-sliced window.

    Pure: the same slice always yields the same metrics.
    """
    count = len(window)
    window_seconds = config.metrics_window.total_seconds()
    tps = count / window_seconds

    confirm_times = sorted(
        e.confirmation_time_ms
        for e in window
        if e.status == TransactionStatus.CONFIRMED and e.confirmation_time_ms is not None
    )
    p50 = nearest_rank(confirm_times, 0.5)
    p95 = nearest_rank(confirm_times, 0.95)

    failed = sum(1 for e in window if e.status == TransactionStatus.FAILED)
    fail_rate_pct = (failed / count) * 100 if count else 0.0

    anomalies = sum(
        1
        for e in window
        if e.confirmation_time_ms is not None and e.confirmation_time_ms > config.slow_confirmation_ms
    )
    if fail_rate_pct > config.fail_rate_alert_pct:
        anomalies += math.floor(fail_rate_pct / 10)
    if tps > config.tps_alert:
        anomalies += 1

    return TransactionMetrics(
        tps=tps,
        confirm_time_p50_ms=p50,
        confirm_time_p95_ms=p95,
        fail_rate_pct=fail_rate_pct,
        anomaly_count=anomalies,
        sample_size=count,
    )


class ConfirmationLedger:
    """FIFO of transaction events keyed by signature.

    Recording an already-known signature replaces its event in place; new
    signatures are appended and the oldest entries are evicted beyond
    ``history_size``. Readers work on copies taken under the lock, so metric
    recomputation never observes a half-applied write.
    """

    def __init__(self, config: LedgerConfig | None = None) -> None:
        self._config = config or LedgerConfig()
        self._events: OrderedDict[str, TransactionEvent] = OrderedDict()
        self._lock = threading.Lock()
        self._metrics = TransactionMetrics()

    @property
    def config(self) -> LedgerConfig:
        return self._config

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def record(self, event: TransactionEvent) -> None:
        with self._lock:
            if event.signature in self._events:
                self._events[event.signature] = event
                return
            self._events[event.signature] = event
            while len(self._events) > self._config.history_size:
                evicted, _ = self._events.popitem(last=False)
                logger.debug("Ledger full, evicted %s", evicted[:8])

    def get(self, signature: str) -> TransactionEvent | None:
        with self._lock:
            return self._events.get(signature)

    def snapshot(self) -> list[TransactionEvent]:
        """Copy of all events, oldest first."""
        with self._lock:
            return list(self._events.values())

    def recent(self, limit: int = 100) -> list[TransactionEvent]:
        if limit <= 0:
            return []
        return self.snapshot()[-limit:]

    def by_program(self, program_id: str, limit: int = 100) -> list[TransactionEvent]:
        if limit <= 0:
            return []
        return [e for e in self.snapshot() if e.program_id == program_id][-limit:]

    def recompute_metrics(self, now: datetime) -> TransactionMetrics:
        """Recompute metrics over the trailing window ending at ``now``."""
        window = window_slice(self.snapshot(), now=now, config=self._config)
        metrics = compute_metrics(window, config=self._config)
        with self._lock:
            self._metrics = metrics
        return metrics

    def latest_metrics(self) -> TransactionMetrics:
        with self._lock:
            return self._metrics

    def prune(self, older_than: datetime) -> int:
        """Drop events with ``timestamp <= older_than``; returns removed count.

        Pending events are kept regardless of age: their watch is still running
        and will overwrite them on resolution.
        """
        with self._lock:
            stale = [
                sig
                for sig, e in self._events.items()
                if e.timestamp <= older_than and e.status != TransactionStatus.PENDING
            ]
            for sig in stale:
                del self._events[sig]
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
            self._metrics = TransactionMetrics()
