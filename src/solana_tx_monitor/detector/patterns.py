"""Per-actor transaction history and derived aggregates.

Tracks a bounded ring buffer of transaction records per actor and keeps the
frequency, window total and recipient set up to date after every mutation.
Every mutation runs the anomaly detector synchronously and returns the alerts
it produced; delivering them is the caller's concern.
"""

from __future__ import annotations

import contextlib
import logging
import threading
from collections import deque
from collections.abc import Iterator
from datetime import datetime
from decimal import Decimal, InvalidOperation

from solana_tx_monitor.clock import Clock, SystemClock
from solana_tx_monitor.config import PatternConfig
from solana_tx_monitor.detector.anomaly import AnomalyDetector
from solana_tx_monitor.detector.models import (
    ActorStats,
    AnomalyAlert,
    Pattern,
    RecordStatus,
    TransactionRecord,
    TransactionType,
)

logger = logging.getLogger(__name__)


def to_amount(value: Decimal | float | int | str) -> Decimal:
    """Convert a caller supplied amount to ``Decimal`` without float artifacts."""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount: {value!r}") from e
    if not amount.is_finite():
        raise ValueError(f"Amount must be finite: {value!r}")
    return amount


class PatternTracker:
    """Arena of actor patterns, each owning a bounded record buffer.

    Records older than ``config.retention`` (twice the aggregation window)
    are evicted on every mutation and by ``cleanup()``; the per-actor buffer
    additionally drops its oldest record beyond ``max_records_per_actor``.

    Mutations on one actor are serialized by that actor's lock. The registry
    lock only guards creating and dropping patterns.
    """

    def __init__(
        self,
        detector: AnomalyDetector | None = None,
        *,
        config: PatternConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._detector = detector or AnomalyDetector()
        self._config = config or PatternConfig()
        self._clock = clock or SystemClock()
        self._patterns: dict[str, Pattern] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._index: dict[str, str] = {}
        self._index_lock = threading.Lock()

    @property
    def detector(self) -> AnomalyDetector:
        return self._detector

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._patterns)

    @contextlib.contextmanager
    def _locked(self, actor_id: str, *, create: bool) -> Iterator[Pattern | None]:
        """Yield the actor's pattern with its lock held.

        Retries if the pattern was dropped by cleanup between lookup and
        locking.
        """
        while True:
            with self._registry_lock:
                pattern = self._patterns.get(actor_id)
                if pattern is None and create:
                    pattern = Pattern(
                        actor_id=actor_id,
                        transactions=deque(maxlen=self._config.max_records_per_actor),
                    )
                    self._patterns[actor_id] = pattern
                    self._locks[actor_id] = threading.Lock()
                lock = self._locks.get(actor_id)
            if pattern is None or lock is None:
                yield None
                return
            with lock:
                if self._patterns.get(actor_id) is pattern:
                    yield pattern
                    return

    def _refresh(self, pattern: Pattern, now: datetime) -> list[TransactionRecord]:
        """Evict expired records and recompute aggregates; returns evicted records."""
        cutoff = now - self._config.retention
        kept = [r for r in pattern.transactions if r.timestamp > cutoff]
        evicted = [r for r in pattern.transactions if r.timestamp <= cutoff]
        if evicted:
            pattern.transactions = deque(kept, maxlen=self._config.max_records_per_actor)

        frequency_cutoff = now - self._config.frequency_window
        window_cutoff = now - self._config.window
        pattern.frequency = sum(1 for r in pattern.transactions if r.timestamp > frequency_cutoff)
        pattern.total_amount = sum(
            (r.amount for r in pattern.transactions if r.timestamp > window_cutoff),
            Decimal("0"),
        )
        pattern.unique_recipients = {r.recipient for r in pattern.transactions}
        return evicted

    def _unindex(self, records: list[TransactionRecord], actor_id: str) -> None:
        if not records:
            return
        with self._index_lock:
            for record in records:
                if self._index.get(record.signature) == actor_id:
                    del self._index[record.signature]

    def add_transaction(
        self,
        actor_id: str,
        signature: str,
        amount: Decimal | float | int | str,
        recipient: str,
        type: TransactionType | str = TransactionType.UNKNOWN,
        *,
        now: datetime | None = None,
    ) -> list[AnomalyAlert]:
        """Record a pending transaction for ``actor_id`` and evaluate the rules.

        Returns:
            Alerts fired by this mutation (possibly empty).
        """
        now = now or self._clock.now()
        record = TransactionRecord(
            signature=signature,
            timestamp=now,
            amount=to_amount(amount),
            recipient=recipient,
            type=TransactionType.parse(type),
        )

        with self._locked(actor_id, create=True) as pattern:
            if pattern is None:
                raise RuntimeError(f"Pattern for actor {actor_id} could not be created")
            dropped: list[TransactionRecord] = []
            if len(pattern.transactions) == pattern.transactions.maxlen:
                dropped.append(pattern.transactions[0])
            pattern.transactions.append(record)
            dropped.extend(self._refresh(pattern, now))
            alerts = self._detector.evaluate(pattern, now)

        self._unindex(dropped, actor_id)
        with self._index_lock:
            self._index[signature] = actor_id

        logger.debug(
            "Tracked %s for actor %s (amount=%s, frequency=%d)",
            signature[:8],
            actor_id,
            record.amount,
            pattern.frequency,
        )
        return alerts

    def update_status(
        self,
        actor_id: str,
        signature: str,
        status: RecordStatus | str,
        *,
        now: datetime | None = None,
    ) -> list[AnomalyAlert]:
        """Set the status of a tracked record and re-evaluate the rules."""
        status = RecordStatus(status)
        now = now or self._clock.now()

        with self._locked(actor_id, create=False) as pattern:
            if pattern is None:
                logger.debug("Status update for unknown actor %s", actor_id)
                return []
            record = pattern.find(signature)
            if record is None:
                logger.debug("Status update for unknown signature %s (actor %s)", signature[:8], actor_id)
                return []
            record.status = status
            evicted = self._refresh(pattern, now)
            alerts = self._detector.evaluate(pattern, now)

        self._unindex(evicted, actor_id)
        return alerts

    def actor_for(self, signature: str) -> str | None:
        with self._index_lock:
            return self._index.get(signature)

    def actors(self) -> list[str]:
        with self._registry_lock:
            return list(self._patterns)

    def get_stats(self, actor_id: str, *, now: datetime | None = None) -> ActorStats:
        """Summary of the actor's history; zero stats when the actor is unknown."""
        now = now or self._clock.now()
        with self._locked(actor_id, create=False) as pattern:
            if pattern is None:
                return ActorStats(actor_id=actor_id)
            window_cutoff = now - self._config.window
            frequency_cutoff = now - self._config.frequency_window
            records = list(pattern.transactions)

        recent = [r for r in records if r.timestamp > window_cutoff]
        return ActorStats(
            actor_id=actor_id,
            total_transactions=len(records),
            recent_transactions=len(recent),
            total_amount=sum((r.amount for r in recent), Decimal("0")),
            frequency=sum(1 for r in records if r.timestamp > frequency_cutoff),
            unique_recipients=len({r.recipient for r in records}),
            failed_transactions=sum(1 for r in records if r.status == RecordStatus.FAILED),
            last_activity=max((r.timestamp for r in records), default=None),
        )

    def standing_alerts(self, now: datetime | None = None) -> list[AnomalyAlert]:
        """Aggregate alert conditions holding for any actor right now."""
        now = now or self._clock.now()
        alerts: list[AnomalyAlert] = []
        for actor_id in self.actors():
            with self._locked(actor_id, create=False) as pattern:
                if pattern is None:
                    continue
                evicted = self._refresh(pattern, now)
                try:
                    alerts.extend(self._detector.evaluate_standing(pattern, now))
                except ArithmeticError as e:
                    logger.warning("Skipping standing alerts for actor %s: %s", actor_id, e)
            self._unindex(evicted, actor_id)
        return alerts

    def cleanup(self, now: datetime | None = None) -> tuple[int, int]:
        """Evict expired records and drop empty patterns.

        Returns:
            Tuple of (evicted records, dropped patterns).
        """
        now = now or self._clock.now()
        evicted_total = 0
        dropped_patterns = 0
        with self._registry_lock:
            for actor_id in list(self._patterns):
                with self._locks[actor_id]:
                    pattern = self._patterns[actor_id]
                    evicted = self._refresh(pattern, now)
                    if not pattern.transactions:
                        del self._patterns[actor_id]
                        del self._locks[actor_id]
                        dropped_patterns += 1
                evicted_total += len(evicted)
                self._unindex(evicted, actor_id)
            active = len(self._patterns)

        logger.info(
            "Pattern cleanup completed: evicted=%d dropped=%d active_patterns=%d",
            evicted_total,
            dropped_patterns,
            active,
        )
        return evicted_total, dropped_patterns

    def clear(self) -> None:
        with self._registry_lock:
            self._patterns.clear()
            self._locks.clear()
        with self._index_lock:
            self._index.clear()
