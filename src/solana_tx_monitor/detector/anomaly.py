"""Behavioural anomaly rules over an actor's pattern.

The detector is stateless: it looks at a ``Pattern`` whose aggregates are
already up to date and returns one alert per rule that fires. Rules are
independent of each other and repeat firings are not suppressed.
"""

from __future__ import annotations

import logging
from datetime import datetime

from solana_tx_monitor.config import AnomalyThresholds
from solana_tx_monitor.detector.models import (
    AlertType,
    AnomalyAlert,
    Pattern,
    Severity,
)

logger = logging.getLogger(__name__)


def _short(value: str, length: int = 8) -> str:
    return value if len(value) <= length else f"{value[:length]}..."


class AnomalyDetector:
    """Evaluates the anomaly rules for a single pattern.

    Rules:
        - high frequency: records in the frequency window above the limit (high)
        - large amount, window: total amount over the window above the limit (medium)
        - large amount, single: most recent amount above the threshold (high)
        - failed pattern: failed records above the limit (medium)
        - suspicious recipient: first record to a recipient above the amount (low)

    Example:
        ```python
        detector = AnomalyDetector(AnomalyThresholds(max_frequency_per_minute=5))
        alerts = detector.evaluate(pattern, now)
        ```
    """

    def __init__(self, thresholds: AnomalyThresholds | None = None) -> None:
        self._thresholds = thresholds or AnomalyThresholds()

    @property
    def thresholds(self) -> AnomalyThresholds:
        return self._thresholds

    def evaluate(self, pattern: Pattern, now: datetime) -> list[AnomalyAlert]:
        """Run every rule against ``pattern``."""
        alerts: list[AnomalyAlert] = []
        for rule in (
            self._check_frequency,
            self._check_window_amount,
            self._check_single_amount,
            self._check_failed,
            self._check_recipient,
        ):
            alert = rule(pattern, now)
            if alert is not None:
                alerts.append(alert)

        if alerts:
            logger.debug(
                "Actor %s triggered %d rule(s): %s",
                pattern.actor_id,
                len(alerts),
                ", ".join(a.type.value for a in alerts),
            )
        return alerts

    def evaluate_standing(self, pattern: Pattern, now: datetime) -> list[AnomalyAlert]:
        """Aggregate conditions currently holding for ``pattern``.

        Only the frequency and window amount rules are considered, since the
        per-record rules describe a single submission rather than a state.
        """
        alerts = [self._check_frequency(pattern, now), self._check_window_amount(pattern, now)]
        return [a for a in alerts if a is not None]

    def _check_frequency(self, pattern: Pattern, now: datetime) -> AnomalyAlert | None:
        limit = self._thresholds.max_frequency_per_minute
        if pattern.frequency <= limit:
            return None
        return AnomalyAlert(
            type=AlertType.HIGH_FREQUENCY,
            severity=Severity.HIGH,
            actor_id=pattern.actor_id,
            description=f"High transaction frequency: {pattern.frequency}/min",
            data={"frequency": pattern.frequency, "limit": limit},
            timestamp=now,
        )

    def _check_window_amount(self, pattern: Pattern, now: datetime) -> AnomalyAlert | None:
        limit = self._thresholds.max_amount_per_window
        if pattern.total_amount <= limit:
            return None
        return AnomalyAlert(
            type=AlertType.LARGE_AMOUNT,
            severity=Severity.MEDIUM,
            actor_id=pattern.actor_id,
            description=f"Amount limit exceeded: {pattern.total_amount:.2f} SOL in window",
            data={"amount": pattern.total_amount, "limit": limit, "scope": "window"},
            timestamp=now,
        )

    def _check_single_amount(self, pattern: Pattern, now: datetime) -> AnomalyAlert | None:
        last = pattern.last
        threshold = self._thresholds.single_amount_threshold
        if last is None or last.amount <= threshold:
            return None
        return AnomalyAlert(
            type=AlertType.LARGE_AMOUNT,
            severity=Severity.HIGH,
            actor_id=pattern.actor_id,
            description=f"Suspiciously large transaction: {last.amount:.2f} SOL",
            data={
                "amount": last.amount,
                "threshold": threshold,
                "signature": last.signature,
                "scope": "single",
            },
            timestamp=now,
        )

    def _check_failed(self, pattern: Pattern, now: datetime) -> AnomalyAlert | None:
        limit = self._thresholds.max_failed_attempts
        failed = pattern.failed_count
        if failed <= limit:
            return None
        return AnomalyAlert(
            type=AlertType.FAILED_PATTERN,
            severity=Severity.MEDIUM,
            actor_id=pattern.actor_id,
            description=f"Many failed transactions: {failed}",
            data={"failed_count": failed, "limit": limit},
            timestamp=now,
        )

    def _check_recipient(self, pattern: Pattern, now: datetime) -> AnomalyAlert | None:
        last = pattern.last
        if last is None or last.amount <= self._thresholds.new_recipient_amount:
            return None
        seen = sum(1 for r in pattern.transactions if r.recipient == last.recipient)
        if seen != 1:
            return None
        return AnomalyAlert(
            type=AlertType.SUSPICIOUS_RECIPIENT,
            severity=Severity.LOW,
            actor_id=pattern.actor_id,
            description=f"First transaction to new recipient {_short(last.recipient)}",
            data={"recipient": last.recipient, "amount": last.amount},
            timestamp=now,
        )
