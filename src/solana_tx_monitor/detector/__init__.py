"""Anomaly detection layer - per-actor behavioural rules."""

from solana_tx_monitor.detector.anomaly import AnomalyDetector
from solana_tx_monitor.detector.models import (
    ActorStats,
    AlertType,
    AnomalyAlert,
    Pattern,
    RecordStatus,
    Severity,
    TransactionRecord,
    TransactionType,
)
from solana_tx_monitor.detector.patterns import PatternTracker

__all__ = [
    "ActorStats",
    "AlertType",
    "AnomalyAlert",
    "AnomalyDetector",
    "Pattern",
    "PatternTracker",
    "RecordStatus",
    "Severity",
    "TransactionRecord",
    "TransactionType",
]
