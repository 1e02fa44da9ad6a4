"""Signature watching, confirmation ledger and network metrics."""

from solana_tx_monitor.tracker.ledger import ConfirmationLedger, compute_metrics
from solana_tx_monitor.tracker.models import (
    TIMEOUT_ERROR,
    TransactionEvent,
    TransactionMetrics,
    TransactionStatus,
    WatchState,
)
from solana_tx_monitor.tracker.watcher import (
    DetailFetchError,
    RPCExhaustedError,
    SignatureWatcher,
    WatchError,
)

__all__ = [
    "ConfirmationLedger",
    "DetailFetchError",
    "RPCExhaustedError",
    "SignatureWatcher",
    "TIMEOUT_ERROR",
    "TransactionEvent",
    "TransactionMetrics",
    "TransactionStatus",
    "WatchError",
    "WatchState",
    "compute_metrics",
]
