"""Alert delivery layer - formatting, sinks and dispatch."""

from solana_tx_monitor.alerter.dispatcher import AlertDispatcher, DispatchStats
from solana_tx_monitor.alerter.formatter import AlertFormatter
from solana_tx_monitor.alerter.models import FormattedAlert
from solana_tx_monitor.alerter.sinks import (
    AlertSink,
    AlertSinkError,
    MemoryAlertSink,
    NullAlertSink,
    RedisStreamAlertSink,
)

__all__ = [
    "AlertDispatcher",
    "AlertFormatter",
    "AlertSink",
    "AlertSinkError",
    "DispatchStats",
    "FormattedAlert",
    "MemoryAlertSink",
    "NullAlertSink",
    "RedisStreamAlertSink",
]
