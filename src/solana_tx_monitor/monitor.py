"""Transaction monitor service.

This module provides the TransactionMonitor class that wires together the
signature watcher, confirmation ledger, pattern tracker and alert delivery,
and owns the periodic metrics and cleanup tasks.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from solana_tx_monitor.alerter.dispatcher import AlertCallback, AlertDispatcher
from solana_tx_monitor.alerter.sinks import AlertSink, NullAlertSink
from solana_tx_monitor.chain.client import LedgerClient
from solana_tx_monitor.clock import Clock, SystemClock
from solana_tx_monitor.config import MonitorConfig, Settings
from solana_tx_monitor.detector.anomaly import AnomalyDetector
from solana_tx_monitor.detector.models import (
    ActorStats,
    AnomalyAlert,
    RecordStatus,
    TransactionType,
)
from solana_tx_monitor.detector.patterns import PatternTracker
from solana_tx_monitor.events import (
    TOPIC_CONFIRMED,
    TOPIC_FAILED,
    TOPIC_METRICS,
    EventBus,
    Handler,
)
from solana_tx_monitor.tracker.ledger import ConfirmationLedger
from solana_tx_monitor.tracker.models import TransactionEvent, TransactionMetrics
from solana_tx_monitor.tracker.watcher import SignatureWatcher

logger = logging.getLogger(__name__)


class MonitorState(str, Enum):
    """Monitor lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class MonitorStats:
    """Statistics for the monitor."""

    started_at: datetime | None = None
    signatures_watched: int = 0
    transactions_tracked: int = 0
    alerts_raised: int = 0
    metrics_ticks: int = 0
    cleanups: int = 0
    errors: int = 0
    last_metrics_at: datetime | None = None
    last_error: str | None = None


class TransactionMonitor:
    """Tracks transaction confirmations and per-actor behaviour.

    Flow:
        watch_signature → SignatureWatcher → ConfirmationLedger → transaction.* events
        track_transaction → PatternTracker → AnomalyDetector → AlertDispatcher → AlertSink

    A watched signature that resolves to confirmed or failed also updates the
    tracked record with the same signature, if one exists.

    Example:
        ```python
        client = SolanaRpcClient(settings.solana.rpc_url)
        async with TransactionMonitor(client, sink=MemoryAlertSink()) as monitor:
            monitor.watch_signature(signature)
            alerts = monitor.track_transaction("wallet", signature, Decimal("1.5"), "recipient")
        ```
    """

    def __init__(
        self,
        client: LedgerClient,
        *,
        config: MonitorConfig | None = None,
        sink: AlertSink | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the monitor.

        Args:
            client: Ledger RPC client used by the watcher.
            config: Component configuration. Defaults are used when omitted.
            sink: Destination of anomaly alerts. Defaults to a no-op sink.
            clock: Time source. Defaults to the system clock.
        """
        self._config = config or MonitorConfig()
        self._clock = clock or SystemClock()

        self._bus = EventBus()
        self._ledger = ConfirmationLedger(self._config.ledger)
        self._watcher = SignatureWatcher(
            client,
            self._ledger,
            self._bus,
            config=self._config.watcher,
            clock=self._clock,
        )
        self._patterns = PatternTracker(
            AnomalyDetector(self._config.thresholds),
            config=self._config.pattern,
            clock=self._clock,
        )
        self._dispatcher = AlertDispatcher(sink or NullAlertSink())

        self._state = MonitorState.STOPPED
        self._stats = MonitorStats()

        self._stop_event: asyncio.Event | None = None
        self._metrics_task: asyncio.Task[None] | None = None
        self._cleanup_task: asyncio.Task[None] | None = None

    @classmethod
    def from_settings(
        cls,
        client: LedgerClient,
        settings: Settings,
        *,
        sink: AlertSink | None = None,
        clock: Clock | None = None,
    ) -> TransactionMonitor:
        """Build a monitor whose components are configured from ``settings``."""
        return cls(client, config=MonitorConfig.from_settings(settings), sink=sink, clock=clock)

    @property
    def state(self) -> MonitorState:
        """Current monitor state."""
        return self._state

    @property
    def stats(self) -> MonitorStats:
        """Current monitor statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        return self._state == MonitorState.RUNNING

    @property
    def config(self) -> MonitorConfig:
        return self._config

    @property
    def watcher(self) -> SignatureWatcher:
        return self._watcher

    @property
    def ledger(self) -> ConfirmationLedger:
        return self._ledger

    @property
    def patterns(self) -> PatternTracker:
        return self._patterns

    @property
    def dispatcher(self) -> AlertDispatcher:
        return self._dispatcher

    # Lifecycle

    async def start(self) -> None:
        """Start the alert dispatcher and the periodic tasks.

        Raises:
            RuntimeError: If the monitor is not stopped.
        """
        if self._state != MonitorState.STOPPED:
            raise RuntimeError(f"Cannot start monitor in state {self._state}")

        self._state = MonitorState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting transaction monitor...")

        try:
            self._bus.subscribe(TOPIC_CONFIRMED, self._on_resolved)
            self._bus.subscribe(TOPIC_FAILED, self._on_resolved)
            self._dispatcher.start()
            self._metrics_task = asyncio.create_task(self._metrics_loop(), name="metrics-tick")
            self._cleanup_task = asyncio.create_task(self._cleanup_loop(), name="cleanup-tick")
            self._stats.started_at = self._clock.now()
            self._state = MonitorState.RUNNING
            logger.info("Transaction monitor started")
        except Exception as e:
            self._state = MonitorState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start monitor: %s", e)
            await self._shutdown()
            raise

    async def stop(self) -> None:
        """Stop the monitor, cancelling every task and clearing in-memory state."""
        if self._state == MonitorState.STOPPED:
            return

        self._state = MonitorState.STOPPING
        logger.info("Stopping transaction monitor...")

        if self._stop_event:
            self._stop_event.set()

        await self._shutdown()

        self._state = MonitorState.STOPPED
        logger.info("Transaction monitor stopped")

    async def _shutdown(self) -> None:
        for task in (self._metrics_task, self._cleanup_task):
            if task is not None:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._metrics_task = None
        self._cleanup_task = None

        await self._watcher.stop()
        await self._dispatcher.stop()

        self._bus.unsubscribe(TOPIC_CONFIRMED, self._on_resolved)
        self._bus.unsubscribe(TOPIC_FAILED, self._on_resolved)

        self._ledger.clear()
        self._patterns.clear()
        self._watcher.clear()

    async def run(self) -> None:
        """Start the monitor and run until ``stop()`` is called or the task is cancelled."""
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    def request_stop(self) -> None:
        """Ask a monitor blocked in ``run()`` to shut down."""
        if self._stop_event:
            self._stop_event.set()

    async def __aenter__(self) -> TransactionMonitor:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()

    # Periodic tasks

    async def _metrics_loop(self) -> None:
        interval = self._config.ledger.metrics_interval_seconds
        while self._stop_event is not None and not self._stop_event.is_set():
            try:
                await self._clock.sleep(interval)
                if self._stop_event.is_set():
                    break
                await self.tick_metrics()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self._record_error(e)
                logger.warning("Metrics tick failed: %s", e)

    async def _cleanup_loop(self) -> None:
        interval = self._config.pattern.cleanup_interval_seconds
        while self._stop_event is not None and not self._stop_event.is_set():
            try:
                await self._clock.sleep(interval)
                if self._stop_event.is_set():
                    break
                self.run_cleanup()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self._record_error(e)
                logger.warning("Cleanup failed: %s", e)

    async def tick_metrics(self) -> TransactionMetrics:
        """Recompute ledger metrics and publish them on ``metrics.updated``."""
        now = self._clock.now()
        metrics = self._ledger.recompute_metrics(now)
        self._stats.metrics_ticks += 1
        self._stats.last_metrics_at = now
        logger.debug(
            "Metrics: tps=%.2f p50=%dms p95=%dms fail_rate=%.1f%% anomalies=%d",
            metrics.tps,
            metrics.confirm_time_p50_ms,
            metrics.confirm_time_p95_ms,
            metrics.fail_rate_pct,
            metrics.anomaly_count,
        )
        await self._bus.publish(TOPIC_METRICS, metrics)
        return metrics

    def run_cleanup(self) -> tuple[int, int, int]:
        """Evict expired pattern records and ledger events.

        Returns:
            Tuple of (evicted records, dropped patterns, pruned ledger events).
        """
        now = self._clock.now()
        evicted, dropped = self._patterns.cleanup(now)
        pruned = self._ledger.prune(now - self._config.ledger.retention)
        self._stats.cleanups += 1
        if pruned:
            logger.info("Pruned %d ledger events", pruned)
        return evicted, dropped, pruned

    def _record_error(self, error: Exception) -> None:
        self._stats.errors += 1
        self._stats.last_error = str(error)

    # Operations

    def watch_signature(self, signature: str, program_id: str | None = None) -> bool:
        """Start watching a signature for confirmation.

        Returns:
            True if a new watch was started; False if it is already watched
            or the monitor is not running.
        """
        if not self.is_running:
            logger.warning("Cannot watch %s: monitor is %s", signature[:8], self._state.value)
            return False
        started = self._watcher.watch(signature, program_id=program_id)
        if started:
            self._stats.signatures_watched += 1
        return started

    def track_transaction(
        self,
        actor_id: str,
        signature: str,
        amount: Decimal | float | int | str,
        recipient: str,
        type: TransactionType | str = TransactionType.UNKNOWN,
        *,
        watch: bool = True,
    ) -> list[AnomalyAlert]:
        """Record a transaction for ``actor_id`` and run the anomaly rules.

        Alerts are queued for the sink and callbacks and also returned. When
        ``watch`` is set and the monitor is running, the signature is watched
        so its record follows the ledger outcome. An invalid amount is logged
        and the transaction is not tracked.
        """
        try:
            alerts = self._patterns.add_transaction(actor_id, signature, amount, recipient, type)
        except ValueError as e:
            self._record_error(e)
            logger.warning("Rejected transaction %s for actor %s: %s", signature[:8], actor_id, e)
            return []
        self._stats.transactions_tracked += 1
        self._raise_alerts(alerts)
        if watch and self.is_running and not self.watch_signature(signature):
            event = self._ledger.get(signature)
            if event is not None and event.is_resolved:
                alerts = alerts + self.update_transaction_status(actor_id, signature, event.status.value)
        return alerts

    def update_transaction_status(
        self, actor_id: str, signature: str, status: RecordStatus | str
    ) -> list[AnomalyAlert]:
        """Set a tracked record's status and run the anomaly rules again."""
        alerts = self._patterns.update_status(actor_id, signature, status)
        self._raise_alerts(alerts)
        return alerts

    def _raise_alerts(self, alerts: list[AnomalyAlert]) -> None:
        if not alerts:
            return
        self._stats.alerts_raised += len(alerts)
        self._dispatcher.submit(alerts)
        for alert in alerts:
            logger.info(
                "Anomaly %s (%s) for actor %s: %s",
                alert.type.value,
                alert.severity.value,
                alert.actor_id,
                alert.description,
            )

    def _on_resolved(self, event: TransactionEvent) -> None:
        actor_id = self._patterns.actor_for(event.signature)
        if actor_id is None:
            return
        self.update_transaction_status(actor_id, event.signature, event.status.value)

    def subscribe(self, topic: str, handler: Handler) -> None:
        self._bus.subscribe(topic, handler)

    def unsubscribe(self, topic: str, handler: Handler) -> None:
        self._bus.unsubscribe(topic, handler)

    def on_alert(self, callback: AlertCallback) -> None:
        """Register a callback invoked for every delivered alert."""
        self._dispatcher.on_alert(callback)

    # Queries

    def get_metrics(self) -> TransactionMetrics:
        return self._ledger.latest_metrics()

    def get_recent_transactions(self, limit: int = 100) -> list[TransactionEvent]:
        return self._ledger.recent(limit)

    def get_transactions_by_program(self, program_id: str, limit: int = 100) -> list[TransactionEvent]:
        return self._ledger.by_program(program_id, limit)

    def get_actor_stats(self, actor_id: str) -> ActorStats:
        return self._patterns.get_stats(actor_id)

    def get_active_alerts(self) -> list[AnomalyAlert]:
        """Aggregate alert conditions holding right now; not sent to the sink."""
        return self._patterns.standing_alerts()
