"""Queue between alert producers and the alert sink.

Pattern mutations hand their alerts to ``AlertDispatcher.submit()``, which
never waits on delivery. A single background task forwards queued alerts to
the sink and to every registered alert callback.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass

from solana_tx_monitor.alerter.sinks import AlertSink
from solana_tx_monitor.detector.models import AnomalyAlert

logger = logging.getLogger(__name__)

AlertCallback = Callable[[AnomalyAlert], Awaitable[None] | None]

DEFAULT_FLUSH_TIMEOUT_SECONDS = 5.0


@dataclass
class DispatchStats:
    """Counters for alert delivery."""

    submitted: int = 0
    delivered: int = 0
    sink_errors: int = 0
    callback_errors: int = 0


class AlertDispatcher:
    """Delivers alerts to a sink and callbacks off the request path.

    Sink and callback failures are logged and counted; they never reach the
    producer and never stop the delivery loop.
    """

    def __init__(
        self,
        sink: AlertSink,
        *,
        flush_timeout_seconds: float = DEFAULT_FLUSH_TIMEOUT_SECONDS,
    ) -> None:
        self._sink = sink
        self._flush_timeout = flush_timeout_seconds
        self._callbacks: list[AlertCallback] = []
        self._queue: asyncio.Queue[AnomalyAlert] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None
        self._stats = DispatchStats()

    @property
    def stats(self) -> DispatchStats:
        return self._stats

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def on_alert(self, callback: AlertCallback) -> None:
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def remove_callback(self, callback: AlertCallback) -> None:
        with contextlib.suppress(ValueError):
            self._callbacks.remove(callback)

    def submit(self, alerts: Iterable[AnomalyAlert]) -> int:
        """Queue alerts for delivery; returns how many were queued."""
        count = 0
        for alert in alerts:
            self._queue.put_nowait(alert)
            count += 1
        self._stats.submitted += count
        return count

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name="alert-dispatcher")

    async def _run(self) -> None:
        while True:
            alert = await self._queue.get()
            try:
                await self._deliver(alert)
            finally:
                self._queue.task_done()

    async def _deliver(self, alert: AnomalyAlert) -> None:
        try:
            await self._sink.notify(alert)
            self._stats.delivered += 1
        except Exception as e:
            self._stats.sink_errors += 1
            logger.warning(
                "Alert sink failed for %s alert (actor %s): %s",
                alert.type.value,
                alert.actor_id,
                e,
            )

        for callback in list(self._callbacks):
            try:
                result = callback(alert)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self._stats.callback_errors += 1
                logger.warning("Alert callback failed: %s", e, exc_info=True)

    async def flush(self) -> None:
        """Wait until every queued alert has been delivered."""
        if not self.is_running:
            while not self._queue.empty():
                alert = self._queue.get_nowait()
                await self._deliver(alert)
                self._queue.task_done()
            return
        await self._queue.join()

    async def stop(self) -> None:
        """Deliver what is queued (bounded by the flush timeout), then stop."""
        try:
            await asyncio.wait_for(self.flush(), timeout=self._flush_timeout)
        except TimeoutError:
            logger.warning("Alert flush timed out with %d alerts queued", self._queue.qsize())

        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
