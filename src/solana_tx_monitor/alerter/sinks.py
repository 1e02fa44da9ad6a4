"""Alert sinks.

An ``AlertSink`` is the single place anomaly alerts leave the monitor. The
production sink appends alerts to a capped Redis stream; the null sink drops
them (dry runs) and the memory sink keeps them for inspection.
"""

from __future__ import annotations

import json
import logging
from typing import Protocol

from redis.asyncio import Redis

from solana_tx_monitor.alerter.formatter import AlertFormatter
from solana_tx_monitor.detector.models import AnomalyAlert

logger = logging.getLogger(__name__)

DEFAULT_STREAM = "solana:alerts"
DEFAULT_STREAM_MAXLEN = 10_000


class AlertSinkError(Exception):
    """Raised when a sink fails to deliver an alert."""


class AlertSink(Protocol):
    """Consumer of anomaly alerts."""

    async def notify(self, alert: AnomalyAlert) -> None:
        ...


class NullAlertSink:
    """Discards alerts, logging them at debug level."""

    async def notify(self, alert: AnomalyAlert) -> None:
        logger.debug("Dropping %s alert for %s", alert.type.value, alert.actor_id)


class MemoryAlertSink:
    """Keeps every delivered alert in ``alerts``."""

    def __init__(self) -> None:
        self.alerts: list[AnomalyAlert] = []

    async def notify(self, alert: AnomalyAlert) -> None:
        self.alerts.append(alert)

    def clear(self) -> None:
        self.alerts.clear()


class RedisStreamAlertSink:
    """Appends alerts to a Redis stream capped at ``maxlen`` entries.

    Each entry carries the alert fields, its JSON ``data`` and the plain text
    rendering in ``message``.

    Example:
        ```python
        redis = Redis.from_url("redis://localhost:6379")
        sink = RedisStreamAlertSink(redis, stream="solana:alerts")
        await sink.notify(alert)
        ```
    """

    def __init__(
        self,
        redis: Redis,
        *,
        stream: str = DEFAULT_STREAM,
        maxlen: int = DEFAULT_STREAM_MAXLEN,
        formatter: AlertFormatter | None = None,
    ) -> None:
        self._redis = redis
        self._stream = stream
        self._maxlen = maxlen
        self._formatter = formatter or AlertFormatter()

    @property
    def stream(self) -> str:
        return self._stream

    async def notify(self, alert: AnomalyAlert) -> None:
        payload = alert.to_dict()
        formatted = self._formatter.format(alert)
        fields = {
            "type": payload["type"],
            "severity": payload["severity"],
            "actor_id": payload["actor_id"],
            "description": payload["description"],
            "timestamp": payload["timestamp"],
            "data": json.dumps(payload["data"], default=str),
            "title": formatted.title,
            "message": formatted.plain_text,
        }
        try:
            message_id = await self._redis.xadd(
                self._stream, fields, maxlen=self._maxlen, approximate=True
            )
        except Exception as e:
            raise AlertSinkError(f"XADD to {self._stream} failed: {e}") from e
        logger.debug("Published %s alert to %s as %s", alert.type.value, self._stream, message_id)
