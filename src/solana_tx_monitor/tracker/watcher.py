"""Per-signature confirmation polling.

Each watched signature gets its own task which polls the ledger on a fixed
schedule until the signature resolves or the attempt budget runs out. RPC
calls from all watches share a semaphore so a burst of submissions cannot
open an unbounded number of concurrent requests.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass, replace
from typing import Any

from solana_tx_monitor.chain.client import LedgerClient, SignatureStatus, TransactionDetails
from solana_tx_monitor.clock import Clock, SystemClock
from solana_tx_monitor.config import WatcherConfig
from solana_tx_monitor.events import (
    TOPIC_CONFIRMED,
    TOPIC_FAILED,
    TOPIC_PENDING,
    TOPIC_TIMEOUT,
    EventBus,
)
from solana_tx_monitor.tracker.ledger import ConfirmationLedger
from solana_tx_monitor.tracker.models import (
    TIMEOUT_ERROR,
    TransactionEvent,
    TransactionStatus,
    WatchState,
)

logger = logging.getLogger(__name__)


class WatchError(Exception):
    """Base exception for watch failures."""


class RPCExhaustedError(WatchError):
    """Raised when a signature did not resolve within the attempt budget."""

    def __init__(self, signature: str, attempts: int) -> None:
        super().__init__(f"{signature} unresolved after {attempts} attempts")
        self.signature = signature
        self.attempts = attempts


class DetailFetchError(WatchError):
    """Raised when fee and account details could not be fetched."""


@dataclass
class WatcherStats:
    """Counters for the watcher."""

    watched: int = 0
    confirmed: int = 0
    failed: int = 0
    timed_out: int = 0
    rpc_errors: int = 0
    detail_errors: int = 0


def _format_error(err: Any) -> str:
    try:
        return json.dumps(err, default=str)
    except (TypeError, ValueError):
        return str(err)


class SignatureWatcher:
    """Polls the ledger for watched signatures and records their resolution.

    The pending event is recorded synchronously by ``watch()``; the first
    status check happens ``initial_delay_seconds`` later and subsequent
    checks every ``poll_interval_seconds`` up to ``max_attempts`` checks.
    A failed RPC call consumes its attempt. Once the budget is exhausted the
    signature is recorded as failed with ``TIMEOUT_ERROR`` and published on
    ``transaction.timeout``.

    Example:
        ```python
        watcher = SignatureWatcher(client, ledger, bus)
        watcher.watch("5VERv8...", program_id="Stake11111111111111111111111111111111111111")
        ```
    """

    def __init__(
        self,
        client: LedgerClient,
        ledger: ConfirmationLedger,
        bus: EventBus,
        *,
        config: WatcherConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._client = client
        self._ledger = ledger
        self._bus = bus
        self._config = config or WatcherConfig()
        self._clock = clock or SystemClock()
        self._semaphore = asyncio.Semaphore(self._config.max_concurrency)
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._states: dict[str, WatchState] = {}
        self._stats = WatcherStats()

    @property
    def stats(self) -> WatcherStats:
        return self._stats

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    @property
    def tracked_states(self) -> int:
        """Number of watch states held in memory; only active watches keep one."""
        return len(self._states)

    def is_watching(self, signature: str) -> bool:
        return signature in self._tasks

    def active_signatures(self) -> list[str]:
        return list(self._tasks)

    def state_of(self, signature: str) -> WatchState:
        """Watch state of ``signature``; resolved watches are read back from the ledger."""
        state = self._states.get(signature)
        if state is not None:
            return state
        event = self._ledger.get(signature)
        if event is None or not event.is_resolved:
            return WatchState.UNWATCHED
        if event.timed_out:
            return WatchState.TIMED_OUT
        if event.status == TransactionStatus.FAILED:
            return WatchState.FAILED
        return WatchState.CONFIRMED

    def watch(self, signature: str, program_id: str | None = None) -> bool:
        """Start watching ``signature``.

        Returns:
            False if the signature is already being watched or has already
            resolved, True otherwise.
        """
        if signature in self._tasks:
            logger.debug("Already watching %s", signature[:8])
            return False
        existing = self._ledger.get(signature)
        if existing is not None and existing.is_resolved:
            logger.debug("Signature %s already resolved as %s", signature[:8], existing.status.value)
            return False

        pending = TransactionEvent(
            signature=signature,
            timestamp=self._clock.now(),
            status=TransactionStatus.PENDING,
            program_id=program_id,
        )
        self._ledger.record(pending)
        self._states[signature] = WatchState.PENDING
        self._stats.watched += 1

        task = asyncio.create_task(
            self._run_watch(pending, self._clock.monotonic()),
            name=f"watch-{signature[:8]}",
        )
        self._tasks[signature] = task
        task.add_done_callback(lambda t, sig=signature: self._on_done(sig, t))
        return True

    def _on_done(self, signature: str, task: asyncio.Task[None]) -> None:
        if self._tasks.get(signature) is task:
            del self._tasks[signature]
            self._states.pop(signature, None)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Watch for %s crashed: %s", signature[:8], exc, exc_info=exc)

    async def _run_watch(self, pending: TransactionEvent, started: float) -> None:
        signature = pending.signature
        await self._bus.publish(TOPIC_PENDING, pending)
        await self._clock.sleep(self._config.initial_delay_seconds)

        for attempt in range(1, self._config.max_attempts + 1):
            status = await self._poll(signature, attempt)
            if status is not None:
                await self._resolve(pending, status, started)
                return
            if attempt < self._config.max_attempts:
                await self._clock.sleep(self._config.poll_interval_seconds)

        err = RPCExhaustedError(signature, self._config.max_attempts)
        logger.warning("Confirmation timeout: %s", err)
        await self._time_out(pending)

    async def _poll(self, signature: str, attempt: int) -> SignatureStatus | None:
        try:
            async with self._semaphore:
                return await asyncio.wait_for(
                    self._client.get_status(signature),
                    timeout=self._config.rpc_timeout_seconds,
                )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._stats.rpc_errors += 1
            logger.warning(
                "Status check for %s failed (attempt %d/%d): %s",
                signature[:8],
                attempt,
                self._config.max_attempts,
                e,
            )
            return None

    async def _fetch_details(self, signature: str) -> TransactionDetails | None:
        try:
            async with self._semaphore:
                return await asyncio.wait_for(
                    self._client.get_details(signature),
                    timeout=self._config.rpc_timeout_seconds,
                )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._stats.detail_errors += 1
            err = DetailFetchError(f"Failed to fetch details for {signature}: {e}")
            logger.warning("%s", err)
            return None

    async def _resolve(
        self, pending: TransactionEvent, status: SignatureStatus, started: float
    ) -> None:
        signature = pending.signature
        elapsed_ms = max(0, round((self._clock.monotonic() - started) * 1000))
        details = await self._fetch_details(signature)

        failed = status.failed
        event = replace(
            pending,
            timestamp=self._clock.now(),
            status=TransactionStatus.FAILED if failed else TransactionStatus.CONFIRMED,
            confirmation_time_ms=elapsed_ms,
            slot=status.slot,
            fee=details.fee if details is not None else None,
            error=_format_error(status.err) if failed else None,
            accounts=details.accounts if details is not None else None,
        )
        self._ledger.record(event)

        if failed:
            self._states[signature] = WatchState.FAILED
            self._stats.failed += 1
            logger.info("Transaction %s failed in slot %d: %s", signature[:8], status.slot, event.error)
            await self._bus.publish(TOPIC_FAILED, event)
        else:
            self._states[signature] = WatchState.CONFIRMED
            self._stats.confirmed += 1
            logger.info("Transaction %s confirmed in %dms", signature[:8], elapsed_ms)
            await self._bus.publish(TOPIC_CONFIRMED, event)

    async def _time_out(self, pending: TransactionEvent) -> None:
        event = replace(
            pending,
            timestamp=self._clock.now(),
            status=TransactionStatus.FAILED,
            error=TIMEOUT_ERROR,
        )
        self._ledger.record(event)
        self._states[pending.signature] = WatchState.TIMED_OUT
        self._stats.timed_out += 1
        await self._bus.publish(TOPIC_TIMEOUT, event)

    async def stop(self) -> None:
        """Cancel all outstanding watches and wait for them to finish."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._states.clear()
        if tasks:
            logger.info("Cancelled %d outstanding watches", len(tasks))

    def clear(self) -> None:
        self._states.clear()
