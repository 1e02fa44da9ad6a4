"""Data models for confirmation tracking."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

TIMEOUT_ERROR = "Transaction confirmation timeout"


class TransactionStatus(str, Enum):
    """Status of a transaction event in the ledger."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class WatchState(str, Enum):
    """Lifecycle of a watched signature."""

    UNWATCHED = "unwatched"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in (WatchState.CONFIRMED, WatchState.FAILED, WatchState.TIMED_OUT)


@dataclass(frozen=True)
class TransactionEvent:
    """A signature's entry in the confirmation ledger.

    Created as ``pending`` when the signature is first watched and replaced
    exactly once when it resolves. Timed-out signatures are stored as
    ``failed`` with ``error == TIMEOUT_ERROR`` and no confirmation time.

    Attributes:
        signature: Transaction signature.
        timestamp: When the event was produced (subscribe or resolution time).
        status: Pending, confirmed or failed.
        confirmation_time_ms: Milliseconds from subscribe to resolution.
        slot: Slot reported alongside the status.
        fee: Fee in lamports, when details could be fetched.
        error: Ledger error, or the timeout marker.
        program_id: Program the caller associated with the signature.
        accounts: Account keys of the transaction, when details could be fetched.
    """

    signature: str
    timestamp: datetime
    status: TransactionStatus
    confirmation_time_ms: int | None = None
    slot: int | None = None
    fee: int | None = None
    error: str | None = None
    program_id: str | None = None
    accounts: tuple[str, ...] | None = None

    @property
    def is_resolved(self) -> bool:
        return self.status != TransactionStatus.PENDING

    @property
    def timed_out(self) -> bool:
        return self.status == TransactionStatus.FAILED and self.error == TIMEOUT_ERROR

    def to_dict(self) -> dict[str, object]:
        """Serialize to dictionary for publishing."""
        return {
            "signature": self.signature,
            "timestamp": self.timestamp.isoformat(),
            "status": self.status.value,
            "confirmation_time_ms": self.confirmation_time_ms,
            "slot": self.slot,
            "fee": self.fee,
            "error": self.error,
            "program_id": self.program_id,
            "accounts": list(self.accounts) if self.accounts is not None else None,
        }


@dataclass(frozen=True)
class TransactionMetrics:
    """Sliding-window metrics over the confirmation ledger.

    Attributes:
        tps: Events per second over the window.
        confirm_time_p50_ms: Median confirmation latency of confirmed events.
        confirm_time_p95_ms: 95th percentile confirmation latency.
        fail_rate_pct: Share of failed events in the window (0-100).
        anomaly_count: Heuristic count of slow confirmations, failure bursts and TPS spikes.
        sample_size: Number of events in the window.
    """

    tps: float = 0.0
    confirm_time_p50_ms: int = 0
    confirm_time_p95_ms: int = 0
    fail_rate_pct: float = 0.0
    anomaly_count: int = 0
    sample_size: int = 0

    def to_dict(self) -> dict[str, object]:
        return {
            "tps": self.tps,
            "confirm_time_p50_ms": self.confirm_time_p50_ms,
            "confirm_time_p95_ms": self.confirm_time_p95_ms,
            "fail_rate_pct": self.fail_rate_pct,
            "anomaly_count": self.anomaly_count,
            "sample_size": self.sample_size,
        }
