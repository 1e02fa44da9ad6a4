"""Data models for per-actor pattern tracking and anomaly alerts."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any


class RecordStatus(str, Enum):
    """Status of a tracked transaction record."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class TransactionType(str, Enum):
    """Kind of transaction an actor submitted."""

    DONATION = "donation"
    STAKING = "staking"
    NFT_MINT = "nft_mint"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: TransactionType | str | None) -> TransactionType | str:
        """Normalize known values to the enum; empty values become ``UNKNOWN``.

        Other strings are kept as given so callers can tag custom kinds.
        """
        if isinstance(value, TransactionType):
            return value
        if not value:
            return cls.UNKNOWN
        try:
            return cls(value.lower())
        except ValueError:
            return value


class AlertType(str, Enum):
    """Anomaly rule that produced an alert."""

    HIGH_FREQUENCY = "high_frequency"
    LARGE_AMOUNT = "large_amount"
    SUSPICIOUS_RECIPIENT = "suspicious_recipient"
    FAILED_PATTERN = "failed_pattern"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class TransactionRecord:
    """A transaction tracked against an actor. ``status`` is updated in place."""

    signature: str
    timestamp: datetime
    amount: Decimal
    recipient: str
    type: TransactionType | str = TransactionType.UNKNOWN
    status: RecordStatus = RecordStatus.PENDING


@dataclass
class Pattern:
    """Rolling transactional history of one actor.

    ``transactions`` is a ring buffer capped by the per-actor record limit.
    ``frequency``, ``total_amount`` and ``unique_recipients`` are derived and
    recomputed by the tracker after every mutation.
    """

    actor_id: str
    transactions: deque[TransactionRecord]
    frequency: int = 0
    total_amount: Decimal = Decimal("0")
    unique_recipients: set[str] = field(default_factory=set)

    @property
    def last(self) -> TransactionRecord | None:
        return self.transactions[-1] if self.transactions else None

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.transactions if r.status == RecordStatus.FAILED)

    def find(self, signature: str) -> TransactionRecord | None:
        for record in reversed(self.transactions):
            if record.signature == signature:
                return record
        return None


@dataclass(frozen=True)
class AnomalyAlert:
    """Signal produced when a behavioural rule threshold is exceeded.

    Attributes:
        type: Rule that fired.
        severity: Severity assigned by the rule.
        actor_id: Actor whose history triggered the rule.
        description: Human-readable explanation.
        data: Measured value and limit, e.g. ``{"frequency": 11, "limit": 10}``.
        timestamp: When the rule was evaluated.
    """

    type: AlertType
    severity: Severity
    actor_id: str
    description: str
    data: dict[str, Any]
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for Redis stream publishing."""
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "actor_id": self.actor_id,
            "description": self.description,
            "data": {k: str(v) if isinstance(v, Decimal) else v for k, v in self.data.items()},
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class ActorStats:
    """Summary of an actor's retained history."""

    actor_id: str
    total_transactions: int = 0
    recent_transactions: int = 0
    total_amount: Decimal = Decimal("0")
    frequency: int = 0
    unique_recipients: int = 0
    failed_transactions: int = 0
    last_activity: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "actor_id": self.actor_id,
            "total_transactions": self.total_transactions,
            "recent_transactions": self.recent_transactions,
            "total_amount": str(self.total_amount),
            "frequency": self.frequency,
            "unique_recipients": self.unique_recipients,
            "failed_transactions": self.failed_transactions,
            "last_activity": self.last_activity.isoformat() if self.last_activity else None,
        }
