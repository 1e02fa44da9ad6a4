"""Tests for the anomaly rules."""

from collections import deque
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from solana_tx_monitor.config import AnomalyThresholds
from solana_tx_monitor.detector.anomaly import AnomalyDetector
from solana_tx_monitor.detector.models import (
    AlertType,
    Pattern,
    RecordStatus,
    Severity,
    TransactionRecord,
)

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
ACTOR = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"


def create_record(
    signature: str = "sig",
    *,
    amount: str = "1",
    recipient: str = "recipient",
    status: RecordStatus = RecordStatus.CONFIRMED,
) -> TransactionRecord:
    return TransactionRecord(
        signature=signature,
        timestamp=NOW,
        amount=Decimal(amount),
        recipient=recipient,
        status=status,
    )


def create_pattern(
    records: list[TransactionRecord],
    *,
    frequency: int = 0,
    total_amount: str = "0",
) -> Pattern:
    return Pattern(
        actor_id=ACTOR,
        transactions=deque(records, maxlen=1000),
        frequency=frequency,
        total_amount=Decimal(total_amount),
        unique_recipients={r.recipient for r in records},
    )


@pytest.fixture
def detector():
    return AnomalyDetector()


def alert_types(alerts):
    return [(a.type, a.severity) for a in alerts]


class TestHighFrequency:
    def test_fires_above_limit(self, detector):
        records = [create_record(f"s{i}") for i in range(11)]
        alerts = detector.evaluate(create_pattern(records, frequency=11), NOW)

        assert alert_types(alerts) == [(AlertType.HIGH_FREQUENCY, Severity.HIGH)]
        assert alerts[0].data == {"frequency": 11, "limit": 10}
        assert alerts[0].actor_id == ACTOR
        assert alerts[0].timestamp == NOW

    def test_quiet_at_limit(self, detector):
        records = [create_record(f"s{i}") for i in range(10)]
        assert detector.evaluate(create_pattern(records, frequency=10), NOW) == []


class TestLargeAmount:
    def test_window_total(self, detector):
        records = [create_record("a", amount="5")]
        alerts = detector.evaluate(create_pattern(records, total_amount="100.5"), NOW)

        assert alert_types(alerts) == [(AlertType.LARGE_AMOUNT, Severity.MEDIUM)]
        assert alerts[0].data["scope"] == "window"
        assert alerts[0].data["limit"] == Decimal("100")

    def test_single_transaction(self, detector):
        """Test a single large amount fires independently of the window total."""
        records = [create_record("a", amount="1", recipient="r"), create_record("b", amount="60", recipient="r")]
        alerts = detector.evaluate(create_pattern(records, total_amount="61"), NOW)

        assert alert_types(alerts) == [(AlertType.LARGE_AMOUNT, Severity.HIGH)]
        assert alerts[0].data == {
            "amount": Decimal("60"),
            "threshold": Decimal("50"),
            "signature": "b",
            "scope": "single",
        }

    def test_both_variants(self, detector):
        records = [create_record("a", amount="60", recipient="r"), create_record("b", amount="60", recipient="r")]
        alerts = detector.evaluate(create_pattern(records, total_amount="120"), NOW)

        assert [a.data["scope"] for a in alerts] == ["window", "single"]


class TestFailedPattern:
    def test_fires_above_limit(self, detector):
        records = [create_record(f"s{i}", status=RecordStatus.FAILED) for i in range(6)]
        alerts = detector.evaluate(create_pattern(records), NOW)

        assert alert_types(alerts) == [(AlertType.FAILED_PATTERN, Severity.MEDIUM)]
        assert alerts[0].data == {"failed_count": 6, "limit": 5}

    def test_quiet_at_limit(self, detector):
        records = [create_record(f"s{i}", status=RecordStatus.FAILED) for i in range(5)]
        assert detector.evaluate(create_pattern(records), NOW) == []


class TestSuspiciousRecipient:
    def test_first_transfer_to_new_recipient(self, detector):
        records = [create_record("a", amount="1", recipient="old"), create_record("b", amount="11", recipient="new")]
        alerts = detector.evaluate(create_pattern(records), NOW)

        assert alert_types(alerts) == [(AlertType.SUSPICIOUS_RECIPIENT, Severity.LOW)]
        assert alerts[0].data == {"recipient": "new", "amount": Decimal("11")}

    def test_known_recipient(self, detector):
        records = [create_record("a", amount="1", recipient="r"), create_record("b", amount="11", recipient="r")]
        assert detector.evaluate(create_pattern(records), NOW) == []

    def test_small_amount(self, detector):
        records = [create_record("a", amount="10", recipient="new")]
        assert detector.evaluate(create_pattern(records), NOW) == []


class TestThresholds:
    def test_custom_thresholds(self):
        detector = AnomalyDetector(AnomalyThresholds(max_frequency_per_minute=2))
        records = [create_record(f"s{i}") for i in range(3)]
        alerts = detector.evaluate(create_pattern(records, frequency=3), NOW)
        assert alerts[0].data == {"frequency": 3, "limit": 2}

    def test_empty_pattern(self, detector):
        assert detector.evaluate(create_pattern([]), NOW) == []


class TestEvaluateStanding:
    def test_only_aggregate_rules(self, detector):
        records = [create_record(f"s{i}", amount="60", recipient=f"r{i}") for i in range(11)]
        pattern = create_pattern(records, frequency=11, total_amount="660")

        alerts = detector.evaluate_standing(pattern, NOW + timedelta(seconds=1))

        assert [a.type for a in alerts] == [AlertType.HIGH_FREQUENCY, AlertType.LARGE_AMOUNT]
