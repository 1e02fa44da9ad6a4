"""Tests for per-actor pattern tracking."""

from datetime import timedelta
from decimal import Decimal

import pytest

from solana_tx_monitor.config import PatternConfig
from solana_tx_monitor.detector.models import (
    ActorStats,
    AlertType,
    RecordStatus,
    Severity,
    TransactionType,
)
from solana_tx_monitor.detector.patterns import PatternTracker, to_amount

ACTOR = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"


@pytest.fixture
def tracker(clock):
    return PatternTracker(clock=clock)


class TestToAmount:
    def test_float_has_no_binary_artifacts(self):
        assert to_amount(0.1) == Decimal("0.1")

    def test_invalid(self):
        with pytest.raises(ValueError):
            to_amount("lots")

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), "-Infinity", Decimal("NaN"), "sNaN"])
    def test_non_finite(self, value):
        with pytest.raises(ValueError, match="finite"):
            to_amount(value)


class TestTransactionType:
    def test_parse(self):
        assert TransactionType.parse("staking") is TransactionType.STAKING
        assert TransactionType.parse("NFT_MINT") is TransactionType.NFT_MINT
        assert TransactionType.parse("") is TransactionType.UNKNOWN
        assert TransactionType.parse(None) is TransactionType.UNKNOWN
        assert TransactionType.parse("swap") == "swap"


class TestAddTransaction:
    """Tests for PatternTracker.add_transaction."""

    def test_creates_pattern(self, tracker):
        alerts = tracker.add_transaction(ACTOR, "s1", "1.5", "r1", "donation")

        assert alerts == []
        assert tracker.actors() == [ACTOR]
        assert tracker.actor_for("s1") == ACTOR
        stats = tracker.get_stats(ACTOR)
        assert stats.total_transactions == 1
        assert stats.total_amount == Decimal("1.5")

    def test_high_frequency_within_a_minute(self, tracker, clock):
        """Test the eleventh transaction inside 60s raises HighFrequency."""
        start = clock.now()
        for i in range(10):
            alerts = tracker.add_transaction(ACTOR, f"s{i}", 1, "r", now=start + timedelta(seconds=i))
            assert all(a.type != AlertType.HIGH_FREQUENCY for a in alerts)

        alerts = tracker.add_transaction(ACTOR, "s10", 1, "r", now=start + timedelta(seconds=30))

        high = [a for a in alerts if a.type == AlertType.HIGH_FREQUENCY]
        assert len(high) == 1
        assert high[0].severity == Severity.HIGH
        assert high[0].data["frequency"] == 11

    def test_frequency_uses_trailing_window(self, tracker, clock):
        start = clock.now()
        for i in range(10):
            tracker.add_transaction(ACTOR, f"s{i}", 1, "r", now=start)
        alerts = tracker.add_transaction(ACTOR, "late", 1, "r", now=start + timedelta(seconds=60))

        assert all(a.type != AlertType.HIGH_FREQUENCY for a in alerts)
        assert tracker.get_stats(ACTOR, now=start + timedelta(seconds=60)).frequency == 1

    def test_single_large_amount_fires_immediately(self, tracker):
        """Test one 60 SOL transfer fires the single LargeAmount rule."""
        alerts = tracker.add_transaction("Y", "big", 60, "r")

        large = [a for a in alerts if a.type == AlertType.LARGE_AMOUNT]
        assert len(large) == 1
        assert large[0].severity == Severity.HIGH
        assert large[0].data["scope"] == "single"
        assert large[0].data["amount"] == Decimal("60")

    def test_window_total_excludes_older_records(self, tracker, clock):
        start = clock.now()
        tracker.add_transaction(ACTOR, "old", 45, "r", now=start)
        tracker.add_transaction(ACTOR, "mid", 45, "r", now=start + timedelta(minutes=30))

        alerts = tracker.add_transaction(ACTOR, "new", 45, "r", now=start + timedelta(minutes=61))

        assert all(a.data.get("scope") != "window" for a in alerts)
        stats = tracker.get_stats(ACTOR, now=start + timedelta(minutes=61))
        assert stats.total_amount == Decimal("90")
        assert stats.total_transactions == 3

    def test_records_beyond_retention_are_evicted(self, tracker, clock):
        start = clock.now()
        tracker.add_transaction(ACTOR, "ancient", 1, "r", now=start)
        tracker.add_transaction(ACTOR, "fresh", 1, "r", now=start + timedelta(hours=2, seconds=1))

        assert tracker.get_stats(ACTOR, now=start + timedelta(hours=2, seconds=1)).total_transactions == 1
        assert tracker.actor_for("ancient") is None

    def test_ring_buffer_cap(self, clock):
        tracker = PatternTracker(config=PatternConfig(max_records_per_actor=3), clock=clock)
        for i in range(5):
            tracker.add_transaction(ACTOR, f"s{i}", 1, "r")

        assert tracker.get_stats(ACTOR).total_transactions == 3
        assert tracker.actor_for("s0") is None
        assert tracker.actor_for("s4") == ACTOR


class TestUpdateStatus:
    def test_failed_pattern(self, tracker):
        for i in range(6):
            tracker.add_transaction(ACTOR, f"s{i}", 1, "r")

        alerts = []
        for i in range(6):
            alerts = tracker.update_status(ACTOR, f"s{i}", RecordStatus.FAILED)

        failed = [a for a in alerts if a.type == AlertType.FAILED_PATTERN]
        assert len(failed) == 1
        assert failed[0].data == {"failed_count": 6, "limit": 5}
        assert tracker.get_stats(ACTOR).failed_transactions == 6

    def test_accepts_string_status(self, tracker):
        tracker.add_transaction(ACTOR, "s", 1, "r")
        tracker.update_status(ACTOR, "s", "confirmed")
        assert tracker.get_stats(ACTOR).failed_transactions == 0

    def test_unknown_actor(self, tracker):
        assert tracker.update_status("nobody", "s", RecordStatus.FAILED) == []

    def test_unknown_signature(self, tracker):
        tracker.add_transaction(ACTOR, "s", 1, "r")
        assert tracker.update_status(ACTOR, "other", RecordStatus.FAILED) == []


class TestStats:
    def test_unknown_actor_has_zero_stats(self, tracker):
        assert tracker.get_stats("nobody") == ActorStats(actor_id="nobody")

    def test_summary(self, tracker, clock):
        start = clock.now()
        tracker.add_transaction(ACTOR, "a", 2, "r1", now=start)
        tracker.add_transaction(ACTOR, "b", 3, "r2", now=start + timedelta(seconds=10))
        tracker.update_status(ACTOR, "b", RecordStatus.FAILED, now=start + timedelta(seconds=10))

        stats = tracker.get_stats(ACTOR, now=start + timedelta(seconds=20))

        assert stats.total_transactions == 2
        assert stats.recent_transactions == 2
        assert stats.total_amount == Decimal("5")
        assert stats.frequency == 2
        assert stats.unique_recipients == 2
        assert stats.failed_transactions == 1
        assert stats.last_activity == start + timedelta(seconds=10)


class TestCleanup:
    def test_drops_expired_patterns(self, tracker, clock):
        """Test a pattern whose last record aged past 2x window is removed."""
        start = clock.now()
        tracker.add_transaction(ACTOR, "s", 5, "r", now=start)

        evicted, dropped = tracker.cleanup(start + timedelta(hours=2))

        assert (evicted, dropped) == (1, 1)
        assert tracker.actors() == []
        stats = tracker.get_stats(ACTOR)
        assert stats.frequency == 0
        assert stats.total_amount == Decimal("0")

    def test_keeps_live_patterns(self, tracker, clock):
        start = clock.now()
        tracker.add_transaction(ACTOR, "old", 5, "r", now=start)
        tracker.add_transaction(ACTOR, "new", 5, "r", now=start + timedelta(hours=1))

        evicted, dropped = tracker.cleanup(start + timedelta(hours=2))

        assert (evicted, dropped) == (1, 0)
        assert tracker.actors() == [ACTOR]

    def test_tracking_after_cleanup_recreates_pattern(self, tracker, clock):
        start = clock.now()
        tracker.add_transaction(ACTOR, "s1", 1, "r", now=start)
        tracker.cleanup(start + timedelta(hours=3))

        tracker.add_transaction(ACTOR, "s2", 1, "r", now=start + timedelta(hours=3))

        assert tracker.get_stats(ACTOR, now=start + timedelta(hours=3)).total_transactions == 1


class TestStandingAlerts:
    def test_reports_current_conditions(self, tracker):
        for i in range(11):
            tracker.add_transaction(ACTOR, f"s{i}", 10, f"r{i}")

        alerts = tracker.standing_alerts()

        assert sorted(a.type for a in alerts) == [AlertType.HIGH_FREQUENCY, AlertType.LARGE_AMOUNT]

    def test_empty(self, tracker):
        assert tracker.standing_alerts() == []

    def test_clear(self, tracker):
        tracker.add_transaction(ACTOR, "s", 1, "r")
        tracker.clear()
        assert len(tracker) == 0
        assert tracker.actor_for("s") is None


class TestActorIsolation:
    """Tests that one actor's bad input leaves the tracker usable."""

    @pytest.mark.parametrize("amount", [float("nan"), float("inf"), "abc"])
    def test_rejected_amount_leaves_no_record(self, tracker, amount):
        with pytest.raises(ValueError):
            tracker.add_transaction("bad", "s1", amount, "r")

        assert tracker.actors() == []
        assert tracker.actor_for("s1") is None

    def test_other_actors_unaffected(self, tracker):
        tracker.add_transaction("good", "g1", 60, "r")
        with pytest.raises(ValueError):
            tracker.add_transaction("bad", "b1", float("nan"), "r")

        alerts = tracker.add_transaction("bad", "b2", 1, "r2")

        assert alerts == []
        assert tracker.get_stats("bad").total_amount == Decimal("1")
        assert tracker.update_status("bad", "b2", RecordStatus.FAILED) == []
        assert tracker.get_stats("good").total_amount == Decimal("60")
        assert tracker.standing_alerts() == []

    def test_standing_alerts_skip_a_broken_pattern(self, tracker):
        for i in range(11):
            tracker.add_transaction("busy", f"s{i}", 1, f"r{i}")
        tracker.add_transaction("broken", "x", 1, "r")
        tracker.detector.evaluate_standing = _fail_for("broken", tracker.detector.evaluate_standing)

        alerts = tracker.standing_alerts()

        assert [(a.actor_id, a.type) for a in alerts] == [("busy", AlertType.HIGH_FREQUENCY)]


def _fail_for(actor_id, evaluate):
    def wrapped(pattern, now):
        if pattern.actor_id == actor_id:
            raise ArithmeticError("bad aggregate")
        return evaluate(pattern, now)

    return wrapped
