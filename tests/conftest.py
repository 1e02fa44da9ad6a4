"""Pytest configuration and fixtures."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from solana_tx_monitor.clock import ManualClock


@pytest.fixture
def clock() -> ManualClock:
    """Deterministic clock starting at 2026-01-01 UTC."""
    return ManualClock(datetime(2026, 1, 1, tzinfo=UTC))


@pytest.fixture
def ledger_client() -> MagicMock:
    """Ledger client whose signatures never land unless a test says so."""
    client = MagicMock()
    client.get_status = AsyncMock(return_value=None)
    client.get_details = AsyncMock(return_value=None)
    return client


@pytest.fixture
def sample_signature() -> str:
    """Sample transaction signature for testing."""
    return "5VERv8NMvzbJMEkV8xnrLkEaWRtSz9CosKDYjCJjBRnbJLgp8uirBgmQpjKhoR4tjF3ZpRzrFmBV6UjKdiSZkQUW"
