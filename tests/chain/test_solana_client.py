"""Tests for the Solana RPC client."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from solana_tx_monitor.chain.client import (
    LedgerClientError,
    RPCTransientError,
    SignatureStatus,
    TransactionDetails,
)
from solana_tx_monitor.chain.solana import RateLimiter, SolanaRpcClient

# Base58 of 64 zero bytes, a syntactically valid signature
SIGNATURE = "1" * 64


def status_response(*, slot: int = 5, err=None, confirmation="TransactionConfirmationStatus.Confirmed"):
    status = MagicMock()
    status.slot = slot
    status.err = err
    status.confirmation_status = confirmation
    resp = MagicMock()
    resp.value = [status]
    return resp


def transaction_response(*, fee: int = 5000, accounts=("A1", "B2")):
    tx_with_meta = MagicMock()
    tx_with_meta.meta.fee = fee
    tx_with_meta.transaction.message.account_keys = list(accounts)
    resp = MagicMock()
    resp.value.transaction = tx_with_meta
    return resp


@pytest.fixture
def client():
    """Create a client with mocked primary endpoint and no retry delay."""
    c = SolanaRpcClient(
        "https://primary.example",
        max_retries=2,
        retry_delay_seconds=0,
        max_requests_per_second=1000,
    )
    c._client = MagicMock()
    return c


@pytest.fixture
def client_with_fallback():
    c = SolanaRpcClient(
        "https://primary.example",
        fallback_rpc_url="https://fallback.example",
        max_retries=2,
        retry_delay_seconds=0,
        max_requests_per_second=1000,
    )
    c._client = MagicMock()
    c._fallback = MagicMock()
    return c


class TestSignatureStatus:
    def test_failed_property(self):
        assert SignatureStatus(slot=1, err={"InstructionError": [0, "Custom"]}).failed
        assert not SignatureStatus(slot=1).failed


class TestTransactionDetails:
    def test_dict_conversion(self):
        details = TransactionDetails(fee=5000, accounts=("A", "B"))
        assert TransactionDetails.from_dict(details.to_dict()) == details

    def test_from_dict_missing_fields(self):
        assert TransactionDetails.from_dict({}) == TransactionDetails(fee=None, accounts=())


class TestRateLimiter:
    @pytest.mark.asyncio
    async def test_acquire_within_budget(self):
        limiter = RateLimiter.create(10)
        await limiter.acquire()
        assert limiter.tokens <= 9.0 + 1e-6


class TestGetStatus:
    """Tests for SolanaRpcClient.get_status."""

    @pytest.mark.asyncio
    async def test_unknown_signature_returns_none(self, client):
        resp = MagicMock()
        resp.value = [None]
        client._client.get_signature_statuses = AsyncMock(return_value=resp)

        assert await client.get_status(SIGNATURE) is None

    @pytest.mark.asyncio
    async def test_confirmed_status(self, client):
        client._client.get_signature_statuses = AsyncMock(return_value=status_response(slot=42))

        status = await client.get_status(SIGNATURE)

        assert status == SignatureStatus(slot=42, err=None, confirmation_status="confirmed")
        kwargs = client._client.get_signature_statuses.await_args.kwargs
        assert kwargs["search_transaction_history"] is True

    @pytest.mark.asyncio
    async def test_failed_status_keeps_error(self, client):
        err = {"InstructionError": [0, {"Custom": 1}]}
        client._client.get_signature_statuses = AsyncMock(return_value=status_response(err=err))

        status = await client.get_status(SIGNATURE)

        assert status is not None
        assert status.failed
        assert status.err == err

    @pytest.mark.asyncio
    async def test_invalid_signature(self, client):
        with pytest.raises(LedgerClientError):
            await client.get_status("not-a-signature")

    @pytest.mark.asyncio
    async def test_retries_then_raises(self, client):
        """Test errors are retried and surface as RPCTransientError."""
        client._client.get_signature_statuses = AsyncMock(side_effect=OSError("connection reset"))

        with pytest.raises(RPCTransientError):
            await client.get_status(SIGNATURE)

        assert client._client.get_signature_statuses.await_count == 2

    @pytest.mark.asyncio
    async def test_fails_over_to_fallback(self, client_with_fallback):
        c = client_with_fallback
        c._client.get_signature_statuses = AsyncMock(side_effect=OSError("down"))
        c._fallback.get_signature_statuses = AsyncMock(return_value=status_response(slot=7))

        status = await c.get_status(SIGNATURE)

        assert status is not None
        assert status.slot == 7
        assert c._primary_healthy is False

    @pytest.mark.asyncio
    async def test_unhealthy_primary_is_skipped(self, client_with_fallback):
        c = client_with_fallback
        c._client.get_signature_statuses = AsyncMock(side_effect=OSError("down"))
        c._fallback.get_signature_statuses = AsyncMock(return_value=status_response())

        await c.get_status(SIGNATURE)
        await c.get_status(SIGNATURE)

        assert c._client.get_signature_statuses.await_count == 2
        assert c._fallback.get_signature_statuses.await_count == 2


class TestGetDetails:
    """Tests for SolanaRpcClient.get_details."""

    @pytest.mark.asyncio
    async def test_fetches_fee_and_accounts(self, client):
        client._client.get_transaction = AsyncMock(return_value=transaction_response())

        details = await client.get_details(SIGNATURE)

        assert details == TransactionDetails(fee=5000, accounts=("A1", "B2"))

    @pytest.mark.asyncio
    async def test_missing_transaction(self, client):
        resp = MagicMock()
        resp.value = None
        client._client.get_transaction = AsyncMock(return_value=resp)

        assert await client.get_details(SIGNATURE) is None

    @pytest.mark.asyncio
    async def test_uses_cache(self, client):
        redis = AsyncMock()
        redis.get.return_value = json.dumps({"fee": 10, "accounts": ["X"]}).encode()
        client._redis = redis
        client._client.get_transaction = AsyncMock()

        details = await client.get_details(SIGNATURE)

        assert details == TransactionDetails(fee=10, accounts=("X",))
        client._client.get_transaction.assert_not_awaited()
        redis.get.assert_awaited_once_with(f"solana:tx:details:{SIGNATURE}")

    @pytest.mark.asyncio
    async def test_populates_cache(self, client):
        redis = AsyncMock()
        redis.get.return_value = None
        client._redis = redis
        client._client.get_transaction = AsyncMock(return_value=transaction_response(fee=7))

        await client.get_details(SIGNATURE)

        key, value = redis.set.await_args.args
        assert key == f"solana:tx:details:{SIGNATURE}"
        assert json.loads(value)["fee"] == 7
        assert redis.set.await_args.kwargs["ex"] == 3600

    @pytest.mark.asyncio
    async def test_cache_failure_falls_through(self, client):
        redis = AsyncMock()
        redis.get.side_effect = ConnectionError("redis down")
        client._redis = redis
        client._client.get_transaction = AsyncMock(return_value=transaction_response())

        details = await client.get_details(SIGNATURE)

        assert details is not None
        assert details.fee == 5000


class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_healthy(self, client):
        client._client.get_slot = AsyncMock(return_value=MagicMock(value=100))
        assert await client.health_check() is True

    @pytest.mark.asyncio
    async def test_unhealthy(self, client):
        client._client.get_slot = AsyncMock(side_effect=OSError("down"))
        assert await client.health_check() is False
