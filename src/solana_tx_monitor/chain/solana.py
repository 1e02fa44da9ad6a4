"""Solana RPC client with rate limiting, failover and caching.

This module provides the production ``LedgerClient`` implementation with:
- Rate limiting to respect provider limits
- Retry logic with exponential backoff
- Failover to secondary RPC URL
- Redis caching of resolved transaction details (immutable once landed)
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any

from redis.asyncio import Redis
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solana.rpc.core import RPCException
from solders.signature import Signature

from solana_tx_monitor.chain.client import (
    LedgerClientError,
    RPCTransientError,
    SignatureStatus,
    TransactionDetails,
)

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_CACHE_TTL_SECONDS = 3600
DEFAULT_MAX_REQUESTS_PER_SECOND = 25
DEFAULT_MAX_RETRIES = 2
DEFAULT_RETRY_DELAY_SECONDS = 0.5
DEFAULT_COMMITMENT = "confirmed"

_RPC_ERRORS = (SolanaRpcException, RPCException, OSError, asyncio.TimeoutError)


@dataclass
class RateLimiter:
    """Token bucket rate limiter."""

    max_tokens: float
    refill_rate: float  # tokens per second
    tokens: float
    last_refill: float

    @classmethod
    def create(cls, max_requests_per_second: float) -> RateLimiter:
        """Create a rate limiter with specified max requests per second."""
        return cls(
            max_tokens=max_requests_per_second,
            refill_rate=max_requests_per_second,
            tokens=max_requests_per_second,
            last_refill=time.monotonic(),
        )

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self.last_refill
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    async def acquire(self, tokens: float = 1.0) -> None:
        """Acquire tokens, waiting if necessary."""
        while True:
            self._refill()
            if self.tokens >= tokens:
                self.tokens -= tokens
                return
            wait_time = (tokens - self.tokens) / self.refill_rate
            await asyncio.sleep(wait_time)


def _parse_signature(signature: str) -> Signature:
    try:
        return Signature.from_string(signature)
    except ValueError as e:
        raise LedgerClientError(f"Invalid signature {signature!r}: {e}") from e


def _confirmation_name(value: Any) -> str | None:
    if value is None:
        return None
    return str(value).rsplit(".", 1)[-1].lower()


def _account_keys(message: Any) -> tuple[str, ...]:
    """Account keys for raw, parsed, or binary-decoded messages."""
    keys = getattr(message, "account_keys", None) or ()
    result: list[str] = []
    for key in keys:
        pubkey = getattr(key, "pubkey", key)
        result.append(str(pubkey))
    return tuple(result)


class SolanaRpcClient:
    """Solana JSON-RPC client implementing ``LedgerClient``.

    Example:
        ```python
        redis = Redis.from_url("redis://localhost:6379")
        client = SolanaRpcClient(
            "https://api.mainnet-beta.solana.com",
            fallback_rpc_url="https://solana-rpc.publicnode.com",
            redis=redis,
        )

        status = await client.get_status("5VERv8NMvzbJMEkV8xnrLkEaWRtSz9CosKDYjCJjBRnbJLgp8uirBgmQpjKhoR4tjF3ZpRzrFmBV6UjKdiSZkQUW")
        ```
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        fallback_rpc_url: str | None = None,
        redis: Redis | None = None,
        commitment: str = DEFAULT_COMMITMENT,
        cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
        max_requests_per_second: float = DEFAULT_MAX_REQUESTS_PER_SECOND,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
    ) -> None:
        """Initialize the Solana client.

        Args:
            rpc_url: Primary Solana RPC endpoint URL.
            fallback_rpc_url: Optional fallback RPC URL for failover.
            redis: Optional Redis client for caching transaction details.
            commitment: Commitment level for detail lookups.
            cache_ttl_seconds: Cache TTL in seconds (0 disables caching).
            max_requests_per_second: Rate limit for RPC calls.
            max_retries: Attempts per endpoint before failing over.
            retry_delay_seconds: Initial delay between retries.
        """
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")

        self._rpc_url = rpc_url
        self._fallback_rpc_url = fallback_rpc_url
        self._redis = redis
        self._commitment = Commitment(commitment)
        self._cache_ttl = cache_ttl_seconds
        self._max_retries = max_retries
        self._retry_delay = retry_delay_seconds

        self._client = AsyncClient(rpc_url, commitment=self._commitment)
        self._fallback: AsyncClient | None = None
        if fallback_rpc_url:
            self._fallback = AsyncClient(fallback_rpc_url, commitment=self._commitment)

        self._rate_limiter = RateLimiter.create(max_requests_per_second)

        # Track primary RPC health
        self._primary_healthy = True
        self._last_primary_check = 0.0
        self._primary_recovery_interval = 60.0

        self._cache_prefix = "solana:tx:"

    def _cache_key(self, signature: str) -> str:
        return f"{self._cache_prefix}details:{signature}"

    async def _get_cached(self, key: str) -> str | None:
        if not self._redis or self._cache_ttl <= 0:
            return None
        try:
            value = await self._redis.get(key)
            if isinstance(value, bytes):
                return value.decode()
            return str(value) if value is not None else None
        except Exception as e:
            logger.warning("Cache get failed: %s", e)
            return None

    async def _set_cached(self, key: str, value: str) -> None:
        if not self._redis or self._cache_ttl <= 0:
            return
        try:
            await self._redis.set(key, value, ex=self._cache_ttl)
        except Exception as e:
            logger.warning("Cache set failed: %s", e)

    def _should_try_primary(self) -> bool:
        if self._primary_healthy or self._fallback is None:
            return True
        now = time.monotonic()
        if now - self._last_primary_check > self._primary_recovery_interval:
            self._last_primary_check = now
            return True
        return False

    async def _execute_with_retry(self, method_name: str, *args: Any, **kwargs: Any) -> Any:
        """Execute an RPC call with retry and failover logic.

        Raises:
            RPCTransientError: If all retries and failover fail.
        """
        await self._rate_limiter.acquire()

        last_error: Exception | None = None
        delay = self._retry_delay

        if self._should_try_primary():
            for attempt in range(self._max_retries):
                try:
                    result = await getattr(self._client, method_name)(*args, **kwargs)
                    self._primary_healthy = True
                    return result
                except _RPC_ERRORS as e:
                    last_error = e
                    logger.warning(
                        "Primary RPC %s failed (attempt %d/%d): %s",
                        method_name,
                        attempt + 1,
                        self._max_retries,
                        e,
                    )
                    if attempt < self._max_retries - 1:
                        await asyncio.sleep(delay)
                        delay *= 2

            if self._fallback is not None:
                self._primary_healthy = False
                self._last_primary_check = time.monotonic()

        if self._fallback is not None:
            delay = self._retry_delay
            for attempt in range(self._max_retries):
                try:
                    result = await getattr(self._fallback, method_name)(*args, **kwargs)
                    logger.info("Fallback RPC succeeded for %s", method_name)
                    return result
                except _RPC_ERRORS as e:
                    last_error = e
                    logger.warning(
                        "Fallback RPC %s failed (attempt %d/%d): %s",
                        method_name,
                        attempt + 1,
                        self._max_retries,
                        e,
                    )
                    if attempt < self._max_retries - 1:
                        await asyncio.sleep(delay)
                        delay *= 2

        raise RPCTransientError(f"RPC call {method_name} failed after all retries: {last_error}")

    async def get_status(self, signature: str) -> SignatureStatus | None:
        """Get the status of a signature, ``None`` if the ledger has not seen it."""
        sig = _parse_signature(signature)
        resp = await self._execute_with_retry(
            "get_signature_statuses",
            [sig],
            search_transaction_history=True,
        )
        if not resp.value or resp.value[0] is None:
            return None

        status = resp.value[0]
        confirmation = status.confirmation_status
        return SignatureStatus(
            slot=int(status.slot),
            err=status.err,
            confirmation_status=_confirmation_name(confirmation),
        )

    async def get_details(self, signature: str) -> TransactionDetails | None:
        """Get fee and account keys of a landed transaction."""
        cache_key = self._cache_key(signature)
        cached = await self._get_cached(cache_key)
        if cached is not None:
            return TransactionDetails.from_dict(json.loads(cached))

        sig = _parse_signature(signature)
        resp = await self._execute_with_retry(
            "get_transaction",
            sig,
            encoding="json",
            commitment=self._commitment,
            max_supported_transaction_version=0,
        )
        if resp.value is None:
            return None

        tx_with_meta = resp.value.transaction
        meta = tx_with_meta.meta
        details = TransactionDetails(
            fee=int(meta.fee) if meta is not None else None,
            accounts=_account_keys(tx_with_meta.transaction.message),
        )

        await self._set_cached(cache_key, json.dumps(details.to_dict()))
        return details

    async def health_check(self) -> bool:
        """Check if the client can reach the RPC."""
        try:
            await self._execute_with_retry("get_slot")
            return True
        except RPCTransientError:
            return False

    async def aclose(self) -> None:
        """Close HTTP sessions of every endpoint."""
        clients = [self._client]
        if self._fallback is not None:
            clients.append(self._fallback)
        for client in clients:
            try:
                await client.close()
            except Exception as e:
                logger.warning("Failed to close RPC client session: %s", e)
