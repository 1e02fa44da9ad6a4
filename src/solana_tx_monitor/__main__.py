"""Run the transaction monitor until interrupted.

Usage:
    python -m solana_tx_monitor

Configuration is read from the environment (see ``config.Settings``).
"""

from __future__ import annotations

import asyncio
import logging
import signal

from redis.asyncio import Redis

from solana_tx_monitor.alerter.sinks import AlertSink, NullAlertSink, RedisStreamAlertSink
from solana_tx_monitor.chain.solana import SolanaRpcClient
from solana_tx_monitor.config import Settings, get_settings
from solana_tx_monitor.monitor import TransactionMonitor

logger = logging.getLogger("solana_tx_monitor")


def build_sink(settings: Settings, redis: Redis) -> AlertSink:
    """Pick the alert sink for the configured mode."""
    if settings.dry_run or settings.alert_sink == "null":
        logger.info("Alerts are not delivered (dry_run=%s, sink=%s)", settings.dry_run, settings.alert_sink)
        return NullAlertSink()
    return RedisStreamAlertSink(
        redis,
        stream=settings.redis.alert_stream,
        maxlen=settings.redis.alert_stream_maxlen,
    )


async def run_monitor(settings: Settings) -> None:
    redis = Redis.from_url(settings.redis.url)
    client = SolanaRpcClient(
        settings.solana.rpc_url,
        fallback_rpc_url=settings.solana.fallback_rpc_url,
        redis=redis,
        commitment=settings.solana.commitment,
        cache_ttl_seconds=settings.solana.details_cache_ttl_seconds,
        max_requests_per_second=settings.solana.max_requests_per_second,
        max_retries=settings.solana.max_retries,
    )
    monitor = TransactionMonitor.from_settings(client, settings, sink=build_sink(settings, redis))

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, monitor.request_stop)
        except NotImplementedError:
            logger.debug("Signal handlers not supported on this platform")

    try:
        if not await client.health_check():
            logger.warning("Solana RPC is not reachable; watches will retry until it is")
        await monitor.run()
    finally:
        await client.aclose()
        await redis.aclose()


def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Starting with settings: %s", settings.redacted_summary())
    asyncio.run(run_monitor(settings))


if __name__ == "__main__":
    main()
