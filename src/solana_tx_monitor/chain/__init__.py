"""Ledger access layer - RPC interface and the Solana implementation."""

from solana_tx_monitor.chain.client import (
    LedgerClient,
    LedgerClientError,
    RPCTransientError,
    SignatureStatus,
    TransactionDetails,
)

__all__ = [
    "LedgerClient",
    "LedgerClientError",
    "RPCTransientError",
    "SignatureStatus",
    "TransactionDetails",
]
