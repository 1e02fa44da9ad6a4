"""Ledger RPC client interface consumed by the monitor."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol


class LedgerClientError(Exception):
    """Base exception for ledger client errors."""


class RPCTransientError(LedgerClientError):
    """Raised when a status or details call fails but may succeed later."""


@dataclass(frozen=True)
class SignatureStatus:
    """Status of a signature as reported by the ledger.

    Attributes:
        slot: Slot the transaction was processed in.
        err: Ledger error payload, ``None`` when the transaction succeeded.
        confirmation_status: Commitment reached (processed/confirmed/finalized).
    """

    slot: int
    err: Any | None = None
    confirmation_status: str | None = None

    @property
    def failed(self) -> bool:
        return self.err is not None


@dataclass(frozen=True)
class TransactionDetails:
    """Extra information fetched once a signature has resolved."""

    fee: int | None
    accounts: tuple[str, ...]

    def to_dict(self) -> dict[str, object]:
        return {"fee": self.fee, "accounts": list(self.accounts)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TransactionDetails:
        fee = data.get("fee")
        return cls(
            fee=int(fee) if fee is not None else None,
            accounts=tuple(str(a) for a in data.get("accounts") or ()),
        )


class LedgerClient(Protocol):
    """Minimal RPC surface the signature watcher depends on.

    Implementations return ``None`` when the ledger has no record yet and
    raise ``RPCTransientError`` when the call itself fails.
    """

    async def get_status(self, signature: str) -> SignatureStatus | None:
        ...

    async def get_details(self, signature: str) -> TransactionDetails | None:
        ...
