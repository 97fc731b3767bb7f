"""Ledger-side data types shared by the gateway and the poller."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class TransactionStatus(str, Enum):
    """Statuses reported by sendTransaction / getTransaction."""

    PENDING = "PENDING"
    DUPLICATE = "DUPLICATE"
    TRY_AGAIN_LATER = "TRY_AGAIN_LATER"
    ERROR = "ERROR"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    NOT_FOUND = "NOT_FOUND"


@dataclass(frozen=True)
class ParsedEvent:
    """A contract event with topics and payload decoded to native values.

    Attributes:
        id: Event ID assigned by the RPC (unique per event)
        ledger: Ledger sequence the event was emitted in
        contract_id: Emitting contract (C... strkey)
        topics: Decoded topic values, event name first
        payload: Decoded event value
        tx_hash: Hash of the emitting transaction
        type: RPC event type (contract, system, diagnostic)
    """

    id: str
    ledger: int
    contract_id: str
    topics: tuple = ()
    payload: Any = None
    tx_hash: str = ""
    type: str = "contract"

    @property
    def event_type(self) -> str:
        """Event name taken from the first topic."""
        if not self.topics or self.topics[0] is None:
            return "unknown"
        first = self.topics[0]
        if isinstance(first, bytes):
            return first.decode("utf-8", errors="replace")
        return str(first)


@dataclass
class TransactionResult:
    """Terminal result of a submitted transaction."""

    hash: str
    status: TransactionStatus
    ledger: Optional[int] = None
    return_value: Any = None
    raw: dict = field(default_factory=dict, repr=False)

    @property
    def successful(self) -> bool:
        return self.status == TransactionStatus.SUCCESS
