"""Ledger access: Soroban RPC transport, SCVal codec and the gateway."""

from ciphertoken.ledger.gateway import LedgerGateway
from ciphertoken.ledger.models import ParsedEvent, TransactionResult, TransactionStatus
from ciphertoken.ledger.rpc import SorobanRpcClient

__all__ = [
    "LedgerGateway",
    "ParsedEvent",
    "SorobanRpcClient",
    "TransactionResult",
    "TransactionStatus",
]
