"""Domain models for encrypted balances and settlement requests."""

from dataclasses import dataclass
from typing import Any, Optional

from ciphertoken.crypto import to_hex


def _as_bytes(value: Any) -> bytes:
    if value is None:
        return b""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        return bytes.fromhex(value[2:] if value.startswith("0x") else value)
    if isinstance(value, (list, tuple)):
        return bytes(value)
    raise TypeError(f"Cannot convert {type(value).__name__} to bytes")


@dataclass(frozen=True)
class EncryptedBalance:
    """On-ledger encrypted balance for one user index.

    When exists is True both key slots wrap the same symmetric key and
    encrypted_amount decrypts under it to a non-negative integer.
    """

    encrypted_amount: bytes = b""
    encrypted_key_user: bytes = b""
    encrypted_key_server: bytes = b""
    timestamp: int = 0
    exists: bool = False

    @classmethod
    def from_native(cls, data: Optional[dict]) -> "EncryptedBalance":
        if not data:
            return cls()
        return cls(
            encrypted_amount=_as_bytes(data.get("encrypted_amount")),
            encrypted_key_user=_as_bytes(data.get("encrypted_key_user")),
            encrypted_key_server=_as_bytes(data.get("encrypted_key_server")),
            timestamp=int(data.get("timestamp") or 0),
            exists=bool(data.get("exists")),
        )


@dataclass(frozen=True)
class DepositRequest:
    """Deposit request stored by the contract until the server settles it."""

    request_id: bytes
    user: str
    amount: int
    timestamp: int = 0
    ledger: int = 0
    encrypted_index: bytes = b""

    @classmethod
    def from_native(cls, data: dict) -> "DepositRequest":
        return cls(
            request_id=_as_bytes(data.get("request_id")),
            user=str(data.get("user", "")),
            amount=int(data.get("amount") or 0),
            timestamp=int(data.get("timestamp") or 0),
            ledger=int(data.get("ledger") or 0),
            encrypted_index=_as_bytes(data.get("encrypted_index")),
        )

    @property
    def is_empty(self) -> bool:
        """The contract returns a zeroed request for unknown ids."""
        return self.amount == 0 and self.ledger == 0

    @property
    def request_id_hex(self) -> str:
        return to_hex(self.request_id)


@dataclass(frozen=True)
class TransferRequest:
    """Transfer request as emitted in a transfer_requested event.

    Receiver index and amount are wrapped for the server address.
    """

    transfer_id: bytes
    sender: str
    encrypted_receiver_index: bytes
    encrypted_amount: bytes

    @classmethod
    def from_payload(cls, payload: Any) -> "TransferRequest":
        """Build from an event payload, either positional or keyed."""
        if isinstance(payload, dict):
            return cls(
                transfer_id=_as_bytes(payload.get("transfer_id")),
                sender=str(payload.get("sender", "")),
                encrypted_receiver_index=_as_bytes(payload.get("encrypted_receiver_index")),
                encrypted_amount=_as_bytes(payload.get("encrypted_amount")),
            )
        if isinstance(payload, (list, tuple)) and len(payload) >= 4:
            transfer_id, sender, receiver_index, amount = payload[:4]
            return cls(
                transfer_id=_as_bytes(transfer_id),
                sender=str(sender),
                encrypted_receiver_index=_as_bytes(receiver_index),
                encrypted_amount=_as_bytes(amount),
            )
        raise ValueError(f"Unrecognised transfer payload: {payload!r}")

    @property
    def transfer_id_hex(self) -> str:
        return to_hex(self.transfer_id)


@dataclass(frozen=True)
class BalanceSnapshot:
    """A decrypted balance together with the key it was sealed under."""

    user_index: bytes
    balance: int
    symmetric_key: Optional[bytes]
    record: EncryptedBalance

    @property
    def exists(self) -> bool:
        return self.record.exists


@dataclass(frozen=True)
class SealedBalance:
    """Encrypted fields of a balance ready to be written on-chain."""

    encrypted_amount: bytes
    encrypted_key_user: bytes
    encrypted_key_server: bytes


@dataclass(frozen=True)
class SettlementResult:
    """Outcome of a deposit or transfer settlement."""

    request_id: str
    tx_hash: str
    balances: dict
