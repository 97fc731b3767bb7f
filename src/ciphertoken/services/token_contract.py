"""Typed client for the encrypted token contract.

Each method maps to one contract function. Reads are simulated with the
server account as source; writes are signed and submitted through the
LedgerGateway.
"""

import logging
from typing import Optional

from ciphertoken.errors import TransactionFailedError
from ciphertoken.ledger import scval
from ciphertoken.ledger.gateway import LedgerGateway
from ciphertoken.ledger.models import TransactionResult
from ciphertoken.models import DepositRequest, EncryptedBalance
from ciphertoken.signing.base import TransactionSigner

logger = logging.getLogger(__name__)


class TokenContractClient:
    """Wrapper over the contract's public methods."""

    def __init__(self, gateway: LedgerGateway, contract_id: str, signer: TransactionSigner):
        """Initialize contract client.

        Args:
            gateway: Ledger gateway
            contract_id: Encrypted token contract (C...)
            signer: Server manager signer, also the source of read simulations
        """
        self.gateway = gateway
        self.contract_id = contract_id
        self.signer = signer

    async def _read(self, method: str, *args):
        return await self.gateway.simulate(
            self.contract_id, method, list(args), source=self.signer.public_key
        )

    async def _write(
        self, method: str, *args, signer: Optional[TransactionSigner] = None
    ) -> TransactionResult:
        result = await self.gateway.invoke(
            self.contract_id, method, list(args), signer or self.signer
        )
        if not result.successful:
            raise TransactionFailedError(
                f"{method} failed with status {result.status.value}", tx_hash=result.hash
            )
        logger.info(f"{method} confirmed in ledger {result.ledger} (tx: {result.hash})")
        return result

    # ======================
    # Reads
    # ======================

    async def get_encrypted_balance(self, user_index: bytes) -> EncryptedBalance:
        value = await self._read("get_encrypted_balance", scval.to_bytes(user_index))
        return EncryptedBalance.from_native(value)

    async def get_deposit_request(self, request_id: bytes) -> DepositRequest:
        value = await self._read("get_deposit_request", scval.to_bytes(request_id))
        return DepositRequest.from_native(value or {})

    async def deposit_completed(self, request_id: bytes) -> bool:
        value = await self._read("deposit_completed", scval.to_bytes(request_id))
        return value is True

    async def transfer_completed(self, transfer_id: bytes) -> bool:
        value = await self._read("transfer_completed", scval.to_bytes(transfer_id))
        return value is True

    async def get_user_index_by_address(self, address: str) -> bytes:
        """Stored (server-wrapped) index for an address; empty if none."""
        value = await self._read("get_user_index_by_address", scval.to_address(address))
        return bytes(value) if value else b""

    # ======================
    # Server writes
    # ======================

    async def store_deposit(
        self,
        request_id: bytes,
        user: str,
        amount: int,
        user_index: bytes,
        encrypted_amount: bytes,
        encrypted_key_user: bytes,
        encrypted_key_server: bytes,
    ) -> TransactionResult:
        return await self._write(
            "store_deposit",
            scval.to_bytes(request_id),
            scval.to_address(user),
            scval.to_int128(amount),
            scval.to_bytes(user_index),
            scval.to_bytes(encrypted_amount),
            scval.to_bytes(encrypted_key_user),
            scval.to_bytes(encrypted_key_server),
        )

    async def process_transfer(
        self,
        transfer_id: bytes,
        sender_index: bytes,
        receiver_index: bytes,
        sender_encrypted_amount: bytes,
        sender_key_user: bytes,
        sender_key_server: bytes,
        receiver_encrypted_amount: bytes,
        receiver_key_user: bytes,
        receiver_key_server: bytes,
    ) -> TransactionResult:
        return await self._write(
            "process_transfer",
            scval.to_bytes(transfer_id),
            scval.to_bytes(sender_index),
            scval.to_bytes(receiver_index),
            scval.to_bytes(sender_encrypted_amount),
            scval.to_bytes(sender_key_user),
            scval.to_bytes(sender_key_server),
            scval.to_bytes(receiver_encrypted_amount),
            scval.to_bytes(receiver_key_user),
            scval.to_bytes(receiver_key_server),
        )

    # ======================
    # User writes
    # ======================

    async def request_deposit(
        self, user: TransactionSigner, amount: int, encrypted_index: bytes
    ) -> TransactionResult:
        return await self._write(
            "request_deposit",
            scval.to_address(user.public_key),
            scval.to_int128(amount),
            scval.to_bytes(encrypted_index),
            signer=user,
        )

    async def request_transfer(
        self,
        sender: TransactionSigner,
        encrypted_receiver_index: bytes,
        encrypted_amount: bytes,
    ) -> TransactionResult:
        return await self._write(
            "request_transfer",
            scval.to_address(sender.public_key),
            scval.to_bytes(encrypted_receiver_index),
            scval.to_bytes(encrypted_amount),
            signer=sender,
        )

    async def authenticate_user(
        self, user: TransactionSigner, encrypted_index: bytes
    ) -> TransactionResult:
        return await self._write(
            "authenticate_user",
            scval.to_address(user.public_key),
            scval.to_bytes(encrypted_index),
            signer=user,
        )
