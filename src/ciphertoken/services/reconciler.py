"""Encrypted balance reconciliation.

Settles deposit and transfer requests emitted by the token contract:

1. Resolve the request (from contract storage or the event payload)
2. Skip it if the contract already marks it completed
3. Resolve user indices and decrypt current balances with the server key slot
4. Apply the delta with plain integer arithmetic
5. Re-encrypt, wrap the symmetric key for user and server, persist on-chain

Delivery is at-least-once, so every settlement starts with the on-chain
completion check. Balances are always re-read from the ledger; nothing
decrypted is kept between settlements.
"""

import logging
import warnings
from typing import Optional

from ciphertoken.crypto import (
    AddressKeyedCipher,
    Decrypted,
    SymmetricCipher,
    decode_amount,
    to_hex,
)
from ciphertoken.errors import (
    AuthenticationError,
    DecryptionFallbackWarning,
    InsufficientBalanceError,
    InvalidTransferError,
    KeyUnwrapError,
    ReconciliationError,
    RequestNotFoundError,
    UserIndexDecryptionError,
    UserNotAuthenticatedError,
)
from ciphertoken.ledger.models import ParsedEvent
from ciphertoken.models import (
    BalanceSnapshot,
    EncryptedBalance,
    SealedBalance,
    SettlementResult,
    TransferRequest,
)
from ciphertoken.services.token_contract import TokenContractClient
from ciphertoken.utils.locks import IndexLockRegistry

logger = logging.getLogger(__name__)

DEPOSIT_REQUESTED = "deposit_requested"
TRANSFER_REQUESTED = "transfer_requested"
USER_INDEX_SIZE = 32


class BalanceReconciler:
    """Applies deposits and transfers to encrypted on-chain balances."""

    def __init__(
        self,
        contract: TokenContractClient,
        server_secret: str,
        allow_index_fallback: bool = False,
        symmetric: Optional[SymmetricCipher] = None,
        address_cipher: Optional[AddressKeyedCipher] = None,
        locks: Optional[IndexLockRegistry] = None,
    ):
        """Initialize reconciler.

        Args:
            contract: Token contract client
            server_secret: Server manager secret seed, unwraps the server key slots
            allow_index_fallback: Use a stored index as-is when it cannot be
                unwrapped instead of failing (interop with test data only)
            symmetric: Balance cipher
            address_cipher: Key-wrapping cipher
            locks: Per-index lock registry
        """
        self.contract = contract
        self.allow_index_fallback = allow_index_fallback
        self.symmetric = symmetric or SymmetricCipher()
        self.address_cipher = address_cipher or AddressKeyedCipher()
        self.locks = locks or IndexLockRegistry()
        self._server_secret = server_secret
        self.server_address = self.address_cipher.address_from_secret(server_secret)

    # ======================
    # Deposits
    # ======================

    async def handle_deposit_request(self, event: ParsedEvent) -> Optional[SettlementResult]:
        """Event handler for deposit_requested.

        Event payload: (request_id, packed_data, encrypted_index)
        """
        if event.event_type != DEPOSIT_REQUESTED:
            logger.debug(f"Ignoring {event.event_type} event {event.id}")
            return None

        payload = event.payload
        if isinstance(payload, dict):
            request_id = payload.get("request_id")
        elif isinstance(payload, (list, tuple)) and payload:
            request_id = payload[0]
        else:
            request_id = None

        if not isinstance(request_id, (bytes, bytearray)):
            raise ReconciliationError(f"Deposit event {event.id} carries no request id")

        logger.info(f"Processing deposit request {to_hex(request_id)} (event {event.id})")
        return await self.settle_deposit(bytes(request_id))

    async def settle_deposit(self, request_id: bytes) -> Optional[SettlementResult]:
        """Settle a deposit request by id.

        Returns:
            SettlementResult, or None if the request was already completed

        Raises:
            RequestNotFoundError: If the contract has no such request
            UserNotAuthenticatedError: If the user has no index on file
        """
        request = await self.contract.get_deposit_request(request_id)
        if request.is_empty:
            raise RequestNotFoundError(f"Deposit request {to_hex(request_id)} not found")

        if await self.contract.deposit_completed(request_id):
            logger.info(f"Deposit {to_hex(request_id)} already completed, skipping")
            return None

        if request.amount <= 0:
            raise ReconciliationError(f"Deposit {to_hex(request_id)} has invalid amount {request.amount}")

        user_index = await self.resolve_user_index(request.user)

        async with self.locks.hold(user_index, operation="deposit"):
            current = await self._load_balance(user_index)
            if current.symmetric_key is None:
                logger.info(f"Generating new symmetric key for {request.user}")
                key = self.symmetric.generate_key()
            else:
                key = current.symmetric_key

            new_balance = current.balance + request.amount
            logger.info(
                f"Deposit {request.amount} for {request.user}: "
                f"{current.balance} -> {new_balance}"
            )

            sealed = self._seal(new_balance, key, user_address=request.user)
            result = await self.contract.store_deposit(
                request_id,
                request.user,
                request.amount,
                user_index,
                sealed.encrypted_amount,
                sealed.encrypted_key_user,
                sealed.encrypted_key_server,
            )

        logger.info(f"Deposit {to_hex(request_id)} stored (tx: {result.hash})")
        return SettlementResult(
            request_id=to_hex(request_id),
            tx_hash=result.hash,
            balances={to_hex(user_index): new_balance},
        )

    # ======================
    # Transfers
    # ======================

    async def handle_transfer_request(self, event: ParsedEvent) -> Optional[SettlementResult]:
        """Event handler for transfer_requested.

        Event payload: (transfer_id, sender, encrypted_receiver_index, encrypted_amount)
        """
        if event.event_type != TRANSFER_REQUESTED:
            logger.debug(f"Ignoring {event.event_type} event {event.id}")
            return None

        try:
            request = TransferRequest.from_payload(event.payload)
        except (ValueError, TypeError) as e:
            raise InvalidTransferError(f"Transfer event {event.id}: {e}") from e

        logger.info(f"Processing transfer request {request.transfer_id_hex} (event {event.id})")
        return await self.settle_transfer(request)

    async def settle_transfer(self, request: TransferRequest) -> Optional[SettlementResult]:
        """Settle a transfer between two encrypted balances.

        Both sides are written in a single process_transfer call; atomicity
        comes from the ledger's transaction semantics.

        Returns:
            SettlementResult, or None if the transfer was already completed

        Raises:
            InsufficientBalanceError: If the sender cannot cover the amount
            InvalidTransferError: If the amount or receiver cannot be decoded
        """
        if await self.contract.transfer_completed(request.transfer_id):
            logger.info(f"Transfer {request.transfer_id_hex} already completed, skipping")
            return None

        receiver_index = self._unwrap_index(request.encrypted_receiver_index, "receiver index")
        amount = self._unwrap_amount(request.encrypted_amount)
        sender_index = await self.resolve_user_index(request.sender)

        if sender_index == receiver_index:
            raise InvalidTransferError(f"Transfer {request.transfer_id_hex} sends to itself")

        async with self.locks.hold(sender_index, receiver_index, operation="transfer"):
            sender = await self._load_balance(sender_index)
            if amount > sender.balance:
                logger.warning(
                    f"Transfer {request.transfer_id_hex}: sender balance {sender.balance} "
                    f"< amount {amount}"
                )
                raise InsufficientBalanceError(sender.balance, amount)

            receiver = await self._load_balance(receiver_index)

            sender_new = sender.balance - amount
            receiver_new = receiver.balance + amount
            logger.info(
                f"Transfer {amount}: sender {sender.balance} -> {sender_new}, "
                f"receiver {receiver.balance} -> {receiver_new}"
            )

            # sender had a balance, so it has a key
            sender_sealed = self._seal(sender_new, sender.symmetric_key, user_address=request.sender)

            if receiver.symmetric_key is None:
                # receiver address is unknown here; its user slot is filled on its next deposit
                logger.info(f"Receiver {to_hex(receiver_index)[:18]}... has no balance yet, new key")
                receiver_sealed = self._seal(receiver_new, self.symmetric.generate_key())
            else:
                receiver_sealed = self._seal(
                    receiver_new,
                    receiver.symmetric_key,
                    key_user=receiver.record.encrypted_key_user,
                )

            result = await self.contract.process_transfer(
                request.transfer_id,
                sender_index,
                receiver_index,
                sender_sealed.encrypted_amount,
                sender_sealed.encrypted_key_user,
                sender_sealed.encrypted_key_server,
                receiver_sealed.encrypted_amount,
                receiver_sealed.encrypted_key_user,
                receiver_sealed.encrypted_key_server,
            )

        logger.info(f"Transfer {request.transfer_id_hex} processed (tx: {result.hash})")
        return SettlementResult(
            request_id=request.transfer_id_hex,
            tx_hash=result.hash,
            balances={
                to_hex(sender_index): sender_new,
                to_hex(receiver_index): receiver_new,
            },
        )

    # ======================
    # Balances
    # ======================

    async def read_balance(self, user_index: bytes) -> int:
        """Decrypt the stored balance for a user index (0 if none)."""
        snapshot = await self._load_balance(user_index)
        return snapshot.balance

    async def resolve_user_index(self, address: str) -> bytes:
        """Look up and unwrap the user index registered for an address.

        Raises:
            UserNotAuthenticatedError: If no index is on file
            UserIndexDecryptionError: If the stored index cannot be unwrapped
        """
        stored = await self.contract.get_user_index_by_address(address)
        if not stored:
            logger.warning(f"User index not found for {address} - user must authenticate first")
            raise UserNotAuthenticatedError(address)
        return self._unwrap_index(stored, f"user index of {address}")

    async def _load_balance(self, user_index: bytes) -> BalanceSnapshot:
        record = await self.contract.get_encrypted_balance(user_index)
        return self._open(user_index, record)

    def _open(self, user_index: bytes, record: EncryptedBalance) -> BalanceSnapshot:
        """Decrypt a balance record via the server key slot."""
        if not record.exists:
            return BalanceSnapshot(user_index=user_index, balance=0, symmetric_key=None, record=record)

        try:
            key = self.address_cipher.unwrap(record.encrypted_key_server, self._server_secret)
        except KeyUnwrapError as e:
            raise ReconciliationError(
                f"Cannot unwrap server key slot for {to_hex(user_index)}: {e}"
            ) from e

        try:
            balance = self.symmetric.decrypt_amount(record.encrypted_amount, key)
        except AuthenticationError as e:
            raise ReconciliationError(
                f"Stored balance for {to_hex(user_index)} does not decrypt: {e}"
            ) from e
        return BalanceSnapshot(user_index=user_index, balance=balance, symmetric_key=key, record=record)

    def _seal(
        self,
        balance: int,
        key: bytes,
        user_address: Optional[str] = None,
        key_user: bytes = b"",
    ) -> SealedBalance:
        """Encrypt a balance and wrap its key for the user and the server."""
        if user_address:
            key_user = self.address_cipher.wrap(key, user_address)
        return SealedBalance(
            encrypted_amount=self.symmetric.encrypt_amount(balance, key),
            encrypted_key_user=key_user,
            encrypted_key_server=self.address_cipher.wrap(key, self.server_address),
        )

    # ======================
    # Unwrapping
    # ======================

    def _unwrap_index(self, blob: bytes, label: str) -> bytes:
        """Unwrap an index wrapped for the server.

        With allow_index_fallback the raw bytes are used when unwrapping
        fails, and a DecryptionFallbackWarning is emitted.
        """
        result = self.address_cipher.unwrap_or_raw(blob, self._server_secret)
        if isinstance(result, Decrypted):
            index = result.value
        elif self.allow_index_fallback:
            message = f"Could not unwrap {label}, using stored bytes directly: {result.reason}"
            warnings.warn(message, DecryptionFallbackWarning, stacklevel=3)
            logger.warning(message)
            index = result.raw
        else:
            raise UserIndexDecryptionError(f"Could not unwrap {label}: {result.reason}")

        if len(index) != USER_INDEX_SIZE:
            raise UserIndexDecryptionError(
                f"{label} is {len(index)} bytes, expected {USER_INDEX_SIZE}"
            )
        return index

    def _unwrap_amount(self, blob: bytes) -> int:
        try:
            amount = decode_amount(self.address_cipher.unwrap(blob, self._server_secret))
        except (KeyUnwrapError, ValueError) as e:
            raise InvalidTransferError(f"Could not decode transfer amount: {e}") from e
        if amount <= 0:
            raise InvalidTransferError(f"Transfer amount must be positive, got {amount}")
        return amount
