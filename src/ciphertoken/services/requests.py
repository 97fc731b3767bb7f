"""User-side request submission.

Deposits, transfers and authentication are requested by users, signed with
their own keys. Everything the server must later read (user index, receiver
index, transfer amount) is wrapped for the server address first.
"""

import logging
from typing import Optional

from ciphertoken.crypto import AddressKeyedCipher, create_encrypted_index, encode_amount, to_hex
from ciphertoken.ledger.models import TransactionResult
from ciphertoken.services.token_contract import TokenContractClient
from ciphertoken.signing.base import TransactionSigner

logger = logging.getLogger(__name__)


class RequestService:
    """Submits deposit, transfer and authentication requests for users."""

    def __init__(
        self,
        contract: TokenContractClient,
        server_address: str,
        address_cipher: Optional[AddressKeyedCipher] = None,
    ):
        self.contract = contract
        self.server_address = server_address
        self.address_cipher = address_cipher or AddressKeyedCipher()

    def encrypted_index_for(self, signature: str) -> bytes:
        """User index derived from a wallet signature, wrapped for the server."""
        return create_encrypted_index(signature, self.server_address)

    async def authenticate_user(self, user: TransactionSigner, signature: str) -> TransactionResult:
        """Register the user's encrypted index with the contract."""
        encrypted_index = self.encrypted_index_for(signature)
        logger.info(f"Authenticating {user.public_key}")
        return await self.contract.authenticate_user(user, encrypted_index)

    async def request_deposit(
        self, user: TransactionSigner, amount: int, encrypted_index: bytes
    ) -> TransactionResult:
        """Request a deposit of a public amount.

        Args:
            user: Signer of the depositing user
            amount: Amount in the smallest unit, must be positive
            encrypted_index: User index wrapped for the server

        Returns:
            Confirmed transaction; return_value holds the request id

        Raises:
            ValueError: If amount is not positive
        """
        if amount <= 0:
            raise ValueError("Deposit amount must be positive")

        logger.info(f"Requesting deposit of {amount} for {user.public_key}")
        result = await self.contract.request_deposit(user, amount, encrypted_index)
        if isinstance(result.return_value, bytes):
            logger.info(f"Deposit request id: {to_hex(result.return_value)}")
        return result

    async def request_transfer(
        self, sender: TransactionSigner, receiver_index: bytes, amount: int
    ) -> TransactionResult:
        """Request a confidential transfer.

        The receiver index and the amount (as its decimal string) are wrapped
        for the server, so neither is visible on-chain.

        Raises:
            ValueError: If amount is not positive
        """
        if amount <= 0:
            raise ValueError("Transfer amount must be positive")

        encrypted_receiver = self.address_cipher.wrap(receiver_index, self.server_address)
        encrypted_amount = self.address_cipher.wrap(encode_amount(amount), self.server_address)

        logger.info(f"Requesting transfer from {sender.public_key}")
        return await self.contract.request_transfer(sender, encrypted_receiver, encrypted_amount)
