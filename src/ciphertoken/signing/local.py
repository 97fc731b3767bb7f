"""Local signing backend.

Holds a Stellar keypair in memory. The server manager key also unwraps
the server's key slots, so the secret is exposed to the reconciler.
"""

import logging
from typing import Optional

from stellar_sdk import Keypair, TransactionEnvelope

from ciphertoken.signing.base import KeyNotFoundError, SigningError, TransactionSigner

logger = logging.getLogger(__name__)


class LocalSigner(TransactionSigner):
    """Signing backend using an in-memory Stellar keypair."""

    def __init__(self, keypair: Keypair):
        if not keypair.can_sign():
            raise SigningError("Keypair has no secret - cannot sign")
        self._keypair = keypair

    @classmethod
    def from_secret(cls, secret: Optional[str]) -> "LocalSigner":
        """Create a signer from a secret seed (S...).

        Raises:
            KeyNotFoundError: If no secret is configured
            SigningError: If the secret is malformed
        """
        if not secret:
            raise KeyNotFoundError("No signing secret configured")
        try:
            keypair = Keypair.from_secret(secret)
        except ValueError as e:
            raise SigningError(f"Invalid secret seed: {e}") from e
        logger.info(f"Loaded signing key for {keypair.public_key}")
        return cls(keypair)

    @property
    def public_key(self) -> str:
        return self._keypair.public_key

    @property
    def secret(self) -> str:
        return self._keypair.secret

    def sign(self, envelope: TransactionEnvelope) -> TransactionEnvelope:
        envelope.sign(self._keypair)
        return envelope
