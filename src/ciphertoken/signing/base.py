"""Base interfaces for transaction signing.

Signing flow:
1. Build and simulate the unsigned transaction
2. Assemble authorization and resource data from the simulation
3. Signer adds its signature to the envelope
4. Submit the signed envelope
"""

import logging
from abc import ABC, abstractmethod

from stellar_sdk import TransactionEnvelope

logger = logging.getLogger(__name__)


class TransactionSigner(ABC):
    """Abstract base class for signing backends.

    Implementations sign envelopes in place and expose the public address
    used as the transaction source.
    """

    @property
    @abstractmethod
    def public_key(self) -> str:
        """Stellar address (G...) of the signing account."""
        pass

    @abstractmethod
    def sign(self, envelope: TransactionEnvelope) -> TransactionEnvelope:
        """Add a signature to the envelope.

        Args:
            envelope: Assembled transaction envelope

        Returns:
            The same envelope, signed
        """
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(public_key={self.public_key})"


class SigningError(Exception):
    """Exception raised when signing fails."""
    pass


class KeyNotFoundError(SigningError):
    """Exception raised when no signing key is configured."""
    pass
