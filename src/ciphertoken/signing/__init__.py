"""Transaction signing services.

- LocalSigner: keypair held in memory (server manager, test users)
"""

from ciphertoken.signing.base import KeyNotFoundError, SigningError, TransactionSigner
from ciphertoken.signing.local import LocalSigner

__all__ = [
    "KeyNotFoundError",
    "LocalSigner",
    "SigningError",
    "TransactionSigner",
]
