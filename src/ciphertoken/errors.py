"""Exception hierarchy shared by the ledger, crypto and reconciliation layers."""

from typing import Optional


class CipherTokenError(Exception):
    """Base class for all service errors."""
    pass


# ======================
# Ledger
# ======================

class LedgerError(CipherTokenError):
    """Raised when talking to the ledger fails."""
    pass


class RpcError(LedgerError):
    """Transport or JSON-RPC level failure."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


class SimulationError(LedgerError):
    """The ledger rejected a dry run. Terminal for that call."""
    pass


class SubmissionError(LedgerError):
    """sendTransaction did not accept the transaction."""
    pass


class TransactionFailedError(LedgerError):
    """The transaction was included but did not succeed."""

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        super().__init__(message)
        self.tx_hash = tx_hash


class TransactionTimeoutError(LedgerError):
    """Confirmation polling gave up. The outcome is unknown."""

    def __init__(self, tx_hash: str, attempts: int):
        super().__init__(f"Transaction {tx_hash} not found after {attempts} attempts")
        self.tx_hash = tx_hash
        self.attempts = attempts


# ======================
# Crypto
# ======================

class AuthenticationError(CipherTokenError):
    """Symmetric decryption failed: wrong key or corrupted data."""
    pass


class KeyUnwrapError(CipherTokenError):
    """An address-keyed blob could not be unwrapped."""
    pass


class DecryptionFallbackWarning(UserWarning):
    """A stored index was used without being unwrapped."""
    pass


# ======================
# Reconciliation
# ======================

class ReconciliationError(CipherTokenError):
    """A request could not be settled; it stays pending on-chain."""
    pass


class InsufficientBalanceError(ReconciliationError):
    """Sender balance does not cover the transfer amount."""

    def __init__(self, balance: int, amount: int):
        super().__init__(f"Insufficient balance: have {balance}, need {amount}")
        self.balance = balance
        self.amount = amount


class UserNotAuthenticatedError(ReconciliationError):
    """No user index is registered for the address."""

    def __init__(self, address: str):
        super().__init__(f"User {address} has no index on file - must authenticate first")
        self.address = address


class UserIndexDecryptionError(ReconciliationError):
    """The stored user index could not be unwrapped with the server key."""
    pass


class RequestNotFoundError(ReconciliationError):
    """The contract has no request stored under the given id."""
    pass


class InvalidTransferError(ReconciliationError):
    """The transfer request is malformed."""
    pass
