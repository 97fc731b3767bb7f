"""Utility modules for ciphertoken."""

from ciphertoken.utils.locks import IndexLockRegistry, LockTimeoutError

__all__ = ["IndexLockRegistry", "LockTimeoutError"]
