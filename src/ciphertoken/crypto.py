"""Cryptographic primitives for encrypted balances.

Two schemes are used side by side:

- SymmetricCipher: AES-256-GCM with a random 16-byte nonce. Encrypts the
  balance itself under a per-user symmetric key.
- AddressKeyedCipher: AES-256-CBC keyed by SHA-256 of a Stellar address with
  a fixed zero IV. Wraps the symmetric key (and small indices) so that both the
  user and the server can recover it.

The address-keyed scheme is deterministic: wrapping the same payload for the
same address always yields the same bytes. Existing on-chain data depends on
this, so the IV must stay fixed.
"""

import hashlib
import logging
import os
from dataclasses import dataclass
from typing import Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from stellar_sdk import Keypair

from ciphertoken.errors import AuthenticationError, KeyUnwrapError

logger = logging.getLogger(__name__)

KEY_SIZE = 32
NONCE_SIZE = 16
TAG_SIZE = 16
ZERO_IV = bytes(16)


def to_hex(data: bytes) -> str:
    """Format bytes as a 0x-prefixed hex string."""
    return "0x" + data.hex()


def from_hex(value: str) -> bytes:
    """Parse a hex string, with or without the 0x prefix."""
    if value.startswith(("0x", "0X")):
        value = value[2:]
    return bytes.fromhex(value)


def encode_amount(amount: int) -> bytes:
    """Encode a balance as UTF-8 decimal digits."""
    if amount < 0:
        raise ValueError(f"Amount must be non-negative, got {amount}")
    return str(amount).encode("utf-8")


def decode_amount(data: bytes) -> int:
    """Decode UTF-8 decimal digits back into an integer balance."""
    text = data.decode("utf-8", errors="strict").strip()
    if not (text.isascii() and text.isdigit()):
        raise ValueError("Plaintext is not a decimal amount")
    return int(text)


class SymmetricCipher:
    """Authenticated symmetric encryption of balance payloads.

    Output layout: nonce(16) || authTag(16) || ciphertext.

    Usage:
        cipher = SymmetricCipher()
        key = cipher.generate_key()
        blob = cipher.encrypt_amount(5_000_000, key)
        assert cipher.decrypt_amount(blob, key) == 5_000_000
    """

    @staticmethod
    def generate_key() -> bytes:
        """Generate a random AES-256 key."""
        return AESGCM.generate_key(bit_length=256)

    @staticmethod
    def _check_key(key: bytes) -> None:
        if len(key) != KEY_SIZE:
            raise ValueError(f"Symmetric key must be {KEY_SIZE} bytes, got {len(key)}")

    def encrypt(self, plaintext: bytes, key: bytes) -> bytes:
        """Encrypt with a fresh random nonce.

        Args:
            plaintext: Data to encrypt
            key: 32-byte symmetric key

        Returns:
            nonce || tag || ciphertext
        """
        self._check_key(key)
        nonce = os.urandom(NONCE_SIZE)
        sealed = AESGCM(key).encrypt(nonce, plaintext, None)
        # AESGCM appends the tag; the stored layout puts it first
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return nonce + tag + ciphertext

    def decrypt(self, blob: bytes, key: bytes) -> bytes:
        """Decrypt and verify a blob produced by encrypt().

        Raises:
            AuthenticationError: If the blob is truncated or the tag does not verify
        """
        self._check_key(key)
        if len(blob) < NONCE_SIZE + TAG_SIZE:
            raise AuthenticationError(
                f"Ciphertext too short: {len(blob)} bytes (minimum {NONCE_SIZE + TAG_SIZE})"
            )

        nonce = blob[:NONCE_SIZE]
        tag = blob[NONCE_SIZE:NONCE_SIZE + TAG_SIZE]
        ciphertext = blob[NONCE_SIZE + TAG_SIZE:]

        try:
            return AESGCM(key).decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as e:
            raise AuthenticationError("Authentication tag mismatch") from e

    def encrypt_amount(self, amount: int, key: bytes) -> bytes:
        """Encrypt an integer balance."""
        return self.encrypt(encode_amount(amount), key)

    def decrypt_amount(self, blob: bytes, key: bytes) -> int:
        """Decrypt an integer balance.

        Raises:
            AuthenticationError: If decryption fails or the plaintext is not an amount
        """
        plaintext = self.decrypt(blob, key)
        try:
            return decode_amount(plaintext)
        except ValueError as e:
            raise AuthenticationError(f"Decrypted payload is not a balance: {e}") from e


@dataclass(frozen=True)
class Decrypted:
    """Payload recovered by unwrapping."""

    value: bytes


@dataclass(frozen=True)
class Fallback:
    """Unwrapping failed; carries the still-wrapped bytes."""

    raw: bytes
    reason: str


UnwrapResult = Union[Decrypted, Fallback]


class AddressKeyedCipher:
    """Deterministic key wrapping keyed by a Stellar address.

    The wrapping key is SHA-256 of the address text. The IV is fixed at zero,
    so wrap() is deterministic and offers no semantic security against an
    adversary choosing plaintexts. Wrapped payloads are random keys and
    indices, never attacker-chosen.
    """

    @staticmethod
    def derive_key(address: str) -> bytes:
        """Derive the wrapping key for an address."""
        return hashlib.sha256(address.encode("utf-8")).digest()

    @staticmethod
    def address_from_secret(secret: str) -> str:
        """Public address (G...) for a Stellar secret seed."""
        try:
            return Keypair.from_secret(secret).public_key
        except ValueError as e:
            raise KeyUnwrapError(f"Invalid secret seed: {e}") from e

    def wrap(self, payload: bytes, address: str) -> bytes:
        """Wrap a payload for the holder of an address."""
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(payload) + padder.finalize()

        encryptor = Cipher(algorithms.AES(self.derive_key(address)), modes.CBC(ZERO_IV)).encryptor()
        return encryptor.update(padded) + encryptor.finalize()

    def unwrap_for_address(self, blob: bytes, address: str) -> bytes:
        """Unwrap a blob given the address it was wrapped for."""
        try:
            decryptor = Cipher(
                algorithms.AES(self.derive_key(address)), modes.CBC(ZERO_IV)
            ).decryptor()
            padded = decryptor.update(blob) + decryptor.finalize()

            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            return unpadder.update(padded) + unpadder.finalize()
        except ValueError as e:
            raise KeyUnwrapError(f"Decryption failed: {e}") from e

    def unwrap(self, blob: bytes, secret: str) -> bytes:
        """Unwrap a blob using the secret seed of the address it was wrapped for.

        Raises:
            KeyUnwrapError: If the secret is invalid or the blob does not unwrap
        """
        return self.unwrap_for_address(blob, self.address_from_secret(secret))

    def unwrap_or_raw(self, blob: bytes, secret: str) -> UnwrapResult:
        """Unwrap, reporting failure as a Fallback instead of raising.

        The caller decides whether a Fallback is acceptable.
        """
        try:
            return Decrypted(self.unwrap(blob, secret))
        except KeyUnwrapError as e:
            logger.debug(f"Unwrap failed, returning raw bytes: {e}")
            return Fallback(raw=blob, reason=str(e))


def create_encrypted_index(signature: str, server_address: str) -> bytes:
    """Derive a user index from a wallet signature and wrap it for the server.

    The index is SHA-256 of the signature text, so the same signature always
    maps to the same index.
    """
    index = hashlib.sha256(signature.encode("utf-8")).digest()
    return AddressKeyedCipher().wrap(index, server_address)
