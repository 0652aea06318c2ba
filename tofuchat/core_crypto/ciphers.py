"""
Symmetric Cipher Module

Pluggable encrypt/decrypt contract over key material from key agreement.

Implementations:
- XorKeystreamCipher: reference behaviour. The key bytes repeat to cover
  the UTF-8 plaintext and are XOR'd in. Deterministic, no per-message
  randomness, NOT semantically secure; identical messages to the same
  peer produce identical ciphertexts.
- AESGCMCipher: AES-256-GCM with a random 96-bit nonce per message.
  Output is hex(nonce | ciphertext | tag).

Both take a ``str`` plaintext and produce a hex ``str`` ciphertext, and
both raise DecryptionError (never anything else) when decryption fails.
"""

import secrets
from abc import ABC, abstractmethod
from typing import Dict, Type

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..errors import DecryptionError


# Constants
AES_KEY_SIZE = 32       # 256 bits
NONCE_SIZE = 12         # 96 bits for GCM
TAG_SIZE = 16           # 128 bits for GCM tag


def _decode_hex(ciphertext: str) -> bytes:
    if not isinstance(ciphertext, str):
        raise DecryptionError("Ciphertext must be a hex string")
    try:
        return bytes.fromhex(ciphertext)
    except ValueError:
        raise DecryptionError("Ciphertext is not valid hex")


def _decode_utf8(data: bytes) -> str:
    try:
        return data.decode('utf-8')
    except UnicodeDecodeError:
        raise DecryptionError("Decrypted bytes are not valid UTF-8")


class SymmetricCipher(ABC):
    """Seal/open contract over raw key bytes."""

    name = "abstract"

    @abstractmethod
    def encrypt(self, key: bytes, plaintext: str) -> str:
        """Encrypt ``plaintext`` and return hex ciphertext."""

    @abstractmethod
    def decrypt(self, key: bytes, ciphertext: str) -> str:
        """
        Decrypt hex ciphertext.

        Raises:
            DecryptionError: If the ciphertext is malformed or does not open
        """


class XorKeystreamCipher(SymmetricCipher):
    """
    Repeating-key XOR over UTF-8 bytes.

    A mismatched key does not fail here; it produces different bytes,
    which either fail UTF-8 decoding or fail the hash check downstream.
    """

    name = "xor"

    @staticmethod
    def _xor(key: bytes, data: bytes) -> bytes:
        if not key:
            raise ValueError("Key must not be empty")
        key_len = len(key)
        return bytes(b ^ key[i % key_len] for i, b in enumerate(data))

    def encrypt(self, key: bytes, plaintext: str) -> str:
        return self._xor(key, plaintext.encode('utf-8')).hex()

    def decrypt(self, key: bytes, ciphertext: str) -> str:
        if not key:
            raise DecryptionError("Key must not be empty")
        return _decode_utf8(self._xor(key, _decode_hex(ciphertext)))


class AESGCMCipher(SymmetricCipher):
    """
    AES-256-GCM authenticated encryption.

    Provides confidentiality, integrity, and authenticity; a fresh random
    nonce is drawn for every message.
    """

    name = "aes-gcm"

    @staticmethod
    def _aead(key: bytes) -> AESGCM:
        if len(key) != AES_KEY_SIZE:
            raise ValueError(f"Key must be {AES_KEY_SIZE} bytes")
        return AESGCM(key)

    def encrypt(self, key: bytes, plaintext: str) -> str:
        nonce = secrets.token_bytes(NONCE_SIZE)
        # GCM appends the tag to the ciphertext
        sealed = self._aead(key).encrypt(nonce, plaintext.encode('utf-8'), None)
        return (nonce + sealed).hex()

    def decrypt(self, key: bytes, ciphertext: str) -> str:
        data = _decode_hex(ciphertext)
        if len(data) < NONCE_SIZE + TAG_SIZE:
            raise DecryptionError("Ciphertext too short")
        try:
            aead = self._aead(key)
        except ValueError as e:
            raise DecryptionError(str(e))
        try:
            plaintext = aead.decrypt(data[:NONCE_SIZE], data[NONCE_SIZE:], None)
        except InvalidTag:
            raise DecryptionError("Authentication tag mismatch")
        return _decode_utf8(plaintext)


CIPHERS: Dict[str, Type[SymmetricCipher]] = {
    XorKeystreamCipher.name: XorKeystreamCipher,
    AESGCMCipher.name: AESGCMCipher,
}


def get_cipher(name: str = XorKeystreamCipher.name) -> SymmetricCipher:
    """
    Look up a cipher implementation by name.

    Raises:
        ValueError: If ``name`` is not registered
    """
    try:
        return CIPHERS[name]()
    except KeyError:
        raise ValueError(f"Unknown cipher: {name}")
