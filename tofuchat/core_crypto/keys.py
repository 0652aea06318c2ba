"""
Key Derivation Module

Deterministic password -> secp256k1 key pair derivation.

    private_key = SHA3-256(password) mod n     (64 hex chars)
    public_key  = private_key * G              (uncompressed point, hex)

Security considerations:
- No salt and no slow KDF: the same password always yields the same key.
  This is part of the wire contract (the server only ever sees the public
  key, and clients re-derive the private key at login), so it is kept.
- The private key never leaves the client.
"""

import hashlib
import re
from dataclasses import dataclass

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from ..errors import KeyDerivationError, ValidationError


# Constants
CURVE = ec.SECP256K1()
CURVE_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
SCALAR_HEX_LENGTH = 64          # 256-bit private scalar
PUBLIC_KEY_HEX_LENGTH = 130     # 04 || X (32 bytes) || Y (32 bytes)
HASH_HEX_LENGTH = 64            # SHA3-256 digest

_PRIVATE_KEY_RE = re.compile(r'[0-9a-fA-F]{1,64}')
_PUBLIC_KEY_RE = re.compile(r'04[0-9a-fA-F]{128}')
_HASH_RE = re.compile(r'[0-9a-fA-F]{64}')


def password_digest(password: str) -> bytes:
    """SHA3-256 of the UTF-8 encoded password."""
    return hashlib.sha3_256(password.encode('utf-8')).digest()


def hash_message(message: str) -> str:
    """
    Compute the SHA3-256 hash of a string.

    Args:
        message: Text to hash (UTF-8 encoded before hashing)

    Returns:
        64-character lowercase hex digest
    """
    return hashlib.sha3_256(message.encode('utf-8')).hexdigest()


def is_hash_hex(value) -> bool:
    """True if ``value`` looks like a 256-bit hex digest."""
    return isinstance(value, str) and _HASH_RE.fullmatch(value) is not None


def derive_private_key(password: str) -> str:
    """
    Derive a deterministic private key from a password.

    Args:
        password: User supplied password

    Returns:
        Private scalar as a zero-padded 64-character hex string

    Raises:
        KeyDerivationError: If the digest reduces to zero mod n
    """
    scalar = int.from_bytes(password_digest(password), 'big') % CURVE_ORDER
    if scalar == 0:
        raise KeyDerivationError()
    return format(scalar, '064x')


def load_private_key(private_key_hex: str) -> ec.EllipticCurvePrivateKey:
    """
    Build a private key object from its hex scalar.

    Raises:
        ValidationError: If the scalar is malformed or out of range
    """
    if not isinstance(private_key_hex, str) or not _PRIVATE_KEY_RE.fullmatch(private_key_hex):
        raise ValidationError("Private key must be a hex scalar")
    scalar = int(private_key_hex, 16)
    if not 0 < scalar < CURVE_ORDER:
        raise ValidationError("Private key out of range")
    return ec.derive_private_key(scalar, CURVE)


def load_public_key(public_key_hex: str) -> ec.EllipticCurvePublicKey:
    """
    Decode an uncompressed secp256k1 point from hex.

    Raises:
        ValidationError: If the encoding is wrong or the point is not on the curve
    """
    if not isinstance(public_key_hex, str) or not _PUBLIC_KEY_RE.fullmatch(public_key_hex):
        raise ValidationError("Public key must be an uncompressed point in hex")
    try:
        return ec.EllipticCurvePublicKey.from_encoded_point(
            CURVE, bytes.fromhex(public_key_hex)
        )
    except ValueError:
        raise ValidationError("Public key is not a valid curve point")


def encode_public_key(public_key: ec.EllipticCurvePublicKey) -> str:
    """Encode a public key as uncompressed point hex."""
    return public_key.public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.UncompressedPoint
    ).hex()


def public_key_from_private(private_key_hex: str) -> str:
    """Compute ``private_key * G`` as uncompressed point hex."""
    return encode_public_key(load_private_key(private_key_hex).public_key())


def is_valid_public_key(public_key_hex: str) -> bool:
    """True if ``public_key_hex`` decodes to a point on the curve."""
    try:
        load_public_key(public_key_hex)
    except ValidationError:
        return False
    return True


@dataclass(frozen=True)
class KeyPair:
    """Hex-encoded secp256k1 key pair."""
    private_key: str
    public_key: str

    @classmethod
    def from_password(cls, password: str) -> 'KeyPair':
        """Derive the key pair for ``password``."""
        return generate_key_pair(password)

    @classmethod
    def from_private_key(cls, private_key_hex: str) -> 'KeyPair':
        """Rebuild a key pair from a stored private scalar."""
        public_key = public_key_from_private(private_key_hex)
        return cls(format(int(private_key_hex, 16), '064x'), public_key)

    def __repr__(self) -> str:
        # Never render the private scalar
        return f"KeyPair(public_key='{self.public_key[:16]}...')"


def generate_key_pair(password: str) -> KeyPair:
    """
    Generate an ECC key pair deterministically from a password.

    Args:
        password: User supplied password

    Returns:
        KeyPair with 64-hex private key and uncompressed public key hex
    """
    private_key = derive_private_key(password)
    return KeyPair(private_key, public_key_from_private(private_key))
