# Core Cryptography Module
"""
Core cryptographic primitives over secp256k1:
- Deterministic password -> key pair derivation (SHA3-256 mod n)
- ECDSA sign/verify on pre-computed digests
- ECDH shared secret + SHA3-256 expansion
- Pluggable symmetric cipher (XOR keystream reference, AES-256-GCM)
"""

from .keys import (
    KeyPair,
    derive_private_key,
    generate_key_pair,
    hash_message,
    load_private_key,
    load_public_key,
    public_key_from_private,
    is_valid_public_key,
)

from .signatures import (
    Signature,
    ECDSASigner,
    sign,
    verify,
)

from .key_agreement import (
    ECDHKeyExchange,
    shared_secret,
)

from .ciphers import (
    SymmetricCipher,
    XorKeystreamCipher,
    AESGCMCipher,
    get_cipher,
)

__all__ = [
    # Keys
    'KeyPair',
    'derive_private_key',
    'generate_key_pair',
    'hash_message',
    'load_private_key',
    'load_public_key',
    'public_key_from_private',
    'is_valid_public_key',
    # Signatures
    'Signature',
    'ECDSASigner',
    'sign',
    'verify',
    # Key agreement
    'ECDHKeyExchange',
    'shared_secret',
    # Ciphers
    'SymmetricCipher',
    'XorKeystreamCipher',
    'AESGCMCipher',
    'get_cipher',
]
