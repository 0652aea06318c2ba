# Secure Messaging Module
"""
Secure messaging implementations including:
- Canonical payload serialization (format version 1)
- SHA3-256 payload hash + ECDSA signature (secp256k1)
- ECDH-derived key material + pluggable symmetric cipher
- Receiver-side classification: verified / unverified / corrupted

Security features:
- Signature is checked against the hash recomputed from decrypted text
- Transmitted hash is compared, never trusted
- Processing never raises; bad messages degrade to a status
"""

from .protocol import (
    Message,
    MessageContext,
    MessageProtocol,
    MessageStatus,
    ProcessedMessage,
    canonical_payload,
    payload_hash,
    utc_timestamp,
)

__all__ = [
    'Message',
    'MessageContext',
    'MessageProtocol',
    'MessageStatus',
    'ProcessedMessage',
    'canonical_payload',
    'payload_hash',
    'utc_timestamp',
]
