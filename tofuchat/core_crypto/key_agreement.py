"""
ECDH key agreement over secp256k1.

The shared x-coordinate is rendered as unpadded lowercase hex *text* and
hashed with SHA3-256, giving 32 bytes of symmetric key material. Both
sides compute the same bytes:

    shared_secret(priv_a, pub_b) == shared_secret(priv_b, pub_a)

The unpadded-text step is part of the wire contract; do not replace it
with the raw 32-byte x-coordinate.
"""

import hashlib

from cryptography.hazmat.primitives.asymmetric import ec

from .keys import load_private_key, load_public_key


SHARED_SECRET_SIZE = 32


def shared_secret(private_key: str, peer_public_key: str) -> bytes:
    """
    Derive symmetric key material from a local private key and a peer public key.

    Args:
        private_key: Local 64-hex private scalar
        peer_public_key: Peer's uncompressed point hex

    Returns:
        32 bytes of key material

    Raises:
        ValidationError: If either key is malformed
    """
    local = load_private_key(private_key)
    peer = load_public_key(peer_public_key)
    shared_x = local.exchange(ec.ECDH(), peer)
    shared_hex = format(int.from_bytes(shared_x, 'big'), 'x')
    return hashlib.sha3_256(shared_hex.encode('ascii')).digest()


class ECDHKeyExchange:
    """
    Key agreement bound to one local private key.

    Example:
        >>> alice = ECDHKeyExchange(alice_keys.private_key)
        >>> key = alice.derive(bob_keys.public_key)
    """

    def __init__(self, private_key: str):
        self._private_key = private_key

    def derive(self, peer_public_key: str) -> bytes:
        """Shared key material with ``peer_public_key``."""
        return shared_secret(self._private_key, peer_public_key)
