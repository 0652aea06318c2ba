"""
ECDSA over secp256k1 on pre-computed SHA3-256 digests.

Callers hash first (``hash_message``) and pass the 64-hex digest; the
engine never sees plaintext. Signatures travel as ``{r, s}`` hex pairs.
"""

import re
from dataclasses import dataclass
from typing import Dict, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    Prehashed, decode_dss_signature, encode_dss_signature
)

from ..errors import ValidationError
from .keys import CURVE_ORDER, is_hash_hex, load_private_key, load_public_key


_COMPONENT_RE = re.compile(r'[0-9a-fA-F]{1,64}')


def _prehashed() -> ec.ECDSA:
    return ec.ECDSA(Prehashed(hashes.SHA3_256()))


@dataclass(frozen=True)
class Signature:
    """ECDSA signature components as hex strings."""
    r: str
    s: str

    @property
    def r_int(self) -> int:
        return int(self.r, 16)

    @property
    def s_int(self) -> int:
        return int(self.s, 16)

    def in_range(self) -> bool:
        """Both components are well-formed hex in ``[1, n-1]``."""
        if not (_COMPONENT_RE.fullmatch(self.r) and _COMPONENT_RE.fullmatch(self.s)):
            return False
        return 0 < self.r_int < CURVE_ORDER and 0 < self.s_int < CURVE_ORDER

    def to_dict(self) -> Dict[str, str]:
        return {'r': self.r, 's': self.s}

    @classmethod
    def from_dict(cls, data: Dict) -> 'Signature':
        """
        Validate and build a Signature from a ``{r, s}`` mapping.

        Raises:
            ValidationError: If the shape or hex format is wrong
        """
        if not isinstance(data, dict):
            raise ValidationError("Signature must be an object with r and s")
        r, s = data.get('r'), data.get('s')
        if not isinstance(r, str) or not isinstance(s, str):
            raise ValidationError("Signature r and s must be strings")
        if not (_COMPONENT_RE.fullmatch(r) and _COMPONENT_RE.fullmatch(s)):
            raise ValidationError("Signature r and s must be hex strings of at most 64 chars")
        return cls(r.lower(), s.lower())


def coerce_signature(signature: Union[Signature, Dict]) -> Signature:
    """Accept a Signature or a ``{r, s}`` mapping."""
    if isinstance(signature, Signature):
        return signature
    return Signature.from_dict(signature)


def sign(private_key: str, message_hash: str) -> Signature:
    """
    Sign a pre-computed digest.

    Args:
        private_key: 64-hex private scalar
        message_hash: 64-hex SHA3-256 digest

    Returns:
        Signature with unpadded lowercase hex ``r`` and ``s``

    Raises:
        ValidationError: If the key or digest is malformed
    """
    if not is_hash_hex(message_hash):
        raise ValidationError("Message hash must be 64 hex characters")
    key = load_private_key(private_key)
    der = key.sign(bytes.fromhex(message_hash), _prehashed())
    r, s = decode_dss_signature(der)
    return Signature(format(r, 'x'), format(s, 'x'))


def verify(public_key: str, message_hash: str,
           signature: Union[Signature, Dict]) -> bool:
    """
    Verify an ECDSA signature against a digest and public key.

    Pure function: any malformed input yields False instead of raising.

    Args:
        public_key: Uncompressed point hex
        message_hash: 64-hex digest that was signed
        signature: Signature or ``{r, s}`` mapping

    Returns:
        True if the signature is valid
    """
    try:
        sig = coerce_signature(signature)
        if not sig.in_range() or not is_hash_hex(message_hash):
            return False
        key = load_public_key(public_key)
    except ValidationError:
        return False

    try:
        key.verify(
            encode_dss_signature(sig.r_int, sig.s_int),
            bytes.fromhex(message_hash),
            _prehashed()
        )
        return True
    except InvalidSignature:
        return False


class ECDSASigner:
    """
    Signing helper bound to one private key.

    Example:
        >>> signer = ECDSASigner(key_pair.private_key)
        >>> sig = signer.sign(hash_message("hello"))
        >>> ECDSASigner.verify(key_pair.public_key, hash_message("hello"), sig)
        True
    """

    def __init__(self, private_key: str):
        self._private_key = private_key

    def sign(self, message_hash: str) -> Signature:
        return sign(self._private_key, message_hash)

    verify = staticmethod(verify)
