"""
Secure Messaging Module

Composes and processes signed, encrypted chat messages.

Canonical payload (format version 1), hashed and signed by the sender:

    {"sender":...,"receiver":...,"msg":...,"ts":...}

compact JSON with exactly that key order, non-ASCII characters kept
as-is, UTF-8 encoded before hashing. Sender and receiver must produce
byte-identical payloads or every signature check fails.

Processing rules:
- Decrypt with ECDH(local private key, sender public key).
- Rebuild the canonical payload from the *decrypted* text and the
  declared sender/receiver/timestamp; hash it.
- Verify the signature against the *recomputed* hash. The transmitted
  hash is only compared, never trusted.
- Outcome is one of verified / unverified / corrupted. ``process``
  never raises.
"""

import hmac
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union

import structlog

from ..core_crypto.ciphers import SymmetricCipher, XorKeystreamCipher
from ..core_crypto.key_agreement import shared_secret
from ..core_crypto.keys import hash_message
from ..core_crypto.signatures import Signature, coerce_signature, sign, verify
from ..errors import (
    DecryptionError, IntegrityMismatchError, SignatureInvalidError, ValidationError
)


logger = structlog.get_logger(__name__)


PAYLOAD_VERSION = 1


class MessageStatus(Enum):
    """Classification of a received message."""
    VERIFIED = "verified"
    UNVERIFIED = "unverified"
    CORRUPTED = "corrupted"


@dataclass
class MessageContext:
    """Routing metadata bound into the signature."""
    sender: str
    receiver: str
    timestamp: Optional[str] = None


@dataclass
class Message:
    """Encrypted, signed message as it travels."""
    sender: str
    receiver: str
    ciphertext: str
    hash: str
    signature: Signature
    timestamp: str
    version: int = PAYLOAD_VERSION

    def to_dict(self) -> Dict[str, Any]:
        """Wire representation (camelCase, as posted to ``submit_message``)."""
        return {
            'senderUsername': self.sender,
            'receiverUsername': self.receiver,
            'ciphertext': self.ciphertext,
            'hash': self.hash,
            'signature': self.signature.to_dict(),
            'timestamp': self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Message':
        """
        Build from a wire dict (camelCase or snake_case keys).

        Raises:
            ValidationError: If required fields are missing or mistyped
        """
        def pick(*names):
            for name in names:
                if name in data:
                    return data[name]
            raise ValidationError(f"Missing field: {names[0]}")

        message = cls(
            sender=pick('senderUsername', 'sender_username', 'sender'),
            receiver=pick('receiverUsername', 'receiver_username', 'receiver'),
            ciphertext=pick('ciphertext', 'encrypted_message'),
            hash=pick('hash', 'message_hash'),
            signature=coerce_signature(pick('signature')),
            timestamp=pick('timestamp'),
            version=data.get('version', PAYLOAD_VERSION),
        )
        for name in ('sender', 'receiver', 'ciphertext', 'hash', 'timestamp'):
            if not isinstance(getattr(message, name), str):
                raise ValidationError(f"Field {name} must be a string")
        return message


@dataclass
class ProcessedMessage:
    """Result of processing an incoming message."""
    sender: str
    receiver: str
    text: Optional[str]
    timestamp: str
    status: MessageStatus
    computed_hash: Optional[str] = None
    hash_valid: bool = False
    signature_valid: bool = False
    signature: Optional[Signature] = None
    ciphertext: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_verified(self) -> bool:
        return self.status is MessageStatus.VERIFIED


def utc_timestamp() -> str:
    """Current UTC time as ISO-8601 with milliseconds and a ``Z`` suffix."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def canonical_payload(sender: str, receiver: str, msg: str, ts: str,
                      version: int = PAYLOAD_VERSION) -> str:
    """
    Serialize the signed payload.

    Raises:
        ValueError: If ``version`` is not a known payload format
    """
    if version != 1:
        raise ValueError(f"Unsupported payload version: {version}")
    return json.dumps(
        {'sender': sender, 'receiver': receiver, 'msg': msg, 'ts': ts},
        separators=(',', ':'),
        ensure_ascii=False,
    )


def payload_hash(sender: str, receiver: str, msg: str, ts: str,
                 version: int = PAYLOAD_VERSION) -> str:
    """SHA3-256 hex of the canonical payload."""
    return hash_message(canonical_payload(sender, receiver, msg, ts, version))


class MessageProtocol:
    """
    Sign-then-encrypt messaging over ECDH-derived keys.

    Example:
        >>> proto = MessageProtocol()
        >>> msg = proto.compose(alice.private_key, bob.public_key, "hi",
        ...                     MessageContext("alice", "bob"))
        >>> proto.process(msg, alice.public_key, bob.private_key).status
        <MessageStatus.VERIFIED: 'verified'>
    """

    def __init__(self, cipher: Optional[SymmetricCipher] = None):
        """
        Args:
            cipher: Symmetric layer; defaults to the XOR keystream reference
        """
        self._cipher = cipher or XorKeystreamCipher()

    @property
    def cipher(self) -> SymmetricCipher:
        return self._cipher

    def compose(self, sender_private_key: str, receiver_public_key: str,
                plaintext: str, context: MessageContext) -> Message:
        """
        Hash, sign and encrypt a message.

        Args:
            sender_private_key: Sender's 64-hex private scalar
            receiver_public_key: Receiver's uncompressed point hex
            plaintext: Message text
            context: Sender, receiver and optional timestamp

        Returns:
            Message ready to submit

        Raises:
            ValidationError: If either key is malformed
        """
        timestamp = context.timestamp or utc_timestamp()
        digest = payload_hash(context.sender, context.receiver, plaintext, timestamp)
        signature = sign(sender_private_key, digest)

        key = shared_secret(sender_private_key, receiver_public_key)
        ciphertext = self._cipher.encrypt(key, plaintext)

        logger.debug("message_composed", sender=context.sender,
                     receiver=context.receiver, cipher=self._cipher.name)
        return Message(
            sender=context.sender,
            receiver=context.receiver,
            ciphertext=ciphertext,
            hash=digest,
            signature=signature,
            timestamp=timestamp,
        )

    def process(self, payload: Union[Message, Dict[str, Any]],
                sender_public_key: str,
                local_private_key: str) -> ProcessedMessage:
        """
        Decrypt and classify an incoming message.

        Args:
            payload: Message or wire dict
            sender_public_key: Declared sender's public key
            local_private_key: Receiver's private scalar

        Returns:
            ProcessedMessage with status verified / unverified / corrupted
        """
        try:
            if isinstance(payload, Message):
                message = payload
            elif isinstance(payload, dict):
                message = Message.from_dict(payload)
            else:
                raise ValidationError("Message must be an object")
        except ValidationError as e:
            raw = payload if isinstance(payload, dict) else {}
            return ProcessedMessage(
                sender=str(raw.get('senderUsername', raw.get('sender', ''))),
                receiver=str(raw.get('receiverUsername', raw.get('receiver', ''))),
                text=None,
                timestamp=str(raw.get('timestamp', '')),
                status=MessageStatus.CORRUPTED,
                error=e.message,
            )

        result = ProcessedMessage(
            sender=message.sender,
            receiver=message.receiver,
            text=None,
            timestamp=message.timestamp,
            status=MessageStatus.CORRUPTED,
            signature=message.signature,
            ciphertext=message.ciphertext,
        )

        try:
            key = shared_secret(local_private_key, sender_public_key)
            text = self._cipher.decrypt(key, message.ciphertext)
            computed = payload_hash(message.sender, message.receiver, text,
                                    message.timestamp, message.version)
        except (DecryptionError, ValidationError) as e:
            result.error = e.message
            logger.warning("message_corrupted", sender=message.sender, reason=e.message)
            return result
        except ValueError as e:
            result.error = str(e)
            logger.warning("message_corrupted", sender=message.sender, reason=str(e))
            return result

        result.text = text
        result.computed_hash = computed
        result.hash_valid = (isinstance(message.hash, str) and
                             hmac.compare_digest(computed.encode(),
                                                 message.hash.lower().encode("utf-8")))
        result.signature_valid = verify(sender_public_key, computed, message.signature)

        if result.hash_valid and result.signature_valid:
            result.status = MessageStatus.VERIFIED
        else:
            result.status = MessageStatus.UNVERIFIED
            result.error = ("Message hash mismatch" if not result.hash_valid
                            else "Signature verification failed")
            logger.warning("message_unverified", sender=message.sender,
                           hash_valid=result.hash_valid,
                           signature_valid=result.signature_valid)
        return result

    def open(self, payload: Union[Message, Dict[str, Any]],
             sender_public_key: str, local_private_key: str) -> str:
        """
        Strict variant of ``process``.

        Returns:
            Decrypted text of a verified message

        Raises:
            DecryptionError: If the message is corrupted
            IntegrityMismatchError: If the recomputed hash differs
            SignatureInvalidError: If the signature does not verify
        """
        result = self.process(payload, sender_public_key, local_private_key)
        if result.status is MessageStatus.CORRUPTED:
            raise DecryptionError(result.error)
        if not result.hash_valid:
            raise IntegrityMismatchError()
        if not result.signature_valid:
            raise SignatureInvalidError("message signature mismatch")
        return result.text
