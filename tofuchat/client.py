"""
Chat client flow.

Holds one user's key pair (derived from the password, never sent), drives
the challenge-response login against a ``ChatService``, and composes and
processes messages through ``MessageProtocol`` while tracking contact keys
in a ``TrustStore``.
"""

from typing import Dict, List, Optional

import structlog

from .core_crypto.ciphers import get_cipher
from .core_crypto.keys import KeyPair, hash_message
from .core_crypto.signatures import sign
from .errors import AuthenticationError, ChatError, NotFoundError
from .integration.event_logger import EventLogger, EventType
from .integration.service import ChatService
from .messaging.protocol import MessageContext, MessageProtocol, MessageStatus, ProcessedMessage
from .trust.store import TrustRecord, TrustStore, format_fingerprint


logger = structlog.get_logger(__name__)


def _raise_for(response: Dict) -> Dict:
    """Turn a failure response back into the matching error."""
    if response['success']:
        return response
    status = response['status']
    if status == 401:
        raise AuthenticationError(response['message'])
    if status == 404:
        raise NotFoundError(response['message'])
    error = ChatError(response['message'])
    error.status_code = status
    raise error


class ChatClient:
    """
    One user's side of the conversation.

    Example:
        >>> alice = ChatClient("alice", "alice-password", service)
        >>> alice.register()
        >>> alice.login()
        >>> alice.send("bob", "hello")
    """

    def __init__(self, username: str, password: str, service: ChatService,
                 trust_store: Optional[TrustStore] = None,
                 protocol: Optional[MessageProtocol] = None,
                 audit: Optional[EventLogger] = None,
                 client_ip: Optional[str] = None):
        """
        Args:
            username: Account name
            password: Source of the deterministic key pair
            service: Backend to talk to
            trust_store: Known contact keys (fresh in-memory store if omitted)
            protocol: Message protocol (XOR keystream cipher if omitted)
            audit: Optional audit log for key and receive events
            client_ip: Address the service counts login attempts against
        """
        self.username = username
        self.keys = KeyPair.from_password(password)
        self._service = service
        self.trust = trust_store if trust_store is not None else TrustStore()
        self.protocol = protocol or MessageProtocol(get_cipher())
        self._audit = audit
        self.client_ip = client_ip
        self.access_token: Optional[str] = None
        self.refresh_token: Optional[str] = None

    @property
    def public_key(self) -> str:
        return self.keys.public_key

    @property
    def is_logged_in(self) -> bool:
        return self.access_token is not None

    def register(self) -> Dict:
        return _raise_for(self._service.register({
            'username': self.username,
            'publicKey': self.keys.public_key,
        }))

    def login(self) -> Dict:
        """
        Challenge, sign ``hash_message(nonce)``, verify; keeps the tokens.

        Raises:
            AuthenticationError: If the service rejects the signature
        """
        nonce = _raise_for(self._service.challenge({'username': self.username},
                                                   client_ip=self.client_ip))['nonce']
        signature = sign(self.keys.private_key, hash_message(nonce))
        response = _raise_for(self._service.verify({
            'username': self.username,
            'signature': signature.to_dict(),
        }, client_ip=self.client_ip))
        self.access_token = response['access_token']
        self.refresh_token = response['refresh_token']
        logger.info("client_logged_in", username=self.username)
        return response

    def refresh(self) -> str:
        response = _raise_for(self._service.refresh({'refreshToken': self.refresh_token}))
        self.access_token = response['access_token']
        return self.access_token

    def logout(self) -> None:
        _raise_for(self._service.logout(self.access_token))
        self.access_token = None
        self.refresh_token = None

    def fetch_contact_key(self, contact: str) -> TrustRecord:
        """
        Look up ``contact``'s key and record it trust-on-first-use.

        Raises:
            NotFoundError: If the contact is not registered
        """
        response = _raise_for(self._service.get_public_key(contact))
        known = self.trust.get(contact)
        record = self.trust.save(contact, response['publicKey'])

        if known is None:
            self._log_key(contact, EventType.KEY_FIRST_SEEN, record)
        elif record.key_changed and known.public_key != record.public_key:
            logger.warning("contact_key_changed_verify_fingerprint", contact=contact,
                           fingerprint=format_fingerprint(record.fingerprint))
            self._log_key(contact, EventType.KEY_CHANGED, record)
        return record

    def trust_contact_key(self, contact: str) -> TrustRecord:
        """Accept the pending key after an out-of-band fingerprint check."""
        record = self.trust.get(contact)
        if record is None:
            raise NotFoundError("Unknown contact")
        record = self.trust.trust(contact, record.public_key)
        self._log_key(contact, EventType.KEY_TRUSTED, record)
        return record

    def reject_contact_key(self, contact: str) -> TrustRecord:
        record = self.trust.reject(contact)
        self._log_key(contact, EventType.KEY_REJECTED, record)
        return record

    def contact_fingerprint(self, contact: str) -> str:
        """Formatted fingerprint of the contact's current key."""
        record = self.trust.get(contact) or self.fetch_contact_key(contact)
        return format_fingerprint(record.fingerprint)

    def send(self, contact: str, text: str) -> Dict:
        """
        Encrypt, sign and submit ``text`` to ``contact``.

        Returns:
            The submitted wire message
        """
        record = self.fetch_contact_key(contact)
        message = self.protocol.compose(
            self.keys.private_key, record.public_key, text,
            MessageContext(self.username, contact),
        )
        body = message.to_dict()
        _raise_for(self._service.submit_message(body, self.access_token))
        return body

    def receive(self) -> List[ProcessedMessage]:
        """
        Fetch and process the inbox.

        A message that verifies against a contact key with an unresolved
        change is downgraded to unverified. A message whose sender key
        cannot be fetched is reported as corrupted; the rest of the inbox
        is still processed.
        """
        inbox = _raise_for(self._service.fetch_messages(self.access_token))['messages']
        results = []
        for raw in inbox:
            sender = raw.get('senderUsername', '')
            try:
                record = self.fetch_contact_key(sender)
            except ChatError as e:
                logger.warning("sender_key_unavailable", sender=sender, reason=e.message)
                result = ProcessedMessage(
                    sender=sender,
                    receiver=raw.get('receiverUsername', self.username),
                    text=None,
                    timestamp=raw.get('timestamp', ''),
                    status=MessageStatus.CORRUPTED,
                    ciphertext=raw.get('ciphertext'),
                    error=e.message,
                )
            else:
                result = self.protocol.process(raw, record.public_key, self.keys.private_key)
                if result.status is MessageStatus.VERIFIED and record.key_changed:
                    result.status = MessageStatus.UNVERIFIED
                    result.error = "Contact key changed"
            if self._audit is not None:
                self._audit.log_message_receive(self.username, sender,
                                                raw.get('hash', ''), result.status.value)
            results.append(result)
        return results

    def _log_key(self, contact: str, event_type: EventType, record: TrustRecord) -> None:
        if self._audit is not None:
            self._audit.log_key_event(self.username, contact, event_type, record.fingerprint)
