"""
Trust-on-first-use (TOFU) store for peer public keys.

The first key seen for a contact is accepted. Any later fetch that
returns a different key is recorded as a pending change: the record keeps
the previously trusted key in ``previous_public_key`` and raises
``key_changed`` until the user explicitly trusts or rejects the new key.
Messages from a contact with a pending change should not be presented as
fully trusted.
"""

import hashlib
import time
from dataclasses import dataclass, replace
from typing import Callable, List, Optional

import structlog

from ..errors import NotFoundError
from ..storage.kv import InMemoryStore, KeyValueStore


logger = structlog.get_logger(__name__)


FINGERPRINT_GROUP = 4


def fingerprint(public_key: str) -> str:
    """
    Fingerprint a public key for out-of-band comparison.

    Args:
        public_key: Public key hex as published

    Returns:
        SHA3-256 hex of the public key text
    """
    return hashlib.sha3_256(public_key.lower().encode('ascii')).hexdigest()


def format_fingerprint(value: str, group: int = FINGERPRINT_GROUP) -> str:
    """Render a fingerprint as space-separated upper-case blocks."""
    value = value.upper()
    return ' '.join(value[i:i + group] for i in range(0, len(value), group))


@dataclass
class TrustRecord:
    """What we know about one contact's key."""
    contact: str
    public_key: str
    fingerprint: str
    first_seen_at: float
    last_seen_at: float
    previous_public_key: Optional[str] = None
    key_changed: bool = False


class TrustStore:
    """
    Known peer keys keyed by contact name.

    Example:
        >>> trust = TrustStore()
        >>> trust.save("bob", key_a).key_changed
        False
        >>> trust.save("bob", key_b).previous_public_key == key_a
        True
        >>> trust.trust("bob", key_b).key_changed
        False
    """

    def __init__(self, store: Optional[KeyValueStore] = None,
                 clock: Callable[[], float] = time.time):
        self._store = store if store is not None else InMemoryStore()
        self._clock = clock

    def get(self, contact: str) -> Optional[TrustRecord]:
        record = self._store.get(contact)
        return replace(record) if record else None

    def save(self, contact: str, public_key: str,
             fp: Optional[str] = None) -> TrustRecord:
        """
        Record a fetched key for ``contact``.

        Args:
            contact: Contact username
            public_key: Key as just fetched
            fp: Fingerprint of ``public_key``; computed if omitted

        Returns:
            Updated record; ``key_changed`` is True if the caller must
            surface a key change to the user
        """
        public_key = public_key.lower()
        fp = fp or fingerprint(public_key)
        now = self._clock()
        record = self._store.get(contact)

        if record is None:
            record = TrustRecord(
                contact=contact,
                public_key=public_key,
                fingerprint=fp,
                first_seen_at=now,
                last_seen_at=now,
            )
            logger.info("contact_key_first_seen", contact=contact,
                        fingerprint=fp[:16])
        else:
            record = replace(record, last_seen_at=now)
            if record.key_changed and public_key == record.previous_public_key:
                # Peer went back to the trusted key
                record.public_key = public_key
                record.fingerprint = fp
                record.previous_public_key = None
                record.key_changed = False
                logger.info("contact_key_restored", contact=contact)
            elif record.public_key != public_key:
                # Keep the last key the user actually trusted
                if not record.key_changed:
                    record.previous_public_key = record.public_key
                record.public_key = public_key
                record.fingerprint = fp
                record.key_changed = True
                logger.warning("contact_key_changed", contact=contact,
                               fingerprint=fp[:16])

        self._store.put(contact, record)
        return replace(record)

    def trust(self, contact: str, new_key: str) -> TrustRecord:
        """
        Accept ``new_key`` for ``contact`` and clear any pending change.

        Raises:
            NotFoundError: If the contact has never been seen
        """
        record = self._store.get(contact)
        if record is None:
            raise NotFoundError("Unknown contact")
        new_key = new_key.lower()
        record = replace(
            record,
            public_key=new_key,
            fingerprint=fingerprint(new_key),
            previous_public_key=None,
            key_changed=False,
            last_seen_at=self._clock(),
        )
        self._store.put(contact, record)
        logger.info("contact_key_trusted", contact=contact,
                    fingerprint=record.fingerprint[:16])
        return replace(record)

    def reject(self, contact: str) -> TrustRecord:
        """
        Refuse a pending key change and restore the previously trusted key.

        Raises:
            NotFoundError: If the contact has never been seen
        """
        record = self._store.get(contact)
        if record is None:
            raise NotFoundError("Unknown contact")
        if not record.key_changed or record.previous_public_key is None:
            return replace(record)
        restored = record.previous_public_key
        record = replace(
            record,
            public_key=restored,
            fingerprint=fingerprint(restored),
            previous_public_key=None,
            key_changed=False,
        )
        self._store.put(contact, record)
        logger.info("contact_key_rejected", contact=contact)
        return replace(record)

    def forget(self, contact: str) -> bool:
        return self._store.delete(contact)

    def is_trusted(self, contact: str, public_key: Optional[str] = None) -> bool:
        """True if the contact is known, has no pending change and matches ``public_key``."""
        record = self._store.get(contact)
        if record is None or record.key_changed:
            return False
        return public_key is None or record.public_key == public_key.lower()

    def contacts(self) -> List[str]:
        return sorted(self._store.keys())
