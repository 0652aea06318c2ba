"""
Event Logger Module

Security audit trail for tofuchat.

Every security-relevant action (registration, challenge, login, token
refresh, logout, message send/receive, contact key change) is appended to
a hash chain: each entry stores the SHA-256 of the previous entry, so any
edit or deletion breaks ``verify_integrity``.

Features:
- Privacy-preserving user hashes (SHA-256), never plaintext usernames
- Tamper-evident append-only log
- Export / import as JSON
- Events are also emitted to structlog
"""

import hashlib
import json
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import structlog


logger = structlog.get_logger(__name__)


# ============================================================================
# Constants
# ============================================================================

EVENT_VERSION = "1.0"
GENESIS_HASH = "0" * 64


# ============================================================================
# Privacy Functions
# ============================================================================

def get_user_hash(username: str) -> str:
    """
    Compute privacy-preserving hash of username.

    Usernames are never stored in plaintext in the audit log, while events
    for the same user can still be correlated.

    Args:
        username: The plaintext username

    Returns:
        Hex-encoded SHA-256 hash of the username
    """
    return hashlib.sha256(username.encode('utf-8')).hexdigest()


def get_user_hash_short(username: str) -> str:
    """First 16 characters of the user hash, for display."""
    return get_user_hash(username)[:16]


# ============================================================================
# Event Types
# ============================================================================

class EventType(Enum):
    """Types of security events that can be logged."""

    # Authentication events
    REGISTER = "register"
    CHALLENGE_ISSUED = "challenge_issued"
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILED = "login_failed"
    LOGIN_LOCKED = "login_locked"
    TOKEN_REFRESH = "token_refresh"
    LOGOUT = "logout"

    # Messaging events
    MESSAGE_SEND = "message_send"
    MESSAGE_RECEIVE = "message_receive"

    # Trust events
    KEY_FIRST_SEEN = "key_first_seen"
    KEY_CHANGED = "key_changed"
    KEY_TRUSTED = "key_trusted"
    KEY_REJECTED = "key_rejected"


# ============================================================================
# Event Structure
# ============================================================================

@dataclass
class SecurityEvent:
    """
    A security event in the audit log.

    All user-identifying information is hashed for privacy.
    """
    event_type: EventType
    user_hash: str
    timestamp: float
    details: Dict[str, Any] = field(default_factory=dict)
    prev_hash: str = GENESIS_HASH
    entry_hash: str = ""

    def payload(self) -> str:
        """Canonical JSON of everything the entry hash covers."""
        return json.dumps({
            'version': EVENT_VERSION,
            'type': self.event_type.value,
            'user': self.user_hash,
            'time': self.timestamp,
            'details': self.details,
            'prev': self.prev_hash,
        }, separators=(',', ':'), sort_keys=True)

    def compute_hash(self) -> str:
        return hashlib.sha256(self.payload().encode('utf-8')).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.event_type.value,
            'user': self.user_hash,
            'time': self.timestamp,
            'details': self.details,
            'prev': self.prev_hash,
            'hash': self.entry_hash,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SecurityEvent':
        return cls(
            event_type=EventType(data['type']),
            user_hash=data['user'],
            timestamp=data['time'],
            details=data.get('details', {}),
            prev_hash=data['prev'],
            entry_hash=data['hash'],
        )

    def __str__(self) -> str:
        dt = datetime.fromtimestamp(self.timestamp, tz=timezone.utc)
        return (
            f"[{dt.strftime('%Y-%m-%d %H:%M:%S')}] "
            f"{self.event_type.value} | "
            f"user:{self.user_hash[:8]}..."
        )


# ============================================================================
# Event Logger
# ============================================================================

class EventLogger:
    """
    Hash-chained security audit log.

    Example:
        >>> audit = EventLogger()
        >>> audit.log_login("alice", success=True)
        >>> audit.verify_integrity()
        True
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._events: List[SecurityEvent] = []
        self._clock = clock
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[SecurityEvent], None]] = []

    def _append(self, event_type: EventType, username: str,
                details: Optional[Dict[str, Any]] = None) -> SecurityEvent:
        with self._lock:
            prev = self._events[-1].entry_hash if self._events else GENESIS_HASH
            event = SecurityEvent(
                event_type=event_type,
                user_hash=get_user_hash(username),
                timestamp=self._clock(),
                details=details or {},
                prev_hash=prev,
            )
            event.entry_hash = event.compute_hash()
            self._events.append(event)

        logger.info("audit_event", event_type=event_type.value,
                    user=event.user_hash[:16], **event.details)
        for callback in list(self._callbacks):
            callback(event)
        return event

    def add_callback(self, callback: Callable[[SecurityEvent], None]) -> None:
        """Add a callback to be notified of new events."""
        self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[SecurityEvent], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    # ========================================================================
    # Authentication Events
    # ========================================================================

    def log_register(self, username: str) -> SecurityEvent:
        return self._append(EventType.REGISTER, username)

    def log_challenge(self, username: str) -> SecurityEvent:
        return self._append(EventType.CHALLENGE_ISSUED, username)

    def log_login(self, username: str, success: bool,
                  reason: Optional[str] = None) -> SecurityEvent:
        """
        Log a challenge verification outcome.

        Args:
            username: The username (will be hashed)
            success: Whether the signature verified
            reason: Internal failure reason (never returned to clients)
        """
        details = {'reason': reason} if reason and not success else {}
        return self._append(
            EventType.LOGIN_SUCCESS if success else EventType.LOGIN_FAILED,
            username, details
        )

    def log_lockout(self, username: str, retry_after: int) -> SecurityEvent:
        return self._append(EventType.LOGIN_LOCKED, username,
                            {'retry_after': retry_after})

    def log_token_refresh(self, username: str) -> SecurityEvent:
        return self._append(EventType.TOKEN_REFRESH, username)

    def log_logout(self, username: str) -> SecurityEvent:
        return self._append(EventType.LOGOUT, username)

    # ========================================================================
    # Messaging Events
    # ========================================================================

    def log_message_send(self, sender: str, recipient: str,
                         message_hash: str) -> SecurityEvent:
        return self._append(EventType.MESSAGE_SEND, sender, {
            'to': get_user_hash_short(recipient),
            'msg_id': message_hash[:16],
        })

    def log_message_receive(self, recipient: str, sender: str,
                            message_hash: str, status: str) -> SecurityEvent:
        return self._append(EventType.MESSAGE_RECEIVE, recipient, {
            'from': get_user_hash_short(sender),
            'msg_id': message_hash[:16],
            'status': status,
        })

    # ========================================================================
    # Trust Events
    # ========================================================================

    def log_key_event(self, owner: str, contact: str, event_type: EventType,
                      fingerprint: str) -> SecurityEvent:
        """Log a TOFU event seen by ``owner`` about ``contact``'s key."""
        return self._append(event_type, owner, {
            'contact': get_user_hash_short(contact),
            'fingerprint': fingerprint[:16],
        })

    # ========================================================================
    # Retrieval
    # ========================================================================

    def get_all_events(self) -> List[SecurityEvent]:
        with self._lock:
            return list(self._events)

    def get_user_events(self, username: str) -> List[SecurityEvent]:
        user_hash = get_user_hash(username)
        return [e for e in self.get_all_events() if e.user_hash == user_hash]

    def get_events_by_type(self, event_type: EventType) -> List[SecurityEvent]:
        return [e for e in self.get_all_events() if e.event_type == event_type]

    def get_recent_events(self, count: int = 10) -> List[SecurityEvent]:
        return self.get_all_events()[-count:]

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    # ========================================================================
    # Integrity and Persistence
    # ========================================================================

    def verify_integrity(self) -> bool:
        """
        Re-walk the chain.

        Returns:
            True if every entry hash and back-link is intact
        """
        prev = GENESIS_HASH
        for event in self.get_all_events():
            if event.prev_hash != prev or event.compute_hash() != event.entry_hash:
                return False
            prev = event.entry_hash
        return True

    def export_log(self) -> str:
        """Export the entire audit log as JSON."""
        return json.dumps([e.to_dict() for e in self.get_all_events()])

    @classmethod
    def import_log(cls, json_str: str) -> 'EventLogger':
        """
        Import an audit log from JSON.

        Raises:
            ValueError: If the JSON is malformed or the chain does not verify
        """
        try:
            entries = [SecurityEvent.from_dict(d) for d in json.loads(json_str)]
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed audit log: {e}")
        audit = cls()
        audit._events = entries
        if not audit.verify_integrity():
            raise ValueError("Audit log integrity check failed")
        return audit
