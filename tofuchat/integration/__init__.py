# Integration Module
"""
Service composition and the security audit trail.

- ChatService: transport-agnostic endpoints (auth, sessions, relay)
- EventLogger: hash-chained audit log with privacy-preserving user hashes
"""

from .event_logger import (
    EventLogger,
    EventType,
    SecurityEvent,
    get_user_hash,
)

from .service import ChatService

__all__ = [
    'ChatService',
    'EventLogger',
    'EventType',
    'SecurityEvent',
    'get_user_hash',
]
