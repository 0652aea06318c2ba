# Storage Module
"""
Injected key-value stores for users, challenges, trust records and inboxes.
"""

from .kv import KeyValueStore, InMemoryStore

__all__ = [
    'KeyValueStore',
    'InMemoryStore',
]
