# Trust Module
"""
Trust-on-first-use tracking of peer public keys with change detection
and SHA3-256 fingerprints for out-of-band comparison.
"""

from .store import (
    TrustRecord,
    TrustStore,
    fingerprint,
    format_fingerprint,
)

__all__ = [
    'TrustRecord',
    'TrustStore',
    'fingerprint',
    'format_fingerprint',
]
