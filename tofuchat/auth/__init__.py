# Authentication Module
"""
Authentication implementations including:
- Public-key registration and nonce challenge-response - challenge.py
- Access/refresh session credentials - sessions.py
- Rate limiting - sessions.py

Security features:
- Single-use nonces, deleted atomically with a successful verification
- Nonce TTL
- Indistinguishable authentication failures
- HMAC-SHA256 access token digests, Argon2id refresh token hashes
"""

from .challenge import (
    AuthenticationProtocol,
    Challenge,
)

from .sessions import (
    SessionManager,
    RateLimiter,
    Session,
)

__all__ = [
    # Challenge-response
    'AuthenticationProtocol',
    'Challenge',
    # Sessions
    'SessionManager',
    'RateLimiter',
    'Session',
]
