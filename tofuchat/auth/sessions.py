"""
Session Credential Module

Issues the opaque access/refresh token pair handed out after a successful
challenge verification, and rate-limits authentication attempts.

- Access tokens: random 256-bit hex, stored only as HMAC-SHA256 digests
  and compared in constant time.
- Refresh tokens: ``<session_id>.<secret>``, the secret stored as an
  Argon2id hash (argon2-cffi).
- Rate limiting: failed attempts per identifier within a window trigger
  a lockout.

Never log tokens or token hashes.
"""

import hashlib
import hmac
import secrets
import threading
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

import structlog
from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError

from ..config import ChatConfig
from ..errors import AuthenticationError


logger = structlog.get_logger(__name__)


# Token configuration
TOKEN_BYTES = 32            # 256-bit tokens
SESSION_ID_BYTES = 16

# Refresh secrets are high-entropy random values, so lighter Argon2id
# parameters than password hashing are sufficient.
REFRESH_HASH_CONFIG = {
    'time_cost': 2,
    'memory_cost': 19456,    # 19 MiB
    'parallelism': 1,
    'hash_len': 32,
    'salt_len': 16,
    'type': Type.ID,
}


@dataclass
class AuthAttempt:
    """Track authentication attempts for rate limiting."""
    attempts: int = 0
    first_attempt_time: float = 0.0
    lockout_until: float = 0.0


@dataclass
class Session:
    """An authenticated session."""
    session_id: str
    username: str
    created_at: float
    access_expires_at: float
    refresh_expires_at: float
    access_token_hash: str
    refresh_token_hash: str
    is_valid: bool = True

    def access_expired(self, now: float) -> bool:
        return now >= self.access_expires_at

    def refresh_expired(self, now: float) -> bool:
        return now >= self.refresh_expires_at


class RateLimiter:
    """
    Rate limiter against brute-force authentication.

    Tracks failed attempts per identifier (username or client address) and
    enforces a lockout after too many failures inside the window.
    """

    def __init__(self, max_attempts: int, lockout_duration: int,
                 window_seconds: int, clock: Callable[[], float] = time.time):
        self._attempts: Dict[str, AuthAttempt] = defaultdict(AuthAttempt)
        self._max_attempts = max_attempts
        self._lockout_duration = lockout_duration
        self._window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: ChatConfig,
                    clock: Callable[[], float] = time.time) -> 'RateLimiter':
        return cls(config.max_auth_attempts, config.lockout_seconds,
                   config.attempt_window_seconds, clock)

    def is_locked_out(self, identifier: str) -> Tuple[bool, int]:
        """
        Check if an identifier is locked out.

        Returns:
            Tuple of (is_locked, seconds_remaining)
        """
        with self._lock:
            attempt = self._attempts.get(identifier)
            if not attempt:
                return False, 0

            now = self._clock()
            if attempt.lockout_until > now:
                return True, int(attempt.lockout_until - now) + 1

            # Reset once the window has passed
            if now - attempt.first_attempt_time > self._window_seconds:
                self._attempts[identifier] = AuthAttempt()
            return False, 0

    def record_attempt(self, identifier: str, success: bool) -> None:
        """Record an attempt; success clears the counter."""
        with self._lock:
            if success:
                self._attempts[identifier] = AuthAttempt()
                return

            now = self._clock()
            attempt = self._attempts[identifier]
            if now - attempt.first_attempt_time > self._window_seconds:
                attempt = AuthAttempt()
                self._attempts[identifier] = attempt

            if attempt.attempts == 0:
                attempt.first_attempt_time = now
            attempt.attempts += 1

            if attempt.attempts >= self._max_attempts:
                attempt.lockout_until = now + self._lockout_duration
                logger.warning("auth_lockout", identifier=identifier,
                               seconds=self._lockout_duration)

    def get_remaining_attempts(self, identifier: str) -> int:
        with self._lock:
            attempt = self._attempts.get(identifier)
            if not attempt:
                return self._max_attempts
            if self._clock() - attempt.first_attempt_time > self._window_seconds:
                return self._max_attempts
            return max(0, self._max_attempts - attempt.attempts)

    def reset(self, identifier: str) -> None:
        with self._lock:
            self._attempts[identifier] = AuthAttempt()


class SessionManager:
    """
    Issues and validates access/refresh token pairs.

    One live session per username: issuing a new pair revokes the old one.
    """

    def __init__(self, config: Optional[ChatConfig] = None,
                 secret_key: Optional[bytes] = None,
                 clock: Callable[[], float] = time.time):
        """
        Args:
            config: Token lifetimes
            secret_key: Server-side HMAC key (generated if not provided)
            clock: Time source
        """
        self._config = config or ChatConfig()
        self._secret_key = secret_key or secrets.token_bytes(32)
        self._clock = clock
        self._hasher = PasswordHasher(**REFRESH_HASH_CONFIG)
        self._sessions: Dict[str, Session] = {}
        self._user_sessions: Dict[str, str] = {}   # username -> session_id
        self._access_index: Dict[str, str] = {}    # access hash -> session_id
        self._lock = threading.RLock()

    def _hmac(self, token: str) -> str:
        return hmac.new(self._secret_key, token.encode(), hashlib.sha256).hexdigest()

    def _new_access_token(self) -> Tuple[str, str]:
        token = secrets.token_hex(TOKEN_BYTES)
        return token, self._hmac(token)

    def _drop(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return
        session.is_valid = False
        self._access_index.pop(session.access_token_hash, None)
        if self._user_sessions.get(session.username) == session_id:
            del self._user_sessions[session.username]

    def issue(self, username: str) -> Dict[str, str]:
        """
        Create a session for an authenticated user.

        Returns:
            Dict with ``access_token`` and ``refresh_token``
        """
        access_token, access_hash = self._new_access_token()
        session_id = secrets.token_hex(SESSION_ID_BYTES)
        refresh_secret = secrets.token_hex(TOKEN_BYTES)
        refresh_token = f"{session_id}.{refresh_secret}"
        refresh_hash = self._hasher.hash(refresh_secret)

        now = self._clock()
        session = Session(
            session_id=session_id,
            username=username,
            created_at=now,
            access_expires_at=now + self._config.access_token_ttl_seconds,
            refresh_expires_at=now + self._config.refresh_token_ttl_seconds,
            access_token_hash=access_hash,
            refresh_token_hash=refresh_hash,
        )

        with self._lock:
            old = self._user_sessions.get(username)
            if old:
                self._drop(old)
            self._sessions[session_id] = session
            self._user_sessions[username] = session_id
            self._access_index[access_hash] = session_id

        logger.info("session_issued", username=username)
        return {'access_token': access_token, 'refresh_token': refresh_token}

    def verify_access(self, access_token: str) -> Optional[str]:
        """
        Resolve an access token to its username.

        Returns:
            Username if the token is live, None otherwise
        """
        if not isinstance(access_token, str) or not access_token:
            return None
        provided = self._hmac(access_token)
        with self._lock:
            session_id = self._access_index.get(provided)
            session = self._sessions.get(session_id) if session_id else None
            if session is None or not session.is_valid:
                return None
            if session.access_expired(self._clock()):
                return None
            # Constant-time comparison
            if not hmac.compare_digest(provided, session.access_token_hash):
                return None
            return session.username

    def refresh(self, refresh_token: str) -> str:
        """
        Exchange a refresh token for a new access token.

        Raises:
            AuthenticationError: If the refresh token is unknown, wrong or expired
        """
        session_id, _, refresh_secret = (refresh_token or '').partition('.')
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or not refresh_secret:
                raise AuthenticationError("unknown refresh token")
            if session.refresh_expired(self._clock()):
                self._drop(session_id)
                raise AuthenticationError("refresh token expired")
            refresh_hash = session.refresh_token_hash

        # Slow Argon2 check; the session may be revoked meanwhile
        try:
            self._hasher.verify(refresh_hash, refresh_secret)
        except (VerificationError, InvalidHashError):
            raise AuthenticationError("refresh token mismatch")

        with self._lock:
            if (self._sessions.get(session_id) is not session
                    or session.refresh_token_hash != refresh_hash):
                raise AuthenticationError("session revoked")
            access_token, access_hash = self._new_access_token()
            self._access_index.pop(session.access_token_hash, None)
            session.access_token_hash = access_hash
            session.access_expires_at = self._clock() + self._config.access_token_ttl_seconds
            self._access_index[access_hash] = session_id

        logger.info("session_refreshed", username=session.username)
        return access_token

    def revoke(self, username: str) -> bool:
        """
        Log out ``username``.

        Returns:
            True if a session was revoked
        """
        with self._lock:
            session_id = self._user_sessions.get(username)
            if session_id is None:
                return False
            self._drop(session_id)
        logger.info("session_revoked", username=username)
        return True

    def cleanup_expired(self) -> int:
        """
        Remove sessions whose refresh token has expired.

        Returns:
            Number of sessions removed
        """
        now = self._clock()
        with self._lock:
            expired = [sid for sid, s in self._sessions.items() if s.refresh_expired(now)]
            for sid in expired:
                self._drop(sid)
        return len(expired)

    def get_session(self, username: str) -> Optional[Session]:
        with self._lock:
            session_id = self._user_sessions.get(username)
            return self._sessions.get(session_id) if session_id else None
