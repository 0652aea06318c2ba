"""
Challenge-Response Authentication Module

Implements passwordless login against a registered public key:

    register(username, public_key)
    nonce = challenge(username)
    verify(username, sign(private_key, hash_message(nonce)))

Per-username state lives in the challenge store:
    Unregistered -> ChallengeIssued -> Authenticated

Security considerations:
- A nonce is single-use: it is deleted atomically with a successful
  verification (read, check and delete happen under the username's lock stripe).
- A new challenge overwrites any outstanding one.
- Nonces expire after a fixed TTL; an expired nonce is treated as missing.
- A failed signature leaves the nonce in place so the client can retry;
  bounding retries is the rate limiter's job.
- Never log nonces or signatures.
"""

import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Union

import structlog

from ..config import ChatConfig
from ..core_crypto.keys import hash_message, load_public_key
from ..core_crypto.signatures import Signature, coerce_signature, verify
from ..errors import (
    ChallengeMissingError, ConflictError, NotFoundError,
    SignatureInvalidError, ValidationError
)
from ..schemas import validate_username
from ..storage.kv import InMemoryStore, KeyValueStore


logger = structlog.get_logger(__name__)


# Fixed pool of per-username locks; a username always maps to the same stripe
LOCK_STRIPES = 64


@dataclass
class Challenge:
    """Outstanding login challenge for one username."""
    username: str
    nonce: str
    issued_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class AuthenticationProtocol:
    """
    Registration, nonce issuance and challenge verification.

    Stores are injected; the composing application owns their lifecycle.

    Example:
        >>> auth = AuthenticationProtocol()
        >>> auth.register("alice", alice_keys.public_key)
        >>> nonce = auth.challenge("alice")
        >>> sig = sign(alice_keys.private_key, hash_message(nonce))
        >>> auth.verify("alice", sig)['username']
        'alice'
    """

    def __init__(self, users: Optional[KeyValueStore] = None,
                 challenges: Optional[KeyValueStore] = None,
                 config: Optional[ChatConfig] = None,
                 clock: Callable[[], float] = time.time):
        """
        Args:
            users: username -> user record store
            challenges: username -> Challenge store
            config: Nonce size and TTL
            clock: Time source (seconds since epoch)
        """
        self._users = users if users is not None else InMemoryStore()
        self._challenges = challenges if challenges is not None else InMemoryStore()
        self._config = config or ChatConfig()
        self._clock = clock
        self._locks = tuple(threading.Lock() for _ in range(LOCK_STRIPES))

    def _lock_for(self, username: str) -> threading.Lock:
        return self._locks[hash(username) % LOCK_STRIPES]

    def register(self, username: str, public_key: str) -> Dict:
        """
        Register a username with its public key.

        Args:
            username: Unique username
            public_key: Uncompressed point hex

        Returns:
            The stored user record

        Raises:
            ValidationError: If the username or key is malformed
            ConflictError: If the username is already registered
        """
        try:
            validate_username(username)
        except ValueError as e:
            raise ValidationError(str(e))
        public_key = public_key.lower() if isinstance(public_key, str) else public_key
        load_public_key(public_key)

        record = {
            'username': username,
            'public_key': public_key,
            'created_at': self._clock(),
        }
        if not self._users.put_if_absent(username, record):
            raise ConflictError()

        logger.info("user_registered", username=username)
        return dict(record)

    def get_public_key(self, username: str) -> str:
        """
        Look up a registered public key.

        Raises:
            NotFoundError: If the username is unknown
        """
        record = self._users.get(username)
        if record is None:
            raise NotFoundError()
        return record['public_key']

    def is_registered(self, username: str) -> bool:
        return username in self._users

    def challenge(self, username: str) -> str:
        """
        Issue a fresh nonce for ``username``, replacing any outstanding one.

        Returns:
            Hex nonce

        Raises:
            NotFoundError: If the username is unknown
        """
        if username not in self._users:
            raise NotFoundError()

        now = self._clock()
        nonce = secrets.token_hex(self._config.nonce_bytes)
        with self._lock_for(username):
            self._challenges.put(username, Challenge(
                username=username,
                nonce=nonce,
                issued_at=now,
                expires_at=now + self._config.nonce_ttl_seconds,
            ))

        logger.info("challenge_issued", username=username)
        return nonce

    def pending_challenge(self, username: str) -> Optional[Challenge]:
        """Outstanding challenge, if any (expired ones included)."""
        return self._challenges.get(username)

    def verify(self, username: str,
               signature: Union[Signature, Dict]) -> Dict:
        """
        Verify a signature over ``hash_message(nonce)``.

        On success the nonce is deleted; the caller should then issue
        session credentials.

        Args:
            username: Username being authenticated
            signature: Signature or ``{r, s}`` mapping

        Returns:
            The authenticated user record

        Raises:
            ValidationError: If the signature shape is malformed
            ChallengeMissingError: If there is no public key or no live nonce
            SignatureInvalidError: If the signature does not verify
        """
        sig = coerce_signature(signature)

        with self._lock_for(username):
            record = self._users.get(username)
            if record is None:
                raise ChallengeMissingError("unknown user")

            challenge = self._challenges.get(username)
            if challenge is None:
                raise ChallengeMissingError("no outstanding nonce")
            if challenge.is_expired(self._clock()):
                self._challenges.delete(username)
                logger.info("challenge_expired", username=username)
                raise ChallengeMissingError("nonce expired")

            if not verify(record['public_key'], hash_message(challenge.nonce), sig):
                logger.warning("challenge_signature_invalid", username=username)
                raise SignatureInvalidError("signature mismatch")

            self._challenges.delete(username)

        logger.info("challenge_verified", username=username)
        return dict(record)

