"""
Unit tests for Authentication module.

Tests:
- Public key registration
- Nonce challenge-response (single use, TTL, atomic verification)
- Rate limiting
- Access/refresh session credentials
- Configuration
"""

import threading

import pytest

from tofuchat.auth.challenge import LOCK_STRIPES, AuthenticationProtocol
from tofuchat.auth.sessions import RateLimiter, SessionManager
from tofuchat.config import ChatConfig
from tofuchat.core_crypto.keys import generate_key_pair, hash_message
from tofuchat.core_crypto.signatures import sign
from tofuchat.errors import (
    AUTH_FAILED_MESSAGE, AuthenticationError, ChallengeMissingError,
    ConflictError, NotFoundError, SignatureInvalidError, ValidationError
)
from tofuchat.storage.kv import InMemoryStore


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start=1_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


ALICE = generate_key_pair("alice-password")
BOB = generate_key_pair("bob-password")


def answer(keys, nonce):
    return sign(keys.private_key, hash_message(nonce))


class TestRegistration:
    """Tests for public key registration."""

    def test_register_user(self):
        """Registration should store the public key."""
        auth = AuthenticationProtocol()
        record = auth.register("alice", ALICE.public_key)
        assert record['username'] == "alice"
        assert auth.get_public_key("alice") == ALICE.public_key

    def test_duplicate_username_rejected(self):
        """Second registration with the same username should conflict."""
        auth = AuthenticationProtocol()
        auth.register("alice", ALICE.public_key)
        with pytest.raises(ConflictError):
            auth.register("alice", BOB.public_key)
        assert auth.get_public_key("alice") == ALICE.public_key

    def test_invalid_username_rejected(self):
        """Usernames outside the allowed pattern should be rejected."""
        auth = AuthenticationProtocol()
        for username in ("", "ab", "has space", "x" * 33):
            with pytest.raises(ValidationError):
                auth.register(username, ALICE.public_key)

    def test_invalid_public_key_rejected(self):
        """Malformed public keys should be rejected."""
        auth = AuthenticationProtocol()
        with pytest.raises(ValidationError):
            auth.register("alice", "04" + "00" * 64)
        with pytest.raises(ValidationError):
            auth.register("alice", "not-a-key")

    def test_trailing_newline_rejected(self):
        """A trailing newline on the key or username should not be accepted."""
        auth = AuthenticationProtocol()
        with pytest.raises(ValidationError):
            auth.register("alice", ALICE.public_key + "\n")
        with pytest.raises(ValidationError):
            auth.register("alice\n", ALICE.public_key)
        with pytest.raises(NotFoundError):
            auth.get_public_key("alice")

    def test_public_key_is_normalised(self):
        """Upper-case key hex should be stored lower-case."""
        auth = AuthenticationProtocol()
        auth.register("alice", ALICE.public_key.upper())
        assert auth.get_public_key("alice") == ALICE.public_key

    def test_unknown_user_lookup(self):
        """Lookup of an unknown user should raise NotFoundError."""
        with pytest.raises(NotFoundError):
            AuthenticationProtocol().get_public_key("nobody")

    def test_injected_store(self):
        """Records should land in the injected store."""
        users = InMemoryStore()
        AuthenticationProtocol(users=users).register("alice", ALICE.public_key)
        assert "alice" in users


class TestChallengeResponse:
    """Tests for nonce challenge and verification."""

    def setup_method(self):
        self.clock = FakeClock()
        self.auth = AuthenticationProtocol(clock=self.clock)
        self.auth.register("alice", ALICE.public_key)

    def test_full_login(self):
        """Signing the nonce hash with the right key should authenticate."""
        nonce = self.auth.challenge("alice")
        record = self.auth.verify("alice", answer(ALICE, nonce))
        assert record['username'] == "alice"

    def test_nonce_format(self):
        """Nonce should be 32 random bytes as hex."""
        nonce = self.auth.challenge("alice")
        assert len(nonce) == 64
        int(nonce, 16)
        assert nonce != self.auth.challenge("alice")

    def test_challenge_unknown_user(self):
        """Challenge for an unknown user should raise NotFoundError."""
        with pytest.raises(NotFoundError):
            self.auth.challenge("nobody")

    def test_nonce_is_single_use(self):
        """Replaying a successful signature should fail."""
        nonce = self.auth.challenge("alice")
        signature = answer(ALICE, nonce)
        self.auth.verify("alice", signature)
        assert self.auth.pending_challenge("alice") is None
        with pytest.raises(ChallengeMissingError):
            self.auth.verify("alice", signature)

    def test_new_challenge_overwrites(self):
        """Answering a superseded nonce should fail."""
        old = self.auth.challenge("alice")
        self.auth.challenge("alice")
        with pytest.raises(SignatureInvalidError):
            self.auth.verify("alice", answer(ALICE, old))

    def test_wrong_key_rejected_and_nonce_kept(self):
        """Bad signature should fail and leave the nonce for a retry."""
        nonce = self.auth.challenge("alice")
        with pytest.raises(SignatureInvalidError):
            self.auth.verify("alice", answer(BOB, nonce))
        assert self.auth.pending_challenge("alice").nonce == nonce
        assert self.auth.verify("alice", answer(ALICE, nonce))['username'] == "alice"

    def test_signature_over_raw_nonce_rejected(self):
        """The signed value is hash_message(nonce), not the nonce itself."""
        nonce = self.auth.challenge("alice")
        with pytest.raises(SignatureInvalidError):
            self.auth.verify("alice", sign(ALICE.private_key, nonce))

    def test_verify_without_challenge(self):
        """Verification with no outstanding nonce should fail."""
        with pytest.raises(ChallengeMissingError):
            self.auth.verify("alice", answer(ALICE, "00" * 32))

    def test_verify_unknown_user(self):
        """Verification for an unknown user should fail as missing challenge."""
        with pytest.raises(ChallengeMissingError):
            self.auth.verify("nobody", answer(ALICE, "00" * 32))

    def test_expired_nonce(self):
        """Nonce older than the TTL should be deleted and rejected."""
        nonce = self.auth.challenge("alice")
        self.clock.advance(301)
        with pytest.raises(ChallengeMissingError):
            self.auth.verify("alice", answer(ALICE, nonce))
        assert self.auth.pending_challenge("alice") is None

    def test_nonce_valid_before_ttl(self):
        """Nonce just inside the TTL should still work."""
        nonce = self.auth.challenge("alice")
        self.clock.advance(299)
        assert self.auth.verify("alice", answer(ALICE, nonce))

    def test_malformed_signature_mapping(self):
        """Malformed {r, s} mappings should raise ValidationError."""
        self.auth.challenge("alice")
        with pytest.raises(ValidationError):
            self.auth.verify("alice", {'r': 'xyz', 's': '01'})
        with pytest.raises(ValidationError):
            self.auth.verify("alice", {'r': '01'})

    def test_failures_indistinguishable(self):
        """Both failure kinds should carry the same public message and status."""
        nonce = self.auth.challenge("alice")
        with pytest.raises(AuthenticationError) as bad_sig:
            self.auth.verify("alice", answer(BOB, nonce))
        self.auth.verify("alice", answer(ALICE, nonce))
        with pytest.raises(AuthenticationError) as missing:
            self.auth.verify("alice", answer(ALICE, nonce))

        assert bad_sig.value.message == missing.value.message == AUTH_FAILED_MESSAGE
        assert bad_sig.value.status_code == missing.value.status_code == 401

    def test_concurrent_verify_grants_once(self):
        """Concurrent verifies of the same signature should succeed exactly once."""
        nonce = self.auth.challenge("alice")
        signature = answer(ALICE, nonce)
        workers = 8
        barrier = threading.Barrier(workers)
        results = []
        results_lock = threading.Lock()

        def attempt():
            barrier.wait()
            try:
                self.auth.verify("alice", signature)
                outcome = True
            except ChallengeMissingError:
                outcome = False
            with results_lock:
                results.append(outcome)

        threads = [threading.Thread(target=attempt) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == workers
        assert results.count(True) == 1

    def test_lock_pool_bounded(self):
        """Verifies for many distinct usernames should not grow the lock pool."""
        signature = answer(ALICE, "00" * 32)
        for i in range(5000):
            with pytest.raises(ChallengeMissingError):
                self.auth.verify(f"ghost{i}", signature)
        assert len(self.auth._locks) == LOCK_STRIPES

    def test_same_username_same_lock(self):
        """A username should always map to the same lock."""
        assert self.auth._lock_for("alice") is self.auth._lock_for("alice")


class TestRateLimiter:
    """Tests for rate limiting."""

    def setup_method(self):
        self.clock = FakeClock()
        self.limiter = RateLimiter(max_attempts=3, lockout_duration=60,
                                   window_seconds=300, clock=self.clock)

    def test_not_locked_initially(self):
        """Fresh identifier should not be locked out."""
        assert self.limiter.is_locked_out("alice") == (False, 0)
        assert self.limiter.get_remaining_attempts("alice") == 3

    def test_lockout_after_max_attempts(self):
        """Lockout should trigger after max failed attempts."""
        for _ in range(3):
            self.limiter.record_attempt("alice", False)
        locked, remaining = self.limiter.is_locked_out("alice")
        assert locked
        assert 0 < remaining <= 61

    def test_remaining_attempts(self):
        """Remaining attempts should count down."""
        self.limiter.record_attempt("alice", False)
        assert self.limiter.get_remaining_attempts("alice") == 2

    def test_success_resets(self):
        """Successful attempt should clear the counter."""
        self.limiter.record_attempt("alice", False)
        self.limiter.record_attempt("alice", False)
        self.limiter.record_attempt("alice", True)
        assert self.limiter.get_remaining_attempts("alice") == 3

    def test_lockout_expires(self):
        """Lockout should end after the lockout duration."""
        for _ in range(3):
            self.limiter.record_attempt("alice", False)
        self.clock.advance(61)
        assert not self.limiter.is_locked_out("alice")[0]

    def test_identifiers_independent(self):
        """Failures for one identifier should not affect another."""
        for _ in range(3):
            self.limiter.record_attempt("alice", False)
        assert not self.limiter.is_locked_out("bob")[0]

    def test_from_config(self):
        """Limiter should pick up config limits."""
        limiter = RateLimiter.from_config(ChatConfig(max_auth_attempts=2))
        limiter.record_attempt("alice", False)
        limiter.record_attempt("alice", False)
        assert limiter.is_locked_out("alice")[0]


class TestSessionManager:
    """Tests for access/refresh credentials."""

    def setup_method(self):
        self.clock = FakeClock()
        self.sessions = SessionManager(clock=self.clock)

    def test_issue_and_verify(self):
        """Issued access token should resolve to its user."""
        tokens = self.sessions.issue("alice")
        assert self.sessions.verify_access(tokens['access_token']) == "alice"

    def test_tokens_are_opaque_and_distinct(self):
        """Access and refresh tokens should differ and not contain the username."""
        tokens = self.sessions.issue("alice")
        assert tokens['access_token'] != tokens['refresh_token']
        assert "alice" not in tokens['access_token']

    def test_unknown_token(self):
        """Unknown or empty tokens should not resolve."""
        assert self.sessions.verify_access("deadbeef") is None
        assert self.sessions.verify_access("") is None
        assert self.sessions.verify_access(None) is None

    def test_access_token_expires(self):
        """Access token should stop working after its TTL."""
        tokens = self.sessions.issue("alice")
        self.clock.advance(901)
        assert self.sessions.verify_access(tokens['access_token']) is None

    def test_refresh(self):
        """Refresh should issue a new working access token."""
        tokens = self.sessions.issue("alice")
        self.clock.advance(901)
        new_access = self.sessions.refresh(tokens['refresh_token'])
        assert new_access != tokens['access_token']
        assert self.sessions.verify_access(new_access) == "alice"
        assert self.sessions.verify_access(tokens['access_token']) is None

    def test_refresh_wrong_secret(self):
        """Refresh token with a wrong secret should be rejected."""
        tokens = self.sessions.issue("alice")
        session_id = tokens['refresh_token'].split('.')[0]
        with pytest.raises(AuthenticationError):
            self.sessions.refresh(f"{session_id}.{'0' * 64}")

    def test_refresh_hash_check_does_not_block_lookups(self):
        """Access checks should proceed while a refresh secret is being verified."""
        tokens = self.sessions.issue("alice")
        real_hasher = self.sessions._hasher
        sessions = self.sessions
        observed = []

        class ConcurrentLookupHasher:
            def verify(self, hashed, secret):
                lookup = threading.Thread(
                    target=lambda: observed.append(
                        sessions.verify_access(tokens['access_token'])))
                lookup.start()
                lookup.join(timeout=5)
                return real_hasher.verify(hashed, secret)

        sessions._hasher = ConcurrentLookupHasher()
        sessions.refresh(tokens['refresh_token'])
        assert observed == ["alice"]

    def test_refresh_after_concurrent_revoke(self):
        """A session revoked during the hash check should not be refreshed."""
        tokens = self.sessions.issue("alice")
        real_hasher = self.sessions._hasher
        sessions = self.sessions

        class RevokingHasher:
            def verify(self, hashed, secret):
                result = real_hasher.verify(hashed, secret)
                sessions.revoke("alice")
                return result

        sessions._hasher = RevokingHasher()
        with pytest.raises(AuthenticationError):
            sessions.refresh(tokens['refresh_token'])
        assert sessions.get_session("alice") is None

    def test_refresh_malformed(self):
        """Malformed refresh tokens should be rejected."""
        with pytest.raises(AuthenticationError):
            self.sessions.refresh("garbage")
        with pytest.raises(AuthenticationError):
            self.sessions.refresh("")

    def test_refresh_expired(self):
        """Refresh token should stop working after its TTL."""
        tokens = self.sessions.issue("alice")
        self.clock.advance(7 * 24 * 3600 + 1)
        with pytest.raises(AuthenticationError):
            self.sessions.refresh(tokens['refresh_token'])

    def test_revoke(self):
        """Revoked session tokens should stop working."""
        tokens = self.sessions.issue("alice")
        assert self.sessions.revoke("alice")
        assert self.sessions.verify_access(tokens['access_token']) is None
        with pytest.raises(AuthenticationError):
            self.sessions.refresh(tokens['refresh_token'])
        assert not self.sessions.revoke("alice")

    def test_new_login_replaces_session(self):
        """Issuing a new pair should invalidate the previous one."""
        first = self.sessions.issue("alice")
        second = self.sessions.issue("alice")
        assert self.sessions.verify_access(first['access_token']) is None
        assert self.sessions.verify_access(second['access_token']) == "alice"

    def test_cleanup_expired(self):
        """Expired sessions should be removed."""
        self.sessions.issue("alice")
        self.clock.advance(7 * 24 * 3600 + 1)
        self.sessions.issue("bob")
        assert self.sessions.cleanup_expired() == 1
        assert self.sessions.get_session("alice") is None
        assert self.sessions.get_session("bob") is not None


class TestConfig:
    """Tests for ChatConfig."""

    def test_defaults(self):
        """Defaults should match the documented values."""
        config = ChatConfig()
        assert config.nonce_bytes == 32
        assert config.nonce_ttl_seconds == 300
        assert config.cipher == "xor"

    def test_from_env(self):
        """TOFUCHAT_* variables should override defaults."""
        config = ChatConfig.from_env({
            'TOFUCHAT_NONCE_TTL_SECONDS': '60',
            'TOFUCHAT_CIPHER': ' AES-GCM ',
            'UNRELATED': 'x',
        })
        assert config.nonce_ttl_seconds == 60
        assert config.cipher == "aes-gcm"

    def test_from_env_bad_integer(self):
        """Non-integer values should raise ValueError."""
        with pytest.raises(ValueError):
            ChatConfig.from_env({'TOFUCHAT_NONCE_BYTES': 'lots'})

    def test_short_nonce_rejected(self):
        """Nonces under 16 bytes should be refused."""
        with pytest.raises(ValueError):
            ChatConfig(nonce_bytes=8)

    def test_unknown_cipher_rejected(self):
        """Unknown cipher names should be refused."""
        with pytest.raises(ValueError):
            ChatConfig(cipher="rot13")

    def test_nonce_size_applied(self):
        """Configured nonce size should be used."""
        auth = AuthenticationProtocol(config=ChatConfig(nonce_bytes=16))
        auth.register("alice", ALICE.public_key)
        assert len(auth.challenge("alice")) == 32
