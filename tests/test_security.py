"""
Security tests for tofuchat.

Tests specifically for security-related scenarios:
- Invalid inputs at the service boundary
- Impersonation and replay
- Brute-force rate limiting
- Secrets kept out of logs
"""

import pytest
from structlog.testing import capture_logs

from tofuchat.client import ChatClient
from tofuchat.config import ChatConfig
from tofuchat.core_crypto.keys import generate_key_pair, hash_message
from tofuchat.core_crypto.signatures import sign
from tofuchat.errors import AUTH_FAILED_MESSAGE, AuthenticationError
from tofuchat.integration.service import ChatService
from tofuchat.main import forged_login
from tofuchat.messaging.protocol import MessageContext, MessageProtocol, MessageStatus
from tofuchat.schemas import (
    RegisterRequest, SubmitMessageRequest, VerifyRequest, parse_request
)
from tofuchat.errors import ValidationError
from tofuchat.storage.kv import InMemoryStore


ALICE = generate_key_pair("alice-password")
BOB = generate_key_pair("bob-password")


def registered_service(**kwargs):
    service = ChatService(**kwargs)
    service.register({'username': 'alice', 'publicKey': ALICE.public_key})
    service.register({'username': 'bob', 'publicKey': BOB.public_key})
    return service


def signed_answer(keys, nonce):
    return sign(keys.private_key, hash_message(nonce)).to_dict()


class TestImpersonation:
    """Bob must not be able to act as Alice."""

    def test_bob_cannot_login_as_alice(self):
        """Bob's signature over Alice's challenge should be rejected."""
        service = registered_service()
        nonce = service.challenge({'username': 'alice'})['nonce']
        response = service.verify({'username': 'alice',
                                   'signature': signed_answer(BOB, nonce)})
        assert response['status'] == 401
        assert response['message'] == AUTH_FAILED_MESSAGE
        assert 'access_token' not in response

    def test_forged_sender_not_verified(self):
        """A message signed by Bob but claiming to be from Alice should not verify."""
        proto = MessageProtocol()
        forged = proto.compose(BOB.private_key, ALICE.public_key, "send money",
                               MessageContext("alice", "alice"))
        result = proto.process(forged, ALICE.public_key, ALICE.private_key)
        assert result.status is not MessageStatus.VERIFIED

    def test_replayed_login_rejected(self):
        """A captured verify request should not work twice."""
        service = registered_service()
        nonce = service.challenge({'username': 'alice'})['nonce']
        body = {'username': 'alice', 'signature': signed_answer(ALICE, nonce)}
        assert service.verify(body)['status'] == 200
        replay = service.verify(body)
        assert replay['status'] == 401
        assert replay['message'] == AUTH_FAILED_MESSAGE

    def test_failures_look_identical(self):
        """No-challenge and bad-signature failures should produce identical responses."""
        service = registered_service()
        no_challenge = service.verify({'username': 'alice',
                                       'signature': signed_answer(ALICE, "00" * 32)})
        nonce = service.challenge({'username': 'alice'})['nonce']
        bad_signature = service.verify({'username': 'alice',
                                        'signature': signed_answer(BOB, nonce)})
        assert no_challenge == bad_signature

    def test_private_key_never_stored(self):
        """The server should only ever hold the public key."""
        users = InMemoryStore()
        service = ChatService(users=users)
        ChatClient("alice", "alice-password", service).register()
        record = users.get("alice")
        assert ALICE.private_key not in str(record)
        assert record['public_key'] == ALICE.public_key


class TestBruteForce:
    """Rate limiting of the login endpoints."""

    def test_lockout_after_failed_verifies(self):
        """Repeated failed verifies should lock the account out."""
        service = registered_service(config=ChatConfig(max_auth_attempts=3))
        nonce = service.challenge({'username': 'alice'})['nonce']
        for _ in range(3):
            response = service.verify({'username': 'alice',
                                       'signature': signed_answer(BOB, nonce)})
            assert response['status'] == 401

        locked = service.verify({'username': 'alice',
                                 'signature': signed_answer(ALICE, nonce)})
        assert locked['status'] == 429
        assert locked['retry_after'] > 0
        assert service.challenge({'username': 'alice'})['status'] == 429

    def test_lockout_is_per_identifier(self):
        """Locking one client address should not lock another."""
        service = registered_service(config=ChatConfig(max_auth_attempts=2))
        nonce = service.challenge({'username': 'alice'}, client_ip="10.0.0.1")['nonce']
        for _ in range(2):
            service.verify({'username': 'alice', 'signature': signed_answer(BOB, nonce)},
                           client_ip="10.0.0.1")

        blocked = service.verify({'username': 'alice',
                                  'signature': signed_answer(ALICE, nonce)},
                                 client_ip="10.0.0.1")
        allowed = service.verify({'username': 'alice',
                                  'signature': signed_answer(ALICE, nonce)},
                                 client_ip="10.0.0.2")
        assert blocked['status'] == 429
        assert allowed['status'] == 200

    def test_client_address_failures_do_not_lock_username(self):
        """Failures from one address should not lock the account for everyone."""
        config = ChatConfig(max_auth_attempts=2)
        service = registered_service(config=config)
        nonce = service.challenge({'username': 'alice'}, client_ip="10.0.0.9")['nonce']
        for _ in range(3):
            service.verify({'username': 'alice', 'signature': signed_answer(BOB, nonce)},
                           client_ip="10.0.0.9")

        assert service.rate_limiter.is_locked_out("10.0.0.9")[0]
        assert not service.rate_limiter.is_locked_out("alice")[0]
        assert service.rate_limiter.get_remaining_attempts("alice") == config.max_auth_attempts

    def test_forged_login_charged_to_attacker(self):
        """The demo's forged login should count against the attacker, not the victim."""
        config = ChatConfig(max_auth_attempts=3)
        service = ChatService(config)
        alice = ChatClient("alice", "alice-password", service, client_ip="10.0.0.1")
        bob = ChatClient("bob", "bob-password", service, client_ip="10.0.0.2")
        for client in (alice, bob):
            client.register()

        assert forged_login(service, "alice", bob)['status'] == 401
        assert service.rate_limiter.get_remaining_attempts("alice") == config.max_auth_attempts
        assert service.rate_limiter.get_remaining_attempts("10.0.0.1") == config.max_auth_attempts
        assert service.rate_limiter.get_remaining_attempts("10.0.0.2") == config.max_auth_attempts - 1
        alice.login()
        assert alice.is_logged_in

    def test_client_address_sent_on_login(self):
        """A client with an address should have its logins counted by address."""
        config = ChatConfig(max_auth_attempts=3)
        service = ChatService(config)
        ChatClient("alice", "alice-password", service).register()
        impostor = ChatClient("alice", "wrong-password", service, client_ip="10.0.0.7")
        with pytest.raises(AuthenticationError):
            impostor.login()
        assert service.rate_limiter.get_remaining_attempts("10.0.0.7") == config.max_auth_attempts - 1
        assert service.rate_limiter.get_remaining_attempts("alice") == config.max_auth_attempts


class TestInputValidation:
    """Malformed requests should be 400s, never crashes."""

    def test_register_bad_bodies(self):
        """Register should reject malformed bodies."""
        service = ChatService()
        bodies = [
            None,
            "alice",
            {},
            {'username': 'alice'},
            {'username': 'a', 'publicKey': ALICE.public_key},
            {'username': 'alice', 'publicKey': '04' + 'zz' * 64},
            {'username': 'alice', 'publicKey': ALICE.public_key, 'admin': True},
        ]
        for body in bodies:
            response = service.register(body)
            assert response['status'] == 400, body
            assert not response['success']

    def test_verify_bad_signatures(self):
        """Verify should reject malformed signatures before any cryptography."""
        service = registered_service()
        service.challenge({'username': 'alice'})
        for signature in ({'r': 'xyz', 's': '01'},
                          {'r': '01'},
                          {'r': '1' * 65, 's': '01'},
                          "r,s",
                          None):
            response = service.verify({'username': 'alice', 'signature': signature})
            assert response['status'] == 400, signature

    def test_out_of_range_signature_is_auth_failure(self):
        """Well-formed but out-of-range r/s should fail authentication."""
        service = registered_service()
        service.challenge({'username': 'alice'})
        response = service.verify({'username': 'alice', 'signature': {'r': '0', 's': '0'}})
        assert response['status'] == 401

    def test_unknown_user(self):
        """Challenge and key lookup for unknown users should be 404."""
        service = ChatService()
        assert service.challenge({'username': 'nobody'})['status'] == 404
        assert service.get_public_key('nobody')['status'] == 404

    def test_submit_bad_message(self):
        """Submit should reject malformed messages."""
        service = registered_service()
        nonce = service.challenge({'username': 'alice'})['nonce']
        token = service.verify({'username': 'alice',
                                'signature': signed_answer(ALICE, nonce)})['access_token']
        good = MessageProtocol().compose(ALICE.private_key, BOB.public_key, "hi",
                                         MessageContext("alice", "bob")).to_dict()

        assert service.submit_message(good, token)['status'] == 201
        for field, value in (('ciphertext', 'not hex'), ('hash', 'abc'),
                             ('signature', {'r': 'g', 's': '1'}), ('timestamp', '')):
            body = dict(good, **{field: value})
            assert service.submit_message(body, token)['status'] == 400, field
        assert service.submit_message(dict(good, receiverUsername='carol'),
                                      token)['status'] == 404

    def test_schema_aliases(self):
        """Wire models should accept camelCase and field names."""
        by_alias = parse_request(RegisterRequest, {'username': 'alice',
                                                   'publicKey': ALICE.public_key})
        by_name = parse_request(RegisterRequest, {'username': 'alice',
                                                  'public_key': ALICE.public_key})
        assert by_alias == by_name

    def test_schema_error_message(self):
        """Validation errors should name the offending field."""
        with pytest.raises(ValidationError) as excinfo:
            parse_request(VerifyRequest, {'username': 'alice',
                                          'signature': {'r': 'xyz', 's': '1'}})
        assert "signature.r" in excinfo.value.message

    def test_hash_normalised(self):
        """Upper-case hash should be accepted and lower-cased."""
        message = MessageProtocol().compose(ALICE.private_key, BOB.public_key, "hi",
                                            MessageContext("alice", "bob")).to_dict()
        message['hash'] = message['hash'].upper()
        request = parse_request(SubmitMessageRequest, message)
        assert request.hash == message['hash'].lower()


class TestSecretsNotLogged:
    """Nonces, tokens and private keys must not reach the logs."""

    def test_login_flow_logs(self):
        """Diagnostic logs should not contain secrets."""
        service = ChatService()
        alice = ChatClient("alice", "alice-password", service)
        with capture_logs() as logs:
            alice.register()
            nonce = service.challenge({'username': 'alice'})['nonce']
            alice.login()

        rendered = repr(logs)
        assert nonce not in rendered
        assert alice.access_token not in rendered
        assert alice.refresh_token.split('.')[1] not in rendered
        assert alice.keys.private_key not in rendered
