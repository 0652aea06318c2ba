"""
Chat Service Module

Transport-agnostic endpoints composing the authentication protocol,
session credentials, rate limiting, message relay and the audit log.

Every endpoint returns a response dict:

    {'success': bool, 'status': int, 'message': str, ...payload}

Protocol errors (``ChatError``) become failure responses; both
authentication failure kinds map to the same 401 response.
"""

import threading
from typing import Any, Dict, Optional

import structlog

from ..auth.challenge import AuthenticationProtocol
from ..auth.sessions import RateLimiter, SessionManager
from ..config import ChatConfig
from ..errors import (
    AuthenticationError, ChatError, NotFoundError, RateLimitError, ValidationError
)
from ..schemas import (
    ChallengeRequest, PublicKeyResponse, RefreshRequest, RegisterRequest,
    SubmitMessageRequest, VerifyRequest, dump_response, parse_request
)
from ..storage.kv import InMemoryStore, KeyValueStore
from .event_logger import EventLogger


logger = structlog.get_logger(__name__)


def _ok(status: int, message: str, **payload) -> Dict[str, Any]:
    response = {'success': True, 'status': status, 'message': message}
    response.update(payload)
    return response


def _fail(error: ChatError) -> Dict[str, Any]:
    response = {'success': False, 'status': error.status_code, 'message': error.message}
    if isinstance(error, RateLimitError):
        response['retry_after'] = error.retry_after
    return response


class ChatService:
    """
    In-process chat backend.

    Example:
        >>> service = ChatService()
        >>> service.register({'username': 'alice', 'publicKey': keys.public_key})['status']
        201
    """

    def __init__(self, config: Optional[ChatConfig] = None,
                 users: Optional[KeyValueStore] = None,
                 challenges: Optional[KeyValueStore] = None,
                 inboxes: Optional[KeyValueStore] = None,
                 audit: Optional[EventLogger] = None,
                 sessions: Optional[SessionManager] = None,
                 rate_limiter: Optional[RateLimiter] = None,
                 auth: Optional[AuthenticationProtocol] = None):
        self._config = config or ChatConfig()
        self._auth = auth or AuthenticationProtocol(users, challenges, self._config)
        self._sessions = sessions or SessionManager(self._config)
        self._rate_limiter = rate_limiter or RateLimiter.from_config(self._config)
        self._audit = audit or EventLogger()
        self._inboxes = inboxes if inboxes is not None else InMemoryStore()
        self._inbox_lock = threading.Lock()

    @property
    def audit(self) -> EventLogger:
        return self._audit

    @property
    def sessions(self) -> SessionManager:
        return self._sessions

    @property
    def auth(self) -> AuthenticationProtocol:
        return self._auth

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    def _check_rate_limit(self, identifier: str) -> None:
        locked, remaining = self._rate_limiter.is_locked_out(identifier)
        if locked:
            self._audit.log_lockout(identifier, remaining)
            raise RateLimitError(remaining)

    def _authorize(self, access_token: Optional[str]) -> str:
        username = self._sessions.verify_access(access_token)
        if username is None:
            raise AuthenticationError("invalid access token")
        return username

    # ========================================================================
    # Authentication endpoints
    # ========================================================================

    def register(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """``register(username, publicKey)`` -> 201 or 409."""
        try:
            request = parse_request(RegisterRequest, body)
            record = self._auth.register(request.username, request.public_key)
        except ChatError as e:
            return _fail(e)
        self._audit.log_register(record['username'])
        return _ok(201, "User registered successfully",
                   username=record['username'], public_key=record['public_key'])

    def challenge(self, body: Dict[str, Any],
                  client_ip: Optional[str] = None) -> Dict[str, Any]:
        """``challenge(username)`` -> ``{nonce}`` or 404."""
        try:
            request = parse_request(ChallengeRequest, body)
            self._check_rate_limit(client_ip or request.username)
            nonce = self._auth.challenge(request.username)
        except ChatError as e:
            return _fail(e)
        self._audit.log_challenge(request.username)
        return _ok(200, "Challenge issued", nonce=nonce)

    def verify(self, body: Dict[str, Any],
               client_ip: Optional[str] = None) -> Dict[str, Any]:
        """
        ``verify(username, signature{r,s})`` -> tokens, 400, 401 or 429.

        Attempts are counted against ``client_ip``. Without one they fall
        back to the target username, so anyone who knows a username can
        lock that account out for the lockout window; callers that know
        the peer address should pass it.
        """
        try:
            request = parse_request(VerifyRequest, body)
        except ValidationError as e:
            return _fail(e)

        identifier = client_ip or request.username
        try:
            self._check_rate_limit(identifier)
            self._auth.verify(request.username, request.signature.to_signature())
        except AuthenticationError as e:
            self._rate_limiter.record_attempt(identifier, False)
            self._audit.log_login(request.username, False, e.reason)
            return _fail(e)
        except ChatError as e:
            return _fail(e)

        self._rate_limiter.record_attempt(identifier, True)
        tokens = self._sessions.issue(request.username)
        self._audit.log_login(request.username, True)
        return _ok(200, "Login successful", **tokens)

    def refresh(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """Exchange a refresh token for a new access token."""
        try:
            request = parse_request(RefreshRequest, body)
            access_token = self._sessions.refresh(request.refresh_token)
        except ChatError as e:
            return _fail(e)
        username = self._sessions.verify_access(access_token)
        self._audit.log_token_refresh(username)
        return _ok(200, "Token refreshed successfully", access_token=access_token)

    def logout(self, access_token: str) -> Dict[str, Any]:
        try:
            username = self._authorize(access_token)
        except ChatError as e:
            return _fail(e)
        self._sessions.revoke(username)
        self._audit.log_logout(username)
        return _ok(200, "Logout successful")

    # ========================================================================
    # Directory and messaging endpoints
    # ========================================================================

    def get_public_key(self, username: str) -> Dict[str, Any]:
        """``getPublicKey(username)`` -> ``{username, publicKey}`` or 404."""
        try:
            public_key = self._auth.get_public_key(username)
        except NotFoundError as e:
            return _fail(e)
        response = PublicKeyResponse(username=username, public_key=public_key)
        return _ok(200, "User found", **dump_response(response))

    def submit_message(self, body: Dict[str, Any],
                       access_token: Optional[str]) -> Dict[str, Any]:
        """
        Accept an encrypted message from an authenticated sender.

        The server cannot decrypt or verify the content; it checks the
        shape, that the token owner is the declared sender, and that the
        receiver exists, then queues the message for the receiver.
        """
        try:
            username = self._authorize(access_token)
            request = parse_request(SubmitMessageRequest, body)
            if request.sender_username != username:
                raise AuthenticationError("sender does not match token owner")
            if not self._auth.is_registered(request.receiver_username):
                raise NotFoundError("Receiver not found")
        except ChatError as e:
            return _fail(e)

        stored = dump_response(request)
        with self._inbox_lock:
            inbox = self._inboxes.get(request.receiver_username) or []
            self._inboxes.put(request.receiver_username, inbox + [stored])
        logger.info("message_queued", sender=username, receiver=request.receiver_username)
        self._audit.log_message_send(username, request.receiver_username, request.hash)
        return _ok(201, "Message received", data=stored)

    def fetch_messages(self, access_token: Optional[str]) -> Dict[str, Any]:
        """Drain the caller's inbox."""
        try:
            username = self._authorize(access_token)
        except ChatError as e:
            return _fail(e)
        with self._inbox_lock:
            messages = self._inboxes.get(username) or []
            self._inboxes.delete(username)
        return _ok(200, "Messages fetched", messages=messages)
