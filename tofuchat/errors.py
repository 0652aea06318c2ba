"""
Error taxonomy for tofuchat.

Protocol components raise these; the service layer turns them into
response dicts using ``status_code`` and ``message``. Authentication
failures share one public message so a caller cannot tell which check
failed.
"""

from typing import Optional


AUTH_FAILED_MESSAGE = "Authentication failed"


class ChatError(Exception):
    """Base class for all tofuchat errors."""

    status_code = 500
    default_message = "Internal error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(ChatError):
    """Malformed request shape or key material."""
    status_code = 400
    default_message = "Invalid request"


class NotFoundError(ChatError):
    """Unknown username or contact."""
    status_code = 404
    default_message = "User not found"


class ConflictError(ChatError):
    """Duplicate registration."""
    status_code = 409
    default_message = "User with this username already exists"


class AuthenticationError(ChatError):
    """
    Authentication failure.

    Subclasses keep the same public message and status so the response
    does not reveal whether the nonce or the signature was at fault.
    """
    status_code = 401
    default_message = AUTH_FAILED_MESSAGE

    def __init__(self, reason: Optional[str] = None):
        super().__init__(AUTH_FAILED_MESSAGE)
        # Internal detail, for logs only
        self.reason = reason


class ChallengeMissingError(AuthenticationError):
    """No outstanding (or live) nonce, or no public key, for the username."""


class SignatureInvalidError(AuthenticationError):
    """Signature did not verify against the expected hash and key."""


class RateLimitError(ChatError):
    """Too many failed attempts for an identifier."""
    status_code = 429
    default_message = "Too many attempts"

    def __init__(self, retry_after: int = 0):
        super().__init__(f"Too many attempts. Try again in {retry_after} seconds.")
        self.retry_after = retry_after


class DecryptionError(ChatError):
    """Ciphertext could not be decoded or authenticated."""
    status_code = 400
    default_message = "Unable to decrypt message"


class IntegrityMismatchError(ChatError):
    """Recomputed payload hash disagrees with the transmitted one."""
    status_code = 400
    default_message = "Message hash mismatch"


class KeyDerivationError(ChatError, ValueError):
    """Password reduced to an unusable private scalar."""
    status_code = 400
    default_message = "Password does not yield a valid private key"
