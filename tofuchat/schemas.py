"""Pydantic models for endpoint request bodies: register, challenge, verify, message."""

import re
from typing import Any, Dict, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .core_crypto.keys import is_hash_hex, is_valid_public_key
from .core_crypto.signatures import Signature
from .errors import ValidationError

USERNAME_RE = re.compile(r'[A-Za-z0-9_.-]{3,32}')
HEX_COMPONENT_RE = r'^[0-9a-fA-F]{1,64}$'

ModelT = TypeVar('ModelT', bound=BaseModel)


def validate_username(username: str) -> str:
    if not isinstance(username, str) or not USERNAME_RE.fullmatch(username):
        raise ValueError("username must be 3-32 characters of letters, digits, '_', '.' or '-'")
    return username


class _WireModel(BaseModel):
    # camelCase aliases are accepted alongside field names
    model_config = ConfigDict(populate_by_name=True, extra='forbid', str_strip_whitespace=True)


class SignaturePayload(_WireModel):
    """ECDSA signature as a pair of hex strings."""
    r: str = Field(pattern=HEX_COMPONENT_RE)
    s: str = Field(pattern=HEX_COMPONENT_RE)

    def to_signature(self) -> Signature:
        return Signature(self.r.lower(), self.s.lower())


class _UserRequest(_WireModel):
    username: str

    @field_validator('username')
    @classmethod
    def check_username(cls, value: str) -> str:
        return validate_username(value)


class RegisterRequest(_UserRequest):
    public_key: str = Field(alias='publicKey')

    @field_validator('public_key')
    @classmethod
    def check_public_key(cls, value: str) -> str:
        value = value.lower()
        if not is_valid_public_key(value):
            raise ValueError("publicKey must be an uncompressed secp256k1 point in hex")
        return value


class ChallengeRequest(_UserRequest):
    pass


class VerifyRequest(_UserRequest):
    signature: SignaturePayload


class RefreshRequest(_WireModel):
    refresh_token: str = Field(alias='refreshToken', min_length=1)


class SubmitMessageRequest(_WireModel):
    """Encrypted, signed message as posted by the sender."""
    sender_username: str = Field(alias='senderUsername')
    receiver_username: str = Field(alias='receiverUsername')
    ciphertext: str = Field(pattern=r'^[0-9a-fA-F]*$')
    hash: str
    signature: SignaturePayload
    timestamp: str = Field(min_length=1)

    @field_validator('hash')
    @classmethod
    def check_hash(cls, value: str) -> str:
        if not is_hash_hex(value):
            raise ValueError("hash must be 64 hex characters")
        return value.lower()


class PublicKeyResponse(_WireModel):
    username: str
    public_key: str = Field(alias='publicKey')


def parse_request(model: Type[ModelT], data: Any) -> ModelT:
    """
    Validate a request body against ``model``.

    Raises:
        ValidationError: With the first pydantic error rendered as the message
    """
    if isinstance(data, model):
        return data
    if not isinstance(data, dict):
        raise ValidationError("Request body must be an object")
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        first = e.errors()[0]
        location = '.'.join(str(part) for part in first['loc'])
        raise ValidationError(f"{location}: {first['msg']}")


def dump_response(model: BaseModel) -> Dict[str, Any]:
    """Serialize using wire (camelCase) names."""
    return model.model_dump(by_alias=True)
