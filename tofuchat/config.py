"""
Runtime configuration.

Defaults live in module constants; ``ChatConfig.from_env`` overrides them
from ``TOFUCHAT_*`` environment variables (a ``.env`` file is honoured).
"""

import os
from dataclasses import dataclass, fields
from typing import Mapping, Optional

from dotenv import load_dotenv


# Challenge configuration
NONCE_BYTES = 32             # 256-bit nonces
MIN_NONCE_BYTES = 16
NONCE_TTL_SECONDS = 300      # 5 minutes

# Session configuration
ACCESS_TOKEN_TTL_SECONDS = 900            # 15 minutes
REFRESH_TOKEN_TTL_SECONDS = 7 * 24 * 3600  # 7 days

# Rate limiting configuration
MAX_AUTH_ATTEMPTS = 5
LOCKOUT_SECONDS = 300
ATTEMPT_WINDOW_SECONDS = 300

DEFAULT_CIPHER = "xor"
ENV_PREFIX = "TOFUCHAT_"


@dataclass(frozen=True)
class ChatConfig:
    """Tunable protocol parameters."""
    nonce_bytes: int = NONCE_BYTES
    nonce_ttl_seconds: int = NONCE_TTL_SECONDS
    access_token_ttl_seconds: int = ACCESS_TOKEN_TTL_SECONDS
    refresh_token_ttl_seconds: int = REFRESH_TOKEN_TTL_SECONDS
    max_auth_attempts: int = MAX_AUTH_ATTEMPTS
    lockout_seconds: int = LOCKOUT_SECONDS
    attempt_window_seconds: int = ATTEMPT_WINDOW_SECONDS
    cipher: str = DEFAULT_CIPHER

    def __post_init__(self):
        if self.nonce_bytes < MIN_NONCE_BYTES:
            raise ValueError(f"nonce_bytes must be at least {MIN_NONCE_BYTES}")
        for name in ("nonce_ttl_seconds", "access_token_ttl_seconds",
                     "refresh_token_ttl_seconds", "max_auth_attempts",
                     "lockout_seconds", "attempt_window_seconds"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.cipher not in ("xor", "aes-gcm"):
            raise ValueError(f"Unknown cipher: {self.cipher}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'ChatConfig':
        """
        Build a config from environment variables.

        Args:
            environ: Mapping to read from; defaults to ``os.environ``
                after loading a ``.env`` file

        Returns:
            ChatConfig with any ``TOFUCHAT_<FIELD>`` overrides applied

        Raises:
            ValueError: If a value cannot be parsed or is out of range
        """
        if environ is None:
            load_dotenv()
            environ = os.environ

        overrides = {}
        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            if f.type in (int, 'int'):
                try:
                    overrides[f.name] = int(raw)
                except ValueError:
                    raise ValueError(f"{ENV_PREFIX}{f.name.upper()} must be an integer")
            else:
                overrides[f.name] = raw.strip().lower()
        return cls(**overrides)
