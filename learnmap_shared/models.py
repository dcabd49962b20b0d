"""
Core data models for the LearnMap client.

This module defines the credential structures shared by the storage,
refresh and request layers.
"""

from dataclasses import dataclass
from typing import Optional, Dict
from enum import Enum


ACCESS_TOKEN_KEY = "access_token"
REFRESH_TOKEN_KEY = "refresh_token"


class StorageKind(Enum):
    """Durable credential storage backends."""
    AUTO = "auto"
    KEYRING = "keyring"
    FILE = "file"
    MEMORY = "memory"


@dataclass(frozen=True)
class CredentialPair:
    """
    Access and refresh credentials for one session.

    The pair is immutable so that replacing it is a single reference swap.
    ``refresh_token`` is None only for sessions persisted by clients that
    stored the access credential alone.
    """
    access_token: str
    refresh_token: Optional[str] = None

    def __post_init__(self):
        if not self.access_token:
            raise ValueError("Access token cannot be empty")
        if self.refresh_token is not None and not self.refresh_token:
            raise ValueError("Refresh token cannot be empty")

    def __repr__(self) -> str:
        # Credentials must never end up in logs or tracebacks
        return (f"CredentialPair(access_token=<redacted>, "
                f"refresh_token={'<redacted>' if self.refresh_token else None})")

    @classmethod
    def from_storage(cls, data: Dict[str, Optional[str]]) -> Optional['CredentialPair']:
        """Build a pair from persisted key/value data; None when no session is stored."""
        access_token = data.get(ACCESS_TOKEN_KEY)
        if not access_token:
            return None
        return cls(access_token=access_token, refresh_token=data.get(REFRESH_TOKEN_KEY) or None)
