"""
Core interfaces for the LearnMap client.

This module defines the abstract interfaces that the credential and session
components implement, so that tests and alternative front ends can substitute
their own implementations.
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional


class ICredentialBackend(ABC):
    """Interface for durable key/value storage of the credential strings."""

    @abstractmethod
    def read(self) -> Dict[str, Optional[str]]:
        """Read both credential keys; missing keys map to None. Raises CredentialStorageError when unreadable."""
        pass

    @abstractmethod
    def write(self, access_token: str, refresh_token: str) -> None:
        """Persist both credential keys, or raise CredentialStorageError."""
        pass

    @abstractmethod
    def delete(self) -> None:
        """Remove both credential keys, or raise CredentialStorageError."""
        pass


class ISessionFailurePolicy(ABC):
    """Interface for the consequence of unrecoverable authentication failure."""

    @abstractmethod
    def on_auth_failure(self) -> None:
        """Tear down session state and direct the user to log in."""
        pass
