"""
Credential store for the LearnMap client.

Holds the current credential pair in memory, mirrored onto a durable
storage backend. The pair is only ever replaced as a whole.
"""

import logging
from typing import Optional, Callable, List

from learnmap_shared.exceptions import ValidationError
from learnmap_shared.interfaces import ICredentialBackend
from learnmap_shared.logging_config import AuditLogger
from learnmap_shared.models import CredentialPair

logger = logging.getLogger(__name__)


class CredentialStore:
    """
    In-memory credential cache backed by durable storage.

    ``get`` hydrates lazily from storage, ``set`` persists before updating the
    cache and ``clear`` empties both. Storage failures on ``set`` and ``clear``
    propagate as CredentialStorageError.
    """

    def __init__(self, storage: ICredentialBackend):
        self.storage = storage
        self._pair: Optional[CredentialPair] = None
        self._hydrated = False
        self._change_callbacks: List[Callable[[bool], None]] = []
        self._audit = AuditLogger()

    def add_change_callback(self, callback: Callable[[bool], None]) -> None:
        """
        Add callback for credential changes.

        Args:
            callback: Function called with True after set, False after clear
        """
        self._change_callbacks.append(callback)

    def _notify_change(self, has_credentials: bool) -> None:
        for callback in self._change_callbacks:
            try:
                callback(has_credentials)
            except Exception as e:
                logger.error(f"Error in credential change callback: {e}")

    def get(self) -> Optional[CredentialPair]:
        """
        Get the current credential pair.

        Returns:
            The cached pair, else the pair hydrated from storage, else None
        """
        if self._pair is not None:
            return self._pair
        # Storage is consulted at most once; afterwards memory is authoritative
        if self._hydrated:
            return None
        self._hydrated = True

        try:
            data = self.storage.read()
        except Exception as e:
            logger.error(f"Failed to read stored credentials: {e}")
            return None

        try:
            self._pair = CredentialPair.from_storage(data)
        except ValueError as e:
            logger.warning(f"Ignoring malformed stored credentials: {e}")
            return None

        if self._pair is not None:
            logger.debug("Credentials hydrated from storage")
        return self._pair

    def set(self, access_token: str, refresh_token: str, source: str = "login") -> CredentialPair:
        """
        Store a new credential pair.

        Args:
            access_token: New access credential
            refresh_token: Refresh credential issued with it
            source: What produced the pair, for the audit trail

        Returns:
            The stored pair

        Raises:
            ValidationError: If either credential is empty
            CredentialStorageError: If durable storage could not be written
        """
        if not isinstance(access_token, str) or not access_token:
            raise ValidationError("Access token must be a non-empty string", field_name="access_token")
        if not isinstance(refresh_token, str) or not refresh_token:
            raise ValidationError("Refresh token must be a non-empty string", field_name="refresh_token")

        pair = CredentialPair(access_token=access_token, refresh_token=refresh_token)

        # Persist first; the cache only moves once the pair is durable
        self.storage.write(access_token, refresh_token)
        self._pair = pair
        self._hydrated = True

        self._audit.log_credentials_stored(access_token, source)
        self._notify_change(True)
        return pair

    def clear(self, reason: str = "logout") -> None:
        """
        Remove credentials from memory and durable storage.

        Raises:
            CredentialStorageError: If durable storage could not be cleared
        """
        self._pair = None
        self._hydrated = True
        self.storage.delete()

        self._audit.log_credentials_cleared(reason)
        self._notify_change(False)

    def has_credentials(self) -> bool:
        return self.get() is not None
