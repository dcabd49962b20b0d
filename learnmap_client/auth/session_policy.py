"""
Session failure policy for the LearnMap client.

Decides what happens when no valid credential can be obtained: stored
credentials are dropped and the user is sent to the login surface, once
per failure episode.
"""

import logging
import webbrowser
from typing import Callable, Optional

from learnmap_shared.exceptions import CredentialStorageError
from learnmap_shared.interfaces import ISessionFailurePolicy
from learnmap_shared.logging_config import AuditLogger

from learnmap_client.auth.credential_store import CredentialStore

logger = logging.getLogger(__name__)


def open_login_page(login_url: str) -> None:
    """Default navigator: open the login surface in the user's browser."""
    webbrowser.open(login_url)


class SessionFailurePolicy(ISessionFailurePolicy):
    """
    Fail-closed handling of unrecoverable authentication failure.

    The first call in an episode clears credentials and navigates; further
    calls are no-ops until credentials are stored again.
    """

    def __init__(
        self,
        store: CredentialStore,
        login_url: str,
        navigator: Optional[Callable[[str], None]] = None
    ):
        self.store = store
        self.login_url = login_url
        self.navigator = navigator or open_login_page
        self._tripped = False
        self._audit = AuditLogger()

        store.add_change_callback(self._on_credentials_changed)

    def _on_credentials_changed(self, has_credentials: bool) -> None:
        if has_credentials and self._tripped:
            logger.debug("New credentials stored, session failure policy re-armed")
            self._tripped = False

    @property
    def tripped(self) -> bool:
        """Whether the current failure episode has already been handled."""
        return self._tripped

    def on_auth_failure(self) -> None:
        if self._tripped:
            logger.debug("Authentication failure already handled for this episode")
            return
        self._tripped = True

        if self.store.get() is not None:
            try:
                self.store.clear(reason="authentication failure")
            except CredentialStorageError as e:
                # Memory is already empty; the user still has to log in again
                logger.error(f"Failed to clear stored credentials: {e}")

        self._audit.log_session_terminated(self.login_url)
        try:
            self.navigator(self.login_url)
        except Exception:
            logger.exception(f"Failed to navigate to login page {self.login_url}")
            raise
