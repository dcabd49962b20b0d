"""
Refresh coordinator for the LearnMap client.

This module exchanges the stored refresh credential for a new credential
pair and guarantees that at most one exchange is in flight at any time.
"""

import asyncio
import logging
from typing import Optional, Callable, Awaitable
from urllib.parse import urljoin

from aiohttp import ClientSession, ClientError

from learnmap_shared.exceptions import (
    RefreshFailedError, NetworkError, CredentialStorageError, ErrorCode
)
from learnmap_shared.interfaces import ISessionFailurePolicy
from learnmap_shared.logging_config import AuditLogger
from learnmap_shared.models import ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY

from learnmap_client.auth.credential_store import CredentialStore

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_PATH = "/api/auth/refresh"


class RefreshCoordinator:
    """
    Single-flight credential refresh.

    Concurrent ``refresh()`` callers share one pending exchange task. The
    slot holding that task is emptied by the task itself before it settles,
    so a call made after settlement starts a fresh exchange.
    """

    def __init__(
        self,
        store: CredentialStore,
        failure_policy: ISessionFailurePolicy,
        base_url: str,
        get_session: Callable[[], Awaitable[ClientSession]],
        refresh_path: str = DEFAULT_REFRESH_PATH
    ):
        self.store = store
        self.failure_policy = failure_policy
        self.base_url = base_url.rstrip('/') + '/'
        self.refresh_path = refresh_path
        self._get_session = get_session

        self._pending: Optional[asyncio.Task] = None
        self._audit = AuditLogger()

        # Number of exchanges actually sent to the backend
        self.exchange_count = 0

    @property
    def in_flight(self) -> bool:
        return self._pending is not None

    async def refresh(self) -> str:
        """
        Obtain a new access credential.

        Returns:
            The new access credential, already saved in the credential store

        Raises:
            RefreshFailedError: If no new credential pair could be obtained;
                the store has been cleared and the failure policy invoked
            NetworkError: If the exchange request got no response
        """
        if self._pending is None:
            self._pending = asyncio.ensure_future(self._exchange())
            self._pending.add_done_callback(self._consume_result)
        else:
            logger.debug("Joining in-flight credential refresh")

        # A cancelled waiter must not cancel the exchange its siblings wait on
        return await asyncio.shield(self._pending)

    @staticmethod
    def _consume_result(task: asyncio.Task) -> None:
        # Marks the exception retrieved even when every waiter was cancelled
        if not task.cancelled():
            task.exception()

    async def _exchange(self) -> str:
        try:
            try:
                access_token, refresh_token = await self._request_new_pair()
            except RefreshFailedError as e:
                self._fail(e)
                raise

            try:
                self.store.set(access_token, refresh_token, source="refresh")
            except CredentialStorageError as e:
                # The old pair is spent server-side and the new one is not durable
                error = RefreshFailedError(f"Refreshed credentials could not be stored: {e}", cause=e)
                self._fail(error)
                raise error from e

            self._audit.log_refresh(success=True, access_token=access_token)
            logger.info("Credential refresh successful")
            return access_token
        finally:
            self._pending = None

    async def _request_new_pair(self):
        pair = self.store.get()
        if pair is None or not pair.refresh_token:
            raise RefreshFailedError("No refresh credential available")

        url = urljoin(self.base_url, self.refresh_path.lstrip('/'))
        session = await self._get_session()
        self.exchange_count += 1

        logger.info("Refreshing access credential")
        try:
            async with session.post(url, params={'refresh_token': pair.refresh_token}) as response:
                if not 200 <= response.status < 300:
                    raise RefreshFailedError(
                        f"Refresh endpoint responded with status {response.status}",
                        status=response.status
                    )

                try:
                    body = await response.json(content_type=None)
                except ValueError as e:
                    raise RefreshFailedError("Refresh response is not valid JSON", cause=e)

        except (ClientError, asyncio.TimeoutError, OSError) as e:
            logger.warning(f"Network error during credential refresh: {e}")
            error_code = (ErrorCode.NETWORK_TIMEOUT if isinstance(e, asyncio.TimeoutError)
                          else ErrorCode.NETWORK_CONNECTION_FAILED)
            raise NetworkError(f"Credential refresh request failed: {e}",
                               error_code=error_code, cause=e) from e

        if not isinstance(body, dict):
            raise RefreshFailedError("Refresh response is not a JSON object")

        access_token = body.get(ACCESS_TOKEN_KEY)
        refresh_token = body.get(REFRESH_TOKEN_KEY)
        missing = [key for key, value in ((ACCESS_TOKEN_KEY, access_token), (REFRESH_TOKEN_KEY, refresh_token))
                   if not isinstance(value, str) or not value]
        if missing:
            raise RefreshFailedError(
                f"Refresh response missing {', '.join(missing)}",
                context={'missing_fields': missing}
            )

        return access_token, refresh_token

    def _fail(self, error: RefreshFailedError) -> None:
        """Tear the session down before any waiter observes the failure."""
        logger.warning(f"Credential refresh failed: {error.message}")
        self._audit.log_refresh(success=False, failure_reason=error.message)

        if self.store.get() is not None:
            try:
                self.store.clear(reason="refresh failed")
            except CredentialStorageError as e:
                logger.error(f"Failed to clear stored credentials after refresh failure: {e}")

        try:
            self.failure_policy.on_auth_failure()
        except Exception:
            logger.exception("Session failure policy raised while handling refresh failure")
