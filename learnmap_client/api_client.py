"""
Authenticated HTTP client for the LearnMap client.

This module is the single entry point for backend calls: it attaches the
current access credential, refreshes it once on a 401 and applies the
fail-closed session policy when no valid credential can be obtained.
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import Optional, Dict, Any, Callable
from urllib.parse import urljoin

import aiohttp
from aiohttp import ClientSession, ClientTimeout, ClientError, ClientResponse
from multidict import CIMultiDict

from learnmap_shared.exceptions import (
    NotAuthenticatedError, AuthenticationFailedError, RefreshFailedError,
    NetworkError, HttpError, ErrorCode
)
from learnmap_shared.interfaces import ISessionFailurePolicy

from learnmap_client.auth.credential_store import CredentialStore
from learnmap_client.auth.credential_storage import create_credential_storage
from learnmap_client.auth.refresh_coordinator import RefreshCoordinator, DEFAULT_REFRESH_PATH
from learnmap_client.auth.session_policy import SessionFailurePolicy

logger = logging.getLogger(__name__)

USER_AGENT = 'LearnMapClient/1.0'


class AuthenticatedClient:
    """
    HTTP client that authorizes every request with the stored credential.

    A request answered with 401 triggers one credential refresh (shared with
    any concurrent requests) and exactly one retry. Transport failures and
    other error statuses are reported to the caller and never retried.
    """

    def __init__(
        self,
        base_url: str,
        store: CredentialStore,
        failure_policy: ISessionFailurePolicy,
        timeout: float = 30.0,
        refresh_path: str = DEFAULT_REFRESH_PATH,
        coordinator: Optional[RefreshCoordinator] = None
    ):
        self.base_url = base_url.rstrip('/') + '/'
        self.store = store
        self.failure_policy = failure_policy
        self.timeout = ClientTimeout(total=timeout)
        self.coordinator = coordinator or RefreshCoordinator(
            store=store,
            failure_policy=failure_policy,
            base_url=base_url,
            get_session=self._ensure_session,
            refresh_path=refresh_path
        )

        self._session: Optional[ClientSession] = None
        self._is_offline = False
        self._last_connection_attempt: Optional[datetime] = None

        logger.info(f"Authenticated client initialized for server: {base_url}")

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _ensure_session(self) -> ClientSession:
        """Ensure HTTP session is available."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=10,
                limit_per_host=5,
                keepalive_timeout=30,
                enable_cleanup_closed=True
            )
            self._session = ClientSession(
                connector=connector,
                timeout=self.timeout,
                headers={'User-Agent': USER_AGENT}
            )
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    def is_offline(self) -> bool:
        """Whether the last request failed at the transport level."""
        return self._is_offline

    def get_last_connection_attempt(self) -> Optional[datetime]:
        return self._last_connection_attempt

    def resolve_url(self, url: str) -> str:
        """Absolute URLs pass through; paths are joined onto the base URL."""
        if url.startswith(('http://', 'https://')):
            return url
        return urljoin(self.base_url, url.lstrip('/'))

    @staticmethod
    def build_headers(access_token: str, headers: Optional[Dict[str, str]] = None) -> CIMultiDict:
        """
        Build outgoing headers.

        Caller headers may replace the default Content-Type but never the
        Authorization header.
        """
        merged = CIMultiDict({'Content-Type': 'application/json'})
        for name, value in (headers or {}).items():
            merged[name] = value
        merged['Authorization'] = f'Bearer {access_token}'
        return merged

    async def fetch_with_auth(
        self,
        url: str,
        method: str = 'GET',
        headers: Optional[Dict[str, str]] = None,
        **request_kwargs: Any
    ) -> ClientResponse:
        """
        Send an authorized request.

        Args:
            url: Absolute URL or path relative to the base URL
            method: HTTP method
            headers: Extra request headers
            **request_kwargs: Passed to ``aiohttp.ClientSession.request``
                (``json``, ``params``, ``data``...); a body must be
                re-sendable since a 401 causes one retry

        Returns:
            The unread 2xx response; the caller parses and releases it

        Raises:
            NotAuthenticatedError: No credential is stored; nothing was sent
            NetworkError: No response was received
            AuthenticationFailedError: A 401 could not be resolved by refresh
            HttpError: Any other non-2xx status, including a 401 on the retry
        """
        pair = self.store.get()
        if pair is None:
            logger.warning(f"No access credential, not sending {method} {url}")
            try:
                self.failure_policy.on_auth_failure()
            except Exception:
                logger.exception("Session failure policy raised while handling missing credentials")
            raise NotAuthenticatedError(context={'url': url})

        url = self.resolve_url(url)

        response = await self._dispatch(method, url, pair.access_token, headers, request_kwargs, attempt=1)

        if response.status == 401:
            await self._discard(response)
            logger.info(f"{method} {url} unauthorized, renewing access credential")
            access_token = await self._reauthorize(pair.access_token)
            # The retry is final; a second 401 is reported, not refreshed again
            response = await self._dispatch(method, url, access_token, headers, request_kwargs, attempt=2)

        if not 200 <= response.status < 300:
            raise await self._error_from_response(method, url, response)

        return response

    async def _reauthorize(self, rejected_token: str) -> str:
        """Get an access credential to replace one the backend rejected."""
        current = self.store.get()
        if current is not None and current.access_token != rejected_token:
            # A concurrent request already finished a refresh
            logger.debug("Access credential already renewed, reusing it")
            return current.access_token

        try:
            return await self.coordinator.refresh()
        except RefreshFailedError as e:
            raise AuthenticationFailedError(cause=e) from e

    async def _dispatch(
        self,
        method: str,
        url: str,
        access_token: str,
        headers: Optional[Dict[str, str]],
        request_kwargs: Dict[str, Any],
        attempt: int
    ) -> ClientResponse:
        session = await self._ensure_session()
        logger.debug(f"Making {method} request to {url} (attempt {attempt})")

        try:
            response = await session.request(
                method,
                url,
                headers=self.build_headers(access_token, headers),
                **request_kwargs
            )
        except (ClientError, asyncio.TimeoutError, OSError) as e:
            self._is_offline = True
            self._last_connection_attempt = datetime.now()
            logger.warning(f"Network error on {method} {url}: {e}")
            error_code = (ErrorCode.NETWORK_TIMEOUT if isinstance(e, asyncio.TimeoutError)
                          else ErrorCode.NETWORK_CONNECTION_FAILED)
            raise NetworkError(
                f"{method} {url} failed: {e}",
                error_code=error_code,
                context={'url': url, 'attempt': attempt},
                cause=e
            ) from e

        self._is_offline = False
        self._last_connection_attempt = datetime.now()
        return response

    @staticmethod
    async def _discard(response: ClientResponse) -> None:
        """Drain an unwanted response so its connection returns to the pool."""
        try:
            await response.read()
        except ClientError:
            response.close()

    async def _error_from_response(self, method: str, url: str, response: ClientResponse) -> HttpError:
        """Turn a non-2xx response into an HttpError, releasing the response."""
        detail = await self._get_error_detail(response)

        logger.warning(f"{method} {url} failed with status {response.status}")
        return HttpError(
            response.status,
            message=f"{method} {url} failed with status {response.status}",
            detail=detail,
            context={'url': url}
        )

    @staticmethod
    async def _get_error_detail(response: ClientResponse) -> Optional[str]:
        """Extract error information from response."""
        try:
            text = await response.text()
        except (ClientError, UnicodeDecodeError) as e:
            logger.debug(f"Could not read error body: {e}")
            response.close()
            return None

        try:
            body = json.loads(text)
        except ValueError:
            return text or None

        if isinstance(body, dict) and 'detail' in body:
            return str(body['detail'])
        return text or None


def create_client(
    config,
    navigator: Optional[Callable[[str], None]] = None
) -> AuthenticatedClient:
    """
    Assemble the request pipeline from configuration.

    Args:
        config: ClientConfiguration instance
        navigator: Callable taking the login URL; defaults to opening a browser

    Returns:
        AuthenticatedClient sharing one store, coordinator and failure policy
    """
    storage = create_credential_storage(
        kind=config.get_storage_kind().value,
        service_name=config.get_service_name(),
        token_file=config.get_token_file()
    )
    store = CredentialStore(storage)
    policy = SessionFailurePolicy(store, login_url=config.get_login_url(), navigator=navigator)

    return AuthenticatedClient(
        base_url=config.get_server_url(),
        store=store,
        failure_policy=policy,
        timeout=config.get_server_timeout(),
        refresh_path=config.get_refresh_path()
    )
