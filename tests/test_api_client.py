"""
Tests for the authenticated request pipeline.

Runs the client against the in-process backend from conftest and checks
credential attachment, refresh on 401, single-flight refresh under
concurrency and the fail-closed session policy.
"""

import asyncio

import pytest
from aiohttp.test_utils import unused_port

from learnmap_client.api_client import AuthenticatedClient
from learnmap_shared.exceptions import (
    AuthenticationFailedError, ErrorCode, HttpError, NetworkError,
    NotAuthenticatedError, RefreshFailedError
)
from learnmap_shared.models import CredentialPair


class TestFetchWithAuth:
    """Basic request flow."""

    @pytest.mark.asyncio
    async def test_no_credentials_fails_without_request(self, make_client, backend, navigator):
        """An empty store never reaches the network."""
        client = make_client()

        with pytest.raises(NotAuthenticatedError):
            await client.fetch_with_auth('/x')

        assert backend.requests == []
        assert backend.refresh_calls == 0
        navigator.assert_called_once_with(backend.login_url)

    @pytest.mark.asyncio
    async def test_no_credentials_with_failing_navigator(self, make_client, backend, navigator):
        """A broken login navigation still surfaces as NotAuthenticatedError."""
        navigator.side_effect = RuntimeError("no browser")
        client = make_client()

        with pytest.raises(NotAuthenticatedError):
            await client.fetch_with_auth('/x')

        assert backend.requests == []
        navigator.assert_called_once_with(backend.login_url)

    @pytest.mark.asyncio
    async def test_valid_credential(self, client, backend, navigator):
        response = await client.fetch_with_auth('/x')

        assert response.status == 200
        assert await response.json() == {'ok': True}
        assert backend.requests == [('GET', '/x', 'Bearer a1')]
        assert backend.refresh_calls == 0
        navigator.assert_not_called()

    @pytest.mark.asyncio
    async def test_refresh_on_401_and_retry(self, client, backend, navigator):
        """A stale credential is refreshed once and the request retried."""
        backend.valid_tokens = set()

        response = await client.fetch_with_auth('/x')

        assert response.status == 200
        assert backend.requests_to('/x') == [
            ('GET', '/x', 'Bearer a1'),
            ('GET', '/x', 'Bearer a2'),
        ]
        assert backend.refresh_calls == 1
        assert client.store.get() == CredentialPair('a2', 'r2')
        navigator.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_refresh_credential(self, make_client, backend, navigator):
        """Without a refresh credential a 401 ends the session."""
        client = make_client({'access_token': 'a1'})
        backend.valid_tokens = set()

        with pytest.raises(AuthenticationFailedError) as exc_info:
            await client.fetch_with_auth('/x')

        assert isinstance(exc_info.value.__cause__, RefreshFailedError)
        assert backend.refresh_calls == 0
        assert client.store.get() is None
        navigator.assert_called_once_with(backend.login_url)

    @pytest.mark.asyncio
    async def test_absolute_url(self, client, backend):
        response = await client.fetch_with_auth(f'{backend.base_url}/x')
        assert response.status == 200

    @pytest.mark.asyncio
    async def test_json_body_and_method(self, client, backend):
        response = await client.fetch_with_auth(
            '/api/learning/lessons/l1/complete', method='POST', json={'score': 3}
        )

        assert (await response.json())['completed'] is True
        assert backend.requests == [('POST', '/api/learning/lessons/l1/complete', 'Bearer a1')]


class TestHeaders:
    """Header merging."""

    @pytest.mark.asyncio
    async def test_default_and_caller_headers(self, client):
        response = await client.fetch_with_auth('/api/echo-headers', headers={'X-Trace': 't-1'})
        body = await response.json()

        assert body == {
            'authorization': 'Bearer a1',
            'content_type': 'application/json',
            'x_trace': 't-1',
        }

    @pytest.mark.asyncio
    async def test_caller_cannot_override_authorization(self, client):
        response = await client.fetch_with_auth(
            '/api/echo-headers',
            headers={'authorization': 'Bearer forged', 'Content-Type': 'text/plain'}
        )
        body = await response.json()

        assert body['authorization'] == 'Bearer a1'
        assert body['content_type'] == 'text/plain'

    def test_build_headers_is_case_insensitive(self):
        headers = AuthenticatedClient.build_headers('a1', {'content-type': 'text/csv'})

        assert headers['Content-Type'] == 'text/csv'
        assert len(headers.getall('Content-Type')) == 1
        assert headers['authorization'] == 'Bearer a1'


class TestErrorResponses:
    """Non-2xx statuses other than a first 401."""

    @pytest.mark.asyncio
    async def test_server_error_is_not_retried(self, client, backend, navigator):
        with pytest.raises(HttpError) as exc_info:
            await client.fetch_with_auth('/api/broken')

        error = exc_info.value
        assert error.status == 500
        assert error.detail == 'database unavailable'
        assert error.error_code == ErrorCode.HTTP_SERVER_ERROR
        assert len(backend.requests_to('/api/broken')) == 1
        assert backend.refresh_calls == 0
        navigator.assert_not_called()

    @pytest.mark.asyncio
    async def test_forbidden_with_text_body(self, client, backend):
        with pytest.raises(HttpError) as exc_info:
            await client.fetch_with_auth('/api/forbidden')

        assert exc_info.value.status == 403
        assert exc_info.value.detail == 'forbidden for learner'
        assert exc_info.value.error_code == ErrorCode.HTTP_CLIENT_ERROR
        assert client.store.get() == CredentialPair('a1', 'r1')

    @pytest.mark.asyncio
    async def test_second_401_is_terminal(self, client, backend, navigator):
        """A retry that is still unauthorized is reported, not refreshed again."""
        backend.always_unauthorized = True

        with pytest.raises(HttpError) as exc_info:
            await client.fetch_with_auth('/x')

        assert exc_info.value.status == 401
        assert exc_info.value.error_code == ErrorCode.HTTP_UNAUTHORIZED
        assert len(backend.requests_to('/x')) == 2
        assert backend.refresh_calls == 1
        assert client.store.get() == CredentialPair('a2', 'r2')
        navigator.assert_not_called()

    @pytest.mark.asyncio
    async def test_rejected_refresh(self, client, backend, navigator):
        backend.valid_tokens = set()
        backend.refresh_status = 400

        with pytest.raises(AuthenticationFailedError) as exc_info:
            await client.fetch_with_auth('/x')

        assert exc_info.value.__cause__.status == 400
        assert client.store.get() is None
        assert len(backend.requests_to('/x')) == 1
        navigator.assert_called_once_with(backend.login_url)


class TestNetworkErrors:
    """Transport failures."""

    @pytest.mark.asyncio
    async def test_unreachable_backend(self, make_client, navigator):
        client = make_client(
            {'access_token': 'a1', 'refresh_token': 'r1'},
            base_url=f'http://127.0.0.1:{unused_port()}'
        )

        with pytest.raises(NetworkError) as exc_info:
            await client.fetch_with_auth('/x')

        assert exc_info.value.error_code == ErrorCode.NETWORK_CONNECTION_FAILED
        assert client.is_offline() is True
        assert client.get_last_connection_attempt() is not None
        assert client.store.get() == CredentialPair('a1', 'r1')
        assert client.coordinator.exchange_count == 0
        navigator.assert_not_called()

    @pytest.mark.asyncio
    async def test_recovers_online_flag(self, client):
        await client.fetch_with_auth('/x')
        assert client.is_offline() is False


class TestConcurrentRefresh:
    """Requests rejected together share one refresh."""

    @pytest.mark.asyncio
    async def test_two_concurrent_401s_share_refresh(self, client, backend, navigator):
        backend.valid_tokens = set()
        backend.hold_rejections_until = 2

        first, second = await asyncio.gather(
            client.fetch_with_auth('/x'),
            client.fetch_with_auth('/x'),
        )

        assert first.status == 200
        assert second.status == 200
        assert backend.refresh_calls == 1
        retries = [entry for entry in backend.requests_to('/x') if entry[2] == 'Bearer a2']
        assert len(retries) == 2
        navigator.assert_not_called()

    @pytest.mark.asyncio
    async def test_many_concurrent_401s_share_refresh(self, client, backend):
        backend.valid_tokens = set()
        backend.hold_rejections_until = 5

        responses = await asyncio.gather(*(client.fetch_with_auth('/x') for _ in range(5)))

        assert [response.status for response in responses] == [200] * 5
        assert backend.refresh_calls == 1
        assert client.coordinator.exchange_count == 1
        assert sorted(entry[2] for entry in backend.requests_to('/x')) == ['Bearer a1'] * 5 + ['Bearer a2'] * 5
        assert client.store.get() == CredentialPair('a2', 'r2')

    @pytest.mark.asyncio
    async def test_concurrent_refresh_failure_navigates_once(self, client, backend, navigator):
        backend.valid_tokens = set()
        backend.refresh_status = 400
        backend.hold_rejections_until = 3

        results = await asyncio.gather(
            *(client.fetch_with_auth('/x') for _ in range(3)),
            return_exceptions=True
        )

        assert all(isinstance(result, AuthenticationFailedError) for result in results)
        assert backend.refresh_calls == 1
        assert client.store.get() is None
        navigator.assert_called_once_with(backend.login_url)

    @pytest.mark.asyncio
    async def test_late_401_reuses_renewed_credential(self, client, backend):
        """A 401 for a credential already replaced does not refresh again."""
        backend.valid_tokens = set()
        await client.fetch_with_auth('/x')

        # Simulate a request that was sent with a1 before the refresh finished
        token = await client._reauthorize('a1')

        assert token == 'a2'
        assert backend.refresh_calls == 1

    @pytest.mark.asyncio
    async def test_sequential_refreshes_rotate(self, client, backend):
        """After a refresh settles the next 401 starts a new exchange."""
        backend.valid_tokens = set()
        await client.fetch_with_auth('/x')

        backend.valid_tokens = set()
        await client.fetch_with_auth('/x')

        assert backend.refresh_calls == 2
        assert client.store.get() == CredentialPair('a3', 'r3')


class TestSessionEpisodes:
    """Re-login after a terminated session."""

    @pytest.mark.asyncio
    async def test_login_rearms_policy(self, make_client, backend, navigator):
        client = make_client()

        with pytest.raises(NotAuthenticatedError):
            await client.fetch_with_auth('/x')
        with pytest.raises(NotAuthenticatedError):
            await client.fetch_with_auth('/x')
        assert navigator.call_count == 1

        client.store.set('a1', 'r1')
        response = await client.fetch_with_auth('/x')
        assert response.status == 200

        client.store.clear()
        with pytest.raises(NotAuthenticatedError):
            await client.fetch_with_auth('/x')
        assert navigator.call_count == 2
