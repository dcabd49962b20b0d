"""
Shared fixtures for the LearnMap client tests.

Provides an in-process aiohttp backend that issues and rotates credentials
the way the real service does, and helpers to assemble a request pipeline
against it.
"""

import asyncio
from typing import Dict, List, Optional, Tuple
from unittest.mock import Mock

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from learnmap_client.api_client import AuthenticatedClient
from learnmap_client.auth.credential_storage import MemoryCredentialStorage
from learnmap_client.auth.credential_store import CredentialStore
from learnmap_client.auth.session_policy import SessionFailurePolicy

REFRESH_PATH = "/api/auth/refresh"


class FakeBackend:
    """Backend stand-in with bearer auth and single-use refresh credentials."""

    def __init__(self):
        self.base_url = ""
        self.valid_tokens = {"a1"}
        self.refresh_tokens: Dict[str, Tuple[str, str]] = {
            "r1": ("a2", "r2"),
            "r2": ("a3", "r3"),
        }
        self.always_unauthorized = False

        self.refresh_calls = 0
        self.refresh_status = 200
        self.refresh_body: Optional[dict] = None
        self.refresh_delay = 0.05

        # (method, path, authorization header) of every protected request
        self.requests: List[Tuple[str, str, Optional[str]]] = []

        # Hold 401 responses until this many requests have been rejected
        self.hold_rejections_until = 0
        self.rejections = 0
        self._release_rejections = asyncio.Event()

    @property
    def login_url(self) -> str:
        return f"{self.base_url}/login"

    def requests_to(self, path: str) -> List[Tuple[str, str, Optional[str]]]:
        return [entry for entry in self.requests if entry[1] == path]

    def make_app(self) -> web.Application:
        app = web.Application(middlewares=[self.auth_middleware])
        app.router.add_post(REFRESH_PATH, self.handle_refresh)
        app.router.add_get('/x', self.handle_ok)
        app.router.add_get('/api/echo-headers', self.handle_echo_headers)
        app.router.add_get('/api/broken', self.handle_broken)
        app.router.add_get('/api/forbidden', self.handle_forbidden)
        app.router.add_get('/api/learning/modules', self.handle_modules)
        app.router.add_get('/api/learning/modules/{module_id}/lessons', self.handle_lessons)
        app.router.add_post('/api/learning/lessons/{lesson_id}/complete', self.handle_complete)
        app.router.add_get('/api/dashboard/overview', self.handle_overview)
        app.router.add_get('/api/dashboard/modules', self.handle_progress)
        return app

    @web.middleware
    async def auth_middleware(self, request, handler):
        if request.path == REFRESH_PATH:
            return await handler(request)

        authorization = request.headers.get('Authorization')
        self.requests.append((request.method, request.path, authorization))

        token = authorization[len('Bearer '):] if authorization and authorization.startswith('Bearer ') else None
        if self.always_unauthorized or token not in self.valid_tokens:
            return await self._reject()
        return await handler(request)

    async def _reject(self) -> web.Response:
        self.rejections += 1
        if self.hold_rejections_until:
            if self.rejections >= self.hold_rejections_until:
                self._release_rejections.set()
            await self._release_rejections.wait()
        return web.json_response({'detail': 'Not authenticated'}, status=401)

    async def handle_refresh(self, request):
        self.refresh_calls += 1
        await asyncio.sleep(self.refresh_delay)

        if self.refresh_status != 200:
            return web.json_response({'detail': 'Invalid refresh token'}, status=self.refresh_status)
        if self.refresh_body is not None:
            return web.json_response(self.refresh_body)

        presented = request.query.get('refresh_token')
        if presented not in self.refresh_tokens:
            return web.json_response({'detail': 'Refresh token revoked'}, status=401)

        access_token, refresh_token = self.refresh_tokens.pop(presented)
        self.valid_tokens = {access_token}
        return web.json_response({'access_token': access_token, 'refresh_token': refresh_token})

    async def handle_ok(self, request):
        return web.json_response({'ok': True})

    async def handle_echo_headers(self, request):
        return web.json_response({
            'authorization': request.headers.get('Authorization'),
            'content_type': request.headers.get('Content-Type'),
            'x_trace': request.headers.get('X-Trace'),
        })

    async def handle_broken(self, request):
        return web.json_response({'detail': 'database unavailable'}, status=500)

    async def handle_forbidden(self, request):
        return web.Response(text='forbidden for learner', status=403)

    async def handle_modules(self, request):
        return web.json_response([
            {'id': 'm1', 'title': 'Budgeting Basics'},
            {'id': 'm2', 'title': 'Saving Streets'},
        ])

    async def handle_lessons(self, request):
        module_id = request.match_info['module_id']
        return web.json_response([{'id': f'{module_id}-l1', 'module_id': module_id}])

    async def handle_complete(self, request):
        return web.json_response({
            'lesson_id': request.match_info['lesson_id'],
            'completed': True,
            'coins_awarded': 10,
        })

    async def handle_overview(self, request):
        return web.json_response({'name': 'Ada', 'total_coins': 120})

    async def handle_progress(self, request):
        return web.json_response([{'module_id': 'm1', 'progress': 0.5}])


@pytest_asyncio.fixture
async def backend():
    fake = FakeBackend()
    server = TestServer(fake.make_app())
    await server.start_server()
    fake.base_url = str(server.make_url('/')).rstrip('/')
    yield fake
    await server.close()


@pytest.fixture
def navigator():
    return Mock()


def build_pipeline(base_url: str, login_url: str, navigator, stored: Optional[dict] = None):
    """Assemble store, failure policy and client over in-memory storage."""
    storage = MemoryCredentialStorage(stored)
    store = CredentialStore(storage)
    policy = SessionFailurePolicy(store, login_url=login_url, navigator=navigator)
    client = AuthenticatedClient(base_url, store, policy, timeout=5)
    return client


@pytest_asyncio.fixture
async def make_client(backend, navigator):
    """Factory for clients against the fake backend, closed after the test."""
    clients = []

    def factory(stored: Optional[dict] = None, base_url: Optional[str] = None) -> AuthenticatedClient:
        client = build_pipeline(base_url or backend.base_url, backend.login_url, navigator, stored)
        clients.append(client)
        return client

    yield factory

    for client in clients:
        await client.close()


@pytest_asyncio.fixture
async def client(make_client):
    """Client holding the a1/r1 credential pair."""
    return make_client({'access_token': 'a1', 'refresh_token': 'r1'})
