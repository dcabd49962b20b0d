"""
Learning and progress API wrappers for the LearnMap client.

These wrappers only format URLs and parse JSON bodies. Every request goes
through AuthenticatedClient.fetch_with_auth, which owns credential refresh
and retry; nothing here retries on its own.
"""

import json
import logging
from typing import Any, Dict, List
from urllib.parse import quote

from aiohttp import ClientError, ClientResponse

from learnmap_shared.exceptions import NetworkError, ValidationError

from learnmap_client.api_client import AuthenticatedClient

logger = logging.getLogger(__name__)


async def read_json(response: ClientResponse) -> Any:
    """Parse a successful response body as JSON; an empty body yields None."""
    try:
        body = await response.read()
    except ClientError as e:
        response.close()
        raise NetworkError(f"Failed to read response body: {e}", cause=e) from e

    if not body:
        return None

    try:
        return json.loads(body)
    except ValueError as e:
        raise ValidationError("Response body is not valid JSON", context={'status': response.status}, cause=e) from e


def _segment(value: str) -> str:
    return quote(str(value), safe='')


class ModulesAPI:
    """Learning modules and lessons."""

    def __init__(self, client: AuthenticatedClient):
        self.client = client

    async def get_modules(self) -> List[Dict[str, Any]]:
        """GET /api/learning/modules"""
        response = await self.client.fetch_with_auth('/api/learning/modules')
        return await read_json(response)

    async def get_module_lessons(self, module_id: str) -> List[Dict[str, Any]]:
        """GET /api/learning/modules/{module_id}/lessons"""
        response = await self.client.fetch_with_auth(
            f'/api/learning/modules/{_segment(module_id)}/lessons'
        )
        return await read_json(response)

    async def complete_lesson(self, lesson_id: str) -> Dict[str, Any]:
        """POST /api/learning/lessons/{lesson_id}/complete"""
        logger.info(f"Completing lesson {lesson_id}")
        response = await self.client.fetch_with_auth(
            f'/api/learning/lessons/{_segment(lesson_id)}/complete',
            method='POST'
        )
        return await read_json(response)


class ProgressAPI:
    """Dashboard and per-module progress."""

    def __init__(self, client: AuthenticatedClient):
        self.client = client

    async def get_dashboard_overview(self) -> Dict[str, Any]:
        """GET /api/dashboard/overview"""
        response = await self.client.fetch_with_auth('/api/dashboard/overview')
        return await read_json(response)

    async def get_user_module_progress(self) -> List[Dict[str, Any]]:
        """GET /api/dashboard/modules"""
        response = await self.client.fetch_with_auth('/api/dashboard/modules')
        return await read_json(response)
