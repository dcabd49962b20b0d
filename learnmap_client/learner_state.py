"""
Learner state for the LearnMap client.

Holds what the map needs about the signed-in learner: coin balance,
available modules and per-module progress.
"""

import logging
from typing import Any, Dict, List, Optional

from learnmap_client.learning_api import ModulesAPI, ProgressAPI

logger = logging.getLogger(__name__)


class LearnerState:
    """Per-session learner data, loaded through the learning APIs."""

    def __init__(self, modules_api: ModulesAPI, progress_api: ProgressAPI):
        self.modules_api = modules_api
        self.progress_api = progress_api

        self.coins: int = 0
        self.modules: List[Dict[str, Any]] = []
        self.user_progress: Optional[List[Dict[str, Any]]] = None
        self.current_user: Optional[Dict[str, Any]] = None

    async def load_user_data(self) -> None:
        overview = await self.progress_api.get_dashboard_overview() or {}
        self.coins = int(overview.get('total_coins') or 0)
        self.current_user = overview
        logger.debug(f"Learner data loaded ({self.coins} coins)")

    async def load_modules(self) -> None:
        self.modules = await self.modules_api.get_modules() or []
        logger.debug(f"Loaded {len(self.modules)} modules")

    async def load_module_progress(self) -> None:
        self.user_progress = await self.progress_api.get_user_module_progress() or []

    async def load_all(self) -> None:
        """Load everything the map needs on startup."""
        await self.load_user_data()
        await self.load_modules()
        await self.load_module_progress()
