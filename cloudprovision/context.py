from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from cloudprovision.errors import ContextSwitchError
from cloudprovision.tools import GCloudTool

logger = logging.getLogger(__name__)


class ContextSwitcher:
    """Sets the active gcloud project before commands run against it."""

    def __init__(
        self,
        gcloud: GCloudTool,
        *,
        attempts: int = 3,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.gcloud = gcloud
        self.attempts = attempts
        self._sleep = sleep
        self.active_project: Optional[str] = None

    async def switch(self, project_id: str) -> None:
        if not project_id:
            raise ContextSwitchError(project_id, "project id is empty")

        logger.info(f"Switching gcloud project to: {project_id}")
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_exponential(min=1, max=10),
            retry=retry_if_exception_type(ContextSwitchError),
            sleep=self._sleep,
            reraise=True,
        ):
            with attempt:
                result = await self.gcloud.set_project(project_id)
                if not result.ok:
                    raise ContextSwitchError(project_id, result.diagnostics.strip() or f"exit={result.exit_code}")

        self.active_project = project_id
        logger.info(f"gcloud project switched to: {project_id}")
