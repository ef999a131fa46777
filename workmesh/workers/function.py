"""
Function Worker - runs a plain callable for each assigned item.
"""
import asyncio
import inspect
from typing import Any, Callable

from ..coordination import CoordinationManager, Outcome, WorkItem, WorkerProfile
from .base import BaseWorker


class FunctionWorker(BaseWorker):
    """
    Worker backed by a handler function.

    The handler receives the WorkItem and may be sync or async. It returns an
    Outcome, a bool, or None (treated as success). Sync handlers run in the
    default executor so the run loop keeps heartbeating.
    """

    def __init__(
        self,
        profile: WorkerProfile,
        coordination_manager: CoordinationManager,
        handler: Callable[[WorkItem], Any],
        heartbeat_interval: float = 5.0,
        poll_interval: float = 0.1,
    ):
        self.handler = handler
        super().__init__(profile, coordination_manager, heartbeat_interval, poll_interval)

    async def process_item(self, item: WorkItem) -> Outcome:
        if inspect.iscoroutinefunction(self.handler):
            result = await self.handler(item)
        else:
            loop = asyncio.get_running_loop()
            result = await loop.run_in_executor(None, self.handler, item)
        return self._to_outcome(result)

    @staticmethod
    def _to_outcome(result: Any) -> Outcome:
        if isinstance(result, Outcome):
            return result
        if result is None or result is True:
            return Outcome.completed()
        if result is False:
            return Outcome.failed(detail="handler returned False")
        return Outcome.completed(detail=str(result))
