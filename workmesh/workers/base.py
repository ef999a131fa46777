"""
Base worker class for processes that pull work from a CoordinationManager.
"""
import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Dict, Optional

from ..coordination import CoordinationManager, Outcome, WorkItem, WorkerProfile
from ..coordination.notifications import ASSIGNMENT, CANCEL, REQUEUE, Notification
from ..errors import CoordinationError

logger = logging.getLogger(__name__)


class BaseWorker(ABC):
    """
    Base class for all workers.

    A worker registers itself, heartbeats on a fixed interval, and runs one
    asyncio task per item it is assigned as primary. Cancel and requeue
    notices stop the matching task.
    """

    def __init__(
        self,
        profile: WorkerProfile,
        coordination_manager: CoordinationManager,
        heartbeat_interval: float = 5.0,
        poll_interval: float = 0.1,
    ):
        """
        Initialize the worker and register it.

        Args:
            profile: Capabilities and identity of this worker
            coordination_manager: Shared coordination manager
            heartbeat_interval: Seconds between heartbeats
            poll_interval: Seconds between notification polls
        """
        self.profile = profile
        self.worker_id = profile.worker_id
        self.coordination = coordination_manager
        self.heartbeat_interval = heartbeat_interval
        self.poll_interval = poll_interval
        self.running = False

        self.tasks: Dict[str, asyncio.Task] = {}
        self.completed = 0
        self.failed = 0
        self._last_heartbeat = 0.0

        self.coordination.register_worker(profile)

    @abstractmethod
    async def process_item(self, item: WorkItem) -> Outcome:
        """
        Do the work for one item.

        Args:
            item: The assigned work item

        Returns:
            Outcome to report back
        """
        pass

    async def on_collaboration(self, item_id: str, primary: Optional[str]) -> None:
        """Called when this worker is bound as a collaborator. No-op by default."""
        logger.debug("[%s] Collaborating on %s with %s", self.worker_id, item_id, primary)

    def report_progress(self, item_id: str, progress: float) -> None:
        """Report partial progress from inside process_item."""
        self.coordination.report_progress(self.worker_id, item_id, progress)

    def heartbeat(self) -> None:
        self.coordination.heartbeat(self.worker_id)
        self._last_heartbeat = time.monotonic()

    async def _execute(self, item_id: str) -> None:
        started = time.monotonic()
        try:
            item = self.coordination.get_work(item_id)
            self.report_progress(item_id, 0.0)
            outcome = await self.process_item(item)
        except asyncio.CancelledError:
            logger.info("[%s] Stopped work on %s", self.worker_id, item_id)
            raise
        except CoordinationError as e:
            logger.warning("[%s] Lost %s: %s", self.worker_id, item_id, e)
            return
        except Exception as e:
            logger.exception("[%s] Error processing %s", self.worker_id, item_id)
            outcome = Outcome.failed(detail=f"error: {e}", duration=time.monotonic() - started)
        finally:
            if self.tasks.get(item_id) is asyncio.current_task():
                del self.tasks[item_id]

        try:
            self.coordination.report_outcome(self.worker_id, item_id, outcome)
        except CoordinationError as e:
            logger.warning("[%s] Outcome for %s not accepted: %s", self.worker_id, item_id, e)
            return
        if outcome.success:
            self.completed += 1
        else:
            self.failed += 1
        logger.info("[%s] Finished %s (%s)", self.worker_id, item_id,
                    "ok" if outcome.success else outcome.detail)

    async def handle(self, notification: Notification) -> None:
        """Act on one notification from the coordinator."""
        item_id = notification.item_id
        if notification.kind == ASSIGNMENT:
            if notification.content.get("role") == "collaborator":
                await self.on_collaboration(item_id, notification.content.get("primary"))
            elif item_id not in self.tasks:
                logger.info("[%s] Received %s", self.worker_id, item_id)
                self.tasks[item_id] = asyncio.ensure_future(self._execute(item_id))
        elif notification.kind in (CANCEL, REQUEUE):
            task = self.tasks.pop(item_id, None)
            if task is not None:
                task.cancel()

    async def drain(self) -> int:
        """Handle every queued notification. Returns how many were handled."""
        handled = 0
        while True:
            notification = self.coordination.poll_notification(self.worker_id)
            if notification is None:
                return handled
            await self.handle(notification)
            handled += 1

    async def wait_idle(self) -> None:
        """Wait until every running item task has finished."""
        while self.tasks:
            await asyncio.gather(*list(self.tasks.values()), return_exceptions=True)

    async def run(self):
        """
        Main run loop for the worker.
        Heartbeats, polls notifications and supervises item tasks.
        """
        self.running = True
        logger.info("[%s] Worker started", self.worker_id)

        try:
            while self.running:
                if time.monotonic() - self._last_heartbeat >= self.heartbeat_interval:
                    self.heartbeat()
                await self.drain()
                await asyncio.sleep(self.poll_interval)
        finally:
            for task in list(self.tasks.values()):
                task.cancel()
            await self.wait_idle()
            logger.info("[%s] Worker stopped", self.worker_id)

    def stop(self):
        """Stop the worker gracefully."""
        self.running = False
