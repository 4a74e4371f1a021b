"""Action Scheduler - Background worker for async transition actions

Supports multi-server deployment with distributed locking via MongoDB.
Handles:
- Async (and deferred) transition actions from the action outbox
- Recovery of history rows staged on a case but never materialised
"""
import asyncio
import os
import socket
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config.settings import settings
from ..engine.action_executor import ActionOutboxProcessor, shutdown_action_pool
from ..utils.logger import get_logger, set_correlation_id
from ..utils.idgen import generate_correlation_id, generate_id

logger = get_logger(__name__)


class ActionScheduler:
    """
    APScheduler worker for the action outbox

    Each server runs its own instance; outbox entries are locked before
    processing so only one server runs each entry.
    """

    def __init__(self, processor: Optional[ActionOutboxProcessor] = None):
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._server_id = self._generate_server_id()
        self.processor = processor or ActionOutboxProcessor(worker_id=self._server_id)
        self._is_running = False

    def _generate_server_id(self) -> str:
        """Generate unique server identifier for distributed locking"""
        hostname = socket.gethostname()
        pid = os.getpid()
        unique = generate_id()[:8]
        return f"{hostname}-{pid}-{unique}"

    def start(self) -> None:
        """Start the scheduler"""
        if self._is_running:
            logger.warning("Scheduler already running")
            return

        self.scheduler = AsyncIOScheduler()

        self.scheduler.add_job(
            self._process_actions,
            trigger=IntervalTrigger(seconds=settings.action_worker_interval_seconds),
            id="process_action_outbox",
            name="Process async transition actions",
            replace_existing=True,
            max_instances=1
        )

        # History rows and async actions staged by a transition a crash interrupted
        self.scheduler.add_job(
            self._recover_history,
            trigger=IntervalTrigger(minutes=5),
            id="recover_pending_history",
            name="Recover staged history rows and async actions",
            replace_existing=True,
            max_instances=1
        )

        self.scheduler.start()
        self._is_running = True
        logger.info(
            f"Action scheduler started on {self._server_id} "
            f"(interval {settings.action_worker_interval_seconds}s)"
        )

    def stop(self) -> None:
        """Stop the scheduler"""
        if self.scheduler:
            self.scheduler.shutdown(wait=False)
            self._is_running = False
            logger.info("Action scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._is_running

    async def _process_actions(self) -> None:
        set_correlation_id(generate_correlation_id())
        try:
            await asyncio.to_thread(self.processor.process_pending)
        except Exception as e:
            logger.error(f"Error in action outbox job: {e}", exc_info=True)

    async def _recover_history(self) -> None:
        set_correlation_id(generate_correlation_id())
        try:
            await asyncio.to_thread(self.processor.recover_pending_history)
            await asyncio.to_thread(self.processor.recover_pending_actions)
        except Exception as e:
            logger.error(f"Error in history recovery job: {e}", exc_info=True)


# Global scheduler instance
_scheduler: Optional[ActionScheduler] = None


def get_scheduler() -> ActionScheduler:
    """Get or create scheduler instance"""
    global _scheduler
    if _scheduler is None:
        _scheduler = ActionScheduler()
    return _scheduler


def start_scheduler() -> None:
    """Start the global scheduler"""
    get_scheduler().start()


def stop_scheduler() -> None:
    """Stop the global scheduler"""
    global _scheduler
    if _scheduler:
        _scheduler.stop()
        _scheduler = None
    shutdown_action_pool()
