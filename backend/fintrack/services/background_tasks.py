"""
Background task services for session cleanup
"""
import asyncio
import logging
from typing import Dict

from .session_ledger import SessionLedger

logger = logging.getLogger(__name__)


class BackgroundTaskManager:
    """Manages periodic maintenance tasks"""

    def __init__(self, session_ledger: SessionLedger, sweep_interval_seconds: float = 3600):
        self.session_ledger = session_ledger
        self.sweep_interval_seconds = sweep_interval_seconds
        self.is_running = False
        self.tasks: Dict[str, asyncio.Task] = {}

    async def start(self):
        """Start all background tasks"""
        if self.is_running:
            return

        self.is_running = True
        logger.info("Starting background task manager")
        self.tasks['session_sweep'] = asyncio.create_task(self._session_sweep_loop())

    async def stop(self):
        """Stop all background tasks"""
        if not self.is_running:
            return

        self.is_running = False
        logger.info("Stopping background task manager")

        for task_name, task in self.tasks.items():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                logger.info(f"Cancelled task: {task_name}")

        self.tasks.clear()

    async def run_session_sweep(self) -> int:
        """One sweep; errors are logged and the next scheduled run tries again"""
        try:
            return await self.session_ledger.sweep_expired()
        except Exception as e:
            logger.error(f"Session sweep failed, will retry next run: {e}")
            return 0

    async def _session_sweep_loop(self):
        logger.info("Started session sweep loop")

        while self.is_running:
            try:
                await self.run_session_sweep()
                await asyncio.sleep(self.sweep_interval_seconds)
            except asyncio.CancelledError:
                logger.info("Session sweep loop cancelled")
                break
