import asyncio
from datetime import timedelta
import logging

from app.services.jobs import JobStateMachine

logger = logging.getLogger(__name__)


class AuthorizationExpirySweeper:
    """Fails jobs left in awaiting_auth longer than the configured window."""

    def __init__(self, jobs: JobStateMachine, max_age: timedelta, interval_seconds: float):
        self.jobs = jobs
        self.max_age = max_age
        self.interval_seconds = interval_seconds
        self._running = False

    async def start(self) -> None:
        self._running = True
        while self._running:
            await self._tick()
            await asyncio.sleep(self.interval_seconds)

    def stop(self) -> None:
        self._running = False

    async def _tick(self) -> None:
        try:
            expired = await asyncio.to_thread(self.jobs.expire_stale_authorizations, self.max_age)
        except Exception:  # noqa: BLE001
            logger.exception("Authorization expiry sweep failed")
            return
        if expired:
            logger.info("Expired %d jobs stuck in awaiting_auth", expired)
