import asyncio
import logging
import uuid
from datetime import datetime, time, timedelta, timezone, tzinfo
from typing import Awaitable, Callable, Optional

from weather_rollup.exceptions import JobAlreadyRunning

logger = logging.getLogger(__name__)


class IntervalSchedule:
    def __init__(self, seconds: float):
        self.seconds = seconds

    def next_delay(self, now: Optional[datetime] = None) -> float:
        return float(self.seconds)


class DailySchedule:
    """Fires once a day at ``at`` (wall-clock time in ``tz``)."""

    def __init__(self, at: time, tz: tzinfo = timezone.utc):
        self.at = at
        self.tz = tz

    def next_run(self, now: Optional[datetime] = None) -> datetime:
        now = (now or datetime.now(timezone.utc)).astimezone(self.tz)
        candidate = datetime.combine(now.date(), self.at, tzinfo=self.tz)
        if candidate <= now:
            candidate += timedelta(days=1)
        return candidate

    def next_delay(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        return (self.next_run(now) - now).total_seconds()


class PeriodicJob:
    def __init__(
        self,
        name: str,
        func: Callable[[], Awaitable],
        schedule,
        run_immediately: bool = False,
    ):
        self.name = name
        self.func = func
        self.schedule = schedule
        self.run_immediately = run_immediately
        self.is_running = False
        self.task: Optional[asyncio.Task] = None
        self.task_id = uuid.uuid4().hex[:8]
        self.last_run_at: Optional[datetime] = None
        self.last_error: Optional[str] = None

    async def start(self):
        if self.is_running:
            return

        self.is_running = True
        self.task = asyncio.create_task(self._run_periodically())
        logger.info(f"✅ Job {self.name} ({self.task_id}) started")

    async def stop(self):
        if not self.is_running:
            return

        self.is_running = False

        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
            self.task = None

        logger.info(f"✅ Job {self.name} ({self.task_id}) stopped")

    async def _run_periodically(self):
        if self.run_immediately:
            await self._run_safely()

        while self.is_running:
            delay = self.schedule.next_delay(datetime.now(timezone.utc))
            logger.debug(f"Job {self.name} sleeping {delay:.0f}s")
            await asyncio.sleep(delay)
            await self._run_safely()

    async def _run_safely(self):
        try:
            await self.run_once()
        except JobAlreadyRunning as e:
            logger.warning(f"⏭️  Skipping {self.name}: {e}")
        except Exception as e:
            # Failures are recorded; the next trigger is the retry
            logger.error(f"❌ Job {self.name} failed: {e}")

    async def run_once(self):
        self.last_run_at = datetime.now(timezone.utc)
        try:
            result = await self.func()
        except Exception as e:
            self.last_error = str(e)
            raise
        self.last_error = None
        return result

    def status(self) -> dict:
        return {
            "running": self.is_running,
            "task_id": self.task_id,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_error": self.last_error,
        }
