import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError

from weather_rollup import models
from weather_rollup.database import Database
from weather_rollup.exceptions import JobAlreadyRunning

logger = logging.getLogger(__name__)


@asynccontextmanager
async def job_lock(db: Database, job_name: str, lock_key: str, ttl_seconds: int, owner: str | None = None):
    """Hold a row in job_locks for the duration of one job run.

    A lock older than ``ttl_seconds`` is treated as left behind by a crashed
    run and taken over. Raises JobAlreadyRunning when a live lock exists.
    """
    owner = owner or uuid.uuid4().hex[:8]
    now = datetime.now(timezone.utc)
    lock_filter = (models.JobLock.job_name == job_name, models.JobLock.lock_key == lock_key)

    async with db.session() as session:
        stale = await session.execute(
            delete(models.JobLock)
            .where(*lock_filter, models.JobLock.acquired_at < now - timedelta(seconds=ttl_seconds))
            .execution_options(synchronize_session=False)
        )
        if stale.rowcount:
            logger.warning(f"Took over stale lock {job_name}/{lock_key}")

        session.add(models.JobLock(job_name=job_name, lock_key=lock_key, owner=owner, acquired_at=now))
        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            raise JobAlreadyRunning(job_name, lock_key) from None

    logger.debug(f"Lock {job_name}/{lock_key} acquired by {owner}")
    try:
        yield owner
    finally:
        async with db.session() as session:
            await session.execute(
                delete(models.JobLock)
                .where(*lock_filter, models.JobLock.owner == owner)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        logger.debug(f"Lock {job_name}/{lock_key} released by {owner}")
