import logging
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from weather_rollup import crud, schemas
from weather_rollup.config import Settings
from weather_rollup.database import Database
from weather_rollup.locks import job_lock

logger = logging.getLogger(__name__)


class DailyAggregator:
    """Rolls yesterday's observations into per-city summaries, then purges them.

    Summaries are written city by city, each in its own commit, before the
    purge transaction starts. A failure while summarising aborts the run with
    the raw rows untouched, so a later run recomputes and replaces them.
    """

    name = "aggregator"

    def __init__(self, db: Database, settings: Settings):
        self.db = db
        self.settings = settings

    def target_date(self, now: Optional[datetime] = None) -> date:
        now = now or datetime.now(timezone.utc)
        return now.astimezone(self.settings.local_timezone).date() - timedelta(days=1)

    async def run(self, now: Optional[datetime] = None) -> schemas.AggregationResult:
        target = self.target_date(now)
        local_now = (now or datetime.now(timezone.utc)).astimezone(self.settings.local_timezone)

        logger.info("=================== Aggregation Start ===================")
        logger.info(f"Current local time: {local_now.isoformat()}")
        logger.info(f"Processing data for date: {target}")

        try:
            if not self.settings.job_locks_enabled:
                return await self._aggregate(target)

            async with job_lock(
                self.db, self.name, target.isoformat(), ttl_seconds=self.settings.aggregation_lock_ttl_seconds
            ):
                return await self._aggregate(target)
        except Exception as e:
            logger.error(f"Error in daily aggregation process: {e}")
            raise
        finally:
            logger.info("=================== Aggregation End ===================")

    async def _aggregate(self, target: date) -> schemas.AggregationResult:
        tz = self.settings.local_timezone

        async with self.db.session() as session:
            overview = await crud.table_overview(session)
            logger.info(f"Current data in weather_data table: {overview.model_dump()}")
            cities = await crud.cities_for_date(session, target, tz)

        if not cities:
            logger.info(f"No data found for {target}. Stopping execution.")
            return schemas.AggregationResult(target_date=target)

        written = 0
        for city in cities:
            async with self.db.session() as session:
                summary = await crud.summarize_city(
                    session, city, target, tz, self.settings.dominant_weather_tie_break
                )
                if summary is None:
                    continue
                await crud.save_summary(session, summary)
            written += 1
            logger.info(
                f"Processed city {city}: {summary.record_count} records, "
                f"avg {summary.avg_temp}°C, mostly {summary.dominant_weather}"
            )

        async with self.db.session() as session:
            stored = await crud.summaries_for_date(session, target)
            logger.info(
                "Inserted summaries: "
                + ", ".join(f"{s.city} ({s.record_count}, {s.dominant_weather})" for s in stored)
            )

        async with self.db.session() as session:
            deleted = await crud.purge_date(session, target, tz)

        async with self.db.session() as session:
            remaining = await crud.count_observations(session)
            identity = await crud.current_identity(session)
        logger.info(f"Final database state: remaining_records={remaining}, current_identity={identity}")

        return schemas.AggregationResult(
            target_date=target,
            cities=cities,
            summaries_written=written,
            deleted=deleted,
            remaining=remaining,
            current_identity=identity,
        )
