import logging
import sys
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from weather_rollup.aggregator import DailyAggregator
from weather_rollup.collector import WeatherCollector
from weather_rollup.config import settings
from weather_rollup.database import database, get_db
from weather_rollup.scheduler import DailySchedule, IntervalSchedule, PeriodicJob

logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s - %(levelname)s - %(name)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)]
)

for lib in ["sqlalchemy.engine", "sqlalchemy.pool", "sqlalchemy.orm", "asyncio", "httpx", "httpcore"]:
    logging.getLogger(lib).setLevel(logging.WARNING)
logging.getLogger("uvicorn.error").setLevel(logging.INFO)

logger = logging.getLogger("weather_rollup")

collector = WeatherCollector(database, settings)
aggregator = DailyAggregator(database, settings)

collector_job = PeriodicJob(
    "collector",
    collector.run,
    IntervalSchedule(settings.collector_interval_seconds),
    run_immediately=True,
)
aggregator_job = PeriodicJob(
    "aggregator",
    aggregator.run,
    DailySchedule(settings.aggregation_time_utc),
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting weather rollup service...")
    await database.create_tables()
    logger.info(f"Database ready ({database.dialect})")

    await collector_job.start()
    await aggregator_job.start()
    logger.info(
        f"Collecting {len(settings.cities)} cities every {settings.collector_interval_seconds}s, "
        f"aggregating daily at {settings.aggregation_time_utc} UTC"
    )

    yield

    # Shutdown
    logger.info("Stopping weather rollup service...")
    await collector_job.stop()
    await aggregator_job.stop()
    await collector.aclose()
    await database.dispose()
    logger.info("Service stopped")


app = FastAPI(
    title=settings.app_title,
    version=settings.app_version,
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
)


@app.get("/health")
async def health_check(db: AsyncSession = Depends(get_db)):
    try:
        await db.execute(text("SELECT 1"))
        db_status = "connected"
    except Exception as e:
        logger.warning(f"Health check database error: {e}")
        db_status = "unavailable"

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "database": db_status,
        "jobs": {
            collector_job.name: collector_job.status(),
            aggregator_job.name: aggregator_job.status(),
        },
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        access_log=False,
        log_level="warning"
    )
