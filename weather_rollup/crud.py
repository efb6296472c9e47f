import logging
from datetime import date, datetime, time, timedelta, tzinfo
from decimal import ROUND_HALF_UP, Decimal
from typing import NamedTuple, Optional, get_args

from sqlalchemy import Float, cast, delete, distinct, select, text
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import func

from weather_rollup import models, schemas

logger = logging.getLogger(__name__)

TIE_BREAK_POLICIES = get_args(schemas.TieBreakPolicy)


class LabelStat(NamedTuple):
    label: str
    count: int
    first_seen: Optional[datetime]


def day_bounds(day: date, tz: tzinfo) -> tuple[datetime, datetime]:
    """Half-open [start, end) range covering ``day`` in the local offset."""
    start = datetime.combine(day, time.min, tzinfo=tz)
    return start, start + timedelta(days=1)


def _on_day(day: date, tz: tzinfo):
    start, end = day_bounds(day, tz)
    return models.WeatherData.timestamp >= start, models.WeatherData.timestamp < end


def round_half_up(value, places: int = 2) -> Optional[float]:
    """Round halves away from zero (0.125 -> 0.13), as SQL ROUND does."""
    if value is None:
        return None
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(float(value))).quantize(quantum, rounding=ROUND_HALF_UP))


async def create_observation(db: AsyncSession, observation: schemas.ObservationCreate, tz: tzinfo):
    # naive local wall-clock digits are all SQLite keeps, so shift before storing
    values = observation.model_dump()
    values["timestamp"] = observation.timestamp.astimezone(tz)
    db_weather = models.WeatherData(**values)
    db.add(db_weather)
    await db.commit()
    await db.refresh(db_weather)
    return db_weather


async def count_observations(db: AsyncSession, day: Optional[date] = None, tz: Optional[tzinfo] = None) -> int:
    stmt = select(func.count(models.WeatherData.id))
    if day is not None:
        stmt = stmt.where(*_on_day(day, tz))
    return (await db.scalar(stmt)) or 0


async def table_overview(db: AsyncSession) -> schemas.TableOverview:
    stmt = select(
        func.min(models.WeatherData.timestamp),
        func.max(models.WeatherData.timestamp),
        func.count(models.WeatherData.id),
        func.count(distinct(models.WeatherData.city)),
    )
    earliest, latest, total, cities = (await db.execute(stmt)).one()
    return schemas.TableOverview(
        earliest_record=earliest,
        latest_record=latest,
        total_records=total or 0,
        distinct_cities=cities or 0,
    )


async def cities_for_date(db: AsyncSession, day: date, tz: tzinfo) -> list[str]:
    stmt = (
        select(models.WeatherData.city)
        .where(*_on_day(day, tz))
        .group_by(models.WeatherData.city)
        .order_by(models.WeatherData.city)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


def dominant_weather(stats: list[LabelStat], policy: schemas.TieBreakPolicy = "alphabetical") -> Optional[str]:
    """Most frequent label of the day.

    Equal counts are resolved by ``policy``: ``alphabetical`` picks the
    smallest label, ``first_observed`` the label seen earliest that day
    (then the smallest label).
    """
    if policy not in TIE_BREAK_POLICIES:
        raise ValueError(f"Unknown tie-break policy: {policy}")
    if not stats:
        return None

    if policy == "first_observed":
        best = min(stats, key=lambda s: (-s.count, s.first_seen is None, s.first_seen or datetime.min, s.label))
    else:
        best = min(stats, key=lambda s: (-s.count, s.label))
    return best.label


async def weather_label_stats(db: AsyncSession, city: str, day: date, tz: tzinfo) -> list[LabelStat]:
    stmt = (
        select(
            models.WeatherData.weather,
            func.count(models.WeatherData.id),
            func.min(models.WeatherData.timestamp),
        )
        .where(models.WeatherData.city == city, *_on_day(day, tz))
        .group_by(models.WeatherData.weather)
    )
    result = await db.execute(stmt)
    return [LabelStat(label, count, first_seen) for label, count, first_seen in result.all()]


async def summarize_city(
    db: AsyncSession,
    city: str,
    day: date,
    tz: tzinfo,
    tie_break: schemas.TieBreakPolicy = "alphabetical",
) -> Optional[schemas.DailySummaryCreate]:
    w = models.WeatherData
    stmt = select(
        func.avg(cast(w.temperature, Float)),
        func.min(w.temperature),
        func.max(w.temperature),
        func.avg(cast(w.feels_like, Float)),
        func.avg(cast(w.pressure, Float)),
        func.avg(cast(w.humidity, Float)),
        func.count(w.id),
    ).where(w.city == city, *_on_day(day, tz))
    avg_temp, min_temp, max_temp, avg_feels, avg_pressure, avg_humidity, count = (await db.execute(stmt)).one()
    if not count:
        return None

    labels = await weather_label_stats(db, city, day, tz)
    return schemas.DailySummaryCreate(
        city=city,
        date=day,
        avg_temp=round_half_up(avg_temp),
        min_temp=min_temp,
        max_temp=max_temp,
        dominant_weather=dominant_weather(labels, tie_break),
        avg_feels_like=round_half_up(avg_feels),
        avg_pressure=round_half_up(avg_pressure),
        avg_humidity=round_half_up(avg_humidity),
        record_count=count,
    )


async def save_summary(db: AsyncSession, summary: schemas.DailySummaryCreate):
    """Insert a summary, replacing one already stored for the same city and date."""
    replaced = await db.execute(
        delete(models.DailyWeatherSummary)
        .where(
            models.DailyWeatherSummary.city == summary.city,
            models.DailyWeatherSummary.date == summary.date,
        )
        .execution_options(synchronize_session=False)
    )
    if replaced.rowcount:
        logger.warning(f"Replacing existing summary for {summary.city} on {summary.date}")

    db_summary = models.DailyWeatherSummary(**summary.model_dump())
    db.add(db_summary)
    await db.commit()
    await db.refresh(db_summary)
    return db_summary


async def summaries_for_date(db: AsyncSession, day: date) -> list[schemas.DailySummaryRead]:
    stmt = (
        select(models.DailyWeatherSummary)
        .where(models.DailyWeatherSummary.date == day)
        .order_by(models.DailyWeatherSummary.city)
    )
    result = await db.execute(stmt)
    return [schemas.DailySummaryRead.model_validate(row) for row in result.scalars().all()]


async def reseed_identity(db: AsyncSession) -> Optional[int]:
    """Reset weather_data's id counter so the next id is max(id) + 1, or 1 when empty.

    Runs inside the caller's transaction. Returns the new seed, or None for
    dialects without a supported counter.
    """
    table = models.WeatherData.__tablename__
    max_id = await db.scalar(select(func.max(models.WeatherData.id)))
    seed = max_id or 0
    dialect = db.get_bind().dialect.name

    if dialect == "sqlite":
        await db.execute(
            text("UPDATE sqlite_sequence SET seq = :seed WHERE name = :table"),
            {"seed": seed, "table": table},
        )
    elif dialect == "postgresql":
        await db.execute(
            text("SELECT setval(pg_get_serial_sequence(:table, 'id'), :value, :is_called)"),
            {"table": table, "value": max_id or 1, "is_called": max_id is not None},
        )
    elif dialect == "mssql":
        await db.execute(text(f"DBCC CHECKIDENT ('{table}', RESEED, {int(seed)})"))
    else:
        logger.warning(f"Identity reseed is not supported for dialect '{dialect}'")
        return None

    return seed


async def current_identity(db: AsyncSession) -> Optional[int]:
    table = models.WeatherData.__tablename__
    dialect = db.get_bind().dialect.name

    if dialect == "sqlite":
        value = await db.scalar(text("SELECT seq FROM sqlite_sequence WHERE name = :table"), {"table": table})
    elif dialect == "postgresql":
        value = await db.scalar(
            text("SELECT pg_sequence_last_value(pg_get_serial_sequence(:table, 'id')::regclass)"),
            {"table": table},
        )
    elif dialect == "mssql":
        value = await db.scalar(text(f"SELECT IDENT_CURRENT('{table}')"))
    else:
        return None

    return None if value is None else int(value)


async def purge_date(db: AsyncSession, day: date, tz: tzinfo) -> int:
    """Delete every observation on ``day`` and reseed the id counter in one transaction."""
    try:
        to_delete = await count_observations(db, day, tz)
        logger.info(f"Will delete {to_delete} records for {day}")

        result = await db.execute(
            delete(models.WeatherData)
            .where(*_on_day(day, tz))
            .execution_options(synchronize_session=False)
        )
        seed = await reseed_identity(db)
        await db.commit()
    except Exception:
        await db.rollback()
        logger.exception(f"Transaction rolled back while purging {day}")
        raise

    logger.info(f"Deleted {result.rowcount} records and reset identity to {seed}")
    return result.rowcount
