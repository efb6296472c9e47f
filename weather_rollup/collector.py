import asyncio
import logging
from typing import Optional

from weather_rollup import crud, schemas
from weather_rollup.config import Settings
from weather_rollup.database import Database
from weather_rollup.exceptions import (
    ConfigurationError,
    ObservationInsertError,
    WeatherFetchError,
)
from weather_rollup.locks import job_lock
from weather_rollup.weather_client import OpenWeatherClient

logger = logging.getLogger(__name__)


class WeatherCollector:
    """Fetches current weather for every configured city and stores one row per city."""

    name = "collector"

    def __init__(self, db: Database, settings: Settings, client: Optional[OpenWeatherClient] = None):
        self.db = db
        self.settings = settings
        self.client = client

    def _get_client(self) -> OpenWeatherClient:
        if self.client is None:
            self.client = OpenWeatherClient(
                api_key=self.settings.openweather_api_key,
                base_url=self.settings.openweather_url,
                timeout=self.settings.fetch_timeout_seconds,
            )
        return self.client

    async def run(self) -> schemas.CollectionResult:
        logger.info("Starting weather data collection...")

        if not self.settings.openweather_api_key:
            logger.error("Fatal error in weather collection: OpenWeather API key not configured")
            raise ConfigurationError("OpenWeather API key not configured")

        if not self.settings.job_locks_enabled:
            return await self._collect()

        async with job_lock(self.db, self.name, "current", ttl_seconds=self.settings.collector_interval_seconds):
            return await self._collect()

    async def _collect(self) -> schemas.CollectionResult:
        cities = self.settings.cities
        observations = await self.fetch_all(cities)
        valid = [obs for obs in observations if obs is not None]
        dropped = [city.name for city, obs in zip(cities, observations) if obs is None]

        if not valid:
            logger.error("No valid weather data collected for any city")
            return schemas.CollectionResult(requested=len(cities), fetched=0, inserted=0, failed_cities=dropped)

        inserted, failed = await self.insert_all(valid)
        if failed:
            raise ObservationInsertError(failed)

        logger.info(f"🌤️  Successfully processed weather data for {inserted} cities")
        return schemas.CollectionResult(
            requested=len(cities), fetched=len(valid), inserted=inserted, failed_cities=dropped
        )

    async def fetch_all(self, cities: list[schemas.City]) -> list[Optional[schemas.ObservationCreate]]:
        semaphore = asyncio.Semaphore(max(1, self.settings.fetch_concurrency))

        async def bounded(city: schemas.City):
            async with semaphore:
                return await self._get_weather_for_city(city)

        return await asyncio.gather(*(bounded(city) for city in cities))

    async def _get_weather_for_city(self, city: schemas.City) -> Optional[schemas.ObservationCreate]:
        try:
            return await self._get_client().fetch_current(city, self.settings.local_timezone)
        except WeatherFetchError as e:
            logger.error(f"Error fetching weather data for {e}")
            return None
        except Exception as e:
            logger.exception(f"Unexpected error fetching weather data for {city.name}: {e}")
            return None

    async def insert_all(self, observations: list[schemas.ObservationCreate]) -> tuple[int, list[str]]:
        """Insert each observation in its own commit; a failed row does not undo the others."""
        inserted = 0
        failed = []

        for observation in observations:
            try:
                async with self.db.session() as session:
                    await crud.create_observation(session, observation, self.settings.local_timezone)
            except Exception as e:
                logger.error(f"Error inserting weather data for {observation.city}: {e}")
                failed.append(observation.city)
                continue
            inserted += 1
            logger.info(f"Weather data for {observation.city} inserted successfully.")

        return inserted, failed

    async def aclose(self):
        if self.client:
            await self.client.aclose()
