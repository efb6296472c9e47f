import logging
from datetime import tzinfo
from typing import Optional

import httpx

from weather_rollup import schemas
from weather_rollup.exceptions import WeatherFetchError

logger = logging.getLogger(__name__)


class OpenWeatherClient:
    """Current-weather lookups against OpenWeatherMap by coordinates."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openweathermap.org/data/2.5/weather",
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.transport = transport
        self.http_client: Optional[httpx.AsyncClient] = None

    def _client(self) -> httpx.AsyncClient:
        if self.http_client is None:
            self.http_client = httpx.AsyncClient(timeout=self.timeout, transport=self.transport)
        return self.http_client

    async def fetch_current(self, city: schemas.City, tz: tzinfo) -> schemas.ObservationCreate:
        params = {"lat": city.lat, "lon": city.lon, "appid": self.api_key, "units": "metric"}

        try:
            resp = await self._client().get(self.base_url, params=params)
        except httpx.TimeoutException as e:
            raise WeatherFetchError(city.name, f"timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise WeatherFetchError(city.name, f"request failed: {e}") from e

        if not resp.is_success:
            logger.error(f"API Response for {city.name}: {resp.text[:500]}")
            raise WeatherFetchError(city.name, f"HTTP {resp.status_code}")

        try:
            return schemas.ObservationCreate.from_openweather(city.name, resp.json(), tz)
        except ValueError as e:
            # json.JSONDecodeError and pydantic.ValidationError are both ValueErrors
            raise WeatherFetchError(city.name, str(e)) from e

    async def aclose(self):
        if self.http_client:
            await self.http_client.aclose()
            self.http_client = None
