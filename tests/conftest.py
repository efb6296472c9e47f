"""
Shared fixtures: a throwaway SQLite store, test settings and a mocked weather API.
"""

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from weather_rollup import crud, schemas
from weather_rollup.config import Settings
from weather_rollup.database import Database

IST = timezone(timedelta(minutes=330))


@pytest.fixture
def config(tmp_path):
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test_weather.db'}",
        openweather_api_key="test-key",
        openweather_url="https://weather.test/data/2.5/weather",
        job_locks_enabled=True,
    )


@pytest.fixture
async def db(config):
    """Create test database."""
    database = Database(config.sqlalchemy_url)
    await database.create_tables()
    yield database
    await database.dispose()


@pytest.fixture
def add_observation(db):
    """Insert one raw observation; returns the stored row."""

    async def _add(city, timestamp, temperature=25.0, feels_like=26.0, pressure=1008.0, humidity=60, weather="Clear"):
        obs = schemas.ObservationCreate(
            city=city,
            temperature=temperature,
            feels_like=feels_like,
            pressure=pressure,
            humidity=humidity,
            weather=weather,
            timestamp=timestamp,
        )
        async with db.session() as session:
            return await crud.create_observation(session, obs, IST)

    return _add


def openweather_payload(temp=30.0, feels_like=32.0, pressure=1006, humidity=55, label="Clear", dt=None):
    payload = {
        "coord": {"lat": 0, "lon": 0},
        "weather": [{"id": 800, "main": label, "description": label.lower()}],
        "main": {"temp": temp, "feels_like": feels_like, "pressure": pressure, "humidity": humidity},
        "name": "Somewhere",
    }
    if dt is not None:
        payload["dt"] = dt
    return payload


class WeatherAPIStub:
    """httpx.MockTransport handler answering per latitude, recording every request."""

    def __init__(self, responses=None, default=None):
        self.responses = responses or {}
        self.default = default or (lambda request: httpx.Response(200, json=openweather_payload()))
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        lat = float(request.url.params["lat"])
        handler = self.responses.get(lat, self.default)
        return handler(request)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def weather_api():
    return WeatherAPIStub()


def local_time(year, month, day, hour, minute=0):
    return datetime(year, month, day, hour, minute, tzinfo=IST)
