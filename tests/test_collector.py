"""
Tests for the collector job: fan-out fetch, partial failures and insert semantics.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy import select

from conftest import IST, openweather_payload
from weather_rollup import crud, models
from weather_rollup.collector import WeatherCollector
from weather_rollup.exceptions import ConfigurationError, JobAlreadyRunning, ObservationInsertError
from weather_rollup.locks import job_lock
from weather_rollup.schemas import ObservationCreate
from weather_rollup.weather_client import OpenWeatherClient


def _collector(db, config, weather_api):
    client = OpenWeatherClient(
        api_key=config.openweather_api_key,
        base_url=config.openweather_url,
        timeout=config.fetch_timeout_seconds,
        transport=weather_api.transport(),
    )
    return WeatherCollector(db, config, client=client)


async def _rows(db):
    async with db.session() as session:
        result = await session.execute(select(models.WeatherData).order_by(models.WeatherData.id))
        return result.scalars().all()


@pytest.mark.asyncio
async def test_collects_every_city(db, config, weather_api):
    collector = _collector(db, config, weather_api)

    result = await collector.run()
    await collector.aclose()

    assert result.requested == 6
    assert result.inserted == 6
    assert len(weather_api.requests) == 6
    assert sorted(row.city for row in await _rows(db)) == sorted(c.name for c in config.cities)


@pytest.mark.asyncio
async def test_request_parameters(db, config, weather_api):
    config.cities = config.cities[:1]
    collector = _collector(db, config, weather_api)

    await collector.run()
    await collector.aclose()

    [request] = weather_api.requests
    assert request.url.params["lat"] == "28.7041"
    assert request.url.params["lon"] == "77.1025"
    assert request.url.params["appid"] == "test-key"
    assert request.url.params["units"] == "metric"


@pytest.mark.asyncio
async def test_partial_failures_are_dropped(db, config, weather_api):
    def timeout(request):
        raise httpx.ReadTimeout("timed out", request=request)

    odd_dt = openweather_payload()
    odd_dt["dt"] = "yesterday"

    weather_api.responses = {
        28.7041: timeout,  # Delhi
        19.0760: lambda request: httpx.Response(200, json={"weather": [], "cod": 200}),  # Mumbai
        13.0827: lambda request: httpx.Response(  # Chennai
            200, json={**openweather_payload(), "weather": {"main": "Rain"}}
        ),
        12.9716: lambda request: httpx.Response(200, json=odd_dt),  # Bangalore
    }
    collector = _collector(db, config, weather_api)

    result = await collector.run()
    await collector.aclose()

    assert result.fetched == 3
    assert result.inserted == 3
    assert sorted(result.failed_cities) == ["Chennai", "Delhi", "Mumbai"]
    cities = {row.city for row in await _rows(db)}
    assert cities == {"Bangalore", "Kolkata", "Hyderabad"}


@pytest.mark.asyncio
async def test_unexpected_client_error_drops_only_that_city(db, config):
    class BrokenClient:
        async def fetch_current(self, city, tz):
            if city.name == "Kolkata":
                raise KeyError(0)
            return ObservationCreate.from_openweather(city.name, openweather_payload(), tz)

        async def aclose(self):
            pass

    collector = WeatherCollector(db, config, client=BrokenClient())

    result = await collector.run()

    assert result.inserted == 5
    assert result.failed_cities == ["Kolkata"]
    assert "Kolkata" not in {row.city for row in await _rows(db)}


@pytest.mark.asyncio
async def test_error_status_is_a_failed_fetch(db, config, weather_api):
    weather_api.default = lambda request: httpx.Response(401, json={"cod": 401, "message": "Invalid API key"})
    collector = _collector(db, config, weather_api)

    result = await collector.run()
    await collector.aclose()

    assert result.fetched == 0
    assert result.inserted == 0
    assert await _rows(db) == []


@pytest.mark.asyncio
async def test_missing_api_key_fails_before_fetching(db, config, weather_api):
    config.openweather_api_key = ""
    collector = _collector(db, config, weather_api)

    with pytest.raises(ConfigurationError):
        await collector.run()

    assert weather_api.requests == []
    assert await _rows(db) == []


@pytest.mark.asyncio
async def test_insert_failure_keeps_other_rows(db, config, weather_api, monkeypatch):
    create_observation = crud.create_observation

    async def flaky_create(session, observation, tz):
        if observation.city == "Kolkata":
            raise RuntimeError("constraint violated")
        return await create_observation(session, observation, tz)

    monkeypatch.setattr(crud, "create_observation", flaky_create)
    collector = _collector(db, config, weather_api)

    with pytest.raises(ObservationInsertError) as exc_info:
        await collector.run()
    await collector.aclose()

    assert exc_info.value.failed_cities == ["Kolkata"]
    assert len(await _rows(db)) == 5


@pytest.mark.asyncio
async def test_timestamp_is_fetch_time_in_local_offset(db, config, weather_api):
    stale = datetime(2026, 10, 17, 20, 0, tzinfo=timezone.utc)
    weather_api.default = lambda request: httpx.Response(
        200, json=openweather_payload(label="Rain", dt=int(stale.timestamp()))
    )
    config.cities = config.cities[:1]
    collector = _collector(db, config, weather_api)

    before = datetime.now(IST).replace(tzinfo=None)
    await collector.run()
    after = datetime.now(IST).replace(tzinfo=None)
    await collector.aclose()

    [row] = await _rows(db)
    assert row.weather == "Rain"
    # SQLite keeps the local wall-clock digits of the fetch instant; dt is ignored
    stored = row.timestamp.replace(tzinfo=None)
    assert before - timedelta(seconds=1) <= stored <= after + timedelta(seconds=1)


@pytest.mark.asyncio
async def test_overlapping_collection_is_rejected(db, config, weather_api):
    collector = _collector(db, config, weather_api)

    async with job_lock(db, "collector", "current", ttl_seconds=300):
        with pytest.raises(JobAlreadyRunning):
            await collector.run()
    await collector.aclose()

    assert weather_api.requests == []


@pytest.mark.asyncio
async def test_fan_out_respects_concurrency_limit(db, config, weather_api):
    in_flight = 0
    peak = 0

    class SlowClient:
        async def fetch_current(self, city, tz):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return None

        async def aclose(self):
            pass

    config.fetch_concurrency = 2
    collector = WeatherCollector(db, config, client=SlowClient())

    results = await collector.fetch_all(config.cities)

    assert results == [None] * 6
    assert peak == 2
