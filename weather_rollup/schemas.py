from datetime import date, datetime, timezone, tzinfo
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


TieBreakPolicy = Literal["alphabetical", "first_observed"]


class City(BaseModel):
    name: str = Field(..., examples=["Delhi"])
    lat: float = Field(..., examples=[28.7041])
    lon: float = Field(..., examples=[77.1025])


class ObservationCreate(BaseModel):
    city: str = Field(..., examples=["Delhi"])
    temperature: float = Field(..., examples=[31.4])
    feels_like: float = Field(..., examples=[35.2])
    pressure: float = Field(..., examples=[1004])
    humidity: int = Field(..., examples=[62])
    weather: str = Field("Unknown", examples=["Haze"])
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def timestamp_must_be_aware(cls, v: datetime) -> datetime:
        if v.tzinfo is None or v.utcoffset() is None:
            raise ValueError("timestamp must carry a UTC offset")
        return v

    @classmethod
    def from_openweather(
        cls,
        city: str,
        payload: dict,
        tz: tzinfo,
        fetched_at: Optional[datetime] = None,
    ) -> "ObservationCreate":
        """Build an observation from a /data/2.5/weather response.

        The row is stamped with the fetch instant (default: now) shifted into
        ``tz``; the payload's own ``dt`` lags behind and is not used. Missing
        or mistyped fields raise ValueError.
        """
        main = payload.get("main") if isinstance(payload, dict) else None
        if not isinstance(main, dict):
            raise ValueError("Invalid weather data format: missing 'main'")

        missing = [key for key in ("temp", "feels_like", "pressure", "humidity") if main.get(key) is None]
        if missing:
            raise ValueError(f"Invalid weather data format: missing {', '.join(missing)}")

        conditions = payload.get("weather") or []
        if not isinstance(conditions, list):
            raise ValueError("Invalid weather data format: 'weather' is not a list")

        label = "Unknown"
        if conditions and isinstance(conditions[0], dict):
            label = conditions[0].get("main") or "Unknown"

        fetched_at = fetched_at or datetime.now(timezone.utc)

        return cls(
            city=city,
            temperature=main["temp"],
            feels_like=main["feels_like"],
            pressure=main["pressure"],
            humidity=main["humidity"],
            weather=label,
            timestamp=fetched_at.astimezone(tz),
        )


class DailySummaryCreate(BaseModel):
    city: str
    date: date
    avg_temp: float
    min_temp: float
    max_temp: float
    dominant_weather: Optional[str] = None
    avg_feels_like: float
    avg_pressure: float
    avg_humidity: float
    record_count: int


class DailySummaryRead(DailySummaryCreate):
    id: int

    model_config = ConfigDict(from_attributes=True)


class TableOverview(BaseModel):
    earliest_record: Optional[datetime] = None
    latest_record: Optional[datetime] = None
    total_records: int = 0
    distinct_cities: int = 0


class CollectionResult(BaseModel):
    requested: int
    fetched: int
    inserted: int
    failed_cities: list[str] = []


class AggregationResult(BaseModel):
    target_date: date
    cities: list[str] = []
    summaries_written: int = 0
    deleted: int = 0
    remaining: Optional[int] = None
    current_identity: Optional[int] = None
