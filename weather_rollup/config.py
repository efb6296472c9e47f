from datetime import time, timedelta, timezone
from typing import Optional

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL

from weather_rollup.schemas import City, TieBreakPolicy

load_dotenv()

DEFAULT_CITIES = [
    City(name="Delhi", lat=28.7041, lon=77.1025),
    City(name="Mumbai", lat=19.0760, lon=72.8777),
    City(name="Chennai", lat=13.0827, lon=80.2707),
    City(name="Bangalore", lat=12.9716, lon=77.5946),
    City(name="Kolkata", lat=22.5726, lon=88.3639),
    City(name="Hyderabad", lat=17.3850, lon=78.4867),
]


class Settings(BaseSettings):
    # Host
    app_title: str = "Weather Rollup"
    app_version: str = "1.0.0"
    log_level: str = "INFO"

    # Database
    database_url: Optional[str] = None
    db_server: Optional[str] = None
    db_port: int = 1433
    db_user: Optional[str] = None
    db_password: Optional[str] = None
    db_database: Optional[str] = None
    db_driver: str = "ODBC Driver 18 for SQL Server"
    db_encrypt: bool = True
    db_trust_server_certificate: bool = False
    db_pool_size: int = 10
    db_max_overflow: int = 0
    db_pool_recycle_seconds: int = 30
    sqlite_path: str = "./weather.db"

    # OpenWeatherMap
    openweather_api_key: str = ""
    openweather_url: str = "https://api.openweathermap.org/data/2.5/weather"
    fetch_timeout_seconds: float = 5.0
    fetch_concurrency: int = 6
    cities: list[City] = DEFAULT_CITIES

    # Reporting time zone, minutes east of UTC (IST)
    local_utc_offset_minutes: int = 330

    # Jobs
    collector_interval_seconds: int = 300
    aggregation_time_utc: time = time(18, 30)
    dominant_weather_tie_break: TieBreakPolicy = "alphabetical"
    job_locks_enabled: bool = True
    aggregation_lock_ttl_seconds: int = 3600

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def local_timezone(self) -> timezone:
        return timezone(timedelta(minutes=self.local_utc_offset_minutes))

    @property
    def sqlalchemy_url(self) -> str:
        """Explicit DATABASE_URL, then SQL Server from DB_* parts, then the SQLite file."""
        if self.database_url:
            return self.database_url

        if self.db_server:
            url = URL.create(
                "mssql+aioodbc",
                username=self.db_user,
                password=self.db_password,
                host=self.db_server,
                port=self.db_port,
                database=self.db_database,
                query={
                    "driver": self.db_driver,
                    "Encrypt": "yes" if self.db_encrypt else "no",
                    "TrustServerCertificate": "yes" if self.db_trust_server_certificate else "no",
                },
            )
            return url.render_as_string(hide_password=False)

        return f"sqlite+aiosqlite:///{self.sqlite_path}"

    @property
    def is_sqlite(self) -> bool:
        return self.sqlalchemy_url.startswith("sqlite")


settings = Settings()
