from sqlalchemy import Column, Date, DateTime, Float, Integer, String, UniqueConstraint
from sqlalchemy.sql import func

from weather_rollup.database import Base


class WeatherData(Base):
    __tablename__ = "weather_data"
    # AUTOINCREMENT keeps SQLite ids in sqlite_sequence so they can be reseeded
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    city = Column(String(100), index=True, nullable=False)
    temperature = Column(Float, nullable=False)
    feels_like = Column(Float, nullable=False)
    pressure = Column(Float, nullable=False)
    humidity = Column(Integer, nullable=False)
    weather = Column(String(50), nullable=False)
    timestamp = Column(DateTime(timezone=True), index=True, nullable=False)

    def __repr__(self):
        return f"WeatherData(city={self.city}, temp={self.temperature}, at={self.timestamp})"


class DailyWeatherSummary(Base):
    __tablename__ = "daily_weather_summary"
    __table_args__ = (UniqueConstraint("city", "date", name="uq_daily_weather_city_date"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    city = Column(String(100), index=True, nullable=False)
    date = Column(Date, index=True, nullable=False)
    avg_temp = Column(Float)
    min_temp = Column(Float)
    max_temp = Column(Float)
    dominant_weather = Column(String(50))
    avg_feels_like = Column(Float)
    avg_pressure = Column(Float)
    avg_humidity = Column(Float)
    record_count = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"DailyWeatherSummary(city={self.city}, date={self.date}, records={self.record_count})"


class JobLock(Base):
    __tablename__ = "job_locks"

    job_name = Column(String(50), primary_key=True)
    lock_key = Column(String(50), primary_key=True)
    owner = Column(String(64), nullable=False)
    acquired_at = Column(DateTime(timezone=True), nullable=False)
