class WeatherRollupError(Exception):
    """Base class for errors raised by the collection and rollup jobs."""


class ConfigurationError(WeatherRollupError):
    """Required configuration is missing; the job cannot start."""


class WeatherFetchError(WeatherRollupError):
    """A single city's fetch failed (timeout, bad status or malformed payload)."""

    def __init__(self, city: str, message: str):
        super().__init__(f"{city}: {message}")
        self.city = city


class ObservationInsertError(WeatherRollupError):
    """One or more observation rows could not be inserted."""

    def __init__(self, failed_cities: list[str]):
        super().__init__(f"Failed to insert weather data for: {', '.join(failed_cities)}")
        self.failed_cities = failed_cities


class JobAlreadyRunning(WeatherRollupError):
    """Another invocation holds the lock for this job and key."""

    def __init__(self, job_name: str, lock_key: str):
        super().__init__(f"Job '{job_name}' is already running for '{lock_key}'")
        self.job_name = job_name
        self.lock_key = lock_key
