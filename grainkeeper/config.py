import asyncio
from typing import Optional

import structlog
from pydantic import Field, HttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError

# Get structlog logger instance
logger = structlog.get_logger(__name__)


class ModelSettings(BaseSettings):
    formulas_path: Optional[str] = Field(None, description="JSON file overriding the built-in quarterly formulas.")
    overall_accuracy: float = Field(96.01, ge=0, le=100, description="Published accuracy of the MLR model (%).")
    dataset_path: Optional[str] = Field(None, description="CSV of quarterly covariates for 2025-2100.")
    dataset_seed: int = Field(2025, description="Seed for the synthetic dataset used when no CSV is configured.")
    model_config = SettingsConfigDict(env_prefix="GK_MODEL_", extra="ignore")


class WeatherServiceSettings(BaseSettings):
    forecast_url: HttpUrl = Field("https://api.open-meteo.com/v1/forecast", description="Open-Meteo forecast endpoint.")
    archive_url: HttpUrl = Field("https://archive-api.open-meteo.com/v1/archive", description="Open-Meteo archive endpoint.")
    timeout_seconds: float = Field(10.0, description="Timeout for weather service requests.")
    retry_attempts: int = Field(3, description="Number of retry attempts for weather service.")
    retry_min_wait_seconds: int = Field(1, description="Minimum wait seconds between retries.")
    retry_max_wait_seconds: int = Field(5, description="Maximum wait seconds between retries.")
    timezone: str = Field("auto", description="Timezone passed to Open-Meteo for daily aggregation.")
    cache_ttl_seconds: float = Field(3600.0, ge=0, description="How long identical Open-Meteo responses are reused.")
    cache_max_entries: int = Field(256, ge=1, description="Most Open-Meteo responses held in the cache at once.")
    model_config = SettingsConfigDict(env_prefix="GK_WEATHER_", extra="ignore")


class APISettings(BaseSettings):
    predict_limit: str = Field("60/minute", description="Rate limit for single-formula predictions.")
    analysis_limit: str = Field("10/minute", description="Rate limit for window and quarter analyses.")
    model_config = SettingsConfigDict(env_prefix="GK_API_", extra="ignore")


class AppSettings(BaseSettings):
    prediction: ModelSettings = Field(default_factory=ModelSettings)
    weather: WeatherServiceSettings = Field(default_factory=WeatherServiceSettings)
    api: APISettings = Field(default_factory=APISettings)


# Global variable for settings, initialized asynchronously
settings: Optional[AppSettings] = None
_settings_lock = asyncio.Lock()


async def get_app_settings() -> AppSettings:
    """Initializes and returns the application settings. Ensures it happens once."""
    global settings
    if settings is None:
        async with _settings_lock:
            if settings is None:  # Double check after lock
                try:
                    settings = AppSettings()
                    logger.info("Application settings initialized successfully.")
                except Exception as e:  # Pydantic validation errors or other init issues
                    logger.critical("Failed to initialize AppSettings.", error=str(e), exc_info=True)
                    raise ConfigurationError(f"Failed to initialize AppSettings: {e}") from e
    return settings


def reset_app_settings() -> None:
    """Drops the cached settings so the next call re-reads the environment."""
    global settings
    settings = None
