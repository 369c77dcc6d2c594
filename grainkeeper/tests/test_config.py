import pytest

from grainkeeper import config
from grainkeeper.config import AppSettings, get_app_settings, reset_app_settings
from grainkeeper.exceptions import ConfigurationError

# Mark all tests in this module as asyncio
pytestmark = pytest.mark.asyncio


@pytest.fixture(autouse=True)
def fresh_settings():
    reset_app_settings()
    yield
    reset_app_settings()


async def test_defaults():
    settings = await get_app_settings()

    assert settings.prediction.overall_accuracy == 96.01
    assert settings.prediction.formulas_path is None
    assert settings.prediction.dataset_seed == 2025
    assert str(settings.weather.forecast_url) == "https://api.open-meteo.com/v1/forecast"
    assert settings.weather.retry_attempts == 3
    assert settings.weather.cache_ttl_seconds == 3600
    assert settings.api.analysis_limit == "10/minute"


async def test_settings_are_loaded_once():
    first = await get_app_settings()
    second = await get_app_settings()

    assert first is second
    assert config.settings is first


async def test_env_prefixes(monkeypatch):
    monkeypatch.setenv("GK_MODEL_OVERALL_ACCURACY", "92.5")
    monkeypatch.setenv("GK_MODEL_DATASET_SEED", "7")
    monkeypatch.setenv("GK_WEATHER_TIMEOUT_SECONDS", "2.5")
    monkeypatch.setenv("GK_API_PREDICT_LIMIT", "5/second")

    settings = await get_app_settings()

    assert settings.prediction.overall_accuracy == 92.5
    assert settings.prediction.dataset_seed == 7
    assert settings.weather.timeout_seconds == 2.5
    assert settings.api.predict_limit == "5/second"


async def test_invalid_environment_raises_configuration_error(monkeypatch):
    monkeypatch.setenv("GK_MODEL_OVERALL_ACCURACY", "140")

    with pytest.raises(ConfigurationError):
        await get_app_settings()
    assert config.settings is None


async def test_reset_rereads_environment(monkeypatch):
    await get_app_settings()
    monkeypatch.setenv("GK_API_ANALYSIS_LIMIT", "1/minute")

    reset_app_settings()
    settings = await get_app_settings()

    assert isinstance(settings, AppSettings)
    assert settings.api.analysis_limit == "1/minute"
