"""Async client for the Open-Meteo forecast and archive APIs.

Responses are converted into the daily ``WeatherObservation`` records the
predictor and window analyzer consume. Temperature, dew point and humidity
are taken as the midpoint of the day's max/min readings.
"""
import calendar
import datetime
import time
from typing import Any, Dict, List, Optional, Tuple

import httpx
import structlog
from cachetools import TTLCache
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import WeatherServiceSettings
from .exceptions import (
    WeatherRequestError,
    WeatherResponseError,
    WeatherServiceError,
)
from .formulas import validate_quarter
from .metrics import WEATHER_SERVICE_LATENCY
from .schemas import Location, WeatherObservation

# Get structlog logger instance
logger = structlog.get_logger(__name__)

DAILY_FIELDS = [
    "temperature_2m_max",
    "temperature_2m_min",
    "dewpoint_2m_max",
    "dewpoint_2m_min",
    "precipitation_sum",
    "windspeed_10m_max",
    "relative_humidity_2m_max",
    "relative_humidity_2m_min",
]
FORECAST_DAYS = 16
USER_AGENT = "GrainKeeper/1.0"

# --- Define retry conditions ---
should_retry_weather_fetch = retry_if_exception_type(
    (WeatherRequestError, WeatherResponseError)
)


def quarter_date_range(year: int, quarter: int) -> Tuple[datetime.date, datetime.date]:
    """First and last calendar day of ``quarter`` in ``year``."""
    quarter = validate_quarter(quarter)
    start_month = (quarter - 1) * 3 + 1
    end_month = start_month + 2
    last_day = calendar.monthrange(year, end_month)[1]
    return datetime.date(year, start_month, 1), datetime.date(year, end_month, last_day)


def _midpoint(high, low) -> Optional[float]:
    if high is None or low is None:
        return None
    return (float(high) + float(low)) / 2


def to_observations(payload: Dict[str, Any]) -> List[WeatherObservation]:
    """Converts an Open-Meteo ``daily`` block into observations. Days with null readings are dropped."""
    daily = payload.get("daily") if isinstance(payload, dict) else None
    if not isinstance(daily, dict) or not isinstance(daily.get("time"), list):
        raise WeatherResponseError("Open-Meteo response has no 'daily' block.")

    days = daily["time"]
    missing = [name for name in DAILY_FIELDS if not isinstance(daily.get(name), list)]
    if missing:
        raise WeatherResponseError(f"Open-Meteo response is missing daily fields: {missing}")
    if any(len(daily[name]) != len(days) for name in DAILY_FIELDS):
        raise WeatherResponseError("Open-Meteo daily arrays have inconsistent lengths.")

    observations = []
    skipped = 0
    for i, day in enumerate(days):
        values = {
            "temperature": _midpoint(daily["temperature_2m_max"][i], daily["temperature_2m_min"][i]),
            "dew_point": _midpoint(daily["dewpoint_2m_max"][i], daily["dewpoint_2m_min"][i]),
            "precipitation": daily["precipitation_sum"][i],
            "wind_speed": daily["windspeed_10m_max"][i],
            "humidity": _midpoint(daily["relative_humidity_2m_max"][i], daily["relative_humidity_2m_min"][i]),
        }
        if any(value is None for value in values.values()):
            skipped += 1
            continue
        try:
            observations.append(WeatherObservation(date=datetime.date.fromisoformat(day), **values))
        except ValueError as e:
            raise WeatherResponseError(f"Malformed daily record for {day}: {e}") from e

    if skipped:
        logger.warning("Dropped days with incomplete readings", skipped=skipped, kept=len(observations))
    return observations


class OpenMeteoClient:
    """Fetches daily weather for a location, with retries and a short-lived response cache."""

    def __init__(self, settings: WeatherServiceSettings, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self._client = client or httpx.AsyncClient(headers={"User-Agent": USER_AGENT, "Accept": "application/json"})
        self._cache: TTLCache = TTLCache(maxsize=settings.cache_max_entries, ttl=settings.cache_ttl_seconds)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request_once(self, endpoint: str, url: str, params: Dict[str, Any]) -> Dict[str, Any]:
        log = logger.bind(endpoint=endpoint, url=url, params=params)
        timeout = self.settings.timeout_seconds
        start_time = time.time()
        try:
            log.debug("Fetching weather from Open-Meteo", timeout=timeout)
            response = await self._client.get(url, params=params, timeout=timeout)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            if e.response.status_code >= 500:
                log.error("Open-Meteo returned server error", status_code=e.response.status_code)
                raise WeatherResponseError(f"Open-Meteo returned status {e.response.status_code}") from e
            reason = _error_reason(e.response)
            log.error("Open-Meteo returned client error", status_code=e.response.status_code, reason=reason)
            raise WeatherServiceError(
                f"Open-Meteo returned client error status {e.response.status_code}: {reason}"
            ) from e
        except httpx.RequestError as e:
            log.error("Request error fetching weather from Open-Meteo (will retry)", error=str(e))
            raise WeatherRequestError(f"Failed to connect to Open-Meteo: {e}") from e
        finally:
            WEATHER_SERVICE_LATENCY.labels(endpoint=endpoint).observe(time.time() - start_time)

        try:
            payload = response.json()
        except ValueError as e:
            log.error("Open-Meteo returned a non-JSON body", response_body=response.text[:200])
            raise WeatherResponseError("Open-Meteo returned a non-JSON body.") from e
        if isinstance(payload, dict) and payload.get("error"):
            raise WeatherServiceError(f"Open-Meteo API error: {payload.get('reason', 'Unknown error')}")
        return payload

    async def _get_json(self, endpoint: str, url: str, params: Dict[str, Any]) -> Dict[str, Any]:
        cache_key = (url, tuple(sorted(params.items())))
        cached = self._cache.get(cache_key)
        if cached is not None:
            logger.debug("Serving Open-Meteo response from cache", endpoint=endpoint)
            return cached

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.settings.retry_attempts),
            wait=wait_exponential(
                multiplier=1,
                min=self.settings.retry_min_wait_seconds,
                max=self.settings.retry_max_wait_seconds,
            ),
            retry=should_retry_weather_fetch,
            reraise=True,
        ):
            with attempt:
                payload = await self._request_once(endpoint, url, params)

        self._cache[cache_key] = payload
        return payload

    def _base_params(self, location: Location) -> Dict[str, Any]:
        return {
            "latitude": location.latitude,
            "longitude": location.longitude,
            "daily": ",".join(DAILY_FIELDS),
            "timezone": self.settings.timezone,
        }

    async def get_forecast(self, location: Location, days: int = FORECAST_DAYS) -> List[WeatherObservation]:
        params = self._base_params(location)
        params["forecast_days"] = days
        payload = await self._get_json("forecast", str(self.settings.forecast_url), params)
        observations = to_observations(payload)
        logger.info("Fetched weather forecast", location=location.name, days=len(observations))
        return observations

    async def get_history(
        self, location: Location, start: datetime.date, end: datetime.date
    ) -> List[WeatherObservation]:
        if end < start:
            raise ValueError(f"History end date {end} is before start date {start}.")
        params = self._base_params(location)
        params["start_date"] = start.isoformat()
        params["end_date"] = end.isoformat()
        payload = await self._get_json("archive", str(self.settings.archive_url), params)
        observations = to_observations(payload)
        logger.info(
            "Fetched historical weather",
            location=location.name,
            start=start.isoformat(),
            end=end.isoformat(),
            days=len(observations),
        )
        return observations

    async def get_quarter_history(self, location: Location, year: int, quarter: int) -> List[WeatherObservation]:
        start, end = quarter_date_range(year, quarter)
        return await self.get_history(location, start, end)


def _error_reason(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict) and body.get("reason"):
        return str(body["reason"])
    return response.text[:200]
