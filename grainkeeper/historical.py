"""Quarterly weather covariates for the 2025-2100 planning horizon.

The dataset holds one representative observation per (year, quarter). It is
built once at application startup, either from a CSV export or from a seeded
synthetic generator that follows the Philippine seasonal pattern, and is then
handed to the quarter selector.
"""
import datetime
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import pandas as pd
import structlog

from .exceptions import ConfigurationError, InvalidYearError
from .formulas import QUARTERS, validate_quarter
from .schemas import WeatherObservation

logger = structlog.get_logger(__name__)

FIRST_YEAR = 2025
LAST_YEAR = 2100

CSV_COLUMNS = ["year", "quarter", "temperature", "dew_point", "precipitation", "wind_speed", "humidity"]

# Synthetic seasonal pattern
BASE_TEMPERATURE_C = 25.0
TEMPERATURE_STEP_C = 2.0
DEW_POINT_DEPRESSION_C = 5.0
BASE_PRECIPITATION_MM = 100.0
PRECIPITATION_STEP_MM = 50.0
BASE_WIND_KMH = 10.0
WIND_STEP_KMH = 2.0
BASE_HUMIDITY_PCT = 70.0
HUMIDITY_STEP_PCT = 5.0
YEARLY_WARMING_C = 0.1
# Full width of the uniform noise band around each base value
NOISE_WIDTH = {
    "temperature": 2.0,
    "dew_point": 2.0,
    "precipitation": 20.0,
    "wind_speed": 3.0,
    "humidity": 10.0,
}


def validate_year(year) -> int:
    if isinstance(year, bool) or not isinstance(year, (int, np.integer)):
        raise InvalidYearError(f"Invalid year: {year!r}. Must be an integer between {FIRST_YEAR} and {LAST_YEAR}.")
    if not (FIRST_YEAR <= year <= LAST_YEAR):
        raise InvalidYearError(f"Invalid year: {year}. Must be between {FIRST_YEAR} and {LAST_YEAR}.")
    return int(year)


def _mid_quarter(year: int, quarter: int) -> datetime.date:
    return datetime.date(year, quarter * 3 - 1, 15)


class HistoricalWeatherDataset:
    """In-memory (year, quarter) -> WeatherObservation lookup."""

    def __init__(self, data: Dict[int, Dict[int, WeatherObservation]], source: str, version: str = "1.0.0"):
        self._data = data
        self.source = source
        self.version = version
        self.loaded_at = datetime.datetime.now(datetime.timezone.utc)

    @classmethod
    def synthetic(cls, seed: int = 2025) -> "HistoricalWeatherDataset":
        """Deterministic stand-in for the projected climate series; same seed, same data."""
        rng = np.random.default_rng(seed)
        data: Dict[int, Dict[int, WeatherObservation]] = {}
        for year in range(FIRST_YEAR, LAST_YEAR + 1):
            drift = (year - FIRST_YEAR) * YEARLY_WARMING_C
            data[year] = {}
            for quarter in QUARTERS:
                noise = {name: (rng.random() - 0.5) * width for name, width in NOISE_WIDTH.items()}
                temperature = BASE_TEMPERATURE_C + (quarter - 2) * TEMPERATURE_STEP_C
                humidity = BASE_HUMIDITY_PCT + (quarter - 2) * HUMIDITY_STEP_PCT + noise["humidity"]
                data[year][quarter] = WeatherObservation(
                    date=_mid_quarter(year, quarter),
                    temperature=temperature + drift + noise["temperature"],
                    dew_point=temperature - DEW_POINT_DEPRESSION_C + drift + noise["dew_point"],
                    precipitation=BASE_PRECIPITATION_MM + (quarter - 1) * PRECIPITATION_STEP_MM + noise["precipitation"],
                    wind_speed=BASE_WIND_KMH + (quarter - 2) * WIND_STEP_KMH + noise["wind_speed"],
                    humidity=float(np.clip(humidity, 0.0, 100.0)),
                )
        logger.info("Generated synthetic historical weather dataset", seed=seed, years=len(data))
        return cls(data, source=f"Synthetic seasonal series (seed={seed})")

    @classmethod
    def from_csv(cls, path) -> "HistoricalWeatherDataset":
        path = Path(path)
        log = logger.bind(path=str(path))
        if not path.exists():
            raise ConfigurationError(f"Historical weather file not found: {path}")
        try:
            df = pd.read_csv(path)
        except Exception as e:
            log.error("Failed to read historical weather CSV", error=str(e))
            raise ConfigurationError(f"Could not read historical weather file {path}: {e}") from e

        missing = [col for col in CSV_COLUMNS if col not in df.columns]
        if missing:
            raise ConfigurationError(f"Historical weather file {path} is missing columns: {missing}")
        if df[CSV_COLUMNS].isnull().any().any():
            raise ConfigurationError(f"Historical weather file {path} contains empty values.")
        if df.duplicated(subset=["year", "quarter"]).any():
            raise ConfigurationError(f"Historical weather file {path} has duplicate (year, quarter) rows.")

        data: Dict[int, Dict[int, WeatherObservation]] = {}
        for row in df[CSV_COLUMNS].itertuples(index=False):
            year, quarter = int(row.year), int(row.quarter)
            if quarter not in QUARTERS:
                raise ConfigurationError(f"Historical weather file {path} has invalid quarter {quarter}.")
            data.setdefault(year, {})[quarter] = WeatherObservation(
                date=_mid_quarter(year, quarter),
                temperature=float(row.temperature),
                dew_point=float(row.dew_point),
                precipitation=float(row.precipitation),
                wind_speed=float(row.wind_speed),
                humidity=float(row.humidity),
            )

        incomplete = [year for year, quarters in data.items() if len(quarters) != len(QUARTERS)]
        if incomplete:
            raise ConfigurationError(f"Years missing quarters in {path}: {sorted(incomplete)}")
        log.info("Loaded historical weather dataset", years=len(data))
        return cls(data, source=str(path))

    def years(self) -> List[int]:
        return sorted(self._data)

    def year(self, year: int) -> Dict[int, WeatherObservation]:
        year = validate_year(year)
        if year not in self._data:
            raise InvalidYearError(f"No historical weather data available for year {year}.")
        return dict(self._data[year])

    def quarter(self, year: int, quarter: int) -> WeatherObservation:
        return self.year(year)[validate_quarter(quarter)]

    def metadata(self) -> Dict[str, object]:
        years = self.years()
        return {
            "source": self.source,
            "version": self.version,
            "loaded_at": self.loaded_at.isoformat(),
            "start_year": years[0] if years else None,
            "end_year": years[-1] if years else None,
            "years": len(years),
            "quarters": sum(len(q) for q in self._data.values()),
            "regions": ["Philippines"],
        }


def load_dataset(path: Optional[str] = None, seed: int = 2025) -> HistoricalWeatherDataset:
    if path:
        return HistoricalWeatherDataset.from_csv(path)
    return HistoricalWeatherDataset.synthetic(seed)
