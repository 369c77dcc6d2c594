"""Seven-day planting-window analysis over one quarter of daily weather.

Every run of seven consecutive days is scored by its mean predicted yield,
by how stable the weather is across the run, and by a confidence figure
derived from both. Windows are then ranked with a fuzzy three-tier
comparator: yield first, stability second, confidence last.
"""
import calendar
import functools
from datetime import timedelta
from typing import Dict, List, Optional, Sequence

import numpy as np
import structlog

from .exceptions import InsufficientDataError, InvalidWeatherDataError
from .formulas import validate_quarter
from .predictor import QuarterlyYieldPredictor, clamp
from .schemas import PlantingWindow, QuarterSummary, WeatherObservation, WindowAnalysisResult
from .weather import quarter_date_range

logger = structlog.get_logger(__name__)

WINDOW_DAYS = 7

# Confidence blend
STABILITY_WEIGHT = 0.7
YIELD_CONSISTENCY_WEIGHT = 0.3

# Window risk thresholds
HIGH_TEMPERATURE_C = 35.0
LOW_TEMPERATURE_C = 20.0
EXCESSIVE_RAINFALL_MM = 300.0
DROUGHT_RAINFALL_MM = 50.0
HIGH_WIND_KMH = 20.0

# Recommendation bands on average yield
EXCELLENT_YIELD = 8_000_000
GOOD_YIELD = 5_000_000
MODERATE_YIELD = 0

# Ranking tolerances
YIELD_TIE_TOLERANCE = 100_000
STABILITY_TIE_TOLERANCE = 10.0

# Quarter summary thresholds
TREND_DELTA_C = 2.0
QUARTER_HIGH_TEMPERATURE_C = 32.0
QUARTER_EXCESSIVE_RAINFALL_MM = 250.0
QUARTER_DROUGHT_RAINFALL_MM = 100.0
GOOD_QUARTER_YIELD = 5_000_000
KG_PER_TON = 1000.0


def weather_stability(window: Sequence[WeatherObservation]) -> float:
    """100 minus the mean population variance of temperature, precipitation and humidity."""
    variances = [
        np.var([obs.temperature for obs in window]),
        np.var([obs.precipitation for obs in window]),
        np.var([obs.humidity for obs in window]),
    ]
    return clamp(100.0 - float(np.mean(variances)))


def window_confidence(stability: float, daily_yields: Sequence[float]) -> float:
    yield_variance = float(np.var(daily_yields))
    return clamp(
        STABILITY_WEIGHT * stability + YIELD_CONSISTENCY_WEIGHT * (100.0 - yield_variance)
    )


def identify_risk_factors(window: Sequence[WeatherObservation]) -> List[str]:
    mean_temperature = float(np.mean([obs.temperature for obs in window]))
    mean_precipitation = float(np.mean([obs.precipitation for obs in window]))
    max_wind = max(obs.wind_speed for obs in window)

    risks = []
    if mean_temperature > HIGH_TEMPERATURE_C:
        risks.append("High temperature stress")
    if mean_temperature < LOW_TEMPERATURE_C:
        risks.append("Low temperature stress")
    if mean_precipitation > EXCESSIVE_RAINFALL_MM:
        risks.append("Excessive rainfall")
    if mean_precipitation < DROUGHT_RAINFALL_MM:
        risks.append("Drought conditions")
    if max_wind > HIGH_WIND_KMH:
        risks.append("High wind damage risk")
    return risks


def generate_recommendations(average_yield: float) -> List[str]:
    if average_yield > EXCELLENT_YIELD:
        return ["Excellent conditions - maximize planting area", "Consider high-yield rice varieties"]
    if average_yield > GOOD_YIELD:
        return ["Good conditions - proceed with normal planting", "Monitor weather closely"]
    if average_yield > MODERATE_YIELD:
        return ["Moderate conditions - reduce planting area", "Consider drought-resistant varieties"]
    return ["Poor conditions - delay planting if possible", "Consider alternative crops"]


def compare_windows(a: PlantingWindow, b: PlantingWindow) -> int:
    """Negative when ``a`` ranks ahead of ``b``."""
    if abs(a.average_yield - b.average_yield) > YIELD_TIE_TOLERANCE:
        return -1 if a.average_yield > b.average_yield else 1
    if abs(a.weather_stability - b.weather_stability) > STABILITY_TIE_TOLERANCE:
        return -1 if a.weather_stability > b.weather_stability else 1
    if a.confidence == b.confidence:
        return 0
    return -1 if a.confidence > b.confidence else 1


def rank_windows(windows: Sequence[PlantingWindow]) -> List[PlantingWindow]:
    # sorted() is stable, so fully tied windows keep their chronological order
    return sorted(windows, key=functools.cmp_to_key(compare_windows))


def split_daily_runs(observations: Sequence[WeatherObservation]) -> List[List[WeatherObservation]]:
    """Splits date-ordered observations into runs of consecutive days."""
    runs: List[List[WeatherObservation]] = []
    for obs in observations:
        if obs.date is None:
            raise InvalidWeatherDataError("Window analysis needs a date on every daily observation.")
        if runs:
            previous = runs[-1][-1].date
            if obs.date <= previous:
                raise InvalidWeatherDataError(
                    f"Daily observations must be date-ordered; {obs.date} follows {previous}."
                )
            if obs.date == previous + timedelta(days=1):
                runs[-1].append(obs)
                continue
        runs.append([obs])
    return runs


def _check_within_quarter(quarter: int, observations: Sequence[WeatherObservation]) -> None:
    start, end = quarter_date_range(observations[0].date.year, quarter)
    for obs in observations:
        if not start <= obs.date <= end:
            raise InvalidWeatherDataError(
                f"Observation dated {obs.date} falls outside Q{quarter} ({start} to {end})."
            )


def _score_run(run: Sequence[WeatherObservation], daily_yields: Sequence[float]) -> List[PlantingWindow]:
    windows = []
    for start in range(len(run) - WINDOW_DAYS + 1):
        window_obs = run[start:start + WINDOW_DAYS]
        window_yields = list(daily_yields[start:start + WINDOW_DAYS])
        average_yield = float(np.mean(window_yields))
        stability = weather_stability(window_obs)
        windows.append(
            PlantingWindow(
                start_date=window_obs[0].date,
                end_date=window_obs[0].date + timedelta(days=WINDOW_DAYS - 1),
                daily_yields=window_yields,
                average_yield=average_yield,
                weather_stability=stability,
                confidence=window_confidence(stability, window_yields),
                risk_factors=identify_risk_factors(window_obs),
                recommendations=generate_recommendations(average_yield),
            )
        )
    return windows


def analyze_windows(
    quarter: int,
    observations: Sequence[WeatherObservation],
    predictor: Optional[QuarterlyYieldPredictor] = None,
    allow_gaps: bool = False,
) -> List[PlantingWindow]:
    """Scores every 7-day window of ``observations`` and returns them ranked best first.

    Observations must be dated, date-ordered and inside ``quarter``. A missing
    day is an error unless ``allow_gaps`` is set, in which case windows are
    only taken from runs of seven or more consecutive days.
    """
    predictor = predictor or QuarterlyYieldPredictor()
    quarter = validate_quarter(quarter)
    if len(observations) < WINDOW_DAYS:
        raise InsufficientDataError(
            f"At least {WINDOW_DAYS} daily observations are required, got {len(observations)}."
        )
    runs = split_daily_runs(observations)
    if len(runs) > 1 and not allow_gaps:
        raise InvalidWeatherDataError(
            f"Daily observations must be contiguous; {runs[1][0].date} follows {runs[0][-1].date}."
        )
    _check_within_quarter(quarter, observations)

    daily_yields = [predictor.predict(quarter, obs).predicted_yield for obs in observations]

    windows = []
    offset = 0
    for run in runs:
        if len(run) >= WINDOW_DAYS:
            windows.extend(_score_run(run, daily_yields[offset:offset + len(run)]))
        offset += len(run)
    if not windows:
        raise InsufficientDataError(f"No run of {WINDOW_DAYS} consecutive days in the observations.")

    logger.debug("Analyzed planting windows", quarter=quarter, windows=len(windows), runs=len(runs))
    return rank_windows(windows)


def _best_month(observations: Sequence[WeatherObservation], daily_yields: Sequence[float]) -> str:
    by_month: Dict[int, List[float]] = {}
    for obs, value in zip(observations, daily_yields):
        if obs.date is not None:
            by_month.setdefault(obs.date.month, []).append(value)
    if not by_month:
        return "Unknown"
    best = max(by_month, key=lambda month: np.mean(by_month[month]))
    return calendar.month_name[best]


def _weather_trend(observations: Sequence[WeatherObservation]) -> str:
    temps = [obs.temperature for obs in observations]
    half = len(temps) // 2
    if half == 0:
        return "Stable conditions"
    first, second = float(np.mean(temps[:half])), float(np.mean(temps[half:]))
    if second > first + TREND_DELTA_C:
        return "Warming trend"
    if second < first - TREND_DELTA_C:
        return "Cooling trend"
    return "Stable conditions"


def _quarter_risks(observations: Sequence[WeatherObservation]) -> str:
    mean_temperature = float(np.mean([obs.temperature for obs in observations]))
    mean_precipitation = float(np.mean([obs.precipitation for obs in observations]))
    risks = []
    if mean_temperature > QUARTER_HIGH_TEMPERATURE_C:
        risks.append("High temperature stress")
    if mean_precipitation > QUARTER_EXCESSIVE_RAINFALL_MM:
        risks.append("Excessive rainfall")
    if mean_precipitation < QUARTER_DROUGHT_RAINFALL_MM:
        risks.append("Drought risk")
    return ", ".join(risks) if risks else "Low risk conditions"


def summarize_quarter(
    quarter: int,
    observations: Sequence[WeatherObservation],
    ranked_windows: Sequence[PlantingWindow],
    predictor: Optional[QuarterlyYieldPredictor] = None,
) -> QuarterSummary:
    predictor = predictor or QuarterlyYieldPredictor()
    daily_yields = [predictor.predict(quarter, obs).predicted_yield for obs in observations]
    quarter_average = float(np.mean(daily_yields))

    advice = []
    if ranked_windows:
        best = ranked_windows[0]
        advice.append(f"Best 7-day window: {best.start_date.isoformat()} to {best.end_date.isoformat()}")
        advice.append(f"Expected yield: {best.average_yield / KG_PER_TON:.1f} tons/ha")
    if quarter_average > GOOD_QUARTER_YIELD:
        advice.append("Overall quarter shows good conditions for rice farming")
    else:
        advice.append("Consider alternative planting strategies for this quarter")

    return QuarterSummary(
        quarter_average=quarter_average,
        best_month=_best_month(observations, daily_yields),
        weather_trend=_weather_trend(observations),
        risk_assessment=_quarter_risks(observations),
        farming_advice=advice,
    )


def find_optimal_windows(
    quarter: int,
    observations: Sequence[WeatherObservation],
    top_n: Optional[int] = 5,
    predictor: Optional[QuarterlyYieldPredictor] = None,
    allow_gaps: bool = False,
) -> WindowAnalysisResult:
    """Ranks all windows, keeps the best ``top_n`` (all when None) and summarizes the quarter."""
    predictor = predictor or QuarterlyYieldPredictor()
    log = logger.bind(quarter=quarter, days=len(observations))
    ranked = analyze_windows(quarter, observations, predictor, allow_gaps=allow_gaps)
    top = ranked if top_n is None else ranked[:top_n]
    summary = summarize_quarter(quarter, observations, ranked, predictor)
    log.info("Found optimal planting windows", total_windows=len(ranked), returned=len(top))
    return WindowAnalysisResult(
        quarter=quarter,
        total_windows=len(ranked),
        windows=top,
        summary=summary,
    )
