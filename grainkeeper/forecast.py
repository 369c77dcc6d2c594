"""Day-by-day planting suitability over the 16-day Open-Meteo forecast."""
import datetime
from typing import List, Optional, Sequence

import numpy as np
import structlog

from .schemas import (
    DailyForecastResponse,
    DayAssessment,
    ForecastSummary,
    Location,
    WeatherObservation,
    WeatherTrends,
)

logger = structlog.get_logger(__name__)

BASE_SUITABILITY = 85
MIN_SUITABILITY = 65
MAX_SUITABILITY = 92
PLANTABLE_SCORE = 70
LOW_RISK_SCORE = 85
MEDIUM_RISK_SCORE = 75
BEST_DAY_SCORE = 75
BEST_DAY_COUNT = 3
NEXT_UPDATE_DAYS = 7


def assess_day(observation: WeatherObservation) -> DayAssessment:
    """Scores one forecast day for transplanting rice; optimum is 22-28°C, 5-15mm rain, light wind, 70-85% RH."""
    t, p, w, h = observation.temperature, observation.precipitation, observation.wind_speed, observation.humidity
    score = BASE_SUITABILITY
    issues: List[str] = []
    bonuses: List[str] = []

    if t < 20:
        score -= 25
        issues.append("Temperature too low for rice planting")
    elif t > 32:
        score -= 20
        issues.append("Temperature too high for rice planting")
    elif t < 22 or t > 28:
        score -= 8
        issues.append("Temperature outside optimal range")
    elif 24 <= t <= 26:
        score += 3
        bonuses.append("Optimal temperature range")

    if p > 30:
        score -= 30
        issues.append("Heavy rainfall - avoid planting")
    elif p > 20:
        score -= 12
        issues.append("Moderate rainfall - monitor conditions")
    elif p < 2:
        score -= 8
        issues.append("Very dry conditions - ensure irrigation")
    elif 5 <= p <= 15:
        score += 2
        bonuses.append("Optimal moisture conditions")

    if w > 20:
        score -= 25
        issues.append("High winds - avoid planting")
    elif w > 15:
        score -= 8
        issues.append("Moderate winds - monitor conditions")
    elif w < 5:
        score += 1
        bonuses.append("Calm wind conditions")

    if h < 50:
        score -= 12
        issues.append("Very low humidity - ensure irrigation")
    elif h > 95:
        score -= 8
        issues.append("Very high humidity - monitor for disease")
    elif 70 <= h <= 85:
        score += 1
        bonuses.append("Optimal humidity range")

    score = max(MIN_SUITABILITY, min(MAX_SUITABILITY, score))

    if score >= LOW_RISK_SCORE:
        risk_level = "low"
    elif score >= MEDIUM_RISK_SCORE:
        risk_level = "medium"
    else:
        risk_level = "high"

    if score >= 88:
        recommendation = "Excellent planting conditions"
    elif score >= 80:
        recommendation = "Good planting conditions"
    elif score >= 75:
        recommendation = "Moderate conditions - proceed with caution"
    elif score >= 70:
        recommendation = "Acceptable conditions - monitor closely"
    else:
        recommendation = "Poor conditions - consider postponing"
    if issues:
        recommendation += f" ({issues[0]})"
    elif bonuses:
        recommendation += f" ({bonuses[0]})"

    return DayAssessment(
        date=observation.date,
        weather=observation,
        suitability_score=score,
        can_plant=score >= PLANTABLE_SCORE,
        recommendation=recommendation,
        risk_level=risk_level,
        weather_summary={
            "temperature": f"{t:.1f}°C",
            "precipitation": f"{p:.1f}mm",
            "wind_speed": f"{w:.1f} km/h",
            "humidity": f"{h:.0f}%",
        },
    )


def _temperature_trend(values: Sequence[float]) -> str:
    if len(values) < 3:
        return "stable"
    half = len(values) // 2
    difference = float(np.mean(values[half:])) - float(np.mean(values[:half]))
    if abs(difference) < 1:
        return "stable"
    return "rising" if difference > 0 else "falling"


def _precipitation_trend(values: Sequence[float]) -> str:
    average = float(np.mean(values))
    if average < 5:
        return "dry"
    if average < 15:
        return "moderate"
    return "wet"


def _wind_trend(values: Sequence[float]) -> str:
    average = float(np.mean(values))
    if average < 10:
        return "calm"
    if average < 15:
        return "moderate"
    return "windy"


def _overall_recommendation(plantable: int) -> str:
    if plantable >= 10:
        return "Excellent 16-day window with many planting opportunities"
    if plantable >= 7:
        return "Good 16-day window with several planting days available"
    if plantable >= 4:
        return "Moderate 16-day window with limited planting opportunities"
    if plantable >= 1:
        return "Poor 16-day window with very few planting days"
    return "Avoid planting in the next 16 days - adverse weather expected"


def summarize_forecast(days: Sequence[DayAssessment], today: Optional[datetime.date] = None) -> ForecastSummary:
    today = today or datetime.date.today()
    plantable = [day for day in days if day.can_plant]
    # sorted() is stable, so equal scores stay in date order
    best = sorted(
        (day for day in days if day.suitability_score >= BEST_DAY_SCORE),
        key=lambda day: day.suitability_score,
        reverse=True,
    )[:BEST_DAY_COUNT]

    if days:
        trends = WeatherTrends(
            temperature_trend=_temperature_trend([d.weather.temperature for d in days]),
            precipitation_trend=_precipitation_trend([d.weather.precipitation for d in days]),
            wind_trend=_wind_trend([d.weather.wind_speed for d in days]),
        )
    else:
        trends = WeatherTrends(temperature_trend="stable", precipitation_trend="dry", wind_trend="calm")

    return ForecastSummary(
        total_days=len(days),
        plantable_days=len(plantable),
        best_planting_days=best,
        overall_recommendation=_overall_recommendation(len(plantable)),
        next_update_date=today + datetime.timedelta(days=NEXT_UPDATE_DAYS),
        weather_trends=trends,
    )


def analyze_forecast(
    location: Location, observations: Sequence[WeatherObservation], today: Optional[datetime.date] = None
) -> DailyForecastResponse:
    days = [assess_day(obs) for obs in observations]
    if observations:
        period = f"{observations[0].date} to {observations[-1].date}"
    else:
        period = "No forecast data"
    logger.info(
        "Assessed daily forecast",
        location=location.name,
        days=len(days),
        plantable_days=sum(1 for d in days if d.can_plant),
    )
    return DailyForecastResponse(
        location=location,
        forecast_period=period,
        daily_analysis=days,
        summary=summarize_forecast(days, today),
    )
