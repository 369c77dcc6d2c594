import math
from datetime import datetime, timezone
from typing import List, Mapping, Optional, Sequence, Union

import structlog

from .exceptions import InvalidQuarterError, InvalidWeatherDataError
from .formulas import QUARTERS, FormulaTable, validate_quarter
from .schemas import (
    QuarterAnalysisResult,
    QuarterMonths,
    QuarterOutlook,
    WeatherObservation,
    YieldPrediction,
)

logger = structlog.get_logger(__name__)

COVARIATES = ("temperature", "dew_point", "precipitation", "wind_speed", "humidity")

QUARTER_NAMES = {
    1: "Q1 (January-March)",
    2: "Q2 (April-June)",
    3: "Q3 (July-September)",
    4: "Q4 (October-December)",
}
QUARTER_MONTHS = {
    1: QuarterMonths(start="January", end="March"),
    2: QuarterMonths(start="April", end="June"),
    3: QuarterMonths(start="July", end="September"),
    4: QuarterMonths(start="October", end="December"),
}

# Per-quarter confidence heuristics
BASE_CONFIDENCE = 85.0
QUARTER_CONFIDENCE_ADJUSTMENT = {1: 0.0, 2: 2.0, 3: -2.0, 4: 1.0}
IMPLAUSIBLE_WEATHER_PENALTY = 20.0
PLAUSIBLE_RANGES = {
    "temperature": (-50.0, 60.0),
    "dew_point": (-60.0, 50.0),
    "precipitation": (0.0, 10000.0),
    "wind_speed": (0.0, 200.0),
    "humidity": (0.0, 100.0),
}

# Overall confidence adjustment by yield spread (percent of the best quarter)
WIDE_SPREAD_PCT = 20.0
WIDE_SPREAD_BONUS = 5.0
MODERATE_SPREAD_PCT = 10.0
MODERATE_SPREAD_BONUS = 2.0
NARROW_SPREAD_PCT = 5.0
NARROW_SPREAD_PENALTY = 5.0

HIGH_CONFIDENCE = 90.0
GOOD_CONFIDENCE = 80.0
SIGNIFICANT_ADVANTAGE_PCT = 20.0
MODERATE_ADVANTAGE_PCT = 10.0

WeatherInput = Union[WeatherObservation, Sequence[WeatherObservation]]


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def validate_observation(observation: WeatherObservation) -> WeatherObservation:
    """Checks that every covariate is a finite number and humidity is a percentage."""
    if observation is None:
        raise InvalidWeatherDataError("Weather observation is missing.")
    for name in COVARIATES:
        value = getattr(observation, name, None)
        if value is None or isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidWeatherDataError(f"Weather covariate '{name}' is missing or not numeric.")
        if not math.isfinite(value):
            raise InvalidWeatherDataError(f"Weather covariate '{name}' is not finite: {value}")
    if not (0 <= observation.humidity <= 100):
        raise InvalidWeatherDataError(
            f"Humidity must be between 0 and 100, got {observation.humidity}"
        )
    return observation


def average_observations(observations: Sequence[WeatherObservation]) -> WeatherObservation:
    """Covariate-wise mean of a run of daily observations, as one undated aggregate."""
    if not observations:
        raise InvalidWeatherDataError("Cannot average an empty list of observations.")
    for obs in observations:
        validate_observation(obs)
    count = len(observations)
    means = {
        name: sum(getattr(obs, name) for obs in observations) / count
        for name in COVARIATES
    }
    return WeatherObservation(**means)


def is_plausible(observation: WeatherObservation) -> bool:
    for name, (low, high) in PLAUSIBLE_RANGES.items():
        if not (low <= getattr(observation, name) <= high):
            return False
    return True


class QuarterlyYieldPredictor:
    """Applies the quarterly MLR formulas to weather observations.

    Stateless apart from the injected, read-only FormulaTable, so one
    instance can be shared across requests.
    """

    def __init__(self, formulas: Optional[FormulaTable] = None):
        self.formulas = formulas or FormulaTable.default()

    def predict(self, quarter: int, observation: WeatherObservation) -> YieldPrediction:
        quarter = validate_quarter(quarter)
        validate_observation(observation)
        c = self.formulas.get(quarter).coefficients
        predicted = (
            c.temperature * observation.temperature
            + c.dew_point * observation.dew_point
            + c.precipitation * observation.precipitation
            + c.wind_speed * observation.wind_speed
            + c.humidity * observation.humidity
            + c.constant
        )
        return YieldPrediction(quarter=quarter, predicted_yield=predicted, observation=observation)

    def quarter_confidence(self, quarter: int, observation: WeatherObservation) -> float:
        confidence = BASE_CONFIDENCE + QUARTER_CONFIDENCE_ADJUSTMENT[quarter]
        if not is_plausible(observation):
            confidence -= IMPLAUSIBLE_WEATHER_PENALTY
        return clamp(confidence)

    def compare_quarters(
        self, year: int, weather_by_quarter: Mapping[int, WeatherInput]
    ) -> QuarterAnalysisResult:
        """Predicts every quarter of ``year`` and picks the highest-yield one.

        Each value of ``weather_by_quarter`` is either one observation or a
        sequence of daily observations; sequences are averaged first. Ties on
        predicted yield go to the lower-numbered quarter.
        """
        log = logger.bind(year=year)
        for key in weather_by_quarter:
            validate_quarter(key)
        missing = [q for q in QUARTERS if q not in weather_by_quarter]
        if missing:
            raise InvalidQuarterError(f"Weather for quarters {missing} is missing; all four are required.")

        outlooks: List[QuarterOutlook] = []
        for quarter in QUARTERS:
            weather = weather_by_quarter[quarter]
            if not isinstance(weather, WeatherObservation):
                weather = average_observations(list(weather))
            prediction = self.predict(quarter, weather)
            outlooks.append(
                QuarterOutlook(
                    quarter=quarter,
                    name=QUARTER_NAMES[quarter],
                    months=QUARTER_MONTHS[quarter],
                    predicted_yield=prediction.predicted_yield,
                    confidence=self.quarter_confidence(quarter, weather),
                    weather=weather,
                )
            )

        # max() keeps the first maximum, i.e. the lowest quarter on ties
        optimal = max(outlooks, key=lambda o: o.predicted_yield)
        overall = self.overall_confidence(outlooks)
        log.info(
            "Compared quarters",
            optimal_quarter=optimal.quarter,
            predicted_yield=optimal.predicted_yield,
            overall_confidence=overall,
        )
        return QuarterAnalysisResult(
            year=year,
            optimal_quarter=optimal,
            all_quarters=outlooks,
            overall_confidence=overall,
            recommendations=self.recommendations(optimal, outlooks),
            analyzed_at=datetime.now(timezone.utc),
        )

    @staticmethod
    def overall_confidence(outlooks: Sequence[QuarterOutlook]) -> float:
        mean_confidence = sum(o.confidence for o in outlooks) / len(outlooks)
        yields = [o.predicted_yield for o in outlooks]
        best, worst = max(yields), min(yields)
        spread_pct = (best - worst) / abs(best) * 100 if best != 0 else 0.0

        if spread_pct > WIDE_SPREAD_PCT:
            mean_confidence += WIDE_SPREAD_BONUS
        elif spread_pct > MODERATE_SPREAD_PCT:
            mean_confidence += MODERATE_SPREAD_BONUS
        elif spread_pct < NARROW_SPREAD_PCT:
            mean_confidence -= NARROW_SPREAD_PENALTY
        return clamp(mean_confidence)

    @staticmethod
    def recommendations(optimal: QuarterOutlook, outlooks: Sequence[QuarterOutlook]) -> List[str]:
        recommendations = [
            f"Plant during Q{optimal.quarter} for optimal yield of {optimal.predicted_yield:.0f} tons/ha"
        ]

        if optimal.confidence >= HIGH_CONFIDENCE:
            recommendations.append("High confidence in this recommendation based on weather data quality")
        elif optimal.confidence >= GOOD_CONFIDENCE:
            recommendations.append("Good confidence in this recommendation")
        else:
            recommendations.append("Moderate confidence - consider monitoring weather conditions closely")

        ranked = sorted(outlooks, key=lambda o: o.predicted_yield, reverse=True)
        if len(ranked) > 1:
            runner_up = ranked[1].predicted_yield
            if optimal.predicted_yield != 0:
                advantage_pct = (optimal.predicted_yield - runner_up) / abs(optimal.predicted_yield) * 100
            else:
                advantage_pct = 0.0
            if advantage_pct > SIGNIFICANT_ADVANTAGE_PCT:
                recommendations.append("Significant yield advantage over other quarters")
            elif advantage_pct > MODERATE_ADVANTAGE_PCT:
                recommendations.append("Moderate yield advantage over other quarters")
            else:
                recommendations.append("Close yield predictions across quarters - consider backup options")
        return recommendations
