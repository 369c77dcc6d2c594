"""Integrated planting analysis: best quarter first, then the best week inside it.

Quarter selection runs on the long-range dataset. The week is found by
replaying last year's archive weather for that quarter, re-dated onto the
target year, through the window analyzer. When the archive cannot be
reached the quarter recommendation is still returned without a window.
"""
import datetime
from typing import List, Optional, Sequence

import structlog

from .exceptions import InsufficientDataError, InvalidWeatherDataError, WeatherServiceError
from .formulas import validate_quarter
from .historical import validate_year
from .predictor import QUARTER_NAMES, QuarterlyYieldPredictor
from .quarter_selection import QuarterSelector, alternative_quarters
from .schemas import (
    IntegratedPlantingAnalysis,
    Location,
    PlantingRecommendation,
    PlantingWindow,
    QuarterAnalysisResult,
    WeatherObservation,
    WindowAnalysisResult,
)
from .weather import OpenMeteoClient, quarter_date_range
from .windows import KG_PER_TON, find_optimal_windows

logger = structlog.get_logger(__name__)

QUARTER_WEIGHT = 0.7
WINDOW_WEIGHT = 0.3
LOW_RISK_CONFIDENCE = 85.0
HIGH_RISK_CONFIDENCE = 70.0
EXCELLENT_WINDOW_CONFIDENCE = 90.0


def project_onto_year(
    observations: Sequence[WeatherObservation], year: int, quarter: int
) -> List[WeatherObservation]:
    """Re-dates a quarter of daily history onto the same quarter of ``year``.

    Each day keeps its offset from the first day of its source quarter, so a
    day missing from the archive stays missing in the projection. Anything
    landing past the quarter's last day (the tail of a leap-year Q1 replayed
    into a common year) is dropped.
    """
    if not observations:
        return []
    if any(obs.date is None for obs in observations):
        raise InvalidWeatherDataError("Archive observations must all be dated to be re-dated.")
    source_start, _ = quarter_date_range(observations[0].date.year, quarter)
    start, end = quarter_date_range(year, quarter)
    projected = []
    for obs in observations:
        day = start + (obs.date - source_start)
        if day > end:
            continue
        projected.append(obs.model_copy(update={"date": day}))
    return projected


def overall_confidence(quarter_confidence: float, window_confidence: float) -> float:
    return round(QUARTER_WEIGHT * quarter_confidence + WINDOW_WEIGHT * window_confidence, 2)


def risk_level(window: Optional[PlantingWindow]) -> str:
    if window is not None and window.confidence >= LOW_RISK_CONFIDENCE:
        return "low"
    if window is not None and window.confidence < HIGH_RISK_CONFIDENCE:
        return "high"
    return "medium"


def build_recommendation(
    year: int,
    quarter: int,
    quarter_selection: QuarterAnalysisResult,
    window: Optional[PlantingWindow],
    location: Location,
) -> PlantingRecommendation:
    outlook = next(q for q in quarter_selection.all_quarters if q.quarter == quarter)
    if quarter == quarter_selection.optimal_quarter.quarter:
        quarter_reason = (
            f"MLR analysis shows Q{quarter} has the highest predicted yield "
            f"({outlook.predicted_yield / KG_PER_TON:.1f} tons/ha)"
        )
    else:
        quarter_reason = (
            f"Q{quarter} was requested; MLR analysis predicts "
            f"{outlook.predicted_yield / KG_PER_TON:.1f} tons/ha "
            f"(best is Q{quarter_selection.optimal_quarter.quarter})"
        )

    planting_period = f"{QUARTER_NAMES[quarter]} {year}"
    window_reason = "No specific 7-day window analysis available"
    if window is not None:
        planting_period = f"{window.start_date.isoformat()} to {window.end_date.isoformat()}"
        window_reason = f"Optimal 7-day window with {window.confidence:.1f}% stability confidence"
        if window.recommendations:
            window_reason += f". {window.recommendations[0]}"

    level = risk_level(window)
    action_items = [
        f"Plant during {planting_period}",
        "Monitor weather conditions closely",
        "Prepare irrigation systems",
        "Ensure soil preparation is complete",
        f"Consider local {location.name} weather patterns",
    ]
    if level == "high":
        action_items.append("Consider backup planting dates")
        action_items.append("Monitor weather forecasts daily")
    if window is not None and window.confidence >= EXCELLENT_WINDOW_CONFIDENCE:
        action_items.insert(0, "Excellent planting conditions predicted")

    return PlantingRecommendation(
        planting_period=planting_period,
        quarter_reason=quarter_reason,
        window_reason=window_reason,
        risk_level=level,
        action_items=action_items,
    )


class PlantingAdvisor:
    """Combines quarter selection with archive-driven 7-day window analysis."""

    def __init__(
        self,
        selector: QuarterSelector,
        weather_client: OpenMeteoClient,
        predictor: Optional[QuarterlyYieldPredictor] = None,
        today: Optional[datetime.date] = None,
    ):
        self.selector = selector
        self.weather_client = weather_client
        self.predictor = predictor or selector.predictor
        self._today = today

    def history_year(self, year: int) -> int:
        """The archive year replayed for ``year``: the year before, capped at the last complete year."""
        today = self._today or datetime.date.today()
        return min(year - 1, today.year - 1)

    async def _window_analysis(
        self, year: int, quarter: int, location: Location, top_n: Optional[int]
    ) -> Optional[WindowAnalysisResult]:
        source_year = self.history_year(year)
        log = logger.bind(year=year, quarter=quarter, source_year=source_year, location=location.name)
        try:
            history = await self.weather_client.get_quarter_history(location, source_year, quarter)
            projected = project_onto_year(history, year, quarter)
            return find_optimal_windows(
                quarter, projected, top_n=top_n, predictor=self.predictor, allow_gaps=True
            )
        except (WeatherServiceError, InsufficientDataError, InvalidWeatherDataError) as e:
            log.warning("Window analysis unavailable; returning quarter selection only", error=str(e))
            return None

    async def analyze(
        self, year: int, location: Location, quarter: Optional[int] = None, top_n: Optional[int] = 5
    ) -> IntegratedPlantingAnalysis:
        year = validate_year(year)
        if quarter is not None:
            quarter = validate_quarter(quarter)
        log = logger.bind(year=year, location=location.name, requested_quarter=quarter)

        quarter_selection = self.selector.select_optimal_quarter(year, location)
        selected = quarter or quarter_selection.optimal_quarter.quarter
        if selected == quarter_selection.optimal_quarter.quarter:
            quarter_confidence = quarter_selection.overall_confidence
        else:
            quarter_confidence = next(
                q.confidence for q in quarter_selection.all_quarters if q.quarter == selected
            )

        window_analysis = await self._window_analysis(year, selected, location, top_n)
        optimal_window = window_analysis.windows[0] if window_analysis and window_analysis.windows else None
        window_confidence = optimal_window.confidence if optimal_window else 0.0

        analysis = IntegratedPlantingAnalysis(
            year=year,
            location=location,
            quarter_selection=quarter_selection,
            selected_quarter=selected,
            quarter_confidence=quarter_confidence,
            window_analysis=window_analysis,
            optimal_window=optimal_window,
            window_confidence=window_confidence,
            overall_confidence=overall_confidence(quarter_confidence, window_confidence),
            recommendation=build_recommendation(year, selected, quarter_selection, optimal_window, location),
            alternative_quarters=alternative_quarters(quarter_selection, exclude=selected),
            analyzed_at=datetime.datetime.now(datetime.timezone.utc),
        )
        log.info(
            "Completed integrated planting analysis",
            selected_quarter=selected,
            overall_confidence=analysis.overall_confidence,
            has_window=optimal_window is not None,
        )
        return analysis
