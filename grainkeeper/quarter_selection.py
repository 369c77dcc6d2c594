from typing import List, Optional

import structlog

from .exceptions import InvalidYearError
from .historical import HistoricalWeatherDataset, validate_year
from .predictor import QuarterlyYieldPredictor
from .schemas import (
    AccuracyInfo,
    AlternativeQuarter,
    FormattedOptimalQuarter,
    FormattedQuarter,
    FormattedWeather,
    Location,
    QuarterAnalysisResult,
    QuarterSelectionResponse,
    WeatherObservation,
)

logger = structlog.get_logger(__name__)

DEFAULT_OVERALL_ACCURACY = 96.01
ACCURACY_SOURCE = "Mathematical analysis and geoclimatic variable correlation"
CONFIDENCE_FACTORS = [
    "Weather data quality and completeness",
    "Seasonal weather pattern consistency",
    "Historical data reliability",
    "Formula coefficient precision",
]
LIMITATIONS = [
    "Based on historical weather patterns",
    "Does not account for extreme weather events",
    "Regional variations may affect accuracy",
    "Requires location-specific validation for 7-day windows",
]


def accuracy_info(overall_accuracy: float = DEFAULT_OVERALL_ACCURACY) -> AccuracyInfo:
    return AccuracyInfo(
        overall_accuracy=overall_accuracy,
        accuracy_source=ACCURACY_SOURCE,
        confidence_factors=list(CONFIDENCE_FACTORS),
        limitations=list(LIMITATIONS),
    )


class QuarterSelector:
    """Picks the best planting quarter of a year from the historical dataset."""

    def __init__(self, dataset: HistoricalWeatherDataset, predictor: Optional[QuarterlyYieldPredictor] = None):
        self.dataset = dataset
        self.predictor = predictor or QuarterlyYieldPredictor()

    def select_optimal_quarter(self, year: int, location: Optional[Location] = None) -> QuarterAnalysisResult:
        # The dataset is national; location only tags the log context.
        log = logger.bind(year=year, location=location.name if location else None)
        year = validate_year(year)
        weather = self.dataset.year(year)
        result = self.predictor.compare_quarters(year, weather)
        log.info(
            "Selected optimal quarter",
            optimal_quarter=result.optimal_quarter.quarter,
            overall_confidence=result.overall_confidence,
        )
        return result

    def analyze_year_range(self, start_year: int, end_year: int) -> List[QuarterAnalysisResult]:
        start_year, end_year = validate_year(start_year), validate_year(end_year)
        if start_year > end_year:
            raise InvalidYearError(f"Invalid year range: {start_year}-{end_year}. Start year must be <= end year.")
        return [self.select_optimal_quarter(year) for year in range(start_year, end_year + 1)]


def _format_weather(weather: WeatherObservation) -> FormattedWeather:
    return FormattedWeather(
        temperature=round(weather.temperature, 1),
        dew_point=round(weather.dew_point, 1),
        precipitation=round(weather.precipitation),
        wind_speed=round(weather.wind_speed, 1),
        humidity=round(weather.humidity),
    )


def format_quarter_selection(
    result: QuarterAnalysisResult, accuracy: Optional[AccuracyInfo] = None
) -> QuarterSelectionResponse:
    """Rounds a quarter analysis for display and attaches the model's accuracy metadata."""
    optimal = result.optimal_quarter
    return QuarterSelectionResponse(
        year=result.year,
        optimal_quarter=FormattedOptimalQuarter(
            quarter=optimal.quarter,
            name=optimal.name,
            months=optimal.months,
            predicted_yield=round(optimal.predicted_yield),
            confidence=round(optimal.confidence),
        ),
        all_quarters=[
            FormattedQuarter(
                quarter=q.quarter,
                name=q.name,
                predicted_yield=round(q.predicted_yield),
                confidence=round(q.confidence),
                weather=_format_weather(q.weather),
            )
            for q in result.all_quarters
        ],
        recommendations=result.recommendations,
        analyzed_at=result.analyzed_at,
        accuracy=accuracy or accuracy_info(),
    )


def alternative_quarters(
    result: QuarterAnalysisResult, limit: int = 2, exclude: Optional[int] = None
) -> List[AlternativeQuarter]:
    """The next-best quarters by predicted yield, skipping ``exclude`` (the optimal quarter by default)."""
    exclude = result.optimal_quarter.quarter if exclude is None else exclude
    others = [q for q in result.all_quarters if q.quarter != exclude]
    others.sort(key=lambda q: q.predicted_yield, reverse=True)
    return [
        AlternativeQuarter(quarter=q.quarter, predicted_yield=q.predicted_yield, confidence=q.confidence)
        for q in others[:limit]
    ]
