from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import List, Dict, Optional
import datetime

# --- Core data model ---

class WeatherObservation(BaseModel):
    """One calendar day's weather (or an aggregate of several days) at a location."""
    model_config = ConfigDict(frozen=True)

    date: Optional[datetime.date] = Field(None, examples=["2025-01-15"], description="Calendar date; None for aggregates.")
    temperature: float = Field(..., examples=[26.76], description="Mean air temperature (°C).")
    dew_point: float = Field(..., examples=[21.58], description="Mean dew point (°C).")
    precipitation: float = Field(..., examples=[236.7], description="Precipitation (mm).")
    wind_speed: float = Field(..., examples=[3.23], description="Wind speed (km/h).")
    humidity: float = Field(..., examples=[78.9], description="Relative humidity (% 0-100).")


class CoefficientSet(BaseModel):
    model_config = ConfigDict(frozen=True)

    temperature: float
    dew_point: float
    precipitation: float
    wind_speed: float
    humidity: float
    constant: float


class QuarterFormula(BaseModel):
    """Fixed linear yield model for one fiscal quarter."""
    model_config = ConfigDict(frozen=True)

    quarter: int = Field(..., ge=1, le=4)
    name: str
    coefficients: CoefficientSet

    @property
    def formula(self) -> str:
        c = self.coefficients
        terms = [
            (c.temperature, "T"),
            (c.dew_point, "D"),
            (c.precipitation, "P"),
            (c.wind_speed, "W"),
            (c.humidity, "H"),
        ]
        text = "Ŷ = "
        for i, (value, symbol) in enumerate(terms):
            if i == 0:
                text += f"{value}{symbol}"
            else:
                text += f" {'-' if value < 0 else '+'} {abs(value)}{symbol}"
        text += f" {'-' if c.constant < 0 else '+'} {abs(c.constant)}"
        return text


class YieldPrediction(BaseModel):
    quarter: int
    predicted_yield: float = Field(..., description="Raw model output; unbounded and may be negative.")
    observation: WeatherObservation


class PlantingWindow(BaseModel):
    start_date: datetime.date
    end_date: datetime.date
    daily_yields: List[float]
    average_yield: float
    weather_stability: float = Field(..., ge=0, le=100)
    confidence: float = Field(..., ge=0, le=100)
    risk_factors: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


class QuarterSummary(BaseModel):
    quarter_average: float
    best_month: str
    weather_trend: str
    risk_assessment: str
    farming_advice: List[str]


class WindowAnalysisResult(BaseModel):
    quarter: int
    total_windows: int
    windows: List[PlantingWindow]
    summary: QuarterSummary


class QuarterMonths(BaseModel):
    start: str
    end: str


class QuarterOutlook(BaseModel):
    quarter: int
    name: str
    months: QuarterMonths
    predicted_yield: float
    confidence: float
    weather: WeatherObservation


class QuarterAnalysisResult(BaseModel):
    year: int
    optimal_quarter: QuarterOutlook
    all_quarters: List[QuarterOutlook]
    overall_confidence: float
    recommendations: List[str] = Field(default_factory=list)
    analyzed_at: datetime.datetime


# --- Location ---

class Location(BaseModel):
    latitude: float = Field(..., examples=[15.48], description="Latitude in decimal degrees.")
    longitude: float = Field(..., examples=[120.97], description="Longitude in decimal degrees.")
    name: str = Field("Custom Location", examples=["Nueva Ecija"])

    @field_validator("latitude")
    def latitude_must_be_valid(cls, v):
        if not (-90 <= v <= 90):
            raise ValueError("latitude must be between -90 and 90")
        return v

    @field_validator("longitude")
    def longitude_must_be_valid(cls, v):
        if not (-180 <= v <= 180):
            raise ValueError("longitude must be between -180 and 180")
        return v

    @field_validator("name")
    def name_must_not_be_empty(cls, v):
        if not v or v.isspace():
            raise ValueError("name cannot be empty")
        return v.strip()


# --- Formatted quarter selection ---

class AccuracyInfo(BaseModel):
    overall_accuracy: float = Field(..., examples=[96.01])
    accuracy_source: str
    confidence_factors: List[str]
    limitations: List[str]


class FormattedWeather(BaseModel):
    temperature: float
    dew_point: float
    precipitation: float
    wind_speed: float
    humidity: float


class FormattedQuarter(BaseModel):
    quarter: int
    name: str
    predicted_yield: int
    confidence: int
    weather: FormattedWeather


class FormattedOptimalQuarter(BaseModel):
    quarter: int
    name: str
    months: QuarterMonths
    predicted_yield: int
    confidence: int


class QuarterSelectionResponse(BaseModel):
    year: int
    optimal_quarter: FormattedOptimalQuarter
    all_quarters: List[FormattedQuarter]
    recommendations: List[str]
    analyzed_at: datetime.datetime
    accuracy: AccuracyInfo


# --- Daily forecast ---

class DayAssessment(BaseModel):
    date: Optional[datetime.date]
    weather: WeatherObservation
    suitability_score: int
    can_plant: bool
    recommendation: str
    risk_level: str
    weather_summary: Dict[str, str]


class WeatherTrends(BaseModel):
    temperature_trend: str
    precipitation_trend: str
    wind_trend: str


class ForecastSummary(BaseModel):
    total_days: int
    plantable_days: int
    best_planting_days: List[DayAssessment]
    overall_recommendation: str
    next_update_date: datetime.date
    weather_trends: WeatherTrends


class DailyForecastResponse(BaseModel):
    location: Location
    forecast_period: str
    daily_analysis: List[DayAssessment]
    summary: ForecastSummary


# --- Integrated planting analysis ---

class PlantingRecommendation(BaseModel):
    planting_period: str
    quarter_reason: str
    window_reason: str
    risk_level: str
    action_items: List[str]


class AlternativeQuarter(BaseModel):
    quarter: int
    predicted_yield: float
    confidence: float


class IntegratedPlantingAnalysis(BaseModel):
    year: int
    location: Location
    quarter_selection: QuarterAnalysisResult
    selected_quarter: int
    quarter_confidence: float
    window_analysis: Optional[WindowAnalysisResult] = None
    optimal_window: Optional[PlantingWindow] = None
    window_confidence: float
    overall_confidence: float
    recommendation: PlantingRecommendation
    alternative_quarters: List[AlternativeQuarter] = Field(default_factory=list)
    analyzed_at: datetime.datetime


# --- Model validation and yield history ---

class YieldRecord(BaseModel):
    """A recorded quarterly yield together with the weather it came from."""
    model_config = ConfigDict(frozen=True)

    year: int
    quarter: int = Field(..., ge=1, le=4)
    recorded_yield: float
    weather: WeatherObservation


class ValidationResult(BaseModel):
    period: str = Field(..., examples=["Q1 2025"])
    year: int
    quarter: int
    predicted_yield: float
    actual_yield: float
    error: float = Field(..., description="Absolute error as a percentage of the actual yield.")
    accuracy: float = Field(..., ge=0, le=100)


class ConfidenceInterval(BaseModel):
    lower: float
    upper: float


class ModelAccuracy(BaseModel):
    overall_accuracy: float
    quarter_accuracies: Dict[int, float]
    period_accuracies: List[ValidationResult]
    confidence_interval: ConfidenceInterval


class QuarterPerformance(BaseModel):
    quarter: int
    average_yield: float
    best_year: int
    best_yield: float
    worst_year: int
    worst_yield: float
    success_rate: float = Field(..., description="Share of years with a positive yield (%).")
    average_weather: WeatherObservation


class HistoricalComparison(BaseModel):
    quarter: int
    predicted_yield: float
    historical_average: float
    historical_best: float
    historical_worst: float
    success_rate: float
    performance: str = Field(..., examples=["above_average"])
    percentile: float = Field(..., ge=0, le=100)


class TrendAnalysis(BaseModel):
    quarter: int
    trend: str = Field(..., examples=["stable"])
    change_rate: float = Field(..., description="Least-squares slope of yield per year.")
    years: List[int]
    yields: List[float]


class DecadeSummary(BaseModel):
    decade: str = Field(..., examples=["2025-2034"])
    average_yield: float
    best_quarter: int
    worst_quarter: int
    trend: str


class HistoricalPerformanceResponse(BaseModel):
    best_quarter: int
    quarters: List[QuarterPerformance]
    decades: List[DecadeSummary]


# --- Pydantic Models for API Requests and Responses ---

class PredictionRequest(BaseModel):
    quarter: int = Field(..., examples=[1], description="Quarter (1-4) whose formula to apply.")
    observation: WeatherObservation


class WindowAnalysisRequest(BaseModel):
    quarter: int = Field(..., examples=[1], description="Quarter (1-4) the observations belong to.")
    observations: List[WeatherObservation] = Field(
        ..., description="Contiguous, date-ordered daily observations covering the quarter."
    )
    top_n: Optional[int] = Field(None, ge=1, examples=[5], description="Return only the best N windows.")


class QuarterSelectionRequest(BaseModel):
    year: int = Field(..., examples=[2030], description="Target year (2025-2100).")
    location: Optional[Location] = None


class PlantingWindowRequest(BaseModel):
    year: int = Field(..., examples=[2030], description="Target year (2025-2100).")
    location: Location
    quarter: Optional[int] = Field(None, examples=[3], description="Override the MLR-selected quarter.")
    top_n: int = Field(5, ge=1, le=20)

    @field_validator("quarter")
    def quarter_must_be_valid(cls, v):
        if v is not None and v not in (1, 2, 3, 4):
            raise ValueError("quarter must be 1, 2, 3 or 4")
        return v


class FormulaTableResponse(BaseModel):
    formulas: List[Dict[str, object]]


class HealthResponse(BaseModel):
    status: str = Field(..., examples=["ok"])
