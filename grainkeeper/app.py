import logging
import time
import os
import sys
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import (
    FastAPI,
    Request,
    Body,
    Depends,
    Query,
)
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from grainkeeper import config
from grainkeeper.config import AppSettings, get_app_settings
from grainkeeper.exceptions import GrainKeeperError
from grainkeeper.formulas import load_formula_table
from grainkeeper.forecast import analyze_forecast
from grainkeeper.historical import HistoricalWeatherDataset, load_dataset
from grainkeeper.metrics import (
    PREDICTION_OUTCOMES,
    PREDICTED_YIELD_DISTRIBUTION,
    WINDOWS_ANALYZED,
)
from grainkeeper.monitoring import check_weather_plausibility, log_prediction_for_monitoring
from grainkeeper.performance import YieldHistory
from grainkeeper.planting import PlantingAdvisor
from grainkeeper.predictor import QuarterlyYieldPredictor
from grainkeeper.quarter_selection import QuarterSelector, accuracy_info, format_quarter_selection
from grainkeeper.validation import ModelValidator
from grainkeeper.weather import OpenMeteoClient
from grainkeeper.windows import find_optimal_windows

from .schemas import (
    DailyForecastResponse,
    FormulaTableResponse,
    HealthResponse,
    HistoricalComparison,
    HistoricalPerformanceResponse,
    IntegratedPlantingAnalysis,
    Location,
    ModelAccuracy,
    PlantingWindowRequest,
    PredictionRequest,
    QuarterSelectionRequest,
    QuarterSelectionResponse,
    TrendAnalysis,
    WindowAnalysisRequest,
    WindowAnalysisResult,
    YieldPrediction,
)

# --- Configure Structured Logging ---
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ],
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

formatter = structlog.stdlib.ProcessorFormatter(
    processor=structlog.processors.JSONRenderer(),
)

handler = logging.StreamHandler(sys.stdout)
handler.setFormatter(formatter)
root_logger = logging.getLogger()

# Remove existing handlers to avoid duplicate logs
for h in root_logger.handlers[:]:
    root_logger.removeHandler(h)
root_logger.addHandler(handler)
log_level_str = os.environ.get("LOG_LEVEL", "INFO").upper()  # Read LOG_LEVEL from env, default to INFO
log_level = getattr(logging, log_level_str, logging.INFO)
root_logger.setLevel(log_level)


logger = structlog.get_logger(__name__)
# ------------------------------------

# --- Configure Rate Limiting using Settings ---
default_predict_limit = "60/minute"
default_analysis_limit = "10/minute"


def get_predict_limit() -> str:
    return config.settings.api.predict_limit if config.settings else default_predict_limit


def get_analysis_limit() -> str:
    return config.settings.api.analysis_limit if config.settings else default_analysis_limit


limiter = Limiter(key_func=get_remote_address, enabled=True)
# ---------------------------------------------

# --- Shared services, created on first use ---
_predictor: Optional[QuarterlyYieldPredictor] = None
_dataset: Optional[HistoricalWeatherDataset] = None
_weather_client: Optional[OpenMeteoClient] = None


async def get_predictor(app_settings: AppSettings = Depends(get_app_settings)) -> QuarterlyYieldPredictor:
    global _predictor
    if _predictor is None:
        _predictor = QuarterlyYieldPredictor(load_formula_table(app_settings.prediction.formulas_path))
        logger.info("Yield predictor initialized")
    return _predictor


async def get_dataset(app_settings: AppSettings = Depends(get_app_settings)) -> HistoricalWeatherDataset:
    global _dataset
    if _dataset is None:
        _dataset = load_dataset(app_settings.prediction.dataset_path, app_settings.prediction.dataset_seed)
        logger.info("Historical weather dataset loaded", **_dataset.metadata())
    return _dataset


async def get_weather_client(app_settings: AppSettings = Depends(get_app_settings)) -> OpenMeteoClient:
    global _weather_client
    if _weather_client is None:
        _weather_client = OpenMeteoClient(app_settings.weather)
    return _weather_client


async def get_selector(
    predictor: QuarterlyYieldPredictor = Depends(get_predictor),
    dataset: HistoricalWeatherDataset = Depends(get_dataset),
) -> QuarterSelector:
    return QuarterSelector(dataset, predictor)


async def get_advisor(
    selector: QuarterSelector = Depends(get_selector),
    weather_client: OpenMeteoClient = Depends(get_weather_client),
) -> PlantingAdvisor:
    return PlantingAdvisor(selector, weather_client)


async def get_yield_history(
    predictor: QuarterlyYieldPredictor = Depends(get_predictor),
    dataset: HistoricalWeatherDataset = Depends(get_dataset),
) -> YieldHistory:
    return YieldHistory.from_dataset(dataset, predictor)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application startup: initializing settings and loading formulas and dataset...")
    try:
        app_settings = await get_app_settings()
        app.state.app_settings = app_settings
        await get_predictor(app_settings)
        await get_dataset(app_settings)
        await get_weather_client(app_settings)
        logger.info("Startup initialization complete.")
    except GrainKeeperError as e:
        logger.error(f"Startup initialization failed: {e}. Service will run but some endpoints may fail.")
    yield
    if _weather_client is not None:
        logger.info("Closing weather client...")
        await _weather_client.aclose()
        logger.info("Weather client closed.")


# --- API Metadata ---
tags_metadata = [
    {
        "name": "Predictions",
        "description": "Quarterly MLR yield predictions and 7-day planting-window analysis.",
    },
    {
        "name": "Planning",
        "description": "Quarter selection, integrated planting analysis and daily forecast advice.",
    },
    {
        "name": "Service Info",
        "description": "Endpoints for service health and model information.",
    },
]

# --- FastAPI App Instance with Metadata ---
app = FastAPI(
    title="GrainKeeper API",
    description="Rice yield prediction and planting-window advice from weather covariates.",
    version="1.0.0",
    openapi_tags=tags_metadata,
    lifespan=lifespan,
)

# --- Add Rate Limiting State and Middleware/Handler ---
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)
# ----------------------------------------------------

# --- Add Prometheus Metrics ---
# Instrumentator should be added after other middleware like SlowAPI
Instrumentator().instrument(app).expose(app)
# ----------------------------


# Middleware for logging requests
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()
    # Bind request details to context for all logs within the request scope
    structlog.contextvars.bind_contextvars(
        method=request.method,
        path=request.url.path,
        client_ip=request.client.host if request.client else "unknown",
        request_id=request.headers.get("X-Request-ID", "N/A"),
    )
    logger.info("Received request")

    response = await call_next(request)

    process_time = time.time() - start_time
    logger.info(
        "Request finished",
        status_code=response.status_code,
        process_time_seconds=round(process_time, 4),
    )
    structlog.contextvars.clear_contextvars()
    return response


@app.exception_handler(GrainKeeperError)
async def grainkeeper_exception_handler(request: Request, exc: GrainKeeperError):
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} caught by handler: {exc}", exc_info=True)
    else:
        logger.warning("Request rejected", error_type=type(exc).__name__, detail=str(exc))
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": str(exc), "error": type(exc).__name__},
    )


@app.post(
    "/predict",
    response_model=YieldPrediction,
    tags=["Predictions"],
    summary="Predict yield for one quarter",
    description="Apply the quarter's MLR formula to a single weather observation.",
)
@limiter.limit(get_predict_limit)
async def predict(
    request: Request,  # Required by SlowAPI
    req: PredictionRequest = Body(
        ...,
        examples=[
            {
                "quarter": 1,
                "observation": {
                    "temperature": 26.76,
                    "dew_point": 21.58,
                    "precipitation": 236.7,
                    "wind_speed": 3.23,
                    "humidity": 78.9,
                },
            }
        ],
    ),
    predictor: QuarterlyYieldPredictor = Depends(get_predictor),
):
    structlog.contextvars.bind_contextvars(quarter=req.quarter)
    try:
        prediction = predictor.predict(req.quarter, req.observation)
    except GrainKeeperError as e:
        PREDICTION_OUTCOMES.labels(endpoint="predict", outcome="error").inc()
        log_prediction_for_monitoring(req.model_dump(), None, error=str(e))
        raise

    check_weather_plausibility(req.observation)
    PREDICTION_OUTCOMES.labels(endpoint="predict", outcome="success").inc()
    PREDICTED_YIELD_DISTRIBUTION.labels(quarter=str(prediction.quarter)).observe(prediction.predicted_yield)
    log_prediction_for_monitoring(req.model_dump(), prediction.predicted_yield)
    return prediction


@app.post(
    "/planting-windows",
    response_model=WindowAnalysisResult,
    tags=["Predictions"],
    summary="Rank the 7-day planting windows of a quarter",
    description="Score every 7-day window of the supplied daily observations and return them best first.",
)
@limiter.limit(get_analysis_limit)
async def planting_windows(
    request: Request,
    req: WindowAnalysisRequest,
    predictor: QuarterlyYieldPredictor = Depends(get_predictor),
):
    structlog.contextvars.bind_contextvars(quarter=req.quarter, days=len(req.observations))
    try:
        result = find_optimal_windows(req.quarter, req.observations, top_n=req.top_n, predictor=predictor)
    except GrainKeeperError:
        PREDICTION_OUTCOMES.labels(endpoint="planting-windows", outcome="error").inc()
        raise
    PREDICTION_OUTCOMES.labels(endpoint="planting-windows", outcome="success").inc()
    WINDOWS_ANALYZED.labels(quarter=str(req.quarter)).inc(result.total_windows)
    return result


async def _quarter_selection(
    year: int, location: Optional[Location], selector: QuarterSelector, app_settings: AppSettings
) -> QuarterSelectionResponse:
    structlog.contextvars.bind_contextvars(year=year)
    try:
        result = selector.select_optimal_quarter(year, location)
    except GrainKeeperError:
        PREDICTION_OUTCOMES.labels(endpoint="quarter-selection", outcome="error").inc()
        raise
    PREDICTION_OUTCOMES.labels(endpoint="quarter-selection", outcome="success").inc()
    return format_quarter_selection(result, accuracy_info(app_settings.prediction.overall_accuracy))


@app.post(
    "/quarter-selection",
    response_model=QuarterSelectionResponse,
    tags=["Planning"],
    summary="Select the best planting quarter of a year",
)
@limiter.limit(get_analysis_limit)
async def quarter_selection(
    request: Request,
    req: QuarterSelectionRequest,
    selector: QuarterSelector = Depends(get_selector),
    app_settings: AppSettings = Depends(get_app_settings),
):
    return await _quarter_selection(req.year, req.location, selector, app_settings)


@app.get(
    "/quarter-selection",
    response_model=QuarterSelectionResponse,
    tags=["Planning"],
    summary="Select the best planting quarter of a year",
)
@limiter.limit(get_analysis_limit)
async def quarter_selection_get(
    request: Request,
    year: int = Query(..., description="Target year (2025-2100)."),
    selector: QuarterSelector = Depends(get_selector),
    app_settings: AppSettings = Depends(get_app_settings),
):
    return await _quarter_selection(year, None, selector, app_settings)


@app.post(
    "/planting-window",
    response_model=IntegratedPlantingAnalysis,
    tags=["Planning"],
    summary="Integrated quarter and 7-day window recommendation",
    description="Select the best quarter, then find the best week in it from last year's archive weather.",
)
@limiter.limit(get_analysis_limit)
async def planting_window(
    request: Request,
    req: PlantingWindowRequest,
    advisor: PlantingAdvisor = Depends(get_advisor),
):
    structlog.contextvars.bind_contextvars(year=req.year, location=req.location.name)
    try:
        analysis = await advisor.analyze(req.year, req.location, quarter=req.quarter, top_n=req.top_n)
    except GrainKeeperError:
        PREDICTION_OUTCOMES.labels(endpoint="planting-window", outcome="error").inc()
        raise
    PREDICTION_OUTCOMES.labels(endpoint="planting-window", outcome="success").inc()
    if analysis.window_analysis is not None:
        WINDOWS_ANALYZED.labels(quarter=str(analysis.selected_quarter)).inc(analysis.window_analysis.total_windows)
    return analysis


async def _daily_forecast(location: Location, weather_client: OpenMeteoClient) -> DailyForecastResponse:
    structlog.contextvars.bind_contextvars(location=location.name)
    observations = await weather_client.get_forecast(location)
    return analyze_forecast(location, observations)


@app.get(
    "/daily-forecast",
    response_model=DailyForecastResponse,
    tags=["Planning"],
    summary="Planting suitability for each of the next 16 days",
)
@limiter.limit(get_analysis_limit)
async def daily_forecast(
    request: Request,
    latitude: float = Query(..., ge=-90, le=90),
    longitude: float = Query(..., ge=-180, le=180),
    name: str = Query("Custom Location", min_length=1),
    weather_client: OpenMeteoClient = Depends(get_weather_client),
):
    return await _daily_forecast(Location(latitude=latitude, longitude=longitude, name=name), weather_client)


@app.post(
    "/daily-forecast",
    response_model=DailyForecastResponse,
    tags=["Planning"],
    summary="Planting suitability for each of the next 16 days",
)
@limiter.limit(get_analysis_limit)
async def daily_forecast_post(
    request: Request,
    location: Location = Body(..., embed=True),
    weather_client: OpenMeteoClient = Depends(get_weather_client),
):
    return await _daily_forecast(location, weather_client)


# --- Model Info Endpoint ---
@app.get(
    "/formulas",
    response_model=FormulaTableResponse,
    tags=["Service Info"],
    summary="Get the active quarterly formulas",
    description="Returns the coefficient sets the service is currently predicting with.",
)
async def formulas(predictor: QuarterlyYieldPredictor = Depends(get_predictor)):
    return {"formulas": predictor.formulas.to_list()}


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Service Info"],
    summary="Perform a health check",
    description="Checks that settings, formulas and the historical dataset are loaded.",
)
async def health_check(
    predictor: QuarterlyYieldPredictor = Depends(get_predictor),
    dataset: HistoricalWeatherDataset = Depends(get_dataset),
):
    # Reaching here means both dependencies loaded; a failure surfaces through the error handler.
    logger.debug("Health check successful", years=len(dataset.years()), quarters=len(predictor.formulas))
    return {"status": "ok"}


@app.get(
    "/model-validation",
    response_model=ModelAccuracy,
    tags=["Service Info"],
    summary="Validate the active formulas against recorded yields",
    description="Replays the 2025-2030 reference weather through the formulas and reports the accuracy.",
)
async def model_validation(
    start_year: Optional[int] = Query(None, description="First year to include."),
    end_year: Optional[int] = Query(None, description="Last year to include."),
    predictor: QuarterlyYieldPredictor = Depends(get_predictor),
):
    return ModelValidator(predictor).validate(start_year, end_year)


# --- Historical Performance Endpoints ---
@app.get(
    "/historical-performance",
    response_model=HistoricalPerformanceResponse,
    tags=["Planning"],
    summary="Per-quarter and per-decade yield history for 2025-2100",
)
@limiter.limit(get_analysis_limit)
async def historical_performance(
    request: Request,
    history: YieldHistory = Depends(get_yield_history),
):
    return HistoricalPerformanceResponse(
        best_quarter=history.best_planting_quarter(),
        quarters=history.all_quarter_performance(),
        decades=history.decade_analysis(),
    )


@app.get(
    "/historical-performance/{quarter}/trend",
    response_model=TrendAnalysis,
    tags=["Planning"],
    summary="Year-over-year yield trend of one quarter",
)
@limiter.limit(get_analysis_limit)
async def historical_trend(
    request: Request,
    quarter: int,
    history: YieldHistory = Depends(get_yield_history),
):
    return history.trend_analysis(quarter)


@app.get(
    "/historical-performance/{quarter}/compare",
    response_model=HistoricalComparison,
    tags=["Planning"],
    summary="Place a predicted yield against the quarter's history",
)
@limiter.limit(get_analysis_limit)
async def historical_comparison(
    request: Request,
    quarter: int,
    predicted_yield: float = Query(..., description="Yield to compare (kg/ha)."),
    history: YieldHistory = Depends(get_yield_history),
):
    return history.compare_with_historical(predicted_yield, quarter)
