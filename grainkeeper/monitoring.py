import structlog
from typing import Dict, Any, List, Optional

from .predictor import PLAUSIBLE_RANGES
from .schemas import WeatherObservation

# Get structlog logger instance
logger = structlog.get_logger(__name__)


def check_weather_plausibility(observation: WeatherObservation) -> List[str]:
    """
    Flags covariates that fall outside the ranges the MLR formulas were fitted on.
    The prediction is still served; out-of-range inputs are only logged so they
    can be reviewed offline.
    """
    log = logger.bind(observation=observation.model_dump(mode="json"))
    out_of_range = []
    for name, (low, high) in PLAUSIBLE_RANGES.items():
        value = getattr(observation, name)
        if not (low <= value <= high):
            out_of_range.append(name)
            log.warning("Weather covariate outside plausible range", covariate=name, value=value, low=low, high=high)
    return out_of_range


def log_prediction_for_monitoring(request_data: Dict[str, Any], prediction: Optional[float], error: Optional[str] = None):
    """
    Log inputs, prediction output, and errors for offline analysis and
    monitoring using structlog.
    """
    log = logger.bind(
        event_type="prediction_log",  # Add event type for easier filtering
        request_quarter=request_data.get("quarter"),
        request_year=request_data.get("year"),
        prediction_result=prediction,
        prediction_error=error
    )

    if error:
        log.error("Prediction failed")
    else:
        log.info("Prediction successful")
