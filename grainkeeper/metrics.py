"""Definitions for custom Prometheus metrics."""

from prometheus_client import Counter, Histogram

# --- Define Custom Prometheus Metrics ---
PREDICTION_OUTCOMES = Counter(
    "grainkeeper_prediction_outcomes_total",
    "Counts the outcomes (success/error) of yield predictions and analyses.",
    ["endpoint", "outcome"]
)

WEATHER_SERVICE_LATENCY = Histogram(
    "grainkeeper_weather_service_request_latency_seconds",
    "Latency of requests to the Open-Meteo weather API.",
    ["endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, float("inf")]
)

PREDICTED_YIELD_DISTRIBUTION = Histogram(
    "grainkeeper_predicted_yield",
    "Distribution of predicted yield values.",
    ["quarter"],
    # The MLR formulas produce values in the millions and can go negative
    buckets=[-1_000_000, 0, 1_000_000, 2_000_000, 4_000_000, 5_000_000, 6_000_000, 8_000_000, 10_000_000, 15_000_000, float("inf")]
)

WINDOWS_ANALYZED = Counter(
    "grainkeeper_planting_windows_analyzed_total",
    "Number of 7-day planting windows scored.",
    ["quarter"]
)
# ------------------------------------
