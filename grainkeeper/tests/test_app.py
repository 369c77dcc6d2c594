import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from grainkeeper.app import (
    app,
    get_app_settings,
    get_dataset,
    get_predictor,
    get_weather_client,
    limiter,
)
from grainkeeper.config import AppSettings
from grainkeeper.exceptions import ConfigurationError, WeatherRequestError
from grainkeeper.historical import HistoricalWeatherDataset
from grainkeeper.predictor import QuarterlyYieldPredictor
from grainkeeper.schemas import WeatherObservation
from grainkeeper.weather import quarter_date_range

REFERENCE = {
    "temperature": 26.76,
    "dew_point": 21.58,
    "precipitation": 236.7,
    "wind_speed": 3.23,
    "humidity": 78.9,
}
LOCATION = {"latitude": 15.48, "longitude": 120.97, "name": "Nueva Ecija"}


def daily(start, count, **weather):
    values = {"temperature": 25.0, "dew_point": 20.0, "precipitation": 10.0, "wind_speed": 3.0, "humidity": 80.0}
    values.update(weather)
    return [WeatherObservation(date=start + datetime.timedelta(days=i), **values) for i in range(count)]


async def fake_quarter_history(location, year, quarter):
    start, end = quarter_date_range(year, quarter)
    return daily(start, (end - start).days + 1, precipitation=120.0)


@pytest.fixture(scope="module")
def dataset():
    return HistoricalWeatherDataset.synthetic(seed=2025)


@pytest.fixture
def weather_client():
    client = MagicMock()
    client.get_forecast = AsyncMock(return_value=daily(datetime.date.today(), 16))
    client.get_quarter_history = AsyncMock(side_effect=fake_quarter_history)
    return client


@pytest.fixture
def client(dataset, weather_client):
    """TestClient with the dataset, predictor and weather client swapped for local fakes."""
    app.dependency_overrides[get_app_settings] = lambda: AppSettings()
    app.dependency_overrides[get_predictor] = lambda: QuarterlyYieldPredictor()
    app.dependency_overrides[get_dataset] = lambda: dataset
    app.dependency_overrides[get_weather_client] = lambda: weather_client
    limiter.enabled = False
    yield TestClient(app)
    limiter.enabled = True
    limiter.reset()
    app.dependency_overrides = {}


# === Test /health and /formulas ===
def test_health_check_ok(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_health_check_dataset_fail(client):
    """A dataset that cannot be loaded surfaces through the error handler."""
    def fail_get_dataset():
        raise ConfigurationError("Simulated dataset load failure")
    app.dependency_overrides[get_dataset] = fail_get_dataset

    response = client.get("/health")

    assert response.status_code == 500
    body = response.json()
    assert "Simulated dataset load failure" in body["detail"]
    assert body["error"] == "ConfigurationError"


def test_formulas_lists_all_quarters(client):
    response = client.get("/formulas")

    assert response.status_code == 200
    formulas = response.json()["formulas"]
    assert [f["quarter"] for f in formulas] == [1, 2, 3, 4]
    assert formulas[0]["coefficients"]["constant"] == 420307.9461
    assert formulas[0]["formula"].startswith("Ŷ = 8478.474259T")


# === Test /predict endpoint ===
def test_predict_success(client):
    # Arrange
    payload = {"quarter": 1, "observation": REFERENCE}

    # Act
    response = client.post("/predict", json=payload)

    # Assert
    assert response.status_code == 200
    body = response.json()
    assert body["quarter"] == 1
    assert body["predicted_yield"] == pytest.approx(8846610.9, rel=1e-5)
    assert body["observation"]["humidity"] == 78.9


def test_predict_logs_for_monitoring(client):
    with patch("grainkeeper.app.log_prediction_for_monitoring") as mock_log:
        response = client.post("/predict", json={"quarter": 2, "observation": REFERENCE})

    assert response.status_code == 200
    mock_log.assert_called_once()
    request_data, prediction = mock_log.call_args.args
    assert request_data["quarter"] == 2
    assert prediction == pytest.approx(response.json()["predicted_yield"])


def test_predict_implausible_weather_is_still_served(client):
    with patch("grainkeeper.app.check_weather_plausibility", return_value=["wind_speed"]) as mock_check:
        response = client.post("/predict", json={"quarter": 1, "observation": {**REFERENCE, "wind_speed": 250.0}})

    assert response.status_code == 200
    mock_check.assert_called_once()


def test_predict_invalid_quarter(client):
    response = client.post("/predict", json={"quarter": 5, "observation": REFERENCE})

    assert response.status_code == 400
    assert response.json()["error"] == "InvalidQuarterError"


def test_predict_humidity_out_of_range(client):
    response = client.post("/predict", json={"quarter": 1, "observation": {**REFERENCE, "humidity": 150.0}})

    assert response.status_code == 422
    assert response.json()["error"] == "InvalidWeatherDataError"


def test_predict_missing_covariate(client):
    observation = {k: v for k, v in REFERENCE.items() if k != "dew_point"}

    response = client.post("/predict", json={"quarter": 1, "observation": observation})

    assert response.status_code == 422  # FastAPI validation error


# === Test /planting-windows endpoint ===
def _observations_json(count, start=datetime.date(2025, 1, 1)):
    return [obs.model_dump(mode="json") for obs in daily(start, count, precipitation=100.0, wind_speed=10.0, humidity=75.0)]


def test_planting_windows_success(client):
    response = client.post("/planting-windows", json={"quarter": 1, "observations": _observations_json(10)})

    assert response.status_code == 200
    body = response.json()
    assert body["quarter"] == 1
    assert body["total_windows"] == 4
    assert len(body["windows"]) == 4
    assert body["windows"][0]["start_date"] == "2025-01-01"
    assert body["summary"]["best_month"] == "January"


def test_planting_windows_top_n(client):
    response = client.post(
        "/planting-windows", json={"quarter": 1, "observations": _observations_json(30), "top_n": 3}
    )

    assert response.status_code == 200
    assert response.json()["total_windows"] == 24
    assert len(response.json()["windows"]) == 3


def test_planting_windows_too_few_days(client):
    response = client.post("/planting-windows", json={"quarter": 1, "observations": _observations_json(5)})

    assert response.status_code == 422
    assert response.json()["error"] == "InsufficientDataError"


def test_planting_windows_gap_in_dates(client):
    observations = _observations_json(5) + _observations_json(5, start=datetime.date(2025, 1, 8))

    response = client.post("/planting-windows", json={"quarter": 1, "observations": observations})

    assert response.status_code == 422
    assert response.json()["error"] == "InvalidWeatherDataError"


def test_planting_windows_dates_outside_quarter(client):
    observations = _observations_json(10, start=datetime.date(2025, 8, 1))

    response = client.post("/planting-windows", json={"quarter": 1, "observations": observations})

    assert response.status_code == 422
    assert response.json()["error"] == "InvalidWeatherDataError"
    assert "outside Q1" in response.json()["detail"]


# === Test /quarter-selection endpoint ===
def test_quarter_selection_get(client):
    response = client.get("/quarter-selection", params={"year": 2030})

    assert response.status_code == 200
    body = response.json()
    assert body["year"] == 2030
    assert len(body["all_quarters"]) == 4
    assert body["optimal_quarter"]["quarter"] in (1, 2, 3, 4)
    assert body["accuracy"]["overall_accuracy"] == 96.01
    assert isinstance(body["all_quarters"][0]["predicted_yield"], int)


def test_quarter_selection_post_with_location(client):
    response = client.post("/quarter-selection", json={"year": 2100, "location": LOCATION})

    assert response.status_code == 200
    assert response.json()["year"] == 2100


def test_quarter_selection_uses_configured_accuracy(client):
    settings = AppSettings()
    settings.prediction.overall_accuracy = 91.5
    app.dependency_overrides[get_app_settings] = lambda: settings

    response = client.get("/quarter-selection", params={"year": 2030})

    assert response.json()["accuracy"]["overall_accuracy"] == 91.5


@pytest.mark.parametrize("year", [2024, 2101])
def test_quarter_selection_year_out_of_range(client, year):
    response = client.get("/quarter-selection", params={"year": year})

    assert response.status_code == 400
    assert response.json()["error"] == "InvalidYearError"


def test_quarter_selection_post_year_out_of_range(client):
    response = client.post("/quarter-selection", json={"year": 2101})

    assert response.status_code == 400


# === Test /planting-window endpoint ===
def test_planting_window_success(client, weather_client):
    response = client.post("/planting-window", json={"year": 2030, "location": LOCATION})

    assert response.status_code == 200
    body = response.json()
    assert body["year"] == 2030
    assert body["location"]["name"] == "Nueva Ecija"
    assert body["window_analysis"] is not None
    assert body["optimal_window"]["start_date"].startswith("2030-")
    assert body["recommendation"]["risk_level"] == "low"
    weather_client.get_quarter_history.assert_awaited_once()


def test_planting_window_with_quarter_override(client):
    response = client.post("/planting-window", json={"year": 2030, "location": LOCATION, "quarter": 4, "top_n": 2})

    assert response.status_code == 200
    body = response.json()
    assert body["selected_quarter"] == 4
    assert len(body["window_analysis"]["windows"]) == 2


def test_planting_window_weather_unavailable(client, weather_client):
    """The quarter recommendation still comes back when the archive is down."""
    weather_client.get_quarter_history.side_effect = WeatherRequestError("Connection failed")

    response = client.post("/planting-window", json={"year": 2030, "location": LOCATION})

    assert response.status_code == 200
    body = response.json()
    assert body["window_analysis"] is None
    assert body["optimal_window"] is None
    assert body["window_confidence"] == 0.0
    assert body["recommendation"]["risk_level"] == "medium"


def test_planting_window_invalid_quarter(client):
    response = client.post("/planting-window", json={"year": 2030, "location": LOCATION, "quarter": 7})

    assert response.status_code == 422  # FastAPI validation error


def test_planting_window_invalid_latitude(client):
    response = client.post("/planting-window", json={"year": 2030, "location": {**LOCATION, "latitude": 95}})

    assert response.status_code == 422


# === Test /daily-forecast endpoint ===
def test_daily_forecast_get(client, weather_client):
    response = client.get("/daily-forecast", params={"latitude": 15.48, "longitude": 120.97, "name": "Nueva Ecija"})

    assert response.status_code == 200
    body = response.json()
    assert len(body["daily_analysis"]) == 16
    assert body["summary"]["plantable_days"] == 16
    assert body["summary"]["overall_recommendation"] == "Excellent 16-day window with many planting opportunities"
    location = weather_client.get_forecast.await_args.args[0]
    assert location.name == "Nueva Ecija"


def test_daily_forecast_post(client):
    response = client.post("/daily-forecast", json={"location": LOCATION})

    assert response.status_code == 200
    assert response.json()["location"]["latitude"] == 15.48


def test_daily_forecast_weather_unavailable(client, weather_client):
    weather_client.get_forecast.side_effect = WeatherRequestError("Connection failed")

    response = client.get("/daily-forecast", params={"latitude": 15.48, "longitude": 120.97})

    assert response.status_code == 503
    assert response.json()["error"] == "WeatherRequestError"


def test_daily_forecast_rejects_bad_coordinates(client):
    response = client.get("/daily-forecast", params={"latitude": 120, "longitude": 120.97})

    assert response.status_code == 422


# === Test /metrics ===
def test_metrics_exposes_prediction_outcomes(client):
    client.post("/predict", json={"quarter": 1, "observation": REFERENCE})

    response = client.get("/metrics")

    assert response.status_code == 200
    assert "grainkeeper_prediction_outcomes_total" in response.text


def test_metrics_include_instrumented_http_requests(client):
    client.get("/formulas")

    response = client.get("/metrics")

    assert response.status_code == 200
    assert "http_requests_total" in response.text
    assert 'handler="/formulas"' in response.text


# === Test /model-validation endpoint ===
def test_model_validation(client):
    response = client.get("/model-validation")

    assert response.status_code == 200
    body = response.json()
    assert len(body["period_accuracies"]) == 24
    assert body["period_accuracies"][0]["period"] == "Q1 2025"
    assert body["overall_accuracy"] > 99.8
    assert set(body["quarter_accuracies"]) == {"1", "2", "3", "4"}


def test_model_validation_year_range(client):
    response = client.get("/model-validation", params={"start_year": 2030, "end_year": 2030})

    assert response.status_code == 200
    assert [r["period"] for r in response.json()["period_accuracies"]] == ["Q1 2030", "Q2 2030", "Q3 2030", "Q4 2030"]


def test_model_validation_empty_range(client):
    response = client.get("/model-validation", params={"start_year": 2050})

    assert response.status_code == 422
    assert response.json()["error"] == "InsufficientDataError"


# === Test /historical-performance endpoints ===
def test_historical_performance(client):
    response = client.get("/historical-performance")

    assert response.status_code == 200
    body = response.json()
    assert [q["quarter"] for q in body["quarters"]] == [1, 2, 3, 4]
    assert body["best_quarter"] == max(body["quarters"], key=lambda q: q["average_yield"])["quarter"]
    assert body["decades"][0]["decade"] == "2025-2034"
    assert body["decades"][-1]["decade"] == "2095-2100"


def test_historical_trend(client):
    response = client.get("/historical-performance/3/trend")

    assert response.status_code == 200
    body = response.json()
    assert body["quarter"] == 3
    assert body["years"][0] == 2025
    assert len(body["yields"]) == 76
    assert body["trend"] in ("increasing", "decreasing", "stable")


def test_historical_compare(client):
    response = client.get("/historical-performance/1/compare", params={"predicted_yield": 1e12})

    assert response.status_code == 200
    body = response.json()
    assert body["performance"] == "above_average"
    assert body["percentile"] == 100.0


def test_historical_invalid_quarter(client):
    response = client.get("/historical-performance/7/trend")

    assert response.status_code == 400
    assert response.json()["error"] == "InvalidQuarterError"
