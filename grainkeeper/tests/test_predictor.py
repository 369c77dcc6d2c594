import math

import pytest

from grainkeeper.exceptions import InvalidQuarterError, InvalidWeatherDataError
from grainkeeper.formulas import FormulaTable
from grainkeeper.predictor import QuarterlyYieldPredictor, average_observations
from grainkeeper.schemas import CoefficientSet, QuarterFormula, WeatherObservation

REFERENCE = WeatherObservation(temperature=26.76, dew_point=21.58, precipitation=236.7, wind_speed=3.23, humidity=78.9)


def constant_table(constants):
    """A table whose quarters ignore the weather and return a fixed yield."""
    return FormulaTable(
        QuarterFormula(
            quarter=q,
            name=f"Flat Q{q}",
            coefficients=CoefficientSet(
                temperature=0, dew_point=0, precipitation=0, wind_speed=0, humidity=0, constant=c
            ),
        )
        for q, c in constants.items()
    )


@pytest.fixture
def predictor():
    return QuarterlyYieldPredictor()


def test_predict_reference_case(predictor):
    """Quarter 1 on the documented reference weather lands on ~8.85 million."""
    result = predictor.predict(1, REFERENCE)

    expected = (
        8478.474259 * 26.76
        - 16643.35313 * 21.58
        + 36502.00765 * 236.7
        - 5998.639807 * 3.23
        - 787.357142 * 78.9
        + 420307.9461
    )
    assert result.quarter == 1
    assert result.predicted_yield == pytest.approx(expected, rel=1e-12)
    assert result.predicted_yield == pytest.approx(8846610.9, rel=1e-5)
    assert result.observation == REFERENCE


@pytest.mark.parametrize("quarter", [1, 2, 3, 4])
def test_predict_is_linear_in_coefficients(predictor, quarter):
    c = predictor.formulas.get(quarter).coefficients
    obs = WeatherObservation(temperature=28.1, dew_point=23.4, precipitation=180.0, wind_speed=7.5, humidity=81.0)

    expected = (
        c.temperature * 28.1
        + c.dew_point * 23.4
        + c.precipitation * 180.0
        + c.wind_speed * 7.5
        + c.humidity * 81.0
        + c.constant
    )
    assert predictor.predict(quarter, obs).predicted_yield == pytest.approx(expected, rel=1e-12)


def test_predict_is_deterministic(predictor):
    first = predictor.predict(2, REFERENCE).predicted_yield
    assert all(predictor.predict(2, REFERENCE).predicted_yield == first for _ in range(5))


def test_predict_returns_negative_values_unclamped(predictor):
    """Quarter 3 on an all-zero day is just its (negative) intercept."""
    zero = WeatherObservation(temperature=0, dew_point=0, precipitation=0, wind_speed=0, humidity=0)

    assert predictor.predict(3, zero).predicted_yield == pytest.approx(-2410001.76)


@pytest.mark.parametrize("bad_quarter", [0, 5, True, 1.5, "2"])
def test_predict_rejects_invalid_quarter(predictor, bad_quarter):
    with pytest.raises(InvalidQuarterError):
        predictor.predict(bad_quarter, REFERENCE)


@pytest.mark.parametrize(
    "field, value",
    [
        ("humidity", 100.5),
        ("humidity", -1.0),
        ("temperature", math.nan),
        ("precipitation", math.inf),
        ("wind_speed", -math.inf),
    ],
)
def test_predict_rejects_invalid_weather(predictor, field, value):
    obs = REFERENCE.model_copy(update={field: value})

    with pytest.raises(InvalidWeatherDataError):
        predictor.predict(1, obs)


def test_predict_rejects_missing_observation(predictor):
    with pytest.raises(InvalidWeatherDataError):
        predictor.predict(1, None)


def test_average_observations_is_covariate_mean():
    days = [
        WeatherObservation(temperature=24, dew_point=20, precipitation=100, wind_speed=5, humidity=70),
        WeatherObservation(temperature=26, dew_point=22, precipitation=300, wind_speed=15, humidity=90),
    ]

    mean = average_observations(days)

    assert mean.date is None
    assert (mean.temperature, mean.dew_point, mean.precipitation, mean.wind_speed, mean.humidity) == (
        25, 21, 200, 10, 80
    )


def test_average_observations_rejects_empty():
    with pytest.raises(InvalidWeatherDataError):
        average_observations([])


def test_compare_quarters_picks_highest_yield():
    predictor = QuarterlyYieldPredictor(constant_table({1: 100.0, 2: 200.0, 3: 1000.0, 4: 300.0}))
    weather = {q: REFERENCE for q in (1, 2, 3, 4)}

    result = predictor.compare_quarters(2030, weather)

    assert result.year == 2030
    assert result.optimal_quarter.quarter == 3
    assert result.optimal_quarter.name == "Q3 (July-September)"
    assert result.optimal_quarter.months.start == "July"
    assert result.optimal_quarter.months.end == "September"
    assert [q.quarter for q in result.all_quarters] == [1, 2, 3, 4]
    assert [q.confidence for q in result.all_quarters] == [85, 87, 83, 86]
    # mean 85.25, spread 90% of the best quarter earns +5
    assert result.overall_confidence == pytest.approx(90.25)
    assert result.recommendations == [
        "Plant during Q3 for optimal yield of 1000 tons/ha",
        "Good confidence in this recommendation",
        "Significant yield advantage over other quarters",
    ]


def test_compare_quarters_ties_go_to_lower_quarter():
    predictor = QuarterlyYieldPredictor(constant_table({1: 500.0, 2: 500.0, 3: 500.0, 4: 500.0}))

    result = predictor.compare_quarters(2040, {q: REFERENCE for q in (1, 2, 3, 4)})

    assert result.optimal_quarter.quarter == 1
    # no spread at all costs 5 points
    assert result.overall_confidence == pytest.approx(80.25)
    assert result.recommendations[-1] == "Close yield predictions across quarters - consider backup options"


def test_compare_quarters_tie_between_later_quarters():
    predictor = QuarterlyYieldPredictor(constant_table({1: 10.0, 2: 900.0, 3: 100.0, 4: 900.0}))

    result = predictor.compare_quarters(2040, {q: REFERENCE for q in (1, 2, 3, 4)})

    assert result.optimal_quarter.quarter == 2


def test_compare_quarters_moderate_advantage_and_spread():
    predictor = QuarterlyYieldPredictor(constant_table({1: 1000.0, 2: 880.0, 3: 870.0, 4: 860.0}))

    result = predictor.compare_quarters(2050, {q: REFERENCE for q in (1, 2, 3, 4)})

    assert result.recommendations[-1] == "Moderate yield advantage over other quarters"
    # spread 14% earns +2
    assert result.overall_confidence == pytest.approx(87.25)


def test_compare_quarters_zero_best_yield_has_no_spread():
    predictor = QuarterlyYieldPredictor(constant_table({1: 0.0, 2: -10.0, 3: -20.0, 4: -30.0}))

    result = predictor.compare_quarters(2050, {q: REFERENCE for q in (1, 2, 3, 4)})

    assert result.optimal_quarter.quarter == 1
    assert result.overall_confidence == pytest.approx(80.25)


def test_compare_quarters_averages_daily_sequences():
    predictor = QuarterlyYieldPredictor()
    days = [
        WeatherObservation(temperature=24, dew_point=20, precipitation=100, wind_speed=5, humidity=70),
        WeatherObservation(temperature=26, dew_point=22, precipitation=300, wind_speed=15, humidity=90),
    ]
    mean = WeatherObservation(temperature=25, dew_point=21, precipitation=200, wind_speed=10, humidity=80)
    weather = {1: days, 2: REFERENCE, 3: REFERENCE, 4: REFERENCE}

    result = predictor.compare_quarters(2030, weather)

    q1 = result.all_quarters[0]
    assert q1.weather == mean
    assert q1.predicted_yield == pytest.approx(predictor.predict(1, mean).predicted_yield)


def test_compare_quarters_penalizes_implausible_weather():
    predictor = QuarterlyYieldPredictor()
    stormy = REFERENCE.model_copy(update={"wind_speed": 250.0})

    result = predictor.compare_quarters(2030, {1: stormy, 2: REFERENCE, 3: REFERENCE, 4: REFERENCE})

    assert result.all_quarters[0].confidence == 65


def test_compare_quarters_requires_all_quarters():
    predictor = QuarterlyYieldPredictor()

    with pytest.raises(InvalidQuarterError, match="missing"):
        predictor.compare_quarters(2030, {1: REFERENCE, 2: REFERENCE, 3: REFERENCE})


def test_compare_quarters_rejects_unknown_quarter_key():
    predictor = QuarterlyYieldPredictor()
    weather = {q: REFERENCE for q in (1, 2, 3, 4, 5)}

    with pytest.raises(InvalidQuarterError):
        predictor.compare_quarters(2030, weather)
