"""Long-range yield history per quarter.

A ``YieldHistory`` is usually built by running every year and quarter of the
2025-2100 weather dataset through the predictor once. The resulting series
backs the per-quarter performance table, the comparison of a fresh
prediction against history, per-quarter trends and decade summaries.
"""
from typing import Iterable, List, Optional, Sequence

import numpy as np
import structlog

from .exceptions import InsufficientDataError
from .formulas import QUARTERS, validate_quarter
from .historical import HistoricalWeatherDataset
from .predictor import QuarterlyYieldPredictor, average_observations
from .schemas import (
    DecadeSummary,
    HistoricalComparison,
    QuarterPerformance,
    TrendAnalysis,
    YieldRecord,
)

logger = structlog.get_logger(__name__)

# Slopes below this many kg/ha per year count as flat
STABLE_SLOPE = 1000.0
AVERAGE_BAND = 0.1
DECADE_YEARS = 10


def yield_slope(years: Sequence[int], yields: Sequence[float]) -> float:
    """Least-squares slope of yield against year; 0 for fewer than two distinct years."""
    if len(set(years)) < 2:
        return 0.0
    slope, _ = np.polyfit(np.asarray(years, dtype=float), np.asarray(yields, dtype=float), 1)
    return float(slope)


def classify_slope(slope: float, rising: str, falling: str) -> str:
    if abs(slope) < STABLE_SLOPE:
        return "stable"
    return rising if slope > 0 else falling


class YieldHistory:
    """Date-ordered quarterly yield records with summary queries over them."""

    def __init__(self, records: Iterable[YieldRecord]):
        self.records = sorted(records, key=lambda r: (r.year, r.quarter))
        if not self.records:
            raise InsufficientDataError("Yield history is empty.")

    @classmethod
    def from_dataset(
        cls, dataset: HistoricalWeatherDataset, predictor: Optional[QuarterlyYieldPredictor] = None
    ) -> "YieldHistory":
        predictor = predictor or QuarterlyYieldPredictor()
        records = [
            YieldRecord(
                year=year,
                quarter=quarter,
                recorded_yield=predictor.predict(quarter, weather).predicted_yield,
                weather=weather,
            )
            for year in dataset.years()
            for quarter, weather in sorted(dataset.year(year).items())
        ]
        logger.debug("Built yield history from dataset", records=len(records), source=dataset.source)
        return cls(records)

    def quarters(self) -> List[int]:
        return sorted({r.quarter for r in self.records})

    def for_quarter(self, quarter: int) -> List[YieldRecord]:
        quarter = validate_quarter(quarter)
        records = [r for r in self.records if r.quarter == quarter]
        if not records:
            raise InsufficientDataError(f"No yield history for Q{quarter}.")
        return records

    def quarter_performance(self, quarter: int) -> QuarterPerformance:
        records = self.for_quarter(quarter)
        yields = np.array([r.recorded_yield for r in records])
        # argmax/argmin return the earliest year on ties
        best = records[int(np.argmax(yields))]
        worst = records[int(np.argmin(yields))]
        return QuarterPerformance(
            quarter=quarter,
            average_yield=float(yields.mean()),
            best_year=best.year,
            best_yield=best.recorded_yield,
            worst_year=worst.year,
            worst_yield=worst.recorded_yield,
            success_rate=float((yields > 0).mean() * 100.0),
            average_weather=average_observations([r.weather for r in records]),
        )

    def all_quarter_performance(self) -> List[QuarterPerformance]:
        return [self.quarter_performance(q) for q in self.quarters()]

    def best_planting_quarter(self) -> int:
        """Quarter with the highest average yield; the lower quarter wins a tie."""
        performance = self.all_quarter_performance()
        return max(performance, key=lambda p: p.average_yield).quarter

    def compare_with_historical(self, predicted_yield: float, quarter: int) -> HistoricalComparison:
        records = self.for_quarter(quarter)
        yields = np.sort(np.array([r.recorded_yield for r in records]))
        average = float(yields.mean())
        band = AVERAGE_BAND * abs(average)
        if predicted_yield > average + band:
            performance = "above_average"
        elif predicted_yield < average - band:
            performance = "below_average"
        else:
            performance = "average"

        # Share of recorded years that fell short of the prediction
        below = int(np.searchsorted(yields, predicted_yield, side="left"))
        return HistoricalComparison(
            quarter=quarter,
            predicted_yield=predicted_yield,
            historical_average=average,
            historical_best=float(yields[-1]),
            historical_worst=float(yields[0]),
            success_rate=float((yields > 0).mean() * 100.0),
            performance=performance,
            percentile=below / len(yields) * 100.0,
        )

    def trend_analysis(self, quarter: int) -> TrendAnalysis:
        records = self.for_quarter(quarter)
        years = [r.year for r in records]
        yields = [r.recorded_yield for r in records]
        slope = yield_slope(years, yields)
        return TrendAnalysis(
            quarter=quarter,
            trend=classify_slope(slope, "increasing", "decreasing"),
            change_rate=slope,
            years=years,
            yields=yields,
        )

    def decade_analysis(self) -> List[DecadeSummary]:
        """Ten-year blocks from the first recorded year; the last block stops at the last year."""
        first_year = self.records[0].year
        last_year = self.records[-1].year
        decades = []
        for start in range(first_year, last_year + 1, DECADE_YEARS):
            end = min(start + DECADE_YEARS - 1, last_year)
            block = [r for r in self.records if start <= r.year <= end]
            if not block:
                continue

            quarter_averages = {
                q: float(np.mean([r.recorded_yield for r in block if r.quarter == q]))
                for q in QUARTERS
                if any(r.quarter == q for r in block)
            }
            years = sorted({r.year for r in block})
            yearly_means = [float(np.mean([r.recorded_yield for r in block if r.year == y])) for y in years]
            decades.append(
                DecadeSummary(
                    decade=f"{start}-{end}",
                    average_yield=float(np.mean([r.recorded_yield for r in block])),
                    best_quarter=max(quarter_averages, key=quarter_averages.get),
                    worst_quarter=min(quarter_averages, key=quarter_averages.get),
                    trend=classify_slope(yield_slope(years, yearly_means), "improving", "declining"),
                )
            )
        return decades
