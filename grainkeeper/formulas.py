"""Quarterly MLR coefficient tables.

Each quarter has one fixed linear model over five weather covariates:

    Ŷ = aT + bD + cP + dW + eH + f

The four production sets below were fitted offline. A deployment may swap
them by pointing ``GK_MODEL_FORMULAS_PATH`` at a JSON file with the same
shape; the table is loaded once at startup and is read-only afterwards.
"""
import json
import math
import numbers
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional

import structlog
from pydantic import ValidationError

from .exceptions import ConfigurationError, InvalidQuarterError
from .schemas import CoefficientSet, QuarterFormula

logger = structlog.get_logger(__name__)

QUARTERS = (1, 2, 3, 4)

DEFAULT_FORMULAS: List[QuarterFormula] = [
    QuarterFormula(
        quarter=1,
        name="Quarter 1 Formula",
        coefficients=CoefficientSet(
            temperature=8478.474259,
            dew_point=-16643.35313,
            precipitation=36502.00765,
            wind_speed=-5998.639807,
            humidity=-787.357142,
            constant=420307.9461,
        ),
    ),
    QuarterFormula(
        quarter=2,
        name="Quarter 2 Formula",
        coefficients=CoefficientSet(
            temperature=-3835.953799,
            dew_point=-6149.597523,
            precipitation=-4483.424128,
            wind_speed=-2593.991107,
            humidity=-8024.420014,
            constant=1067116.384,
        ),
    ),
    QuarterFormula(
        quarter=3,
        name="Quarter 3 Formula",
        coefficients=CoefficientSet(
            temperature=16630.77076,
            dew_point=-1018.254139,
            precipitation=403.126612,
            wind_speed=74623.00801,
            humidity=25918.43338,
            constant=-2410001.76,
        ),
    ),
    QuarterFormula(
        quarter=4,
        name="Quarter 4 Formula",
        coefficients=CoefficientSet(
            temperature=8993.693672,
            dew_point=5844.061829,
            precipitation=-30748.53656,
            wind_speed=-33023.39764,
            humidity=-1155.458549,
            constant=410764.6506,
        ),
    ),
]


def validate_quarter(quarter) -> int:
    """Returns the quarter as an int, or raises InvalidQuarterError."""
    if isinstance(quarter, bool) or not isinstance(quarter, numbers.Integral) or int(quarter) not in QUARTERS:
        raise InvalidQuarterError(f"Invalid quarter: {quarter!r}. Must be 1, 2, 3, or 4.")
    return int(quarter)


class FormulaTable:
    """Mapping of quarter -> QuarterFormula with exactly one entry per quarter."""

    def __init__(self, formulas: Iterable[QuarterFormula]):
        by_quarter: Dict[int, QuarterFormula] = {}
        for formula in formulas:
            if formula.quarter in by_quarter:
                raise ConfigurationError(f"Duplicate formula for quarter {formula.quarter}.")
            for name, value in formula.coefficients.model_dump().items():
                if not math.isfinite(value):
                    raise ConfigurationError(
                        f"Coefficient '{name}' for quarter {formula.quarter} is not finite: {value}"
                    )
            by_quarter[formula.quarter] = formula

        missing = [q for q in QUARTERS if q not in by_quarter]
        if missing:
            raise ConfigurationError(f"Formula table is missing quarters: {missing}")
        self._formulas = by_quarter

    def get(self, quarter) -> QuarterFormula:
        return self._formulas[validate_quarter(quarter)]

    def __getitem__(self, quarter) -> QuarterFormula:
        return self.get(quarter)

    def __iter__(self) -> Iterator[QuarterFormula]:
        return (self._formulas[q] for q in QUARTERS)

    def __len__(self) -> int:
        return len(self._formulas)

    def to_list(self) -> List[Dict[str, object]]:
        return [
            {**formula.model_dump(), "formula": formula.formula}
            for formula in self
        ]

    @classmethod
    def default(cls) -> "FormulaTable":
        return cls(DEFAULT_FORMULAS)

    @classmethod
    def from_json(cls, path: Path) -> "FormulaTable":
        """Loads a table from ``{"formulas": [...]}`` or a bare list of formula objects."""
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Formula file not found: {path}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Formula file {path} is not valid JSON: {e}") from e

        items = raw.get("formulas") if isinstance(raw, dict) else raw
        if not isinstance(items, list):
            raise ConfigurationError(f"Formula file {path} must contain a list of formulas.")
        try:
            formulas = [QuarterFormula.model_validate(item) for item in items]
        except ValidationError as e:
            raise ConfigurationError(f"Invalid formula definition in {path}: {e}") from e

        table = cls(formulas)
        logger.info("Loaded formula table from file", path=str(path), quarters=len(table))
        return table


def load_formula_table(path: Optional[str] = None) -> FormulaTable:
    if path:
        return FormulaTable.from_json(Path(path))
    logger.info("Using built-in production formula table")
    return FormulaTable.default()
