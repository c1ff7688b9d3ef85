import math
from dataclasses import dataclass
from enum import Enum


class RatioStatus(str, Enum):
    poor = "Poor"
    fair = "Fair"
    good = "Good"
    excellent = "Excellent"
    unknown = "Unknown"


class RatioKind(str, Enum):
    liquidity = "liquidity"
    coverage = "coverage"
    debt_to_asset = "debt_to_asset"
    debt_safety = "debt_safety"


# value >= bound, first match wins, otherwise Poor
HIGHER_IS_BETTER: dict[RatioKind, tuple[tuple[float, RatioStatus], ...]] = {
    RatioKind.liquidity: (
        (2.0, RatioStatus.excellent),
        (1.0, RatioStatus.good),
        (0.5, RatioStatus.fair),
    ),
    RatioKind.coverage: (
        (6.0, RatioStatus.excellent),
        (3.0, RatioStatus.good),
        (1.0, RatioStatus.fair),
    ),
}

# value <= bound, first match wins, otherwise Poor
LOWER_IS_BETTER: dict[RatioKind, tuple[tuple[float, RatioStatus], ...]] = {
    RatioKind.debt_to_asset: (
        (0.30, RatioStatus.excellent),
        (0.50, RatioStatus.good),
    ),
    RatioKind.debt_safety: (
        (0.28, RatioStatus.excellent),
        (0.36, RatioStatus.good),
    ),
}


@dataclass(frozen=True)
class Ratio:
    kind: RatioKind
    value: float
    status: RatioStatus

    @property
    def infinite(self) -> bool:
        return math.isinf(self.value)


@dataclass(frozen=True)
class FinancialRatios:
    liquidity: Ratio
    coverage: Ratio
    debt_to_asset: Ratio
    debt_safety: Ratio

    def as_list(self) -> list[Ratio]:
        return [self.liquidity, self.coverage, self.debt_to_asset, self.debt_safety]


def grade(kind: RatioKind, value: float) -> RatioStatus:
    if kind in HIGHER_IS_BETTER:
        for bound, status in HIGHER_IS_BETTER[kind]:
            if value >= bound:
                return status
        return RatioStatus.poor
    for bound, status in LOWER_IS_BETTER[kind]:
        if value <= bound:
            return status
    return RatioStatus.poor


def _ratio(kind: RatioKind, numerator: float, denominator: float) -> Ratio:
    # A zero denominator yields 0 and no grade rather than an error.
    if denominator <= 0:
        return Ratio(kind, 0.0, RatioStatus.unknown)
    value = numerator / denominator
    return Ratio(kind, value, grade(kind, value))


def compute_ratios(
    *,
    total_assets: float,
    total_liabilities: float,
    monthly_expenses: float,
    monthly_income: float,
    monthly_debt_payments: float,
) -> FinancialRatios:
    if monthly_income <= 0 and monthly_debt_payments > 0:
        debt_safety = Ratio(RatioKind.debt_safety, math.inf, RatioStatus.poor)
    else:
        debt_safety = _ratio(
            RatioKind.debt_safety, monthly_debt_payments, monthly_income
        )
    return FinancialRatios(
        liquidity=_ratio(RatioKind.liquidity, total_assets, total_liabilities),
        coverage=_ratio(RatioKind.coverage, total_assets, monthly_expenses),
        debt_to_asset=_ratio(RatioKind.debt_to_asset, total_liabilities, total_assets),
        debt_safety=debt_safety,
    )
