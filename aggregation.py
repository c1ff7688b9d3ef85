"""Monthly cash-flow aggregation, budget allocation and health ratios.

``aggregate_month`` is a pure function over already-loaded records. Amounts
are integer cents; the monthly-equivalent recurring estimates used by the
ratios are fractional cents and are only rounded for display.
"""

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Protocol, Sequence

from config import get_settings
from models import AssetType, Frequency, TransactionType
from periods import MonthWindow, current_month
from ratios import FinancialRatios, compute_ratios

MONTHLY_EQUIVALENT: dict[Frequency, float] = {
    Frequency.weekly: 4.33,
    Frequency.biweekly: 2.17,
    Frequency.monthly: 1.0,
}

EMERGENCY_FUND_MONTHS = 6


class CashFlow(Protocol):
    date: date
    type: TransactionType
    amount_cents: int
    recurring_definition_id: Optional[int]


@dataclass
class AggregateInputs:
    actual: Sequence[CashFlow]
    projected: Sequence[CashFlow] = ()
    recurring_definitions: Sequence = ()
    goals: Sequence = ()
    assets: Sequence = ()
    debts: Sequence = ()
    budget_settings: Optional[object] = None


@dataclass(frozen=True)
class AggregateResult:
    month: str
    includes_projected: bool
    total_income_cents: int
    total_expenses_cents: int
    net_income_cents: int
    savings_percentage: float
    debt_payoff_percentage: float
    savings_cents: int
    total_goal_contributions_cents: int
    discretionary_income_cents: int
    debt_payoff_cents: int
    remaining_balance_cents: int
    recurring_monthly_income_cents: float
    recurring_monthly_expenses_cents: float
    total_monthly_income_cents: float
    total_monthly_expenses_cents: float
    total_assets_cents: int
    total_liabilities_cents: int
    monthly_debt_payments_cents: int
    ratios: FinancialRatios
    emergency_fund_target_cents: float
    emergency_fund_progress: float

    @property
    def emergency_fund_display_progress(self) -> float:
        return min(self.emergency_fund_progress, 100.0)


def round_cents(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _sum_by_type(rows: Sequence, txn_type: TransactionType) -> int:
    return sum(row.amount_cents for row in rows if row.type == txn_type)


def monthly_equivalent(definition) -> float:
    """Per-month rate of a recurring amount; quarterly and yearly count as 0."""
    multiplier = MONTHLY_EQUIVALENT.get(definition.frequency)
    if multiplier is None:
        return 0.0
    return definition.amount_cents * multiplier


def _percentages(budget_settings) -> tuple[float, float]:
    if budget_settings is None:
        settings = get_settings()
        return settings.default_savings_pct, settings.default_debt_payoff_pct
    return (
        float(budget_settings.savings_percentage),
        float(budget_settings.debt_payoff_percentage),
    )


def aggregate_month(
    month: MonthWindow, inputs: AggregateInputs, today: Optional[date] = None
) -> AggregateResult:
    includes_projected = month.start > current_month(today).start
    actual = [txn for txn in inputs.actual if month.contains(txn.date)]
    flows = list(actual)
    if includes_projected:
        flows.extend(txn for txn in inputs.projected if month.contains(txn.date))

    total_income = _sum_by_type(flows, TransactionType.income)
    total_expenses = _sum_by_type(flows, TransactionType.expense)
    net_income = total_income - total_expenses

    savings_pct, debt_payoff_pct = _percentages(inputs.budget_settings)
    savings = round_cents(net_income * savings_pct / 100)
    goal_contributions = sum(goal.monthly_contribution_cents for goal in inputs.goals)
    discretionary = net_income - savings - goal_contributions
    debt_payoff = round_cents(discretionary * debt_payoff_pct / 100)
    remaining = discretionary - debt_payoff

    # Generated transactions are already represented by their definition's
    # monthly-equivalent estimate.
    non_recurring = [txn for txn in actual if not txn.recurring_definition_id]
    active_definitions = [d for d in inputs.recurring_definitions if d.is_active]
    recurring_income = sum(
        monthly_equivalent(d)
        for d in active_definitions
        if d.type == TransactionType.income
    )
    recurring_expenses = sum(
        monthly_equivalent(d)
        for d in active_definitions
        if d.type == TransactionType.expense
    )
    monthly_income = (
        _sum_by_type(non_recurring, TransactionType.income) + recurring_income
    )
    monthly_expenses = (
        _sum_by_type(non_recurring, TransactionType.expense) + recurring_expenses
    )

    total_assets = sum(asset.balance_cents for asset in inputs.assets)
    total_liabilities = sum(debt.balance_cents for debt in inputs.debts)
    debt_payments = sum(debt.payment_cents for debt in inputs.debts)
    ratios = compute_ratios(
        total_assets=total_assets,
        total_liabilities=total_liabilities,
        monthly_expenses=monthly_expenses,
        monthly_income=monthly_income,
        monthly_debt_payments=debt_payments,
    )

    savings_assets = sum(
        asset.balance_cents
        for asset in inputs.assets
        if asset.type == AssetType.savings
    )
    emergency_target = monthly_expenses * EMERGENCY_FUND_MONTHS
    emergency_progress = (
        savings_assets / emergency_target * 100 if emergency_target > 0 else 0.0
    )

    return AggregateResult(
        month=month.key,
        includes_projected=includes_projected,
        total_income_cents=total_income,
        total_expenses_cents=total_expenses,
        net_income_cents=net_income,
        savings_percentage=savings_pct,
        debt_payoff_percentage=debt_payoff_pct,
        savings_cents=savings,
        total_goal_contributions_cents=goal_contributions,
        discretionary_income_cents=discretionary,
        debt_payoff_cents=debt_payoff,
        remaining_balance_cents=remaining,
        recurring_monthly_income_cents=recurring_income,
        recurring_monthly_expenses_cents=recurring_expenses,
        total_monthly_income_cents=monthly_income,
        total_monthly_expenses_cents=monthly_expenses,
        total_assets_cents=total_assets,
        total_liabilities_cents=total_liabilities,
        monthly_debt_payments_cents=debt_payments,
        ratios=ratios,
        emergency_fund_target_cents=emergency_target,
        emergency_fund_progress=emergency_progress,
    )
