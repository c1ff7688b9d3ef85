from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models import AssetType, Frequency, TransactionType
from periods import parse_month_key


class TransactionIn(BaseModel):
    date: date
    type: TransactionType
    amount_cents: int = Field(..., ge=0)
    category: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=200)
    recurring_definition_id: Optional[int] = None


class MonthOverrideIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount_cents: Optional[int] = Field(default=None, ge=0)
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)


class RecurringDefinitionIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    type: TransactionType
    amount_cents: int = Field(..., ge=0)
    category: str = Field(..., min_length=1, max_length=100)
    frequency: Frequency
    start_date: date
    end_date: Optional[date] = None
    is_active: bool = True
    skipped_months: list[str] = Field(default_factory=list)
    month_overrides: dict[str, MonthOverrideIn] = Field(default_factory=dict)

    @field_validator("skipped_months")
    @classmethod
    def _check_skipped(cls, value: list[str]) -> list[str]:
        return sorted({parse_month_key(key).key for key in value})

    @field_validator("month_overrides")
    @classmethod
    def _check_overrides(
        cls, value: dict[str, MonthOverrideIn]
    ) -> dict[str, MonthOverrideIn]:
        for key in value:
            parse_month_key(key)
        return value


class BudgetSettingsIn(BaseModel):
    savings_percentage: float = Field(..., ge=0, le=100)
    debt_payoff_percentage: float = Field(..., ge=0, le=100)


class GoalIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    target_cents: int = Field(default=0, ge=0)
    current_cents: int = Field(default=0, ge=0)
    monthly_contribution_cents: int = Field(default=0, ge=0)
    target_date: Optional[date] = None


class AssetIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    type: AssetType = AssetType.other
    balance_cents: int


class DebtIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    balance_cents: int = Field(..., ge=0)
    rate: float = Field(default=0.0, ge=0)
    payment_cents: int = Field(default=0, ge=0)


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    date: date
    type: TransactionType
    amount_cents: int
    category: str
    description: str
    recurring_definition_id: Optional[int] = None
    is_projected: bool = False

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: object) -> str:
        return str(value)


class RatioOut(BaseModel):
    kind: str
    value: Optional[float]
    status: str
    infinite: bool


class AggregateOut(BaseModel):
    month: str
    includes_projected: bool
    total_income_cents: int
    total_expenses_cents: int
    net_income_cents: int
    savings_cents: int
    total_goal_contributions_cents: int
    discretionary_income_cents: int
    debt_payoff_cents: int
    remaining_balance_cents: int
    total_monthly_income_cents: float
    total_monthly_expenses_cents: float
    ratios: list[RatioOut]
    emergency_fund_progress: float
    emergency_fund_display_progress: float


class MonthViewOut(BaseModel):
    month: str
    actual: list[TransactionOut]
    projected: list[TransactionOut]
    aggregate: AggregateOut


class RecurringDefinitionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: TransactionType
    amount_cents: int
    category: str
    frequency: Frequency
    start_date: date
    end_date: Optional[date] = None
    is_active: bool
    skipped_months: list[str]
    month_overrides: dict[str, dict]
    last_generated_date: Optional[date] = None
    next_due_date: Optional[date] = None
    total_occurrences: Optional[int] = None
