from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class Frequency(str, Enum):
    weekly = "weekly"
    biweekly = "biweekly"
    monthly = "monthly"
    quarterly = "quarterly"
    yearly = "yearly"


class AssetType(str, Enum):
    savings = "savings"
    checking = "checking"
    investment = "investment"
    property = "property"
    vehicle = "vehicle"
    other = "other"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class RecurringDefinition(Base, TimestampMixin):
    __tablename__ = "recurring_definitions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    frequency: Mapped[Frequency] = mapped_column(SAEnum(Frequency), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # "YYYY-MM" keys; always reassigned, never mutated in place
    skipped_months: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    # "YYYY-MM" -> {"amount_cents"?, "category"?, "name"?}
    month_overrides: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    last_generated_date: Mapped[Optional[date]] = mapped_column(Date)
    next_due_date: Mapped[Optional[date]] = mapped_column(Date)
    total_occurrences: Mapped[Optional[int]] = mapped_column(Integer)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="recurring_definition"
    )

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_recurring_amount_positive"),
        Index("ix_recurring_user_active", "user_id", "is_active"),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    recurring_definition_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("recurring_definitions.id", ondelete="SET NULL")
    )
    occurrence_date: Mapped[Optional[date]] = mapped_column(Date)
    is_projected: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    recurring_definition: Mapped[Optional["RecurringDefinition"]] = relationship(
        "RecurringDefinition", back_populates="transactions"
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "recurring_definition_id",
            "occurrence_date",
            name="uq_txn_definition_occurrence",
        ),
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_type_date", "user_id", "type", "date"),
        CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
    )


class BudgetSettings(Base, TimestampMixin):
    __tablename__ = "budget_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    savings_percentage: Mapped[float] = mapped_column(Float, nullable=False)
    debt_payoff_percentage: Mapped[float] = mapped_column(Float, nullable=False)

    __table_args__ = (Index("ix_budget_settings_user_updated", "user_id", "updated_at"),)


class Goal(Base, TimestampMixin):
    __tablename__ = "goals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    target_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    monthly_contribution_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    target_date: Mapped[Optional[date]] = mapped_column(Date)

    __table_args__ = (
        CheckConstraint(
            "monthly_contribution_cents >= 0", name="ck_goal_contribution_positive"
        ),
    )


class Asset(Base, TimestampMixin):
    __tablename__ = "assets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    type: Mapped[AssetType] = mapped_column(
        SAEnum(AssetType), nullable=False, default=AssetType.other
    )
    balance_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Debt(Base, TimestampMixin):
    __tablename__ = "debts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    balance_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    payment_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("balance_cents >= 0", name="ck_debt_balance_positive"),
        CheckConstraint("payment_cents >= 0", name="ck_debt_payment_positive"),
    )


class NetWorthEntry(Base, TimestampMixin):
    __tablename__ = "net_worth_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    # first day of the month the snapshot belongs to
    date: Mapped[date] = mapped_column(Date, nullable=False)
    net_worth_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    assets_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    debts_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "date", name="uq_net_worth_user_month"),
    )


class MonthlyBudgetHistory(Base, TimestampMixin):
    __tablename__ = "monthly_budget_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    month: Mapped[str] = mapped_column(String(7), nullable=False)
    income_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    expense_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    net_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    savings_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    discretionary_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "month", name="uq_budget_history_user_month"),
    )
