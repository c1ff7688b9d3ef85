from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Optional, Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from aggregation import AggregateInputs, AggregateResult, aggregate_month
from config import get_settings
from errors import NotFoundError, StoreFailure, ValidationError
from models import (
    Asset,
    BudgetSettings,
    Debt,
    Goal,
    MonthlyBudgetHistory,
    RecurringDefinition,
    Transaction,
)
from periods import MonthWindow, current_month, month_window_for, parse_month_key
from recurrence import ProjectedTransaction, RecurringEngine, require_user_id
from schemas import (
    BudgetSettingsIn,
    MonthOverrideIn,
    RecurringDefinitionIn,
    TransactionIn,
)

logger = logging.getLogger(__name__)


def _commit(session: Session) -> None:
    try:
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        raise StoreFailure(str(exc)) from exc


class ReminderScheduler(Protocol):
    def reschedule(self, user_id: str) -> None: ...


class SnapshotRequester(Protocol):
    def request_update(self, user_id: str) -> None: ...


@dataclass
class WriteOutcome:
    """A committed write plus the state of its best-effort follow-ups."""

    record: object
    degraded: bool = False
    issues: list[str] = field(default_factory=list)


def _follow_up(outcome: WriteOutcome, label: str, action) -> WriteOutcome:
    # The primary write is already committed; a failed follow-up degrades
    # the outcome instead of failing it.
    try:
        action()
    except Exception as exc:
        outcome.degraded = True
        outcome.issues.append(f"{label}: {exc}")
        logger.warning(f"follow_up_degraded: step={label} error={exc}")
    return outcome


def users_with_definitions(session: Session) -> list[str]:
    stmt = select(RecurringDefinition.user_id).distinct().order_by(
        RecurringDefinition.user_id
    )
    return list(session.scalars(stmt).all())


class TransactionService:
    def __init__(
        self,
        session: Session,
        user_id: str,
        reminders: Optional[ReminderScheduler] = None,
    ) -> None:
        self.session = session
        self.user_id = require_user_id(user_id)
        self.reminders = reminders

    def _after_write(self, record: object) -> WriteOutcome:
        outcome = WriteOutcome(record)
        if self.reminders is not None:
            _follow_up(
                outcome,
                "reminders",
                lambda: self.reminders.reschedule(self.user_id),
            )
        return outcome

    def _check_definition(self, definition_id: Optional[int]) -> None:
        if definition_id is None:
            return
        definition = self.session.get(RecurringDefinition, definition_id)
        if not definition or definition.user_id != self.user_id:
            raise NotFoundError("Recurring definition not found")

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn or txn.user_id != self.user_id:
            raise NotFoundError("Transaction not found")
        return txn

    def list_for_month(self, month: MonthWindow) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date.between(month.start, month.end),
            )
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        return list(self.session.scalars(stmt).all())

    def create(self, data: TransactionIn) -> WriteOutcome:
        self._check_definition(data.recurring_definition_id)
        txn = Transaction(
            user_id=self.user_id,
            date=data.date,
            type=data.type,
            amount_cents=data.amount_cents,
            category=data.category,
            description=data.description,
            recurring_definition_id=data.recurring_definition_id,
            is_projected=False,
        )
        self.session.add(txn)
        _commit(self.session)
        self.session.refresh(txn)
        return self._after_write(txn)

    def update(self, transaction_id: int, data: TransactionIn) -> WriteOutcome:
        txn = self.get(transaction_id)
        values = data.model_dump()
        # an edit that leaves the link out keeps the materialized occurrence linked
        if "recurring_definition_id" in data.model_fields_set:
            self._check_definition(data.recurring_definition_id)
        else:
            values.pop("recurring_definition_id")
        for name, value in values.items():
            setattr(txn, name, value)
        _commit(self.session)
        self.session.refresh(txn)
        return self._after_write(txn)

    def delete(self, transaction_id: int) -> WriteOutcome:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        _commit(self.session)
        return self._after_write(transaction_id)


class RecurringDefinitionService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = require_user_id(user_id)

    def get(self, definition_id: int) -> RecurringDefinition:
        definition = self.session.get(RecurringDefinition, definition_id)
        if not definition or definition.user_id != self.user_id:
            raise NotFoundError("Recurring definition not found")
        return definition

    def list(self, *, include_inactive: bool = True) -> list[RecurringDefinition]:
        stmt = (
            select(RecurringDefinition)
            .where(RecurringDefinition.user_id == self.user_id)
            .order_by(RecurringDefinition.start_date, RecurringDefinition.id)
        )
        if not include_inactive:
            stmt = stmt.where(RecurringDefinition.is_active.is_(True))
        return list(self.session.scalars(stmt).all())

    @staticmethod
    def _validate(data: RecurringDefinitionIn) -> None:
        if data.end_date and data.end_date < data.start_date:
            raise ValidationError("End date must not be before start date")

    @staticmethod
    def _overrides(data: RecurringDefinitionIn) -> dict:
        return {
            key: override.model_dump(exclude_none=True)
            for key, override in data.month_overrides.items()
        }

    def _materialize_current(
        self, definition: RecurringDefinition, today: Optional[date]
    ) -> None:
        if not definition.is_active:
            return
        engine = RecurringEngine(self.session, self.user_id)
        try:
            engine.materialize_definition(definition, current_month(today))
        except IntegrityError:
            # materialized concurrently
            self.session.rollback()
            return
        _commit(self.session)

    def create(
        self, data: RecurringDefinitionIn, today: Optional[date] = None
    ) -> RecurringDefinition:
        self._validate(data)
        definition = RecurringDefinition(
            user_id=self.user_id,
            name=data.name,
            type=data.type,
            amount_cents=data.amount_cents,
            category=data.category,
            frequency=data.frequency,
            start_date=data.start_date,
            end_date=data.end_date,
            is_active=data.is_active,
            skipped_months=list(data.skipped_months),
            month_overrides=self._overrides(data),
            total_occurrences=0,
        )
        self.session.add(definition)
        _commit(self.session)
        self._materialize_current(definition, today)
        self.session.refresh(definition)
        return definition

    def update(
        self,
        definition_id: int,
        data: RecurringDefinitionIn,
        today: Optional[date] = None,
    ) -> RecurringDefinition:
        definition = self.get(definition_id)
        self._validate(data)
        for name, value in data.model_dump(
            exclude={"skipped_months", "month_overrides"}
        ).items():
            setattr(definition, name, value)
        definition.skipped_months = list(data.skipped_months)
        definition.month_overrides = self._overrides(data)
        _commit(self.session)
        self._materialize_current(definition, today)
        self.session.refresh(definition)
        return definition

    def set_active(
        self, definition_id: int, is_active: bool, today: Optional[date] = None
    ) -> RecurringDefinition:
        definition = self.get(definition_id)
        definition.is_active = is_active
        _commit(self.session)
        self._materialize_current(definition, today)
        return definition

    def delete(self, definition_id: int) -> None:
        """Delete the definition; its transactions stay but lose the link."""
        definition = self.get(definition_id)
        self.session.execute(
            update(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.recurring_definition_id == definition.id,
            )
            .values(recurring_definition_id=None)
        )
        self.session.delete(definition)
        _commit(self.session)

    def skip_month(self, definition_id: int, key: str) -> RecurringDefinition:
        key = parse_month_key(key).key
        definition = self.get(definition_id)
        skipped = list(definition.skipped_months or [])
        if key not in skipped:
            definition.skipped_months = sorted(skipped + [key])
            _commit(self.session)
        return definition

    def unskip_month(self, definition_id: int, key: str) -> RecurringDefinition:
        key = parse_month_key(key).key
        definition = self.get(definition_id)
        skipped = list(definition.skipped_months or [])
        if key in skipped:
            definition.skipped_months = [k for k in skipped if k != key]
            _commit(self.session)
        return definition

    def set_month_override(
        self, definition_id: int, key: str, data: MonthOverrideIn
    ) -> RecurringDefinition:
        key = parse_month_key(key).key
        values = data.model_dump(exclude_none=True)
        if not values:
            raise ValidationError("Override must set amount, category or name")
        definition = self.get(definition_id)
        overrides = dict(definition.month_overrides or {})
        overrides[key] = values
        definition.month_overrides = overrides
        _commit(self.session)
        return definition

    def clear_month_override(self, definition_id: int, key: str) -> RecurringDefinition:
        key = parse_month_key(key).key
        definition = self.get(definition_id)
        overrides = dict(definition.month_overrides or {})
        if overrides.pop(key, None) is not None:
            definition.month_overrides = overrides
            _commit(self.session)
        return definition


class BudgetSettingsService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = require_user_id(user_id)

    def latest(self) -> Optional[BudgetSettings]:
        stmt = (
            select(BudgetSettings)
            .where(BudgetSettings.user_id == self.user_id)
            .order_by(BudgetSettings.updated_at.desc(), BudgetSettings.id.desc())
            .limit(1)
        )
        return self.session.scalar(stmt)

    def get(self) -> BudgetSettings:
        current = self.latest()
        if current:
            return current
        settings = get_settings()
        # unsaved defaults
        return BudgetSettings(
            user_id=self.user_id,
            savings_percentage=settings.default_savings_pct,
            debt_payoff_percentage=settings.default_debt_payoff_pct,
        )

    def update(self, data: BudgetSettingsIn) -> BudgetSettings:
        current = self.latest()
        if not current:
            current = BudgetSettings(user_id=self.user_id)
            self.session.add(current)
        current.savings_percentage = data.savings_percentage
        current.debt_payoff_percentage = data.debt_payoff_percentage
        _commit(self.session)
        self.session.refresh(current)
        return current


class _OwnedRecordService:
    model: type
    label = "Record"

    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = require_user_id(user_id)

    def list(self) -> list:
        stmt = (
            select(self.model)
            .where(self.model.user_id == self.user_id)
            .order_by(self.model.id)
        )
        return list(self.session.scalars(stmt).all())

    def get(self, record_id: int):
        record = self.session.get(self.model, record_id)
        if not record or record.user_id != self.user_id:
            raise NotFoundError(f"{self.label} not found")
        return record

    def _after_write(self, record: object) -> WriteOutcome:
        return WriteOutcome(record)

    def create(self, data) -> WriteOutcome:
        record = self.model(user_id=self.user_id, **data.model_dump())
        self.session.add(record)
        _commit(self.session)
        self.session.refresh(record)
        return self._after_write(record)

    def update(self, record_id: int, data) -> WriteOutcome:
        record = self.get(record_id)
        for name, value in data.model_dump().items():
            setattr(record, name, value)
        _commit(self.session)
        self.session.refresh(record)
        return self._after_write(record)

    def delete(self, record_id: int) -> WriteOutcome:
        record = self.get(record_id)
        self.session.delete(record)
        _commit(self.session)
        return self._after_write(record_id)


class GoalService(_OwnedRecordService):
    model = Goal
    label = "Goal"


class _BalanceSheetService(_OwnedRecordService):
    def __init__(
        self,
        session: Session,
        user_id: str,
        snapshots: Optional[SnapshotRequester] = None,
    ) -> None:
        super().__init__(session, user_id)
        self.snapshots = snapshots

    def _after_write(self, record: object) -> WriteOutcome:
        outcome = WriteOutcome(record)
        if self.snapshots is not None:
            _follow_up(
                outcome,
                "net_worth_snapshot",
                lambda: self.snapshots.request_update(self.user_id),
            )
        return outcome


class AssetService(_BalanceSheetService):
    model = Asset
    label = "Asset"


class DebtService(_BalanceSheetService):
    model = Debt
    label = "Debt"


@dataclass
class MonthView:
    month: MonthWindow
    actual: list[Transaction]
    projected: list[ProjectedTransaction]
    aggregate: AggregateResult


class BudgetService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = require_user_id(user_id)
        self.engine = RecurringEngine(session, self.user_id)

    def inputs_for_month(
        self, month: MonthWindow, projected: Optional[list] = None
    ) -> AggregateInputs:
        return AggregateInputs(
            actual=TransactionService(self.session, self.user_id).list_for_month(month),
            projected=self.engine.project(month) if projected is None else projected,
            recurring_definitions=RecurringDefinitionService(
                self.session, self.user_id
            ).list(include_inactive=False),
            goals=GoalService(self.session, self.user_id).list(),
            assets=AssetService(self.session, self.user_id).list(),
            debts=DebtService(self.session, self.user_id).list(),
            budget_settings=BudgetSettingsService(self.session, self.user_id).get(),
        )

    def aggregate(self, month: MonthWindow, today: Optional[date] = None) -> AggregateResult:
        return aggregate_month(month, self.inputs_for_month(month), today)

    def month_view(self, month: MonthWindow, today: Optional[date] = None) -> MonthView:
        if month == current_month(today):
            self.engine.materialize(month, today)
        projected = self.engine.project(month)
        inputs = self.inputs_for_month(month, projected)
        return MonthView(
            month=month,
            actual=list(inputs.actual),
            projected=projected,
            aggregate=aggregate_month(month, inputs, today),
        )

    def forecast(self, months: int = 3, today: Optional[date] = None) -> list[AggregateResult]:
        if months < 1:
            raise ValidationError("Forecast needs at least one month")
        results = []
        month = current_month(today)
        for _ in range(months):
            month = month.next()
            results.append(self.aggregate(month, today))
        return results


class MonthTransitionService:
    """Records the budget outcome of each completed month once."""

    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = require_user_id(user_id)

    def history(self) -> list[MonthlyBudgetHistory]:
        stmt = (
            select(MonthlyBudgetHistory)
            .where(MonthlyBudgetHistory.user_id == self.user_id)
            .order_by(MonthlyBudgetHistory.month.desc())
        )
        return list(self.session.scalars(stmt).all())

    def process(self, today: Optional[date] = None) -> Optional[MonthlyBudgetHistory]:
        this_month = current_month(today)
        previous = month_window_for(this_month.start - date.resolution)
        exists = self.session.scalar(
            select(MonthlyBudgetHistory.id).where(
                MonthlyBudgetHistory.user_id == self.user_id,
                MonthlyBudgetHistory.month == previous.key,
            )
        )
        if exists:
            return None

        result = BudgetService(self.session, self.user_id).aggregate(previous, today)
        row = MonthlyBudgetHistory(
            user_id=self.user_id,
            month=previous.key,
            income_cents=result.total_income_cents,
            expense_cents=result.total_expenses_cents,
            net_cents=result.net_income_cents,
            savings_cents=result.savings_cents,
            discretionary_cents=result.discretionary_income_cents,
        )
        self.session.add(row)
        _commit(self.session)
        logger.info(
            f"month_transition: user={self.user_id} month={previous.key} "
            f"net_cents={row.net_cents}"
        )
        return row
