from datetime import date

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from database import Base
from errors import NotFoundError, StoreFailure, ValidationError
from models import Frequency, MonthlyBudgetHistory, Transaction, TransactionType
from periods import month_window
from recurrence import RecurringEngine
from scheduler import run_recurring_cycle
from schemas import (
    BudgetSettingsIn,
    GoalIn,
    MonthOverrideIn,
    RecurringDefinitionIn,
    TransactionIn,
)
from services import (
    BudgetService,
    BudgetSettingsService,
    GoalService,
    MonthTransitionService,
    RecurringDefinitionService,
    TransactionService,
)

TODAY = date(2024, 3, 10)


def _engine():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return engine


def _rent(**overrides) -> RecurringDefinitionIn:
    values = dict(
        name="Rent",
        type=TransactionType.expense,
        amount_cents=120_000,
        category="Housing",
        frequency=Frequency.monthly,
        start_date=date(2024, 1, 1),
    )
    values.update(overrides)
    return RecurringDefinitionIn(**values)


def test_creating_definition_materializes_current_month():
    with Session(_engine()) as session:
        service = RecurringDefinitionService(session, "u1")
        definition = service.create(_rent(), today=TODAY)

        txns = session.scalars(select(Transaction)).all()
        assert len(txns) == 1
        assert txns[0].date == date(2024, 3, 1)
        assert txns[0].recurring_definition_id == definition.id
        assert definition.total_occurrences == 1
        assert definition.next_due_date == date(2024, 4, 1)

        service.update(definition.id, _rent(amount_cents=125_000), today=TODAY)
        assert len(session.scalars(select(Transaction)).all()) == 1


def test_inactive_definition_is_not_materialized():
    with Session(_engine()) as session:
        RecurringDefinitionService(session, "u1").create(
            _rent(is_active=False), today=TODAY
        )
        assert session.scalars(select(Transaction)).all() == []


def test_end_date_before_start_rejected():
    with Session(_engine()) as session:
        with pytest.raises(ValidationError):
            RecurringDefinitionService(session, "u1").create(
                _rent(end_date=date(2023, 12, 31)), today=TODAY
            )


def test_delete_definition_keeps_transactions_but_detaches_them():
    with Session(_engine()) as session:
        service = RecurringDefinitionService(session, "u1")
        definition_id = service.create(_rent(), today=TODAY).id

        service.delete(definition_id)

        txn = session.scalars(select(Transaction)).one()
        assert txn.recurring_definition_id is None
        with pytest.raises(NotFoundError):
            service.get(definition_id)


def test_definitions_are_owner_scoped():
    with Session(_engine()) as session:
        definition = RecurringDefinitionService(session, "u1").create(
            _rent(), today=TODAY
        )
        with pytest.raises(NotFoundError):
            RecurringDefinitionService(session, "u2").get(definition.id)


def test_skip_and_override_management():
    with Session(_engine()) as session:
        service = RecurringDefinitionService(session, "u1")
        definition = service.create(_rent(), today=TODAY)
        engine = BudgetService(session, "u1").engine

        service.skip_month(definition.id, "2024-05")
        service.skip_month(definition.id, "2024-05")
        assert definition.skipped_months == ["2024-05"]
        assert engine.project(month_window(2024, 5)) == []

        service.unskip_month(definition.id, "2024-05")
        assert definition.skipped_months == []

        service.set_month_override(
            definition.id, "2024-06", MonthOverrideIn(amount_cents=99_000)
        )
        assert engine.project(month_window(2024, 6))[0].amount_cents == 99_000

        service.clear_month_override(definition.id, "2024-06")
        assert engine.project(month_window(2024, 6))[0].amount_cents == 120_000

        with pytest.raises(ValidationError):
            service.set_month_override(definition.id, "2024-06", MonthOverrideIn())
        with pytest.raises(ValidationError):
            service.skip_month(definition.id, "June")


def test_transaction_with_unknown_definition_rejected():
    with Session(_engine()) as session:
        with pytest.raises(NotFoundError):
            TransactionService(session, "u1").create(
                TransactionIn(
                    date=TODAY,
                    type=TransactionType.expense,
                    amount_cents=100,
                    category="Food",
                    description="Lunch",
                    recurring_definition_id=42,
                )
            )


def test_editing_materialized_transaction_keeps_its_link():
    with Session(_engine()) as session:
        definition = RecurringDefinitionService(session, "u1").create(
            _rent(), today=TODAY
        )
        txn = session.scalars(select(Transaction)).one()

        TransactionService(session, "u1").update(
            txn.id,
            TransactionIn(
                date=date(2024, 3, 1),
                type=TransactionType.expense,
                amount_cents=110_000,
                category="Housing",
                description="Rent (negotiated)",
            ),
        )
        again = RecurringEngine(session, "u1").materialize(
            month_window(2024, 3), today=TODAY
        )

        assert again.suppressed == 1
        txns = session.scalars(select(Transaction)).all()
        assert len(txns) == 1
        assert txns[0].amount_cents == 110_000
        assert txns[0].recurring_definition_id == definition.id


def test_reminder_failure_degrades_but_keeps_write():
    class Reminders:
        def __init__(self, fail: bool):
            self.fail = fail
            self.calls = []

        def reschedule(self, user_id):
            self.calls.append(user_id)
            if self.fail:
                raise RuntimeError("notification service unavailable")

    data = TransactionIn(
        date=TODAY,
        type=TransactionType.expense,
        amount_cents=1_500,
        category="Food",
        description="Lunch",
    )
    with Session(_engine()) as session:
        healthy = Reminders(fail=False)
        ok = TransactionService(session, "u1", reminders=healthy).create(data)
        assert not ok.degraded
        assert healthy.calls == ["u1"]

        broken = Reminders(fail=True)
        outcome = TransactionService(session, "u1", reminders=broken).create(data)
        assert outcome.degraded
        assert outcome.issues
        assert session.get(Transaction, outcome.record.id) is not None


def test_store_failure_is_rolled_back():
    with Session(_engine()) as session:
        bad = TransactionIn.model_construct(
            date=TODAY,
            type=TransactionType.expense,
            amount_cents=-1,
            category="Food",
            description="Refund",
            recurring_definition_id=None,
        )
        with pytest.raises(StoreFailure):
            TransactionService(session, "u1").create(bad)
        assert session.scalars(select(Transaction)).all() == []


def test_budget_settings_default_then_saved():
    with Session(_engine()) as session:
        service = BudgetSettingsService(session, "u1")
        assert service.latest() is None
        assert service.get().savings_percentage == 20

        service.update(BudgetSettingsIn(savings_percentage=30, debt_payoff_percentage=50))
        service.update(BudgetSettingsIn(savings_percentage=35, debt_payoff_percentage=50))

        assert service.get().savings_percentage == 35


def test_month_view_materializes_current_month_only():
    with Session(_engine()) as session:
        RecurringDefinitionService(session, "u1").create(
            _rent(), today=date(2024, 1, 5)
        )
        budget = BudgetService(session, "u1")

        current = budget.month_view(month_window(2024, 3), today=TODAY)
        future = budget.month_view(month_window(2024, 4), today=TODAY)

        assert len(current.actual) == 1
        assert current.projected == []
        assert current.aggregate.total_expenses_cents == 120_000
        assert future.actual == []
        assert len(future.projected) == 1
        assert future.aggregate.includes_projected
        assert future.aggregate.total_expenses_cents == 120_000
        assert len(session.scalars(select(Transaction)).all()) == 2


def test_forecast_covers_following_months():
    with Session(_engine()) as session:
        service = RecurringDefinitionService(session, "u1")
        service.create(
            _rent(name="Salary", type=TransactionType.income, amount_cents=300_000),
            today=TODAY,
        )
        service.create(_rent(), today=TODAY)
        GoalService(session, "u1").create(
            GoalIn(name="Vacation", monthly_contribution_cents=20_000)
        )

        results = BudgetService(session, "u1").forecast(3, today=TODAY)

        assert [r.month for r in results] == ["2024-04", "2024-05", "2024-06"]
        for result in results:
            assert result.net_income_cents == 180_000
            assert result.savings_cents == 36_000
            assert result.discretionary_income_cents == 124_000

        with pytest.raises(ValidationError):
            BudgetService(session, "u1").forecast(0, today=TODAY)


def test_month_transition_records_previous_month_once():
    with Session(_engine()) as session:
        TransactionService(session, "u1").create(
            TransactionIn(
                date=date(2024, 3, 5),
                type=TransactionType.income,
                amount_cents=100_000,
                category="Job",
                description="Salary",
            )
        )
        service = MonthTransitionService(session, "u1")

        row = service.process(today=date(2024, 4, 2))
        again = service.process(today=date(2024, 4, 20))

        assert row.month == "2024-03"
        assert row.net_cents == 100_000
        assert row.savings_cents == 20_000
        assert again is None
        assert len(session.scalars(select(MonthlyBudgetHistory)).all()) == 1


def test_recurring_cycle_runs_for_every_owner():
    with Session(_engine()) as session:
        RecurringDefinitionService(session, "u1").create(_rent(), today=date(2024, 2, 1))
        RecurringDefinitionService(session, "u2").create(_rent(), today=date(2024, 2, 1))

        totals = run_recurring_cycle(session, today=TODAY)
        again = run_recurring_cycle(session, today=TODAY)

        assert totals == {"users": 2, "created": 2, "errors": 0}
        assert again["created"] == 0
        history = session.scalars(select(MonthlyBudgetHistory)).all()
        assert sorted(h.user_id for h in history) == ["u1", "u2"]


def test_recurring_cycle_counts_a_failed_month_transition(monkeypatch):
    def broken_process(self, today=None):
        raise ValueError("corrupt history")

    monkeypatch.setattr(MonthTransitionService, "process", broken_process)
    with Session(_engine()) as session:
        RecurringDefinitionService(session, "u1").create(_rent(), today=date(2024, 2, 1))
        RecurringDefinitionService(session, "u2").create(_rent(), today=date(2024, 2, 1))

        totals = run_recurring_cycle(session, today=TODAY)

        assert totals == {"users": 2, "created": 2, "errors": 2}
