from datetime import date

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from database import Base
from errors import ValidationError
from models import Frequency, RecurringDefinition, Transaction, TransactionType
from periods import month_window
from recurrence import (
    MatchById,
    MatchByValue,
    RecurringEngine,
    find_existing,
    match_strategies,
    projected_id,
    require_user_id,
)
from schedule import compute_occurrence


def _engine():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return engine


def _add_definition(session: Session, **overrides) -> RecurringDefinition:
    values = dict(
        user_id="u1",
        name="Rent",
        type=TransactionType.expense,
        amount_cents=1200,
        category="Housing",
        frequency=Frequency.monthly,
        start_date=date(2024, 1, 15),
        skipped_months=[],
        month_overrides={},
    )
    values.update(overrides)
    definition = RecurringDefinition(**values)
    session.add(definition)
    session.commit()
    return definition


def _add_transaction(session: Session, **overrides) -> Transaction:
    values = dict(
        user_id="u1",
        date=date(2024, 3, 15),
        type=TransactionType.expense,
        amount_cents=1200,
        category="Housing",
        description="Rent",
    )
    values.update(overrides)
    txn = Transaction(**values)
    session.add(txn)
    session.commit()
    return txn


def test_projection_for_month_without_actuals():
    with Session(_engine()) as session:
        definition = _add_definition(session)
        projected = RecurringEngine(session, "u1").project(month_window(2024, 3))

        assert len(projected) == 1
        item = projected[0]
        assert item.date == date(2024, 3, 15)
        assert item.amount_cents == 1200
        assert item.description == "Rent"
        assert item.is_projected
        assert item.recurring_definition_id == definition.id
        assert item.id == projected_id(definition.id, month_window(2024, 3))


def test_projection_respects_skip_and_override():
    with Session(_engine()) as session:
        _add_definition(session, skipped_months=["2024-03"])
        _add_definition(
            session,
            name="Gym",
            amount_cents=3000,
            month_overrides={"2024-04": {"amount_cents": 1000}},
        )
        engine = RecurringEngine(session, "u1")

        march = engine.project(month_window(2024, 3))
        april = engine.project(month_window(2024, 4))

        assert [p.description for p in march] == ["Gym"]
        by_name = {p.description: p.amount_cents for p in april}
        assert by_name == {"Rent": 1200, "Gym": 1000}


def test_projection_excludes_back_referenced_actual():
    with Session(_engine()) as session:
        definition = _add_definition(session)
        # edited amount and date, still linked
        _add_transaction(
            session,
            date=date(2024, 3, 2),
            amount_cents=1250,
            recurring_definition_id=definition.id,
            occurrence_date=date(2024, 3, 15),
        )
        assert RecurringEngine(session, "u1").project(month_window(2024, 3)) == []


def test_projection_suppressed_by_legacy_value_match():
    with Session(_engine()) as session:
        _add_definition(session)
        _add_transaction(session, date=date(2024, 3, 1))
        assert RecurringEngine(session, "u1").project(month_window(2024, 3)) == []


def test_linked_transaction_does_not_suppress_same_named_definition():
    with Session(_engine()) as session:
        first = _add_definition(session)
        second = _add_definition(session, start_date=date(2024, 1, 20))
        _add_transaction(session, recurring_definition_id=first.id)

        projected = RecurringEngine(session, "u1").project(month_window(2024, 3))

        assert [p.recurring_definition_id for p in projected] == [second.id]
        assert projected[0].date == date(2024, 3, 20)


def test_find_existing_prefers_id_match():
    with Session(_engine()) as session:
        definition = _add_definition(session)
        legacy = _add_transaction(session, date=date(2024, 3, 1))
        linked = _add_transaction(
            session, amount_cents=999, recurring_definition_id=definition.id
        )
        occurrence = compute_occurrence(definition, month_window(2024, 3))

        strategies = match_strategies(occurrence)
        assert isinstance(strategies[0], MatchById)
        assert isinstance(strategies[1], MatchByValue)
        assert find_existing(occurrence, [legacy, linked]) is linked


def test_projection_scoped_to_user():
    with Session(_engine()) as session:
        _add_definition(session, user_id="someone-else")
        assert RecurringEngine(session, "u1").project(month_window(2024, 3)) == []


def test_projection_ignores_inactive_definitions():
    with Session(_engine()) as session:
        _add_definition(session, is_active=False)
        assert RecurringEngine(session, "u1").project(month_window(2024, 3)) == []


def test_materialize_is_idempotent():
    with Session(_engine()) as session:
        definition = _add_definition(session)
        engine = RecurringEngine(session, "u1")
        march = month_window(2024, 3)

        first = engine.materialize(march, today=date(2024, 3, 10))
        second = engine.materialize(march, today=date(2024, 3, 28))

        assert first.created == 1
        assert second.created == 0
        assert second.suppressed == 1
        txns = session.scalars(select(Transaction)).all()
        assert len(txns) == 1
        assert txns[0].recurring_definition_id == definition.id
        assert txns[0].occurrence_date == date(2024, 3, 15)
        assert not txns[0].is_projected

        session.refresh(definition)
        assert definition.last_generated_date == date(2024, 3, 15)
        assert definition.next_due_date == date(2024, 4, 15)
        assert definition.total_occurrences == 1
        assert engine.project(march) == []


def test_materialize_counts_definitions_not_due():
    with Session(_engine()) as session:
        _add_definition(session, skipped_months=["2024-03"])
        result = RecurringEngine(session, "u1").materialize(
            month_window(2024, 3), today=date(2024, 3, 1)
        )
        assert result.not_due == 1
        assert result.created == 0
        assert session.scalars(select(Transaction)).all() == []


def test_materialize_rejects_other_months():
    with Session(_engine()) as session:
        _add_definition(session)
        with pytest.raises(ValidationError):
            RecurringEngine(session, "u1").materialize(
                month_window(2024, 4), today=date(2024, 3, 10)
            )


def test_yearly_definition_materialized_once_per_year():
    with Session(_engine()) as session:
        _add_definition(
            session,
            name="Insurance",
            frequency=Frequency.yearly,
            start_date=date(2024, 2, 10),
        )
        engine = RecurringEngine(session, "u1")
        engine.materialize(month_window(2024, 2), today=date(2024, 2, 11))
        later = engine.materialize(month_window(2024, 5), today=date(2024, 5, 1))

        assert later.created == 0
        assert len(session.scalars(select(Transaction)).all()) == 1


def test_materialize_keeps_going_after_a_failing_definition():
    with Session(_engine()) as session:
        _add_definition(session, month_overrides={"2024-03": {"amount_cents": "12.50"}})
        gym = _add_definition(
            session, name="Gym", amount_cents=300, start_date=date(2024, 1, 5)
        )

        result = RecurringEngine(session, "u1").materialize(
            month_window(2024, 3), today=date(2024, 3, 10)
        )

        assert result.errors == 1
        assert result.created == 1
        txns = session.scalars(select(Transaction)).all()
        assert [txn.recurring_definition_id for txn in txns] == [gym.id]


def test_unique_key_conflict_counts_as_suppressed():
    with Session(_engine()) as session:
        definition = _add_definition(session)
        # linked row moved out of March, so the existence check misses it
        _add_transaction(
            session,
            date=date(2024, 4, 2),
            recurring_definition_id=definition.id,
            occurrence_date=date(2024, 3, 15),
        )

        result = RecurringEngine(session, "u1").materialize(
            month_window(2024, 3), today=date(2024, 3, 10)
        )

        assert result.suppressed == 1
        assert result.created == 0
        assert result.errors == 0
        assert len(session.scalars(select(Transaction)).all()) == 1
        session.refresh(definition)
        assert definition.last_generated_date is None
        assert definition.total_occurrences is None


def test_yearly_projection_only_in_its_own_month():
    with Session(_engine()) as session:
        _add_definition(
            session,
            name="Insurance",
            frequency=Frequency.yearly,
            start_date=date(2024, 2, 10),
        )
        engine = RecurringEngine(session, "u1")

        february = engine.project(month_window(2024, 2))
        assert [txn.date for txn in february] == [date(2024, 2, 10)]
        assert engine.project(month_window(2024, 5)) == []


def test_projected_id_uses_month_start_epoch_millis():
    assert projected_id(7, month_window(2024, 3)) == "projected-7-1709251200000"


def test_require_user_id_rejects_blank():
    with pytest.raises(ValidationError):
        require_user_id("  ")
    with pytest.raises(ValidationError):
        RecurringEngine(session=None, user_id=None)
