"""Schedule evaluation and occurrence arithmetic for recurring definitions.

Everything here is pure: no session, no clock. The projecting and the
materializing callers in ``recurrence`` both go through
:func:`compute_occurrence`, so the temporal rules have a single implementation.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

from models import Frequency, RecurringDefinition, TransactionType
from periods import MonthWindow, add_months, days_in_month, month_index, month_key


@dataclass(frozen=True)
class Occurrence:
    definition_id: Optional[int]
    month: MonthWindow
    date: date
    type: TransactionType
    amount_cents: int
    category: str
    name: str


def occurs_in_month(
    definition: RecurringDefinition, month_start: date, month_end: date
) -> bool:
    start = definition.start_date
    if start > month_end:
        return False
    if definition.end_date and definition.end_date < month_start:
        return False
    if month_key(month_start) in (definition.skipped_months or []):
        return False

    frequency = definition.frequency
    if frequency == Frequency.weekly:
        # Month-level only: any month starting on/after the start date has one.
        return month_start >= start
    if frequency == Frequency.biweekly:
        weeks_since_start = (month_start - start).days // 7
        return weeks_since_start >= 0 and weeks_since_start % 2 == 0
    months_since_start = month_index(month_start) - month_index(start)
    if frequency == Frequency.monthly:
        return months_since_start >= 0
    if frequency == Frequency.quarterly:
        return months_since_start >= 0 and months_since_start % 3 == 0
    if frequency == Frequency.yearly:
        return month_start.year >= start.year
    return False


def occurrence_date(definition: RecurringDefinition, month_start: date) -> date:
    start = definition.start_date
    frequency = definition.frequency
    if frequency == Frequency.weekly:
        return month_start + timedelta(days=7)
    if frequency == Frequency.biweekly:
        return month_start + timedelta(days=14)
    if frequency in (Frequency.monthly, Frequency.quarterly):
        last_day = days_in_month(month_start.year, month_start.month)
        return month_start.replace(day=min(start.day, last_day))
    if frequency == Frequency.yearly:
        last_day = days_in_month(month_start.year, start.month)
        return date(month_start.year, start.month, min(start.day, last_day))
    return month_start


def _override(definition: RecurringDefinition, key: str) -> dict:
    return (definition.month_overrides or {}).get(key) or {}


def occurrence_amount(definition: RecurringDefinition, key: str) -> int:
    amount = _override(definition, key).get("amount_cents")
    return definition.amount_cents if amount is None else int(amount)


def occurrence_category(definition: RecurringDefinition, key: str) -> str:
    return _override(definition, key).get("category") or definition.category


def occurrence_name(definition: RecurringDefinition, key: str) -> str:
    return _override(definition, key).get("name") or definition.name


def compute_occurrence(
    definition: RecurringDefinition, month: MonthWindow
) -> Optional[Occurrence]:
    """Return the definition's occurrence inside ``month``, or ``None``."""
    if not occurs_in_month(definition, month.start, month.end):
        return None
    return Occurrence(
        definition_id=definition.id,
        month=month,
        date=occurrence_date(definition, month.start),
        type=definition.type,
        amount_cents=occurrence_amount(definition, month.key),
        category=occurrence_category(definition, month.key),
        name=occurrence_name(definition, month.key),
    )


def next_due_date(definition: RecurringDefinition, from_date: date) -> date:
    frequency = definition.frequency
    if frequency == Frequency.weekly:
        return from_date + timedelta(weeks=1)
    if frequency == Frequency.biweekly:
        return from_date + timedelta(weeks=2)
    if frequency == Frequency.monthly:
        return add_months(from_date, 1)
    if frequency == Frequency.quarterly:
        return add_months(from_date, 3)
    if frequency == Frequency.yearly:
        return add_months(from_date, 12)
    return from_date
