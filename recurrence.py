import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Iterable, Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from errors import ValidationError
from models import RecurringDefinition, Transaction, TransactionType
from periods import MonthWindow, current_month, month_window_for
from schedule import Occurrence, compute_occurrence, next_due_date

logger = logging.getLogger(__name__)


def require_user_id(user_id: Optional[str]) -> str:
    if not user_id or not str(user_id).strip():
        raise ValidationError("Owner id is required")
    return str(user_id)


@dataclass(frozen=True)
class ProjectedTransaction:
    """An occurrence shown for a month but never written to the store."""

    id: str
    user_id: str
    date: date
    type: TransactionType
    amount_cents: int
    category: str
    description: str
    recurring_definition_id: Optional[int]
    occurrence_date: date
    is_projected: bool = True


def projected_id(definition_id: Optional[int], month: MonthWindow) -> str:
    month_start = datetime.combine(month.start, time(), tzinfo=timezone.utc)
    return f"projected-{definition_id}-{int(month_start.timestamp() * 1000)}"


@dataclass(frozen=True)
class MatchById:
    definition_id: int
    month: MonthWindow

    def matches(self, txn: Transaction) -> bool:
        return txn.recurring_definition_id == self.definition_id and self.month.contains(
            txn.date
        )


@dataclass(frozen=True)
class MatchByValue:
    name: str
    amount_cents: int
    type: TransactionType
    month: MonthWindow

    def matches(self, txn: Transaction) -> bool:
        return (
            txn.description == self.name
            and txn.amount_cents == self.amount_cents
            and txn.type == self.type
            and self.month.contains(txn.date)
        )


MatchStrategy = Union[MatchById, MatchByValue]


def match_strategies(occurrence: Occurrence) -> list[MatchStrategy]:
    # The dedup window is the month holding the occurrence date, which is the
    # target month for every frequency except yearly.
    window = month_window_for(occurrence.date)
    strategies: list[MatchStrategy] = []
    if occurrence.definition_id is not None:
        strategies.append(MatchById(occurrence.definition_id, window))
    strategies.append(
        MatchByValue(occurrence.name, occurrence.amount_cents, occurrence.type, window)
    )
    return strategies


def find_existing(
    occurrence: Occurrence, transactions: Iterable[Transaction]
) -> Optional[Transaction]:
    """Find the actual transaction that already realizes ``occurrence``.

    Back-referenced transactions only ever match by id; value matching is
    reserved for legacy rows without a back-reference.
    """
    candidates = list(transactions)
    for strategy in match_strategies(occurrence):
        for txn in candidates:
            if isinstance(strategy, MatchByValue) and txn.recurring_definition_id:
                continue
            if strategy.matches(txn):
                return txn
    return None


@dataclass
class MaterializeResult:
    month: str
    created: int = 0
    suppressed: int = 0
    not_due: int = 0
    errors: int = 0
    transaction_ids: list[int] = field(default_factory=list)


class RecurringEngine:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = require_user_id(user_id)

    def active_definitions(self) -> list[RecurringDefinition]:
        stmt = (
            select(RecurringDefinition)
            .where(
                RecurringDefinition.user_id == self.user_id,
                RecurringDefinition.is_active.is_(True),
            )
            .order_by(RecurringDefinition.id)
        )
        return list(self.session.scalars(stmt).all())

    def _transactions_in(self, window: MonthWindow) -> list[Transaction]:
        stmt = select(Transaction).where(
            Transaction.user_id == self.user_id,
            Transaction.date.between(window.start, window.end),
        )
        return list(self.session.scalars(stmt).all())

    def project(self, month: MonthWindow) -> list[ProjectedTransaction]:
        """Unpersisted occurrences dated inside ``month`` with no matching row."""
        projected: list[ProjectedTransaction] = []
        existing = self._transactions_in(month)
        for definition in self.active_definitions():
            occurrence = compute_occurrence(definition, month)
            # yearly occurrences can land in another month of the year
            if occurrence is None or not month.contains(occurrence.date):
                continue
            if find_existing(occurrence, existing) is not None:
                continue
            projected.append(
                ProjectedTransaction(
                    id=projected_id(definition.id, month),
                    user_id=self.user_id,
                    date=occurrence.date,
                    type=occurrence.type,
                    amount_cents=occurrence.amount_cents,
                    category=occurrence.category,
                    description=occurrence.name,
                    recurring_definition_id=definition.id,
                    occurrence_date=occurrence.date,
                )
            )
        return projected

    def materialize_definition(
        self, definition: RecurringDefinition, month: MonthWindow
    ) -> Optional[Transaction]:
        """Persist ``definition``'s occurrence in ``month`` unless one exists.

        The existence check reads the store right before the insert. Returns
        the new transaction, or ``None`` when nothing had to be written.
        """
        occurrence = compute_occurrence(definition, month)
        if occurrence is None:
            return None
        existing = find_existing(
            occurrence, self._transactions_in(month_window_for(occurrence.date))
        )
        if existing is not None:
            return None

        txn = Transaction(
            user_id=self.user_id,
            date=occurrence.date,
            type=occurrence.type,
            amount_cents=occurrence.amount_cents,
            category=occurrence.category,
            description=occurrence.name,
            recurring_definition_id=definition.id,
            occurrence_date=occurrence.date,
            is_projected=False,
        )
        self.session.add(txn)
        self.session.flush()

        definition.last_generated_date = occurrence.date
        definition.next_due_date = next_due_date(definition, occurrence.date)
        definition.total_occurrences = (definition.total_occurrences or 0) + 1
        return txn

    def materialize(
        self, month: MonthWindow, today: Optional[date] = None
    ) -> MaterializeResult:
        if month != current_month(today):
            raise ValidationError(
                f"Only the current month can be materialized, got {month.key}"
            )
        result = MaterializeResult(month=month.key)
        for definition in self.active_definitions():
            definition_id = definition.id
            try:
                if compute_occurrence(definition, month) is None:
                    result.not_due += 1
                    continue
                txn = self.materialize_definition(definition, month)
                if txn is None:
                    result.suppressed += 1
                    continue
                self.session.commit()
                result.created += 1
                result.transaction_ids.append(txn.id)
            except IntegrityError:
                # A concurrent run inserted the same occurrence first.
                self.session.rollback()
                result.suppressed += 1
            except Exception:
                self.session.rollback()
                result.errors += 1
                logger.exception(
                    f"materialize_failed: user={self.user_id} "
                    f"definition={definition_id} month={month.key}"
                )
        logger.info(
            f"materialize: user={self.user_id} month={month.key} "
            f"created={result.created} suppressed={result.suppressed} "
            f"errors={result.errors}"
        )
        return result
