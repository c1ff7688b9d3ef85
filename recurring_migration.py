"""Backfill of the derived scheduling fields on recurring definitions.

Definitions created before ``last_generated_date``, ``next_due_date`` and
``total_occurrences`` existed have them unset. :meth:`migrate` fills them in
and is safe to re-run: existing values are kept, only ``next_due_date`` is
recomputed from "now".
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from models import RecurringDefinition
from periods import local_now
from recurrence import require_user_id
from schedule import next_due_date

logger = logging.getLogger(__name__)


@dataclass
class MigrationResult:
    migrated: int = 0
    errors: int = 0


@dataclass
class MigrationReport:
    valid: int = 0
    invalid: int = 0
    details: list[str] = field(default_factory=list)


class RecurringMigrationService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = require_user_id(user_id)

    def _definitions(self) -> list[RecurringDefinition]:
        stmt = (
            select(RecurringDefinition)
            .where(RecurringDefinition.user_id == self.user_id)
            .order_by(RecurringDefinition.id)
        )
        return list(self.session.scalars(stmt).all())

    def migrate(self, now: Optional[datetime] = None) -> MigrationResult:
        now = now or local_now()
        today = now.date()
        result = MigrationResult()
        logger.info(f"recurring_migration: user={self.user_id} started")
        for definition in self._definitions():
            name = definition.name
            try:
                if definition.last_generated_date is None:
                    definition.last_generated_date = today
                if definition.total_occurrences is None:
                    definition.total_occurrences = 0
                definition.next_due_date = next_due_date(definition, today)
                self.session.commit()
                result.migrated += 1
            except Exception:
                self.session.rollback()
                result.errors += 1
                logger.exception(
                    f"recurring_migration_failed: user={self.user_id} definition={name}"
                )
        logger.info(
            f"recurring_migration: user={self.user_id} "
            f"migrated={result.migrated} errors={result.errors}"
        )
        return result

    def validate(self) -> MigrationReport:
        report = MigrationReport()
        for definition in self._definitions():
            if (
                definition.last_generated_date is not None
                and definition.next_due_date is not None
                and definition.total_occurrences is not None
            ):
                report.valid += 1
            else:
                report.invalid += 1
                report.details.append(f"Missing fields for: {definition.name}")
        return report
