import itertools
import logging
import threading
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.triggers.date import DateTrigger
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import get_settings
from database import SessionLocal
from models import Asset, Debt, NetWorthEntry
from periods import current_month
from recurrence import require_user_id

logger = logging.getLogger(__name__)


def recompute_net_worth(
    session: Session,
    user_id: str,
    *,
    today: Optional[date] = None,
    history: Optional[int] = None,
) -> NetWorthEntry:
    """Upsert the current month's net-worth entry and trim old history."""
    history = history or get_settings().net_worth_history
    month_start = current_month(today).start
    total_assets = int(
        session.scalar(
            select(func.coalesce(func.sum(Asset.balance_cents), 0)).where(
                Asset.user_id == user_id
            )
        )
        or 0
    )
    total_debts = int(
        session.scalar(
            select(func.coalesce(func.sum(Debt.balance_cents), 0)).where(
                Debt.user_id == user_id
            )
        )
        or 0
    )

    entry = session.scalar(
        select(NetWorthEntry).where(
            NetWorthEntry.user_id == user_id, NetWorthEntry.date == month_start
        )
    )
    if not entry:
        entry = NetWorthEntry(user_id=user_id, date=month_start)
        session.add(entry)
    entry.assets_cents = total_assets
    entry.debts_cents = total_debts
    entry.net_worth_cents = total_assets - total_debts
    session.flush()

    keep_ids = select(NetWorthEntry.id).where(NetWorthEntry.user_id == user_id).order_by(
        NetWorthEntry.date.desc()
    ).limit(history)
    session.execute(
        delete(NetWorthEntry).where(
            NetWorthEntry.user_id == user_id, NetWorthEntry.id.not_in(keep_ids)
        )
    )
    return entry


class NetWorthSnapshotter:
    """Coalesces bursts of asset/debt mutations into one net-worth write.

    Each user has at most one pending one-shot job; a new request cancels it
    and schedules a fresh one ``delay`` later.
    """

    def __init__(
        self,
        scheduler,
        session_factory: Callable[[], Session] = SessionLocal,
        *,
        delay_ms: Optional[int] = None,
        history: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self.scheduler = scheduler
        self.session_factory = session_factory
        self.delay = timedelta(
            milliseconds=settings.net_worth_debounce_ms if delay_ms is None else delay_ms
        )
        self.history = history or settings.net_worth_history
        self._pending: dict[str, object] = {}
        self._lock = threading.Lock()
        self._seq = itertools.count(1)

    def _cancel(self, user_id: str) -> None:
        job = self._pending.pop(user_id, None)
        if job is None:
            return
        try:
            job.remove()
        except JobLookupError:
            pass  # already fired

    def request_update(self, user_id: str) -> None:
        user_id = require_user_id(user_id)
        with self._lock:
            self._cancel(user_id)
            job_id = f"net_worth:{user_id}:{next(self._seq)}"
            run_at = datetime.now(timezone.utc) + self.delay
            self._pending[user_id] = self.scheduler.add_job(
                self._run,
                DateTrigger(run_date=run_at),
                args=[user_id, job_id],
                id=job_id,
                replace_existing=True,
                misfire_grace_time=60,
            )

    def is_pending(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._pending

    def flush(self, user_id: str) -> Optional[NetWorthEntry]:
        with self._lock:
            self._cancel(user_id)
        return self._recompute(user_id)

    def _run(self, user_id: str, job_id: str) -> None:
        with self._lock:
            job = self._pending.get(user_id)
            if job is not None and getattr(job, "id", None) == job_id:
                del self._pending[user_id]
        self._recompute(user_id)

    def _recompute(self, user_id: str) -> Optional[NetWorthEntry]:
        session = self.session_factory()
        try:
            entry = recompute_net_worth(session, user_id, history=self.history)
            session.commit()
            logger.info(
                f"net_worth_snapshot: user={user_id} "
                f"net_worth_cents={entry.net_worth_cents}"
            )
            return entry
        except SQLAlchemyError:
            session.rollback()
            logger.exception(f"net_worth_snapshot_failed: user={user_id}")
            return None
        finally:
            session.close()
