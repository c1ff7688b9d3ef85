from datetime import date

from apscheduler.jobstores.base import JobLookupError
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from database import Base
from models import Asset, AssetType, Debt, NetWorthEntry
from networth import NetWorthSnapshotter, recompute_net_worth
from schemas import AssetIn, DebtIn
from services import AssetService, DebtService


class FakeJob:
    def __init__(self, scheduler, func, args, job_id):
        self.scheduler = scheduler
        self.func = func
        self.args = args
        self.id = job_id

    def remove(self):
        if self not in self.scheduler.jobs:
            raise JobLookupError(self.id)
        self.scheduler.jobs.remove(self)


class FakeScheduler:
    """Collects one-shot jobs so tests decide when the debounce window ends."""

    def __init__(self):
        self.jobs = []

    def add_job(self, func, trigger, args=None, id=None, **_kwargs):
        job = FakeJob(self, func, args or [], id)
        self.jobs.append(job)
        return job

    def run_pending(self):
        jobs, self.jobs = self.jobs, []
        for job in jobs:
            job.func(*job.args)


def _factory():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)


def _seed(factory):
    with factory() as session:
        session.add_all(
            [
                Asset(
                    user_id="u1",
                    name="Savings",
                    type=AssetType.savings,
                    balance_cents=50_000,
                ),
                Asset(
                    user_id="u1",
                    name="Checking",
                    type=AssetType.checking,
                    balance_cents=20_000,
                ),
                Debt(
                    user_id="u1", name="Card", balance_cents=15_000, payment_cents=1_000
                ),
                Asset(user_id="u2", name="Other", balance_cents=999_999),
            ]
        )
        session.commit()


def test_burst_of_requests_coalesces_into_one_write():
    factory = _factory()
    _seed(factory)
    scheduler = FakeScheduler()
    snapshots = NetWorthSnapshotter(scheduler, factory, delay_ms=100)

    for _ in range(3):
        snapshots.request_update("u1")

    assert len(scheduler.jobs) == 1
    assert snapshots.is_pending("u1")

    scheduler.run_pending()

    assert not snapshots.is_pending("u1")
    with factory() as session:
        entries = session.scalars(select(NetWorthEntry)).all()
    assert len(entries) == 1
    assert entries[0].user_id == "u1"
    assert entries[0].assets_cents == 70_000
    assert entries[0].debts_cents == 15_000
    assert entries[0].net_worth_cents == 55_000


def test_pending_requests_are_per_user():
    factory = _factory()
    scheduler = FakeScheduler()
    snapshots = NetWorthSnapshotter(scheduler, factory, delay_ms=100)

    snapshots.request_update("u1")
    snapshots.request_update("u2")
    snapshots.request_update("u1")

    assert sorted(job.args[0] for job in scheduler.jobs) == ["u1", "u2"]


def test_flush_cancels_pending_and_writes_now():
    factory = _factory()
    _seed(factory)
    scheduler = FakeScheduler()
    snapshots = NetWorthSnapshotter(scheduler, factory, delay_ms=100)

    snapshots.request_update("u1")
    entry = snapshots.flush("u1")

    assert scheduler.jobs == []
    assert not snapshots.is_pending("u1")
    assert entry.net_worth_cents == 55_000


def test_recompute_upserts_month_entry_and_trims_history():
    factory = _factory()
    _seed(factory)

    with factory() as session:
        for month in range(1, 9):
            recompute_net_worth(session, "u1", today=date(2024, month, 5), history=6)
        recompute_net_worth(session, "u1", today=date(2024, 8, 20), history=6)
        session.commit()

        entries = session.scalars(
            select(NetWorthEntry).order_by(NetWorthEntry.date)
        ).all()

    assert [e.date for e in entries] == [date(2024, m, 1) for m in range(3, 9)]


def test_balance_sheet_writes_request_snapshot():
    factory = _factory()
    scheduler = FakeScheduler()
    snapshots = NetWorthSnapshotter(scheduler, factory, delay_ms=100)

    with factory() as session:
        assets = AssetService(session, "u1", snapshots=snapshots)
        debts = DebtService(session, "u1", snapshots=snapshots)
        outcome = assets.create(
            AssetIn(name="Savings", type=AssetType.savings, balance_cents=10_000)
        )
        debts.create(DebtIn(name="Loan", balance_cents=4_000))

    assert not outcome.degraded
    assert len(scheduler.jobs) == 1

    scheduler.run_pending()
    with factory() as session:
        entry = session.scalar(select(NetWorthEntry))
    assert entry.net_worth_cents == 6_000


def test_snapshot_failure_degrades_write_outcome():
    class BrokenSnapshots:
        def request_update(self, user_id):
            raise RuntimeError("scheduler down")

    factory = _factory()
    with factory() as session:
        outcome = AssetService(session, "u1", snapshots=BrokenSnapshots()).create(
            AssetIn(name="Cash", balance_cents=100)
        )
        assert outcome.degraded
        assert "net_worth_snapshot" in outcome.issues[0]
        assert session.scalar(select(Asset)).name == "Cash"
