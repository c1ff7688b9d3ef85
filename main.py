import logging

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from aggregation import AggregateResult
from database import SessionLocal, init_db
from errors import NotFoundError, StoreFailure, ValidationError
from periods import parse_month_key
from recurring_migration import RecurringMigrationService
from recurrence import RecurringEngine
from scheduler import SchedulerManager
from schemas import (
    AggregateOut,
    AssetIn,
    BudgetSettingsIn,
    DebtIn,
    GoalIn,
    MonthOverrideIn,
    MonthViewOut,
    RatioOut,
    RecurringDefinitionIn,
    RecurringDefinitionOut,
    TransactionIn,
    TransactionOut,
)
from services import (
    AssetService,
    BudgetService,
    BudgetSettingsService,
    DebtService,
    GoalService,
    RecurringDefinitionService,
    TransactionService,
    WriteOutcome,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Moneyplan")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    init_db()
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


@app.exception_handler(ValidationError)
def validation_error_handler(_request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
def not_found_handler(_request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(StoreFailure)
def store_failure_handler(_request: Request, exc: StoreFailure):
    logger.warning(f"store_failure: {exc}")
    return JSONResponse(status_code=503, content={"detail": "Storage unavailable"})


def aggregate_out(result: AggregateResult) -> AggregateOut:
    return AggregateOut(
        month=result.month,
        includes_projected=result.includes_projected,
        total_income_cents=result.total_income_cents,
        total_expenses_cents=result.total_expenses_cents,
        net_income_cents=result.net_income_cents,
        savings_cents=result.savings_cents,
        total_goal_contributions_cents=result.total_goal_contributions_cents,
        discretionary_income_cents=result.discretionary_income_cents,
        debt_payoff_cents=result.debt_payoff_cents,
        remaining_balance_cents=result.remaining_balance_cents,
        total_monthly_income_cents=result.total_monthly_income_cents,
        total_monthly_expenses_cents=result.total_monthly_expenses_cents,
        ratios=[
            RatioOut(
                kind=ratio.kind.value,
                value=None if ratio.infinite else ratio.value,
                status=ratio.status.value,
                infinite=ratio.infinite,
            )
            for ratio in result.ratios.as_list()
        ],
        emergency_fund_progress=result.emergency_fund_progress,
        emergency_fund_display_progress=result.emergency_fund_display_progress,
    )


def outcome_out(outcome: WriteOutcome) -> dict:
    # deletes carry the removed id instead of a record
    record_id = getattr(outcome.record, "id", outcome.record)
    return {"id": record_id, "degraded": outcome.degraded, "issues": outcome.issues}


@app.get("/api/users/{user_id}/months/{month}", response_model=MonthViewOut)
def month_view(user_id: str, month: str, db: Session = Depends(get_db)):
    view = BudgetService(db, user_id).month_view(parse_month_key(month))
    return MonthViewOut(
        month=view.month.key,
        actual=[TransactionOut.model_validate(txn) for txn in view.actual],
        projected=[TransactionOut.model_validate(txn) for txn in view.projected],
        aggregate=aggregate_out(view.aggregate),
    )


@app.get(
    "/api/users/{user_id}/months/{month}/projected",
    response_model=list[TransactionOut],
)
def projected_transactions(user_id: str, month: str, db: Session = Depends(get_db)):
    projected = RecurringEngine(db, user_id).project(parse_month_key(month))
    return [TransactionOut.model_validate(txn) for txn in projected]


@app.post("/api/users/{user_id}/months/{month}/materialize")
def materialize_month(user_id: str, month: str, db: Session = Depends(get_db)):
    result = RecurringEngine(db, user_id).materialize(parse_month_key(month))
    return {
        "month": result.month,
        "created": result.created,
        "suppressed": result.suppressed,
        "not_due": result.not_due,
        "errors": result.errors,
    }


@app.get("/api/users/{user_id}/forecast", response_model=list[AggregateOut])
def forecast(
    user_id: str,
    months: int = Query(default=3, ge=1, le=24),
    db: Session = Depends(get_db),
):
    return [aggregate_out(r) for r in BudgetService(db, user_id).forecast(months)]


@app.get("/api/users/{user_id}/transactions/{month}", response_model=list[TransactionOut])
def list_transactions(user_id: str, month: str, db: Session = Depends(get_db)):
    txns = TransactionService(db, user_id).list_for_month(parse_month_key(month))
    return [TransactionOut.model_validate(txn) for txn in txns]


@app.post("/api/users/{user_id}/transactions", status_code=201)
def create_transaction(user_id: str, data: TransactionIn, db: Session = Depends(get_db)):
    return outcome_out(TransactionService(db, user_id).create(data))


@app.put("/api/users/{user_id}/transactions/{transaction_id}")
def update_transaction(
    user_id: str,
    transaction_id: int,
    data: TransactionIn,
    db: Session = Depends(get_db),
):
    return outcome_out(TransactionService(db, user_id).update(transaction_id, data))


@app.delete("/api/users/{user_id}/transactions/{transaction_id}")
def delete_transaction(user_id: str, transaction_id: int, db: Session = Depends(get_db)):
    return outcome_out(TransactionService(db, user_id).delete(transaction_id))


@app.get(
    "/api/users/{user_id}/recurring", response_model=list[RecurringDefinitionOut]
)
def list_recurring(user_id: str, db: Session = Depends(get_db)):
    return RecurringDefinitionService(db, user_id).list()


@app.post(
    "/api/users/{user_id}/recurring",
    response_model=RecurringDefinitionOut,
    status_code=201,
)
def create_recurring(
    user_id: str, data: RecurringDefinitionIn, db: Session = Depends(get_db)
):
    return RecurringDefinitionService(db, user_id).create(data)


@app.put(
    "/api/users/{user_id}/recurring/{definition_id}",
    response_model=RecurringDefinitionOut,
)
def update_recurring(
    user_id: str,
    definition_id: int,
    data: RecurringDefinitionIn,
    db: Session = Depends(get_db),
):
    return RecurringDefinitionService(db, user_id).update(definition_id, data)


@app.delete("/api/users/{user_id}/recurring/{definition_id}", status_code=204)
def delete_recurring(user_id: str, definition_id: int, db: Session = Depends(get_db)):
    RecurringDefinitionService(db, user_id).delete(definition_id)


@app.post(
    "/api/users/{user_id}/recurring/{definition_id}/skip/{month}",
    response_model=RecurringDefinitionOut,
)
def skip_month(
    user_id: str, definition_id: int, month: str, db: Session = Depends(get_db)
):
    return RecurringDefinitionService(db, user_id).skip_month(definition_id, month)


@app.delete(
    "/api/users/{user_id}/recurring/{definition_id}/skip/{month}",
    response_model=RecurringDefinitionOut,
)
def unskip_month(
    user_id: str, definition_id: int, month: str, db: Session = Depends(get_db)
):
    return RecurringDefinitionService(db, user_id).unskip_month(definition_id, month)


@app.put(
    "/api/users/{user_id}/recurring/{definition_id}/overrides/{month}",
    response_model=RecurringDefinitionOut,
)
def set_override(
    user_id: str,
    definition_id: int,
    month: str,
    data: MonthOverrideIn,
    db: Session = Depends(get_db),
):
    return RecurringDefinitionService(db, user_id).set_month_override(
        definition_id, month, data
    )


@app.delete(
    "/api/users/{user_id}/recurring/{definition_id}/overrides/{month}",
    response_model=RecurringDefinitionOut,
)
def clear_override(
    user_id: str, definition_id: int, month: str, db: Session = Depends(get_db)
):
    return RecurringDefinitionService(db, user_id).clear_month_override(
        definition_id, month
    )


@app.post("/api/users/{user_id}/recurring/migrate")
def migrate_recurring(user_id: str, db: Session = Depends(get_db)):
    result = RecurringMigrationService(db, user_id).migrate()
    return {"migrated": result.migrated, "errors": result.errors}


@app.get("/api/users/{user_id}/recurring/validate")
def validate_recurring(user_id: str, db: Session = Depends(get_db)):
    report = RecurringMigrationService(db, user_id).validate()
    return {"valid": report.valid, "invalid": report.invalid, "details": report.details}


@app.put("/api/users/{user_id}/budget-settings")
def update_budget_settings(
    user_id: str, data: BudgetSettingsIn, db: Session = Depends(get_db)
):
    settings = BudgetSettingsService(db, user_id).update(data)
    return {
        "savings_percentage": settings.savings_percentage,
        "debt_payoff_percentage": settings.debt_payoff_percentage,
    }


@app.post("/api/users/{user_id}/goals", status_code=201)
def create_goal(user_id: str, data: GoalIn, db: Session = Depends(get_db)):
    return outcome_out(GoalService(db, user_id).create(data))


@app.put("/api/users/{user_id}/goals/{goal_id}")
def update_goal(
    user_id: str, goal_id: int, data: GoalIn, db: Session = Depends(get_db)
):
    return outcome_out(GoalService(db, user_id).update(goal_id, data))


@app.delete("/api/users/{user_id}/goals/{goal_id}")
def delete_goal(user_id: str, goal_id: int, db: Session = Depends(get_db)):
    return outcome_out(GoalService(db, user_id).delete(goal_id))


def _assets(db: Session, user_id: str) -> AssetService:
    return AssetService(db, user_id, snapshots=scheduler_manager.snapshots)


def _debts(db: Session, user_id: str) -> DebtService:
    return DebtService(db, user_id, snapshots=scheduler_manager.snapshots)


@app.post("/api/users/{user_id}/assets", status_code=201)
def create_asset(user_id: str, data: AssetIn, db: Session = Depends(get_db)):
    return outcome_out(_assets(db, user_id).create(data))


@app.put("/api/users/{user_id}/assets/{asset_id}")
def update_asset(
    user_id: str, asset_id: int, data: AssetIn, db: Session = Depends(get_db)
):
    return outcome_out(_assets(db, user_id).update(asset_id, data))


@app.delete("/api/users/{user_id}/assets/{asset_id}")
def delete_asset(user_id: str, asset_id: int, db: Session = Depends(get_db)):
    return outcome_out(_assets(db, user_id).delete(asset_id))


@app.post("/api/users/{user_id}/debts", status_code=201)
def create_debt(user_id: str, data: DebtIn, db: Session = Depends(get_db)):
    return outcome_out(_debts(db, user_id).create(data))


@app.put("/api/users/{user_id}/debts/{debt_id}")
def update_debt(
    user_id: str, debt_id: int, data: DebtIn, db: Session = Depends(get_db)
):
    return outcome_out(_debts(db, user_id).update(debt_id, data))


@app.delete("/api/users/{user_id}/debts/{debt_id}")
def delete_debt(user_id: str, debt_id: int, db: Session = Depends(get_db)):
    return outcome_out(_debts(db, user_id).delete(debt_id))


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
