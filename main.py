import logging
from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from config import get_settings
from csrf import generate_csrf_token, validate_csrf_token
from database import SessionLocal
from models import ExpenseCategory
from scheduler import SchedulerManager
from schemas import (
    AlertOut,
    AlertsOut,
    BudgetIn,
    BudgetListOut,
    BudgetOut,
    BudgetUpdate,
    BudgetWriteOut,
    CategoryStatOut,
    CleanupOut,
    EvaluatedBudgetOut,
    ExpenseIn,
    ExpenseOut,
    ExpensePageOut,
    ExpenseSortField,
    ExpenseStatsOut,
    ExpenseUpdate,
    ResetOut,
    SortOrder,
)
from services import (
    BudgetService,
    ExpenseFilters,
    ExpenseService,
    NotFoundError,
    StoreError,
    ValidationError,
    get_current_user_id,
)

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="SmartSpend")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def current_user_id(x_user_id: Optional[int] = Header(default=None)) -> int:
    return x_user_id or get_current_user_id()


def require_csrf(
    x_csrf_token: str = Header(default=""),
    user_id: int = Depends(current_user_id),
) -> None:
    if not validate_csrf_token(x_csrf_token, user_id):
        raise HTTPException(status_code=403, detail="Invalid CSRF token")


scheduler_manager = SchedulerManager() if settings.scheduler_enabled else None


@app.on_event("startup")
def startup_event():
    if scheduler_manager:
        scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    if scheduler_manager:
        scheduler_manager.stop()


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    logger.error(f"store_failure: path={request.url.path} detail={exc}")
    return JSONResponse(status_code=500, content={"detail": "Server error"})


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/api/csrf-token")
def api_csrf_token(user_id: int = Depends(current_user_id)):
    return {"token": generate_csrf_token(user_id)}


@app.get("/api/budgets", response_model=BudgetListOut)
def api_budgets(
    month: Optional[str] = None,
    year: Optional[str] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        period, statuses = BudgetService(db, user_id).evaluated_for_period(
            month, year
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return BudgetListOut(
        budgets=[EvaluatedBudgetOut.from_status(s) for s in statuses],
        month=period.month,
        year=period.year,
    )


@app.post(
    "/api/budgets",
    response_model=BudgetWriteOut,
    status_code=201,
    dependencies=[Depends(require_csrf)],
)
def api_set_budget(
    payload: BudgetIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    budget = BudgetService(db, user_id).set_budget(payload)
    return BudgetWriteOut(
        message="Budget saved successfully", budget=BudgetOut.from_record(budget)
    )


@app.get("/api/budgets/all", response_model=list[BudgetOut])
def api_all_budgets(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    return [BudgetOut.from_record(b) for b in BudgetService(db, user_id).list_all()]


@app.get("/api/budgets/alerts", response_model=AlertsOut)
def api_budget_alerts(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    alerts = BudgetService(db, user_id).alerts()
    return AlertsOut(alerts=[AlertOut.from_alert(a) for a in alerts])


@app.delete(
    "/api/budgets/reset",
    response_model=ResetOut,
    dependencies=[Depends(require_csrf)],
)
def api_reset_budgets(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    deleted = BudgetService(db, user_id).reset()
    return ResetOut(message="All budgets reset successfully", deleted_count=deleted)


@app.post(
    "/api/budgets/cleanup",
    response_model=CleanupOut,
    dependencies=[Depends(require_csrf)],
)
def api_cleanup_budgets(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    result = BudgetService(db, user_id).cleanup_duplicates()
    return CleanupOut(
        message="Budget cleanup completed",
        duplicates_removed=result.duplicates_removed,
        total_budgets=result.total_budgets,
    )


@app.put(
    "/api/budgets/{budget_id}",
    response_model=BudgetWriteOut,
    dependencies=[Depends(require_csrf)],
)
def api_update_budget(
    budget_id: int,
    payload: BudgetUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        budget = BudgetService(db, user_id).update(budget_id, payload)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return BudgetWriteOut(
        message="Budget updated successfully", budget=BudgetOut.from_record(budget)
    )


@app.delete("/api/budgets/{budget_id}", dependencies=[Depends(require_csrf)])
def api_delete_budget(
    budget_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        BudgetService(db, user_id).delete(budget_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"message": "Budget deleted successfully"}


@app.get("/api/expenses", response_model=ExpensePageOut)
def api_expenses(
    page: int = 1,
    limit: int = 10,
    category: Optional[ExpenseCategory] = None,
    start_date: Optional[datetime] = Query(default=None, alias="startDate"),
    end_date: Optional[datetime] = Query(default=None, alias="endDate"),
    sort_by: ExpenseSortField = Query(default="date", alias="sortBy"),
    sort_order: SortOrder = Query(default="desc", alias="sortOrder"),
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    filters = ExpenseFilters(category=category, start=start_date, end=end_date)
    try:
        result = ExpenseService(db, user_id).list(
            filters, sort_by=sort_by, sort_order=sort_order, page=page, limit=limit
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return ExpensePageOut(
        expenses=[ExpenseOut.from_record(e) for e in result.items],
        total_pages=result.total_pages,
        current_page=result.page,
        total=result.total,
    )


@app.post(
    "/api/expenses",
    response_model=ExpenseOut,
    status_code=201,
    dependencies=[Depends(require_csrf)],
)
def api_create_expense(
    payload: ExpenseIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return ExpenseOut.from_record(ExpenseService(db, user_id).create(payload))


@app.get("/api/expenses/stats", response_model=ExpenseStatsOut)
def api_expense_stats(
    month: Optional[str] = None,
    year: Optional[str] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        stats = ExpenseService(db, user_id).stats(month, year)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return ExpenseStatsOut(
        month=stats.period.month,
        year=stats.period.year,
        total_expenses=stats.total_expenses,
        category_stats={
            category.value: CategoryStatOut(total=stat.total, count=stat.count)
            for category, stat in stats.category_stats.items()
        },
        budget_alerts=[AlertOut.from_alert(a) for a in stats.budget_alerts],
    )


@app.get("/api/expenses/{expense_id}", response_model=ExpenseOut)
def api_expense(
    expense_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        expense = ExpenseService(db, user_id).get(expense_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return ExpenseOut.from_record(expense)


@app.put(
    "/api/expenses/{expense_id}",
    response_model=ExpenseOut,
    dependencies=[Depends(require_csrf)],
)
def api_update_expense(
    expense_id: int,
    payload: ExpenseUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        expense = ExpenseService(db, user_id).update(expense_id, payload)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return ExpenseOut.from_record(expense)


@app.delete("/api/expenses/{expense_id}", dependencies=[Depends(require_csrf)])
def api_delete_expense(
    expense_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        ExpenseService(db, user_id).delete(expense_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"message": "Expense deleted successfully"}
