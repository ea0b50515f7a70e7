from typing import Optional

from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.responses import Response
from sqlalchemy.orm import Session

from analytics import BudgetLine
from config import get_settings
from csrf import generate_csrf_token, validate_csrf_token
from database import get_db
from models import Budget, Expense, ExpenseSuggestion, RecurringExpense
from periods import TimeRange, TrendGrouping, local_now
from receipts import ReceiptParser, StubReceiptParser
from scheduler import SchedulerManager
from schemas import (
    BudgetIn,
    ExpenseIn,
    ReceiptAttachIn,
    RecurringExpenseIn,
    RecurringToggleIn,
    SuggestionUseIn,
)
from services import (
    AnalyticsService,
    BudgetService,
    ExpenseService,
    NotAuthorized,
    ReceiptService,
    RecordNotFound,
    RecurringExpenseInactive,
    RecurringExpenseService,
    SuggestionService,
    get_current_user_id,
)


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()

app = FastAPI(title="Splitr", version=APP_VERSION)
scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    if get_settings().scheduler_enabled:
        scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def current_user_id() -> int:
    return get_current_user_id()


def get_receipt_parser() -> ReceiptParser:
    return StubReceiptParser()


def require_csrf(request: Request, user_id: int = Depends(current_user_id)) -> None:
    token = request.headers.get("X-CSRF-Token", "")
    if not validate_csrf_token(token, user_id):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")


def http_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, RecordNotFound):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, NotAuthorized):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, RecurringExpenseInactive):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def expense_out(expense: Expense) -> dict[str, object]:
    return {
        "id": expense.id,
        "description": expense.description,
        "amount_cents": expense.amount_cents,
        "category": expense.category,
        "occurred_at": expense.occurred_at.isoformat(),
        "paid_by_id": expense.paid_by_id,
        "created_by_id": expense.created_by_id,
        "split_type": expense.split_type.value,
        "splits": [
            {"user_id": s.user_id, "amount_cents": s.amount_cents, "paid": s.paid}
            for s in expense.splits
        ],
        "group_id": expense.group_id,
        "recurring_expense_id": expense.recurring_expense_id,
        "receipt": (
            {
                "image_url": expense.receipt_image_url,
                "extracted_text": expense.receipt_text,
                "confidence": expense.receipt_confidence,
                "merchant_name": expense.receipt_merchant,
                "extracted_amount_cents": expense.receipt_amount_cents,
            }
            if expense.receipt_image_url
            else None
        ),
    }


def budget_out(budget: Budget) -> dict[str, object]:
    return {
        "id": budget.id,
        "category": budget.category,
        "year": budget.year,
        "month": budget.month,
        "monthly_limit_cents": budget.monthly_limit_cents,
        "spent_cents": budget.spent_cents,
        "last_updated": budget.last_updated.isoformat(),
    }


def budget_line_out(line: BudgetLine) -> dict[str, object]:
    return {
        "budget_cents": line.budget_cents,
        "spent_cents": line.spent_cents,
        "percentage": line.percentage,
        "remaining_cents": line.remaining_cents,
        "status": line.status.value,
    }


def recurring_out(template: RecurringExpense) -> dict[str, object]:
    return {
        "id": template.id,
        "description": template.description,
        "amount_cents": template.amount_cents,
        "category": template.category,
        "frequency": template.frequency.value,
        "participants": [user.id for user in template.participants],
        "group_id": template.group_id,
        "split_type": template.split_type.value,
        "splits": [
            {
                "user_id": s.user_id,
                "amount_cents": s.amount_cents,
                "percentage": s.percentage,
            }
            for s in template.splits
        ],
        "next_due": template.next_due.isoformat(),
        "last_created": (
            template.last_created.isoformat() if template.last_created else None
        ),
        "is_active": template.is_active,
    }


def suggestion_out(suggestion: ExpenseSuggestion) -> dict[str, object]:
    return {
        "id": suggestion.id,
        "description": suggestion.description,
        "category": suggestion.category,
        "avg_amount_cents": suggestion.avg_amount_cents,
        "frequency": suggestion.frequency.value,
        "confidence": suggestion.confidence,
        "based_on_expenses": suggestion.based_on_expense_ids,
        "last_suggested": suggestion.last_suggested.isoformat(),
        "is_active": suggestion.is_active,
    }


@app.get("/api/csrf-token")
def api_csrf_token(user_id: int = Depends(current_user_id)):
    return {"csrf_token": generate_csrf_token(user_id)}


@app.get("/api/analytics")
def api_analytics(
    time_range: TimeRange = TimeRange.month,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return AnalyticsService(db, user_id).expense_analytics(time_range)


@app.get("/api/analytics/trends")
def api_spending_trends(
    time_range: TimeRange = TimeRange.month,
    group_by: TrendGrouping = TrendGrouping.week,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return AnalyticsService(db, user_id).spending_trends(time_range, group_by)


@app.post("/api/analytics/cache/clear", dependencies=[Depends(require_csrf)])
def api_clear_analytics_cache(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    return {"removed": AnalyticsService(db, user_id).clear_cache()}


@app.get("/api/budgets")
def api_budgets(db: Session = Depends(get_db), user_id: int = Depends(current_user_id)):
    now = local_now()
    budgets = BudgetService(db, user_id).list_for_month(now.year, now.month)
    return [budget_out(b) for b in budgets]


@app.post("/api/budgets", dependencies=[Depends(require_csrf)])
def api_set_budget(
    data: BudgetIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        budget = BudgetService(db, user_id).set_budget(data)
    except ValueError as exc:
        db.rollback()
        raise http_error(exc) from exc
    return budget_out(budget)


@app.get("/api/budgets/spending")
def api_monthly_spending(
    month: Optional[str] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    if month:
        try:
            year_str, month_str = month.split("-", 1)
            year, month_num = int(year_str), int(month_str)
            if not 1 <= month_num <= 12:
                raise ValueError("Month must be between 1 and 12")
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
    else:
        now = local_now()
        year, month_num = now.year, now.month
    return BudgetService(db, user_id).spent_by_category_for_month(year, month_num)


@app.get("/api/budgets/overview")
def api_budget_overview(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    overview = BudgetService(db, user_id).overview()
    return {category: budget_line_out(line) for category, line in overview.items()}


@app.post("/api/expenses", status_code=201, dependencies=[Depends(require_csrf)])
def api_create_expense(
    data: ExpenseIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        expense = ExpenseService(db, user_id).create(data)
    except ValueError as exc:
        db.rollback()
        raise http_error(exc) from exc
    return expense_out(expense)


@app.get("/api/expenses/{expense_id}")
def api_get_expense(
    expense_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        expense = ExpenseService(db, user_id).get(expense_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return expense_out(expense)


@app.get("/api/recurring")
def api_recurring(db: Session = Depends(get_db), user_id: int = Depends(current_user_id)):
    return [recurring_out(t) for t in RecurringExpenseService(db, user_id).list()]


@app.post("/api/recurring", status_code=201, dependencies=[Depends(require_csrf)])
def api_create_recurring(
    data: RecurringExpenseIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        template = RecurringExpenseService(db, user_id).create(data)
    except ValueError as exc:
        db.rollback()
        raise http_error(exc) from exc
    return recurring_out(template)


@app.post("/api/recurring/{recurring_id}/toggle", dependencies=[Depends(require_csrf)])
def api_toggle_recurring(
    recurring_id: int,
    data: RecurringToggleIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        template = RecurringExpenseService(db, user_id).toggle(
            recurring_id, data.is_active
        )
    except ValueError as exc:
        db.rollback()
        raise http_error(exc) from exc
    return recurring_out(template)


@app.post(
    "/api/recurring/{recurring_id}/materialize",
    status_code=201,
    dependencies=[Depends(require_csrf)],
)
def api_materialize_recurring(
    recurring_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        expense = RecurringExpenseService(db, user_id).materialize(recurring_id)
    except ValueError as exc:
        db.rollback()
        raise http_error(exc) from exc
    return expense_out(expense)


@app.delete("/api/recurring/{recurring_id}", dependencies=[Depends(require_csrf)])
def api_delete_recurring(
    recurring_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        RecurringExpenseService(db, user_id).delete(recurring_id)
    except ValueError as exc:
        db.rollback()
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.post("/api/suggestions/generate", dependencies=[Depends(require_csrf)])
def api_generate_suggestions(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    return {"stored": SuggestionService(db, user_id).generate()}


@app.get("/api/suggestions")
def api_suggestions(db: Session = Depends(get_db), user_id: int = Depends(current_user_id)):
    return [suggestion_out(s) for s in SuggestionService(db, user_id).list_active()]


@app.post(
    "/api/suggestions/{suggestion_id}/use",
    status_code=201,
    dependencies=[Depends(require_csrf)],
)
def api_use_suggestion(
    suggestion_id: int,
    data: SuggestionUseIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        expense = SuggestionService(db, user_id).use(suggestion_id, data)
    except ValueError as exc:
        db.rollback()
        raise http_error(exc) from exc
    return expense_out(expense)


@app.post(
    "/api/suggestions/{suggestion_id}/dismiss", dependencies=[Depends(require_csrf)]
)
def api_dismiss_suggestion(
    suggestion_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        SuggestionService(db, user_id).dismiss(suggestion_id)
    except ValueError as exc:
        db.rollback()
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.post("/api/receipts/parse", dependencies=[Depends(require_csrf)])
async def api_parse_receipt(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
    parser: ReceiptParser = Depends(get_receipt_parser),
):
    image = await file.read()
    filename = file.filename or "receipt"
    return ReceiptService(db, user_id, parser).parse(image, filename)


@app.post("/api/expenses/{expense_id}/receipt", dependencies=[Depends(require_csrf)])
def api_attach_receipt(
    expense_id: int,
    data: ReceiptAttachIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        expense = ReceiptService(db, user_id).attach(expense_id, data)
    except ValueError as exc:
        db.rollback()
        raise http_error(exc) from exc
    return expense_out(expense)


@app.get("/api/receipts")
def api_receipts(db: Session = Depends(get_db), user_id: int = Depends(current_user_id)):
    return [expense_out(e) for e in ReceiptService(db, user_id).list_with_receipts()]


@app.get("/api/receipts/analysis")
def api_receipt_analysis(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    return ReceiptService(db, user_id).analyze()


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
