import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import Response
from sqlalchemy.orm import Session

from csrf import csrf_max_age_seconds, generate_csrf_token, require_csrf
from database import SessionLocal
from models import Budget, Category, CoverageRule, Expense, SubCategory
from money import parse_amount
from scheduler import SchedulerManager, run_budget_audit
from schemas import BudgetIn, CategoryIn, CoverageRuleIn, ExpenseIn, SubCategoryIn
from services import (
    BudgetService,
    CategoryService,
    CoverageRuleService,
    DashboardService,
    ExpenseService,
    NotFound,
    ReconciliationError,
    SubCategoryService,
    today_local,
)

app = FastAPI(title="Health Expenses")

EXPENSES_CHANGED = {"HX-Trigger": "expenses-changed"}
BUDGETS_CHANGED = {"HX-Trigger": "budgets-changed"}


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


@contextmanager
def service_errors() -> Iterator[None]:
    try:
        yield
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ReconciliationError as exc:
        logging.exception("Budget reconciliation failed")
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except OverflowError as exc:
        # Integer ids or years too large for the storage layer.
        raise HTTPException(status_code=400, detail="Value out of range") from exc


def category_payload(category: Category) -> dict[str, object]:
    return {
        "id": category.id,
        "name": category.name,
        "description": category.description,
    }


def sub_category_payload(sub_category: SubCategory) -> dict[str, object]:
    return {
        "id": sub_category.id,
        "category_id": sub_category.category_id,
        "category": sub_category.category.name if sub_category.category else None,
        "name": sub_category.name,
        "description": sub_category.description,
    }


def coverage_rule_payload(rule: CoverageRule) -> dict[str, object]:
    return {
        "id": rule.id,
        "sub_category_id": rule.sub_category_id,
        "insurance_type": rule.insurance_type.value,
        "percentage": str(rule.percentage) if rule.percentage is not None else None,
        "max_amount_cents": rule.max_amount_cents,
        "description": rule.description,
    }


def budget_payload(budget: Budget) -> dict[str, object]:
    return {
        "id": budget.id,
        "sub_category_id": budget.sub_category_id,
        "year": budget.year,
        "amount_cents": budget.amount_cents,
        "used_amount_cents": budget.used_amount_cents,
        "remaining_amount_cents": budget.amount_cents - budget.used_amount_cents,
    }


def expense_payload(expense: Expense) -> dict[str, object]:
    sub_category = expense.sub_category
    return {
        "id": expense.id,
        "date": expense.date.isoformat(),
        "amount_cents": expense.amount_cents,
        "description": expense.description,
        "sub_category_id": expense.sub_category_id,
        "sub_category": sub_category.name if sub_category else None,
        "category": sub_category.category.name if sub_category else None,
        "basic_coverage_cents": expense.basic_coverage_cents,
        "supplementary_coverage_cents": expense.supplementary_coverage_cents,
        "user_pays_cents": expense.user_pays_cents,
    }


@app.get("/api/csrf-token")
def api_csrf_token():
    return {"csrf_token": generate_csrf_token(), "expires_in": csrf_max_age_seconds()}


@app.get("/api/categories")
def list_categories(db: Session = Depends(get_db)):
    return [category_payload(c) for c in CategoryService(db).list_all()]


@app.post("/api/categories", status_code=201, dependencies=[Depends(require_csrf)])
def create_category(data: CategoryIn, db: Session = Depends(get_db)):
    with service_errors():
        category = CategoryService(db).create(data)
    return category_payload(category)


@app.get("/api/subcategories")
def list_sub_categories(
    category_id: Optional[int] = None, db: Session = Depends(get_db)
):
    with service_errors():
        items = SubCategoryService(db).list_all(category_id=category_id)
    return [sub_category_payload(s) for s in items]


@app.post("/api/subcategories", status_code=201, dependencies=[Depends(require_csrf)])
def create_sub_category(data: SubCategoryIn, db: Session = Depends(get_db)):
    with service_errors():
        sub_category = SubCategoryService(db).create(data)
    return sub_category_payload(sub_category)


@app.get("/api/coverage-rules")
def list_coverage_rules(
    sub_category_id: Optional[int] = None, db: Session = Depends(get_db)
):
    with service_errors():
        rules = CoverageRuleService(db).list_all(sub_category_id=sub_category_id)
    return [coverage_rule_payload(r) for r in rules]


@app.post(
    "/api/coverage-rules", status_code=201, dependencies=[Depends(require_csrf)]
)
def upsert_coverage_rule(data: CoverageRuleIn, db: Session = Depends(get_db)):
    with service_errors():
        rule = CoverageRuleService(db).upsert(data)
    return coverage_rule_payload(rule)


@app.get("/api/budgets")
def list_budgets(
    sub_category_id: Optional[int] = None,
    year: Optional[int] = None,
    db: Session = Depends(get_db),
):
    with service_errors():
        budgets = BudgetService(db).list_all(sub_category_id=sub_category_id, year=year)
    return [budget_payload(b) for b in budgets]


@app.post("/api/budgets", status_code=201, dependencies=[Depends(require_csrf)])
def upsert_budget(data: BudgetIn, response: Response, db: Session = Depends(get_db)):
    with service_errors():
        budget = BudgetService(db).upsert(data)
    response.headers.update(BUDGETS_CHANGED)
    return budget_payload(budget)


@app.get("/api/expenses")
def list_expenses(
    sub_category_id: Optional[int] = None,
    year: Optional[int] = None,
    db: Session = Depends(get_db),
):
    with service_errors():
        expenses = ExpenseService(db).list(sub_category_id=sub_category_id, year=year)
    return [expense_payload(e) for e in expenses]


@app.get("/api/expenses/calculate")
def calculate_expense_coverage(request: Request, db: Session = Depends(get_db)):
    amount_raw = request.query_params.get("amount")
    sub_category_raw = request.query_params.get("sub_category_id")
    if not amount_raw or not sub_category_raw:
        raise HTTPException(
            status_code=400, detail="amount and sub_category_id are required"
        )
    try:
        amount_cents = parse_amount(amount_raw)
        sub_category_id = int(sub_category_raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    with service_errors():
        split = ExpenseService(db).preview(amount_cents, sub_category_id)
    return {"amount_cents": amount_cents, **split.as_dict()}


@app.post("/api/expenses", status_code=201, dependencies=[Depends(require_csrf)])
def create_expense(data: ExpenseIn, response: Response, db: Session = Depends(get_db)):
    with service_errors():
        expense = ExpenseService(db).create(data)
    response.headers.update(EXPENSES_CHANGED)
    return expense_payload(expense)


@app.get("/api/expenses/{expense_id}")
def get_expense(expense_id: int, db: Session = Depends(get_db)):
    with service_errors():
        expense = ExpenseService(db).get(expense_id)
    return expense_payload(expense)


@app.put("/api/expenses/{expense_id}", dependencies=[Depends(require_csrf)])
def update_expense(
    expense_id: int,
    data: ExpenseIn,
    response: Response,
    db: Session = Depends(get_db),
):
    with service_errors():
        expense = ExpenseService(db).update(expense_id, data)
    response.headers.update(EXPENSES_CHANGED)
    return expense_payload(expense)


@app.delete("/api/expenses/{expense_id}", dependencies=[Depends(require_csrf)])
def delete_expense(expense_id: int, db: Session = Depends(get_db)):
    with service_errors():
        ExpenseService(db).delete(expense_id)
    return Response(status_code=204, headers=EXPENSES_CHANGED)


@app.get("/api/dashboard")
def dashboard(year: Optional[int] = None, db: Session = Depends(get_db)):
    with service_errors():
        summary = DashboardService(db).summary_for_year(year or today_local().year)
    summary["recent_expenses"] = [
        expense_payload(e) for e in summary["recent_expenses"]
    ]
    return summary


@app.get("/api/admin/budget-audit")
def budget_audit(db: Session = Depends(get_db)):
    drifts = BudgetService(db).audit_usage()
    return [
        {
            "budget_id": d.budget_id,
            "sub_category_id": d.sub_category_id,
            "year": d.year,
            "stored_cents": d.stored_cents,
            "expected_cents": d.expected_cents,
            "drift_cents": d.drift_cents,
        }
        for d in drifts
    ]


@app.post("/api/admin/rebuild-budgets", dependencies=[Depends(require_csrf)])
def rebuild_budgets(db: Session = Depends(get_db)):
    count = run_budget_audit(db, repair=True)
    logging.info(f"rebuild_budgets: drifting_budgets={count}")
    return Response(
        status_code=200,
        content=f"Budgets rebuilt: {count}",
        headers=BUDGETS_CHANGED,
    )


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
