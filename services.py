from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Iterator, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import func, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from config import get_settings
from coverage_calculator import CoverageSplit, calculate_coverage
from models import (
    Budget,
    Category,
    CoverageRule,
    Expense,
    InsuranceType,
    SubCategory,
)
from schemas import BudgetIn, CategoryIn, CoverageRuleIn, ExpenseIn, SubCategoryIn


logger = logging.getLogger(__name__)


class NotFound(ValueError):
    pass


class ReconciliationError(Exception):
    pass


class BudgetUnderflow(ReconciliationError):
    def __init__(self, sub_category_id: int, year: int, used_amount_cents: int) -> None:
        super().__init__(
            f"Budget usage for sub-category {sub_category_id} in {year} "
            f"would drop to {used_amount_cents} cents"
        )
        self.sub_category_id = sub_category_id
        self.year = year
        self.used_amount_cents = used_amount_cents


def get_current_user_id() -> int:
    return 1


def today_local() -> date:
    return datetime.now(ZoneInfo(get_settings().timezone)).date()


def _year_bounds(year: int) -> tuple[date, date]:
    return date(year, 1, 1), date(year + 1, 1, 1) - date.resolution


class CategoryService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.name)
        )
        return self.session.scalars(stmt).all()

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise NotFound("Category not found")
        return category

    def create(self, data: CategoryIn) -> Category:
        existing = self.session.scalar(
            select(Category).where(
                Category.user_id == self.user_id,
                func.lower(Category.name) == data.name.strip().lower(),
            )
        )
        if existing:
            raise ValueError("Category with this name already exists")
        category = Category(
            user_id=self.user_id,
            name=data.name.strip(),
            description=data.description or None,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category


class SubCategoryService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self, category_id: Optional[int] = None) -> list[SubCategory]:
        stmt = (
            select(SubCategory)
            .join(SubCategory.category)
            .options(joinedload(SubCategory.category))
            .where(Category.user_id == self.user_id)
            .order_by(SubCategory.name, SubCategory.id)
        )
        if category_id is not None:
            CategoryService(self.session, self.user_id).get(category_id)
            stmt = stmt.where(SubCategory.category_id == category_id)
        return self.session.scalars(stmt).all()

    def get(self, sub_category_id: int) -> SubCategory:
        sub_category = self.session.scalar(
            select(SubCategory)
            .join(SubCategory.category)
            .options(joinedload(SubCategory.category))
            .where(
                SubCategory.id == sub_category_id,
                Category.user_id == self.user_id,
            )
        )
        if not sub_category:
            raise NotFound("Sub-category not found")
        return sub_category

    def create(self, data: SubCategoryIn) -> SubCategory:
        category = CategoryService(self.session, self.user_id).get(data.category_id)
        sub_category = SubCategory(
            category_id=category.id,
            name=data.name.strip(),
            description=data.description or None,
        )
        self.session.add(sub_category)
        self.session.commit()
        self.session.refresh(sub_category)
        return sub_category


class CoverageRuleService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self, sub_category_id: Optional[int] = None) -> list[CoverageRule]:
        stmt = (
            select(CoverageRule)
            .join(CoverageRule.sub_category)
            .join(SubCategory.category)
            .where(Category.user_id == self.user_id)
            .order_by(CoverageRule.sub_category_id, CoverageRule.insurance_type)
        )
        if sub_category_id is not None:
            SubCategoryService(self.session, self.user_id).get(sub_category_id)
            stmt = stmt.where(CoverageRule.sub_category_id == sub_category_id)
        return self.session.scalars(stmt).all()

    def rules_for(
        self, sub_category_id: int
    ) -> tuple[Optional[CoverageRule], Optional[CoverageRule]]:
        rules = self.session.scalars(
            select(CoverageRule).where(CoverageRule.sub_category_id == sub_category_id)
        ).all()
        by_type = {rule.insurance_type: rule for rule in rules}
        return (
            by_type.get(InsuranceType.basic),
            by_type.get(InsuranceType.supplementary),
        )

    def upsert(self, data: CoverageRuleIn) -> CoverageRule:
        SubCategoryService(self.session, self.user_id).get(data.sub_category_id)
        existing = self.session.scalar(
            select(CoverageRule).where(
                CoverageRule.sub_category_id == data.sub_category_id,
                CoverageRule.insurance_type == data.insurance_type,
            )
        )
        if existing:
            existing.percentage = data.percentage
            existing.max_amount_cents = data.max_amount_cents
            existing.description = data.description or None
            self.session.commit()
            self.session.refresh(existing)
            return existing

        rule = CoverageRule(
            sub_category_id=data.sub_category_id,
            insurance_type=data.insurance_type,
            percentage=data.percentage,
            max_amount_cents=data.max_amount_cents,
            description=data.description or None,
        )
        self.session.add(rule)
        self.session.commit()
        self.session.refresh(rule)
        return rule


@dataclass(frozen=True)
class BudgetDrift:
    budget_id: int
    sub_category_id: int
    year: int
    stored_cents: int
    expected_cents: int

    @property
    def drift_cents(self) -> int:
        return self.stored_cents - self.expected_cents


class BudgetService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(
        self, *, sub_category_id: Optional[int] = None, year: Optional[int] = None
    ) -> list[Budget]:
        stmt = (
            select(Budget)
            .join(Budget.sub_category)
            .join(SubCategory.category)
            .options(joinedload(Budget.sub_category).joinedload(SubCategory.category))
            .where(Category.user_id == self.user_id)
            .order_by(Budget.year.desc(), Budget.sub_category_id)
        )
        if sub_category_id is not None:
            SubCategoryService(self.session, self.user_id).get(sub_category_id)
            stmt = stmt.where(Budget.sub_category_id == sub_category_id)
        if year is not None:
            stmt = stmt.where(Budget.year == year)
        return self.session.scalars(stmt).all()

    def get_for(self, sub_category_id: int, year: int) -> Optional[Budget]:
        return self.session.scalar(
            select(Budget).where(
                Budget.sub_category_id == sub_category_id, Budget.year == year
            )
        )

    def supplementary_total(self, sub_category_id: int, year: int) -> int:
        start, end = _year_bounds(year)
        total = self.session.execute(
            select(
                func.coalesce(func.sum(Expense.supplementary_coverage_cents), 0)
            ).where(
                Expense.sub_category_id == sub_category_id,
                Expense.date.between(start, end),
            )
        ).scalar_one()
        return int(total or 0)

    def upsert(self, data: BudgetIn) -> Budget:
        SubCategoryService(self.session, self.user_id).get(data.sub_category_id)
        existing = self.get_for(data.sub_category_id, data.year)
        if existing:
            existing.amount_cents = data.amount_cents
            self.session.commit()
            self.session.refresh(existing)
            return existing

        # Expenses recorded before the budget existed still count against it.
        # The sum is taken by the INSERT itself so no expense slips in between.
        start, end = _year_bounds(data.year)
        used = (
            select(func.coalesce(func.sum(Expense.supplementary_coverage_cents), 0))
            .where(
                Expense.sub_category_id == data.sub_category_id,
                Expense.date.between(start, end),
            )
            .scalar_subquery()
        )
        stmt = (
            insert(Budget)
            .values(
                sub_category_id=data.sub_category_id,
                year=data.year,
                amount_cents=data.amount_cents,
                used_amount_cents=used,
            )
            .returning(Budget.id)
        )
        try:
            budget_id = self.session.execute(stmt).scalar_one()
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            existing = self.get_for(data.sub_category_id, data.year)
            if existing is None:
                raise ValueError("Could not create budget") from None
            logger.info(
                f"budget_upsert_race: sub_category_id={data.sub_category_id} "
                f"year={data.year}"
            )
            existing.amount_cents = data.amount_cents
            self.session.commit()
            self.session.refresh(existing)
            return existing
        return self.session.get(Budget, budget_id)

    def apply_delta(
        self, sub_category_id: int, year: int, delta_cents: int
    ) -> Optional[int]:
        """Atomically add ``delta_cents`` to a budget's used amount.

        The increment happens inside a single UPDATE statement so concurrent
        callers never overwrite each other. Returns the new used amount, or
        ``None`` when no budget exists for the sub-category and year.
        Raises ``BudgetUnderflow`` when the result is negative; the caller's
        transaction is expected to roll back.
        """
        stmt = (
            update(Budget)
            .where(Budget.sub_category_id == sub_category_id, Budget.year == year)
            .values(used_amount_cents=Budget.used_amount_cents + delta_cents)
            .returning(Budget.used_amount_cents)
        )
        try:
            used = self.session.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise ReconciliationError(
                f"Could not adjust budget for sub-category {sub_category_id} "
                f"in {year}"
            ) from exc
        if used is None:
            return None
        if used < 0:
            logger.error(
                f"budget_underflow: sub_category_id={sub_category_id} year={year} "
                f"delta_cents={delta_cents} used_amount_cents={used}"
            )
            raise BudgetUnderflow(sub_category_id, year, used)
        return int(used)

    def audit_usage(self) -> list[BudgetDrift]:
        drifts: list[BudgetDrift] = []
        for budget in self.list_all():
            expected = self.supplementary_total(budget.sub_category_id, budget.year)
            if expected != budget.used_amount_cents:
                drifts.append(
                    BudgetDrift(
                        budget_id=budget.id,
                        sub_category_id=budget.sub_category_id,
                        year=budget.year,
                        stored_cents=budget.used_amount_cents,
                        expected_cents=expected,
                    )
                )
        return drifts

    def rebuild_usage(self) -> int:
        drifts = self.audit_usage()
        for drift in drifts:
            self.session.execute(
                update(Budget)
                .where(Budget.id == drift.budget_id)
                .values(used_amount_cents=drift.expected_cents)
            )
            logger.info(
                f"budget_rebuilt: budget_id={drift.budget_id} "
                f"from={drift.stored_cents} to={drift.expected_cents}"
            )
        self.session.commit()
        return len(drifts)


class ExpenseOperation(str, Enum):
    create = "create"
    update = "update"
    delete = "delete"


@dataclass(frozen=True)
class ExpenseSnapshot:
    sub_category_id: int
    date: date
    supplementary_coverage_cents: int

    @property
    def budget_key(self) -> tuple[int, int]:
        return self.sub_category_id, self.date.year

    @classmethod
    def of(cls, expense: Expense) -> "ExpenseSnapshot":
        return cls(
            sub_category_id=expense.sub_category_id,
            date=expense.date,
            supplementary_coverage_cents=expense.supplementary_coverage_cents,
        )


class BudgetReconciler:
    """Keeps budget usage equal to the supplementary coverage of its expenses.

    Must run inside the same transaction as the expense write it belongs to.
    """

    def __init__(self, session: Session) -> None:
        self.session = session
        self.budgets = BudgetService(session)

    @staticmethod
    def plan(
        operation: ExpenseOperation,
        before: Optional[ExpenseSnapshot] = None,
        after: Optional[ExpenseSnapshot] = None,
    ) -> dict[tuple[int, int], int]:
        deltas: dict[tuple[int, int], int] = {}
        if operation == ExpenseOperation.create:
            if after is None:
                raise ValueError("Create reconciliation needs the new expense")
            deltas[after.budget_key] = after.supplementary_coverage_cents
        elif operation == ExpenseOperation.delete:
            if before is None:
                raise ValueError("Delete reconciliation needs the removed expense")
            deltas[before.budget_key] = -before.supplementary_coverage_cents
        else:
            if before is None or after is None:
                raise ValueError("Update reconciliation needs both expense states")
            if (
                before.budget_key == after.budget_key
                and before.supplementary_coverage_cents
                == after.supplementary_coverage_cents
            ):
                return {}
            # Same budget row on both sides collapses into one net delta.
            deltas[before.budget_key] = (
                deltas.get(before.budget_key, 0) - before.supplementary_coverage_cents
            )
            deltas[after.budget_key] = (
                deltas.get(after.budget_key, 0) + after.supplementary_coverage_cents
            )
        return {key: delta for key, delta in deltas.items() if delta != 0}

    def reconcile(
        self,
        operation: ExpenseOperation,
        before: Optional[ExpenseSnapshot] = None,
        after: Optional[ExpenseSnapshot] = None,
    ) -> None:
        for (sub_category_id, year), delta in self.plan(operation, before, after).items():
            used = self.budgets.apply_delta(sub_category_id, year, delta)
            if used is None:
                logger.debug(
                    f"budget_untracked: sub_category_id={sub_category_id} year={year}"
                )
                continue
            logger.info(
                f"budget_adjusted: operation={operation.value} "
                f"sub_category_id={sub_category_id} year={year} "
                f"delta_cents={delta} used_amount_cents={used}"
            )


class ExpenseService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    @contextmanager
    def _unit_of_work(self) -> Iterator[None]:
        try:
            yield
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    def _split_for(self, sub_category_id: int, amount_cents: int) -> CoverageSplit:
        basic_rule, supplementary_rule = CoverageRuleService(
            self.session, self.user_id
        ).rules_for(sub_category_id)
        return calculate_coverage(amount_cents, basic_rule, supplementary_rule)

    def preview(self, amount_cents: int, sub_category_id: int) -> CoverageSplit:
        SubCategoryService(self.session, self.user_id).get(sub_category_id)
        return self._split_for(sub_category_id, amount_cents)

    def get(self, expense_id: int) -> Expense:
        expense = self.session.scalar(
            select(Expense)
            .join(Expense.sub_category)
            .join(SubCategory.category)
            .options(joinedload(Expense.sub_category).joinedload(SubCategory.category))
            .where(Expense.id == expense_id, Category.user_id == self.user_id)
        )
        if not expense:
            raise NotFound("Expense not found")
        return expense

    def list(
        self,
        *,
        sub_category_id: Optional[int] = None,
        year: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[Expense]:
        stmt = (
            select(Expense)
            .join(Expense.sub_category)
            .join(SubCategory.category)
            .options(joinedload(Expense.sub_category).joinedload(SubCategory.category))
            .where(Category.user_id == self.user_id)
            .order_by(Expense.date.desc(), Expense.id.desc())
        )
        if sub_category_id is not None:
            SubCategoryService(self.session, self.user_id).get(sub_category_id)
            stmt = stmt.where(Expense.sub_category_id == sub_category_id)
        if year is not None:
            start, end = _year_bounds(year)
            stmt = stmt.where(Expense.date.between(start, end))
        if limit is not None:
            stmt = stmt.limit(limit)
        return self.session.scalars(stmt).all()

    def create(self, data: ExpenseIn) -> Expense:
        SubCategoryService(self.session, self.user_id).get(data.sub_category_id)
        split = self._split_for(data.sub_category_id, data.amount_cents)

        expense = Expense(
            sub_category_id=data.sub_category_id,
            date=data.date or today_local(),
            amount_cents=data.amount_cents,
            description=data.description or None,
            basic_coverage_cents=split.basic_coverage_cents,
            supplementary_coverage_cents=split.supplementary_coverage_cents,
            user_pays_cents=split.user_pays_cents,
        )
        with self._unit_of_work():
            self.session.add(expense)
            self.session.flush()
            BudgetReconciler(self.session).reconcile(
                ExpenseOperation.create, after=ExpenseSnapshot.of(expense)
            )
        self.session.refresh(expense)
        logger.info(
            f"expense_created: id={expense.id} sub_category_id={expense.sub_category_id} "
            f"amount_cents={expense.amount_cents} "
            f"supplementary_cents={expense.supplementary_coverage_cents}"
        )
        return expense

    def update(self, expense_id: int, data: ExpenseIn) -> Expense:
        expense = self.get(expense_id)
        SubCategoryService(self.session, self.user_id).get(data.sub_category_id)
        split = self._split_for(data.sub_category_id, data.amount_cents)

        before = ExpenseSnapshot.of(expense)
        with self._unit_of_work():
            expense.sub_category_id = data.sub_category_id
            expense.date = data.date or before.date
            expense.amount_cents = data.amount_cents
            expense.description = data.description or None
            expense.basic_coverage_cents = split.basic_coverage_cents
            expense.supplementary_coverage_cents = split.supplementary_coverage_cents
            expense.user_pays_cents = split.user_pays_cents
            self.session.flush()
            BudgetReconciler(self.session).reconcile(
                ExpenseOperation.update,
                before=before,
                after=ExpenseSnapshot.of(expense),
            )
        self.session.refresh(expense)
        logger.info(
            f"expense_updated: id={expense.id} sub_category_id={expense.sub_category_id} "
            f"amount_cents={expense.amount_cents} "
            f"supplementary_cents={expense.supplementary_coverage_cents}"
        )
        return expense

    def delete(self, expense_id: int) -> None:
        expense = self.get(expense_id)
        before = ExpenseSnapshot.of(expense)
        with self._unit_of_work():
            BudgetReconciler(self.session).reconcile(
                ExpenseOperation.delete, before=before
            )
            self.session.delete(expense)
            self.session.flush()
        logger.info(f"expense_deleted: id={expense_id}")


class DashboardService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _totals_stmt(self, year: int):
        start, end = _year_bounds(year)
        return (
            select(
                func.count(Expense.id).label("expense_count"),
                func.coalesce(func.sum(Expense.amount_cents), 0).label("expenses"),
                func.coalesce(func.sum(Expense.basic_coverage_cents), 0).label("basic"),
                func.coalesce(func.sum(Expense.supplementary_coverage_cents), 0).label(
                    "supplementary"
                ),
                func.coalesce(func.sum(Expense.user_pays_cents), 0).label("user_pays"),
            )
            .select_from(Expense)
            .join(Expense.sub_category)
            .join(SubCategory.category)
            .where(
                Category.user_id == self.user_id,
                Expense.date.between(start, end),
            )
        )

    @staticmethod
    def _totals_from_row(row) -> dict[str, int]:
        return {
            "total_expenses_cents": int(row.expenses or 0),
            "total_basic_coverage_cents": int(row.basic or 0),
            "total_supplementary_coverage_cents": int(row.supplementary or 0),
            "total_user_pays_cents": int(row.user_pays or 0),
        }

    def summary_for_year(self, year: int) -> dict[str, object]:
        totals_row = self.session.execute(self._totals_stmt(year)).one()
        totals = self._totals_from_row(totals_row)

        by_category: dict[str, dict[str, int]] = {}
        stmt = (
            self._totals_stmt(year)
            .add_columns(Category.name.label("category_name"))
            .group_by(Category.id, Category.name)
            .order_by(Category.name)
        )
        for row in self.session.execute(stmt):
            entry = self._totals_from_row(row)
            entry["expense_count"] = int(row.expense_count or 0)
            by_category[row.category_name] = entry

        budget_summary = []
        for budget in BudgetService(self.session, self.user_id).list_all(year=year):
            used = budget.used_amount_cents
            budget_summary.append(
                {
                    "id": budget.id,
                    "sub_category_id": budget.sub_category_id,
                    "sub_category_name": budget.sub_category.name,
                    "category_name": budget.sub_category.category.name,
                    "total_budget_cents": budget.amount_cents,
                    "used_amount_cents": used,
                    "remaining_amount_cents": budget.amount_cents - used,
                    "percentage_used": round(used / budget.amount_cents * 100, 1),
                }
            )

        recent = ExpenseService(self.session, self.user_id).list(year=year, limit=10)
        return {
            "year": year,
            "totals": totals,
            "budget_summary": budget_summary,
            "expenses_by_category": by_category,
            "recent_expenses": recent,
        }
