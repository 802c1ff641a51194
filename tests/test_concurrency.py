from concurrent.futures import ThreadPoolExecutor
from datetime import date
from decimal import Decimal

from sqlalchemy import select

from database import Base, build_engine, build_sessionmaker
from models import Budget, InsuranceType
from schemas import BudgetIn, CategoryIn, CoverageRuleIn, ExpenseIn, SubCategoryIn
from services import (
    BudgetService,
    CategoryService,
    CoverageRuleService,
    ExpenseService,
    SubCategoryService,
)


def test_concurrent_creates_do_not_lose_budget_updates(tmp_path) -> None:
    engine = build_engine(f"sqlite:///{tmp_path / 'concurrency.db'}")
    Base.metadata.create_all(engine)
    SessionLocal = build_sessionmaker(engine)

    with SessionLocal() as session:
        category = CategoryService(session).create(CategoryIn(name="Therapy"))
        sub = SubCategoryService(session).create(
            SubCategoryIn(category_id=category.id, name="Physio")
        )
        CoverageRuleService(session).upsert(
            CoverageRuleIn(
                sub_category_id=sub.id,
                insurance_type=InsuranceType.basic,
                percentage=Decimal("40"),
            )
        )
        CoverageRuleService(session).upsert(
            CoverageRuleIn(
                sub_category_id=sub.id,
                insurance_type=InsuranceType.supplementary,
                percentage=Decimal("75"),
            )
        )
        BudgetService(session).upsert(
            BudgetIn(sub_category_id=sub.id, year=2025, amount_cents=1_000_000)
        )
        sub_id = sub.id

    amounts = [1_000 + i * 137 for i in range(24)]

    def create(amount_cents: int) -> int:
        with SessionLocal() as session:
            expense = ExpenseService(session).create(
                ExpenseIn(
                    sub_category_id=sub_id,
                    amount_cents=amount_cents,
                    date=date(2025, 3, 1),
                )
            )
            return expense.supplementary_coverage_cents

    with ThreadPoolExecutor(max_workers=8) as pool:
        supplementary = list(pool.map(create, amounts))

    with SessionLocal() as session:
        budget = session.scalar(
            select(Budget).where(Budget.sub_category_id == sub_id, Budget.year == 2025)
        )
        assert budget.used_amount_cents == sum(supplementary)
        assert BudgetService(session).audit_usage() == []
    engine.dispose()
