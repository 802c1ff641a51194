from datetime import date

from sqlalchemy import create_engine, update
from sqlalchemy.orm import Session

from database import Base, build_engine, build_sessionmaker
from models import Budget, InsuranceType
from scheduler import SchedulerManager, run_budget_audit
from schemas import BudgetIn, CategoryIn, CoverageRuleIn, ExpenseIn, SubCategoryIn
from services import (
    BudgetService,
    CategoryService,
    CoverageRuleService,
    ExpenseService,
    SubCategoryService,
)


def _setup(session: Session) -> int:
    category = CategoryService(session).create(CategoryIn(name="Dental"))
    sub = SubCategoryService(session).create(
        SubCategoryIn(category_id=category.id, name="Hygiene")
    )
    CoverageRuleService(session).upsert(
        CoverageRuleIn(
            sub_category_id=sub.id,
            insurance_type=InsuranceType.supplementary,
            max_amount_cents=5_000,
        )
    )
    BudgetService(session).upsert(
        BudgetIn(sub_category_id=sub.id, year=2025, amount_cents=20_000)
    )
    expenses = ExpenseService(session)
    expenses.create(
        ExpenseIn(sub_category_id=sub.id, amount_cents=12_000, date=date(2025, 1, 15))
    )
    expenses.create(
        ExpenseIn(sub_category_id=sub.id, amount_cents=3_000, date=date(2025, 7, 15))
    )
    return sub.id


def test_audit_reports_nothing_for_consistent_budgets() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _setup(session)
        assert BudgetService(session).audit_usage() == []


def test_audit_detects_and_rebuild_repairs_drift() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        sub_id = _setup(session)
        session.execute(update(Budget).values(used_amount_cents=123))
        session.commit()

        drifts = BudgetService(session).audit_usage()
        assert len(drifts) == 1
        assert drifts[0].sub_category_id == sub_id
        assert drifts[0].expected_cents == 8_000
        assert drifts[0].drift_cents == 123 - 8_000

        assert BudgetService(session).rebuild_usage() == 1
        session.expire_all()
        assert BudgetService(session).get_for(sub_id, 2025).used_amount_cents == 8_000
        assert BudgetService(session).audit_usage() == []


def test_scheduled_audit_only_repairs_when_asked() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        sub_id = _setup(session)
        session.execute(update(Budget).values(used_amount_cents=0))
        session.commit()

        assert run_budget_audit(session) == 1
        session.expire_all()
        assert BudgetService(session).get_for(sub_id, 2025).used_amount_cents == 0

        assert run_budget_audit(session, repair=True) == 1
        session.expire_all()
        assert BudgetService(session).get_for(sub_id, 2025).used_amount_cents == 8_000


def test_scheduler_audits_at_startup_and_schedules_daily_run(
    tmp_path, monkeypatch
) -> None:
    engine = build_engine(f"sqlite:///{tmp_path / 'audit.db'}")
    Base.metadata.create_all(engine)
    factory = build_sessionmaker(engine)
    with factory() as session:
        sub_id = _setup(session)
        session.execute(update(Budget).values(used_amount_cents=0))
        session.commit()

    manager = SchedulerManager(session_factory=factory)
    monkeypatch.setattr(manager.settings, "audit_repair", True)
    manager.start()
    try:
        assert manager.scheduler.get_job("budget_audit_daily") is not None
    finally:
        manager.stop()

    with factory() as session:
        assert BudgetService(session).get_for(sub_id, 2025).used_amount_cents == 8_000
    engine.dispose()
