from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class InsuranceType(str, Enum):
    basic = "basic"
    supplementary = "supplementary"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)

    sub_categories: Mapped[list["SubCategory"]] = relationship(
        "SubCategory", back_populates="category", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_category_user_name"),
    )


class SubCategory(Base, TimestampMixin):
    __tablename__ = "sub_categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)

    category: Mapped["Category"] = relationship(
        "Category", back_populates="sub_categories"
    )
    coverage_rules: Mapped[list["CoverageRule"]] = relationship(
        "CoverageRule", back_populates="sub_category", cascade="all, delete-orphan"
    )
    budgets: Mapped[list["Budget"]] = relationship(
        "Budget", back_populates="sub_category", cascade="all, delete-orphan"
    )
    expenses: Mapped[list["Expense"]] = relationship(
        "Expense", back_populates="sub_category"
    )

    __table_args__ = (
        Index("ix_sub_categories_category", "category_id"),
    )


class CoverageRule(Base, TimestampMixin):
    __tablename__ = "coverage_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sub_category_id: Mapped[int] = mapped_column(
        ForeignKey("sub_categories.id", ondelete="CASCADE"), nullable=False
    )
    insurance_type: Mapped[InsuranceType] = mapped_column(
        SAEnum(InsuranceType), nullable=False
    )
    percentage: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2))
    max_amount_cents: Mapped[Optional[int]] = mapped_column(Integer)
    description: Mapped[Optional[str]] = mapped_column(Text)

    sub_category: Mapped["SubCategory"] = relationship(
        "SubCategory", back_populates="coverage_rules"
    )

    __table_args__ = (
        UniqueConstraint(
            "sub_category_id",
            "insurance_type",
            name="uq_coverage_rule_sub_category_type",
        ),
        CheckConstraint(
            "percentage IS NULL OR (percentage >= 0 AND percentage <= 100)",
            name="ck_coverage_rule_percentage_range",
        ),
        CheckConstraint(
            "max_amount_cents IS NULL OR max_amount_cents >= 0",
            name="ck_coverage_rule_max_amount_positive",
        ),
    )


class Expense(Base, TimestampMixin):
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sub_category_id: Mapped[int] = mapped_column(
        ForeignKey("sub_categories.id"), nullable=False
    )
    date: Mapped[date] = mapped_column(Date, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    # Snapshot of the coverage split at write time; not recomputed on read.
    basic_coverage_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    supplementary_coverage_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    user_pays_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    sub_category: Mapped["SubCategory"] = relationship(
        "SubCategory", back_populates="expenses"
    )

    __table_args__ = (
        Index("ix_expenses_sub_category_date", "sub_category_id", "date"),
        CheckConstraint("amount_cents > 0", name="ck_expenses_amount_positive"),
        CheckConstraint(
            "basic_coverage_cents >= 0 AND supplementary_coverage_cents >= 0 "
            "AND user_pays_cents >= 0",
            name="ck_expenses_split_non_negative",
        ),
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sub_category_id: Mapped[int] = mapped_column(
        ForeignKey("sub_categories.id", ondelete="CASCADE"), nullable=False
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    used_amount_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )

    sub_category: Mapped["SubCategory"] = relationship(
        "SubCategory", back_populates="budgets"
    )

    __table_args__ = (
        UniqueConstraint("sub_category_id", "year", name="uq_budget_sub_category_year"),
        CheckConstraint("amount_cents > 0", name="ck_budget_amount_positive"),
        Index("ix_budgets_year", "year"),
    )
