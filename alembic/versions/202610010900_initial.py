"""initial health expenses schema

Revision ID: 202610010900
Revises:
Create Date: 2026-10-01 09:00:00.000000

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "202610010900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text()),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "name", name="uq_category_user_name"),
    )

    op.create_table(
        "sub_categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "category_id",
            sa.Integer(),
            sa.ForeignKey("categories.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text()),
        *_timestamps(),
    )
    op.create_index("ix_sub_categories_category", "sub_categories", ["category_id"])

    op.create_table(
        "coverage_rules",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "sub_category_id",
            sa.Integer(),
            sa.ForeignKey("sub_categories.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "insurance_type",
            sa.Enum("basic", "supplementary", name="insurancetype"),
            nullable=False,
        ),
        sa.Column("percentage", sa.Numeric(5, 2)),
        sa.Column("max_amount_cents", sa.Integer()),
        sa.Column("description", sa.Text()),
        *_timestamps(),
        sa.UniqueConstraint(
            "sub_category_id",
            "insurance_type",
            name="uq_coverage_rule_sub_category_type",
        ),
        sa.CheckConstraint(
            "percentage IS NULL OR (percentage >= 0 AND percentage <= 100)",
            name="ck_coverage_rule_percentage_range",
        ),
        sa.CheckConstraint(
            "max_amount_cents IS NULL OR max_amount_cents >= 0",
            name="ck_coverage_rule_max_amount_positive",
        ),
    )

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "sub_category_id",
            sa.Integer(),
            sa.ForeignKey("sub_categories.id"),
            nullable=False,
        ),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column(
            "basic_coverage_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column(
            "supplementary_coverage_cents",
            sa.Integer(),
            nullable=False,
            server_default="0",
        ),
        sa.Column("user_pays_cents", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_expenses_amount_positive"),
        sa.CheckConstraint(
            "basic_coverage_cents >= 0 AND supplementary_coverage_cents >= 0 "
            "AND user_pays_cents >= 0",
            name="ck_expenses_split_non_negative",
        ),
    )
    op.create_index(
        "ix_expenses_sub_category_date", "expenses", ["sub_category_id", "date"]
    )

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "sub_category_id",
            sa.Integer(),
            sa.ForeignKey("sub_categories.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "used_amount_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        *_timestamps(),
        sa.UniqueConstraint(
            "sub_category_id", "year", name="uq_budget_sub_category_year"
        ),
        sa.CheckConstraint("amount_cents > 0", name="ck_budget_amount_positive"),
    )
    op.create_index("ix_budgets_year", "budgets", ["year"])


def downgrade() -> None:
    op.drop_index("ix_budgets_year", table_name="budgets")
    op.drop_table("budgets")
    op.drop_index("ix_expenses_sub_category_date", table_name="expenses")
    op.drop_table("expenses")
    op.drop_table("coverage_rules")
    op.drop_index("ix_sub_categories_category", table_name="sub_categories")
    op.drop_table("sub_categories")
    op.drop_table("categories")
