"""initial schema

Revision ID: 202610180900
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610180900"
down_revision = None
branch_labels = None
depends_on = None

ACTIVE_ONLY = sa.text("state = 'active'")


def _transaction_type():
    return sa.Enum("income", "expense", name="transactiontype")


def _record_state():
    return sa.Enum("active", "archived", name="recordstate")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def _lifecycle():
    return [
        sa.Column(
            "state", _record_state(), nullable=False, server_default="active"
        ),
        sa.Column("archived_at", sa.DateTime()),
    ]


def upgrade():
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", _transaction_type(), nullable=False),
        sa.Column("archived_at", sa.DateTime()),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id", "type", "name", name="uq_category_user_type_name"
        ),
    )

    op.create_table(
        "subcategories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("archived_at", sa.DateTime()),
        *_timestamps(),
        sa.UniqueConstraint(
            "category_id", "name", name="uq_subcategory_category_name"
        ),
    )

    op.create_table(
        "recurring_definitions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("type", _transaction_type(), nullable=False),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("subcategory_id", sa.Integer(), sa.ForeignKey("subcategories.id")),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("payment_method", sa.String(length=50)),
        sa.Column(
            "frequency",
            sa.Enum(
                "daily",
                "weekly",
                "monthly",
                "bi-monthly",
                "quarterly",
                "semi-annually",
                "annually",
                name="frequency",
            ),
            nullable=False,
        ),
        sa.Column("interval", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date()),
        sa.Column("occurrences", sa.Integer()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("next_due_date", sa.Date()),
        *_lifecycle(),
        *_timestamps(),
        sa.CheckConstraint('"interval" > 0', name="ck_definition_interval_positive"),
        sa.CheckConstraint("amount_cents >= 0", name="ck_definition_amount_positive"),
        sa.CheckConstraint(
            "end_date IS NULL OR occurrences IS NULL",
            name="ck_definition_single_end_condition",
        ),
        sa.CheckConstraint(
            "occurrences IS NULL OR occurrences > 0",
            name="ck_definition_occurrences_positive",
        ),
    )
    op.create_index(
        "ix_definitions_user_state", "recurring_definitions", ["user_id", "state"]
    )

    op.create_table(
        "installment_plans",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("subcategory_id", sa.Integer(), sa.ForeignKey("subcategories.id")),
        sa.Column("total_cents", sa.Integer(), nullable=False),
        sa.Column("number_of_installments", sa.Integer(), nullable=False),
        sa.Column("installment_cents", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("payment_method", sa.String(length=50)),
        sa.Column("first_payment_date", sa.Date(), nullable=False),
        sa.Column(
            "is_completed", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        *_lifecycle(),
        *_timestamps(),
        sa.CheckConstraint(
            "number_of_installments >= 2", name="ck_plan_installments_minimum"
        ),
        sa.CheckConstraint("total_cents > 0", name="ck_plan_total_positive"),
    )
    op.create_index("ix_plans_user_state", "installment_plans", ["user_id", "state"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("type", _transaction_type(), nullable=False),
        sa.Column(
            "kind",
            sa.Enum(
                "single",
                "recurring_instance",
                "installment_instance",
                name="transactionkind",
            ),
            nullable=False,
            server_default="single",
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("occurrence_date", sa.Date()),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("payment_method", sa.String(length=50)),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("subcategory_id", sa.Integer(), sa.ForeignKey("subcategories.id")),
        sa.Column(
            "is_processed", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "definition_id", sa.Integer(), sa.ForeignKey("recurring_definitions.id")
        ),
        sa.Column("plan_id", sa.Integer(), sa.ForeignKey("installment_plans.id")),
        *_lifecycle(),
        *_timestamps(),
        sa.CheckConstraint(
            "amount_cents >= 0", name="ck_transactions_amount_positive"
        ),
        sa.CheckConstraint(
            "definition_id IS NULL OR plan_id IS NULL",
            name="ck_transactions_single_origin",
        ),
        sa.CheckConstraint(
            "(kind = 'single' AND definition_id IS NULL AND plan_id IS NULL)"
            " OR (kind = 'recurring_instance' AND definition_id IS NOT NULL)"
            " OR (kind = 'installment_instance' AND plan_id IS NOT NULL)",
            name="ck_transactions_kind_matches_origin",
        ),
    )
    op.create_index(
        "uq_txn_definition_occurrence",
        "transactions",
        ["definition_id", "occurrence_date"],
        unique=True,
        sqlite_where=ACTIVE_ONLY,
        postgresql_where=ACTIVE_ONLY,
    )
    op.create_index(
        "uq_txn_plan_occurrence",
        "transactions",
        ["plan_id", "occurrence_date"],
        unique=True,
        sqlite_where=ACTIVE_ONLY,
        postgresql_where=ACTIVE_ONLY,
    )
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])
    op.create_index(
        "ix_transactions_user_subcategory_date",
        "transactions",
        ["user_id", "subcategory_id", "date"],
    )

    op.create_table(
        "budget_profiles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )

    op.create_table(
        "budget_allocations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column(
            "profile_id",
            sa.Integer(),
            sa.ForeignKey("budget_profiles.id"),
            nullable=False,
        ),
        sa.Column(
            "subcategory_id",
            sa.Integer(),
            sa.ForeignKey("subcategories.id"),
            nullable=False,
        ),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("allocated_cents", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint(
            "allocated_cents >= 0", name="ck_budget_allocation_amount_positive"
        ),
        sa.CheckConstraint("month BETWEEN 1 AND 12", name="ck_budget_allocation_month"),
        sa.UniqueConstraint(
            "profile_id",
            "subcategory_id",
            "year",
            "month",
            name="uq_budget_allocation_profile_subcategory_month",
        ),
    )
    op.create_index(
        "ix_budget_allocation_user_month",
        "budget_allocations",
        ["user_id", "year", "month"],
    )


def downgrade():
    op.drop_index("ix_budget_allocation_user_month", table_name="budget_allocations")
    op.drop_table("budget_allocations")
    op.drop_table("budget_profiles")
    op.drop_index("ix_transactions_user_subcategory_date", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_index("uq_txn_plan_occurrence", table_name="transactions")
    op.drop_index("uq_txn_definition_occurrence", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_plans_user_state", table_name="installment_plans")
    op.drop_table("installment_plans")
    op.drop_index("ix_definitions_user_state", table_name="recurring_definitions")
    op.drop_table("recurring_definitions")
    op.drop_table("subcategories")
    op.drop_table("categories")
