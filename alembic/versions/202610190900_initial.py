"""initial schema

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


TRANSACTION_TYPE = sa.Enum("income", "expense", name="transactiontype")
FREQUENCY = sa.Enum(
    "weekly", "biweekly", "monthly", "quarterly", "yearly", name="frequency"
)
ASSET_TYPE = sa.Enum(
    "savings",
    "checking",
    "investment",
    "property",
    "vehicle",
    "other",
    name="assettype",
)


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "recurring_definitions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("type", TRANSACTION_TYPE, nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("frequency", FREQUENCY, nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("skipped_months", sa.JSON(), nullable=False),
        sa.Column("month_overrides", sa.JSON(), nullable=False),
        sa.Column("last_generated_date", sa.Date()),
        sa.Column("next_due_date", sa.Date()),
        sa.Column("total_occurrences", sa.Integer()),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_recurring_amount_positive"),
    )
    op.create_index(
        "ix_recurring_user_active", "recurring_definitions", ["user_id", "is_active"]
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("type", TRANSACTION_TYPE, nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column(
            "recurring_definition_id",
            sa.Integer(),
            sa.ForeignKey("recurring_definitions.id", ondelete="SET NULL"),
        ),
        sa.Column("occurrence_date", sa.Date()),
        sa.Column(
            "is_projected", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id",
            "recurring_definition_id",
            "occurrence_date",
            name="uq_txn_definition_occurrence",
        ),
        sa.CheckConstraint(
            "amount_cents >= 0", name="ck_transactions_amount_positive"
        ),
    )
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])
    op.create_index(
        "ix_transactions_user_type_date", "transactions", ["user_id", "type", "date"]
    )

    op.create_table(
        "budget_settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("savings_percentage", sa.Float(), nullable=False),
        sa.Column("debt_payoff_percentage", sa.Float(), nullable=False),
        *_timestamps(),
    )
    op.create_index(
        "ix_budget_settings_user_updated", "budget_settings", ["user_id", "updated_at"]
    )

    op.create_table(
        "goals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("target_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("current_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "monthly_contribution_cents",
            sa.Integer(),
            nullable=False,
            server_default="0",
        ),
        sa.Column("target_date", sa.Date()),
        *_timestamps(),
        sa.CheckConstraint(
            "monthly_contribution_cents >= 0", name="ck_goal_contribution_positive"
        ),
    )

    op.create_table(
        "assets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("type", ASSET_TYPE, nullable=False, server_default="other"),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )

    op.create_table(
        "debts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("payment_cents", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint("balance_cents >= 0", name="ck_debt_balance_positive"),
        sa.CheckConstraint("payment_cents >= 0", name="ck_debt_payment_positive"),
    )

    op.create_table(
        "net_worth_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("net_worth_cents", sa.Integer(), nullable=False),
        sa.Column("assets_cents", sa.Integer(), nullable=False),
        sa.Column("debts_cents", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "date", name="uq_net_worth_user_month"),
    )

    op.create_table(
        "monthly_budget_history",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("month", sa.String(length=7), nullable=False),
        sa.Column("income_cents", sa.Integer(), nullable=False),
        sa.Column("expense_cents", sa.Integer(), nullable=False),
        sa.Column("net_cents", sa.Integer(), nullable=False),
        sa.Column("savings_cents", sa.Integer(), nullable=False),
        sa.Column("discretionary_cents", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "month", name="uq_budget_history_user_month"),
    )


def downgrade():
    op.drop_table("monthly_budget_history")
    op.drop_table("net_worth_entries")
    op.drop_table("debts")
    op.drop_table("assets")
    op.drop_table("goals")
    op.drop_index("ix_budget_settings_user_updated", table_name="budget_settings")
    op.drop_table("budget_settings")
    op.drop_index("ix_transactions_user_type_date", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_recurring_user_active", table_name="recurring_definitions")
    op.drop_table("recurring_definitions")
