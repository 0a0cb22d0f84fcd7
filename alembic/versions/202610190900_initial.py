"""initial ledger schema

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


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "transaction_currencies",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(length=3), nullable=False, unique=True),
        sa.Column("name", sa.String(length=50), nullable=False),
        sa.Column("symbol", sa.String(length=8), nullable=False),
        sa.Column("decimal_places", sa.Integer(), nullable=False, server_default="2"),
        *_timestamps(),
    )

    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column(
            "type",
            sa.Enum("asset", "expense", "revenue", "cash", name="accounttype"),
            nullable=False,
        ),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_accounts_user_type", "accounts", ["user_id", "type"])

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "name", name="uq_budget_user_name"),
    )

    op.create_table(
        "budget_limits",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "budget_id", sa.Integer(), sa.ForeignKey("budgets.id"), nullable=False
        ),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("amount", sa.String(length=40), nullable=False),
        sa.Column(
            "repeat_freq",
            sa.Enum(
                "daily",
                "weekly",
                "monthly",
                "quarterly",
                "half-year",
                "yearly",
                name="repeatfrequency",
            ),
        ),
        sa.Column("repeats", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.UniqueConstraint(
            "budget_id", "start_date", "end_date", name="uq_budget_limit_period"
        ),
    )
    op.create_index(
        "ix_budget_limits_dates", "budget_limits", ["start_date", "end_date"]
    )

    op.create_table(
        "available_budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column(
            "transaction_currency_id",
            sa.Integer(),
            sa.ForeignKey("transaction_currencies.id"),
            nullable=False,
        ),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("amount", sa.String(length=40), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id",
            "transaction_currency_id",
            "start_date",
            "end_date",
            name="uq_available_budget_user_currency_period",
        ),
    )

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "name", name="uq_category_user_name"),
    )

    op.create_table(
        "tags",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("tag", sa.String(length=255), nullable=False),
        sa.Column("date", sa.Date()),
        sa.Column("description", sa.Text()),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "tag", name="uq_tag_user_tag"),
    )

    op.create_table(
        "transaction_journals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column(
            "type",
            sa.Enum(
                "withdrawal",
                "deposit",
                "transfer",
                "opening_balance",
                name="transactiontype",
            ),
            nullable=False,
        ),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("description", sa.String(length=1024), nullable=False),
        sa.Column("budget_id", sa.Integer(), sa.ForeignKey("budgets.id")),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id")),
        sa.Column(
            "transaction_currency_id",
            sa.Integer(),
            sa.ForeignKey("transaction_currencies.id"),
        ),
        *_timestamps(),
    )
    op.create_index(
        "ix_journals_user_date", "transaction_journals", ["user_id", "date"]
    )
    op.create_index(
        "ix_journals_user_type_date",
        "transaction_journals",
        ["user_id", "type", "date"],
    )
    op.create_index("ix_journals_budget", "transaction_journals", ["budget_id"])

    op.create_table(
        "tag_transaction_journal",
        sa.Column("tag_id", sa.Integer(), sa.ForeignKey("tags.id"), primary_key=True),
        sa.Column(
            "transaction_journal_id",
            sa.Integer(),
            sa.ForeignKey("transaction_journals.id"),
            primary_key=True,
        ),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "transaction_journal_id",
            sa.Integer(),
            sa.ForeignKey("transaction_journals.id"),
            nullable=False,
        ),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("amount", sa.String(length=40), nullable=False),
        sa.Column("description", sa.String(length=1024)),
        *_timestamps(),
    )
    op.create_index(
        "ix_transactions_journal", "transactions", ["transaction_journal_id"]
    )
    op.create_index("ix_transactions_account", "transactions", ["account_id"])


def downgrade():
    op.drop_index("ix_transactions_account", table_name="transactions")
    op.drop_index("ix_transactions_journal", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("tag_transaction_journal")
    op.drop_index("ix_journals_budget", table_name="transaction_journals")
    op.drop_index("ix_journals_user_type_date", table_name="transaction_journals")
    op.drop_index("ix_journals_user_date", table_name="transaction_journals")
    op.drop_table("transaction_journals")
    op.drop_table("tags")
    op.drop_table("categories")
    op.drop_table("available_budgets")
    op.drop_index("ix_budget_limits_dates", table_name="budget_limits")
    op.drop_table("budget_limits")
    op.drop_table("budgets")
    op.drop_index("ix_accounts_user_type", table_name="accounts")
    op.drop_table("accounts")
    op.drop_table("transaction_currencies")
