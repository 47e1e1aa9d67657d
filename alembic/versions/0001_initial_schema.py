"""initial schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

CURRENCY = sa.Enum("USD", "EUR", "ILS", name="currency")
ACCOUNT_TYPE = sa.Enum("SELF", "PARTNER", "JOINT", "OTHER", name="account_type")
TXN_TYPE = sa.Enum("INCOME", "EXPENSE", name="txn_type")
REQUEST_STATUS = sa.Enum("PENDING", "APPROVED", "REJECTED", name="request_status")
SPLIT_TYPE = sa.Enum("EQUAL", "PERCENTAGE", "FIXED", name="split_type")
PAYMENT_STATUS = sa.Enum("PENDING", "PAID", "DECLINED", name="payment_status")
SUBSCRIPTION_STATUS = sa.Enum("TRIALING", "ACTIVE", "PAST_DUE", "CANCELED", "EXPIRED", name="subscription_status")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "user",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=False, unique=True),
        sa.Column("display_name", sa.String(length=100), nullable=True),
        sa.Column("preferred_currency", CURRENCY, nullable=False),
        sa.Column("email_verified", sa.Boolean(), nullable=False),
        sa.Column("has_completed_onboarding", sa.Boolean(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_table(
        "authsession",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id", ondelete="CASCADE"), nullable=False),
        sa.Column("token_hash", sa.String(length=64), nullable=False, unique=True),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("revoked_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_table(
        "account",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", ACCOUNT_TYPE, nullable=False),
        sa.Column("preferred_currency", CURRENCY, nullable=False),
        sa.Column("color", sa.String(length=20), nullable=True),
        sa.Column("icon", sa.String(length=50), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.Column("deleted_by", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "name", name="uq_account_user_name"),
    )
    op.create_index("ix_account_user_deleted", "account", ["user_id", "deleted_at"], unique=False)
    op.create_table(
        "category",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", TXN_TYPE, nullable=False),
        sa.Column("color", sa.String(length=20), nullable=True),
        sa.Column("is_holding", sa.Boolean(), nullable=False),
        sa.Column("is_archived", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "name", "type", name="uq_category_user_name_type"),
    )
    op.create_table(
        "recurringtemplate",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("account.id", ondelete="CASCADE"), nullable=False),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("category.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", TXN_TYPE, nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", CURRENCY, nullable=False),
        sa.Column("day_of_month", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("start_month", sa.Date(), nullable=False),
        sa.Column("end_month", sa.Date(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("day_of_month BETWEEN 1 AND 31", name="ck_recurring_day_of_month"),
    )
    op.create_index("ix_recurring_account_active", "recurringtemplate", ["account_id", "is_active"], unique=False)
    op.create_table(
        "transaction",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("account.id", ondelete="CASCADE"), nullable=False),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("category.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", TXN_TYPE, nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", CURRENCY, nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("month", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_recurring", sa.Boolean(), nullable=False),
        sa.Column(
            "recurring_template_id",
            sa.Integer(),
            sa.ForeignKey("recurringtemplate.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("is_mutual", sa.Boolean(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_transaction_account_month", "transaction", ["account_id", "month"], unique=False)
    op.create_index("ix_transaction_template_month", "transaction", ["recurring_template_id", "month"], unique=False)
    op.create_table(
        "budget",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("account.id", ondelete="CASCADE"), nullable=False),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("category.id", ondelete="CASCADE"), nullable=False),
        sa.Column("month", sa.Date(), nullable=False),
        sa.Column("planned", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", CURRENCY, nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("account_id", "category_id", "month", name="uq_budget_account_category_month"),
    )
    op.create_table(
        "monthlyincomegoal",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("account.id", ondelete="CASCADE"), nullable=False),
        sa.Column("month", sa.Date(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", CURRENCY, nullable=False),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("account_id", "month", name="uq_income_goal_account_month"),
    )
    op.create_table(
        "holding",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("account.id", ondelete="CASCADE"), nullable=False),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("category.id", ondelete="CASCADE"), nullable=False),
        sa.Column("symbol", sa.String(length=10), nullable=False),
        sa.Column("quantity", sa.Numeric(18, 6), nullable=False),
        sa.Column("average_cost", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", CURRENCY, nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("account_id", "symbol", name="uq_holding_account_symbol"),
    )
    op.create_table(
        "stockprice",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("symbol", sa.String(length=10), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("change_percent", sa.Numeric(8, 4), nullable=True),
        sa.Column("volume", sa.Integer(), nullable=True),
        sa.Column("currency", CURRENCY, nullable=False),
        sa.Column("source", sa.String(length=32), nullable=False),
        sa.Column("fetched_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_stockprice_symbol_fetched", "stockprice", ["symbol", "fetched_at"], unique=False)
    op.create_table(
        "exchangerate",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("base_currency", CURRENCY, nullable=False),
        sa.Column("target_currency", CURRENCY, nullable=False),
        sa.Column("rate", sa.Numeric(18, 6), nullable=False),
        sa.Column("date", sa.DateTime(), nullable=False),
        sa.Column("fetched_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("base_currency", "target_currency", "date", name="uq_fx_pair_date"),
    )
    op.create_table(
        "transactionrequest",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("from_id", sa.Integer(), sa.ForeignKey("account.id", ondelete="CASCADE"), nullable=False),
        sa.Column("to_id", sa.Integer(), sa.ForeignKey("account.id", ondelete="CASCADE"), nullable=False),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("category.id", ondelete="CASCADE"), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", CURRENCY, nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", REQUEST_STATUS, nullable=False),
        *_timestamps(),
    )
    op.create_table(
        "sharedexpense",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "transaction_id",
            sa.Integer(),
            sa.ForeignKey("transaction.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("user.id", ondelete="CASCADE"), nullable=False),
        sa.Column("split_type", SPLIT_TYPE, nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", CURRENCY, nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_table(
        "expenseparticipant",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "shared_expense_id",
            sa.Integer(),
            sa.ForeignKey("sharedexpense.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id", ondelete="CASCADE"), nullable=False),
        sa.Column("share_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("share_percentage", sa.Numeric(5, 2), nullable=True),
        sa.Column("status", PAYMENT_STATUS, nullable=False),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("reminder_sent_at", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("shared_expense_id", "user_id", name="uq_participant_share_user"),
    )
    op.create_index("ix_participant_user_status", "expenseparticipant", ["user_id", "status"], unique=False)
    op.create_table(
        "subscription",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("status", SUBSCRIPTION_STATUS, nullable=False),
        sa.Column("trial_ends_at", sa.DateTime(), nullable=True),
        sa.Column("current_period_start", sa.DateTime(), nullable=True),
        sa.Column("current_period_end", sa.DateTime(), nullable=True),
        sa.Column("canceled_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_table(
        "dashboardcache",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("cache_key", sa.String(length=200), nullable=False, unique=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id", ondelete="CASCADE"), nullable=True),
        sa.Column("month", sa.Date(), nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=True),
        sa.Column("preferred_currency", sa.String(length=3), nullable=True),
        sa.Column("data", sa.Text(), nullable=False),
        sa.Column("fetched_at", sa.DateTime(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("dashboardcache")
    op.drop_table("subscription")
    op.drop_index("ix_participant_user_status", table_name="expenseparticipant")
    op.drop_table("expenseparticipant")
    op.drop_table("sharedexpense")
    op.drop_table("transactionrequest")
    op.drop_table("exchangerate")
    op.drop_index("ix_stockprice_symbol_fetched", table_name="stockprice")
    op.drop_table("stockprice")
    op.drop_table("holding")
    op.drop_table("monthlyincomegoal")
    op.drop_table("budget")
    op.drop_index("ix_transaction_template_month", table_name="transaction")
    op.drop_index("ix_transaction_account_month", table_name="transaction")
    op.drop_table("transaction")
    op.drop_index("ix_recurring_account_active", table_name="recurringtemplate")
    op.drop_table("recurringtemplate")
    op.drop_table("category")
    op.drop_index("ix_account_user_deleted", table_name="account")
    op.drop_table("account")
    op.drop_table("authsession")
    op.drop_table("user")
    for enum in (
        SUBSCRIPTION_STATUS,
        PAYMENT_STATUS,
        SPLIT_TYPE,
        REQUEST_STATUS,
        TXN_TYPE,
        ACCOUNT_TYPE,
        CURRENCY,
    ):
        enum.drop(op.get_bind(), checkfirst=True)
