"""initial_schema

Revision ID: 0001
Revises:
Create Date: 2026-10-17

Initial database schema for the Korner billing service.
"""

from collections.abc import Sequence

import sqlalchemy as sa
import sqlmodel
from sqlalchemy.dialects import mysql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

PAYOUT_STATUSES = ("CREATED", "IN_REVIEW", "PROCESSING", "PAID", "REJECTED", "CANCELED")


def upgrade() -> None:
    """Create initial database schema."""
    # Currencies table
    op.create_table(
        "currencies",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("code", sqlmodel.sql.sqltypes.AutoString(length=8), nullable=False),
        sa.Column("name", sqlmodel.sql.sqltypes.AutoString(length=64), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
    )

    # Wallet balances table
    op.create_table(
        "wallet_balances",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("currency_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.DECIMAL(precision=20, scale=2), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["currency_id"], ["currencies.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "currency_id", name="uq_wallet_user_currency"),
    )
    op.create_index(op.f("ix_wallet_balances_user_id"), "wallet_balances", ["user_id"], unique=False)
    op.create_index(op.f("ix_wallet_balances_currency_id"), "wallet_balances", ["currency_id"], unique=False)

    # Transactions table
    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("currency_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.DECIMAL(precision=20, scale=2), nullable=False),
        sa.Column(
            "type",
            sa.Enum("DEPOSIT", "WITHDRAW", "TRANSFER", "SUBSCRIPTION", name="transactiontype"),
            nullable=False,
        ),
        sa.Column("source", sa.Enum("WALLET", "CARD", name="transactionsource"), nullable=False),
        sa.Column(
            "status",
            sa.Enum("PENDING", "COMPLETED", "FAILED", "CANCELED", name="transactionstatus"),
            nullable=False,
        ),
        sa.Column("order_id", sqlmodel.sql.sqltypes.AutoString(length=64), nullable=True),
        sa.Column("payment_id", sqlmodel.sql.sqltypes.AutoString(length=64), nullable=True),
        sa.Column("transaction_data", mysql.JSON(), nullable=True),
        sa.Column("user_subscription_id", sa.Integer(), nullable=True),
        sa.Column("subscription_plan_id", sa.Integer(), nullable=True),
        sa.Column("subscription_price_id", sa.Integer(), nullable=True),
        sa.Column("item_id", sqlmodel.sql.sqltypes.AutoString(length=64), nullable=True),
        sa.Column("purchase_key", sqlmodel.sql.sqltypes.AutoString(length=96), nullable=True),
        sa.Column("description", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_transactions_user_id"), "transactions", ["user_id"], unique=False)
    op.create_index(op.f("ix_transactions_currency_id"), "transactions", ["currency_id"], unique=False)
    op.create_index(op.f("ix_transactions_type"), "transactions", ["type"], unique=False)
    op.create_index(op.f("ix_transactions_status"), "transactions", ["status"], unique=False)
    op.create_index(op.f("ix_transactions_order_id"), "transactions", ["order_id"], unique=True)
    op.create_index(op.f("ix_transactions_payment_id"), "transactions", ["payment_id"], unique=False)
    op.create_index(
        op.f("ix_transactions_user_subscription_id"), "transactions", ["user_subscription_id"], unique=False
    )
    op.create_index(op.f("ix_transactions_item_id"), "transactions", ["item_id"], unique=False)
    op.create_index(op.f("ix_transactions_purchase_key"), "transactions", ["purchase_key"], unique=True)
    op.create_index(op.f("ix_transactions_created_at"), "transactions", ["created_at"], unique=False)

    # Platform fees table
    op.create_table(
        "platform_fees",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("currency_id", sa.Integer(), nullable=False),
        sa.Column("fee_percentage", sa.DECIMAL(precision=5, scale=2), nullable=False),
        sa.Column("min_fee_amount", sa.DECIMAL(precision=20, scale=2), nullable=True),
        sa.Column("max_fee_amount", sa.DECIMAL(precision=20, scale=2), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["currency_id"], ["currencies.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_platform_fees_currency_id"), "platform_fees", ["currency_id"], unique=False)
    op.create_index(op.f("ix_platform_fees_is_active"), "platform_fees", ["is_active"], unique=False)
    op.create_index(op.f("ix_platform_fees_created_at"), "platform_fees", ["created_at"], unique=False)

    # Subscription plans and prices
    op.create_table(
        "subscription_plans",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sqlmodel.sql.sqltypes.AutoString(length=100), nullable=False),
        sa.Column("period", sa.Enum("DAILY", "MONTHLY", "YEARLY", name="subscriptionperiod"), nullable=False),
        sa.Column("description", mysql.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "subscription_plans_prices",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("subscription_plan_id", sa.Integer(), nullable=False),
        sa.Column("currency_id", sa.Integer(), nullable=False),
        sa.Column("price", sa.DECIMAL(precision=20, scale=2), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["subscription_plan_id"], ["subscription_plans.id"]),
        sa.ForeignKeyConstraint(["currency_id"], ["currencies.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_subscription_plans_prices_subscription_plan_id"),
        "subscription_plans_prices",
        ["subscription_plan_id"],
        unique=False,
    )

    # User subscriptions table
    op.create_table(
        "user_subscriptions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("subscription_plan_id", sa.Integer(), nullable=False),
        sa.Column("subscription_price_id", sa.Integer(), nullable=True),
        sa.Column("is_auto_renewal", sa.Boolean(), nullable=False),
        sa.Column("payment_method", sa.Enum("WALLET", "CARD", name="paymentmethod"), nullable=True),
        sa.Column("masked_pan", sqlmodel.sql.sqltypes.AutoString(length=32), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("expired_at", sa.DateTime(), nullable=False),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["subscription_plan_id"], ["subscription_plans.id"]),
        sa.ForeignKeyConstraint(["subscription_price_id"], ["subscription_plans_prices.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_user_subscriptions_user_id"), "user_subscriptions", ["user_id"], unique=False)
    op.create_index(op.f("ix_user_subscriptions_created_at"), "user_subscriptions", ["created_at"], unique=False)
    op.create_index(op.f("ix_user_subscriptions_expired_at"), "user_subscriptions", ["expired_at"], unique=False)
    op.create_index(
        "ix_user_subscriptions_renewal", "user_subscriptions", ["is_auto_renewal", "expired_at"], unique=False
    )

    # Payment tokens table
    op.create_table(
        "payment_tokens",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("token", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=False),
        sa.Column("pan_masked", sqlmodel.sql.sqltypes.AutoString(length=32), nullable=True),
        sa.Column("expired_at", sa.DateTime(), nullable=True),
        sa.Column("amount", sa.DECIMAL(precision=20, scale=2), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("token"),
    )
    op.create_index(op.f("ix_payment_tokens_user_id"), "payment_tokens", ["user_id"], unique=False)
    op.create_index(op.f("ix_payment_tokens_pan_masked"), "payment_tokens", ["pan_masked"], unique=False)
    op.create_index(op.f("ix_payment_tokens_created_at"), "payment_tokens", ["created_at"], unique=False)

    # Payout requests and their status history
    op.create_table(
        "payout_requests",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.Enum(*PAYOUT_STATUSES, name="payoutrequeststatus"), nullable=False),
        sa.Column("amount", sa.DECIMAL(precision=20, scale=2), nullable=True),
        sa.Column("currency_id", sa.Integer(), nullable=True),
        sa.Column(
            "contact_method",
            sa.Enum("EMAIL", "PHONE_CALL", "WHATSAPP", "TELEGRAM", name="contactmethod"),
            nullable=False,
        ),
        sa.Column("requester_name", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=True),
        sa.Column("requester_email", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=True),
        sa.Column("requester_phone", sqlmodel.sql.sqltypes.AutoString(length=64), nullable=True),
        sa.Column("context_source", sqlmodel.sql.sqltypes.AutoString(length=64), nullable=True),
        sa.Column("context_screen", sqlmodel.sql.sqltypes.AutoString(length=128), nullable=True),
        sa.Column("context_url", sqlmodel.sql.sqltypes.AutoString(length=1024), nullable=True),
        sa.Column("context_metadata", mysql.JSON(), nullable=True),
        sa.Column("telegram_alert_status", sqlmodel.sql.sqltypes.AutoString(length=16), nullable=False),
        sa.Column("telegram_alert_attempts", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_payout_requests_user_id"), "payout_requests", ["user_id"], unique=False)
    op.create_index(op.f("ix_payout_requests_status"), "payout_requests", ["status"], unique=False)
    op.create_index(op.f("ix_payout_requests_requester_email"), "payout_requests", ["requester_email"], unique=False)
    op.create_index(op.f("ix_payout_requests_created_at"), "payout_requests", ["created_at"], unique=False)

    op.create_table(
        "payout_request_status_history",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("payout_request_id", sa.Integer(), nullable=False),
        sa.Column("from_status", sa.Enum(*PAYOUT_STATUSES, name="payoutrequeststatus"), nullable=True),
        sa.Column("to_status", sa.Enum(*PAYOUT_STATUSES, name="payoutrequeststatus"), nullable=False),
        sa.Column("changed_by_admin_id", sa.Integer(), nullable=True),
        sa.Column("comment", sqlmodel.sql.sqltypes.AutoString(length=1000), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["payout_request_id"], ["payout_requests.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_payout_request_status_history_payout_request_id"),
        "payout_request_status_history",
        ["payout_request_id"],
        unique=False,
    )


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("payout_request_status_history")
    op.drop_table("payout_requests")
    op.drop_table("payment_tokens")
    op.drop_table("user_subscriptions")
    op.drop_table("subscription_plans_prices")
    op.drop_table("subscription_plans")
    op.drop_table("platform_fees")
    op.drop_table("transactions")
    op.drop_table("wallet_balances")
    op.drop_table("currencies")
