"""initial

Revision ID: 0001_initial
Revises: 
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("telegram_id", sa.BigInteger, nullable=False),
        sa.Column("username", sa.String(255), nullable=True),
        sa.Column("subscription_type", sa.String(32), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_users_telegram_id", "users", ["telegram_id"], unique=True)

    op.create_table(
        "plans",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("price", sa.Integer, nullable=False),
        sa.Column("duration_days", sa.Integer, nullable=False, server_default="30"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_plans_active", "plans", ["is_active"], unique=False)

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("provider", sa.Enum("CLICK", name="paymentprovider"), nullable=False),
        sa.Column("payment_type", sa.Enum("ONETIME", "SUBSCRIPTION", name="paymenttype"), nullable=False),
        sa.Column("external_trans_id", sa.String(64), nullable=True),
        sa.Column("merchant_trans_id", sa.String(64), nullable=True),
        sa.Column("prepare_id", sa.BigInteger, nullable=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("plan_id", sa.Integer, sa.ForeignKey("plans.id"), nullable=False),
        sa.Column("amount", sa.Integer, nullable=False),
        sa.Column(
            "status",
            sa.Enum("PENDING", "PROCESSING", "COMPLETED", "FAILED", "CANCELED", name="transactionstatus"),
            nullable=False,
        ),
        sa.Column("sign_time", sa.String(32), nullable=True),
        sa.Column("error_code", sa.Integer, nullable=True),
        sa.Column("error_note", sa.String(255), nullable=True),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("provider", "external_trans_id", name="uq_transactions_provider_external"),
    )
    op.create_index("ix_transactions_prepare_id", "transactions", ["prepare_id"], unique=False)
    op.create_index("ix_transactions_prepare_user_plan", "transactions", ["prepare_id", "user_id", "plan_id"], unique=False)
    op.create_index("ix_transactions_status_activated", "transactions", ["status", "activated_at"], unique=False)

    op.create_table(
        "user_subscriptions",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("plan_id", sa.Integer, sa.ForeignKey("plans.id"), nullable=False),
        sa.Column("transaction_id", sa.Integer, sa.ForeignKey("transactions.id"), nullable=True),
        sa.Column("subscription_type", sa.String(32), nullable=False),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("auto_renew", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("paid_amount", sa.Integer, nullable=True),
        sa.Column("paid_by", sa.String(32), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_user_subscriptions_user_active", "user_subscriptions", ["user_id", "is_active"], unique=False)

    op.create_table(
        "user_cards",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False, unique=True),
        sa.Column("card_token", sa.String(128), nullable=False),
        sa.Column("masked_card_number", sa.String(32), nullable=True),
        sa.Column("masked_phone", sa.String(32), nullable=True),
        sa.Column("is_temporary", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("verified", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_user_cards_card_token", "user_cards", ["card_token"], unique=False)


def downgrade():
    op.drop_index("ix_user_cards_card_token", table_name="user_cards")
    op.drop_table("user_cards")
    op.drop_index("ix_user_subscriptions_user_active", table_name="user_subscriptions")
    op.drop_table("user_subscriptions")
    op.drop_index("ix_transactions_status_activated", table_name="transactions")
    op.drop_index("ix_transactions_prepare_user_plan", table_name="transactions")
    op.drop_index("ix_transactions_prepare_id", table_name="transactions")
    op.drop_table("transactions")
    sa.Enum(name="transactionstatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="paymenttype").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="paymentprovider").drop(op.get_bind(), checkfirst=True)
    op.drop_index("ix_plans_active", table_name="plans")
    op.drop_table("plans")
    op.drop_index("ix_users_telegram_id", table_name="users")
    op.drop_table("users")
