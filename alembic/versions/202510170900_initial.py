"""initial schema

Revision ID: 202510170900
Revises:
Create Date: 2025-10-17 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202510170900"
down_revision = None
branch_labels = None
depends_on = None

category_type = sa.Enum("income", "expense", "debt", "loan", name="categorytype")
chat_status = sa.Enum("input", "ask", name="chatstatus")
user_status = sa.Enum("free", "active", "premium", name="userstatus")
payment_status = sa.Enum("pending", "success", "failed", name="paymentstatus")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=24), primary_key=True),
        sa.Column("name", sa.String(length=50), nullable=False),
        sa.Column("username", sa.String(length=20), nullable=False, unique=True),
        sa.Column("email", sa.String(length=254), nullable=False, unique=True),
        sa.Column("password", sa.String(length=100), nullable=False),
        sa.Column("status", user_status, nullable=False),
        sa.Column("trial_due_date", sa.DateTime()),
        sa.Column("push_token", sa.String(length=255)),
        *_timestamps(),
    )

    op.create_table(
        "rooms",
        sa.Column("id", sa.String(length=24), primary_key=True),
        sa.Column("user_id", sa.String(length=24), sa.ForeignKey("users.id"), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", name="uq_room_user"),
    )

    op.create_table(
        "wallets",
        sa.Column("id", sa.String(length=24), primary_key=True),
        sa.Column("user_id", sa.String(length=24), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("name", sa.String(length=50), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("type", sa.String(length=30), nullable=False),
        sa.Column("balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("target", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("threshold", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("deleted_at", sa.DateTime()),
        *_timestamps(),
    )
    op.create_index("ix_wallets_user", "wallets", ["user_id"])

    op.create_table(
        "categories",
        sa.Column("id", sa.String(length=24), primary_key=True),
        sa.Column("user_id", sa.String(length=24), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", category_type, nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_categories_user_type", "categories", ["user_id", "type"])
    op.create_index("ix_categories_user_name", "categories", ["user_id", "name"])

    op.create_table(
        "messages",
        sa.Column("id", sa.String(length=24), primary_key=True),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("chat_status", chat_status, nullable=False),
        sa.Column("user_id", sa.String(length=24), sa.ForeignKey("users.id")),
        sa.Column("room_id", sa.String(length=24), sa.ForeignKey("rooms.id"), nullable=False),
        sa.Column("wallet_id", sa.String(length=24), sa.ForeignKey("wallets.id")),
        *_timestamps(),
    )
    op.create_index("ix_messages_room_created", "messages", ["room_id", "created_at"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.String(length=24), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("date", sa.DateTime(), nullable=False),
        sa.Column(
            "category_id", sa.String(length=24), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column(
            "wallet_id", sa.String(length=24), sa.ForeignKey("wallets.id"), nullable=False
        ),
        sa.Column("parent_id", sa.String(length=24), sa.ForeignKey("transactions.id")),
        sa.Column("remaining_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("message_id", sa.String(length=24), sa.ForeignKey("messages.id")),
        *_timestamps(),
        sa.CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
        sa.CheckConstraint(
            "remaining_amount >= 0", name="ck_transactions_remaining_non_negative"
        ),
    )
    op.create_index("ix_transactions_wallet_date", "transactions", ["wallet_id", "date"])
    op.create_index(
        "ix_transactions_category_date", "transactions", ["category_id", "date"]
    )
    op.create_index("ix_transactions_parent", "transactions", ["parent_id"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.String(length=24), primary_key=True),
        sa.Column("user_id", sa.String(length=24), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index(
        "ix_notifications_user_created", "notifications", ["user_id", "created_at"]
    )

    op.create_table(
        "payments",
        sa.Column("id", sa.String(length=24), primary_key=True),
        sa.Column("user_id", sa.String(length=24), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("status", payment_status, nullable=False),
        sa.Column("paid_at", sa.DateTime()),
        sa.Column("payment_url", sa.Text()),
        *_timestamps(),
    )


def downgrade():
    op.drop_table("payments")
    op.drop_index("ix_notifications_user_created", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_transactions_parent", table_name="transactions")
    op.drop_index("ix_transactions_category_date", table_name="transactions")
    op.drop_index("ix_transactions_wallet_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_messages_room_created", table_name="messages")
    op.drop_table("messages")
    op.drop_index("ix_categories_user_name", table_name="categories")
    op.drop_index("ix_categories_user_type", table_name="categories")
    op.drop_table("categories")
    op.drop_index("ix_wallets_user", table_name="wallets")
    op.drop_table("wallets")
    op.drop_table("rooms")
    op.drop_table("users")

    bind = op.get_bind()
    for enum in (payment_status, user_status, chat_status, category_type):
        enum.drop(bind, checkfirst=True)
