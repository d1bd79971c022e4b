"""Create economy schema

Revision ID: 0a1b2c3d4e5f
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "0a1b2c3d4e5f"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    tables = set(inspector.get_table_names())

    if "users" not in tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("telegram_id", sa.BigInteger(), nullable=False),
            sa.Column("username", sa.String(length=128), nullable=False, server_default="Unknown"),
            sa.Column("balance", sa.Float(), nullable=False, server_default="0"),
            sa.Column("click_power", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("income_per_second", sa.Float(), nullable=False, server_default="0"),
            sa.Column("bombs", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("shields", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("shield_active_until", sa.DateTime(), nullable=True),
            sa.Column("daily_reward_streak", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("last_claimed_daily_reward_at", sa.DateTime(), nullable=True),
            sa.Column("referred_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("referral_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("referral_earnings", sa.Float(), nullable=False, server_default="0"),
            sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("last_online", sa.DateTime(), nullable=False),
            sa.CheckConstraint("balance >= 0", name="ck_users_balance_non_negative"),
            sa.CheckConstraint("click_power >= 1", name="ck_users_click_power_positive"),
            sa.CheckConstraint("bombs >= 0 AND shields >= 0", name="ck_users_items_non_negative"),
        )
        op.create_index("ix_users_id", "users", ["id"])
        op.create_index("ix_users_telegram_id", "users", ["telegram_id"], unique=True)
        op.create_index("ix_users_balance", "users", ["balance"])
        op.create_index("ix_users_referral_count", "users", ["referral_count"])

    if "user_upgrades" not in tables:
        op.create_table(
            "user_upgrades",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "user_id",
                sa.Integer(),
                sa.ForeignKey("users.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("kind", sa.String(length=16), nullable=False),
            sa.Column("upgrade_id", sa.Integer(), nullable=False),
            sa.Column("level", sa.Integer(), nullable=False, server_default="0"),
            sa.UniqueConstraint("user_id", "kind", "upgrade_id", name="uq_user_upgrade_kind_id"),
        )
        op.create_index("ix_user_upgrades_user_id", "user_upgrades", ["user_id"])

    if "tasks" not in tables:
        op.create_table(
            "tasks",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("title", sa.String(length=256), nullable=False),
            sa.Column("description", sa.Text(), nullable=False, server_default=""),
            sa.Column("channel_link", sa.String(length=512), nullable=False),
            sa.Column("channel_id", sa.String(length=128), nullable=False),
            sa.Column("reward", sa.Float(), nullable=False, server_default="0"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_by", sa.BigInteger(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
        )
        op.create_index("ix_tasks_is_active", "tasks", ["is_active"])

    if "task_completions" not in tables:
        op.create_table(
            "task_completions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "user_id",
                sa.Integer(),
                sa.ForeignKey("users.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column(
                "task_id",
                sa.Integer(),
                sa.ForeignKey("tasks.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("reward", sa.Float(), nullable=False),
            sa.Column("completed_at", sa.DateTime(), nullable=True),
            sa.UniqueConstraint("user_id", "task_id", name="uq_task_completion_user_task"),
        )
        op.create_index("ix_task_completions_user_id", "task_completions", ["user_id"])

    if "promo_codes" not in tables:
        op.create_table(
            "promo_codes",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("code", sa.String(length=64), nullable=False),
            sa.Column("reward_kind", sa.String(length=16), nullable=False, server_default="coins"),
            sa.Column("reward_amount", sa.Float(), nullable=False),
            sa.Column("max_uses", sa.Integer(), nullable=True),
            sa.Column("current_uses", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("expires_at", sa.DateTime(), nullable=True),
            sa.Column("created_by", sa.BigInteger(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
        )
        op.create_index("ix_promo_codes_code", "promo_codes", ["code"], unique=True)

    if "promo_redemptions" not in tables:
        op.create_table(
            "promo_redemptions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "user_id",
                sa.Integer(),
                sa.ForeignKey("users.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column(
                "promo_code_id",
                sa.Integer(),
                sa.ForeignKey("promo_codes.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("code", sa.String(length=64), nullable=False),
            sa.Column("redeemed_at", sa.DateTime(), nullable=True),
            sa.UniqueConstraint("user_id", "promo_code_id", name="uq_promo_redemption_user_code"),
        )
        op.create_index("ix_promo_redemptions_user_id", "promo_redemptions", ["user_id"])

    if "transactions" not in tables:
        op.create_table(
            "transactions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "user_id",
                sa.Integer(),
                sa.ForeignKey("users.id", ondelete="CASCADE"),
                nullable=True,
            ),
            sa.Column("type", sa.String(length=32), nullable=False),
            sa.Column("currency", sa.String(length=16), nullable=False),
            sa.Column("amount", sa.Float(), nullable=False),
            sa.Column("item_type", sa.String(length=32), nullable=True),
            sa.Column("item_id", sa.String(length=64), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
        )
        op.create_index("ix_transactions_user_id", "transactions", ["user_id"])


def downgrade() -> None:
    op.drop_table("transactions")
    op.drop_table("promo_redemptions")
    op.drop_table("promo_codes")
    op.drop_table("task_completions")
    op.drop_table("tasks")
    op.drop_table("user_upgrades")
    op.drop_table("users")
