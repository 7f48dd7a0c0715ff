"""Initial PostgreSQL scoring schema

Revision ID: 001
Revises:
Create Date: 2025-03-01 09:00:00.000000

"""

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create the tables owned by the scoring engine.

    Tickets, schedules and user settings belong to the helpdesk application
    and are not managed here.
    """

    # 1. points_ledger (append-only)
    op.create_table(
        "points_ledger",
        sa.Column("id", sa.BigInteger(), sa.Identity(), nullable=False),
        sa.Column("user_id", sa.String(length=100), nullable=False),
        sa.Column("username", sa.String(length=200), nullable=False),
        sa.Column("event_type", sa.String(length=50), nullable=False),
        sa.Column("points_awarded", sa.Integer(), nullable=False),
        sa.Column("related_ticket_id", sa.BigInteger(), nullable=True),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_points_ledger_user_event_created",
        "points_ledger",
        ["user_id", "event_type", "created_at"],
    )
    op.create_index(
        "idx_points_ledger_ticket", "points_ledger", ["related_ticket_id"]
    )
    op.create_index("idx_points_ledger_created", "points_ledger", ["created_at"])

    # 2. user_badges (deactivated, never deleted)
    op.create_table(
        "user_badges",
        sa.Column("id", sa.BigInteger(), sa.Identity(), nullable=False),
        sa.Column("user_id", sa.String(length=100), nullable=False),
        sa.Column("username", sa.String(length=200), nullable=False),
        sa.Column("badge_id", sa.String(length=50), nullable=False),
        sa.Column("achieved_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("award_date", sa.Date(), nullable=False),
        sa.Column(
            "reset_period", sa.String(length=20), nullable=False, server_default="daily"
        ),
        sa.Column(
            "is_active", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        sa.Column(
            "metadata",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_user_badges_user_badge_date",
        "user_badges",
        ["user_id", "badge_id", "award_date"],
        unique=True,
    )
    op.create_index(
        "idx_user_badges_active", "user_badges", ["is_active", "badge_id"]
    )

    # 3. milestone_notifications (broadcast)
    op.create_table(
        "milestone_notifications",
        sa.Column("id", sa.BigInteger(), sa.Identity(), nullable=False),
        sa.Column("achieved_by_user_id", sa.String(length=100), nullable=False),
        sa.Column("achieved_by_username", sa.String(length=200), nullable=False),
        sa.Column("milestone_count", sa.Integer(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.PrimaryKeyConstraint("id"),
    )

    # 4. badge_notifications (per user)
    op.create_table(
        "badge_notifications",
        sa.Column("id", sa.BigInteger(), sa.Identity(), nullable=False),
        sa.Column("user_id", sa.String(length=100), nullable=False),
        sa.Column("username", sa.String(length=200), nullable=False),
        sa.Column("badge_id", sa.String(length=50), nullable=False),
        sa.Column("badge_name", sa.String(length=100), nullable=False),
        sa.Column("badge_emoji", sa.String(length=50), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_badge_notifications_user", "badge_notifications", ["user_id"]
    )

    # 5. badge_cycle_runs (one row per scored business date)
    op.create_table(
        "badge_cycle_runs",
        sa.Column("target_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(length=30), nullable=False),
        sa.Column("winner_user_id", sa.String(length=100), nullable=True),
        sa.Column("winner_points", sa.Integer(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("target_date"),
    )


def downgrade() -> None:
    """Drop the scoring engine tables."""
    op.drop_table("badge_cycle_runs")
    op.drop_index("idx_badge_notifications_user", table_name="badge_notifications")
    op.drop_table("badge_notifications")
    op.drop_table("milestone_notifications")
    op.drop_index("idx_user_badges_active", table_name="user_badges")
    op.drop_index("uq_user_badges_user_badge_date", table_name="user_badges")
    op.drop_table("user_badges")
    op.drop_index("idx_points_ledger_created", table_name="points_ledger")
    op.drop_index("idx_points_ledger_ticket", table_name="points_ledger")
    op.drop_index("idx_points_ledger_user_event_created", table_name="points_ledger")
    op.drop_table("points_ledger")
