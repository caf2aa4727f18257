from __future__ import annotations
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = "20260110_0002"
down_revision = "20260110_0001"
branch_labels = None
depends_on = None

def upgrade() -> None:
    op.create_table(
        "votes",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("submission_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("challenge_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False),
        sa.Column("value", sa.Integer(), nullable=False),
        sa.Column("is_super", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("source", sa.String(16), nullable=False, server_default="organic"),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("user_id", "submission_id", name="uq_votes_user_submission"),
        sa.CheckConstraint("value IN (1, -1)", name="ck_votes_value"),
        sa.CheckConstraint("is_super = false OR value = 1", name="ck_votes_super_is_upvote"),
        sa.CheckConstraint("source IN ('organic', 'rewarded_ad')", name="ck_votes_source"),
    )
    op.create_index("ix_votes_user_id", "votes", ["user_id"])
    op.create_index("ix_votes_submission_id", "votes", ["submission_id"])
    op.create_index("ix_votes_challenge_id", "votes", ["challenge_id"])
    op.create_index("ix_votes_submission_created", "votes", ["submission_id", "created_at"])

    op.create_table(
        "vote_queue",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("challenge_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False),
        sa.Column("submission_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("is_voted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("user_id", "challenge_id", "submission_id", name="uq_vote_queue_user_challenge_submission"),
        sa.UniqueConstraint("user_id", "challenge_id", "position", name="uq_vote_queue_user_challenge_position"),
        sa.CheckConstraint("position > 0", name="ck_vote_queue_position"),
    )
    op.create_index("ix_vote_queue_challenge_id", "vote_queue", ["challenge_id"])
    op.create_index("ix_vote_queue_submission_id", "vote_queue", ["submission_id"])
    op.create_index("ix_vote_queue_next_item", "vote_queue", ["user_id", "challenge_id", "is_voted", "position"])

    op.create_table(
        "super_vote_balances",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("day", sa.Date(), nullable=False),
        sa.Column("daily_allowance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("bonus_earned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("used", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("user_id", "day", name="uq_super_vote_balances_user_day"),
        sa.CheckConstraint("used <= daily_allowance + bonus_earned", name="ck_super_vote_balances_not_overdrawn"),
    )

def downgrade() -> None:
    op.drop_table("super_vote_balances")
    op.drop_index("ix_vote_queue_next_item", table_name="vote_queue")
    op.drop_index("ix_vote_queue_submission_id", table_name="vote_queue")
    op.drop_index("ix_vote_queue_challenge_id", table_name="vote_queue")
    op.drop_table("vote_queue")
    op.drop_index("ix_votes_submission_created", table_name="votes")
    op.drop_index("ix_votes_challenge_id", table_name="votes")
    op.drop_index("ix_votes_submission_id", table_name="votes")
    op.drop_index("ix_votes_user_id", table_name="votes")
    op.drop_table("votes")
