from __future__ import annotations
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = "20260115_0004"
down_revision = "20260112_0003"
branch_labels = None
depends_on = None

def upgrade() -> None:
    op.create_table(
        "leaderboard_snapshots",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("challenge_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False),
        sa.Column("period", sa.String(16), nullable=False),
        sa.Column("snapshot_date", sa.Date(), nullable=False),
        sa.Column("submission_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("rank", sa.Integer(), nullable=False),
        sa.Column("score", sa.Float(), nullable=False),
        sa.Column("vote_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("super_vote_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("challenge_id", "period", "snapshot_date", "submission_id", name="uq_leaderboard_snapshots_key_submission"),
        sa.CheckConstraint("period IN ('daily', 'weekly', 'all_time')", name="ck_leaderboard_snapshots_period"),
    )
    op.create_index("ix_leaderboard_snapshots_challenge_id", "leaderboard_snapshots", ["challenge_id"])
    op.create_index("ix_leaderboard_snapshots_submission_id", "leaderboard_snapshots", ["submission_id"])
    op.create_index("ix_leaderboard_snapshots_page", "leaderboard_snapshots", ["challenge_id", "period", "snapshot_date", "rank"])
    op.create_index("ix_leaderboard_snapshots_user_period", "leaderboard_snapshots", ["user_id", "period"])

    op.create_table(
        "leaderboard_snapshot_runs",
        sa.Column("challenge_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False),
        sa.Column("period", sa.String(16), nullable=False),
        sa.Column("snapshot_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="running"),
        sa.Column("run_token", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("started_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("finished_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("row_count", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("challenge_id", "period", "snapshot_date", name="leaderboard_snapshot_runs_pkey"),
        sa.CheckConstraint("status IN ('running', 'completed', 'failed')", name="ck_leaderboard_snapshot_runs_status"),
    )

def downgrade() -> None:
    op.drop_table("leaderboard_snapshot_runs")
    op.drop_index("ix_leaderboard_snapshots_user_period", table_name="leaderboard_snapshots")
    op.drop_index("ix_leaderboard_snapshots_page", table_name="leaderboard_snapshots")
    op.drop_index("ix_leaderboard_snapshots_submission_id", table_name="leaderboard_snapshots")
    op.drop_index("ix_leaderboard_snapshots_challenge_id", table_name="leaderboard_snapshots")
    op.drop_table("leaderboard_snapshots")
