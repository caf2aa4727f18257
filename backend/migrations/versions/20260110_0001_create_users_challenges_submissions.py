from __future__ import annotations
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = "20260110_0001"
down_revision = None
branch_labels = None
depends_on = None

def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("username", sa.String(32), nullable=False, unique=True),
        sa.Column("subscription_tier", sa.String(16), nullable=False, server_default="free"),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_banned", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("subscription_tier IN ('free', 'pro')", name="ck_users_subscription_tier"),
    )

    op.create_table(
        "blocked_users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("blocker_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("blocked_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("blocker_id", "blocked_id", name="uq_blocked_users_blocker_blocked"),
    )
    op.create_index("ix_blocked_users_blocker_id", "blocked_users", ["blocker_id"])
    op.create_index("ix_blocked_users_blocked_id", "blocked_users", ["blocked_id"])

    op.create_table(
        "challenges",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("title", sa.String(120), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="active"),
        sa.Column("starts_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("ends_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("voting_ends_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint(
            "status IN ('draft', 'scheduled', 'active', 'voting', 'completed', 'cancelled')",
            name="ck_challenges_status",
        ),
    )
    op.create_index("ix_challenges_status", "challenges", ["status"])

    op.create_table(
        "submissions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("challenge_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False),
        sa.Column("moderation_status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("is_hidden", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("deleted_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("upvote_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("downvote_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("vote_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("super_vote_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("wilson_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("boost_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint(
            "moderation_status IN ('pending', 'approved', 'rejected', 'manual_review')",
            name="ck_submissions_moderation_status",
        ),
        sa.CheckConstraint("vote_count = upvote_count + downvote_count", name="ck_submissions_vote_count"),
    )
    op.create_index("ix_submissions_user_id", "submissions", ["user_id"])
    op.create_index("ix_submissions_challenge_id", "submissions", ["challenge_id"])
    op.create_index("ix_submissions_challenge_ranking", "submissions", ["challenge_id", "moderation_status", "wilson_score"])

def downgrade() -> None:
    op.drop_index("ix_submissions_challenge_ranking", table_name="submissions")
    op.drop_index("ix_submissions_challenge_id", table_name="submissions")
    op.drop_index("ix_submissions_user_id", table_name="submissions")
    op.drop_table("submissions")
    op.drop_index("ix_challenges_status", table_name="challenges")
    op.drop_table("challenges")
    op.drop_index("ix_blocked_users_blocked_id", table_name="blocked_users")
    op.drop_index("ix_blocked_users_blocker_id", table_name="blocked_users")
    op.drop_table("blocked_users")
    op.drop_table("users")
