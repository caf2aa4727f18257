from __future__ import annotations
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = "20260112_0003"
down_revision = "20260110_0002"
branch_labels = None
depends_on = None

def upgrade() -> None:
    op.create_table(
        "coin_entries",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("external_id", sa.String(96), nullable=True),
        sa.Column("note", sa.String(255), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("external_id", name="uq_coin_entries_external_id"),
        sa.CheckConstraint("type IN ('PURCHASE', 'REWARD', 'BOOST_SPENT', 'ADJUST')", name="ck_coin_entries_type"),
    )
    op.create_index("ix_coin_entries_user_id", "coin_entries", ["user_id"])

    op.create_table(
        "submission_boosts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("submission_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("tier", sa.String(20), nullable=False),
        sa.Column("coin_amount", sa.Integer(), nullable=False),
        sa.Column("boost_value", sa.Float(), nullable=False),
        sa.Column("started_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("expires_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.CheckConstraint("boost_value > 0", name="ck_submission_boosts_value"),
        sa.CheckConstraint("expires_at > started_at", name="ck_submission_boosts_window"),
    )
    op.create_index("ix_submission_boosts_submission_id", "submission_boosts", ["submission_id"])
    op.create_index("ix_submission_boosts_user_id", "submission_boosts", ["user_id"])
    op.create_index("ix_submission_boosts_expires_at", "submission_boosts", ["expires_at"])
    op.create_index("ix_submission_boosts_sub_expires", "submission_boosts", ["submission_id", "expires_at"])

def downgrade() -> None:
    op.drop_index("ix_submission_boosts_sub_expires", table_name="submission_boosts")
    op.drop_index("ix_submission_boosts_expires_at", table_name="submission_boosts")
    op.drop_index("ix_submission_boosts_user_id", table_name="submission_boosts")
    op.drop_index("ix_submission_boosts_submission_id", table_name="submission_boosts")
    op.drop_table("submission_boosts")
    op.drop_index("ix_coin_entries_user_id", table_name="coin_entries")
    op.drop_table("coin_entries")
