from alembic import op
import sqlalchemy as sa

revision = "0003_blocks_listing_closed_at"
down_revision = "0002_notifications_delivery"
branch_labels = None
depends_on = None


def upgrade():
    op.add_column("listings", sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True))

    op.create_table(
        "user_blocks",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("blocker_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("blocked_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("blocker_id", "blocked_id", name="uq_user_blocks_pair"),
    )
    op.create_index("ix_user_blocks_blocker_id", "user_blocks", ["blocker_id"])


def downgrade():
    op.drop_index("ix_user_blocks_blocker_id", table_name="user_blocks")
    op.drop_table("user_blocks")
    op.drop_column("listings", "closed_at")
