from alembic import op
import sqlalchemy as sa

revision = "0001_marketplace_core"
down_revision = None
branch_labels = None
depends_on = None


def _audit_columns():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("updated_by", sa.String(), nullable=True),
    ]


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("username", sa.String(length=80), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False, unique=True),
        sa.Column("avatar_url", sa.Text(), nullable=True),
        sa.Column("role", sa.String(length=30), nullable=False, server_default="user"),
        sa.Column("verification_level", sa.String(length=30), nullable=False, server_default="unverified"),
        sa.Column("rating", sa.Float(), nullable=False, server_default="0"),
        sa.Column("review_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("cancellation_count", sa.Integer(), nullable=False, server_default="0"),
        *_audit_columns(),
    )

    op.create_table(
        "session_tokens",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("token_prefix", sa.String(length=16), nullable=False),
        sa.Column("token_hash", sa.Text(), nullable=False, unique=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_session_tokens_user_id", "session_tokens", ["user_id"])
    op.create_index("ix_session_tokens_token_prefix", "session_tokens", ["token_prefix"])

    op.create_table(
        "listings",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("host_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("event_name", sa.String(length=200), nullable=False),
        sa.Column("event_date", sa.String(length=40), nullable=True),
        sa.Column("venue", sa.String(length=200), nullable=True),
        sa.Column("ticket_type", sa.String(length=40), nullable=False, server_default="find_companion"),
        sa.Column("seat_grade", sa.String(length=80), nullable=True),
        sa.Column("asking_price_jpy", sa.Integer(), nullable=True),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("total_slots", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("available_slots", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("inquiry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="open"),
        *_audit_columns(),
        sa.CheckConstraint("available_slots >= 0", name="ck_listing_available_slots_non_negative"),
        sa.CheckConstraint("status IN ('open', 'matched', 'closed')", name="ck_listing_status"),
    )
    op.create_index("ix_listings_host_id", "listings", ["host_id"])

    op.create_table(
        "applications",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("listing_id", sa.String(), sa.ForeignKey("listings.id"), nullable=False),
        sa.Column("guest_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("selected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_notified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_audit_columns(),
    )
    op.create_index("ix_applications_guest_id", "applications", ["guest_id"])
    op.create_index("ix_applications_listing_status", "applications", ["listing_id", "status"])
    op.create_index(
        "uq_applications_one_accepted_per_listing",
        "applications",
        ["listing_id"],
        unique=True,
        postgresql_where=sa.text("status = 'accepted'"),
    )

    op.create_table(
        "conversations",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("listing_id", sa.String(), sa.ForeignKey("listings.id"), nullable=False),
        sa.Column("host_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("guest_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("conversation_type", sa.String(length=20), nullable=False, server_default="inquiry"),
        sa.Column("inquiry_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("applied_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("matched_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("host_confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("guest_confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_status", sa.String(length=20), nullable=True),
        sa.Column("cancellation_requested_by", sa.String(), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("cancellation_requested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_responded_at", sa.DateTime(timezone=True), nullable=True),
        *_audit_columns(),
        sa.UniqueConstraint("listing_id", "guest_id", name="uq_conversation_listing_guest"),
    )
    op.create_index("ix_conversations_listing_id", "conversations", ["listing_id"])
    op.create_index("ix_conversations_host_id", "conversations", ["host_id"])
    op.create_index("ix_conversations_guest_id", "conversations", ["guest_id"])

    op.create_table(
        "messages",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("conversation_id", sa.String(), sa.ForeignKey("conversations.id"), nullable=False),
        sa.Column("sender_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_messages_conversation_id", "messages", ["conversation_id"])

    op.create_table(
        "transaction_confirmations",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("conversation_id", sa.String(), sa.ForeignKey("conversations.id"), nullable=False, unique=True),
        sa.Column("listing_id", sa.String(), sa.ForeignKey("listings.id"), nullable=False),
        sa.Column("host_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("guest_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("host_confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("guest_confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deadline_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("auto_completed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_audit_columns(),
    )
    op.create_index("ix_transaction_confirmations_listing_id", "transaction_confirmations", ["listing_id"])

    op.create_table(
        "reviews",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("listing_id", sa.String(), sa.ForeignKey("listings.id"), nullable=False),
        sa.Column("reviewer_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("reviewee_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("rating", sa.Integer(), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("is_auto", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("listing_id", "reviewer_id", "reviewee_id", name="uq_review_listing_reviewer_reviewee"),
        sa.CheckConstraint("rating >= 1 AND rating <= 5", name="ck_review_rating_range"),
    )
    op.create_index("ix_reviews_reviewee_id", "reviews", ["reviewee_id"])


def downgrade():
    op.drop_index("ix_reviews_reviewee_id", table_name="reviews")
    op.drop_table("reviews")
    op.drop_index("ix_transaction_confirmations_listing_id", table_name="transaction_confirmations")
    op.drop_table("transaction_confirmations")
    op.drop_index("ix_messages_conversation_id", table_name="messages")
    op.drop_table("messages")
    op.drop_index("ix_conversations_guest_id", table_name="conversations")
    op.drop_index("ix_conversations_host_id", table_name="conversations")
    op.drop_index("ix_conversations_listing_id", table_name="conversations")
    op.drop_table("conversations")
    op.drop_index("uq_applications_one_accepted_per_listing", table_name="applications")
    op.drop_index("ix_applications_listing_status", table_name="applications")
    op.drop_index("ix_applications_guest_id", table_name="applications")
    op.drop_table("applications")
    op.drop_index("ix_listings_host_id", table_name="listings")
    op.drop_table("listings")
    op.drop_index("ix_session_tokens_token_prefix", table_name="session_tokens")
    op.drop_index("ix_session_tokens_user_id", table_name="session_tokens")
    op.drop_table("session_tokens")
    op.drop_table("users")
