"""initial schema: users, communities, events, forms, notifications, posts

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _ts(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(), nullable=nullable, server_default=None if nullable else sa.func.now())


def upgrade() -> None:
    # Check if tables already exist (idempotent)
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = set(inspector.get_table_names())

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("email", sa.String(320), nullable=False, unique=True),
            sa.Column("name", sa.String(255), nullable=True),
            sa.Column("password_hash", sa.String(255), nullable=False),
            sa.Column("role", sa.String(32), nullable=False, server_default="user"),
            sa.Column("image", sa.String(1024), nullable=True),
            sa.Column("bio", sa.Text(), nullable=True),
            sa.Column("location", sa.String(255), nullable=True),
            sa.Column("website", sa.String(1024), nullable=True),
            sa.Column("email_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _ts("created_at"),
            _ts("updated_at"),
            _ts("last_login_at", nullable=True),
        )
        op.create_index("ix_users_role", "users", ["role"])

    if "audit_events" not in existing_tables:
        op.create_table(
            "audit_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            _ts("created_at"),
            sa.Column("request_id", sa.String(64), nullable=True),
            sa.Column("client_ip", sa.String(64), nullable=True),
            sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("actor_user_email", sa.String(320), nullable=True),
            sa.Column("action", sa.String(128), nullable=False),
            sa.Column("entity_type", sa.String(128), nullable=True),
            sa.Column("entity_id", sa.String(128), nullable=True),
            sa.Column("reason", sa.String(512), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
        )

    if "communities" not in existing_tables:
        op.create_table(
            "communities",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("handle", sa.String(64), nullable=False, unique=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("avatar", sa.String(1024), nullable=True),
            sa.Column("banner", sa.String(1024), nullable=True),
            sa.Column("website", sa.String(1024), nullable=True),
            sa.Column("location", sa.String(255), nullable=True),
            sa.Column("status", sa.String(32), nullable=False, server_default="active"),
            sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("followers_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("creator_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
        )
        op.create_index("idx_communities_status", "communities", ["status"])
        op.create_index("idx_communities_created_at", "communities", ["created_at"])

    if "community_memberships" not in existing_tables:
        op.create_table(
            "community_memberships",
            sa.Column("community_id", sa.Integer(), sa.ForeignKey("communities.id", ondelete="CASCADE"), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
            sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
            _ts("created_at"),
        )
        op.create_index("ix_community_memberships_user_id", "community_memberships", ["user_id"])

    if "community_follows" not in existing_tables:
        op.create_table(
            "community_follows",
            sa.Column("community_id", sa.Integer(), sa.ForeignKey("communities.id", ondelete="CASCADE"), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
            _ts("created_at"),
        )
        op.create_index("ix_community_follows_user_id", "community_follows", ["user_id"])

    if "events" not in existing_tables:
        op.create_table(
            "events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("community_id", sa.Integer(), sa.ForeignKey("communities.id", ondelete="CASCADE"), nullable=False),
            sa.Column("creator_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("title", sa.String(255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("date", sa.String(10), nullable=True),
            sa.Column("end_date", sa.String(10), nullable=True),
            sa.Column("is_multi_day", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("time", sa.String(16), nullable=True),
            sa.Column("location", sa.String(255), nullable=True),
            sa.Column("image", sa.String(1024), nullable=True),
            sa.Column("event_type", sa.String(16), nullable=False, server_default="offline"),
            sa.Column("max_capacity", sa.Integer(), nullable=True),
            sa.Column("status", sa.String(32), nullable=False, server_default="active"),
            sa.Column("tags", sa.JSON(), nullable=True),
            sa.Column("interested", sa.JSON(), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
        )
        op.create_index("idx_events_community_id", "events", ["community_id"])
        op.create_index("idx_events_date", "events", ["date"])
        op.create_index("idx_events_created_at", "events", ["created_at"])

    if "community_updates" not in existing_tables:
        op.create_table(
            "community_updates",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("community_id", sa.Integer(), sa.ForeignKey("communities.id", ondelete="CASCADE"), nullable=False),
            sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id", ondelete="SET NULL"), nullable=True),
            sa.Column("author_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("title", sa.String(255), nullable=False),
            sa.Column("content", sa.Text(), nullable=False),
            _ts("created_at"),
        )
        op.create_index("ix_community_updates_community_id", "community_updates", ["community_id"])

    if "forms" not in existing_tables:
        op.create_table(
            "forms",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False),
            sa.Column("creator_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("title", sa.String(255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("fields", sa.JSON(), nullable=False),
            sa.Column("is_rsvp_form", sa.Boolean(), nullable=False, server_default=sa.false()),
            _ts("created_at"),
            _ts("updated_at"),
        )
        op.create_index("ix_forms_event_id", "forms", ["event_id"])

    if "form_responses" not in existing_tables:
        op.create_table(
            "form_responses",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("form_id", sa.Integer(), sa.ForeignKey("forms.id", ondelete="CASCADE"), nullable=False),
            sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("answers", sa.JSON(), nullable=False),
            sa.Column("shortlisted", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("checked_in", sa.Boolean(), nullable=False, server_default=sa.false()),
            _ts("checked_in_at", nullable=True),
            sa.Column("referred_by", sa.String(320), nullable=True),
            sa.Column("referral_code", sa.String(128), nullable=True),
            sa.Column("user_name", sa.String(255), nullable=True),
            sa.Column("user_email", sa.String(320), nullable=True),
            sa.Column("event_title", sa.String(255), nullable=True),
            sa.Column("form_title", sa.String(255), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.UniqueConstraint("form_id", "user_id", name="uq_form_responses_form_user"),
        )
        op.create_index("ix_form_responses_event_id", "form_responses", ["event_id"])
        op.create_index("idx_form_responses_referred_by", "form_responses", ["referred_by"])
        op.create_index("idx_form_responses_created_at", "form_responses", ["created_at"])

    if "event_registrations" not in existing_tables:
        op.create_table(
            "event_registrations",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("user_name", sa.String(255), nullable=True),
            sa.Column("user_email", sa.String(320), nullable=True),
            sa.Column("registration_type", sa.String(16), nullable=False, server_default="direct"),
            sa.Column(
                "form_response_id",
                sa.Integer(),
                sa.ForeignKey("form_responses.id", ondelete="SET NULL"),
                nullable=True,
            ),
            _ts("created_at"),
            sa.UniqueConstraint("event_id", "user_id", name="uq_event_registrations_event_user"),
        )
        op.create_index("idx_event_registrations_user_id", "event_registrations", ["user_id"])

    if "notifications" not in existing_tables:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("user_email", sa.String(320), nullable=True),
            sa.Column("title", sa.String(255), nullable=False),
            sa.Column("message", sa.Text(), nullable=False),
            sa.Column("type", sa.String(16), nullable=False, server_default="info"),
            sa.Column("action_url", sa.String(1024), nullable=True),
            sa.Column("action_text", sa.String(128), nullable=True),
            sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
            _ts("created_at"),
            sa.Column("sent_by", sa.String(320), nullable=False, server_default="system"),
        )
        op.create_index("idx_notifications_user_read", "notifications", ["user_id", "read"])

    if "study_posts" not in existing_tables:
        op.create_table(
            "study_posts",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("title", sa.String(255), nullable=False),
            sa.Column("content", sa.Text(), nullable=False),
            sa.Column("type", sa.String(64), nullable=False),
            sa.Column("subject", sa.String(255), nullable=True),
            sa.Column("semester", sa.String(32), nullable=True),
            sa.Column("tags", sa.String(512), nullable=True),
            sa.Column("difficulty", sa.String(32), nullable=True),
            sa.Column("estimated_time", sa.String(64), nullable=True),
            sa.Column("prerequisites", sa.Text(), nullable=True),
            sa.Column("learning_outcomes", sa.Text(), nullable=True),
            sa.Column("attachments", sa.JSON(), nullable=True),
            sa.Column("author_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
        )
        op.create_index("ix_study_posts_created_at", "study_posts", ["created_at"])

    if "tnp_posts" not in existing_tables:
        op.create_table(
            "tnp_posts",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("title", sa.String(255), nullable=False),
            sa.Column("content", sa.Text(), nullable=False),
            sa.Column("type", sa.String(64), nullable=False),
            sa.Column("company", sa.String(255), nullable=True),
            _ts("deadline", nullable=True),
            sa.Column("requirements", sa.Text(), nullable=True),
            sa.Column("application_link", sa.String(1024), nullable=True),
            sa.Column("salary", sa.String(128), nullable=True),
            sa.Column("location", sa.String(255), nullable=True),
            sa.Column("attachments", sa.JSON(), nullable=True),
            sa.Column("tags", sa.JSON(), nullable=True),
            sa.Column("author_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
        )
        op.create_index("ix_tnp_posts_created_at", "tnp_posts", ["created_at"])


def downgrade() -> None:
    for table in (
        "tnp_posts",
        "study_posts",
        "notifications",
        "event_registrations",
        "form_responses",
        "forms",
        "community_updates",
        "events",
        "community_follows",
        "community_memberships",
        "communities",
        "audit_events",
        "users",
    ):
        op.drop_table(table)
