"""Initial GuestPass schema."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "admins",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(length=128), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )

    op.create_table(
        "events",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("slug", sa.String(length=32), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("date", sa.DateTime(), nullable=True),
        sa.Column("time", sa.String(length=64), nullable=True),
        sa.Column("venue", sa.String(length=255), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("dress_code", sa.String(length=255), nullable=True),
        sa.Column("map_embed_url", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("slug"),
    )

    op.create_table(
        "guests",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("token", sa.String(length=64), nullable=False),
        sa.Column("event_access", sa.JSON(), nullable=False),
        sa.Column("allowed_devices", sa.JSON(), nullable=False),
        sa.Column("max_devices_allowed", sa.Integer(), nullable=False),
        sa.Column("number_of_attendees", sa.Integer(), nullable=False),
        sa.Column("token_used_first_time", sa.DateTime(), nullable=True),
        sa.Column("token_expires_after_first_use", sa.Boolean(), nullable=False),
        sa.Column("rsvp_submitted", sa.Boolean(), nullable=False),
        sa.Column("rsvp_status", sa.JSON(), nullable=True),
        sa.Column("number_of_attendees_per_event", sa.JSON(), nullable=True),
        sa.Column("rsvp_submitted_at", sa.DateTime(), nullable=True),
        sa.Column("menu_preference", sa.String(length=16), nullable=True),
        sa.Column("dietary_restrictions", sa.Text(), nullable=True),
        sa.Column("additional_info", sa.Text(), nullable=True),
        sa.Column("preferences_submitted", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_guests_token", "guests", ["token"], unique=True)


def downgrade() -> None:
    op.drop_index("ix_guests_token", table_name="guests")
    op.drop_table("guests")
    op.drop_table("events")
    op.drop_table("admins")
