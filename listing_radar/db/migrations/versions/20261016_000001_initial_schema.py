"""Initial schema: listings, listing_events, oauth_tokens.

Revision ID: 0001
Revises:
Create Date: 2026-10-16
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "listings",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("url_hash", sa.String(64), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("source", sa.String(20), nullable=False, server_default="other"),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("price", sa.Float(), nullable=True),
        sa.Column("thumbnail_url", sa.Text(), nullable=True),
        sa.Column("latest_seen_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_listings_url_hash", "listings", ["url_hash"], unique=True)
    op.create_index("ix_listings_source", "listings", ["source"])
    op.create_index("ix_listings_latest_seen_at", "listings", ["latest_seen_at"])

    op.create_table(
        "listing_events",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("url_hash", sa.String(64), sa.ForeignKey("listings.url_hash"), nullable=False),
        sa.Column("email_message_id", sa.String(64), nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sender", sa.Text(), nullable=True),
        sa.Column("subject", sa.Text(), nullable=True),
        sa.Column("snippet", sa.Text(), nullable=True),
        sa.Column("source", sa.String(20), nullable=False, server_default="other"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("email_message_id", "url_hash", name="uq_listing_events_message_url"),
    )
    op.create_index("ix_listing_events_url_hash", "listing_events", ["url_hash"])
    op.create_index("ix_listing_events_email_message_id", "listing_events", ["email_message_id"])
    op.create_index("ix_listing_events_received_at", "listing_events", ["received_at"])

    op.create_table(
        "oauth_tokens",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False, unique=True),
        sa.Column("refresh_token", sa.Text(), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=True),
        sa.Column("expiry_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("oauth_tokens")

    op.drop_index("ix_listing_events_received_at", table_name="listing_events")
    op.drop_index("ix_listing_events_email_message_id", table_name="listing_events")
    op.drop_index("ix_listing_events_url_hash", table_name="listing_events")
    op.drop_table("listing_events")

    op.drop_index("ix_listings_latest_seen_at", table_name="listings")
    op.drop_index("ix_listings_source", table_name="listings")
    op.drop_index("ix_listings_url_hash", table_name="listings")
    op.drop_table("listings")
