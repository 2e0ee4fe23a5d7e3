"""Initial schema for Vinho.

Revision ID: 0001
Revises:
Create Date: 2025-03-01

Creates the catalog (regions, producers, wines, vintages, grape varieties),
the label-scan queue, scans, tastings and user records.
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
    # Users
    op.create_table(
        "profiles",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(255), nullable=True, unique=True),
        sa.Column("display_name", sa.String(255), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_table(
        "user_preferences",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("key", sa.String(100), nullable=False),
        sa.Column("value", sa.Text(), nullable=False, server_default=""),
    )
    op.create_index("ix_user_preferences_user_id", "user_preferences", ["user_id"])

    # Catalog
    op.create_table(
        "regions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("country", sa.String(100), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "uq_regions_name_country_lower",
        "regions",
        [sa.text("lower(name)"), sa.text("lower(country)")],
        unique=True,
    )

    op.create_table(
        "producers",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("region_id", sa.String(36), sa.ForeignKey("regions.id"), nullable=True),
        sa.Column("website", sa.String(500), nullable=True),
        sa.Column("address", sa.String(500), nullable=True),
        sa.Column("city", sa.String(255), nullable=True),
        sa.Column("postal_code", sa.String(20), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_producers_region_id", "producers", ["region_id"])
    op.create_index("uq_producers_name_lower", "producers", [sa.text("lower(name)")], unique=True)

    op.create_table(
        "wines",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("producer_id", sa.String(36), sa.ForeignKey("producers.id"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("is_nv", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_wines_producer_id", "wines", ["producer_id"])
    op.create_index(
        "uq_wines_producer_name_lower",
        "wines",
        ["producer_id", sa.text("lower(name)")],
        unique=True,
    )

    op.create_table(
        "vintages",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("wine_id", sa.String(36), sa.ForeignKey("wines.id"), nullable=False),
        sa.Column("year", sa.Integer(), nullable=True),
        sa.Column("abv", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("wine_id", "year", name="uq_vintages_wine_year"),
    )
    op.create_index("ix_vintages_wine_id", "vintages", ["wine_id"])

    op.create_table(
        "grape_varieties",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "uq_grape_varieties_name_lower", "grape_varieties", [sa.text("lower(name)")], unique=True
    )

    op.create_table(
        "vintage_varietals",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("vintage_id", sa.String(36), sa.ForeignKey("vintages.id"), nullable=False),
        sa.Column(
            "grape_variety_id", sa.String(36), sa.ForeignKey("grape_varieties.id"), nullable=False
        ),
        sa.Column("percent", sa.Float(), nullable=True),
        sa.UniqueConstraint("vintage_id", "grape_variety_id", name="uq_vintage_varietals_pair"),
    )
    op.create_index("ix_vintage_varietals_vintage_id", "vintage_varietals", ["vintage_id"])

    # Scans and queue
    op.create_table(
        "scans",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("image_path", sa.String(1000), nullable=False),
        sa.Column("image_url", sa.String(1000), nullable=False),
        sa.Column("ocr_text", sa.Text(), nullable=True),
        sa.Column(
            "matched_vintage_id",
            sa.String(36),
            sa.ForeignKey("vintages.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("confidence", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_scans_user_id", "scans", ["user_id"])
    op.create_index("ix_scans_matched_vintage_id", "scans", ["matched_vintage_id"])

    op.create_table(
        "wine_queue_jobs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column(
            "scan_id", sa.String(36), sa.ForeignKey("scans.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("image_url", sa.String(1000), nullable=False),
        sa.Column("ocr_text", sa.Text(), nullable=True),
        sa.Column("idempotency_key", sa.String(255), nullable=True, unique=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("processed_data_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_wine_queue_jobs_user_id", "wine_queue_jobs", ["user_id"])
    op.create_index("ix_wine_queue_jobs_status", "wine_queue_jobs", ["status"])
    op.create_index("ix_wine_queue_jobs_created_at", "wine_queue_jobs", ["created_at"])

    # Tastings
    op.create_table(
        "tastings",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("vintage_id", sa.String(36), sa.ForeignKey("vintages.id"), nullable=False),
        sa.Column("rating", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=False, server_default=""),
        sa.Column("tasted_at", sa.Date(), nullable=False),
        sa.Column("image_url", sa.String(1000), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_tastings_user_id", "tastings", ["user_id"])
    op.create_index("ix_tastings_vintage_id", "tastings", ["vintage_id"])


def downgrade() -> None:
    op.drop_table("tastings")
    op.drop_table("wine_queue_jobs")
    op.drop_table("scans")
    op.drop_table("vintage_varietals")
    op.drop_table("grape_varieties")
    op.drop_table("vintages")
    op.drop_table("wines")
    op.drop_table("producers")
    op.drop_table("regions")
    op.drop_table("user_preferences")
    op.drop_table("profiles")
