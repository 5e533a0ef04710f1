"""initial schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "profiles",
        sa.Column("user_id", sa.String(), primary_key=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("role", sa.String(), nullable=False, server_default="member"),
        # Written only by subscription sync; this service reads it.
        sa.Column("plan", sa.String(), nullable=False, server_default="free"),
        sa.Column("age_band", sa.String(), nullable=True),
        sa.Column("trial_plan", sa.String(), nullable=True),
        sa.Column("trial_ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "usage_counters",
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("period_type", sa.String(), nullable=False),
        sa.Column("period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("searches_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("ai_creations_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("manual_creations_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("user_id", "period_type", "period_start"),
    )
    # Retention pruning scans by period start.
    op.create_index("ix_usage_counters_period_start", "usage_counters", ["period_start"])

    op.create_table(
        "anonymous_searches",
        sa.Column("client_id", sa.String(), primary_key=True),
        sa.Column("search_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("first_search_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("last_search_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "source_rules",
        sa.Column("name", sa.String(), primary_key=True),
        sa.Column("base_url", sa.String(), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("quality_score", sa.Integer(), nullable=False, server_default="50"),
        sa.Column("min_score", sa.Integer(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "terms",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("text", sa.String(), nullable=False),
        sa.Column("normalized_text", sa.String(), nullable=False),
        sa.Column("slug", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("owner_id", "normalized_text", name="uq_terms_owner_normalized"),
    )
    op.create_index("ix_terms_owner_id", "terms", ["owner_id"])
    op.create_index("ix_terms_slug", "terms", ["slug"])

    op.create_table(
        "sightings",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("term_id", sa.BigInteger(), nullable=False),
        sa.Column("source", sa.String(), nullable=False),
        sa.Column("url", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=True),
        sa.Column("snippet", sa.Text(), nullable=False),
        sa.Column("score", sa.Integer(), nullable=False),
        sa.Column("observed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("first_seen_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("term_id", "url", name="uq_sightings_term_url"),
    )
    op.create_index("ix_sightings_term_id", "sightings", ["term_id"])
    op.create_index("ix_sightings_term_score", "sightings", ["term_id", "score"])

    op.create_table(
        "monitoring_records",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("term_id", sa.BigInteger(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="monitoring"),
        sa.Column("trending_score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("times_found", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("platforms_detected", sa.JSON(), nullable=False),
        sa.Column("monitoring_started_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("last_checked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_found_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("term_id", "owner_id", name="uq_monitoring_records_term_owner"),
    )
    op.create_index("ix_monitoring_records_term_id", "monitoring_records", ["term_id"])
    op.create_index("ix_monitoring_records_owner_id", "monitoring_records", ["owner_id"])
    op.create_index("ix_monitoring_records_last_checked", "monitoring_records", ["last_checked_at"])

    op.create_table(
        "creations",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("phrase", sa.String(), nullable=False),
        sa.Column("meaning", sa.Text(), nullable=False),
        sa.Column("example", sa.Text(), nullable=False),
        sa.Column("creation_type", sa.String(), nullable=False),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_creations_user_id", "creations", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_creations_user_id", table_name="creations")
    op.drop_table("creations")
    op.drop_index("ix_monitoring_records_last_checked", table_name="monitoring_records")
    op.drop_index("ix_monitoring_records_owner_id", table_name="monitoring_records")
    op.drop_index("ix_monitoring_records_term_id", table_name="monitoring_records")
    op.drop_table("monitoring_records")
    op.drop_index("ix_sightings_term_score", table_name="sightings")
    op.drop_index("ix_sightings_term_id", table_name="sightings")
    op.drop_table("sightings")
    op.drop_index("ix_terms_slug", table_name="terms")
    op.drop_index("ix_terms_owner_id", table_name="terms")
    op.drop_table("terms")
    op.drop_table("source_rules")
    op.drop_table("anonymous_searches")
    op.drop_index("ix_usage_counters_period_start", table_name="usage_counters")
    op.drop_table("usage_counters")
    op.drop_table("profiles")
