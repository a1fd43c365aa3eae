"""create keyword engine tables

Revision ID: 4c8e2a91d7b3
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

revision: str = "4c8e2a91d7b3"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # =========================================================
    # 1. keywords
    # =========================================================
    op.create_table(
        "keywords",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("app_id", sa.String(64), nullable=False),
        sa.Column("keyword", sa.String(100), nullable=False),
        sa.Column("platform", sa.String(10), nullable=False, server_default="ios"),
        sa.Column("region", sa.String(5), nullable=False, server_default="us"),
        sa.Column("is_tracked", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("discovery_method", sa.String(20), nullable=False, server_default="manual"),
        sa.Column("generation_method", sa.String(30), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("last_tracked_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("app_id", "keyword", "platform", "region", name="uq_app_keyword_platform_region"),
    )
    op.create_index("ix_keywords_tenant_id", "keywords", ["tenant_id"])
    op.create_index("ix_keywords_app_id", "keywords", ["app_id"])

    # =========================================================
    # 2. keyword_rankings (insert-only daily snapshots)
    # =========================================================
    op.create_table(
        "keyword_rankings",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "keyword_id", sa.Integer(), sa.ForeignKey("keywords.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("snapshot_date", sa.Date(), nullable=False),
        sa.Column("position", sa.SmallInteger(), nullable=True),
        sa.Column("is_ranking", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("serp_snapshot", JSONB(), nullable=True),
        sa.Column("estimated_search_volume", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("visibility_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("estimated_traffic", sa.Float(), nullable=False, server_default="0"),
        sa.Column("position_change", sa.SmallInteger(), nullable=True),
        sa.Column("trend", sa.String(20), nullable=False),
        sa.Column("max_tracked_position", sa.SmallInteger(), nullable=False, server_default="50"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("keyword_id", "snapshot_date", name="uq_keyword_ranking_date"),
    )
    op.create_index("ix_keyword_rankings_keyword_id", "keyword_rankings", ["keyword_id"])

    # =========================================================
    # 3. keyword_search_volumes (shared across tenants)
    # =========================================================
    op.create_table(
        "keyword_search_volumes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("keyword", sa.String(100), nullable=False),
        sa.Column("platform", sa.String(10), nullable=False),
        sa.Column("region", sa.String(5), nullable=False),
        sa.Column("estimated_monthly_searches", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("popularity_score", sa.SmallInteger(), nullable=False, server_default="0"),
        sa.Column("competition_level", sa.String(20), nullable=False, server_default="low"),
        sa.Column("signals", JSONB(), nullable=True),
        sa.Column("data_source", sa.String(30), nullable=False, server_default="serp_heuristic"),
        sa.Column("last_updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("keyword", "platform", "region", name="uq_search_volume_term"),
    )
    op.create_index("ix_keyword_search_volumes_last_updated_at", "keyword_search_volumes", ["last_updated_at"])

    # =========================================================
    # 4. competitor_keywords
    # =========================================================
    op.create_table(
        "competitor_keywords",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "keyword_id", sa.Integer(), sa.ForeignKey("keywords.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("competitor_app_id", sa.String(64), nullable=False),
        sa.Column("competitor_name", sa.String(255), nullable=True),
        sa.Column("position", sa.SmallInteger(), nullable=True),
        sa.Column("snapshot_date", sa.Date(), nullable=False),
        sa.Column("collected_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint(
            "keyword_id", "competitor_app_id", "snapshot_date", name="uq_competitor_keyword_date"
        ),
    )
    op.create_index("ix_competitor_keywords_keyword_id", "competitor_keywords", ["keyword_id"])
    op.create_index("ix_competitor_keywords_competitor_app_id", "competitor_keywords", ["competitor_app_id"])

    # =========================================================
    # 5. discovery_jobs
    # =========================================================
    op.create_table(
        "discovery_jobs",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("app_id", sa.String(64), nullable=False),
        sa.Column("platform", sa.String(10), nullable=False, server_default="ios"),
        sa.Column("region", sa.String(5), nullable=False, server_default="us"),
        sa.Column("target_count", sa.Integer(), nullable=False),
        sa.Column("depth", sa.String(20), nullable=False),
        sa.Column("include_competitors", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("request", JSONB(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("progress_current", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("progress_total", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reason", sa.String(40), nullable=True),
        sa.Column("error_detail", sa.Text(), nullable=True),
        sa.Column("result", JSONB(), nullable=True),
        sa.Column("cancel_requested", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_discovery_jobs_tenant_id", "discovery_jobs", ["tenant_id"])
    op.create_index("ix_discovery_jobs_app_id", "discovery_jobs", ["app_id"])
    op.create_index("ix_discovery_jobs_status", "discovery_jobs", ["status"])


def downgrade() -> None:
    op.drop_table("discovery_jobs")
    op.drop_table("competitor_keywords")
    op.drop_table("keyword_search_volumes")
    op.drop_table("keyword_rankings")
    op.drop_table("keywords")
