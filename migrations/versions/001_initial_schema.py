"""Initial schema: scans, research cache, pipeline audit log.

Revision ID: 001
Revises: (none)
Create Date: 2026-09-28
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # --- scans ---
    op.create_table(
        "scans",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("status", sa.String(30), server_default="uploaded", nullable=False),
        sa.Column("extracted_item", JSONB(), nullable=True),
        sa.Column("research_result", JSONB(), nullable=True),
        sa.Column("refined_findings", JSONB(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )

    # --- research_cache ---
    op.create_table(
        "research_cache",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("brand", sa.String(100), nullable=False),
        sa.Column("normalized_code", sa.String(100), nullable=False),
        sa.Column("decoded_info", JSONB(), nullable=True),
        sa.Column("decode_confidence", sa.Float(), nullable=True),
        sa.Column("market_data", JSONB(), nullable=True),
        sa.Column("market_data_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("hit_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("last_hit_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint("brand", "normalized_code", name="uq_research_cache_brand_code"),
    )
    op.create_index("idx_research_cache_brand", "research_cache", ["brand"])
    op.create_index(
        "idx_research_cache_market_updated", "research_cache", ["market_data_updated_at"]
    )

    # --- pipeline_runs ---
    op.create_table(
        "pipeline_runs",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "scan_id",
            sa.String(64),
            sa.ForeignKey("scans.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("stage", sa.String(20), nullable=False),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("duration_ms", sa.Integer(), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("details", JSONB(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("idx_pipeline_runs_scan_stage", "pipeline_runs", ["scan_id", "stage"])


def downgrade() -> None:
    op.drop_table("pipeline_runs")
    op.drop_table("research_cache")
    op.drop_table("scans")
