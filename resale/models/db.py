"""SQLAlchemy ORM models for the resale engine.

The database stores data artifacts only: scan records, the shared research
cache, and the pipeline audit log. Scan progress lives in Temporal; the
``status`` column mirrors it for readers.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class Scan(Base):
    __tablename__ = "scans"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="uploaded")
    extracted_item: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    research_result: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    refined_findings: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    pipeline_runs: Mapped[list["PipelineRun"]] = relationship(
        back_populates="scan", cascade="all, delete"
    )


class ResearchCacheEntry(Base):
    __tablename__ = "research_cache"
    __table_args__ = (
        UniqueConstraint("brand", "normalized_code", name="uq_research_cache_brand_code"),
        Index("idx_research_cache_brand", "brand"),
        Index("idx_research_cache_market_updated", "market_data_updated_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    brand: Mapped[str] = mapped_column(String(100), nullable=False)
    normalized_code: Mapped[str] = mapped_column(String(100), nullable=False)
    decoded_info: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    decode_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    market_data: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    market_data_updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    hit_count: Mapped[int] = mapped_column(Integer, default=0)
    last_hit_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class PipelineRun(Base):
    __tablename__ = "pipeline_runs"
    __table_args__ = (Index("idx_pipeline_runs_scan_stage", "scan_id", "stage"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    scan_id: Mapped[str] = mapped_column(
        ForeignKey("scans.id", ondelete="CASCADE"), nullable=False
    )
    stage: Mapped[str] = mapped_column(String(20), nullable=False)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    details: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    scan: Mapped["Scan"] = relationship(back_populates="pipeline_runs")
