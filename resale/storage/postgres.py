"""PostgreSQL store over raw asyncpg.

Schema lives in ``resale.models.db`` and the Alembic migrations; queries here
are plain SQL. Cache upserts are single ``INSERT ... ON CONFLICT`` statements,
which makes them atomic per (brand, normalized_code) without explicit locks.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

import asyncpg
import structlog

from resale.config import settings
from resale.models.contracts import (
    CacheEntry,
    DecodedStyleInfo,
    ExtractedItem,
    MarketDataSnapshot,
    PipelineRunRecord,
    RefinedFindings,
    ResearchResult,
    ScanRecord,
    ScanStatus,
)

logger = structlog.get_logger()


def _pg_dsn() -> str:
    """Convert SQLAlchemy-style URL to plain PostgreSQL DSN for asyncpg."""
    return settings.database_url.replace("postgresql+asyncpg://", "postgresql://")


def _dump(model: Any) -> str | None:
    if model is None:
        return None
    return model.model_dump_json()


def _load(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str):
        return json.loads(value)
    return value


_UPSERT_STATUS = """
INSERT INTO scans (id, status, extracted_item, error_message)
VALUES ($1, $2, $3::jsonb, $4)
ON CONFLICT (id) DO UPDATE SET
    status = EXCLUDED.status,
    extracted_item = COALESCE(EXCLUDED.extracted_item, scans.extracted_item),
    error_message = COALESCE(EXCLUDED.error_message, scans.error_message),
    updated_at = now()
"""

_UPSERT_RESEARCH = """
INSERT INTO scans (id, research_result) VALUES ($1, $2::jsonb)
ON CONFLICT (id) DO UPDATE SET research_result = EXCLUDED.research_result, updated_at = now()
"""

_UPSERT_FINDINGS = """
INSERT INTO scans (id, refined_findings) VALUES ($1, $2::jsonb)
ON CONFLICT (id) DO UPDATE SET refined_findings = EXCLUDED.refined_findings, updated_at = now()
"""

_INSERT_RUN = """
INSERT INTO pipeline_runs
    (id, scan_id, stage, provider, duration_ms, success, error_message, details)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8::jsonb)
"""

_UPSERT_MARKET = """
INSERT INTO research_cache
    (id, brand, normalized_code, decoded_info, decode_confidence,
     market_data, market_data_updated_at, hit_count, created_at, updated_at)
VALUES ($1, $2, $3, $4::jsonb, $5, $6::jsonb, $7, 0, $8, $8)
ON CONFLICT (brand, normalized_code) DO UPDATE SET
    market_data = EXCLUDED.market_data,
    market_data_updated_at = EXCLUDED.market_data_updated_at,
    decoded_info = COALESCE(research_cache.decoded_info, EXCLUDED.decoded_info),
    decode_confidence = CASE
        WHEN research_cache.decoded_info IS NULL THEN EXCLUDED.decode_confidence
        ELSE research_cache.decode_confidence
    END,
    updated_at = EXCLUDED.updated_at
"""

_UPSERT_DECODE = """
INSERT INTO research_cache
    (id, brand, normalized_code, decoded_info, decode_confidence,
     hit_count, created_at, updated_at)
VALUES ($1, $2, $3, $4::jsonb, $5, 0, $6, $6)
ON CONFLICT (brand, normalized_code) DO UPDATE SET
    decoded_info = EXCLUDED.decoded_info,
    decode_confidence = EXCLUDED.decode_confidence,
    updated_at = EXCLUDED.updated_at
WHERE research_cache.decoded_info IS NULL
   OR research_cache.decode_confidence < EXCLUDED.decode_confidence
"""

_INCREMENT_HIT = """
UPDATE research_cache SET hit_count = hit_count + 1, last_hit_at = $3
WHERE brand = $1 AND normalized_code = $2
"""

_CLEAR_STALE = """
WITH stale AS (
    SELECT id FROM research_cache
    WHERE market_data IS NOT NULL AND market_data_updated_at < $1
    ORDER BY market_data_updated_at
    LIMIT $2
    FOR UPDATE SKIP LOCKED
)
UPDATE research_cache r
SET market_data = NULL, market_data_updated_at = NULL
FROM stale WHERE r.id = stale.id
RETURNING r.id
"""

_CACHE_COLUMNS = (
    "brand, normalized_code, decoded_info, market_data, hit_count, "
    "last_hit_at, created_at, updated_at"
)


def _row_to_entry(row: Any) -> CacheEntry:
    decoded = _load(row["decoded_info"])
    market = _load(row["market_data"])
    return CacheEntry(
        brand=row["brand"],
        normalized_code=row["normalized_code"],
        decoded_info=DecodedStyleInfo.model_validate(decoded) if decoded else None,
        market_data=MarketDataSnapshot.model_validate(market) if market else None,
        hit_count=row["hit_count"],
        last_hit_at=row["last_hit_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresStore:
    def __init__(self, dsn: str | None = None) -> None:
        self._dsn = dsn or _pg_dsn()

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[Any]:
        conn = await asyncpg.connect(dsn=self._dsn)
        try:
            yield conn
        finally:
            await conn.close()

    # --- scans ---

    async def get_scan(self, scan_id: str) -> ScanRecord | None:
        async with self._connect() as conn:
            row = await conn.fetchrow(
                "SELECT id, status, extracted_item, research_result, refined_findings, "
                "error_message FROM scans WHERE id = $1",
                scan_id,
            )
        if row is None:
            return None
        return ScanRecord(
            scan_id=row["id"],
            status=row["status"],
            extracted_item=_load(row["extracted_item"]),
            research_result=_load(row["research_result"]),
            refined_findings=_load(row["refined_findings"]),
            error_message=row["error_message"],
        )

    async def set_scan_status(
        self,
        scan_id: str,
        status: ScanStatus,
        *,
        extracted_item: ExtractedItem | None = None,
        error_message: str | None = None,
    ) -> None:
        async with self._connect() as conn:
            await conn.execute(
                _UPSERT_STATUS, scan_id, status, _dump(extracted_item), error_message
            )

    async def save_research_result(self, scan_id: str, result: ResearchResult) -> None:
        async with self._connect() as conn:
            await conn.execute(_UPSERT_RESEARCH, scan_id, _dump(result))

    async def save_refined_findings(self, scan_id: str, findings: RefinedFindings) -> None:
        async with self._connect() as conn:
            await conn.execute(_UPSERT_FINDINGS, scan_id, _dump(findings))

    async def log_pipeline_run(self, record: PipelineRunRecord) -> None:
        async with self._connect() as conn:
            await conn.execute(
                _INSERT_RUN,
                uuid.uuid4(),
                record.scan_id,
                record.stage,
                record.provider,
                record.duration_ms,
                record.success,
                record.error_message,
                json.dumps(record.details),
            )

    async def list_pipeline_runs(self, scan_id: str) -> list[PipelineRunRecord]:
        async with self._connect() as conn:
            rows = await conn.fetch(
                "SELECT scan_id, stage, provider, duration_ms, success, error_message, details "
                "FROM pipeline_runs WHERE scan_id = $1 ORDER BY created_at",
                scan_id,
            )
        return [
            PipelineRunRecord(
                scan_id=r["scan_id"],
                stage=r["stage"],
                provider=r["provider"],
                duration_ms=r["duration_ms"],
                success=r["success"],
                error_message=r["error_message"],
                details=_load(r["details"]) or {},
            )
            for r in rows
        ]

    # --- research cache ---

    async def get_cache_entry(self, brand: str, normalized_code: str) -> CacheEntry | None:
        async with self._connect() as conn:
            row = await conn.fetchrow(
                f"SELECT {_CACHE_COLUMNS} FROM research_cache "
                "WHERE brand = $1 AND normalized_code = $2",
                brand,
                normalized_code,
            )
        return _row_to_entry(row) if row else None

    async def upsert_market_data(
        self,
        brand: str,
        normalized_code: str,
        market_data: MarketDataSnapshot,
        decoded_info: DecodedStyleInfo | None,
        now: datetime,
    ) -> None:
        async with self._connect() as conn:
            await conn.execute(
                _UPSERT_MARKET,
                uuid.uuid4(),
                brand,
                normalized_code,
                _dump(decoded_info),
                decoded_info.confidence if decoded_info else None,
                _dump(market_data),
                market_data.updated_at,
                now,
            )

    async def upsert_decoded_info(
        self,
        brand: str,
        normalized_code: str,
        decoded_info: DecodedStyleInfo,
        now: datetime,
    ) -> None:
        async with self._connect() as conn:
            await conn.execute(
                _UPSERT_DECODE,
                uuid.uuid4(),
                brand,
                normalized_code,
                _dump(decoded_info),
                decoded_info.confidence,
                now,
            )

    async def increment_cache_hit(self, brand: str, normalized_code: str, now: datetime) -> None:
        async with self._connect() as conn:
            await conn.execute(_INCREMENT_HIT, brand, normalized_code, now)

    async def clear_stale_market_data(self, older_than: datetime, limit: int) -> tuple[int, int]:
        async with self._connect() as conn:
            rows = await conn.fetch(_CLEAR_STALE, older_than, limit)
        logger.info("cache_market_data_cleared", cleaned=len(rows))
        return len(rows), len(rows)

    async def list_cache_entries(self, brand: str) -> list[CacheEntry]:
        async with self._connect() as conn:
            rows = await conn.fetch(
                f"SELECT {_CACHE_COLUMNS} FROM research_cache WHERE brand = $1", brand
            )
        return [_row_to_entry(r) for r in rows]
