"""Persistence interface shared by the memory and PostgreSQL stores.

Research only needs get/put/query-by-key. Every cache write is a single
per-key upsert so concurrent scans of the same (brand, code) are safe:
market data is last-writer-wins, and a recorded decode is never replaced by
a lower-confidence or missing one.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

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


class Store(Protocol):
    # --- scans ---

    async def get_scan(self, scan_id: str) -> ScanRecord | None: ...

    async def set_scan_status(
        self,
        scan_id: str,
        status: ScanStatus,
        *,
        extracted_item: ExtractedItem | None = None,
        error_message: str | None = None,
    ) -> None: ...

    async def save_research_result(self, scan_id: str, result: ResearchResult) -> None: ...

    async def save_refined_findings(self, scan_id: str, findings: RefinedFindings) -> None: ...

    async def log_pipeline_run(self, record: PipelineRunRecord) -> None: ...

    async def list_pipeline_runs(self, scan_id: str) -> list[PipelineRunRecord]: ...

    # --- research cache ---

    async def get_cache_entry(self, brand: str, normalized_code: str) -> CacheEntry | None: ...

    async def upsert_market_data(
        self,
        brand: str,
        normalized_code: str,
        market_data: MarketDataSnapshot,
        decoded_info: DecodedStyleInfo | None,
        now: datetime,
    ) -> None:
        """Replace market data; set decoded info only when none is stored."""
        ...

    async def upsert_decoded_info(
        self,
        brand: str,
        normalized_code: str,
        decoded_info: DecodedStyleInfo,
        now: datetime,
    ) -> None:
        """Store a decode unless one with equal or higher confidence exists."""
        ...

    async def increment_cache_hit(self, brand: str, normalized_code: str, now: datetime) -> None: ...

    async def clear_stale_market_data(self, older_than: datetime, limit: int) -> tuple[int, int]:
        """Clear market data last refreshed before ``older_than``.

        Examines at most ``limit`` entries. Returns ``(cleaned, checked)``.
        """
        ...

    async def list_cache_entries(self, brand: str) -> list[CacheEntry]: ...


def should_replace_decode(existing: DecodedStyleInfo | None, incoming: DecodedStyleInfo) -> bool:
    return existing is None or incoming.confidence > existing.confidence
