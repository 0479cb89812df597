"""In-process store for local development and tests.

Each operation reads and writes its record without awaiting in between, so
per-key upserts are atomic with respect to other coroutines on the loop.
"""

from __future__ import annotations

from datetime import datetime

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
from resale.storage.base import should_replace_decode


class MemoryStore:
    def __init__(self) -> None:
        self.scans: dict[str, ScanRecord] = {}
        self.pipeline_runs: list[PipelineRunRecord] = []
        self.cache: dict[tuple[str, str], CacheEntry] = {}

    # --- scans ---

    async def get_scan(self, scan_id: str) -> ScanRecord | None:
        return self.scans.get(scan_id)

    def _scan(self, scan_id: str) -> ScanRecord:
        if scan_id not in self.scans:
            self.scans[scan_id] = ScanRecord(scan_id=scan_id)
        return self.scans[scan_id]

    async def set_scan_status(
        self,
        scan_id: str,
        status: ScanStatus,
        *,
        extracted_item: ExtractedItem | None = None,
        error_message: str | None = None,
    ) -> None:
        scan = self._scan(scan_id)
        scan.status = status
        if extracted_item is not None:
            scan.extracted_item = extracted_item
        if error_message is not None:
            scan.error_message = error_message

    async def save_research_result(self, scan_id: str, result: ResearchResult) -> None:
        self._scan(scan_id).research_result = result

    async def save_refined_findings(self, scan_id: str, findings: RefinedFindings) -> None:
        self._scan(scan_id).refined_findings = findings

    async def log_pipeline_run(self, record: PipelineRunRecord) -> None:
        self.pipeline_runs.append(record)

    async def list_pipeline_runs(self, scan_id: str) -> list[PipelineRunRecord]:
        return [r for r in self.pipeline_runs if r.scan_id == scan_id]

    # --- research cache ---

    async def get_cache_entry(self, brand: str, normalized_code: str) -> CacheEntry | None:
        entry = self.cache.get((brand, normalized_code))
        return entry.model_copy(deep=True) if entry else None

    async def upsert_market_data(
        self,
        brand: str,
        normalized_code: str,
        market_data: MarketDataSnapshot,
        decoded_info: DecodedStyleInfo | None,
        now: datetime,
    ) -> None:
        key = (brand, normalized_code)
        entry = self.cache.get(key)
        if entry is None:
            self.cache[key] = CacheEntry(
                brand=brand,
                normalized_code=normalized_code,
                decoded_info=decoded_info,
                market_data=market_data,
                created_at=now,
                updated_at=now,
            )
            return
        entry.market_data = market_data
        if entry.decoded_info is None and decoded_info is not None:
            entry.decoded_info = decoded_info
        entry.updated_at = now

    async def upsert_decoded_info(
        self,
        brand: str,
        normalized_code: str,
        decoded_info: DecodedStyleInfo,
        now: datetime,
    ) -> None:
        key = (brand, normalized_code)
        entry = self.cache.get(key)
        if entry is None:
            self.cache[key] = CacheEntry(
                brand=brand,
                normalized_code=normalized_code,
                decoded_info=decoded_info,
                created_at=now,
                updated_at=now,
            )
            return
        if should_replace_decode(entry.decoded_info, decoded_info):
            entry.decoded_info = decoded_info
            entry.updated_at = now

    async def increment_cache_hit(self, brand: str, normalized_code: str, now: datetime) -> None:
        entry = self.cache.get((brand, normalized_code))
        if entry is not None:
            entry.hit_count += 1
            entry.last_hit_at = now

    async def clear_stale_market_data(self, older_than: datetime, limit: int) -> tuple[int, int]:
        stale = sorted(
            (
                e
                for e in self.cache.values()
                if e.market_data is not None and e.market_data.updated_at < older_than
            ),
            key=lambda e: e.market_data.updated_at,  # type: ignore[union-attr]
        )[:limit]
        for entry in stale:
            entry.market_data = None
        return len(stale), len(stale)

    async def list_cache_entries(self, brand: str) -> list[CacheEntry]:
        return [e.model_copy(deep=True) for (b, _), e in self.cache.items() if b == brand]
