"""Research cache keyed by (brand, normalized style code).

Decoded style info never expires: a style code does not change meaning. Market
data snapshots go stale after the TTL (7 days by default). Stale snapshots are
still returned, flagged not fresh, so the caller decides whether to re-research.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import structlog

from resale.config import settings
from resale.models.contracts import (
    BrandCacheStats,
    CacheEntry,
    CacheLookup,
    CacheSweepOutput,
    DecodedStyleInfo,
    MarketDataSnapshot,
)
from resale.pipeline.decoders import decode_style_code, normalize_code
from resale.storage.base import Store

log = structlog.get_logger("research_cache")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def cache_key(brand: str, code: str) -> tuple[str, str]:
    """Canonical (brand, normalized_code) key.

    Uses the decoder's normalized code when the brand has a decoder (so
    "FA23-25455" and "25455" share an entry), plain normalization otherwise.
    """
    decoded = decode_style_code(brand, code)
    normalized = decoded.normalized_code if decoded else normalize_code(code)
    return brand.strip().upper(), normalized


class ResearchCache:
    def __init__(
        self,
        store: Store,
        ttl: timedelta | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._ttl = ttl if ttl is not None else timedelta(days=settings.market_data_ttl_days)
        self._clock = clock

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def is_fresh(self, market_data: MarketDataSnapshot | None) -> bool:
        if market_data is None:
            return False
        return (self._clock() - market_data.updated_at) < self._ttl

    async def lookup(self, brand: str | None, code: str | None) -> CacheLookup | None:
        """Cached decode and market data for a style code.

        On a miss the code is decoded on the fly, so decoding is never cold.
        Returns None when brand or code is empty.
        """
        if not brand or not brand.strip() or not code or not code.strip():
            return None

        decoded = decode_style_code(brand, code)
        key_brand = brand.strip().upper()
        normalized = decoded.normalized_code if decoded else normalize_code(code)

        entry = await self._store.get_cache_entry(key_brand, normalized)
        if entry is not None:
            return CacheLookup(
                brand=entry.brand,
                normalized_code=entry.normalized_code,
                decoded_info=entry.decoded_info or decoded,
                market_data=entry.market_data,
                cache_hit=True,
                market_data_fresh=self.is_fresh(entry.market_data),
            )

        return CacheLookup(
            brand=key_brand,
            normalized_code=normalized,
            decoded_info=decoded,
            cache_hit=False,
            market_data_fresh=False,
        )

    async def get_entry(self, brand: str, code: str) -> CacheEntry | None:
        return await self._store.get_cache_entry(*cache_key(brand, code))

    async def cache_market_data(
        self,
        brand: str,
        normalized_code: str,
        market_data: MarketDataSnapshot,
        decoded_info: DecodedStyleInfo | None = None,
    ) -> None:
        """Upsert market data; ``decoded_info`` is only used if none is stored."""
        await self._store.upsert_market_data(
            brand.strip().upper(), normalized_code, market_data, decoded_info, self._clock()
        )
        log.info(
            "cache_market_data_stored",
            brand=brand,
            normalized_code=normalized_code,
            listings=market_data.listings_found,
        )

    async def cache_decoded_info(
        self, brand: str, normalized_code: str, decoded_info: DecodedStyleInfo
    ) -> None:
        await self._store.upsert_decoded_info(
            brand.strip().upper(), normalized_code, decoded_info, self._clock()
        )

    async def record_cache_hit(self, brand: str, normalized_code: str) -> None:
        """Bump the hit counter. Analytics only: failures are logged, not raised."""
        try:
            await self._store.increment_cache_hit(
                brand.strip().upper(), normalized_code, self._clock()
            )
        except Exception:
            log.warning(
                "cache_hit_record_failed",
                brand=brand,
                normalized_code=normalized_code,
                exc_info=True,
            )

    async def sweep_stale(self, batch_size: int | None = None) -> CacheSweepOutput:
        """Clear expired market data in one bounded batch. Decodes are kept."""
        limit = batch_size or settings.cache_sweep_batch_size
        cleaned, checked = await self._store.clear_stale_market_data(
            self._clock() - self._ttl, limit
        )
        log.info("cache_sweep_batch", cleaned=cleaned, checked=checked)
        return CacheSweepOutput(cleaned=cleaned, checked=checked)

    async def brand_stats(self, brand: str) -> BrandCacheStats:
        key_brand = brand.strip().upper()
        entries = await self._store.list_cache_entries(key_brand)
        return BrandCacheStats(
            brand=key_brand,
            total_entries=len(entries),
            total_hits=sum(e.hit_count for e in entries),
            entries_with_market_data=sum(1 for e in entries if e.market_data is not None),
        )
