"""Research cache sweep activity.

Clears market-data snapshots older than the TTL, one bounded batch per call.
Decoded style info is kept forever. The CacheSweepWorkflow calls this
repeatedly until a batch comes back short.
"""

from __future__ import annotations

import structlog
from temporalio import activity

from resale.models.contracts import CacheSweepOutput
from resale.pipeline.research_cache import ResearchCache
from resale.storage.registry import get_store

log = structlog.get_logger("cache_sweep")


@activity.defn
async def sweep_research_cache(batch_size: int) -> CacheSweepOutput:
    """Clear one batch of stale market data. Safe to run concurrently."""
    try:
        return await ResearchCache(get_store()).sweep_stale(batch_size)
    except Exception:
        log.exception("cache_sweep_failed", batch_size=batch_size)
        raise
