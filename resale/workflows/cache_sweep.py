"""CacheSweepWorkflow — periodic cleanup of stale research-cache market data.

Runs on a Temporal schedule. Sweeps in bounded batches until a batch comes
back smaller than the batch size, so one run never holds a large lock set.
"""

from __future__ import annotations

from datetime import timedelta

from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from resale.activities.cache_sweep import sweep_research_cache
    from resale.models.contracts import CacheSweepOutput

_SWEEP_RETRY = RetryPolicy(maximum_attempts=3)
DEFAULT_BATCH_SIZE = 100
MAX_BATCHES = 50


@workflow.defn
class CacheSweepWorkflow:
    def __init__(self) -> None:
        self.cleaned = 0
        self.checked = 0
        self.batches = 0

    @workflow.run
    async def run(self, batch_size: int = DEFAULT_BATCH_SIZE) -> CacheSweepOutput:
        while self.batches < MAX_BATCHES:
            result = await workflow.execute_activity(
                sweep_research_cache,
                batch_size,
                start_to_close_timeout=timedelta(minutes=2),
                retry_policy=_SWEEP_RETRY,
            )
            self.batches += 1
            self.cleaned += result.cleaned
            self.checked += result.checked
            if result.cleaned < batch_size:
                break

        workflow.logger.info(
            "Cache sweep finished: %d cleaned, %d checked in %d batches",
            self.cleaned,
            self.checked,
            self.batches,
        )
        return CacheSweepOutput(cleaned=self.cleaned, checked=self.checked)

    @workflow.query
    def get_progress(self) -> CacheSweepOutput:
        return CacheSweepOutput(cleaned=self.cleaned, checked=self.checked)
