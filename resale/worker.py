"""Temporal worker — registers the scan pipeline and cache sweep.

Run locally with:
    python -m resale.worker

Requires a running Temporal server. With USE_MEMORY_STORE=true (the default)
results stay in-process; production points DATABASE_URL at PostgreSQL.
"""

from __future__ import annotations

import asyncio
import sys
from datetime import timedelta

import structlog
from temporalio.client import (
    Client,
    Schedule,
    ScheduleActionStartWorkflow,
    ScheduleAlreadyRunningError,
    ScheduleIntervalSpec,
    ScheduleSpec,
)
from temporalio.contrib.pydantic import pydantic_data_converter
from temporalio.worker import Worker

from resale.activities.cache_sweep import sweep_research_cache
from resale.activities.refinement import refine_findings
from resale.activities.research import research_item
from resale.activities.scan_status import set_scan_status
from resale.config import settings
from resale.logging import configure_logging
from resale.workflows.cache_sweep import CacheSweepWorkflow
from resale.workflows.scan_pipeline import ScanPipelineWorkflow

logger = structlog.get_logger()

ACTIVITIES = [research_item, refine_findings, set_scan_status, sweep_research_cache]

WORKFLOWS = [ScanPipelineWorkflow, CacheSweepWorkflow]

CACHE_SWEEP_SCHEDULE_ID = "resale-cache-sweep"
CACHE_SWEEP_INTERVAL = timedelta(hours=6)


async def create_temporal_client() -> Client:
    """Create a Temporal client using settings.

    Supports both local Temporal (plain TCP) and Temporal Cloud (TLS + API key).
    """
    if settings.temporal_api_key:
        return await Client.connect(
            target_host=settings.temporal_address,
            namespace=settings.temporal_namespace,
            tls=True,
            api_key=settings.temporal_api_key,
            data_converter=pydantic_data_converter,
        )
    return await Client.connect(
        target_host=settings.temporal_address,
        namespace=settings.temporal_namespace,
        data_converter=pydantic_data_converter,
    )


async def ensure_cache_sweep_schedule(client: Client) -> None:
    """Create the periodic cache sweep schedule unless it already exists."""
    try:
        await client.create_schedule(
            CACHE_SWEEP_SCHEDULE_ID,
            Schedule(
                action=ScheduleActionStartWorkflow(
                    CacheSweepWorkflow.run,
                    settings.cache_sweep_batch_size,
                    id=CACHE_SWEEP_SCHEDULE_ID,
                    task_queue=settings.temporal_task_queue,
                ),
                spec=ScheduleSpec(intervals=[ScheduleIntervalSpec(every=CACHE_SWEEP_INTERVAL)]),
            ),
        )
        logger.info("cache_sweep_schedule_created", every=str(CACHE_SWEEP_INTERVAL))
    except ScheduleAlreadyRunningError:
        logger.info("cache_sweep_schedule_exists")


async def run_worker() -> None:
    """Connect to Temporal and run the worker until interrupted."""
    logger.info(
        "worker_connecting",
        address=settings.temporal_address,
        namespace=settings.temporal_namespace,
        task_queue=settings.temporal_task_queue,
    )

    try:
        client = await create_temporal_client()
    except Exception:
        logger.exception(
            "worker_connection_failed",
            address=settings.temporal_address,
            namespace=settings.temporal_namespace,
        )
        raise

    await ensure_cache_sweep_schedule(client)

    worker = Worker(
        client,
        task_queue=settings.temporal_task_queue,
        workflows=WORKFLOWS,
        activities=ACTIVITIES,  # type: ignore[arg-type]
    )

    if settings.use_memory_store and settings.environment != "development":
        logger.warning(
            "worker_using_memory_store",
            environment=settings.environment,
            hint="Set USE_MEMORY_STORE=false to persist scans in PostgreSQL",
        )

    logger.info(
        "worker_started",
        task_queue=settings.temporal_task_queue,
        workflow_count=len(WORKFLOWS),
        activity_count=len(ACTIVITIES),
    )

    await worker.run()
    logger.info("worker_stopped")


def main() -> None:
    """Entrypoint for `python -m resale.worker`."""
    configure_logging()
    try:
        asyncio.run(run_worker())
    except KeyboardInterrupt:
        pass
    except Exception:
        logger.exception("worker_fatal_error")
        sys.exit(1)


if __name__ == "__main__":
    main()
