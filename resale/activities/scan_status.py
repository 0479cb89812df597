"""Scan status activity.

The workflow owns status transitions but cannot touch storage itself, so every
transition is written through this activity.
"""

from __future__ import annotations

import structlog
from temporalio import activity

from resale.logging import bind_scan_context
from resale.models.contracts import ScanStatusUpdate
from resale.storage.registry import get_store

log = structlog.get_logger("scan_status")


@activity.defn
async def set_scan_status(update: ScanStatusUpdate) -> None:
    bind_scan_context(update.scan_id, "status")
    await get_store().set_scan_status(
        update.scan_id,
        update.status,
        extracted_item=update.extracted_item,
        error_message=update.error_message,
    )
    log.info("scan_status_updated", status=update.status, has_error=update.error_message is not None)
