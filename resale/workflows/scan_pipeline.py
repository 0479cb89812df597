"""ScanPipelineWorkflow — one instance per scan.

Workflow ID = scan_id. Sequences research -> refinement for an extracted
item, pausing first when extraction asked the user a clarification question.
Every status transition is persisted through the set_scan_status activity;
the get_state query exposes progress for polling.

A failed stage marks the scan failed with user-facing text only. The internal
error already sits in the pipeline_runs audit log, written by the activity.
"""

from __future__ import annotations

from datetime import timedelta

from temporalio import workflow
from temporalio.common import RetryPolicy
from temporalio.exceptions import ActivityError, ApplicationError

with workflow.unsafe.imports_passed_through():
    from resale.activities.refinement import refine_findings
    from resale.activities.research import research_item
    from resale.activities.scan_status import set_scan_status
    from resale.errors import format_user_error
    from resale.models.contracts import (
        ClarificationAnswer,
        ClarificationRequest,
        ExtractedItem,
        RefinedFindings,
        RefineFindingsInput,
        ResearchItemInput,
        ResearchResult,
        ScanPipelineInput,
        ScanPipelineState,
        ScanStatus,
        ScanStatusUpdate,
        WorkflowError,
    )
    from resale.pipeline.brands import apply_clarification


_RESEARCH_RETRY = RetryPolicy(maximum_attempts=3, initial_interval=timedelta(seconds=2))
_REFINEMENT_RETRY = RetryPolicy(maximum_attempts=2, initial_interval=timedelta(seconds=2))
_STATUS_RETRY = RetryPolicy(maximum_attempts=5)

_CLARIFICATION_TIMEOUT = timedelta(hours=24)
GENERIC_FAILURE = "An error occurred processing your item. Please try again."


class _StageFailedError(Exception):
    pass


def user_message(exc: BaseException) -> str:
    """User-facing text carried by a failed activity.

    Activities raise ApplicationError with the user text as the first detail;
    anything else is mapped here.
    """
    cause = exc.cause if isinstance(exc, ActivityError) else exc
    if isinstance(cause, ApplicationError):
        if cause.details and isinstance(cause.details[0], str) and cause.details[0]:
            return cause.details[0]
        return format_user_error(cause)
    if cause is not None:
        return format_user_error(cause)
    return GENERIC_FAILURE


def is_retryable_failure(exc: BaseException) -> bool:
    cause = exc.cause if isinstance(exc, ActivityError) else exc
    if isinstance(cause, ApplicationError):
        return not cause.non_retryable
    return True


@workflow.defn
class ScanPipelineWorkflow:
    """One instance per scan. Workflow ID = scan_id."""

    def __init__(self) -> None:
        self._scan_id = ""
        self.status: ScanStatus = "uploaded"
        self.item: ExtractedItem | None = None
        self.clarification: ClarificationRequest | None = None
        self.answer: ClarificationAnswer | None = None
        self.research: ResearchResult | None = None
        self.findings: RefinedFindings | None = None
        self.error: WorkflowError | None = None

    @workflow.run
    async def run(self, input: ScanPipelineInput) -> RefinedFindings | None:
        self._scan_id = input.scan_id
        self.item = input.item
        try:
            await self._run_stages(input)
        except _StageFailedError:
            return None
        return self.findings

    async def _run_stages(self, input: ScanPipelineInput) -> None:
        assert self.item is not None

        # --- Clarification (optional pause) ---
        if self.item.clarification_needed is not None:
            self.clarification = self.item.clarification_needed
            await self._set_status("awaiting_clarification", extracted_item=self.item)
            try:
                await workflow.wait_condition(
                    lambda: self.answer is not None, timeout=_CLARIFICATION_TIMEOUT
                )
            except TimeoutError:
                workflow.logger.warning(
                    "Clarification for scan %s timed out; continuing without it",
                    self._scan_id,
                )
                self.answer = ClarificationAnswer(field=self.clarification.field, value="skip")
            assert self.answer is not None
            self.item = apply_clarification(self.item, self.answer)
            self.clarification = None

        # --- Research ---
        await self._set_status("researching", extracted_item=self.item)
        try:
            self.research = await workflow.execute_activity(
                research_item,
                ResearchItemInput(scan_id=self._scan_id, item=self.item),
                start_to_close_timeout=timedelta(minutes=5),
                retry_policy=_RESEARCH_RETRY,
            )
        except ActivityError as exc:
            await self._fail("research_item", exc)

        assert self.research is not None

        # --- Refinement ---
        await self._set_status("refining")
        try:
            self.findings = await workflow.execute_activity(
                refine_findings,
                RefineFindingsInput(
                    scan_id=self._scan_id,
                    item=self.item,
                    research=self.research,
                    provider=input.refinement_provider,
                ),
                start_to_close_timeout=timedelta(minutes=3),
                retry_policy=_REFINEMENT_RETRY,
            )
        except ActivityError as exc:
            await self._fail("refine_findings", exc)

        await self._set_status("completed")

    async def _set_status(
        self,
        status: ScanStatus,
        *,
        extracted_item: ExtractedItem | None = None,
        error_message: str | None = None,
    ) -> None:
        self.status = status
        await workflow.execute_activity(
            set_scan_status,
            ScanStatusUpdate(
                scan_id=self._scan_id,
                status=status,
                extracted_item=extracted_item,
                error_message=error_message,
            ),
            start_to_close_timeout=timedelta(seconds=30),
            retry_policy=_STATUS_RETRY,
        )

    async def _fail(self, stage: str, exc: ActivityError) -> None:
        """Mark the scan failed with user-facing text and stop the pipeline."""
        message = user_message(exc)
        workflow.logger.error("%s failed for scan %s: %s", stage, self._scan_id, exc)
        self.error = WorkflowError(message=message, retryable=is_retryable_failure(exc))
        try:
            await self._set_status("failed", error_message=message)
        except ActivityError as status_exc:
            workflow.logger.error(
                "set_scan_status failed for scan %s: %s", self._scan_id, status_exc
            )
            self.status = "failed"
        raise _StageFailedError(stage)

    # --- Signals ---

    @workflow.signal
    async def answer_clarification(self, answer: ClarificationAnswer) -> None:
        if self.status != "awaiting_clarification":
            workflow.logger.warning(
                "answer_clarification ignored: status is '%s' for scan %s",
                self.status,
                self._scan_id,
            )
            return
        self.answer = answer

    # --- Query ---

    @workflow.query
    def get_state(self) -> ScanPipelineState:
        return ScanPipelineState(
            scan_id=self._scan_id,
            status=self.status,
            clarification=self.clarification,
            research=self.research,
            findings=self.findings,
            error=self.error,
        )
