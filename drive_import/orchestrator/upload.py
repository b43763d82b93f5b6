"""
Upload Orchestrator - bounded worker pool draining pending records.

Per-record state machine:

    pending -> uploading -> (retry-wait -> uploading)* -> completed | failed

A retry does not block its worker: the job is handed to the event loop
with ``call_later`` and re-enters the shared FIFO once the linear backoff
delay has elapsed.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, List, Optional, Union

from ..errors import StorageError
from ..models import DuplicateStrategy, ResponsePayload, UploadOptions
from ..protocols import IRecordStore, IRemoteImporter
from ..use_cases.deduplication import is_upload_eligible
from ..use_cases.retry import ResolveRetryUseCase, RetryDecision, describe_error
from ..utils.events import (
    EventEmitter,
    PHASE_COMPLETE,
    PHASE_START,
    RECORD_FAILED,
    RECORD_RETRY,
    RECORD_UPLOADED,
)
from .models import ItemResult, UploadJob, UploadReport

logger = logging.getLogger(__name__)

Scheduler = Callable[[float, Callable[[], None]], asyncio.Handle]


class UploadOrchestrator:
    """
    Uploads pending records through the remote importer.

    Usage:
        uploader = UploadOrchestrator(store, humata, UploadOptions(folder_id="f1"))
        report = await uploader.run()            # pending records only
        report = await uploader.retry_failed()   # re-queue failed ones first
    """

    def __init__(
        self,
        store: IRecordStore,
        importer: IRemoteImporter,
        options: UploadOptions,
        events: Optional[EventEmitter] = None,
        call_later: Optional[Scheduler] = None,
    ):
        self._store = store
        self._importer = importer
        self._options = options
        self._events = events or EventEmitter()
        self._retry = ResolveRetryUseCase(options)
        self._call_later = call_later
        self._retry_handles: List[asyncio.Handle] = []
        self._run_id: Optional[str] = None

    async def retry_failed(self) -> UploadReport:
        """Re-queue every failed upload (unless disabled) and run the pool."""
        requeued = 0
        if self._options.retry_failed:
            requeued = await self._store.requeue_failed()
            if requeued:
                logger.info("[upload] Re-queued %d failed uploads", requeued)
        else:
            logger.info("[upload] Skipping retry of failed uploads")
        report = await self.run()
        report.requeued = requeued
        return report

    async def run(self) -> UploadReport:
        """Upload every eligible pending record. Returns the per-record report."""
        report = UploadReport()
        await self._events.emit(PHASE_START, "upload")

        self._run_id = uuid.uuid4().hex
        report.reclaimed = await self._store.reclaim_interrupted_uploads(self._options.stale_claim_after)
        if report.reclaimed:
            logger.info("[upload] Reclaimed %d uploads interrupted by a previous run", report.reclaimed)

        strategy = self._options.duplicate_strategy
        pending = [
            record
            for record in await self._store.pending_records(strategy)
            if is_upload_eligible(record, strategy)
        ]
        if not pending:
            logger.info("[upload] No pending files found for upload")
            await self._events.emit(PHASE_COMPLETE, "upload", report)
            return report

        workers_count = min(self._options.effective_workers, len(pending))
        logger.info(
            "[upload] Starting upload: %d files, %d workers, max %d attempts each (duplicates: %s)",
            len(pending),
            workers_count,
            self._options.max_retries,
            strategy.value,
        )
        if strategy is DuplicateStrategy.REPLACE:
            logger.info("[upload] Duplicates are re-uploaded; earlier remote documents are left in place")

        queue: asyncio.Queue = asyncio.Queue()
        for record in pending:
            queue.put_nowait(UploadJob(record=record))

        await self._drain(queue, workers_count, report)

        logger.info(
            "[upload] Summary: %d uploaded, %d failed, %d skipped",
            report.uploaded,
            report.failed,
            report.skipped,
        )
        await self._events.emit(PHASE_COMPLETE, "upload", report)
        return report

    async def _drain(self, queue: asyncio.Queue, workers_count: int, report: UploadReport) -> None:
        workers = [
            asyncio.create_task(self._worker(index, queue, report), name=f"upload-worker-{index}")
            for index in range(1, workers_count + 1)
        ]
        joiner = asyncio.create_task(queue.join())
        try:
            done, _ = await asyncio.wait([joiner, *workers], return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if task is not joiner and task.exception() is not None:
                    raise task.exception()
        finally:
            for handle in self._retry_handles:
                handle.cancel()
            self._retry_handles.clear()
            for task in [joiner, *workers]:
                if not task.done():
                    task.cancel()
            await asyncio.gather(joiner, *workers, return_exceptions=True)

    async def _worker(self, index: int, queue: asyncio.Queue, report: UploadReport) -> None:
        while True:
            job: UploadJob = await queue.get()
            outcome = await self._process(job)
            if isinstance(outcome, RetryDecision):
                self._schedule_retry(queue, job, outcome.delay)
                continue
            report.results.append(outcome)
            queue.task_done()

    def _schedule_retry(self, queue: asyncio.Queue, job: UploadJob, delay: float) -> None:
        job.attempt += 1

        def _requeue() -> None:
            # Re-enter the queue before releasing the original slot so join() never sees zero.
            queue.put_nowait(job)
            queue.task_done()

        call_later = self._call_later or asyncio.get_running_loop().call_later
        self._retry_handles.append(call_later(delay, _requeue))

    async def _process(self, job: UploadJob) -> Union[ItemResult, RetryDecision]:
        record = job.record
        folder_id = self._options.folder_id

        if job.attempt == 1:
            claimed = await self._store.mark_uploading(record.external_id, folder_id, self._run_id)
            if not claimed:
                logger.debug("[upload] %s is no longer pending, skipping", record.name)
                return ItemResult.skipped(record, "not pending")
        elif not await self._store.renew_claim(record.external_id, self._run_id):
            logger.warning("[upload] %s was reclaimed by another run, dropping retry", record.name)
            return ItemResult.skipped(record, "claimed by another run")

        logger.debug("[upload] Uploading %s (attempt %d/%d)", record.name, job.attempt, self._options.max_retries)
        try:
            receipt = await self._importer.upload(record.url, folder_id)
        except StorageError:
            raise
        except Exception as exc:
            return await self._handle_failure(job, exc)

        payload = ResponsePayload.success(
            receipt.payload, attempts=job.attempt, last_attempt=datetime.now(timezone.utc)
        )
        applied = await self._store.complete_upload(record.external_id, receipt.destination_id, payload)
        if not applied:
            logger.warning("[upload] %s already has a destination id, keeping the first one", record.name)
            return ItemResult.skipped(record, "destination already assigned")

        logger.info("[upload] ✓ %s -> %s", record.name, receipt.destination_id)
        result = ItemResult.ok(record, receipt.destination_id, attempts=job.attempt)
        await self._events.emit(RECORD_UPLOADED, result)
        return result

    async def _handle_failure(self, job: UploadJob, exc: Exception) -> Union[ItemResult, RetryDecision]:
        record = job.record
        decision = self._retry.execute(exc, job.attempt)
        error = describe_error(decision.error)
        payload = ResponsePayload.failure(
            error,
            status_code=decision.error.status_code,
            attempts=job.attempt,
            last_attempt=datetime.now(timezone.utc),
        )

        if decision.should_retry:
            await self._store.record_upload_attempt(record.external_id, payload)
            logger.warning(
                "[upload] Upload failed for %s, attempt %d/%d, retrying in %.1fs: %s",
                record.name,
                job.attempt,
                self._options.max_retries,
                decision.delay,
                error,
            )
            await self._events.emit(RECORD_RETRY, record, job.attempt, error)
            return decision

        await self._store.fail_upload(record.external_id, error, payload)
        logger.error(
            "[upload] ✗ Upload failed for %s after %d attempt(s): %s", record.name, job.attempt, error
        )
        result = ItemResult.fail(record, error, attempts=job.attempt)
        await self._events.emit(RECORD_FAILED, result)
        return result
