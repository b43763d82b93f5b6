"""
Verification Poller - polls remote processing status of uploaded records.

Runs until every uploaded record reaches a terminal processing status or
the deadline passes. A failed status check is recorded on the record and
retried on the next iteration; it never changes ``processing_status``.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, List, Optional

from ..errors import StorageError
from ..models import FileRecord, ProcessingStatus, ResponsePayload, VerifyOptions
from ..protocols import IRecordStore, IRemoteImporter
from ..use_cases.retry import classify_error, describe_error
from ..use_cases.status_mapping import advance_status, map_remote_status
from ..utils.events import EventEmitter, PHASE_COMPLETE, PHASE_START, RECORD_VERIFIED
from .models import ItemResult, VerificationReport

logger = logging.getLogger(__name__)


class VerificationOrchestrator:
    """
    Polls the remote importer for every uploaded, non-terminal record.

    Usage:
        verifier = VerificationOrchestrator(store, humata, VerifyOptions(timeout=600))
        report = await verifier.run()
    """

    def __init__(
        self,
        store: IRecordStore,
        importer: IRemoteImporter,
        options: VerifyOptions,
        events: Optional[EventEmitter] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._store = store
        self._importer = importer
        self._options = options
        self._events = events or EventEmitter()
        self._clock = clock
        self._sleep = sleep

    async def run(self) -> VerificationReport:
        report = VerificationReport()
        await self._events.emit(PHASE_START, "verify")

        started = self._clock()
        deadline = started + self._options.timeout
        candidates = await self._store.verification_candidates()
        if not candidates:
            logger.info("[verify] No uploaded files waiting for processing")
        else:
            logger.info(
                "[verify] Monitoring %d files (poll every %ss, timeout %ss)",
                len(candidates),
                self._options.poll_interval,
                self._options.timeout,
            )

        while candidates:
            report.iterations += 1
            for start in range(0, len(candidates), self._options.batch_size):
                if self._clock() >= deadline:
                    break
                batch = candidates[start:start + self._options.batch_size]
                await self._check_batch(batch, report)

            candidates = await self._store.verification_candidates()
            if not candidates:
                break

            remaining = deadline - self._clock()
            if remaining <= 0:
                report.timed_out = True
                break

            logger.info(
                "[verify] %d files still processing, next check in %ss",
                len(candidates),
                min(self._options.poll_interval, remaining),
            )
            await self._sleep(min(self._options.poll_interval, remaining))
            if self._clock() >= deadline:
                report.timed_out = True
                break

        report.still_pending = len(candidates)
        report.duration = self._clock() - started
        if report.timed_out:
            logger.warning(
                "[verify] Timed out after %.0fs with %d files still processing",
                report.duration,
                report.still_pending,
            )
        logger.info(
            "[verify] Summary: %d completed, %d failed, %d still pending, %d check errors",
            report.completed,
            report.failed,
            report.still_pending,
            report.check_errors,
        )
        await self._events.emit(PHASE_COMPLETE, "verify", report)
        return report

    async def _check_batch(self, batch: List[FileRecord], report: VerificationReport) -> None:
        outcomes = await asyncio.gather(
            *(self._check(record, report) for record in batch),
            return_exceptions=True,
        )
        for record, outcome in zip(batch, outcomes):
            if isinstance(outcome, StorageError):
                raise outcome
            if isinstance(outcome, BaseException):
                report.check_errors += 1
                logger.warning("[verify] Unexpected error checking %s: %s", record.name, outcome)

    async def _check(self, record: FileRecord, report: VerificationReport) -> None:
        try:
            remote = await self._importer.get_status(record.destination_id)
        except StorageError:
            raise
        except Exception as exc:
            error = classify_error(exc)
            message = describe_error(error)
            await self._store.record_verification_error(
                record.external_id,
                message,
                ResponsePayload.failure(message, status_code=error.status_code),
            )
            report.check_errors += 1
            logger.warning("[verify] Status check failed for %s: %s", record.name, message)
            return

        observed = map_remote_status(remote.status)
        status = advance_status(record.processing_status, observed)
        if status is ProcessingStatus.FAILED:
            payload = ResponsePayload.failure(
                remote.message or f"remote status {remote.status}", data=remote.payload
            )
        else:
            payload = ResponsePayload.success(remote.payload)

        applied = await self._store.record_verification(record.external_id, status, payload)
        if not applied:
            logger.debug("[verify] %s already reached a terminal status", record.name)
            return

        if status is ProcessingStatus.COMPLETED:
            report.completed += 1
            report.results.append(ItemResult.ok(record, record.destination_id))
            logger.info("[verify] ✓ %s processed", record.name)
            await self._events.emit(RECORD_VERIFIED, record, status)
        elif status is ProcessingStatus.FAILED:
            report.failed += 1
            report.results.append(ItemResult.fail(record, payload.error))
            logger.error("[verify] ✗ %s failed processing: %s", record.name, payload.error)
            await self._events.emit(RECORD_VERIFIED, record, status)
        elif status is not record.processing_status:
            logger.debug("[verify] %s is %s", record.name, status.value)
