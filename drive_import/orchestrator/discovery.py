"""
Discovery Ingestor - turns listed source files into record store rows.

Re-discovery is idempotent: an ``external_id`` already in the store is
left untouched. Each new row is fingerprinted and linked to the
earliest-discovered record sharing its fingerprint.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import AsyncIterable, Optional

from ..errors import SourceListingError, StorageError, ValidationError
from ..models import DiscoveredFile, DiscoverOptions
from ..protocols import IRecordStore, ISourceLister
from ..services.fingerprint import DuplicateDetector, fingerprint
from ..use_cases.deduplication import ResolveDuplicateUseCase
from ..use_cases.retry import describe_error
from ..utils.events import EventEmitter, PHASE_COMPLETE, PHASE_START, RECORD_DISCOVERED
from ..utils.urls import build_proxy_url, optimize_import_url
from .models import DiscoveryReport, ItemResult, ItemStatus

logger = logging.getLogger(__name__)


class DiscoveryIngestor:
    """
    Ingests discovered files into the record store.

    Usage:
        ingestor = DiscoveryIngestor(store, drive, DiscoverOptions(source_url=url))
        report = await ingestor.run()
    """

    def __init__(
        self,
        store: IRecordStore,
        lister: Optional[ISourceLister],
        options: DiscoverOptions,
        events: Optional[EventEmitter] = None,
    ):
        self._store = store
        self._lister = lister
        self._options = options
        self._events = events or EventEmitter()
        self._detector = DuplicateDetector(store)

    async def run(self) -> DiscoveryReport:
        """List the configured source and ingest it within the discovery deadline."""
        if self._lister is None:
            raise ValidationError("no source lister configured")

        report = DiscoveryReport()
        await self._events.emit(PHASE_START, "discover")
        items = self._lister.list_files(
            self._options.source_url,
            recursive=self._options.recursive,
            max_items=self._options.max_files,
        )
        try:
            await asyncio.wait_for(self.ingest(items, report), timeout=self._options.timeout)
        except asyncio.TimeoutError:
            report.timed_out = True
            logger.warning(
                "[discover] Timed out after %ss; %d files ingested so far",
                self._options.timeout,
                report.added,
            )

        logger.info(
            "[discover] Summary: %d seen, %d added, %d existing, %d duplicates, %d errors",
            report.seen,
            report.added,
            report.existing,
            report.duplicates,
            len(report.errors),
        )
        await self._events.emit(PHASE_COMPLETE, "discover", report)
        return report

    async def ingest(
        self, items: AsyncIterable[DiscoveredFile], report: Optional[DiscoveryReport] = None
    ) -> DiscoveryReport:
        """
        Consume ``items`` into the store.

        A listing failure stops consumption but keeps what was ingested
        before it. Validation and storage errors propagate.
        """
        report = report if report is not None else DiscoveryReport()
        try:
            async for item in items:
                report.seen += 1
                try:
                    await self._ingest_one(item, report)
                except (StorageError, ValidationError):
                    raise
                except Exception as exc:
                    error = describe_error(exc)
                    logger.warning("[discover] Could not ingest %s (%s): %s", item.name, item.external_id, error)
                    report.errors.append(
                        ItemResult(
                            external_id=item.external_id,
                            name=item.name,
                            status=ItemStatus.FAILED,
                            error=error,
                        )
                    )
        except SourceListingError as exc:
            report.listing_error = describe_error(exc)
            logger.error("[discover] Listing failed, keeping %d files listed so far: %s", report.seen, exc)
        return report

    async def _ingest_one(self, item: DiscoveredFile, report: DiscoveryReport) -> None:
        if await self._store.exists(item.external_id):
            report.existing += 1
            logger.debug("[discover] Skipping existing file: %s", item.name)
            return

        file_hash = fingerprint(item.size, item.name, item.mime_type)
        match = await self._detector.find_duplicate(file_hash, item.external_id)
        duplicate_of = match.external_id if match else None

        inserted = await self._store.insert_discovered(
            replace(item, url=self._resolve_url(item)),
            file_hash,
            duplicate_of,
        )
        if not inserted:
            report.existing += 1
            return

        report.added += 1
        if match:
            report.duplicates += 1
            decision = ResolveDuplicateUseCase.execute(duplicate_of, self._options.duplicate_strategy)
            logger.info(
                "[discover] Duplicate detected: %s (same as %s) -> %s",
                item.name,
                match.name,
                decision.reason,
            )
        await self._events.emit(RECORD_DISCOVERED, item, duplicate_of)

    def _resolve_url(self, item: DiscoveredFile) -> str:
        if self._options.url_domain:
            return build_proxy_url(item.external_id, item.name, self._options.url_domain)
        return optimize_import_url(item.url)
