"""Workflow Sequencer - runs discover, upload and verify in order."""
from __future__ import annotations

import logging
from typing import Iterable, Optional, Tuple

from ..errors import ValidationError
from ..models import ImportConfig
from ..protocols import IRecordStore, IRemoteImporter, ISourceLister
from ..use_cases.retry import describe_error
from ..utils.events import EventEmitter, WORKFLOW_COMPLETE, WORKFLOW_HALTED
from .discovery import DiscoveryIngestor
from .models import WorkflowResult
from .upload import UploadOrchestrator
from .verification import VerificationOrchestrator

logger = logging.getLogger(__name__)

PHASES: Tuple[str, ...] = ("discover", "upload", "verify")


class WorkflowSequencer:
    """
    Coordinates the three phases over one record store.

    A failing phase halts the workflow; the store keeps everything done so
    far, so re-running the same phases resumes from where it stopped.

    Usage:
        async with RecordStore(config.database_path) as store:
            sequencer = WorkflowSequencer(store, drive, humata, config)
            result = await sequencer.run()
            if not result.success:
                print(f"halted in {result.halted_phase}: {result.error}")
    """

    def __init__(
        self,
        store: IRecordStore,
        lister: Optional[ISourceLister],
        importer: Optional[IRemoteImporter],
        config: ImportConfig,
        events: Optional[EventEmitter] = None,
    ):
        self._store = store
        self._lister = lister
        self._importer = importer
        self._config = config
        self._events = events or EventEmitter()

    @property
    def events(self) -> EventEmitter:
        return self._events

    def discovery(self) -> DiscoveryIngestor:
        return DiscoveryIngestor(self._store, self._lister, self._config.discover, self._events)

    def uploader(self) -> UploadOrchestrator:
        return UploadOrchestrator(self._store, self._importer, self._config.upload, self._events)

    def verifier(self) -> VerificationOrchestrator:
        return VerificationOrchestrator(self._store, self._importer, self._config.verify, self._events)

    async def run(self, phases: Iterable[str] = PHASES) -> WorkflowResult:
        """
        Run ``phases`` (a subset of discover/upload/verify) in canonical order.

        Configuration is validated up front; a ValidationError is raised
        before any phase touches the store.
        """
        requested = set(phases)
        selected = tuple(p for p in PHASES if p in requested)
        unknown = requested - set(PHASES)
        if unknown:
            raise ValidationError(f"unknown phase(s): {', '.join(sorted(unknown))}")
        self._config.validate(selected)

        result = WorkflowResult()
        logger.info("Starting import workflow: %s", " -> ".join(selected))

        for phase in selected:
            try:
                if phase == "discover":
                    result.discovery = await self.discovery().run()
                elif phase == "upload":
                    uploader = self.uploader()
                    if self._config.upload.retry_failed:
                        result.upload = await uploader.retry_failed()
                    else:
                        result.upload = await uploader.run()
                else:
                    result.verification = await self.verifier().run()
            except Exception as exc:
                result.halted_phase = phase
                result.error = describe_error(exc)
                logger.error("Workflow halted during %s: %s", phase, result.error)
                logger.info("Progress is saved in %s; re-run to resume", self._store.database_path)
                await self._events.emit(WORKFLOW_HALTED, phase, exc)
                return result

        logger.info("Import workflow completed")
        await self._events.emit(WORKFLOW_COMPLETE, result)
        return result
