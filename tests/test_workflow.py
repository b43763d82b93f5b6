"""Tests for the workflow sequencer."""
from unittest.mock import AsyncMock

import pytest

from drive_import.errors import SourceListingError, StorageError, ValidationError
from drive_import.models import (
    DiscoverOptions,
    ImportConfig,
    ProcessingStatus,
    UploadOptions,
    UploadStatus,
    VerifyOptions,
)
from drive_import.orchestrator.workflow import WorkflowSequencer
from drive_import.protocols import ImportReceipt, RemoteStatus

from conftest import make_file

FOLDER_URL = "https://drive.google.com/drive/folders/folder123"


class FakeLister:
    def __init__(self, items, error=None):
        self.items = items
        self.error = error

    async def list_files(self, container_ref, recursive=True, max_items=None):
        for item in self.items:
            yield item
        if self.error:
            raise self.error


def _config(tmp_path, **upload):
    return ImportConfig(
        database_path=tmp_path / "session.db",
        discover=DiscoverOptions(source_url=FOLDER_URL),
        upload=UploadOptions(folder_id="folder-1", retry_delay=0.0, **upload),
        verify=VerifyOptions(poll_interval=0.0, timeout=5.0),
    )


def _importer():
    importer = AsyncMock()
    importer.upload = AsyncMock(side_effect=lambda url, folder_id: ImportReceipt(f"d-{url[-20:]}"))
    importer.get_status = AsyncMock(return_value=RemoteStatus("SUCCESS"))
    return importer


class TestWorkflowSequencer:
    @pytest.mark.asyncio
    async def test_runs_all_phases(self, store, tmp_path):
        lister = FakeLister([make_file("A"), make_file("B")])
        sequencer = WorkflowSequencer(store, lister, _importer(), _config(tmp_path))

        result = await sequencer.run()

        assert result.success
        assert result.discovery.added == 2
        assert result.upload.uploaded == 2
        assert result.verification.completed == 2
        record = await store.get("B")
        assert record.upload_status is UploadStatus.COMPLETED
        assert record.processing_status is ProcessingStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_validation_happens_before_any_phase(self, store, tmp_path):
        config = _config(tmp_path)
        config = ImportConfig(
            database_path=config.database_path,
            discover=config.discover,
            upload=UploadOptions(folder_id=""),
        )
        lister = FakeLister([make_file("A")])
        sequencer = WorkflowSequencer(store, lister, _importer(), config)

        with pytest.raises(ValidationError):
            await sequencer.run()
        assert await store.count() == 0

    @pytest.mark.asyncio
    async def test_single_phase_only_validates_its_options(self, store, tmp_path):
        config = ImportConfig(database_path=tmp_path / "session.db")
        importer = _importer()
        result = await WorkflowSequencer(store, None, importer, config).run(["verify"])
        assert result.success
        assert result.discovery is None
        assert result.upload is None

    @pytest.mark.asyncio
    async def test_unknown_phase_is_rejected(self, store, tmp_path):
        with pytest.raises(ValidationError):
            await WorkflowSequencer(store, None, _importer(), _config(tmp_path)).run(["publish"])

    @pytest.mark.asyncio
    async def test_storage_failure_halts_and_keeps_state(self, store, tmp_path):
        lister = FakeLister([make_file("A")])
        importer = _importer()
        sequencer = WorkflowSequencer(store, lister, importer, _config(tmp_path))
        store.complete_upload = AsyncMock(side_effect=StorageError("disk full"))

        result = await sequencer.run()

        assert not result.success
        assert result.halted_phase == "upload"
        assert "disk full" in result.error
        assert result.verification is None
        importer.get_status.assert_not_awaited()
        assert await store.exists("A")

    @pytest.mark.asyncio
    async def test_partial_listing_still_runs_later_phases(self, store, tmp_path):
        lister = FakeLister([make_file("A")], error=SourceListingError("quota", status_code=403))
        result = await WorkflowSequencer(store, lister, _importer(), _config(tmp_path)).run()

        assert result.success
        assert result.discovery.listing_error == "quota"
        assert result.upload.uploaded == 1

    @pytest.mark.asyncio
    async def test_rerun_resumes_without_reuploading(self, store, tmp_path):
        lister = FakeLister([make_file("A")])
        importer = _importer()
        config = _config(tmp_path)
        await WorkflowSequencer(store, lister, importer, config).run()

        result = await WorkflowSequencer(store, lister, importer, config).run()

        assert result.discovery.existing == 1
        assert result.upload.total == 0
        assert importer.upload.await_count == 1
