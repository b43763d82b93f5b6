"""Tests for drive_import models."""
from datetime import datetime, timezone

import pytest

from drive_import.errors import ValidationError
from drive_import.models import (
    DiscoverOptions,
    DuplicateStrategy,
    FileRecord,
    ImportConfig,
    ProcessingStatus,
    ResponsePayload,
    UploadOptions,
    VerifyOptions,
)
from drive_import.orchestrator.models import ItemResult, ItemStatus, UploadReport


def _config(**kwargs):
    defaults = dict(
        discover=DiscoverOptions(source_url="https://drive.google.com/drive/folders/F1"),
        upload=UploadOptions(folder_id="folder-1"),
    )
    defaults.update(kwargs)
    return ImportConfig(**defaults)


class TestResponsePayload:
    def test_success_payload(self):
        when = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        payload = ResponsePayload.success({"id": "doc"}, attempts=2, last_attempt=when)
        assert payload.ok
        assert payload.to_dict() == {
            "kind": "success",
            "attempts": 2,
            "last_attempt": "2024-01-02T03:04:05+00:00",
            "data": {"id": "doc"},
        }

    def test_failure_payload(self):
        payload = ResponsePayload.failure("bad", status_code=400, attempts=1)
        assert not payload.ok
        doc = payload.to_dict()
        assert doc["error"] == "bad"
        assert doc["status_code"] == 400

    def test_from_dict_accepts_documents_without_kind(self):
        assert ResponsePayload.from_dict(None) is None
        assert not ResponsePayload.from_dict({"error": "x", "attempts": 3}).ok
        assert ResponsePayload.from_dict({"attempts": "2"}).attempts == 2

    def test_from_dict_restores_to_dict(self):
        payload = ResponsePayload.failure("bad", status_code=503, attempts=3, data={"raw": 1})
        assert ResponsePayload.from_dict(payload.to_dict()) == payload


class TestFileRecord:
    def test_duplicate_and_attempts(self):
        record = FileRecord(
            id=1,
            external_id="B",
            name="b.pdf",
            url="u",
            duplicate_of_external_id="A",
            import_response=ResponsePayload.failure("x", attempts=2),
        )
        assert record.is_duplicate
        assert record.upload_attempts == 2

    def test_immutable(self):
        record = FileRecord(id=1, external_id="A", name="a", url="u")
        with pytest.raises(Exception):
            record.name = "b"

    def test_terminal_processing_statuses(self):
        assert ProcessingStatus.COMPLETED.is_terminal
        assert ProcessingStatus.FAILED.is_terminal
        assert not ProcessingStatus.PROCESSING.is_terminal


class TestImportConfig:
    def test_defaults(self):
        config = ImportConfig()
        assert config.requests_per_minute == 120
        assert config.upload.workers == 4
        assert config.upload.max_retries == 3
        assert config.verify.poll_interval == 10.0
        assert config.verify.timeout == 1800.0
        assert config.discover.timeout == 300.0

    def test_valid_config(self):
        _config().validate()

    def test_missing_folder_id(self):
        with pytest.raises(ValidationError, match="folder id"):
            _config(upload=UploadOptions()).validate()

    def test_missing_source_url(self):
        with pytest.raises(ValidationError, match="source"):
            _config(discover=DiscoverOptions()).validate()

    def test_validation_is_scoped_to_phases(self):
        ImportConfig().validate(("verify",))
        with pytest.raises(ValidationError):
            ImportConfig().validate(("upload",))

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"upload": UploadOptions(folder_id="f", workers=0)},
            {"upload": UploadOptions(folder_id="f", max_retries=0)},
            {"upload": UploadOptions(folder_id="f", max_workers=0)},
            {"upload": UploadOptions(folder_id="f", stale_claim_after=-1)},
            {"verify": VerifyOptions(timeout=0)},
            {"verify": VerifyOptions(batch_size=0)},
            {"requests_per_minute": 0},
        ],
    )
    def test_non_positive_values(self, kwargs):
        with pytest.raises(ValidationError):
            _config(**kwargs).validate()

    def test_with_strategy_applies_to_both_phases(self):
        config = _config().with_strategy(DuplicateStrategy.REPLACE)
        assert config.discover.duplicate_strategy is DuplicateStrategy.REPLACE
        assert config.upload.duplicate_strategy is DuplicateStrategy.REPLACE


class TestReports:
    def test_upload_report_counts(self):
        record = FileRecord(id=1, external_id="A", name="a", url="u")
        report = UploadReport(results=[
            ItemResult.ok(record, "d", attempts=1),
            ItemResult.fail(record, "boom", attempts=3),
            ItemResult.skipped(record, "not pending"),
        ])
        assert (report.total, report.uploaded, report.failed, report.skipped) == (3, 1, 1, 1)
        assert not report.all_success
        assert report.results[2].status is ItemStatus.SKIPPED
