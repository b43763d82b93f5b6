"""Tests for retry, deduplication and status-mapping use cases."""
import asyncio

import httpx
import pytest

from drive_import.errors import PermanentError, RemoteServiceError, TransientError
from drive_import.models import DuplicateStrategy, FileRecord, ProcessingStatus, UploadOptions
from drive_import.use_cases import (
    ResolveDuplicateUseCase,
    ResolveRetryUseCase,
    advance_status,
    classify_error,
    describe_error,
    is_upload_eligible,
    map_remote_status,
)


class TestClassifyError:
    @pytest.mark.parametrize("code", [None, 429, 500, 502, 503])
    def test_transient_codes(self, code):
        assert isinstance(classify_error(RemoteServiceError("x", status_code=code)), TransientError)

    @pytest.mark.parametrize("code", [400, 401, 403, 404, 422])
    def test_permanent_codes(self, code):
        error = classify_error(RemoteServiceError("x", status_code=code))
        assert isinstance(error, PermanentError)
        assert error.status_code == code

    def test_network_errors_are_transient(self):
        assert isinstance(classify_error(httpx.ReadTimeout("slow")), TransientError)
        assert isinstance(classify_error(asyncio.TimeoutError()), TransientError)
        assert isinstance(classify_error(ConnectionResetError()), TransientError)

    def test_unknown_exceptions_are_permanent(self):
        assert isinstance(classify_error(KeyError("id")), PermanentError)

    def test_already_classified_errors_pass_through(self):
        error = TransientError("x", status_code=503)
        assert classify_error(error) is error

    def test_describe_error(self):
        assert describe_error(RemoteServiceError("bad", status_code=400)) == "(400) bad"
        assert describe_error(None) == ""
        assert describe_error(asyncio.TimeoutError()).startswith("TimeoutError")


class TestResolveRetryUseCase:
    def test_retries_transient_until_last_attempt(self):
        use_case = ResolveRetryUseCase(UploadOptions(max_retries=3, retry_delay=2.0))
        error = RemoteServiceError("down", status_code=503)

        first = use_case.execute(error, 1)
        second = use_case.execute(error, 2)
        third = use_case.execute(error, 3)

        assert first.should_retry and first.delay == 2.0
        assert second.should_retry and second.delay == 4.0
        assert not third.should_retry

    def test_permanent_is_never_retried(self):
        use_case = ResolveRetryUseCase(UploadOptions(max_retries=3))
        decision = use_case.execute(RemoteServiceError("bad", status_code=400), 1)
        assert decision.action == "fail"

    def test_single_attempt_never_retries(self):
        use_case = ResolveRetryUseCase(UploadOptions(max_retries=1))
        assert not use_case.execute(TransientError("x"), 1).should_retry


def _record(duplicate_of=None):
    return FileRecord(id=1, external_id="B", name="b.pdf", url="u", duplicate_of_external_id=duplicate_of)


class TestDeduplicationUseCase:
    def test_non_duplicates_are_always_eligible(self):
        for strategy in DuplicateStrategy:
            assert is_upload_eligible(_record(), strategy)

    def test_skip_excludes_duplicates(self):
        assert not is_upload_eligible(_record("A"), DuplicateStrategy.SKIP)
        assert is_upload_eligible(_record("A"), DuplicateStrategy.UPLOAD)
        assert is_upload_eligible(_record("A"), DuplicateStrategy.REPLACE)

    def test_decisions(self):
        assert ResolveDuplicateUseCase.execute(None, DuplicateStrategy.SKIP).reason == "no_duplicate"
        skipped = ResolveDuplicateUseCase.execute("A", DuplicateStrategy.SKIP)
        assert skipped.reason == "duplicate_skipped"
        assert not skipped.upload_eligible
        assert ResolveDuplicateUseCase.execute("A", DuplicateStrategy.REPLACE).action == "replace"
        uploaded = ResolveDuplicateUseCase.execute("A", DuplicateStrategy.UPLOAD)
        assert uploaded.reason == "duplicate_uploaded"
        assert uploaded.duplicate_of == "A"


class TestStatusMapping:
    @pytest.mark.parametrize(
        "remote,expected",
        [
            ("PENDING", ProcessingStatus.PENDING),
            ("PROCESSING", ProcessingStatus.PROCESSING),
            ("SUCCESS", ProcessingStatus.COMPLETED),
            ("completed", ProcessingStatus.COMPLETED),
            ("FAILED", ProcessingStatus.FAILED),
            ("ERROR", ProcessingStatus.FAILED),
            ("SOMETHING_NEW", ProcessingStatus.PENDING),
            (None, ProcessingStatus.PENDING),
        ],
    )
    def test_map_remote_status(self, remote, expected):
        assert map_remote_status(remote) is expected

    def test_advance_is_forward_only(self):
        assert advance_status(None, ProcessingStatus.PENDING) is ProcessingStatus.PENDING
        assert advance_status(ProcessingStatus.PROCESSING, ProcessingStatus.PENDING) is ProcessingStatus.PROCESSING
        assert advance_status(ProcessingStatus.PENDING, ProcessingStatus.FAILED) is ProcessingStatus.FAILED
        assert advance_status(ProcessingStatus.COMPLETED, ProcessingStatus.FAILED) is ProcessingStatus.COMPLETED
        assert advance_status(ProcessingStatus.FAILED, ProcessingStatus.PROCESSING) is ProcessingStatus.FAILED
