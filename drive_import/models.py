"""
Models for drive_import.

Immutable dataclasses for records, discovered files and per-phase options.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from .errors import ValidationError


class UploadStatus(str, Enum):
    """Upload phase status of a record."""
    PENDING = "pending"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"


class ProcessingStatus(str, Enum):
    """Remote processing status of an uploaded record."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ProcessingStatus.COMPLETED, ProcessingStatus.FAILED)


class DuplicateStrategy(str, Enum):
    """What the upload phase does with records flagged as duplicates."""
    SKIP = "skip"
    UPLOAD = "upload"
    REPLACE = "replace"


@dataclass(frozen=True)
class DiscoveredFile:
    """File descriptor produced by a source lister."""
    external_id: str
    name: str
    url: str
    mime_type: Optional[str] = None
    size: Optional[int] = None


@dataclass(frozen=True)
class ResponsePayload:
    """
    Diagnostic document stored in ``import_response`` / ``verification_response``.

    Tagged as either a success or a failure. ``attempts``, ``last_attempt``,
    ``error`` and ``status_code`` are the recognized fields; everything the
    remote side returned is kept verbatim under ``data``.
    """
    kind: str
    attempts: int = 0
    last_attempt: Optional[str] = None
    error: Optional[str] = None
    status_code: Optional[int] = None
    data: Dict[str, Any] = field(default_factory=dict)

    SUCCESS = "success"
    FAILURE = "failure"

    @property
    def ok(self) -> bool:
        return self.kind == self.SUCCESS

    @classmethod
    def success(cls, data: Optional[Dict[str, Any]] = None, attempts: int = 0,
                last_attempt: Optional[datetime] = None) -> "ResponsePayload":
        return cls(
            kind=cls.SUCCESS,
            attempts=attempts,
            last_attempt=last_attempt.isoformat() if last_attempt else None,
            data=dict(data or {}),
        )

    @classmethod
    def failure(cls, error: str, status_code: Optional[int] = None, attempts: int = 0,
                last_attempt: Optional[datetime] = None,
                data: Optional[Dict[str, Any]] = None) -> "ResponsePayload":
        return cls(
            kind=cls.FAILURE,
            attempts=attempts,
            last_attempt=last_attempt.isoformat() if last_attempt else None,
            error=error,
            status_code=status_code,
            data=dict(data or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        doc: Dict[str, Any] = {"kind": self.kind, "attempts": self.attempts}
        if self.last_attempt:
            doc["last_attempt"] = self.last_attempt
        if self.error is not None:
            doc["error"] = self.error
        if self.status_code is not None:
            doc["status_code"] = self.status_code
        if self.data:
            doc["data"] = self.data
        return doc

    @classmethod
    def from_dict(cls, doc: Optional[Dict[str, Any]]) -> Optional["ResponsePayload"]:
        if not doc:
            return None
        return cls(
            kind=doc.get("kind", cls.FAILURE if doc.get("error") else cls.SUCCESS),
            attempts=int(doc.get("attempts") or 0),
            last_attempt=doc.get("last_attempt"),
            error=doc.get("error"),
            status_code=doc.get("status_code"),
            data=dict(doc.get("data") or {}),
        )


@dataclass(frozen=True)
class FileRecord:
    """Read model of one row of the record store."""
    id: int
    external_id: str
    name: str
    url: str
    size: Optional[int] = None
    mime_type: Optional[str] = None
    file_hash: Optional[str] = None
    duplicate_of_external_id: Optional[str] = None
    destination_folder_id: Optional[str] = None
    destination_id: Optional[str] = None
    upload_status: UploadStatus = UploadStatus.PENDING
    processing_status: Optional[ProcessingStatus] = None
    last_error: Optional[str] = None
    import_response: Optional[ResponsePayload] = None
    verification_response: Optional[ResponsePayload] = None
    discovered_at: Optional[datetime] = None
    uploaded_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_checked_at: Optional[datetime] = None
    claimed_at: Optional[datetime] = None

    @property
    def is_duplicate(self) -> bool:
        return self.duplicate_of_external_id is not None

    @property
    def upload_attempts(self) -> int:
        return self.import_response.attempts if self.import_response else 0


@dataclass(frozen=True)
class DuplicateMember:
    external_id: str
    name: str
    size: Optional[int]
    mime_type: Optional[str]
    discovered_at: Optional[datetime] = None


@dataclass(frozen=True)
class DuplicateGroup:
    """Records sharing one fingerprint, earliest-discovered member first."""
    file_hash: str
    members: tuple

    @property
    def count(self) -> int:
        return len(self.members)

    @property
    def external_ids(self) -> list:
        return [m.external_id for m in self.members]

    @property
    def original(self) -> DuplicateMember:
        return self.members[0]


# =========================================================================
# Configuration
# =========================================================================

DEFAULT_DATABASE = Path("./import_session.db")
DEFAULT_REQUESTS_PER_MINUTE = 120
MAX_UPLOAD_WORKERS = 16


@dataclass(frozen=True)
class DiscoverOptions:
    """Options for the discovery phase."""
    source_url: str = ""
    recursive: bool = True
    max_files: Optional[int] = None
    timeout: float = 300.0
    duplicate_strategy: DuplicateStrategy = DuplicateStrategy.SKIP
    url_domain: Optional[str] = None  # build DOMAIN/FILE_ID/FILE_NAME urls when set


@dataclass(frozen=True)
class UploadOptions:
    """Options for the upload phase."""
    folder_id: str = ""
    workers: int = 4
    max_retries: int = 3
    retry_delay: float = 5.0
    duplicate_strategy: DuplicateStrategy = DuplicateStrategy.SKIP
    retry_failed: bool = True
    max_workers: int = MAX_UPLOAD_WORKERS
    stale_claim_after: float = 900.0  # seconds before another run may reclaim an in-flight row

    @property
    def effective_workers(self) -> int:
        """Worker count clamped to ``[1, max_workers]``; ``max_workers`` never exceeds MAX_UPLOAD_WORKERS."""
        return max(1, min(self.workers, self.max_workers, MAX_UPLOAD_WORKERS))

    def backoff(self, attempt: int) -> float:
        """Linear backoff delay before retry number ``attempt``."""
        return self.retry_delay * attempt


@dataclass(frozen=True)
class VerifyOptions:
    """Options for the verification phase."""
    poll_interval: float = 10.0
    timeout: float = 1800.0
    batch_size: int = 10


@dataclass(frozen=True)
class ImportConfig:
    """Top-level configuration threaded into every phase."""
    database_path: Path = DEFAULT_DATABASE
    discover: DiscoverOptions = field(default_factory=DiscoverOptions)
    upload: UploadOptions = field(default_factory=UploadOptions)
    verify: VerifyOptions = field(default_factory=VerifyOptions)
    requests_per_minute: int = DEFAULT_REQUESTS_PER_MINUTE

    def with_strategy(self, strategy: DuplicateStrategy) -> "ImportConfig":
        """Apply one duplicate strategy to both discovery and upload options."""
        return replace(
            self,
            discover=replace(self.discover, duplicate_strategy=strategy),
            upload=replace(self.upload, duplicate_strategy=strategy),
        )

    def validate(self, phases: tuple = ("discover", "upload", "verify")) -> None:
        """Raise ValidationError when the options for ``phases`` are unusable."""
        if "discover" in phases:
            if not self.discover.source_url or not self.discover.source_url.strip():
                raise ValidationError("source folder URL is required")
            if self.discover.max_files is not None and self.discover.max_files <= 0:
                raise ValidationError("max_files must be positive")
            if self.discover.timeout <= 0:
                raise ValidationError("discovery timeout must be positive")
        if "upload" in phases:
            if not self.upload.folder_id or not self.upload.folder_id.strip():
                raise ValidationError("destination folder id is required")
            if self.upload.workers <= 0:
                raise ValidationError("workers must be positive")
            if self.upload.max_retries <= 0:
                raise ValidationError("max_retries must be positive")
            if self.upload.retry_delay < 0:
                raise ValidationError("retry_delay must not be negative")
            if self.upload.max_workers <= 0:
                raise ValidationError("max_workers must be positive")
            if self.upload.stale_claim_after < 0:
                raise ValidationError("stale_claim_after must not be negative")
        if "verify" in phases:
            if self.verify.poll_interval < 0:
                raise ValidationError("poll_interval must not be negative")
            if self.verify.timeout <= 0:
                raise ValidationError("verification timeout must be positive")
            if self.verify.batch_size <= 0:
                raise ValidationError("batch_size must be positive")
        if self.requests_per_minute <= 0:
            raise ValidationError("requests_per_minute must be positive")
