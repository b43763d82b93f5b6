"""Orchestrator data models."""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from ..models import FileRecord


class ItemStatus(Enum):
    """Outcome of one record within a phase."""
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class ItemResult:
    """Immutable per-record result collected into a phase report."""
    external_id: str
    name: str
    status: ItemStatus = ItemStatus.SUCCESS
    destination_id: Optional[str] = None
    attempts: int = 0
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == ItemStatus.SUCCESS

    @classmethod
    def ok(cls, record: FileRecord, destination_id: Optional[str] = None, attempts: int = 0):
        return cls(
            external_id=record.external_id,
            name=record.name,
            status=ItemStatus.SUCCESS,
            destination_id=destination_id,
            attempts=attempts,
        )

    @classmethod
    def fail(cls, record: FileRecord, error: str, attempts: int = 0):
        return cls(
            external_id=record.external_id,
            name=record.name,
            status=ItemStatus.FAILED,
            attempts=attempts,
            error=error,
        )

    @classmethod
    def skipped(cls, record: FileRecord, reason: str):
        return cls(
            external_id=record.external_id,
            name=record.name,
            status=ItemStatus.SKIPPED,
            error=reason,
        )


@dataclass
class UploadJob:
    """Queue entry of the upload worker pool."""
    record: FileRecord
    attempt: int = 1


@dataclass
class DiscoveryReport:
    """Result of the discovery phase."""
    seen: int = 0
    added: int = 0
    existing: int = 0
    duplicates: int = 0
    errors: List[ItemResult] = field(default_factory=list)
    listing_error: Optional[str] = None
    timed_out: bool = False

    @property
    def complete(self) -> bool:
        return self.listing_error is None and not self.timed_out


@dataclass
class UploadReport:
    """Result of the upload phase."""
    results: List[ItemResult] = field(default_factory=list)
    requeued: int = 0
    reclaimed: int = 0

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def uploaded(self) -> int:
        return sum(1 for r in self.results if r.status == ItemStatus.SUCCESS)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.status == ItemStatus.FAILED)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.status == ItemStatus.SKIPPED)

    @property
    def all_success(self) -> bool:
        return self.failed == 0


@dataclass
class VerificationReport:
    """Partial-completion summary of the verification phase."""
    completed: int = 0
    failed: int = 0
    still_pending: int = 0
    check_errors: int = 0
    iterations: int = 0
    timed_out: bool = False
    duration: float = 0.0
    results: List[ItemResult] = field(default_factory=list)

    @property
    def finished(self) -> bool:
        return self.still_pending == 0


@dataclass
class WorkflowResult:
    """Result of a sequenced run of the three phases."""
    discovery: Optional[DiscoveryReport] = None
    upload: Optional[UploadReport] = None
    verification: Optional[VerificationReport] = None
    halted_phase: Optional[str] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.halted_phase is None
