"""
Protocols (Interfaces) for Dependency Inversion.

Small, focused interfaces for the two external collaborators and the
record store the orchestrators depend on.
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, runtime_checkable

from .models import (
    DiscoveredFile,
    DuplicateGroup,
    DuplicateStrategy,
    FileRecord,
    ProcessingStatus,
    ResponsePayload,
)


@dataclass(frozen=True)
class ImportReceipt:
    """Successful answer of the remote importer to an upload request."""
    destination_id: str
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RemoteStatus:
    """Raw processing status reported by the remote importer."""
    status: Optional[str]
    message: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class ISourceLister(Protocol):
    """Interface for listing files in an external content source."""

    def list_files(
        self,
        container_ref: str,
        recursive: bool = True,
        max_items: Optional[int] = None,
    ) -> AsyncIterator[DiscoveredFile]:
        """Lazily yield discovered files."""
        ...


@runtime_checkable
class IRemoteImporter(Protocol):
    """Interface for the remote content-processing service."""

    async def upload(self, url: str, destination_folder_id: str) -> ImportReceipt:
        """Ask the remote service to import the file at ``url``."""
        ...

    async def get_status(self, destination_id: str) -> RemoteStatus:
        """Fetch processing status of an imported file."""
        ...


@runtime_checkable
class IRecordStore(Protocol):
    """Interface for the durable table of file import records."""

    @property
    def database_path(self) -> Path:
        ...

    async def exists(self, external_id: str) -> bool:
        ...

    async def find_duplicate(
        self, file_hash: str, excluding_external_id: Optional[str] = None
    ) -> Optional[FileRecord]:
        ...

    async def duplicate_groups(self) -> List[DuplicateGroup]:
        ...

    async def insert_discovered(
        self,
        item: DiscoveredFile,
        file_hash: Optional[str],
        duplicate_of: Optional[str],
    ) -> bool:
        ...

    async def get(self, external_id: str) -> Optional[FileRecord]:
        ...

    async def pending_records(
        self, strategy: DuplicateStrategy = DuplicateStrategy.SKIP
    ) -> List[FileRecord]:
        ...

    async def mark_uploading(
        self, external_id: str, destination_folder_id: str, run_id: Optional[str] = None
    ) -> bool:
        ...

    async def renew_claim(self, external_id: str, run_id: Optional[str]) -> bool:
        ...

    async def requeue_failed(self) -> int:
        ...

    async def reclaim_interrupted_uploads(self, stale_after: float = 0.0) -> int:
        ...

    async def record_upload_attempt(self, external_id: str, payload: ResponsePayload) -> bool:
        ...

    async def complete_upload(
        self, external_id: str, destination_id: str, payload: ResponsePayload
    ) -> bool:
        ...

    async def fail_upload(self, external_id: str, error: str, payload: ResponsePayload) -> bool:
        ...

    async def verification_candidates(self, limit: Optional[int] = None) -> List[FileRecord]:
        ...

    async def record_verification(
        self,
        external_id: str,
        status: ProcessingStatus,
        payload: ResponsePayload,
    ) -> bool:
        ...

    async def record_verification_error(
        self, external_id: str, error: str, payload: ResponsePayload
    ) -> bool:
        ...
