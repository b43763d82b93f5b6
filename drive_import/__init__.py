"""
drive_import - Bulk import of Google Drive folders into Humata.

Three resumable phases share one SQLite session database:
- discover: list a Drive folder, fingerprint files, flag duplicates
- upload: bounded worker pool with per-record retries and rate limiting
- verify: poll remote processing status until terminal or timeout

Usage:
    from drive_import import (
        GoogleDriveClient, HumataClient, ImportConfig, RecordStore, WorkflowSequencer,
    )

    async with RecordStore(config.database_path) as store, \\
            GoogleDriveClient(token) as drive, HumataClient(api_key) as humata:
        result = await WorkflowSequencer(store, drive, humata, config).run()
"""
from .errors import (
    ImporterError,
    PermanentError,
    RemoteServiceError,
    SourceListingError,
    StorageError,
    TransientError,
    ValidationError,
)
from .models import (
    DiscoveredFile,
    DiscoverOptions,
    DuplicateStrategy,
    FileRecord,
    ImportConfig,
    ProcessingStatus,
    UploadOptions,
    UploadStatus,
    VerifyOptions,
)
from .orchestrator import (
    DiscoveryIngestor,
    UploadOrchestrator,
    VerificationOrchestrator,
    WorkflowResult,
    WorkflowSequencer,
)
from .services import (
    DuplicateDetector,
    GoogleDriveClient,
    HumataClient,
    RateLimiter,
    RecordStore,
)

__version__ = "0.1.0"
__all__ = [
    # Main
    "WorkflowSequencer",
    "WorkflowResult",
    "DiscoveryIngestor",
    "UploadOrchestrator",
    "VerificationOrchestrator",
    # Models
    "DiscoveredFile",
    "FileRecord",
    "UploadStatus",
    "ProcessingStatus",
    "DuplicateStrategy",
    "ImportConfig",
    "DiscoverOptions",
    "UploadOptions",
    "VerifyOptions",
    # Services
    "RecordStore",
    "DuplicateDetector",
    "GoogleDriveClient",
    "HumataClient",
    "RateLimiter",
    # Errors
    "ImporterError",
    "ValidationError",
    "StorageError",
    "SourceListingError",
    "RemoteServiceError",
    "TransientError",
    "PermanentError",
]
