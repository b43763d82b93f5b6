"""Services for drive_import module."""
from .fingerprint import DuplicateDetector, fingerprint
from .gdrive_client import GoogleDriveClient
from .humata_client import HumataClient
from .rate_limiter import RateLimiter
from .store import RecordStore

__all__ = [
    "DuplicateDetector",
    "fingerprint",
    "GoogleDriveClient",
    "HumataClient",
    "RateLimiter",
    "RecordStore",
]
