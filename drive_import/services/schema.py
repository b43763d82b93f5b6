"""Table definition for the file import record store."""
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite stores no timezone)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class FileRecordRow(Base):
    __tablename__ = "file_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    external_id = Column(String, nullable=False, unique=True)

    # Metadata at discovery time
    name = Column(String, nullable=False)
    url = Column(String, nullable=False)
    size = Column(Integer, nullable=True)
    mime_type = Column(String, nullable=True)

    # Duplicate detection
    file_hash = Column(String, nullable=True)
    duplicate_of_external_id = Column(String, nullable=True)

    # Remote side
    destination_folder_id = Column(String, nullable=True)
    destination_id = Column(String, nullable=True)
    # Lease of the upload run working on the row
    claimed_by = Column(String, nullable=True)
    claimed_at = Column(DateTime, nullable=True)

    # Status flow: pending → uploading → completed | failed
    upload_status = Column(String, nullable=False, default="pending")
    # Status flow: pending → processing → completed | failed
    processing_status = Column(String, nullable=True)

    last_error = Column(Text, nullable=True)
    import_response = Column(JSON, nullable=True)
    verification_response = Column(JSON, nullable=True)

    # Timestamps
    discovered_at = Column(DateTime, nullable=False, default=utcnow)
    uploaded_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    last_checked_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_file_records_hash_discovered", "file_hash", "discovered_at", "id"),
        Index("idx_file_records_upload_status", "upload_status"),
        Index("idx_file_records_processing_status", "processing_status"),
        Index("idx_file_records_destination_id", "destination_id"),
    )
