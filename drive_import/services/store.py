"""
Record Store - durable table of file import records.

Single source of truth for every phase. Each state transition is one
conditional UPDATE scoped to a single ``external_id``; the WHERE clause
carries the transition guard, so forward-only status changes and the
write-once ``destination_id`` are enforced by the database itself.
Every write returns whether the transition applied.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from pathlib import Path
from typing import Any, AsyncGenerator, Dict, List, Optional, Union

from sqlalchemy import event, func, or_, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from ..errors import StorageError
from ..models import (
    DiscoveredFile,
    DuplicateGroup,
    DuplicateMember,
    DuplicateStrategy,
    FileRecord,
    ProcessingStatus,
    ResponsePayload,
    UploadStatus,
)
from .schema import Base, FileRecordRow, utcnow

logger = logging.getLogger(__name__)

IN_FLIGHT_PROCESSING = (ProcessingStatus.PENDING.value, ProcessingStatus.PROCESSING.value)
TERMINAL_PROCESSING = (ProcessingStatus.COMPLETED.value, ProcessingStatus.FAILED.value)


def create_engine_for(database_path: Union[str, Path]) -> AsyncEngine:
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{database_path}",
        echo=False,
        connect_args={"timeout": 20},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_conn: Any, _connection_record: Any) -> None:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()

    return engine


def _to_record(row: FileRecordRow) -> FileRecord:
    return FileRecord(
        id=row.id,
        external_id=row.external_id,
        name=row.name,
        url=row.url,
        size=row.size,
        mime_type=row.mime_type,
        file_hash=row.file_hash,
        duplicate_of_external_id=row.duplicate_of_external_id,
        destination_folder_id=row.destination_folder_id,
        destination_id=row.destination_id,
        upload_status=UploadStatus(row.upload_status),
        processing_status=ProcessingStatus(row.processing_status) if row.processing_status else None,
        last_error=row.last_error,
        import_response=ResponsePayload.from_dict(row.import_response),
        verification_response=ResponsePayload.from_dict(row.verification_response),
        discovered_at=row.discovered_at,
        uploaded_at=row.uploaded_at,
        completed_at=row.completed_at,
        last_checked_at=row.last_checked_at,
        claimed_at=row.claimed_at,
    )


class RecordStore:
    """
    Async SQLite-backed record store.

    Usage:
        async with RecordStore("./import_session.db") as store:
            await store.insert_discovered(item, file_hash, None)
            pending = await store.pending_records()
    """

    def __init__(self, database_path: Union[str, Path], engine: Optional[AsyncEngine] = None):
        self._database_path = Path(database_path)
        self._engine = engine
        self._session_maker: Optional[async_sessionmaker[AsyncSession]] = None
        self._write_lock = asyncio.Lock()

    @property
    def database_path(self) -> Path:
        return self._database_path

    async def open(self) -> "RecordStore":
        """Create the engine and the schema if needed."""
        try:
            if self._engine is None:
                self._engine = create_engine_for(self._database_path)
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except (SQLAlchemyError, OSError) as exc:
            raise StorageError(f"cannot open record store {self._database_path}: {exc}") from exc
        self._session_maker = async_sessionmaker(
            self._engine, class_=AsyncSession, expire_on_commit=False
        )
        logger.debug("Record store opened at %s", self._database_path)
        return self

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_maker = None

    async def __aenter__(self) -> "RecordStore":
        return await self.open()

    async def __aexit__(self, *args) -> None:
        await self.close()

    @asynccontextmanager
    async def _session(self, read_only: bool = False) -> AsyncGenerator[AsyncSession, None]:
        if self._session_maker is None:
            raise StorageError("RecordStore not opened. Use 'async with' or call open().")
        async with self._session_maker() as session:
            try:
                yield session
                if not read_only:
                    await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise StorageError(f"record store error: {exc}") from exc
            except Exception:
                await session.rollback()
                raise

    async def _apply(self, external_id: str, *guards, **values) -> bool:
        """Run one guarded UPDATE against a single record."""
        stmt = (
            update(FileRecordRow)
            .where(FileRecordRow.external_id == external_id, *guards)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        async with self._write_lock:
            async with self._session() as session:
                result = await session.execute(stmt)
                return result.rowcount == 1

    # =========================================================================
    # Discovery
    # =========================================================================

    async def insert_discovered(
        self,
        item: DiscoveredFile,
        file_hash: Optional[str],
        duplicate_of: Optional[str],
    ) -> bool:
        """
        Insert a newly discovered file.

        Returns False (and leaves the existing row untouched) when
        ``external_id`` is already present.
        """
        stmt = (
            sqlite_insert(FileRecordRow)
            .values(
                external_id=item.external_id,
                name=item.name,
                url=item.url,
                size=item.size,
                mime_type=item.mime_type,
                file_hash=file_hash,
                duplicate_of_external_id=duplicate_of,
                upload_status=UploadStatus.PENDING.value,
                discovered_at=utcnow(),
            )
            .on_conflict_do_nothing(index_elements=["external_id"])
        )
        async with self._write_lock:
            async with self._session() as session:
                result = await session.execute(stmt)
                return result.rowcount == 1

    async def exists(self, external_id: str) -> bool:
        async with self._session(read_only=True) as session:
            found = await session.scalar(
                select(FileRecordRow.id).where(FileRecordRow.external_id == external_id)
            )
            return found is not None

    # =========================================================================
    # Upload transitions
    # =========================================================================

    async def mark_uploading(
        self, external_id: str, destination_folder_id: str, run_id: Optional[str] = None
    ) -> bool:
        return await self._apply(
            external_id,
            FileRecordRow.upload_status == UploadStatus.PENDING.value,
            FileRecordRow.destination_id.is_(None),
            upload_status=UploadStatus.UPLOADING.value,
            destination_folder_id=destination_folder_id,
            claimed_by=run_id,
            claimed_at=utcnow(),
        )

    async def renew_claim(self, external_id: str, run_id: Optional[str]) -> bool:
        """Extend the lease of ``run_id`` on a record; False once another run took it over."""
        return await self._apply(
            external_id,
            FileRecordRow.upload_status == UploadStatus.UPLOADING.value,
            FileRecordRow.destination_id.is_(None),
            FileRecordRow.claimed_by.is_(None) if run_id is None else FileRecordRow.claimed_by == run_id,
            claimed_at=utcnow(),
        )

    async def record_upload_attempt(self, external_id: str, payload: ResponsePayload) -> bool:
        """Store the attempt counter of a record waiting for a retry."""
        return await self._apply(
            external_id,
            FileRecordRow.upload_status == UploadStatus.UPLOADING.value,
            import_response=payload.to_dict(),
            last_error=payload.error,
            claimed_at=utcnow(),
        )

    async def complete_upload(
        self, external_id: str, destination_id: str, payload: ResponsePayload
    ) -> bool:
        return await self._apply(
            external_id,
            FileRecordRow.upload_status == UploadStatus.UPLOADING.value,
            FileRecordRow.destination_id.is_(None),
            destination_id=destination_id,
            upload_status=UploadStatus.COMPLETED.value,
            processing_status=ProcessingStatus.PENDING.value,
            import_response=payload.to_dict(),
            last_error=None,
            uploaded_at=utcnow(),
        )

    async def fail_upload(self, external_id: str, error: str, payload: ResponsePayload) -> bool:
        return await self._apply(
            external_id,
            FileRecordRow.upload_status == UploadStatus.UPLOADING.value,
            upload_status=UploadStatus.FAILED.value,
            import_response=payload.to_dict(),
            last_error=error,
        )

    async def requeue_failed(self) -> int:
        """Move every failed upload back to pending. Returns the number re-queued."""
        stmt = (
            update(FileRecordRow)
            .where(
                FileRecordRow.upload_status == UploadStatus.FAILED.value,
                FileRecordRow.destination_id.is_(None),
            )
            .values(upload_status=UploadStatus.PENDING.value)
            .execution_options(synchronize_session=False)
        )
        async with self._write_lock:
            async with self._session() as session:
                result = await session.execute(stmt)
                return result.rowcount or 0

    async def reclaim_interrupted_uploads(self, stale_after: float = 0.0) -> int:
        """
        Rows left ``uploading`` by an interrupted run go back to pending.

        Only claims older than ``stale_after`` seconds are reclaimed; a live
        run refreshes its claim on every attempt.
        """
        cutoff = utcnow() - timedelta(seconds=stale_after)
        stmt = (
            update(FileRecordRow)
            .where(
                FileRecordRow.upload_status == UploadStatus.UPLOADING.value,
                FileRecordRow.destination_id.is_(None),
                or_(FileRecordRow.claimed_at.is_(None), FileRecordRow.claimed_at <= cutoff),
            )
            .values(upload_status=UploadStatus.PENDING.value, claimed_by=None, claimed_at=None)
            .execution_options(synchronize_session=False)
        )
        async with self._write_lock:
            async with self._session() as session:
                result = await session.execute(stmt)
                return result.rowcount or 0

    # =========================================================================
    # Verification transitions
    # =========================================================================

    async def record_verification(
        self,
        external_id: str,
        status: ProcessingStatus,
        payload: ResponsePayload,
    ) -> bool:
        now = utcnow()
        values: Dict[str, Any] = {
            "processing_status": status.value,
            "verification_response": payload.to_dict(),
            "last_checked_at": now,
        }
        if status is ProcessingStatus.COMPLETED:
            values["completed_at"] = now
        if status is ProcessingStatus.FAILED:
            values["last_error"] = payload.error or "remote processing failed"
        return await self._apply(
            external_id,
            FileRecordRow.destination_id.isnot(None),
            or_(
                FileRecordRow.processing_status.is_(None),
                FileRecordRow.processing_status.notin_(TERMINAL_PROCESSING),
            ),
            **values,
        )

    async def record_verification_error(
        self, external_id: str, error: str, payload: ResponsePayload
    ) -> bool:
        """Record a failed status check without touching processing_status."""
        return await self._apply(
            external_id,
            FileRecordRow.destination_id.isnot(None),
            last_error=error,
            verification_response=payload.to_dict(),
            last_checked_at=utcnow(),
        )

    # =========================================================================
    # Queries
    # =========================================================================

    async def get(self, external_id: str) -> Optional[FileRecord]:
        async with self._session(read_only=True) as session:
            row = await session.scalar(
                select(FileRecordRow).where(FileRecordRow.external_id == external_id)
            )
            return _to_record(row) if row else None

    async def count(self) -> int:
        async with self._session(read_only=True) as session:
            return await session.scalar(select(func.count(FileRecordRow.id))) or 0

    async def all_records(self) -> List[FileRecord]:
        return await self._select(select(FileRecordRow))

    async def pending_records(
        self, strategy: DuplicateStrategy = DuplicateStrategy.SKIP
    ) -> List[FileRecord]:
        """Records eligible for upload, in discovery order."""
        stmt = select(FileRecordRow).where(
            FileRecordRow.upload_status == UploadStatus.PENDING.value,
            FileRecordRow.destination_id.is_(None),
        )
        if strategy is DuplicateStrategy.SKIP:
            stmt = stmt.where(FileRecordRow.duplicate_of_external_id.is_(None))
        return await self._select(stmt)

    async def failed_records(self) -> List[FileRecord]:
        stmt = select(FileRecordRow).where(
            or_(
                FileRecordRow.upload_status == UploadStatus.FAILED.value,
                FileRecordRow.processing_status == ProcessingStatus.FAILED.value,
            )
        )
        return await self._select(stmt)

    async def verification_candidates(self, limit: Optional[int] = None) -> List[FileRecord]:
        """Uploaded records whose processing status is not terminal yet."""
        stmt = select(FileRecordRow).where(
            FileRecordRow.destination_id.isnot(None),
            or_(
                FileRecordRow.processing_status.is_(None),
                FileRecordRow.processing_status.in_(IN_FLIGHT_PROCESSING),
            ),
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return await self._select(stmt)

    async def find_duplicate(
        self, file_hash: str, excluding_external_id: Optional[str] = None
    ) -> Optional[FileRecord]:
        stmt = select(FileRecordRow).where(FileRecordRow.file_hash == file_hash)
        if excluding_external_id is not None:
            stmt = stmt.where(FileRecordRow.external_id != excluding_external_id)
        stmt = stmt.order_by(FileRecordRow.discovered_at, FileRecordRow.id).limit(1)
        async with self._session(read_only=True) as session:
            row = await session.scalar(stmt)
            return _to_record(row) if row else None

    async def duplicate_groups(self) -> List[DuplicateGroup]:
        shared = (
            select(FileRecordRow.file_hash)
            .where(FileRecordRow.file_hash.isnot(None))
            .group_by(FileRecordRow.file_hash)
            .having(func.count(FileRecordRow.id) > 1)
        )
        stmt = (
            select(FileRecordRow)
            .where(FileRecordRow.file_hash.in_(shared))
            .order_by(FileRecordRow.file_hash, FileRecordRow.discovered_at, FileRecordRow.id)
        )
        async with self._session(read_only=True) as session:
            rows = (await session.scalars(stmt)).all()

        members: Dict[str, list] = {}
        for row in rows:
            members.setdefault(row.file_hash, []).append(
                DuplicateMember(
                    external_id=row.external_id,
                    name=row.name,
                    size=row.size,
                    mime_type=row.mime_type,
                    discovered_at=row.discovered_at,
                )
            )
        groups = [DuplicateGroup(file_hash=h, members=tuple(m)) for h, m in members.items()]
        groups.sort(key=lambda g: (-g.count, g.file_hash))
        return groups

    async def status_counts(self) -> Dict[str, Dict[str, int]]:
        """Counts per upload_status and per processing_status ("none" for null)."""
        async with self._session(read_only=True) as session:
            upload_rows = await session.execute(
                select(FileRecordRow.upload_status, func.count(FileRecordRow.id))
                .group_by(FileRecordRow.upload_status)
            )
            processing_rows = await session.execute(
                select(FileRecordRow.processing_status, func.count(FileRecordRow.id))
                .group_by(FileRecordRow.processing_status)
            )
            return {
                "upload": {status: count for status, count in upload_rows},
                "processing": {(status or "none"): count for status, count in processing_rows},
            }

    async def _select(self, stmt) -> List[FileRecord]:
        stmt = stmt.order_by(None).order_by(FileRecordRow.discovered_at, FileRecordRow.id)
        async with self._session(read_only=True) as session:
            rows = (await session.scalars(stmt)).all()
            return [_to_record(row) for row in rows]
