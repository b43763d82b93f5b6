"""
Duplicate Detector - metadata fingerprints and duplicate lookups.

The fingerprint is a BLAKE3 digest of ``size:normalized-name:mime``. It is
a metadata heuristic: two distinct files with the same size, name and type
share a fingerprint.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, List, Optional

from blake3 import blake3

from ..models import DuplicateGroup, FileRecord

if TYPE_CHECKING:
    from ..protocols import IRecordStore

logger = logging.getLogger(__name__)

UNKNOWN_MIME_TYPE = "unknown"


def normalize_name(name: str) -> str:
    return name.strip().casefold()


def normalize_mime_type(mime_type: Optional[str]) -> str:
    if mime_type is None:
        return UNKNOWN_MIME_TYPE
    value = mime_type.strip().lower()
    return value or UNKNOWN_MIME_TYPE


def fingerprint(size: Optional[int], name: Optional[str], mime_type: Optional[str]) -> Optional[str]:
    """
    Compute the duplicate-detection fingerprint of a file.

    Returns None when size or name is unknown; such files never match.
    """
    if size is None or name is None:
        return None
    normalized = normalize_name(name)
    if not normalized:
        return None
    hash_input = f"{int(size)}:{normalized}:{normalize_mime_type(mime_type)}"
    return blake3(hash_input.encode("utf-8")).hexdigest()


class DuplicateDetector:
    """Finds prior records sharing a fingerprint."""

    def __init__(self, store: "IRecordStore"):
        self._store = store

    @staticmethod
    def fingerprint(size: Optional[int], name: Optional[str], mime_type: Optional[str]) -> Optional[str]:
        return fingerprint(size, name, mime_type)

    async def find_duplicate(
        self, file_hash: Optional[str], excluding_external_id: Optional[str] = None
    ) -> Optional[FileRecord]:
        """Earliest-discovered record with ``file_hash``, other than the excluded one."""
        if not file_hash:
            return None
        match = await self._store.find_duplicate(file_hash, excluding_external_id)
        if match:
            logger.debug(
                "[dedup] %s matches %s (%s)", excluding_external_id, match.external_id, match.name
            )
        return match

    async def find_all_duplicate_groups(self) -> List[DuplicateGroup]:
        """All fingerprints shared by two or more records, largest group first."""
        return await self._store.duplicate_groups()
