"""Mapping of remote processing states onto ProcessingStatus."""
from __future__ import annotations

import logging
from typing import Optional

from drive_import.models import ProcessingStatus

logger = logging.getLogger(__name__)

_REMOTE_STATUS = {
    "PENDING": ProcessingStatus.PENDING,
    "QUEUED": ProcessingStatus.PENDING,
    "PROCESSING": ProcessingStatus.PROCESSING,
    "SUCCESS": ProcessingStatus.COMPLETED,
    "COMPLETED": ProcessingStatus.COMPLETED,
    "FAILED": ProcessingStatus.FAILED,
    "ERROR": ProcessingStatus.FAILED,
}

_ORDER = {
    ProcessingStatus.PENDING: 0,
    ProcessingStatus.PROCESSING: 1,
    ProcessingStatus.COMPLETED: 2,
    ProcessingStatus.FAILED: 2,
}


def map_remote_status(remote_status: Optional[str]) -> ProcessingStatus:
    """Unknown or missing remote states count as pending (non-terminal)."""
    if not remote_status:
        return ProcessingStatus.PENDING
    mapped = _REMOTE_STATUS.get(remote_status.strip().upper())
    if mapped is None:
        logger.debug("Unknown remote status %r, treating as pending", remote_status)
        return ProcessingStatus.PENDING
    return mapped


def advance_status(
    current: Optional[ProcessingStatus], observed: ProcessingStatus
) -> ProcessingStatus:
    """Forward-only merge: an observed earlier state never overrides a later one."""
    if current is None:
        return observed
    if current.is_terminal:
        return current
    if _ORDER[observed] < _ORDER[current]:
        return current
    return observed
