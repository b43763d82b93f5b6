"""Duplicate-strategy decisions shared by discovery and upload."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

import logging

from drive_import.models import DuplicateStrategy, FileRecord

logger = logging.getLogger(__name__)


DedupAction = Literal["upload", "skip", "replace"]


@dataclass(frozen=True)
class DedupDecision:
    """Result of deciding what to do with a file after the duplicate check."""

    action: DedupAction
    reason: str
    duplicate_of: Optional[str] = None

    @property
    def upload_eligible(self) -> bool:
        return self.action != "skip"


class ResolveDuplicateUseCase:
    """Resolve the downstream action from the duplicate match and the strategy."""

    @staticmethod
    def execute(duplicate_of: Optional[str], strategy: DuplicateStrategy) -> DedupDecision:
        if duplicate_of is None:
            return DedupDecision(action="upload", reason="no_duplicate")
        if strategy is DuplicateStrategy.SKIP:
            return DedupDecision(action="skip", reason="duplicate_skipped", duplicate_of=duplicate_of)
        if strategy is DuplicateStrategy.REPLACE:
            # The relationship is recorded; the prior remote document is left untouched.
            return DedupDecision(action="replace", reason="duplicate_replaces", duplicate_of=duplicate_of)
        return DedupDecision(action="upload", reason="duplicate_uploaded", duplicate_of=duplicate_of)


def is_upload_eligible(record: FileRecord, strategy: DuplicateStrategy) -> bool:
    """Whether ``record`` belongs in the upload phase's pending set."""
    if record.destination_id is not None:
        return False
    return ResolveDuplicateUseCase.execute(record.duplicate_of_external_id, strategy).upload_eligible
