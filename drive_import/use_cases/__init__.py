"""Application use cases for import workflows."""

from .deduplication import DedupDecision, ResolveDuplicateUseCase, is_upload_eligible
from .retry import ResolveRetryUseCase, RetryDecision, classify_error, describe_error
from .status_mapping import advance_status, map_remote_status

__all__ = [
    "DedupDecision",
    "ResolveDuplicateUseCase",
    "is_upload_eligible",
    "ResolveRetryUseCase",
    "RetryDecision",
    "classify_error",
    "describe_error",
    "advance_status",
    "map_remote_status",
]
