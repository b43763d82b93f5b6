"""Orchestrator package - discovery, upload and verification phases."""
from .discovery import DiscoveryIngestor
from .models import (
    DiscoveryReport,
    ItemResult,
    ItemStatus,
    UploadReport,
    VerificationReport,
    WorkflowResult,
)
from .upload import UploadOrchestrator
from .verification import VerificationOrchestrator
from .workflow import PHASES, WorkflowSequencer

__all__ = [
    "DiscoveryIngestor",
    "UploadOrchestrator",
    "VerificationOrchestrator",
    "WorkflowSequencer",
    "PHASES",
    "DiscoveryReport",
    "UploadReport",
    "VerificationReport",
    "WorkflowResult",
    "ItemResult",
    "ItemStatus",
]
