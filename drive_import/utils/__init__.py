"""Utilities for drive_import."""
from .events import EventEmitter, PhaseProgress

__all__ = ["EventEmitter", "PhaseProgress"]
