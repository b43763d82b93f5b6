"""
Progress events published by the orchestrators.

Listeners may be plain callables or coroutine functions. Emission is
serialized, so concurrent upload workers never interleave one listener's
output with another's. A failing listener is logged and never breaks the
phase that emitted the event.
"""
from dataclasses import dataclass
from typing import Callable, Dict, List
import asyncio
import inspect
import logging

logger = logging.getLogger(__name__)

PHASE_START = "phase_start"
PHASE_COMPLETE = "phase_complete"
RECORD_DISCOVERED = "record_discovered"
RECORD_UPLOADED = "record_uploaded"
RECORD_RETRY = "record_retry"
RECORD_FAILED = "record_failed"
RECORD_VERIFIED = "record_verified"
WORKFLOW_HALTED = "workflow_halted"
WORKFLOW_COMPLETE = "workflow_complete"


@dataclass
class PhaseProgress:
    """Running count of records handled by one phase."""
    phase: str
    current: int = 0
    failed: int = 0


class EventEmitter:
    """Name-keyed publish/subscribe hub for import events."""

    def __init__(self):
        self._listeners: Dict[str, List[Callable]] = {}
        self._lock = asyncio.Lock()

    def on(self, event_name: str, callback: Callable) -> Callable[[], None]:
        """Subscribe ``callback``; returns a function that unsubscribes it."""
        listeners = self._listeners.setdefault(event_name, [])
        if callback not in listeners:
            listeners.append(callback)
        return lambda: self.off(event_name, callback)

    def off(self, event_name: str, callback: Callable) -> None:
        listeners = self._listeners.get(event_name, [])
        if callback in listeners:
            listeners.remove(callback)

    def has_listeners(self, event_name: str) -> bool:
        return bool(self._listeners.get(event_name))

    async def emit(self, event_name: str, *args, **kwargs) -> None:
        if not self.has_listeners(event_name):
            return

        async with self._lock:
            for callback in tuple(self._listeners[event_name]):
                try:
                    outcome = callback(*args, **kwargs)
                    if inspect.isawaitable(outcome):
                        await outcome
                except Exception:
                    logger.exception("Listener %r failed on %s", callback, event_name)
