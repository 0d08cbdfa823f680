"""
Progress and cancellation bus.

Connects the installation stages to any presentation layer: stages publish
:class:`ProgressEvent` objects and poll the shared :class:`CancellationToken`
at safe checkpoints.
"""

from .bus import (
    CancellationToken,
    EventKind,
    Phase,
    ProgressBus,
    ProgressEvent,
    ProgressThrottle,
)

__all__ = [
    "CancellationToken",
    "EventKind",
    "Phase",
    "ProgressBus",
    "ProgressEvent",
    "ProgressThrottle",
]
