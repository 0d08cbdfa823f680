"""
Process-wide event channel between the installation engine and whatever
presents it. Carries progress, warnings, errors and a cooperative
cancellation signal.
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from silkinstaller.installer_exceptions import InstallCancelled
from silkinstaller.installer_logger import InstallerLogger


class Phase(str, Enum):
    """Stages of an installation run."""

    RESOLVE = "resolve"
    DOWNLOAD = "download"
    WRITE = "write"
    BOOTSTRAP = "bootstrap"


class EventKind(str, Enum):
    PHASE = "phase"
    PROGRESS = "progress"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class ProgressEvent:
    """
    A single event published on the bus.
    """

    phase: Phase
    kind: EventKind = EventKind.PROGRESS
    artifact_id: Optional[str] = None
    bytes_done: Optional[int] = None
    bytes_total: Optional[int] = None
    message: str = ""
    error: Optional[BaseException] = None

    @property
    def percent(self) -> Optional[float]:
        if self.bytes_done is None or not self.bytes_total:
            return None
        return min(100.0, 100.0 * self.bytes_done / self.bytes_total)


Subscriber = Callable[[ProgressEvent], None]


class CancellationToken:
    """
    Cooperative cancellation flag shared by every stage of a run.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason = ""

    def cancel(self, reason: str = "Installation cancelled") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise InstallCancelled(self._reason or "Installation cancelled")

    def wait(self, timeout: float) -> bool:
        """Sleep for up to ``timeout`` seconds; returns True early on cancellation."""
        return self._event.wait(timeout)


class ProgressBus:
    """
    Thread-safe publish/subscribe channel plus the run's cancellation token.

    Subscribers are called on the publishing thread, which may be a download
    worker. A subscriber that raises is logged and does not interrupt the
    installation.
    """

    def __init__(
        self,
        logger: Optional[InstallerLogger] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> None:
        self.logger = logger or InstallerLogger()
        self.cancellation = cancellation or CancellationToken()
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """
        Register ``subscriber`` and return a callable that unregisters it.
        """
        with self._lock:
            self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            with self._lock:
                if subscriber in self._subscribers:
                    self._subscribers.remove(subscriber)

        return unsubscribe

    def publish(self, event: ProgressEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for subscriber in subscribers:
            try:
                subscriber(event)
            except Exception as e:
                self.logger.log(f"Progress subscriber {subscriber!r} failed: {e}", logging.WARNING)

    def phase(self, phase: Phase, message: str = "") -> None:
        self.publish(ProgressEvent(phase=phase, kind=EventKind.PHASE, message=message))

    def warn(self, phase: Phase, message: str, artifact_id: Optional[str] = None) -> None:
        self.logger.log(message, logging.WARNING)
        self.publish(ProgressEvent(phase=phase, kind=EventKind.WARNING, artifact_id=artifact_id, message=message))

    def error(self, phase: Phase, error: BaseException, artifact_id: Optional[str] = None) -> None:
        self.publish(
            ProgressEvent(phase=phase, kind=EventKind.ERROR, artifact_id=artifact_id, message=str(error), error=error)
        )

    def cancel(self, reason: str = "Installation cancelled") -> None:
        self.logger.log(f"Cancellation requested: {reason}", logging.INFO)
        self.cancellation.cancel(reason)

    @property
    def is_cancelled(self) -> bool:
        return self.cancellation.is_cancelled


class ProgressThrottle:
    """
    Coalesces byte-level progress of one artifact so that at most one event
    per ``min_interval`` seconds reaches the bus. Completion is always emitted.
    """

    def __init__(
        self,
        bus: ProgressBus,
        phase: Phase,
        artifact_id: str,
        bytes_total: Optional[int],
        min_interval: float = 0.25,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.bus = bus
        self.phase = phase
        self.artifact_id = artifact_id
        self.bytes_total = bytes_total
        self.min_interval = min_interval
        self._clock = clock
        self._last_emit: Optional[float] = None
        self._last_bytes: Optional[int] = None
        self.emitted = 0

    def update(self, bytes_done: int, force: bool = False) -> None:
        now = self._clock()
        complete = self.bytes_total is not None and bytes_done >= self.bytes_total
        due = self._last_emit is None or now - self._last_emit >= self.min_interval
        if bytes_done == self._last_bytes:
            return
        if not (force or complete or due):
            return
        self._last_emit = now
        self._last_bytes = bytes_done
        self.emitted += 1
        self.bus.publish(
            ProgressEvent(
                phase=self.phase,
                artifact_id=self.artifact_id,
                bytes_done=bytes_done,
                bytes_total=self.bytes_total,
            )
        )
