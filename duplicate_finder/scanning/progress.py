"""
Scan state machine and progress side channel.
"""
import logging
import threading
from enum import Enum
from typing import Callable, Optional

from ..exceptions import ScanCancelledError


class ScanPhase(str, Enum):
    IDLE = "idle"
    GROUPING = "grouping"
    COMPARING = "comparing"
    GROUPING_NEW = "grouping_new"
    COMPARING_NEW = "comparing_new"
    COMPARING_AGAINST_EXISTING = "comparing_against_existing"
    MERGING = "merging"
    PRUNING = "pruning"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ScanPhase.COMPLETE, ScanPhase.ERROR, ScanPhase.CANCELLED)


ProgressCallback = Callable[[ScanPhase, float], None]


class ProgressReporter:
    """
    Tracks the current phase and forwards (phase, fraction) events.

    A failing callback is logged and otherwise ignored; observers never
    abort a scan.
    """

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self.callback = callback
        self.phase = ScanPhase.IDLE
        self.fraction = 0.0
        self._lock = threading.Lock()

    def enter(self, phase: ScanPhase):
        with self._lock:
            self.phase = phase
            self.fraction = 1.0 if phase == ScanPhase.COMPLETE else 0.0
        logging.debug(f"Scan phase: {phase.value}")
        self._emit(phase, self.fraction)

    def update(self, fraction: float):
        with self._lock:
            self.fraction = max(0.0, min(1.0, fraction))
            phase, fraction = self.phase, self.fraction
        self._emit(phase, fraction)

    def _emit(self, phase: ScanPhase, fraction: float):
        if self.callback is None:
            return
        try:
            self.callback(phase, fraction)
        except Exception as e:
            logging.warning(f"Progress callback failed: {e}")


class CancellationToken:
    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def reset(self):
        self._event.clear()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise ScanCancelledError("Scan cancelled")
