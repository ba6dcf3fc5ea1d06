"""
Admission Gate

Bounds how many background removals may run at once in this process.
This is advisory backpressure, not a queue: a caller that cannot be admitted
is rejected immediately and decides on its own whether to retry.
"""

import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from src.core.exceptions import BusyError
from src.core.logging import get_logger
from src.core.metrics import record_admission_rejection, set_active_removals

logger = get_logger(__name__)

DEFAULT_MAX_CONCURRENT = 2


class AdmissionGate:
    """
    Thread-safe counting gate.

    The counter is only ever read and written under ``_lock`` so two callers
    can never both observe spare capacity and overshoot ``max_concurrent``.
    """

    def __init__(self, max_concurrent: int = DEFAULT_MAX_CONCURRENT, name: str = "background_removal"):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.name = name
        self._max_concurrent = max_concurrent
        self._active_count = 0
        self._lock = threading.Lock()

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @property
    def active_count(self) -> int:
        with self._lock:
            return self._active_count

    def try_enter(self) -> bool:
        """Claim a slot; returns False without waiting when the gate is full."""
        with self._lock:
            if self._active_count >= self._max_concurrent:
                admitted = False
            else:
                self._active_count += 1
                admitted = True
            active = self._active_count
            # Published under the lock so the gauge follows the counter's order
            set_active_removals(active)

        if not admitted:
            record_admission_rejection()
            logger.warning(
                "admission_rejected",
                gate=self.name,
                active_count=active,
                max_concurrent=self._max_concurrent
            )
        return admitted

    def leave(self) -> None:
        """Release a slot. Floored at zero so a double release is harmless."""
        with self._lock:
            self._active_count = max(0, self._active_count - 1)
            set_active_removals(self._active_count)

    @contextmanager
    def admit(self, retry_after: Optional[int] = None) -> Iterator["AdmissionGate"]:
        """
        Hold a slot for the duration of the ``with`` block.

        Raises:
            BusyError: when no slot is free.
        """
        if not self.try_enter():
            raise BusyError(retry_after=retry_after)
        try:
            yield self
        finally:
            self.leave()
