"""
Escalation Timers

Single-slot cancellable timers keyed by purpose. Arming a purpose that is
already armed replaces the previous handle, so duplicates never accumulate.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, Optional, Protocol

logger = logging.getLogger(__name__)


class TimerPurpose(Enum):
    HINT = "hint"
    COMPLETION = "completion"


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Anything with asyncio's `call_later` signature."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle: ...


class TimerWheel:
    """Owns the coach's pending timers, one per purpose."""

    def __init__(self, scheduler: Optional[Scheduler] = None):
        self._scheduler = scheduler
        self._handles: Dict[TimerPurpose, TimerHandle] = {}

    @property
    def scheduler(self) -> Scheduler:
        if self._scheduler is None:
            self._scheduler = asyncio.get_running_loop()
        return self._scheduler

    def arm(self, purpose: TimerPurpose, delay: float, callback: Callable[[], Any]) -> None:
        """Arm `purpose`, replacing any timer already armed for it."""
        self.cancel(purpose)

        def _fire():
            # Only the handle we armed may clear the slot
            if self._handles.get(purpose) is handle:
                del self._handles[purpose]
            callback()

        handle = self.scheduler.call_later(delay, _fire)
        self._handles[purpose] = handle
        logger.debug(f"⏱️ [TimerWheel] Armed {purpose.value} timer ({delay:.1f}s)")

    def cancel(self, purpose: TimerPurpose) -> bool:
        handle = self._handles.pop(purpose, None)
        if handle is None:
            return False
        handle.cancel()
        logger.debug(f"⏱️ [TimerWheel] Cancelled {purpose.value} timer")
        return True

    def cancel_all(self) -> None:
        for purpose in list(self._handles):
            self.cancel(purpose)

    def is_armed(self, purpose: TimerPurpose) -> bool:
        return purpose in self._handles
