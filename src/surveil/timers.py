"""Per-key debounce timers that turn notification bursts into single events."""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List

from .scheduler import Scheduler, TimerHandle

logger = logging.getLogger(__name__)


@dataclass
class PendingTimer:
    """An armed slot: the live timer and the action it will fire."""
    handle: TimerHandle
    action: Callable[[], None]


class CoalescingTimerTable:
    """
    Debounce slots keyed by child name ("" for the root watched as a file).

    A slot holds at most one timer. Touching an armed slot cancels and
    re-arms its timer while keeping the original action, so a burst of
    notifications yields exactly one event once the burst goes quiet.
    """

    def __init__(self, scheduler: Scheduler, delay: float):
        """
        Initialize the table.

        Args:
            scheduler: Scheduler that owns the timers
            delay: Debounce window in seconds
        """
        self.scheduler = scheduler
        self.delay = delay
        self._slots: Dict[str, PendingTimer] = {}

    def arm(self, key: str, action: Callable[[], None]) -> bool:
        """
        Arm a slot, or re-arm it if already armed.

        Args:
            key: Slot key
            action: Called when the window elapses; ignored if the slot
                is already armed

        Returns:
            True if a new slot was armed, False if an existing one was re-armed
        """
        if self.rearm(key):
            return False

        handle = self.scheduler.call_later(self.delay, self._fire, key)
        self._slots[key] = PendingTimer(handle, action)
        return True

    def rearm(self, key: str) -> bool:
        """Restart the window of an armed slot. Returns False if not armed."""
        slot = self._slots.get(key)
        if slot is None:
            return False

        slot.handle.cancel()
        slot.handle = self.scheduler.call_later(self.delay, self._fire, key)
        return True

    def cancel(self, key: str) -> bool:
        """Discard a slot without firing it. Returns False if not armed."""
        slot = self._slots.pop(key, None)
        if slot is None:
            return False
        slot.handle.cancel()
        return True

    def cancel_all(self) -> int:
        """
        Discard every slot without firing.

        Returns:
            Number of slots discarded
        """
        count = len(self._slots)
        for slot in self._slots.values():
            slot.handle.cancel()
        self._slots.clear()
        return count

    def _fire(self, key: str) -> None:
        slot = self._slots.pop(key, None)
        if slot is None:
            return
        logger.debug(f"Debounce window elapsed for {key!r}")
        slot.action()

    def keys(self) -> List[str]:
        return list(self._slots.keys())

    def __contains__(self, key: str) -> bool:
        return key in self._slots

    def __len__(self) -> int:
        return len(self._slots)
