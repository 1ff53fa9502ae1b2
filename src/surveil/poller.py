"""Fallback recovery loop used while the watched root does not exist."""

import logging
from typing import Callable, Optional

from .scheduler import Scheduler, TimerHandle

logger = logging.getLogger(__name__)


class MissingPathPoller:
    """
    Re-runs a callback at a fixed interval while the root is missing.

    The poller never re-arms itself: the owner re-arms it each time a
    reconciliation confirms the root is still absent, so it retires on its
    own once the root reappears.
    """

    def __init__(self, scheduler: Scheduler, interval: float, callback: Callable[[], None]):
        """
        Initialize the poller.

        Args:
            scheduler: Scheduler that owns the poll timer
            interval: Seconds between polls
            callback: Called when the interval elapses
        """
        self.scheduler = scheduler
        self.interval = interval
        self.callback = callback
        self._handle: Optional[TimerHandle] = None
        self.polls = 0

    def arm(self) -> bool:
        """
        Schedule the next poll unless one is already scheduled.

        Returns:
            True if a poll was scheduled
        """
        if self.armed:
            return False
        self._handle = self.scheduler.call_later(self.interval, self._poll)
        return True

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _poll(self) -> None:
        self._handle = None
        self.polls += 1
        logger.debug(f"Polling for missing path (poll #{self.polls})")
        self.callback()

    @property
    def armed(self) -> bool:
        return self._handle is not None and not self._handle.cancelled
