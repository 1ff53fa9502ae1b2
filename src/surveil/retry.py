"""Bounded retry-with-delay for transient permission failures."""

import logging
from typing import Any, Callable, Optional

from .exceptions import is_transient_permission
from .scheduler import Scheduler, TimerHandle

logger = logging.getLogger(__name__)


class RetryAttempt:
    """
    One operation being driven through the retry policy.

    The first try runs inline when started. Each transient permission
    failure consumes one retry and schedules the next try after the easing
    delay; the remaining budget carries over between tries.
    """

    def __init__(
        self,
        policy: "RetryPolicy",
        operation: Callable[[], Any],
        on_success: Callable[[Any], None],
        on_failure: Callable[[OSError], None],
        on_exhausted: Callable[[OSError], None],
        description: str = "operation",
    ):
        self.policy = policy
        self.operation = operation
        self.on_success = on_success
        self.on_failure = on_failure
        self.on_exhausted = on_exhausted
        self.description = description
        self.remaining = policy.retries
        self._handle: Optional[TimerHandle] = None
        self._cancelled = False

    def start(self) -> "RetryAttempt":
        self._try()
        return self

    def _try(self) -> None:
        self._handle = None
        if self._cancelled:
            return

        try:
            result = self.operation()
        except OSError as err:
            if not is_transient_permission(err):
                self.on_failure(err)
                return

            if self.remaining > 0:
                self.remaining -= 1
                logger.warning(
                    f"Permission error on {self.description}, retrying in "
                    f"{self.policy.easing:.3f}s ({self.remaining} retries left): {err}"
                )
                self._handle = self.policy.scheduler.call_later(self.policy.easing, self._try)
                return

            logger.warning(f"Permission retries exhausted for {self.description}: {err}")
            self.on_exhausted(err)
            return

        self.on_success(result)

    def cancel(self) -> None:
        """Drop any scheduled retry. The callbacks will not be called again."""
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    @property
    def waiting(self) -> bool:
        """True while a retry is scheduled but has not run yet."""
        return self._handle is not None and not self._handle.cancelled


class RetryPolicy:
    """Retry budget and easing delay for subscribe and stat calls."""

    def __init__(self, scheduler: Scheduler, retries: int = 5, easing: float = 0.3):
        """
        Initialize the policy.

        Args:
            scheduler: Scheduler used for easing delays
            retries: Maximum number of retries per operation
            easing: Seconds to wait between retries
        """
        self.scheduler = scheduler
        self.retries = retries
        self.easing = easing

    def prepare(
        self,
        operation: Callable[[], Any],
        on_success: Callable[[Any], None],
        on_failure: Callable[[OSError], None],
        on_exhausted: Callable[[OSError], None],
        description: str = "operation",
    ) -> RetryAttempt:
        """
        Create an attempt without starting it.

        Args:
            operation: Callable that returns a result or raises OSError
            on_success: Called with the operation's result
            on_failure: Called with any non-permission OSError
            on_exhausted: Called with the last permission error once the
                budget is spent
            description: Label used in log messages

        Returns:
            The unstarted attempt
        """
        return RetryAttempt(self, operation, on_success, on_failure, on_exhausted, description)

    def run(self, operation, on_success, on_failure, on_exhausted, description: str = "operation") -> RetryAttempt:
        """Create an attempt and make its first try immediately."""
        return self.prepare(operation, on_success, on_failure, on_exhausted, description).start()
