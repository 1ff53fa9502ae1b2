"""Cooperative schedulers that serialize all watch-session work."""

import heapq
import itertools
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Tuple

from .exceptions import SchedulerClosedError

logger = logging.getLogger(__name__)


class TimerHandle:
    """A scheduled callback that can be cancelled before it runs."""

    def __init__(self, when: float, callback: Callable, args: tuple = ()):
        self.when = when
        self._callback = callback
        self._args = args
        self._cancelled = False

    def cancel(self) -> None:
        """Prevent the callback from running. Safe to call repeatedly."""
        self._cancelled = True
        self._callback = None
        self._args = ()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def _run(self) -> None:
        if self._cancelled:
            return
        callback, args = self._callback, self._args
        # a handle runs at most once
        self._cancelled = True
        self._callback = None
        self._args = ()
        callback(*args)

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "pending"
        return f"<TimerHandle when={self.when:.3f} {state}>"


class Scheduler(ABC):
    """
    Delay/cancel facility used by watch sessions.

    Every callback runs on a single logical thread, one at a time, in
    deadline order (FIFO among equal deadlines).
    """

    @abstractmethod
    def time(self) -> float:
        """Current scheduler time in seconds."""

    @abstractmethod
    def call_later(self, delay: float, callback: Callable, *args) -> TimerHandle:
        """
        Run a callback after a delay.

        Args:
            delay: Seconds to wait; zero or less means the next turn
            callback: Callable to invoke
            *args: Positional arguments for the callback

        Returns:
            A handle that cancels the callback
        """

    def call_soon(self, callback: Callable, *args) -> TimerHandle:
        """Run a callback on the next scheduling turn, never inline."""
        return self.call_later(0, callback, *args)


class ThreadScheduler(Scheduler):
    """
    Scheduler backed by one daemon worker thread.

    Callbacks may be scheduled from any thread (watchdog delivers
    notifications on its observer threads); they always execute on the
    worker thread.
    """

    def __init__(self, name: str = "surveil-scheduler"):
        """
        Initialize the scheduler. The worker starts on first use.

        Args:
            name: Name for the worker thread
        """
        self.name = name
        self._queue: List[Tuple[float, int, TimerHandle]] = []
        self._counter = itertools.count()
        self._cond = threading.Condition()
        self._thread: Optional[threading.Thread] = None
        self._stopped = False

    def time(self) -> float:
        return time.monotonic()

    def call_later(self, delay: float, callback: Callable, *args) -> TimerHandle:
        with self._cond:
            if self._stopped:
                raise SchedulerClosedError(f"Scheduler {self.name} is stopped")

            handle = TimerHandle(self.time() + max(delay, 0), callback, args)
            heapq.heappush(self._queue, (handle.when, next(self._counter), handle))

            if self._thread is None:
                self._thread = threading.Thread(target=self._run_loop, name=self.name)
                self._thread.daemon = True
                self._thread.start()

            self._cond.notify()
            return handle

    def _next_due(self) -> Optional[TimerHandle]:
        """Block until a callback is due. Returns None once stopped."""
        with self._cond:
            while not self._stopped:
                if not self._queue:
                    self._cond.wait()
                    continue

                when, _, handle = self._queue[0]
                if handle.cancelled:
                    heapq.heappop(self._queue)
                    continue

                delay = when - self.time()
                if delay > 0:
                    self._cond.wait(timeout=delay)
                    continue

                heapq.heappop(self._queue)
                return handle
            return None

    def _run_loop(self) -> None:
        logger.debug(f"Scheduler loop started: {self.name}")

        while True:
            handle = self._next_due()
            if handle is None:
                break
            try:
                handle._run()
            except Exception:
                logger.exception(f"Unhandled error in scheduled callback on {self.name}")

        logger.debug(f"Scheduler loop stopped: {self.name}")

    def in_worker_thread(self) -> bool:
        return self._thread is not None and threading.current_thread() is self._thread

    def stop(self, timeout: float = 5.0) -> None:
        """
        Stop the worker thread and drop every pending callback.

        Args:
            timeout: Seconds to wait for the worker to exit
        """
        with self._cond:
            if self._stopped:
                return
            self._stopped = True
            for _, _, handle in self._queue:
                handle.cancel()
            self._queue.clear()
            self._cond.notify_all()
            thread = self._thread

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stopped

    def __len__(self) -> int:
        """Return the number of callbacks still pending."""
        with self._cond:
            return sum(1 for _, _, handle in self._queue if not handle.cancelled)


class ManualScheduler(Scheduler):
    """
    Virtual-clock scheduler driven explicitly by its owner.

    Nothing runs until run_pending() or advance() is called, which makes
    every suspension point of a reconciliation observable.
    """

    def __init__(self, start: float = 0.0, max_steps: int = 100000):
        """
        Initialize the scheduler.

        Args:
            start: Initial virtual time in seconds
            max_steps: Upper bound on callbacks run per drive call
        """
        self._now = start
        self._queue: List[Tuple[float, int, TimerHandle]] = []
        self._counter = itertools.count()
        self.max_steps = max_steps

    def time(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable, *args) -> TimerHandle:
        handle = TimerHandle(self._now + max(delay, 0), callback, args)
        heapq.heappush(self._queue, (handle.when, next(self._counter), handle))
        return handle

    def _run_until(self, deadline: float) -> int:
        count = 0
        while self._queue and self._queue[0][0] <= deadline:
            when, _, handle = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now = max(self._now, when)
            handle._run()
            count += 1
            if count >= self.max_steps:
                raise RuntimeError(f"ManualScheduler exceeded {self.max_steps} steps")
        return count

    def step(self) -> bool:
        """
        Run exactly one due callback.

        Returns:
            False if nothing was due
        """
        while self._queue and self._queue[0][0] <= self._now:
            _, _, handle = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            handle._run()
            return True
        return False

    def run_pending(self) -> int:
        """
        Run every callback due at the current time, including ones
        scheduled by those callbacks.

        Returns:
            Number of callbacks run
        """
        return self._run_until(self._now)

    def advance(self, seconds: float) -> int:
        """
        Move the clock forward, running callbacks in deadline order.

        Args:
            seconds: Amount of virtual time to elapse

        Returns:
            Number of callbacks run
        """
        deadline = self._now + seconds
        count = self._run_until(deadline)
        self._now = deadline
        return count + self._run_until(self._now)

    def next_deadline(self) -> Optional[float]:
        """Deadline of the earliest live callback, or None."""
        for when, _, handle in sorted(self._queue):
            if not handle.cancelled:
                return when
        return None

    def __len__(self) -> int:
        return sum(1 for _, _, handle in self._queue if not handle.cancelled)


_default_scheduler: Optional[ThreadScheduler] = None
_default_lock = threading.Lock()


def get_default_scheduler() -> ThreadScheduler:
    """Return the process-wide scheduler shared by sessions that do not bring their own."""
    global _default_scheduler
    with _default_lock:
        if _default_scheduler is None:
            _default_scheduler = ThreadScheduler()
        return _default_scheduler
