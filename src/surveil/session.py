"""The watch session: reconciliation state machine for one watched path."""

import logging
import stat
import threading
from collections import defaultdict, deque
from pathlib import Path
from typing import Callable, Deque, Dict, List, Mapping, Optional, Set, Union

from .adapters import (
    FileSystem,
    Notifier,
    OSFileSystem,
    Subscription,
    get_default_notifier,
)
from .config import SurveilConfig
from .exceptions import (
    SchedulerClosedError,
    SessionClosedError,
    is_not_a_directory,
    is_not_found,
)
from .models import EventName, RawEvent, ReconcilePhase, SessionState
from .poller import MissingPathPoller
from .reconciler import ChildReconciler
from .retry import RetryAttempt, RetryPolicy
from .scheduler import Scheduler, TimerHandle, get_default_scheduler
from .timers import CoalescingTimerTable

logger = logging.getLogger(__name__)

# Key of the root subscription and of the root-as-file debounce slot
ROOT_KEY = ""


class SessionScheduler(Scheduler):
    """
    Scheduler view owned by one session.

    Every callback runs under the session lock and is dropped once the
    session is closed, so nothing scheduled by the session can outlive it.
    """

    def __init__(self, session: "WatchSession", inner: Scheduler):
        self.session = session
        self.inner = inner

    def time(self) -> float:
        return self.inner.time()

    def call_later(self, delay: float, callback: Callable, *args) -> TimerHandle:
        return self.inner.call_later(delay, self.session._run_guarded, callback, args)


class WatchSession:
    """
    Watches one root path and emits normalized lifecycle events.

    The root may be a directory, a file, or missing, and may change shape
    over time. Raw notifications from the notifier only ever request a
    reconciliation or touch a debounce slot; every semantic event comes out
    of a reconciliation cycle or a debounce timer.
    """

    def __init__(
        self,
        path: Union[str, Path],
        config: Optional[SurveilConfig] = None,
        scheduler: Optional[Scheduler] = None,
        notifier: Optional[Notifier] = None,
        filesystem: Optional[FileSystem] = None,
        listeners: Optional[Mapping[Union[EventName, str], Callable]] = None,
    ):
        """
        Create the session and schedule its first reconciliation.

        Args:
            path: Root path to watch
            config: Watch options
            scheduler: Scheduler for all session work (shared thread by default)
            notifier: Change-notification service (watchdog by default)
            filesystem: Listing and stat service (os by default)
            listeners: Listeners registered before the first cycle is
                scheduled; use this with a threaded scheduler so that no
                early event can be missed
        """
        self.root_path = Path(path)
        self.config = config if config is not None else SurveilConfig()
        self.notifier = notifier if notifier is not None else get_default_notifier()
        self.filesystem = filesystem if filesystem is not None else OSFileSystem()
        if scheduler is None:
            scheduler = get_default_scheduler()
        self.scheduler = SessionScheduler(self, scheduler)

        self.ready = False
        self.exists = False
        self.is_file = False
        self.closed = False
        self.reconciling = False
        self.reconcile_again = False
        self.phase = ReconcilePhase.IDLE
        self.children: Set[str] = set()
        self.subdirectories: Set[str] = set()

        self._state = SessionState.INITIALIZING
        self._subscriptions: Dict[str, Subscription] = {}
        self._timers = CoalescingTimerTable(self.scheduler, self.config.change_timeout)
        self._retry = RetryPolicy(self.scheduler, self.config.eperm_retries, self.config.eperm_easing)
        self._poller = MissingPathPoller(self.scheduler, self.config.missing_poll, self.reconcile)
        self._reconciler = ChildReconciler()
        self._pending: Deque[str] = deque()
        self._attempt: Optional[RetryAttempt] = None
        self._step: Optional[TimerHandle] = None
        self._listeners: Dict[EventName, List[Callable]] = defaultdict(list)
        self._lock = threading.RLock()
        # is_file as last confirmed through the current root subscription
        self._subscribed_as_file: Optional[bool] = None
        self._listed = False
        # surviving names whose type may have changed since the last look
        self._recheck: Set[str] = set()
        self._rechecking: Set[str] = set()

        for event, listener in (listeners or {}).items():
            self._listeners[EventName(event)].append(listener)

        logger.info(f"Opening watch session on {self.root_path}")
        self._step = self.scheduler.call_soon(self.reconcile)

    # -- listeners ---------------------------------------------------------

    def on(self, event: Union[EventName, str], listener: Callable) -> Callable:
        """
        Register a listener for a semantic event.

        Args:
            event: EventName or its string value ("add", "removeDir", ...)
            listener: Called with the event payload

        Returns:
            The listener, so this can be used as a decorator factory

        Raises:
            SessionClosedError: If the session is closed
        """
        with self._lock:
            if self.closed:
                raise SessionClosedError(f"Session on {self.root_path} is closed")
            self._listeners[EventName(event)].append(listener)
        return listener

    def once(self, event: Union[EventName, str], listener: Callable) -> Callable:
        """Register a listener that is removed after its first call."""
        event = EventName(event)

        def wrapper(*args):
            self.off(event, wrapper)
            listener(*args)

        self.on(event, wrapper)
        return wrapper

    def off(self, event: Union[EventName, str], listener: Callable) -> bool:
        """
        Remove a listener.

        Returns:
            True if the listener was registered
        """
        with self._lock:
            listeners = self._listeners.get(EventName(event), [])
            if listener in listeners:
                listeners.remove(listener)
                return True
            return False

    def _emit(self, event: EventName, *args) -> None:
        if self.closed:
            return

        logger.debug(f"{self.root_path}: {event.value} {args[0] if args else ''}")

        for listener in list(self._listeners.get(event, ())):
            if self.closed:
                break
            try:
                listener(*args)
            except Exception:
                logger.exception(f"Listener for {event.value} on {self.root_path} failed")

    # -- scheduling --------------------------------------------------------

    def _run_guarded(self, callback: Callable, args: tuple) -> None:
        with self._lock:
            if self.closed:
                return
            callback(*args)

    def _schedule_phase(self, callback: Callable, *args) -> None:
        if self.closed:
            return
        self._step = self.scheduler.call_soon(callback, *args)

    # -- reconciliation ----------------------------------------------------

    def reconcile(self) -> None:
        """
        Run a reconciliation cycle, or merge into the one in flight.

        Requests made while a cycle runs collapse into one follow-up cycle.
        """
        with self._lock:
            if self.closed:
                return
            if self.reconciling:
                self.reconcile_again = True
                return

            self.reconciling = True
            self._begin_subscribe()

    def _begin_subscribe(self) -> None:
        self.phase = ReconcilePhase.SUBSCRIBE

        if ROOT_KEY in self._subscriptions:
            self._schedule_phase(self._list_root)
            return

        self._attempt = self._retry.prepare(
            lambda: self._subscribe(ROOT_KEY, self.root_path),
            on_success=self._root_subscribed,
            on_failure=self._root_subscribe_failed,
            on_exhausted=self._fail,
            description=f"subscribe {self.root_path}",
        )
        self._attempt.start()

    def _root_subscribed(self, subscription: Subscription) -> None:
        self._subscriptions[ROOT_KEY] = subscription
        self._subscribed_as_file = None
        self._poller.cancel()
        self._mark_exists()
        if self.closed:
            return
        self._schedule_phase(self._list_root)

    def _root_subscribe_failed(self, err: OSError) -> None:
        if is_not_found(err):
            self._root_missing()
            return
        self._fail(err)

    def _list_root(self) -> None:
        self.phase = ReconcilePhase.LIST

        try:
            names = self.filesystem.listdir(self.root_path)
        except OSError as err:
            if is_not_a_directory(err):
                self._root_is_file()
            elif is_not_found(err):
                self._root_missing()
            else:
                self._fail(err)
            return

        self._root_is_directory(names)

    def _root_is_file(self) -> None:
        if not self.is_file:
            # the path used to be a directory, or this is the first look
            self._release_children()
        self.is_file = True
        self._state = SessionState.WATCHING_FILE
        self._check_root_shape()
        self._mark_exists()
        self._finalize()

    def _check_root_shape(self) -> None:
        # a subscription made for a file does not report a directory's entries
        if self._subscribed_as_file is not None and self._subscribed_as_file != self.is_file:
            logger.info(f"Watched path changed type: {self.root_path}")
            subscription = self._subscriptions.pop(ROOT_KEY, None)
            if subscription is not None:
                subscription.close()
            self.reconcile_again = True
            self._subscribed_as_file = None
            return
        if ROOT_KEY in self._subscriptions:
            self._subscribed_as_file = self.is_file

    def _root_missing(self) -> None:
        existed = self.exists
        was_file = self.is_file

        self._release_root()
        self.exists = False
        self._state = SessionState.MISSING
        self._poller.arm()

        if existed and self.ready:
            logger.info(f"Watched path disappeared: {self.root_path}")
            # a file root going away is treated as an in-progress replace
            if not was_file:
                self._emit(EventName.REMOVE)

        self._finalize()

    def _root_is_directory(self, names: List[str]) -> None:
        if self.is_file:
            self._timers.cancel(ROOT_KEY)
        self.is_file = False
        self._state = SessionState.WATCHING_DIRECTORY
        self._check_root_shape()

        if not self.ready and not self._listed:
            self._listed = True
            self._emit(EventName.LIST, list(names))
        self._mark_exists()
        if self.closed:
            return

        diff = self._reconciler.diff(names, self.children, self.subdirectories, self.ready)

        for name in diff.dropped_directories:
            self.subdirectories.discard(name)
            self._emit(EventName.REMOVE_DIR, name)

        for name in diff.dropped:
            self._release_child(name)
            if self.config.matches(name):
                self._emit(EventName.REMOVE, name)

        if self.closed:
            return

        recheck = sorted(
            name for name in self._recheck
            if name in diff.listing and name in self.children and name not in diff.added
        )
        self._recheck.clear()
        self._rechecking = set(recheck)

        self.children = set(diff.listing)
        self.phase = ReconcilePhase.CHILDREN
        self._pending = deque(diff.added + recheck)
        self._schedule_phase(self._next_child)

    def _next_child(self) -> None:
        if not self._pending:
            self._finalize()
            return

        name = self._pending[0]
        path = self.root_path / name
        self._attempt = self._retry.prepare(
            lambda: self.filesystem.stat(path),
            on_success=lambda result: self._child_stat(name, result),
            on_failure=lambda err: self._child_failed(name, err),
            on_exhausted=self._child_exhausted,
            description=f"stat {path}",
        )
        self._attempt.start()

    def _child_stat(self, name: str, result) -> None:
        if name in self._rechecking:
            self._rechecking.discard(name)
            if not self._replaced_by_other_type(name, result):
                self._advance_child()
                return

        if stat.S_ISDIR(result.st_mode):
            self.subdirectories.add(name)
            if self.ready:
                self._emit(EventName.ADD_DIR, name, result)
            else:
                self._emit(EventName.CHILD_DIR, name, result)
            self._advance_child()
            return

        if not self.config.matches(name):
            self._advance_child()
            return

        self._attempt = self._retry.prepare(
            lambda: self._subscribe(name, self.root_path / name),
            on_success=lambda subscription: self._child_subscribed(name, result, subscription),
            on_failure=lambda err: self._child_failed(name, err),
            on_exhausted=self._child_exhausted,
            description=f"subscribe {self.root_path / name}",
        )
        self._attempt.start()

    def _child_subscribed(self, name: str, result, subscription: Subscription) -> None:
        self._subscriptions[name] = subscription

        if self.ready:
            self._timers.arm(name, lambda: self._emit(EventName.ADD, name, result))
        else:
            self._emit(EventName.CHILD, name, result)
        self._advance_child()

    def _replaced_by_other_type(self, name: str, result) -> bool:
        """Retire a known entry whose type changed under the same name."""
        was_directory = name in self.subdirectories
        if stat.S_ISDIR(result.st_mode) == was_directory:
            return False

        logger.debug(f"{name} changed type, was_directory={was_directory}")
        if was_directory:
            self.subdirectories.discard(name)
            self._emit(EventName.REMOVE_DIR, name)
        else:
            self._release_child(name)
            if self.config.matches(name):
                self._emit(EventName.REMOVE, name)
        return not self.closed

    def _child_failed(self, name: str, err: OSError) -> None:
        if name in self._rechecking:
            # the known entry keeps its state until a listing drops it
            self._rechecking.discard(name)
        elif is_not_found(err):
            logger.debug(f"{name} vanished before it could be inspected")
            self.children.discard(name)
        else:
            logger.warning(f"Skipping {self.root_path / name}: {err}")
        self._advance_child()

    def _child_exhausted(self, err: OSError) -> None:
        # forget the unprocessed names so the fresh cycle sees them as new
        self._abort_children()
        self.reconciling = False
        self.reconcile_again = False
        self.phase = ReconcilePhase.IDLE
        self.reconcile()

    def _advance_child(self) -> None:
        if self._pending:
            self._pending.popleft()
        self._schedule_phase(self._next_child)

    def _abort_children(self) -> None:
        for name in self._pending:
            if name in self._rechecking:
                self._recheck.add(name)
            else:
                self.children.discard(name)
        self._pending.clear()
        self._rechecking.clear()

    def _finalize(self) -> None:
        self.phase = ReconcilePhase.FINALIZE
        self._attempt = None

        if not self.ready:
            self.ready = True
            self._emit(EventName.READY)

        self.reconciling = False
        self.phase = ReconcilePhase.IDLE

        if self.reconcile_again and not self.closed:
            self.reconcile_again = False
            self.reconcile()

    def _fail(self, err: OSError) -> None:
        logger.error(f"Error watching {self.root_path}: {err}")
        self._abort_children()
        self.exists = False

        if not self.ready:
            self.ready = True
            self._emit(EventName.READY, err)
        self._emit(EventName.ERROR, err)
        self._finalize()

    def _mark_exists(self) -> None:
        if not self.exists and self.ready:
            logger.info(f"Watched path appeared: {self.root_path}")
            self.exists = True
            self._emit(EventName.ADD)
        self.exists = True

    # -- subscriptions -----------------------------------------------------

    def _subscribe(self, key: str, path: Path) -> Subscription:
        cell: List[Subscription] = []
        subscription = self.notifier.subscribe(path, lambda event: self._on_raw(key, cell, event))
        cell.append(subscription)

        previous = self._subscriptions.pop(key, None)
        if previous is not None:
            previous.close()
        return subscription

    def _on_raw(self, key: str, cell: List[Subscription], event: RawEvent) -> None:
        # may be called from a notifier thread
        try:
            self.scheduler.call_soon(self._handle_raw, key, cell, event)
        except SchedulerClosedError:
            logger.debug(f"Dropping notification for {self.root_path}: scheduler stopped")

    def _handle_raw(self, key: str, cell: List[Subscription], event: RawEvent) -> None:
        if not cell or self._subscriptions.get(key) is not cell[0]:
            return

        if key == ROOT_KEY:
            self._root_event(event)
        else:
            self._child_event(key, event)

    def _root_event(self, event: RawEvent) -> None:
        if event.is_rename and not self.is_file and event.name in self.children:
            self._recheck.add(event.name)

        if event.is_rename or (
            not self.is_file and event.name is not None and event.name not in self.children
        ):
            self.reconcile()

        if not self.is_file or event.is_rename:
            return

        self._timers.arm(ROOT_KEY, lambda: self._emit(EventName.CHANGE))

    def _child_event(self, name: str, event: RawEvent) -> None:
        if event.is_rename:
            self._recheck.add(name)
            self.reconcile()
            return

        self._timers.arm(name, lambda: self._emit(EventName.CHANGE, name))

    def _release_child(self, name: str) -> None:
        self._timers.cancel(name)
        subscription = self._subscriptions.pop(name, None)
        if subscription is not None:
            subscription.close()

    def _release_children(self) -> None:
        for key in list(self._subscriptions.keys()):
            if key != ROOT_KEY:
                self._release_child(key)
        for key in self._timers.keys():
            if key != ROOT_KEY:
                self._timers.cancel(key)
        self.children.clear()
        self.subdirectories.clear()
        self._recheck.clear()
        self._rechecking.clear()

    def _release_root(self) -> None:
        self._release_children()
        self._timers.cancel(ROOT_KEY)
        self._subscribed_as_file = None
        subscription = self._subscriptions.pop(ROOT_KEY, None)
        if subscription is not None:
            subscription.close()

    # -- teardown ----------------------------------------------------------

    def close(self) -> None:
        """
        Stop watching. Idempotent.

        Releases every subscription and discards every pending timer
        without firing it. No event is emitted afterwards.
        """
        with self._lock:
            if self.closed:
                return
            self.closed = True

            if self._attempt is not None:
                self._attempt.cancel()
                self._attempt = None
            if self._step is not None:
                self._step.cancel()
                self._step = None

            self._poller.cancel()
            self._timers.cancel_all()
            for subscription in self._subscriptions.values():
                subscription.close()
            self._subscriptions.clear()
            self._pending.clear()
            self._listeners.clear()
            self._recheck.clear()
            self._rechecking.clear()

            self.reconciling = False
            self.reconcile_again = False
            self.phase = ReconcilePhase.IDLE

        logger.info(f"Closed watch session on {self.root_path}")

    @property
    def state(self) -> SessionState:
        if self.closed:
            return SessionState.CLOSED
        return self._state

    @property
    def pending_timers(self) -> List[str]:
        """Keys of the armed debounce slots."""
        return self._timers.keys()

    @property
    def active_subscriptions(self) -> List[str]:
        """Keys of the held subscriptions ("" is the root)."""
        return list(self._subscriptions.keys())

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __repr__(self) -> str:
        return f"<WatchSession {str(self.root_path)!r} {self.state.value}>"
