"""Boundary adapters: native change notification, directory listing and stat."""

import logging
import os
import stat
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Dict, List, Optional

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from .models import RawEvent, RawEventKind

logger = logging.getLogger(__name__)


_EVENT_KINDS = {
    EVENT_TYPE_CREATED: RawEventKind.RENAME,
    EVENT_TYPE_DELETED: RawEventKind.RENAME,
    EVENT_TYPE_MOVED: RawEventKind.RENAME,
    EVENT_TYPE_MODIFIED: RawEventKind.CHANGE,
}


class Subscription(ABC):
    """An active native subscription. Closing is idempotent."""

    @abstractmethod
    def close(self) -> None:
        """Stop delivering notifications and release native resources."""


class Notifier(ABC):
    """Per-path change-notification service."""

    @abstractmethod
    def subscribe(self, path: Path, callback: Callable[[RawEvent], None]) -> Subscription:
        """
        Subscribe to raw notifications for a path.

        Args:
            path: File or directory to watch
            callback: Called with a RawEvent per notification, possibly
                from a foreign thread

        Returns:
            The subscription handle

        Raises:
            OSError: At subscribe time, carrying the platform errno
        """


class FileSystem(ABC):
    """Directory-listing and single-entry stat service."""

    @abstractmethod
    def listdir(self, path: Path) -> List[str]:
        """List entry names directly under a directory. Raises OSError."""

    @abstractmethod
    def stat(self, path: Path) -> os.stat_result:
        """Stat one entry. Raises OSError."""


class OSFileSystem(FileSystem):
    """FileSystem backed by the os module."""

    def listdir(self, path: Path) -> List[str]:
        return os.listdir(path)

    def stat(self, path: Path) -> os.stat_result:
        return os.stat(path)


class WatchdogSubscription(Subscription):
    """Subscription to one file or directory through a shared watchdog watch."""

    def __init__(
        self,
        notifier: "WatchdogNotifier",
        path: Path,
        is_directory: bool,
        callback: Callable[[RawEvent], None],
    ):
        self.path = path
        self.is_directory = is_directory
        self.directory = path if is_directory else path.parent
        self._notifier = notifier
        self._callback = callback
        self._closed = False

    def _deliver(self, kind: RawEventKind, paths: List[Path]) -> None:
        if self._closed:
            return

        for path in paths:
            if self.is_directory:
                if path == self.path:
                    name = None
                elif path.parent == self.path:
                    name = path.name
                else:
                    continue
            elif path == self.path:
                name = path.name
            else:
                continue

            self._callback(RawEvent(kind, name))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._notifier._release(self)

    @property
    def closed(self) -> bool:
        return self._closed


class DirectoryDispatcher(FileSystemEventHandler):
    """Fans watchdog events for one directory out to its subscriptions."""

    def __init__(self, directory: Path):
        super().__init__()
        self.directory = directory
        self._subscriptions: List[WatchdogSubscription] = []
        self._lock = threading.Lock()

    def add(self, subscription: WatchdogSubscription) -> None:
        with self._lock:
            self._subscriptions.append(subscription)

    def remove(self, subscription: WatchdogSubscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def on_any_event(self, event):
        kind = _EVENT_KINDS.get(event.event_type)
        if kind is None:
            return

        paths = [Path(os.fsdecode(event.src_path))]
        dest_path = getattr(event, "dest_path", None)
        if event.event_type == EVENT_TYPE_MOVED and dest_path:
            paths.append(Path(os.fsdecode(dest_path)))

        logger.debug(f"Raw {kind.value} in {self.directory}: {[str(p) for p in paths]}")

        with self._lock:
            subscriptions = list(self._subscriptions)

        for subscription in subscriptions:
            try:
                subscription._deliver(kind, paths)
            except Exception:
                logger.exception(f"Error delivering notification for {subscription.path}")

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscriptions)


class WatchdogNotifier(Notifier):
    """
    Notifier built on a single watchdog Observer.

    Directories are scheduled non-recursively. Files are watched through
    their parent directory with events filtered to the file itself, which
    works on every watchdog backend. Watches on the same directory are
    shared and reference counted.
    """

    def __init__(self, observer_factory: Callable = Observer):
        """
        Initialize the notifier. The observer starts on first subscribe.

        Args:
            observer_factory: Callable returning a watchdog observer
        """
        self._observer_factory = observer_factory
        self._observer = None
        self._watches: Dict[Path, tuple] = {}
        self._lock = threading.Lock()

    def _ensure_observer(self):
        if self._observer is None:
            self._observer = self._observer_factory()
            self._observer.daemon = True
            self._observer.start()
        return self._observer

    def subscribe(self, path: Path, callback: Callable[[RawEvent], None]) -> WatchdogSubscription:
        path = Path(os.path.abspath(path))

        # surface ENOENT/EPERM synchronously, before any native watch exists
        is_directory = stat.S_ISDIR(os.stat(path).st_mode)
        subscription = WatchdogSubscription(self, path, is_directory, callback)

        with self._lock:
            observer = self._ensure_observer()
            entry = self._watches.get(subscription.directory)
            if entry is None:
                dispatcher = DirectoryDispatcher(subscription.directory)
                watch = observer.schedule(dispatcher, str(subscription.directory), recursive=False)
                entry = (watch, dispatcher)
                self._watches[subscription.directory] = entry
                logger.debug(f"Scheduled watch on {subscription.directory}")
            entry[1].add(subscription)

        return subscription

    def _release(self, subscription: WatchdogSubscription) -> None:
        with self._lock:
            entry = self._watches.get(subscription.directory)
            if entry is None:
                return

            watch, dispatcher = entry
            dispatcher.remove(subscription)
            if len(dispatcher):
                return

            del self._watches[subscription.directory]
            try:
                self._observer.unschedule(watch)
                logger.debug(f"Unscheduled watch on {subscription.directory}")
            except KeyError:
                # the emitter already went away with its directory
                logger.debug(f"Watch on {subscription.directory} was already gone")

    def watched_directories(self) -> List[Path]:
        with self._lock:
            return list(self._watches.keys())

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Stop the observer and drop every watch."""
        with self._lock:
            observer = self._observer
            self._observer = None
            self._watches.clear()

        if observer is not None:
            observer.stop()
            observer.join(timeout=timeout)

    def __len__(self) -> int:
        """Return the number of directories being watched."""
        with self._lock:
            return len(self._watches)


_default_notifier: Optional[WatchdogNotifier] = None
_default_lock = threading.Lock()


def get_default_notifier() -> WatchdogNotifier:
    """Return the process-wide notifier shared by sessions that do not bring their own."""
    global _default_notifier
    with _default_lock:
        if _default_notifier is None:
            _default_notifier = WatchdogNotifier()
        return _default_notifier
