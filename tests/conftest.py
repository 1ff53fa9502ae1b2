"""Shared fixtures: an in-memory filesystem, a fake notifier and a virtual clock."""

import errno
import os
import stat as stat_module
from collections import defaultdict
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from src.surveil import open as open_session
from src.surveil.adapters import FileSystem, Notifier, Subscription
from src.surveil.models import EventName, RawEvent, RawEventKind
from src.surveil.scheduler import ManualScheduler


def _os_error(code: int, path) -> OSError:
    return OSError(code, os.strerror(code), str(path))


class FakeSubscription(Subscription):
    def __init__(self, notifier: "FakeNotifier", path: Path, is_directory: bool, callback: Callable):
        self.notifier = notifier
        self.path = path
        self.is_directory = is_directory
        self.callback = callback
        self.closed = False

    def close(self) -> None:
        self.closed = True


class FakeNotifier(Notifier):
    """Notifier whose subscriptions are fed by FakeFileSystem mutations."""

    def __init__(self):
        self.fs: Optional["FakeFileSystem"] = None
        self.subscriptions: List[FakeSubscription] = []
        self.subscribe_calls: List[Path] = []
        self._failures: Dict[Path, List[int]] = defaultdict(list)

    def fail_subscribe(self, path, code: int, times: int = 1) -> None:
        self._failures[Path(path)].extend([code] * times)

    def subscribe(self, path, callback) -> FakeSubscription:
        path = Path(path)
        self.subscribe_calls.append(path)
        if self._failures.get(path):
            raise _os_error(self._failures[path].pop(0), path)

        kind = self.fs.kind(path)
        if kind is None:
            raise _os_error(errno.ENOENT, path)

        subscription = FakeSubscription(self, path, kind == "dir", callback)
        self.subscriptions.append(subscription)
        return subscription

    def active(self, path=None) -> List[FakeSubscription]:
        return [
            s for s in self.subscriptions
            if not s.closed and (path is None or s.path == Path(path))
        ]

    def dispatch(self, changed: Path, kind: RawEventKind) -> None:
        for subscription in self.active():
            if subscription.path == changed:
                name = None if subscription.is_directory else changed.name
                subscription.callback(RawEvent(kind, name))
            elif subscription.is_directory and subscription.path == changed.parent:
                subscription.callback(RawEvent(kind, changed.name))


class FakeFileSystem(FileSystem):
    """In-memory tree that raises OSErrors with real errno values."""

    def __init__(self, notifier: Optional[FakeNotifier] = None):
        self.notifier = notifier
        self.entries: Dict[Path, str] = {}
        self._failures: Dict[tuple, List[int]] = defaultdict(list)
        self.calls: List[tuple] = []

    def kind(self, path) -> Optional[str]:
        return self.entries.get(Path(path))

    def _notify(self, path: Path, kind: RawEventKind) -> None:
        if self.notifier is not None:
            self.notifier.dispatch(path, kind)

    def fail(self, operation: str, path, code: int, times: int = 1) -> None:
        self._failures[(operation, Path(path))].extend([code] * times)

    def _check_failure(self, operation: str, path: Path) -> None:
        pending = self._failures.get((operation, path))
        if pending:
            raise _os_error(pending.pop(0), path)

    # -- mutations ---------------------------------------------------------

    def mkdir(self, path) -> None:
        path = Path(path)
        self.entries[path] = "dir"
        self._notify(path, RawEventKind.RENAME)

    def write(self, path, notify: bool = True) -> None:
        path = Path(path)
        created = path not in self.entries
        self.entries[path] = "file"
        if notify:
            self._notify(path, RawEventKind.RENAME if created else RawEventKind.CHANGE)

    def remove(self, path) -> None:
        path = Path(path)
        for entry in [p for p in self.entries if p == path or path in p.parents]:
            del self.entries[entry]
        self._notify(path, RawEventKind.RENAME)

    def rename(self, source, destination) -> None:
        source, destination = Path(source), Path(destination)
        kind = self.entries.pop(source)
        self.entries[destination] = kind
        self._notify(source, RawEventKind.RENAME)
        self._notify(destination, RawEventKind.RENAME)

    # -- FileSystem --------------------------------------------------------

    def listdir(self, path) -> List[str]:
        path = Path(path)
        self.calls.append(("listdir", path))
        self._check_failure("listdir", path)

        kind = self.entries.get(path)
        if kind is None:
            raise _os_error(errno.ENOENT, path)
        if kind == "file":
            raise _os_error(errno.ENOTDIR, path)
        return sorted(p.name for p in self.entries if p.parent == path)

    def stat(self, path) -> os.stat_result:
        path = Path(path)
        self.calls.append(("stat", path))
        self._check_failure("stat", path)

        kind = self.entries.get(path)
        if kind is None:
            raise _os_error(errno.ENOENT, path)
        mode = (stat_module.S_IFDIR | 0o755) if kind == "dir" else (stat_module.S_IFREG | 0o644)
        return os.stat_result((mode, 0, 0, 1, 0, 0, 0, 0, 0, 0))


class EventRecorder:
    """Collects every semantic event a session emits."""

    def __init__(self):
        self.events: List[tuple] = []

    def listeners(self) -> dict:
        def make(event):
            return lambda *args: self.events.append((event.value, args))
        return {event: make(event) for event in EventName}

    def of(self, event: str) -> List[tuple]:
        return [args for name, args in self.events if name == event]

    def names(self, event: str) -> list:
        return [args[0] if args else None for args in self.of(event)]

    def count(self, event: str) -> int:
        return len(self.of(event))

    def kinds(self) -> List[str]:
        return [name for name, _ in self.events]

    def clear(self) -> None:
        self.events.clear()


ROOT = Path("/watched/root")


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def fs(notifier):
    filesystem = FakeFileSystem(notifier)
    notifier.fs = filesystem
    filesystem.entries[ROOT.parent] = "dir"
    return filesystem


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
def make_session(scheduler, notifier, fs, recorder):
    """Open a session wired to the fakes; tracks it for teardown."""
    sessions = []

    def _make(path=ROOT, options=None, **overrides):
        session = open_session(
            path,
            options,
            scheduler=scheduler,
            notifier=notifier,
            filesystem=fs,
            listeners=recorder.listeners(),
            **overrides,
        )
        sessions.append(session)
        return session

    yield _make

    for session in sessions:
        session.close()


@pytest.fixture
def root():
    return ROOT
