"""
Surveil Package

Watches a single filesystem path (a file, a directory, or a path that does
not exist yet) and emits a normalized, de-duplicated stream of lifecycle
events regardless of the quirks of the platform's change notifications.

Features:
- Root lifecycle events: appeared, disappeared, changed
- One-level child events: add, remove, change, addDir, removeDir
- Debouncing of raw notification bursts into single events
- Retry of transient permission failures
- Polling recovery while the watched path is missing
- Extension and pattern name filters
"""

from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Union

from .models import (
    EventName,
    RawEvent,
    RawEventKind,
    ReconcilePhase,
    SessionState,
)

from .config import SurveilConfig

from .exceptions import (
    SurveilError,
    ConfigError,
    SessionClosedError,
    SchedulerClosedError,
)

from .scheduler import (
    Scheduler,
    TimerHandle,
    ThreadScheduler,
    ManualScheduler,
    get_default_scheduler,
)
from .adapters import (
    Notifier,
    Subscription,
    FileSystem,
    OSFileSystem,
    WatchdogNotifier,
    get_default_notifier,
)
from .timers import CoalescingTimerTable
from .retry import RetryPolicy
from .poller import MissingPathPoller
from .reconciler import ChildReconciler, ChildDiff
from .session import WatchSession


def open(
    path: Union[str, Path],
    options: Union[SurveilConfig, Mapping[str, Any], None] = None,
    *,
    scheduler: Optional[Scheduler] = None,
    notifier: Optional[Notifier] = None,
    filesystem: Optional[FileSystem] = None,
    listeners: Optional[Mapping[Union[EventName, str], Callable]] = None,
    **overrides,
) -> WatchSession:
    """
    Start watching a path.

    Args:
        path: File or directory to watch; it need not exist yet
        options: SurveilConfig or option mapping (changeTimeout,
            epermRetries, epermEasing, hack_missingPoll, extensions,
            patterns, or the SurveilConfig field names)
        scheduler: Scheduler running the session (shared thread by default)
        notifier: Change-notification service (watchdog by default)
        filesystem: Listing and stat service (os by default)
        listeners: Event listeners to attach before the first cycle
        **overrides: Individual options applied on top of options

    Returns:
        The new WatchSession; its first reconciliation runs on the next
        scheduling turn

    Raises:
        ConfigError: On unknown or invalid options
    """
    config = SurveilConfig.from_options(options, **overrides)
    return WatchSession(
        path,
        config,
        scheduler=scheduler,
        notifier=notifier,
        filesystem=filesystem,
        listeners=listeners,
    )


watch = open


__all__ = [
    # Models
    "EventName",
    "RawEvent",
    "RawEventKind",
    "ReconcilePhase",
    "SessionState",
    # Config
    "SurveilConfig",
    # Exceptions
    "SurveilError",
    "ConfigError",
    "SessionClosedError",
    "SchedulerClosedError",
    # Scheduling
    "Scheduler",
    "TimerHandle",
    "ThreadScheduler",
    "ManualScheduler",
    "get_default_scheduler",
    # Adapters
    "Notifier",
    "Subscription",
    "FileSystem",
    "OSFileSystem",
    "WatchdogNotifier",
    "get_default_notifier",
    # Components
    "CoalescingTimerTable",
    "RetryPolicy",
    "MissingPathPoller",
    "ChildReconciler",
    "ChildDiff",
    # Session
    "WatchSession",
    "open",
    "watch",
]

__version__ = "0.1.0"
