"""Data models for the surveil package."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class EventName(Enum):
    """Semantic events emitted by a watch session."""
    READY = "ready"
    ADD = "add"
    REMOVE = "remove"
    CHANGE = "change"
    ADD_DIR = "addDir"
    REMOVE_DIR = "removeDir"
    CHILD = "child"
    CHILD_DIR = "childDir"
    LIST = "list"
    ERROR = "error"


class RawEventKind(Enum):
    """Classes of raw notifications delivered by a notifier."""
    RENAME = "rename"
    CHANGE = "change"


class SessionState(Enum):
    """Externally visible state of a watch session."""
    INITIALIZING = "initializing"
    WATCHING_FILE = "watching_file"
    WATCHING_DIRECTORY = "watching_directory"
    MISSING = "missing"
    CLOSED = "closed"


class ReconcilePhase(Enum):
    """Step a reconciliation cycle is currently in."""
    IDLE = "idle"
    SUBSCRIBE = "subscribe"
    LIST = "list"
    CHILDREN = "children"
    FINALIZE = "finalize"


@dataclass(frozen=True)
class RawEvent:
    """
    Unprocessed notification from the native change-notification facility.

    Attributes:
        kind: RENAME for creations, deletions and moves; CHANGE otherwise
        name: Bare name of the affected entry relative to the subscribed
            directory, the watched file's own name, or None when the
            notification concerns the subscribed path itself
    """
    kind: RawEventKind
    name: Optional[str] = None

    @property
    def is_rename(self) -> bool:
        return self.kind == RawEventKind.RENAME
