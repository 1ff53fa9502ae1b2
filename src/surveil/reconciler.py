"""Diffing of directory listings against the previously observed children."""

from dataclasses import dataclass, field
from typing import Iterable, List, Set


@dataclass
class ChildDiff:
    """
    Result of reconciling a fresh listing.

    Attributes:
        listing: Snapshot of every listed name, the new child set
        added: Names to stat and announce, in listing order
        dropped: File names that disappeared
        dropped_directories: Directory names that disappeared
    """
    listing: Set[str]
    added: List[str] = field(default_factory=list)
    dropped: List[str] = field(default_factory=list)
    dropped_directories: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.dropped or self.dropped_directories)


class ChildReconciler:
    """Computes added and removed file and directory sets between listings."""

    def diff(
        self,
        names: Iterable[str],
        children: Set[str],
        subdirectories: Set[str],
        ready: bool,
    ) -> ChildDiff:
        """
        Compare a listing with the stored child state.

        Before the first completed reconciliation every listed name counts
        as added and nothing counts as dropped. The comparison is by name
        only; a name that survives but changes type is re-inspected by the
        session.

        Args:
            names: Freshly listed entry names
            children: Names believed present (files and directories)
            subdirectories: The subset of children known to be directories
            ready: Whether the session has completed its first cycle

        Returns:
            The computed ChildDiff
        """
        names = list(names)
        listing = set(names)

        if not ready:
            return ChildDiff(listing=listing, added=_unique(names))

        added = _unique(name for name in names if name not in children)
        dropped = sorted(
            name for name in children
            if name not in listing and name not in subdirectories
        )
        dropped_directories = sorted(
            name for name in subdirectories if name not in listing
        )

        return ChildDiff(
            listing=listing,
            added=added,
            dropped=dropped,
            dropped_directories=dropped_directories,
        )


def _unique(names: Iterable[str]) -> List[str]:
    seen = set()
    result = []
    for name in names:
        if name not in seen:
            seen.add(name)
            result.append(name)
    return result
