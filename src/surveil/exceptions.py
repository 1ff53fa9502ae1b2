"""Custom exceptions and platform error classification for surveil."""

import errno


class SurveilError(Exception):
    """Base exception for all surveil errors."""
    pass


class ConfigError(SurveilError):
    """Invalid watch options."""
    pass


class SessionClosedError(SurveilError):
    """Operation attempted on a closed watch session."""
    pass


class SchedulerClosedError(SurveilError):
    """Callback scheduled on a scheduler that has been stopped."""
    pass


def error_code(err: BaseException):
    """Return the platform errno carried by an exception, or None."""
    return getattr(err, "errno", None)


def is_not_found(err: BaseException) -> bool:
    """The target (root or stat target) does not exist."""
    return error_code(err) == errno.ENOENT


def is_not_a_directory(err: BaseException) -> bool:
    """The target resolves to a file where a directory was expected."""
    return error_code(err) == errno.ENOTDIR


def is_transient_permission(err: BaseException) -> bool:
    """
    Check for a likely-temporary access failure.

    EPERM is what Windows reports for files that are briefly locked
    (antivirus, indexers, editors mid-save). EACCES is a genuine denial
    and is not retried.
    """
    return error_code(err) == errno.EPERM
