"""Configuration for the surveil package."""

import fnmatch
import os
from dataclasses import dataclass, fields
from typing import Any, List, Mapping, Optional, Union

from .exceptions import ConfigError


# Option names accepted in an option bag, mapped to config fields
OPTION_ALIASES = {
    "changeTimeout": "change_timeout_ms",
    "epermRetries": "eperm_retries",
    "epermEasing": "eperm_easing_ms",
    "hack_missingPoll": "missing_poll_ms",
    "extensions": "extensions",
    "patterns": "patterns",
}


@dataclass
class SurveilConfig:
    """
    Configuration options for a watch session.

    Attributes:
        change_timeout_ms: Debounce window for change and post-ready add events
        eperm_retries: Retry budget for transient permission failures
        eperm_easing_ms: Delay between permission-failure retries
        missing_poll_ms: Poll interval while the watched root is missing
        extensions: Required name suffixes; takes precedence over patterns
        patterns: Shell globs or compiled regular expressions names must match
    """
    change_timeout_ms: int = 150
    eperm_retries: int = 5
    eperm_easing_ms: int = 300
    missing_poll_ms: int = 1000
    extensions: Optional[List[str]] = None
    patterns: Optional[List[Any]] = None

    def __post_init__(self):
        for name in ("change_timeout_ms", "eperm_retries", "eperm_easing_ms", "missing_poll_ms"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigError(f"{name} must be an integer, got {value!r}")
            if value < 0:
                raise ConfigError(f"{name} must not be negative, got {value}")

        if isinstance(self.extensions, str):
            self.extensions = [self.extensions]
        elif self.extensions is not None:
            self.extensions = list(self.extensions)

        if isinstance(self.patterns, str) or hasattr(self.patterns, "search"):
            self.patterns = [self.patterns]
        elif self.patterns is not None:
            self.patterns = list(self.patterns)

    @property
    def change_timeout(self) -> float:
        """Debounce window in seconds."""
        return self.change_timeout_ms / 1000.0

    @property
    def eperm_easing(self) -> float:
        """Permission retry delay in seconds."""
        return self.eperm_easing_ms / 1000.0

    @property
    def missing_poll(self) -> float:
        """Missing-root poll interval in seconds."""
        return self.missing_poll_ms / 1000.0

    @property
    def has_filter(self) -> bool:
        return bool(self.extensions) or bool(self.patterns)

    def matches(self, name: str) -> bool:
        """
        Check if a child file name passes the name filter.

        Extensions take precedence when both extensions and patterns
        are configured. With no filter every name matches.

        Args:
            name: Bare file name (no directory part)

        Returns:
            True if events for this name should be emitted
        """
        if self.extensions:
            return any(name.endswith(ext) for ext in self.extensions)

        if self.patterns:
            for pattern in self.patterns:
                if isinstance(pattern, str):
                    if fnmatch.fnmatch(name, pattern):
                        return True
                elif pattern.search(name):
                    return True
            return False

        return True

    @classmethod
    def from_options(
        cls,
        options: Union["SurveilConfig", Mapping[str, Any], None] = None,
        **overrides,
    ) -> "SurveilConfig":
        """
        Build a config from an option bag.

        Accepts either the config field names or the camelCase option
        names (changeTimeout, epermRetries, epermEasing, hack_missingPoll).

        Args:
            options: Existing config, mapping of options, or None
            **overrides: Additional options applied on top

        Returns:
            A new SurveilConfig

        Raises:
            ConfigError: On an unknown option name or an invalid value
        """
        if isinstance(options, SurveilConfig):
            values = {f.name: getattr(options, f.name) for f in fields(cls)}
        else:
            values = {}
            for key, value in dict(options or {}).items():
                values[cls._field_for(key)] = value

        for key, value in overrides.items():
            values[cls._field_for(key)] = value

        return cls(**values)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "SurveilConfig":
        """
        Build a config from SURVEIL_* environment variables.

        Recognized: SURVEIL_CHANGE_TIMEOUT_MS, SURVEIL_EPERM_RETRIES,
        SURVEIL_EPERM_EASING_MS, SURVEIL_MISSING_POLL_MS, and the
        comma-separated SURVEIL_EXTENSIONS and SURVEIL_PATTERNS.

        Args:
            environ: Mapping to read instead of os.environ

        Raises:
            ConfigError: If a numeric variable is not an integer
        """
        environ = os.environ if environ is None else environ
        values = {}

        for name in ("change_timeout_ms", "eperm_retries", "eperm_easing_ms", "missing_poll_ms"):
            raw = environ.get(f"SURVEIL_{name.upper()}")
            if raw is None or raw.strip() == "":
                continue
            try:
                values[name] = int(raw)
            except ValueError:
                raise ConfigError(f"SURVEIL_{name.upper()} must be an integer, got {raw!r}")

        for name in ("extensions", "patterns"):
            raw = environ.get(f"SURVEIL_{name.upper()}")
            if raw:
                values[name] = [item.strip() for item in raw.split(",") if item.strip()]

        return cls(**values)

    @classmethod
    def _field_for(cls, key: str) -> str:
        names = {f.name for f in fields(cls)}
        if key in names:
            return key
        if key in OPTION_ALIASES:
            return OPTION_ALIASES[key]
        raise ConfigError(f"Unknown watch option: {key}")
