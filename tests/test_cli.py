"""Tests for the command line interface."""

import errno
import os

import pytest

from src.cli import build_config, build_parser, format_event
from src.surveil.exceptions import ConfigError
from src.surveil.models import EventName


class TestFormatEvent:
    """Tests for event rendering."""

    def test_named_events(self):
        assert format_event(EventName.ADD, "a.txt", None) == "add\ta.txt"
        assert format_event(EventName.REMOVE_DIR, "sub") == "removeDir\tsub"

    def test_root_events(self):
        assert format_event(EventName.ADD) == "add\t."
        assert format_event(EventName.CHANGE) == "change\t."

    def test_list(self):
        assert format_event(EventName.LIST, ["a", "b"]) == "list\t2 entries"

    def test_ready(self):
        assert format_event(EventName.READY) == "ready"

    def test_errors(self):
        err = OSError(errno.EIO, os.strerror(errno.EIO))
        assert format_event(EventName.READY, err) == f"ready\t{err}"
        assert format_event(EventName.ERROR, err) == f"error\t{err}"


class TestBuildConfig:
    """Tests for turning arguments into a SurveilConfig."""

    def test_defaults(self, monkeypatch):
        for name in ("CHANGE_TIMEOUT_MS", "EPERM_RETRIES", "EPERM_EASING_MS",
                     "MISSING_POLL_MS", "EXTENSIONS", "PATTERNS"):
            monkeypatch.delenv(f"SURVEIL_{name}", raising=False)
        args = build_parser().parse_args(["watch", "/tmp/x"])

        config = build_config(args)

        assert config.change_timeout_ms == 150
        assert config.extensions is None

    def test_flags(self, monkeypatch):
        monkeypatch.delenv("SURVEIL_EXTENSIONS", raising=False)
        args = build_parser().parse_args([
            "watch", "/tmp/x",
            "--change-timeout", "300",
            "--eperm-retries", "2",
            "--eperm-easing", "50",
            "--missing-poll", "2000",
            "--extensions", ".bar", ".baz",
        ])

        config = build_config(args)

        assert config.change_timeout_ms == 300
        assert config.eperm_retries == 2
        assert config.eperm_easing_ms == 50
        assert config.missing_poll_ms == 2000
        assert config.extensions == [".bar", ".baz"]

    def test_flags_override_environment(self, monkeypatch):
        monkeypatch.setenv("SURVEIL_CHANGE_TIMEOUT_MS", "900")
        monkeypatch.setenv("SURVEIL_EPERM_RETRIES", "9")
        args = build_parser().parse_args(["watch", "/tmp/x", "--change-timeout", "100"])

        config = build_config(args)

        assert config.change_timeout_ms == 100
        assert config.eperm_retries == 9

    def test_negative_flag_rejected(self):
        args = build_parser().parse_args(["watch", "/tmp/x", "--missing-poll", "-1"])

        with pytest.raises(ConfigError):
            build_config(args)


class TestParser:
    """Tests for argument parsing."""

    def test_filters_are_exclusive(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["watch", "/tmp/x", "--extensions", ".a", "--patterns", "*.b"])

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_verbose(self):
        args = build_parser().parse_args(["-v", "watch", "/tmp/x"])
        assert args.verbose is True
        assert args.path == "/tmp/x"
