"""Tests for models module."""

from src.surveil.models import EventName, RawEvent, RawEventKind, SessionState


class TestEventName:
    """Tests for EventName enum."""

    def test_values(self):
        assert [e.value for e in EventName] == [
            "ready", "add", "remove", "change", "addDir",
            "removeDir", "child", "childDir", "list", "error",
        ]

    def test_lookup_by_value(self):
        assert EventName("addDir") is EventName.ADD_DIR


class TestRawEvent:
    """Tests for RawEvent class."""

    def test_is_rename(self):
        assert RawEvent(RawEventKind.RENAME, "a").is_rename is True
        assert RawEvent(RawEventKind.CHANGE, "a").is_rename is False

    def test_name_defaults_to_none(self):
        assert RawEvent(RawEventKind.CHANGE).name is None

    def test_equality(self):
        assert RawEvent(RawEventKind.CHANGE, "a") == RawEvent(RawEventKind.CHANGE, "a")


class TestSessionState:
    def test_closed_value(self):
        assert SessionState.CLOSED.value == "closed"
