"""End-to-end tests against the real filesystem with watchdog and a worker thread."""

import threading
import time

import pytest

import src.surveil as surveil
from src.surveil import EventName, ThreadScheduler, WatchdogNotifier


class ThreadedRecorder:
    """Records events delivered on the scheduler thread."""

    def __init__(self):
        self.events = []
        self.cond = threading.Condition()

    def listeners(self):
        def make(event):
            def record(*args):
                with self.cond:
                    self.events.append((event.value, args))
                    self.cond.notify_all()
            return record
        return {event: make(event) for event in EventName}

    def wait_for(self, event, name=None, timeout=3.0):
        def found():
            return any(
                kind == event and (name is None or (args and args[0] == name))
                for kind, args in self.events
            )

        with self.cond:
            return self.cond.wait_for(found, timeout=timeout)

    def kinds(self):
        with self.cond:
            return [kind for kind, _ in self.events]


@pytest.fixture
def runtime():
    scheduler = ThreadScheduler(name="test-surveil")
    notifier = WatchdogNotifier()
    yield scheduler, notifier
    notifier.stop()
    scheduler.stop()


def open_session(path, runtime, recorder, **options):
    scheduler, notifier = runtime
    return surveil.open(
        path,
        options,
        scheduler=scheduler,
        notifier=notifier,
        listeners=recorder.listeners(),
    )


class TestWatchDirectory:
    """Watching a real directory."""

    def test_child_lifecycle(self, tmp_path, runtime):
        (tmp_path / "existing.txt").write_text("x")
        recorder = ThreadedRecorder()

        with open_session(tmp_path, runtime, recorder):
            assert recorder.wait_for("ready")
            assert recorder.kinds()[:2] == ["list", "child"]

            # Give watcher time to start
            time.sleep(0.2)

            new_file = tmp_path / "new.txt"
            new_file.write_text("hello")
            assert recorder.wait_for("add", "new.txt")

            time.sleep(0.3)
            new_file.write_text("changed")
            assert recorder.wait_for("change", "new.txt")

            new_file.unlink()
            assert recorder.wait_for("remove", "new.txt")

            (tmp_path / "sub").mkdir()
            assert recorder.wait_for("addDir", "sub")

    def test_no_events_after_close(self, tmp_path, runtime):
        recorder = ThreadedRecorder()
        session = open_session(tmp_path, runtime, recorder)
        assert recorder.wait_for("ready")
        time.sleep(0.2)

        session.close()
        (tmp_path / "late.txt").write_text("late")
        time.sleep(0.5)

        assert recorder.kinds() == ["list", "ready"]


class TestWatchMissingPath:
    """Watching a path that does not exist yet."""

    def test_creation_is_detected_by_polling(self, tmp_path, runtime):
        target = tmp_path / "later"
        recorder = ThreadedRecorder()

        with open_session(target, runtime, recorder, hack_missingPoll=100):
            assert recorder.wait_for("ready")

            target.mkdir()
            assert recorder.wait_for("add")

        assert recorder.kinds() == ["ready", "add"]
