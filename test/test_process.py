"""Tests of the process supervisor, the game is replaced by small python scripts.
"""

from threading import Event, Thread
from pathlib import Path
import sys
import time
import pytest

from mcclient.process import ProcessSupervisor, ProcessStartFailure, ClientAlreadyRunningError, \
    ClientStartedEvent, ClientStoppedEvent, ClientOutputEvent
from mcclient.launch import LaunchPlan
from mcclient.events import EventChannel


def script_plan(tmp_path: Path, script: str) -> LaunchPlan:
    return LaunchPlan(Path(sys.executable), [], ["-c", script], "main", [], tmp_path, tmp_path)


class Recorder:

    def __init__(self, events: EventChannel) -> None:
        self.started = []
        self.stopped = []
        self.lines = []
        self.stopped_event = Event()
        self.line_event = Event()
        events.subscribe(ClientStartedEvent, self.started.append)
        events.subscribe(ClientStoppedEvent, self.on_stopped)
        events.subscribe(ClientOutputEvent, self.on_output)

    def on_stopped(self, e: ClientStoppedEvent) -> None:
        self.stopped.append(e)
        self.stopped_event.set()

    def on_output(self, e: ClientOutputEvent) -> None:
        self.lines.append(e.line)
        self.line_event.set()


def test_start_failure(tmp_path: Path):

    events = EventChannel()
    recorder = Recorder(events)
    supervisor = ProcessSupervisor(events, start_grace=10.0)

    with pytest.raises(ProcessStartFailure) as error:
        supervisor.launch(script_plan(tmp_path, "import sys; sys.exit(3)"))

    assert error.value.exit_code == 3
    assert recorder.started == []
    assert supervisor.status() is None


def test_start_and_stop(tmp_path: Path):

    events = EventChannel()
    recorder = Recorder(events)
    supervisor = ProcessSupervisor(events, start_grace=0.5, stop_grace=5.0)

    script = "import time; print('hello game', flush=True); time.sleep(60)"
    client = supervisor.launch(script_plan(tmp_path, script))

    try:
        assert [e.pid for e in recorder.started] == [client.pid]

        status = supervisor.status()
        assert status is client

        assert recorder.line_event.wait(10)
        assert recorder.lines[0] == "hello game"

        with pytest.raises(ClientAlreadyRunningError):
            supervisor.launch(script_plan(tmp_path, script))

    finally:
        assert supervisor.stop()

    assert recorder.stopped_event.wait(10)
    # Let the monitor thread observe the exit, the stop must only be published once.
    time.sleep(0.5)

    assert len(recorder.stopped) == 1
    assert recorder.stopped[0].pid == client.pid
    assert not recorder.stopped[0].crashed

    assert supervisor.status() is None
    assert not supervisor.stop()


def test_crash(tmp_path: Path):

    events = EventChannel()
    recorder = Recorder(events)
    supervisor = ProcessSupervisor(events, start_grace=0.2)

    client = supervisor.launch(script_plan(tmp_path, "import sys, time; time.sleep(2); sys.exit(2)"))

    assert recorder.stopped_event.wait(20)
    assert len(recorder.stopped) == 1
    stopped = recorder.stopped[0]
    assert stopped.pid == client.pid
    assert stopped.exit_code == 2
    assert stopped.crashed
    assert supervisor.status() is None


def test_clean_exit(tmp_path: Path):

    events = EventChannel()
    recorder = Recorder(events)
    supervisor = ProcessSupervisor(events, start_grace=0.2)

    supervisor.launch(script_plan(tmp_path, "import time; time.sleep(2)"))

    assert recorder.stopped_event.wait(20)
    assert recorder.stopped[0].exit_code == 0
    assert not recorder.stopped[0].crashed


def test_stop_during_start_grace(tmp_path: Path):

    events = EventChannel()
    recorder = Recorder(events)
    supervisor = ProcessSupervisor(events, start_grace=30.0, stop_grace=5.0)

    launched = []
    errors = []

    def launch() -> None:
        try:
            launched.append(supervisor.launch(script_plan(tmp_path, "import time; time.sleep(60)")))
        except ProcessStartFailure as e:
            errors.append(e)

    thread = Thread(target=launch)
    thread.start()

    deadline = time.monotonic() + 10
    while supervisor.status() is None:
        assert time.monotonic() < deadline
        time.sleep(0.05)

    assert supervisor.stop()
    thread.join(10)
    assert not thread.is_alive()

    # A requested stop is not a failure to start, and is published once.
    assert errors == []
    assert len(launched) == 1
    assert recorder.started == []
    assert len(recorder.stopped) == 1
    assert recorder.stopped[0].pid == launched[0].pid
    assert not recorder.stopped[0].crashed
    assert supervisor.status() is None
