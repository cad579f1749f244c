"""Supervision of the game's process: start, output streaming, stop and liveness.
"""

from subprocess import Popen, PIPE, STDOUT, TimeoutExpired
from threading import Thread, Lock
from datetime import datetime
import logging
import os

from .launch import LaunchPlan
from .events import EventChannel, publish
from .util import utc_now

from typing import Optional, Callable


logger = logging.getLogger(__name__)


# If the process exits before this delay, it's considered as a failure to start.
START_GRACE_SECONDS = 3.0
# Delay between the polite termination request and killing the process.
STOP_GRACE_SECONDS = 3.0


class ClientProcess:
    """Handle of a running game process.
    """

    __slots__ = "process", "pid", "started_at", "stop_requested", "finished"

    def __init__(self, process: Popen) -> None:
        self.process = process
        self.pid: int = process.pid
        self.started_at: datetime = utc_now()
        self.stop_requested = False
        self.finished = False

    def __repr__(self) -> str:
        return f"<ClientProcess {self.pid}>"


class ProcessSupervisor:
    """Supervise at most one game process at a time. The process output is published
    line by line, and a monitor thread publishes the stop of the process as soon as it
    exits, exactly once.
    """

    def __init__(self, events: Optional[EventChannel] = None, *,
        start_grace: float = START_GRACE_SECONDS,
        stop_grace: float = STOP_GRACE_SECONDS,
        popen: Callable[..., Popen] = Popen
    ) -> None:
        self.events = events
        self.start_grace = start_grace
        self.stop_grace = stop_grace
        self.popen = popen
        self._client: Optional[ClientProcess] = None
        self._lock = Lock()

    def launch(self, plan: LaunchPlan) -> ClientProcess:
        """Start the process of the given plan, and wait for the start grace delay to
        check that the process doesn't exit immediately.

        :raises ClientAlreadyRunningError: If a process is already running.
        :raises ProcessStartFailure: If the process exited during the grace delay, and
        was not stopped with `stop`.
        :raises OSError: If the process can't be created.
        """

        with self._lock:

            if self._client is not None and self._client.process.poll() is None:
                raise ClientAlreadyRunningError(self._client.pid)

            plan.work_dir.mkdir(parents=True, exist_ok=True)
            process = self.popen(plan.args(),
                cwd=str(plan.work_dir),
                stdout=PIPE,
                stderr=STDOUT,
                bufsize=1,
                universal_newlines=True,
                encoding="utf-8",
                errors="replace")

            client = ClientProcess(process)
            self._client = client

        logger.info("started game process %d", client.pid)

        Thread(target=self._stream_thread, args=(client,), name="Game Stream Thread", daemon=True).start()

        try:
            exit_code = process.wait(timeout=self.start_grace)
        except TimeoutExpired:
            pass
        else:
            with self._lock:
                stop_requested = client.stop_requested
                if not stop_requested:
                    client.finished = True
                    if self._client is client:
                        self._client = None
            if stop_requested:
                # The stop is published by the stopping thread.
                logger.info("game process %d stopped during startup", client.pid)
                return client
            logger.error("game process %d exited during startup with code %d", client.pid, exit_code)
            raise ProcessStartFailure(exit_code)

        publish(self.events, ClientStartedEvent(client.pid))
        Thread(target=self._monitor_thread, args=(client,), name="Game Monitor Thread", daemon=True).start()

        return client

    def stop(self) -> bool:
        """Stop the running process, politely first and killing it if it is still alive
        after the stop grace delay.

        :return: True if a process was running.
        """

        with self._lock:
            client = self._client
            if client is None:
                return False
            client.stop_requested = True

        process = client.process
        process.terminate()
        try:
            process.wait(timeout=self.stop_grace)
        except TimeoutExpired:
            logger.warning("game process %d did not terminate, killing it", client.pid)
            process.kill()
            process.wait()

        self._finish(client, process.returncode)
        return True

    def status(self) -> Optional[ClientProcess]:
        """Probe the liveness of the process, returning its handle if running. The handle
        is cleared as soon as the process is known to be gone.
        """

        with self._lock:
            client = self._client
        if client is None:
            return None

        exit_code = client.process.poll()
        if exit_code is not None:
            self._finish(client, exit_code)
            return None

        if os.name == "posix":
            try:
                os.kill(client.pid, 0)
            except ProcessLookupError:
                self._finish(client, None)
                return None
            except PermissionError:
                pass  # Exists but owned by another user.

        return client

    def _finish(self, client: ClientProcess, exit_code: Optional[int]) -> None:
        """Clear the handle of a process that exited, and publish its stop only once.
        """

        with self._lock:
            if client.finished:
                return
            client.finished = True
            if self._client is client:
                self._client = None

        crashed = not client.stop_requested and exit_code is not None and exit_code != 0
        if crashed:
            logger.warning("game process %d crashed with code %d", client.pid, exit_code)
        else:
            logger.info("game process %d stopped (code %s)", client.pid, exit_code)

        publish(self.events, ClientStoppedEvent(client.pid, exit_code, crashed))

    def _monitor_thread(self, client: ClientProcess) -> None:
        exit_code = client.process.wait()
        self._finish(client, exit_code)

    def _stream_thread(self, client: ClientProcess) -> None:
        stdout = client.process.stdout
        if stdout is None:
            return
        for line in iter(stdout.readline, ""):
            publish(self.events, ClientOutputEvent(client.pid, line.rstrip("\r\n")))


class ClientStartedEvent:
    __slots__ = "pid",
    def __init__(self, pid: int) -> None:
        self.pid = pid

class ClientStoppedEvent:
    """Published once when the game process exits, crashed is true if the process exited
    on its own with a non-zero code.
    """
    __slots__ = "pid", "exit_code", "crashed"
    def __init__(self, pid: int, exit_code: Optional[int], crashed: bool) -> None:
        self.pid = pid
        self.exit_code = exit_code
        self.crashed = crashed

class ClientOutputEvent:
    __slots__ = "pid", "line"
    def __init__(self, pid: int, line: str) -> None:
        self.pid = pid
        self.line = line


class ProcessStartFailure(Exception):
    """Raised when the game process exits before the end of the start grace delay.
    """
    def __init__(self, exit_code: int) -> None:
        super().__init__(exit_code)
        self.exit_code = exit_code

    def __str__(self) -> str:
        return f"game process exited during startup with code {self.exit_code}"

class ClientAlreadyRunningError(Exception):
    def __init__(self, pid: int) -> None:
        super().__init__(pid)
        self.pid = pid

    def __str__(self) -> str:
        return f"game process {self.pid} is already running"
