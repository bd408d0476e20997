"""Supervision of the single external runtime process.

The runtime is spawned with inherited stdio so its output lands on the
test's own streams. A waiter thread turns process exit into callbacks;
teardown and the watchdog react to those instead of polling.

States::

    UNSTARTED --start()--> RUNNING --exit / kill()--> TERMINATED
"""

from __future__ import annotations

import logging
import subprocess
import threading
from collections.abc import Callable, Sequence
from enum import StrEnum
from pathlib import Path
from typing import Any

from swarmtir.errors import AlreadyLaunchedError, ProcessError

logger = logging.getLogger(__name__)

ExitCallback = Callable[[int], None]


class ProcessState(StrEnum):
    UNSTARTED = "unstarted"
    RUNNING = "running"
    TERMINATED = "terminated"


class ProcessHandle:
    """One spawned process and its lifecycle state.

    Parameters:
        argv: Full command line.
        kill_timeout: Seconds to wait after SIGTERM before SIGKILL.
        popen: ``subprocess.Popen`` replacement (tests).
    """

    def __init__(
        self,
        argv: Sequence[str],
        *,
        kill_timeout: float = 5.0,
        popen: Callable[..., Any] = subprocess.Popen,
    ) -> None:
        self._argv = list(argv)
        self._kill_timeout = kill_timeout
        self._popen = popen
        self._process: Any = None
        self._state = ProcessState.UNSTARTED
        self._returncode: int | None = None
        self._callbacks: list[ExitCallback] = []
        self._exited = threading.Event()
        self._lock = threading.Lock()

    @property
    def argv(self) -> list[str]:
        return list(self._argv)

    @property
    def state(self) -> ProcessState:
        return self._state

    @property
    def pid(self) -> int | None:
        return None if self._process is None else self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._returncode

    @property
    def is_running(self) -> bool:
        return self._state is ProcessState.RUNNING

    def start(self) -> ProcessHandle:
        """Spawn the process; returns immediately."""
        if self._state is not ProcessState.UNSTARTED:
            msg = f"Process {self._argv[0]!r} was already started"
            raise ProcessError(msg)
        try:
            # stdin/stdout/stderr left as None: the child inherits ours.
            self._process = self._popen(self._argv)
        except OSError as exc:
            msg = f"Could not start runtime {self._argv[0]!r}: {exc}"
            raise ProcessError(msg) from exc

        self._state = ProcessState.RUNNING
        waiter = threading.Thread(
            target=self._wait_for_exit,
            name=f"swarmtir-process-{self.pid}",
            daemon=True,
        )
        waiter.start()
        return self

    def on_exit(self, callback: ExitCallback) -> None:
        """Call *callback(returncode)* once the process exits.

        Fires immediately when the process already exited.
        """
        with self._lock:
            if not self._exited.is_set():
                self._callbacks.append(callback)
                return
            code = self._returncode
        self._fire(callback, code if code is not None else 0)

    def wait(self, timeout: float | None = None) -> int | None:
        """Block until exit (or *timeout*); returns the exit code or None."""
        self._exited.wait(timeout)
        return self._returncode

    def kill(self) -> None:
        """Terminate the process, escalating to SIGKILL after the timeout.

        A process that is gone already is not an error.
        """
        if self._process is None:
            self._state = ProcessState.TERMINATED
            return
        if self._state is ProcessState.TERMINATED:
            return
        try:
            self._process.terminate()
        except ProcessLookupError:
            pass
        try:
            self._process.wait(timeout=self._kill_timeout)
        except subprocess.TimeoutExpired:
            logger.warning(
                "[TIR] Process %s ignored SIGTERM for %ss, killing", self.pid, self._kill_timeout
            )
            try:
                self._process.kill()
            except ProcessLookupError:
                pass
            self._process.wait()
        self._state = ProcessState.TERMINATED

    def _wait_for_exit(self) -> None:
        code = self._process.wait()
        with self._lock:
            self._returncode = code
            self._state = ProcessState.TERMINATED
            callbacks, self._callbacks = self._callbacks, []
            self._exited.set()
        logger.debug("[TIR] Process %s exited with %s", self.pid, code)
        for callback in callbacks:
            self._fire(callback, code)

    def _fire(self, callback: ExitCallback, code: int) -> None:
        try:
            callback(code)
        except Exception:
            logger.exception("[TIR] Exit callback for process %s failed", self.pid)


class ProcessSupervisor:
    """Owns at most one runtime process.

    Parameters:
        command: argv prefix of the runtime; the ledger config root and
            workspace root are appended.
        kill_timeout: Passed to each :class:`ProcessHandle`.
        popen: ``subprocess.Popen`` replacement (tests).
    """

    def __init__(
        self,
        command: Sequence[str],
        *,
        kill_timeout: float = 5.0,
        popen: Callable[..., Any] = subprocess.Popen,
    ) -> None:
        self._command = list(command)
        self._kill_timeout = kill_timeout
        self._popen = popen
        self._handle: ProcessHandle | None = None
        self._watchdog: threading.Timer | None = None

    @property
    def handle(self) -> ProcessHandle | None:
        """The tracked process, or None before start / after stop."""
        return self._handle

    def start(self, conf_root: Path, workspace_root: Path) -> ProcessHandle:
        if self._handle is not None:
            raise AlreadyLaunchedError()
        if not self._command:
            msg = "No runtime command configured; set [runtime] command in swarmtir.toml"
            raise ProcessError(msg)

        handle = ProcessHandle(
            [*self._command, str(conf_root), str(workspace_root)],
            kill_timeout=self._kill_timeout,
            popen=self._popen,
        )
        handle.start()
        self._handle = handle
        logger.info("[TIR] Runtime started with pid %s", handle.pid)
        return handle

    def schedule_watchdog(self, delay: float, action: Callable[[], None]) -> threading.Timer:
        """Run *action* after *delay* seconds unless cancelled first."""
        self.cancel_watchdog()
        timer = threading.Timer(delay, action)
        timer.name = "swarmtir-watchdog"
        timer.daemon = True
        timer.start()
        self._watchdog = timer
        return timer

    def cancel_watchdog(self) -> None:
        timer, self._watchdog = self._watchdog, None
        if timer is not None and timer is not threading.current_thread():
            timer.cancel()

    def stop(self) -> ProcessHandle | None:
        """Terminate and forget the tracked process. Returns it, if any."""
        handle, self._handle = self._handle, None
        if handle is None:
            return None
        logger.info("[TIR] Killing node %s", handle.pid)
        handle.kill()
        return handle
