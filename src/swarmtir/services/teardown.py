"""TeardownController — stop the runtime and remove the workspace.

INVARIANT: ``tear_down`` never raises. Every step is best-effort and
failures are logged; later steps run regardless. Calling it again finds
nothing left to stop or remove.
"""

from __future__ import annotations

import logging
import os
import sys
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

from swarmtir.infrastructure.workspace import remove_tree

if TYPE_CHECKING:
    from swarmtir.infrastructure.process import ProcessSupervisor

logger = logging.getLogger(__name__)


def exit_process(status: int) -> None:
    """Terminate the test process with *status*.

    ``sys.exit`` only ends the calling thread when it is not the main
    thread, so watchdog-initiated exits use ``os._exit`` after flushing.
    """
    if threading.current_thread() is threading.main_thread():
        sys.exit(status)
    sys.stdout.flush()
    sys.stderr.flush()
    os._exit(status)


class TeardownController:
    """Idempotent shutdown of one runner's process and workspace.

    Parameters:
        root: The root workspace to remove.
        supervisor: Owner of the runtime process and watchdog.
        grace_period: Seconds to wait between killing the process and
            removing files, so the OS releases the runtime's handles.
        exit_fn: Called with the exit status when one is requested.
        sleep: ``time.sleep`` replacement (tests).
    """

    def __init__(
        self,
        root: Path,
        supervisor: ProcessSupervisor,
        *,
        grace_period: float = 0.1,
        exit_fn: Callable[[int], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._root = root
        self._supervisor = supervisor
        self._grace_period = grace_period
        self._exit = exit_fn or exit_process
        self._sleep = sleep
        self._closers: list[Callable[[], None]] = []
        self._lock = threading.Lock()
        self._calls = 0
        self._torn_down = False

    @property
    def calls(self) -> int:
        """How many times ``tear_down`` ran."""
        return self._calls

    @property
    def torn_down(self) -> bool:
        return self._torn_down

    def add_closer(self, closer: Callable[[], None]) -> None:
        """Register a resource release to run before files are removed."""
        self._closers.append(closer)

    def tear_down(self, exit_status: int | None = None) -> None:
        self._tear_down(exit_status, expired=False)

    def expire(self, exit_status: int) -> None:
        """Watchdog path: tear down and exit, unless a teardown already ran.

        The timer can fire while the test thread is inside ``tear_down``;
        it then waits for the lock and must not exit a finished run.
        """
        self._tear_down(exit_status, expired=True)

    def _tear_down(self, exit_status: int | None, *, expired: bool) -> None:
        with self._lock:
            if expired and self._torn_down:
                logger.info("[TIR] Watchdog fired after teardown, ignoring")
                return
            logger.info("[TIR] Tearing down...")
            self._calls += 1
            self._torn_down = True
            self._supervisor.cancel_watchdog()
            try:
                self._supervisor.stop()
            except Exception:
                logger.warning("[TIR] Failed to stop runtime process", exc_info=True)

            for closer in self._closers:
                try:
                    closer()
                except Exception:
                    logger.warning("[TIR] Cleanup step %r failed", closer, exc_info=True)

            if self._root.exists():
                self._sleep(self._grace_period)
                try:
                    logger.info("[TIR] Removing temporary folder %s", self._root)
                    remove_tree(self._root)
                    logger.info("[TIR] Temporary folder removed %s", self._root)
                except OSError as exc:
                    logger.warning("[TIR] Could not remove %s: %s", self._root, exc)

        if exit_status is not None:
            self._exit(exit_status)
