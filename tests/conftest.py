"""Shared pytest fixtures and test helpers for swarmtir tests."""

from __future__ import annotations

import itertools
import subprocess
import sys
import threading
from pathlib import Path
from typing import Any

import pytest
from click.testing import CliRunner
from sqlalchemy.exc import OperationalError

from swarmtir.config.models import (
    InteractionConfig,
    RuntimeConfig,
    TeardownConfig,
    WorkspaceConfig,
)
from swarmtir.config.settings import TirSettings
from swarmtir.infrastructure.ledger import Entity, LedgerTransaction

ECHO_RUNTIME = Path(__file__).resolve().parent / "fixtures" / "echo_runtime.py"


# ---------------------------------------------------------------------------
# Fake process
# ---------------------------------------------------------------------------

_pids = itertools.count(40000)


class FakeProcess:
    """Stand-in for ``subprocess.Popen`` that exits only when told to."""

    def __init__(self, argv: list[str], **kwargs: Any) -> None:
        self.argv = argv
        self.kwargs = kwargs
        self.pid = next(_pids)
        self.returncode: int | None = None
        self.terminate_calls = 0
        self.kill_calls = 0
        self.ignore_terminate = False
        self._done = threading.Event()

    def wait(self, timeout: float | None = None) -> int:
        if not self._done.wait(timeout):
            raise subprocess.TimeoutExpired(self.argv, timeout or 0)
        assert self.returncode is not None
        return self.returncode

    def terminate(self) -> None:
        self.terminate_calls += 1
        if not self.ignore_terminate:
            self.exit(-15)

    def kill(self) -> None:
        self.kill_calls += 1
        self.exit(-9)

    def exit(self, code: int) -> None:
        if self.returncode is None:
            self.returncode = code
        self._done.set()


class PopenRecorder:
    """Callable replacing ``subprocess.Popen``; remembers what it spawned."""

    def __init__(self) -> None:
        self.spawned: list[FakeProcess] = []
        self.fail_with: OSError | None = None

    def __call__(self, argv: list[str], **kwargs: Any) -> FakeProcess:
        if self.fail_with is not None:
            raise self.fail_with
        proc = FakeProcess(argv, **kwargs)
        self.spawned.append(proc)
        return proc


@pytest.fixture
def fake_popen() -> PopenRecorder:
    return PopenRecorder()


# ---------------------------------------------------------------------------
# In-memory ledger
# ---------------------------------------------------------------------------


class MemoryLedger:
    """Ledger fake keeping commits in a list."""

    def __init__(self, conf_dir: Path | None = None) -> None:
        self.conf_dir = conf_dir
        self.commits: list[list[Entity]] = []
        self.state: dict[tuple[str, str], dict[str, Any]] = {}
        self.closed = False
        self.fail_on_commit = False

    def begin_transaction(self) -> LedgerTransaction:
        return LedgerTransaction(_ledger=self)

    def lookup_or_create(self, kind: str, name: str) -> Entity:
        data = self.state.get((kind, name))
        if data is None:
            return Entity(kind=kind, name=name)
        return Entity(kind=kind, name=name, data=dict(data), exists=True)

    def commit(self, txn: LedgerTransaction) -> int:
        if self.fail_on_commit:
            raise OperationalError("INSERT", {}, Exception("disk I/O error"))
        snapshot = [
            Entity(kind=e.kind, name=e.name, data=dict(e.data), exists=True) for e in txn.entries
        ]
        self.commits.append(snapshot)
        for entity in snapshot:
            self.state[(entity.kind, entity.name)] = dict(entity.data)
        txn.committed = True
        return len(self.commits)

    def close(self) -> None:
        self.closed = True


class MemoryLedgerFactory:
    """Opens one :class:`MemoryLedger` per ``conf`` directory."""

    def __init__(self) -> None:
        self.ledgers: dict[Path, MemoryLedger] = {}

    def __call__(self, conf_dir: Path) -> MemoryLedger:
        ledger = self.ledgers.get(conf_dir)
        if ledger is None:
            ledger = MemoryLedger(conf_dir)
            self.ledgers[conf_dir] = ledger
        return ledger


@pytest.fixture
def memory_ledgers() -> MemoryLedgerFactory:
    return MemoryLedgerFactory()


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def settings(tmp_path: Path) -> TirSettings:
    """Fast settings: workspaces under tmp_path, no delays, fake command."""
    return TirSettings.load(
        start=tmp_path,
        configure_logging=False,
        workspace=WorkspaceConfig(base_dir=str(tmp_path)),
        runtime=RuntimeConfig(command=["swarm-runtime"], settle_delay=0.0, kill_timeout=0.5),
        interaction=InteractionConfig(poll_interval=0.01),
        teardown=TeardownConfig(grace_period=0.0),
    )


@pytest.fixture
def echo_settings(tmp_path: Path) -> TirSettings:
    """Settings launching the echo runtime under ``tests/fixtures``."""
    return TirSettings.load(
        start=tmp_path,
        configure_logging=False,
        workspace=WorkspaceConfig(base_dir=str(tmp_path)),
        runtime=RuntimeConfig(command=[sys.executable, str(ECHO_RUNTIME)], kill_timeout=2.0),
        interaction=InteractionConfig(poll_interval=0.02),
    )


# ---------------------------------------------------------------------------
# Shared test helpers
# ---------------------------------------------------------------------------


def say(self: Any, text: str) -> None:
    self.return_("Echo " + text)


ECHO_SWARMS: dict[str, dict[str, Any]] = {"echo": {"say": say}}
