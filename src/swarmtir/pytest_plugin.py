"""pytest plugin providing a torn-down-after-use ``tir`` fixture.

Registered through the ``pytest11`` entry point, so any project with
swarmtir installed can write::

    def test_echo(tir):
        tir.add_domain("local", ["echo"], swarms).launch()
        ...

Override ``tir_settings`` in a conftest to point at a runtime command.
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from swarmtir.config.models import WorkspaceConfig
from swarmtir.config.settings import TirSettings
from swarmtir.runner import Runner


@pytest.fixture
def tir_settings(tmp_path: Path) -> TirSettings:
    """Settings rooting workspaces in the test's tmp dir; logging left to pytest."""
    return TirSettings.load(
        configure_logging=False,
        workspace=WorkspaceConfig(base_dir=str(tmp_path)),
    )


@pytest.fixture
def tir(tir_settings: TirSettings) -> Iterator[Runner]:
    """A fresh Runner, torn down when the test finishes."""
    runner = Runner(tir_settings)
    try:
        yield runner
    finally:
        runner.tear_down()
