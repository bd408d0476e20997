"""Locate the swarmtir.toml that configures a test session.

A ``Runner()`` built without explicit settings looks for ``swarmtir.toml``
from the directory pytest runs in upward, so a suite nested below the
project root still picks up the project's runtime command. CI jobs that
keep the file elsewhere point ``SWARMTIR_CONFIG`` at it; the CLI's
``--config`` flag does the same for one invocation.
"""

from __future__ import annotations

import os
from pathlib import Path

CONFIG_FILENAME = "swarmtir.toml"
CONFIG_ENV_VAR = "SWARMTIR_CONFIG"


def find_config(start: Path | None = None) -> Path | None:
    """Return the config file governing *start* (default: cwd), if any.

    An explicit ``SWARMTIR_CONFIG`` wins outright: when it names a file
    that does not exist, no walk-up happens and defaults apply, so a
    misconfigured CI job never silently picks up a developer's file.
    """
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        path = Path(override)
        return path if path.is_file() else None

    here = (start or Path.cwd()).resolve()
    for directory in (here, *here.parents):
        candidate = directory / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
    return None
