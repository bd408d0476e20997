"""Pydantic configuration models with code-baked defaults.

Sparse TOML contract: defaults baked here, swarmtir.toml only contains
overrides. A project needs at least ``[runtime] command`` before it can
launch anything.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

# --- swarmtir.toml sections ---


class WorkspaceConfig(BaseModel):
    """[workspace] section."""

    model_config = {"frozen": True}

    prefix: str = "psk_"
    base_dir: str | None = None  # None -> platform temp dir


class RuntimeConfig(BaseModel):
    """[runtime] section.

    ``command`` is the argv prefix of the external runtime; the ledger
    config root and the workspace root are appended as positional args.
    """

    model_config = {"frozen": True}

    command: list[str] = Field(default_factory=list)
    settle_delay: float = 0.01
    kill_timeout: float = 5.0


class ConstitutionConfig(BaseModel):
    """[constitution] section — artifact formatting only."""

    model_config = {"frozen": True}

    nl: str = "\n"
    semi: str = ";"
    tab: str = "  "
    registry: str = "swarms"
    extension: str = "py"


class InteractionConfig(BaseModel):
    """[interaction] section."""

    model_config = {"frozen": True}

    token_length: int = Field(default=9, ge=9)
    poll_interval: float = 0.05


class TeardownConfig(BaseModel):
    """[teardown] section."""

    model_config = {"frozen": True}

    grace_period: float = 0.1
    watchdog_exit_status: int = 1
