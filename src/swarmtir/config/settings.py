"""Unified settings — init kwargs, env vars, and TOML config in one object.

Priority chain (highest to lowest):
  1. Init kwargs  — passed by test code or CLI flags
  2. Env vars     — ``SWARMTIR_*`` prefix, ``__`` for nested sections
  3. TOML file    — ``swarmtir.toml`` discovered via walk-up
  4. Code defaults — baked into the section models

Uses Pydantic Settings v2 with a custom :class:`TomlSettingsSource` that
reuses the ``find_config`` walk-up discovery from
:mod:`swarmtir.config.discovery`.
"""

from __future__ import annotations

import threading
import tomllib
from pathlib import Path
from typing import Any, ClassVar

from pydantic import Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

from swarmtir.config.discovery import find_config
from swarmtir.config.models import (
    ConstitutionConfig,
    InteractionConfig,
    RuntimeConfig,
    TeardownConfig,
    WorkspaceConfig,
)


class TomlSettingsSource(PydanticBaseSettingsSource):
    """Read settings from a ``swarmtir.toml`` file discovered via walk-up."""

    def __init__(self, settings_cls: type[BaseSettings], toml_path: Path | None) -> None:
        super().__init__(settings_cls)
        self._data: dict[str, Any] = {}
        if toml_path and toml_path.is_file():
            raw = toml_path.read_text(encoding="utf-8")
            try:
                self._data = tomllib.loads(raw)
            except tomllib.TOMLDecodeError as exc:
                import click

                msg = f"Invalid TOML in {toml_path}: {exc}"
                raise click.ClickException(msg) from exc

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:
        """Return ``(value, field_name, value_is_complex)``."""
        val = self._data.get(field_name)
        return val, field_name, field_name in self._data

    def __call__(self) -> dict[str, Any]:
        """Return the full TOML data dict for Pydantic to merge."""
        return self._data


# Thread-local storage for TOML path during construction.
_tls = threading.local()


class TirSettings(BaseSettings):
    """Unified settings for a test integration runner.

    Attributes:
        config_path: The TOML file the settings were read from, if any.
        verbose: DEBUG-level harness logging.
        log_json: JSON log lines instead of console rendering.
        configure_logging: Whether constructing a Runner installs the
            structlog handler. Disable when the host already configured
            logging.
    """

    model_config = {
        "frozen": True,
        "env_prefix": "SWARMTIR_",
        "env_nested_delimiter": "__",
    }

    config_path: Path | None = None

    verbose: bool = False
    log_json: bool = False
    configure_logging: bool = True

    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    constitution: ConstitutionConfig = Field(default_factory=ConstitutionConfig)
    interaction: InteractionConfig = Field(default_factory=InteractionConfig)
    teardown: TeardownConfig = Field(default_factory=TeardownConfig)

    # Retained for type-checker visibility; not used at runtime.
    _toml_path: ClassVar[Path | None] = None

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Insert TOML source between env vars and defaults."""
        toml_path = getattr(_tls, "toml_path", None)
        return (
            init_settings,
            env_settings,
            TomlSettingsSource(settings_cls, toml_path),
        )

    @classmethod
    def load(
        cls,
        *,
        config_path: str | Path | None = None,
        start: Path | None = None,
        **overrides: Any,
    ) -> TirSettings:
        """Construct settings for a test run.

        Discovers ``swarmtir.toml`` via walk-up from *start* (or uses the
        explicit *config_path*) and merges *overrides* as highest-priority
        values.
        """
        toml_path: Path | None = None
        if config_path:
            p = Path(config_path)
            if p.is_file():
                toml_path = p
        else:
            toml_path = find_config(start)

        _tls.toml_path = toml_path
        try:
            return cls(config_path=toml_path, **overrides)
        finally:
            _tls.toml_path = None
