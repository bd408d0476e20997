"""Domain descriptors and the accumulating domain registry.

A :class:`DomainDescriptor` is pure bookkeeping: it records what a test
declared and where the domain will live on disk. Nothing touches the
filesystem until the runner launches.
"""

from __future__ import annotations

import os
from collections.abc import Iterator, Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from swarmtir.domain.keys import normalized_key
from swarmtir.errors import DomainConfigError

Declaration = Mapping[str, Mapping[str, Any]]
ConstitutionSource = Declaration | str | os.PathLike[str]


class DomainDescriptor(BaseModel):
    """A declared domain with its derived workspace paths.

    ``constitution`` is either an inline declaration (swarm name -> members)
    or the path of a pre-built artifact, never both.
    """

    model_config = {"frozen": True, "arbitrary_types_allowed": True}

    name: str
    key: str
    agents: list[str] = Field(default_factory=list)
    constitution: Any
    workspace: Path

    @property
    def conf(self) -> Path:
        return self.workspace / "conf"

    @property
    def inbound(self) -> Path:
        return self.workspace / "inbound"

    @property
    def outbound(self) -> Path:
        return self.workspace / "outbound"

    @property
    def has_artifact_path(self) -> bool:
        """True when the constitution was supplied as a path."""
        return is_artifact_path(self.constitution)


def is_artifact_path(constitution: object) -> bool:
    return isinstance(constitution, (str, os.PathLike))


class DomainRegistry:
    """Fluent store of domain descriptors keyed by domain name.

    Re-adding a name replaces its descriptor in place, keeping the original
    registration position. Two different names folding to the same
    directory key are rejected.
    """

    def __init__(self, root: Path) -> None:
        self._nodes = root / "nodes"
        self._domains: dict[str, DomainDescriptor] = {}

    @property
    def nodes(self) -> Path:
        """Parent directory of every domain workspace."""
        return self._nodes

    def add(
        self,
        name: str,
        agents: list[str] | tuple[str, ...] | None,
        constitution: ConstitutionSource,
    ) -> DomainDescriptor:
        """Store (or overwrite) the descriptor for *name*."""
        key = normalized_key(name)
        if not key:
            msg = f"Domain name {name!r} has no usable characters for a workspace key"
            raise DomainConfigError(msg)

        for other in self._domains.values():
            if other.key == key and other.name != name:
                msg = f"Domains {other.name!r} and {name!r} both map to workspace key {key!r}"
                raise DomainConfigError(msg)

        if not is_artifact_path(constitution) and not isinstance(constitution, Mapping):
            msg = (
                f"Constitution for domain {name!r} must be a mapping or a path, "
                f"got {type(constitution).__name__}"
            )
            raise DomainConfigError(msg)

        descriptor = DomainDescriptor(
            name=name,
            key=key,
            agents=list(agents or []),
            constitution=constitution,
            workspace=self._nodes / key,
        )
        self._domains[name] = descriptor
        return descriptor

    def get(self, name: str) -> DomainDescriptor | None:
        return self._domains.get(name)

    def names(self) -> list[str]:
        return list(self._domains)

    def __contains__(self, name: object) -> bool:
        return name in self._domains

    def __iter__(self) -> Iterator[DomainDescriptor]:
        return iter(list(self._domains.values()))

    def __len__(self) -> int:
        return len(self._domains)
