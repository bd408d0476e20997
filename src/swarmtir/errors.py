"""Exception hierarchy for the test integration runner.

Configuration and provisioning errors surface at the call site.
Teardown never raises; its failures are logged instead.
"""

from __future__ import annotations

from collections.abc import Iterable


class TirError(Exception):
    """Base class for every error raised by swarmtir."""


class DomainConfigError(TirError):
    """A domain declaration is invalid or ambiguous."""


class DomainNotFoundError(DomainConfigError):
    """An interaction targeted a domain that was never added."""

    def __init__(self, domain: str, known: Iterable[str]) -> None:
        self.domain = domain
        self.known = list(known)
        super().__init__(f"Could not find domain {domain} in {', '.join(self.known)}")


class ConstitutionError(TirError):
    """A constitution declaration cannot be compiled into an artifact."""


class ProvisioningError(TirError):
    """Writing a domain's workspace or ledger records failed."""


class ProcessError(TirError):
    """The supervised runtime process could not be started."""


class AlreadyLaunchedError(ProcessError):
    """``launch`` was called on a runner whose runtime is already tracked."""

    def __init__(self) -> None:
        super().__init__("Test node already launched")


class SwarmError(TirError):
    """The runtime answered a request with an error."""

    def __init__(self, request_id: str, error: object) -> None:
        self.request_id = request_id
        self.error = error
        super().__init__(f"Swarm request {request_id} failed: {error}")


class TornDownError(ProcessError):
    """``launch`` was called on a runner that was already torn down."""

    def __init__(self) -> None:
        super().__init__("Test node already torn down; create a new Runner")
