"""swarmtir — Test Integration Runner for swarm runtimes.

Provisions an isolated workspace, ledger records and constitution artifacts
for one or more domains, launches the external runtime against them, and
drives agents through correlated request/response channels.
"""

from __future__ import annotations

from swarmtir.runner import Runner

__version__ = "0.3.0"

__all__ = ["Runner", "__version__"]
