"""DomainProvisioner — turns a descriptor into files and ledger records.

For each domain, in order:

1. Create the domain workspace directory.
2. Compile the constitution artifact (unless a path was given).
3. Commit one ``DomainReference`` registration to the run-wide ledger.
4. Commit one ``Agent`` registration per agent to the domain's own ledger,
   one transaction each, in declared order.

INVARIANT: Any failure aborts the launch. Domains provisioned before the
failing one are left as they are; there is no partial rollback.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from swarmtir.domain.constitution import ConstitutionOptions, compile_constitution
from swarmtir.errors import ProvisioningError

if TYPE_CHECKING:
    from swarmtir.domain.descriptors import DomainDescriptor
    from swarmtir.infrastructure.ledger import Ledger

logger = logging.getLogger(__name__)

DOMAIN_KIND = "DomainReference"
AGENT_KIND = "Agent"
DOMAIN_OWNER = "system"
LOCAL_INTERFACE = "local"

LedgerFactory = Callable[[Path], "Ledger"]


class DomainProvisioner:
    """Provision domains against a run-wide ledger.

    Parameters:
        ledger: The global ledger receiving domain references.
        ledger_factory: Opens the per-domain ledger rooted at a ``conf`` dir.
        options: Constitution artifact formatting.
    """

    def __init__(
        self,
        ledger: Ledger,
        ledger_factory: LedgerFactory,
        options: ConstitutionOptions | None = None,
    ) -> None:
        self._ledger = ledger
        self._ledger_factory = ledger_factory
        self._options = options or ConstitutionOptions()

    def provision(self, descriptor: DomainDescriptor) -> Path | str:
        """Provision one domain; returns its constitution artifact location."""
        logger.info("[TIR] domain %s in workspace %s", descriptor.name, descriptor.workspace)
        logger.info("[TIR] domain %s inbound %s", descriptor.name, descriptor.inbound)

        try:
            descriptor.workspace.mkdir(exist_ok=True)
        except OSError as exc:
            msg = f"Could not create workspace for domain {descriptor.name!r}: {exc}"
            raise ProvisioningError(msg) from exc

        try:
            artifact = compile_constitution(
                descriptor.workspace, descriptor.constitution, self._options
            )
        except OSError as exc:
            msg = f"Could not write constitution for domain {descriptor.name!r}: {exc}"
            raise ProvisioningError(msg) from exc

        try:
            self._register_domain(descriptor, artifact)
            if descriptor.agents:
                self._register_agents(descriptor)
        except (SQLAlchemyError, OSError, ValueError) as exc:
            msg = f"Ledger registration failed for domain {descriptor.name!r}: {exc}"
            raise ProvisioningError(msg) from exc

        return artifact

    def _register_domain(self, descriptor: DomainDescriptor, artifact: Path | str) -> None:
        txn = self._ledger.begin_transaction()
        domain = txn.lookup(DOMAIN_KIND, descriptor.name)
        domain.update(owner=DOMAIN_OWNER, name=descriptor.name)
        domain.set("workspace", str(descriptor.workspace))
        domain.set("constitution", str(artifact))
        interfaces = dict(domain.get("local_interfaces") or {})
        interfaces[LOCAL_INTERFACE] = str(descriptor.inbound)
        domain.set("local_interfaces", interfaces)
        txn.add(domain)
        self._ledger.commit(txn)

    def _register_agents(self, descriptor: DomainDescriptor) -> None:
        logger.info("[TIR] domain %s starting agents...", descriptor.name)
        domain_ledger = self._ledger_factory(descriptor.conf)
        for agent_name in descriptor.agents:
            logger.info("[TIR] domain %s agent %s", descriptor.name, agent_name)
            txn = domain_ledger.begin_transaction()
            agent = txn.lookup(AGENT_KIND, agent_name)
            txn.add(agent)
            domain_ledger.commit(txn)
