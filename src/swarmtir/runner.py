"""Runner — the test-facing facade of the integration runner.

Typical use from a test::

    swarms = {"echo": {"say": say}}

    with Runner() as tir:
        tir.add_domain("local", ["echo"], swarms).launch()
        reply = tir.interact("local", "echo").start_swarm("echo", "say", "Hello")
        assert reply.result(timeout=5) == "Echo Hello"

One Runner owns one root workspace and at most one runtime process.
Construct a new Runner for a new topology.
"""

from __future__ import annotations

import logging
import subprocess
import time
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from swarmtir.config.settings import TirSettings
from swarmtir.domain.constitution import ConstitutionOptions
from swarmtir.domain.descriptors import ConstitutionSource, DomainDescriptor, DomainRegistry
from swarmtir.errors import (
    AlreadyLaunchedError,
    DomainNotFoundError,
    ProvisioningError,
    TornDownError,
)
from swarmtir.infrastructure.ledger import open_ledger
from swarmtir.infrastructure.process import ProcessHandle, ProcessSupervisor
from swarmtir.infrastructure.workspace import create_root
from swarmtir.services.interaction import (
    InteractionFactory,
    InteractionHandle,
    TransportFactory,
    file_transport_factory,
)
from swarmtir.services.provisioner import DomainProvisioner
from swarmtir.services.teardown import TeardownController

if TYPE_CHECKING:
    from swarmtir.infrastructure.ledger import Ledger

logger = logging.getLogger(__name__)


class Runner:
    """Provision, launch, drive, and tear down one swarm test topology.

    Parameters:
        settings: Resolved settings; discovered from ``swarmtir.toml`` and
            ``SWARMTIR_*`` env vars when omitted.
        ledger_factory: Opens the ledger for a ``conf`` directory.
        transport_factory: Builds the correlation transport for each
            interaction; files by default.
        popen: ``subprocess.Popen`` replacement for the runtime.
        exit_fn: Called with the exit status on ``tear_down(status)``.
    """

    def __init__(
        self,
        settings: TirSettings | None = None,
        *,
        ledger_factory: Callable[[Path], Ledger] | None = None,
        transport_factory: TransportFactory | None = None,
        popen: Callable[..., Any] = subprocess.Popen,
        exit_fn: Callable[[int], None] | None = None,
    ) -> None:
        self._settings = settings if settings is not None else TirSettings.load()
        if self._settings.configure_logging:
            from swarmtir.config.logging import configure_logging

            configure_logging(verbose=self._settings.verbose, log_json=self._settings.log_json)

        workspace = self._settings.workspace
        self._root = create_root(workspace.prefix, workspace.base_dir)
        self._registry = DomainRegistry(self._root)
        self._ledger_factory = ledger_factory or open_ledger
        self._ledgers: list[Ledger] = []
        self._launched = False

        runtime = self._settings.runtime
        self._supervisor = ProcessSupervisor(
            runtime.command, kill_timeout=runtime.kill_timeout, popen=popen
        )

        interaction = self._settings.interaction
        self._interactions = InteractionFactory(
            transport_factory or file_transport_factory(interaction.poll_interval),
            token_length=interaction.token_length,
        )

        self._teardown = TeardownController(
            self._root,
            self._supervisor,
            grace_period=self._settings.teardown.grace_period,
            exit_fn=exit_fn,
        )
        self._teardown.add_closer(self._interactions.close_all)
        self._teardown.add_closer(self._close_ledgers)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def settings(self) -> TirSettings:
        return self._settings

    @property
    def root(self) -> Path:
        """The root workspace of this run."""
        return self._root

    @property
    def conf(self) -> Path:
        """Run-wide ledger directory handed to the runtime."""
        return self._root / "conf"

    @property
    def domains(self) -> list[DomainDescriptor]:
        return list(self._registry)

    @property
    def process(self) -> ProcessHandle | None:
        """The supervised runtime, or None before launch / after teardown."""
        return self._supervisor.handle

    @property
    def launched(self) -> bool:
        return self._launched

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def add_domain(
        self,
        name: str,
        agents: list[str] | tuple[str, ...] | None,
        constitution: ConstitutionSource,
    ) -> Runner:
        """Declare (or redeclare) a domain. Nothing is written until launch.

        Args:
            name: Domain name; its camel-cased key names the workspace.
            agents: Agent names registered in the domain's ledger, in order.
            constitution: Swarm declaration mapping, or the path of a
                pre-built artifact used verbatim.
        """
        self._registry.add(name, agents, constitution)
        return self

    def domain(self, name: str) -> DomainDescriptor:
        descriptor = self._registry.get(name)
        if descriptor is None:
            raise DomainNotFoundError(name, self._registry.names())
        return descriptor

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def launch(
        self,
        on_ready: Callable[[], None] | None = None,
        *,
        tear_down_after: float | None = None,
    ) -> Runner:
        """Provision every domain, start the runtime, then call *on_ready*.

        Args:
            on_ready: Called after the settle delay. The runtime may still
                be initializing at that point.
            tear_down_after: Seconds after which the run is torn down and
                the test process exits with the watchdog status, whether
                or not the test finished.

        Raises:
            AlreadyLaunchedError: The runner was launched before.
            TornDownError: The runner was already torn down.
            ProvisioningError: Workspace or ledger setup failed.
            ConstitutionError: A declaration could not be compiled.
            ProcessError: The runtime could not be spawned.
        """
        if self._teardown.torn_down:
            raise TornDownError()
        if self._launched:
            raise AlreadyLaunchedError()
        self._launched = True

        logger.info("[TIR] setting working folder root %s", self._root)
        logger.info("[TIR] ledger on %s", self.conf)
        ledger = self._open_ledger(self.conf)

        try:
            self._registry.nodes.mkdir(exist_ok=True)
        except OSError as exc:
            msg = f"Could not create {self._registry.nodes}: {exc}"
            raise ProvisioningError(msg) from exc

        options = ConstitutionOptions(**self._settings.constitution.model_dump())
        provisioner = DomainProvisioner(ledger, self._open_ledger, options)
        logger.info("[TIR] start building nodes...")
        for descriptor in self._registry:
            provisioner.provision(descriptor)

        self._supervisor.start(self.conf, self._root)

        if tear_down_after is not None and tear_down_after > 0:
            status = self._settings.teardown.watchdog_exit_status
            self._supervisor.schedule_watchdog(
                tear_down_after, lambda: self._teardown.expire(status)
            )

        time.sleep(self._settings.runtime.settle_delay)
        if on_ready is not None:
            on_ready()
        return self

    def interact(self, domain: str, agent: str) -> InteractionHandle:
        """Open a return channel to *agent* in *domain*."""
        if self._teardown.torn_down:
            raise TornDownError()
        return self._interactions.interact(self.domain(domain), agent)

    def tear_down(self, exit_status: int | None = None) -> None:
        """Stop the runtime and remove the workspace. Never raises.

        With *exit_status*, the test process exits with it afterwards.
        """
        self._teardown.tear_down(exit_status)

    def __enter__(self) -> Runner:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.tear_down()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _open_ledger(self, conf_dir: Path) -> Ledger:
        try:
            ledger = self._ledger_factory(conf_dir)
        except (SQLAlchemyError, OSError) as exc:
            msg = f"Could not open ledger at {conf_dir}: {exc}"
            raise ProvisioningError(msg) from exc
        self._ledgers.append(ledger)
        return ledger

    def _close_ledgers(self) -> None:
        ledgers, self._ledgers = self._ledgers, []
        for ledger in ledgers:
            ledger.close()
