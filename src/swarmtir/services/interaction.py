"""Interaction channels — start swarms on agents and collect their replies.

``InteractionFactory.interact`` allocates a fresh return channel under a
domain's ``outbound`` directory and wraps a transport in an
:class:`InteractionHandle`. Each ``start_swarm`` call returns a
:class:`PendingResult` whose callbacks fire exactly once, off the thread
that registered them.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future
from pathlib import Path
from typing import TYPE_CHECKING, Any

from swarmtir.domain.keys import MIN_TOKEN_LENGTH, TokenPool
from swarmtir.infrastructure.transport import FileTransport, SwarmRequest, Transport

if TYPE_CHECKING:
    from swarmtir.domain.descriptors import DomainDescriptor

logger = logging.getLogger(__name__)

TransportFactory = Callable[[Path, Path], Transport]


class PendingResult:
    """The eventual reply to one ``start_swarm`` call."""

    def __init__(self, request: SwarmRequest, future: Future[Any]) -> None:
        self._request = request
        self._future = future

    @property
    def request(self) -> SwarmRequest:
        return self._request

    @property
    def future(self) -> Future[Any]:
        return self._future

    def done(self) -> bool:
        return self._future.done()

    def on_return(self, callback: Callable[[Any], None]) -> PendingResult:
        """Call *callback(result)* once the runtime replies successfully.

        The callback never runs on the registering thread, even when the
        reply is already in.
        """

        def _deliver(future: Future[Any]) -> None:
            error = future.exception()
            if error is not None:
                logger.warning(
                    "[TIR] %s.%s returned an error: %s",
                    self._request.swarm,
                    self._request.phase,
                    error,
                )
                return
            callback(future.result())

        self._attach(_deliver)
        return self

    def on_error(self, callback: Callable[[BaseException], None]) -> PendingResult:
        """Call *callback(exc)* if the runtime replies with an error."""

        def _deliver(future: Future[Any]) -> None:
            error = future.exception()
            if error is not None:
                callback(error)

        self._attach(_deliver)
        return self

    def _attach(self, deliver: Callable[[Future[Any]], None]) -> None:
        # add_done_callback runs inline on the calling thread when the future
        # is already done (or completed by that thread); hand those off.
        caller = threading.get_ident()

        def _dispatch(future: Future[Any]) -> None:
            if threading.get_ident() != caller:
                deliver(future)
                return
            worker = threading.Thread(
                target=deliver, args=(future,), name="swarmtir-callback", daemon=True
            )
            worker.start()

        self._future.add_done_callback(_dispatch)

    def result(self, timeout: float | None = None) -> Any:
        """Block for the reply. Raises :class:`SwarmError` on a runtime error."""
        return self._future.result(timeout=timeout)


class InteractionHandle:
    """Client side of one agent in one domain."""

    def __init__(self, agent: str, inbound: Path, return_channel: Path, transport: Transport) -> None:
        self._agent = agent
        self._inbound = inbound
        self._return_channel = return_channel
        self._transport = transport

    @property
    def agent(self) -> str:
        return self._agent

    @property
    def inbound(self) -> Path:
        return self._inbound

    @property
    def return_channel(self) -> Path:
        return self._return_channel

    @property
    def transport(self) -> Transport:
        return self._transport

    def start_swarm(self, swarm: str, phase: str, *args: Any) -> PendingResult:
        """Ask the agent to run ``swarm.phase(*args)``."""
        request = SwarmRequest(
            agent=self._agent,
            swarm=swarm,
            phase=phase,
            args=list(args),
            return_channel=str(self._return_channel),
        )
        logger.debug("[TIR] %s <- %s.%s (%s)", self._agent, swarm, phase, request.id)
        return PendingResult(request, self._transport.send(request))

    def close(self) -> None:
        self._transport.close()


def file_transport_factory(poll_interval: float = 0.05) -> TransportFactory:
    def _factory(inbound: Path, return_channel: Path) -> Transport:
        return FileTransport(inbound, return_channel, poll_interval=poll_interval)

    return _factory


class InteractionFactory:
    """Allocates return channels and builds handles for domains.

    Parameters:
        transport_factory: ``(inbound, return_channel) -> Transport``.
        token_length: Correlation token length (at least 9).
    """

    def __init__(
        self,
        transport_factory: TransportFactory | None = None,
        *,
        token_length: int = MIN_TOKEN_LENGTH,
    ) -> None:
        self._transport_factory = transport_factory or file_transport_factory()
        self._token_length = token_length
        self._pools: dict[str, TokenPool] = {}
        self._handles: list[InteractionHandle] = []

    @property
    def handles(self) -> list[InteractionHandle]:
        return list(self._handles)

    def interact(self, descriptor: DomainDescriptor, agent: str) -> InteractionHandle:
        descriptor.outbound.mkdir(parents=True, exist_ok=True)

        pool = self._pools.setdefault(descriptor.name, TokenPool(self._token_length))
        return_channel = descriptor.outbound / pool.draw()
        logger.info(
            "[TIR] Interacting with %s/%s on %s", descriptor.name, agent, return_channel
        )

        transport = self._transport_factory(descriptor.inbound, return_channel)
        handle = InteractionHandle(agent, descriptor.inbound, return_channel, transport)
        self._handles.append(handle)
        return handle

    def close_all(self) -> None:
        """Close every handle's transport (best-effort)."""
        handles, self._handles = self._handles, []
        for handle in handles:
            try:
                handle.close()
            except Exception:
                logger.warning("[TIR] Failed to close channel %s", handle.return_channel, exc_info=True)
