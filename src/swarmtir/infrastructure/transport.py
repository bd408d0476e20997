"""Correlation transports — deliver a request, resolve a future with its reply.

A transport hides how requests reach the runtime and how replies come
back. Interaction handles only see ``send(request) -> Future``.

:class:`FileTransport` is the real one: the request is written as JSON
into the domain's ``inbound`` directory and a watcher thread polls the
return channel (``outbound/<token>``) for ``<request id>.json``.
:class:`MemoryTransport` runs a handler in-process and needs no runtime.

Wire format::

    inbound/<token>-<id>.json   {"id", "agent", "swarm", "phase", "args",
                                 "return_channel", "created"}
    outbound/<token>/<id>.json  {"id", "result", "error"}
"""

from __future__ import annotations

import logging
import os
import threading
import uuid
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Protocol

from pydantic import BaseModel, Field, ValidationError

from swarmtir._helpers import now_iso
from swarmtir.errors import SwarmError, TirError

logger = logging.getLogger(__name__)


class SwarmRequest(BaseModel):
    """A request to run ``swarm.phase(*args)`` on one agent."""

    model_config = {"frozen": True}

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    agent: str
    swarm: str
    phase: str
    args: list[Any] = Field(default_factory=list)
    return_channel: str
    created: str = Field(default_factory=now_iso)


class SwarmResponse(BaseModel):
    """The runtime's reply to one request."""

    model_config = {"frozen": True}

    id: str
    result: Any = None
    error: Any = None


class Transport(Protocol):
    """Correlation channel contract."""

    def send(self, request: SwarmRequest) -> Future[Any]: ...

    def close(self) -> None: ...


class ChannelClosedError(TirError):
    """A request was sent through a transport that has been closed."""


def write_json_atomic(path: Path, payload: str) -> None:
    """Write *payload* so readers never observe a partial file."""
    tmp = path.with_name(f".{path.name}.tmp")
    tmp.write_text(payload, encoding="utf-8")
    os.replace(tmp, path)


# ---------------------------------------------------------------------------
# Filesystem transport
# ---------------------------------------------------------------------------


class FileTransport:
    """Requests as files in ``inbound``, replies as files in the return channel.

    Parameters:
        inbound: Directory the runtime consumes requests from.
        return_channel: Directory the runtime writes replies into.
        poll_interval: Seconds between return-channel scans.
    """

    def __init__(
        self,
        inbound: Path,
        return_channel: Path,
        *,
        poll_interval: float = 0.05,
    ) -> None:
        self._inbound = inbound
        self._return_channel = return_channel
        self._poll_interval = poll_interval
        self._pending: dict[str, Future[Any]] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._watcher: threading.Thread | None = None
        self._closed = False

    @property
    def return_channel(self) -> Path:
        return self._return_channel

    @property
    def token(self) -> str:
        return self._return_channel.name

    def in_flight(self) -> int:
        with self._lock:
            return len(self._pending)

    def send(self, request: SwarmRequest) -> Future[Any]:
        if self._closed:
            msg = f"Interaction channel {self._return_channel} is closed"
            raise ChannelClosedError(msg)

        self._return_channel.mkdir(parents=True, exist_ok=True)
        self._inbound.mkdir(parents=True, exist_ok=True)

        future: Future[Any] = Future()
        future.set_running_or_notify_cancel()
        with self._lock:
            self._pending[request.id] = future
        try:
            write_json_atomic(
                self._inbound / f"{self.token}-{request.id}.json",
                request.model_dump_json(),
            )
        except OSError:
            with self._lock:
                self._pending.pop(request.id, None)
            raise

        self._ensure_watcher()
        return future

    def poll(self) -> int:
        """Resolve every pending request whose reply has arrived.

        Returns the number of requests resolved by this scan.
        """
        with self._lock:
            pending = list(self._pending.items())

        resolved = 0
        for request_id, future in pending:
            path = self._return_channel / f"{request_id}.json"
            if not path.is_file():
                continue
            try:
                response = SwarmResponse.model_validate_json(path.read_text(encoding="utf-8"))
            except (OSError, ValidationError) as exc:
                # Writers that skip the rename can be caught mid-write.
                logger.debug("Reply %s not readable yet: %s", path, exc)
                continue
            path.unlink(missing_ok=True)
            with self._lock:
                if self._pending.pop(request_id, None) is None:
                    continue
            if response.error is not None:
                future.set_exception(SwarmError(request_id, response.error))
            else:
                future.set_result(response.result)
            resolved += 1
        return resolved

    def close(self) -> None:
        """Stop watching. Requests already delivered are not retracted."""
        self._closed = True
        self._stop.set()
        watcher = self._watcher
        if watcher is not None and watcher is not threading.current_thread():
            watcher.join(timeout=max(1.0, self._poll_interval * 4))

    def _ensure_watcher(self) -> None:
        with self._lock:
            if self._watcher is not None:
                return
            self._watcher = threading.Thread(
                target=self._watch,
                name=f"swarmtir-channel-{self.token}",
                daemon=True,
            )
            self._watcher.start()

    def _watch(self) -> None:
        while not self._stop.wait(self._poll_interval):
            try:
                self.poll()
            except Exception:
                logger.exception("Return channel %s scan failed", self._return_channel)


# ---------------------------------------------------------------------------
# In-process transport
# ---------------------------------------------------------------------------


class MemoryTransport:
    """Runs *handler(request)* on a worker thread; its return value is the reply.

    An exception raised by the handler becomes the future's exception.
    """

    def __init__(self, handler: Callable[[SwarmRequest], Any]) -> None:
        self._handler = handler
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="swarmtir-memory")
        self._closed = False
        self.sent: list[SwarmRequest] = []

    def send(self, request: SwarmRequest) -> Future[Any]:
        if self._closed:
            msg = "Interaction channel is closed"
            raise ChannelClosedError(msg)
        self.sent.append(request)
        return self._executor.submit(self._handler, request)

    def close(self) -> None:
        self._closed = True
        self._executor.shutdown(wait=True)
