"""Tests for the correlation transports."""

import json
from pathlib import Path

import pytest

from swarmtir.errors import SwarmError
from swarmtir.infrastructure.transport import (
    ChannelClosedError,
    FileTransport,
    MemoryTransport,
    SwarmRequest,
    SwarmResponse,
    write_json_atomic,
)


def _request(channel: Path, *args: object) -> SwarmRequest:
    return SwarmRequest(
        agent="echo",
        swarm="echo",
        phase="say",
        args=list(args),
        return_channel=str(channel),
    )


def _reply(channel: Path, response: SwarmResponse) -> None:
    write_json_atomic(channel / f"{response.id}.json", response.model_dump_json())


class TestSwarmRequest:
    def test_ids_unique(self, tmp_path: Path) -> None:
        assert _request(tmp_path).id != _request(tmp_path).id

    def test_wire_fields(self, tmp_path: Path) -> None:
        payload = json.loads(_request(tmp_path, "Hello").model_dump_json())
        assert set(payload) == {
            "id",
            "agent",
            "swarm",
            "phase",
            "args",
            "return_channel",
            "created",
        }
        assert payload["args"] == ["Hello"]


class TestWriteJsonAtomic:
    def test_writes_and_leaves_no_temp(self, tmp_path: Path) -> None:
        target = tmp_path / "reply.json"
        write_json_atomic(target, '{"id": "x"}')
        assert target.read_text(encoding="utf-8") == '{"id": "x"}'
        assert [p.name for p in tmp_path.iterdir()] == ["reply.json"]


class TestFileTransport:
    @pytest.fixture
    def dirs(self, tmp_path: Path) -> tuple[Path, Path]:
        return tmp_path / "inbound", tmp_path / "outbound" / "abcdefghi"

    def test_send_deposits_request(self, dirs: tuple[Path, Path]) -> None:
        inbound, channel = dirs
        transport = FileTransport(inbound, channel, poll_interval=0.01)
        request = _request(channel, "Hello")
        transport.send(request)

        deposited = inbound / f"abcdefghi-{request.id}.json"
        assert deposited.is_file()
        assert SwarmRequest.model_validate_json(deposited.read_text()) == request
        assert channel.is_dir()
        assert transport.token == "abcdefghi"
        transport.close()

    def test_poll_resolves_result(self, dirs: tuple[Path, Path]) -> None:
        inbound, channel = dirs
        transport = FileTransport(inbound, channel, poll_interval=60)
        request = _request(channel, "Hello")
        future = transport.send(request)
        assert transport.poll() == 0

        _reply(channel, SwarmResponse(id=request.id, result="Echo Hello"))
        assert transport.poll() == 1
        assert future.result(timeout=0) == "Echo Hello"
        assert transport.in_flight() == 0
        assert not (channel / f"{request.id}.json").exists()
        transport.close()

    def test_poll_resolves_error(self, dirs: tuple[Path, Path]) -> None:
        inbound, channel = dirs
        transport = FileTransport(inbound, channel, poll_interval=60)
        request = _request(channel)
        future = transport.send(request)

        _reply(channel, SwarmResponse(id=request.id, error="KeyError: 'say'"))
        transport.poll()
        with pytest.raises(SwarmError, match="KeyError") as excinfo:
            future.result(timeout=0)
        assert excinfo.value.request_id == request.id
        transport.close()

    def test_unreadable_reply_retried(self, dirs: tuple[Path, Path]) -> None:
        inbound, channel = dirs
        transport = FileTransport(inbound, channel, poll_interval=60)
        request = _request(channel)
        future = transport.send(request)

        (channel / f"{request.id}.json").write_text('{"id": ')
        assert transport.poll() == 0
        assert not future.done()

        _reply(channel, SwarmResponse(id=request.id, result=1))
        assert transport.poll() == 1
        assert future.result(timeout=0) == 1
        transport.close()

    def test_unrelated_replies_ignored(self, dirs: tuple[Path, Path]) -> None:
        inbound, channel = dirs
        transport = FileTransport(inbound, channel, poll_interval=60)
        future = transport.send(_request(channel))

        _reply(channel, SwarmResponse(id="someone-else", result=1))
        assert transport.poll() == 0
        assert not future.done()
        assert (channel / "someone-else.json").exists()
        transport.close()

    def test_watcher_resolves(self, dirs: tuple[Path, Path]) -> None:
        inbound, channel = dirs
        transport = FileTransport(inbound, channel, poll_interval=0.01)
        request = _request(channel)
        future = transport.send(request)

        _reply(channel, SwarmResponse(id=request.id, result={"ok": True}))
        assert future.result(timeout=2) == {"ok": True}
        transport.close()

    def test_send_after_close(self, dirs: tuple[Path, Path]) -> None:
        inbound, channel = dirs
        transport = FileTransport(inbound, channel)
        transport.close()
        with pytest.raises(ChannelClosedError):
            transport.send(_request(channel))
        assert not inbound.exists()

    def test_close_leaves_pending_unresolved(self, dirs: tuple[Path, Path]) -> None:
        inbound, channel = dirs
        transport = FileTransport(inbound, channel, poll_interval=0.01)
        future = transport.send(_request(channel))
        transport.close()
        assert not future.done()
        transport.close()


class TestMemoryTransport:
    def test_handler_result(self, tmp_path: Path) -> None:
        transport = MemoryTransport(lambda req: f"Echo {req.args[0]}")
        future = transport.send(_request(tmp_path, "Hello"))
        assert future.result(timeout=2) == "Echo Hello"
        assert len(transport.sent) == 1
        transport.close()

    def test_handler_error(self, tmp_path: Path) -> None:
        def _fail(request: SwarmRequest) -> None:
            raise SwarmError(request.id, "boom")

        transport = MemoryTransport(_fail)
        future = transport.send(_request(tmp_path))
        with pytest.raises(SwarmError, match="boom"):
            future.result(timeout=2)
        transport.close()

    def test_send_after_close(self, tmp_path: Path) -> None:
        transport = MemoryTransport(lambda req: None)
        transport.close()
        with pytest.raises(ChannelClosedError):
            transport.send(_request(tmp_path))
