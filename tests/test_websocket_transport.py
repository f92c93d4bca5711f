"""Integration tests for WebSocketTransport against a real `websockets` server.

The reconnect timer is still the fake scheduler, so no test waits for a backoff delay.
"""

import asyncio
import json

import pytest
import pytest_asyncio
import websockets

from filter_stream.client.connection_manager import ConnectionManager
from filter_stream.client.websocket_client import WebSocketTransport
from filter_stream.shared.config import Settings
from filter_stream.shared.models import ConnectionState
from tests.doubles.fake_transport import FakeScheduler


async def eventually(predicate, timeout: float = 3.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class RecordingListener:
    def __init__(self):
        self.calls = []

    def on_open(self, transport):
        self.calls.append(("open",))

    def on_message(self, transport, raw):
        self.calls.append(("message", raw))

    def on_close(self, transport, code, reason):
        self.calls.append(("close", code, reason))

    def on_error(self, transport, error):
        self.calls.append(("error", type(error).__name__))


class FeedServer:
    """Tiny feed server: greets, sends scripted frames, then closes or idles."""

    def __init__(self, frames, close_code=None):
        self.frames = frames
        self.close_code = close_code
        self.paths = []
        self.client_close_codes = []

    async def handler(self, ws):
        self.paths.append(ws.request.path)
        for frame in self.frames:
            await ws.send(frame)
        if self.close_code is not None:
            await ws.close(code=self.close_code, reason="restart")
            return
        await ws.wait_closed()
        self.client_close_codes.append(ws.close_code)


@pytest_asyncio.fixture
async def serve():
    servers = []

    async def _serve(feed: FeedServer) -> str:
        server = await websockets.serve(feed.handler, "127.0.0.1", 0)
        servers.append(server)
        port = next(iter(server.sockets)).getsockname()[1]
        return f"http://127.0.0.1:{port}"

    yield _serve

    for server in servers:
        server.close()
        await server.wait_closed()


class TestWebSocketTransport:
    @pytest.mark.asyncio
    async def test_reports_open_messages_and_close(self, serve):
        feed = FeedServer(['{"type": "event", "data": 1}'], close_code=4001)
        base = await serve(feed)
        listener = RecordingListener()

        transport = WebSocketTransport(base.replace("http", "ws") + "/ws/abc", listener)
        await transport.wait_closed()

        assert listener.calls == [
            ("open",),
            ("message", '{"type": "event", "data": 1}'),
            ("close", 4001, "restart"),
        ]
        assert feed.paths == ["/ws/abc"]

    @pytest.mark.asyncio
    async def test_refused_connection_reports_error_then_abnormal_close(self):
        listener = RecordingListener()

        # Nothing listens on port 1
        transport = WebSocketTransport("ws://127.0.0.1:1/ws/abc", listener, open_timeout_s=2.0)
        await transport.wait_closed()

        assert listener.calls[0][0] == "error"
        assert listener.calls[1][:2] == ("close", 1006)
        assert len(listener.calls) == 2

    @pytest.mark.asyncio
    async def test_close_sends_code_to_server(self, serve):
        feed = FeedServer([])
        base = await serve(feed)
        listener = RecordingListener()

        transport = WebSocketTransport(base.replace("http", "ws") + "/ws/abc", listener)
        await eventually(lambda: ("open",) in listener.calls)
        transport.close(1000, "Manual disconnect")
        await transport.wait_closed()
        await eventually(lambda: feed.client_close_codes)

        assert feed.client_close_codes == [1000]
        assert listener.calls[-1] == ("close", 1000, "Manual disconnect")


class TestManagerOverWebSocket:
    @pytest.mark.asyncio
    async def test_stream_then_abnormal_close_schedules_retry(self, serve):
        feed = FeedServer(
            [
                json.dumps({"type": "connection", "data": {"status": "subscribed"}}),
                json.dumps({"type": "event", "data": {"x": 1}}),
                "garbage",
                json.dumps({"type": "event", "data": {"x": 2}}),
            ],
            close_code=4001,
        )
        base = await serve(feed)
        scheduler = FakeScheduler()
        manager = ConnectionManager(Settings(BACKEND_URL=base), scheduler=scheduler)

        manager.activate("abc")
        assert manager.connection_status == ConnectionState.CONNECTING
        await eventually(lambda: manager.connection_status == ConnectionState.RECONNECTING)

        assert manager.total_count == 2
        assert [e.data for e in manager.events] == [{"x": 2}, {"x": 1}]
        assert [t.delay_s for t in scheduler.pending] == [2.0]
        assert feed.paths == ["/ws/abc"]

        scheduler.fire_all()
        await eventually(lambda: len(feed.paths) == 2)
        manager.close()

    @pytest.mark.asyncio
    async def test_key_change_closes_old_socket_normally(self, serve):
        feed = FeedServer([])
        base = await serve(feed)
        scheduler = FakeScheduler()
        manager = ConnectionManager(Settings(BACKEND_URL=base), scheduler=scheduler)

        manager.activate("abc")
        await eventually(lambda: manager.connection_status == ConnectionState.CONNECTED)
        manager.activate("xyz")
        await eventually(lambda: manager.connection_status == ConnectionState.CONNECTED)
        await eventually(lambda: feed.client_close_codes)

        assert feed.paths == ["/ws/abc", "/ws/xyz"]
        assert feed.client_close_codes == [1000]
        assert scheduler.timers == []

        manager.disconnect()
        await eventually(lambda: len(feed.client_close_codes) == 2)
        assert manager.connection_status == ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_raising_event_callback_keeps_subscription_alive(self, serve):
        feed = FeedServer(
            [
                json.dumps({"type": "event", "data": {"x": 1}}),
                json.dumps({"type": "event", "data": {"x": 2}}),
            ],
            close_code=4001,
        )
        base = await serve(feed)
        scheduler = FakeScheduler()
        manager = ConnectionManager(Settings(BACKEND_URL=base), scheduler=scheduler)

        def broken(message):
            raise RuntimeError("subscriber bug")

        manager.set_callbacks(on_event=broken)
        manager.activate("abc")
        await eventually(lambda: manager.connection_status == ConnectionState.RECONNECTING)

        assert manager.total_count == 2
        assert manager.has_transport is False
        assert [t.delay_s for t in scheduler.pending] == [2.0]
        manager.close()

    @pytest.mark.asyncio
    async def test_aclose_delivers_normal_closure(self, serve):
        feed = FeedServer([])
        base = await serve(feed)
        manager = ConnectionManager(Settings(BACKEND_URL=base), scheduler=FakeScheduler())

        manager.activate("abc")
        await eventually(lambda: manager.connection_status == ConnectionState.CONNECTED)
        await manager.aclose()
        await eventually(lambda: feed.client_close_codes)

        assert feed.client_close_codes == [1000]


class RaisingListener(RecordingListener):
    def on_message(self, transport, raw):
        super().on_message(transport, raw)
        raise RuntimeError("listener bug")


class TestTransportListenerFailure:
    @pytest.mark.asyncio
    async def test_listener_exception_becomes_error_and_abnormal_close(self, serve):
        feed = FeedServer(['{"type": "event", "data": 1}'])
        base = await serve(feed)
        listener = RaisingListener()

        transport = WebSocketTransport(base.replace("http", "ws") + "/ws/abc", listener)
        await transport.wait_closed()

        assert listener.calls[:2] == [("open",), ("message", '{"type": "event", "data": 1}')]
        assert listener.calls[2] == ("error", "RuntimeError")
        assert listener.calls[3][:2] == ("close", 1006)
        assert len(listener.calls) == 4
